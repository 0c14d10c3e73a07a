"""Conversation stage machine.

Tracks macro progress (greeting, qualifying, browsing, ...) independently
of the router. The stage only shapes prompts; it never overrides a router
decision.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Mapping, Optional

from dealerflow.prompts import get_stage_prompt
from dealerflow.router import RouterAction
from dealerflow.stages import Stage

logger = logging.getLogger(__name__)

IDLE_AFTER_MINUTES = 60
HISTORY_LIMIT = 10
MIN_QUALIFYING_SLOTS = 2

ACTION_STAGES = {
    RouterAction.ASK_ONE_QUESTION: Stage.QUALIFYING,
    RouterAction.EXIT: Stage.IDLE,
}
HOLD_ACTIONS = {
    RouterAction.SMALLTALK,
    RouterAction.INFO_STORE,
    RouterAction.SAFE_REFUSAL,
    RouterAction.OUT_OF_SCOPE,
}
INTENT_STAGES = {
    "negotiate": Stage.NEGOTIATING,
    "objection": Stage.NEGOTIATING,
    "visit": Stage.SCHEDULING,
    "testdrive": Stage.SCHEDULING,
    "compare": Stage.COMPARING,
}


def _utcnow() -> datetime:
    """Current UTC time. Extracted for test mocking."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class StageEntry:
    stage: Stage
    at: datetime


@dataclass(frozen=True)
class FSMState:
    stage: Stage
    entered_at: datetime
    previous_stage: Optional[Stage] = None
    turn_count: int = 0
    stage_history: tuple = ()

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "previous_stage": self.previous_stage.value if self.previous_stage else None,
            "entered_at": self.entered_at.isoformat(),
            "turn_count": self.turn_count,
            "stage_history": [{"stage": e.stage.value, "at": e.at.isoformat()} for e in self.stage_history],
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "FSMState":
        previous = data.get("previous_stage")
        return cls(
            stage=Stage(data["stage"]),
            previous_stage=Stage(previous) if previous else None,
            entered_at=datetime.fromisoformat(data["entered_at"]),
            turn_count=int(data.get("turn_count", 0)),
            stage_history=tuple(
                StageEntry(Stage(e["stage"]), datetime.fromisoformat(e["at"]))
                for e in data.get("stage_history") or []
            ),
        )


@dataclass(frozen=True)
class TransitionContext:
    action: Optional[RouterAction] = None
    slots_filled: tuple = ()
    has_car_shown: bool = False
    has_handoff: bool = False
    minutes_since_last_message: float = 0.0
    user_intent: str = "idle"

    @property
    def is_minimally_qualified(self) -> bool:
        return len(self.slots_filled) >= MIN_QUALIFYING_SLOTS or self.has_car_shown


@dataclass(frozen=True)
class TransitionResult:
    current_stage: Stage
    transitioned: bool
    prompt: str


def create_initial_fsm_state(now: Optional[datetime] = None) -> FSMState:
    now = now or _utcnow()
    return FSMState(
        stage=Stage.GREETING,
        entered_at=now,
        stage_history=(StageEntry(Stage.GREETING, now),),
    )


def next_stage(current: Stage, ctx: TransitionContext,
               idle_after_minutes: float = IDLE_AFTER_MINUTES) -> Stage:
    """Pure stage decision for one turn."""
    if ctx.minutes_since_last_message > idle_after_minutes:
        return Stage.IDLE

    if ctx.action == RouterAction.HANDOFF_SELLER or ctx.has_handoff:
        if ctx.is_minimally_qualified:
            return Stage.HANDOFF
        logger.debug(
            f"Holding handoff: {len(ctx.slots_filled)} slots filled, car shown={ctx.has_car_shown}"
        )
        return Stage.QUALIFYING if current == Stage.GREETING else current

    if ctx.action in HOLD_ACTIONS:
        return current
    if ctx.action in ACTION_STAGES:
        return ACTION_STAGES[ctx.action]
    if ctx.action == RouterAction.CALL_STOCK_API:
        return Stage.COMPARING if ctx.has_car_shown else Stage.BROWSING

    if ctx.user_intent in INTENT_STAGES:
        return INTENT_STAGES[ctx.user_intent]

    filled = len(ctx.slots_filled)
    if filled >= MIN_QUALIFYING_SLOTS and not ctx.has_car_shown:
        return Stage.BROWSING
    if filled < MIN_QUALIFYING_SLOTS and current == Stage.GREETING:
        return Stage.QUALIFYING
    return current


@dataclass
class StageMachine:
    idle_after_minutes: float = IDLE_AFTER_MINUTES
    history_limit: int = HISTORY_LIMIT

    def transition(self, fsm_state: Optional[FSMState], ctx: TransitionContext,
                   now: Optional[datetime] = None) -> tuple[FSMState, TransitionResult]:
        """Advance one turn. Returns the new FSM state and what the caller needs for prompting."""
        now = now or _utcnow()
        if fsm_state is None:
            fsm_state = create_initial_fsm_state(now)

        target = next_stage(fsm_state.stage, ctx, self.idle_after_minutes)
        transitioned = target != fsm_state.stage

        if transitioned:
            logger.info(f"Stage transition: {fsm_state.stage.value} -> {target.value}")
            history = (fsm_state.stage_history + (StageEntry(target, now),))[-self.history_limit:]
            new_state = FSMState(
                stage=target,
                previous_stage=fsm_state.stage,
                entered_at=now,
                turn_count=fsm_state.turn_count + 1,
                stage_history=history,
            )
        else:
            new_state = replace(fsm_state, turn_count=fsm_state.turn_count + 1)

        return new_state, TransitionResult(
            current_stage=new_state.stage,
            transitioned=transitioned,
            prompt=get_stage_prompt(new_state.stage),
        )

    def reset(self, now: Optional[datetime] = None) -> FSMState:
        return create_initial_fsm_state(now)

    @staticmethod
    def summary(fsm_state: Optional[FSMState]) -> str:
        if fsm_state is None:
            return "FSM: new conversation (greeting)"
        previous = fsm_state.previous_stage.value if fsm_state.previous_stage else "n/a"
        return f"FSM: {fsm_state.stage.value} | turn: {fsm_state.turn_count} | previous: {previous}"
