"""Per-turn glue: load, route, patch, advance the stage, persist."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from dealerflow.classifiers import infer_user_intent
from dealerflow.conversation import (
    ActionType,
    CarShown,
    ConversationState,
    Handoff,
    HandoffMode,
    PendingAction,
    apply_state_update,
    create_initial_state,
)
from dealerflow.fsm import FSMState, StageMachine, TransitionContext, TransitionResult
from dealerflow.router import RouterAction, RouterResult, route
from dealerflow.store import StoreError

logger = logging.getLogger(__name__)

# Router actions that leave work for a collaborator to finish.
OPENS_ACTION = {
    RouterAction.CALL_STOCK_API: ActionType.SEND_OPTIONS,
    RouterAction.HANDOFF_SELLER: ActionType.HANDOFF,
}


def _utcnow() -> datetime:
    """Current UTC time. Extracted for test mocking."""
    return datetime.now(timezone.utc)


@dataclass
class TurnDecision:
    phone: str
    result: RouterResult
    transition: TransitionResult
    state: ConversationState
    fsm: FSMState

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "result": self.result.to_dict(),
            "stage": self.transition.current_stage.value,
            "transitioned": self.transition.transitioned,
            "prompt": self.transition.prompt,
            "state": self.state.to_dict(),
        }


class DialogueEngine:
    """Runs turns and collaborator commands against one store.

    With a coordinator, commands join the phone's turn chain, so a turn in
    flight cannot overwrite them. process_turn itself is expected to run on
    that chain already (the coordinator's handler calls it).
    """

    def __init__(self, store, machine: Optional[StageMachine] = None, router=route, coordinator=None):
        self.store = store
        self.machine = machine or StageMachine()
        self.router = router
        self.coordinator = coordinator

    async def load_state(self, phone: str) -> ConversationState:
        """Stored state, or a fresh one when there is none or the store fails."""
        try:
            state = await self.store.get_state(phone)
        except StoreError as e:
            logger.warning("State load failed for %s, starting new conversation: %s", phone, e)
            return create_initial_state(phone)
        return state or create_initial_state(phone)

    async def _load_fsm(self, phone: str) -> Optional[FSMState]:
        try:
            return await self.store.get_fsm(phone)
        except StoreError as e:
            logger.warning("FSM load failed for %s, starting from greeting: %s", phone, e)
            return None

    async def _load_asked(self, phone: str) -> list[str]:
        try:
            return await self.store.get_asked_slots(phone)
        except StoreError as e:
            logger.warning("Asked-slot load failed for %s: %s", phone, e)
            return []

    async def process_turn(self, phone: str, text: str, now: Optional[datetime] = None) -> TurnDecision:
        now = now or _utcnow()
        state = await self.load_state(phone)
        fsm_state = await self._load_fsm(phone)
        asked = await self._load_asked(phone)

        result = self.router(text, state, asked)
        new_state = apply_state_update(state, result.state_update)
        if result.action == RouterAction.ASK_ONE_QUESTION and result.missing_slot:
            await self.store.mark_slot_asked(phone, result.missing_slot)
        action_type = OPENS_ACTION.get(result.action)
        if action_type and not any(a.type == action_type for a in new_state.open_actions):
            new_state.pending_actions.append(PendingAction.open(action_type, meta={"reason": result.reason}))

        minutes = 0.0
        if state.last_message_at is not None:
            minutes = (now - state.last_message_at).total_seconds() / 60
        intent = infer_user_intent(text)
        ctx = TransitionContext(
            action=result.action,
            slots_filled=tuple(new_state.filled_slots()),
            has_car_shown=bool(new_state.cars_shown),
            has_handoff=new_state.handoff.is_human,
            minutes_since_last_message=minutes,
            user_intent=intent,
        )
        new_fsm, transition = self.machine.transition(fsm_state, ctx, now)

        new_state.stage = new_fsm.stage
        if result.action == RouterAction.FOLLOWUP:
            new_state.intent = "followup_response"
        elif intent != "idle":
            new_state.intent = intent
        new_state.last_message_at = now

        await self.store.save_state(new_state)
        await self.store.save_fsm(phone, new_fsm)
        return TurnDecision(phone, result, transition, new_state, new_fsm)

    # --- commands from collaborators ---

    async def _serialized(self, phone: str, task_factory):
        """Run task_factory on the phone's turn chain, so it never interleaves with a turn.

        Must not be awaited from inside a task already running on that chain.
        """
        if self.coordinator is None:
            return await task_factory()
        return await self.coordinator.enqueue(phone, task_factory)

    async def _update(self, phone: str, mutate: Callable[[ConversationState], None]) -> ConversationState:
        async def run():
            state = await self.load_state(phone)
            mutate(state)
            await self.store.save_state(state)
            return state
        return await self._serialized(phone, run)

    async def mark_handoff(self, phone: str, seller_id: Optional[str] = None, reason: Optional[str] = None,
                           now: Optional[datetime] = None) -> ConversationState:
        """A seller took the conversation. The bot stays silent until released."""
        handoff = Handoff(mode=HandoffMode.HUMAN, seller_id=seller_id, at=now or _utcnow(), reason=reason)

        def apply(state):
            state.handoff = handoff

        state = await self._update(phone, apply)
        logger.info(f"Handoff to seller {seller_id} for {phone}: {reason}")
        return state

    async def release_handoff(self, phone: str) -> ConversationState:
        def apply(state):
            state.handoff = Handoff()

        return await self._update(phone, apply)

    async def mark_cars_shown(self, phone: str, cars: Iterable[tuple], now: Optional[datetime] = None) -> ConversationState:
        """Record (car_id, summary) pairs returned by the inventory search."""
        now = now or _utcnow()
        shown = [CarShown(car_id=str(car_id), shown_at=now, summary=summary) for car_id, summary in cars]

        def apply(state):
            state.cars_shown.extend(shown)

        return await self._update(phone, apply)

    async def complete_action(self, phone: str, action_type: ActionType) -> ConversationState:
        """Mark open actions of this type as DONE once the collaborator delivered."""
        def apply(state):
            state.pending_actions = [
                a.complete() if a.type == action_type else a for a in state.pending_actions
            ]

        return await self._update(phone, apply)

    async def reset(self, phone: str) -> None:
        """Forget everything about phone, including slots already asked."""
        await self._serialized(phone, lambda: self.store.delete(phone))
        logger.info(f"Conversation reset for {phone}")
