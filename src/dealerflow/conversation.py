"""Per-phone conversation state and the immutable patches applied to it."""

import copy
from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional

from dealerflow.stages import Stage

SLOT_NAMES = (
    "category", "make", "model", "budget_min", "budget_max", "payment_method",
    "has_trade_in", "trade_in_model", "urgency", "transmission", "color",
    "motor", "year_min", "year_max",
)

INTENTS = frozenset({"browse", "compare", "negotiate", "visit", "idle", "followup_response"})


class HandoffMode(Enum):
    BOT = "BOT"
    HUMAN = "HUMAN"


class ActionType(Enum):
    SEND_OPTIONS = "SEND_OPTIONS"
    SEND_SIMULATION = "SEND_SIMULATION"
    SCHEDULE_VISIT = "SCHEDULE_VISIT"
    HANDOFF = "HANDOFF"
    FOLLOWUP = "FOLLOWUP"


class ActionStatus(Enum):
    OPEN = "OPEN"
    DONE = "DONE"
    CANCELLED = "CANCELLED"


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


@dataclass
class Handoff:
    mode: HandoffMode = HandoffMode.BOT
    seller_id: Optional[str] = None
    at: Optional[datetime] = None
    reason: Optional[str] = None

    @property
    def is_human(self) -> bool:
        return self.mode == HandoffMode.HUMAN


@dataclass(frozen=True)
class PendingAction:
    type: ActionType
    status: ActionStatus = ActionStatus.OPEN
    due_at: Optional[datetime] = None
    meta: Mapping = field(default_factory=dict)

    @classmethod
    def open(cls, type: ActionType, meta: Optional[Mapping] = None,
             due_at: Optional[datetime] = None) -> "PendingAction":
        return cls(type=type, due_at=due_at, meta=dict(meta or {}))

    @property
    def is_open(self) -> bool:
        return self.status == ActionStatus.OPEN

    def complete(self) -> "PendingAction":
        return replace(self, status=ActionStatus.DONE) if self.is_open else self

    def cancel(self) -> "PendingAction":
        return replace(self, status=ActionStatus.CANCELLED) if self.is_open else self


def cancel_open_actions(actions) -> tuple:
    """OPEN actions become CANCELLED; DONE and CANCELLED ones are left alone."""
    return tuple(action.cancel() for action in actions)


@dataclass(frozen=True)
class CarShown:
    car_id: str
    shown_at: datetime
    summary: str = ""


@dataclass
class ConversationState:
    phone: str
    lead_id: Optional[str] = None
    stage: Stage = Stage.GREETING
    intent: str = "idle"
    handoff: Handoff = field(default_factory=Handoff)
    slots: dict = field(default_factory=dict)
    cars_shown: list = field(default_factory=list)
    pending_actions: list = field(default_factory=list)
    low_signal_count: int = 0
    has_pending_followup: bool = False
    do_not_contact: bool = False
    last_message_at: Optional[datetime] = None

    def filled_slots(self) -> list[str]:
        return [name for name in SLOT_NAMES if self.slots.get(name) not in (None, "", False)]

    @property
    def has_context(self) -> bool:
        """Something was already collected or shown, so a bare "sim" means something."""
        return bool(self.filled_slots()) or bool(self.cars_shown)

    @property
    def open_actions(self) -> list[PendingAction]:
        return [a for a in self.pending_actions if a.is_open]

    def to_dict(self) -> dict:
        return {
            "phone": self.phone,
            "lead_id": self.lead_id,
            "stage": self.stage.value,
            "intent": self.intent,
            "handoff": {
                "mode": self.handoff.mode.value,
                "seller_id": self.handoff.seller_id,
                "at": _iso(self.handoff.at),
                "reason": self.handoff.reason,
            },
            "slots": dict(self.slots),
            "cars_shown": [
                {"car_id": c.car_id, "shown_at": _iso(c.shown_at), "summary": c.summary}
                for c in self.cars_shown
            ],
            "pending_actions": [
                {"type": a.type.value, "status": a.status.value, "due_at": _iso(a.due_at), "meta": dict(a.meta)}
                for a in self.pending_actions
            ],
            "low_signal_count": self.low_signal_count,
            "has_pending_followup": self.has_pending_followup,
            "do_not_contact": self.do_not_contact,
            "last_message_at": _iso(self.last_message_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "ConversationState":
        handoff = data.get("handoff") or {}
        return cls(
            phone=data["phone"],
            lead_id=data.get("lead_id"),
            stage=Stage(data.get("stage", Stage.GREETING.value)),
            intent=data.get("intent", "idle"),
            handoff=Handoff(
                mode=HandoffMode(handoff.get("mode", HandoffMode.BOT.value)),
                seller_id=handoff.get("seller_id"),
                at=_parse(handoff.get("at")),
                reason=handoff.get("reason"),
            ),
            slots={k: v for k, v in (data.get("slots") or {}).items() if k in SLOT_NAMES},
            cars_shown=[
                CarShown(car_id=c["car_id"], shown_at=_parse(c["shown_at"]), summary=c.get("summary", ""))
                for c in data.get("cars_shown") or []
            ],
            pending_actions=[
                PendingAction(
                    type=ActionType(a["type"]),
                    status=ActionStatus(a.get("status", ActionStatus.OPEN.value)),
                    due_at=_parse(a.get("due_at")),
                    meta=dict(a.get("meta") or {}),
                )
                for a in data.get("pending_actions") or []
            ],
            low_signal_count=int(data.get("low_signal_count", 0)),
            has_pending_followup=bool(data.get("has_pending_followup", False)),
            do_not_contact=bool(data.get("do_not_contact", False)),
            last_message_at=_parse(data.get("last_message_at")),
        )


def create_initial_state(phone: str, lead_id: Optional[str] = None) -> ConversationState:
    return ConversationState(phone=phone, lead_id=lead_id)


@dataclass(frozen=True)
class StateUpdate:
    """Patch returned by the router. None means "leave as is"."""

    slots: Optional[Mapping] = None
    low_signal_count: Optional[int] = None
    do_not_contact: Optional[bool] = None
    pending_actions: Optional[tuple] = None
    intent: Optional[str] = None

    def __post_init__(self):
        if self.slots is not None and not isinstance(self.slots, MappingProxyType):
            object.__setattr__(self, "slots", MappingProxyType(dict(self.slots)))

    @property
    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def merge(self, other: Optional["StateUpdate"]) -> "StateUpdate":
        """Fields set on other win."""
        if other is None:
            return self
        changes = {f.name: getattr(other, f.name) for f in fields(other) if getattr(other, f.name) is not None}
        return replace(self, **changes)


def apply_state_update(state: ConversationState, update: Optional[StateUpdate]) -> ConversationState:
    """Return a new state with the patch applied. The input is never mutated."""
    new_state = copy.deepcopy(state)
    if update is None:
        return new_state
    if update.slots is not None:
        new_state.slots = {k: v for k, v in update.slots.items() if v is not None}
    if update.low_signal_count is not None:
        new_state.low_signal_count = update.low_signal_count
    if update.do_not_contact is not None:
        new_state.do_not_contact = update.do_not_contact
    if update.pending_actions is not None:
        new_state.pending_actions = list(update.pending_actions)
    if update.intent is not None:
        new_state.intent = update.intent
    return new_state


def merge_slots(current: Mapping, extracted: Mapping, replace_existing: bool = False) -> dict:
    """Slots that change when extracted values are merged into current.

    First writer wins: a filled slot is only overwritten when the user
    explicitly superseded an earlier statement.
    """
    changes = {}
    for name, value in extracted.items():
        if name not in SLOT_NAMES or value is None:
            continue
        existing = current.get(name)
        if existing in (None, "", False) or (replace_existing and existing != value):
            if existing != value:
                changes[name] = value
    return changes
