"""Deterministic decision router.

Runs before any generative call and its decision is final. The cascade is
an ordered list of rules; the first rule whose predicate matches produces
the RouterResult and no later rule is evaluated.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Optional

from dealerflow import classifiers
from dealerflow.conversation import (
    ConversationState,
    StateUpdate,
    apply_state_update,
    cancel_open_actions,
    merge_slots,
)
from dealerflow.extraction import SlotExtractor, SlotSignals
from dealerflow.text import match_any_keyword

logger = logging.getLogger(__name__)

LOW_SIGNAL_HANDOFF_THRESHOLD = 2
MIN_GENERIC_SLOTS_FOR_STOCK = 2

# Wording that replaces what the user said before instead of adding to it.
SUPERSEDE_KEYWORDS = frozenset({
    "na verdade", "mudei de ideia", "prefiro", "agora quero", "melhor um", "melhor uma",
    "pensando bem", "ao inves", "em vez",
})


class RouterAction(Enum):
    SILENT = "SILENT"
    SAFE_REFUSAL = "SAFE_REFUSAL"
    EXIT = "EXIT"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"
    SMALLTALK = "SMALLTALK"
    CONFIRM_CONTEXT = "CONFIRM_CONTEXT"
    HANDOFF_SELLER = "HANDOFF_SELLER"
    INFO_STORE = "INFO_STORE"
    FOLLOWUP = "FOLLOWUP"
    CALL_STOCK_API = "CALL_STOCK_API"
    ASK_ONE_QUESTION = "ASK_ONE_QUESTION"


class ToolCall(Enum):
    INVENTORY_SEARCH = "inventory_search"
    SELLER_HANDOFF = "seller_handoff"
    FOLLOWUP_SCHEDULE = "followup_schedule"


@dataclass(frozen=True)
class RouterResult:
    action: RouterAction
    reason: str
    tool_to_call: Optional[ToolCall] = None
    missing_slot: Optional[str] = None
    state_update: Optional[StateUpdate] = None

    def to_dict(self) -> dict:
        update = self.state_update
        return {
            "action": self.action.value,
            "reason": self.reason,
            "tool_to_call": self.tool_to_call.value if self.tool_to_call else None,
            "missing_slot": self.missing_slot,
            "state_update": None if update is None else {
                "slots": dict(update.slots) if update.slots is not None else None,
                "low_signal_count": update.low_signal_count,
                "do_not_contact": update.do_not_contact,
                "pending_actions": (
                    [{"type": a.type.value, "status": a.status.value} for a in update.pending_actions]
                    if update.pending_actions is not None else None
                ),
                "intent": update.intent,
            },
        }


@dataclass
class Turn:
    """Everything the rules look at for one aggregated message."""

    message: str
    state: ConversationState
    signals: SlotSignals
    new_slots: dict
    updated: ConversationState
    base_update: Optional[StateUpdate]
    asked_slots: frozenset = field(default_factory=frozenset)

    @property
    def has_new_signal(self) -> bool:
        return bool(self.new_slots)


@dataclass(frozen=True)
class Rule:
    name: str
    predicate: Callable[[Turn], bool]
    handler: Callable[[Turn], Optional[RouterResult]]


# --- slot gating ---

def has_minimum_slots_for_stock(state: ConversationState) -> bool:
    """A model or brand alone is enough; generic searches need two generic slots."""
    slots = state.slots
    if slots.get("make") or slots.get("model"):
        return True
    generic = [
        bool(slots.get("budget_max") or slots.get("budget_min")),
        bool(slots.get("category")),
        bool(slots.get("motor")),
        bool(slots.get("year_min") or slots.get("year_max")),
        bool(slots.get("color")),
        bool(slots.get("payment_method")),
        bool(slots.get("has_trade_in")),
    ]
    return sum(generic) >= MIN_GENERIC_SLOTS_FOR_STOCK


def get_missing_slot(state: ConversationState, asked_slots: Iterable[str] = ()) -> Optional[str]:
    """Next qualifying question, skipping anything already asked in this conversation."""
    slots = state.slots
    asked = set(asked_slots)
    specific = bool(slots.get("make") or slots.get("model"))

    candidates = []
    if not slots.get("category") and not specific:
        candidates.append("category")
    if not slots.get("budget_max") and not slots.get("model"):
        candidates.append("budget_max")
    if not slots.get("payment_method"):
        candidates.append("payment_method")
    if slots.get("has_trade_in") and not slots.get("trade_in_model"):
        candidates.append("trade_in_model")
    if not slots.get("motor") and not slots.get("category") and not slots.get("model"):
        candidates.append("motor")
    if not slots.get("transmission") and not slots.get("model"):
        candidates.append("transmission")

    for name in candidates:
        if name not in asked:
            return name
    return None


# --- rule handlers ---

def _silent(turn: Turn) -> RouterResult:
    return RouterResult(RouterAction.SILENT, "Handoff active - bot does not respond")


def _safe_refusal(turn: Turn) -> RouterResult:
    return RouterResult(RouterAction.SAFE_REFUSAL, "Safety violation detected")


def _exit(turn: Turn) -> RouterResult:
    return RouterResult(
        RouterAction.EXIT,
        "User expressed exit intent",
        state_update=StateUpdate(
            do_not_contact=True,
            pending_actions=cancel_open_actions(turn.state.pending_actions),
        ),
    )


def _fixed(action: RouterAction, reason: str, tool: Optional[ToolCall] = None):
    def handler(turn: Turn) -> RouterResult:
        return RouterResult(action, reason, tool_to_call=tool, state_update=turn.base_update)
    return handler


def _low_signal(turn: Turn) -> Optional[RouterResult]:
    count = turn.state.low_signal_count + 1
    if count < LOW_SIGNAL_HANDOFF_THRESHOLD:
        return None
    return RouterResult(
        RouterAction.HANDOFF_SELLER,
        f"{count} low-signal responses - escalating to human",
        tool_to_call=ToolCall.SELLER_HANDOFF,
        state_update=StateUpdate(low_signal_count=count),
    )


def _followup(turn: Turn) -> RouterResult:
    return RouterResult(
        RouterAction.FOLLOWUP,
        "Pending follow-up for this lead",
        tool_to_call=ToolCall.FOLLOWUP_SCHEDULE,
        state_update=turn.base_update,
    )


def _gated_search(label: str):
    def handler(turn: Turn) -> Optional[RouterResult]:
        if has_minimum_slots_for_stock(turn.updated):
            return RouterResult(
                RouterAction.CALL_STOCK_API,
                f"{label} with minimum slots fulfilled",
                tool_to_call=ToolCall.INVENTORY_SEARCH,
                state_update=turn.base_update,
            )
        missing = get_missing_slot(turn.updated, turn.asked_slots)
        if missing is None:
            return None
        return RouterResult(
            RouterAction.ASK_ONE_QUESTION,
            f"{label} but missing slot: {missing}",
            missing_slot=missing,
            state_update=turn.base_update,
        )
    return handler


def _ask_one_question(turn: Turn) -> Optional[RouterResult]:
    missing = get_missing_slot(turn.updated, turn.asked_slots)
    if missing is None:
        return None
    return RouterResult(
        RouterAction.ASK_ONE_QUESTION,
        f"Need to collect slot: {missing}",
        missing_slot=missing,
        state_update=turn.base_update,
    )


def _always(turn: Turn) -> bool:
    return True


RULES = (
    Rule("human_handoff", lambda t: t.state.handoff.is_human, _silent),
    Rule("safety", lambda t: classifiers.is_safety_violation(t.message), _safe_refusal),
    Rule("exit", lambda t: classifiers.is_exit_intent(t.message), _exit),
    Rule(
        "out_of_scope",
        lambda t: classifiers.is_out_of_scope(t.message),
        _fixed(RouterAction.OUT_OF_SCOPE, "Message not related to vehicles - politely redirect"),
    ),
    Rule(
        "greeting",
        lambda t: classifiers.is_greeting(t.message),
        _fixed(RouterAction.SMALLTALK, "Simple greeting - respond with welcome message"),
    ),
    Rule(
        "confirmation",
        lambda t: classifiers.is_confirmation(t.message, has_context=t.state.has_context),
        _fixed(RouterAction.CONFIRM_CONTEXT, "User confirmed - continue with previous context"),
    ),
    Rule(
        "frustration",
        lambda t: classifiers.is_frustrated(t.message),
        _fixed(RouterAction.HANDOFF_SELLER, "User frustrated - escalating to human", ToolCall.SELLER_HANDOFF),
    ),
    Rule(
        "negotiation",
        lambda t: classifiers.is_negotiation_intent(t.message),
        _fixed(RouterAction.HANDOFF_SELLER, "User expressed negotiation intent", ToolCall.SELLER_HANDOFF),
    ),
    Rule(
        "store_info",
        lambda t: classifiers.is_store_info_request(t.message),
        _fixed(RouterAction.INFO_STORE, "User asking for store information"),
    ),
    Rule(
        "low_signal",
        lambda t: classifiers.is_low_signal(t.message) and not t.has_new_signal,
        _low_signal,
    ),
    Rule("followup", lambda t: t.state.has_pending_followup, _followup),
    Rule("price_inquiry", lambda t: classifiers.is_price_inquiry(t.message), _gated_search("Price inquiry")),
    Rule(
        "stock_request",
        lambda t: classifiers.is_stock_request(t.message) or has_minimum_slots_for_stock(t.updated),
        _gated_search("Stock request"),
    ),
    Rule("missing_slot", _always, _ask_one_question),
    Rule(
        "fallback",
        _always,
        _fixed(RouterAction.SMALLTALK, "No specific intent detected, engaging in conversation"),
    ),
)


def is_superseding(message: str) -> bool:
    return match_any_keyword(message, SUPERSEDE_KEYWORDS)


def build_turn(message: str, state: ConversationState, asked_slots: Iterable[str] = (),
               extractor: Optional[SlotExtractor] = None) -> Turn:
    """Extract signals and precompute the base patch shared by most rules."""
    extractor = extractor or _extractor
    signals = extractor.extract(message)
    new_slots = merge_slots(state.slots, signals.as_slots(), replace_existing=is_superseding(message))

    low_signal = classifiers.is_low_signal(message) and not new_slots
    if new_slots:
        low_signal_count = 0 if state.low_signal_count else None
    elif low_signal:
        low_signal_count = state.low_signal_count + 1
    else:
        low_signal_count = None

    base = StateUpdate(
        slots={**state.slots, **new_slots} if new_slots else None,
        low_signal_count=low_signal_count,
    )
    base_update = None if base.is_empty else base
    return Turn(
        message=message,
        state=state,
        signals=signals,
        new_slots=new_slots,
        updated=apply_state_update(state, base_update) if base_update else state,
        base_update=base_update,
        asked_slots=frozenset(asked_slots),
    )


def route(message: str, state: ConversationState, asked_slots: Iterable[str] = (),
          rules=RULES, extractor: Optional[SlotExtractor] = None) -> RouterResult:
    """Decide exactly one action for an aggregated turn."""
    turn = build_turn(message or "", state, asked_slots, extractor)
    for rule in rules:
        if not rule.predicate(turn):
            continue
        result = rule.handler(turn)
        if result is not None:
            log_decision(rule.name, result)
            return result
    # The fallback rule always matches; reaching here means a custom rule set without one.
    result = RouterResult(RouterAction.SMALLTALK, "No rule matched", state_update=turn.base_update)
    log_decision("none", result)
    return result


def log_decision(rule_name: str, result: RouterResult) -> None:
    logger.info(f"[{rule_name}] {result.action.value}: {result.reason}")
    if result.tool_to_call:
        logger.info(f"Tool: {result.tool_to_call.value}")
    if result.missing_slot:
        logger.info(f"Missing slot: {result.missing_slot}")
    if result.state_update is not None:
        logger.debug(f"State update: {result.state_update}")


_extractor = SlotExtractor()
