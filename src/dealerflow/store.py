"""Reference key-value store for conversation state.

Production callers plug in their own backend with the same async methods.
Values round-trip through their dict form, so readers never share objects
with the store.
"""

import logging
from typing import Optional

from dealerflow.conversation import SLOT_NAMES, ConversationState
from dealerflow.fsm import FSMState

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Backend failure while loading or saving state."""


class InMemoryStore:
    def __init__(self):
        self._states: dict[str, dict] = {}
        self._fsm: dict[str, dict] = {}
        self._asked: dict[str, list] = {}

    async def get_state(self, phone: str) -> Optional[ConversationState]:
        data = self._states.get(phone)
        return ConversationState.from_dict(data) if data is not None else None

    async def save_state(self, state: ConversationState) -> None:
        self._states[state.phone] = state.to_dict()

    async def get_fsm(self, phone: str) -> Optional[FSMState]:
        data = self._fsm.get(phone)
        return FSMState.from_dict(data) if data is not None else None

    async def save_fsm(self, phone: str, fsm_state: FSMState) -> None:
        self._fsm[phone] = fsm_state.to_dict()

    async def get_asked_slots(self, phone: str) -> list[str]:
        return list(self._asked.get(phone, []))

    async def mark_slot_asked(self, phone: str, slot: str) -> None:
        if slot not in SLOT_NAMES:
            logger.warning("Ignoring unknown slot %s for %s", slot, phone)
            return
        asked = self._asked.setdefault(phone, [])
        if slot not in asked:
            asked.append(slot)

    async def clear_asked_slots(self, phone: str) -> None:
        self._asked.pop(phone, None)

    async def delete(self, phone: str) -> None:
        self._states.pop(phone, None)
        self._fsm.pop(phone, None)
        self._asked.pop(phone, None)
