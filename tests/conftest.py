from datetime import datetime, timezone

import pytest
from dealerflow.conversation import ConversationState, create_initial_state
from dealerflow.fsm import StageMachine
from dealerflow.store import InMemoryStore


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def state() -> ConversationState:
    return create_initial_state("+5511999990000")


@pytest.fixture
def machine():
    return StageMachine()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def t0():
    return datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)
