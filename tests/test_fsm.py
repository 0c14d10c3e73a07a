from datetime import timedelta

import pytest
from dealerflow.fsm import (
    HISTORY_LIMIT,
    FSMState,
    StageMachine,
    TransitionContext,
    create_initial_fsm_state,
    next_stage,
)
from dealerflow.router import RouterAction
from dealerflow.stages import Stage


def ctx(**kwargs) -> TransitionContext:
    return TransitionContext(**kwargs)


class TestStage:
    def test_properties(self):
        assert Stage.QUALIFYING.is_engaged
        assert Stage.NEGOTIATING.is_closing
        assert Stage.HANDOFF.is_terminal
        assert not Stage.GREETING.is_engaged


class TestNextStage:
    def test_idle_after_timeout(self):
        assert next_stage(Stage.BROWSING, ctx(minutes_since_last_message=61)) == Stage.IDLE

    def test_not_idle_at_exactly_timeout(self):
        assert next_stage(Stage.BROWSING, ctx(minutes_since_last_message=60)) == Stage.BROWSING

    def test_handoff_refused_when_unqualified(self):
        handoff = ctx(action=RouterAction.HANDOFF_SELLER, slots_filled=("category",))
        assert next_stage(Stage.GREETING, handoff) == Stage.QUALIFYING
        assert next_stage(Stage.BROWSING, handoff) == Stage.BROWSING

    def test_handoff_with_two_slots(self):
        handoff = ctx(action=RouterAction.HANDOFF_SELLER, slots_filled=("category", "budget_max"))
        assert next_stage(Stage.QUALIFYING, handoff) == Stage.HANDOFF

    def test_handoff_with_car_shown(self):
        handoff = ctx(has_handoff=True, has_car_shown=True)
        assert next_stage(Stage.COMPARING, handoff) == Stage.HANDOFF

    @pytest.mark.parametrize("action", [
        RouterAction.SMALLTALK,
        RouterAction.INFO_STORE,
        RouterAction.SAFE_REFUSAL,
        RouterAction.OUT_OF_SCOPE,
    ])
    def test_hold_actions_keep_stage(self, action):
        assert next_stage(Stage.BROWSING, ctx(action=action, user_intent="visit")) == Stage.BROWSING

    def test_ask_goes_to_qualifying(self):
        assert next_stage(Stage.BROWSING, ctx(action=RouterAction.ASK_ONE_QUESTION)) == Stage.QUALIFYING

    def test_exit_goes_idle(self):
        assert next_stage(Stage.BROWSING, ctx(action=RouterAction.EXIT)) == Stage.IDLE

    def test_stock_call(self):
        assert next_stage(Stage.QUALIFYING, ctx(action=RouterAction.CALL_STOCK_API)) == Stage.BROWSING
        shown = ctx(action=RouterAction.CALL_STOCK_API, has_car_shown=True)
        assert next_stage(Stage.BROWSING, shown) == Stage.COMPARING

    def test_intent_mapping(self):
        assert next_stage(Stage.BROWSING, ctx(user_intent="negotiate")) == Stage.NEGOTIATING
        assert next_stage(Stage.BROWSING, ctx(user_intent="visit")) == Stage.SCHEDULING
        assert next_stage(Stage.BROWSING, ctx(user_intent="compare")) == Stage.COMPARING

    def test_slot_heuristics(self):
        assert next_stage(Stage.GREETING, ctx()) == Stage.QUALIFYING
        assert next_stage(Stage.QUALIFYING, ctx(slots_filled=("make", "model"))) == Stage.BROWSING
        assert next_stage(Stage.COMPARING, ctx(slots_filled=("make",), has_car_shown=True)) == Stage.COMPARING


class TestStageMachine:
    def test_first_turn_starts_from_greeting(self, machine, t0):
        fsm_state, result = machine.transition(None, ctx(action=RouterAction.SMALLTALK), t0)
        assert fsm_state.stage == Stage.GREETING
        assert fsm_state.turn_count == 1
        assert result.transitioned is False
        assert "BOAS-VINDAS" in result.prompt

    def test_transition_records_history(self, machine, t0):
        start = create_initial_fsm_state(t0)
        later = t0 + timedelta(minutes=1)
        fsm_state, result = machine.transition(start, ctx(action=RouterAction.ASK_ONE_QUESTION), later)
        assert result.transitioned is True
        assert result.current_stage == Stage.QUALIFYING
        assert fsm_state.previous_stage == Stage.GREETING
        assert fsm_state.entered_at == later
        assert [e.stage for e in fsm_state.stage_history] == [Stage.GREETING, Stage.QUALIFYING]

    def test_turn_count_increments_without_transition(self, machine, t0):
        fsm_state = create_initial_fsm_state(t0)
        for _ in range(3):
            fsm_state, _ = machine.transition(fsm_state, ctx(action=RouterAction.SMALLTALK), t0)
        assert fsm_state.turn_count == 3
        assert fsm_state.stage == Stage.GREETING

    def test_history_is_capped(self, machine, t0):
        fsm_state = create_initial_fsm_state(t0)
        actions = [RouterAction.ASK_ONE_QUESTION, RouterAction.CALL_STOCK_API]
        for i in range(30):
            fsm_state, _ = machine.transition(fsm_state, ctx(action=actions[i % 2]), t0 + timedelta(minutes=i))
        assert len(fsm_state.stage_history) == HISTORY_LIMIT
        assert fsm_state.stage_history[-1].stage == fsm_state.stage

    def test_custom_idle_timeout(self, t0):
        machine = StageMachine(idle_after_minutes=5)
        fsm_state, _ = machine.transition(None, ctx(minutes_since_last_message=6), t0)
        assert fsm_state.stage == Stage.IDLE

    def test_dict_round_trip(self, machine, t0):
        fsm_state, _ = machine.transition(None, ctx(action=RouterAction.ASK_ONE_QUESTION), t0)
        assert FSMState.from_dict(fsm_state.to_dict()) == fsm_state

    def test_summary(self, machine, t0):
        assert StageMachine.summary(None) == "FSM: new conversation (greeting)"
        fsm_state, _ = machine.transition(None, ctx(action=RouterAction.ASK_ONE_QUESTION), t0)
        assert StageMachine.summary(fsm_state) == "FSM: qualifying | turn: 1 | previous: greeting"

    def test_reset(self, machine, t0):
        assert machine.reset(t0) == create_initial_fsm_state(t0)
