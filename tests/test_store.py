import pytest
from dealerflow.fsm import create_initial_fsm_state


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_missing_phone(self, store):
        assert await store.get_state("+5511000000000") is None
        assert await store.get_fsm("+5511000000000") is None
        assert await store.get_asked_slots("+5511000000000") == []

    @pytest.mark.asyncio
    async def test_state_is_copied_on_save(self, store, state):
        state.slots["model"] = "onix"
        await store.save_state(state)
        state.slots["model"] = "polo"
        loaded = await store.get_state(state.phone)
        assert loaded.slots == {"model": "onix"}
        assert loaded is not state

    @pytest.mark.asyncio
    async def test_fsm_round_trip(self, store, t0):
        fsm_state = create_initial_fsm_state(t0)
        await store.save_fsm("+5511999990000", fsm_state)
        assert await store.get_fsm("+5511999990000") == fsm_state

    @pytest.mark.asyncio
    async def test_asked_slots(self, store):
        await store.mark_slot_asked("p", "budget_max")
        await store.mark_slot_asked("p", "budget_max")
        await store.mark_slot_asked("p", "not_a_slot")
        assert await store.get_asked_slots("p") == ["budget_max"]
        await store.clear_asked_slots("p")
        assert await store.get_asked_slots("p") == []

    @pytest.mark.asyncio
    async def test_delete_forgets_everything(self, store, state, t0):
        await store.save_state(state)
        await store.save_fsm(state.phone, create_initial_fsm_state(t0))
        await store.mark_slot_asked(state.phone, "category")
        await store.delete(state.phone)
        assert await store.get_state(state.phone) is None
        assert await store.get_fsm(state.phone) is None
        assert await store.get_asked_slots(state.phone) == []
