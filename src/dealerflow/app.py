import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from dealerflow.config import Settings, configure_logging, validate_config
from dealerflow.conversation import ConversationState, apply_state_update, create_initial_state
from dealerflow.coordinator import TurnBatch, TurnCoordinator
from dealerflow.engine import DialogueEngine
from dealerflow.fsm import StageMachine
from dealerflow.router import RouterAction, route
from dealerflow.store import InMemoryStore
from dealerflow.ttl import ExpiringDict

load_dotenv()

logger = logging.getLogger(__name__)

SANDBOX_TTL_SECONDS = 3600
SANDBOX_MAX_SESSIONS = 1000


class SimulateChatRequest(BaseModel):
    session_id: str = Field(min_length=1)
    user_message: str = Field(min_length=1)
    initial_state: Optional[dict] = None


class WebhookMessage(BaseModel):
    phone: str = Field(min_length=1)
    text: str = Field(min_length=1)
    message_id: Optional[str] = None


def _sandbox_state(session_id: str, initial_state: Optional[dict]) -> ConversationState:
    if initial_state is None:
        return create_initial_state(session_id)
    try:
        return ConversationState.from_dict({**initial_state, "phone": session_id})
    except (KeyError, TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"invalid initial_state: {e}") from None


def create_app(settings: Optional[Settings] = None, store=None) -> FastAPI:
    settings = settings or validate_config()

    async def handle_batch(batch: TurnBatch):
        return await engine.process_turn(batch.key, batch.text)

    coordinator = TurnCoordinator(
        handle_batch,
        debounce_seconds=settings.debounce_seconds,
        max_wait_seconds=settings.debounce_max_seconds,
        dedup_ttl_seconds=settings.dedup_ttl_seconds,
        buffer_ttl_seconds=settings.buffer_ttl_seconds,
        lock_ttl_seconds=settings.lock_ttl_seconds,
        max_entries=settings.dedup_max_entries,
    )
    # Commands such as /admin/reset share the coordinator's per-phone chain with turns.
    engine = DialogueEngine(
        store if store is not None else InMemoryStore(),
        machine=StageMachine(idle_after_minutes=settings.idle_after_minutes),
        coordinator=coordinator,
    )
    # session_id -> (state, asked slots); sandbox sessions never touch the store.
    sandbox = ExpiringDict(SANDBOX_TTL_SECONDS, SANDBOX_MAX_SESSIONS, label="sandbox sessions")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        coordinator.start()
        logger.info(f"Turn coordinator started (debounce {settings.debounce_seconds}s)")
        yield
        await coordinator.close()

    app = FastAPI(title="Dealerflow Dialogue Engine", lifespan=lifespan)
    app.state.settings = settings
    app.state.engine = engine
    app.state.coordinator = coordinator

    @app.get("/health")
    async def health():
        return PlainTextResponse("ok")

    @app.post("/simulate/chat")
    async def simulate_chat(req: SimulateChatRequest):
        """Run one turn through the router on a throwaway state."""
        entry = None if req.initial_state is not None else sandbox.get(req.session_id)
        if entry is None:
            state, asked = _sandbox_state(req.session_id, req.initial_state), []
        else:
            state, asked = entry

        result = route(req.user_message, state, asked)
        after = apply_state_update(state, result.state_update)
        if result.action == RouterAction.ASK_ONE_QUESTION and result.missing_slot:
            asked = asked + [result.missing_slot]
        sandbox.set(req.session_id, (after, asked))

        return {
            "result": result.to_dict(),
            "state_before": state.to_dict(),
            "state_after": after.to_dict(),
        }

    @app.post("/webhook/message")
    async def webhook_message(msg: WebhookMessage):
        submitted = await coordinator.submit(msg.phone, msg.text, msg.message_id)
        decision = submitted.result
        return {
            "status": submitted.outcome.value,
            "decision": decision.to_dict() if decision is not None else None,
        }

    @app.post("/admin/reset/{phone}")
    async def admin_reset(phone: str):
        await engine.reset(phone)
        return {"status": "reset", "phone": phone}

    return app


def main() -> None:
    settings = validate_config()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
