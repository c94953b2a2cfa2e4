"""HTTP surface: liveness for the hosting platform and the WAHA webhook."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.responses import PlainTextResponse

from rental_bot.config import load_config, section
from services import metrics as metrics_service
from services.bot import MessageHandler
from services.health import get_system_health
from services.store import ToolStore, build_store
from services.whatsapp import InboundMessage, SessionSupervisor, StatusEvent, WahaClient, parse_webhook

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[ToolStore] = None,
    client: Optional[WahaClient] = None,
    handler: Optional[MessageHandler] = None,
    config: Optional[Dict[str, Any]] = None,
) -> FastAPI:
    cfg = config or load_config()
    store = store or build_store(cfg)
    client = client or WahaClient.from_config(cfg)
    handler = handler or MessageHandler.from_config(store, cfg)
    supervisor = SessionSupervisor.from_config(client, cfg)
    start_on_boot = bool(section("whatsapp", cfg).get("start_session_on_boot", True))

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        if start_on_boot:
            await supervisor.start()
        try:
            yield
        finally:
            await supervisor.stop()
            await client.aclose()

    app = FastAPI(title="Tool Rental Bot", version="1.0.0", lifespan=lifespan)
    app.state.config = cfg
    app.state.store = store
    app.state.client = client
    app.state.handler = handler
    app.state.supervisor = supervisor

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        return "Bot is running"

    @app.get("/ping", response_class=PlainTextResponse)
    def ping() -> str:
        return "pong"

    @app.post("/webhook/waha")
    async def waha_webhook(request: Request, background_tasks: BackgroundTasks) -> Dict[str, Any]:
        try:
            body = await request.json()
        except ValueError:
            logger.warning("Ignoring webhook with a non-JSON body")
            return {"ok": False, "reason": "invalid json"}

        event = parse_webhook(body)
        if isinstance(event, StatusEvent):
            state = supervisor.on_status(event)
            return {"ok": True, "state": state.value}
        if isinstance(event, InboundMessage):
            background_tasks.add_task(handler.process, event, client)
            return {"ok": True}
        return {"ok": True, "ignored": True}

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        report = get_system_health(store, cfg).to_dict()
        report["connection_state"] = supervisor.state.value
        return report

    @app.get("/api/metrics")
    def metrics() -> Dict[str, Any]:
        return metrics_service.metrics.get_all_metrics()

    return app
