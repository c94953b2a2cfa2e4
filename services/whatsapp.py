"""WhatsApp transport through a WAHA (WhatsApp HTTP API) server.

WAHA owns the WhatsApp session: QR pairing, credentials, encryption and the
socket. It reports to us by webhook and accepts outbound messages over HTTP.
This module turns webhook bodies into ``InboundMessage`` / status events,
sends replies, and keeps the session alive with ``SessionSupervisor``.
"""
from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from rental_bot.config import load_config, section
from services import metrics
from services.retry import retry_with_backoff_async

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:3000"
DEFAULT_SESSION = "default"


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    LOGGED_OUT = "logged_out"


_WAHA_STATUS_MAP = {
    "STARTING": ConnectionState.CONNECTING,
    "SCAN_QR_CODE": ConnectionState.CONNECTING,
    "WORKING": ConnectionState.CONNECTED,
    "FAILED": ConnectionState.DISCONNECTED,
    "STOPPED": ConnectionState.LOGGED_OUT,
}

_RESUME_STATUSES = {"SCAN_QR_CODE", "WORKING"}


@dataclass
class InboundMessage:
    sender_id: str
    text: str
    from_self: bool = False
    message_id: str = ""


@dataclass
class StatusEvent:
    status: str
    error: Optional[str] = None


def _message_text(payload: Dict[str, Any]) -> str:
    body = payload.get("body")
    if isinstance(body, str) and body.strip():
        return body
    # Some engines only fill the raw message for extended text.
    data = payload.get("_data") if isinstance(payload.get("_data"), dict) else {}
    message = data.get("message") if isinstance(data.get("message"), dict) else {}
    extended = message.get("extendedTextMessage")
    for candidate in (
        message.get("conversation"),
        extended.get("text") if isinstance(extended, dict) else None,
    ):
        if isinstance(candidate, str) and candidate.strip():
            return candidate
    return ""


def parse_webhook(body: Dict[str, Any]) -> Optional[Any]:
    """Turn a WAHA webhook body into an ``InboundMessage`` or ``StatusEvent``.

    Returns None for events the bot does not act on.
    """
    if not isinstance(body, dict):
        return None
    event = str(body.get("event") or "")
    payload = body.get("payload") if isinstance(body.get("payload"), dict) else {}

    if event == "session.status":
        status = str(payload.get("status") or "").upper()
        if not status:
            return None
        error = payload.get("error")
        return StatusEvent(status=status, error=str(error) if error else None)

    # "message.any" repeats each inbound "message" event, so only one is handled.
    if event == "message":
        sender = str(payload.get("from") or "").strip()
        if not sender:
            return None
        return InboundMessage(
            sender_id=sender,
            text=_message_text(payload),
            from_self=payload.get("fromMe") is True,
            message_id=str(payload.get("id") or ""),
        )

    return None


class ConnectionTracker:
    """Connection state as reported by WAHA.

    ``LOGGED_OUT`` never triggers a reconnect. Only a fresh pairing, reported as
    ``SCAN_QR_CODE`` or ``WORKING``, moves the tracker out of it.
    """

    def __init__(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.last_error: Optional[str] = None

    @property
    def should_reconnect(self) -> bool:
        return self.state == ConnectionState.DISCONNECTED

    def apply(self, waha_status: str, error: Optional[str] = None) -> ConnectionState:
        status = str(waha_status or "").upper()
        if self.state == ConnectionState.LOGGED_OUT:
            if status not in _RESUME_STATUSES:
                logger.info("Ignoring WAHA status %s: session is logged out", waha_status)
                return self.state
            logger.info("WhatsApp session paired again (%s)", status)
            self.reset()

        new_state = _WAHA_STATUS_MAP.get(status)
        if new_state is None:
            logger.warning("Unknown WAHA session status: %s", waha_status)
            return self.state

        if error:
            self.last_error = error
        if new_state != self.state:
            logger.info("WhatsApp connection %s -> %s", self.state.value, new_state.value)
            metrics.record_connection_state(new_state.value)
        self.state = new_state
        return self.state

    def mark_connecting(self) -> None:
        if self.state == ConnectionState.DISCONNECTED:
            self.state = ConnectionState.CONNECTING

    def reset(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.last_error = None


class WahaClient:
    """Async client for the few WAHA endpoints the bot needs."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        session: str = DEFAULT_SESSION,
        api_key: str = "",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session
        headers = {"X-Api-Key": api_key} if api_key else {}
        self._http = http or httpx.AsyncClient(base_url=self.base_url, headers=headers, timeout=timeout)

    @classmethod
    def from_config(cls, config: Optional[Dict[str, Any]] = None) -> "WahaClient":
        wa_cfg = section("whatsapp", config or load_config())
        env_var_name = str(wa_cfg.get("api_key_env_var", "WAHA_API_KEY"))
        return cls(
            base_url=str(wa_cfg.get("base_url", DEFAULT_BASE_URL)),
            session=str(wa_cfg.get("session", DEFAULT_SESSION)),
            api_key=os.getenv(env_var_name, "").strip(),
            timeout=float(wa_cfg.get("timeout_seconds", 30)),
        )

    async def send_text(self, chat_id: str, text: str) -> bool:
        payload = {"chatId": chat_id, "text": text, "session": self.session}
        try:
            response = await self._http.post("/api/sendText", json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("Failed to send reply to %s: %s", chat_id, exc)
            metrics.record_send(False)
            return False
        metrics.record_send(True)
        return True

    async def start_session(self) -> None:
        response = await self._http.post(f"/api/sessions/{self.session}/start")
        # WAHA answers 422 when the session is already running.
        if response.status_code == 422:
            return
        response.raise_for_status()

    async def aclose(self) -> None:
        await self._http.aclose()


class SessionSupervisor:
    """Feeds WAHA status events into a tracker and restarts dropped sessions."""

    def __init__(
        self,
        client: WahaClient,
        tracker: Optional[ConnectionTracker] = None,
        *,
        max_retries: int = 5,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
    ):
        self.client = client
        self.tracker = tracker or ConnectionTracker()
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._reconnect_task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(cls, client: WahaClient, config: Optional[Dict[str, Any]] = None) -> "SessionSupervisor":
        reconnect = section("whatsapp", config or load_config()).get("reconnect", {})
        reconnect = reconnect if isinstance(reconnect, dict) else {}
        return cls(
            client,
            max_retries=int(reconnect.get("max_retries", 5)),
            base_delay=float(reconnect.get("base_delay", 2.0)),
            max_delay=float(reconnect.get("max_delay", 60.0)),
        )

    @property
    def state(self) -> ConnectionState:
        return self.tracker.state

    def on_status(self, event: StatusEvent) -> ConnectionState:
        state = self.tracker.apply(event.status, event.error)
        if state == ConnectionState.LOGGED_OUT:
            logger.warning("WhatsApp session logged out; pair again through WAHA to resume.")
        elif self.tracker.should_reconnect:
            self._schedule_reconnect()
        return state

    def _schedule_reconnect(self) -> None:
        if self._reconnect_task is not None and not self._reconnect_task.done():
            return
        self._reconnect_task = asyncio.create_task(self.reconnect())

    async def reconnect(self) -> bool:
        restart = retry_with_backoff_async(
            max_retries=self._max_retries,
            base_delay=self._base_delay,
            max_delay=self._max_delay,
            retry_on=(httpx.HTTPError,),
        )(self.client.start_session)
        logger.info("Restarting WhatsApp session '%s'", self.client.session)
        try:
            await restart()
        except httpx.HTTPError as exc:
            logger.error("Giving up on WhatsApp session restart: %s", exc)
            return False
        self.tracker.mark_connecting()
        return True

    async def start(self) -> None:
        """Ask WAHA to start the session once at boot."""
        if await self.reconnect():
            return
        logger.warning("WhatsApp session did not start; waiting for WAHA status events.")

    async def stop(self) -> None:
        task = self._reconnect_task
        self._reconnect_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
