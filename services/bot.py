import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from rental_bot.config import load_config, section
from rental_bot.logging import correlation_context, log_with_context
from services import commands, inventory, metrics
from services.commands_registry import IntentKind, get_spec
from services.senders import KnownSenders
from services.store import StoreUnavailable, ToolStore
from services.whatsapp import InboundMessage, WahaClient

logger = logging.getLogger(__name__)

APOLOGY_TEXT = "⚠️ Sorry, I can't reach the tool list right now. Please try again later."


def dispatch(intent: commands.CommandIntent, store: ToolStore) -> str:
    kind = intent.kind

    if kind == IntentKind.LIST_TOOLS:
        return inventory.list_tools(store)

    if kind == IntentKind.GET_STATUS:
        return inventory.get_status(store, intent.argument)

    if kind == IntentKind.RENT_TOOL:
        return inventory.rent_tool(store, intent.argument)

    if kind == IntentKind.RETURN_TOOL:
        return inventory.return_tool(store, intent.argument)

    if kind == IntentKind.MISSING_ARGUMENT:
        return commands.missing_argument_text(get_spec(intent.command_id or ""))

    if kind == IntentKind.HELP:
        return commands.help_text()

    return commands.unknown_command_text(intent.raw)


def handle_message(sender_id: str, raw_text: str, store: ToolStore) -> str:
    """Reply text for one inbound message. Never raises and never returns an empty string."""
    intent = commands.classify(raw_text)
    label = commands.describe(intent)
    logger.info("Message from %s classified as %s", sender_id, label)

    start = time.perf_counter()
    outcome = "ok"
    try:
        reply = dispatch(intent, store)
    except StoreUnavailable:
        logger.exception("Tool store unavailable while handling %s", label)
        metrics.record_store_error("unavailable")
        outcome = "store_unavailable"
        reply = APOLOGY_TEXT
    except Exception:
        logger.exception("Command dispatch failed for %s", label)
        outcome = "error"
        reply = APOLOGY_TEXT
    finally:
        duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_command(intent.kind.value, duration_ms, outcome)
        log_with_context(
            logger,
            logging.INFO,
            f"Handled {label}",
            intent=intent.kind.value,
            outcome=outcome,
            duration_ms=round(duration_ms, 2),
        )

    return reply or commands.help_text()


class SenderLocks:
    """One lock per sender with work in flight, so a sender's replies keep arrival order."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, sender_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(sender_id, asyncio.Lock())
        self._users[sender_id] = self._users.get(sender_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[sender_id] -= 1
            if not self._users[sender_id]:
                del self._users[sender_id]
                del self._locks[sender_id]


class MessageHandler:
    def __init__(self, store: ToolStore, known_senders: Optional[KnownSenders] = None):
        self.store = store
        self.known_senders = known_senders
        self.sender_locks = SenderLocks()

    @classmethod
    def from_config(cls, store: ToolStore, config: Optional[Dict[str, Any]] = None) -> "MessageHandler":
        welcome = section("welcome", config or load_config())
        known: Optional[KnownSenders] = None
        if welcome.get("enabled", True):
            known = KnownSenders(
                max_size=int(welcome.get("max_senders", 1000)),
                ttl_seconds=float(welcome.get("ttl_seconds", 7 * 24 * 3600)),
            )
        return cls(store, known)

    async def _reply_for(self, sender_id: str, raw_text: str) -> str:
        reply = await asyncio.to_thread(handle_message, sender_id, raw_text, self.store)
        if self.known_senders is not None and self.known_senders.mark_seen(sender_id):
            reply = f"{commands.welcome_text()}\n\n{reply}"
        return reply

    async def handle_inbound_message(self, sender_id: str, raw_text: str) -> str:
        async with self.sender_locks.hold(sender_id):
            with correlation_context():
                return await self._reply_for(sender_id, raw_text)

    async def process(self, message: InboundMessage, client: WahaClient) -> Optional[str]:
        """Answer one inbound WhatsApp message. Returns the reply sent, if any."""
        if message.from_self:
            return None
        if not message.text.strip():
            logger.debug("Ignoring message %s from %s without text", message.message_id, message.sender_id)
            return None

        async with self.sender_locks.hold(message.sender_id):
            with correlation_context(message.message_id or None):
                logger.info("Received text message: %s...", message.text[:50])
                try:
                    reply = await self._reply_for(message.sender_id, message.text)
                except Exception:
                    logger.exception("Message handling failed")
                    reply = APOLOGY_TEXT

                try:
                    sent = await client.send_text(message.sender_id, reply)
                except Exception:
                    logger.exception("Sending reply to %s failed", message.sender_id)
                    metrics.record_send(False)
                    sent = False
                if sent:
                    logger.info("Reply sent successfully.")
                return reply
