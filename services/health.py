"""Health check functions for the bot's dependencies."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import requests

from rental_bot.config import load_config, section
from services.store import StoreError, ToolStore
from services.whatsapp import DEFAULT_BASE_URL, DEFAULT_SESSION

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    """Result of a single health check."""

    name: str
    healthy: bool
    latency_ms: float
    message: str
    details: dict[str, Any] | None = None


@dataclass
class SystemHealth:
    """Aggregated system health status."""

    healthy: bool
    checks: list[HealthCheckResult]
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": c.name,
                    "healthy": c.healthy,
                    "latency_ms": round(c.latency_ms, 2),
                    "message": c.message,
                    "details": c.details,
                }
                for c in self.checks
            ],
        }


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def check_store(store: ToolStore) -> HealthCheckResult:
    """Read the tool collection once."""
    start = time.perf_counter()
    try:
        tools = store.list_all()
    except StoreError as e:
        logger.error(f"Tool store health check failed: {e}")
        return HealthCheckResult(
            name="store",
            healthy=False,
            latency_ms=_elapsed_ms(start),
            message=f"Store error: {str(e)[:100]}",
        )
    in_use = sum(1 for tool in tools if not tool.is_available)
    return HealthCheckResult(
        name="store",
        healthy=True,
        latency_ms=_elapsed_ms(start),
        message="Tool store operational",
        details={"tool_count": len(tools), "in_use": in_use, "backend": type(store).__name__},
    )


def check_whatsapp(config: dict[str, Any] | None = None) -> HealthCheckResult:
    """Ask WAHA for the session status."""
    wa_cfg = section("whatsapp", config or load_config())
    base_url = str(wa_cfg.get("base_url", DEFAULT_BASE_URL)).rstrip("/")
    session = str(wa_cfg.get("session", DEFAULT_SESSION))
    api_key = os.getenv(str(wa_cfg.get("api_key_env_var", "WAHA_API_KEY")), "").strip()
    headers = {"X-Api-Key": api_key} if api_key else {}

    start = time.perf_counter()
    try:
        response = requests.get(f"{base_url}/api/sessions/{session}", headers=headers, timeout=5)
    except requests.exceptions.ConnectionError:
        return HealthCheckResult(
            name="whatsapp",
            healthy=False,
            latency_ms=_elapsed_ms(start),
            message=f"Cannot connect to WAHA at {base_url}",
        )
    except requests.exceptions.RequestException as e:
        logger.error(f"WAHA health check failed: {e}")
        return HealthCheckResult(
            name="whatsapp",
            healthy=False,
            latency_ms=_elapsed_ms(start),
            message=f"WAHA error: {str(e)[:100]}",
        )

    latency = _elapsed_ms(start)
    if response.status_code != 200:
        return HealthCheckResult(
            name="whatsapp",
            healthy=False,
            latency_ms=latency,
            message=f"WAHA returned status {response.status_code}",
        )

    try:
        data = response.json()
    except ValueError:
        data = {}
    status = str(data.get("status", "UNKNOWN")) if isinstance(data, dict) else "UNKNOWN"
    return HealthCheckResult(
        name="whatsapp",
        healthy=status == "WORKING",
        latency_ms=latency,
        message=f"Session {session}: {status}",
        details={"base_url": base_url, "session": session, "status": status},
    )


def get_system_health(store: ToolStore, config: dict[str, Any] | None = None) -> SystemHealth:
    """Run all health checks and return aggregated status."""
    checks = [check_store(store), check_whatsapp(config)]
    return SystemHealth(
        healthy=all(c.healthy for c in checks),
        checks=checks,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
