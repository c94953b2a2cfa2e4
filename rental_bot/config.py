from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_PATH = BASE_DIR / "config.yaml"
DEFAULT_FIREBASE_CREDENTIALS = "/etc/secrets/firebase-service-account.json"
STORE_BACKENDS = ("firestore", "sqlite")


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    db_path = os.getenv("RENTAL_BOT_DB_PATH")
    if db_path:
        overrides.setdefault("memory", {})["db_path"] = db_path

    backend = os.getenv("RENTAL_BOT_STORE", "").strip().lower()
    if backend:
        overrides.setdefault("store", {})["backend"] = backend

    credentials = os.getenv("FIREBASE_CREDENTIALS")
    if credentials:
        overrides.setdefault("firebase", {})["credentials_path"] = credentials

    waha_url = os.getenv("WAHA_BASE_URL")
    if waha_url:
        overrides.setdefault("whatsapp", {})["base_url"] = waha_url

    waha_session = os.getenv("WAHA_SESSION")
    if waha_session:
        overrides.setdefault("whatsapp", {})["session"] = waha_session

    # Hosting platforms hand the listen port over in PORT.
    port = os.getenv("PORT", "").strip()
    if port:
        try:
            port_number = int(port)
        except ValueError:
            port_number = None
        if port_number is not None:
            overrides.setdefault("server", {})["port"] = port_number

    return overrides


def resolve_path(path_value: str, *, base_dir: Optional[Path] = None) -> Path:
    candidate = Path(path_value)
    if not candidate.is_absolute():
        candidate = (base_dir or BASE_DIR) / candidate
    return candidate.resolve()


@lru_cache(maxsize=1)
def load_config() -> Dict[str, Any]:
    # Load .env once through a single interface.
    load_dotenv(dotenv_path=BASE_DIR / ".env")

    config_path = os.getenv("RENTAL_BOT_CONFIG")
    path = resolve_path(config_path, base_dir=Path.cwd()) if config_path else DEFAULT_CONFIG_PATH

    data: Dict[str, Any] = {}
    if path.exists():
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
        if isinstance(loaded, dict):
            data = loaded

    return _deep_merge(data, _env_overrides())


def reload_config() -> Dict[str, Any]:
    load_config.cache_clear()
    return load_config()


def section(name: str, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    cfg = config or load_config()
    value = cfg.get(name, {})
    return value if isinstance(value, dict) else {}


def get_db_path(config: Optional[Dict[str, Any]] = None) -> Path:
    db_path = str(section("memory", config).get("db_path", "data/tools.db"))
    return resolve_path(db_path)


def get_log_path(config: Optional[Dict[str, Any]] = None) -> Path:
    log_path = str(section("paths", config).get("log_file", "logs/rental-bot.log"))
    return resolve_path(log_path)


def get_store_backend(config: Optional[Dict[str, Any]] = None) -> str:
    backend = str(section("store", config).get("backend", "firestore")).strip().lower()
    if backend not in STORE_BACKENDS:
        raise ValueError(f"Unknown store backend '{backend}'. Expected one of {STORE_BACKENDS}.")
    return backend


def get_collection_name(config: Optional[Dict[str, Any]] = None) -> str:
    return str(section("store", config).get("collection", "tools"))


def get_firebase_credentials_path(config: Optional[Dict[str, Any]] = None) -> Path:
    raw = str(section("firebase", config).get("credentials_path", DEFAULT_FIREBASE_CREDENTIALS))
    return resolve_path(raw)
