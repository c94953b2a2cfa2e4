"""Tool record storage.

Two backends share one small interface:

- ``FirestoreToolStore`` talks to the hosted Firestore collection through
  ``firebase-admin``. Conditional updates run inside a Firestore transaction.
- ``SqliteToolStore`` keeps the same records in a local SQLite table for
  development and tests. Conditional updates are a single guarded ``UPDATE``.

Every backend failure surfaces as ``StoreUnavailable``.
"""
from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol

import firebase_admin
from firebase_admin import credentials
from firebase_admin import firestore as fb_firestore
from google.api_core import exceptions as google_exceptions
from google.cloud import firestore

from rental_bot.config import (
    get_collection_name,
    get_db_path,
    get_firebase_credentials_path,
    get_store_backend,
    load_config,
)
from rental_bot.db import connect
from services.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class ToolStatus(str, Enum):
    AVAILABLE = "available"
    IN_USE = "in_use"


class StoreError(Exception):
    """Base class for tool store failures."""


class ToolNotFound(StoreError):
    def __init__(self, tool_id: str):
        super().__init__(f"No tool record with id '{tool_id}'")
        self.tool_id = tool_id


class PreconditionFailed(StoreError):
    def __init__(self, tool_id: str, expected: Dict[str, Any]):
        super().__init__(f"Tool '{tool_id}' no longer matches {expected}")
        self.tool_id = tool_id
        self.expected = dict(expected)


class StoreUnavailable(StoreError):
    """The backing store could not be reached or answered with an error."""


def normalize_status(value: Any) -> str:
    """Fold legacy spellings ("Available", "In Use") onto the enum values."""
    text = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
    return text or ToolStatus.AVAILABLE.value


@dataclass
class ToolRecord:
    id: str
    name: str
    status: str = ToolStatus.AVAILABLE.value
    price: Optional[Any] = None
    duration_minutes: Optional[Any] = None
    rates: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_available(self) -> bool:
        return self.status == ToolStatus.AVAILABLE.value

    @classmethod
    def from_fields(cls, tool_id: str, fields: Dict[str, Any]) -> "ToolRecord":
        rates = fields.get("rates")
        duration = fields.get("durationMinutes")
        if duration is None:
            duration = fields.get("duration")
        return cls(
            id=str(tool_id),
            name=str(fields.get("name") or tool_id),
            status=normalize_status(fields.get("status")),
            price=fields.get("price"),
            duration_minutes=duration,
            rates={str(k): v for k, v in rates.items()} if isinstance(rates, dict) else {},
        )

    def to_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {"name": self.name, "status": self.status}
        if self.price is not None:
            fields["price"] = self.price
        if self.duration_minutes is not None:
            fields["durationMinutes"] = self.duration_minutes
        if self.rates:
            fields["rates"] = dict(self.rates)
        return fields


class ToolStore(Protocol):
    def list_all(self) -> List[ToolRecord]:
        ...

    def get_by_id(self, tool_id: str) -> ToolRecord:
        ...

    def conditional_update(
        self, tool_id: str, expected: Dict[str, Any], new_values: Dict[str, Any]
    ) -> None:
        ...

    def upsert(self, record: ToolRecord) -> None:
        ...


store_retry = retry_with_backoff(
    max_retries=2,
    base_delay=0.5,
    max_delay=5.0,
    retry_on=(StoreUnavailable,),
)


# --- SQLite ---

_SQLITE_COLUMNS = {
    "name": "name",
    "status": "status",
    "price": "price",
    "durationMinutes": "duration_minutes",
    "rates": "rates",
}


def _sqlite_value(field_name: str, value: Any) -> Any:
    if field_name == "rates":
        return json.dumps(value or {})
    return value


@contextmanager
def _sqlite_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        raise StoreUnavailable(f"SQLite error: {e}") from e


class SqliteToolStore:
    """Tool records in a local SQLite table."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path else get_db_path()
        connect.init_db(self.path)

    def _row_to_record(self, row: sqlite3.Row) -> ToolRecord:
        rates: Dict[str, Any] = {}
        if row["rates"]:
            try:
                loaded = json.loads(row["rates"])
                if isinstance(loaded, dict):
                    rates = loaded
            except ValueError:
                logger.warning("Ignoring malformed rates JSON on tool %s", row["id"])
        return ToolRecord(
            id=row["id"],
            name=row["name"],
            status=normalize_status(row["status"]),
            price=row["price"],
            duration_minutes=row["duration_minutes"],
            rates=rates,
        )

    def list_all(self) -> List[ToolRecord]:
        with _sqlite_errors():
            con = connect.get_conn(self.path)
            try:
                rows = con.execute("SELECT * FROM tools ORDER BY id").fetchall()
            finally:
                con.close()
        return [self._row_to_record(row) for row in rows]

    def get_by_id(self, tool_id: str) -> ToolRecord:
        with _sqlite_errors():
            con = connect.get_conn(self.path)
            try:
                row = con.execute("SELECT * FROM tools WHERE id = ?", (tool_id,)).fetchone()
            finally:
                con.close()
        if row is None:
            raise ToolNotFound(tool_id)
        return self._row_to_record(row)

    def conditional_update(
        self, tool_id: str, expected: Dict[str, Any], new_values: Dict[str, Any]
    ) -> None:
        unknown = set(expected) | set(new_values)
        unknown -= set(_SQLITE_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown tool fields: {sorted(unknown)}")
        if not new_values:
            raise ValueError("conditional_update requires at least one new value.")

        set_clause = ", ".join(f"{_SQLITE_COLUMNS[k]} = ?" for k in new_values)
        where = ["id = ?"] + [f"{_SQLITE_COLUMNS[k]} = ?" for k in expected]
        params = [_sqlite_value(k, v) for k, v in new_values.items()]
        params.append(tool_id)
        params.extend(_sqlite_value(k, v) for k, v in expected.items())

        with _sqlite_errors():
            con = connect.get_conn(self.path)
            try:
                cur = con.execute(
                    f"UPDATE tools SET {set_clause}, updated_at = CURRENT_TIMESTAMP "
                    f"WHERE {' AND '.join(where)}",
                    params,
                )
                con.commit()
                if cur.rowcount == 1:
                    return
                exists = con.execute("SELECT 1 FROM tools WHERE id = ?", (tool_id,)).fetchone()
            finally:
                con.close()

        if not exists:
            raise ToolNotFound(tool_id)
        raise PreconditionFailed(tool_id, expected)

    def upsert(self, record: ToolRecord) -> None:
        with _sqlite_errors():
            con = connect.get_conn(self.path)
            try:
                con.execute(
                    """
                    INSERT INTO tools (id, name, status, price, duration_minutes, rates)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        status = excluded.status,
                        price = excluded.price,
                        duration_minutes = excluded.duration_minutes,
                        rates = excluded.rates,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    (
                        record.id,
                        record.name,
                        normalize_status(record.status),
                        record.price,
                        record.duration_minutes,
                        json.dumps(record.rates or {}),
                    ),
                )
                con.commit()
            finally:
                con.close()


# --- Firestore ---


@contextmanager
def _firestore_errors() -> Iterator[None]:
    try:
        yield
    except (google_exceptions.GoogleAPICallError, google_exceptions.RetryError) as e:
        raise StoreUnavailable(f"Firestore error: {e}") from e


def _apply_conditional_update(
    transaction: Any,
    ref: Any,
    tool_id: str,
    expected: Dict[str, Any],
    new_values: Dict[str, Any],
) -> None:
    snapshot = ref.get(transaction=transaction)
    if not snapshot.exists:
        raise ToolNotFound(tool_id)
    current = snapshot.to_dict() or {}
    for key, value in expected.items():
        actual = current.get(key)
        if key == "status":
            actual = normalize_status(actual)
        if actual != value:
            raise PreconditionFailed(tool_id, expected)
    transaction.update(ref, dict(new_values))


def init_firebase_app(credentials_path: Path) -> Any:
    try:
        return firebase_admin.get_app()
    except ValueError:
        cert = credentials.Certificate(str(credentials_path))
        return firebase_admin.initialize_app(cert)


class FirestoreToolStore:
    """Tool records in a Firestore collection, one document per tool."""

    def __init__(self, client: Any, collection: str = "tools"):
        self._client = client
        self.collection = collection

    @classmethod
    def from_credentials(cls, credentials_path: Path, collection: str = "tools") -> "FirestoreToolStore":
        app = init_firebase_app(credentials_path)
        return cls(fb_firestore.client(app), collection)

    def _collection(self) -> Any:
        return self._client.collection(self.collection)

    @store_retry
    def list_all(self) -> List[ToolRecord]:
        with _firestore_errors():
            return [
                ToolRecord.from_fields(snap.id, snap.to_dict() or {})
                for snap in self._collection().stream()
            ]

    @store_retry
    def get_by_id(self, tool_id: str) -> ToolRecord:
        with _firestore_errors():
            snapshot = self._collection().document(tool_id).get()
        if not snapshot.exists:
            raise ToolNotFound(tool_id)
        return ToolRecord.from_fields(snapshot.id, snapshot.to_dict() or {})

    def conditional_update(
        self, tool_id: str, expected: Dict[str, Any], new_values: Dict[str, Any]
    ) -> None:
        ref = self._collection().document(tool_id)
        update = firestore.transactional(_apply_conditional_update)
        with _firestore_errors():
            update(self._client.transaction(), ref, tool_id, expected, new_values)

    def upsert(self, record: ToolRecord) -> None:
        with _firestore_errors():
            self._collection().document(record.id).set(record.to_fields(), merge=True)


def build_store(config: Optional[Dict[str, Any]] = None) -> ToolStore:
    cfg = config or load_config()
    backend = get_store_backend(cfg)
    if backend == "sqlite":
        path = get_db_path(cfg)
        logger.info("Using SQLite tool store at %s", path)
        return SqliteToolStore(path)

    credentials_path = get_firebase_credentials_path(cfg)
    collection = get_collection_name(cfg)
    logger.info("Using Firestore tool store, collection '%s'", collection)
    return FirestoreToolStore.from_credentials(credentials_path, collection)
