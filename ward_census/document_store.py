from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import Any, Callable

LOGGER = logging.getLogger(__name__)

Snapshot = list[tuple[str, dict[str, Any]]]
Listener = Callable[[Snapshot], None]


def _dict_row(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    return json.loads(row["payload"])


class WardDocumentStore:
    """Collections of JSON documents keyed by id, with in-process change listeners."""

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._listeners: dict[str, list[Listener]] = {}
        self.ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(str(self.db_path))
        connection.row_factory = sqlite3.Row
        return connection

    def ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    collection TEXT NOT NULL,
                    doc_id TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (collection, doc_id)
                );

                CREATE INDEX IF NOT EXISTS idx_documents_collection
                    ON documents(collection);
                """
            )

    def get(self, collection: str, doc_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT payload FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, str(doc_id)),
            ).fetchone()
        return _dict_row(row)

    def snapshot(self, collection: str) -> Snapshot:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT doc_id, payload
                FROM documents
                WHERE collection = ?
                ORDER BY created_at ASC, rowid ASC
                """,
                (collection,),
            ).fetchall()
        return [(str(row["doc_id"]), json.loads(row["payload"])) for row in rows]

    def write(self, collection: str, doc_id: str, fields: dict[str, Any], merge: bool = False) -> None:
        key = str(doc_id or "").strip()
        if not key:
            raise ValueError("Document id is required.")

        payload = dict(fields)
        if merge:
            existing = self.get(collection, key) or {}
            payload = {**existing, **payload}

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO documents(collection, doc_id, payload)
                VALUES (?, ?, ?)
                ON CONFLICT(collection, doc_id)
                DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (collection, key, json.dumps(payload, sort_keys=True, default=str)),
            )
        self._notify(collection)

    def add(self, collection: str, fields: dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        self.write(collection, doc_id, fields)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND doc_id = ?",
                (collection, str(doc_id)),
            )
            deleted = cursor.rowcount > 0
        if deleted:
            self._notify(collection)
        return deleted

    def query(self, collection: str, field: str, value: Any) -> Snapshot:
        return [(doc_id, fields) for doc_id, fields in self.snapshot(collection) if fields.get(field) == value]

    def subscribe(self, collection: str, listener: Listener) -> Callable[[], None]:
        self._listeners.setdefault(collection, []).append(listener)
        listener(self.snapshot(collection))

        def _unsubscribe() -> None:
            listeners = self._listeners.get(collection, [])
            if listener in listeners:
                listeners.remove(listener)

        return _unsubscribe

    def _notify(self, collection: str) -> None:
        listeners = list(self._listeners.get(collection, []))
        if not listeners:
            return
        snapshot = self.snapshot(collection)
        LOGGER.debug("Notifying %d listeners of %s change.", len(listeners), collection)
        for listener in listeners:
            listener(snapshot)

    def clear_all(self) -> None:
        with self._connect() as conn:
            collections = [row["collection"] for row in conn.execute("SELECT DISTINCT collection FROM documents")]
            conn.execute("DELETE FROM documents")
        for collection in collections:
            self._notify(collection)
