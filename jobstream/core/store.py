"""SQLite-backed local key/value store for JSON blobs.

Holds client-owned state that must survive restarts: the notification ledger
(``notifications_<user_id>``) and the settings cache (``user_settings``).
Blobs are wrapped as ``{"version": N, "data": ...}`` so readers can reject or
migrate shapes they don't understand.
"""

import json
import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

BLOB_VERSION = 1

_KV_TABLE = """
CREATE TABLE IF NOT EXISTS kv (
    key         TEXT PRIMARY KEY,
    value       TEXT NOT NULL,
    updated_at  TEXT NOT NULL
);
"""


def init_store(path: str | Path) -> sqlite3.Connection:
    """Create the store file and table, returning a connection.

    ``":memory:"`` gives a throwaway store.
    """
    if str(path) == ":memory:":
        conn = sqlite3.connect(":memory:")
    else:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(path))
        conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    conn.execute(_KV_TABLE)
    conn.commit()
    return conn


def get_raw(conn: sqlite3.Connection, key: str) -> str | None:
    """Return the stored text for key, or None."""
    row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
    if row is None:
        return None
    return row["value"]  # type: ignore[no-any-return]


def put_raw(conn: sqlite3.Connection, key: str, value: str) -> None:
    """Insert or replace the stored text for key."""
    conn.execute(
        """
        INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
        ON CONFLICT(key) DO UPDATE SET
            value = excluded.value,
            updated_at = excluded.updated_at
        """,
        (key, value, datetime.now().isoformat()),
    )
    conn.commit()


def delete_blob(conn: sqlite3.Connection, key: str) -> bool:
    """Delete key. Returns True if a row was removed."""
    cursor = conn.execute("DELETE FROM kv WHERE key = ?", (key,))
    conn.commit()
    return cursor.rowcount > 0


def put_blob(conn: sqlite3.Connection, key: str, data: Any) -> None:
    """Serialize data into a versioned envelope and store it under key."""
    envelope = {"version": BLOB_VERSION, "data": data}
    put_raw(conn, key, json.dumps(envelope, default=str))


def get_blob(conn: sqlite3.Connection, key: str) -> Any | None:
    """Load the payload stored under key.

    Legacy blobs written without an envelope are treated as version 0 and
    returned as-is. Unparseable text or an unknown version is logged and
    yields None, so callers fall back to their defaults.
    """
    text = get_raw(conn, key)
    if text is None:
        return None
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning("Discarding unparseable blob '%s': %s", key, e)
        return None

    if not isinstance(parsed, dict) or "version" not in parsed:
        logger.debug("Blob '%s' has no version envelope - treating as legacy", key)
        return parsed

    version = parsed.get("version")
    if version != BLOB_VERSION:
        logger.warning("Discarding blob '%s' with unsupported version %r", key, version)
        return None
    return parsed.get("data")
