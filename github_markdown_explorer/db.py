"""SQLite database backing the cache index, the fast tier and reading history."""

import sqlite3
from contextlib import closing
from pathlib import Path

SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key TEXT PRIMARY KEY,
    record TEXT NOT NULL  -- serialized CacheRecord
);

CREATE TABLE IF NOT EXISTS cache_metadata (
    key TEXT PRIMARY KEY,
    stored_at_ms INTEGER NOT NULL,
    ttl_ms INTEGER NOT NULL,
    size_bytes INTEGER NOT NULL,
    tier TEXT NOT NULL,  -- 'fast' or 'bulk'
    etag TEXT,
    last_modified TEXT
);

CREATE TABLE IF NOT EXISTS reading_history (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    owner TEXT NOT NULL,
    repo TEXT NOT NULL,
    path TEXT NOT NULL,
    ref TEXT NOT NULL,
    title TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    UNIQUE (owner, repo, path)
);
"""


def init_db(db_path: Path) -> None:
    """Initialize the database schema."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(db_path, timeout=30)) as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        conn.commit()


def get_db(db_path: Path) -> sqlite3.Connection:
    """Get a database connection."""
    conn = sqlite3.connect(db_path, timeout=30)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


# -- fast tier -----------------------------------------------------------


def get_entry(db_path: Path, key: str) -> str | None:
    with closing(get_db(db_path)) as conn:
        row = conn.execute("SELECT record FROM cache_entries WHERE key = ?", (key,)).fetchone()
    return row["record"] if row else None


def put_entry(db_path: Path, key: str, record: str) -> None:
    with closing(get_db(db_path)) as conn, conn:
        conn.execute("INSERT OR REPLACE INTO cache_entries (key, record) VALUES (?, ?)", (key, record))


def delete_entry(db_path: Path, key: str) -> None:
    with closing(get_db(db_path)) as conn, conn:
        conn.execute("DELETE FROM cache_entries WHERE key = ?", (key,))


def delete_entries_matching(db_path: Path, pattern: str) -> int:
    """Delete entries whose key contains ``pattern``. Returns the count removed."""
    # instr() rather than LIKE so '%' and '_' in patterns match literally
    with closing(get_db(db_path)) as conn, conn:
        cursor = conn.execute("DELETE FROM cache_entries WHERE instr(key, ?) > 0", (pattern,))
        return cursor.rowcount


def count_entries(db_path: Path) -> int:
    with closing(get_db(db_path)) as conn:
        return conn.execute("SELECT COUNT(*) FROM cache_entries").fetchone()[0]


# -- metadata index ------------------------------------------------------


def get_metadata(db_path: Path, key: str) -> dict | None:
    with closing(get_db(db_path)) as conn:
        row = conn.execute(
            "SELECT key, stored_at_ms, ttl_ms, size_bytes, tier, etag, last_modified "
            "FROM cache_metadata WHERE key = ?",
            (key,),
        ).fetchone()
    return dict(row) if row else None


def put_metadata(db_path: Path, metadata: dict) -> None:
    """Insert or replace the metadata row for a key."""
    with closing(get_db(db_path)) as conn, conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO cache_metadata
            (key, stored_at_ms, ttl_ms, size_bytes, tier, etag, last_modified)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
            (
                metadata["key"],
                metadata["stored_at_ms"],
                metadata["ttl_ms"],
                metadata["size_bytes"],
                metadata["tier"],
                metadata.get("etag"),
                metadata.get("last_modified"),
            ),
        )


def update_validators(db_path: Path, key: str, etag: str | None, last_modified: str | None) -> bool:
    """Set non-empty ETag/Last-Modified on an existing row. Returns False if no row exists."""
    with closing(get_db(db_path)) as conn, conn:
        cursor = conn.execute(
            """
            UPDATE cache_metadata
            SET etag = COALESCE(?, etag), last_modified = COALESCE(?, last_modified)
            WHERE key = ?
        """,
            (etag or None, last_modified or None, key),
        )
        return cursor.rowcount > 0


def delete_metadata(db_path: Path, key: str) -> None:
    with closing(get_db(db_path)) as conn, conn:
        conn.execute("DELETE FROM cache_metadata WHERE key = ?", (key,))


def delete_metadata_matching(db_path: Path, pattern: str) -> list[str]:
    """Delete metadata rows whose key contains ``pattern``. Returns the removed keys."""
    with closing(get_db(db_path)) as conn, conn:
        keys = [
            row["key"]
            for row in conn.execute("SELECT key FROM cache_metadata WHERE instr(key, ?) > 0", (pattern,))
        ]
        conn.execute("DELETE FROM cache_metadata WHERE instr(key, ?) > 0", (pattern,))
    return keys


# -- reading history -----------------------------------------------------


def get_history(db_path: Path, limit: int) -> list[dict]:
    """History rows, most recently inserted first."""
    with closing(get_db(db_path)) as conn:
        cursor = conn.execute(
            "SELECT owner, repo, path, ref, title, timestamp_ms FROM reading_history "
            "ORDER BY seq DESC LIMIT ?",
            (limit,),
        )
        return [dict(row) for row in cursor.fetchall()]


def push_history(db_path: Path, entry: dict, limit: int) -> None:
    """Move-to-front insert keyed by (owner, repo, path), trimmed to ``limit`` rows."""
    with closing(get_db(db_path)) as conn, conn:
        conn.execute(
            "DELETE FROM reading_history WHERE owner = ? AND repo = ? AND path = ?",
            (entry["owner"], entry["repo"], entry["path"]),
        )
        conn.execute(
            "INSERT INTO reading_history (owner, repo, path, ref, title, timestamp_ms) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (entry["owner"], entry["repo"], entry["path"], entry["ref"], entry["title"], entry["timestamp_ms"]),
        )
        conn.execute(
            "DELETE FROM reading_history WHERE seq NOT IN "
            "(SELECT seq FROM reading_history ORDER BY seq DESC LIMIT ?)",
            (limit,),
        )
