"""SQLite schema and connection helpers for the crawl store."""
from __future__ import annotations

import sqlite3
from pathlib import Path

BUSY_TIMEOUT_MS = 30_000

TABLES = [
    """
    CREATE TABLE IF NOT EXISTS data_source (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        url TEXT NOT NULL UNIQUE,
        type TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS crawl_job (
        id TEXT PRIMARY KEY,
        source_id TEXT NOT NULL REFERENCES data_source(id),
        seed_url TEXT NOT NULL,
        status TEXT NOT NULL,
        settings_json TEXT NOT NULL,
        created_at REAL NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS queue_entry (
        id TEXT PRIMARY KEY,
        job_id TEXT NOT NULL REFERENCES crawl_job(id),
        url TEXT NOT NULL,
        status TEXT NOT NULL,
        content TEXT,
        attempts INTEGER NOT NULL DEFAULT 0,
        created_at REAL NOT NULL,
        updated_at REAL NOT NULL,
        UNIQUE (job_id, url)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_queue_entry_job_status ON queue_entry (job_id, status)",
    "CREATE INDEX IF NOT EXISTS idx_crawl_job_source ON crawl_job (source_id, created_at)",
]


def connect(path: Path) -> sqlite3.Connection:
    """Open a connection in autocommit mode; callers issue BEGIN explicitly."""
    connection = sqlite3.connect(path, timeout=BUSY_TIMEOUT_MS / 1000, isolation_level=None)
    connection.row_factory = sqlite3.Row
    connection.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    connection.execute("PRAGMA foreign_keys = ON")
    return connection


def migrate(path: Path) -> None:
    """Create the database file and tables when missing."""
    path.parent.mkdir(parents=True, exist_ok=True)
    connection = connect(path)
    try:
        connection.execute("PRAGMA journal_mode = WAL")
        for ddl in TABLES:
            connection.execute(ddl)
    finally:
        connection.close()
