from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from pathlib import Path
from typing import Any


SCHEMA = (
    """CREATE TABLE IF NOT EXISTS account (
        id TEXT PRIMARY KEY, user_id TEXT, name TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS project (
        project_id TEXT PRIMARY KEY, account_id TEXT, client_name TEXT,
        allowed_urls TEXT
    )""",
    """CREATE TABLE IF NOT EXISTS project_config (
        project_id TEXT PRIMARY KEY, revenue_share_percentage REAL
    )""",
    """CREATE TABLE IF NOT EXISTS ad_impressions_aggregated (
        project_id TEXT, usage_date TEXT,
        total_impressions INTEGER, total_revenue REAL
    )""",
    """CREATE TABLE IF NOT EXISTS token_usage (
        project_id TEXT, created_at TEXT,
        input_tokens INTEGER, output_tokens INTEGER
    )""",
)


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_schema(db_path: str) -> None:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    with connect(db_path) as conn:
        for ddl in SCHEMA:
            conn.execute(ddl)
        conn.commit()


def sql_rows(db_path: str, sql: str, params: Sequence[Any] | dict[str, Any] | None = None) -> list[dict[str, Any]]:
    if not Path(db_path).exists():
        raise FileNotFoundError(f"SQLite db not found: {db_path}")
    with connect(db_path) as conn:
        cur = conn.execute(sql, params or [])
        return [dict(r) for r in cur.fetchall()]


def placeholders(values: Sequence[Any]) -> str:
    return ", ".join("?" for _ in values)
