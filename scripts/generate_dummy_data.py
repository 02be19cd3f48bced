#!/usr/bin/env python3
"""Seed a demo database: two users, overlapping project site claims, daily ad and token usage."""

from __future__ import annotations

import argparse
import json
import random
import sys
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from pathlib import Path
from typing import Iterable

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from init_empty_db import init_db

from adrevenue.db import connect


UTC = timezone.utc


@dataclass(frozen=True)
class DemoProject:
    project_id: str
    account_id: str
    client_name: str
    allowed_urls: tuple[str, ...]
    revenue_share_percentage: float | None


ACCOUNTS = [
    ("acct_1", "user-1", "Northwind Media"),
    ("acct_2", "user-2", "Contoso Publishing"),
]

PROJECTS = [
    DemoProject("proj_a", "acct_1", "Northwind News", ("news.northwind.example", "shared.example"), 30.0),
    DemoProject("proj_b", "acct_1", "Northwind Sports", ("sports.northwind.example",), 60.0),
    DemoProject("proj_c", "acct_1", "Northwind Partner", ("shared.example",), 70.0),
    DemoProject("proj_d", "acct_2", "Contoso Blog", ("blog.contoso.example",), None),
]


def _daterange(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _iso_ts(d: date, rng: random.Random) -> str:
    t = time(hour=rng.randint(0, 23), minute=rng.randint(0, 59), tzinfo=UTC)
    return datetime.combine(d, t).strftime("%Y-%m-%dT%H:%M:%SZ")


def seed(db_path: str, start: date, end: date, seed_value: int) -> None:
    rng = random.Random(seed_value)
    init_db(db_path)

    with connect(db_path) as conn:
        conn.executemany("INSERT INTO account (id, user_id, name) VALUES (?, ?, ?)", ACCOUNTS)
        for p in PROJECTS:
            conn.execute(
                "INSERT INTO project (project_id, account_id, client_name, allowed_urls) VALUES (?, ?, ?, ?)",
                (p.project_id, p.account_id, p.client_name, json.dumps(list(p.allowed_urls))),
            )
            if p.revenue_share_percentage is not None:
                conn.execute(
                    "INSERT INTO project_config (project_id, revenue_share_percentage) VALUES (?, ?)",
                    (p.project_id, p.revenue_share_percentage),
                )

        for d in _daterange(start, end):
            for p in PROJECTS:
                impressions = rng.randint(500, 20_000)
                ecpm = rng.uniform(0.4, 3.5)
                conn.execute(
                    "INSERT INTO ad_impressions_aggregated (project_id, usage_date, total_impressions, total_revenue) VALUES (?, ?, ?, ?)",
                    (p.project_id, d.isoformat(), impressions, round(impressions / 1000 * ecpm, 4)),
                )
                for _ in range(rng.randint(0, 4)):
                    conn.execute(
                        "INSERT INTO token_usage (project_id, created_at, input_tokens, output_tokens) VALUES (?, ?, ?, ?)",
                        (p.project_id, _iso_ts(d, rng), rng.randint(2_000, 80_000), rng.randint(500, 20_000)),
                    )
        conn.commit()

    print(f"Seeded {len(PROJECTS)} projects from {start} to {end} into {db_path}")


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--sqlite-path", default="data/dummy/adrevenue_demo.sqlite")
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--seed", type=int, default=7)
    args = parser.parse_args()
    end_d = date.today()
    seed(args.sqlite_path, end_d - timedelta(days=args.days - 1), end_d, args.seed)
