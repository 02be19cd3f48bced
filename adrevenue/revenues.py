"""Per-project revenue summary: ad revenue minus model token cost, times revenue share."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from adrevenue.attribution import DEFAULT_REVENUE_SHARE
from adrevenue.db import placeholders, sql_rows
from adrevenue.models import ProjectClaim
from adrevenue.util import normalize_date, round_money, to_float, to_int


# USD per 1M tokens
INPUT_TOKEN_COST = 1.10
OUTPUT_TOKEN_COST = 4.40


def token_cost(input_tokens: int, output_tokens: int) -> float:
    return (input_tokens / 1_000_000) * INPUT_TOKEN_COST + (output_tokens / 1_000_000) * OUTPUT_TOKEN_COST


def _empty_day(day: str) -> dict[str, Any]:
    return {"date": day, "ad_revenue": 0.0, "token_cost": 0.0, "net_revenue": 0.0, "impressions": 0}


def project_revenues(
    db_path: str,
    claims: list[ProjectClaim],
    *,
    start_date: str,
    end_date: str,
) -> dict[str, Any]:
    start = normalize_date(start_date)
    end = normalize_date(end_date)
    end_exclusive = (date.fromisoformat(end) + timedelta(days=1)).isoformat()
    days_in_range = (date.fromisoformat(end) - date.fromisoformat(start)).days + 1

    projects: dict[str, dict[str, Any]] = {
        c.project_id: {
            "project_id": c.project_id,
            "project_name": c.project_name,
            "ad_revenue": 0.0,
            "token_cost": 0.0,
            "net_revenue": 0.0,
            "revenue_share_percentage": c.revenue_share_percentage,
            "impressions": 0,
        }
        for c in claims
    }
    project_ids = list(projects)
    series: dict[str, dict[str, Any]] = {}

    if project_ids:
        marks = placeholders(project_ids)
        ad_rows = sql_rows(
            db_path,
            f"""
            SELECT project_id, usage_date, total_impressions, total_revenue
            FROM ad_impressions_aggregated
            WHERE project_id IN ({marks}) AND usage_date >= ? AND usage_date < ?
            """,
            [*project_ids, start, end_exclusive],
        )
        token_rows = sql_rows(
            db_path,
            f"""
            SELECT project_id, created_at, input_tokens, output_tokens
            FROM token_usage
            WHERE project_id IN ({marks}) AND created_at >= ? AND created_at < ?
            """,
            [*project_ids, start, end_exclusive],
        )
    else:
        ad_rows, token_rows = [], []

    for r in ad_rows:
        revenue = to_float(r.get("total_revenue"))
        impressions = to_int(r.get("total_impressions"))
        p = projects[str(r["project_id"])]
        p["ad_revenue"] += revenue
        p["impressions"] += impressions
        day = series.setdefault(str(r["usage_date"])[:10], _empty_day(str(r["usage_date"])[:10]))
        day["ad_revenue"] += revenue
        day["impressions"] += impressions

    for r in token_rows:
        cost = token_cost(to_int(r.get("input_tokens")), to_int(r.get("output_tokens")))
        projects[str(r["project_id"])]["token_cost"] += cost
        d = str(r["created_at"])[:10]
        series.setdefault(d, _empty_day(d))["token_cost"] += cost

    for p in projects.values():
        p["net_revenue"] = (p["ad_revenue"] - p["token_cost"]) * p["revenue_share_percentage"] / 100.0

    # Time series rows span projects: ad-revenue-weighted share.
    total_ad_for_weighting = sum(p["ad_revenue"] for p in projects.values())
    weighted_share = DEFAULT_REVENUE_SHARE
    if total_ad_for_weighting > 0:
        weighted_share = sum(
            p["ad_revenue"] / total_ad_for_weighting * p["revenue_share_percentage"] for p in projects.values()
        )
    for entry in series.values():
        entry["net_revenue"] = (entry["ad_revenue"] - entry["token_cost"]) * weighted_share / 100.0

    active = [p for p in projects.values() if p["ad_revenue"] > 0 or p["token_cost"] > 0]
    active.sort(key=lambda p: p["net_revenue"], reverse=True)

    total_net = sum(p["net_revenue"] for p in active)
    projected_monthly = total_net / days_in_range * 30 if days_in_range > 0 else 0.0

    def _money(row: dict[str, Any]) -> dict[str, Any]:
        return {
            **row,
            "ad_revenue": round_money(row["ad_revenue"]),
            "token_cost": round_money(row["token_cost"]),
            "net_revenue": round_money(row["net_revenue"]),
        }

    return {
        "project_revenues": [_money(p) for p in active],
        "total_revenue": round_money(total_net),
        "total_ad_revenue": round_money(sum(p["ad_revenue"] for p in active)),
        "total_token_cost": round_money(sum(p["token_cost"] for p in active)),
        "total_impressions": sum(p["impressions"] for p in active),
        "projected_monthly": round_money(projected_monthly),
        "time_series": [_money(series[d]) for d in sorted(series)],
        "date_range": {"start": start, "end": end, "days": days_in_range},
    }
