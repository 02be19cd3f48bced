from __future__ import annotations

from collections.abc import Iterable

from adrevenue.errors import AuthorizationError
from adrevenue.models import (
    AdUnitEntry,
    AggregatedReport,
    ProjectClaim,
    RevenueShareResult,
    SiteEntry,
    TimelineEntry,
    Totals,
)
from adrevenue.util import normalize_hostname, round_money, safe_div


DEFAULT_REVENUE_SHARE = 50.0

AllowedUrlMap = dict[str, float]


def build_allowed_url_map(claims: Iterable[ProjectClaim]) -> AllowedUrlMap:
    """Map each claimed hostname to the highest revenue share among the projects claiming it."""
    allowed: AllowedUrlMap = {}
    for claim in claims:
        share = float(claim.revenue_share_percentage)
        for raw_host in claim.allowed_hosts:
            host = normalize_hostname(raw_host)
            if not host:
                continue
            if host not in allowed or share > allowed[host]:
                allowed[host] = share
    return allowed


def resolve_site_share(allowed_urls: AllowedUrlMap, site: str) -> tuple[str, float]:
    host = normalize_hostname(site)
    if host not in allowed_urls:
        raise AuthorizationError(f"Unauthorized: you have no claim on site '{site}'")
    return host, allowed_urls[host]


def weighted_share(by_site: dict[str, Totals], allowed_urls: AllowedUrlMap) -> float:
    total = 0.0
    weighted = 0.0
    for host, totals in by_site.items():
        total += totals.revenue
        weighted += totals.revenue * allowed_urls[host]
    share = safe_div(weighted, total)
    return DEFAULT_REVENUE_SHARE if share is None else share


def _by_impressions(items: dict[str, Totals]) -> list[tuple[str, Totals]]:
    return sorted(items.items(), key=lambda kv: kv[1].impressions, reverse=True)


def attribute(
    report: AggregatedReport,
    allowed_urls: AllowedUrlMap,
    site_filter: str | None = None,
) -> RevenueShareResult:
    """Attribute the caller's share of `report`.

    `report` must already be restricted to the caller's sites (an EntityFilter on
    "site" during aggregation): totals and timeline are taken from it as-is, only
    the site breakdown is narrowed to `allowed_urls` here.
    """
    by_site = report.by_site or {}

    if site_filter:
        host, share = resolve_site_share(allowed_urls, site_filter)
        owned_sites = {h: t for h, t in by_site.items() if h == host}
    else:
        owned_sites = {h: t for h, t in by_site.items() if h in allowed_urls}
        share = weighted_share(owned_sites, allowed_urls)

    user_revenue = report.total_revenue * share / 100.0

    timeline = [
        TimelineEntry(date=day, impressions=t.impressions, revenue=round_money(t.revenue))
        for day, t in sorted(report.by_date.items())
    ]
    by_ad_unit = [
        AdUnitEntry(ad_unit_name=name, impressions=t.impressions, revenue=round_money(t.revenue))
        for name, t in _by_impressions(report.by_ad_unit or {})
    ]
    sites = [
        SiteEntry(site_name=host, impressions=t.impressions, revenue=round_money(t.revenue))
        for host, t in _by_impressions(owned_sites)
    ]

    return RevenueShareResult(
        total_impressions=report.total_impressions,
        total_revenue=round_money(report.total_revenue),
        user_revenue=round_money(user_revenue),
        revenue_share_percentage=round(share, 2),
        timeline=timeline,
        by_ad_unit=by_ad_unit,
        by_site=sites,
        row_count=report.row_count,
    )
