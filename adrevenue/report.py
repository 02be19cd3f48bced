from __future__ import annotations

import logging

from adrevenue.attribution import AllowedUrlMap, attribute, build_allowed_url_map, resolve_site_share
from adrevenue.errors import ConfigurationError
from adrevenue.gam.client import GamReportClient
from adrevenue.models import AggregatedReport, EntityFilter, ReportRequest, RevenueShareResult
from adrevenue.projects import load_project_claims, project_ids_for_user


logger = logging.getLogger(__name__)


def allowed_urls_for_user(db_path: str, user_id: str, project_id: str | None = None) -> AllowedUrlMap:
    project_ids = project_ids_for_user(db_path, user_id, project_id=project_id)
    return build_allowed_url_map(load_project_claims(db_path, project_ids))


async def build_revenue_share_report(
    client: GamReportClient,
    allowed_urls: AllowedUrlMap,
    *,
    start_date: str,
    end_date: str,
    site: str | None = None,
) -> RevenueShareResult:
    """Run an Ad Manager report restricted to the caller's sites and attribute their share."""
    if "SITE_NAME" not in client.settings.entity_dimensions:
        raise ConfigurationError("GAM_ENTITY_DIMENSIONS must include SITE_NAME for revenue share reports")

    request = ReportRequest.from_dates(start_date, end_date)

    if site:
        # Site is authorized before any job is submitted.
        host, _ = resolve_site_share(allowed_urls, site)
        hosts = frozenset({host})
    else:
        hosts = frozenset(allowed_urls)

    if not hosts:
        logger.info("No claimed sites; skipping report job")
        return attribute(AggregatedReport(by_site={}), allowed_urls)

    logger.info("Running GAM report for %s to %s (%d sites)", request.start_date, request.end_date, len(hosts))
    report = await client.aggregate(request.start_date, request.end_date, EntityFilter(dimension="site", values=hosts))
    return attribute(report, allowed_urls, site)
