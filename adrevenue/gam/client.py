from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from adrevenue.config import GamSettings
from adrevenue.gam.jobs import ReportJobRunner, Sleep, TokenSource
from adrevenue.gam.stream import ReportAggregator, download_and_aggregate
from adrevenue.gam.transport import SoapTransport
from adrevenue.models import AggregatedReport, EntityFilter, ReportJob, ReportRequest


logger = logging.getLogger(__name__)


class GamReportClient:
    """Runs Ad Manager report jobs and aggregates their CSV output."""

    def __init__(
        self,
        settings: GamSettings,
        tokens: TokenSource,
        http: httpx.AsyncClient,
        *,
        sleep: Sleep | None = None,
    ):
        self.settings = settings
        self.tokens = tokens
        self.http = http
        transport = SoapTransport(http, settings.soap_endpoint)
        self.jobs = ReportJobRunner(settings, transport, tokens, sleep=sleep or asyncio.sleep)

    async def run_report(self, start_date: str, end_date: str) -> ReportJob:
        return await self.jobs.submit(ReportRequest.from_dates(start_date, end_date))

    async def await_completion(self, job: ReportJob) -> ReportJob:
        job = await self.jobs.await_completion(job)
        logger.info("Report job %s completed", job.job_id)
        return job

    async def fetch_and_aggregate(self, job: ReportJob, entity_filter: EntityFilter | None = None) -> AggregatedReport:
        url = await self.jobs.resolve_download_url(job)
        logger.info("Downloading report %s", job.job_id)
        aggregator = ReportAggregator(self.settings.entity_dimensions, entity_filter)
        return await download_and_aggregate(
            self.http,
            url,
            self.tokens,
            aggregator,
            timeout_seconds=self.settings.download_timeout_seconds,
        )

    async def aggregate(
        self, start_date: str, end_date: str, entity_filter: EntityFilter | None = None
    ) -> AggregatedReport:
        job = await self.run_report(start_date, end_date)
        await self.await_completion(job)
        return await self.fetch_and_aggregate(job, entity_filter)


@asynccontextmanager
async def open_report_client(settings: GamSettings, tokens: TokenSource) -> AsyncIterator[GamReportClient]:
    async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True) as http:
        yield GamReportClient(settings, tokens, http)
