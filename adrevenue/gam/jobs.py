from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Protocol

from adrevenue.config import GamSettings
from adrevenue.errors import DownloadError, JobFailedError, JobTimeoutError, ProtocolError
from adrevenue.gam import soap
from adrevenue.gam.transport import SoapTransport, decode_xml_entities, extract_field
from adrevenue.models import JobState, ReportJob, ReportRequest


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

STATUS_FIELD = "rval"
STATUS_FIELD_FALLBACK = "getReportJobStatusResponse"


class TokenSource(Protocol):
    async def get_access_token(self) -> str: ...


class ReportJobRunner:
    """Drives runReportJob -> getReportJobStatus (poll) -> getReportDownloadUrlWithOptions."""

    def __init__(
        self,
        settings: GamSettings,
        transport: SoapTransport,
        tokens: TokenSource,
        *,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings
        self.transport = transport
        self.tokens = tokens
        self._sleep = sleep

    def _envelope_opts(self) -> dict[str, str]:
        return {
            "api_version": self.settings.api_version,
            "application_name": self.settings.application_name,
        }

    async def _call(self, operation: str, body: str) -> str:
        access_token = await self.tokens.get_access_token()
        return await self.transport.send(access_token, operation, body)

    async def submit(self, request: ReportRequest) -> ReportJob:
        body = soap.build_run_report_job(
            self.settings.network_code,
            request,
            entity_dimensions=self.settings.entity_dimensions,
            line_item_id=self.settings.line_item_id,
            **self._envelope_opts(),
        )
        response = await self._call(soap.RUN_REPORT_JOB, body)

        job_id = extract_field(response, "id")
        if not job_id:
            logger.error("runReportJob response without id: %s", response[:500])
            raise ProtocolError("Failed to extract reportJobId from response", body_excerpt=response[:500])

        logger.info("Report job started: %s (%s..%s)", job_id, request.start_date, request.end_date)
        return ReportJob(job_id=job_id, request=request)

    async def poll_status(self, job: ReportJob) -> str:
        body = soap.build_report_job_status(self.settings.network_code, job.job_id, **self._envelope_opts())
        response = await self._call(soap.GET_REPORT_JOB_STATUS, body)
        status = extract_field(response, STATUS_FIELD) or extract_field(response, STATUS_FIELD_FALLBACK)
        return (status or "").upper()

    async def await_completion(self, job: ReportJob, max_attempts: int | None = None) -> ReportJob:
        attempts = self.settings.max_poll_attempts if max_attempts is None else max_attempts
        if attempts < 1:
            raise ValueError(f"max_attempts must be positive, got {attempts}")
        job.state = JobState.POLLING

        for attempt in range(1, attempts + 1):
            job.attempts = attempt
            status = await self.poll_status(job)
            logger.info("Report status (attempt %d/%d): %s", attempt, attempts, status or "unknown")

            if status == JobState.COMPLETED.value:
                job.state = JobState.COMPLETED
                return job
            if status == JobState.FAILED.value:
                job.state = JobState.FAILED
                raise JobFailedError(job.job_id)

            if attempt < attempts:
                await self._sleep(self.settings.poll_interval_seconds)

        job.state = JobState.TIMED_OUT
        raise JobTimeoutError(job.job_id, attempts)

    async def resolve_download_url(self, job: ReportJob) -> str:
        body = soap.build_report_download_url(self.settings.network_code, job.job_id, **self._envelope_opts())
        response = await self._call(soap.GET_REPORT_DOWNLOAD_URL, body)

        raw_url = extract_field(response, STATUS_FIELD)
        if not raw_url:
            logger.error("getReportDownloadUrlWithOptions response without rval: %s", response[:500])
            raise DownloadError("Failed to extract download URL from response", body_excerpt=response[:500])

        url = decode_xml_entities(raw_url)
        if not url.lower().startswith(("https://", "http://")):
            raise DownloadError("Report download URL is malformed")
        return url
