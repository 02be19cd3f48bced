"""Exceptions raised by the reporting pipeline."""

from __future__ import annotations


class ReportingError(Exception):
    """Base exception for reporting pipeline errors."""

    pass


class ConfigurationError(ReportingError):
    """Credential material unparsable or a required setting missing."""

    pass


class AuthError(ReportingError):
    """Access token exchange with the identity provider failed."""

    def __init__(self, message: str, body: str = ""):
        self.body = body
        super().__init__(message)


class ProtocolError(ReportingError):
    """Report service returned non-2xx or lacked an expected field."""

    def __init__(self, message: str, status_code: int = 0, body_excerpt: str = ""):
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        super().__init__(message)


class JobFailedError(ReportingError):
    """Remote report job reached the FAILED state."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Report job {job_id} failed")


class JobTimeoutError(ReportingError, TimeoutError):
    """Polling exhausted its attempts without a terminal job state."""

    def __init__(self, job_id: str, attempts: int):
        self.job_id = job_id
        self.attempts = attempts
        super().__init__(f"Report job {job_id} timed out after {attempts} attempts")


class DownloadError(ReportingError):
    """Report artifact could not be downloaded or its URL was unusable."""

    def __init__(self, message: str, status_code: int = 0, body_excerpt: str = ""):
        self.status_code = status_code
        self.body_excerpt = body_excerpt
        super().__init__(message)


class AuthorizationError(ReportingError):
    """Caller asked for a site or project outside their claims."""

    pass
