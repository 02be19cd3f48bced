from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from adrevenue.errors import ConfigurationError


GAM_SCOPE = "https://www.googleapis.com/auth/admanager"
DEFAULT_API_VERSION = "v202502"
DEFAULT_APPLICATION_NAME = "Divee.AI"


def default_db_path() -> str:
    return os.environ.get("ADREVENUE_DB_PATH", str(Path("data/dummy/adrevenue_demo.sqlite")))


def _env(name: str, default: str = "") -> str:
    return os.environ.get(name, default).strip()


def _int_env(name: str, default: int) -> int:
    raw = _env(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive")
    return value


@dataclass(frozen=True)
class GamSettings:
    network_code: str
    service_account_json: str
    line_item_id: str | None = None
    api_version: str = DEFAULT_API_VERSION
    application_name: str = DEFAULT_APPLICATION_NAME
    entity_dimensions: tuple[str, ...] = ("SITE_NAME",)
    max_poll_attempts: int = 45
    poll_interval_seconds: float = 2.0
    download_timeout_seconds: float = 300.0
    http_timeout_seconds: float = 60.0

    @property
    def soap_endpoint(self) -> str:
        return f"https://ads.google.com/apis/ads/publisher/{self.api_version}/ReportService"


def load_settings() -> GamSettings:
    network_code = _env("GAM_NETWORK_CODE")
    if not network_code:
        raise ConfigurationError("GAM_NETWORK_CODE environment variable not set")
    credentials = _env("GAM_SERVICE_ACCOUNT_JSON")
    if not credentials:
        raise ConfigurationError("GAM_SERVICE_ACCOUNT_JSON environment variable not set")

    dimensions = tuple(
        d.strip().upper() for d in _env("GAM_ENTITY_DIMENSIONS", "SITE_NAME").split(",") if d.strip()
    )

    return GamSettings(
        network_code=network_code,
        service_account_json=credentials,
        line_item_id=_env("GAM_LINE_ITEM_ID") or None,
        api_version=_env("GAM_API_VERSION") or DEFAULT_API_VERSION,
        application_name=_env("GAM_APPLICATION_NAME") or DEFAULT_APPLICATION_NAME,
        entity_dimensions=dimensions,
        max_poll_attempts=_int_env("GAM_MAX_POLL_ATTEMPTS", 45),
        poll_interval_seconds=_int_env("GAM_POLL_INTERVAL_MS", 2000) / 1000.0,
        download_timeout_seconds=float(_int_env("GAM_DOWNLOAD_TIMEOUT_SECONDS", 300)),
        http_timeout_seconds=float(_int_env("GAM_HTTP_TIMEOUT_SECONDS", 60)),
    )
