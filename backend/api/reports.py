"""Ad revenue endpoints.

  GET /api/gam/report   : run an Ad Manager report and attribute the caller's share
  GET /api/gam/sites    : hostnames the caller claims, with their revenue share
  GET /api/revenues     : per-project ad revenue net of token cost
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, Query, Request

sys.path.insert(0, str(Path(__file__).resolve().parent.parent.parent))

from adrevenue.config import default_db_path
from adrevenue.errors import AuthError, AuthorizationError, ReportingError
from adrevenue.gam.client import open_report_client
from adrevenue.projects import load_project_claims, project_ids_for_user
from adrevenue.report import allowed_urls_for_user, build_revenue_share_report
from adrevenue.revenues import project_revenues

from api.auth import require_user

router = APIRouter()
logger = logging.getLogger(__name__)


def _db() -> str:
    return os.environ.get("ADREVENUE_DB_PATH", default_db_path())


def _http_error(exc: ReportingError) -> HTTPException:
    if isinstance(exc, AuthError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=403, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _require_dates(start_date: str, end_date: str) -> None:
    if not start_date or not end_date:
        raise HTTPException(status_code=400, detail="Missing required parameters: start_date and end_date")


@router.get("/gam/report")
async def gam_report(
    request: Request,
    start_date: str = Query(default=""),
    end_date: str = Query(default=""),
    site: str = Query(default=""),
    user_id: str = Depends(require_user),
):
    _require_dates(start_date, end_date)

    settings = getattr(request.app.state, "gam_settings", None)
    tokens = getattr(request.app.state, "gam_tokens", None)
    if settings is None or tokens is None:
        raise HTTPException(status_code=500, detail="Ad Manager reporting is not configured")

    try:
        allowed = allowed_urls_for_user(_db(), user_id)
        async with open_report_client(settings, tokens) as client:
            result = await build_revenue_share_report(
                client,
                allowed,
                start_date=start_date,
                end_date=end_date,
                site=site or None,
            )
    except ReportingError as exc:
        logger.error("GAM report failed for %s: %s", user_id, exc)
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return result.model_dump(by_alias=True)


@router.get("/gam/sites")
async def gam_sites(user_id: str = Depends(require_user)):
    try:
        allowed = allowed_urls_for_user(_db(), user_id)
    except ReportingError as exc:
        raise _http_error(exc) from exc
    return {
        "sites": [
            {"site": host, "revenue_share_percentage": share}
            for host, share in sorted(allowed.items())
        ]
    }


@router.get("/revenues")
async def revenues(
    start_date: str = Query(default=""),
    end_date: str = Query(default=""),
    project_id: str = Query(default=""),
    user_id: str = Depends(require_user),
):
    _require_dates(start_date, end_date)
    db_path = _db()
    try:
        project_ids = project_ids_for_user(db_path, user_id, project_id=project_id or None)
        claims = load_project_claims(db_path, project_ids)
        return project_revenues(db_path, claims, start_date=start_date, end_date=end_date)
    except ReportingError as exc:
        raise _http_error(exc) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
