from __future__ import annotations

from adrevenue.attribution import DEFAULT_REVENUE_SHARE
from adrevenue.db import placeholders, sql_rows
from adrevenue.errors import AuthorizationError
from adrevenue.models import ProjectClaim
from adrevenue.util import parse_json_list, to_float


def _account_ids_for_user(db_path: str, user_id: str) -> list[str]:
    rows = sql_rows(db_path, "SELECT id FROM account WHERE user_id = ?", [user_id])
    return [str(r["id"]) for r in rows]


def project_ids_for_user(
    db_path: str,
    user_id: str,
    account_id: str | None = None,
    project_id: str | None = None,
) -> list[str]:
    """Project ids the user can access, optionally narrowed to one account or project."""
    account_ids = _account_ids_for_user(db_path, user_id)
    if not account_ids:
        return []

    if project_id:
        rows = sql_rows(db_path, "SELECT project_id, account_id FROM project WHERE project_id = ?", [project_id])
        if not rows or str(rows[0]["account_id"]) not in account_ids:
            raise AuthorizationError("Unauthorized: You do not have access to this project.")
        return [project_id]

    if account_id:
        if account_id not in account_ids:
            raise AuthorizationError("Unauthorized: You do not have access to this account.")
        account_ids = [account_id]

    rows = sql_rows(
        db_path,
        f"SELECT project_id FROM project WHERE account_id IN ({placeholders(account_ids)}) ORDER BY project_id",
        account_ids,
    )
    return [str(r["project_id"]) for r in rows]


def load_project_claims(db_path: str, project_ids: list[str]) -> list[ProjectClaim]:
    if not project_ids:
        return []

    marks = placeholders(project_ids)
    projects = sql_rows(
        db_path,
        f"SELECT project_id, client_name, allowed_urls FROM project WHERE project_id IN ({marks})",
        project_ids,
    )
    configs = sql_rows(
        db_path,
        f"SELECT project_id, revenue_share_percentage FROM project_config WHERE project_id IN ({marks})",
        project_ids,
    )
    share_by_project = {
        str(c["project_id"]): to_float(c["revenue_share_percentage"], DEFAULT_REVENUE_SHARE) or DEFAULT_REVENUE_SHARE
        for c in configs
    }

    claims: list[ProjectClaim] = []
    for p in projects:
        pid = str(p["project_id"])
        hosts = tuple(str(u) for u in parse_json_list(p.get("allowed_urls")) if str(u).strip())
        claims.append(
            ProjectClaim(
                project_id=pid,
                project_name=str(p.get("client_name") or "Unnamed Project"),
                allowed_hosts=hosts,
                revenue_share_percentage=share_by_project.get(pid, DEFAULT_REVENUE_SHARE),
            )
        )
    return claims
