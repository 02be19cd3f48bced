from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys

from adrevenue.config import default_db_path, load_settings
from adrevenue.errors import ReportingError
from adrevenue.gam.auth import ServiceAccountTokenProvider
from adrevenue.gam.client import open_report_client
from adrevenue.projects import load_project_claims, project_ids_for_user
from adrevenue.report import allowed_urls_for_user, build_revenue_share_report
from adrevenue.revenues import project_revenues


def _print(obj: object) -> None:
    print(json.dumps(obj, indent=2, sort_keys=True))


async def _run_report(db_path: str, args: argparse.Namespace) -> dict[str, object]:
    settings = load_settings()
    tokens = ServiceAccountTokenProvider(settings.service_account_json)
    allowed = allowed_urls_for_user(db_path, args.user)
    async with open_report_client(settings, tokens) as client:
        result = await build_revenue_share_report(
            client,
            allowed,
            start_date=args.start_date,
            end_date=args.end_date,
            site=args.site or None,
        )
    return result.model_dump(by_alias=True)


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(prog="adrevenue", description="Ad Manager revenue reports and revenue-share attribution.")
    parser.add_argument("--db", type=str, default=default_db_path(), help="SQLite db path (default: data/dummy/adrevenue_demo.sqlite)")
    parser.add_argument("--log-level", type=str, default=os.environ.get("LOG_LEVEL", "WARNING"))

    sub = parser.add_subparsers(dest="cmd", required=True)

    report = sub.add_parser("report", help="Run an Ad Manager report and attribute the user's revenue share.")
    report.add_argument("--user", type=str, required=True)
    report.add_argument("--start-date", type=str, required=True)
    report.add_argument("--end-date", type=str, required=True)
    report.add_argument("--site", type=str, default="")

    revenues = sub.add_parser("revenues", help="Per-project ad revenue net of token cost.")
    revenues.add_argument("--user", type=str, required=True)
    revenues.add_argument("--start-date", type=str, required=True)
    revenues.add_argument("--end-date", type=str, required=True)
    revenues.add_argument("--project-id", type=str, default="")

    urls = sub.add_parser("allowed-urls", help="Hostnames the user claims and their revenue share.")
    urls.add_argument("--user", type=str, required=True)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    db_path = args.db

    try:
        if args.cmd == "report":
            _print(asyncio.run(_run_report(db_path, args)))
            return 0
        if args.cmd == "revenues":
            project_ids = project_ids_for_user(db_path, args.user, project_id=args.project_id or None)
            claims = load_project_claims(db_path, project_ids)
            _print(project_revenues(db_path, claims, start_date=args.start_date, end_date=args.end_date))
            return 0
        if args.cmd == "allowed-urls":
            _print(allowed_urls_for_user(db_path, args.user))
            return 0
    except (ReportingError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2

    return 1


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
