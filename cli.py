#!/usr/bin/env python3
"""
Command line entry point for the SEO change monitor.

Usage:
    python cli.py init-db
    python cli.py add https://example.com --project acme
    python cli.py check 12 --project acme [--initial]
    python cli.py run --project acme
    python cli.py reset-stuck
"""
import argparse
import json
import sys
from datetime import timedelta

from loguru import logger

from config import FREQUENCIES, STUCK_RUN_HOURS, setup_logging
from db import init_db, make_session_factory, repositories
from monitor import check_url, run_checks


def build_parser():
    parser = argparse.ArgumentParser(description="SEO change monitor")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    add = sub.add_parser("add", help="Track a URL and take its baseline snapshot")
    add.add_argument("url")
    add.add_argument("--project", required=True)
    add.add_argument("--frequency", choices=FREQUENCIES, default="Weekly")

    check = sub.add_parser("check", help="Check one tracked URL")
    check.add_argument("url_id", type=int)
    check.add_argument("--project", required=True)
    check.add_argument("--initial", action="store_true", help="Baseline only, never write a log")

    run = sub.add_parser("run", help="Check every monitored URL of a project")
    run.add_argument("--project", required=True)

    sub.add_parser("reset-stuck", help="Mark long-running monitor runs as failed")
    return parser


def main(argv=None, session_factory=None):
    args = build_parser().parse_args(argv)
    setup_logging()
    factory = session_factory or make_session_factory()
    init_db(factory)
    repos = repositories(factory)

    if args.command == "init-db":
        logger.info("Database ready")
        return 0

    if args.command == "add":
        row = repos.urls.add(args.url, args.project, frequency=args.frequency)
        result = check_url(row.id, row.project_id, True, urls=repos.urls,
                           snapshots=repos.snapshots, logs=repos.logs)
        print(json.dumps({"url": row.to_dict(), "baseline": result.to_dict()}, indent=2))
        return 1 if result.error else 0

    if args.command == "check":
        result = check_url(args.url_id, args.project, args.initial, urls=repos.urls,
                           snapshots=repos.snapshots, logs=repos.logs)
        print(json.dumps(result.to_dict(), indent=2))
        return 1 if result.error else 0

    if args.command == "run":
        rows = repos.urls.list_enabled(args.project)
        summary = run_checks([r.id for r in rows], args.project, urls=repos.urls,
                             snapshots=repos.snapshots, logs=repos.logs, runs=repos.runs)
        print(json.dumps(summary["run"], indent=2))
        return 1 if summary["run"]["status"] == "failed" else 0

    if args.command == "reset-stuck":
        n = repos.runs.reset_stuck(timedelta(hours=STUCK_RUN_HOURS))
        logger.info(f"Reset {n} stuck run(s)")
        return 0
    return 2


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
