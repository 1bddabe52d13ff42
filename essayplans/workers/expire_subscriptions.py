"""Scheduled job: expire lapsed subscriptions.

Run from cron or any external scheduler:

    python -m essayplans.workers.expire_subscriptions [--date YYYY-MM-DD]
"""
import argparse
from datetime import date
import logging

from essayplans.core.config import settings
from essayplans.core.database import create_all_tables
from essayplans.core.logging import configure_logging
from essayplans.features.expiration.service import process_expired_subscriptions

logger = logging.getLogger("essayplans.workers.expire")


def run(run_date: date | None = None) -> dict:
    create_all_tables()
    result = process_expired_subscriptions(today=run_date)
    summary = {
        "run_date": result.run_date.isoformat(),
        "expired_count": result.expired_count,
        "references_cleared": result.references_cleared,
    }
    logger.info("[worker] expire_subscriptions finished", extra=summary)
    return summary


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Expire lapsed subscriptions")
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="Run as if today were this date")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV, settings.LOG_LEVEL)
    summary = run(args.date)
    print(summary)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
