"""Mark lapsed trials and ended billing periods as EXPIRED.

Run from cron as ``finboard-expire-subscriptions`` or
``python -m finboard.jobs.expire_subscriptions``. Uses its own engine and
session and shares only database rows with the web app.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Mapping, Optional, Sequence, TextIO

from sqlalchemy.orm import sessionmaker

from finboard.core.database import build_engine
from finboard.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

DATABASE_URL_KEYS = ("DATABASE_URL", "FINBOARD_DATABASE_URL")


def _stamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def _say(stream: TextIO, message: str) -> None:
    print(f"[{_stamp()}] {message}", file=stream)


def run(database_url: str) -> int:
    engine = build_engine(database_url)
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    try:
        with Session() as db:
            return SubscriptionService(db).process_expired_subscriptions()
    finally:
        engine.dispose()


def main(
    argv: Optional[Sequence[str]] = None,
    environ: Optional[Mapping[str, str]] = None,
    stdout: TextIO | None = None,
    stderr: TextIO | None = None,
) -> int:
    environ = os.environ if environ is None else environ
    stdout = stdout or sys.stdout
    stderr = stderr or sys.stderr

    database_url = next((environ[k] for k in DATABASE_URL_KEYS if environ.get(k)), None)
    if not database_url:
        print("ERROR: DATABASE_URL is not set", file=stderr)
        return 1

    _say(stdout, "Starting subscription expiration job...")
    try:
        count = run(database_url)
    except Exception as exc:
        logger.exception("Subscription expiration job failed")
        _say(stderr, f"ERROR: {exc}")
        return 1

    if count == 0:
        _say(stdout, "No subscriptions to expire.")
    else:
        _say(stdout, f"Expired {count} subscription(s).")
    return 0


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
