from __future__ import annotations

import argparse
import json
import logging

from entry.core.db import SessionLocal
from entry.core.logging import configure_logging
from entry.core.metrics import record_job_run
from entry.payments.digest import run_payment_digest


logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Build and email the payment health digest.")
    parser.add_argument("--period-hours", type=int, default=6, help="Look-back window in hours.")
    parser.add_argument("--dry-run", action="store_true", help="Print the digest without emailing it.")
    return parser.parse_args()


def main() -> None:
    args = _parse_args()
    configure_logging()
    success = True
    try:
        with SessionLocal() as db:
            digest = run_payment_digest(db, args.period_hours, send=not args.dry_run)
        print(json.dumps(digest, default=str))
    except Exception:
        success = False
        logger.exception("Payment digest failed")
        raise
    finally:
        record_job_run(job_name="payment_digest", success=success)


if __name__ == "__main__":
    main()
