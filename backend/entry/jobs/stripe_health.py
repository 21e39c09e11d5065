from __future__ import annotations

import argparse
import json
import logging

from entry.core.db import SessionLocal
from entry.core.logging import configure_logging
from entry.core.metrics import record_job_run
from entry.payments.stripe_health import run_stripe_health_check


logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Check connected Stripe accounts, reconcile orphaned payments and purge old payment events."
    )
    return parser.parse_args()


def main() -> None:
    _parse_args()
    configure_logging()
    success = True
    try:
        with SessionLocal() as db:
            results = run_stripe_health_check(db)
        print(json.dumps(results, default=str))
    except Exception:
        success = False
        logger.exception("Stripe health check failed")
        raise
    finally:
        record_job_run(job_name="stripe_health", success=success)


if __name__ == "__main__":
    main()
