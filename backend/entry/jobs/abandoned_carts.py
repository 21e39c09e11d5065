from __future__ import annotations

import argparse
import json
import logging

from entry.core.db import SessionLocal
from entry.core.logging import configure_logging
from entry.core.metrics import record_job_run
from entry.orders.carts import run_abandoned_cart_job


logger = logging.getLogger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send abandoned cart recovery emails and expire stale carts.")
    return parser.parse_args()


def main() -> None:
    _parse_args()
    configure_logging()
    success = True
    try:
        with SessionLocal() as db:
            summary = run_abandoned_cart_job(db)
        print(json.dumps(summary))
    except Exception:
        success = False
        logger.exception("Abandoned cart job failed")
        raise
    finally:
        record_job_run(job_name="abandoned_carts", success=success)


if __name__ == "__main__":
    main()
