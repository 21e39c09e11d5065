# Scheduler entry points. Same jobs as `python -m entry.jobs.*`, exposed over
# HTTP for hosted cron; every route needs the CRON_SECRET bearer.

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from entry.api.dependencies import require_cron_secret
from entry.core.db import get_db
from entry.core.metrics import record_job_run
from entry.orders.carts import run_abandoned_cart_job
from entry.payments.digest import run_payment_digest
from entry.payments.stripe_health import run_stripe_health_check
from entry.schemas.payments import JobResponse


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(require_cron_secret)])


def _run(job_name: str, fn, *args, **kwargs) -> dict:
    success = True
    try:
        return fn(*args, **kwargs)
    except Exception:
        success = False
        logger.exception("cron.job_failed", extra={"job": job_name})
        raise
    finally:
        record_job_run(job_name=job_name, success=success)


@router.get("/abandoned-carts", response_model=JobResponse)
def abandoned_carts(db: Session = Depends(get_db)):
    return {"status": "ok", "results": _run("abandoned_carts", run_abandoned_cart_job, db)}


@router.get("/payment-digest", response_model=JobResponse)
def payment_digest(
    period_hours: int = Query(default=6, ge=1, le=24 * 30),
    db: Session = Depends(get_db),
):
    return {"status": "ok", "results": _run("payment_digest", run_payment_digest, db, period_hours)}


@router.get("/stripe-health", response_model=JobResponse)
def stripe_health(db: Session = Depends(get_db)):
    return {"status": "ok", "results": _run("stripe_health", run_stripe_health_check, db)}
