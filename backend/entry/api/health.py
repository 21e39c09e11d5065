import logging

from fastapi import APIRouter, Depends, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from entry.core.config import settings
from entry.core.db import get_db


logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/ping")
def ping():
    return {"message": "pong"}


@router.get("/health")
def health(response: Response, db: Session = Depends(get_db)):
    database_ok = True
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("health.database_unreachable")
        database_ok = False
    if not database_ok:
        response.status_code = 503
    return {
        "status": "ok" if database_ok else "degraded",
        "database": database_ok,
        "stripe_configured": bool(settings.STRIPE_SECRET_KEY),
        "stripe_webhook_configured": bool(settings.STRIPE_WEBHOOK_SECRET or settings.STRIPE_CONNECT_WEBHOOK_SECRET),
        "email_configured": bool(settings.RESEND_API_KEY),
        "cron_configured": bool(settings.CRON_SECRET),
    }


@router.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
