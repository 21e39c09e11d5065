import json
import os
import sys
from uuid import uuid4

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

import entry.core.db as db_module  # noqa: E402
from entry.core.config import settings  # noqa: E402
from entry.core.db import Base  # noqa: E402
from entry.jobs import abandoned_carts, payment_digest, stripe_health  # noqa: E402
from entry.models.enums import PaymentEventTypeEnum as T  # noqa: E402
from entry.payments.alerts import reset_cooldowns  # noqa: E402
from entry.payments.monitor import log_payment_event  # noqa: E402


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_cooldowns()
    return SessionLocal


def _run(monkeypatch, capsys, job, SessionLocal, *argv):
    monkeypatch.setattr(job, "SessionLocal", SessionLocal)
    monkeypatch.setattr(sys, "argv", [job.__name__, *argv])
    job.main()
    return json.loads(capsys.readouterr().out)


def test_abandoned_cart_job_cli(monkeypatch, capsys):
    SessionLocal = _setup_db(f"sqlite:///./jobs_{uuid4().hex}.db")
    summary = _run(monkeypatch, capsys, abandoned_carts, SessionLocal)
    assert summary == {"expired": 0, "processed": 0, "sent": 0, "skipped_disabled": 0, "failed": 0}


def test_stripe_health_job_cli_without_stripe(monkeypatch, capsys):
    SessionLocal = _setup_db(f"sqlite:///./jobs_{uuid4().hex}.db")
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)
    summary = _run(monkeypatch, capsys, stripe_health, SessionLocal)
    assert summary["accounts_checked"] == 0
    assert summary["anomalies"] == []


def test_payment_digest_job_dry_run(monkeypatch, capsys):
    SessionLocal = _setup_db(f"sqlite:///./jobs_{uuid4().hex}.db")
    with SessionLocal() as db:
        log_payment_event(db, org_id=None, type=T.PAYMENT_SUCCEEDED)

    digest = _run(monkeypatch, capsys, payment_digest, SessionLocal, "--period-hours", "12", "--dry-run")
    assert digest["stats"]["payments_succeeded"] == 1
    assert digest["risk_level"] == "healthy"
    assert digest["emailed"] is False
