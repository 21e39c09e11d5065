import json
import logging
import os
from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "secret")
os.environ.setdefault("SKIP_MIGRATIONS", "1")

from entry.main import app  # noqa: E402
import entry.core.db as db_module  # noqa: E402
from entry.core.db import Base  # noqa: E402
from entry.core.logging import JsonLogFormatter  # noqa: E402
from entry.core.rate_limit import reset_state  # noqa: E402
from factories import auth_headers, make_org, make_user  # noqa: E402


def _setup_db(db_url: str):
    engine = create_engine(db_url, connect_args={"check_same_thread": False}, future=True)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db_module.engine = engine
    db_module.SessionLocal = SessionLocal
    Base.metadata.create_all(bind=engine)
    reset_state()
    return SessionLocal


def _completed(caplog):
    return [record for record in caplog.records if record.getMessage() == "request.completed"]


def test_logging_includes_request_id(caplog):
    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        response = client.get("/ping", headers={"X-Request-ID": "req-123"})
        assert response.status_code == 200
        assert response.headers.get("X-Request-ID") == "req-123"

        records = _completed(caplog)
        assert records, "Expected a structured request log entry"
        entry = records[-1]
        assert getattr(entry, "request_id", None) == "req-123"
        assert getattr(entry, "status_code", None) == 200
        assert getattr(entry, "org_id", "missing") is None
    finally:
        logger.removeHandler(caplog.handler)


def test_logging_carries_org_user_and_error_code(caplog):
    SessionLocal = _setup_db(f"sqlite:///./logging_{uuid4().hex}.db")
    with SessionLocal() as db:
        owner = make_user(db)
        org = make_org(db, owner=owner)
        headers = auth_headers(owner, org)
        org_id, user_id = org.id, owner.id

    logger = logging.getLogger("api_logger")
    logger.addHandler(caplog.handler)
    logger.setLevel(logging.INFO)
    try:
        client = TestClient(app)
        assert client.get("/api/v1/org", headers=headers).status_code == 200
        ok = _completed(caplog)[-1]
        assert ok.org_id == org_id
        assert ok.user_id == user_id
        assert ok.route == "/api/v1/org"

        missing = client.get("/api/v1/tickets/NOPE-0000/qr.png", headers=headers)
        assert missing.status_code == 404
        failed = _completed(caplog)[-1]
        assert failed.status_code == 404
        assert failed.route == "/api/v1/tickets/{code}/qr.png"
    finally:
        logger.removeHandler(caplog.handler)


def test_json_formatter_keeps_extra_fields():
    record = logging.LogRecord("api_logger", logging.INFO, __file__, 1, "request.completed", None, None)
    record.request_id = "req-9"
    record.error_code = None
    record.ignored = None

    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["message"] == "request.completed"
    assert payload["request_id"] == "req-9"
    assert payload["error_code"] is None
    assert "ignored" not in payload
