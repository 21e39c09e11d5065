# This file bootstraps the FastAPI app, wires up the logging and metrics
# middlewares, maps domain errors to JSON responses, sets up CORS and
# includes every router under both the root and /api/v1.

import os

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import entry.models  # noqa: F401  registers every table on Base.metadata
from entry.core.config import settings
from entry.core.db import Base, engine
from entry.core.logging import APILoggingMiddleware, configure_logging
from entry.core.metrics import MetricsMiddleware
from entry.orders.service import OrderError
from entry.reps.program import RepProgramError
from entry.reps.quests import QuestError
from entry.reps.rewards import RewardClaimError
from entry.tenancy.errors import OrgNotFound
from entry.tenancy.middleware import RequestContextMiddleware

from entry.api.auth import router as auth_router
from entry.api.carts import router as carts_router
from entry.api.checkout import router as checkout_router
from entry.api.cron import router as cron_router
from entry.api.customers import router as customers_router
from entry.api.discounts import router as discounts_router
from entry.api.events import router as events_router
from entry.api.health import router as health_router
from entry.api.orders import router as orders_router
from entry.api.orgs import router as orgs_router
from entry.api.platform import router as platform_router
from entry.api.rep_portal import router as rep_portal_router
from entry.api.reps import router as reps_router
from entry.api.tickets import router as tickets_router
from entry.api.webhooks import router as webhooks_router

# Create tables up front for local runs and tests. Deployments run
# alembic and set SKIP_MIGRATIONS=1.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

configure_logging()

app = FastAPI(title="Entry")


def _error_response(status_code: int, message: str, code: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message}, headers={"X-Error-Code": code})


@app.exception_handler(OrderError)
def handle_order_error(_request, exc: OrderError):
    # Covers checkout, order creation and refund failures.
    return _error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(RewardClaimError)
def handle_reward_claim_error(_request, exc: RewardClaimError):
    return _error_response(exc.status_code, exc.message, exc.code)


@app.exception_handler(QuestError)
def handle_quest_error(_request, exc: QuestError):
    return _error_response(exc.status_code, exc.message, "quest_error")


@app.exception_handler(RepProgramError)
def handle_rep_program_error(_request, exc: RepProgramError):
    return _error_response(exc.status_code, exc.message, "rep_program_error")


@app.exception_handler(OrgNotFound)
def handle_org_not_found(_request, exc: OrgNotFound):
    return _error_response(404, str(exc) or "Not found", "not_found")


# Observability layers
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

api_v1 = APIRouter(prefix="/api/v1")
api_root = APIRouter(prefix="")

routers = [
    health_router,
    auth_router,
    orgs_router,
    events_router,
    discounts_router,
    checkout_router,
    webhooks_router,
    orders_router,
    customers_router,
    tickets_router,
    carts_router,
    reps_router,
    rep_portal_router,
    platform_router,
    cron_router,
]

for r in routers:
    api_v1.include_router(r)
    api_root.include_router(r)

app.include_router(api_v1)
app.include_router(api_root)

# Attach request context (request_id, client_ip) early.
app.add_middleware(RequestContextMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Error-Code", "Content-Disposition"],
    max_age=86400,
)
