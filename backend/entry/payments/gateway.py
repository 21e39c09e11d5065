"""
Thin Stripe wrappers.

Callers go through this module (never `stripe.*` directly) so the API key is
always set and connected-account routing lives in one place. Return values
are Stripe objects; callers read them with item access or `.get()`.
"""

from __future__ import annotations

from typing import Any, Optional

import stripe

from entry.core.config import settings


class GatewayNotConfigured(Exception):
    """Raised when a Stripe call is attempted without STRIPE_SECRET_KEY."""


def _configure() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise GatewayNotConfigured("Stripe is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def is_configured() -> bool:
    return bool(settings.STRIPE_SECRET_KEY)


def _account_kwargs(stripe_account: Optional[str]) -> dict[str, Any]:
    return {"stripe_account": stripe_account} if stripe_account else {}


def create_payment_intent(
    *,
    amount: int,
    currency: str,
    metadata: dict[str, str],
    description: str | None = None,
    receipt_email: str | None = None,
    stripe_account: str | None = None,
    application_fee_amount: int | None = None,
):
    _configure()
    params: dict[str, Any] = {
        "amount": amount,
        "currency": currency.lower(),
        "metadata": metadata,
        "automatic_payment_methods": {"enabled": True},
    }
    if description:
        params["description"] = description
    if receipt_email:
        params["receipt_email"] = receipt_email
    if stripe_account and application_fee_amount:
        # Direct charge on the connected account; the platform keeps the fee.
        params["application_fee_amount"] = application_fee_amount
    return stripe.PaymentIntent.create(**params, **_account_kwargs(stripe_account))


def retrieve_payment_intent(payment_intent_id: str, *, stripe_account: str | None = None):
    _configure()
    return stripe.PaymentIntent.retrieve(payment_intent_id, **_account_kwargs(stripe_account))


def search_payment_intents(query: str, *, limit: int = 50):
    _configure()
    return stripe.PaymentIntent.search(query=query, limit=limit)


def create_refund(*, payment_intent: str, stripe_account: str | None = None):
    _configure()
    return stripe.Refund.create(payment_intent=payment_intent, **_account_kwargs(stripe_account))


def retrieve_account(account_id: str):
    _configure()
    return stripe.Account.retrieve(account_id)


def construct_event(payload: bytes, sig_header: str, secret: str):
    """Raises ValueError or stripe.error.SignatureVerificationError."""
    return stripe.Webhook.construct_event(payload, sig_header, secret)
