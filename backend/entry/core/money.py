"""
Money helpers: VAT, platform fees, minor-unit conversion and display.

Amounts in major units (e.g. 26.50) are floats rounded half-up to 2dp;
amounts in minor units (pence/cents) are ints.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional


DEFAULT_PLATFORM_FEE_PERCENT = 5
MIN_PLATFORM_FEE = 50
SUPPORTED_CURRENCIES = ("gbp", "eur", "usd")

DEFAULT_VAT_SETTINGS = {
    "vat_registered": False,
    "vat_number": "",
    "vat_rate": 20,
    "prices_include_vat": True,
}

_CURRENCY_SYMBOLS = {"gbp": "£", "eur": "€", "usd": "$"}

_GB_VAT_RE = re.compile(r"^GB\d{9}(\d{3})?$")
_EU_VAT_RE = re.compile(r"^[A-Z]{2}[A-Z0-9]{2,15}$")


def round_half_up(value: float | Decimal, places: int = 2) -> float:
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def _round_int(value: float | Decimal) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class VatBreakdown:
    net: float
    vat: float
    gross: float

    def as_dict(self) -> dict[str, float]:
        return {"net": self.net, "vat": self.vat, "gross": self.gross}


def calculate_vat(amount: float, rate: float, inclusive: bool) -> VatBreakdown:
    """
    Split `amount` into net/vat/gross.

    inclusive=True treats amount as gross (VAT extracted); otherwise it is
    net and VAT is added on top.
    """
    if rate <= 0 or amount <= 0:
        return VatBreakdown(net=amount, vat=0.0, gross=amount)
    if inclusive:
        gross = amount
        net = round_half_up(gross / (1 + rate / 100))
        vat = round_half_up(gross - net)
        return VatBreakdown(net=net, vat=vat, gross=gross)
    net = amount
    vat = round_half_up(net * rate / 100)
    gross = round_half_up(net + vat)
    return VatBreakdown(net=net, vat=vat, gross=gross)


def calculate_checkout_vat(subtotal: float, vat_settings: Optional[Mapping[str, Any]]) -> Optional[VatBreakdown]:
    if not vat_settings or not vat_settings.get("vat_registered"):
        return None
    rate = float(vat_settings.get("vat_rate") or 0)
    if rate <= 0:
        return None
    return calculate_vat(subtotal, rate, bool(vat_settings.get("prices_include_vat", True)))


def validate_vat_number(value: str | None) -> Optional[str]:
    """Return the cleaned VAT number, or None when it is not a plausible format."""
    if not value:
        return None
    cleaned = re.sub(r"\s+", "", value).upper()
    if _GB_VAT_RE.match(cleaned) or _EU_VAT_RE.match(cleaned):
        return cleaned
    return None


def to_smallest_unit(amount: float) -> int:
    return _round_int(Decimal(str(amount)) * 100)


def from_smallest_unit(amount: int) -> float:
    return amount / 100


def calculate_application_fee(
    amount_in_smallest_unit: int,
    fee_percent: float = DEFAULT_PLATFORM_FEE_PERCENT,
    min_fee: int = MIN_PLATFORM_FEE,
) -> int:
    fee = _round_int(Decimal(amount_in_smallest_unit) * Decimal(str(fee_percent)) / 100)
    return max(fee, min_fee)


def currency_symbol(currency: str) -> str:
    return _CURRENCY_SYMBOLS.get(currency.lower(), currency.upper())


def format_price(price: float, currency: str | None = None) -> str:
    symbol = currency_symbol(currency) if currency else ""
    if float(price) == int(price):
        display = str(int(price))
    else:
        display = f"{round_half_up(price):.2f}"
    return f"{symbol}{display}"


def format_amount(price: float, currency: str | None = None) -> str:
    """Always two decimals, for receipts and validation messages."""
    symbol = currency_symbol(currency) if currency else ""
    return f"{symbol}{round_half_up(price):.2f}"


_DECLINE_MESSAGES = {
    "insufficient_funds": "Insufficient funds. Please use a different card or payment method.",
    "lost_card": "This card cannot be used. Please try a different card.",
    "stolen_card": "This card cannot be used. Please try a different card.",
    "card_not_supported": "This card type is not supported. Please try a different card.",
    "do_not_honor": "Your bank declined this transaction. Please contact your bank or try a different card.",
    "try_again_later": "Your bank couldn't process this right now. Please try again in a moment.",
    "currency_not_supported": "Your card doesn't support this currency. Please try a different card.",
    "duplicate_transaction": "A duplicate transaction was detected. Please wait a moment before trying again.",
    "fraudulent": "This transaction was declined. Please try a different card.",
    "withdrawal_count_limit_exceeded": "You've exceeded your card's transaction limit. Please try a different card.",
}
_GENERIC_DECLINE = "Your card was declined. Please contact your bank or try a different card."


def payment_error_message(
    code: str | None = None,
    decline_code: str | None = None,
    message: str | None = None,
) -> str:
    """Translate Stripe error/decline codes into something a buyer can act on."""
    if code == "incomplete_number":
        return "Your card number is incomplete."
    if code in {"invalid_number", "incorrect_number"}:
        return "Your card number is invalid. Please check and try again."
    if code in {"incomplete_expiry", "invalid_expiry_month", "invalid_expiry_year"}:
        return "Your card's expiry date is incomplete."
    if code == "expired_card" or decline_code == "expired_card":
        return "Your card has expired. Please use a different card."
    if code in {"incorrect_cvc", "invalid_cvc", "incomplete_cvc"}:
        return "Your card's security code is incorrect."
    if code in {"incorrect_zip", "postal_code_invalid"}:
        return "Your postal code doesn't match your card. Please check and try again."
    if code == "card_declined" or decline_code:
        return _DECLINE_MESSAGES.get(decline_code or "", _GENERIC_DECLINE)
    if code == "processing_error":
        return "An error occurred while processing your card. Please try again."
    if code == "rate_limit":
        return "Too many attempts. Please wait a moment and try again."
    return message or "Payment failed. Please try again."
