"""
Transactional email content.

Each template is a subject/body pair with {placeholders}; builders fill them
from domain objects and return an OutgoingEmail. Unknown placeholders are
left as-is rather than raising.
"""

from __future__ import annotations

from dataclasses import dataclass
from html import escape
from typing import Any, Optional

from entry.core.config import settings
from entry.core.money import format_amount
from entry.emails.client import Attachment, OutgoingEmail


TEMPLATE_ORDER_CONFIRMATION = "order_confirmation"
TEMPLATE_ABANDONED_CART = "abandoned_cart"
TEMPLATE_TEAM_INVITE = "team_invite"
TEMPLATE_PLATFORM_ALERT = "platform_alert"
TEMPLATE_PAYMENT_DIGEST = "payment_digest"
TEMPLATE_REP_WELCOME = "rep_welcome"
TEMPLATE_REP_LEVEL_UP = "rep_level_up"
TEMPLATE_REP_SALE = "rep_sale_notification"
TEMPLATE_REP_REWARD = "rep_reward_unlocked"
TEMPLATE_REP_QUEST_REVIEWED = "rep_quest_reviewed"


@dataclass(frozen=True)
class EmailTemplate:
    key: str
    subject: str
    body: str
    cta_label: str | None = None


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


REP_TEMPLATES = {
    "welcome": EmailTemplate(
        key=TEMPLATE_REP_WELCOME,
        subject="You're in! Welcome to the {org_name} rep team",
        body=(
            "Hey {first_name},\n\n"
            "Your rep account is active. Share your code, complete quests and "
            "climb the leaderboard to unlock rewards."
        ),
        cta_label="Open your dashboard",
    ),
    "level_up": EmailTemplate(
        key=TEMPLATE_REP_LEVEL_UP,
        subject="Level up! You're now {new_level_name}",
        body=(
            "Hey {first_name},\n\n"
            "You just hit Level {new_level} ({new_level_name}). "
            "Keep it going."
        ),
        cta_label="See your progress",
    ),
    "sale_notification": EmailTemplate(
        key=TEMPLATE_REP_SALE,
        subject="New sale: {ticket_count} ticket(s) for {event_name}",
        body=(
            "Hey {first_name},\n\n"
            "Someone just bought {ticket_count} ticket(s) for {event_name} with your code "
            "{discount_code}. You earned {points} points.\n\n"
            "Your balance is now {points_balance}."
        ),
        cta_label="View your sales",
    ),
    "reward_unlocked": EmailTemplate(
        key=TEMPLATE_REP_REWARD,
        subject="Reward unlocked: {reward_name}",
        body=(
            "Hey {first_name},\n\n"
            "You reached the milestone \"{milestone_title}\" and unlocked {reward_name}. "
            "The team will be in touch to sort it out."
        ),
        cta_label="View rewards",
    ),
    "quest_approved": EmailTemplate(
        key=TEMPLATE_REP_QUEST_REVIEWED,
        subject="Quest approved: {quest_title}",
        body=(
            "Hey {first_name},\n\n"
            "Your submission for \"{quest_title}\" was approved. +{points} points."
        ),
        cta_label="Find more quests",
    ),
    "quest_rejected": EmailTemplate(
        key=TEMPLATE_REP_QUEST_REVIEWED,
        subject="Quest update: {quest_title}",
        body=(
            "Hey {first_name},\n\n"
            "Your submission for \"{quest_title}\" wasn't approved this time.\n\n"
            "Reason: {rejection_reason}"
        ),
        cta_label="Try again",
    ),
}


def _app_url(path: str) -> str:
    return f"{settings.APP_BASE_URL.rstrip('/')}{path}"


def _paragraphs_html(text: str) -> str:
    return "".join(
        f"<p style=\"margin:0 0 14px\">{escape(p).replace(chr(10), '<br>')}</p>"
        for p in text.split("\n\n")
        if p.strip()
    )


def _layout(*, heading: str, body_html: str, cta_label: str | None = None, cta_url: str | None = None, footer: str | None = None) -> str:
    cta = ""
    if cta_label and cta_url:
        cta = (
            f"<p style=\"margin:24px 0\"><a href=\"{escape(cta_url, quote=True)}\" "
            "style=\"background:#111;color:#fff;padding:12px 20px;border-radius:6px;"
            f"text-decoration:none;font-weight:600\">{escape(cta_label)}</a></p>"
        )
    footer_html = f"<p style=\"color:#888;font-size:12px\">{escape(footer)}</p>" if footer else ""
    return (
        "<!doctype html><html><body style=\"font-family:Helvetica,Arial,sans-serif;"
        "color:#111;max-width:560px;margin:0 auto;padding:24px\">"
        f"<h1 style=\"font-size:20px\">{escape(heading)}</h1>"
        f"{body_html}{cta}{footer_html}</body></html>"
    )


def render_template(template: EmailTemplate, context: dict[str, Any], *, cta_url: str | None = None) -> tuple[str, str, str]:
    values = _SafeDict({k: "" if v is None else v for k, v in context.items()})
    subject = template.subject.format_map(values)
    body = template.body.format_map(values)
    text = body
    if template.cta_label and cta_url:
        text = f"{body}\n\n{template.cta_label}: {cta_url}"
    html = _layout(
        heading=subject,
        body_html=_paragraphs_html(body),
        cta_label=template.cta_label,
        cta_url=cta_url,
    )
    return subject, html, text


def order_confirmation(order, *, org_name: str, pdf_bytes: bytes | None = None) -> OutgoingEmail:
    event = order.event
    customer = order.customer
    meta = order.metadata_json or {}
    lines = []
    for item in order.items:
        name = item.ticket_type.name if item.ticket_type else "Ticket"
        lines.append(f"{item.qty} x {name} @ {format_amount(item.unit_price, order.currency)}")
    ticket_codes = [t.ticket_code for t in order.tickets]

    text_parts = [
        f"Hi {customer.first_name or 'there'},",
        f"You're going to {event.name}! Order {order.order_number}.",
        "\n".join(lines),
    ]
    if order.fees:
        text_parts.append(f"Fees: {format_amount(order.fees, order.currency)}")
    text_parts.append(f"Total: {format_amount(order.total, order.currency)}")
    if meta.get("vat_amount"):
        label = "includes" if meta.get("vat_inclusive") else "plus"
        text_parts.append(
            f"VAT ({meta.get('vat_rate')}%, {label}): {format_amount(meta['vat_amount'], order.currency)}"
            + (f" | VAT no. {meta['vat_number']}" if meta.get("vat_number") else "")
        )
    text_parts.append("Your tickets: " + ", ".join(ticket_codes))
    if event.venue_name:
        text_parts.append(f"Venue: {event.venue_name}")
    text = "\n\n".join(text_parts)

    html = _layout(
        heading=f"Your tickets for {event.name}",
        body_html=_paragraphs_html(text),
        cta_label="View your tickets",
        cta_url=_app_url(f"/orders/{order.order_number}"),
        footer=f"{org_name} | Sold via Entry",
    )
    attachments = []
    if pdf_bytes:
        attachments.append(Attachment(filename=f"{order.order_number}-tickets.pdf", content=pdf_bytes))
    return OutgoingEmail(
        to=customer.email,
        subject=f"Your tickets for {event.name} ({order.order_number})",
        html=html,
        text=text,
        template=TEMPLATE_ORDER_CONFIRMATION,
        from_name=org_name,
        attachments=attachments,
    )


def abandoned_cart(cart, *, event, org_name: str, step: dict, recovery_url: str, unsubscribe_url: str) -> OutgoingEmail:
    lines = [
        f"{item.get('qty', 1)} x {item.get('name', 'Ticket')}"
        for item in (cart.items or [])
    ]
    subject = step.get("subject") or f"You left something behind: {event.name}"
    paragraphs = [
        f"Hi {cart.first_name or 'there'},",
        f"Your tickets for {event.name} are still waiting.",
        "\n".join(lines),
        f"Subtotal: {format_amount(cart.subtotal, cart.currency)}",
    ]
    if step.get("include_discount") and step.get("discount_code"):
        percent = step.get("discount_percent")
        offer = f"{percent}% off" if percent else "a discount"
        paragraphs.append(f"Use code {step['discount_code']} for {offer} at checkout.")
    text = "\n\n".join(paragraphs) + f"\n\nComplete your order: {recovery_url}\n\nUnsubscribe: {unsubscribe_url}"
    html = _layout(
        heading=subject,
        body_html=_paragraphs_html("\n\n".join(paragraphs)),
        cta_label="Complete your order",
        cta_url=recovery_url,
        footer=f"Don't want these reminders? Unsubscribe: {unsubscribe_url}",
    )
    return OutgoingEmail(
        to=cart.email,
        subject=subject,
        html=html,
        text=text,
        template=TEMPLATE_ABANDONED_CART,
        from_name=org_name,
    )


def rep_email(kind: str, *, rep, org_name: str, data: dict[str, Any], from_name: Optional[str] = None) -> Optional[OutgoingEmail]:
    template = REP_TEMPLATES.get(kind)
    if template is None:
        return None
    context = {"first_name": rep.first_name, "org_name": org_name, **data}
    subject, html, text = render_template(template, context, cta_url=_app_url("/rep"))
    return OutgoingEmail(
        to=rep.email,
        subject=subject,
        html=html,
        text=text,
        template=template.key,
        from_name=from_name or org_name,
    )


def team_invite(*, to_email: str, org_name: str, invited_by: str, temporary_password: str | None) -> OutgoingEmail:
    text = (
        f"{invited_by} invited you to manage {org_name} on Entry."
        + (f"\n\nYour temporary password is {temporary_password}. Change it after you sign in." if temporary_password else "")
    )
    url = _app_url("/admin/login")
    return OutgoingEmail(
        to=to_email,
        subject=f"You've been invited to {org_name}",
        html=_layout(heading=f"Join {org_name}", body_html=_paragraphs_html(text), cta_label="Sign in", cta_url=url),
        text=f"{text}\n\nSign in: {url}",
        template=TEMPLATE_TEAM_INVITE,
    )


def platform_alert(*, to_email: str, subject: str, lines: list[str]) -> OutgoingEmail:
    text = "\n".join(lines)
    return OutgoingEmail(
        to=to_email,
        subject=subject,
        html=_layout(
            heading=subject,
            body_html=f"<pre style=\"font-size:13px;white-space:pre-wrap\">{escape(text)}</pre>",
            cta_label="Open payment health",
            cta_url=_app_url("/admin/backend/payment-health"),
        ),
        text=text,
        template=TEMPLATE_PLATFORM_ALERT,
        from_name="Entry Alerts",
    )


def payment_digest(*, to_email: str, digest: dict[str, Any]) -> OutgoingEmail:
    stats = digest["stats"]
    risk = digest["risk_level"]
    lines = [
        f"Period: last {digest['period_hours']}h",
        f"Risk level: {risk.upper()}",
        "",
        f"Payments succeeded: {stats['payments_succeeded']}",
        f"Payments failed: {stats['payments_failed']} ({stats['failure_rate'] * 100:.1f}%)",
        f"Failed amount: {format_amount(stats['total_amount_failed_pence'] / 100, 'gbp')}",
        f"Unique customers affected: {stats['unique_customers_failed']}",
        f"Checkout errors: {stats['checkout_errors']}",
        f"Webhook errors: {stats['webhook_errors']}",
        f"Unresolved critical events: {stats['unresolved_critical']}",
    ]
    if stats["top_decline_codes"]:
        lines.append("")
        lines.append("Top decline codes:")
        lines.extend(f"  {row['code']}: {row['count']}" for row in stats["top_decline_codes"])
    if stats["affected_events"]:
        lines.append("")
        lines.append("Most affected events:")
        lines.extend(f"  {row['event']}: {row['failures']}" for row in stats["affected_events"])
    if digest.get("findings"):
        lines.append("")
        lines.extend(f"- {finding}" for finding in digest["findings"])
    subject = f"[Entry] Payment digest: {risk}"
    message = platform_alert(to_email=to_email, subject=subject, lines=lines)
    message.template = TEMPLATE_PAYMENT_DIGEST
    return message
