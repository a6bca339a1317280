"""Adapters around external collaborators.

The ledger only supplies inputs to the scanner, payment QR, messaging and
advisor services; the services themselves are passed in as callables.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List
from urllib.parse import quote, urlencode

from . import core_logic, credit_ledger, data_manager, inventory, log, reports
from .core_logic import RuntimeContext, ValidationError

ADVISOR_FALLBACK = "Unable to reach the business assistant right now. Please try again later."

Dispatcher = Callable[[str, str], Any]


@dataclass(frozen=True)
class InsightRequest:
    weekly_sales: List[data_manager.DailySalesRow]
    total_receivables: Decimal
    total_payables: Decimal


def resolve_scanned_code(context: RuntimeContext, code: str) -> data_manager.ProductRow:
    """Look up the product for a decoded barcode or QR payload."""

    return inventory.find_product_by_code(context, code)


def build_upi_payment_uri(upi_id: str, payee_name: str, amount: core_logic.Money) -> str:
    """Build the ``upi://pay`` payload a QR generator encodes.

    Raises:
        ValidationError: If the UPI id is blank or the amount is negative.
    """

    payee = core_logic.require_text(upi_id, field_name="UPI id")
    value = core_logic.parse_money(amount)
    core_logic.require_nonnegative_money(value)
    query = urlencode(
        {"pa": payee, "pn": (payee_name or "").strip(), "am": str(value), "tn": "BillPayment"},
        quote_via=quote,
        safe="@",
    )
    return f"upi://pay?{query}"


def build_payment_link(context: RuntimeContext, amount: core_logic.Money) -> str:
    """UPI payload for the configured merchant."""

    return build_upi_payment_uri(context.settings.merchant.upi_id, context.settings.shop_name, amount)


def compose_payment_reminder(customer: data_manager.CustomerRow) -> str:
    return (
        f"Namaste {customer.customer_name} Ji, your current pending amount at our store is "
        f"₹{customer.balance}. Please pay at your earliest convenience. Thank you!"
    )


def build_whatsapp_link(phone: str, message: str, country_code: str = "91") -> str:
    """Return a ``wa.me`` deep link carrying ``message``.

    Raises:
        ValidationError: If ``phone`` contains no digits.
    """

    digits = credit_ledger.normalise_phone(phone)
    if not digits:
        raise ValidationError(f"Phone number has no digits: {phone!r}")
    if not digits.startswith(country_code) or len(digits) <= 10:
        digits = f"{country_code}{digits[-10:]}"
    return f"https://wa.me/{digits}?text={quote(message, safe='')}"


def send_payment_reminder(context: RuntimeContext, customer_id: str, dispatcher: Dispatcher) -> str:
    """Compose a reminder for a customer and hand it to ``dispatcher``.

    Returns the message that was dispatched. Dispatcher failures propagate;
    no ledger state is touched.

    Raises:
        MissingReferenceError: If the customer is unknown.
        ValidationError: If the customer owes nothing.
    """

    customer = credit_ledger.get_customer(context, customer_id)
    if customer.balance <= 0:
        raise ValidationError(f"Customer '{customer_id}' has no pending amount")
    message = compose_payment_reminder(customer)
    dispatcher(customer.phone, message)
    log.info("Sent payment reminder to customer '%s' for %s", customer_id, customer.balance)
    return message


def build_insight_request(context: RuntimeContext) -> InsightRequest:
    summary = reports.build_dashboard_summary(context)
    return InsightRequest(
        weekly_sales=summary.weekly_sales,
        total_receivables=summary.total_receivables,
        total_payables=summary.total_payables,
    )


def request_business_insight(context: RuntimeContext, advisor: Callable[[InsightRequest], str]) -> str:
    """Ask the advisor for a short summary of the business.

    Best effort: any advisor failure is logged and replaced with a fallback
    message.
    """

    request = build_insight_request(context)
    try:
        text = advisor(request)
    except Exception:
        log.exception("Business advisor call failed")
        return ADVISOR_FALLBACK
    return (text or "").strip() or ADVISOR_FALLBACK
