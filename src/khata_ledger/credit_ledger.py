"""Customer credit ledger (khata).

A customer's ``Balance`` column is a stored copy of the sum of that customer's
unpaid dues. Every function here that touches a due writes the balance in the
same unit of work, which is what keeps the copy authoritative.
"""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import core_logic, data_manager, log
from .core_logic import MissingReferenceError, RuntimeContext, ValidationError

CUSTOMERS_CACHE = "customers"
DUES_CACHE = "customer_dues"

LineItemInput = Union[data_manager.LineItem, Tuple[str, int, core_logic.Money]]


def _customers(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, CUSTOMERS_CACHE, data_manager.iter_customers, "customer_id")


def _dues(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, DUES_CACHE, data_manager.iter_customer_dues, "due_id")


def normalise_phone(phone: Optional[str]) -> str:
    """Strip everything but digits from a phone number."""

    return re.sub(r"\D", "", phone or "")


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_customers(context)["all"])


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer by id.

    Raises:
        MissingReferenceError: If the customer is unknown.
    """

    try:
        return _customers(context)["by_id"][customer_id]
    except KeyError as exc:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc


def find_customer_by_phone(context: RuntimeContext, phone: str) -> Optional[data_manager.CustomerRow]:
    digits = normalise_phone(phone)
    if not digits:
        return None
    for customer in list_customers(context):
        if normalise_phone(customer.phone) == digits:
            return customer
    return None


def add_customer(
    context: RuntimeContext,
    *,
    customer_name: str,
    phone: str,
    customer_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.CustomerRow:
    """Create a customer with an empty khata.

    New customers start with a zero balance and no dues. The phone number is
    the messaging address, so two customers may not share one.

    Raises:
        ValidationError: On a blank name, a phone without digits, or a phone
            or id already in use.
    """

    name = core_logic.require_text(customer_name, field_name="Customer name")
    phone_text = core_logic.require_text(phone, field_name="Phone")
    if not normalise_phone(phone_text):
        raise ValidationError(f"Phone number has no digits: {phone_text!r}")
    existing = find_customer_by_phone(context, phone_text)
    if existing is not None:
        raise ValidationError(f"Phone {phone_text} already belongs to customer '{existing.customer_id}'")

    new_id = (customer_id or "").strip() or core_logic.generate_id("C", when=when)
    if new_id in _customers(context)["by_id"]:
        raise ValidationError(f"Customer id already exists: {new_id}")

    customer = data_manager.CustomerRow(
        customer_id=new_id,
        customer_name=name,
        phone=phone_text,
        balance=Decimal("0.00"),
        last_transaction_date=core_logic.today_iso(when),
    )
    with core_logic.unit_of_work(context, "add_customer"):
        data_manager.append_customer(context.workbook, customer)
        core_logic.invalidate_cache(context, CUSTOMERS_CACHE)
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.customer_name)
    return customer


def update_customer(
    context: RuntimeContext,
    customer_id: str,
    *,
    customer_name: Optional[str] = None,
    phone: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Edit a customer's name or phone. The balance is never edited directly.

    Raises:
        MissingReferenceError: If the customer is unknown.
        ValidationError: On blank values or a phone owned by someone else.
    """

    get_customer(context, customer_id)
    values: Dict[str, Any] = {}
    if customer_name is not None:
        values["CustomerName"] = core_logic.require_text(customer_name, field_name="Customer name")
    if phone is not None:
        phone_text = core_logic.require_text(phone, field_name="Phone")
        if not normalise_phone(phone_text):
            raise ValidationError(f"Phone number has no digits: {phone_text!r}")
        owner = find_customer_by_phone(context, phone_text)
        if owner is not None and owner.customer_id != customer_id:
            raise ValidationError(f"Phone {phone_text} already belongs to customer '{owner.customer_id}'")
        values["Phone"] = phone_text
    if not values:
        return get_customer(context, customer_id)

    with core_logic.unit_of_work(context, "update_customer"):
        data_manager.update_customer(context.workbook, customer_id, field_values=values)
        core_logic.invalidate_cache(context, CUSTOMERS_CACHE)
    log.info("Updated customer '%s'", customer_id)
    return get_customer(context, customer_id)


def delete_customer(context: RuntimeContext, customer_id: str) -> int:
    """Delete a customer together with every due they own.

    Transactions keep their customer id and name snapshot.

    Returns:
        int: Number of dues removed with the customer.

    Raises:
        MissingReferenceError: If the customer is unknown.
    """

    get_customer(context, customer_id)
    with core_logic.unit_of_work(context, "delete_customer"):
        removed = data_manager.delete_rows(
            context.workbook, data_manager.CUSTOMER_DUES_SHEET, "CustomerID", customer_id
        )
        data_manager.delete_rows(context.workbook, data_manager.CUSTOMERS_SHEET, "CustomerID", customer_id)
        core_logic.invalidate_cache(context, CUSTOMERS_CACHE, DUES_CACHE)
    log.info("Deleted customer '%s' and %d due(s)", customer_id, removed)
    return removed


def list_dues(context: RuntimeContext, customer_id: str) -> List[data_manager.CustomerDueRow]:
    """Return a customer's dues in chronological (insertion) order.

    Raises:
        MissingReferenceError: If the customer is unknown.
    """

    get_customer(context, customer_id)
    return [due for due in _dues(context)["all"] if due.customer_id == customer_id]


def outstanding_dues(context: RuntimeContext, customer_id: str) -> List[data_manager.CustomerDueRow]:
    return [due for due in list_dues(context, customer_id) if not due.is_paid]


def get_due(context: RuntimeContext, customer_id: str, due_id: str) -> data_manager.CustomerDueRow:
    """Resolve a due owned by ``customer_id``.

    Raises:
        MissingReferenceError: If the customer is unknown, the due is unknown,
            or the due belongs to another customer.
    """

    get_customer(context, customer_id)
    due = _dues(context)["by_id"].get(due_id)
    if due is None or due.customer_id != customer_id:
        log.warning("Due lookup failed for '%s' on customer '%s'", due_id, customer_id)
        raise MissingReferenceError(f"Unknown due id for customer {customer_id}: {due_id}")
    return due


def unpaid_total(dues: Iterable[data_manager.CustomerDueRow]) -> Decimal:
    """Sum of unpaid due amounts, the value a customer's balance must equal."""

    return sum((due.amount for due in dues if not due.is_paid), Decimal("0.00"))


def verify_customer_balance(context: RuntimeContext, customer_id: str) -> bool:
    """Check that the stored balance equals the sum of unpaid dues."""

    customer = get_customer(context, customer_id)
    expected = unpaid_total(list_dues(context, customer_id))
    if customer.balance != expected:
        log.error(
            "Balance drift on customer '%s': stored %s, dues %s",
            customer_id,
            customer.balance,
            expected,
        )
        return False
    return True


def _normalise_items(items: Optional[Sequence[LineItemInput]]) -> Tuple[data_manager.LineItem, ...]:
    if not items:
        return ()
    lines = []
    for entry in items:
        if isinstance(entry, data_manager.LineItem):
            line = entry
        else:
            name, quantity, price = entry
            line = data_manager.LineItem(
                name=core_logic.require_text(name, field_name="Item name"),
                quantity=quantity,
                price=core_logic.parse_money(price, field_name="item price"),
            )
        core_logic.require_positive_quantity(line.quantity)
        core_logic.require_nonnegative_money(line.price, field_name="item price")
        lines.append(line)
    return tuple(lines)


def issue_due(
    context: RuntimeContext,
    customer_id: str,
    amount: core_logic.Money,
    description: str,
    items: Optional[Sequence[LineItemInput]] = None,
    *,
    when: Optional[datetime] = None,
) -> data_manager.CustomerDueRow:
    """Record credit extended to a customer.

    The due is appended unpaid, the customer's balance grows by ``amount`` and
    ``LastTransactionDate`` moves to the due date, all in one unit of work.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        customer_id (str): Customer receiving the credit.
        amount: Strictly positive amount owed.
        description (str): Free text shown in the khata.
        items: Optional itemised breakdown as :class:`LineItem` objects or
            ``(name, quantity, price)`` tuples.
        when (datetime | None): Timestamp used for the id and due date.

    Returns:
        data_manager.CustomerDueRow: The stored due.

    Raises:
        MissingReferenceError: If the customer is unknown.
        ValidationError: If the amount is not positive or an item is invalid.
    """

    customer = get_customer(context, customer_id)
    value = core_logic.parse_money(amount)
    core_logic.require_positive_money(value)
    lines = _normalise_items(items)
    moment = core_logic.resolve_timestamp(when)

    due = data_manager.CustomerDueRow(
        due_id=core_logic.generate_id("D", when=moment),
        customer_id=customer_id,
        amount=value,
        description=(description or "").strip() or "Credit",
        items=lines,
        due_date=core_logic.today_iso(moment),
        is_paid=False,
    )
    new_balance = customer.balance + value
    with core_logic.unit_of_work(context, "issue_due"):
        data_manager.append_customer_due(context.workbook, due)
        data_manager.update_customer(
            context.workbook,
            customer_id,
            field_values={"Balance": new_balance, "LastTransactionDate": due.due_date},
        )
        core_logic.invalidate_cache(context, CUSTOMERS_CACHE, DUES_CACHE)
    log.info(
        "Issued due '%s' of %s to customer '%s' (balance %s)",
        due.due_id,
        value,
        customer_id,
        new_balance,
    )
    return due


def settle_due(context: RuntimeContext, customer_id: str, due_id: str) -> data_manager.CustomerRow:
    """Mark a due as paid and release its amount from the balance.

    Paid is terminal: settling an already-paid due changes nothing and
    returns the customer as stored. The new balance is floored at zero so
    that drift can never produce a negative receivable from a settlement.

    Raises:
        MissingReferenceError: If the customer or due is unknown.
    """

    customer = get_customer(context, customer_id)
    due = get_due(context, customer_id, due_id)
    if due.is_paid:
        log.info("Due '%s' on customer '%s' is already settled", due_id, customer_id)
        return customer

    new_balance = max(Decimal("0.00"), customer.balance - due.amount)
    with core_logic.unit_of_work(context, "settle_due"):
        data_manager.update_customer_due(context.workbook, due_id, field_values={"IsPaid": True})
        data_manager.update_customer(context.workbook, customer_id, field_values={"Balance": new_balance})
        core_logic.invalidate_cache(context, CUSTOMERS_CACHE, DUES_CACHE)
    log.info("Settled due '%s' of %s for customer '%s' (balance %s)", due_id, due.amount, customer_id, new_balance)
    return get_customer(context, customer_id)
