"""Vendor payables and shop expenses.

A vendor's balance is what the shop owes: the opening balance entered when the
vendor was created plus every bill recorded since. Expenses are a separate
book; tagging an expense with a vendor does not touch that vendor's balance.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from . import core_logic, data_manager, log
from .core_logic import MissingReferenceError, RuntimeContext, ValidationError

VENDORS_CACHE = "vendors"
BILLS_CACHE = "vendor_bills"
EXPENSES_CACHE = "expenses"


def _vendors(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, VENDORS_CACHE, data_manager.iter_vendors, "vendor_id")


def _bills(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, BILLS_CACHE, data_manager.iter_vendor_bills, "bill_id")


def _expenses(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, EXPENSES_CACHE, data_manager.iter_expenses, "expense_id")


def _parse_date(raw: Optional[str], *, field_name: str, when: Optional[datetime] = None) -> str:
    if raw is None or not str(raw).strip():
        return core_logic.today_iso(when)
    try:
        return date.fromisoformat(str(raw).strip()).isoformat()
    except ValueError as exc:
        raise ValidationError(f"{field_name} must be an ISO date (YYYY-MM-DD): {raw!r}") from exc


def list_vendors(context: RuntimeContext) -> List[data_manager.VendorRow]:
    return list(_vendors(context)["all"])


def get_vendor(context: RuntimeContext, vendor_id: str) -> data_manager.VendorRow:
    """Resolve a vendor by id.

    Raises:
        MissingReferenceError: If the vendor is unknown.
    """

    try:
        return _vendors(context)["by_id"][vendor_id]
    except KeyError as exc:
        log.warning("Vendor lookup failed for id '%s'", vendor_id)
        raise MissingReferenceError(f"Unknown vendor id: {vendor_id}") from exc


def _build_vendor(
    context: RuntimeContext,
    *,
    vendor_name: str,
    category: Optional[str],
    opening_balance: core_logic.Money,
    next_payment_date: Optional[str],
    phone: Optional[str],
    vendor_id: Optional[str],
    when: Optional[datetime],
) -> data_manager.VendorRow:
    name = core_logic.require_text(vendor_name, field_name="Vendor name")
    opening = core_logic.parse_money(opening_balance, field_name="opening balance")
    core_logic.require_nonnegative_money(opening, field_name="opening balance")
    new_id = (vendor_id or "").strip() or core_logic.generate_id("V", when=when)
    if new_id in _vendors(context)["by_id"]:
        raise ValidationError(f"Vendor id already exists: {new_id}")
    return data_manager.VendorRow(
        vendor_id=new_id,
        vendor_name=name,
        phone=(phone or "").strip() or None,
        category=(category or "").strip() or "General",
        opening_balance=opening,
        balance=opening,
        next_payment_date=_parse_date(next_payment_date, field_name="Next payment date", when=when),
    )


def _store_vendor(context: RuntimeContext, vendor: data_manager.VendorRow, operation: str) -> None:
    with core_logic.unit_of_work(context, operation):
        data_manager.append_vendor(context.workbook, vendor)
        core_logic.invalidate_cache(context, VENDORS_CACHE)
    log.info("Added vendor '%s' (%s) with balance %s", vendor.vendor_id, vendor.vendor_name, vendor.balance)


def create_vendor(
    context: RuntimeContext,
    *,
    vendor_name: str,
    category: str = "General",
    opening_balance: core_logic.Money = Decimal("0"),
    next_payment_date: Optional[str] = None,
    phone: Optional[str] = None,
    vendor_id: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.VendorRow:
    """Register a supplier the shop buys from.

    The vendor starts with no bills and ``balance == opening_balance``.
    ``next_payment_date`` defaults to today.

    Raises:
        ValidationError: On a blank name, a negative opening balance, a
            malformed date or a duplicate id.
    """

    vendor = _build_vendor(
        context,
        vendor_name=vendor_name,
        category=category,
        opening_balance=opening_balance,
        next_payment_date=next_payment_date,
        phone=phone,
        vendor_id=vendor_id,
        when=when,
    )
    _store_vendor(context, vendor, "create_vendor")
    return vendor


def create_vendor_from_expense(
    context: RuntimeContext,
    *,
    vendor_name: str,
    category: str = "General",
    phone: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.VendorRow:
    """Create a vendor on the fly while entering an expense.

    Goes through the same builder as :func:`create_vendor` with a zero opening
    balance, so both paths yield the same initial state.
    """

    vendor = _build_vendor(
        context,
        vendor_name=vendor_name,
        category=category,
        opening_balance=Decimal("0"),
        next_payment_date=None,
        phone=phone,
        vendor_id=None,
        when=when,
    )
    _store_vendor(context, vendor, "create_vendor_from_expense")
    return vendor


def update_vendor(
    context: RuntimeContext,
    vendor_id: str,
    *,
    vendor_name: Optional[str] = None,
    category: Optional[str] = None,
    phone: Optional[str] = None,
    next_payment_date: Optional[str] = None,
) -> data_manager.VendorRow:
    """Edit vendor details. Balances only move through bills."""

    get_vendor(context, vendor_id)
    values: Dict[str, Any] = {}
    if vendor_name is not None:
        values["VendorName"] = core_logic.require_text(vendor_name, field_name="Vendor name")
    if category is not None:
        values["Category"] = category.strip() or "General"
    if phone is not None:
        values["Phone"] = phone.strip() or None
    if next_payment_date is not None:
        values["NextPaymentDate"] = _parse_date(next_payment_date, field_name="Next payment date")
    if not values:
        return get_vendor(context, vendor_id)

    with core_logic.unit_of_work(context, "update_vendor"):
        data_manager.update_vendor(context.workbook, vendor_id, field_values=values)
        core_logic.invalidate_cache(context, VENDORS_CACHE)
    log.info("Updated vendor '%s'", vendor_id)
    return get_vendor(context, vendor_id)


def delete_vendor(context: RuntimeContext, vendor_id: str) -> int:
    """Delete a vendor and the bills it owns. Expenses keep their name snapshot.

    Returns:
        int: Number of bills removed.
    """

    get_vendor(context, vendor_id)
    with core_logic.unit_of_work(context, "delete_vendor"):
        removed = data_manager.delete_rows(context.workbook, data_manager.VENDOR_BILLS_SHEET, "VendorID", vendor_id)
        data_manager.delete_rows(context.workbook, data_manager.VENDORS_SHEET, "VendorID", vendor_id)
        core_logic.invalidate_cache(context, VENDORS_CACHE, BILLS_CACHE)
    log.info("Deleted vendor '%s' and %d bill(s)", vendor_id, removed)
    return removed


def list_bills(context: RuntimeContext, vendor_id: str) -> List[data_manager.VendorBillRow]:
    """Return a vendor's bills in insertion order."""

    get_vendor(context, vendor_id)
    return [bill for bill in _bills(context)["all"] if bill.vendor_id == vendor_id]


def bills_total(bills: Iterable[data_manager.VendorBillRow]) -> Decimal:
    return sum((bill.amount for bill in bills), Decimal("0.00"))


def verify_vendor_balance(context: RuntimeContext, vendor_id: str) -> bool:
    """Check that the stored balance equals opening balance plus all bills."""

    vendor = get_vendor(context, vendor_id)
    expected = vendor.opening_balance + bills_total(list_bills(context, vendor_id))
    if vendor.balance != expected:
        log.error("Balance drift on vendor '%s': stored %s, bills %s", vendor_id, vendor.balance, expected)
        return False
    return True


def record_bill(
    context: RuntimeContext,
    vendor_id: str,
    amount: core_logic.Money,
    description: str,
    bill_date: Optional[str] = None,
    receipt_ref: Optional[str] = None,
    *,
    when: Optional[datetime] = None,
) -> data_manager.VendorBillRow:
    """Record a purchase bill received from a vendor.

    The bill is appended and the vendor balance grows by ``amount`` in the
    same unit of work.

    Raises:
        MissingReferenceError: If the vendor is unknown.
        ValidationError: If the amount is not positive or the date malformed.
    """

    vendor = get_vendor(context, vendor_id)
    value = core_logic.parse_money(amount)
    core_logic.require_positive_money(value)

    bill = data_manager.VendorBillRow(
        bill_id=core_logic.generate_id("B", when=when),
        vendor_id=vendor_id,
        bill_date=_parse_date(bill_date, field_name="Bill date", when=when),
        amount=value,
        items_description=(description or "").strip(),
        receipt_ref=(receipt_ref or "").strip() or None,
    )
    new_balance = vendor.balance + value
    with core_logic.unit_of_work(context, "record_bill"):
        data_manager.append_vendor_bill(context.workbook, bill)
        data_manager.update_vendor(context.workbook, vendor_id, field_values={"Balance": new_balance})
        core_logic.invalidate_cache(context, VENDORS_CACHE, BILLS_CACHE)
    log.info("Recorded bill '%s' of %s from vendor '%s' (balance %s)", bill.bill_id, value, vendor_id, new_balance)
    return bill


def list_expenses(context: RuntimeContext) -> List[data_manager.ExpenseRow]:
    return list(_expenses(context)["all"])


def record_expense(
    context: RuntimeContext,
    *,
    amount: core_logic.Money,
    category: str,
    description: str = "",
    expense_date: Optional[str] = None,
    vendor_id: Optional[str] = None,
    new_vendor_name: Optional[str] = None,
    new_vendor_category: Optional[str] = None,
    when: Optional[datetime] = None,
) -> data_manager.ExpenseRow:
    """Record money the shop spent.

    An expense may reference an existing vendor (``vendor_id``) or create one
    on the spot (``new_vendor_name``); either way only the vendor's id and
    name are copied onto the expense and the vendor's balance is left alone.

    Raises:
        MissingReferenceError: If ``vendor_id`` is unknown.
        ValidationError: If the amount is not positive, both vendor options
            are given, or the date is malformed.
    """

    value = core_logic.parse_money(amount)
    core_logic.require_positive_money(value)
    if vendor_id and new_vendor_name:
        raise ValidationError("Give either an existing vendor or a new vendor name, not both")
    spent_on = _parse_date(expense_date, field_name="Expense date", when=when)
    vendor = get_vendor(context, vendor_id) if vendor_id else None

    with core_logic.unit_of_work(context, "record_expense"):
        if new_vendor_name:
            vendor = create_vendor_from_expense(
                context,
                vendor_name=new_vendor_name,
                category=new_vendor_category or category,
                when=when,
            )
        expense = data_manager.ExpenseRow(
            expense_id=core_logic.generate_id("E", when=when),
            expense_date=spent_on,
            amount=value,
            category=(category or "").strip() or "General",
            description=(description or "").strip(),
            vendor_id=vendor.vendor_id if vendor else None,
            vendor_name=vendor.vendor_name if vendor else None,
        )
        data_manager.append_expense(context.workbook, expense)
        core_logic.invalidate_cache(context, EXPENSES_CACHE)
    log.info("Recorded expense '%s' of %s (%s)", expense.expense_id, value, expense.category)
    return expense
