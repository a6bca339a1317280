"""Read-side aggregates for the dashboard.

Everything here is recomputed from the current rows on demand; nothing is
cached or written back.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_FLOOR, Decimal
from typing import Iterable, List, Optional

from . import credit_ledger, data_manager, log, payables, sales
from .constants import HEURISTIC_EXPENSE_RATIO, WEEKDAYS, ExpenseMode
from .core_logic import RuntimeContext

_ZERO = Decimal("0.00")


@dataclass(frozen=True)
class ProfitSummary:
    """Revenue, expenses and profit for the dashboard.

    ``expenses_estimated`` is True when the expense figure comes from the
    revenue heuristic rather than recorded expenses; such figures are not
    authoritative.
    """

    revenue: Decimal
    expenses: Decimal
    profit: Decimal
    expenses_estimated: bool = False


@dataclass(frozen=True)
class DashboardSummary:
    total_receivables: Decimal
    total_payables: Decimal
    cash_on_hand: Decimal
    weekly_sales: List[data_manager.DailySalesRow]
    profit: ProfitSummary


def total_receivables(customers: Iterable[data_manager.CustomerRow]) -> Decimal:
    """Sum of positive customer balances; overpaid customers are left out."""

    return sum((customer.balance for customer in customers if customer.balance > 0), _ZERO)


def total_payables(vendors: Iterable[data_manager.VendorRow]) -> Decimal:
    return sum((vendor.balance for vendor in vendors), _ZERO)


def _comparable(moment: datetime, reference: datetime) -> datetime:
    if reference.tzinfo is None:
        return moment.replace(tzinfo=None)
    if moment.tzinfo is None:
        return moment.replace(tzinfo=reference.tzinfo)
    return moment


def total_revenue(
    transactions: Iterable[data_manager.TransactionRow],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Decimal:
    """Sum of transaction amounts, optionally limited to ``start <= t < end``."""

    total = _ZERO
    for transaction in transactions:
        if start is not None or end is not None:
            moment = datetime.fromisoformat(transaction.timestamp_iso)
            if start is not None and _comparable(moment, start) < start:
                continue
            if end is not None and _comparable(moment, end) >= end:
                continue
        total += transaction.amount
    return total


def total_expenses(
    expenses: Iterable[data_manager.ExpenseRow],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Decimal:
    """Sum of expense amounts, optionally limited by ``expense_date``.

    Bounds compare by calendar date: an expense counts when
    ``start.date() <= expense_date < end.date()``.
    """

    total = _ZERO
    for expense in expenses:
        if start is not None or end is not None:
            spent_on = date.fromisoformat(expense.expense_date)
            if start is not None and spent_on < start.date():
                continue
            if end is not None and spent_on >= end.date():
                continue
        total += expense.amount
    return total


def estimated_expenses(revenue: Decimal) -> Decimal:
    """Placeholder expense figure: 72% of revenue, floored to whole rupees."""

    return (revenue * HEURISTIC_EXPENSE_RATIO).to_integral_value(rounding=ROUND_FLOOR).quantize(_ZERO)


def calculate_profit_summary(
    context: RuntimeContext,
    *,
    mode: Optional[ExpenseMode] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> ProfitSummary:
    """Profit over ``start <= t < end``, or over all history without bounds.

    Recorded expenses are used unless the configured (or given) expense mode
    is ``heuristic``.
    """

    effective = mode or context.settings.expense_mode
    revenue = total_revenue(sales.list_transactions(context), start, end)
    if effective is ExpenseMode.HEURISTIC:
        log.info("Profit computed with the heuristic expense ratio; figures are estimates")
        expenses = estimated_expenses(revenue)
    else:
        expenses = total_expenses(payables.list_expenses(context), start, end)
    return ProfitSummary(
        revenue=revenue,
        expenses=expenses,
        profit=revenue - expenses,
        expenses_estimated=effective is ExpenseMode.HEURISTIC,
    )


def weekly_sales_series(context: RuntimeContext) -> List[data_manager.DailySalesRow]:
    """Weekday buckets in ``Mon``..``Sun`` order; missing days read as zero."""

    stored = {row.day: row.amount for row in data_manager.iter_daily_sales(context.workbook)}
    return [data_manager.DailySalesRow(day=day, amount=stored.get(day, _ZERO)) for day in WEEKDAYS]


def build_dashboard_summary(context: RuntimeContext) -> DashboardSummary:
    return DashboardSummary(
        total_receivables=total_receivables(credit_ledger.list_customers(context)),
        total_payables=total_payables(payables.list_vendors(context)),
        cash_on_hand=sales.cash_on_hand(context),
        weekly_sales=weekly_sales_series(context),
        profit=calculate_profit_summary(context),
    )
