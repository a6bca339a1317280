"""Enumerations and fixed identifiers shared across the ledger modules.

The data access layer, the ledger managers and the CLI all read sheet names,
column layouts and payment methods from here so the workbook schema has one
definition.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_LOW_STOCK_THRESHOLD = 20
GUEST_CUSTOMER_NAME = "Guest"
CASH_ON_HAND_KEY = "CashOnHand"
WEEKDAYS: tuple[str, ...] = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

# Share of revenue the legacy dashboard booked as expenses when no expense
# tracking was wired. Never authoritative.
HEURISTIC_EXPENSE_RATIO = Decimal("0.72")


class PaymentMethod(str, Enum):
    """Enumerate the tender types accepted at checkout."""

    CASH = "Cash"
    UPI = "UPI"
    GOOGLE_PAY = "Google Pay"
    PHONE_PE = "PhonePe"
    PAYTM = "Paytm"
    CREDIT = "Credit"


class StockPolicy(str, Enum):
    """How a sale that exceeds on-hand stock is applied."""

    CLAMP = "clamp"
    ALLOW_NEGATIVE = "allow_negative"
    REJECT = "reject"


class ExpenseMode(str, Enum):
    """Source of the expense figure used by the profit report."""

    RECORDED = "recorded"
    HEURISTIC = "heuristic"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    CUSTOMER_DUES = "CustomerDues"
    VENDORS = "Vendors"
    VENDOR_BILLS = "VendorBills"
    TRANSACTIONS = "Transactions"
    EXPENSES = "Expenses"
    DAILY_SALES = "DailySales"
    LEDGER = "Ledger"


SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: (
        "ProductID",
        "ProductName",
        "CostPrice",
        "SellingPrice",
        "Stock",
        "Category",
        "GstPercent",
        "Barcode",
        "ImageRef",
    ),
    SheetName.CUSTOMERS.value: (
        "CustomerID",
        "CustomerName",
        "Phone",
        "Balance",
        "LastTransactionDate",
    ),
    SheetName.CUSTOMER_DUES.value: (
        "DueID",
        "CustomerID",
        "Amount",
        "Description",
        "Items",
        "DueDate",
        "IsPaid",
    ),
    SheetName.VENDORS.value: (
        "VendorID",
        "VendorName",
        "Phone",
        "Category",
        "OpeningBalance",
        "Balance",
        "NextPaymentDate",
    ),
    SheetName.VENDOR_BILLS.value: (
        "BillID",
        "VendorID",
        "BillDate",
        "Amount",
        "ItemsDescription",
        "ReceiptRef",
    ),
    SheetName.TRANSACTIONS.value: (
        "TransactionID",
        "Timestamp",
        "CustomerID",
        "CustomerName",
        "Amount",
        "PaymentMethod",
        "ItemsCount",
        "BillID",
        "Items",
    ),
    SheetName.EXPENSES.value: (
        "ExpenseID",
        "ExpenseDate",
        "Amount",
        "Category",
        "Description",
        "VendorID",
        "VendorName",
    ),
    SheetName.DAILY_SALES.value: ("Day", "Amount"),
    SheetName.LEDGER.value: ("Key", "Value"),
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "GUEST_CUSTOMER_NAME",
    "CASH_ON_HAND_KEY",
    "WEEKDAYS",
    "HEURISTIC_EXPENSE_RATIO",
    "PaymentMethod",
    "StockPolicy",
    "ExpenseMode",
    "SheetName",
    "SHEET_COLUMNS",
]
