"""Data access layer for the khata ledger workbook.

This module provides low-level helpers that read from and write to the ledger
workbook. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, stamping, and atomically persisting the Excel
   file that acts as the persistent record store.
3. Sheet operations: loading typed records and appending, updating or
   deleting individual rows. Each entity owns one worksheet and the
   ``serialize_*``/``deserialize_*`` pairs are the only place where worksheet
   cells and dataclass fields meet.
"""


from __future__ import annotations

import configparser
import hashlib
import json
import os
import re
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence, TypeVar

import openpyxl
from openpyxl.workbook import Workbook

from . import log
from .constants import (
    DEFAULT_LOW_STOCK_THRESHOLD,
    SHEET_COLUMNS,
    ExpenseMode,
    SheetName,
    StockPolicy,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
CUSTOMER_DUES_SHEET = SheetName.CUSTOMER_DUES.value
VENDORS_SHEET = SheetName.VENDORS.value
VENDOR_BILLS_SHEET = SheetName.VENDOR_BILLS.value
TRANSACTIONS_SHEET = SheetName.TRANSACTIONS.value
EXPENSES_SHEET = SheetName.EXPENSES.value
DAILY_SALES_SHEET = SheetName.DAILY_SALES.value
LEDGER_SHEET = SheetName.LEDGER.value

_CENT = Decimal("0.01")
_NAMESPACE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

RowT = TypeVar("RowT")


@dataclass(frozen=True)
class MerchantProfile:
    """Shop owner details used for payment links and reminders."""

    owner_name: str = ""
    upi_id: str = ""
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    shop_name: str
    schema_version: str
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    stock_policy: StockPolicy = StockPolicy.CLAMP
    expense_mode: ExpenseMode = ExpenseMode.RECORDED
    merchant: MerchantProfile = field(default_factory=MerchantProfile)


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    product_name: str
    cost_price: Decimal
    selling_price: Decimal
    stock: int
    category: str
    gst_percent: Optional[Decimal] = None
    barcode: Optional[str] = None
    image_ref: Optional[str] = None

    @property
    def price(self) -> Decimal:
        """Legacy alias of :attr:`selling_price`."""
        return self.selling_price


@dataclass(frozen=True)
class LineItem:
    """Itemised breakdown line attached to a customer due."""

    name: str
    quantity: int
    price: Decimal


@dataclass(frozen=True)
class SaleLine:
    """Snapshot of one cart line frozen into a transaction."""

    product_id: str
    name: str
    quantity: int
    unit_price: Decimal
    cost_price: Decimal
    discount: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity - self.discount


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    customer_name: str
    phone: str
    balance: Decimal
    last_transaction_date: str


@dataclass(frozen=True)
class CustomerDueRow:
    """In-memory view of a row from the ``CustomerDues`` sheet."""

    due_id: str
    customer_id: str
    amount: Decimal
    description: str
    items: tuple[LineItem, ...]
    due_date: str
    is_paid: bool


@dataclass(frozen=True)
class VendorRow:
    """In-memory view of a row from the ``Vendors`` sheet."""

    vendor_id: str
    vendor_name: str
    phone: Optional[str]
    category: str
    opening_balance: Decimal
    balance: Decimal
    next_payment_date: str


@dataclass(frozen=True)
class VendorBillRow:
    """In-memory view of a row from the ``VendorBills`` sheet."""

    bill_id: str
    vendor_id: str
    bill_date: str
    amount: Decimal
    items_description: str
    receipt_ref: Optional[str]


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``Transactions`` sheet."""

    transaction_id: str
    timestamp_iso: str
    customer_id: Optional[str]
    customer_name: str
    amount: Decimal
    payment_method: str
    items_count: int
    bill_id: str
    items: tuple[SaleLine, ...] = ()


@dataclass(frozen=True)
class ExpenseRow:
    """In-memory view of a row from the ``Expenses`` sheet."""

    expense_id: str
    expense_date: str
    amount: Decimal
    category: str
    description: str
    vendor_id: Optional[str]
    vendor_name: Optional[str]


@dataclass(frozen=True)
class DailySalesRow:
    """Running sales total for one weekday bucket."""

    day: str
    amount: Decimal


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the search walks up from the current
    working directory toward the filesystem root looking for
    ``CONFIG_FILE_NAME``; the first match is authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for directory in (current, *current.parents):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` is mandatory. ``[Policy]``, ``[Reports]`` and ``[Merchant]``
    are optional and fall back to the documented defaults. Relative
    ``DataFile`` entries are anchored at ``base_path`` (or the current working
    directory) and resolved to an absolute path.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor relative data files.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a policy option holds an unsupported value.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    low_stock_threshold = parser.getint(
        "Policy", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD
    )
    if low_stock_threshold < 0:
        raise ValueError("LowStockThreshold must be zero or positive")

    stock_policy = _parse_choice(
        StockPolicy, parser.get("Policy", "StockPolicy", fallback=StockPolicy.CLAMP.value)
    )
    expense_mode = _parse_choice(
        ExpenseMode, parser.get("Reports", "ExpenseMode", fallback=ExpenseMode.RECORDED.value)
    )

    merchant = MerchantProfile(
        owner_name=parser.get("Merchant", "OwnerName", fallback=""),
        upi_id=parser.get("Merchant", "UpiId", fallback=""),
        phone=parser.get("Merchant", "Phone", fallback=""),
        address=parser.get("Merchant", "Address", fallback=""),
    )

    return ConfigSettings(
        data_file=data_file_path,
        shop_name=shop_name,
        schema_version=schema_version,
        low_stock_threshold=low_stock_threshold,
        stock_policy=stock_policy,
        expense_mode=expense_mode,
        merchant=merchant,
    )


def _parse_choice(enum_type, raw: str):
    value = raw.strip().lower()
    try:
        return enum_type(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_type)
        raise ValueError(f"Unsupported {enum_type.__name__} '{raw}' (expected one of: {allowed})") from exc


def namespaced_data_file(data_file: Path, namespace: Optional[str]) -> Path:
    """Return the workbook path reserved for a session namespace.

    ``ledger.xlsx`` with namespace ``alice`` becomes ``ledger_alice.xlsx`` in
    the same directory. ``None`` or an empty namespace leaves the path as is.

    Raises:
        ValueError: If the namespace contains characters other than letters,
            digits, ``-`` or ``_``.
    """

    if not namespace:
        return data_file
    if not _NAMESPACE_PATTERN.match(namespace):
        raise ValueError(f"Invalid store namespace: {namespace!r}")
    return data_file.with_name(f"{data_file.stem}_{namespace}{data_file.suffix}")


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def open_workbook(data_file: Path) -> Workbook:
    """Open the ledger workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination`` in a single rename.

    The workbook is first written next to the destination and then moved over
    it with :func:`os.replace`, so readers never observe a half-written file.
    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f".{dest.name}.tmp")
    try:
        workbook.save(staging)
        os.replace(staging, dest)
        log.debug("Wrote workbook '%s'", dest)
    finally:
        if staging.exists():
            staging.unlink()


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def file_stamp(data_file: Path) -> Optional[tuple[int, int, str]]:
    """Return ``(mtime_ns, size, sha256)`` for the workbook, or ``None`` if absent.

    The stamp identifies the last committed version of the store; a changed
    stamp means another writer saved the file. The content digest catches a
    same-size save that lands within one tick of a coarse filesystem clock.
    """

    path = Path(data_file).expanduser().resolve()
    try:
        stat = path.stat()
        digest = hashlib.sha256(path.read_bytes()).hexdigest()
    except FileNotFoundError:
        return None
    return (stat.st_mtime_ns, stat.st_size, digest)


# ---------------------------------------------------------------------------
# Generic sheet helpers
# ---------------------------------------------------------------------------


def _iter_sheet(workbook: Workbook, sheet_name: str, deserializer: Callable[[Sequence[object]], RowT]) -> Iterator[RowT]:
    sheet = workbook[sheet_name]
    width = len(SHEET_COLUMNS[sheet_name])
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield deserializer(_pad(raw, width))


def _pad(raw: Sequence[object], width: int) -> tuple[object, ...]:
    values = tuple(raw[:width])
    return values + (None,) * (width - len(values))


def _header_map(workbook: Workbook, sheet_name: str) -> dict[Any, int]:
    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index of the first match, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if len(row) >= key_col_index and row[key_col_index - 1] == key_value:
            return row_idx

    return None


def update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    *,
    field_values: dict[str, Any],
) -> None:
    """Overwrite selected columns of the row whose ``key_column`` matches.

    Only the named fields are written; other columns stay untouched.

    Raises:
        KeyError: If the row or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{sheet_name} row not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(workbook, sheet_name)
    for column, value in field_values.items():
        if column not in header_map:
            raise KeyError(f"Unknown {sheet_name} field: {column}")
        sheet.cell(row=row_index, column=header_map[column], value=value)


def delete_rows(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> int:
    """Delete every row whose ``key_column`` equals ``key_value``.

    Returns:
        int: Number of rows removed.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    header_map = _header_map(workbook, sheet_name)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]
    sheet = workbook[sheet_name]
    matches = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if len(row) >= key_col_index and row[key_col_index - 1] == key_value
    ]
    # Delete bottom-up so earlier indices stay valid.
    for row_idx in reversed(matches):
        sheet.delete_rows(row_idx)
    return len(matches)


# ---------------------------------------------------------------------------
# Entity readers
# ---------------------------------------------------------------------------


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    return _iter_sheet(workbook, PRODUCTS_SHEET, deserialize_product)


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over the ``Customers`` worksheet and yield typed records."""

    return _iter_sheet(workbook, CUSTOMERS_SHEET, deserialize_customer)


def iter_customer_dues(workbook: Workbook) -> Iterable[CustomerDueRow]:
    """Iterate over every customer due in insertion (chronological) order."""

    return _iter_sheet(workbook, CUSTOMER_DUES_SHEET, deserialize_customer_due)


def iter_vendors(workbook: Workbook) -> Iterable[VendorRow]:
    """Iterate over the ``Vendors`` worksheet and yield typed records."""

    return _iter_sheet(workbook, VENDORS_SHEET, deserialize_vendor)


def iter_vendor_bills(workbook: Workbook) -> Iterable[VendorBillRow]:
    """Iterate over every vendor bill in insertion order."""

    return _iter_sheet(workbook, VENDOR_BILLS_SHEET, deserialize_vendor_bill)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transaction records from the ``Transactions`` worksheet.

    Rows come back in append order (oldest first); ordering for display is a
    business-layer concern.
    """

    return _iter_sheet(workbook, TRANSACTIONS_SHEET, deserialize_transaction)


def iter_expenses(workbook: Workbook) -> Iterable[ExpenseRow]:
    return _iter_sheet(workbook, EXPENSES_SHEET, deserialize_expense)


def iter_daily_sales(workbook: Workbook) -> Iterable[DailySalesRow]:
    return _iter_sheet(workbook, DAILY_SALES_SHEET, deserialize_daily_sales)


# ---------------------------------------------------------------------------
# Entity writers
# ---------------------------------------------------------------------------


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_customer_due(workbook: Workbook, record: CustomerDueRow) -> None:
    workbook[CUSTOMER_DUES_SHEET].append(serialize_customer_due(record))


def append_vendor(workbook: Workbook, record: VendorRow) -> None:
    workbook[VENDORS_SHEET].append(serialize_vendor(record))


def append_vendor_bill(workbook: Workbook, record: VendorBillRow) -> None:
    workbook[VENDOR_BILLS_SHEET].append(serialize_vendor_bill(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction record to the ``Transactions`` worksheet.

    Monetary fields stay :class:`~decimal.Decimal` instances; item snapshots
    are stored as a JSON document in a single cell.
    """

    workbook[TRANSACTIONS_SHEET].append(serialize_transaction(record))


def append_expense(workbook: Workbook, record: ExpenseRow) -> None:
    workbook[EXPENSES_SHEET].append(serialize_expense(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values=field_values)


def update_customer(workbook: Workbook, customer_id: str, *, field_values: dict[str, Any]) -> None:
    update_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id, field_values=field_values)


def update_customer_due(workbook: Workbook, due_id: str, *, field_values: dict[str, Any]) -> None:
    update_row(workbook, CUSTOMER_DUES_SHEET, "DueID", due_id, field_values=field_values)


def update_vendor(workbook: Workbook, vendor_id: str, *, field_values: dict[str, Any]) -> None:
    update_row(workbook, VENDORS_SHEET, "VendorID", vendor_id, field_values=field_values)


def get_ledger_value(workbook: Workbook, key: str) -> Decimal:
    """Return the numeric value stored under ``key`` on the ``Ledger`` sheet.

    Missing keys read as zero.
    """

    row_index = locate_row(workbook, LEDGER_SHEET, "Key", key)
    if row_index is None:
        return Decimal("0.00")
    return to_money(workbook[LEDGER_SHEET].cell(row=row_index, column=2).value)


def set_ledger_value(workbook: Workbook, key: str, value: Decimal) -> None:
    """Store ``value`` under ``key`` on the ``Ledger`` sheet, creating the row if needed."""

    row_index = locate_row(workbook, LEDGER_SHEET, "Key", key)
    sheet = workbook[LEDGER_SHEET]
    if row_index is None:
        sheet.append([key, value])
    else:
        sheet.cell(row=row_index, column=2, value=value)


def add_daily_sales(workbook: Workbook, day: str, amount: Decimal) -> Decimal:
    """Add ``amount`` to the weekday bucket ``day`` and return the new total."""

    row_index = locate_row(workbook, DAILY_SALES_SHEET, "Day", day)
    sheet = workbook[DAILY_SALES_SHEET]
    if row_index is None:
        sheet.append([day, amount])
        return amount
    current = to_money(sheet.cell(row=row_index, column=2).value)
    updated = current + amount
    sheet.cell(row=row_index, column=2, value=updated)
    return updated


# ---------------------------------------------------------------------------
# Cell conversions
# ---------------------------------------------------------------------------


def to_money(raw: object, default: str = "0.00") -> Decimal:
    """Normalise a worksheet value into a two-place :class:`Decimal`.

    Excel hands numbers back as floats; going through ``str`` and quantising
    to cents removes binary noise such as ``0.30000000000000004``.
    """

    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(str(raw)).quantize(_CENT)


def _to_optional_money(raw: object) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    return to_money(raw)


def _to_int(raw: object) -> int:
    if raw is None or raw == "":
        return 0
    return int(Decimal(str(raw)))


def _to_text(raw: object) -> Optional[str]:
    if raw is None:
        return None
    text = str(raw)
    return text if text != "" else None


def _to_bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"true", "1", "yes"}
    return bool(raw)


def _dump_json(payload: list[dict[str, Any]]) -> Optional[str]:
    if not payload:
        return None
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def _load_json(raw: object) -> list[dict[str, Any]]:
    if raw is None or raw == "":
        return []
    decoded = json.loads(str(raw))
    if not isinstance(decoded, list):
        raise ValueError(f"Expected a JSON list of items, found: {type(decoded).__name__}")
    return decoded


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the ``Products`` column ordering."""

    return [
        record.product_id,
        record.product_name,
        record.cost_price,
        record.selling_price,
        record.stock,
        record.category,
        record.gst_percent,
        record.barcode,
        record.image_ref,
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers and barcodes are coerced to ``str`` so that Excel's habit of
    turning digit strings into numbers never leaks into lookups.
    """

    (
        product_id,
        product_name,
        cost_raw,
        selling_raw,
        stock_raw,
        category,
        gst_raw,
        barcode,
        image_ref,
    ) = raw_row

    return ProductRow(
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        cost_price=to_money(cost_raw),
        selling_price=to_money(selling_raw),
        stock=_to_int(stock_raw),
        category=str(category) if category is not None else "General",
        gst_percent=_to_optional_money(gst_raw),
        barcode=_to_text(barcode),
        image_ref=_to_text(image_ref),
    )


def serialize_customer(record: CustomerRow) -> list[object]:
    return [
        record.customer_id,
        record.customer_name,
        record.phone,
        record.balance,
        record.last_transaction_date,
    ]


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, customer_name, phone, balance_raw, last_date = raw_row
    return CustomerRow(
        customer_id=str(customer_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        phone=str(phone) if phone is not None else "",
        balance=to_money(balance_raw),
        last_transaction_date=str(last_date) if last_date is not None else "",
    )


def serialize_customer_due(record: CustomerDueRow) -> list[object]:
    """Convert a due into worksheet order, packing the itemised lines as JSON."""

    items = [
        {"name": item.name, "quantity": item.quantity, "price": str(item.price)}
        for item in record.items
    ]
    return [
        record.due_id,
        record.customer_id,
        record.amount,
        record.description,
        _dump_json(items),
        record.due_date,
        record.is_paid,
    ]


def deserialize_customer_due(raw_row: Sequence[object]) -> CustomerDueRow:
    due_id, customer_id, amount_raw, description, items_raw, due_date, is_paid = raw_row
    items = tuple(
        LineItem(
            name=str(entry["name"]),
            quantity=int(entry["quantity"]),
            price=to_money(entry["price"]),
        )
        for entry in _load_json(items_raw)
    )
    return CustomerDueRow(
        due_id=str(due_id),
        customer_id=str(customer_id),
        amount=to_money(amount_raw),
        description=str(description) if description is not None else "",
        items=items,
        due_date=str(due_date) if due_date is not None else "",
        is_paid=_to_bool(is_paid),
    )


def serialize_vendor(record: VendorRow) -> list[object]:
    return [
        record.vendor_id,
        record.vendor_name,
        record.phone,
        record.category,
        record.opening_balance,
        record.balance,
        record.next_payment_date,
    ]


def deserialize_vendor(raw_row: Sequence[object]) -> VendorRow:
    vendor_id, vendor_name, phone, category, opening_raw, balance_raw, next_date = raw_row
    return VendorRow(
        vendor_id=str(vendor_id),
        vendor_name=str(vendor_name) if vendor_name is not None else "",
        phone=_to_text(phone),
        category=str(category) if category is not None else "General",
        opening_balance=to_money(opening_raw),
        balance=to_money(balance_raw),
        next_payment_date=str(next_date) if next_date is not None else "",
    )


def serialize_vendor_bill(record: VendorBillRow) -> list[object]:
    return [
        record.bill_id,
        record.vendor_id,
        record.bill_date,
        record.amount,
        record.items_description,
        record.receipt_ref,
    ]


def deserialize_vendor_bill(raw_row: Sequence[object]) -> VendorBillRow:
    bill_id, vendor_id, bill_date, amount_raw, description, receipt_ref = raw_row
    return VendorBillRow(
        bill_id=str(bill_id),
        vendor_id=str(vendor_id),
        bill_date=str(bill_date) if bill_date is not None else "",
        amount=to_money(amount_raw),
        items_description=str(description) if description is not None else "",
        receipt_ref=_to_text(receipt_ref),
    )


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the transaction column order."""

    items = [
        {
            "product_id": line.product_id,
            "name": line.name,
            "quantity": line.quantity,
            "unit_price": str(line.unit_price),
            "cost_price": str(line.cost_price),
            "discount": str(line.discount),
        }
        for line in record.items
    ]
    return [
        record.transaction_id,
        record.timestamp_iso,
        record.customer_id,
        record.customer_name,
        record.amount,
        record.payment_method,
        record.items_count,
        record.bill_id,
        _dump_json(items),
    ]


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record.

    ``BillID`` is forced back to text because a four-digit code such as
    ``0042`` would otherwise come back from Excel as the integer ``42``.
    """

    (
        transaction_id,
        timestamp_iso,
        customer_id,
        customer_name,
        amount_raw,
        payment_method,
        items_count,
        bill_id,
        items_raw,
    ) = raw_row

    items = tuple(
        SaleLine(
            product_id=str(entry["product_id"]),
            name=str(entry["name"]),
            quantity=int(entry["quantity"]),
            unit_price=to_money(entry["unit_price"]),
            cost_price=to_money(entry["cost_price"]),
            discount=to_money(entry["discount"]),
        )
        for entry in _load_json(items_raw)
    )
    bill_text = "" if bill_id is None else str(bill_id)
    if isinstance(bill_id, int):
        bill_text = bill_text.zfill(4)
    return TransactionRow(
        transaction_id=str(transaction_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        customer_id=_to_text(customer_id),
        customer_name=str(customer_name) if customer_name is not None else "",
        amount=to_money(amount_raw),
        payment_method=str(payment_method) if payment_method is not None else "",
        items_count=_to_int(items_count),
        bill_id=bill_text,
        items=items,
    )


def serialize_expense(record: ExpenseRow) -> list[object]:
    return [
        record.expense_id,
        record.expense_date,
        record.amount,
        record.category,
        record.description,
        record.vendor_id,
        record.vendor_name,
    ]


def deserialize_expense(raw_row: Sequence[object]) -> ExpenseRow:
    expense_id, expense_date, amount_raw, category, description, vendor_id, vendor_name = raw_row
    return ExpenseRow(
        expense_id=str(expense_id),
        expense_date=str(expense_date) if expense_date is not None else "",
        amount=to_money(amount_raw),
        category=str(category) if category is not None else "General",
        description=str(description) if description is not None else "",
        vendor_id=_to_text(vendor_id),
        vendor_name=_to_text(vendor_name),
    )


def deserialize_daily_sales(raw_row: Sequence[object]) -> DailySalesRow:
    day, amount_raw = raw_row
    return DailySalesRow(day=str(day), amount=to_money(amount_raw))


