"""Inventory adjuster and product catalogue.

Stock only moves through :func:`adjust_stock` and :func:`receive_stock`. What
happens when a sale asks for more than is on the shelf is governed by the
configured :class:`~khata_ledger.constants.StockPolicy`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import core_logic, data_manager, log
from .constants import StockPolicy
from .core_logic import MissingReferenceError, RuntimeContext, ValidationError

PRODUCTS_CACHE = "products"

_EDITABLE_COLUMNS = {
    "product_name": "ProductName",
    "cost_price": "CostPrice",
    "selling_price": "SellingPrice",
    "stock": "Stock",
    "category": "Category",
    "gst_percent": "GstPercent",
    "barcode": "Barcode",
    "image_ref": "ImageRef",
}


@dataclass(frozen=True)
class StockAdjustment:
    """Outcome of a stock delta.

    ``applied_delta`` differs from ``requested_delta`` only when the clamp
    policy absorbed part of an oversell; the difference is the ``shortfall``.
    """

    product: data_manager.ProductRow
    requested_delta: int
    applied_delta: int

    @property
    def shortfall(self) -> int:
        return self.applied_delta - self.requested_delta

    @property
    def overdrawn(self) -> bool:
        return self.shortfall > 0 or self.product.stock < 0


def _products(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(context, PRODUCTS_CACHE, data_manager.iter_products, "product_id")


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return every product in sheet order."""

    return list(_products(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """

    try:
        return _products(context)["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def find_product_by_code(context: RuntimeContext, code: str) -> data_manager.ProductRow:
    """Resolve a scanned or typed code to a product.

    The code matches a product id first and a barcode second, which is how
    the billing screen treats scanner output.

    Raises:
        MissingReferenceError: If no product carries the code.
    """

    needle = (code or "").strip()
    bucket = _products(context)
    if needle in bucket["by_id"]:
        return bucket["by_id"][needle]
    for product in bucket["all"]:
        if product.barcode is not None and product.barcode == needle:
            return product
    log.warning("No product matches code '%s'", needle)
    raise MissingReferenceError(f"No product matches code: {needle}")


def add_product(
    context: RuntimeContext,
    *,
    product_name: str,
    selling_price: core_logic.Money,
    cost_price: core_logic.Money = Decimal("0"),
    stock: int = 0,
    category: str = "General",
    gst_percent: Optional[core_logic.Money] = None,
    barcode: Optional[str] = None,
    image_ref: Optional[str] = None,
    product_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Validate and append a new product to the catalogue.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        product_name (str): Display name, required.
        selling_price: Price charged per unit, zero or positive.
        cost_price: Purchase cost per unit, zero or positive.
        stock (int): Opening on-hand quantity, zero or positive.
        category (str): Free-text grouping, ``General`` when blank.
        gst_percent: Optional tax rate between 0 and 100.
        barcode (str | None): Optional barcode; unique across products.
        image_ref (str | None): Optional reference to a product picture.
        product_id (str | None): Explicit identifier; generated when omitted.

    Returns:
        data_manager.ProductRow: The stored product.

    Raises:
        ValidationError: On blank names, negative prices or stock, an
            out-of-range GST rate, or a duplicate id or barcode.
    """

    name = core_logic.require_text(product_name, field_name="Product name")
    selling = core_logic.parse_money(selling_price, field_name="selling price")
    cost = core_logic.parse_money(cost_price, field_name="cost price")
    core_logic.require_nonnegative_money(selling, field_name="selling price")
    core_logic.require_nonnegative_money(cost, field_name="cost price")
    _require_stock_level(stock)
    gst = _parse_gst(gst_percent)
    code = _normalise_barcode(barcode)

    bucket = _products(context)
    new_id = (product_id or "").strip() or core_logic.generate_id("P")
    if new_id in bucket["by_id"]:
        raise ValidationError(f"Product id already exists: {new_id}")
    _require_unique_barcode(bucket["all"], code, exclude_id=None)

    product = data_manager.ProductRow(
        product_id=new_id,
        product_name=name,
        cost_price=cost,
        selling_price=selling,
        stock=stock,
        category=(category or "").strip() or "General",
        gst_percent=gst,
        barcode=code,
        image_ref=(image_ref or None),
    )
    with core_logic.unit_of_work(context, "add_product"):
        data_manager.append_product(context.workbook, product)
        core_logic.invalidate_cache(context, PRODUCTS_CACHE)
    log.info("Added product '%s' (%s) with stock %d", product.product_id, product.product_name, product.stock)
    return product


def update_product(context: RuntimeContext, product_id: str, **changes: Any) -> data_manager.ProductRow:
    """Edit catalogue fields of an existing product.

    Accepted keywords are ``product_name``, ``cost_price``, ``selling_price``,
    ``stock``, ``category``, ``gst_percent``, ``barcode`` and ``image_ref``.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValidationError: On unknown fields or values that break the same rules
            enforced by :func:`add_product`.
    """

    current = get_product(context, product_id)
    unknown = set(changes) - set(_EDITABLE_COLUMNS)
    if unknown:
        raise ValidationError(f"Unsupported product fields: {', '.join(sorted(unknown))}")

    values: Dict[str, Any] = {}
    for key, raw in changes.items():
        if key == "product_name":
            values[key] = core_logic.require_text(raw, field_name="Product name")
        elif key in ("cost_price", "selling_price"):
            amount = core_logic.parse_money(raw, field_name=key.replace("_", " "))
            core_logic.require_nonnegative_money(amount, field_name=key.replace("_", " "))
            values[key] = amount
        elif key == "stock":
            _require_stock_level(raw)
            values[key] = raw
        elif key == "gst_percent":
            values[key] = _parse_gst(raw)
        elif key == "barcode":
            code = _normalise_barcode(raw)
            _require_unique_barcode(list_products(context), code, exclude_id=product_id)
            values[key] = code
        elif key == "category":
            values[key] = (raw or "").strip() or "General"
        else:
            values[key] = raw or None

    if not values:
        return current

    with core_logic.unit_of_work(context, "update_product"):
        data_manager.update_product(
            context.workbook,
            product_id,
            field_values={_EDITABLE_COLUMNS[key]: value for key, value in values.items()},
        )
        core_logic.invalidate_cache(context, PRODUCTS_CACHE)
    log.info("Updated product '%s': %s", product_id, ", ".join(sorted(values)))
    return get_product(context, product_id)


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product permanently. Past transactions keep their snapshots.

    Raises:
        MissingReferenceError: If the product is unknown.
    """

    get_product(context, product_id)
    with core_logic.unit_of_work(context, "delete_product"):
        data_manager.delete_rows(context.workbook, data_manager.PRODUCTS_SHEET, "ProductID", product_id)
        core_logic.invalidate_cache(context, PRODUCTS_CACHE)
    log.info("Deleted product '%s'", product_id)


def resolve_stock_level(current: int, delta: int, policy: StockPolicy) -> int:
    """Return the stock level after applying ``delta`` under ``policy``.

    ``clamp`` never lets a sale push stock below zero (or below an existing
    negative level), ``allow_negative`` records backorders, and ``reject``
    refuses the change.

    Raises:
        ValidationError: Under ``reject`` when the result would be negative.
    """

    target = current + delta
    if target >= 0 or delta >= 0 or policy is StockPolicy.ALLOW_NEGATIVE:
        return target
    if policy is StockPolicy.REJECT:
        raise ValidationError(f"Insufficient stock: {current} on hand, {-delta} requested")
    return max(target, min(current, 0))


def adjust_stock(
    context: RuntimeContext,
    product_id: str,
    delta: int,
    *,
    policy: Optional[StockPolicy] = None,
) -> StockAdjustment:
    """Apply a signed stock delta: negative for sales, positive for receipts.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        product_id (str): Product whose stock changes.
        delta (int): Whole-number change in units.
        policy (StockPolicy | None): Overrides the configured stock policy.

    Returns:
        StockAdjustment: The updated product and the delta actually applied.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValidationError: If ``delta`` is not an integer, or the ``reject``
            policy refuses an oversell.
    """

    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationError(f"Stock delta must be a whole number: {delta!r}")
    product = get_product(context, product_id)
    effective_policy = policy or context.settings.stock_policy
    new_stock = resolve_stock_level(product.stock, delta, effective_policy)

    with core_logic.unit_of_work(context, "adjust_stock"):
        data_manager.update_product(context.workbook, product_id, field_values={"Stock": new_stock})
        core_logic.invalidate_cache(context, PRODUCTS_CACHE)

    adjustment = StockAdjustment(
        product=get_product(context, product_id),
        requested_delta=delta,
        applied_delta=new_stock - product.stock,
    )
    if adjustment.shortfall:
        log.warning(
            "Stock overdraft on '%s': %d requested, %d available; clamped at %d",
            product_id,
            -delta,
            product.stock,
            new_stock,
        )
    elif new_stock < 0:
        log.warning("Product '%s' is backordered at %d", product_id, new_stock)
    if is_low_stock(adjustment.product, context.settings.low_stock_threshold):
        log.info("Product '%s' is low on stock (%d)", product_id, new_stock)
    log.info("Adjusted stock of '%s' by %d (now %d)", product_id, adjustment.applied_delta, new_stock)
    return adjustment


def receive_stock(context: RuntimeContext, product_id: str, quantity: int) -> StockAdjustment:
    """Add received units to a product. Always additive.

    Raises:
        MissingReferenceError: If the product is unknown.
        ValidationError: If ``quantity`` is not a positive whole number.
    """

    core_logic.require_positive_quantity(quantity)
    return adjust_stock(context, product_id, quantity)


def is_low_stock(product: data_manager.ProductRow, threshold: int) -> bool:
    return product.stock < threshold


def list_low_stock_products(context: RuntimeContext, *, threshold: Optional[int] = None) -> List[data_manager.ProductRow]:
    """Return products whose stock sits below the low-stock threshold."""

    limit = context.settings.low_stock_threshold if threshold is None else threshold
    return [product for product in list_products(context) if is_low_stock(product, limit)]


def _require_stock_level(stock: Any) -> None:
    if isinstance(stock, bool) or not isinstance(stock, int) or stock < 0:
        raise ValidationError(f"Stock must be a whole number of zero or more: {stock!r}")


def _parse_gst(raw: Optional[core_logic.Money]) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    rate = core_logic.parse_money(raw, field_name="GST rate")
    if rate < 0 or rate > 100:
        raise ValidationError(f"GST rate must be between 0 and 100: {rate}")
    return rate


def _normalise_barcode(raw: Optional[str]) -> Optional[str]:
    code = (raw or "").strip()
    return code or None


def _require_unique_barcode(
    products: List[data_manager.ProductRow],
    barcode: Optional[str],
    *,
    exclude_id: Optional[str],
) -> None:
    if barcode is None:
        return
    for product in products:
        if product.barcode == barcode and product.product_id != exclude_id:
            raise ValidationError(f"Barcode {barcode} already belongs to product '{product.product_id}'")
