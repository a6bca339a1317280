"""Billing: cart pricing and the checkout transaction.

:func:`complete_sale` is the one operation that touches every aggregate at
once. It validates the whole command first, then runs the stock decrements,
the optional credit due, the cash drawer, the transaction log and the weekday
sales bucket inside a single unit of work.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from . import core_logic, credit_ledger, data_manager, inventory, log
from .constants import CASH_ON_HAND_KEY, GUEST_CUSTOMER_NAME, WEEKDAYS, PaymentMethod, StockPolicy
from .core_logic import MissingReferenceError, RuntimeContext, ValidationError

TRANSACTIONS_CACHE = "transactions"


@dataclass(frozen=True)
class CartItem:
    """A product snapshot with the quantity and flat discount being billed."""

    product: data_manager.ProductRow
    quantity: int
    discount: Decimal = Decimal("0")

    @property
    def price(self) -> Decimal:
        return self.product.selling_price

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity

    @property
    def line_total(self) -> Decimal:
        return self.subtotal - self.discount


@dataclass(frozen=True)
class CustomerRef:
    """Who the sale is billed to: a guest, an existing customer or a new one."""

    customer_id: Optional[str] = None
    new_name: Optional[str] = None
    new_phone: Optional[str] = None

    @classmethod
    def guest(cls) -> "CustomerRef":
        return cls()

    @classmethod
    def existing(cls, customer_id: str) -> "CustomerRef":
        return cls(customer_id=customer_id)

    @classmethod
    def new(cls, name: str, phone: str) -> "CustomerRef":
        return cls(new_name=name, new_phone=phone)

    @property
    def is_new(self) -> bool:
        return self.customer_id is None and bool(self.new_name or self.new_phone)

    @property
    def is_guest(self) -> bool:
        return self.customer_id is None and not self.is_new


@dataclass(frozen=True)
class SaleCommand:
    items: Sequence[CartItem]
    customer: CustomerRef = field(default_factory=CustomerRef.guest)
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH
    cash_given: Optional[core_logic.Money] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SaleReceipt:
    """Result of a completed checkout.

    ``change_due`` is informational and never persisted. ``due`` is only set
    for credit sales.
    """

    transaction: data_manager.TransactionRow
    change_due: Decimal
    customer: Optional[data_manager.CustomerRow] = None
    due: Optional[data_manager.CustomerDueRow] = None


def _transactions(context: RuntimeContext) -> Dict[str, Any]:
    return core_logic.cached_collection(
        context, TRANSACTIONS_CACHE, data_manager.iter_transactions, "transaction_id"
    )


def build_cart_item(
    context: RuntimeContext,
    code: str,
    quantity: int = 1,
    discount: core_logic.Money = Decimal("0"),
) -> CartItem:
    """Snapshot the product behind a scanned or typed code into a cart line.

    Raises:
        MissingReferenceError: If no product matches ``code``.
        ValidationError: On a bad quantity or discount.
    """

    product = inventory.find_product_by_code(context, code)
    item = CartItem(
        product=product,
        quantity=quantity,
        discount=core_logic.parse_money(discount, field_name="discount"),
    )
    _validate_cart_item(item)
    return item


def calculate_cart_total(items: Iterable[CartItem]) -> Decimal:
    """Sum of ``price * quantity - discount`` over the cart."""

    return sum((item.line_total for item in items), Decimal("0.00"))


def calculate_change_due(total: Decimal, cash_given: Optional[core_logic.Money]) -> Decimal:
    if cash_given is None:
        return Decimal("0.00")
    given = core_logic.parse_money(cash_given, field_name="cash given")
    return max(Decimal("0.00"), given - total)


def generate_bill_id(when: Optional[datetime] = None) -> str:
    """Short display code: the last four digits of the epoch milliseconds."""

    moment = core_logic.resolve_timestamp(when)
    return str(int(moment.timestamp() * 1000))[-4:]


def resolve_payment_method(value: Union[PaymentMethod, str]) -> PaymentMethod:
    """Coerce a payment method name or value into :class:`PaymentMethod`.

    Raises:
        ValidationError: If the value names no supported tender.
    """

    if isinstance(value, PaymentMethod):
        return value
    text = str(value or "").strip()
    for method in PaymentMethod:
        if text.lower() in (method.value.lower(), method.name.lower()):
            return method
    raise ValidationError(f"Unsupported payment method: {value!r}")


def _validate_cart_item(item: CartItem) -> None:
    core_logic.require_positive_quantity(item.quantity)
    core_logic.require_nonnegative_money(item.discount, field_name="discount")
    if item.discount > item.subtotal:
        raise ValidationError(
            f"Discount {item.discount} exceeds line subtotal {item.subtotal} for '{item.product.product_name}'"
        )


def _validate_stock(context: RuntimeContext, items: Sequence[CartItem]) -> None:
    requested = Counter()
    for item in items:
        requested[item.product.product_id] += item.quantity
    for product_id, quantity in requested.items():
        product = inventory.get_product(context, product_id)
        if product.stock < quantity:
            raise ValidationError(
                f"Insufficient stock for '{product.product_name}': {product.stock} on hand, {quantity} requested"
            )


def _resolve_customer(context: RuntimeContext, ref: CustomerRef) -> Optional[data_manager.CustomerRow]:
    if ref.customer_id is not None:
        return credit_ledger.get_customer(context, ref.customer_id)
    if ref.is_new:
        name = core_logic.require_text(ref.new_name, field_name="Customer name")
        phone = core_logic.require_text(ref.new_phone, field_name="Phone")
        if not credit_ledger.normalise_phone(phone):
            raise ValidationError(f"Phone number has no digits: {phone!r}")
        owner = credit_ledger.find_customer_by_phone(context, phone)
        if owner is not None:
            raise ValidationError(f"Phone {phone} already belongs to customer '{owner.customer_id}'")
        log.debug("Sale will create customer '%s'", name)
    return None


def complete_sale(context: RuntimeContext, command: SaleCommand) -> SaleReceipt:
    """Check out a cart.

    Every check runs before the first write: a non-empty cart, valid
    quantities and discounts, products that still exist, a known payment
    method, a resolvable customer and, for credit, a non-guest customer. The
    writes then happen in one unit of work: new customer, stock decrements,
    credit due or cash drawer, transaction row and weekday bucket. Any
    failure rolls all of them back and re-raises.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        command (SaleCommand): Cart, customer, tender and optional cash given.

    Returns:
        SaleReceipt: The stored transaction plus change, customer and due.

    Raises:
        ValidationError: On any rejected input, including a credit sale
            without a customer.
        MissingReferenceError: If a product or customer no longer exists.
        ConflictError: If another writer committed to the workbook meanwhile.
        StoreError: If the workbook cannot be saved.
    """

    items = list(command.items)
    if not items:
        raise ValidationError("Cart is empty")
    for item in items:
        _validate_cart_item(item)
        inventory.get_product(context, item.product.product_id)
    method = resolve_payment_method(command.payment_method)
    ref = command.customer
    if method is PaymentMethod.CREDIT and ref.is_guest:
        log.warning("Rejected credit sale without a customer")
        raise ValidationError("credit requires a customer")
    customer = _resolve_customer(context, ref)
    if context.settings.stock_policy is StockPolicy.REJECT:
        _validate_stock(context, items)

    total = calculate_cart_total(items)
    if method is PaymentMethod.CREDIT and total <= 0:
        raise ValidationError("Credit sale total must be greater than zero")
    change_due = calculate_change_due(total, command.cash_given)
    moment = core_logic.resolve_timestamp(command.timestamp)
    bill_id = generate_bill_id(moment)
    due = None

    with core_logic.unit_of_work(context, "complete_sale"):
        if ref.is_new:
            customer = credit_ledger.add_customer(
                context, customer_name=ref.new_name, phone=ref.new_phone, when=moment
            )
        for item in items:
            inventory.adjust_stock(context, item.product.product_id, -item.quantity)

        if method is PaymentMethod.CREDIT:
            due = credit_ledger.issue_due(
                context,
                customer.customer_id,
                total,
                f"Bill #{bill_id} - {len(items)} item(s)",
                items=[
                    data_manager.LineItem(
                        name=item.product.product_name,
                        quantity=item.quantity,
                        price=item.subtotal,
                    )
                    for item in items
                ],
                when=moment,
            )
            customer = credit_ledger.get_customer(context, customer.customer_id)
        elif method is PaymentMethod.CASH:
            drawer = data_manager.get_ledger_value(context.workbook, CASH_ON_HAND_KEY)
            data_manager.set_ledger_value(context.workbook, CASH_ON_HAND_KEY, drawer + total)

        transaction = data_manager.TransactionRow(
            transaction_id=core_logic.generate_id("T", when=moment),
            timestamp_iso=moment.isoformat(),
            customer_id=customer.customer_id if customer else None,
            customer_name=customer.customer_name if customer else GUEST_CUSTOMER_NAME,
            amount=total,
            payment_method=method.value,
            items_count=len(items),
            bill_id=bill_id,
            items=tuple(
                data_manager.SaleLine(
                    product_id=item.product.product_id,
                    name=item.product.product_name,
                    quantity=item.quantity,
                    unit_price=item.price,
                    cost_price=item.product.cost_price,
                    discount=item.discount,
                )
                for item in items
            ),
        )
        data_manager.append_transaction(context.workbook, transaction)
        data_manager.add_daily_sales(context.workbook, WEEKDAYS[moment.weekday()], total)
        core_logic.invalidate_cache(context, TRANSACTIONS_CACHE)

    log.info(
        "Completed sale '%s' (bill #%s): %s via %s for %s",
        transaction.transaction_id,
        bill_id,
        total,
        method.value,
        transaction.customer_name,
    )
    return SaleReceipt(transaction=transaction, change_due=change_due, customer=customer, due=due)


def list_transactions(context: RuntimeContext, *, limit: Optional[int] = None) -> List[data_manager.TransactionRow]:
    """Return transactions most recent first."""

    ordered = list(reversed(_transactions(context)["all"]))
    return ordered if limit is None else ordered[:limit]


def get_transaction(context: RuntimeContext, transaction_id: str) -> data_manager.TransactionRow:
    try:
        return _transactions(context)["by_id"][transaction_id]
    except KeyError as exc:
        log.warning("Transaction lookup failed for id '%s'", transaction_id)
        raise MissingReferenceError(f"Unknown transaction id: {transaction_id}") from exc


def cash_on_hand(context: RuntimeContext) -> Decimal:
    return data_manager.get_ledger_value(context.workbook, CASH_ON_HAND_KEY)
