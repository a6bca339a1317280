"""Integration tests describing end-to-end shop workflows.

These scenarios exercise the data layer, the ledger managers and the CLI
together against a real workbook on disk, reloading between steps the way
separate invocations of the application would.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from khata_ledger import cli, core_logic, credit_ledger, data_manager, inventory, payables, reports, sales
from khata_ledger.constants import PaymentMethod


def _receivables_match_dues(context: core_logic.RuntimeContext) -> bool:
    """Sum of customer balances equals the sum of all unpaid dues."""

    balances = sum((c.balance for c in credit_ledger.list_customers(context)), Decimal("0"))
    unpaid = credit_ledger.unpaid_total(data_manager.iter_customer_dues(context.workbook))
    return balances == unpaid


def test_shop_day_flow(runtime_context):
    """Walk through stocking, selling, crediting and paying suppliers in one day."""

    context = runtime_context
    inventory.add_product(context, product_id="A1", product_name="Atta 5kg", selling_price="240", cost_price="205", stock=5)
    inventory.add_product(context, product_id="S1", product_name="Sugar 1kg", selling_price="45", cost_price="40", stock=30)
    supplier = payables.create_vendor(context, vendor_name="Mandi Wholesale", category="Grocery")
    regular = credit_ledger.add_customer(context, customer_name="Lakshmi", phone="9000011111")

    # Goods arrive on credit from the supplier.
    inventory.receive_stock(context, "A1", 20)
    payables.record_bill(context, supplier.vendor_id, "4100", "20 bags atta")

    context = core_logic.refresh_context(context)
    sales.complete_sale(
        context,
        sales.SaleCommand(
            items=[sales.build_cart_item(context, "A1", 2), sales.build_cart_item(context, "S1", 4, "10")],
            cash_given="700",
        ),
    )
    credit_receipt = sales.complete_sale(
        context,
        sales.SaleCommand(
            items=[sales.build_cart_item(context, "A1", 1)],
            customer=sales.CustomerRef.existing(regular.customer_id),
            payment_method=PaymentMethod.CREDIT,
        ),
    )
    payables.record_expense(context, amount="150", category="Transport", vendor_id=supplier.vendor_id)

    context = core_logic.refresh_context(context)
    assert inventory.get_product(context, "A1").stock == 22
    assert inventory.get_product(context, "S1").stock == 26
    assert sales.cash_on_hand(context) == Decimal("650.00")
    assert credit_ledger.get_customer(context, regular.customer_id).balance == Decimal("240.00")
    assert payables.get_vendor(context, supplier.vendor_id).balance == Decimal("4100.00")
    assert _receivables_match_dues(context)

    summary = reports.build_dashboard_summary(context)
    assert summary.total_receivables == Decimal("240.00")
    assert summary.total_payables == Decimal("4100.00")
    assert summary.profit.revenue == Decimal("890.00")
    assert summary.profit.expenses == Decimal("150.00")
    assert summary.profit.profit == Decimal("740.00")

    credit_ledger.settle_due(context, regular.customer_id, credit_receipt.due.due_id)
    context = core_logic.refresh_context(context)
    assert reports.total_receivables(credit_ledger.list_customers(context)) == Decimal("0.00")
    assert _receivables_match_dues(context)


def test_multiple_credit_sales_and_partial_settlement_flow(runtime_context, rice, soap, customer):
    """Several credit bills stay individually settleable against one khata."""

    receipts = [
        sales.complete_sale(
            runtime_context,
            sales.SaleCommand(
                items=[sales.CartItem(product, quantity)],
                customer=sales.CustomerRef.existing("C1"),
                payment_method=PaymentMethod.CREDIT,
            ),
        )
        for product, quantity in ((rice, 1), (soap, 2), (rice, 3))
    ]

    credit_ledger.settle_due(runtime_context, "C1", receipts[1].due.due_id)

    context = core_logic.refresh_context(runtime_context)
    outstanding = credit_ledger.outstanding_dues(context, "C1")
    assert [due.amount for due in outstanding] == [Decimal("100.00"), Decimal("300.00")]
    assert credit_ledger.get_customer(context, "C1").balance == Decimal("400.00")
    assert _receivables_match_dues(context)
    assert len(sales.list_transactions(context)) == 3


def test_opening_cash_seeds_drawer_flow(context_factory):
    """The configured opening cash is the base the drawer grows from."""

    context = context_factory(opening_cash=Decimal("500"))
    product = inventory.add_product(context, product_name="Biscuits", selling_price="10", stock=100)

    sales.complete_sale(context, sales.SaleCommand(items=[sales.CartItem(product, 20)]))
    sales.complete_sale(
        context,
        sales.SaleCommand(items=[sales.CartItem(product, 5)], payment_method=PaymentMethod.PHONE_PE),
    )

    assert sales.cash_on_hand(core_logic.refresh_context(context)) == Decimal("700.00")


def test_concurrent_writer_conflict_flow(config_file):
    """A stale context cannot overwrite another writer's commit."""

    first = core_logic.load_runtime_context(config_file)
    second = core_logic.load_runtime_context(config_file)

    inventory.add_product(first, product_id="K1", product_name="Kurkure", selling_price="20")

    with pytest.raises(core_logic.ConflictError):
        inventory.add_product(second, product_id="K2", product_name="Lays", selling_price="20")

    # The failed unit reloaded the committed workbook, so a retry sees both writers.
    inventory.add_product(second, product_id="K2", product_name="Lays", selling_price="20")
    fresh = core_logic.refresh_context(second)
    assert [p.product_id for p in inventory.list_products(fresh)] == ["K1", "K2"]


def test_cli_stock_sale_and_profit_reporting_flow(config_factory, monkeypatch, capsys):
    """The CLI sale command feeds the profit report."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]

    assert cli.main([*base, "add-product", "--product-id", "G1", "--product-name", "Ghee 1L",
                     "--selling-price", "600", "--cost-price", "520"]) == 0
    assert cli.main([*base, "receive-stock", "--product-id", "G1", "--quantity", "4"]) == 0
    assert cli.main([*base, "sale", "--item", "G1:2:50", "--payment-method", "UPI"]) == 0
    assert cli.main([*base, "add-expense", "--amount", "100", "--category", "Electricity"]) == 0
    capsys.readouterr()

    summary_capture: dict[str, object] = {}
    original_summary = reports.calculate_profit_summary

    def capture_summary(context: core_logic.RuntimeContext, **kwargs):
        summary = original_summary(context, **kwargs)
        summary_capture["summary"] = summary
        return summary

    monkeypatch.setattr(cli.reports, "calculate_profit_summary", capture_summary)

    assert cli.main([*base, "profit"]) == 0
    out = capsys.readouterr().out
    assert summary_capture["summary"] == reports.ProfitSummary(
        revenue=Decimal("1150.00"), expenses=Decimal("100.00"), profit=Decimal("1050.00")
    )
    assert "Profit: 1050.00" in out

    context = core_logic.load_runtime_context(bundle.config_path)
    assert inventory.get_product(context, "G1").stock == 2
    assert sales.cash_on_hand(context) == Decimal("0.00")


def test_cli_credit_sale_and_khata_report_flow(config_factory, capsys):
    """A CLI credit sale to a new customer opens their khata."""

    bundle = config_factory()
    base = ["--config", str(bundle.config_path)]
    assert cli.main([*base, "add-product", "--product-id", "D1", "--product-name", "Dal 1kg",
                     "--selling-price", "130", "--stock", "10"]) == 0

    exit_code = cli.main([*base, "sale", "--item", "D1:3", "--payment-method", "Credit",
                          "--new-customer-name", "Farhan", "--new-customer-phone", "9811122233"])
    assert exit_code == 0
    capsys.readouterr()

    assert cli.main([*base, "khata"]) == 0
    out = capsys.readouterr().out
    assert "Farhan\t9811122233\t390.00" in out
    assert "Total receivables: 390.00" in out

    context = core_logic.load_runtime_context(bundle.config_path)
    created = credit_ledger.find_customer_by_phone(context, "9811122233")
    [due] = credit_ledger.list_dues(context, created.customer_id)
    assert due.description.endswith("- 1 item(s)")
    assert [(line.name, line.quantity, line.price) for line in due.items] == [("Dal 1kg", 3, Decimal("390.00"))]


def test_cli_namespace_isolates_workbooks_flow(config_bundle, workbook_factory):
    """Commands run under a namespace never touch the shared workbook."""

    workbook_factory(subdir=config_bundle.directory.name, filename="ledger_counter2.xlsx")
    base = ["--config", str(config_bundle.config_path)]

    assert cli.main([*base, "--namespace", "counter2", "add-product", "--product-id", "N1",
                     "--product-name", "Namkeen", "--selling-price", "25"]) == 0

    shared = core_logic.load_runtime_context(config_bundle.config_path)
    isolated = core_logic.load_runtime_context(config_bundle.config_path, namespace="counter2")
    assert inventory.list_products(shared) == []
    assert [p.product_id for p in inventory.list_products(isolated)] == ["N1"]


def test_rejected_sale_leaves_every_aggregate_untouched_flow(runtime_context, rice, customer):
    """A failing checkout changes neither stock, khata, drawer nor sales log."""

    def snapshot(context):
        fresh = core_logic.refresh_context(context)
        return (
            inventory.get_product(fresh, "P1").stock,
            credit_ledger.get_customer(fresh, "C1").balance,
            sales.cash_on_hand(fresh),
            sales.list_transactions(fresh),
            reports.weekly_sales_series(fresh),
        )

    before = snapshot(runtime_context)
    with pytest.raises(core_logic.ValidationError):
        sales.complete_sale(
            runtime_context,
            sales.SaleCommand(
                items=[sales.CartItem(rice, 2, Decimal("500"))],
                customer=sales.CustomerRef.existing("C1"),
                payment_method=PaymentMethod.CREDIT,
            ),
        )
    assert snapshot(runtime_context) == before
