"""Shared pytest fixtures and utilities for khata ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from khata_ledger import cli, constants, core_logic, credit_ledger, inventory, payables  # noqa: E402
from khata_ledger.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
# A Monday, so the weekday bucket is "Mon".
FIXED_MOMENT = datetime(2025, 1, 6, 10, 30, tzinfo=UTC)

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Policy]\n"
    "LowStockThreshold = {low_stock_threshold}\n"
    "StockPolicy = {stock_policy}\n\n"
    "[Reports]\n"
    "ExpenseMode = {expense_mode}\n\n"
    "[Merchant]\n"
    "OwnerName = Rajesh Gupta\n"
    "UpiId = {upi_id}\n"
    "Phone = 9876543210\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized ledger workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "ledger.xlsx",
        opening_cash: Decimal = Decimal("0"),
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, opening_cash=opening_cash, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Shree Ganesh Kirana",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        low_stock_threshold: int = 20,
        stock_policy: str = "clamp",
        expense_mode: str = "recorded",
        upi_id: str = "9876543210@ybl",
        opening_cash: Decimal = Decimal("0"),
    ) -> ConfigBundle:
        bundle_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_name
        workbook_path = workbook_factory(subdir=bundle_name, opening_cash=opening_cash)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                low_stock_threshold=low_stock_threshold,
                stock_policy=stock_policy,
                expense_mode=expense_mode,
                upi_id=upi_id,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def context_factory(config_factory: Callable[..., ConfigBundle]) -> Callable[..., core_logic.RuntimeContext]:
    """Build a runtime context over a fresh workbook with custom config values."""

    def _create_context(**config_values) -> core_logic.RuntimeContext:
        bundle = config_factory(**config_values)
        context = core_logic.load_runtime_context(bundle.config_path)
        core_logic.ensure_schema_version(context)
        return context

    return _create_context


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def fixed_moment() -> datetime:
    return FIXED_MOMENT


@pytest.fixture
def reopen() -> Callable[[core_logic.RuntimeContext], core_logic.RuntimeContext]:
    """Open a second context on the committed workbook, as another process would."""

    return core_logic.refresh_context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="khata-cli", description="Khata CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_table_entry() -> tuple[str, cli.CommandSpec]:
    """Provide a placeholder command table entry for dispatch tests."""

    def execute(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
        execute.__dict__["called"] = True
        return 0

    def register(
        subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
    ) -> argparse.ArgumentParser:
        return subparsers.add_parser("ledger-test")

    spec = cli.CommandSpec(
        name="ledger-test",
        help_text="help",
        register=register,
        execute=execute,
    )
    return "ledger-test", spec


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


@pytest.fixture
def rice(runtime_context: core_logic.RuntimeContext):
    """Product P1: price 100, cost 80, 50 on hand."""

    return inventory.add_product(
        runtime_context,
        product_id="P1",
        product_name="Basmati Rice 1kg",
        selling_price="100",
        cost_price="80",
        stock=50,
        category="Grocery",
        barcode="8901234567890",
    )


@pytest.fixture
def soap(runtime_context: core_logic.RuntimeContext):
    """Product P2: price 40, cost 30, 10 on hand."""

    return inventory.add_product(
        runtime_context,
        product_id="P2",
        product_name="Neem Soap",
        selling_price="40",
        cost_price="30",
        stock=10,
        category="Personal Care",
    )


@pytest.fixture
def customer(runtime_context: core_logic.RuntimeContext):
    """Customer C1 with an empty khata."""

    return credit_ledger.add_customer(
        runtime_context,
        customer_id="C1",
        customer_name="Sunita Sharma",
        phone="98765 43210",
        when=FIXED_MOMENT,
    )


@pytest.fixture
def vendor(runtime_context: core_logic.RuntimeContext):
    """Vendor V1 with no opening balance."""

    return payables.create_vendor(
        runtime_context,
        vendor_id="V1",
        vendor_name="Agarwal Traders",
        category="Wholesale",
        next_payment_date="2025-01-15",
        phone="9123456780",
    )
