"""Tests for the runtime context, unit of work and shared validators."""

from __future__ import annotations

import os
import re
from datetime import UTC, datetime
from decimal import Decimal

import pytest

from khata_ledger import constants, core_logic, data_manager, inventory


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_reads_settings_and_workbook(config_bundle):
    context = core_logic.load_runtime_context(config_bundle.config_path)

    assert context.settings.data_file.resolve() == config_bundle.workbook_path.resolve()
    assert context.settings.shop_name == config_bundle.shop_name
    assert "Products" in context.workbook.sheetnames


def test_load_runtime_context_resolves_relative_data_file(config_factory):
    bundle = config_factory(make_relative=True)

    context = core_logic.load_runtime_context(bundle.config_path)

    assert context.settings.data_file.resolve() == bundle.workbook_path.resolve()


def test_load_runtime_context_uses_namespaced_workbook(config_bundle, workbook_factory):
    namespaced = workbook_factory(subdir=config_bundle.directory.name, filename="ledger_store7.xlsx")

    context = core_logic.load_runtime_context(config_bundle.config_path, namespace="store7")

    assert context.settings.data_file.resolve() == namespaced.resolve()


def test_load_runtime_context_missing_namespace_workbook_raises(config_bundle):
    with pytest.raises(FileNotFoundError):
        core_logic.load_runtime_context(config_bundle.config_path, namespace="nobody")


def test_ensure_schema_version_rejects_mismatch(config_factory):
    bundle = config_factory(schema_version="0.9.0")
    context = core_logic.load_runtime_context(bundle.config_path)

    with pytest.raises(RuntimeError):
        core_logic.ensure_schema_version(context)


def test_cached_collection_reuses_bucket_until_invalidated(runtime_context, rice):
    calls = []

    def loader(workbook):
        calls.append(workbook)
        return data_manager.iter_products(workbook)

    first = core_logic.cached_collection(runtime_context, "snapshot", loader, "product_id")
    second = core_logic.cached_collection(runtime_context, "snapshot", loader, "product_id")
    assert first is second
    assert len(calls) == 1
    assert first["by_id"]["P1"].product_name == "Basmati Rice 1kg"

    core_logic.invalidate_cache(runtime_context, "snapshot")
    core_logic.cached_collection(runtime_context, "snapshot", loader, "product_id")
    assert len(calls) == 2


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------


def test_unit_of_work_commits_on_success(runtime_context, reopen):
    with core_logic.unit_of_work(runtime_context, "ledger-write"):
        data_manager.set_ledger_value(runtime_context.workbook, "Marker", Decimal("9.00"))

    fresh = reopen(runtime_context)
    assert data_manager.get_ledger_value(fresh.workbook, "Marker") == Decimal("9.00")


def test_unit_of_work_rolls_back_on_error(runtime_context, rice, reopen):
    with pytest.raises(RuntimeError, match="boom"):
        with core_logic.unit_of_work(runtime_context, "ledger-write"):
            data_manager.update_product(runtime_context.workbook, "P1", field_values={"Stock": 1})
            raise RuntimeError("boom")

    assert inventory.get_product(runtime_context, "P1").stock == 50
    assert inventory.get_product(reopen(runtime_context), "P1").stock == 50


def test_failed_rollback_keeps_original_error_as_cause(runtime_context, monkeypatch, caplog):
    def failing_reload(data_file):
        raise OSError("disk unplugged")

    monkeypatch.setattr(data_manager, "refresh_workbook", failing_reload)

    with pytest.raises(core_logic.StoreError, match="disk unplugged") as excinfo:
        with core_logic.unit_of_work(runtime_context, "ledger-write"):
            raise RuntimeError("boom")

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert "boom" in caplog.text


def test_nested_units_commit_once(runtime_context, monkeypatch):
    saves = []
    original = data_manager.save_workbook

    def counting_save(workbook, destination):
        saves.append(destination)
        original(workbook, destination)

    monkeypatch.setattr(data_manager, "save_workbook", counting_save)

    with core_logic.unit_of_work(runtime_context, "outer"):
        with core_logic.unit_of_work(runtime_context, "inner"):
            data_manager.set_ledger_value(runtime_context.workbook, "A", Decimal("1"))
        data_manager.set_ledger_value(runtime_context.workbook, "B", Decimal("2"))

    assert len(saves) == 1


def test_inner_failure_rolls_back_outer_work(runtime_context, reopen):
    with pytest.raises(ValueError):
        with core_logic.unit_of_work(runtime_context, "outer"):
            data_manager.set_ledger_value(runtime_context.workbook, "A", Decimal("1"))
            with core_logic.unit_of_work(runtime_context, "inner"):
                raise ValueError("inner failed")

    fresh = reopen(runtime_context)
    assert data_manager.locate_row(fresh.workbook, data_manager.LEDGER_SHEET, "Key", "A") is None
    assert data_manager.locate_row(runtime_context.workbook, data_manager.LEDGER_SHEET, "Key", "A") is None


def test_save_failure_surfaces_as_store_error(runtime_context, monkeypatch):
    def failing_save(workbook, destination):
        raise PermissionError("read-only volume")

    monkeypatch.setattr(data_manager, "save_workbook", failing_save)

    with pytest.raises(core_logic.StoreError):
        with core_logic.unit_of_work(runtime_context, "ledger-write"):
            data_manager.set_ledger_value(runtime_context.workbook, "A", Decimal("1"))

    assert data_manager.locate_row(runtime_context.workbook, data_manager.LEDGER_SHEET, "Key", "A") is None


def test_external_write_raises_conflict_and_rolls_back(runtime_context):
    data_file = runtime_context.settings.data_file
    stat = data_file.stat()
    os.utime(data_file, ns=(stat.st_atime_ns, stat.st_mtime_ns + 5_000_000_000))

    with pytest.raises(core_logic.ConflictError):
        with core_logic.unit_of_work(runtime_context, "ledger-write"):
            data_manager.set_ledger_value(runtime_context.workbook, "A", Decimal("1"))

    # The rollback re-stamps the context, so the next unit goes through.
    with core_logic.unit_of_work(runtime_context, "retry"):
        data_manager.set_ledger_value(runtime_context.workbook, "A", Decimal("1"))


def test_conflict_error_is_a_business_rule_violation():
    assert issubclass(core_logic.ConflictError, core_logic.BusinessRuleViolation)
    assert issubclass(core_logic.ValidationError, ValueError)
    assert not issubclass(core_logic.StoreError, core_logic.BusinessRuleViolation)


# ---------------------------------------------------------------------------
# Identifiers and validation
# ---------------------------------------------------------------------------


def test_generate_id_embeds_timestamp_and_suffix():
    moment = datetime(2025, 1, 6, 10, 30, 15, 123456, tzinfo=UTC)

    identifier = core_logic.generate_id("T", when=moment)

    assert re.fullmatch(r"T20250106103015123456-[0-9A-F]{4}", identifier)


def test_generate_id_is_unique_within_one_tick():
    moment = datetime(2025, 1, 6, tzinfo=UTC)

    identifiers = {core_logic.generate_id("D", when=moment) for _ in range(50)}

    assert len(identifiers) > 1


def test_today_iso_formats_calendar_date():
    assert core_logic.today_iso(datetime(2025, 3, 9, 23, 0, tzinfo=UTC)) == "2025-03-09"


@pytest.mark.parametrize(("raw", "expected"), [("12.5", Decimal("12.5")), (7, Decimal("7")), (0.1, Decimal("0.1"))])
def test_parse_money_accepts_numbers(raw, expected):
    assert core_logic.parse_money(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("9.999", "10.00"), ("7.555", "7.56"), ("0.004", "0.00"), (Decimal("12.345"), "12.34"), (5, "5.00")],
)
def test_parse_money_rounds_to_cents_like_the_store(raw, expected):
    amount = core_logic.parse_money(raw)

    assert str(amount) == expected
    assert amount == data_manager.to_money(raw)


def test_parse_money_rejects_amounts_too_large_to_round():
    with pytest.raises(core_logic.ValidationError):
        core_logic.parse_money("1E+40")


@pytest.mark.parametrize("raw", ["abc", "", "NaN", "Infinity"])
def test_parse_money_rejects_non_numbers(raw):
    with pytest.raises(core_logic.ValidationError):
        core_logic.parse_money(raw)


@pytest.mark.parametrize("quantity", [0, -1, 1.5, True, "2"])
def test_require_positive_quantity_rejects_invalid(quantity):
    with pytest.raises(core_logic.ValidationError):
        core_logic.require_positive_quantity(quantity)


def test_require_positive_money_rejects_zero():
    with pytest.raises(core_logic.ValidationError, match="Amount must be greater than zero"):
        core_logic.require_positive_money(Decimal("0"))


def test_require_text_strips_and_rejects_blank():
    assert core_logic.require_text("  Ravi ", field_name="Name") == "Ravi"
    with pytest.raises(core_logic.ValidationError):
        core_logic.require_text("   ", field_name="Name")


def test_expected_schema_version_matches_setup():
    assert constants.EXPECTED_SCHEMA_VERSION == "1.0.0"
