"""Tests for the workbook bootstrap script."""

from __future__ import annotations

from decimal import Decimal

import openpyxl
import pytest

from khata_ledger import data_manager, setup_excel
from khata_ledger.constants import SHEET_COLUMNS, WEEKDAYS


def _write_config(directory, data_file="ledger.xlsx", extra=""):
    config_path = directory / "config.ini"
    config_path.write_text(
        "[System]\n"
        f"DataFile = {data_file}\n"
        "ShopName = Shree Ganesh Kirana\n"
        "SchemaVersion = 1.0.0\n"
        f"{extra}",
        encoding="utf-8",
    )
    return config_path


def test_create_master_workbook_writes_every_sheet(tmp_path):
    path = setup_excel.create_master_workbook(tmp_path / "ledger.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    for sheet_name, columns in SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name]["A1"].font.bold


def test_create_master_workbook_seeds_weekdays_and_cash(tmp_path):
    path = setup_excel.create_master_workbook(tmp_path / "ledger.xlsx", opening_cash=Decimal("1500"))

    workbook = data_manager.open_workbook(path)
    assert [row.day for row in data_manager.iter_daily_sales(workbook)] == list(WEEKDAYS)
    assert all(row.amount == 0 for row in data_manager.iter_daily_sales(workbook))
    assert data_manager.get_ledger_value(workbook, "CashOnHand") == Decimal("1500.00")


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    target = tmp_path / "ledger.xlsx"
    setup_excel.create_master_workbook(target)

    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(target)
    setup_excel.create_master_workbook(target, overwrite=True)


def test_load_settings_reads_opening_cash(tmp_path):
    config_path = _write_config(tmp_path, extra="\n[Setup]\nOpeningCash = 250.50\n")

    settings = setup_excel.load_settings(config_path)

    assert settings.data_file == (tmp_path / "ledger.xlsx").resolve()
    assert settings.shop_name == "Shree Ganesh Kirana"
    assert settings.opening_cash == Decimal("250.50")


@pytest.mark.parametrize("raw", ["lots", "-5"])
def test_load_settings_rejects_bad_opening_cash(tmp_path, raw):
    config_path = _write_config(tmp_path, extra=f"\n[Setup]\nOpeningCash = {raw}\n")

    with pytest.raises(ValueError):
        setup_excel.load_settings(config_path)


def test_main_creates_workbook_from_config(tmp_path, capsys):
    config_path = _write_config(tmp_path, data_file="data/ledger.xlsx")

    assert setup_excel.main(["--config", str(config_path)]) == 0

    assert (tmp_path / "data" / "ledger.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out


def test_main_needs_force_to_replace_workbook(tmp_path, capsys):
    config_path = _write_config(tmp_path)
    assert setup_excel.main(["--config", str(config_path)]) == 0
    capsys.readouterr()

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out


def test_main_reports_incomplete_config(tmp_path, capsys):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataFile = ledger.xlsx\n", encoding="utf-8")

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "Missing required configuration entry" in capsys.readouterr().out
