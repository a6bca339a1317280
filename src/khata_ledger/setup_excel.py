"""Bootstrap a fresh ledger workbook.

Usable as the ``khata-setup`` script or imported by tests. The sheet layout
comes from :data:`khata_ledger.constants.SHEET_COLUMNS`, the same definition
the data layer reads with.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Sequence

import openpyxl
from openpyxl.styles import Font

from . import data_manager
from .constants import CASH_ON_HAND_KEY, SHEET_COLUMNS, WEEKDAYS, SheetName

CONFIG_FILE = "config.ini"


@dataclass(frozen=True)
class SetupSettings:
    data_file: Path
    shop_name: str
    opening_cash: Decimal = Decimal("0")


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` into :class:`SetupSettings`.

    ``[Setup] OpeningCash`` is optional and seeds the cash drawer.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        KeyError: If ``[System]`` entries are missing.
        ValueError: If ``OpeningCash`` is not a non-negative number.
    """

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    raw_cash = parser.get("Setup", "OpeningCash", fallback="0")
    try:
        opening_cash = Decimal(raw_cash.strip() or "0")
    except InvalidOperation as exc:
        raise ValueError(f"OpeningCash must be a number: {raw_cash!r}") from exc
    if opening_cash < 0:
        raise ValueError("OpeningCash must be zero or positive")

    return SetupSettings(data_file=settings.data_file, shop_name=settings.shop_name, opening_cash=opening_cash)


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    opening_cash: Decimal = Decimal("0"),
    overwrite: bool = False,
) -> Path:
    """Create an empty ledger workbook at ``destination``.

    Every sheet gets a bold header row, ``DailySales`` is seeded with the seven
    weekday buckets at zero and ``Ledger`` with the opening cash on hand.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is False.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing ledger workbook: {destination}")

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if SheetName.DAILY_SALES.value in workbook.sheetnames:
        for day in WEEKDAYS:
            workbook[SheetName.DAILY_SALES.value].append([day, Decimal("0")])
    if SheetName.LEDGER.value in workbook.sheetnames:
        workbook[SheetName.LEDGER.value].append([CASH_ON_HAND_KEY, Decimal(opening_cash)])

    workbook.save(destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        opening_cash=settings.opening_cash,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="khata-setup", description="Initialize the khata ledger workbook")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for ``khata-setup``."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Khata Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created ledger workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
