"""
Excel export of flattened listing rows.

Writes an "All Listings" sheet (header row, sized columns, frozen header,
autofilter) and a "Summary" sheet. The workbook is saved to a temporary
sibling file and renamed into place, so a failed write leaves no partial
file behind.
"""
import logging
import os
from pathlib import Path
from typing import Any, List, Sequence, Tuple, Union

import pandas as pd
from openpyxl import Workbook
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet

from listings_exporter.exceptions import EmptyDataset, WriteError
from listings_exporter.models.ebay_export import ExportResult, FlatRow

logger = logging.getLogger(__name__)

LISTINGS_SHEET_NAME = "All Listings"
SUMMARY_SHEET_NAME = "Summary"
WIDTH_SAMPLE_ROWS = 100
MIN_COLUMN_WIDTH = 8
MAX_COLUMN_WIDTH = 50
TOP_CATEGORIES = 10


def format_file_size(size: int) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f"{value:.1f} {units[unit]}"


def _cell_value(value: Any) -> Any:
    if isinstance(value, str):
        return ILLEGAL_CHARACTERS_RE.sub("", value)
    return value


def _append_row(ws: Worksheet, values: List[Any]) -> None:
    """Append a row; strings stay text even when they start with "="."""
    ws.append([_cell_value(value) for value in values])
    for cell in ws[ws.max_row]:
        if isinstance(cell.value, str):
            cell.data_type = "s"


def calculate_column_widths(rows: Sequence[FlatRow], headers: List[str]) -> List[int]:
    widths = []
    sample = rows[:WIDTH_SAMPLE_ROWS]
    for header in headers:
        longest = max([len(header)] + [len(str(row.get(header) or "")) for row in sample])
        widths.append(max(MIN_COLUMN_WIDTH, min(longest + 2, MAX_COLUMN_WIDTH)))
    return widths


def _column(df: pd.DataFrame, name: str) -> pd.Series:
    if name in df.columns:
        return df[name]
    return pd.Series([""] * len(df), dtype="object")


def _numeric(df: pd.DataFrame, name: str) -> pd.Series:
    return pd.to_numeric(_column(df, name), errors="coerce").fillna(0)


def _labels(df: pd.DataFrame, name: str) -> pd.Series:
    return _column(df, name).replace("", "Unknown").fillna("Unknown")


def create_summary(rows: Sequence[FlatRow]) -> List[Tuple[str, Any]]:
    """Metric/value pairs for the Summary sheet"""
    df = pd.DataFrame(list(rows))
    count = len(df)

    total_value = float(_numeric(df, "Current Price").sum())
    total_watchers = int(_numeric(df, "Watch Count").sum())
    total_quantity = int(_numeric(df, "Quantity Available").sum())
    average_price = f"{total_value / count:.2f}" if count else "0.00"

    summary: List[Tuple[str, Any]] = [
        ("ACTIVE LISTINGS SUMMARY", ""),
        ("", ""),
        ("Total Active Listings", count),
        ("Total Inventory Value", f"{total_value:.2f}"),
        ("Total Items Available", total_quantity),
        ("Total Watchers", total_watchers),
        ("Average Price per Item", average_price),
        ("", ""),
        ("BY LISTING STATUS:", ""),
    ]
    for status, n in _labels(df, "Listing Status").value_counts(sort=False).items():
        summary.append((f"  {status}", int(n)))

    summary += [("", ""), ("BY LISTING TYPE:", "")]
    for listing_type, n in _labels(df, "Listing Type").value_counts(sort=False).items():
        summary.append((f"  {listing_type}", int(n)))

    summary += [("", ""), ("TOP CATEGORIES:", "")]
    for category, n in _labels(df, "Category Name").value_counts().head(TOP_CATEGORIES).items():
        summary.append((f"  {category}", int(n)))

    return summary


class ExcelExporter:
    """Spreadsheet sink: write(rows, output_path) -> ExportResult"""

    def _write_listings_sheet(self, ws: Worksheet, rows: Sequence[FlatRow], headers: List[str]) -> None:
        ws.title = LISTINGS_SHEET_NAME
        ws.append(headers)
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for row in rows:
            _append_row(ws, [row.get(header, "") for header in headers])

        for index, width in enumerate(calculate_column_widths(rows, headers), start=1):
            ws.column_dimensions[get_column_letter(index)].width = width

        ws.freeze_panes = "B2"
        ws.auto_filter.ref = ws.dimensions

    def _write_summary_sheet(self, ws: Worksheet, rows: Sequence[FlatRow]) -> None:
        ws.append(["Metric", "Value"])
        for cell in ws[1]:
            cell.font = Font(bold=True)
        for metric, value in create_summary(rows):
            _append_row(ws, [metric, value])
        ws.column_dimensions["A"].width = 40
        ws.column_dimensions["B"].width = 20

    def write(self, rows: Sequence[FlatRow], output_path: Union[str, Path]) -> ExportResult:
        """
        Write rows to an .xlsx workbook.

        Columns follow the first row's key order.

        Raises:
            EmptyDataset: If rows is empty
            WriteError: If the workbook cannot be written
        """
        if not rows:
            raise EmptyDataset("No data to export")

        rows = list(rows)
        headers = list(rows[0].keys())
        expected = set(headers)
        for index, row in enumerate(rows):
            if set(row.keys()) != expected:
                raise WriteError(f"Row {index} does not match the header columns")

        output = Path(output_path)
        temp_path = output.with_name(f".{output.name}.tmp")
        logger.info(f"Creating Excel file: {output}")

        try:
            output.parent.mkdir(parents=True, exist_ok=True)

            wb = Workbook()
            self._write_listings_sheet(wb.active, rows, headers)
            self._write_summary_sheet(wb.create_sheet(SUMMARY_SHEET_NAME), rows)

            wb.save(temp_path)
            os.replace(temp_path, output)
            file_size = output.stat().st_size
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            logger.error(f"Error creating Excel file: {e}")
            raise WriteError(f"Could not write {output}: {e}") from e

        logger.info(f"Excel file created: {output} ({format_file_size(file_size)})")
        return ExportResult(filename=str(output), record_count=len(rows), file_size=file_size)
