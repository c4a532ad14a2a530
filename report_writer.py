#!/usr/bin/env python3
"""
Stock Check — Report Export
============================
Writes a run result to disk in the canonical column order:

    Rank | Ticker | Company Name | Sector | Current Price | Predicted Price |
    Predicted 1-Day % Growth | 3-Month | 6-Month | 12-Month

Outputs:
  - CSV  (display-formatted: $x.xx prices, +x.xx% percentages)
  - Excel workbook with two sheets:
      Results      run header, decision, metrics, results table
      FactorModel  the locked 43-factor table, weight total, group subtotals
"""

import logging
from pathlib import Path

import numpy as np
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from factors import FACTORS, weights_by_group, weights_total
from schemas import RunResult

logger = logging.getLogger("stock_check.report_writer")

# (record field, display header) in canonical order
COLUMN_MAP = [
    ("rank", "Rank"),
    ("identifier", "Ticker"),
    ("name", "Company Name"),
    ("sector", "Sector"),
    ("current_price", "Current Price"),
    ("predicted_price", "Predicted Price"),
    ("predicted_growth_pct", "Predicted 1-Day % Growth"),
    ("return_3", "3-Month"),
    ("return_6", "6-Month"),
    ("return_12", "12-Month"),
]
CANONICAL_COLUMNS = [header for _, header in COLUMN_MAP]

_MONEY_FIELDS = ("current_price", "predicted_price")
_PCT_FIELDS = ("predicted_growth_pct", "return_3", "return_6", "return_12")


# =========================================================================
# A. Display formatting
# =========================================================================
def format_pct(value: float) -> str:
    """Signed percentage with two decimals: +0.53%, -1.20%, 0.00%."""
    value = float(np.round(value, 2)) + 0.0  # -0.0 -> 0.0
    sign = "+" if value > 0 else ""
    return f"{sign}{value:.2f}%"


def format_money(value: float) -> str:
    return f"${value:.2f}"


def results_frame(result: RunResult, formatted: bool = False) -> pd.DataFrame:
    """Results rows as a DataFrame with the canonical display headers."""
    records = [row.model_dump() for row in result.results]
    df = pd.DataFrame.from_records(records,
                                   columns=[src for src, _ in COLUMN_MAP])
    if formatted:
        for col in _MONEY_FIELDS:
            df[col] = df[col].map(format_money)
        for col in _PCT_FIELDS:
            df[col] = df[col].map(format_pct)
    return df.rename(columns=dict(COLUMN_MAP))


# =========================================================================
# B. CSV
# =========================================================================
def write_results_csv(result: RunResult, path: str | Path) -> str:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    results_frame(result, formatted=True).to_csv(str(path), index=False)
    logger.info(f"CSV written: {path.name} ({len(result.results)} rows)",
                extra={"phase": "export", "step": "csv",
                       "count": len(result.results)})
    return str(path)


# =========================================================================
# C. Excel
# =========================================================================
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFF")
TITLE_FONT = Font(name="Calibri", size=14, bold=True, color="1F4E79")
SUBTITLE_FONT = Font(name="Calibri", size=11, bold=True, color="1F4E79")
DATA_FONT = Font(name="Calibri", size=10)
THIN_BORDER = Border(
    left=Side(style="thin", color="D0D0D0"),
    right=Side(style="thin", color="D0D0D0"),
    top=Side(style="thin", color="D0D0D0"),
    bottom=Side(style="thin", color="D0D0D0"),
)
GREEN_FILL = PatternFill(start_color="C6EFCE", end_color="C6EFCE", fill_type="solid")
YELLOW_FILL = PatternFill(start_color="FFEB9C", end_color="FFEB9C", fill_type="solid")
RED_FILL = PatternFill(start_color="FFC7CE", end_color="FFC7CE", fill_type="solid")
LIGHT_BLUE_FILL = PatternFill(start_color="D6E4F0", end_color="D6E4F0", fill_type="solid")


def _style_header_row(ws, row, n_cols, first_col=1):
    for c in range(first_col, n_cols + 1):
        cell = ws.cell(row=row, column=c)
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal="center", vertical="center")
        cell.border = THIN_BORDER


def _auto_width(ws, min_width=8, max_width=40):
    for col_cells in ws.columns:
        col_letter = get_column_letter(col_cells[0].column)
        max_len = 0
        for cell in col_cells:
            if cell.value is not None:
                max_len = max(max_len, len(str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max(max_len + 2, min_width),
                                                     max_width)


def write_results_sheet(wb: Workbook, result: RunResult):
    """Results sheet: run header, decision banner, metrics, results table."""
    ws = wb.active
    ws.title = "Results"

    ws.cell(row=1, column=1, value=result.model_version.upper()).font = TITLE_FONT
    header = [
        ("Data Mode", result.data_mode.value),
        ("Current Date", result.run_date.isoformat()),
        ("Prediction Date", result.horizon_date.isoformat()),
    ]
    row = 2
    for label, value in header:
        ws.cell(row=row, column=1, value=label).font = Font(
            name="Calibri", size=10, italic=True, color="666666")
        ws.cell(row=row, column=2, value=value).font = DATA_FONT
        row += 1

    row += 1
    banner = ws.cell(row=row, column=1, value=result.decision)
    banner.font = Font(name="Calibri", size=12, bold=True)
    banner.fill = GREEN_FILL if result.decision == "TRADE" else RED_FILL
    if result.sector_warning:
        warn = ws.cell(row=row, column=2,
                       value="Sector concentration warning (7+ in one sector)")
        warn.fill = YELLOW_FILL
    row += 2

    ws.cell(row=row, column=1, value="METRICS (TOP 10)").font = SUBTITLE_FONT
    row += 1
    m = result.metrics
    for label, value in [
        ("Avg Predicted Growth", format_pct(m.avg_top_growth_pct)),
        ("Dispersion", format_pct(m.dispersion_pct)),
        ("Max Sector Count", m.max_sector_count),
    ]:
        ws.cell(row=row, column=1, value=label).font = Font(
            name="Calibri", size=10, bold=True)
        ws.cell(row=row, column=2, value=value).font = DATA_FONT
        ws.cell(row=row, column=1).border = THIN_BORDER
        ws.cell(row=row, column=2).border = THIN_BORDER
        row += 1

    row += 1
    for c, h in enumerate(CANONICAL_COLUMNS, 1):
        ws.cell(row=row, column=c, value=h)
    _style_header_row(ws, row, len(CANONICAL_COLUMNS))
    header_row = row
    row += 1

    for rec in result.results:
        values = rec.model_dump()
        for c, (src, _) in enumerate(COLUMN_MAP, 1):
            v = values[src]
            cell = ws.cell(row=row, column=c, value=v)
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="center" if c != 3 else "left")
            if src in _MONEY_FIELDS:
                cell.number_format = '"$"#,##0.00'
            elif src in _PCT_FIELDS:
                cell.number_format = '+0.00"%";-0.00"%";0.00"%"'
        if isinstance(rec.rank, str):
            for c in range(1, len(COLUMN_MAP) + 1):
                ws.cell(row=row, column=c).fill = LIGHT_BLUE_FILL
        row += 1

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    _auto_width(ws)
    return ws


def write_factor_model_sheet(wb: Workbook):
    """FactorModel sheet: the 43 locked factors, weights and total."""
    ws = wb.create_sheet("FactorModel")
    headers = ["#", "Factor", "Definition", "Group", "Weight %"]
    for c, h in enumerate(headers, 1):
        ws.cell(row=1, column=c, value=h)
    _style_header_row(ws, 1, len(headers))

    for r, f in enumerate(FACTORS, 2):
        for c, v in enumerate([f.id, f.name, f.definition, f.group,
                               f.weight_pct], 1):
            cell = ws.cell(row=r, column=c, value=v)
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
            cell.alignment = Alignment(horizontal="left" if c in (2, 3, 4)
                                       else "center")

    total_row = len(FACTORS) + 2
    ws.cell(row=total_row, column=4, value="Total").font = Font(
        name="Calibri", size=10, bold=True)
    ws.cell(row=total_row, column=5, value=weights_total()).font = Font(
        name="Calibri", size=10, bold=True)

    # Per-group subtotals below the table
    group_row = total_row + 2
    ws.cell(row=group_row, column=4, value="Group")
    ws.cell(row=group_row, column=5, value="Weight %")
    _style_header_row(ws, group_row, 5, first_col=4)
    for r, (group, weight) in enumerate(weights_by_group().items(), group_row + 1):
        for c, v in ((4, group), (5, weight)):
            cell = ws.cell(row=r, column=c, value=v)
            cell.font = DATA_FONT
            cell.border = THIN_BORDER
    _auto_width(ws, max_width=60)
    return ws


def write_results_excel(result: RunResult, path: str | Path) -> str:
    """Write the results workbook.

    Raises PermissionError if the file is locked (handled by the CLI).
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    wb = Workbook()
    write_results_sheet(wb, result)
    write_factor_model_sheet(wb)
    try:
        wb.save(str(path))
    except PermissionError:
        raise PermissionError(
            f"Cannot write '{path.name}'. Close the file in Excel and re-run.")
    logger.info(f"Excel written: {path.name}",
                extra={"phase": "export", "step": "excel"})
    return str(path)
