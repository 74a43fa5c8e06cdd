"""Export invoice and debtor listings to Excel (XLSX)."""

from decimal import Decimal
from io import BytesIO
from typing import Any

from openpyxl import Workbook
from openpyxl.styles import Font


def _cell_value(v: Any) -> Any:
    """Convert value for Excel (Decimal -> float, date stays)."""
    if v is None:
        return None
    if isinstance(v, Decimal):
        return float(v)
    return v


def _write_table(ws: Any, rows: list[list[Any]], start_row: int = 1) -> None:
    """Write list of rows to sheet starting at start_row."""
    for i, row in enumerate(rows, start=start_row):
        for j, val in enumerate(row, start=1):
            ws.cell(row=i, column=j, value=_cell_value(val))


def build_listing_xlsx(
    title: str,
    headers: list[str],
    rows: list[list[Any]],
    totals: list[Any] | None = None,
    money_columns: tuple[int, ...] = (),
) -> bytes:
    """
    One sheet: bold title in A1, bold header row on row 3, data from row 4,
    optional bold totals row at the end. ``money_columns`` are 1-based.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = title[:31]  # Excel sheet name limit
    ws.cell(1, 1, title)
    ws.cell(1, 1).font = Font(bold=True, size=12)
    _write_table(ws, [headers], 3)
    for c in range(1, len(headers) + 1):
        ws.cell(3, c).font = Font(bold=True)

    _write_table(ws, rows, 4)
    last = 4 + len(rows)
    if totals is not None:
        _write_table(ws, [totals], last)
        for c in range(1, len(totals) + 1):
            ws.cell(last, c).font = Font(bold=True)
        last += 1

    for c in money_columns:
        for r in range(4, last):
            ws.cell(r, c).number_format = "#,##0.00"

    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
