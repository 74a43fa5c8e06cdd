import csv
import io
from datetime import date, datetime
from typing import Any, Iterable

from src.core.exceptions import ValidationError

_TRUE = {"yes", "y", "true", "1"}
_FALSE = {"no", "n", "false", "0"}


def normalise_header(label: str) -> str:
    """'Admission Number' -> 'admission_number'."""
    return "_".join(label.replace("-", " ").replace("_", " ").lower().split())


def read_csv_rows(content: bytes | str, aliases: dict[str, str]) -> list[dict[str, str]]:
    """
    Parse an uploaded CSV into dicts keyed by canonical field name.

    Headers are matched case-insensitively against ``aliases`` (normalised
    header -> field name); unknown columns are dropped. Blank lines are
    skipped by the csv module, so callers should number rows themselves.
    """
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("CSV must be UTF-8 encoded", field="file")
    else:
        text = content
    if not text.strip():
        raise ValidationError("CSV file is empty", field="file")

    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise ValidationError("CSV has no headers", field="file")

    columns = {name: aliases.get(normalise_header(name)) for name in reader.fieldnames if name}
    if not any(columns.values()):
        raise ValidationError(
            f"CSV has no recognised columns: {sorted(reader.fieldnames)}", field="file"
        )

    rows = []
    for raw in reader:
        row = {}
        for column, field in columns.items():
            if field is None:
                continue
            value = raw.get(column)
            row[field] = value.strip() if isinstance(value, str) else value
        rows.append(row)
    return rows


def parse_bool(value: Any, default: bool | None = None) -> bool | None:
    """Yes/No, true/false, 1/0. Blank gives ``default``; anything else is an error."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if not text:
        return default
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"expected Yes or No, got {value!r}")


def parse_date(value: Any) -> date | None:
    """ISO dates, plus dd/mm/yyyy as exported by spreadsheets."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    for fmt in ("%Y-%m-%d", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"invalid date {value!r}")


def write_csv(headers: list[str], rows: Iterable[list[Any]]) -> bytes:
    """CSV with a BOM so spreadsheet apps detect UTF-8."""
    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow(["" if v is None else v for v in row])
    return ("\ufeff" + buf.getvalue()).encode("utf-8")
