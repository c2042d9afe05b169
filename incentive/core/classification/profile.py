"""
Structural profiling of uploaded tabs.

Builds a ContentProfile from raw rows: per-field type detection, header
name signals and tab-level patterns (sparsity, header quality, row-count
category). The profile is the only input the classification agents see.
"""

import math
import re
from datetime import date, datetime
from typing import Any

from incentive.core.models import ContentProfile, FieldProfile, NameSignals
from incentive.observability.logger import get_logger

logger = get_logger(__name__)

ID_SIGNALS = ["id", "no", "number", "code", "código", "codigo", "num", "identifier"]
NAME_SIGNALS = ["name", "nombre", "display", "label"]
TARGET_SIGNALS = ["target", "goal", "quota", "meta", "objetivo", "benchmark"]
DATE_SIGNALS = ["date", "period", "month", "year", "fecha", "time", "day"]
AMOUNT_SIGNALS = ["amount", "total", "balance", "monto", "sum", "value", "price"]
RATE_SIGNALS = ["rate", "%", "percentage", "tasa", "percent", "ratio"]
LICENSE_SIGNALS = ["license", "licencia", "product"]

# Signals this short only count as a whole token
SHORT_SIGNAL_LENGTH = 3

# Headers produced by spreadsheet readers for unnamed columns
AUTO_GENERATED_HEADERS = [
    r"__EMPTY",
    r"^_c\d+$",
    r"^unnamed:?\s*\d+$",
]

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}")
US_DATE_RE = re.compile(r"^\d{1,2}/\d{1,2}/\d{2,4}$")
EU_DATE_RE = re.compile(r"^\d{1,2}\.\d{1,2}\.\d{2,4}$")
MONTH_YEAR_RE = re.compile(
    r"^(jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\w*[\s\-/]?\d{2,4}$", re.IGNORECASE
)
YEAR_MONTH_RE = re.compile(
    r"^\d{4}[\s\-/](jan|feb|mar|apr|may|jun|jul|aug|sep|oct|nov|dec)\w*$", re.IGNORECASE
)
YEAR_QUARTER_RE = re.compile(r"^\d{4}[\s\-]?q[1-4]$", re.IGNORECASE)
PERCENT_STRING_RE = re.compile(r"^[<>≤≥]?\s*\d+(\.\d+)?\s*%$")

BOOLEAN_VALUES = {"true", "false", "yes", "no", "si", "sí", "0", "1"}

REFERENCE_MAX_ROWS = 50
MODERATE_MAX_ROWS = 500


def _tokens(header: str) -> list[str]:
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", header)
    return [t for t in re.split(r"[^0-9a-záéíóúñü%]+", spaced.lower()) if t]


def header_contains(header: str, signals: list[str]) -> bool:
    """
    Check whether a header carries any of the given signals.

    Long signals match anywhere in the lowercased header. Short ones
    ("id", "no", "num") must be a whole token, so "nombre" and "paid" are
    not identifiers but "EmployeeID" and "No_Tienda" are.
    """
    lower = header.lower().strip()
    tokens = _tokens(header)
    for signal in signals:
        if len(signal) <= SHORT_SIGNAL_LENGTH and signal != "%":
            if signal in tokens:
                return True
        elif signal in lower:
            return True
    return False


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _is_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return str(value).strip().lower() in BOOLEAN_VALUES


def _is_percent_string(value: Any) -> bool:
    return isinstance(value, str) and bool(PERCENT_STRING_RE.match(value.strip()))


def _is_date(value: Any) -> bool:
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str):
        return False
    s = value.strip()
    return any(
        pattern.match(s)
        for pattern in (
            ISO_DATE_RE, US_DATE_RE, EU_DATE_RE, MONTH_YEAR_RE, YEAR_MONTH_RE, YEAR_QUARTER_RE
        )
    )


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def _decimal_places(value: Any) -> int:
    text = repr(value) if isinstance(value, float) else str(value).strip()
    if "." not in text or "e" in text.lower():
        return 0
    return len(text) - text.index(".") - 1


def detect_field_type(values: list[Any], header: str) -> str:
    """
    Classify a column from its values and header.

    Args:
        values: Raw column values, blanks included
        header: Column header

    Returns:
        One of integer, decimal, currency, percentage, date, text, boolean, mixed
    """
    non_null = [v for v in values if not _is_blank(v)]
    if not non_null:
        return "text"

    integers = decimals = dates = booleans = texts = percent_strings = 0
    numbers: list[float] = []
    for value in non_null:
        if _is_boolean(value):
            booleans += 1
            continue
        if _is_percent_string(value):
            percent_strings += 1
            continue
        if _is_date(value):
            dates += 1
            continue
        number = _as_number(value)
        if number is not None:
            numbers.append(number)
            if number.is_integer():
                integers += 1
            else:
                decimals += 1
            continue
        texts += 1

    total = len(non_null)
    numeric_count = integers + decimals

    if booleans / total > 0.8:
        return "boolean"
    if dates / total > 0.8:
        return "date"
    if percent_strings / total > 0.5:
        return "percentage"
    if texts / total > 0.8:
        return "text"
    if numeric_count / total > 0.8:
        if header_contains(header, RATE_SIGNALS):
            return "percentage"
        if len(numbers) > 1 and all(0 <= n <= 1 for n in numbers):
            return "percentage"
        if decimals > 0:
            two_decimal = sum(1 for v in non_null if _decimal_places(v) == 2)
            magnitude = max(abs(n) for n in numbers)
            if (two_decimal / numeric_count > 0.5 and magnitude > 100) or header_contains(
                header, AMOUNT_SIGNALS
            ):
                return "currency"
            return "decimal"
        return "integer"
    return "mixed"


def _is_sequential(values: list[Any]) -> bool:
    numbers = sorted({n for n in (_as_number(v) for v in values if not _is_blank(v)) if n is not None})
    if len(numbers) < 2:
        return False
    return all(numbers[i] == numbers[i - 1] + 1 for i in range(1, len(numbers)))


def _header_quality(columns: list[str]) -> str:
    for column in columns:
        if any(re.search(p, column, re.IGNORECASE) for p in AUTO_GENERATED_HEADERS):
            return "auto_generated"
    if columns and all(_as_number(c) is not None for c in columns):
        return "missing"
    return "clean"


def _row_count_category(row_count: int) -> str:
    if row_count < REFERENCE_MAX_ROWS:
        return "reference"
    if row_count <= MODERATE_MAX_ROWS:
        return "moderate"
    return "transactional"


def profile_field(column: str, index: int, values: list[Any]) -> FieldProfile:
    """Profile one column."""
    non_null = [v for v in values if not _is_blank(v)]
    data_type = detect_field_type(values, column)
    distinct = {str(v) for v in non_null}

    return FieldProfile(
        field_name=column,
        field_index=index,
        data_type=data_type,
        null_rate=(len(values) - len(non_null)) / len(values) if values else 0.0,
        distinct_count=len(distinct),
        sample_values=non_null[:5],
        name_signals=NameSignals(
            looks_like_id=header_contains(column, ID_SIGNALS),
            looks_like_name=header_contains(column, NAME_SIGNALS),
            looks_like_target=header_contains(column, TARGET_SIGNALS),
            looks_like_date=header_contains(column, DATE_SIGNALS),
            looks_like_amount=header_contains(column, AMOUNT_SIGNALS),
            looks_like_rate=header_contains(column, RATE_SIGNALS),
        ),
        is_sequential=data_type == "integer" and _is_sequential(values),
    )


def generate_content_profile(
    tab_name: str,
    tab_index: int,
    source_file: str,
    rows: list[dict[str, Any]],
    columns: list[str] | None = None,
) -> ContentProfile:
    """
    Build the structural profile of one tab.

    Args:
        tab_name: Sheet name
        tab_index: Position of the sheet in its file
        source_file: Uploaded file name
        rows: Row dictionaries
        columns: Column order; defaults to the union of row keys in first-seen order

    Returns:
        ContentProfile with field profiles and tab-level patterns
    """
    if columns is None:
        columns = []
        for row in rows:
            for key in row:
                if key not in columns:
                    columns.append(key)

    row_count = len(rows)
    total_cells = row_count * len(columns)
    null_cells = sum(1 for row in rows for c in columns if _is_blank(row.get(c)))

    fields = [
        profile_field(column, index, [row.get(column) for row in rows])
        for index, column in enumerate(columns)
    ]

    def is_categorical(f: FieldProfile, limit: int) -> bool:
        return f.data_type == "text" and 0 < f.distinct_count < limit

    profile = ContentProfile(
        content_unit_id=f"{source_file}::{tab_name}::{tab_index}",
        source_file=source_file,
        tab_name=tab_name,
        tab_index=tab_index,
        row_count=row_count,
        column_count=len(columns),
        fields=fields,
        sparsity=null_cells / total_cells if total_cells else 0.0,
        header_quality=_header_quality(columns),
        row_count_category=_row_count_category(row_count),
        has_entity_identifier=any(
            f.name_signals.looks_like_id or f.is_sequential for f in fields
        ),
        has_date_column=any(
            f.data_type == "date" or f.name_signals.looks_like_date for f in fields
        ),
        currency_columns=sum(
            1
            for f in fields
            if f.data_type == "currency"
            or (f.name_signals.looks_like_amount and f.data_type in ("decimal", "integer"))
        ),
        has_percentage_values=any(
            f.data_type == "percentage" or f.name_signals.looks_like_rate for f in fields
        ),
        has_descriptive_labels=any(
            is_categorical(f, 10)
            and not f.name_signals.looks_like_name
            and not f.name_signals.looks_like_id
            for f in fields
        ),
        has_name_field=any(f.name_signals.looks_like_name for f in fields),
        has_target_field=any(f.name_signals.looks_like_target for f in fields),
        has_license_field=any(
            any(s in f.field_name.lower() for s in LICENSE_SIGNALS) for f in fields
        ),
        categorical_text_fields=sum(1 for f in fields if is_categorical(f, 20)),
    )

    logger.debug(
        "Profiled content unit",
        extra={
            "content_unit_id": profile.content_unit_id,
            "rows": row_count,
            "columns": len(columns),
            "header_quality": profile.header_quality,
        },
    )
    return profile
