"""
Period detection from field-mapped sheets.

No column names are hardcoded: a sheet contributes periods only through
columns mapped to an abstract year, month or period/date target.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from incentive.core.models import DetectedPeriod, PeriodDetectionResult, SheetInput
from incentive.core.models.period import canonical_key_for, month_bounds, month_label
from incentive.observability.logger import get_logger

logger = get_logger(__name__)

YEAR_TARGETS = {"year", "period_year"}
MONTH_TARGETS = {"month", "period_month"}
PERIOD_TARGETS = {"period", "period_key", "periodkey", "date", "period_date"}

SKIPPED_CLASSIFICATIONS = {"roster", "unrelated"}

MIN_YEAR = 2000
MAX_YEAR = 2100

EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_SERIAL_MIN = 25000
EXCEL_SERIAL_MAX = 100000

MONTH_NAMES = {
    "january": 1, "february": 2, "march": 3, "april": 4, "may": 5, "june": 6,
    "july": 7, "august": 8, "september": 9, "october": 10, "november": 11, "december": 12,
    "enero": 1, "febrero": 2, "marzo": 3, "abril": 4, "mayo": 5, "junio": 6,
    "julio": 7, "agosto": 8, "septiembre": 9, "setiembre": 9, "octubre": 10,
    "noviembre": 11, "diciembre": 12,
}
MONTH_ABBREVIATIONS = {name[:3]: num for name, num in MONTH_NAMES.items()}

DATE_FORMATS = [
    "%Y-%m-%d",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
]

_YEAR_MONTH_RE = re.compile(r"^(\d{4})[-/](\d{1,2})$")
_MONTH_YEAR_NUM_RE = re.compile(r"^(\d{1,2})[-/](\d{4})$")
_MONTH_NAME_YEAR_RE = re.compile(r"^([A-Za-zÀ-ÿ]+)[\s\-_/,.]+(\d{4})$")
_YEAR_MONTH_NAME_RE = re.compile(r"^(\d{4})[\s\-_/,.]+([A-Za-zÀ-ÿ]+)$")


def _year_in_range(year: int) -> bool:
    return MIN_YEAR <= year <= MAX_YEAR


def parse_month(value: Any) -> int | None:
    """Parse a month number (1-12) or an English/Spanish month name."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        if float(value).is_integer() and 1 <= int(value) <= 12:
            return int(value)
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if text.isdigit():
        month = int(text)
        return month if 1 <= month <= 12 else None
    if text in MONTH_NAMES:
        return MONTH_NAMES[text]
    return MONTH_ABBREVIATIONS.get(text[:3]) if len(text) >= 3 and text.isalpha() else None


def parse_year(value: Any) -> int | None:
    """Parse a year within the accepted range."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip()) if not isinstance(value, int | float) else float(value)
    except ValueError:
        return None
    if not number.is_integer():
        return None
    year = int(number)
    return year if _year_in_range(year) else None


def _from_number(number: float) -> tuple[int, int] | None:
    if EXCEL_SERIAL_MIN < number < EXCEL_SERIAL_MAX:
        converted = EXCEL_EPOCH + timedelta(days=int(number))
        return (converted.year, converted.month) if _year_in_range(converted.year) else None
    if MIN_YEAR <= number <= MAX_YEAR and float(number).is_integer():
        return int(number), 1
    return None


def _from_string(text: str) -> tuple[int, int] | None:
    match = _YEAR_MONTH_RE.match(text)
    if match:
        year, month = int(match.group(1)), int(match.group(2))
        return (year, month) if 1 <= month <= 12 else None

    match = _MONTH_YEAR_NUM_RE.match(text)
    if match:
        month, year = int(match.group(1)), int(match.group(2))
        return (year, month) if 1 <= month <= 12 else None

    match = _MONTH_NAME_YEAR_RE.match(text)
    if match:
        month = parse_month(match.group(1))
        return (int(match.group(2)), month) if month else None

    match = _YEAR_MONTH_NAME_RE.match(text)
    if match:
        month = parse_month(match.group(2))
        return (int(match.group(1)), month) if month else None

    for fmt in DATE_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed.year, parsed.month

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.year, parsed.month


def parse_period_value(value: Any) -> tuple[int, int] | None:
    """
    Parse a single date/period cell into (year, month).

    Numbers in the Excel serial range (25000, 100000) are converted from the
    1899-12-30 epoch; whole numbers in [2000, 2100] are a bare year
    (month 1); strings are parsed as numbers first, then as calendar
    dates. Results outside [2000, 2100] and unparseable values return
    None, they are never defaulted.

    Args:
        value: Raw cell value

    Returns:
        (year, month) or None

    Examples:
        >>> parse_period_value(45308)
        (2024, 1)
        >>> parse_period_value("2024")
        (2024, 1)
        >>> parse_period_value(150) is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, datetime | date):
        return (value.year, value.month) if _year_in_range(value.year) else None

    if isinstance(value, int | float):
        return _from_number(float(value))

    text = str(value).strip()
    if not text:
        return None

    try:
        number = float(text)
    except ValueError:
        number = None

    if number is not None:
        return _from_number(number)

    parsed = _from_string(text)
    if parsed is None:
        return None
    year, month = parsed
    return parsed if _year_in_range(year) and 1 <= month <= 12 else None


def find_period_columns(
    field_mappings: dict[str, str | None]
) -> tuple[str | None, str | None, str | None]:
    """
    Locate the source columns mapped to year, month and period/date targets.

    Returns:
        (year column, month column, period column); each may be None
    """
    year_col = month_col = period_col = None
    for source, target in field_mappings.items():
        if not target:
            continue
        normalized = target.strip().lower()
        if normalized in YEAR_TARGETS and year_col is None:
            year_col = source
        elif normalized in MONTH_TARGETS and month_col is None:
            month_col = source
        elif normalized in PERIOD_TARGETS and period_col is None:
            period_col = source
    return year_col, month_col, period_col


def parse_row_period(
    row: dict[str, Any],
    year_col: str | None,
    month_col: str | None,
    period_col: str | None,
) -> tuple[int, int] | None:
    """Read (year, month) from one row; a year/month column pair wins over a period column."""
    if year_col and month_col:
        year = parse_year(row.get(year_col))
        month = parse_month(row.get(month_col))
        if year is None or month is None:
            return None
        return year, month
    if period_col:
        return parse_period_value(row.get(period_col))
    return None


def resolve_period_values(values: Iterable[Any]) -> tuple[int, int] | None:
    """
    Combine the cells of several period columns into one (year, month).

    A bare year and a bare month may come from different cells; a full
    period value fills whichever part is still missing. The first cell to
    supply a part wins. A year with no month anywhere reads as January,
    the same as a single bare-year cell.

    Examples:
        >>> resolve_period_values([2024, 3])
        (2024, 3)
        >>> resolve_period_values(["marzo", "2024"])
        (2024, 3)
        >>> resolve_period_values([None, "2024-02-15"])
        (2024, 2)
    """
    year = month = None
    for value in values:
        if value is None or (isinstance(value, str) and not value.strip()):
            continue
        bare_year = parse_year(value)
        if bare_year is not None:
            year = year or bare_year
            continue
        bare_month = parse_month(value)
        if bare_month is not None:
            month = month or bare_month
            continue
        parsed = parse_period_value(value)
        if parsed:
            year = year or parsed[0]
            month = month or parsed[1]
    if year is None:
        return None
    return year, month or 1


def infer_frequency(canonical_keys: Iterable[str]) -> str:
    """
    Infer period frequency from the average month gap of sorted keys.

    <=1.5 months is monthly, <=4 quarterly, <=13 annual, otherwise (or with
    fewer than two periods) unknown.
    """
    ordinals = sorted(
        int(key[:4]) * 12 + int(key[5:7]) - 1 for key in set(canonical_keys)
    )
    if len(ordinals) < 2:
        return "unknown"

    gaps = [b - a for a, b in zip(ordinals, ordinals[1:])]
    average_gap = sum(gaps) / len(gaps)

    if average_gap <= 1.5:
        return "monthly"
    if average_gap <= 4:
        return "quarterly"
    if average_gap <= 13:
        return "annual"
    return "unknown"


class PeriodDetector:
    """
    Detects calendar periods across a set of mapped sheets.

    Usage:
        detector = PeriodDetector()
        result = detector.detect(sheets)
        result.canonical_keys  # ["2024-01", "2024-02"]
    """

    def detect(self, sheets: list[SheetInput]) -> PeriodDetectionResult:
        """
        Detect periods in all sheets.

        Args:
            sheets: Sheets with rows and source -> target field mappings

        Returns:
            PeriodDetectionResult with deduplicated, sorted periods
        """
        found: dict[str, dict[str, Any]] = {}
        rows_examined = 0
        rows_matched = 0
        skipped: list[str] = []

        for sheet in sheets:
            if sheet.classification in SKIPPED_CLASSIFICATIONS:
                logger.debug(
                    "Skipping sheet for period detection",
                    extra={"sheet": sheet.sheet_name, "classification": sheet.classification},
                )
                skipped.append(sheet.sheet_name)
                continue

            year_col, month_col, period_col = find_period_columns(sheet.field_mappings)
            if not (year_col and month_col) and not period_col:
                logger.debug("Sheet has no period-mapped column", extra={"sheet": sheet.sheet_name})
                skipped.append(sheet.sheet_name)
                continue

            for row in sheet.rows:
                rows_examined += 1
                parsed = parse_row_period(row, year_col, month_col, period_col)

                if parsed is None:
                    continue

                rows_matched += 1
                year, month = parsed
                key = canonical_key_for(year, month)
                entry = found.setdefault(key, {"year": year, "month": month, "count": 0, "sheets": []})
                entry["count"] += 1
                if sheet.sheet_name not in entry["sheets"]:
                    entry["sheets"].append(sheet.sheet_name)

        periods = []
        for key in sorted(found):
            entry = found[key]
            start, end = month_bounds(entry["year"], entry["month"])
            periods.append(
                DetectedPeriod(
                    year=entry["year"],
                    month=entry["month"],
                    label=month_label(entry["year"], entry["month"]),
                    canonical_key=key,
                    start_date=start,
                    end_date=end,
                    record_count=entry["count"],
                    sheets_present=entry["sheets"],
                )
            )

        confidence = round(100 * rows_matched / rows_examined) if rows_examined else 0
        result = PeriodDetectionResult(
            periods=periods,
            frequency=infer_frequency(found.keys()),
            confidence=confidence,
            rows_examined=rows_examined,
            rows_matched=rows_matched,
            sheets_skipped=skipped,
        )

        logger.info(
            f"Detected {len(periods)} periods ({result.frequency}, confidence {confidence}%)",
            extra={"period_keys": result.canonical_keys},
        )
        return result
