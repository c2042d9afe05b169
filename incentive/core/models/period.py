"""
Period models: stored periods and the output of period detection.
"""

import calendar
import uuid
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

CANONICAL_KEY_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


def canonical_key_for(year: int, month: int) -> str:
    """Build the canonical "YYYY-MM" key."""
    return f"{year:04d}-{month:02d}"


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def month_label(year: int, month: int) -> str:
    """Human label such as "January 2024"."""
    return f"{calendar.month_name[month]} {year}"


class Period(BaseModel):
    """
    A tenant calendar period.

    Attributes:
        id: Period identifier
        tenant_id: Owning tenant
        canonical_key: "YYYY-MM", unique per tenant and used for ordering
        label: Display label
        start_date: First day of the period
        end_date: Last day of the period
        status: "open" or "closed"
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    tenant_id: str
    canonical_key: str = Field(..., pattern=CANONICAL_KEY_PATTERN)
    label: str
    start_date: date
    end_date: date
    status: Literal["open", "closed"] = "open"

    class Config:
        json_schema_extra = {
            "example": {
                "id": "per-2024-01",
                "tenant_id": "acme",
                "canonical_key": "2024-01",
                "label": "January 2024",
                "start_date": "2024-01-01",
                "end_date": "2024-01-31",
                "status": "open",
            }
        }

    @classmethod
    def for_month(cls, tenant_id: str, year: int, month: int, **kwargs) -> "Period":
        """Build a monthly period with derived key, label and bounds."""
        start, end = month_bounds(year, month)
        return cls(
            tenant_id=tenant_id,
            canonical_key=canonical_key_for(year, month),
            label=month_label(year, month),
            start_date=start,
            end_date=end,
            **kwargs,
        )


class DetectedPeriod(BaseModel):
    """A period found in uploaded sheets, with how much data backs it."""

    year: int
    month: int = Field(..., ge=1, le=12)
    label: str
    canonical_key: str
    start_date: date
    end_date: date
    record_count: int = 0
    sheets_present: list[str] = Field(default_factory=list)


class PeriodDetectionResult(BaseModel):
    """
    Output of period detection.

    Attributes:
        periods: Deduplicated periods sorted by canonical key
        frequency: monthly, quarterly, annual or unknown
        confidence: Percentage (0-100) of examined rows that produced a period
        rows_examined: Rows read from period-mapped sheets
        rows_matched: Rows that produced a period
        sheets_skipped: Sheet names skipped (roster/unrelated or no period column)
    """

    periods: list[DetectedPeriod] = Field(default_factory=list)
    frequency: Literal["monthly", "quarterly", "annual", "unknown"] = "unknown"
    confidence: int = Field(0, ge=0, le=100)
    rows_examined: int = 0
    rows_matched: int = 0
    sheets_skipped: list[str] = Field(default_factory=list)

    @property
    def canonical_keys(self) -> list[str]:
        return [p.canonical_key for p in self.periods]


class SheetInput(BaseModel):
    """
    One uploaded sheet as seen by the period detector.

    Attributes:
        sheet_name: Tab name
        rows: Raw rows (column -> value)
        field_mappings: Source column -> abstract target field ("year", "month", "period", ...)
        classification: Classification of the sheet, if known ("roster", "transaction", ...)
    """

    sheet_name: str
    rows: list[dict[str, Any]] = Field(default_factory=list)
    field_mappings: dict[str, str | None] = Field(default_factory=dict)
    classification: str | None = None

    @field_validator("classification")
    @classmethod
    def normalize_classification(cls, v: str | None) -> str | None:
        return v.strip().lower() if v else v
