"""
Input validation and value coercion utilities.

Identifier validation guards the service and CLI boundary; the numeric
and key helpers are shared by the resolver, the engine and the
reconciliation code, which all read loosely typed spreadsheet values.
"""

import math
import re
from pathlib import Path
from typing import Any


class InputValidationError(ValueError):
    """Raised when input validation fails."""
    pass


_IDENTIFIER_RE = re.compile(r'^[a-zA-Z0-9_\-\.:]+$')
_NUMERIC_ID_RE = re.compile(r'^\d+$')
_CAMEL_BOUNDARY_RE = re.compile(r'(?<=[a-z0-9])(?=[A-Z])')
_NUMBER_STRIP_RE = re.compile(r'[\s$€£¥,]')


def validate_identifier(value: Any, field_name: str = "id") -> str:
    """
    Validate a tenant, batch, period or rule set identifier.

    Identifiers must be non-empty strings containing only alphanumeric
    characters, hyphens, underscores, dots and colons.

    Args:
        value: The identifier to validate
        field_name: Name of the field (for error messages)

    Returns:
        The validated identifier (stripped of whitespace)

    Raises:
        InputValidationError: If validation fails

    Examples:
        >>> validate_identifier("tenant-123")
        'tenant-123'
        >>> validate_identifier("bad id!")  # doctest: +SKIP
        InputValidationError: id contains invalid characters
    """
    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()

    if not value:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not _IDENTIFIER_RE.match(value):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, dots and colons are allowed."
        )

    if len(value) > 255:
        raise InputValidationError(f"{field_name} exceeds maximum length of 255 characters")

    return value


def validate_file_path(file_path: str, field_name: str = "file_path") -> Path:
    """
    Validate a request or plan file path given on the command line.

    Args:
        file_path: The file path to validate
        field_name: Name of the field (for error messages)

    Returns:
        The path as a Path object

    Raises:
        InputValidationError: If the path is empty, traverses upward or does not exist
    """
    if not file_path or not isinstance(file_path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_path = file_path.strip()

    if ".." in Path(file_path).parts:
        raise InputValidationError(f"{field_name} contains path traversal characters")

    path = Path(file_path)
    if not path.exists():
        raise InputValidationError(f"{field_name} does not exist: {file_path}")

    return path


def to_number(value: Any) -> float | None:
    """
    Coerce a spreadsheet cell to a float.

    Accepts ints, floats, and strings with thousands separators, currency
    symbols or a trailing percent sign ("45%" -> 0.45). Booleans, blanks,
    NaN and anything unparseable return None.

    Examples:
        >>> to_number("1,250.50")
        1250.5
        >>> to_number("12%")
        0.12
        >>> to_number("n/a") is None
        True
    """
    if value is None or isinstance(value, bool):
        return None

    if isinstance(value, int | float):
        number = float(value)
        return None if math.isnan(number) or math.isinf(number) else number

    if not isinstance(value, str):
        return None

    text = _NUMBER_STRIP_RE.sub("", value)
    if not text:
        return None

    is_percent = text.endswith("%")
    if is_percent:
        text = text[:-1]

    try:
        number = float(text)
    except ValueError:
        return None

    if math.isnan(number) or math.isinf(number):
        return None

    return number / 100 if is_percent else number


def normalize_entity_id(value: Any) -> str:
    """
    Normalize an entity identifier for cross-file matching.

    Trims whitespace, strips leading zeros from purely numeric ids,
    drops a float artefact such as "1001.0" and lower-cases the result.

    Examples:
        >>> normalize_entity_id("  000123 ")
        '123'
        >>> normalize_entity_id(1001.0)
        '1001'
        >>> normalize_entity_id("EMP-7")
        'emp-7'
    """
    if value is None:
        return ""

    if isinstance(value, float) and value.is_integer():
        value = int(value)

    normalized = str(value).strip()
    if normalized.endswith(".0") and _NUMERIC_ID_RE.match(normalized[:-2]):
        normalized = normalized[:-2]

    if _NUMERIC_ID_RE.match(normalized):
        normalized = str(int(normalized))

    return normalized.lower()


def camel_to_snake(key: str) -> str:
    """Convert "appliedTo" to "applied_to"; snake_case keys pass through."""
    return _CAMEL_BOUNDARY_RE.sub("_", key).lower()


def snake_case_keys(payload: Any) -> Any:
    """
    Recursively convert dictionary keys from camelCase to snake_case.

    Used on plan payloads at the store boundary so plans authored with
    either convention validate against the same models.
    """
    if isinstance(payload, dict):
        return {
            camel_to_snake(k) if isinstance(k, str) else k: snake_case_keys(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [snake_case_keys(item) for item in payload]
    return payload
