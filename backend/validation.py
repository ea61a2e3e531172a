"""
Ventanilla Única - Input Validation
===================================
Coerces and validates raw form/JSON payloads before they are stored or
handed to the provision calculator.

Every failure raises ValidationError naming the offending field, so callers
can re-prompt the user for exactly that value.
"""

import math
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional, Type

from tax_constants import (
    ActivityType,
    DEFAULT_HISTORY_MONTHS,
    MAX_HISTORY_MONTHS,
    MAX_YEAR,
    MIN_YEAR,
    PersonaType,
    ProvisionStyle,
    Regimen,
    VatResponsible,
)
from models import MonthlyInput, TaxProfile


MONEY_FIELDS = (
    "income_cop",
    "deductible_expenses_cop",
    "withholdings_cop",
    "vat_collected_cop",
)


class ValidationError(ValueError):
    """A payload field is missing, malformed or out of range."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field
        self.message = message

    def to_dict(self) -> Dict[str, str]:
        return {"error": self.message, "field": self.field}


# =============================================================================
# PRIMITIVES
# =============================================================================

def _is_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, float) and value.is_integer()


def validate_year(value: Any) -> int:
    if not _is_integer(value) or not MIN_YEAR <= value <= MAX_YEAR:
        raise ValidationError("year", "Invalid year.")
    return int(value)


def validate_month(value: Any) -> int:
    if not _is_integer(value) or not 1 <= value <= 12:
        raise ValidationError("month", "Invalid month (1-12).")
    return int(value)


def to_safe_amount(value: Any, field: str) -> float:
    """
    Convert a money-like value to a finite, non-negative float.

    None means "not provided" and becomes 0.
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(field, f"Invalid {field}.")

    if isinstance(value, (int, float)):
        try:
            amount = float(value)
        except OverflowError:
            raise ValidationError(field, f"Invalid {field}.")
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            amount = float(text)
        except ValueError:
            raise ValidationError(field, f"Invalid {field}.")
    else:
        raise ValidationError(field, f"Invalid {field}.")

    if not math.isfinite(amount) or amount < 0:
        raise ValidationError(field, f"Invalid {field}.")
    return amount


def normalize_text(value: Any) -> Optional[str]:
    """Trim free text; empty means not set."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_enum(enum_cls: Type[Enum], value: Any, field: str, default: Enum) -> Enum:
    if value is None:
        return default
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(field, f"Invalid {field}.")


def parse_iso_date(value: Any, field: str) -> Optional[date]:
    """Accept only real calendar dates written as YYYY-MM-DD."""
    if value is None:
        return None
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if len(text) != 10 or text[4] != "-" or text[7] != "-":
        raise ValidationError(field, f"Invalid {field}. Use format YYYY-MM-DD.")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise ValidationError(field, f"Invalid {field}. Use format YYYY-MM-DD.")


# =============================================================================
# PAYLOAD SANITIZERS
# =============================================================================

def sanitize_monthly_input(payload: Optional[Dict[str, Any]]) -> MonthlyInput:
    """
    Validate and normalize a monthly input payload.

    Args:
        payload: Raw mapping with year, month, the four *_cop amounts
                 and optional notes

    Returns:
        A fully normalized MonthlyInput
    """
    payload = payload or {}

    year = payload.get("year")
    month = payload.get("month")
    if year is None or month is None:
        missing = "year" if year is None else "month"
        raise ValidationError(missing, "year and month are required.")

    year = validate_year(year)
    month = validate_month(month)

    amounts = {field: to_safe_amount(payload.get(field), field) for field in MONEY_FIELDS}

    return MonthlyInput(
        year=year,
        month=month,
        notes=normalize_text(payload.get("notes")),
        **amounts,
    )


def sanitize_tax_profile(payload: Optional[Dict[str, Any]]) -> TaxProfile:
    """Validate and normalize a tax profile payload, filling defaults."""
    payload = payload or {}

    return TaxProfile(
        persona_type=parse_enum(PersonaType, payload.get("persona_type"), "persona_type", PersonaType.UNKNOWN),
        activity_type=parse_enum(ActivityType, payload.get("activity_type"), "activity_type", ActivityType.UNKNOWN),
        regimen=parse_enum(Regimen, payload.get("regimen"), "regimen", Regimen.UNKNOWN),
        vat_responsible=parse_enum(
            VatResponsible, payload.get("vat_responsible"), "vat_responsible", VatResponsible.UNKNOWN
        ),
        provision_style=parse_enum(
            ProvisionStyle, payload.get("provision_style"), "provision_style", ProvisionStyle.BALANCED
        ),
        municipality=normalize_text(payload.get("municipality")),
        start_date=parse_iso_date(payload.get("start_date"), "start_date"),
    )


# =============================================================================
# QUERY PARAMETERS
# =============================================================================

def _parse_int_param(value: Optional[str], field: str) -> int:
    try:
        return int(str(value).strip())
    except ValueError:
        raise ValidationError(field, f"Invalid {field}.")


def parse_period_query(year: Optional[str], month: Optional[str]) -> tuple[int, int]:
    """Parse the year/month query parameters of a monthly input lookup."""
    if not year or not month:
        raise ValidationError("year" if not year else "month", "Query params year and month are required.")

    return (
        validate_year(_parse_int_param(year, "year")),
        validate_month(_parse_int_param(month, "month")),
    )


def parse_window_months(value: Optional[str]) -> int:
    """History window size; defaults to 6 and must be within 1-24."""
    if value is None or str(value).strip() == "":
        return DEFAULT_HISTORY_MONTHS

    try:
        months = int(str(value).strip())
    except ValueError:
        months = 0

    if not 1 <= months <= MAX_HISTORY_MONTHS:
        raise ValidationError(
            "months", f"Invalid months parameter. Use an integer between 1 and {MAX_HISTORY_MONTHS}."
        )
    return months
