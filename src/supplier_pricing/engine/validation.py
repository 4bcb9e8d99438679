"""Input validation shared by the engine and the service layer."""
import math
import re
from typing import Optional

from .errors import ValidationError

_ID_PATTERN = re.compile(r'^[A-Za-z0-9][A-Za-z0-9_.:\-]{0,63}$')


def validate_id(value, label: str) -> str:
    if not isinstance(value, str) or not _ID_PATTERN.match(value.strip()):
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value.strip()


def validate_optional_id(value, label: str) -> Optional[str]:
    if value is None or value == "":
        return None
    return validate_id(value, label)


def validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, (int, float)):
        raise ValidationError(f"Quantity must be a number, got {quantity!r}")
    if quantity <= 0:
        raise ValidationError("Quantity must be greater than 0")
    if quantity != int(quantity):
        raise ValidationError("Quantity must be a whole number")
    return int(quantity)


def validate_amount(value, label: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError(f"{label} must be a number, got {value!r}")
    if value < 0:
        raise ValidationError(f"{label} cannot be negative")
    return float(value)


def validate_percent(value, label: str) -> float:
    value = validate_amount(value, label)
    if value > 100:
        raise ValidationError(f"{label} must be between 0 and 100")
    return value
