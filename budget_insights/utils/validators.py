"""
Input validators for engine operations.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, Optional, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .constants import VIEW_NAMES
from .exceptions import ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_household_id(household_id: Any) -> str:
    """Validate household identifier."""
    if not isinstance(household_id, str) or not household_id.strip():
        raise ValueError("Household ID must be a non-empty string")

    return household_id.strip()


def validate_min_frequency(value: Any) -> int:
    """Validate minimum pattern frequency."""
    # bool is an int subclass and must not slip through
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError("min_frequency must be an integer")

    if value < 1:
        raise ValueError("min_frequency must be at least 1")

    return value


def validate_confidence(value: Any) -> float:
    """Validate a confidence value in [0, 1]."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("Confidence must be a number")

    if value < 0 or value > 1:
        raise ValueError("Confidence must be between 0 and 1")

    return float(value)


def validate_currency_code(currency: str) -> str:
    """Validate ISO-4217 currency code."""
    currency = currency.strip().upper()

    if len(currency) != 3 or not currency.isalpha():
        raise ValueError("Currency must be a 3-letter ISO code")

    return currency


def validate_date_range(
    start_date: Union[date, datetime],
    end_date: Union[date, datetime]
) -> None:
    """Validate that a date range is ordered."""
    if start_date >= end_date:
        raise ValueError("start_date must be before end_date")


def validate_view_name(view_name: str, known_views=VIEW_NAMES) -> str:
    """Validate materialized view name."""
    if view_name not in known_views:
        raise ValueError(f"Unknown materialized view '{view_name}'")

    return view_name


def ensure_valid(validator: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Run a plain validator, raising the engine ValidationError on failure."""
    try:
        return validator(*args, **kwargs)
    except ValueError as e:
        raise ValidationError(message=str(e), details=[str(e)]) from e


def parse_options(
    model_class: Type[ModelT],
    options: Optional[Union[ModelT, Dict[str, Any]]] = None
) -> ModelT:
    """
    Build an options model from a model instance, a dict or None.

    Pydantic failures are surfaced as the engine ValidationError so callers
    see a single exception type for malformed input.
    """
    if options is None:
        return model_class()

    if isinstance(options, model_class):
        return options

    try:
        if isinstance(options, BaseModel):
            return model_class.model_validate(options.model_dump())
        return model_class.model_validate(options)
    except PydanticValidationError as e:
        details = [
            f"{'.'.join(str(loc) for loc in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ValidationError(
            message=f"Invalid {model_class.__name__}",
            details=details
        ) from e
