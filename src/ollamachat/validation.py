"""Validation of raw settings input.

Front-ends hand over whatever the user typed (usually strings). These helpers
turn it into typed values or raise ValidationError with a readable message.
"""

from pydantic import BaseModel, Field

from .errors import ValidationError

TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 2.0


def _as_text(value: object, field_name: str) -> str:
    if isinstance(value, bool) or value is None:
        raise ValidationError(field_name, f"{field_name} must be a number")
    return str(value).strip()


def validate_positive_int(value: object, field_name: str) -> int:
    """Parse a strictly positive integer."""
    text = _as_text(value, field_name)
    try:
        number = int(text)
    except ValueError:
        number = 0
    if number <= 0:
        raise ValidationError(field_name, f"{field_name} must be a positive number")
    return number


def validate_non_negative_int(value: object, field_name: str) -> int:
    """Parse an integer that may be zero (zero disables context)."""
    text = _as_text(value, field_name)
    try:
        number = int(text)
    except ValueError:
        number = -1
    if number < 0:
        raise ValidationError(field_name, f"{field_name} must be a non-negative number")
    return number


def validate_float(value: object, field_name: str, minimum: float, maximum: float) -> float:
    """Parse a float within [minimum, maximum]."""
    text = _as_text(value, field_name)
    message = f"{field_name} must be a number between {minimum:.1f} and {maximum:.1f}"
    try:
        number = float(text)
    except ValueError:
        raise ValidationError(field_name, message) from None
    if number != number or number < minimum or number > maximum:
        raise ValidationError(field_name, message)
    return number


class SessionSettings(BaseModel):
    """Validated per-session overrides."""

    model: str = Field(default="", description="Model override; empty uses the global default")
    max_context_messages: int = Field(ge=0)
    temperature: float = Field(ge=TEMPERATURE_MIN, le=TEMPERATURE_MAX)


def validate_session_settings(
    model: str | None,
    max_context_messages: object,
    temperature: object,
) -> SessionSettings:
    """Validate the per-session settings form.

    Args:
        model: Model name, or empty/None to fall back to the global default
        max_context_messages: Context window size in messages
        temperature: Sampling temperature between 0 and 2

    Returns:
        SessionSettings with parsed values

    Raises:
        ValidationError: If any field is malformed
    """
    return SessionSettings(
        model=(model or "").strip(),
        max_context_messages=validate_non_negative_int(
            max_context_messages, "max context messages"
        ),
        temperature=validate_float(
            temperature, "temperature", TEMPERATURE_MIN, TEMPERATURE_MAX
        ),
    )
