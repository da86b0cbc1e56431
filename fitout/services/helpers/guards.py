"""
Guard helpers shared by the workflow services.

Guards run before any write. Each one raises the exception that names the
failed precondition, so the caller learns the next legal action.
"""

from datetime import datetime, timezone
from decimal import Decimal

from fitout.core.exceptions import PermissionDeniedError, ValidationError
from fitout.models.roles import Actor, Role
from fitout.utils.helpers import parse_date, to_decimal, to_quantity


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_role(actor: Actor, roles, action: str) -> None:
    """Raise PermissionDeniedError unless ``actor`` holds one of ``roles``."""
    if actor is None:
        raise PermissionDeniedError(f"An acting user is required to {action}")
    if not actor.has_role(*roles):
        allowed = ", ".join(r.value for r in roles)
        raise PermissionDeniedError(
            f"Role '{actor.role.value}' may not {action} (allowed: {allowed})",
            role=actor.role.value,
        )


def require_text(value, field: str, code: str | None = None) -> str:
    """Return the stripped string or raise ValidationError if blank."""
    text = (value or "").strip() if isinstance(value, str) else ""
    if not text:
        raise ValidationError(
            f"{field} is required",
            code=code or "ERR_VALIDATION_REQUIRED",
            details={"field": field},
        )
    return text


def positive_decimal(value, field: str, code: str) -> Decimal:
    try:
        number = to_decimal(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), code=code, details={"field": field}) from exc
    if number <= 0:
        raise ValidationError(f"{field} must be > 0", code=code, details={"field": field})
    return number


def positive_quantity(value, field: str = "quantity") -> Decimal:
    """Like positive_decimal, after rounding to the stored 3-place scale."""
    try:
        number = to_quantity(value, field)
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_QUANTITY", details={"field": field}) from exc
    if number <= 0:
        raise ValidationError(
            f"{field} must be >= 0.001", code="INVALID_QUANTITY", details={"field": field},
        )
    return number


def required_date(value, field: str):
    try:
        parsed = parse_date(value)
    except ValueError as exc:
        raise ValidationError(str(exc), code="INVALID_DATE", details={"field": field}) from exc
    if parsed is None:
        raise ValidationError(
            f"{field} is required", code="ERR_VALIDATION_REQUIRED", details={"field": field},
        )
    return parsed


ADMIN_ROLES = (Role.SUPER_ADMIN,)
AUDITOR_ROLES = (Role.PROCUREMENT, Role.SUPER_ADMIN)
