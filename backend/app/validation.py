from __future__ import annotations

import uuid
from decimal import Decimal, InvalidOperation
from typing import Annotated, Literal, Optional

from pydantic import BeforeValidator

from .errors import ValidationError


def _to_lower_str(v):
    if v is None:
        return v
    return str(v).strip().lower()


SUPERADMIN = "superadmin"
ADMIN_ROLES = frozenset({"admin", "tenant_admin"})

# Roles an admin may hand out when provisioning users.
AssignableRole = Annotated[Literal["admin", "staff"], BeforeValidator(_to_lower_str)]


def is_admin(profile: dict) -> bool:
    return (profile.get("role") or "") in ADMIN_ROLES


def is_superadmin(profile: dict) -> bool:
    return (profile.get("role") or "") == SUPERADMIN


def parse_uuid_optional(value: Optional[str], field_name: str) -> Optional[str]:
    raw = (value or "").strip()
    if not raw:
        return None
    try:
        return str(uuid.UUID(raw))
    except ValueError:
        raise ValidationError(f"{field_name} must be a valid UUID", field=field_name)


def parse_uuid_required(value: Optional[str], field_name: str) -> str:
    out = parse_uuid_optional(value, field_name)
    if out is None:
        raise ValidationError(f"{field_name} is required", field=field_name)
    return out


def require_positive(qty: Optional[Decimal], field_name: str = "quantity") -> Decimal:
    if qty is None or Decimal(str(qty)) <= 0:
        raise ValidationError(f"{field_name} must be greater than 0", field=field_name)
    return Decimal(str(qty))


def fmt_qty(qty) -> str:
    # 70.000 -> "70", 2.500 -> "2.5"
    d = Decimal(str(qty)).normalize()
    return format(d, "f")


def parse_decimal_required(value: Optional[str], field_name: str) -> Decimal:
    raw = (value or "").strip()
    if not raw:
        raise ValidationError(f"{field_name} is required", field=field_name)
    try:
        out = Decimal(raw)
    except InvalidOperation:
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    if not out.is_finite():
        raise ValidationError(f"{field_name} must be a number", field=field_name)
    return out


def require_non_negative(value: Optional[Decimal], field_name: str) -> Decimal:
    out = Decimal(str(value if value is not None else 0))
    if out < 0:
        raise ValidationError(f"{field_name} must be >= 0", field=field_name)
    return out
