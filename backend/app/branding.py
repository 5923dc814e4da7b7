"""Field rules for organization branding and subdomain updates."""
import re
from typing import Optional

from .errors import ValidationError

RESERVED_SUBDOMAINS = frozenset(
    {
        "www", "api", "admin", "app", "mail", "ftp", "test", "staging", "dev",
        "blog", "support", "help", "docs", "status", "cdn", "assets", "static", "media",
    }
)

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
_HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")
_TIME_RE = re.compile(r"^([0-1][0-9]|2[0-3]):[0-5][0-9](:([0-5][0-9]))?$")


def clean_subdomain(raw: Optional[str]) -> str:
    return (raw or "").strip().lower()


def validate_subdomain(raw: Optional[str]) -> Optional[str]:
    """Normalized subdomain, or None when the caller wants it cleared."""
    sub = clean_subdomain(raw)
    if not sub:
        return None
    if not _SUBDOMAIN_RE.match(sub):
        raise ValidationError(
            "Invalid subdomain format. Use lowercase letters, numbers, and hyphens only. "
            "Must start and end with alphanumeric characters.",
            field="subdomain",
        )
    if sub in RESERVED_SUBDOMAINS:
        raise ValidationError(f'Subdomain "{sub}" is reserved and cannot be used.', field="subdomain")
    return sub


def normalize_brand_color(raw: Optional[str]) -> Optional[str]:
    color = (raw or "").strip()
    if not color:
        return None
    if not _HEX_COLOR_RE.match(color):
        raise ValidationError(
            "Invalid brand color format. Must be a valid hex color (e.g., #3B82F6)",
            field="brand_color",
        )
    return color.upper()


def normalize_time(raw: Optional[str], field_name: str) -> Optional[str]:
    # Empty means no automatic calculation for that boundary.
    t = (raw or "").strip()
    if not t:
        return None
    if not _TIME_RE.match(t):
        label = field_name.replace("_", " ")
        raise ValidationError(
            f"Invalid {label} format. Use HH:MM:SS or HH:MM (e.g., 08:00:00 or 08:00)",
            field=field_name,
        )
    return t if t.count(":") == 2 else f"{t}:00"


def slugify(name: str) -> str:
    s = (name or "").lower().strip()
    s = re.sub(r"[^\w\s-]", "", s, flags=re.ASCII)
    s = re.sub(r"[\s_-]+", "-", s)
    return s.strip("-")
