"""
Input validation functions for API parameters and request bodies.

All validators raise ValidationError on invalid input.
"""

import re
from datetime import date, datetime, timedelta
from typing import Optional, Tuple

from core.exceptions import ValidationError
from core.models import EntityType, parse_datetime, utcnow
from core.security import password_problems


# Maximum allowed values
MAX_LIMIT = 50
MAX_PAGE_LIMIT = 100
TENANT_NAME_MIN = 3
TENANT_NAME_MAX = 50
USERNAME_MIN = 3

DEFAULT_RANGE_DAYS = 30
EPOCH = datetime(1970, 1, 1)
PERIOD_DAYS = {"day": 1, "week": 7, "month": 30}
GROUP_BY_VALUES = {"productType", "vendor"}
HEATMAP_METRICS = {"orders", "revenue"}

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
HOST_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$"
)


# ═══════════════════════════════════════════════════════════════════════════════
# ACCOUNTS
# ═══════════════════════════════════════════════════════════════════════════════

def validate_email(value: Optional[str], field: str = "email") -> str:
    """Validate an email address and return it lower-cased."""
    if not value or not isinstance(value, str):
        raise ValidationError(field, "Email is required")

    value = value.strip().lower()
    if not EMAIL_RE.match(value):
        raise ValidationError(field, "Please provide a valid email", value)
    return value


def validate_username(value: Optional[str], field: str = "username") -> str:
    if not value or not isinstance(value, str) or len(value.strip()) < USERNAME_MIN:
        raise ValidationError(field, f"Username must be at least {USERNAME_MIN} characters long")
    return value.strip()


def validate_password(value: Optional[str], field: str = "password") -> str:
    """Enforce the password strength policy."""
    problem = password_problems(value or "")
    if problem:
        raise ValidationError(field, problem)
    return value


def validate_password_confirm(password: str, confirm: Optional[str], field: str = "passwordConfirm") -> None:
    if password != confirm:
        raise ValidationError(field, "Passwords do not match")


def validate_otp(value: Optional[str], field: str = "otp") -> str:
    value = (value or "").strip()
    if not value.isdigit() or len(value) != 6:
        raise ValidationError(field, "OTP must be a 6 digit code")
    return value


def validate_tenant_name(value: Optional[str], field: str = "name") -> str:
    """Tenant names are 3-50 characters after trimming."""
    if not value or not isinstance(value, str):
        raise ValidationError(field, "Tenant name is required")

    value = value.strip()
    if not TENANT_NAME_MIN <= len(value) <= TENANT_NAME_MAX:
        raise ValidationError(
            field,
            f"Tenant name must be between {TENANT_NAME_MIN} and {TENANT_NAME_MAX} characters",
            value
        )
    return value


# ═══════════════════════════════════════════════════════════════════════════════
# STORES
# ═══════════════════════════════════════════════════════════════════════════════

def normalize_domain(value: str) -> str:
    """Strip protocol, path and trailing slash; lower-case the host."""
    value = (value or "").strip().lower()
    value = re.sub(r"^https?://", "", value)
    return value.split("/", 1)[0].rstrip(".")


def validate_shop_domain(value: Optional[str], field: str = "domain") -> str:
    """
    Validate a shop domain and return it normalized.

    Accepts ``*.myshopify.com`` as well as plain custom hosts.
    """
    if not value or not isinstance(value, str):
        raise ValidationError(field, "Store domain is required")

    domain = normalize_domain(value)
    if not HOST_RE.match(domain):
        raise ValidationError(field, "Invalid store domain", value)
    return domain


def validate_access_token(value: Optional[str], field: str = "accessToken") -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "Access token is required")
    return value.strip()


def validate_data_type(value: Optional[str], field: str = "dataType") -> EntityType:
    """Validate a per-entity sync target."""
    try:
        return EntityType((value or "").strip().lower())
    except ValueError:
        raise ValidationError(
            field,
            f"Invalid data type. Must be one of: {', '.join(EntityType.values())}",
            value
        )


# ═══════════════════════════════════════════════════════════════════════════════
# QUERY PARAMETERS
# ═══════════════════════════════════════════════════════════════════════════════

def validate_date_string(
    value: str,
    field: str = "date",
    format: str = "%Y-%m-%d"
) -> date:
    """
    Validate and parse a date string.

    Raises:
        ValidationError: If date is invalid or in wrong format
    """
    if not value:
        raise ValidationError(field, "Date is required", value)

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    try:
        return datetime.strptime(value, format).date()
    except ValueError:
        raise ValidationError(
            field,
            f"Invalid date format. Expected {format}",
            value
        )


def validate_datetime_param(value: Optional[str], field: str, end_of_day: bool = False) -> Optional[datetime]:
    """
    Parse a ``startDate``/``endDate`` query value.

    Accepts ``YYYY-MM-DD`` or a full ISO-8601 timestamp. A bare date used as an
    end bound covers the whole day.
    """
    if value is None or value == "":
        return None

    if isinstance(value, str) and len(value) == 10:
        day = validate_date_string(value, field)
        parsed = datetime.combine(day, datetime.min.time())
        return parsed + timedelta(days=1) - timedelta(microseconds=1) if end_of_day else parsed

    parsed = parse_datetime(value)
    if parsed is None:
        raise ValidationError(field, "Invalid date. Expected YYYY-MM-DD or ISO-8601", value)
    return parsed


def validate_date_range(
    start_date: Optional[str],
    end_date: Optional[str],
    default_days: Optional[int] = DEFAULT_RANGE_DAYS,
) -> Tuple[datetime, datetime]:
    """
    Resolve an optional ``startDate``/``endDate`` pair.

    Missing end defaults to now, missing start to ``default_days`` before the
    end, or to the Unix epoch when ``default_days`` is None.

    Raises:
        ValidationError: If dates are invalid or start is after end
    """
    end = validate_datetime_param(end_date, "endDate", end_of_day=True) or utcnow()
    start = validate_datetime_param(start_date, "startDate")
    if start is None:
        start = EPOCH if default_days is None else end - timedelta(days=default_days)

    if start > end:
        raise ValidationError(
            "date_range",
            "Start date must be before or equal to end date",
            f"{start_date} to {end_date}"
        )

    return start, end


def validate_limit(
    value,
    field: str = "limit",
    default: int = 5,
    min_value: int = 1,
    max_value: int = MAX_LIMIT
) -> int:
    """
    Validate a top-N limit. Values above ``max_value`` are clamped.

    Raises:
        ValidationError: If limit is not an integer or below the minimum
    """
    if value is None or value == "":
        return default

    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValidationError(field, "Must be an integer", value)

    if value < min_value:
        raise ValidationError(
            field,
            f"Must be at least {min_value}",
            value
        )

    return min(value, max_value)


def validate_pagination(page, limit, max_limit: int = MAX_PAGE_LIMIT) -> Tuple[int, int]:
    """Validate ``page``/``limit`` list parameters (defaults 1 and 10)."""
    page = validate_limit(page, "page", default=1, max_value=10 ** 6)
    limit = validate_limit(limit, "limit", default=10, max_value=max_limit)
    return page, limit


def validate_period(
    value: Optional[str],
    field: str = "period",
) -> int:
    """
    Validate a sales period shortcut.

    Returns:
        Number of days the period covers (day=1, week=7, month=30)
    """
    if value is None or value == "":
        value = "week"

    if not isinstance(value, str):
        raise ValidationError(field, "Must be a string", value)

    value = value.lower().strip()
    if value not in PERIOD_DAYS:
        raise ValidationError(
            field,
            f"Must be one of: {', '.join(PERIOD_DAYS)}",
            value
        )
    return PERIOD_DAYS[value]


def validate_group_by(value: Optional[str], field: str = "groupBy") -> str:
    if value is None or value == "":
        return "productType"
    if value not in GROUP_BY_VALUES:
        raise ValidationError(field, f"Must be one of: {', '.join(sorted(GROUP_BY_VALUES))}", value)
    return value


def validate_metric(value: Optional[str], field: str = "metric") -> str:
    if value is None or value == "":
        return "orders"
    if value not in HEATMAP_METRICS:
        raise ValidationError(field, f"Must be one of: {', '.join(sorted(HEATMAP_METRICS))}", value)
    return value
