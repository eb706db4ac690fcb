"""Conversions between stored setting strings and Python values.

Every setting is persisted as a single string (or NULL). These helpers turn
that string into the typed value handed to callers and normalize incoming
values back into the canonical stored form.
"""

import re
from datetime import date, datetime, timezone
from typing import Any, Iterable, List, Optional

FALSE_TOKENS = frozenset({"0", "f", "false", "off"})
TRUE_TOKENS = frozenset({"1", "t", "true", "on"})

ARRAY_DELIMITER = re.compile(r"[\n\r]+")

# Formats tried after ISO-8601 parsing fails
DATE_FORMATS = [
    "%Y-%m-%d %H:%M:%S",  # 2023-01-01 12:00:00
    "%m/%d/%Y %H:%M:%S",  # 01/01/2023 12:00:00
    "%Y-%m-%dT%H:%M:%S",  # ISO strict without offset
    "%Y-%m-%d",  # Date only
    "%m/%d/%Y",  # US date only
]

MICROSECOND = "microsecond"
MILLISECOND = "millisecond"


def blank(value: Any) -> bool:
    """Return True for None, whitespace-only strings and empty containers."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


def present(value: Any) -> bool:
    return not blank(value)


def boolean(value: Any) -> Optional[bool]:
    """Cast common boolean spellings to a bool.

    Blank values become None. The tokens ``0``, ``f``, ``false`` and ``off``
    (any case) are False. Every other present value is True, including
    strings that are not in the truthy list; callers depend on that.

    Args:
        value: Raw value from storage or a caller supplied default.

    Returns:
        True, False or None.
    """
    if value is False:
        return False
    if value is True:
        return True
    if blank(value):
        return None
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() not in FALSE_TOKENS


def integer(value: Any) -> Optional[int]:
    """Parse an integer, raising ValueError for anything that is not one."""
    if blank(value):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"not an integer: {value!r}")
        return int(value)
    return int(str(value).strip(), 10)


def floating(value: Any) -> Optional[float]:
    """Parse a float, raising ValueError for anything that is not a number."""
    if blank(value):
        return None
    if isinstance(value, bool):
        return float(value)
    result = float(str(value).strip()) if isinstance(value, str) else float(value)
    if result != result:  # NaN
        raise ValueError(f"not a number: {value!r}")
    return result


def time(value: Any) -> Optional[datetime]:
    """Parse a timestamp from the formats settings are written in.

    Accepts datetimes, dates, epoch seconds, ISO-8601 strings (including a
    trailing ``Z``) and a handful of common date layouts.

    Args:
        value: The input value (string, datetime, number, etc.) to parse.

    Returns:
        A timezone-aware datetime in UTC, or None for blank input.

    Raises:
        ValueError: If the value cannot be interpreted as a time.
    """
    if blank(value):
        return None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return datetime.fromtimestamp(value, tz=timezone.utc)

    value_str = str(value).strip()
    iso_str = value_str[:-1] + "+00:00" if value_str.endswith(("Z", "z")) else value_str
    try:
        return time(datetime.fromisoformat(iso_str))
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value_str, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue

    raise ValueError(f"invalid time: {value_str!r}")


def iso8601(value: datetime) -> str:
    """Render a timestamp as ISO-8601 UTC with microseconds."""
    return time(value).isoformat(timespec="microseconds")


def with_precision(value: Optional[datetime], precision: str = MICROSECOND) -> Optional[datetime]:
    """Truncate a timestamp so engines with coarser clocks compare equal."""
    if precision not in (MICROSECOND, MILLISECOND):
        raise ValueError(f"Invalid precision: {precision}")
    if value is None:
        return None
    value = time(value)
    if precision == MILLISECOND:
        return value.replace(microsecond=(value.microsecond // 1000) * 1000)
    return value


def array(value: Any) -> Optional[List[str]]:
    """Split a stored array into its members.

    Strings are split on runs of newlines; sequences have blank members
    dropped and every member converted to a string.
    """
    if value is None:
        return None
    if isinstance(value, str):
        if not value:
            return None
        return [item for item in ARRAY_DELIMITER.split(value) if item]
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value if present(item)]
    return [str(value)]


def join_array(values: Iterable[Any]) -> Optional[str]:
    """Join array members into the newline separated stored form."""
    members = array(list(values)) or []
    return "\n".join(members) if members else None
