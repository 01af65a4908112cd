"""Duration token parsing ("30s", "5m", "1h", "1d")."""

import re
from datetime import datetime, timedelta

from tradebox.exceptions import InvalidDurationError

_DURATION_RE = re.compile(r"([0-9]+)(s|m|h|d)")

_UNIT_KWARG = {
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}


def parse_duration(token: str) -> timedelta:
    """Convert a duration token into a timedelta.

    Raises:
        InvalidDurationError: If the token does not match ``<digits><s|m|h|d>``
            or is too large to represent.
    """
    match = _DURATION_RE.fullmatch(token or "")
    if match is None:
        raise InvalidDurationError(
            f"Invalid duration format {token!r}. Use format like: 30s, 5m, 1h, 1d"
        )
    value, unit = match.groups()
    try:
        return timedelta(**{_UNIT_KWARG[unit]: int(value)})
    except OverflowError:
        raise InvalidDurationError(f"Duration {token!r} is too large")


def compute_expiry(opened_at: datetime, token: str) -> datetime:
    """Return the expiry timestamp for a trade opened at ``opened_at``.

    Raises:
        InvalidDurationError: If the token is malformed or the expiry falls
            outside the representable date range.
    """
    delta = parse_duration(token)
    try:
        return opened_at + delta
    except OverflowError:
        raise InvalidDurationError(f"Duration {token!r} is too large")
