"""Parsing and validation of query parameters.

Every parser raises ValidationError on malformed input; nothing here touches
the store.
"""

import re

from fundwatch.aggregation import Granularity
from fundwatch.exceptions import ValidationError
from fundwatch.instruments import InstrumentRegistry

_DIGITS = re.compile(r"[0-9]+")
_DURATION = re.compile(r"([0-9]+)([hdwm])")

# 9999-12-31T23:59:59.999Z, the last instant datetime can represent
MAX_TIMESTAMP_MS = 253_402_300_799_999

# m is an approximate month of 30 days
DURATION_UNIT_SECONDS: dict[str, int] = {
    "h": 3_600,
    "d": 86_400,
    "w": 7 * 86_400,
    "m": 30 * 86_400,
}

_GRANULARITIES = {g.token: g for g in Granularity}


def _parse_digits(value: str, name: str) -> int:
    if not _DIGITS.fullmatch(value.strip()):
        raise ValidationError(f"Invalid {name}: {value!r}")
    try:
        return int(value.strip())
    except ValueError as exc:
        # int() refuses strings past the interpreter's digit limit
        raise ValidationError(f"Invalid {name}: too many digits") from exc


def parse_timestamp(value: int | str | None, name: str = "timestamp") -> int:
    """Parse a non-negative millisecond timestamp from an int or digit string."""
    if value is None:
        raise ValidationError(f"{name} is required")
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {name}: {value!r}")
    if isinstance(value, str):
        value = _parse_digits(value, name)
    if not isinstance(value, int):
        raise ValidationError(f"Invalid {name}: {value!r}")
    if value < 0 or value > MAX_TIMESTAMP_MS:
        raise ValidationError(f"{name} out of range: {value}")
    return value


def parse_time_range(
    start: int | str | None, end: int | str | None
) -> tuple[int, int]:
    """Parse both bounds and require start <= end."""
    start_ms = parse_timestamp(start, "startTime")
    end_ms = parse_timestamp(end, "endTime")
    if start_ms > end_ms:
        raise ValidationError(f"startTime {start_ms} is after endTime {end_ms}")
    return start_ms, end_ms


def parse_instrument_id(value: int | str | None, registry: InstrumentRegistry) -> int:
    """Parse an instrument id and check it is registered (1..N)."""
    if value is None or isinstance(value, bool):
        raise ValidationError("instrumentId is required")
    if isinstance(value, str):
        value = _parse_digits(value, "instrumentId")
    if not isinstance(value, int):
        raise ValidationError(f"Invalid instrumentId: {value!r}")
    if not registry.contains(value):
        raise ValidationError(f"instrumentId must be between 1 and {registry.max_id}")
    return value


def parse_granularity(token: str | None) -> Granularity | None:
    """Map a granularity token to its enum; None or "" means raw rows."""
    if token is None or token == "":
        return None
    granularity = _GRANULARITIES.get(token.strip())
    if granularity is None:
        raise ValidationError(
            f"Unknown granularity {token!r}; expected one of {', '.join(_GRANULARITIES)}"
        )
    return granularity


def parse_duration(token: str | None, now_ms: int) -> tuple[int, int]:
    """Resolve a "<n><unit>" lookback token to (start_ms, end_ms=now_ms).

    Units: h hours, d days, w weeks, m 30-day months. n must be positive.
    """
    if not token:
        raise ValidationError("duration is required")
    match = _DURATION.fullmatch(token.strip())
    if match is None:
        raise ValidationError(
            f"Invalid duration {token!r}; expected <integer><unit> with unit in h, d, w, m"
        )
    magnitude = _parse_digits(match.group(1), "duration")
    if magnitude <= 0:
        raise ValidationError(f"Duration must be positive: {token!r}")
    span_ms = magnitude * DURATION_UNIT_SECONDS[match.group(2)] * 1000
    if span_ms > now_ms:
        raise ValidationError(f"Duration {token!r} reaches back before the epoch")
    return now_ms - span_ms, now_ms
