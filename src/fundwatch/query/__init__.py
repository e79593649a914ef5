"""Read-side query façade and its parameter parsers."""

from fundwatch.query.params import (
    parse_duration,
    parse_granularity,
    parse_instrument_id,
    parse_time_range,
    parse_timestamp,
)
from fundwatch.query.service import QueryService

__all__ = [
    "QueryService",
    "parse_duration",
    "parse_granularity",
    "parse_instrument_id",
    "parse_time_range",
    "parse_timestamp",
]
