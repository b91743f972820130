"""
Date parsing for feed timestamps.
"""

import logging
import math
from datetime import timezone

from dateutil import parser as dateutil_parser

logger = logging.getLogger(__name__)


def parse_timestamp(date_str: str) -> float:
    """
    Convert an RSS date string into epoch milliseconds.

    Handles RFC 822 dates (``Sat, 18 Oct 2025 08:29:22 -0500``) as well as
    ISO 8601. Naive dates are taken as UTC.

    Returns:
        Milliseconds since the epoch, or NaN when the string cannot be parsed
    """
    if not date_str or not date_str.strip():
        return math.nan

    try:
        dt = dateutil_parser.parse(date_str)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Failed to parse RSS date '{date_str}': {e}")
        return math.nan

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    try:
        return dt.timestamp() * 1000
    except (OverflowError, ValueError, OSError) as e:
        logger.debug(f"RSS date out of range '{date_str}': {e}")
        return math.nan


def sort_key_newest_first(timestamp: float) -> tuple:
    """Sort key ordering newest first with unparseable (NaN) timestamps last."""
    if math.isnan(timestamp):
        return (1, 0.0)
    return (0, -timestamp)
