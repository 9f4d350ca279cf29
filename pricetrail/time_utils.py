"""Keepa time helpers: minutes since 2011-01-01 UTC <-> epoch ms / datetimes."""

from datetime import datetime, timezone
from typing import Union

import numpy as np
import pandas as pd

KEEPA_EPOCH = pd.Timestamp("2011-01-01", tz="UTC")
KEEPA_EPOCH_MS = int(KEEPA_EPOCH.value // 1_000_000)
MINUTE_MS = 60 * 1000

# Last Keepa minute that still converts to a pandas Timestamp (2262-04-11)
MAX_KEEPA_MINUTES = int((pd.Timestamp.max.tz_localize("UTC") - KEEPA_EPOCH) // pd.Timedelta(minutes=1))


def keepa_minutes_to_ms(keepa_minutes) -> int:
    """Converts Keepa minutes to Unix epoch milliseconds."""
    return KEEPA_EPOCH_MS + int(keepa_minutes) * MINUTE_MS


def ms_to_keepa_minutes(epoch_ms) -> int:
    return (int(epoch_ms) - KEEPA_EPOCH_MS) // MINUTE_MS


def ms_to_iso(epoch_ms) -> str:
    """ISO-8601 UTC string with millisecond precision, e.g. 2011-01-01T00:00:00.000Z."""
    ts = pd.Timestamp(int(epoch_ms), unit="ms", tz="UTC")
    return ts.strftime("%Y-%m-%dT%H:%M:%S.") + f"{ts.microsecond // 1000:03d}Z"


def to_epoch_ms(value: Union[datetime, pd.Timestamp, int, float, None]) -> int:
    """
    Normalizes a clock value to epoch milliseconds.

    None means "now" (UTC wall clock). Naive datetimes are treated as UTC.
    Numbers are assumed to already be epoch milliseconds.
    """
    if value is None:
        return int(datetime.now(timezone.utc).timestamp() * 1000)
    if isinstance(value, bool):
        raise ValueError(f"Invalid clock value: {value!r}")
    if isinstance(value, (int, float, np.integer, np.floating)):
        return int(value)
    ts = pd.Timestamp(value)
    if ts.tz is None:
        ts = ts.tz_localize("UTC")
    return int(ts.value // 1_000_000)
