"""
Cell parsing and column type inference.

Every component that looks at raw cells goes through these helpers, so a
cell is "missing", "a number" or "a date" in exactly one way across the
profiler, the chart transformer and the insight repair code.
"""
import math
import re
import warnings
import logging
from typing import Any, Iterable, Optional

import pandas as pd

logger = logging.getLogger(__name__)

PROFILE_SAMPLE_SIZE = 50
RENDER_SAMPLE_SIZE = 10

TEMPORAL_THRESHOLD = 0.5
NUMERIC_THRESHOLD = 0.7

# "2021", "2021-03", "2021/03/04"
_ISO_PARTIAL_DATE = re.compile(r'^\d{4}(?:[-/]\d{2}){0,2}$')
_NUMBER_NOISE = re.compile(r'[,$%]')
# "10:30", "9:15:00 pm"
_TIME_OF_DAY = re.compile(r'^\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?\s*(?:[ap]\.?m\.?)?$', re.IGNORECASE)
_ORDINAL_DAY = re.compile(r'^\d{1,2}(?:st|nd|rd|th)$', re.IGNORECASE)


def is_missing(value: Any) -> bool:
    """None, empty string and float NaN all count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def parse_number(value: Any) -> Optional[float]:
    """
    Parse currency/percent formatted numbers ("$1,200", "45%").

    Returns None instead of raising when the value holds no finite number.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else None
    if not isinstance(value, str):
        return None

    cleaned = _NUMBER_NOISE.sub('', value).strip()
    if not cleaned:
        return None
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def parse_date(value: Any) -> Optional[pd.Timestamp]:
    """Parse a loosely formatted date string into a naive UTC timestamp."""
    if not isinstance(value, str) or not value.strip():
        return None

    with warnings.catch_warnings():
        # pandas warns when it falls back to dateutil for a single value
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(value.strip(), errors='coerce')
        except (ValueError, TypeError, OverflowError):
            return None

    if parsed is None or pd.isna(parsed):
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.tz_convert('UTC').tz_localize(None)
    return parsed


def is_date_like(value: Any) -> bool:
    """
    True for strings that read as a calendar date.

    Partial ISO dates ("2021", "2021-03") are accepted by pattern. Plain
    numbers are never handed to the general parser, which would happily
    read "12" as a day of the current month. Text without a digit ("now",
    "today", "March"), a bare time of day or a bare ordinal ("1st") is
    relative to the current date and never counts either.
    """
    if not isinstance(value, str):
        return False
    text = value.strip()
    if not text:
        return False
    if _ISO_PARTIAL_DATE.match(text):
        return True
    if not any(c.isdigit() for c in text):
        return False
    if parse_number(text) is not None:
        return False
    if _TIME_OF_DAY.match(text) or _ORDINAL_DAY.match(text):
        return False
    return parse_date(text) is not None


def infer_type(values: Iterable[Any], window: int = PROFILE_SAMPLE_SIZE) -> str:
    """
    Classify a column as 'temporal', 'numeric' or 'categorical'.

    Only the first `window` non-missing values are inspected. Temporal wins
    over numeric so that year-like columns ("2019", "2020") stay dates.
    """
    sample = []
    for value in values:
        if is_missing(value):
            continue
        sample.append(value)
        if len(sample) >= window:
            break

    if not sample:
        return 'categorical'

    date_count = sum(1 for v in sample if is_date_like(v))
    if date_count > len(sample) * TEMPORAL_THRESHOLD:
        return 'temporal'

    number_count = sum(1 for v in sample if parse_number(v) is not None)
    if number_count > len(sample) * NUMERIC_THRESHOLD:
        return 'numeric'

    return 'categorical'


def detect_data_type(values: Iterable[Any]) -> str:
    """Render-time type detection over a small leading window."""
    return infer_type(values, window=RENDER_SAMPLE_SIZE)


def value_key(value: Any) -> str:
    """
    String key used for distinct counts and grouping.

    Integral floats key like integers so 5, 5.0 and "5" collide.
    """
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
