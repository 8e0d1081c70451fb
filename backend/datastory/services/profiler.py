import logging
import math
from collections import Counter
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from datastory.core.performance import track_performance
from datastory.core.schemas import (
    ColumnProfile, DatasetProfile, DateRange, NumericStats, TopValue
)
from datastory.services.inference import (
    infer_type, is_missing, parse_number, value_key
)

logger = logging.getLogger(__name__)

TOP_VALUES_LIMIT = 10
QUANTILES = (0.25, 0.5, 0.75)


def quantile(sorted_values: Sequence[float], p: float) -> float:
    """Sorted-index quantile, no interpolation."""
    return sorted_values[math.floor(p * (len(sorted_values) - 1))]


def numeric_stats(values: Sequence[Any]) -> Optional[NumericStats]:
    """Stats over the values that parse as numbers; None when none do."""
    numbers = sorted(n for n in (parse_number(v) for v in values) if n is not None)
    if not numbers:
        return None
    p25, p50, p75 = (quantile(numbers, p) for p in QUANTILES)
    return NumericStats(
        min=numbers[0],
        p25=p25,
        p50=p50,
        p75=p75,
        max=numbers[-1],
        mean=sum(numbers) / len(numbers),
    )


def date_range(values: Sequence[Any]) -> Optional[DateRange]:
    """
    Earliest and latest parseable date, as naive UTC.

    The whole column is parsed in one vectorized call; deep mode hands in
    every row of the file.
    """
    texts = [v.strip() for v in values if isinstance(v, str) and v.strip()]
    if not texts:
        return None
    dates = pd.to_datetime(pd.Series(texts), errors='coerce', format='mixed', utc=True).dropna()
    if dates.empty:
        return None
    dates = dates.dt.tz_localize(None)
    return DateRange(start=dates.min().isoformat(), end=dates.max().isoformat())


def top_values(values: Sequence[Any], limit: int = TOP_VALUES_LIMIT) -> List[TopValue]:
    # Counter keeps first-seen order, and most_common() is a stable sort,
    # so ties go to the value seen first.
    counts = Counter(value_key(v) for v in values)
    return [TopValue(value=value, count=count) for value, count in counts.most_common(limit)]


def profile_column(name: str, values: Sequence[Any]) -> ColumnProfile:
    """Profile one column from all of its raw cells (missing cells included)."""
    present = [v for v in values if not is_missing(v)]
    column_type = infer_type(values)

    profile = ColumnProfile(
        name=name,
        type=column_type,
        missing_count=len(values) - len(present),
        distinct_count=len({value_key(v) for v in present}),
    )

    if column_type == 'numeric':
        profile.stats = numeric_stats(present)
    elif column_type == 'temporal':
        profile.date_range = date_range(present)
    else:
        profile.top_values = top_values(present)

    return profile


@track_performance("build_profile")
def build_profile(rows: Sequence[Dict[str, Any]], columns: Sequence[str]) -> DatasetProfile:
    """
    Profile every listed column of a row set.

    Rows lacking a column count that cell as missing. Unparseable cells are
    left out of the statistics; nothing here raises on bad data.
    """
    profiles = [
        profile_column(name, [row.get(name) for row in rows])
        for name in columns
    ]
    logger.info(f"Profiled {len(rows)} rows across {len(profiles)} columns")
    return DatasetProfile(row_count=len(rows), columns=profiles)
