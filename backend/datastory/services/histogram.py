"""
Histogram binning with "nice" bin widths.

Widths are picked from {1, 2, 5, 10} x 10^k so axis labels read 0-5, 5-10
rather than 0-7.3, 7.3-14.6.
"""
import math
from bisect import bisect_right
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Sequence

from datastory.core.schemas import HistogramBin
from datastory.services.inference import parse_number

NICE_MULTIPLIERS = (1, 2, 5, 10)


def adaptive_bin_count(value_count: int) -> int:
    """Denser bins for larger samples."""
    if value_count > 400:
        return 30
    if value_count > 100:
        return 20
    return 12


def nice_bin_width(span: float, bin_count: int) -> float:
    """
    Smallest nice width that covers `span` in at most `bin_count` bins.

    If no candidate fits, the largest candidate is used even though it can
    yield fewer bins than requested. Returns 0.0 when the span is too small
    or too large to divide (subnormal or overflowing).
    """
    raw_width = span / bin_count
    if not math.isfinite(raw_width) or raw_width <= 0:
        return 0.0
    magnitude = 10 ** math.floor(math.log10(raw_width))
    candidates = [m * magnitude for m in NICE_MULTIPLIERS]
    for candidate in candidates:
        if span / candidate <= bin_count:
            return candidate
    return candidates[-1]


def bin_edge(index: int, width: float) -> float:
    """`index * width` rounded to the precision of the width, so 6 x 0.05 is 0.3."""
    return round(index * width, 1 - math.floor(math.log10(width)))


def bin_edges(low: float, high: float, width: float) -> List[float]:
    """
    Ascending edges on multiples of `width`, from the last edge at or below
    `low` to the first edge at or above `high`.
    """
    index = math.floor(low / width)
    # floor() on a float quotient can be one step off either way
    while bin_edge(index + 1, width) <= low:
        index += 1
    while bin_edge(index, width) > low:
        index -= 1

    edges = [bin_edge(index, width)]
    while edges[-1] < high:
        edges.append(bin_edge(index + len(edges), width))
    return edges


def compute_bins(values: Sequence[Any], bin_count: int = 10) -> List[HistogramBin]:
    """
    Bin the finite numeric values of `values`.

    Bins are [lower, upper) except the last, which also holds the maximum.
    Only non-empty bins are returned, in ascending order. Counts are taken
    against the same edges that are reported, so every value lies inside
    the bounds of the bin that counts it.
    """
    numbers = [n for n in (parse_number(v) for v in values) if n is not None]
    if not numbers:
        return []

    low, high = min(numbers), max(numbers)
    width = nice_bin_width(high - low, max(1, bin_count)) if low != high else 0.0
    if width <= 0:
        return [HistogramBin(lower_bound=low, upper_bound=high, count=len(numbers))]

    edges = bin_edges(low, high, width)
    total_bins = len(edges) - 1

    counts = [0] * total_bins
    for number in numbers:
        counts[min(bisect_right(edges, number) - 1, total_bins - 1)] += 1

    return [
        HistogramBin(lower_bound=edges[i], upper_bound=edges[i + 1], count=count)
        for i, count in enumerate(counts)
        if count > 0
    ]


def format_bound(value: float, width: float) -> str:
    if not math.isfinite(value):
        return f"{value:g}"
    if width >= 10:
        return str(math.floor(value))
    # half-up, so 0.25 reads "0.3"
    rounded = Decimal(value).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    if rounded == rounded.to_integral_value():
        return str(int(rounded))
    return str(rounded)


def bin_label(histogram_bin: HistogramBin) -> str:
    width = histogram_bin.upper_bound - histogram_bin.lower_bound
    if width == 0:
        return f"{histogram_bin.lower_bound:g} - {histogram_bin.upper_bound:g}"
    return f"{format_bound(histogram_bin.lower_bound, width)} - {format_bound(histogram_bin.upper_bound, width)}"


def create_histogram_data(values: Sequence[Any], x_key: str, bin_count: int = 10) -> List[Dict[str, Any]]:
    """
    Series rows for a histogram: the bin label under `x_key`, its count
    under "value", plus the numeric bounds for tooltips.
    """
    return [
        {
            x_key: bin_label(b),
            "value": b.count,
            "lowerBound": b.lower_bound,
            "upperBound": b.upper_bound,
        }
        for b in compute_bins(values, bin_count)
    ]
