"""
Chart data transformer.

Turns a persisted chart specification plus raw rows into the series the
dashboard renders. The rules are applied in a fixed order; a later rule is
only reached when none of the earlier ones applied:

 1. configuration checks            7. sum aggregation
 2. missing-value filtering         8. avg aggregation
 3. explicit histograms             9. implicit aggregation for bar charts
 4. render-time type detection     10. raw point-per-row series
 5. auto-histogram for wide bars   11. scatter hint for dense time lines
 6. count aggregation

Problems are reported through ChartDataResult.status, never raised.
"""
import hashlib
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from datastory.core.performance import track_performance
from datastory.core.schemas import ChartDataResult, ChartSpec, ChartSpecification
from datastory.services.histogram import adaptive_bin_count, create_histogram_data
from datastory.services.inference import (
    detect_data_type, is_missing, parse_number
)

logger = logging.getLogger(__name__)

MAX_CATEGORIES = 20
AUTO_HISTOGRAM_MIN_DISTINCT = 20
FORCE_SCATTER_MIN_POINTS = 20
LOOKS_NUMERIC_THRESHOLD = 0.8
OTHER_LABEL = "Other"
VALUE_KEY = "value"


def looks_numeric(values: Sequence[Any]) -> bool:
    """At least 80% of the (non-missing) values parse as numbers."""
    if not values:
        return False
    parsed = sum(1 for v in values if parse_number(v) is not None)
    return parsed / len(values) >= LOOKS_NUMERIC_THRESHOLD


def text_sort_key(value: Any) -> Tuple[str, str]:
    text = str(value)
    return (text.casefold(), text)


def numeric_sort_key(value: Any) -> Tuple[int, float, str]:
    # Unparseable keys sort after the numbers instead of raising.
    number = value if isinstance(value, (int, float)) else parse_number(value)
    if number is None:
        return (1, 0.0, str(value))
    return (0, float(number), "")


def jitter(index: int) -> float:
    """Stable pseudo-random offset in (0.1, 0.9) for row `index`."""
    digest = hashlib.md5(str(index).encode()).digest()
    fraction = int.from_bytes(digest[:4], "big") / 2 ** 32
    return 0.1 + fraction * 0.8


def _axis_value(key: str, numeric_axis: bool) -> Any:
    if numeric_axis:
        number = parse_number(key)
        if number is not None:
            return number
    return key


def _sorted_series(series: List[Dict[str, Any]], x_key: str, numeric_axis: bool) -> List[Dict[str, Any]]:
    key = numeric_sort_key if numeric_axis else text_sort_key
    return sorted(series, key=lambda item: key(item[x_key]))


def _cap_categories(
    series: List[Dict[str, Any]],
    x_key: str,
    metric_key: str,
    other_value,
) -> List[Dict[str, Any]]:
    """
    Keep the MAX_CATEGORIES largest entries and fold the rest into "Other".

    `other_value` receives the folded entries and returns the metric for the
    synthetic bucket. The result is ordered by descending metric.
    """
    by_metric = sorted(series, key=lambda item: item[metric_key], reverse=True)
    top, rest = by_metric[:MAX_CATEGORIES], by_metric[MAX_CATEGORIES:]
    capped = top + [{x_key: OTHER_LABEL, metric_key: other_value(rest)}]
    return sorted(capped, key=lambda item: item[metric_key], reverse=True)


def _valid_rows(rows: Sequence[Dict[str, Any]], x_key: str):
    for index, row in enumerate(rows):
        x_value = row.get(x_key)
        if not is_missing(x_value):
            yield index, row, x_value


def aggregate_count(rows, x_key, numeric_axis: bool, cap: bool) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for _, _, x_value in _valid_rows(rows, x_key):
        key = str(x_value).strip()
        counts[key] = counts.get(key, 0) + 1

    series = [{x_key: _axis_value(k, numeric_axis), VALUE_KEY: c} for k, c in counts.items()]
    series = _sorted_series(series, x_key, numeric_axis)
    if cap and len(series) > MAX_CATEGORIES:
        series = _cap_categories(series, x_key, VALUE_KEY, lambda rest: sum(r[VALUE_KEY] for r in rest))
    return series


def aggregate_sum(rows, x_key, y_key, numeric_axis: bool, cap: bool) -> List[Dict[str, Any]]:
    sums: Dict[str, float] = {}
    for _, row, x_value in _valid_rows(rows, x_key):
        y_value = parse_number(row.get(y_key))
        if y_value is None:
            continue
        key = str(x_value).strip()
        sums[key] = sums.get(key, 0.0) + y_value

    series = [{x_key: _axis_value(k, numeric_axis), y_key: s} for k, s in sums.items()]
    series = _sorted_series(series, x_key, numeric_axis)
    if cap and len(series) > MAX_CATEGORIES:
        series = _cap_categories(series, x_key, y_key, lambda rest: sum(r[y_key] for r in rest))
    return series


def aggregate_avg(rows, x_key, y_key, numeric_axis: bool, cap: bool) -> List[Dict[str, Any]]:
    groups: Dict[str, List[float]] = {}  # key -> [sum, count]
    for _, row, x_value in _valid_rows(rows, x_key):
        y_value = parse_number(row.get(y_key))
        if y_value is None:
            continue
        totals = groups.setdefault(str(x_value).strip(), [0.0, 0])
        totals[0] += y_value
        totals[1] += 1

    series = [
        {
            x_key: _axis_value(k, numeric_axis),
            y_key: total / count if count else 0.0,
            "_sum": total,
            "_count": count,
        }
        for k, (total, count) in groups.items()
    ]
    series = _sorted_series(series, x_key, numeric_axis)

    if cap and len(series) > MAX_CATEGORIES:
        def weighted_average(rest):
            total = sum(r["_sum"] for r in rest)
            count = sum(r["_count"] for r in rest)
            return total / count if count else 0.0
        series = _cap_categories(series, x_key, y_key, weighted_average)

    return [{k: v for k, v in item.items() if not k.startswith("_")} for item in series]


def aggregate_implicit(rows, x_key, y_key: Optional[str]) -> List[Dict[str, Any]]:
    """Collapse duplicate bar categories: count without y, sum with y."""
    totals: Dict[str, float] = {}
    for _, row, x_value in _valid_rows(rows, x_key):
        key = str(x_value)
        if y_key:
            y_value = parse_number(row.get(y_key))
            if y_value is None:
                continue
            totals[key] = totals.get(key, 0.0) + y_value
        else:
            totals[key] = totals.get(key, 0) + 1

    metric_key = y_key or VALUE_KEY
    series = [{x_key: k, metric_key: v} for k, v in totals.items()]
    return _sorted_series(series, x_key, numeric_axis=False)


def raw_points(rows, x_key, y_key: Optional[str], x_type: str) -> List[Dict[str, Any]]:
    numeric_axis = x_type == 'numeric'
    points = []
    for index, row, x_value in _valid_rows(rows, x_key):
        x_number = parse_number(x_value) if numeric_axis else None
        point = {x_key: x_number if x_number is not None else x_value}
        if y_key:
            point[y_key] = parse_number(row.get(y_key))
        elif numeric_axis:
            point[VALUE_KEY] = x_number
        elif x_type == 'categorical':
            point[VALUE_KEY] = jitter(index)
        else:
            point[VALUE_KEY] = len(points) + 1
        point["_originalIndex"] = index
        points.append(point)
    return _sorted_series(points, x_key, numeric_axis)


def _result(status: str, spec: ChartSpec, chart_type: str, message: str = None, **kwargs) -> ChartDataResult:
    return ChartDataResult(
        status=status,
        chart_type=chart_type,
        x_key=spec.x_key,
        message=message,
        **kwargs,
    )


def validate_chart_config(spec: ChartSpec, columns: Sequence[str]) -> Optional[str]:
    """Reason the spec cannot be rendered against `columns`, or None."""
    if not spec.x_key:
        return "No X-axis column specified for this chart."
    if columns and spec.x_key not in columns:
        return f'Column "{spec.x_key}" does not exist in the dataset.'
    if spec.y_key and columns and spec.y_key not in columns:
        return f'Column "{spec.y_key}" does not exist in the dataset.'
    if spec.aggregation in ("sum", "avg") and not spec.y_key:
        return f'"{spec.aggregation}" aggregation needs a Y-axis column.'
    return None


def _build_series(rows, spec: ChartSpec, chart_type: str) -> ChartDataResult:
    x_key, y_key, aggregation = spec.x_key, spec.y_key, spec.aggregation

    x_values = [r.get(x_key) for r in rows if not is_missing(r.get(x_key))]
    if not x_values:
        return _result("no_data", spec, chart_type, f'No values found in column "{x_key}".')

    def ok(data, kind=chart_type, metric_key=VALUE_KEY, force_scatter=False):
        if not data:
            return _result("no_data", spec, kind, "No data to display.", value_key=metric_key)
        return _result("ok", spec, kind, data=data, value_key=metric_key, force_scatter=force_scatter)

    if chart_type == 'histogram':
        return ok(create_histogram_data(x_values, x_key, adaptive_bin_count(len(x_values))))

    x_type = detect_data_type(x_values)
    numeric_like = looks_numeric(x_values)
    numeric_axis = numeric_like or x_type == 'numeric'

    if chart_type == 'bar' and not y_key and numeric_axis:
        distinct = len({str(v) for v in x_values})
        if distinct > AUTO_HISTOGRAM_MIN_DISTINCT:
            bins = create_histogram_data(x_values, x_key, adaptive_bin_count(len(x_values)))
            return ok(bins, kind='histogram')

    if aggregation == 'count' or (not y_key and chart_type != 'scatter'):
        return ok(aggregate_count(rows, x_key, numeric_axis, cap=not numeric_like))

    if aggregation == 'sum' and y_key:
        return ok(aggregate_sum(rows, x_key, y_key, numeric_axis, cap=not numeric_like), metric_key=y_key)

    if aggregation == 'avg' and y_key:
        return ok(aggregate_avg(rows, x_key, y_key, numeric_axis, cap=not numeric_like), metric_key=y_key)

    if chart_type == 'bar':
        has_duplicates = len(set(map(str, x_values))) < len(x_values)
        if x_type == 'categorical' or has_duplicates:
            return ok(aggregate_implicit(rows, x_key, y_key), metric_key=y_key or VALUE_KEY)

    points = raw_points(rows, x_key, y_key, x_type)
    force_scatter = (
        chart_type in ('line', 'area')
        and x_type == 'temporal'
        and len(points) > FORCE_SCATTER_MIN_POINTS
    )
    return ok(points, metric_key=y_key or VALUE_KEY, force_scatter=force_scatter)


@track_performance("process_chart_data")
def process_chart_data(
    rows: Sequence[Dict[str, Any]],
    chart: ChartSpecification,
    columns: Optional[Sequence[str]] = None,
) -> ChartDataResult:
    """
    Build renderable series for `chart` from `rows`.

    `columns` is the dataset schema used to validate the spec; it defaults
    to the keys of the first row.
    """
    spec = chart.spec
    chart_type = chart.type
    rows = list(rows or [])
    if columns is None:
        columns = list(rows[0].keys()) if rows else []

    reason = validate_chart_config(spec, columns)
    if reason:
        logger.info(f"Chart config rejected ({chart_type}): {reason}")
        return _result("invalid_config", spec, chart_type, reason)

    if not rows:
        return _result("no_data", spec, chart_type, "The dataset has no rows.")

    try:
        return _build_series(rows, spec, chart_type)
    except Exception as e:
        logger.exception(f"Error processing chart data for {chart_type} on '{spec.x_key}'")
        return _result("processing_error", spec, chart_type, f"Unable to process data for visualization: {e}")
