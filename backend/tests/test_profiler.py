"""
Unit tests for the column profiler.
"""
import pytest
from datastory.core.schemas import DatasetProfile
from datastory.services.profiler import build_profile, profile_column, quantile


@pytest.fixture
def rows():
    return [
        {"region": "north", "sales": "10", "date": "2021-03-01"},
        {"region": "south", "sales": "20", "date": "2021-01-15"},
        {"region": "north", "sales": "", "date": "2021-02-01"},
        {"region": "east", "sales": "abc", "date": ""},
        {"region": "south", "sales": "40"},
    ]


@pytest.mark.unit
def test_build_profile_shape(rows):
    """Test profiling a basic dataset."""
    profile = build_profile(rows, ["region", "sales", "date"])

    assert isinstance(profile, DatasetProfile)
    assert profile.row_count == 5
    assert [c.name for c in profile.columns] == ["region", "sales", "date"]
    assert [c.type for c in profile.columns] == ["categorical", "numeric", "temporal"]


@pytest.mark.unit
def test_numeric_stats_exclude_missing_and_unparseable(rows):
    """Test numeric stats over parseable values."""
    sales = build_profile(rows, ["sales"]).column("sales")

    assert sales.missing_count == 1
    assert sales.distinct_count == 4
    assert sales.stats.min == 10
    assert sales.stats.max == 40
    # sorted [10, 20, 40]: floor(p * 2) -> 0, 1, 1
    assert sales.stats.p25 == 10
    assert sales.stats.p50 == 20
    assert sales.stats.p75 == 20
    assert sales.stats.mean == pytest.approx(70 / 3)
    assert sales.date_range is None
    assert sales.top_values is None


@pytest.mark.unit
def test_temporal_range_and_missing_rows(rows):
    """Test temporal ranges and missing rows."""
    date = build_profile(rows, ["date"]).column("date")

    # one empty cell plus one row without the key
    assert date.missing_count == 2
    assert date.date_range.start.startswith("2021-01-15")
    assert date.date_range.end.startswith("2021-03-01")
    assert date.stats is None


@pytest.mark.unit
def test_top_values_break_ties_by_first_seen():
    """Test top value tie-breaking."""
    column = profile_column("color", ["blue", "red", "blue", "red", "green"])

    assert [t.value for t in column.top_values] == ["blue", "red", "green"]
    assert [t.count for t in column.top_values] == [2, 2, 1]


@pytest.mark.unit
def test_top_values_limited_to_ten():
    """Test the top values limit."""
    values = [f"item{i:02d}" for i in range(15) for _ in range(i + 1)]
    column = profile_column("item", values)

    assert len(column.top_values) == 10
    assert column.top_values[0].value == "item14"
    assert column.top_values[0].count == 15


@pytest.mark.unit
def test_distinct_count_uses_string_keys():
    """Test distinct counts."""
    column = profile_column("n", [5, "5", 5.0, 6])
    assert column.distinct_count == 2


@pytest.mark.unit
def test_missing_plus_present_equals_row_count():
    """Test missing and present counts."""
    rows = [{"a": v} for v in ["1", "", None, "x", "2", float("nan")]] + [{}]
    profile = build_profile(rows, ["a"])
    column = profile.column("a")

    present = sum(1 for r in rows if r.get("a") not in (None, "") and r.get("a") == r.get("a"))
    assert column.missing_count + present == profile.row_count


@pytest.mark.unit
def test_empty_rows_profile():
    """Test profiling an empty dataset."""
    profile = build_profile([], ["a"])
    column = profile.column("a")

    assert profile.row_count == 0
    assert column.type == "categorical"
    assert column.missing_count == 0
    assert column.top_values == []


@pytest.mark.unit
def test_quantile_uses_sorted_index():
    """Test sorted-index quantiles."""
    assert quantile([1, 2, 3, 4], 0.5) == 2
    assert quantile([1, 2, 3, 4], 0.75) == 3
    assert quantile([7], 0.25) == 7


@pytest.mark.unit
def test_profile_serializes_with_camel_case_keys(rows):
    """Test camelCase serialization of profiles."""
    data = build_profile(rows, ["region", "sales", "date"]).model_dump(by_alias=True, exclude_none=True)

    assert data["rowCount"] == 5
    assert {"missingCount", "distinctCount", "topValues"} <= set(data["columns"][0])
    assert "range" in data["columns"][2]


@pytest.mark.unit
def test_date_range_normalizes_offsets_and_skips_junk():
    """Test that date ranges convert offsets to UTC and ignore unparseable cells."""
    column = profile_column("when", [
        "2021-03-04T10:00:00+02:00", "2021-03-04 09:00", "n/a", "2021-01-02", "2021-03-05",
    ])

    assert column.type == "temporal"
    assert column.date_range.start == "2021-01-02T00:00:00"
    assert column.date_range.end == "2021-03-05T00:00:00"


@pytest.mark.unit
def test_date_range_over_a_long_column():
    """Test the date range of a column with many thousands of rows."""
    values = [f"2021-{month:02d}-{day:02d} 10:00" for month in range(1, 13) for day in range(1, 29)] * 60
    column = profile_column("timestamp", values)

    assert column.type == "temporal"
    assert column.date_range.start == "2021-01-01T10:00:00"
    assert column.date_range.end == "2021-12-28T10:00:00"
