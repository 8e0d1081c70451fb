"""
Tests for dataset records: creation, listing, ownership and deletes.
"""
import pytest
from datastory.core.storage import CHARTS, INSIGHTS, REPORTS, InMemoryRecordStore
from datastory.services.datasets import (
    clear_generated, create_dataset, delete_dataset, get_owned_dataset, list_datasets
)

CSV_TEXT = "region,sales\nnorth,10\nsouth,20\n"
ROWS = [{"region": "north", "sales": "10"}, {"region": "south", "sales": "20"}]


@pytest.fixture
def store():
    return InMemoryRecordStore()


def add_generated(store, dataset_id):
    store.create(INSIGHTS, {"dataset_id": dataset_id, "title": "t", "content": "c"})
    store.create(CHARTS, {"dataset_id": dataset_id, "type": "bar", "spec": {"xKey": "region"}})
    store.create(REPORTS, {"dataset_id": dataset_id, "markdown": "# Summary"})


@pytest.mark.unit
def test_create_dataset(store):
    """Test creating a dataset record."""
    dataset = create_dataset(store, "user-1", "../uploads/Sales 2021.csv", CSV_TEXT, ["region", "sales"], ROWS)

    assert dataset["name"] == "Sales 2021"
    assert dataset["original_filename"] == "Sales 2021.csv"
    assert dataset["row_count"] == 2
    assert dataset["sample_rows"] == ROWS
    assert dataset["full_data"] == CSV_TEXT
    assert dataset["user_id"] == "user-1"


@pytest.mark.unit
def test_create_dataset_uses_explicit_name(store):
    """Test creating a dataset with an explicit name."""
    dataset = create_dataset(store, "user-1", "data.csv", CSV_TEXT, ["region", "sales"], ROWS, name="  Q1  ")
    assert dataset["name"] == "Q1"


@pytest.mark.unit
def test_create_dataset_bounds_the_sample(store):
    """Test that the stored sample is bounded."""
    rows = [{"n": str(i)} for i in range(2500)]
    dataset = create_dataset(store, "user-1", "big.csv", "n\n", ["n"], rows)

    assert dataset["row_count"] == 2500
    assert len(dataset["sample_rows"]) == 1000
    assert dataset["sample_rows"][0] == {"n": "0"}
    assert dataset["sample_rows"][-1] == {"n": "2499"}


@pytest.mark.unit
def test_ownership(store):
    """Test dataset ownership checks."""
    dataset = create_dataset(store, "user-1", "data.csv", CSV_TEXT, ["region", "sales"], ROWS)

    assert get_owned_dataset(store, dataset["id"], "user-1")["id"] == dataset["id"]
    assert get_owned_dataset(store, dataset["id"], "user-2") is None
    assert get_owned_dataset(store, "missing", "user-1") is None
    assert get_owned_dataset(store, "", "user-1") is None


@pytest.mark.unit
def test_list_datasets_newest_first_with_counts(store):
    """Test dataset listing order and counts."""
    first = create_dataset(store, "user-1", "first.csv", CSV_TEXT, ["region", "sales"], ROWS)
    second = create_dataset(store, "user-1", "second.csv", CSV_TEXT, ["region", "sales"], ROWS)
    create_dataset(store, "user-2", "other.csv", CSV_TEXT, ["region", "sales"], ROWS)
    add_generated(store, first["id"])

    listed = list_datasets(store, "user-1")

    assert [d["id"] for d in listed] == [second["id"], first["id"]]
    assert listed[1]["counts"] == {"insights": 1, "charts": 1, "reports": 1}
    assert listed[0]["counts"] == {"insights": 0, "charts": 0, "reports": 0}
    assert "sample_rows" not in listed[0]


@pytest.mark.unit
def test_clear_generated_keeps_dataset(store):
    """Test clearing generated content."""
    dataset = create_dataset(store, "user-1", "data.csv", CSV_TEXT, ["region", "sales"], ROWS)
    add_generated(store, dataset["id"])

    assert clear_generated(store, dataset["id"]) == 3
    assert get_owned_dataset(store, dataset["id"], "user-1") is not None


@pytest.mark.unit
def test_delete_dataset_cascades(store):
    """Test that deleting a dataset removes its records."""
    dataset = create_dataset(store, "user-1", "data.csv", CSV_TEXT, ["region", "sales"], ROWS)
    other = create_dataset(store, "user-1", "other.csv", CSV_TEXT, ["region", "sales"], ROWS)
    add_generated(store, dataset["id"])
    add_generated(store, other["id"])

    assert delete_dataset(store, dataset["id"]) == 4
    assert store.get("datasets", dataset["id"]) is None
    assert store.find(CHARTS, dataset_id=dataset["id"]) == []
    assert len(store.find(CHARTS, dataset_id=other["id"])) == 1
