"""
Dataset records: creation from a parsed upload, ownership lookups and
cascading deletes.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from datastory.core.config import get_settings
from datastory.core.sanitization import dataset_name_from_filename, sanitize_filename
from datastory.core.storage import CHARTS, DATASETS, INSIGHTS, REPORTS, RecordStore
from datastory.services.sampling import downsample_evenly

logger = logging.getLogger(__name__)

DEPENDENT_COLLECTIONS = (INSIGHTS, CHARTS, REPORTS)


def create_dataset(
    store: RecordStore,
    user_id: str,
    filename: str,
    csv_text: str,
    columns: Sequence[str],
    rows: Sequence[Dict[str, Any]],
    name: Optional[str] = None,
) -> Dict[str, Any]:
    """Persist a dataset with an evenly spaced sample and the full CSV text."""
    settings = get_settings()
    sample = downsample_evenly(rows, settings.sample_rows_limit)
    record = store.create(DATASETS, {
        "user_id": user_id,
        "name": (name or "").strip() or dataset_name_from_filename(filename),
        "original_filename": sanitize_filename(filename),
        "row_count": len(rows),
        "columns": list(columns),
        "sample_rows": sample,
        "full_data": csv_text,
    })
    logger.info(f"Created dataset {record['id']}: {len(rows)} rows, {len(sample)} sampled")
    return record


def get_owned_dataset(store: RecordStore, dataset_id: str, user_id: str) -> Optional[Dict[str, Any]]:
    """The dataset if it exists and belongs to `user_id`."""
    if not dataset_id:
        return None
    dataset = store.get(DATASETS, dataset_id)
    if dataset is None or dataset.get("user_id") != user_id:
        return None
    return dataset


def dataset_summary(store: RecordStore, dataset: Dict[str, Any]) -> Dict[str, Any]:
    """Listing view of a dataset: metadata plus generated-record counts."""
    dataset_id = dataset["id"]
    return {
        "id": dataset_id,
        "name": dataset["name"],
        "originalFilename": dataset.get("original_filename"),
        "rowCount": dataset["row_count"],
        "columns": dataset["columns"],
        "createdAt": dataset.get("created_at"),
        "counts": {
            "insights": len(store.find(INSIGHTS, dataset_id=dataset_id)),
            "charts": len(store.find(CHARTS, dataset_id=dataset_id)),
            "reports": len(store.find(REPORTS, dataset_id=dataset_id)),
        },
    }


def list_datasets(store: RecordStore, user_id: str) -> List[Dict[str, Any]]:
    """The user's datasets, newest first."""
    datasets = store.find(DATASETS, user_id=user_id)
    # find() is in insertion order; reversing first keeps later uploads ahead on ties
    ordered = sorted(reversed(datasets), key=lambda d: d.get("created_at") or "", reverse=True)
    return [dataset_summary(store, d) for d in ordered]


def clear_generated(store: RecordStore, dataset_id: str) -> int:
    """Delete the insights, charts and reports generated for a dataset."""
    return sum(store.delete_where(collection, dataset_id=dataset_id) for collection in DEPENDENT_COLLECTIONS)


def delete_dataset(store: RecordStore, dataset_id: str) -> int:
    """Delete a dataset and everything generated from it. Returns records removed."""
    removed = clear_generated(store, dataset_id)
    if store.delete(DATASETS, dataset_id):
        removed += 1
    logger.info(f"Deleted dataset {dataset_id} ({removed} records)")
    return removed
