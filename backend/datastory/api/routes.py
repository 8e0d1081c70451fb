import logging
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from datastory.core.errors import (
    AIServiceError, CSVValidationError, ErrorCodes, InsightResponseError, get_error_response
)
from datastory.core.rate_limit import limiter, rate_limit
from datastory.core.sanitization import sanitize_filename, sanitize_for_logging
from datastory.core.schemas import (
    ChartDataResult, ChartSpecification, GenerateInsightsRequest, UploadResponse
)
from datastory.core.security import get_current_user
from datastory.core.storage import CHARTS, RecordStore, get_store
from datastory.services.chart_data import process_chart_data
from datastory.services.datasets import (
    clear_generated, create_dataset, delete_dataset, get_owned_dataset, list_datasets
)
from datastory.services.insights import (
    chart_from_record, generate_insight_payload, has_generated_content, load_insights, persist_payload
)
from datastory.services.parser import parse_upload

logger = logging.getLogger(__name__)

router = APIRouter()

FILE_ERROR_STATUS = {ErrorCodes.FILE_TOO_LARGE: 413}


def get_record_store() -> RecordStore:
    return get_store()


def _http_error(request: Request, status_code: int, code: str, detail: Optional[str] = None) -> HTTPException:
    error_info = get_error_response(code, detail)
    error_info['correlation_id'] = getattr(request.state, 'correlation_id', 'unknown')
    return HTTPException(status_code=status_code, detail=error_info)


def _require_dataset(request: Request, store: RecordStore, dataset_id: Optional[str], user_id: str) -> dict:
    if not dataset_id:
        raise _http_error(request, 400, ErrorCodes.MISSING_PARAMETER, "datasetId is required.")
    dataset = get_owned_dataset(store, dataset_id, user_id)
    if dataset is None:
        raise _http_error(request, 404, ErrorCodes.NOT_FOUND)
    return dataset


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.get("/datasets")
async def get_datasets(
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    return {"datasets": list_datasets(store, user_id)}


@router.post("/datasets", response_model=UploadResponse)
@limiter.limit(rate_limit)
async def upload_dataset(
    request: Request,
    file: UploadFile = File(...),
    name: Optional[str] = Form(default=None),
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    """
    Upload a CSV and store it as a dataset.

    Rate limited per IP address (RATE_LIMIT_PER_MINUTE).
    """
    try:
        text, columns, rows = await parse_upload(file)
        dataset = create_dataset(store, user_id, file.filename, text, columns, rows, name=name)
        return UploadResponse(dataset_id=dataset["id"], columns=columns, row_count=len(rows))
    except CSVValidationError as e:
        logger.info(
            f"Rejected upload {sanitize_for_logging(sanitize_filename(file.filename))}: "
            f"{e.error_code} {sanitize_for_logging(e.detail)}"
        )
        raise _http_error(request, FILE_ERROR_STATUS.get(e.error_code, 400), e.error_code, e.detail)
    except Exception as e:
        logger.error(
            f"Unexpected error processing file {sanitize_for_logging(sanitize_filename(file.filename))}: {e}",
            exc_info=True
        )
        raise _http_error(request, 500, ErrorCodes.UNKNOWN_ERROR)


@router.delete("/datasets/{dataset_id}")
async def remove_dataset(
    dataset_id: str,
    request: Request,
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    _require_dataset(request, store, dataset_id, user_id)
    return {"ok": True, "deleted": delete_dataset(store, dataset_id)}


@router.get("/insights")
async def get_insights(
    request: Request,
    dataset_id: Optional[str] = Query(default=None, alias="datasetId"),
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    dataset = _require_dataset(request, store, dataset_id, user_id)
    return load_insights(store, dataset)


@router.post("/insights")
@limiter.limit(rate_limit)
async def generate_insights(
    request: Request,
    body: GenerateInsightsRequest,
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    """
    Generate insights, plot groups and a report for a dataset.

    Existing results are kept unless `regenerate` is set. `useSampling`
    false re-reads every row of the stored CSV ("deep" mode).
    Rate limited per IP address (RATE_LIMIT_PER_MINUTE).
    """
    dataset = _require_dataset(request, store, body.dataset_id, user_id)

    if not body.regenerate and has_generated_content(store, dataset["id"]):
        return {"ok": True, "created": 0, "mode": "existing"}

    try:
        payload, mode = await run_in_threadpool(generate_insight_payload, dataset, body.use_sampling)
    except (InsightResponseError, AIServiceError) as e:
        logger.warning(f"Insight generation failed for dataset {dataset['id']}: {e}")
        raise _http_error(request, 502, ErrorCodes.AI_ERROR, sanitize_for_logging(str(e), 300))
    except CSVValidationError as e:
        raise _http_error(request, 400, e.error_code, e.detail)

    if body.regenerate:
        clear_generated(store, dataset["id"])
    created = persist_payload(store, dataset["id"], payload)
    logger.info(f"Stored {created} records for dataset {dataset['id']} ({mode})")
    return {"ok": True, "created": created, "mode": mode}


@router.get("/datasets/{dataset_id}/charts/{chart_id}/data", response_model=ChartDataResult)
async def get_chart_data(
    dataset_id: str,
    chart_id: str,
    request: Request,
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    dataset = _require_dataset(request, store, dataset_id, user_id)
    record = store.get(CHARTS, chart_id)
    if record is None or record.get("dataset_id") != dataset["id"]:
        raise _http_error(request, 404, ErrorCodes.NOT_FOUND)
    return process_chart_data(dataset["sample_rows"], chart_from_record(record), dataset["columns"])


@router.post("/datasets/{dataset_id}/chart-data", response_model=ChartDataResult)
async def post_chart_data(
    dataset_id: str,
    chart: ChartSpecification,
    request: Request,
    user_id: str = Depends(get_current_user),
    store: RecordStore = Depends(get_record_store),
):
    """Series for an ad hoc chart specification against the stored sample."""
    dataset = _require_dataset(request, store, dataset_id, user_id)
    return process_chart_data(dataset["sample_rows"], chart, dataset["columns"])
