import io
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd
from fastapi import UploadFile

from datastory.core.config import get_settings
from datastory.core.errors import CSVValidationError, ErrorCodes
from datastory.core.performance import track_performance
from datastory.core.sanitization import sanitize_filename, validate_column_name
from datastory.services.inference import is_date_like, parse_number

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = {'.csv'}
CSV_MIME_TYPES = {'text/csv', 'application/csv', 'application/vnd.ms-excel', 'text/plain'}
DANGEROUS_MIME_TYPES = {
    'application/x-executable',
    'application/x-sharedlib',
    'application/x-msdownload',
    'text/html',
    'application/javascript',
}
READ_CHUNK_SIZE = 1024 * 1024  # 1MB


def validate_file_extension(filename: Optional[str]) -> str:
    """Return the lowercase extension, or raise if it is not .csv."""
    if not filename:
        raise CSVValidationError(ErrorCodes.INVALID_FILE_TYPE, "Filename is required.")

    file_ext = Path(filename).suffix.lower()
    if file_ext not in ALLOWED_EXTENSIONS:
        raise CSVValidationError(
            ErrorCodes.INVALID_FILE_TYPE,
            f"Unsupported file format: {file_ext or 'none'}."
        )
    return file_ext


def validate_mime_type(content_type: Optional[str]) -> None:
    """Reject obviously non-CSV uploads; unknown types are only logged."""
    if not content_type:
        return
    content_type = content_type.split(';')[0].strip().lower()
    if content_type in DANGEROUS_MIME_TYPES:
        raise CSVValidationError(
            ErrorCodes.INVALID_FILE_TYPE,
            f"File type '{content_type}' is not allowed."
        )
    if content_type not in CSV_MIME_TYPES:
        logger.warning(f"Unexpected MIME type {content_type} for a .csv upload")


async def read_upload(file: UploadFile, max_bytes: Optional[int] = None) -> bytes:
    """
    Read an upload in chunks, stopping as soon as it exceeds `max_bytes`.
    """
    max_bytes = max_bytes or get_settings().max_file_size_bytes
    chunks = []
    size = 0

    await file.seek(0)
    while True:
        chunk = await file.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            raise CSVValidationError(
                ErrorCodes.FILE_TOO_LARGE,
                f"Maximum size is {max_bytes / 1024 / 1024:.0f}MB."
            )
        chunks.append(chunk)

    if size == 0:
        raise CSVValidationError(ErrorCodes.FILE_EMPTY, "The file has no content.")
    return b"".join(chunks)


def decode_csv(contents: bytes) -> str:
    """UTF-8 (with or without BOM), falling back to latin1."""
    try:
        return contents.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.info("CSV is not valid UTF-8, decoding as latin1")
        return contents.decode('latin1')


def _looks_like_data(cell: str) -> bool:
    return parse_number(cell) is not None or is_date_like(cell)


def validate_header(header: Sequence[Any]) -> List[str]:
    """
    Problems with a header row; empty when it is usable.

    Flags blank names, case-insensitive duplicates and a first row that
    holds only numbers or dates (a file without a header).
    """
    problems = []
    names = ["" if pd.isna(cell) else str(cell).strip() for cell in header]

    blank = [i + 1 for i, name in enumerate(names) if not name]
    if blank:
        problems.append(f"Column(s) {', '.join(map(str, blank))} have no title.")

    seen = set()
    duplicates = []
    for name in names:
        key = name.casefold()
        if name and key in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(key)
    if duplicates:
        problems.append(f"Duplicate column titles: {', '.join(duplicates)}.")

    present = [name for name in names if name]
    if present and all(_looks_like_data(name) for name in present):
        problems.append("The first row looks like data, not column titles.")

    unsafe = [name for name in present if not validate_column_name(name)]
    if unsafe:
        problems.append("Column titles contain control characters.")

    return problems


def _read_frame(text: str, **kwargs) -> pd.DataFrame:
    return pd.read_csv(
        io.StringIO(text),
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        **kwargs
    )


@track_performance("parse_csv")
def parse_csv(text: str) -> Tuple[List[str], List[Dict[str, Any]]]:
    """
    Parse CSV text into (columns, rows) with every cell kept as a string.

    Empty cells become "" and short rows are padded with "".
    """
    if not text or not text.strip():
        raise CSVValidationError(ErrorCodes.FILE_EMPTY, "The file has no content.")

    try:
        header_frame = _read_frame(text, header=None, nrows=1)
    except pd.errors.EmptyDataError:
        raise CSVValidationError(ErrorCodes.FILE_EMPTY, "The file has no content.")
    except pd.errors.ParserError as e:
        raise CSVValidationError(ErrorCodes.PARSE_ERROR, str(e).strip())

    problems = validate_header(list(header_frame.iloc[0]) if len(header_frame) else [])
    if problems:
        raise CSVValidationError(ErrorCodes.INVALID_HEADER, " ".join(problems))

    try:
        df = _read_frame(text)
    except pd.errors.ParserError as e:
        raise CSVValidationError(ErrorCodes.PARSE_ERROR, str(e).strip())

    if df.empty:
        raise CSVValidationError(ErrorCodes.FILE_EMPTY, "The file has a header row but no data rows.")

    df.columns = [str(c).strip() for c in df.columns]
    df = df.fillna("")
    validate_file_content(df)

    columns = list(df.columns)
    rows = df.to_dict(orient='records')
    logger.info(f"Parsed CSV: {len(rows)} rows, {len(columns)} columns")
    return columns, rows


def validate_file_content(df: pd.DataFrame) -> None:
    """Enforce the configured row and column limits."""
    settings = get_settings()
    if len(df) > settings.max_file_rows:
        raise CSVValidationError(
            ErrorCodes.PARSE_ERROR,
            f"File contains too many rows ({len(df):,}). Maximum allowed: {settings.max_file_rows:,} rows."
        )
    if len(df.columns) > settings.max_file_columns:
        raise CSVValidationError(
            ErrorCodes.PARSE_ERROR,
            f"File contains too many columns ({len(df.columns)}). "
            f"Maximum allowed: {settings.max_file_columns} columns."
        )


@track_performance("parse_upload")
async def parse_upload(file: UploadFile) -> Tuple[str, List[str], List[Dict[str, Any]]]:
    """
    Validate and parse an uploaded CSV.

    Returns (csv_text, columns, rows). The text is kept so a dataset can be
    re-parsed in full later.
    """
    validate_file_extension(file.filename)
    validate_mime_type(file.content_type)

    contents = await read_upload(file)
    text = decode_csv(contents)
    columns, rows = parse_csv(text)

    logger.info(
        f"Successfully parsed file: {sanitize_filename(file.filename)}, "
        f"{len(rows)} rows x {len(columns)} columns"
    )
    return text, columns, rows
