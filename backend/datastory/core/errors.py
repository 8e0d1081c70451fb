"""
Error codes, user-facing messages and service exceptions.
"""
from typing import Dict, Optional


class ErrorCodes:
    FILE_TOO_LARGE = "FILE_TOO_LARGE"
    FILE_EMPTY = "FILE_EMPTY"
    INVALID_FILE_TYPE = "INVALID_FILE_TYPE"
    INVALID_HEADER = "INVALID_HEADER"
    PARSE_ERROR = "PARSE_ERROR"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    MISSING_PARAMETER = "MISSING_PARAMETER"
    AI_ERROR = "AI_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    ErrorCodes.FILE_TOO_LARGE: {
        "message": "Your file is too large",
        "detail": "The uploaded file exceeds the size limit.",
        "suggestion": "Export only the columns you need, or split the file into smaller parts."
    },
    ErrorCodes.FILE_EMPTY: {
        "message": "Your file looks empty",
        "detail": "We couldn't find any rows in the uploaded file.",
        "suggestion": "Make sure the file was saved with its data and upload it again."
    },
    ErrorCodes.INVALID_FILE_TYPE: {
        "message": "We need a CSV file",
        "detail": "Only comma-separated (.csv) files can be analyzed.",
        "suggestion": "Most spreadsheet tools can export a sheet with 'Download as CSV'."
    },
    ErrorCodes.INVALID_HEADER: {
        "message": "Invalid CSV header",
        "detail": "The first row must contain column titles.",
        "suggestion": "Add a header row like: Name,Age,Country."
    },
    ErrorCodes.PARSE_ERROR: {
        "message": "CSV parse error",
        "detail": "We couldn't read your file as CSV.",
        "suggestion": "Ensure the first row contains column titles and that rows have a consistent number of columns."
    },
    ErrorCodes.NOT_FOUND: {
        "message": "Not found",
        "detail": "The requested item does not exist or belongs to another user.",
        "suggestion": "Refresh your dataset list and try again."
    },
    ErrorCodes.UNAUTHORIZED: {
        "message": "Unauthorized",
        "detail": "This request has no authenticated user.",
        "suggestion": "Sign in and try again."
    },
    ErrorCodes.MISSING_PARAMETER: {
        "message": "Missing parameter",
        "detail": "A required parameter was not supplied.",
        "suggestion": "Check the request and try again."
    },
    ErrorCodes.AI_ERROR: {
        "message": "Insight generation failed",
        "detail": "The AI service returned a response we couldn't use.",
        "suggestion": "Try regenerating in a moment. Fast Analysis is usually more reliable on large files."
    },
    ErrorCodes.RATE_LIMIT_EXCEEDED: {
        "message": "Too many requests",
        "detail": "You're sending requests faster than we can process them.",
        "suggestion": "Wait about a minute and try again."
    },
    ErrorCodes.TIMEOUT: {
        "message": "This is taking longer than expected",
        "detail": "The request did not finish within the time limit.",
        "suggestion": "Try Fast Analysis or upload a smaller file."
    },
    ErrorCodes.UNKNOWN_ERROR: {
        "message": "Something unexpected happened",
        "detail": "We encountered an issue we weren't expecting.",
        "suggestion": "Give it another try in a moment."
    }
}


def get_error_response(error_code: str, additional_detail: Optional[str] = None) -> Dict[str, str]:
    """
    Get user-friendly error response for an error code.

    Args:
        error_code: One of the ErrorCodes constants
        additional_detail: Optional additional detail to append

    Returns:
        Dictionary with code, message, detail and suggestion
    """
    error_info = ERROR_MESSAGES.get(error_code, ERROR_MESSAGES[ErrorCodes.UNKNOWN_ERROR])

    response = {
        "code": error_code,
        "message": error_info["message"],
        "detail": error_info["detail"],
        "suggestion": error_info["suggestion"]
    }

    if additional_detail:
        response["detail"] = f"{response['detail']} {additional_detail}"

    return response


class DataStoryError(Exception):
    """Base class for service errors."""

    error_code = ErrorCodes.UNKNOWN_ERROR


class CSVValidationError(DataStoryError):
    """Uploaded file could not be turned into rows."""

    def __init__(self, error_code: str, detail: str):
        super().__init__(detail)
        self.error_code = error_code
        self.detail = detail


class AIServiceError(DataStoryError):
    """No LLM provider is configured or every provider failed."""

    error_code = ErrorCodes.AI_ERROR


class InsightResponseError(DataStoryError):
    """The LLM answered with text that holds no usable insight JSON."""

    error_code = ErrorCodes.AI_ERROR

    def __init__(self, message: str, raw_text: Optional[str] = None, snippet_length: int = 200):
        self.snippet = (raw_text or "")[:snippet_length]
        super().__init__(f"{message}: {self.snippet!r}" if raw_text is not None else message)
