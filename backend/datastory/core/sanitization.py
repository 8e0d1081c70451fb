"""
Input sanitization utilities for user-provided data.
"""
import re

PROMPT_INJECTION_PATTERNS = ('SYSTEM:', 'USER:', 'ASSISTANT:', 'IGNORE', 'FORGET', 'NEW INSTRUCTION')


def sanitize_filename(filename: str, max_length: int = 255) -> str:
    """
    Strip path components and control characters from an uploaded filename.

    Args:
        filename: Original filename
        max_length: Maximum length of sanitized filename

    Returns:
        Sanitized filename safe for logging and storage
    """
    if not filename:
        return "unknown"

    filename = filename.split('/')[-1].split('\\')[-1]
    filename = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', filename)
    filename = filename.strip('. ')

    if len(filename) > max_length:
        filename = filename[:max_length]

    return filename or "unknown"


def dataset_name_from_filename(filename: str) -> str:
    """Display name for a dataset: the sanitized filename without its extension."""
    name = sanitize_filename(filename)
    stem, dot, _ = name.rpartition('.')
    return stem if dot and stem else name


def sanitize_for_logging(value: str, max_length: int = 500) -> str:
    """Collapse newlines and drop control characters (prevents log injection)."""
    if not value:
        return ""

    value = re.sub(r'[\r\n]', ' ', value)
    value = re.sub(r'[\x00-\x1f\x7f-\x9f]', '', value)

    if len(value) > max_length:
        value = value[:max_length] + "..."

    return value


def sanitize_for_prompt(text: str, max_length: int = 100) -> str:
    """
    Sanitize user-provided text before including it in LLM prompts.

    Removes newlines and control characters, limits length and brackets
    patterns that read like role or override instructions.
    """
    if not text:
        return ""

    sanitized = ''.join(char for char in str(text) if char.isprintable() and char not in '\n\r\t')

    if len(sanitized) > max_length:
        sanitized = sanitized[:max_length] + "..."

    for pattern in PROMPT_INJECTION_PATTERNS:
        sanitized = sanitized.replace(pattern, f'[{pattern}]')

    return sanitized


def validate_column_name(name: str) -> bool:
    """
    Validate that a column name is safe.

    Newlines and tabs are allowed since spreadsheet headers often wrap.
    """
    if not name or len(name) > 1000:
        return False

    return re.search(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', name) is None
