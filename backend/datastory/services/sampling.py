"""
Deterministic, evenly spaced row sampling.

The same sampler bounds the stored sample at upload time and the rows
embedded in the LLM prompt, so its output must be reproducible for a
given (rows, max_rows) pair.
"""
import math
from typing import List, Sequence, TypeVar

T = TypeVar("T")


def sample_indices(total: int, max_rows: int) -> List[int]:
    """Row positions picked by `downsample_evenly` for a table of `total` rows."""
    if max_rows <= 0 or total <= 0:
        return []
    if total <= max_rows:
        return list(range(total))
    if max_rows == 1:
        return [0]

    step = (total - 1) / (max_rows - 1)
    # round half up, clamped to the last row
    return [min(math.floor(i * step + 0.5), total - 1) for i in range(max_rows)]


def downsample_evenly(rows: Sequence[T], max_rows: int) -> List[T]:
    """
    Pick `min(len(rows), max_rows)` rows spread evenly by position.

    The first and last rows are always kept. Positions may repeat when
    `max_rows` is close to `len(rows)`; repeats are kept.
    """
    return [rows[i] for i in sample_indices(len(rows), max_rows)]
