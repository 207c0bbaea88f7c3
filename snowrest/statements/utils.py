import math
import uuid
from typing import Optional


def number_of_threads(partition_count: int, scale_factor: int, max_threads: int) -> int:
    """Threads to use for fetching a result of ``partition_count`` partitions.

    One thread per ``scale_factor`` partitions, at least one and at most
    ``max_threads``. Small results stay single threaded to skip the pool overhead.

    Examples:
        (4, 4, 8) -> 1
        (5, 4, 8) -> 2
        (33, 4, 8) -> 8
    """
    return min(max(1, math.ceil(partition_count / scale_factor)), max_threads)


def count_statements(sql: str) -> int:
    """Count the statements in ``sql`` as non-empty ``;`` separated segments.

    Semicolons inside string literals or comments are counted as separators
    too, so callers submitting such SQL should pass the count explicitly.
    """
    return sum(1 for segment in sql.split(";") if segment.strip())


def new_request_id() -> str:
    """Correlation id the service uses to deduplicate retried requests."""
    return str(uuid.uuid4())


def upper_or_none(name: Optional[str]) -> Optional[str]:
    return name.upper() if name else None
