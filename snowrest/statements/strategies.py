"""
Strategies that turn a completed statement response into a result.

Every strategy receives the parsed result set metadata, the rows of
partition 0 (embedded in the statement response) and a callback fetching
the rows of any other partition by index.
"""
import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from typing import List, Optional

from ..http_client.exceptions import ConnectionStarvedError, SnowRestError
from .meta import ResultSetMeta
from .result import PartitionFetcher, Result, StreamingResult

logger = logging.getLogger(__name__)


class SingleThreadStrategy:
    """Fetches the remaining partitions one after another on the calling thread."""

    @staticmethod
    def result(meta: ResultSetMeta, first_partition: Optional[List[list]], fetch: PartitionFetcher) -> Result:
        result = Result(meta)
        result[0] = first_partition
        for index in range(1, meta.partition_count):
            result[index] = fetch(index)
        return result


class ThreadedStrategy:
    """Fetches the remaining partitions concurrently on a fixed-size thread pool.

    Each task stores its partition at its own index, so completion order does
    not matter. The first failing task aborts the whole result; nothing
    partial is returned.
    """

    def __init__(self, num_threads: int):
        if num_threads < 1:
            raise ValueError(f"num_threads must be positive, got {num_threads}")
        self.num_threads = num_threads

    def result(self, meta: ResultSetMeta, first_partition: Optional[List[list]], fetch: PartitionFetcher) -> Result:
        result = Result(meta)
        result[0] = first_partition

        def retrieve(index: int):
            result[index] = fetch(index)

        with ThreadPoolExecutor(max_workers=self.num_threads, thread_name_prefix="snowrest-partition") as executor:
            futures = [executor.submit(retrieve, index) for index in range(1, meta.partition_count)]
            done, not_done = wait(futures, return_when=FIRST_EXCEPTION)
            for future in not_done:
                future.cancel()

            for future in futures:
                if future.cancelled() or not future.done():
                    continue
                error = future.exception()
                if error is None:
                    continue
                if isinstance(error, SnowRestError):
                    raise error
                logger.warning(f"Partition fetch failed for statement {meta.statement_handle}: {error}")
                raise ConnectionStarvedError(
                    f"A partition fetch thread failed ({type(error).__name__}: {error}). "
                    "This can happen when concurrent queries contend for the shared connection pool; "
                    "raise max_connections or lower max_threads_per_query"
                ) from error

        return result


class StreamingStrategy:
    """Defers partition fetches to iteration time, prefetching one partition ahead."""

    @staticmethod
    def result(meta: ResultSetMeta, first_partition: Optional[List[list]], fetch: PartitionFetcher) -> StreamingResult:
        return StreamingResult(meta, first_partition, fetch)
