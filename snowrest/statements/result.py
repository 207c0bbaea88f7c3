import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import pyarrow as pa

from .meta import ColumnMeta, ResultSetMeta, check_partition
from .row import FLOAT_TYPES, TIMESTAMP_TYPES, Row, build_column_index

logger = logging.getLogger(__name__)

PartitionFetcher = Callable[[int], List[list]]

MAX_DECIMAL_PRECISION = 38
# widest fixed precision whose integers always fit in int64
MAX_INT64_PRECISION = 18


class Result:
    """Materialized result of a statement, stored as a fixed array of partitions.

    Each partition slot is written exactly once, possibly from worker threads
    and in any order; reads always walk the partitions by index.
    """

    def __init__(self, meta: ResultSetMeta):
        self.meta = meta
        self.columns = meta.columns
        self.column_index = build_column_index(meta.columns)
        self._partitions: List[Optional[List[list]]] = [None] * meta.partition_count
        self._lock = threading.Lock()

    @property
    def partition_count(self) -> int:
        return len(self._partitions)

    @property
    def is_complete(self) -> bool:
        return all(p is not None for p in self._partitions)

    def __setitem__(self, index: int, rows: Optional[List[list]]):
        if not 0 <= index < len(self._partitions):
            raise IndexError(f"Partition index {index} out of range 0..{len(self._partitions) - 1}")
        rows = check_partition(index, self.meta.partitions[index], rows)
        with self._lock:
            if self._partitions[index] is not None:
                raise ValueError(f"Partition {index} has already been set")
            self._partitions[index] = rows

    def partition(self, index: int) -> List[list]:
        rows = self._partitions[index]
        if rows is None:
            raise ValueError(f"Partition {index} has not been retrieved")
        return rows

    def _wrap(self, data: List[Optional[str]]) -> Row:
        return Row(self.columns, self.column_index, data)

    def __iter__(self) -> Iterator[Row]:
        for index in range(len(self._partitions)):
            for data in self.partition(index):
                yield self._wrap(data)

    def __len__(self) -> int:
        return sum(len(p) for p in self._partitions if p is not None)

    def first(self) -> Optional[Row]:
        for rows in self._partitions:
            if rows:
                return self._wrap(rows[0])
        return None

    def last(self) -> Optional[Row]:
        for rows in reversed(self._partitions):
            if rows:
                return self._wrap(rows[-1])
        return None

    def get_all_rows(self) -> List[Dict[str, Any]]:
        return [row.to_dict() for row in self]

    def to_arrow(self) -> pa.Table:
        """Decoded rows as a PyArrow Table, columns named in lower case."""
        return _rows_to_arrow(self.columns, self.get_all_rows())


class StreamingResult:
    """Result that fetches partitions while it is being iterated.

    While partition i is consumed, partition i+1 is fetched by a single
    background worker. Rows are always delivered in partition-then-row order.
    The total size and the last row are unknown without fetching everything,
    so len() and last() are not supported.
    """

    def __init__(self, meta: ResultSetMeta, first_partition: Optional[List[list]], fetch: PartitionFetcher):
        self.meta = meta
        self.columns = meta.columns
        self.column_index = build_column_index(meta.columns)
        self._first_partition = check_partition(0, meta.partitions[0], first_partition)
        self._fetch = fetch

    @property
    def partition_count(self) -> int:
        return self.meta.partition_count

    def _wrap(self, data: List[Optional[str]]) -> Row:
        return Row(self.columns, self.column_index, data)

    def _fetch_checked(self, index: int) -> List[list]:
        return check_partition(index, self.meta.partitions[index], self._fetch(index))

    def __iter__(self) -> Iterator[Row]:
        count = self.partition_count
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="snowrest-prefetch")
        pending: Optional[Future] = None
        try:
            for index in range(count):
                if index == 0:
                    rows = self._first_partition
                else:
                    # wait for the prefetch of this partition to finish
                    rows = pending.result()

                if index + 1 < count:
                    pending = executor.submit(self._fetch_checked, index + 1)

                for data in rows:
                    yield self._wrap(data)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def first(self) -> Optional[Row]:
        if self._first_partition:
            return self._wrap(self._first_partition[0])
        return next(iter(self), None)

    def __len__(self) -> int:
        raise NotImplementedError("len() is not supported on a streaming result")

    def last(self) -> Row:
        raise NotImplementedError("last() is not supported on a streaming result")

    def get_all_rows(self) -> List[Dict[str, Any]]:
        return [row.to_dict() for row in self]

    def to_arrow(self) -> pa.Table:
        return _rows_to_arrow(self.columns, self.get_all_rows())


def arrow_schema(columns: Sequence[ColumnMeta]) -> pa.Schema:
    """Arrow schema matching the values decode_value produces for ``columns``."""
    return pa.schema([pa.field(c.name.lower(), arrow_type(c)) for c in columns])


def arrow_type(column: ColumnMeta) -> pa.DataType:
    kind = column.type
    if kind == "fixed":
        precision = min(column.precision or MAX_DECIMAL_PRECISION, MAX_DECIMAL_PRECISION)
        scale = column.scale or 0
        if scale == 0 and precision <= MAX_INT64_PRECISION:
            return pa.int64()
        return pa.decimal128(precision, scale)
    if kind == "boolean":
        return pa.bool_()
    if kind == "date":
        return pa.date32()
    if kind in FLOAT_TYPES:
        return pa.float64()
    if kind in TIMESTAMP_TYPES:
        return pa.timestamp("us", tz="UTC")
    return pa.string()


def _rows_to_arrow(columns: Sequence[ColumnMeta], rows: List[Dict[str, Any]]) -> pa.Table:
    schema = arrow_schema(columns)
    # integers of wide fixed columns go in as decimals
    wide = [f.name for f in schema if pa.types.is_decimal(f.type)]
    if wide:
        for row in rows:
            for name in wide:
                if isinstance(row[name], int):
                    row[name] = Decimal(row[name])
    return pa.Table.from_pylist(rows, schema=schema)
