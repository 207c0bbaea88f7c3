"""Tests for result containers and the assembly strategies."""

import itertools
import random
import threading
import time
from decimal import Decimal

import pyarrow as pa
import pytest

from snowrest.http_client import (
    BadResponseError,
    ConnectionStarvedError,
    PartitionIntegrityError,
)
from snowrest.statements import (
    ResultSetMeta,
    Result,
    SingleThreadStrategy,
    StreamingStrategy,
    ThreadedStrategy,
)

from conftest import HANDLE, ROW_TYPE, make_partitions


def build_meta(partitions, declared=None) -> ResultSetMeta:
    declared = declared or [len(p) for p in partitions]
    return ResultSetMeta.from_response({
        "statementHandle": HANDLE,
        "resultSetMetaData": {
            "rowType": ROW_TYPE,
            "partitionInfo": [{"rowCount": c} for c in declared],
        },
        "data": partitions[0],
    })


def ids(result) -> list:
    return [row["id"] for row in result]


class TestResult:
    """Tests for the Result container."""

    def test_partition_written_once(self) -> None:
        partitions = make_partitions([2, 2])
        result = Result(build_meta(partitions))
        result[1] = partitions[1]

        with pytest.raises(ValueError, match="already been set"):
            result[1] = partitions[1]

    def test_index_out_of_range(self) -> None:
        partitions = make_partitions([2])
        result = Result(build_meta(partitions))
        with pytest.raises(IndexError):
            result[1] = []

    def test_row_count_mismatch(self) -> None:
        """Test that 9 rows for a declared rowCount of 10 are rejected."""
        partitions = make_partitions([1, 9])
        result = Result(build_meta(partitions, declared=[1, 10]))

        with pytest.raises(PartitionIntegrityError) as exc_info:
            result[1] = partitions[1]
        assert (exc_info.value.index, exc_info.value.expected, exc_info.value.actual) == (1, 10, 9)

    def test_missing_data(self) -> None:
        result = Result(build_meta(make_partitions([1, 3])))
        with pytest.raises(PartitionIntegrityError):
            result[1] = None

    def test_reads_in_index_order(self) -> None:
        partitions = make_partitions([2, 2, 2])
        result = Result(build_meta(partitions))
        result[2] = partitions[2]
        result[0] = partitions[0]
        result[1] = partitions[1]

        assert result.is_complete
        assert ids(result) == [0, 1, 2, 3, 4, 5]
        assert len(result) == 6
        assert result.first()["id"] == 0
        assert result.last()["id"] == 5

    def test_get_all_rows(self) -> None:
        partitions = make_partitions([2])
        result = SingleThreadStrategy.result(build_meta(partitions), partitions[0], None)
        rows = result.get_all_rows()
        assert rows[1]["name"] == "name-1"
        assert rows[1]["active"] is True
        assert set(rows[0]) == {"id", "name", "price", "active"}

    def test_to_arrow(self) -> None:
        partitions = make_partitions([3])
        table = SingleThreadStrategy.result(build_meta(partitions), partitions[0], None).to_arrow()
        assert isinstance(table, pa.Table)
        assert table.num_rows == 3
        assert table.column("id").to_pylist() == [0, 1, 2]

    def test_to_arrow_wide_integers(self) -> None:
        """Test that NUMBER(38,0) values beyond int64 survive the Arrow export."""
        meta = ResultSetMeta.from_response({
            "statementHandle": HANDLE,
            "resultSetMetaData": {
                "rowType": [{"name": "BIG", "type": "fixed", "scale": 0, "precision": 38}],
                "partitionInfo": [{"rowCount": 2}],
            },
        })
        result = SingleThreadStrategy.result(meta, [["12345678901234567890123"], ["1"]], None)
        assert result.first()["big"] == 12345678901234567890123

        table = result.to_arrow()
        assert table.schema.field("big").type == pa.decimal128(38, 0)
        assert table.column("big").to_pylist() == [Decimal("12345678901234567890123"), Decimal(1)]

    def test_to_arrow_schema_from_columns(self) -> None:
        row_type = [
            {"name": "SMALL", "type": "fixed", "scale": 0, "precision": 9},
            {"name": "PRICE", "type": "fixed", "scale": 2, "precision": 10},
            {"name": "FLAG", "type": "boolean"},
            {"name": "DAY", "type": "date"},
            {"name": "RATIO", "type": "real"},
            {"name": "AT", "type": "timestamp_ntz"},
            {"name": "NOTE", "type": "text"},
        ]
        meta = ResultSetMeta.from_response({
            "statementHandle": HANDLE,
            "resultSetMetaData": {"rowType": row_type, "partitionInfo": [{"rowCount": 1}]},
        })
        row = ["7", "8.25", "true", "7594", "0.5", "1683865328.123456000", None]
        table = SingleThreadStrategy.result(meta, [row], None).to_arrow()

        assert table.schema.types == [
            pa.int64(), pa.decimal128(10, 2), pa.bool_(), pa.date32(),
            pa.float64(), pa.timestamp("us", tz="UTC"), pa.string(),
        ]
        assert table.column("note").to_pylist() == [None]

    def test_streaming_to_arrow_wide_integers(self) -> None:
        meta = ResultSetMeta.from_response({
            "statementHandle": HANDLE,
            "resultSetMetaData": {
                "rowType": [{"name": "BIG", "type": "fixed", "scale": 0, "precision": 38}],
                "partitionInfo": [{"rowCount": 1}, {"rowCount": 1}],
            },
        })
        partitions = [[["99999999999999999999"]], [["-99999999999999999999"]]]
        table = StreamingStrategy.result(meta, partitions[0], lambda i: partitions[i]).to_arrow()
        assert table.column("big").to_pylist() == [Decimal("99999999999999999999"), Decimal("-99999999999999999999")]

    def test_to_arrow_empty(self) -> None:
        partitions = make_partitions([0])
        table = SingleThreadStrategy.result(build_meta(partitions), partitions[0], None).to_arrow()
        assert table.num_rows == 0
        assert table.column_names == ["id", "name", "price", "active"]


class TestSingleThreadStrategy:
    """Tests for sequential assembly."""

    def test_fetches_in_order(self) -> None:
        partitions = make_partitions([2, 3, 1])
        calls = []

        def fetch(index):
            calls.append(index)
            return partitions[index]

        result = SingleThreadStrategy.result(build_meta(partitions), partitions[0], fetch)
        assert calls == [1, 2]
        assert ids(result) == list(range(6))


class TestThreadedStrategy:
    """Tests for thread pooled assembly."""

    def test_order_independent_of_completion(self) -> None:
        """Test that later partitions finishing first do not change the output."""
        partitions = make_partitions([2] * 12)
        completed = []

        def fetch(index):
            time.sleep((12 - index) * 0.01)
            completed.append(index)
            return partitions[index]

        result = ThreadedStrategy(4).result(build_meta(partitions), partitions[0], fetch)
        assert completed != sorted(completed)
        assert ids(result) == list(range(24))

    def test_random_delays(self) -> None:
        partitions = make_partitions([3] * 10)
        rng = random.Random(7)
        delays = {i: rng.uniform(0, 0.02) for i in range(10)}

        def fetch(index):
            time.sleep(delays[index])
            return partitions[index]

        for _ in range(3):
            result = ThreadedStrategy(3).result(build_meta(partitions), partitions[0], fetch)
            assert ids(result) == list(range(30))

    def test_uses_multiple_threads(self) -> None:
        partitions = make_partitions([1] * 9)
        thread_names = set()

        def fetch(index):
            thread_names.add(threading.current_thread().name)
            time.sleep(0.02)
            return partitions[index]

        ThreadedStrategy(4).result(build_meta(partitions), partitions[0], fetch)
        assert 1 < len(thread_names) <= 4

    def test_domain_error_reraised(self) -> None:
        partitions = make_partitions([1] * 6)

        def fetch(index):
            if index == 3:
                raise BadResponseError(422, "bad partition")
            return partitions[index]

        with pytest.raises(BadResponseError) as exc_info:
            ThreadedStrategy(2).result(build_meta(partitions), partitions[0], fetch)
        assert exc_info.value.status_code == 422

    def test_other_error_wrapped_as_starvation(self) -> None:
        partitions = make_partitions([1] * 6)

        def fetch(index):
            if index == 2:
                raise RuntimeError("worker died")
            return partitions[index]

        with pytest.raises(ConnectionStarvedError, match="connection pool") as exc_info:
            ThreadedStrategy(2).result(build_meta(partitions), partitions[0], fetch)
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_integrity_error_aborts(self) -> None:
        partitions = make_partitions([1, 1, 9, 1])

        with pytest.raises(PartitionIntegrityError):
            ThreadedStrategy(2).result(build_meta(partitions, declared=[1, 1, 10, 1]), partitions[0],
                                       lambda i: partitions[i])

    def test_invalid_thread_count(self) -> None:
        with pytest.raises(ValueError):
            ThreadedStrategy(0)


class TestStreamingStrategy:
    """Tests for streamed assembly with one partition of lookahead."""

    def test_rows_in_order_when_prefetch_finishes_early(self) -> None:
        partitions = make_partitions([3, 2, 4, 1])
        result = StreamingStrategy.result(build_meta(partitions), partitions[0], lambda i: partitions[i])

        seen = []
        for row in result:
            seen.append(row["id"])
            # give the prefetch worker time to finish before the current partition is drained
            time.sleep(0.005)
        assert seen == list(range(10))

    def test_prefetches_exactly_one_ahead(self) -> None:
        partitions = make_partitions([2, 2, 2])
        fetched = []
        first_fetch = threading.Event()

        def fetch(index):
            fetched.append(index)
            first_fetch.set()
            return partitions[index]

        rows = iter(StreamingStrategy.result(build_meta(partitions), partitions[0], fetch))
        assert next(rows)["id"] == 0

        assert first_fetch.wait(2)
        time.sleep(0.05)
        assert fetched == [1]

        assert [r["id"] for r in rows] == [1, 2, 3, 4, 5]
        assert fetched == [1, 2]

    def test_nothing_fetched_before_iteration(self) -> None:
        partitions = make_partitions([1, 1])
        fetched = []
        result = StreamingStrategy.result(build_meta(partitions), partitions[0],
                                          lambda i: fetched.append(i) or partitions[i])
        assert fetched == []
        assert result.first()["id"] == 0
        assert fetched == []

    def test_size_and_last_unsupported(self) -> None:
        partitions = make_partitions([1, 1])
        result = StreamingStrategy.result(build_meta(partitions), partitions[0], lambda i: partitions[i])

        with pytest.raises(NotImplementedError):
            len(result)
        with pytest.raises(NotImplementedError):
            result.last()

    def test_mismatch_raised_when_reached(self) -> None:
        partitions = make_partitions([2, 1])
        result = StreamingStrategy.result(build_meta(partitions, declared=[2, 2]), partitions[0],
                                          lambda i: partitions[i])
        rows = iter(result)
        assert [next(rows)["id"], next(rows)["id"]] == [0, 1]
        with pytest.raises(PartitionIntegrityError):
            next(rows)

    def test_can_iterate_twice(self) -> None:
        partitions = make_partitions([2, 2])
        counter = itertools.count()

        def fetch(index):
            next(counter)
            return partitions[index]

        result = StreamingStrategy.result(build_meta(partitions), partitions[0], fetch)
        assert [r["id"] for r in result] == [0, 1, 2, 3]
        assert [r["id"] for r in result] == [0, 1, 2, 3]
        assert next(counter) == 2

    def test_to_arrow(self) -> None:
        partitions = make_partitions([2, 2])
        result = StreamingStrategy.result(build_meta(partitions), partitions[0], lambda i: partitions[i])
        assert result.to_arrow().num_rows == 4
