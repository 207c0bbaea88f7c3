from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..http_client.exceptions import PartitionIntegrityError


@dataclass(frozen=True)
class ColumnMeta:
    """Metadata for a single result column.

    Attributes:
        name: Column name as returned by the service
        type: Lower-cased wire type (e.g. "fixed", "text", "timestamp_ntz")
        scale: Digits after the decimal point for fixed columns
        precision: Total digits for fixed columns
        nullable: Whether the column may hold NULL
        length: Maximum length for text columns
    """
    name: str
    type: str
    scale: Optional[int] = None
    precision: Optional[int] = None
    nullable: bool = True
    length: Optional[int] = None

    @classmethod
    def from_row_type(cls, data: Dict[str, Any]) -> "ColumnMeta":
        return cls(
            name=data["name"],
            type=str(data["type"]).lower(),
            scale=data.get("scale"),
            precision=data.get("precision"),
            nullable=data.get("nullable", True),
            length=data.get("length"),
        )


@dataclass(frozen=True)
class PartitionInfo:
    """Size information for one result partition."""
    row_count: int
    compressed_size: Optional[int] = None
    uncompressed_size: Optional[int] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "PartitionInfo":
        return cls(
            row_count=int(data["rowCount"]),
            compressed_size=data.get("compressedSize"),
            uncompressed_size=data.get("uncompressedSize"),
        )


@dataclass(frozen=True)
class ResultSetMeta:
    """Column and partition layout of a completed statement."""
    statement_handle: str
    columns: List[ColumnMeta]
    partitions: List[PartitionInfo]

    @property
    def partition_count(self) -> int:
        return len(self.partitions)

    @classmethod
    def from_response(cls, body: Dict[str, Any]) -> "ResultSetMeta":
        """Parse the resultSetMetaData of a completed statement response.

        Responses without partitionInfo (e.g. DDL) are treated as a single
        partition holding the embedded data.
        """
        meta = body.get("resultSetMetaData") or {}
        columns = [ColumnMeta.from_row_type(r) for r in meta.get("rowType", [])]
        partition_info = meta.get("partitionInfo")
        if partition_info:
            partitions = [PartitionInfo.from_json(p) for p in partition_info]
        else:
            partitions = [PartitionInfo(row_count=len(body.get("data") or []))]
        return cls(
            statement_handle=body.get("statementHandle", ""),
            columns=columns,
            partitions=partitions,
        )


def check_partition(index: int, partition: PartitionInfo, rows: Optional[List[list]]) -> List[list]:
    """Return rows when their count matches the declared rowCount."""
    if rows is None:
        if partition.row_count == 0:
            return []
        raise PartitionIntegrityError(index, partition.row_count, None,
                                      f"Partition {index} response contained no data")
    if len(rows) != partition.row_count:
        raise PartitionIntegrityError(index, partition.row_count, len(rows))
    return rows
