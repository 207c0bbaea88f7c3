from .client import StatementClient
from .meta import ColumnMeta, PartitionInfo, ResultSetMeta
from .result import Result, StreamingResult
from .row import Row, decode_value
from .strategies import SingleThreadStrategy, StreamingStrategy, ThreadedStrategy

__all__ = [
    "StatementClient",
    "ColumnMeta",
    "PartitionInfo",
    "ResultSetMeta",
    "Result",
    "StreamingResult",
    "Row",
    "decode_value",
    "SingleThreadStrategy",
    "StreamingStrategy",
    "ThreadedStrategy",
]
