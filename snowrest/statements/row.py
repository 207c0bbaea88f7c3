import datetime
from decimal import Context, Decimal, ROUND_FLOOR, ROUND_HALF_EVEN, ROUND_HALF_UP
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from requests.structures import CaseInsensitiveDict

from .meta import ColumnMeta

EPOCH = datetime.datetime(1970, 1, 1, tzinfo=datetime.timezone.utc)
EPOCH_ORDINAL = datetime.date(1970, 1, 1).toordinal()

FLOAT_TYPES = frozenset({"float", "double", "double precision", "real"})
TIMESTAMP_TYPES = frozenset({
    "time", "datetime", "timestamp", "timestamp_ntz", "timestamp_ltz", "timestamp_tz"
})
# fixed columns carry up to 38 digits, more than the default context keeps
DECIMAL_CONTEXT = Context(prec=76)


def _to_datetime(raw: str) -> datetime.datetime:
    # "<epoch seconds>.<fraction>[ <offset minutes>]", the number is already UTC
    seconds = Decimal(raw.split(" ", 1)[0])
    whole = int(seconds.to_integral_value(rounding=ROUND_FLOOR))
    micros = int(((seconds - whole) * 1_000_000).to_integral_value(rounding=ROUND_HALF_EVEN))
    return EPOCH + datetime.timedelta(seconds=whole, microseconds=micros)


def decode_value(raw: Optional[str], column: ColumnMeta) -> Any:
    """Convert one wire-format cell into a Python value.

    See https://docs.snowflake.com/en/developer-guide/sql-api/handling-responses
    for the encoding of each type.
    """
    if raw is None:
        return None

    kind = column.type
    if kind == "boolean":
        return raw == "true"
    if kind == "date":
        return datetime.date.fromordinal(EPOCH_ORDINAL + int(raw))
    if kind == "fixed":
        if not column.scale:
            return int(raw)
        return Decimal(raw).quantize(Decimal(1).scaleb(-column.scale), rounding=ROUND_HALF_UP,
                                     context=DECIMAL_CONTEXT)
    if kind in FLOAT_TYPES:
        # the service treats these all as 64 bit IEEE 754 floating point numbers
        return float(raw)
    if kind in TIMESTAMP_TYPES:
        return _to_datetime(raw)
    return raw


def build_column_index(columns: Sequence[ColumnMeta]) -> CaseInsensitiveDict:
    index = CaseInsensitiveDict()
    for i, column in enumerate(columns):
        index[column.name] = i
    return index


class Row:
    """Read-only view over one raw result row.

    Cells are decoded on every access; the underlying list is never modified.
    Columns are addressed by position or by case-insensitive name.
    """

    __slots__ = ("_columns", "_column_index", "_data")

    def __init__(self, columns: Sequence[ColumnMeta], column_index: CaseInsensitiveDict, data: List[Optional[str]]):
        self._columns = columns
        self._column_index = column_index
        self._data = data

    def _resolve(self, key: Union[int, str]) -> Optional[int]:
        if isinstance(key, int):
            return key
        return self._column_index.get(key)

    def __getitem__(self, key: Union[int, str]) -> Any:
        index = self._resolve(key)
        if index is None:
            return None
        return decode_value(self._data[index], self._columns[index])

    def get(self, key: Union[int, str], default: Any = None) -> Any:
        index = self._resolve(key)
        if index is None or not -len(self._data) <= index < len(self._data):
            return default
        return self[index]

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[Any]:
        for i in range(len(self._data)):
            yield self[i]

    def keys(self) -> List[str]:
        return [c.name.lower() for c in self._columns]

    @property
    def raw(self) -> List[Optional[str]]:
        return list(self._data)

    def to_dict(self) -> Dict[str, Any]:
        return {c.name.lower(): self[i] for i, c in enumerate(self._columns)}

    def __repr__(self) -> str:
        return f"Row({self.to_dict()!r})"
