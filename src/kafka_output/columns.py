"""
Input table schema and rows.

A TableSchema is an ordered, immutable list of typed columns. Rows are plain
tuples aligned positionally with the schema. Polars frames are the usual row
source: their dtypes are mapped onto ColumnType once and DataFrame.rows()
supplies the row tuples.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import polars as pl

from kafka_output.common.exceptions import ConfigurationError

Row = Tuple[Any, ...]


class ColumnType(str, Enum):
    """Value type of an input column."""

    STRING = "string"
    LONG = "long"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    TIMESTAMP = "timestamp"
    JSON = "json"


@dataclass(frozen=True)
class Column:
    index: int
    name: str
    type: ColumnType


class TableSchema:
    """Ordered column definitions of the input table."""

    def __init__(self, columns: Iterable[Tuple[str, ColumnType]]):
        cols: List[Column] = []
        seen = set()
        for index, (name, column_type) in enumerate(columns):
            if name in seen:
                raise ConfigurationError(f"Duplicate column name '{name}'")
            seen.add(name)
            cols.append(Column(index=index, name=name, type=ColumnType(column_type)))
        self._columns: Tuple[Column, ...] = tuple(cols)
        self._by_name: Dict[str, Column] = {c.name: c for c in self._columns}

    @property
    def columns(self) -> Tuple[Column, ...]:
        return self._columns

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self._columns]

    def lookup(self, name: str) -> Optional[Column]:
        return self._by_name.get(name)

    def __len__(self) -> int:
        return len(self._columns)

    def __iter__(self) -> Iterator[Column]:
        return iter(self._columns)

    def __repr__(self) -> str:
        cols = ", ".join(f"{c.name}:{c.type.value}" for c in self._columns)
        return f"TableSchema({cols})"


def _column_type_for(dtype: Any) -> ColumnType:
    if dtype in (pl.String, pl.Categorical, pl.Enum):
        return ColumnType.STRING
    if dtype == pl.Boolean:
        return ColumnType.BOOLEAN
    if dtype.is_integer():
        return ColumnType.LONG
    if dtype.is_float():
        return ColumnType.DOUBLE
    if dtype in (pl.Datetime, pl.Date):
        return ColumnType.TIMESTAMP
    if dtype in (pl.Struct, pl.List, pl.Object):
        return ColumnType.JSON
    raise ConfigurationError(f"Unsupported column dtype {dtype}")


def schema_from_polars(frame_schema: Any) -> TableSchema:
    """
    Build a TableSchema from a polars schema (``DataFrame.schema``).

    Raises:
        ConfigurationError: If a dtype has no ColumnType equivalent
    """
    return TableSchema(
        (name, _column_type_for(dtype)) for name, dtype in frame_schema.items()
    )


def split_rows(rows: Sequence[Row], task_count: int) -> List[Sequence[Row]]:
    """
    Split rows into contiguous slices, one per parallel task.

    Slices differ in length by at most one; with more tasks than rows the
    trailing slices are empty.
    """
    if task_count < 1:
        raise ConfigurationError(f"task count must be >= 1, got {task_count}")
    size, extra = divmod(len(rows), task_count)
    slices = []
    start = 0
    for i in range(task_count):
        end = start + size + (1 if i < extra else 0)
        slices.append(rows[start:end])
        start = end
    return slices


__all__ = [
    "Column",
    "ColumnType",
    "Row",
    "TableSchema",
    "schema_from_polars",
    "split_rows",
]
