"""
Row value conversion.

Two variants, one per serialize format:

- to_plain_record(): a dict keyed by column name, ready for JSON encoding.
  JSON columns are embedded as nested values, timestamps become epoch millis.
- to_avro_record(): a dict shaped for the target Avro record. Column/field
  compatibility is compiled once per task by build_avro_plan(), so static
  mismatches fail at task open; only null and value-level problems are
  detected per row.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

from kafka_output.avro_schema import TargetRecordSchema
from kafka_output.columns import Column, ColumnType, Row, TableSchema
from kafka_output.common.exceptions import SchemaError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

AVRO_PRIMITIVES = frozenset(
    ["null", "boolean", "int", "long", "float", "double", "bytes", "string"]
)

# Avro kinds each column type may be written to, widest first
COMPATIBLE_KINDS: Dict[ColumnType, Tuple[str, ...]] = {
    ColumnType.STRING: ("string", "enum"),
    ColumnType.LONG: ("long", "int", "double", "float"),
    ColumnType.DOUBLE: ("double", "float"),
    ColumnType.BOOLEAN: ("boolean",),
    ColumnType.TIMESTAMP: ("long", "string"),
    ColumnType.JSON: ("record", "map", "array", "string"),
}

_PYTHON_TYPES: Dict[ColumnType, Tuple[type, ...]] = {
    ColumnType.STRING: (str,),
    ColumnType.LONG: (int,),
    ColumnType.DOUBLE: (float, int),
    ColumnType.BOOLEAN: (bool,),
    ColumnType.TIMESTAMP: (datetime, date),
    ColumnType.JSON: (dict, list, str, int, float, bool),
}


def _check_value_type(column: Column, value: Any) -> None:
    expected = _PYTHON_TYPES[column.type]
    if column.type in (ColumnType.LONG, ColumnType.DOUBLE) and isinstance(value, bool):
        expected = ()
    if not isinstance(value, expected):
        raise SchemaError(
            f"Column '{column.name}' is declared {column.type.value} "
            f"but holds {type(value).__name__}",
            context={"column": column.name},
        )


def to_epoch(value: Any, units_per_second: int = 1000) -> int:
    """Convert a datetime (naive means UTC) or date to integer epoch units."""
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    else:
        dt = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    delta = dt - EPOCH
    seconds = delta.days * 86400 + delta.seconds
    return seconds * units_per_second + delta.microseconds * units_per_second // 1_000_000


def to_iso8601(value: Any) -> str:
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return dt.isoformat()
    return value.isoformat()


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return to_iso8601(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def compact_json(value: Any) -> str:
    """
    Serialize a value as compact JSON; nested dates and datetimes become
    ISO-8601 text.

    Raises:
        SchemaError: If the value holds something JSON cannot represent
    """
    try:
        return json.dumps(
            value, separators=(",", ":"), ensure_ascii=False, default=_json_default
        )
    except (TypeError, ValueError) as e:
        raise SchemaError(f"Value cannot be written as JSON: {e}", cause=e) from e


# =============================================================================
# Plain (JSON) variant
# =============================================================================


def _plain_value(column: Column, value: Any) -> Any:
    if value is None:
        return None
    _check_value_type(column, value)

    column_type = column.type
    if column_type == ColumnType.STRING:
        return value
    if column_type == ColumnType.LONG:
        return int(value)
    if column_type == ColumnType.DOUBLE:
        return float(value)
    if column_type == ColumnType.BOOLEAN:
        return bool(value)
    if column_type == ColumnType.TIMESTAMP:
        return to_epoch(value)
    if column_type == ColumnType.JSON:
        return value
    raise SchemaError(f"Unsupported column type {column_type}")


def to_plain_record(
    schema: TableSchema,
    row: Row,
    ignore_columns: FrozenSet[str] = frozenset(),
) -> Dict[str, Any]:
    """
    Convert a row into a JSON-ready dict in column order.

    Null values are kept as explicit nulls; ignored columns are left out.

    Raises:
        SchemaError: If the row length or a value type disagrees with the schema
    """
    if len(row) != len(schema):
        raise SchemaError(
            f"Row has {len(row)} values but schema has {len(schema)} columns"
        )
    return {
        column.name: _plain_value(column, row[column.index])
        for column in schema
        if column.name not in ignore_columns
    }


# =============================================================================
# Avro (registry) variant
# =============================================================================


@dataclass(frozen=True)
class FieldPlan:
    """How one column is written into one target field."""

    column: Column
    field_name: str
    kind: str
    logical_type: Optional[str] = None
    nullable: bool = False
    symbols: Tuple[str, ...] = ()
    # Every compatible branch kind of a union field
    kinds: Tuple[str, ...] = ()


@dataclass(frozen=True)
class AvroRecordPlan:
    """Column-to-field mapping compiled once per task."""

    target: TargetRecordSchema
    fields: Tuple[FieldPlan, ...]
    row_width: int
    unfed_fields: Tuple[str, ...] = field(default=())


def _collect_named_types(schema: Any, named: Dict[str, Dict[str, Any]]) -> None:
    if isinstance(schema, list):
        for branch in schema:
            _collect_named_types(branch, named)
    elif isinstance(schema, dict):
        kind = schema.get("type")
        if kind in ("record", "error", "enum", "fixed") and "name" in schema:
            named[schema["name"]] = schema
        if kind in ("record", "error"):
            for f in schema.get("fields", []):
                _collect_named_types(f["type"], named)
        elif kind == "array":
            _collect_named_types(schema.get("items"), named)
        elif kind == "map":
            _collect_named_types(schema.get("values"), named)
        elif isinstance(kind, (dict, list)):
            _collect_named_types(kind, named)


def _describe(
    avro_type: Any, named: Dict[str, Dict[str, Any]]
) -> Tuple[str, Optional[str], Tuple[str, ...]]:
    """Return (kind, logicalType, enum symbols) of a non-union Avro type."""
    if isinstance(avro_type, str):
        if avro_type in AVRO_PRIMITIVES:
            return avro_type, None, ()
        definition = named.get(avro_type)
        if definition is None:
            raise SchemaError(f"Unknown Avro type reference '{avro_type}'")
        return _describe(definition, named)

    kind = avro_type.get("type")
    if isinstance(kind, (dict, list)):
        return _describe(kind, named)
    if kind == "error":
        kind = "record"
    return kind, avro_type.get("logicalType"), tuple(avro_type.get("symbols", ()))


def _branches(avro_type: Any) -> Tuple[List[Any], bool]:
    """Split a field type into its non-null branches and nullability."""
    if isinstance(avro_type, list):
        return [b for b in avro_type if b != "null"], "null" in avro_type
    return [avro_type], avro_type == "null"


def _plan_field(
    column: Column,
    target_field: Dict[str, Any],
    named: Dict[str, Dict[str, Any]],
) -> FieldPlan:
    branches, nullable = _branches(target_field["type"])
    allowed = COMPATIBLE_KINDS[column.type]
    described = [_describe(branch, named) for branch in branches]
    compatible = [d for d in described if d[0] in allowed]
    if compatible:
        kind, logical_type, symbols = min(compatible, key=lambda d: allowed.index(d[0]))
        return FieldPlan(
            column=column,
            field_name=target_field["name"],
            kind=kind,
            logical_type=logical_type,
            nullable=nullable,
            symbols=symbols,
            kinds=tuple(d[0] for d in compatible),
        )
    declared = [d[0] for d in described] or ["null"]
    raise SchemaError(
        f"Column '{column.name}' ({column.type.value}) is incompatible with "
        f"target field type {'|'.join(declared)}",
        context={"column": column.name, "field": target_field["name"]},
    )


def build_avro_plan(
    schema: TableSchema,
    target: TargetRecordSchema,
    ignore_columns: Iterable[str] = (),
) -> AvroRecordPlan:
    """
    Match every non-ignored column to a target field of the same name.

    Raises:
        SchemaError: If a column has no field, a field type is incompatible,
            or a required field (not nullable, no default) has no column
    """
    ignore = frozenset(ignore_columns)
    named: Dict[str, Dict[str, Any]] = {}
    _collect_named_types(target.parsed, named)

    fields_by_name = {f["name"]: f for f in target.fields}
    plans = []
    for column in schema:
        if column.name in ignore:
            continue
        target_field = fields_by_name.get(column.name)
        if target_field is None:
            raise SchemaError(
                f"Column '{column.name}' is not a field of target schema {target.name}",
                context={"column": column.name},
            )
        plans.append(_plan_field(column, target_field, named))

    fed = {p.field_name for p in plans}
    unfed = []
    for target_field in target.fields:
        if target_field["name"] in fed:
            continue
        _, nullable = _branches(target_field["type"])
        if not nullable and "default" not in target_field:
            raise SchemaError(
                f"Target field '{target_field['name']}' is required "
                "but no column provides it",
                context={"field": target_field["name"]},
            )
        unfed.append(target_field["name"])

    return AvroRecordPlan(
        target=target,
        fields=tuple(plans),
        row_width=len(schema),
        unfed_fields=tuple(unfed),
    )


def _avro_value(plan: FieldPlan, value: Any) -> Any:
    column = plan.column
    _check_value_type(column, value)

    if column.type == ColumnType.TIMESTAMP:
        if plan.kind == "string":
            return to_iso8601(value)
        if plan.logical_type in ("timestamp-micros", "local-timestamp-micros"):
            return to_epoch(value, 1_000_000)
        return to_epoch(value)

    if column.type == ColumnType.JSON:
        if plan.kind == "string":
            return value if isinstance(value, str) else compact_json(value)
        return value

    if (
        plan.kind == "int"
        and not INT32_MIN <= value <= INT32_MAX
        and not {"double", "float"} & set(plan.kinds)
    ):
        raise SchemaError(
            f"Value {value} of column '{column.name}' overflows Avro int",
            context={"column": column.name},
        )
    if plan.kind == "enum" and value not in plan.symbols:
        raise SchemaError(
            f"Value '{value}' of column '{column.name}' is not an enum symbol "
            f"of field '{plan.field_name}'",
            context={"column": column.name},
        )
    if plan.kind in ("double", "float"):
        return float(value)
    return value


def to_avro_record(plan: AvroRecordPlan, row: Row) -> Dict[str, Any]:
    """
    Convert a row into a dict matching the target record.

    Raises:
        SchemaError: If a null goes to a non-nullable field, or a value does
            not fit its field
    """
    if len(row) != plan.row_width:
        raise SchemaError(
            f"Row has {len(row)} values but schema has {plan.row_width} columns"
        )
    record: Dict[str, Any] = {}
    for field_plan in plan.fields:
        value = row[field_plan.column.index]
        if value is None:
            if not field_plan.nullable:
                raise SchemaError(
                    f"Null value for non-nullable field '{field_plan.field_name}'",
                    context={"column": field_plan.column.name},
                )
            record[field_plan.field_name] = None
            continue
        record[field_plan.field_name] = _avro_value(field_plan, value)
    return record


__all__ = [
    "AvroRecordPlan",
    "FieldPlan",
    "build_avro_plan",
    "compact_json",
    "to_avro_record",
    "to_epoch",
    "to_plain_record",
]
