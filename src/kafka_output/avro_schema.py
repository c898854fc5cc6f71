"""
Target record schema resolution for registry_binary output.

The schema is declared either inline (``avsc``) or in a UTF-8 file
(``avsc_file``), never both. It is parsed once with fastavro and shared
read-only by every task.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import fastavro
from fastavro.schema import SchemaParseException

from kafka_output.common.exceptions import ConfigurationError, SchemaError
from kafka_output.config import OutputConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TargetRecordSchema:
    """Parsed Avro record schema plus its canonical JSON text."""

    parsed: Dict[str, Any]
    schema_str: str

    @property
    def name(self) -> str:
        return self.parsed["name"]

    @property
    def fields(self):
        return self.parsed["fields"]


def _load_declaration(config: OutputConfig) -> Any:
    if (config.avsc is None) == (config.avsc_file is None):
        raise ConfigurationError(
            "registry_binary format needs either one of avsc and avsc_file"
        )

    if config.avsc is not None:
        if isinstance(config.avsc, str):
            try:
                return json.loads(config.avsc)
            except json.JSONDecodeError as e:
                raise SchemaError("avsc is not valid JSON", cause=e) from e
        return config.avsc

    try:
        text = config.avsc_file.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigurationError(
            f"avsc_file cannot read: {config.avsc_file}", cause=e
        ) from e
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise SchemaError(f"avsc_file {config.avsc_file} is not valid JSON", cause=e) from e


def resolve_target_schema(config: OutputConfig) -> Optional[TargetRecordSchema]:
    """
    Resolve the target record schema for a config.

    Returns:
        TargetRecordSchema in registry_binary mode, None in plain mode

    Raises:
        ConfigurationError: If zero or both schema sources are set, or the
            schema file cannot be read
        SchemaError: If the declaration is not a valid Avro record schema
    """
    if not config.uses_registry:
        return None

    declaration = _load_declaration(config)
    try:
        parsed = fastavro.parse_schema(declaration)
    except (SchemaParseException, ValueError, TypeError, KeyError) as e:
        raise SchemaError(f"Invalid Avro schema: {e}", cause=e) from e

    if not isinstance(parsed, dict) or parsed.get("type") != "record":
        raise SchemaError("Target schema must be an Avro record")

    logger.info(
        "Resolved target record schema",
        extra={"subject": parsed["name"], "columns": len(parsed["fields"])},
    )
    return TargetRecordSchema(parsed=parsed, schema_str=json.dumps(declaration))


__all__ = [
    "TargetRecordSchema",
    "resolve_target_schema",
]
