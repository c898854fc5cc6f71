"""
Output configuration.

Options are parsed once from a plain mapping (usually the ``out:`` section of a
YAML file) into an immutable OutputConfig. Parsing is pure: it either returns a
fully validated config or raises ConfigurationError.

Configuration priority (highest to lowest):
    1. Environment variables (KAFKA_BOOTSTRAP_SERVERS, KAFKA_OUTPUT_TOPIC,
       SCHEMA_REGISTRY_URL)
    2. YAML file
    3. Dataclass defaults
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

import yaml

from kafka_output.common.exceptions import ConfigurationError

DEFAULT_RECORD_BATCH_SIZE = 16384
DEFAULT_ACKS = "1"
DEFAULT_RETRIES = 1
VALID_ACKS = ("0", "1", "all", "-1")


class SerializeFormat(str, Enum):
    """Wire encoding of the message value."""

    PLAIN = "plain"
    REGISTRY_BINARY = "registry_binary"

    def __str__(self) -> str:
        return _FORMAT_TO_NAME[self]

    @classmethod
    def from_name(cls, name: str) -> "SerializeFormat":
        """
        Parse a serialize_format option value.

        Raises:
            ConfigurationError: If the name is not a known format
        """
        fmt = _NAME_TO_FORMAT.get(str(name).strip().lower())
        if fmt is None:
            raise ConfigurationError(
                f"Unknown serialize format '{name}'. "
                f"Supported modes are {', '.join(_FORMAT_TO_NAME.values())}"
            )
        return fmt


_FORMAT_TO_NAME: Dict[SerializeFormat, str] = {
    SerializeFormat.PLAIN: "plain",
    SerializeFormat.REGISTRY_BINARY: "registry_binary",
}

# Names accepted on input; legacy spellings are never emitted
_NAME_TO_FORMAT: Dict[str, SerializeFormat] = {
    **{name: fmt for fmt, name in _FORMAT_TO_NAME.items()},
    "json": SerializeFormat.PLAIN,
    "avro_with_schema_registry": SerializeFormat.REGISTRY_BINARY,
}

KNOWN_OPTIONS = frozenset(
    [
        "type",
        "brokers",
        "topic",
        "topic_column",
        "key_column_name",
        "partition_column_name",
        "serialize_format",
        "schema_registry_url",
        "avsc",
        "avsc_file",
        "record_batch_size",
        "acks",
        "retries",
        "other_producer_configs",
        "ignore_columns",
        "value_subject_name_strategy",
    ]
)


@dataclass(frozen=True)
class OutputConfig:
    """Validated output options.

    Load from a file with load_config() or from a mapping with parse_config().
    """

    brokers: Tuple[str, ...]
    topic: str
    serialize_format: SerializeFormat = SerializeFormat.PLAIN

    # Per-row routing
    topic_column: Optional[str] = None
    key_column_name: Optional[str] = None
    partition_column_name: Optional[str] = None

    # Registry mode
    schema_registry_url: Optional[str] = None
    avsc: Optional[Union[Dict[str, Any], str]] = None
    avsc_file: Optional[Path] = None
    value_subject_name_strategy: Optional[str] = None

    # Producer
    record_batch_size: int = DEFAULT_RECORD_BATCH_SIZE
    acks: str = DEFAULT_ACKS
    retries: int = DEFAULT_RETRIES
    other_producer_configs: Dict[str, Any] = field(default_factory=dict)

    ignore_columns: Tuple[str, ...] = ()

    @property
    def uses_registry(self) -> bool:
        return self.serialize_format == SerializeFormat.REGISTRY_BINARY

    def to_dict(self) -> Dict[str, Any]:
        """Dump options back to their configuration form."""
        data: Dict[str, Any] = {
            "brokers": list(self.brokers),
            "topic": self.topic,
            "serialize_format": str(self.serialize_format),
            "record_batch_size": self.record_batch_size,
            "acks": self.acks,
            "retries": self.retries,
            "other_producer_configs": dict(self.other_producer_configs),
            "ignore_columns": list(self.ignore_columns),
        }
        optional = {
            "topic_column": self.topic_column,
            "key_column_name": self.key_column_name,
            "partition_column_name": self.partition_column_name,
            "schema_registry_url": self.schema_registry_url,
            "avsc": self.avsc,
            "avsc_file": str(self.avsc_file) if self.avsc_file else None,
            "value_subject_name_strategy": self.value_subject_name_strategy,
        }
        data.update({k: v for k, v in optional.items() if v is not None})
        return data


def _require(data: Mapping[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise ConfigurationError(f"'{key}' is required", context={"option": key})
    return value


def _optional_str(data: Mapping[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(
            f"'{key}' must be a non-empty string", context={"option": key}
        )
    return value.strip()


def _as_int(data: Mapping[str, Any], key: str, default: int, minimum: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool):
        raise ConfigurationError(f"'{key}' must be an integer, got {value!r}")
    try:
        number = int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"'{key}' must be an integer, got {value!r}", cause=e
        ) from e
    if number < minimum:
        raise ConfigurationError(f"'{key}' must be >= {minimum}, got {number}")
    return number


def _parse_brokers(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        brokers = [b.strip() for b in value.split(",")]
    elif isinstance(value, (list, tuple)):
        brokers = [str(b).strip() for b in value]
    else:
        raise ConfigurationError(
            f"'brokers' must be a list or comma-separated string, got {value!r}"
        )
    brokers = [b for b in brokers if b]
    if not brokers:
        raise ConfigurationError("'brokers' must contain at least one endpoint")
    return tuple(brokers)


def _parse_acks(value: Any) -> str:
    acks = str(value).strip().lower()
    if acks not in VALID_ACKS:
        raise ConfigurationError(
            f"'acks' must be one of {', '.join(VALID_ACKS)}, got {value!r}"
        )
    return "all" if acks == "-1" else acks


def _parse_avsc(value: Any) -> Optional[Union[Dict[str, Any], str]]:
    if value is None:
        return None
    if isinstance(value, Mapping):
        return dict(value)
    if isinstance(value, str) and value.strip():
        return value
    raise ConfigurationError("'avsc' must be a mapping or a JSON string")


def _parse_string_list(data: Mapping[str, Any], key: str) -> Tuple[str, ...]:
    value = data.get(key) or []
    if isinstance(value, str) or not isinstance(value, (list, tuple)):
        raise ConfigurationError(f"'{key}' must be a list of column names")
    return tuple(str(v) for v in value)


def parse_config(data: Mapping[str, Any]) -> OutputConfig:
    """
    Parse and validate output options.

    Args:
        data: Raw option mapping

    Returns:
        Validated OutputConfig

    Raises:
        ConfigurationError: If options are missing, malformed or contradictory
    """
    if not isinstance(data, Mapping):
        raise ConfigurationError("Output configuration must be a mapping")

    unknown = sorted(set(data) - KNOWN_OPTIONS)
    if unknown:
        raise ConfigurationError(
            f"Unknown option(s): {', '.join(unknown)}", context={"options": unknown}
        )

    serialize_format = SerializeFormat.from_name(_require(data, "serialize_format"))

    other = data.get("other_producer_configs") or {}
    if not isinstance(other, Mapping):
        raise ConfigurationError("'other_producer_configs' must be a mapping")

    avsc = _parse_avsc(data.get("avsc"))
    avsc_file = _optional_str(data, "avsc_file")
    schema_registry_url = _optional_str(data, "schema_registry_url")

    if serialize_format == SerializeFormat.REGISTRY_BINARY:
        if not schema_registry_url:
            raise ConfigurationError(
                "registry_binary format needs 'schema_registry_url'"
            )
        if (avsc is None) == (avsc_file is None):
            raise ConfigurationError(
                "registry_binary format needs either one of avsc and avsc_file"
            )

    return OutputConfig(
        brokers=_parse_brokers(_require(data, "brokers")),
        topic=str(_require(data, "topic")),
        serialize_format=serialize_format,
        topic_column=_optional_str(data, "topic_column"),
        key_column_name=_optional_str(data, "key_column_name"),
        partition_column_name=_optional_str(data, "partition_column_name"),
        schema_registry_url=schema_registry_url,
        avsc=avsc,
        avsc_file=Path(avsc_file) if avsc_file else None,
        value_subject_name_strategy=_optional_str(data, "value_subject_name_strategy"),
        record_batch_size=_as_int(data, "record_batch_size", DEFAULT_RECORD_BATCH_SIZE, 1),
        acks=_parse_acks(data.get("acks", DEFAULT_ACKS)),
        retries=_as_int(data, "retries", DEFAULT_RETRIES, 0),
        other_producer_configs=dict(other),
        ignore_columns=_parse_string_list(data, "ignore_columns"),
    )


def load_config(config_path: Path) -> OutputConfig:
    """
    Load output configuration from a YAML file and environment variables.

    The options are read from the top-level ``out:`` key when present,
    otherwise from the whole document.

    Optional env vars:
        KAFKA_BOOTSTRAP_SERVERS: Comma-separated broker list
        KAFKA_OUTPUT_TOPIC: Static destination topic
        SCHEMA_REGISTRY_URL: Registry endpoint

    Raises:
        ConfigurationError: If the file cannot be read or options are invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Cannot read configuration file {config_path}", cause=e
        ) from e

    if not isinstance(yaml_data, dict):
        raise ConfigurationError(f"{config_path} must contain a mapping")

    data: Dict[str, Any] = dict(yaml_data.get("out", yaml_data))

    env_overrides = {
        "brokers": os.getenv("KAFKA_BOOTSTRAP_SERVERS"),
        "topic": os.getenv("KAFKA_OUTPUT_TOPIC"),
        "schema_registry_url": os.getenv("SCHEMA_REGISTRY_URL"),
    }
    data.update({k: v for k, v in env_overrides.items() if v})

    return parse_config(data)


__all__ = [
    "OutputConfig",
    "SerializeFormat",
    "load_config",
    "parse_config",
]
