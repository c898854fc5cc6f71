"""
Publish client construction.

ProducerFactory turns an OutputConfig into:
- aiokafka producer options (typed options merged over passthrough options)
- one AIOKafkaProducer per task
- the value encoder for the configured serialize format

Registry encoding follows the Confluent wire format: a zero magic byte, the
4-byte big-endian schema id, then the schemaless Avro body.
"""

import asyncio
import inspect
import logging
import struct
from typing import Any, Callable, Dict, FrozenSet, Optional, Set

from aiokafka import AIOKafkaProducer
from confluent_kafka.schema_registry import (
    SchemaRegistryClient,
    record_subject_name_strategy,
    topic_record_subject_name_strategy,
    topic_subject_name_strategy,
)
from confluent_kafka.schema_registry.avro import AvroSerializer
from confluent_kafka.schema_registry.error import SchemaRegistryError
from confluent_kafka.serialization import (
    MessageField,
    SerializationContext,
    SerializationError,
)

from kafka_output.avro_schema import TargetRecordSchema
from kafka_output.common.exceptions import (
    ConfigurationError,
    ConnectivityError,
    SchemaError,
)
from kafka_output.config import OutputConfig
from kafka_output.visitors import compact_json

logger = logging.getLogger(__name__)

# Typed options always win over other_producer_configs
TYPED_OPTIONS = ("bootstrap_servers", "acks", "max_batch_size", "retries")

# Kafka property names whose aiokafka keyword differs beyond dots/underscores
PASSTHROUGH_ALIASES = {
    "batch_size": "max_batch_size",
}

SUBJECT_NAME_STRATEGIES: Dict[str, Callable[[SerializationContext, str], str]] = {
    "topicname": topic_subject_name_strategy,
    "recordname": record_subject_name_strategy,
    "topicrecordname": topic_record_subject_name_strategy,
}


def resolve_subject_name_strategy(
    name: Optional[str],
) -> Callable[[SerializationContext, str], str]:
    """
    Map a value_subject_name_strategy option to a strategy function.

    Accepts short names (``topic_name``, ``RecordNameStrategy``) as well as
    fully qualified Java class names; None selects the topic strategy.

    Raises:
        ConfigurationError: If the strategy is unknown
    """
    if name is None:
        return topic_subject_name_strategy
    short = name.rsplit(".", 1)[-1].replace("_", "").lower()
    if short.endswith("strategy"):
        short = short[: -len("strategy")]
    strategy = SUBJECT_NAME_STRATEGIES.get(short)
    if strategy is None:
        raise ConfigurationError(
            f"Unknown value_subject_name_strategy '{name}'. Supported strategies "
            "are TopicNameStrategy, RecordNameStrategy, TopicRecordNameStrategy"
        )
    return strategy


def _coerce_option_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    if lowered.lstrip("-").isdigit():
        return int(lowered)
    return value


def _normalize_option_name(name: str) -> str:
    key = name.strip().replace(".", "_").replace("-", "_").lower()
    return PASSTHROUGH_ALIASES.get(key, key)


def _producer_keywords() -> Optional[FrozenSet[str]]:
    """Keyword names AIOKafkaProducer accepts, or None if it takes any."""
    parameters = inspect.signature(AIOKafkaProducer).parameters.values()
    if any(p.kind == inspect.Parameter.VAR_KEYWORD for p in parameters):
        return None
    return frozenset(p.name for p in parameters if p.name != "loop")


def build_producer_options(config: OutputConfig) -> Dict[str, Any]:
    """
    Build AIOKafkaProducer keyword options.

    Passthrough options are applied first, then the typed options overwrite
    any conflicting passthrough entry. ``retries`` is not an aiokafka option;
    it is enforced by the publisher and never passed to the client.

    Raises:
        ConfigurationError: If a passthrough option is not an AIOKafkaProducer
            keyword
    """
    accepted = _producer_keywords()
    options: Dict[str, Any] = {}
    for name, value in config.other_producer_configs.items():
        key = _normalize_option_name(name)
        if accepted is not None and key not in accepted and key not in TYPED_OPTIONS:
            raise ConfigurationError(
                f"Unknown producer option '{name}' in other_producer_configs",
                context={"option": name},
            )
        options[key] = _coerce_option_value(value)

    typed: Dict[str, Any] = {
        "bootstrap_servers": list(config.brokers),
        "acks": "all" if config.acks == "all" else int(config.acks),
        "max_batch_size": config.record_batch_size,
    }
    for key in TYPED_OPTIONS:
        if key in options and options[key] != typed.get(key):
            logger.warning(
                "Typed option overrides other_producer_configs entry",
                extra={"option": key},
            )
        options.pop(key, None)
    options.update(typed)
    return options


class PlainValueEncoder:
    """Encodes a record dict as compact UTF-8 JSON."""

    async def encode(self, topic: str, record: Dict[str, Any]) -> bytes:
        return compact_json(record).encode("utf-8")


class RegistryValueEncoder:
    """
    Encodes a record dict as Confluent-framed Avro.

    Framing, schema registration and the per-subject id cache are handled by
    confluent-kafka's AvroSerializer; its blocking registry calls run in a
    worker thread.
    """

    def __init__(
        self,
        registry: SchemaRegistryClient,
        target: TargetRecordSchema,
        subject_name_strategy: Callable[[SerializationContext, str], str],
    ):
        self._target = target
        self._subject_name_strategy = subject_name_strategy
        self._serializer = AvroSerializer(
            registry,
            target.schema_str,
            conf={
                "auto.register.schemas": True,
                "subject.name.strategy": subject_name_strategy,
            },
        )
        self._registered: Set[str] = set()

    def subject_for(self, topic: str) -> str:
        ctx = SerializationContext(topic, MessageField.VALUE)
        return self._subject_name_strategy(ctx, self._target.name)

    async def encode(self, topic: str, record: Dict[str, Any]) -> bytes:
        subject = self.subject_for(topic)
        ctx = SerializationContext(topic, MessageField.VALUE)
        try:
            value = await asyncio.to_thread(self._serializer, record, ctx)
        except SchemaRegistryError as e:
            raise SchemaError(
                f"Schema registry rejected subject {subject}: {e}",
                cause=e,
                context={"subject": subject},
            ) from e
        except (SerializationError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise SchemaError(
                f"Record does not match target schema {self._target.name}: {e}",
                cause=e,
            ) from e
        except Exception as e:
            raise ConnectivityError(
                f"Schema registry is unreachable for subject {subject}: {e}",
                cause=e,
                context={"subject": subject},
            ) from e
        if subject not in self._registered:
            self._registered.add(subject)
            logger.info(
                "Registered value schema",
                extra={"subject": subject, "schema_id": struct.unpack(">I", value[1:5])[0]},
            )
        return value


class ProducerFactory:
    """
    Builds publish clients and value encoders from static configuration.

    Usage:
        >>> factory = ProducerFactory(config, target_schema)
        >>> producer = factory.create_producer(task_index=0)
        >>> encoder = factory.create_value_encoder()
    """

    def __init__(
        self,
        config: OutputConfig,
        target: Optional[TargetRecordSchema] = None,
        registry_client_factory: Optional[Callable[[], SchemaRegistryClient]] = None,
    ):
        if config.uses_registry and target is None:
            raise ConfigurationError("registry_binary format needs a target schema")
        self.config = config
        self.target = target
        self._options = build_producer_options(config)
        self._subject_name_strategy = resolve_subject_name_strategy(
            config.value_subject_name_strategy
        )
        self._registry_client_factory = registry_client_factory or self._default_registry

    def _default_registry(self) -> SchemaRegistryClient:
        return SchemaRegistryClient({"url": self.config.schema_registry_url})

    @property
    def producer_options(self) -> Dict[str, Any]:
        return dict(self._options)

    def create_producer(self, task_index: int = 0) -> AIOKafkaProducer:
        options = dict(self._options)
        options.setdefault("client_id", f"kafka-output-task-{task_index}")
        logger.debug(
            "Creating Kafka producer",
            extra={
                "task_index": task_index,
                "bootstrap_servers": options["bootstrap_servers"],
                "serialize_format": str(self.config.serialize_format),
            },
        )
        return AIOKafkaProducer(**options)

    def create_value_encoder(self):
        if not self.config.uses_registry:
            return PlainValueEncoder()
        return RegistryValueEncoder(
            self._registry_client_factory(),
            self.target,
            self._subject_name_strategy,
        )


__all__ = [
    "PlainValueEncoder",
    "ProducerFactory",
    "RegistryValueEncoder",
    "build_producer_options",
    "resolve_subject_name_strategy",
]
