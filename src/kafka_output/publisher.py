"""
Transactional publisher: one per parallel task.

Lifecycle:
    OPEN -> SENDING -> FLUSHING -> {COMMITTED, ABORTED} -> CLOSED

- open(): build the router, the Avro plan (registry mode), the value encoder
  and the task's own AIOKafkaProducer, then start it.
- add(row): route and encode the row, then submit it without waiting for the
  broker. AIOKafkaProducer.send() only blocks when its accumulator is full,
  which is the backpressure mechanism.
- finish(): wait for every outstanding delivery, resubmitting retriable
  failures up to ``retries`` times. Any remaining failure aborts the task.
- commit(): return the TaskReport of a committed task.
- abort(): mark the task failed; messages already acknowledged stay published.
- close(): always release the client, whatever happened before.

Use as an async context manager so close() runs on every exit path:

    async with TransactionalPublisher(factory, schema, 0, topic_info) as publisher:
        for row in rows:
            await publisher.add(row)
        await publisher.finish()
        report = publisher.commit()
"""

import asyncio
import functools
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Set

from aiokafka.errors import KafkaError

from kafka_output.columns import Row, TableSchema
from kafka_output.common.exceptions import (
    ConnectivityError,
    PublisherStateError,
    RoutingError,
    SchemaError,
    SendError,
    is_retriable_send_error,
    wrap_send_exception,
)
from kafka_output.common.logging import LoggedClass, logged_operation
from kafka_output.metrics import (
    record_message_produced,
    record_producer_error,
    record_task_outcome,
)
from kafka_output.preflight import TopicInfo
from kafka_output.producer import ProducerFactory
from kafka_output.router import RecordRouter, RoutingConfig
from kafka_output.schemas.results import TaskReport
from kafka_output.visitors import build_avro_plan, to_avro_record, to_plain_record


class PublisherState(str, Enum):
    OPEN = "open"
    SENDING = "sending"
    FLUSHING = "flushing"
    COMMITTED = "committed"
    ABORTED = "aborted"
    CLOSED = "closed"


@dataclass(frozen=True)
class OutboundMessage:
    topic: str
    value: bytes
    key: Optional[bytes] = None
    partition: Optional[int] = None


class TransactionalPublisher(LoggedClass):
    """
    Publishes the rows of one task through a task-owned producer.

    Args:
        factory: Builds the producer and value encoder
        schema: Input table schema
        task_index: Index of the parallel task
        topic_info: Pre-flight result for the static topic, used for
            partition range checks
    """

    def __init__(
        self,
        factory: ProducerFactory,
        schema: TableSchema,
        task_index: int = 0,
        topic_info: Optional[TopicInfo] = None,
    ):
        self.factory = factory
        self.config = factory.config
        self.schema = schema
        self.task_index = task_index
        self._state = PublisherState.OPEN

        self._producer = None
        self._encoder = None
        self._router: Optional[RecordRouter] = None
        self._plan = None
        self._ignore = frozenset(self.config.ignore_columns)

        self._partition_counts: Dict[str, int] = {}
        if topic_info is not None:
            self._partition_counts[topic_info.name] = topic_info.partition_count

        # Delivery callbacks update these; guarded so counts stay consistent
        # with the row loop reading them
        self._lock = threading.Lock()
        self._rows_processed = 0
        self._submitted = 0
        self._acknowledged = 0
        self._failed = 0
        self._retried = 0
        self._first_failure: Optional[BaseException] = None
        self._first_failure_topic: Optional[str] = None
        self._error: Optional[BaseException] = None
        self._committed = False

        self._in_flight: Set[asyncio.Future] = set()
        self._retry_tasks: Set[asyncio.Task] = set()
        super().__init__()

    # -------------------------------------------------------------------------
    # State helpers
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PublisherState:
        return self._state

    def _require(self, operation: str, *states: PublisherState) -> None:
        if self._state not in states:
            raise PublisherStateError(operation, self._state.value)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def open(self) -> None:
        """
        Compile per-task state and start the producer.

        Raises:
            ConfigurationError: If routing columns do not fit the schema
            SchemaError: If the schema cannot be written to the target record
            ConnectivityError: If the producer cannot connect
        """
        self._require("open", PublisherState.OPEN)

        self._router = RecordRouter(RoutingConfig.from_output_config(self.config), self.schema)
        if self.config.uses_registry:
            self._plan = build_avro_plan(self.schema, self.factory.target, self._ignore)
        self._encoder = self.factory.create_value_encoder()

        self._producer = self.factory.create_producer(self.task_index)
        try:
            await self._producer.start()
        except (KafkaError, OSError) as e:
            raise ConnectivityError(
                "Producer failed to connect to kafka brokers",
                cause=e,
                context={"task_index": self.task_index},
            ) from e

        self._state = PublisherState.SENDING
        self._log(
            logging.INFO,
            "Output task opened",
            serialize_format=str(self.config.serialize_format),
        )

    async def __aenter__(self) -> "TransactionalPublisher":
        try:
            await self.open()
        except BaseException as e:
            await self.abort(e)
            await self.close()
            raise
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            if exc is not None and self._state not in (
                PublisherState.ABORTED,
                PublisherState.CLOSED,
            ):
                await self.abort(exc)
        finally:
            await self.close()

    # -------------------------------------------------------------------------
    # Sending
    # -------------------------------------------------------------------------

    async def _partition_count(self, topic: str) -> int:
        count = self._partition_counts.get(topic)
        if count is not None:
            return count
        try:
            partitions = await self._producer.partitions_for(topic)
        except KafkaError as e:
            raise RoutingError(
                f"Cannot read partitions of topic '{topic}'",
                cause=e,
                context={"topic": topic},
            ) from e
        if not partitions:
            raise RoutingError(f"Topic '{topic}' is not found", context={"topic": topic})
        self._partition_counts[topic] = len(partitions)
        return len(partitions)

    async def build_message(self, row: Row) -> OutboundMessage:
        """
        Route and encode one row.

        Raises:
            RoutingError: If the row cannot be routed
            SchemaError: If the row does not fit the schema or target record
        """
        if len(row) != len(self.schema):
            raise SchemaError(
                f"Row has {len(row)} values but schema has {len(self.schema)} columns"
            )
        destination = self._router.route(row)
        if destination.partition is not None:
            partition_count = await self._partition_count(destination.topic)
            RecordRouter.check_partition(destination, partition_count)

        if self._plan is not None:
            record = to_avro_record(self._plan, row)
        else:
            record = to_plain_record(self.schema, row, self._ignore)

        value = await self._encoder.encode(destination.topic, record)
        return OutboundMessage(
            topic=destination.topic,
            value=value,
            key=destination.key,
            partition=destination.partition,
        )

    async def add(self, row: Row) -> None:
        """
        Submit one row without waiting for its acknowledgement.

        Raises:
            PublisherStateError: If the publisher is not SENDING
            RoutingError, SchemaError: If the row cannot be converted
            SendError: If the client rejects the message outright
        """
        self._require("add", PublisherState.SENDING)
        message = await self.build_message(row)
        await self._submit(message, attempt=0)
        with self._lock:
            self._rows_processed += 1

    async def _submit(self, message: OutboundMessage, attempt: int) -> None:
        try:
            delivery = await self._producer.send(
                message.topic,
                value=message.value,
                key=message.key,
                partition=message.partition,
            )
        except KafkaError as e:
            record_producer_error(message.topic, type(e).__name__)
            raise wrap_send_exception(e, message.topic) from e

        with self._lock:
            if attempt == 0:
                self._submitted += 1
            else:
                self._retried += 1
        self._in_flight.add(delivery)
        delivery.add_done_callback(
            functools.partial(self._on_delivery, message, attempt)
        )

    def _on_delivery(
        self,
        message: OutboundMessage,
        attempt: int,
        delivery: asyncio.Future,
    ) -> None:
        self._in_flight.discard(delivery)
        if delivery.cancelled():
            self._record_failure(message.topic, asyncio.CancelledError())
            return

        exc = delivery.exception()
        if exc is None:
            with self._lock:
                self._acknowledged += 1
            record_message_produced(message.topic, len(message.value), success=True)
            return

        if (
            is_retriable_send_error(exc)
            and attempt < self.config.retries
            and self._state in (PublisherState.SENDING, PublisherState.FLUSHING)
        ):
            self._log(
                logging.WARNING,
                "Retrying failed send",
                topic=message.topic,
                error_type=type(exc).__name__,
                messages_retried=attempt + 1,
            )
            task = asyncio.ensure_future(self._resubmit(message, attempt + 1))
            self._retry_tasks.add(task)
            task.add_done_callback(self._retry_tasks.discard)
            return

        self._record_failure(message.topic, exc)

    async def _resubmit(self, message: OutboundMessage, attempt: int) -> None:
        try:
            await self._submit(message, attempt)
        except SendError as e:
            self._record_failure(message.topic, e.cause or e)

    def _record_failure(self, topic: Optional[str], exc: BaseException) -> None:
        with self._lock:
            self._failed += 1
            if self._first_failure is None:
                self._first_failure = exc
                self._first_failure_topic = topic
        if topic is not None:
            record_message_produced(topic, 0, success=False)
        record_producer_error(topic or "", type(exc).__name__)
        self._log(
            logging.ERROR,
            "Message delivery failed",
            topic=topic,
            error_type=type(exc).__name__,
            error_message=str(exc)[:500],
        )

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    @logged_operation(level=logging.INFO)
    async def finish(self) -> None:
        """
        Block until every outstanding send is acknowledged or failed.

        Raises:
            SendError: If any message failed after retries (state ABORTED)
        """
        self._require("finish", PublisherState.SENDING)
        self._state = PublisherState.FLUSHING

        while self._in_flight or self._retry_tasks:
            pending = list(self._in_flight) + list(self._retry_tasks)
            try:
                await self._producer.flush()
            except KafkaError as e:
                # Not attributable to one topic
                self._record_failure(None, e)
                break
            await asyncio.gather(*pending, return_exceptions=True)

        if self._failed:
            error = wrap_send_exception(
                self._first_failure,
                topic=self._first_failure_topic,
                failed_count=self._failed,
            )
            await self.abort(error)
            raise error

        self._state = PublisherState.COMMITTED
        self._committed = True

    def commit(self) -> TaskReport:
        """Return the summary of a committed task; nothing else is persisted."""
        self._require("commit", PublisherState.COMMITTED)
        record_task_outcome(committed=True)
        report = self.report()
        self._log(
            logging.INFO,
            "Output task committed",
            rows_processed=report.rows_processed,
            messages_acknowledged=report.messages_acknowledged,
        )
        return report

    async def abort(self, error: Optional[BaseException] = None) -> None:
        """
        Mark the task failed and release the client.

        No compensating action is taken: messages acknowledged before the
        abort remain published.
        """
        if self._state in (PublisherState.ABORTED, PublisherState.CLOSED):
            return
        self._state = PublisherState.ABORTED
        self._error = error
        record_task_outcome(committed=False)
        if error is not None:
            self._log_exception(
                error,
                "Output task aborted",
                messages_acknowledged=self._acknowledged,
                messages_failed=self._failed,
            )
        else:
            self._log(logging.WARNING, "Output task aborted")
        await self._release()

    async def close(self) -> None:
        """Release the client. Safe to call multiple times."""
        if self._state == PublisherState.CLOSED:
            return
        try:
            await self._release()
        finally:
            self._state = PublisherState.CLOSED

    async def _release(self) -> None:
        producer, self._producer = self._producer, None
        if producer is None:
            return
        for task in list(self._retry_tasks):
            task.cancel()
        try:
            await producer.stop()
        except (KafkaError, OSError) as e:
            self._log_exception(e, "Error stopping Kafka producer", level=logging.WARNING)

    def report(self) -> TaskReport:
        state = "committed" if self._committed else "aborted"
        error_category = None
        error_message = None
        if self._error is not None:
            category: Any = getattr(self._error, "category", None)
            error_category = category.value if category is not None else type(self._error).__name__
            error_message = str(self._error)[:500]
        with self._lock:
            return TaskReport(
                task_index=self.task_index,
                state=state,
                rows_processed=self._rows_processed,
                messages_submitted=self._submitted,
                messages_acknowledged=self._acknowledged,
                messages_failed=self._failed,
                messages_retried=self._retried,
                error_category=error_category,
                error_message=error_message,
            )


__all__ = [
    "OutboundMessage",
    "PublisherState",
    "TransactionalPublisher",
]
