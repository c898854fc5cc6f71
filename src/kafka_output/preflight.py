"""
Pre-flight destination check.

Before any task opens, one bounded administrative call confirms that the
static destination topic exists and reports its partition count. Missing
topic, timeout and connection failure all abort the whole run; there is no
retry loop.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from aiokafka.admin import AIOKafkaAdminClient
from aiokafka.errors import KafkaError

from kafka_output.common.exceptions import ConnectivityError

logger = logging.getLogger(__name__)

PREFLIGHT_TIMEOUT_SECONDS = 30.0

# Producer options that also apply to the admin connection
ADMIN_SHARED_OPTIONS = (
    "security_protocol",
    "sasl_mechanism",
    "sasl_plain_username",
    "sasl_plain_password",
    "sasl_kerberos_service_name",
    "sasl_kerberos_domain_name",
    "ssl_context",
)


@dataclass(frozen=True)
class TopicInfo:
    name: str
    partition_count: int


def _admin_options(producer_options: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in producer_options.items() if k in ADMIN_SHARED_OPTIONS}


class PreflightGate:
    """
    Verifies the destination topic with a single time-bounded admin call.

    Usage:
        >>> gate = PreflightGate(["localhost:9092"])
        >>> info = await gate.check("orders")
        >>> info.partition_count
        3
    """

    def __init__(
        self,
        brokers: Iterable[str],
        timeout_seconds: float = PREFLIGHT_TIMEOUT_SECONDS,
        producer_options: Optional[Mapping[str, Any]] = None,
        admin_factory: Optional[Callable[[], AIOKafkaAdminClient]] = None,
    ):
        self.brokers = list(brokers)
        self.timeout_seconds = timeout_seconds
        self._options = _admin_options(producer_options or {})
        self._admin_factory = admin_factory or self._default_admin

    def _default_admin(self) -> AIOKafkaAdminClient:
        return AIOKafkaAdminClient(bootstrap_servers=self.brokers, **self._options)

    async def _describe(self, admin: AIOKafkaAdminClient, topic: str) -> TopicInfo:
        await admin.start()
        described = await admin.describe_topics([topic])
        for entry in described or []:
            if entry.get("topic") != topic or entry.get("error_code", 0) != 0:
                continue
            partitions = entry.get("partitions") or []
            if partitions:
                return TopicInfo(name=topic, partition_count=len(partitions))
        raise ConnectivityError(
            f"target topic '{topic}' is not found",
            context={"topic": topic},
        )

    async def check(self, topic: str) -> TopicInfo:
        """
        Confirm the topic exists.

        Returns:
            TopicInfo with the topic's partition count

        Raises:
            ConnectivityError: If the topic is missing, the call times out or
                the brokers cannot be reached
        """
        logger.info(
            "Checking destination topic",
            extra={"topic": topic, "bootstrap_servers": self.brokers},
        )
        admin = self._admin_factory()
        try:
            info = await asyncio.wait_for(
                self._describe(admin, topic), timeout=self.timeout_seconds
            )
        except ConnectivityError:
            raise
        except asyncio.TimeoutError as e:
            raise ConnectivityError(
                f"failed to connect kafka brokers within {self.timeout_seconds:g}s",
                cause=e,
                context={"topic": topic},
            ) from e
        except (KafkaError, OSError) as e:
            raise ConnectivityError(
                "failed to connect kafka brokers", cause=e, context={"topic": topic}
            ) from e
        finally:
            try:
                await admin.close()
            except (KafkaError, OSError) as e:
                logger.warning(
                    "Error closing admin client",
                    extra={"error_message": str(e)},
                )

        logger.info(
            "Destination topic found",
            extra={"topic": topic, "partition_count": info.partition_count},
        )
        return info


__all__ = [
    "PREFLIGHT_TIMEOUT_SECONDS",
    "PreflightGate",
    "TopicInfo",
]
