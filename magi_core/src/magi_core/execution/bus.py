"""Trade signal publication.

Provides abstraction over message bus backends (Redis pub/sub, in-memory)
for the only real-world effect of the service: emitting a TradeSignal.

Design Decisions:
- Protocol-based interface for flexibility
- Payload is the UTF-8 JSON encoding of the TradeSignal (opaque bytes)
- Transient connection errors are retried; the final failure is a PublishError
- In-memory backend for development and tests
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

import redis.asyncio as aioredis
import structlog
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError
from tenacity import (
    RetryError,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

if TYPE_CHECKING:
    from magi_core.agents.protocol import TradeSignal

log = structlog.get_logger()

# ==============================================================================
# Constants
# ==============================================================================
DEFAULT_TOPIC: Final[str] = "trade-signals"
DEFAULT_MAX_RETRIES: Final[int] = 3
DEFAULT_RETRY_MIN_WAIT: Final[float] = 0.5
DEFAULT_RETRY_MAX_WAIT: Final[float] = 5.0


# ==============================================================================
# Publisher Protocol
# ==============================================================================
@runtime_checkable
class SignalPublisher(Protocol):
    """Protocol for trade signal sinks."""

    backend: str

    async def publish(self, signal: TradeSignal) -> str:
        """Publish a signal and return a message identifier.

        Raises:
            PublishError: If the signal could not be delivered.
        """
        ...

    async def close(self) -> None:
        """Release connections held by the publisher."""
        ...


# ==============================================================================
# Custom Exceptions
# ==============================================================================
class PublishError(Exception):
    """Raised when a signal cannot be published."""

    def __init__(self, message: str, topic: str | None = None) -> None:
        self.topic = topic
        super().__init__(message + (f" [topic={topic}]" if topic else ""))


# ==============================================================================
# Redis Publisher
# ==============================================================================
class RedisSignalPublisher:
    """Redis pub/sub publisher.

    Attributes:
        topic: Channel the signals are published to.
        client: Async Redis client.
    """

    backend = "redis"

    def __init__(
        self,
        redis_url: str = "redis://localhost:6379/0",
        topic: str = DEFAULT_TOPIC,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_min_wait: float = DEFAULT_RETRY_MIN_WAIT,
        retry_max_wait: float = DEFAULT_RETRY_MAX_WAIT,
        client: aioredis.Redis | None = None,
    ) -> None:
        """Initialize the publisher. The connection is opened lazily.

        Args:
            redis_url: Redis connection URL.
            topic: Pub/sub channel.
            max_retries: Attempts per publish.
            retry_min_wait: Minimum backoff between attempts (seconds).
            retry_max_wait: Maximum backoff between attempts (seconds).
            client: Pre-built client (tests).
        """
        self.redis_url = redis_url
        self.topic = topic
        self.max_retries = max_retries
        self.retry_min_wait = retry_min_wait
        self.retry_max_wait = retry_max_wait
        self.client = client or aioredis.from_url(redis_url)

    async def publish(self, signal: TradeSignal) -> str:
        """Publish ``signal`` with retry on transient connection errors."""
        payload = signal.to_payload()

        @retry(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(
                multiplier=1,
                min=self.retry_min_wait,
                max=self.retry_max_wait,
            ),
            retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
            before_sleep=lambda rs: log.warning(
                "Retrying signal publish",
                topic=self.topic,
                attempt=rs.attempt_number,
            ),
        )
        async def _send() -> int:
            return await self.client.publish(self.topic, payload)

        try:
            receivers = await _send()
        except (RetryError, RedisError) as e:
            log.error(
                "Signal publish failed",
                topic=self.topic,
                instrument=signal.instrument,
                error=str(e),
            )
            raise PublishError(f"Publish failed: {e}", topic=self.topic) from e

        message_id = f"{self.topic}:{signal.instrument}:{signal.timestamp.isoformat()}"
        log.info(
            "Signal published",
            topic=self.topic,
            instrument=signal.instrument,
            action=signal.action.value,
            receivers=receivers,
        )
        return message_id

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()


# ==============================================================================
# Memory Publisher (Development/Testing)
# ==============================================================================
class MemorySignalPublisher:
    """In-memory publisher for development and testing.

    WARNING: Signals never leave the process.
    """

    backend = "memory"

    def __init__(self, topic: str = DEFAULT_TOPIC) -> None:
        self.topic = topic
        self.messages: list[bytes] = []
        log.warning(
            "MemorySignalPublisher initialized - SIGNALS ARE NOT DELIVERED",
            hint="Use bus.backend=redis in production",
        )

    async def publish(self, signal: TradeSignal) -> str:
        """Record the payload."""
        self.messages.append(signal.to_payload())
        return f"{self.topic}:{len(self.messages)}"

    async def close(self) -> None:
        """Nothing to release."""

    def clear(self) -> None:
        """Drop recorded messages (useful for tests)."""
        self.messages.clear()


# ==============================================================================
# Factory Function
# ==============================================================================
def create_publisher(
    backend: str = "memory",
    redis_url: str = "redis://localhost:6379/0",
    topic: str = DEFAULT_TOPIC,
) -> RedisSignalPublisher | MemorySignalPublisher:
    """Create a signal publisher.

    Args:
        backend: "redis" or "memory".
        redis_url: Redis connection URL (redis backend only).
        topic: Channel name.

    Returns:
        Publisher instance.

    Raises:
        ValueError: Unknown backend.
    """
    if backend == "redis":
        return RedisSignalPublisher(redis_url=redis_url, topic=topic)
    if backend == "memory":
        return MemorySignalPublisher(topic=topic)
    msg = f"Unknown bus backend: {backend}"
    raise ValueError(msg)
