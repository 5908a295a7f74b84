import asyncio
import random
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

import httpx
import websockets
from loguru import logger

T = TypeVar("T")

# Failures a flaky network produces. Anything else is a bug and propagates.
TRANSIENT_ERRORS = (ConnectionError, OSError, websockets.WebSocketException, httpx.HTTPError)


def make_client_stats() -> dict:
    """
    Returns a fresh stats dictionary with zeroed counters.
    Every client calls this once in __init__.
    Keys: messages_received, invalidations_issued, reconnect_count,
          ignored_frames, last_message_at, connected_at.
    """
    return {
        "messages_received": 0,
        "invalidations_issued": 0,
        "reconnect_count": 0,
        "ignored_frames": 0,
        "last_message_at": None,
        "connected_at": datetime.now(timezone.utc).isoformat(),
    }


def backoff_delay(attempt: int, base_delay_s: float, max_delay_s: float) -> float:
    """Exponential backoff capped at `max_delay_s`, plus up to 10% jitter."""
    delay = min(base_delay_s * (2 ** attempt), max_delay_s)
    return delay + random.uniform(0, delay * 0.1)


async def with_reconnect(
    connect_fn: Callable[[], Awaitable[None]],
    stats: dict,
    duration_s: float | None = None,
    base_delay_s: float = 1.0,
    max_delay_s: float = 32.0,
    channel: str = "unknown",
    client_id: str = "unknown",
) -> None:
    """
    Wraps any async connect function with automatic reconnection.

    Runs until `duration_s` elapses, or until cancelled when it is None.
    A connect function that returns normally (server closed the socket) is
    reconnected after `base_delay_s`; one that raises a transient error is
    reconnected after an exponential backoff.
    """
    loop = asyncio.get_running_loop()
    attempt = 0
    start_time = loop.time()

    def remaining() -> float | None:
        if duration_s is None:
            return None
        return duration_s - (loop.time() - start_time)

    async def attempt_connect() -> None:
        try:
            await connect_fn()
        except asyncio.TimeoutError as e:
            # A timeout raised by the connection itself (e.g. the opening
            # handshake) is a network failure, not the end of the run
            raise ConnectionError(f"connect timed out: {e}") from e

    while True:
        left = remaining()
        if left is not None and left <= 0:
            break

        try:
            await asyncio.wait_for(attempt_connect(), timeout=left)
            attempt = 0
            delay = base_delay_s
            logger.info(f"channel={channel} client_id={client_id} event=closed reason=server")
        except asyncio.TimeoutError:
            # Only wait_for's own deadline gets here: reached max duration
            break
        except TRANSIENT_ERRORS as e:
            attempt += 1
            delay = backoff_delay(attempt, base_delay_s, max_delay_s)
            logger.warning(
                f"channel={channel} client_id={client_id} event=reconnect "
                f"attempt={attempt} delay={delay:.2f}s error='{e}'"
            )

        stats["reconnect_count"] += 1
        left = remaining()
        if left is not None and left <= 0:
            break
        try:
            await asyncio.wait_for(asyncio.sleep(delay), timeout=left)
        except asyncio.TimeoutError:
            break


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay_s: float = 0.5,
    max_delay_s: float = 8.0,
    label: str = "unknown",
) -> T:
    """
    Call `fn`, retrying transient failures up to `max_retries` times.
    The last failure is re-raised to the caller.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except TRANSIENT_ERRORS as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            delay = backoff_delay(attempt - 1, base_delay_s, max_delay_s)
            logger.warning(
                f"query={label} event=retry attempt={attempt}/{max_retries} "
                f"delay={delay:.2f}s error='{e}'"
            )
            await asyncio.sleep(delay)
