from abc import ABC, abstractmethod
import asyncio
from typing import Awaitable, Callable

from realtime_sync.shared.client_utils import make_client_stats, with_reconnect
from realtime_sync.shared.config import settings
from realtime_sync.shared.models import PushMessage


class BaseConnectionClient(ABC):
    """
    Lifecycle shared by every push-channel client: status and message
    callbacks, counters, and a reconnecting run loop around `connect()`.
    """
    channel_name: str = "unknown"

    def __init__(self, client_id: str, push_url: str):
        self.client_id = client_id
        self.push_url = push_url.rstrip('/')

        self.on_message_callback: Callable[[PushMessage], Awaitable[None]] | None = None
        self.on_status_change_callback: Callable[[str], Awaitable[None]] | None = None

        self.stats = make_client_stats()
        self.status = "IDLE"
        self._is_running = False

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def messages_received(self): return self.stats["messages_received"]

    @property
    def invalidations_issued(self): return self.stats["invalidations_issued"]

    @property
    def reconnect_count(self): return self.stats["reconnect_count"]

    def set_callbacks(self, on_message, on_status_change):
        self.on_message_callback = on_message
        self.on_status_change_callback = on_status_change

    async def _emit_status(self, status: str):
        self.status = status
        if self.on_status_change_callback:
            await self.on_status_change_callback(status)

    async def _emit_message(self, message: PushMessage):
        self.stats["messages_received"] += 1
        self.stats["last_message_at"] = message.received_at.isoformat()
        if self.on_message_callback:
            await self.on_message_callback(message)

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel and consume frames until the server closes it."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        pass

    async def run(self, duration_s: float | None = None) -> None:
        self._is_running = True
        try:
            await with_reconnect(
                self.connect,
                self.stats,
                duration_s,
                base_delay_s=settings.RECONNECT_BASE_DELAY_S,
                max_delay_s=settings.RECONNECT_MAX_DELAY_S,
                channel=self.channel_name,
                client_id=self.client_id,
            )
        except asyncio.CancelledError:
            pass
        finally:
            self._is_running = False
            await self.disconnect()
            await self._emit_status("CLOSED")
