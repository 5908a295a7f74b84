"""
MODULE OVERVIEW:
A scoped realtime subscription over the push transport's WebSocket.

WHAT IS HAPPENING HERE:
One `RealtimeSubscription` owns one channel. It connects, asks the transport
for row changes on one table (optionally filtered), and turns every matching
change into cache invalidations. It never writes pushed rows into the cache
itself: the cache refetches, so a dropped or reordered frame can only delay
freshness, never corrupt it.

Keepalive pings are answered at the application level with a pong, and
`CHANNEL_ERROR` status frames are logged. Reconnection with backoff comes from
`BaseConnectionClient.run()`.
"""

import json

import websockets
from loguru import logger
from pydantic import ValidationError

from realtime_sync.client.base_client import BaseConnectionClient
from realtime_sync.client.reconciliation import Invalidator
from realtime_sync.shared.config import settings
from realtime_sync.shared.models import ChannelSpec, PushMessage


class RealtimeSubscription(BaseConnectionClient):

    def __init__(
        self,
        spec: ChannelSpec,
        invalidator: Invalidator,
        client_id: str | None = None,
        push_url: str | None = None,
    ):
        super().__init__(client_id or f"sub-{spec.channel_name}", push_url or settings.PUSH_URL)
        self.spec = spec
        self.channel_name = spec.channel_name
        self.invalidator = invalidator
        self.ws_url = f"{self.push_url}?client_id={self.client_id}"
        self._ws = None

    def subscribe_frame(self) -> str:
        return json.dumps({
            "action": "subscribe",
            "channel": self.spec.channel_name,
            "table": self.spec.table,
            "filter": self.spec.filter,
            "event": self.spec.event,
        })

    async def disconnect(self) -> None:
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info(f"channel={self.channel_name} client_id={self.client_id} event=unsubscribe")

    async def connect(self) -> None:
        async with websockets.connect(self.ws_url, ping_interval=None) as ws:
            self._ws = ws
            await ws.send(self.subscribe_frame())
            await self._emit_status("ACTIVE")
            logger.info(f"channel={self.channel_name} client_id={self.client_id} event=subscribe table={self.spec.table}")

            # Iteration ends cleanly when the server closes the socket
            async for raw in ws:
                await self.handle_message(ws, raw)
            self._ws = None

    async def handle_message(self, ws, raw: str | bytes) -> None:
        try:
            message = PushMessage.model_validate_json(raw)
        except ValidationError:
            self.stats["ignored_frames"] += 1
            logger.debug(f"channel={self.channel_name} event=ignored reason=malformed")
            return

        if message.type == "ping":
            await ws.send(json.dumps({"type": "pong"}))
            return

        if message.type == "status":
            if message.status == "CHANNEL_ERROR":
                logger.error(f"channel={self.channel_name} client_id={self.client_id} event=error reason=channel_error")
            await self._emit_status(message.status or "UNKNOWN")
            return

        if (message.channel is not None and message.channel != self.channel_name) or not self.spec.matches(message):
            self.stats["ignored_frames"] += 1
            return

        logger.info(f"channel={self.channel_name} event={message.event_type} table={message.table}")
        for query_key in self.spec.query_keys_to_invalidate:
            self.invalidator.invalidate(query_key)
            self.stats["invalidations_issued"] += 1
        await self._emit_message(message)

    async def run(self, duration_s: float | None = None) -> None:
        if not self.spec.enabled:
            logger.debug(f"channel={self.channel_name} event=skip reason=disabled")
            await self._emit_status("DISABLED")
            return
        await super().run(duration_s)
