"""
MODULE OVERVIEW:
The Rich terminal dashboard for a live sync session.

WHAT IS HAPPENING HERE:
The dashboard hooks into every subscription's callbacks and into a
`RecordingInvalidator` sitting in front of the cache, then redraws four times a
second: channel status on the left, recent invalidations on the right. When a
visibility report comes in you can watch the whole reconciliation set land in
the invalidation feed at once, whether or not any channel delivered a thing.
"""

import asyncio
from collections import deque
from datetime import datetime

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from realtime_sync.client.reconciliation import RecordingInvalidator
from realtime_sync.client.session import SyncSession
from realtime_sync.shared.events import VisibilityState
from realtime_sync.shared.query_keys import query_key_hash


class Visualizer:
    def __init__(self, session: SyncSession, recorder: RecordingInvalidator):
        self.session = session
        self.recorder = recorder
        self.timeline = deque(maxlen=8)

    def on_status_change(self, channel_name: str, status: str):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] {channel_name}: {status}")

    def on_visibility_change(self, state: VisibilityState):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] visibility: {state.value}")

    def generate_layout(self) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["left"].split_column(
            Layout(name="channels"),
            Layout(name="timeline", size=10)
        )

        monitor = self.session.monitor
        visibility = monitor.state.value if monitor is not None else "unavailable"
        color = "green" if visibility == "visible" else "yellow"
        layout["header"].update(Panel(
            f"[{color} bold]{self.session.role.value} {self.session.owner_identity} | Visibility: {visibility}[/]",
            style=color,
        ))

        table = Table(title="Channels", expand=True)
        table.add_column("Channel", style="cyan", no_wrap=True)
        table.add_column("Table", style="magenta")
        table.add_column("Status", style="green")
        table.add_column("Msgs", justify="right")
        table.add_column("Invalidations", justify="right")
        table.add_column("Reconnects", justify="right")
        for sub in self.session.subscriptions:
            table.add_row(
                sub.channel_name,
                sub.spec.table,
                sub.status,
                str(sub.messages_received),
                str(sub.invalidations_issued),
                str(sub.reconnect_count),
            )
        layout["channels"].update(Panel(table, title="Push"))

        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        feed = Table(expand=True)
        feed.add_column("Time", style="cyan", no_wrap=True)
        feed.add_column("Query key", style="green")
        for record in reversed(self.recorder.records[-15:]):
            feed.add_row(record.issued_at.strftime("%H:%M:%S"), query_key_hash(record.query_key))
        layout["right"].update(Panel(feed, title="Invalidations"))

        return layout

    async def run(self, duration_s: float, toggle_every_s: float | None = None):
        # Bridge the subscription hooks
        for sub in self.session.subscriptions:
            async def status_hook(s, name=sub.channel_name): self.on_status_change(name, s)
            async def message_hook(m): pass
            sub.set_callbacks(message_hook, status_hook)

        monitor = self.session.monitor
        if monitor is not None:
            monitor.add_listener(self.on_visibility_change)

        await self.session.start(duration_s)
        toggle_task = None
        if monitor is not None and toggle_every_s:
            toggle_task = asyncio.create_task(self._toggle_visibility(toggle_every_s))

        waiter = asyncio.create_task(self.session.wait())
        try:
            with Live(self.generate_layout(), refresh_per_second=4) as live:
                while not waiter.done():
                    live.update(self.generate_layout())
                    await asyncio.sleep(0.25)
        finally:
            if toggle_task is not None:
                toggle_task.cancel()
            await self.session.close()
            if monitor is not None:
                monitor.remove_listener(self.on_visibility_change)

    async def _toggle_visibility(self, every_s: float):
        monitor = self.session.monitor
        while True:
            await asyncio.sleep(every_s)
            next_state = (
                VisibilityState.HIDDEN
                if monitor.state is VisibilityState.VISIBLE
                else VisibilityState.VISIBLE
            )
            monitor.report(next_state)
