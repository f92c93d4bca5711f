"""
MODULE OVERVIEW:
The Rich Terminal Dashboard.

WHAT IS HAPPENING HERE:
We use Rich to render the ConnectionManager's read surface: status, filter key, counters,
the pause flag and the buffered events. Event payloads are shown raw and truncated; the
dashboard does not interpret them.
"""

import asyncio
from collections import deque
from datetime import datetime

from rich.layout import Layout
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from filter_stream.client.connection_manager import ConnectionManager
from filter_stream.shared.models import ConnectionState, StreamSnapshot

STATUS_STYLE = {
    ConnectionState.CONNECTED: ("green", "Connected"),
    ConnectionState.CONNECTING: ("yellow", "Connecting..."),
    ConnectionState.RECONNECTING: ("yellow", "Reconnecting..."),
    ConnectionState.DISCONNECTED: ("grey50", "Disconnected"),
    ConnectionState.ERROR: ("red", "Connection Error"),
}


def truncate(value, limit: int = 60) -> str:
    text = str(value)
    return text[:limit] + "..." if len(text) > limit else text


class Visualizer:
    def __init__(self, manager: ConnectionManager, max_rows: int = 20):
        self.manager = manager
        self.max_rows = max_rows
        self.timeline = deque(maxlen=6)
        # (event, receive time) pairs, newest first
        self.received_at = deque(maxlen=manager.buffer.max_size)
        manager.set_callbacks(self.on_event, self.on_status_change)

    def on_status_change(self, status: ConnectionState):
        ts = datetime.now().strftime("%H:%M:%S")
        self.timeline.appendleft(f"[{ts}] State: {status.value}")

    def on_event(self, event):
        self.received_at.appendleft((event, datetime.now().strftime("%H:%M:%S")))

    def received_time(self, event) -> str:
        for seen, ts in self.received_at:
            if seen is event:
                return ts
        return ""

    def generate_layout(self, snapshot: StreamSnapshot) -> Layout:
        layout = Layout()
        layout.split_column(
            Layout(name="header", size=3),
            Layout(name="main")
        )
        layout["main"].split_row(
            Layout(name="left", ratio=2),
            Layout(name="right", ratio=1)
        )
        layout["right"].split_column(
            Layout(name="stats"),
            Layout(name="timeline")
        )

        # Header
        color, label = STATUS_STYLE[snapshot.connection_status]
        key = snapshot.filter_key or "-"
        paused = " | [bold]PAUSED[/]" if snapshot.is_paused else ""
        layout["header"].update(Panel(f"[{color} bold]Status: {label} | Filter Key: {key}[/]{paused}", style=color))

        # Feed Table
        table = Table(title="Event Stream", expand=True)
        table.add_column("Received", justify="left", style="cyan", no_wrap=True)
        table.add_column("Type", style="magenta")
        table.add_column("Data", style="green")

        for event in snapshot.events[:self.max_rows]:
            table.add_row(self.received_time(event), event.type, truncate(event.data))

        layout["left"].update(Panel(table, title="Feed"))

        # Stats
        stats_text = (
            f"Events: {snapshot.total_count}\n"
            f"Buffered: {len(snapshot.events)}/{self.manager.buffer.max_size}\n"
            f"Reconnect attempt: {snapshot.attempt}/{self.manager.policy.max_attempts}\n"
            f"Paused: {'yes' if snapshot.is_paused else 'no'}"
        )
        layout["stats"].update(Panel(stats_text, title="Connection Stats"))

        # Timeline
        layout["timeline"].update(Panel("\n".join(self.timeline), title="Timeline"))

        return layout

    async def run(self, duration_s: float):
        loop = asyncio.get_running_loop()
        deadline = loop.time() + duration_s

        with Live(self.generate_layout(self.manager.snapshot()), refresh_per_second=4) as live:
            while loop.time() < deadline:
                live.update(self.generate_layout(self.manager.snapshot()))
                await asyncio.sleep(0.25)
