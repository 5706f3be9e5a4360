"""
MODULE OVERVIEW:
Terminal viewer for the comment stream.

WHAT IS HAPPENING HERE:
The client loop runs in the background and every callback prints one line
through Rich: the greeting, the history replay (oldest at the top), each live
comment and, dimmed, the keep-alive pings.
"""
from datetime import datetime

from rich.console import Console
from rich.table import Table

from comment_stream.client.sse_client import CommentStreamClient, StreamEvent
from comment_stream.shared.events import EVENT_COMMENT, EVENT_COMMENT_HISTORY, EVENT_CONNECTED, EVENT_PING


def format_comment(comment: dict) -> str:
    return f"[bold cyan]{comment.get('username', '?')}[/]: {comment.get('message', '')}"


class Viewer:
    def __init__(self, client: CommentStreamClient, console: Console | None = None, show_pings: bool = False):
        self.client = client
        self.console = console or Console()
        self.show_pings = show_pings
        self.status = "INITIALIZING"

    async def on_status_change(self, status: str):
        self.status = status
        ts = datetime.now().strftime("%H:%M:%S")
        self.console.print(f"[dim][{ts}] State: {status}[/]")

    async def on_event(self, event: StreamEvent):
        if event.event == EVENT_CONNECTED:
            self.console.print(f"[green]{event.data}[/]")
        elif event.event == EVENT_COMMENT_HISTORY:
            self.console.print(self.history_table(event.data))
        elif event.event == EVENT_COMMENT:
            self.console.print(format_comment(event.data))
        elif event.event == EVENT_PING and self.show_pings:
            self.console.print(f"[dim]ping active={event.data.get('activeConnections')}[/]")

    def history_table(self, comments: list) -> Table:
        table = Table(title="Recent comments")
        table.add_column("Time", style="dim")
        table.add_column("User", style="cyan")
        table.add_column("Message")
        # History arrives newest first
        for comment in reversed(comments):
            table.add_row(str(comment.get("createdAt", ""))[11:19], comment.get("username", ""), comment.get("message", ""))
        return table

    def summary(self) -> Table:
        table = Table(title=f"Client {self.client.client_id}")
        table.add_column("Metric")
        table.add_column("Value")
        for key, value in self.client.stats.items():
            table.add_row(key, str(value))
        return table

    async def run(self, duration_s: float):
        self.client.set_callbacks(self.on_event, self.on_status_change)
        await self.client.run(duration_s)
        self.console.print(self.summary())
