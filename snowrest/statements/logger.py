import logging
import time
from typing import Any, Dict, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

custom_theme = Theme({
    "step": "bold cyan",
    "success": "bold green",
    "error": "bold red",
    "subtle": "dim white",
    "key": "bold blue",
    "value": "default"
})

logger = logging.getLogger("snowrest")

# longest detail value shown in a node before it is cut
MAX_VALUE_WIDTH = 60


class QueryFlowLogger:
    """
    Renders the lifecycle of one query (submit, poll, assemble) as a
    numbered top-down chain of panels, each stamped with the time elapsed
    since submission.

    One instance follows one query; nothing is printed unless enabled.
    """
    def __init__(self, enabled: bool = False, console: Optional[Console] = None):
        self.enabled = enabled
        self.console = console or Console(theme=custom_theme, stderr=True)
        self.steps = 0
        self._start_time = None

    def start(self, title: str, details: Optional[Dict[str, Any]] = None):
        self._start_time = time.monotonic()
        self.steps = 0
        self.node(title, details)

    def elapsed(self) -> str:
        if self._start_time is None:
            return ""
        return f"+{time.monotonic() - self._start_time:.3f}s"

    def node(self, title: str, details: Optional[Dict[str, Any]] = None, style: str = "step"):
        if not self.enabled:
            return

        if self.steps:
            self.console.print("   [subtle]│[/]\n   [subtle]▼[/]")
        self.steps += 1

        body = [Text(f"{self.steps}. {title}", style="bold")]
        if details:
            grid = Table.grid(padding=(0, 2))
            grid.add_column(style="key", justify="right")
            grid.add_column(style="value", justify="left", overflow="fold")
            for key, value in details.items():
                grid.add_row(f"{key}:", _shorten(value))
            body.append(grid)

        self.console.print(Panel(
            Group(*body),
            border_style=style,
            subtitle=self.elapsed(),
            subtitle_align="right",
            expand=False,
            padding=(0, 2)
        ))

    def fail(self, title: str, error: Exception):
        self.node(title, {"Error": type(error).__name__, "Detail": error}, style="error")

    def end(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.node(message, details=details, style="success")


def _shorten(value: Any) -> str:
    text = str(value)
    if len(text) > MAX_VALUE_WIDTH:
        return text[:MAX_VALUE_WIDTH - 3] + "..."
    return text
