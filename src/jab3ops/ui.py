from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn

_T = TypeVar("_T")

console = Console()
err_console = Console(stderr=True)


def spinner_enabled() -> bool:
    return os.getenv("JAB3OPS_SPINNER", "1") == "1" and console.is_terminal


def configure_logging(verbose: bool = False) -> None:
    """Route jab3ops loggers through rich on stderr."""
    level = logging.DEBUG if verbose else logging.INFO
    handler = RichHandler(console=err_console, show_path=False, markup=False)
    root = logging.getLogger("jab3ops")
    root.handlers[:] = [handler]
    root.setLevel(level)
    root.propagate = False


@dataclass(frozen=True)
class Spinner:
    message: str

    def run(self, fn: Callable[[], _T]) -> _T:
        if not spinner_enabled():
            return fn()

        with Progress(
            SpinnerColumn(style="bright_magenta"),
            TextColumn("[bold bright_cyan]{task.description}[/bold bright_cyan]"),
            transient=True,
            console=console,
        ) as prog:
            task_id = prog.add_task(self.message, total=None)
            try:
                return fn()
            finally:
                prog.update(task_id, completed=1)


def status_mark(passed: bool) -> str:
    return "[green]✓[/green]" if passed else "[red]✗[/red]"
