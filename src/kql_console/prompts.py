"""
Console input/output for the interactive menus.

Wraps a rich Console and a single input stream. Every prompt, numbered
menu and table goes through one ConsoleIO so flows can be driven from a
scripted stream in tests.
"""

from typing import Callable, Sequence, TextIO, TypeVar

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt
from rich.text import Text

from kql_console.selection import NothingFoundError, parse_selection, parse_single

T = TypeVar("T")


class _LineStream:
    """Input stream whose readline raises EOFError once exhausted."""

    def __init__(self, stream: TextIO):
        self._stream = stream

    def readline(self) -> str:
        line = self._stream.readline()
        if not line:
            raise EOFError
        return line


class ConsoleIO:
    """
    Operator-facing prompts and output.

    Args:
        console: rich Console for output. Defaults to a new Console.
        stream: Input stream. None reads from stdin.
    """

    def __init__(self, console: Console | None = None, stream: TextIO | None = None):
        self.console = console or Console()
        self.stream = _LineStream(stream) if stream is not None else None

    def ask(self, prompt: str, default: str = "") -> str:
        """
        Ask for free text. An empty answer returns ``default``.

        Raises:
            EOFError: If the input stream is exhausted.
        """
        answer = Prompt.ask(
            Text(prompt),
            console=self.console,
            default=default,
            show_default=bool(default),
            stream=self.stream,
        )
        return answer.strip() or default

    def show(self, message: str) -> None:
        self.console.print(message, highlight=False, markup=False)

    def show_menu(
        self,
        title: str,
        items: Sequence[T],
        label: Callable[[T], str] = str,
    ) -> None:
        """Print items as a 1-based numbered list."""
        self.console.print(f"\n[bold]{escape(title)}[/bold]")
        width = len(str(len(items)))
        for number, item in enumerate(items, start=1):
            self.console.print(f"  {number:>{width}}. {label(item)}", highlight=False, markup=False)

    def choose_many(
        self,
        title: str,
        items: Sequence[T],
        label: Callable[[T], str] = str,
        prompt: str = "Select (comma-separated)",
    ) -> list[T]:
        """
        Present a numbered menu and return the chosen items in typed order.

        Raises:
            NothingFoundError: If ``items`` is empty.
            SelectionError: If the answer selects nothing valid.
        """
        if not items:
            raise NothingFoundError(f"Nothing found: {title}")
        self.show_menu(title, items, label)
        return parse_selection(self.ask(prompt), items)

    def choose_one(
        self,
        title: str,
        items: Sequence[T],
        label: Callable[[T], str] = str,
        prompt: str = "Select",
    ) -> T:
        """Present a numbered menu and return one item (first valid index)."""
        if not items:
            raise NothingFoundError(f"Nothing found: {title}")
        self.show_menu(title, items, label)
        return parse_single(self.ask(prompt), items)
