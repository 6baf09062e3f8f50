from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from claude_sync.errors import enrich_error


# Singleton Console instance
def get_console() -> Console:
    if not hasattr(get_console, "_console"):
        get_console._console = Console()
    return get_console._console


def get_error_console() -> Console:
    if not hasattr(get_error_console, "_console"):
        get_error_console._console = Console(stderr=True)
    return get_error_console._console


def print_panel(content: str, title: str | None = None, style: str = "bold blue", border_style: str | None = None):
    """Print a styled panel with optional title using Rich library.

    Args:
        content (str): The text content to display in the panel.
        title (str | None, optional): Title of the panel. Defaults to None.
        style (str, optional): Rich styling for the panel's content. Defaults to "bold blue".
        border_style (str | None, optional): Styling for the panel's border. Defaults to None.
    """
    console = get_console()
    style = style or "bold blue"
    border_style = border_style or style
    panel = Panel(content, title=title, style=style, border_style=border_style)
    console.print(panel)


def print_table(headers: list[str], rows: list[list[Any]], title: str | None = None):
    """Print a formatted table using Rich library.

    Args:
        headers (list[str]): Column headers for the table.
        rows (list[list[Any]]): Data rows to display in the table.
        title (str | None, optional): Title of the table. Defaults to None.
    """
    console = get_console()
    table = Table(title=title)
    for header in headers:
        table.add_column(header)
    for row in rows:
        table.add_row(*[str(cell) for cell in row])
    console.print(table)


def print_error(error: BaseException | str, prefix: str = "Error") -> None:
    """Print an error with its recovery suggestion to stderr.

    Args:
        error: The exception or message to report
        prefix: Label printed before the message
    """
    console = get_error_console()
    message, suggestion = enrich_error(error)
    console.print(f"\n✗ {prefix}: {message}", style="red", markup=False, highlight=False)
    if suggestion:
        console.print("")
        console.print("  Suggestion:", style="yellow")
        for line in suggestion.split("\n"):
            console.print(f"  {line}", style="bright_black", markup=False, highlight=False)
    console.print("")
