"""
Rich Output Utilities
=====================

Terminal output for loopwarden built on the Rich library.
Every operator-facing message (pause banners, escalation notices, capability
warnings, CLI tables) goes through the themed console defined here.
"""

from __future__ import annotations

import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class WardenColors:
    """loopwarden palette (hex for truecolor terminals)."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    amber: str = "#F59E0B"     # accent
    teal: str = "#22D3EE"      # info accent
    steel: str = "#94A3B8"     # secondary accent
    ok: str = "#22C55E"        # healthy
    warn: str = "#FBBF24"      # warning
    err: str = "#EF4444"       # critical / aborted
    pause: str = "#A78BFA"     # paused


def warden_theme(colors: WardenColors = WardenColors()) -> Theme:
    """
    Rich Theme for loopwarden.

    Style names are semantic:
      console.print("...", style="lw.ok")
    """
    return Theme(
        {
            "lw.banner": f"bold {colors.teal}",
            "lw.border": f"{colors.teal}",
            "lw.accent": f"bold {colors.amber}",
            "lw.muted": f"{colors.dim}",
            "lw.text": f"{colors.ink}",

            "lw.ok": f"bold {colors.ok}",
            "lw.warn": f"bold {colors.warn}",
            "lw.err": f"bold {colors.err}",
            "lw.info": f"{colors.teal}",

            "lw.key": f"{colors.steel}",
            "lw.value": f"{colors.ink}",
            "lw.number": f"bold {colors.amber}",
            "lw.path": f"{colors.teal}",

            "lw.table.header": f"bold {colors.teal}",

            # Overseer health status
            "lw.status.healthy": f"bold {colors.ok}",
            "lw.status.warning": f"bold {colors.warn}",
            "lw.status.critical": f"bold {colors.err}",
            "lw.status.paused": f"bold {colors.pause}",
            "lw.status.aborted": f"bold reverse {colors.err}",

            # Detection severity
            "lw.severity.low": f"{colors.dim}",
            "lw.severity.medium": f"{colors.warn}",
            "lw.severity.high": f"bold {colors.amber}",
            "lw.severity.critical": f"bold {colors.err}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can handle the Unicode icons below."""
    if os.name == "nt":
        try:
            encoding = sys.stdout.encoding or "utf-8"
            "✓✗•".encode(encoding)
            return True
        except (UnicodeEncodeError, LookupError, AttributeError):
            return False
    return True


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠️",
    "info": "ℹ",
    "pause": "⏸",
    "stop": "⛔",
    "bullet": "•",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "pause": "[||]",
    "stop": "[STOP]",
    "bullet": "-",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

# Single source of truth for terminal output
console = Console(theme=warden_theme(), stderr=False)

_QUIET = False


def set_quiet(quiet: bool) -> None:
    """Suppress non-error console output (used by tests and embedding drivers)."""
    global _QUIET
    _QUIET = quiet


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    if not _QUIET:
        console.print(f"[lw.ok]{icon('check')} {escape(message)}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[lw.err]{icon('cross')} {escape(message)}[/]")


def print_warning(message: str) -> None:
    """Print a warning message."""
    if not _QUIET:
        console.print(f"[lw.warn]{icon('warning')} {escape(message)}[/]")


def print_info(message: str) -> None:
    """Print an info message."""
    if not _QUIET:
        console.print(f"[lw.info]{icon('info')} {escape(message)}[/]")


def print_muted(message: str) -> None:
    """Print muted/secondary text."""
    if not _QUIET:
        console.print(f"[lw.muted]{escape(message)}[/]")


# =============================================================================
# Headers & Data Display
# =============================================================================

def print_header(title: str, style: str = "lw.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def print_key_value_table(data: Dict[str, Any], *, title: Optional[str] = None) -> None:
    """Print key-value pairs as a borderless table, optionally in a panel."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="lw.key")
    table.add_column("Value", style="lw.value")

    for key, value in data.items():
        table.add_row(key, escape(str(value)))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style="lw.border"))
    else:
        console.print(table)


def print_list(items: Sequence[str], *, numbered: bool = False) -> None:
    """Print a bulleted or numbered list."""
    for i, item in enumerate(items, 1):
        marker = f"{i}." if numbered else icon("bullet")
        console.print(f"  [lw.accent]{marker}[/] {escape(item)}")


def print_markdown(text: str) -> None:
    """Render a markdown document (reports, knowledge summaries)."""
    console.print(Markdown(text))


def status_markup(status: str) -> str:
    """Wrap a health status value in its theme style."""
    return f"[lw.status.{status}]{status}[/]"


def severity_markup(severity: str) -> str:
    """Wrap a detection severity value in its theme style."""
    return f"[lw.severity.{severity}]{severity}[/]"


# =============================================================================
# Tables & Panels
# =============================================================================

def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
) -> Table:
    """Create a Rich Table styled with the loopwarden theme."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style="lw.table.header",
        border_style="lw.border",
        title_style="lw.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


def print_table(table: Table) -> None:
    """Print a Rich Table to the console."""
    console.print(table)


def print_error_panel(message: str, title: str = "Error") -> None:
    """Print an error panel with red border."""
    console.print(Panel(
        f"[lw.err]{icon('cross')} {escape(message)}[/]",
        title=f"[lw.err]{title}[/]",
        border_style="lw.err",
        padding=(1, 2),
    ))


# =============================================================================
# Overseer Banners
# =============================================================================

def print_loop_paused(reason: str) -> None:
    """Banner shown when an intervention pauses the loop."""
    if _QUIET:
        return
    console.print()
    console.print(Panel(
        f"[lw.status.paused]{icon('pause')} OVERSEER: LOOP PAUSED[/]\n\n"
        f"[lw.muted]Reason:[/] {escape(reason)}\n"
        f"[lw.muted]Resume with:[/] [lw.accent]python -m loopwarden resume <loop-id> \"<reason>\"[/]",
        border_style="lw.status.paused",
        padding=(1, 2),
    ))


def print_loop_aborted(reason: str) -> None:
    """Banner shown when an intervention requests an abort."""
    console.print()
    console.print(Panel(
        f"[lw.err]{icon('stop')} OVERSEER: LOOP ABORTED[/]\n\n"
        f"[lw.muted]Reason:[/] {escape(reason)}",
        border_style="lw.err",
        padding=(1, 2),
    ))


# =============================================================================
# Spinners
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "lw.accent") -> Iterator[Status]:
    """
    Show a spinner during slow operations.

    Usage:
        with spinner("Checking provider binaries..."):
            available = adapter.is_available()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Route Python logging through Rich.

    Usage:
        setup_rich_logging(logging.DEBUG)
        logging.getLogger("loopwarden.overseer").debug("health check done")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=True,
            rich_tracebacks=True,
        )],
    )
