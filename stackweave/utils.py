"""Shared utility functions for Stackweave.

Provides async command execution, JSON loading, duration formatting and the
Rich-based console helpers used by the engine to report progress.
"""

from __future__ import annotations

import asyncio
import json
import os
import signal
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


async def run_command(
    cmd: str | list[str],
    cwd: str | Path | None = None,
    timeout: float = 120,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run *cmd* in a child process and capture its output.

    A string is handed to the shell (blueprint commands such as
    ``npx prisma generate && npm run lint`` rely on that); a list is executed
    directly.

    Args:
        cmd: Shell command string or argument list.
        cwd: Working directory of the child process.
        timeout: Seconds to wait before the process is killed.
        env: Extra variables layered over ``os.environ``.

    Returns:
        ``(returncode, stdout, stderr)`` with both streams decoded and
        stripped.  A killed process reports ``-1`` and says so on stderr.
    """
    options: dict[str, Any] = {
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
        "cwd": str(cwd) if cwd else None,
        "env": {**os.environ, **env} if env else None,
        "start_new_session": hasattr(os, "killpg"),
    }
    if isinstance(cmd, str):
        process = await asyncio.create_subprocess_shell(cmd, **options)
        display = cmd
    else:
        process = await asyncio.create_subprocess_exec(*cmd, **options)
        display = " ".join(cmd)

    try:
        out, err = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        return -1, "", f"Command timed out after {timeout}s: {display}"
    except asyncio.CancelledError:
        # An enclosing timeout or cancel must not leave the child running.
        await _terminate(process)
        raise

    return process.returncode or 0, _decode(out), _decode(err)


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Kill *process* and everything it spawned, then reap it."""
    if process.returncode is None:
        try:
            if hasattr(os, "killpg"):
                os.killpg(os.getpgid(process.pid), signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


def _decode(stream: bytes | None) -> str:
    return (stream or b"").decode("utf-8", errors="replace").strip()


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file that must contain an object.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the top-level value is not an object.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}, got {type(data).__name__}")
    return data


def dump_json(data: Any) -> str:
    """Serialise *data* the way manifests are written: 2-space indent, trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0.0s"

    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.1f}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_run_header(project_name: str, module_count: int) -> None:
    """Print the banner shown once at the start of a run."""
    console.print()
    console.print(
        Rule(
            f"[bold bright_cyan] Stackweave: {project_name} ({module_count} modules) [/bold bright_cyan]",
            style="bright_cyan",
        )
    )


def print_module_header(index: int, total: int, module_id: str) -> None:
    """Print a rule announcing the module about to execute."""
    console.print()
    console.print(
        Rule(f"[bold bright_cyan] [{index}/{total}] {module_id} [/bold bright_cyan]", style="cyan")
    )


def print_summary_table(rows: list[tuple[str, ...]], columns: list[str], title: str = "Summary") -> None:
    """Print a table with the given column headers and rows."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for i, column in enumerate(columns):
        table.add_column(column, style="dim" if i == 0 else None, no_wrap=i == 0)
    for row in rows:
        table.add_row(*(str(cell) for cell in row))
    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
