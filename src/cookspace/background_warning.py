"""Warn before leaving (or re-entering) a session that still has detached work."""
from enum import Enum
from typing import List, Optional

import click

from cookspace.process_registry import BackgroundProcessEntry, BackgroundProcessRegistry


class QuitWarningChoice(Enum):
    CONTINUE = "continue"
    KILL = "kill"
    CANCEL = "cancel"


def format_warning(entries: List[BackgroundProcessEntry]) -> List[str]:
    count = len(entries)
    lines = [f"{count} background process{'es' if count > 1 else ''} still running:"]
    for entry in entries:
        lines.append(f"  • {entry.description} (pid {entry.pid})")
    return lines


def check_background_work(
    registry: BackgroundProcessRegistry,
    session_name: Optional[str] = None,
    prompt: bool = True,
) -> QuitWarningChoice:
    """
    Ask what to do about a session's background processes.

    Registry entries are treated as probably-running; "kill" confirms by
    actually terminating them. With nothing registered, returns CONTINUE
    without asking.
    """
    entries = registry.list(session_name)
    if not entries:
        return QuitWarningChoice.CONTINUE

    header, *details = format_warning(entries)
    click.secho(header, fg='yellow')
    for line in details:
        click.echo(line)

    if not prompt:
        return QuitWarningChoice.CONTINUE

    answer = click.prompt(
        "What would you like to do? (continue = keep running, kill = kill all, cancel)",
        type=click.Choice([c.value for c in QuitWarningChoice]),
        default=QuitWarningChoice.CONTINUE.value,
    )
    choice = QuitWarningChoice(answer)

    if choice is QuitWarningChoice.KILL:
        killed = registry.kill_all(entries)
        click.echo(f"Killed {killed} process(es).")

    return choice
