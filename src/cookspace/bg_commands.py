"""Background process commands for cookspace CLI."""

import json
import sys
from typing import Optional

import click

from cookspace.background_warning import QuitWarningChoice, check_background_work
from cookspace.error_logging import ErrorLogger, ErrorType
from cookspace.process_registry import BackgroundProcessRegistry


def _registry_locked(command: str, error: TimeoutError) -> click.ClickException:
    ErrorLogger().log_error(command, "registry", ErrorType.REGISTRY_LOCKED, str(error))
    return click.ClickException(f"{error}. Another cookspace command may be holding the registry; try again.")


def register_bg_commands(cli):
    """Register background-process commands with the CLI."""

    @cli.group()
    def bg():
        """Inspect and stop commands that were sent to the background.

        \b
        Examples:
            cookspace bg list                 # Everything registered
            cookspace bg list --session demo  # One session
            cookspace bg kill --session demo  # Stop a session's clones
            cookspace bg prune                # Forget exited processes
        """
        pass

    @bg.command(name='list')
    @click.option('--session', default=None, help='Only show this session')
    @click.option('--json', 'output_json', is_flag=True, help='Output as JSON')
    def list_cmd(session: Optional[str], output_json: bool):
        """List registered background processes."""
        entries = BackgroundProcessRegistry().list(session)

        if output_json:
            click.echo(json.dumps({'processes': [e.to_dict() for e in entries]}, indent=2))
            return

        if not entries:
            click.echo("No background processes registered.")
            return

        for entry in entries:
            click.echo(f"{entry.pid:>7}  {entry.session_name:15}  {entry.description}")
            click.echo(f"{'':>7}  {'':15}  {entry.command}")
            if entry.output_path:
                click.echo(f"{'':>7}  {'':15}  output: {entry.output_path}")

    @bg.command()
    @click.option('--session', default=None, help='Only kill this session\'s processes')
    @click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
    def kill(session: Optional[str], yes: bool):
        """Terminate registered background processes and forget them."""
        registry = BackgroundProcessRegistry()
        entries = registry.list(session)
        if not entries:
            click.echo("No background processes registered.")
            return

        if not yes:
            click.confirm(f"Kill {len(entries)} background process(es)?", abort=True)

        try:
            killed = registry.kill_all(entries)
        except TimeoutError as e:
            raise _registry_locked("bg kill", e)
        click.echo(f"Killed {killed} of {len(entries)} process(es); registry entries removed.")

    @bg.command()
    def prune():
        """Forget entries whose process has already exited."""
        try:
            removed = BackgroundProcessRegistry().prune()
        except TimeoutError as e:
            raise _registry_locked("bg prune", e)
        click.echo(f"Removed {removed} stale entr{'y' if removed == 1 else 'ies'}.")

    @bg.command()
    @click.argument('session')
    def check(session: str):
        """Warn about SESSION's background work before quitting or resuming.

        Exits 1 if the user cancels, so wrapper scripts can stop there.
        """
        choice = check_background_work(BackgroundProcessRegistry(), session)
        if choice is QuitWarningChoice.CANCEL:
            sys.exit(1)
