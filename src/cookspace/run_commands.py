"""Batch commands for cookspace CLI: `run` and `clone`."""

import json
import shlex
from pathlib import Path
from typing import List, Optional

import click
from rich.console import Console

from cookspace import config
from cookspace.clone import cleanup_partial_clones, parse_repo_spec, repos_to_tasks, successful_repos
from cookspace.display import RichBatchDisplay
from cookspace.error_logging import ErrorLogger
from cookspace.keys import TerminalKeySource
from cookspace.runner import BatchRunner
from cookspace.tasks import BatchOptions, Task, TaskOutcome, TaskResult

OUTCOME_MARKS = {
    TaskOutcome.COMPLETED: ('✓', 'green'),
    TaskOutcome.ERROR: ('✗', 'red'),
    TaskOutcome.ABORTED: ('X', 'red'),
    TaskOutcome.SKIPPED: ('>', 'yellow'),
    TaskOutcome.BACKGROUNDED: ('~', 'cyan'),
}


def make_runner(console: Optional[Console] = None) -> BatchRunner:
    """Runner wired to the terminal: live display and hotkeys."""
    return BatchRunner(
        key_source=TerminalKeySource(),
        display=RichBatchDisplay(console=console),
        error_logger=ErrorLogger(),
    )


def echo_results(results: List[TaskResult]) -> None:
    """Print one line per task plus any error messages."""
    for result in results:
        mark, color = OUTCOME_MARKS[result.outcome]
        click.secho(f"  {mark} {result.task.label} ({result.outcome.value})", fg=color)
        if result.error_message:
            for line in result.error_message.splitlines()[-5:]:
                click.echo(f"      {line}")

    backgrounded = [r for r in results if r.outcome is TaskOutcome.BACKGROUNDED]
    if backgrounded:
        click.echo(f"\n{len(backgrounded)} task(s) still running in the background. "
                   f"See `cookspace bg list`.")


def register_run_commands(cli):
    """Register batch commands with the CLI."""

    @cli.command()
    @click.argument('commands', nargs=-1, required=True)
    @click.option('--session', default=None, help='Session to file backgrounded processes under')
    @click.option('--cwd', type=click.Path(exists=True, file_okay=False), default=None,
                  help='Working directory for every command')
    @click.option('--lines', type=click.IntRange(min=1), default=None,
                  help='Trailing output lines to show (default: from config)')
    @click.option('--no-output', is_flag=True, help='Hide live command output')
    @click.option('--no-abort', is_flag=True, help="Disable the abort hotkey")
    @click.option('--no-skip', is_flag=True, help="Disable the skip hotkey")
    @click.option('--no-background', is_flag=True, help="Disable the background hotkey")
    @click.option('--json', 'output_json', is_flag=True,
                  help='Print results as JSON (live display goes to stderr)')
    @click.pass_context
    def run(ctx, commands, session, cwd, lines, no_output, no_abort, no_skip, no_background, output_json):
        """Run COMMANDS one after another with live output.

        Each COMMAND is a single shell-quoted string; it is split into
        arguments but never run through a shell.

        \b
        Hotkeys while running (see config.yaml to change them):
          a   Abort this and all remaining commands
          s   Skip the current command
          b   Leave the current command running in the background

        \b
        Examples:
            cookspace run "npm install" "npm run build"
            cookspace run --session demo --cwd ~/src/app "make deps"
            cookspace run --json "make test" > results.json
        """
        tasks = []
        for command in commands:
            argv = shlex.split(command)
            if not argv:
                raise click.BadParameter("empty command", param_hint='COMMANDS')
            tasks.append(Task(label=command, command=argv, working_directory=cwd))

        options = BatchOptions(
            show_output=not no_output and config.get_show_output(),
            output_lines=lines or config.get_output_lines(),
            allow_abort=not no_abort,
            allow_skip=not no_skip and len(tasks) > 1,
            allow_background=not no_background,
            session_name=session,
            title="Running commands",
        )
        if output_json:
            results = make_runner(console=Console(stderr=True)).run(tasks, options)
            click.echo(json.dumps({'results': [r.to_dict() for r in results]}, indent=2))
        else:
            results = make_runner().run(tasks, options)
            echo_results(results)

        if any(r.outcome is TaskOutcome.ERROR for r in results):
            ctx.exit(1)

    @cli.command()
    @click.argument('repos', nargs=-1, required=True)
    @click.option('--session', required=True, help='Session name (also the default checkout directory)')
    @click.option('--dest', type=click.Path(file_okay=False, path_type=Path), default=None,
                  help='Checkout directory (default: <sessions_dir>/<session>)')
    @click.pass_context
    def clone(ctx, repos, session, dest: Optional[Path]):
        """Clone REPOS (owner/name or owner/name:branch) into a session.

        Aborted and skipped clones are removed again; backgrounded clones
        keep running and show up in `cookspace bg list`.

        \b
        Examples:
            cookspace clone --session demo microsoft/playwright
            cookspace clone --session demo acme/api:develop acme/web
        """
        try:
            specs = [parse_repo_spec(repo) for repo in repos]
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint='REPOS')

        session_path = dest if dest is not None else config.get_session_path(session)
        session_path = Path(session_path).expanduser()
        session_path.mkdir(parents=True, exist_ok=True)

        pending = []
        for spec in specs:
            if (session_path / spec.dir).exists():
                click.secho(f"Skipping {spec.slug}: {session_path / spec.dir} already exists", fg='yellow')
            else:
                pending.append(spec)
        if not pending:
            click.echo("Nothing to clone.")
            return

        tasks = repos_to_tasks(pending, session_path)
        options = BatchOptions(
            show_output=config.get_show_output(),
            output_lines=config.get_output_lines(),
            allow_abort=True,
            allow_skip=len(tasks) > 1,
            allow_background=True,
            session_name=session,
            title=f"Cloning into {session}",
        )
        results = make_runner().run(tasks, options)

        removed = cleanup_partial_clones(pending, results, session_path)
        echo_results(results)
        for path in removed:
            click.echo(f"Removed partial checkout {path}")

        cloned = successful_repos(pending, results)
        click.echo(f"\n{len(cloned)} of {len(pending)} repositor{'y' if len(pending) == 1 else 'ies'} "
                   f"cloned into {session_path}")

        if any(r.outcome is TaskOutcome.ERROR for r in results):
            ctx.exit(1)
