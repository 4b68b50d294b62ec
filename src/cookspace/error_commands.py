"""Error and log reporting commands for cookspace CLI."""

import json
import click
from datetime import datetime
from typing import Optional

from cookspace.error_logging import ErrorLogger
from cookspace.logging import CookLogger


def register_error_commands(cli):
    """Register error and log commands with the CLI."""

    @cli.command()
    @click.option('--days', default=7, type=int, help='Number of days to include in stats (default: 7)')
    @click.option('--type', 'error_type', default=None, help='Filter by error type (e.g., TASK_FAILED)')
    @click.option('--json', 'output_json', is_flag=True, help='Output as JSON for programmatic access')
    @click.option('--limit', default=10, type=int, help='Number of recent errors to show (default: 10)')
    def errors(days: int, error_type: Optional[str], output_json: bool, limit: int):
        """Show error statistics and recent errors.

        Reads ~/.cookspace/errors.jsonl: failed commands, spawn failures and
        registry write problems.

        \b
        Examples:
            cookspace errors                    # Last 7 days
            cookspace errors --days 30          # Last 30 days
            cookspace errors --type SPAWN_FAILED
            cookspace errors --json
        """
        logger = ErrorLogger()
        stats = logger.get_error_stats(days=days)
        recent = logger.get_recent_errors(limit=limit)

        if error_type:
            recent = [e for e in recent if e.get('error_type') == error_type]
            count = stats['by_type'].get(error_type, 0)
            stats = {
                'total': count,
                'by_type': {error_type: count} if count else {},
                'by_component': {},
            }

        if output_json:
            click.echo(json.dumps({'stats': stats, 'recent_errors': recent, 'days': days}, indent=2))
        else:
            _output_human(stats, recent, days, error_type)

    @cli.command()
    @click.option('--limit', default=20, type=int, help='Number of entries to show (default: 20)')
    @click.option('--component', default=None, help='Only this component (batch, task, registry)')
    @click.option('--level', default=None, help='Only this level (INFO, WARNING, ERROR)')
    def logs(limit: int, component: Optional[str], level: Optional[str]):
        """Show recent event log entries, newest first."""
        entries = CookLogger().read_logs(
            limit=limit,
            component_filter=component,
            level_filter=level.upper() if level else None,
        )
        if not entries:
            click.echo("No log entries.")
            return
        for entry in entries:
            click.echo(f"{entry['timestamp']}  {entry['level']:7} [{entry['component']}] {entry['message']}")


def _output_human(stats: dict, recent: list, days: int, error_type: Optional[str]) -> None:
    total = stats['total']

    if total == 0:
        if error_type:
            click.echo(f"No errors of type '{error_type}' in the last {days} days.")
        else:
            click.echo(f"No errors in the last {days} days.")
        return

    click.echo(f"Error summary (last {days} days):")
    click.echo()

    by_type = stats.get('by_type', {})
    if by_type:
        click.echo("By type:")
        for name, count in sorted(by_type.items(), key=lambda x: x[1], reverse=True):
            pct = count / total * 100
            click.echo(f"  {name:25} {count:4} ({pct:.0f}%)")
        click.echo()

    by_component = stats.get('by_component', {})
    if by_component:
        click.echo("By component:")
        for name, count in sorted(by_component.items(), key=lambda x: x[1], reverse=True):
            pct = count / total * 100
            click.echo(f"  {name:25} {count:4} ({pct:.0f}%)")
        click.echo()

    if recent:
        click.echo("Recent errors:")
        for error in recent:
            ts_str = error.get('timestamp', '')
            try:
                ts_formatted = datetime.fromisoformat(ts_str.rstrip('Z')).strftime('%Y-%m-%d %H:%M')
            except (ValueError, AttributeError):
                ts_formatted = ts_str[:16] if ts_str else 'unknown'

            message = error.get('message', '').replace('\n', ' ')
            if len(message) > 50:
                message = message[:47] + '...'

            click.echo(f"  {ts_formatted}  {error.get('error_type', 'UNKNOWN'):22}  {message}")
