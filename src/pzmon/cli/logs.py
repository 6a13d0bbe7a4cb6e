"""CLI command for querying stored log records."""

import json
from datetime import datetime

import click

from pzmon.models import LogFilters, LogLevel, LogSource, UnifiedLogEntry
from pzmon.runtime import Runtime


LEVEL_COLORS = {
    LogLevel.DEBUG: 'bright_black',
    LogLevel.INFO: None,
    LogLevel.WARN: 'yellow',
    LogLevel.ERROR: 'red',
}


def format_entry(entry: UnifiedLogEntry, colorize: bool = False) -> str:
    level = entry.level.value if entry.level else '-'
    text = f'{entry.time.isoformat()} [{level}] {entry.source.value}'
    if entry.server:
        text += f' {entry.server}'
    text += f' {entry.event_type}'
    if entry.username:
        text += f' {entry.username}'
    if entry.message:
        text += f': {entry.message}'
    color = LEVEL_COLORS.get(entry.level) if colorize and entry.level else None
    return click.style(text, fg=color) if color else text


@click.command('logs')
@click.option(
    '--source',
    type=click.Choice([s.value for s in LogSource]),
    default=None,
    help='Store to query (default: backup; with --since, all game sources)',
)
@click.option('--server', help='Exact server name')
@click.option('--event-type', help='Exact event type')
@click.option('--username', '-u', help='Case-insensitive substring of the username')
@click.option('--level', type=click.Choice([lvl.value for lvl in LogLevel]), help='Exact level')
@click.option('--start', type=click.DateTime(), help='Inclusive lower time bound')
@click.option('--end', type=click.DateTime(), help='Inclusive upper time bound')
@click.option('--since', type=click.DateTime(), help='Newest entries of --server strictly after this time')
@click.option('--limit', '-n', type=click.IntRange(1, 10000), default=100, show_default=True)
@click.option('--offset', type=click.IntRange(0), default=0)
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
@click.option('--no-color', is_flag=True, help='Disable colored output')
def logs_command(
    source: str | None,
    server: str | None,
    event_type: str | None,
    username: str | None,
    level: str | None,
    start: datetime | None,
    end: datetime | None,
    since: datetime | None,
    limit: int,
    offset: int,
    json_output: bool,
    no_color: bool,
):
    """Show stored log records, newest first.

    \b
    Examples:
        pzmon logs --source player --username bob
        pzmon logs --source server --level ERROR --server servertest
        pzmon logs --server servertest --since 2024-01-15T12:00:00
    """
    runtime = Runtime.from_env()
    try:
        if since is not None:
            if not server:
                raise click.UsageError('--since requires --server')
            sources = [LogSource(source)] if source else None
            entries = runtime.log_manager.get_unified_logs_since(server, sources, since, limit)
            total = len(entries)
        else:
            filters = LogFilters(
                source=LogSource(source) if source else None,
                server=server,
                event_type=event_type,
                username=username,
                level=LogLevel(level) if level else None,
                start=start,
                end=end,
                limit=limit,
                offset=offset,
            )
            page = runtime.log_manager.get_unified_logs(filters)
            entries, total = page.items, page.total
    finally:
        runtime.stop()

    if json_output:
        output = {'total': total, 'items': [entry.model_dump(mode='json') for entry in entries]}
        click.echo(json.dumps(output, indent=2))
        return

    if not entries:
        click.echo('No log entries found.')
        return
    colorize = not no_color
    for entry in entries:
        click.echo(format_entry(entry, colorize))
    if total > len(entries):
        click.echo(f'Showing {len(entries)} of {total} entries')
