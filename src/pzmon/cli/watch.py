"""CLI command for continuous ingestion."""

import click

from pzmon.runtime import Runtime


@click.command('watch')
@click.option(
    '--server',
    '-s',
    'servers',
    multiple=True,
    help="Server name, 'all' or 'running' (repeatable, default: all configured servers)",
)
@click.option('--no-initial-ingest', is_flag=True, help='Skip the catch-up sweep before watching')
@click.option('--monitor', is_flag=True, help='Also run the host monitor')
@click.option('--duration', type=float, default=None, help='Stop after N seconds (default: run until signalled)')
def watch_command(servers: tuple[str, ...], no_initial_ingest: bool, monitor: bool, duration: float | None):
    """Watch server and backup logs, ingesting new lines as they are written.

    Runs until SIGINT/SIGTERM; every watch and timer is stopped before exit.

    \b
    Examples:
        pzmon watch                      # every configured server
        pzmon watch -s running --monitor # servers with a live process, plus host sampling
    """
    runtime = Runtime.from_env()
    runtime.install_signal_handlers()
    selection = list(servers) or None
    try:
        if not no_initial_ingest:
            summary = runtime.watcher.ingest_all_logs(selection)
            click.echo(f'Caught up: {summary.total_entries} entries from {summary.files} files')
        count = runtime.watcher.start_watching_all(selection)
        click.echo(f'Watching {count} log files (Ctrl+C to stop)')
        if monitor and not runtime.monitor.start():
            click.echo('System monitoring is disabled in the stored config', err=True)
        runtime.wait(duration)
    finally:
        runtime.stop()
