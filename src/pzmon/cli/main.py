"""Main CLI entry point with command groups"""

import click

from pzmon.__version__ import __version__
from pzmon.cli.ingest import ingest_command
from pzmon.cli.logs import logs_command
from pzmon.cli.monitor import monitor_group
from pzmon.cli.serve import serve_command
from pzmon.cli.watch import watch_command
from pzmon.utils import setup_logging


@click.group(invoke_without_command=True)
@click.version_option(version=__version__, prog_name='PZMon')
@click.option('--log-level', default=None, help='Logging level (default: PZMON_LOG_LEVEL or INFO)')
@click.pass_context
def cli(ctx, log_level: str | None):
    """
    PZMon - Project Zomboid log ingestion and host monitoring.

    \b
    Commands:
      pzmon ingest              Parse new log lines of every known log file once
      pzmon watch               Ingest continuously as log files change
      pzmon logs                Query stored log records
      pzmon monitor ...         Host sampling, spikes and monitoring config
      pzmon serve               Start the web API server

    \b
    Examples:
      pzmon ingest --server servertest
      pzmon watch --server running
      pzmon logs --source player --username bob
      pzmon monitor config set cpu_spike_threshold_percent=30
      pzmon serve --port 8000 --watch --monitor
    """
    setup_logging(log_level)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


cli.add_command(ingest_command, name='ingest')
cli.add_command(watch_command, name='watch')
cli.add_command(logs_command, name='logs')
cli.add_command(monitor_group, name='monitor')
cli.add_command(serve_command, name='serve')


def main():
    """Entry point for the CLI"""
    cli()


if __name__ == '__main__':
    main()
