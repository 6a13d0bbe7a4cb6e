"""CLI command for one-shot log ingestion."""

import sys

import click

from pzmon.models import IngestSummary, ParserType
from pzmon.runtime import Runtime


@click.command('ingest')
@click.option(
    '--server',
    '-s',
    'servers',
    multiple=True,
    help="Server name, 'all' or 'running' (repeatable, default: all configured servers)",
)
@click.option('--file', 'file_path', type=click.Path(dir_okay=False), help='Ingest a single file instead')
@click.option(
    '--parser',
    'parser_name',
    type=click.Choice([p.value for p in ParserType]),
    help='Log dialect of --file',
)
@click.option('--server-name', help='Server the --file belongs to')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
def ingest_command(
    servers: tuple[str, ...],
    file_path: str | None,
    parser_name: str | None,
    server_name: str | None,
    json_output: bool,
):
    """Parse and store the log lines appended since the last run.

    \b
    Examples:
        pzmon ingest                                  # every configured server plus backup logs
        pzmon ingest -s servertest -s pvp             # selected servers
        pzmon ingest --file chat.txt --parser chat --server-name servertest
    """
    if file_path and not parser_name:
        click.echo('Error: --file requires --parser', err=True)
        sys.exit(2)

    runtime = Runtime.from_env()
    try:
        if file_path:
            result = runtime.log_manager.parse_and_ingest_file(
                file_path, ParserType(parser_name), server_name, final=True
            )
            summary = IngestSummary(files=1, total_entries=result.entries_added, errors=result.errors)
        else:
            summary = runtime.watcher.ingest_all_logs(list(servers) or None)
    finally:
        runtime.stop()

    if json_output:
        click.echo(summary.model_dump_json(indent=2))
        return

    click.echo(f'Ingested {summary.total_entries} entries from {summary.files} files')
    for error in summary.errors:
        click.echo(f'Error: {error}', err=True)
