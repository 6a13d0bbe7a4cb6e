"""CLI command for the web API server."""

import os

import click

from pzmon.utils import setup_shutdown_filter


@click.command('serve')
@click.option('--host', default='127.0.0.1', show_default=True, help='Bind address')
@click.option('--port', type=int, default=8000, show_default=True, help='Bind port')
@click.option('--watch', is_flag=True, help='Watch log files while serving')
@click.option(
    '--server',
    '-s',
    'servers',
    multiple=True,
    help="Servers to watch with --watch: names, 'all' or 'running'",
)
@click.option('--monitor', is_flag=True, help='Run the host monitor while serving')
def serve_command(host: str, port: int, watch: bool, servers: tuple[str, ...], monitor: bool):
    """Start the web API server.

    \b
    Examples:
        pzmon serve
        pzmon serve --host 0.0.0.0 --port 9000 --watch -s running --monitor
    """
    import uvicorn

    # The app reads these in its lifespan
    os.environ['PZMON_WATCH'] = 'true' if watch else 'false'
    os.environ['PZMON_MONITOR'] = 'true' if monitor else 'false'
    if servers:
        os.environ['PZMON_WATCH_SERVERS'] = ','.join(servers)

    setup_shutdown_filter()
    click.echo(f'Starting PZMon API on http://{host}:{port}')
    uvicorn.run('pzmon.web:app', host=host, port=port, log_config=None)
