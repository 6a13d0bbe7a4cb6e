"""CLI commands for host monitoring."""

import sys

import click
from pydantic import ValidationError

from pzmon.models import MetricType, MonitorConfigUpdate, SystemSpike
from pzmon.runtime import Runtime


NULL_VALUES = ('none', 'null', '')


def parse_assignments(assignments: tuple[str, ...]) -> dict:
    """Turn KEY=VALUE pairs into a MonitorConfigUpdate payload ('none' clears optional thresholds)."""
    known = set(MonitorConfigUpdate.model_fields)
    changes = {}
    for item in assignments:
        key, sep, value = item.partition('=')
        key = key.strip()
        if not sep or not key:
            raise click.BadParameter(f'expected KEY=VALUE, got {item!r}')
        if key not in known:
            raise click.BadParameter(f'unknown setting {key!r} (known: {", ".join(sorted(known))})')
        changes[key] = None if value.strip().lower() in NULL_VALUES else value.strip()
    return changes


def format_spike(spike: SystemSpike) -> str:
    change = f' ({spike.change_percent:+.1f}%)' if spike.change_percent is not None else ''
    sustained = f' sustained {spike.sustained_for_seconds}s' if spike.sustained_for_seconds else ''
    return (
        f'{spike.time.isoformat()} {spike.severity.value.upper():8} {spike.metric_type.value:8} '
        f'{spike.previous_value} -> {spike.current_value}{change}{sustained}'
    )


@click.group('monitor')
def monitor_group():
    """Host sampling, spike history and monitoring configuration."""


@monitor_group.command('run')
@click.option('--duration', type=float, default=None, help='Stop after N seconds (default: run until signalled)')
def run_command(duration: float | None):
    """Sample the host until SIGINT/SIGTERM."""
    runtime = Runtime.from_env()
    runtime.install_signal_handlers()
    try:
        if not runtime.monitor.start():
            click.echo(
                'System monitoring is disabled; enable it with: pzmon monitor config set enabled=true', err=True
            )
            sys.exit(1)
        config = runtime.monitor_manager.get_config()
        click.echo(f'Sampling every {config.polling_interval_seconds}s (Ctrl+C to stop)')
        runtime.wait(duration)
    finally:
        runtime.stop()


@monitor_group.command('status')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
def status_command(json_output: bool):
    """Show the latest stored sample."""
    runtime = Runtime.from_env()
    try:
        metric = runtime.monitor_manager.get_current_metric()
    finally:
        runtime.stop()

    if json_output:
        click.echo(metric.model_dump_json(indent=2) if metric else 'null')
        return
    if metric is None:
        click.echo('No samples recorded yet.')
        return
    click.echo(f'Sample time: {metric.time.isoformat()}')
    click.echo(f'  CPU: {metric.cpu_percent}%')
    click.echo(f'  Memory: {metric.memory_percent}% ({metric.memory_used_bytes} / {metric.memory_total_bytes} bytes)')
    click.echo(f'  Swap: {metric.swap_percent}%')
    if metric.network_interface:
        rx = f'{metric.network_rx_sec} B/s' if metric.network_rx_sec is not None else 'n/a'
        tx = f'{metric.network_tx_sec} B/s' if metric.network_tx_sec is not None else 'n/a'
        click.echo(f'  Network ({metric.network_interface}): rx {rx}, tx {tx}')


@monitor_group.command('spikes')
@click.option('--hours', type=float, default=24, show_default=True, help='Look-back window')
@click.option('--limit', '-n', type=click.IntRange(1, 1000), default=100, show_default=True)
@click.option('--metric', type=click.Choice([m.value for m in MetricType]), help='Only this metric')
@click.option('--json', 'json_output', is_flag=True, help='Output in JSON format')
def spikes_command(hours: float, limit: int, metric: str | None, json_output: bool):
    """List recent spikes, newest first."""
    runtime = Runtime.from_env()
    try:
        spikes = runtime.monitor_manager.get_recent_spikes(hours, limit, MetricType(metric) if metric else None)
    finally:
        runtime.stop()

    if json_output:
        click.echo('[' + ','.join(spike.model_dump_json() for spike in spikes) + ']')
        return
    if not spikes:
        click.echo(f'No spikes in the last {hours:g} hours.')
        return
    for spike in spikes:
        click.echo(format_spike(spike))


@monitor_group.group('config')
def config_group():
    """Show or change the stored monitoring configuration."""


@config_group.command('show')
def config_show_command():
    runtime = Runtime.from_env()
    try:
        config = runtime.monitor_manager.get_config()
    finally:
        runtime.stop()
    click.echo(config.model_dump_json(indent=2))


@config_group.command('set')
@click.argument('assignments', nargs=-1, required=True)
def config_set_command(assignments: tuple[str, ...]):
    """Update settings given as KEY=VALUE pairs.

    \b
    Examples:
        pzmon monitor config set cpu_spike_threshold_percent=30 cpu_spike_sustained_seconds=20
        pzmon monitor config set network_critical_threshold=none
        pzmon monitor config set enabled=false
    """
    changes = parse_assignments(assignments)
    runtime = Runtime.from_env()
    try:
        config = runtime.monitor_manager.update_config(changes)
    except ValidationError as e:
        click.echo(f'Error: invalid configuration: {e}', err=True)
        sys.exit(1)
    finally:
        runtime.stop()
    click.echo(config.model_dump_json(indent=2))


@monitor_group.command('cleanup')
@click.option('--days', type=click.IntRange(1), default=None, help='Retention in days (default: configured value)')
def cleanup_command(days: int | None):
    """Delete samples and spikes older than the retention period."""
    runtime = Runtime.from_env()
    try:
        deleted = runtime.monitor_manager.cleanup_old_metrics(days)
    finally:
        runtime.stop()
    click.echo(f'Deleted {deleted} rows')
