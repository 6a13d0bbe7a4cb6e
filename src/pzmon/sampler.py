"""Raw host telemetry from psutil."""

from dataclasses import dataclass, field

import psutil


VIRTUAL_INTERFACE_PREFIXES = ('veth', 'br-')
VIRTUAL_INTERFACE_NAMES = ('lo', 'docker0')


@dataclass
class InterfaceCounters:
    name: str
    rx_bytes: int
    tx_bytes: int
    is_up: bool = True


@dataclass
class RawTelemetry:
    cpu_percent: float
    cpu_cores: list[float]
    memory_used_bytes: int
    memory_total_bytes: int
    memory_percent: float
    swap_used_bytes: int
    swap_total_bytes: int
    swap_percent: float
    interfaces: list[InterfaceCounters] = field(default_factory=list)


def is_virtual_interface(name: str) -> bool:
    return name in VIRTUAL_INTERFACE_NAMES or name.startswith(VIRTUAL_INTERFACE_PREFIXES)


def select_primary_interface(interfaces: list[InterfaceCounters]) -> InterfaceCounters | None:
    """Pick the interface to report: first up non-virtual, else first non-loopback, else first."""
    for iface in interfaces:
        if iface.is_up and not is_virtual_interface(iface.name):
            return iface
    for iface in interfaces:
        if iface.name != 'lo':
            return iface
    return interfaces[0] if interfaces else None


class PsutilSampler:
    """Reads OS counters; CPU load is measured between consecutive read() calls."""

    def __init__(self):
        # First call primes psutil's CPU counters and always returns 0.0
        psutil.cpu_percent(percpu=True)

    def read(self) -> RawTelemetry:
        cores = psutil.cpu_percent(percpu=True)
        memory = psutil.virtual_memory()
        swap = psutil.swap_memory()
        counters = psutil.net_io_counters(pernic=True)
        stats = psutil.net_if_stats()

        interfaces = [
            InterfaceCounters(
                name=name,
                rx_bytes=io.bytes_recv,
                tx_bytes=io.bytes_sent,
                is_up=stats[name].isup if name in stats else False,
            )
            for name, io in counters.items()
        ]
        return RawTelemetry(
            cpu_percent=round(sum(cores) / len(cores), 2) if cores else 0.0,
            cpu_cores=[round(core, 2) for core in cores],
            memory_used_bytes=memory.total - memory.available,
            memory_total_bytes=memory.total,
            memory_percent=round(memory.percent, 2),
            swap_used_bytes=swap.used,
            swap_total_bytes=swap.total,
            swap_percent=round(swap.percent, 2),
            interfaces=interfaces,
        )
