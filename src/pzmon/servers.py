"""Resolve 'all' / 'running' / explicit server selections into server names."""

import logging
import re
from collections.abc import Callable, Iterable

import psutil


logger = logging.getLogger(__name__)

SERVERNAME_ARG_RE = re.compile(r'-servername\s+(\S+)')


def find_running_servers() -> list[str]:
    """Names of game servers with a live ProjectZomboid process ('-servername X' on its command line)."""
    names = set()
    for proc in psutil.process_iter(['cmdline']):
        try:
            cmdline = ' '.join(proc.info.get('cmdline') or [])
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if 'ProjectZomboid' not in cmdline:
            continue
        match = SERVERNAME_ARG_RE.search(cmdline)
        if match:
            names.add(match.group(1))
    return sorted(names)


def resolve_servers(
    selection: Iterable[str] | None,
    configured: Callable[[], list[str]],
    running: Callable[[], list[str]] = find_running_servers,
) -> list[str]:
    """
    Expand a server selection.

    Args:
        selection: Server names, or 'all' (every configured server) or 'running'
        configured: Returns the configured server names
        running: Returns the names of running servers

    Returns:
        De-duplicated server names in selection order
    """
    names: list[str] = []
    for item in selection or ['all']:
        if item == 'all':
            names.extend(configured())
        elif item == 'running':
            names.extend(running())
        else:
            names.append(item)
    resolved = list(dict.fromkeys(name for name in names if name))
    logger.debug(f'Resolved servers {list(selection or ["all"])} -> {resolved}')
    return resolved
