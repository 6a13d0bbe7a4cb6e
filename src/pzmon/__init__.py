"""PZMon - Project Zomboid log ingestion and host monitoring."""

from pzmon.__version__ import __version__


__all__ = ['__version__']
