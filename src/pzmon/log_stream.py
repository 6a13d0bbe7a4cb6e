"""Per-server buffers of recently ingested entries for live consumers.

Producers (the watcher) call queue_entries and never block. Consumers either
pull with drain/peek or register a callback with subscribe. Each server's
buffer is bounded; when it is full the oldest entries are dropped.
"""

import itertools
import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from pzmon import prometheus as prom
from pzmon.models import UnifiedLogEntry


logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1000

StreamCallback = Callable[[str, list[UnifiedLogEntry]], None]


@dataclass
class _Subscription:
    server: str
    callback: StreamCallback


class LogStreamManager:
    def __init__(self, max_buffer_size: int = DEFAULT_BUFFER_SIZE):
        if max_buffer_size < 1:
            raise ValueError('max_buffer_size must be positive')
        self.max_buffer_size = max_buffer_size
        self._buffers: dict[str, deque[UnifiedLogEntry]] = {}
        self._subscriptions: dict[int, _Subscription] = {}
        self._tokens = itertools.count(1)
        self._dropped = 0
        self._lock = threading.Lock()

    @staticmethod
    def _key(server: str) -> str:
        return server.strip().lower()

    def queue_entries(self, server: str, entries: list[UnifiedLogEntry]):
        """Append entries to the server's buffer and notify its subscribers."""
        if not entries:
            return
        key = self._key(server)
        with self._lock:
            buffer = self._buffers.setdefault(key, deque(maxlen=self.max_buffer_size))
            overflow = max(0, len(buffer) + len(entries) - self.max_buffer_size)
            buffer.extend(entries)
            self._dropped += overflow
            callbacks = [sub.callback for sub in self._subscriptions.values() if sub.server == key]

        prom.stream_entries_queued_total.inc(len(entries))
        if overflow:
            prom.stream_entries_dropped_total.inc(overflow)
            logger.debug(f'Stream buffer for {key} full, dropped {overflow} oldest entries')

        for callback in callbacks:
            try:
                callback(key, list(entries))
            except Exception as e:
                logger.warning(f'Stream subscriber for {key} failed: {e}')

    def drain(self, server: str, max_items: int | None = None) -> list[UnifiedLogEntry]:
        """Remove and return buffered entries, oldest first."""
        key = self._key(server)
        with self._lock:
            buffer = self._buffers.get(key)
            if not buffer:
                return []
            count = len(buffer) if max_items is None else min(max_items, len(buffer))
            return [buffer.popleft() for _ in range(count)]

    def peek(self, server: str) -> list[UnifiedLogEntry]:
        """Return buffered entries without removing them."""
        with self._lock:
            return list(self._buffers.get(self._key(server), ()))

    def subscribe(self, server: str, callback: StreamCallback) -> int:
        """Register callback(server, entries) for new entries; returns a token for unsubscribe."""
        token = next(self._tokens)
        with self._lock:
            self._subscriptions[token] = _Subscription(server=self._key(server), callback=callback)
        return token

    def unsubscribe(self, token: int) -> bool:
        with self._lock:
            return self._subscriptions.pop(token, None) is not None

    def subscriber_count(self, server: str) -> int:
        key = self._key(server)
        with self._lock:
            return sum(1 for sub in self._subscriptions.values() if sub.server == key)

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def clear(self, server: str | None = None):
        with self._lock:
            if server is None:
                self._buffers.clear()
            else:
                self._buffers.pop(self._key(server), None)
