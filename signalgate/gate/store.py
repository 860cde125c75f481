"""
Thread-safe fixed-window rate counter store.

Holds one :class:`RateWindow` per client key.  The reset-increment-read
sequence of :meth:`RateWindowStore.hit` runs under a single
``threading.Lock`` so concurrent requests from the same client can never
both observe a stale count.

Stale windows are swept lazily: every ``sweep_interval`` hits, and
immediately when the store grows past ``max_tracked_clients``.  A window
is only ever removed once it has expired, so eviction can never hand a
client a fresh budget inside its current window.
"""

import logging
import threading
from typing import Dict, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class RateWindow(BaseModel):
    """Counter state for one client in the current fixed window.

    Attributes:
        client_key: Bucketing identity (usually the client IP).
        window_start: Monotonic timestamp at which the window opened.
        count: Requests counted in this window, including rejected ones.
    """

    client_key: str
    window_start: float
    count: int = Field(default=0, ge=0)

    def expires_at(self, window_seconds: float) -> float:
        """Monotonic timestamp at which this window resets."""
        return self.window_start + window_seconds


class RateWindowStore:
    """In-memory store of fixed rate-limit windows keyed by client.

    Args:
        window_seconds: Lifetime of a window.
        sweep_after_windows: Windows older than this many lifetimes are
            evicted by :meth:`sweep`.
        sweep_interval: Run a sweep every N calls to :meth:`hit`.
        max_tracked_clients: Soft cap on the number of stored windows.
            Going over it evicts expired windows early; live windows are
            kept.
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        sweep_after_windows: int = 5,
        sweep_interval: int = 1000,
        max_tracked_clients: int = 10000,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._window_seconds = window_seconds
        self._stale_after = window_seconds * max(1, sweep_after_windows)
        self._sweep_interval = max(1, sweep_interval)
        self._max_tracked = max(1, max_tracked_clients)
        self._capacity_slack = max(1, self._max_tracked // 10)
        self._capacity_threshold = self._max_tracked
        self._lock = threading.Lock()
        self._windows: Dict[str, RateWindow] = {}
        self._hits_since_sweep = 0

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def hit(self, client_key: str, now: float) -> RateWindow:
        """Count one request for *client_key* at time *now*.

        Opens a new window on first sight of the key or when the current
        window has expired, then increments the count.

        Args:
            client_key: Bucketing identity.
            now: Monotonic timestamp of the request.

        Returns:
            A snapshot of the window after the increment.
        """
        with self._lock:
            window = self._windows.get(client_key)
            if window is None or now >= window.expires_at(self._window_seconds):
                window = RateWindow(client_key=client_key, window_start=now)
                self._windows[client_key] = window
            window.count += 1
            snapshot = window.model_copy()

            self._hits_since_sweep += 1
            if (
                self._hits_since_sweep >= self._sweep_interval
                or len(self._windows) > self._capacity_threshold
            ):
                self._sweep_locked(now)
            return snapshot

    def get(self, client_key: str) -> Optional[RateWindow]:
        """Return a snapshot of the stored window, or None."""
        with self._lock:
            window = self._windows.get(client_key)
            return window.model_copy() if window is not None else None

    def sweep(self, now: float) -> int:
        """Evict stale windows.  Returns the number of evicted entries."""
        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: float) -> int:
        self._hits_since_sweep = 0
        cutoff = now - self._stale_after
        stale = [k for k, w in self._windows.items() if w.window_start < cutoff]
        for key in stale:
            del self._windows[key]
        evicted = len(stale)

        if len(self._windows) > self._max_tracked:
            # Only expired windows may go early; live counts must survive.
            expired = [
                k
                for k, w in self._windows.items()
                if now >= w.expires_at(self._window_seconds)
            ]
            for key in expired:
                del self._windows[key]
            evicted += len(expired)
            if len(self._windows) > self._max_tracked:
                logger.warning(
                    "Rate window store over capacity with only live windows",
                    extra={
                        "tracked": len(self._windows),
                        "capacity": self._max_tracked,
                    },
                )
        self._capacity_threshold = max(
            self._max_tracked, len(self._windows) + self._capacity_slack
        )

        if evicted:
            logger.debug("Swept %d rate windows", evicted)
        return evicted

    def clear(self) -> None:
        with self._lock:
            self._windows.clear()
            self._hits_since_sweep = 0
            self._capacity_threshold = self._max_tracked

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)
