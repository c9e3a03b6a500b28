"""Lag probes for lagguard.

The decision engine reads two values from a probe on every request:
``is_overloaded()`` and ``current_lag()`` (milliseconds). Probes are
injected so tests can drive the engine deterministically.

Sampling probes measure how late a periodic timer fires. The overshoot
is smoothed with an exponential moving average and compared to
``max_lag``.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from typing import Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 0.5  # seconds between samples
DEFAULT_MAX_LAG = 70.0  # ms
SMOOTHING_FACTOR = 1.0 / 3.0


@runtime_checkable
class LagProbe(Protocol):
    """Process-wide overload signal."""

    def is_overloaded(self) -> bool: ...

    def current_lag(self) -> float: ...


class StaticLagProbe:
    """Probe whose readings are set by hand.

    Useful in tests and for operator-driven shedding (flip ``overloaded``
    from an admin endpoint).
    """

    def __init__(self, overloaded: bool = False, lag: float = 0.0) -> None:
        self._overloaded = overloaded
        self._lag = lag

    def set(
        self, *, overloaded: Optional[bool] = None, lag: Optional[float] = None
    ) -> None:
        if overloaded is not None:
            self._overloaded = overloaded
        if lag is not None:
            self._lag = lag

    def is_overloaded(self) -> bool:
        return self._overloaded

    def current_lag(self) -> float:
        return self._lag


class _SmoothedLagProbe:
    """Shared smoothing and overload logic for sampling probes."""

    def __init__(
        self,
        max_lag: float = DEFAULT_MAX_LAG,
        interval: float = DEFAULT_INTERVAL,
        smoothing_factor: float = SMOOTHING_FACTOR,
    ) -> None:
        if max_lag < 0:
            raise ValueError(f"max_lag must be non-negative, got {max_lag}")
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        if not (0 < smoothing_factor <= 1.0):
            raise ValueError(
                f"smoothing_factor must be in (0, 1.0], got {smoothing_factor}"
            )
        self.max_lag = max_lag
        self.interval = interval
        self.smoothing_factor = smoothing_factor
        self._lag = 0.0
        self._lock = threading.Lock()

    def _observe(self, elapsed: float) -> float:
        """Fold one sample (seconds since the previous tick) into the lag."""
        raw = max(0.0, (elapsed - self.interval) * 1000.0)
        f = self.smoothing_factor
        with self._lock:
            self._lag = f * raw + (1.0 - f) * self._lag
            lag = self._lag
        logger.debug("[LAGGUARD_PROBE] raw=%.1fms smoothed=%.1fms", raw, lag)
        return lag

    def current_lag(self) -> float:
        with self._lock:
            return self._lag

    def is_overloaded(self) -> bool:
        return self.current_lag() > self.max_lag


class EventLoopLagProbe(_SmoothedLagProbe):
    """Measures asyncio event-loop lag with a self-rescheduling timer.

    Reports not-overloaded with zero lag until ``start()`` is called from
    inside the loop to be measured.
    """

    def __init__(
        self,
        max_lag: float = DEFAULT_MAX_LAG,
        interval: float = DEFAULT_INTERVAL,
        smoothing_factor: float = SMOOTHING_FACTOR,
    ) -> None:
        super().__init__(max_lag, interval, smoothing_factor)
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._last = 0.0

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Begin sampling. Idempotent.

        Raises:
            RuntimeError: If no loop is given and none is running.
        """
        if self._handle is not None:
            return
        self._loop = loop if loop is not None else asyncio.get_running_loop()
        self._last = self._loop.time()
        self._handle = self._loop.call_later(self.interval, self._tick)
        logger.debug("[LAGGUARD_PROBE] Event-loop probe started")

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            logger.debug("[LAGGUARD_PROBE] Event-loop probe stopped")

    def _tick(self) -> None:
        loop = self._loop
        if loop is None or self._handle is None:
            return
        now = loop.time()
        self._observe(now - self._last)
        self._last = now
        self._handle = loop.call_later(self.interval, self._tick)


class ThreadLagProbe(_SmoothedLagProbe):
    """Measures scheduling lag from a background daemon thread.

    Suited to threaded (WSGI) servers, where a late wake-up reflects GIL
    and CPU contention.
    """

    def __init__(
        self,
        max_lag: float = DEFAULT_MAX_LAG,
        interval: float = DEFAULT_INTERVAL,
        smoothing_factor: float = SMOOTHING_FACTOR,
    ) -> None:
        super().__init__(max_lag, interval, smoothing_factor)
        self._thread: threading.Thread | None = None
        self._stop = threading.Event()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Begin sampling. Idempotent."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="lagguard-probe", daemon=True
        )
        self._thread.start()
        logger.debug("[LAGGUARD_PROBE] Thread probe started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
            self._thread = None
            logger.debug("[LAGGUARD_PROBE] Thread probe stopped")

    def _run(self) -> None:
        last = time.monotonic()
        while not self._stop.wait(self.interval):
            now = time.monotonic()
            self._observe(now - last)
            last = now
