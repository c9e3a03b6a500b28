"""lagguard decision engine.

Decides per request whether the server is overloaded and, if so, which
virtual host or client address is disproportionately responsible, so
only the offending traffic is shed.

Check order for ``should_throttle_request``:
  1. probe not overloaded            -> None (nothing recorded)
  2. lag >= user_lag                 -> USER_LAG (no per-key logic)
  3. host over its share             -> BAD_HOST
  4. local address and exemption on  -> None (IP check skipped)
  5. address over its share          -> BAD_IP
"""

from __future__ import annotations

import asyncio
import dataclasses
import ipaddress
import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Optional

from lagguard.config import QOSConfig
from lagguard.metrics import QOSMetrics
from lagguard.probe import EventLoopLagProbe, LagProbe, ThreadLagProbe
from lagguard.types import BadActorType, RequestInfo, ThrottleEvent

if TYPE_CHECKING:
    from lagguard.middleware import ThrottleMiddleware

logger = logging.getLogger(__name__)

# (guard, native request, cause) -> True to throttle, False to let through.
BeforeThrottle = Callable[["QOSGuard", Any, BadActorType], bool]


def is_local_address(address: str | None) -> bool:
    """Return True for loopback and private-network addresses.

    IPv4-mapped IPv6 addresses (``::ffff:127.0.0.1``) are unwrapped first.
    Anything that does not parse as an IP address is not local.
    """
    if not address:
        return False
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_loopback or ip.is_private


class QOSGuard:
    """Adaptive admission control driven by a lag probe.

    Example:
        guard = QOSGuard(min_host_requests=50)
        cause = guard.should_throttle_request(
            RequestInfo(host="api.example.com", remote_address="93.184.216.34")
        )
        if cause is not None:
            ...  # shed the request

    Without an explicit ``probe`` an ``EventLoopLagProbe`` is created with
    ``max_lag=min_lag``. The middlewares call ``ensure_probe_started()`` on
    their first request: inside a running loop that probe is started,
    otherwise it is replaced by a started ``ThreadLagProbe``.
    """

    _MAX_EVENTS: int = 1000

    def __init__(
        self,
        config: Optional[QOSConfig] = None,
        probe: Optional[LagProbe] = None,
        **overrides: Any,
    ) -> None:
        config = config if config is not None else QOSConfig()
        if overrides:
            config = dataclasses.replace(config, **overrides)
        self.config = config
        self.probe: LagProbe = (
            probe if probe is not None else EventLoopLagProbe(max_lag=config.min_lag)
        )
        self.metrics = QOSMetrics(
            min_lag=config.min_lag,
            max_lag=config.max_lag,
            min_bad_host_threshold=config.min_bad_host_threshold,
            max_bad_host_threshold=config.max_bad_host_threshold,
            min_bad_ip_threshold=config.min_bad_ip_threshold,
            max_bad_ip_threshold=config.max_bad_ip_threshold,
            min_host_requests=config.min_host_requests,
            min_ip_requests=config.min_ip_requests,
            history_size=config.history_size,
        )
        self._owns_probe = probe is None
        self._probe_checked = False
        self._user_lag_cutoff = False
        self._events: list[ThrottleEvent] = []
        self._lock = threading.Lock()

    @property
    def error_status_code(self) -> int:
        return self.config.error_status_code

    @property
    def exempt_local_address(self) -> bool:
        return self.config.exempt_local_address

    def ensure_probe_started(self) -> None:
        """Start the default probe the first time a request is checked.

        Runs once per guard. A default probe is started as an
        ``EventLoopLagProbe`` when called from inside a running loop and
        swapped for a ``ThreadLagProbe`` otherwise. A caller-supplied
        sampling probe that is not running is left alone but logged, since
        it will never report overload.
        """
        if self._probe_checked:
            return
        with self._lock:
            if self._probe_checked:
                return
            self._probe_checked = True
            if not self._owns_probe:
                if getattr(self.probe, "running", True) is False:
                    logger.warning(
                        "[LAGGUARD_PROBE] %s is not running; no request will be shed",
                        type(self.probe).__name__,
                    )
                return
            if self.probe.running:
                return
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                self.probe = ThreadLagProbe(max_lag=self.config.min_lag)
            self.probe.start()
        logger.info(
            "[LAGGUARD_PROBE] Started default %s (max_lag=%.1fms)",
            type(self.probe).__name__, self.config.min_lag,
        )

    def is_bad_host(self, host: str, should_record: Optional[bool] = None) -> bool:
        """Check ``host`` against the host metric.

        ``should_record`` defaults to the probe's live overload flag.
        """
        if should_record is None:
            should_record = self.probe.is_overloaded()
        return self.metrics.is_bad_host(host, should_record, self.probe.current_lag())

    def is_bad_ip(self, ip: str, should_record: Optional[bool] = None) -> bool:
        """Check ``ip`` against the IP metric.

        ``should_record`` defaults to the probe's live overload flag.
        """
        if should_record is None:
            should_record = self.probe.is_overloaded()
        return self.metrics.is_bad_ip(ip, should_record, self.probe.current_lag())

    def should_throttle_request(self, request: RequestInfo) -> Optional[BadActorType]:
        """Return the throttle cause for ``request``, or None to serve it."""
        if not self.probe.is_overloaded():
            if self._user_lag_cutoff:
                self._set_user_lag_cutoff(False, self.probe.current_lag())
            return None

        lag = self.probe.current_lag()
        if lag >= self.config.user_lag:
            self._set_user_lag_cutoff(True, lag)
            return BadActorType.USER_LAG
        if self._user_lag_cutoff:
            self._set_user_lag_cutoff(False, lag)

        if self.metrics.is_bad_host(request.host_key, True, lag):
            return BadActorType.BAD_HOST

        if self.config.exempt_local_address and is_local_address(request.remote_address):
            return None

        if self.metrics.is_bad_ip(request.ip_key, True, lag):
            return BadActorType.BAD_IP

        return None

    def _set_user_lag_cutoff(self, active: bool, lag: float) -> None:
        # Logged on transitions only; every shed request is at DEBUG.
        with self._lock:
            if self._user_lag_cutoff == active:
                return
            self._user_lag_cutoff = active
        if active:
            logger.warning(
                "[LAGGUARD_THROTTLE] user lag cutoff engaged: lag=%.1fms >= %.1fms",
                lag, self.config.user_lag,
            )
        else:
            logger.info("[LAGGUARD_THROTTLE] user lag cutoff released: lag=%.1fms", lag)

    def get_middleware(
        self, before_throttle: Optional[BeforeThrottle] = None
    ) -> ThrottleMiddleware:
        """Return a ``(request, response, call_next)`` pipeline stage."""
        from lagguard.middleware import ThrottleMiddleware

        return ThrottleMiddleware(self, before_throttle=before_throttle)

    def record_event(
        self, request: RequestInfo, cause: BadActorType, *, vetoed: bool = False
    ) -> ThrottleEvent:
        """Log and keep a ThrottleEvent for a throttled or vetoed request."""
        event = ThrottleEvent(
            cause=cause,
            host=request.host_key,
            remote_address=request.ip_key,
            lag=self.probe.current_lag(),
            vetoed=vetoed,
            method=request.method,
            path=request.path,
        )
        with self._lock:
            if len(self._events) < self._MAX_EVENTS:
                self._events.append(event)

        if vetoed:
            logger.info(
                "[LAGGUARD_THROTTLE] %s throttle vetoed by hook: %s %s host=%s ip=%s",
                cause.value, event.method or "-", event.path or "-",
                event.host, event.remote_address,
            )
        elif cause is BadActorType.USER_LAG:
            logger.debug(
                "[LAGGUARD_THROTTLE] userLag: %s %s host=%s ip=%s lag=%.1fms",
                event.method or "-", event.path or "-",
                event.host, event.remote_address, event.lag,
            )
        else:
            logger.info(
                "[LAGGUARD_THROTTLE] %s: %s %s host=%s ip=%s lag=%.1fms",
                cause.value, event.method or "-", event.path or "-",
                event.host, event.remote_address, event.lag,
            )

        from lagguard.otel import emit_throttle_event

        emit_throttle_event(event)
        return event

    def get_events(self) -> list[ThrottleEvent]:
        """Return recorded throttle events (shallow copy)."""
        with self._lock:
            return list(self._events)

    def clear_events(self) -> None:
        with self._lock:
            self._events.clear()
