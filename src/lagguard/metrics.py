"""Bad-actor evaluation over overload-time observations.

A key's ratio is its share of the requests that arrived while the server
was overloaded, across all keys. Requests seen in calm periods are never
recorded, so high but healthy volume is not penalized.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from lagguard.threshold import threshold
from lagguard.window import ObservationWindow


@dataclass
class BadActorMetric:
    """One observation window plus its threshold curve.

    ``min_requests`` gates on the window's total observation count (all
    keys), not on the count of the key being checked.

    Example:
        metric = BadActorMetric(min_lag=70, max_lag=300,
                                lo_threshold=0.5, hi_threshold=0.01)
        if metric.record_and_check("example.com", True, current_lag=120):
            ...
    """

    min_lag: float
    max_lag: float
    lo_threshold: float
    hi_threshold: float
    min_requests: int = 0
    history_size: int = 500

    def __post_init__(self) -> None:
        self.window = ObservationWindow(self.history_size)

    def allowed_ratio(self, current_lag: float) -> float:
        """Allowed ratio at ``current_lag``."""
        return threshold(
            current_lag,
            self.min_lag,
            self.max_lag,
            self.lo_threshold,
            self.hi_threshold,
        )

    def record_and_check(
        self, key: str, should_record: bool, current_lag: float
    ) -> bool:
        """Optionally record ``key`` then report whether it is over its share."""
        if should_record:
            self.window.record(key)
        total, ratio = self.window.stats(key)
        if total < self.min_requests:
            return False
        return ratio > self.allowed_ratio(current_lag)

    def get_ratio(self, key: str) -> float:
        return self.window.ratio(key)

    def top(self, n: int = 5) -> list[tuple[str, int]]:
        """The ``n`` keys with the most observations, largest first."""
        counts = self.window.counts()
        return sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))[:n]


class QOSMetrics:
    """Host-scoped and IP-scoped metrics sharing one lag domain."""

    def __init__(
        self,
        *,
        min_lag: float,
        max_lag: float,
        min_bad_host_threshold: float,
        max_bad_host_threshold: float,
        min_bad_ip_threshold: float,
        max_bad_ip_threshold: float,
        min_host_requests: int,
        min_ip_requests: int,
        history_size: int,
    ) -> None:
        self.history_size = history_size
        self.hosts = BadActorMetric(
            min_lag=min_lag,
            max_lag=max_lag,
            lo_threshold=min_bad_host_threshold,
            hi_threshold=max_bad_host_threshold,
            min_requests=min_host_requests,
            history_size=history_size,
        )
        self.ips = BadActorMetric(
            min_lag=min_lag,
            max_lag=max_lag,
            lo_threshold=min_bad_ip_threshold,
            hi_threshold=max_bad_ip_threshold,
            min_requests=min_ip_requests,
            history_size=history_size,
        )

    def is_bad_host(self, host: str, should_record: bool, current_lag: float) -> bool:
        return self.hosts.record_and_check(host, should_record, current_lag)

    def is_bad_ip(self, ip: str, should_record: bool, current_lag: float) -> bool:
        return self.ips.record_and_check(ip, should_record, current_lag)

    def get_host_ratio(self, host: str) -> float:
        return self.hosts.get_ratio(host)

    def get_ip_ratio(self, ip: str) -> float:
        return self.ips.get_ratio(ip)

    def snapshot(self, top: int = 5) -> dict[str, Any]:
        """Serialize window totals and the heaviest keys per metric."""
        return {
            "history_size": self.history_size,
            "hosts": {"total": self.hosts.window.total, "top": self.hosts.top(top)},
            "ips": {"total": self.ips.window.total, "top": self.ips.top(top)},
        }

    def reset(self) -> None:
        """Drop all observations."""
        self.hosts.window.clear()
        self.ips.window.clear()
