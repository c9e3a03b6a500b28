"""Core types for lagguard.

BadActorType: closed set of throttle causes.
RequestInfo: transport-neutral view of an incoming request.
ThrottleEvent: immutable record of one throttle decision.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

UNKNOWN_KEY = "unknown"


class BadActorType(str, Enum):
    """Reason a request was selected for shedding."""

    USER_LAG = "userLag"  # absolute lag cutoff, every request is shed
    BAD_HOST = "badHost"  # virtual host over its share of overload traffic
    BAD_IP = "badIp"  # client address over its share of overload traffic


@dataclass(frozen=True)
class RequestInfo:
    """The parts of a request the decision engine looks at.

    ``host`` and ``remote_address`` fall back to ``"unknown"`` when the
    transport did not supply them.
    """

    host: str | None = None
    remote_address: str | None = None
    method: str | None = None
    path: str | None = None

    @property
    def host_key(self) -> str:
        return self.host or UNKNOWN_KEY

    @property
    def ip_key(self) -> str:
        return self.remote_address or UNKNOWN_KEY


@dataclass(frozen=True)
class ThrottleEvent:
    """Record of a request the engine selected for shedding.

    Attributes:
        cause: Which check fired.
        host: Host key used for attribution.
        remote_address: Address key used for attribution.
        method: HTTP method of the request, when known.
        path: Request path, when known.
        lag: Probe lag (ms) at decision time.
        vetoed: True when a ``before_throttle`` hook let the request through.
        ts: UTC timestamp of the event.
    """

    cause: BadActorType
    host: str
    remote_address: str
    lag: float
    vetoed: bool = False
    method: str | None = None
    path: str | None = None
    ts: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
