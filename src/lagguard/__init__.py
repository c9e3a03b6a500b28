"""lagguard - adaptive, lag-driven admission control for request handlers."""

__version__ = "0.1.0"

from lagguard.config import QOSConfig
from lagguard.guard import BeforeThrottle, QOSGuard, is_local_address
from lagguard.metrics import BadActorMetric, QOSMetrics
from lagguard.middleware import (
    QOSASGIMiddleware,
    QOSWSGIMiddleware,
    ThrottleMiddleware,
    request_info_from,
)
from lagguard.probe import (
    EventLoopLagProbe,
    LagProbe,
    StaticLagProbe,
    ThreadLagProbe,
)
from lagguard.threshold import threshold
from lagguard.types import BadActorType, RequestInfo, ThrottleEvent
from lagguard.window import ObservationWindow

__all__ = [
    "QOSConfig",
    "QOSGuard", "BeforeThrottle", "is_local_address",
    "BadActorMetric", "QOSMetrics",
    "ObservationWindow", "threshold",
    "ThrottleMiddleware", "QOSASGIMiddleware", "QOSWSGIMiddleware", "request_info_from",
    "LagProbe", "StaticLagProbe", "EventLoopLagProbe", "ThreadLagProbe",
    "BadActorType", "RequestInfo", "ThrottleEvent",
]
