"""OpenTelemetry export of lagguard throttle events.

A throttle is attached as a span event to the request span that is
already recording (framework instrumentation). When no span is recording
lagguard opens a short ``lagguard.throttle`` span of its own, so shedding
is visible even in uninstrumented apps.

Only structured metadata is exported (cause, host, address, method,
path, lag). Request bodies and headers other than the host never are.

Usage:
    from lagguard.otel import enable_otel
    enable_otel(service_name="my-api", endpoint="http://collector:4317")
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from lagguard.types import ThrottleEvent

logger = logging.getLogger(__name__)

THROTTLE_SPAN_NAME = "lagguard.throttle"

_otel_enabled: bool = False
_tracer: Any = None
_provider: Any = None


def enable_otel(
    service_name: str,
    exporter: Any = None,
    endpoint: str | None = None,
) -> None:
    """Export throttle spans for ``service_name``.

    Args:
        service_name: ``service.name`` resource attribute.
        exporter: Span exporter, attached through a SimpleSpanProcessor.
        endpoint: OTLP/gRPC traces endpoint, used when no exporter is
            given. Needs ``opentelemetry-exporter-otlp-proto-grpc``.

    lagguard keeps its own TracerProvider and does not replace the global
    one. Install the ``lagguard[otel]`` extra for the SDK and exporter.
    """
    global _otel_enabled, _tracer, _provider
    try:
        from opentelemetry.sdk.resources import SERVICE_NAME, Resource
        from opentelemetry.sdk.trace import TracerProvider

        provider = TracerProvider(resource=Resource.create({SERVICE_NAME: service_name}))
        if exporter is not None:
            from opentelemetry.sdk.trace.export import SimpleSpanProcessor

            provider.add_span_processor(SimpleSpanProcessor(exporter))
        elif endpoint:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
            from opentelemetry.sdk.trace.export import BatchSpanProcessor

            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
            )
        else:
            logger.warning(
                "[LAGGUARD_OTEL] no exporter or endpoint given; spans are dropped"
            )
    except ImportError as exc:
        logger.warning("[LAGGUARD_OTEL] OpenTelemetry not installed, export disabled: %s", exc)
        return

    _shutdown_provider()
    _provider = provider
    _tracer = provider.get_tracer("lagguard")
    _otel_enabled = True
    logger.info("[LAGGUARD_OTEL] enabled: service=%r", service_name)


def enable_otel_with_tracer(tracer: Any) -> None:
    """Export through an existing tracer (the app's own provider)."""
    global _otel_enabled, _tracer
    _shutdown_provider()
    _tracer = tracer
    _otel_enabled = True


def is_otel_enabled() -> bool:
    return _otel_enabled


def disable_otel() -> None:
    """Stop exporting. Flushes the provider created by ``enable_otel``."""
    global _otel_enabled, _tracer
    _shutdown_provider()
    _otel_enabled = False
    _tracer = None


def _shutdown_provider() -> None:
    global _provider
    provider, _provider = _provider, None
    if provider is not None:
        provider.shutdown()


def _attributes(event: "ThrottleEvent") -> dict[str, Any]:
    attributes: dict[str, Any] = {
        "lagguard.cause": event.cause.value,
        "lagguard.host": event.host,
        "lagguard.remote_address": event.remote_address,
        "lagguard.lag_ms": float(event.lag),
        "lagguard.vetoed": event.vetoed,
    }
    # OTel attributes cannot be None.
    if event.method:
        attributes["http.request.method"] = event.method
    if event.path:
        attributes["url.path"] = event.path
    return attributes


def emit_throttle_event(event: "ThrottleEvent") -> None:
    """Export ``event``. No-op if OTel is not enabled."""
    if not _otel_enabled or _tracer is None:
        return
    try:
        from opentelemetry import trace

        name = f"lagguard.{event.cause.value}"
        attributes = _attributes(event)
        current_span = trace.get_current_span()
        if current_span.is_recording():
            current_span.add_event(name=name, attributes=attributes)
            return
        with _tracer.start_as_current_span(THROTTLE_SPAN_NAME, attributes=attributes) as span:
            span.add_event(name=name, attributes=attributes)
    except Exception as exc:
        logger.debug("[LAGGUARD_OTEL] emit_throttle_event failed: %s", exc)
