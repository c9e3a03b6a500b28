"""Request-pipeline adapters for QOSGuard.

ThrottleMiddleware: generic ``(request, response, call_next)`` stage.
QOSASGIMiddleware: ASGI3 wrapper; non-HTTP scopes pass through.
QOSWSGIMiddleware: WSGI wrapper with identical semantics.

Per request: ALLOW (call the next stage) or, when the engine names a
cause, consult the optional ``before_throttle`` hook and then either
ALLOW or BLOCK (configured status code, empty body). Hook exceptions
propagate to the caller.
"""

from __future__ import annotations

from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Optional, Protocol

from lagguard.probe import EventLoopLagProbe
from lagguard.types import BadActorType, RequestInfo

if TYPE_CHECKING:
    from lagguard.guard import BeforeThrottle, QOSGuard


class Response(Protocol):
    """Response surface used by ThrottleMiddleware."""

    def write_head(self, status: int) -> Any: ...

    def end(self) -> Any: ...


# ---------------------------------------------------------------------------
# Request extraction
# ---------------------------------------------------------------------------


def request_info_from_scope(scope: Mapping[str, Any]) -> RequestInfo:
    """Build RequestInfo from an ASGI HTTP scope."""
    host = None
    for name, value in scope.get("headers") or ():
        if name.lower() == b"host":
            host = value.decode("latin-1")
            break
    client = scope.get("client")
    return RequestInfo(
        host=host,
        remote_address=client[0] if client else None,
        method=scope.get("method"),
        path=scope.get("path"),
    )


def request_info_from_environ(environ: Mapping[str, Any]) -> RequestInfo:
    """Build RequestInfo from a WSGI environ."""
    return RequestInfo(
        host=environ.get("HTTP_HOST"),
        remote_address=environ.get("REMOTE_ADDR"),
        method=environ.get("REQUEST_METHOD"),
        path=environ.get("PATH_INFO"),
    )


def request_info_from(request: Any) -> RequestInfo:
    """Build RequestInfo from whatever the host framework hands us.

    Accepts a RequestInfo, an ASGI scope, a WSGI environ, a dict with a
    ``headers`` mapping, or an object with a ``headers`` mapping and
    either ``remote_address`` or ``client.host`` (Starlette-style).
    """
    if isinstance(request, RequestInfo):
        return request
    if isinstance(request, Mapping):
        if "type" in request and "headers" in request:
            return request_info_from_scope(request)
        if isinstance(request.get("headers"), Mapping):
            return RequestInfo(
                host=request["headers"].get("host"),
                remote_address=request.get("remote_address"),
                method=request.get("method"),
                path=request.get("path"),
            )
        return request_info_from_environ(request)

    headers = getattr(request, "headers", None) or {}
    address = getattr(request, "remote_address", None)
    if address is None:
        client = getattr(request, "client", None)
        address = getattr(client, "host", None)
    return RequestInfo(
        host=headers.get("host"),
        remote_address=address,
        method=getattr(request, "method", None),
        path=getattr(request, "path", None),
    )


def _should_block(
    guard: QOSGuard,
    before_throttle: Optional[BeforeThrottle],
    request: Any,
    info: RequestInfo,
    cause: BadActorType,
) -> bool:
    """Resolve a throttle cause into BLOCK (True) or ALLOW (False)."""
    if before_throttle is not None and not before_throttle(guard, request, cause):
        guard.record_event(info, cause, vetoed=True)
        return False
    guard.record_event(info, cause)
    return True


# ---------------------------------------------------------------------------
# Generic pipeline stage
# ---------------------------------------------------------------------------


class ThrottleMiddleware:
    """Pipeline stage wrapping ``QOSGuard.should_throttle_request``.

    Call with ``(request, response, call_next)``. ``call_next`` takes no
    arguments; its return value is passed back to the caller. A blocked
    request gets ``response.write_head(error_status_code)`` followed by
    ``response.end()`` and ``call_next`` is not invoked. The guard's
    default probe is started on the first call.
    """

    def __init__(
        self, guard: QOSGuard, before_throttle: Optional[BeforeThrottle] = None
    ) -> None:
        self._guard = guard
        self._before_throttle = before_throttle

    def __call__(
        self, request: Any, response: Response, call_next: Callable[[], Any]
    ) -> Any:
        self._guard.ensure_probe_started()
        info = request_info_from(request)
        cause = self._guard.should_throttle_request(info)
        if cause is None or not _should_block(
            self._guard, self._before_throttle, request, info, cause
        ):
            return call_next()

        response.write_head(self._guard.error_status_code)
        response.end()
        return None


# ---------------------------------------------------------------------------
# ASGI middleware
# ---------------------------------------------------------------------------

_Scope = dict[str, Any]
_Receive = Callable[[], Any]
_Send = Callable[[dict[str, Any]], Any]
_ASGIApp = Callable[[_Scope, _Receive, _Send], Any]


class QOSASGIMiddleware:
    """ASGI3 middleware that sheds requests selected by a QOSGuard.

    The hook receives the ASGI scope as its request argument. When the
    guard uses an ``EventLoopLagProbe`` it is started on the first HTTP
    request, inside the server's loop.
    """

    def __init__(
        self,
        app: _ASGIApp,
        guard: QOSGuard,
        before_throttle: Optional[BeforeThrottle] = None,
    ) -> None:
        self._app = app
        self._guard = guard
        self._before_throttle = before_throttle

    async def __call__(self, scope: _Scope, receive: _Receive, send: _Send) -> None:
        if scope.get("type") != "http":
            await self._app(scope, receive, send)
            return

        probe = self._guard.probe
        if isinstance(probe, EventLoopLagProbe) and not probe.running:
            probe.start()
        self._guard.ensure_probe_started()

        info = request_info_from_scope(scope)
        cause = self._guard.should_throttle_request(info)
        if cause is not None and _should_block(
            self._guard, self._before_throttle, scope, info, cause
        ):
            await _send_empty(send, self._guard.error_status_code)
            return

        await self._app(scope, receive, send)


# ---------------------------------------------------------------------------
# WSGI middleware
# ---------------------------------------------------------------------------

_WSGIApp = Callable[[dict[str, Any], Callable[..., Any]], Iterable[bytes]]


class QOSWSGIMiddleware:
    """WSGI middleware that sheds requests selected by a QOSGuard.

    The hook receives the WSGI environ as its request argument. A guard
    built without a probe gets a started ``ThreadLagProbe`` on the first
    request.
    """

    def __init__(
        self,
        app: _WSGIApp,
        guard: QOSGuard,
        before_throttle: Optional[BeforeThrottle] = None,
    ) -> None:
        self._app = app
        self._guard = guard
        self._before_throttle = before_throttle

    def __call__(
        self,
        environ: dict[str, Any],
        start_response: Callable[..., Any],
    ) -> Iterable[bytes]:
        self._guard.ensure_probe_started()
        info = request_info_from_environ(environ)
        cause = self._guard.should_throttle_request(info)
        if cause is not None and _should_block(
            self._guard, self._before_throttle, environ, info, cause
        ):
            start_response(
                _status_line(self._guard.error_status_code),
                [("Content-Length", "0")],
            )
            return [b""]

        return self._app(environ, start_response)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _status_line(code: int) -> str:
    try:
        return f"{code} {HTTPStatus(code).phrase}"
    except ValueError:
        return f"{code} Error"


async def _send_empty(send: _Send, status: int) -> None:
    """Send a response with ``status`` and no body via ASGI ``send``."""
    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [[b"content-length", b"0"]],
        }
    )
    await send({"type": "http.response.body", "body": b"", "more_body": False})
