"""Middleware wrapping the base handler: panic recovery and request context."""

import time
from typing import Iterable

from service_template.domain.http_types import (
    REQUEST_ID_HEADER,
    Handler,
    HttpRequest,
    HttpResponse,
    Middleware,
)
from service_template.domain.request_context import (
    RequestContext,
    bind_request_context,
    generate_request_id,
    get_logger,
)
from service_template.domain.response_builders import internal_error_response

MIDDLEWARE_LOGGER = get_logger("pipeline.middleware")
MAX_REQUEST_ID_LENGTH = 128


def compose(handler: Handler, middlewares: Iterable[Middleware]) -> Handler:
    """Wrap ``handler`` so the first middleware listed runs outermost."""
    wrapped = handler
    for middleware in reversed(list(middlewares)):
        wrapped = middleware(wrapped)
    return wrapped


def recovery_middleware(handler: Handler) -> Handler:
    """Convert any exception escaping ``handler`` into a 500 response."""

    def recover(request: HttpRequest) -> HttpResponse:
        try:
            return handler(request)
        except Exception as error:  # pylint: disable=broad-except
            MIDDLEWARE_LOGGER.error(
                "Unhandled error while handling request",
                extra={
                    "event": "handler_panic",
                    "method": request.method,
                    "route": request.path,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
                exc_info=True,
            )
            return internal_error_response(request)

    return recover


def _incoming_request_id(request: HttpRequest) -> str:
    candidate = request.headers.get(REQUEST_ID_HEADER.lower(), "").strip()
    if candidate and len(candidate) <= MAX_REQUEST_ID_LENGTH and candidate.isprintable():
        return candidate
    return generate_request_id()


def request_context_middleware(handler: Handler) -> Handler:
    """Bind a RequestContext before the wrapped handler runs.

    The context stays bound after the handler returns or raises so the
    recovery log and the serialized ``X-Request-ID`` header carry the same
    id. The connection worker clears it once the response is sent.
    """

    def with_context(request: HttpRequest) -> HttpResponse:
        bind_request_context(
            RequestContext(
                request_id=_incoming_request_id(request),
                method=request.method,
                path=request.path,
                client=request.client,
            )
        )
        started = time.perf_counter()
        response = handler(request)
        MIDDLEWARE_LOGGER.debug(
            "Request handled",
            extra={
                "event": "request_handled",
                "method": request.method,
                "route": request.path,
                "client": request.client,
                "status_code": response.status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            },
        )
        return response

    return with_context


DEFAULT_MIDDLEWARE: tuple[Middleware, ...] = (
    recovery_middleware,
    request_context_middleware,
)
