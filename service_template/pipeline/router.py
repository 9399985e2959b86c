"""Ordered route table dispatching requests to registered handlers."""

import logging
from dataclasses import dataclass

from service_template.domain.http_types import Handler, HttpRequest, HttpResponse
from service_template.domain.request_context import get_logger
from service_template.domain.response_builders import (
    method_not_allowed_response,
    not_found_response,
)

ROUTER_LOGGER = get_logger("pipeline.router")


@dataclass(frozen=True)
class Route:
    """A single method/path entry in the route table."""

    method: str
    path: str
    handler: Handler


def _join_paths(prefix: str, path: str) -> str:
    parts = (part for part in (prefix.strip("/"), path.strip("/")) if part)
    return "/" + "/".join(parts)


class Router:
    """Matches requests against routes in registration order.

    Any callable taking an ``HttpRequest`` and returning an ``HttpResponse``
    can be registered. Paths are matched exactly.
    """

    def __init__(self, release_mode: bool = False) -> None:
        self._routes: list[Route] = []
        self._release_mode = release_mode

    @property
    def routes(self) -> tuple[Route, ...]:
        return tuple(self._routes)

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        route = Route(method.upper(), _join_paths("", path), handler)
        self._routes.append(route)
        if not self._release_mode:
            ROUTER_LOGGER.debug(
                "Route registered",
                extra={
                    "event": "route_registered",
                    "method": route.method,
                    "route": route.path,
                },
            )

    def get(self, path: str, handler: Handler) -> None:
        self.add_route("GET", path, handler)

    def group(self, prefix: str) -> "RouteGroup":
        """Return a view registering routes under ``prefix``."""
        return RouteGroup(self, prefix)

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the first matching handler."""
        allowed_methods = []
        for route in self._routes:
            if route.path != request.path:
                continue
            if route.method == request.method:
                if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                    ROUTER_LOGGER.debug(
                        "Route matched",
                        extra={"event": "route_matched", "route": route.path},
                    )
                return route.handler(request)
            allowed_methods.append(route.method)

        if allowed_methods:
            ROUTER_LOGGER.info(
                "Method not allowed",
                extra={
                    "event": "method_not_allowed",
                    "route": request.path,
                    "method": request.method,
                },
            )
            return method_not_allowed_response(request, allowed_methods)

        ROUTER_LOGGER.info(
            "No matching route found",
            extra={
                "event": "route_not_found",
                "route": request.path,
                "method": request.method,
            },
        )
        return not_found_response(request)

    __call__ = dispatch


class RouteGroup:  # pylint: disable=too-few-public-methods
    """Prefix-scoped registration onto a parent router."""

    def __init__(self, router: Router, prefix: str) -> None:
        self._router = router
        self._prefix = prefix

    def add_route(self, method: str, path: str, handler: Handler) -> None:
        self._router.add_route(method, _join_paths(self._prefix, path), handler)

    def get(self, path: str, handler: Handler) -> None:
        self.add_route("GET", path, handler)
