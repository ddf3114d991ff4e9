"""FastAPI application factory and host route table."""

from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, FastAPI, Request, Response
from starlette.routing import BaseRoute

from linqgate.observability.correlation import (
    CORRELATION_ID_HEADER,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from linqgate.observability.logging import get_logger
from linqgate.observability.redaction import safe_log_context

logger = get_logger(__name__)


def create_app(title: str = "linqgate") -> FastAPI:
    """Create the FastAPI app that webhook routes are mounted on.

    Args:
        title: Application title.

    Returns:
        App with correlation-id middleware and GET /health.
    """
    app = FastAPI(title=title, docs_url=None, redoc_url=None)

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        cid = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        token = set_correlation_id(cid)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response
        finally:
            reset_correlation_id(token)

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    return app


class AppRouteRegistry:
    """Mounts per-account webhook routers on a running FastAPI app.

    Registering a path that is already mounted replaces its routes.
    """

    def __init__(self, app: FastAPI) -> None:
        self._app = app
        self._mounted: dict[str, list[BaseRoute]] = {}

    def register(self, path: str, router: APIRouter) -> Callable[[], None]:
        """Mount router and return a callable that unmounts it.

        The returned callable is idempotent.
        """
        if path in self._mounted:
            logger.warning(
                "webhook path already registered, replacing",
                extra={"extra_fields": safe_log_context(path=path)},
            )
            self._unmount(path)

        before = {id(route) for route in self._app.router.routes}
        self._app.include_router(router)
        added = [route for route in self._app.router.routes if id(route) not in before]
        self._mounted[path] = added
        self._app.openapi_schema = None

        logger.info(
            "webhook route registered",
            extra={"extra_fields": safe_log_context(path=path, routes=len(added))},
        )

        def unregister() -> None:
            if self._mounted.get(path) is added:
                self._unmount(path)

        return unregister

    def registered_paths(self) -> list[str]:
        return sorted(self._mounted)

    def _unmount(self, path: str) -> None:
        removing = {id(route) for route in self._mounted.pop(path, [])}
        self._app.router.routes[:] = [
            route for route in self._app.router.routes if id(route) not in removing
        ]
        self._app.openapi_schema = None
        logger.info(
            "webhook route unregistered",
            extra={"extra_fields": safe_log_context(path=path)},
        )
