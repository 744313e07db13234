# Copyright (c) Microsoft Corporation.
# Licensed under the MIT License.
"""
Request middleware that opens a run context per API call.

The stack and plan a request addresses are taken from its route, so log
records emitted by the engine while serving it carry them without the
route handlers passing anything along.
"""

from __future__ import annotations
import re
import time
import uuid
from typing import Any, Optional
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from infraplan.core.observability.context import ObservabilityScope
from infraplan.core.observability.events import LogLevel, create_service_event
from infraplan.core.observability.logger import get_logger

CORRELATION_ID_HEADER = "X-Correlation-ID"
STACK_ID_HEADER = "X-Stack-ID"
SKIP_PATHS = {"/healthz", "/favicon.ico", "/docs", "/openapi.json"}

_STACK_PATH = re.compile(r"/stacks/([^/]+)")
_PLAN_PATH = re.compile(r"/plans/([^/]+)")

logger = get_logger(__name__)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """
    Logs request_start and request_end events inside a scope holding the
    correlation ID, stack key and plan ID of the request.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        """Serve a request inside its run context.

        :param request: Incoming request
        :type request: Request
        :param call_next: Next handler in chain
        :type call_next: RequestResponseEndpoint
        :returns: Response with the correlation ID header set
        :rtype: Response
        """
        path = request.url.path
        if path in SKIP_PATHS:
            return await call_next(request)

        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or str(uuid.uuid4())
        stack_id = request.headers.get(STACK_ID_HEADER) or self._stack_from_path(path)
        scope = ObservabilityScope(
            correlation_id=correlation_id,
            stack_id=stack_id,
            execution_id=self._plan_from_path(path),
        )
        with scope:
            self._emit(request, "request_start", client_ip=self._get_client_ip(request))
            start_time = time.perf_counter()
            try:
                response = await call_next(request)
            except Exception as exc:
                self._emit_end(request, 500, start_time, error=exc)
                raise
            self._emit_end(request, response.status_code, start_time)

        response.headers[CORRELATION_ID_HEADER] = correlation_id
        if stack_id:
            response.headers[STACK_ID_HEADER] = stack_id
        return response

    def _emit(
        self, request: Request, event: str, level: LogLevel = LogLevel.INFO, **fields: Any
    ) -> None:
        logger.event(
            create_service_event(
                event=event,
                level=level,
                http_method=request.method,
                http_path=request.url.path,
                **fields,
            )
        )

    def _emit_end(
        self,
        request: Request,
        status_code: int,
        start_time: float,
        error: Optional[Exception] = None,
    ) -> None:
        """Log the request_end event; 4xx and 5xx responses log at ERROR."""
        failed = status_code >= 400
        self._emit(
            request,
            "request_end",
            level=LogLevel.ERROR if failed else LogLevel.INFO,
            status="error" if failed else "success",
            http_status_code=status_code,
            duration_ms=int((time.perf_counter() - start_time) * 1000),
            error=str(error) if error else None,
        )

    @staticmethod
    def _stack_from_path(path: str) -> Optional[str]:
        """Stack key addressed by a /stacks/{key} route, if any."""
        match = _STACK_PATH.search(path)
        return match.group(1) if match else None

    @staticmethod
    def _plan_from_path(path: str) -> Optional[str]:
        """Plan ID addressed by a /plans/{id} route, if any."""
        match = _PLAN_PATH.search(path)
        return match.group(1) if match else None

    @staticmethod
    def _get_client_ip(request: Request) -> Optional[str]:
        """Extract client IP from request.

        :param request: Incoming request
        :returns: First X-Forwarded-For address, else the peer address
        :rtype: Optional[str]
        """
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else None


def add_observability_middleware(app: Any) -> None:
    """Add observability middleware to a FastAPI app."""
    app.add_middleware(ObservabilityMiddleware)
