"""
Admission gate middleware.

Builds a :class:`RequestDescriptor` from the incoming request, asks the
gate for a decision, and either answers with the rejection or forwards
the request and stamps rate-limit headers on the response.  Only the
configured protected paths are gated; CORS preflights pass through.
"""

import logging
import time
from typing import Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

from signalgate.config import GateSettings
from signalgate.gate import (
    AdmissionGate,
    GateDecision,
    RejectReason,
    RequestDescriptor,
    derive_client_key,
)

logger = logging.getLogger(__name__)


def describe_request(
    request: Request, settings: GateSettings, now: float
) -> RequestDescriptor:
    """Extract the gate's view of *request*."""
    client_host = request.client.host if request.client else None
    return RequestDescriptor(
        origin=request.headers.get("origin"),
        referer=request.headers.get("referer"),
        user_agent=request.headers.get("user-agent"),
        trusted_header=request.headers.get(settings.trusted_header_name),
        client_key=derive_client_key(
            client_host,
            request.headers.get("x-forwarded-for"),
            settings.trust_forwarded_for,
        ),
        now=now,
    )


def _rate_limit_headers(decision: GateDecision, now: float) -> dict[str, str]:
    if decision.window is None:
        return {}
    reset_in = decision.seconds_until_reset(now)
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(time.time()) + reset_in),
    }
    if decision.reason is RejectReason.RATE_LIMITED:
        headers["Retry-After"] = str(reset_in)
    return headers


class AdmissionGateMiddleware(BaseHTTPMiddleware):
    """Runs the admission gate in front of protected paths.

    Args:
        app: Wrapped ASGI app.
        gate: Shared gate instance.
        settings: Gate settings (header name, forwarded-for trust).
        protected_paths: Exact paths that require admission.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        app,
        gate: AdmissionGate,
        settings: GateSettings,
        protected_paths: Iterable[str],
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(app)
        self._gate = gate
        self._settings = settings
        self._protected = frozenset(p.rstrip("/") or "/" for p in protected_paths)
        self._clock = clock

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path.rstrip("/") or "/"
        if request.method == "OPTIONS" or path not in self._protected:
            return await call_next(request)

        now = self._clock()
        descriptor = describe_request(request, self._settings, now)
        decision = self._gate.evaluate(descriptor)
        headers = _rate_limit_headers(decision, now)

        if not decision.admitted:
            return JSONResponse(
                decision.to_body(),
                status_code=decision.status_code,
                headers=headers,
            )

        response = await call_next(request)
        for name, value in headers.items():
            response.headers[name] = value
        return response
