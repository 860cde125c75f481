"""
FastAPI application factory for SignalGate.

Creates and configures the app with the key/login routes, the gated
signal proxy, middleware, and shared state.
"""

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from signalgate.api.middleware import AdmissionGateMiddleware
from signalgate.api.schemas import (
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    LoginResponse,
    LoginUser,
    ReloadResponse,
    VerifyKeyRequest,
    VerifyKeyResponse,
)
from signalgate.config import Settings, get_settings
from signalgate.data import JsonDataStore, LoginAttempt
from signalgate.exceptions import (
    ConfigurationError,
    DataStoreError,
    SignalGateException,
    UpstreamStatusError,
    UpstreamUnavailableError,
)
from signalgate.gate import AdmissionGate, derive_client_key
from signalgate.signals import SignalClient, SignalQuery

logger = logging.getLogger(__name__)

_STATUS_MAP: Dict[type, int] = {
    ConfigurationError: 500,
    DataStoreError: 500,
    UpstreamStatusError: 502,
    UpstreamUnavailableError: 500,
}


def _error_code(exc: Exception) -> str:
    """``UpstreamStatusError`` -> ``upstream_status``."""
    name = exc.__class__.__name__.removesuffix("Error")
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def create_app(
    settings: Optional[Settings] = None,
    *,
    data_store: Optional[JsonDataStore] = None,
    signal_client: Optional[SignalClient] = None,
    gate: Optional[AdmissionGate] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Settings to use.  Defaults to :func:`get_settings`.
        data_store: Key/user store.  Built from ``settings.data`` and
            loaded from disk when omitted.
        signal_client: Upstream client.  Built from ``settings.signals``
            when omitted.
        gate: Admission gate.  Built from ``settings.gate`` when omitted.
        clock: Monotonic clock for the gate (tests).

    Returns:
        Configured FastAPI instance.

    Raises:
        ConfigurationError: If the gate settings are invalid.
        DataStoreError: If the key or user file is malformed.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.api.title,
        description="License key, login and gated signal proxy API",
        version=settings.api.version,
    )

    if gate is None:
        gate = AdmissionGate(settings.gate)
    if data_store is None:
        data_store = JsonDataStore(
            keys_file=Path(settings.data.keys_file),
            users_file=Path(settings.data.users_file),
            login_attempts_file=Path(settings.data.login_attempts_file),
            max_login_attempts=settings.data.max_login_attempts,
        )
        data_store.load()
    if signal_client is None:
        signal_client = SignalClient(
            upstream_url=settings.signals.upstream_url,
            timeout_seconds=settings.signals.timeout_seconds,
        )

    app.state.settings = settings
    app.state.gate = gate
    app.state.data_store = data_store
    app.state.signal_client = signal_client
    app.state.start_time = time.time()

    # Last added runs first: CORS -> request id -> admission gate -> routes.
    app.add_middleware(
        AdmissionGateMiddleware,
        gate=gate,
        settings=settings.gate,
        protected_paths=settings.gate.protected_paths,
        clock=clock or time.monotonic,
    )

    @app.middleware("http")
    async def add_request_id(request: Request, call_next: Any) -> Response:
        """Attach a unique request ID to every request."""
        request_id = request.headers.get(
            "X-Request-Id", uuid.uuid4().hex[:12]
        )
        request.state.request_id = request_id
        response: Response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=sorted(gate.allowed_origins),
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-Id",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    logger.info(
        "CORS allow_origins=%s protected_paths=%s",
        sorted(gate.allowed_origins),
        settings.gate.protected_paths,
    )

    # -- Global exception handlers --
    @app.exception_handler(SignalGateException)
    async def signalgate_exception_handler(
        request: Request, exc: SignalGateException
    ) -> Response:
        """Handle all SignalGateException subclasses with consistent JSON."""
        request_id = getattr(request.state, "request_id", "unknown")
        status_code = _STATUS_MAP.get(type(exc), 500)

        body = ErrorResponse(
            error=str(exc), code=_error_code(exc), request_id=request_id
        )
        if isinstance(exc, UpstreamStatusError):
            body.details = exc.body
        elif isinstance(exc, UpstreamUnavailableError):
            body.error = "Internal Server Error"
            body.details = str(exc)

        if status_code >= 500:
            logger.error(
                "Request failed",
                extra={"request_id": request_id, "error": str(exc)},
            )
        return JSONResponse(
            body.model_dump(exclude_none=True), status_code=status_code
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(
        request: Request, exc: Exception
    ) -> Response:
        """Catch-all handler for unhandled exceptions."""
        request_id = getattr(request.state, "request_id", "unknown")
        logger.error(
            "Unhandled exception",
            extra={"request_id": request_id, "error": str(exc)},
            exc_info=True,
        )
        return JSONResponse(
            ErrorResponse(
                error="An unexpected error occurred",
                code="internal_server_error",
                request_id=request_id,
            ).model_dump(exclude_none=True),
            status_code=500,
        )

    # -- Routes --

    @app.get("/", response_class=PlainTextResponse)
    async def home() -> str:
        return "Auth server is running 🚀"

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        store: JsonDataStore = request.app.state.data_store
        return HealthResponse(
            status="ok",
            version=settings.api.version,
            uptime_seconds=round(time.time() - request.app.state.start_time, 3),
            tracked_clients=len(request.app.state.gate.store),
            keys=store.key_count,
            users=store.user_count,
        )

    @app.post(
        "/verify-key",
        response_model=VerifyKeyResponse,
        response_model_exclude_none=True,
        responses={400: {"model": VerifyKeyResponse}},
        summary="Check a license key",
    )
    async def verify_key(
        request: Request, body: Optional[VerifyKeyRequest] = None
    ) -> Any:
        if body is None or not body.key:
            return JSONResponse(
                {"valid": False, "error": "Missing key"}, status_code=400
            )
        store: JsonDataStore = request.app.state.data_store
        return VerifyKeyResponse(valid=store.is_valid_key(body.key))

    @app.post(
        "/login",
        response_model=LoginResponse,
        response_model_exclude_none=True,
        responses={400: {"model": LoginResponse}},
        summary="Check username and password",
    )
    async def login(request: Request, body: Optional[LoginRequest] = None) -> Any:
        if body is None or not body.username or not body.password:
            return JSONResponse(
                {"success": False, "error": "Missing username or password"},
                status_code=400,
            )

        store: JsonDataStore = request.app.state.data_store
        user = store.find_user(body.username, body.password)

        client_key = derive_client_key(
            request.client.host if request.client else None,
            request.headers.get("x-forwarded-for"),
            settings.gate.trust_forwarded_for,
        )
        try:
            store.record_login_attempt(
                LoginAttempt(
                    username=body.username,
                    client_key=client_key,
                    success=user is not None,
                )
            )
        except DataStoreError:
            logger.exception(
                "Failed to record login attempt",
                extra={"username": body.username},
            )

        if user is None:
            return LoginResponse(success=False, error="Invalid credentials")
        return LoginResponse(success=True, user=LoginUser(username=user.username))

    @app.post(
        "/reload-data",
        response_model=ReloadResponse,
        response_model_exclude_none=True,
        responses={500: {"model": ReloadResponse}},
        summary="Re-read keys and users from disk",
    )
    async def reload_data(request: Request) -> Any:
        store: JsonDataStore = request.app.state.data_store
        try:
            store.reload()
        except DataStoreError:
            logger.exception("Data reload failed")
            return JSONResponse(
                {"success": False, "error": "Failed to reload data"},
                status_code=500,
            )
        return ReloadResponse(success=True, message="Data reloaded from disk")

    @app.get(
        "/api/signals",
        responses={
            400: {"model": ErrorResponse},
            403: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            502: {"model": ErrorResponse},
        },
        summary="Proxy the upstream signal API",
    )
    async def signals(
        request: Request,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        assets: Optional[str] = None,
        day: Optional[str] = None,
    ) -> Response:
        if not (start_time and end_time and assets and day):
            return JSONResponse(
                {"error": "Missing required parameters"}, status_code=400
            )

        client: SignalClient = request.app.state.signal_client
        result = await client.fetch(
            SignalQuery(
                start_time=start_time, end_time=end_time, assets=assets, day=day
            )
        )
        return Response(content=result.text, media_type=result.content_type)

    return app
