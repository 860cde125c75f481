"""
Pydantic request/response models for the SignalGate REST API.
"""

from typing import Optional

from pydantic import BaseModel, Field


class VerifyKeyRequest(BaseModel):
    """Body of ``POST /verify-key``."""

    key: Optional[str] = Field(default=None, description="License key to check")


class VerifyKeyResponse(BaseModel):
    valid: bool
    error: Optional[str] = None


class LoginRequest(BaseModel):
    """Body of ``POST /login``."""

    username: Optional[str] = None
    password: Optional[str] = None


class LoginUser(BaseModel):
    username: str


class LoginResponse(BaseModel):
    """Outcome of a login.

    Attributes:
        success: Whether the credentials matched.
        user: Public user fields, set on success.
        error: Human-readable failure reason, set on failure.
    """

    success: bool
    user: Optional[LoginUser] = None
    error: Optional[str] = None


class ReloadResponse(BaseModel):
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    """Response of ``GET /health``."""

    status: str
    version: str
    uptime_seconds: float
    tracked_clients: int
    keys: int
    users: int


class ErrorResponse(BaseModel):
    """Standard error body.

    Attributes:
        error: Human-readable reason.
        code: Stable machine-readable code.
        details: Optional extra context (e.g. upstream body).
        request_id: Request identifier, when known.
    """

    error: str
    code: Optional[str] = None
    details: Optional[str] = None
    request_id: Optional[str] = None
