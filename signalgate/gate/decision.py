"""
Admission outcomes: the rejection taxonomy and the decision model.
"""

import math
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel

from signalgate.gate.store import RateWindow


class RejectReason(str, Enum):
    """Why the gate refused a request.  Values are stable wire codes."""

    CORS_ORIGIN_DENIED = "cors_origin_denied"
    SUSPICIOUS_USER_AGENT = "suspicious_user_agent"
    INVALID_ORIGIN_OR_REFERER = "invalid_origin_or_referer"
    MISSING_TRUSTED_HEADER = "missing_trusted_header"
    RATE_LIMITED = "rate_limited"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def message(self) -> str:
        return _MESSAGES[self]


_STATUS_CODES: Dict[RejectReason, int] = {
    RejectReason.CORS_ORIGIN_DENIED: 403,
    RejectReason.SUSPICIOUS_USER_AGENT: 403,
    RejectReason.INVALID_ORIGIN_OR_REFERER: 403,
    RejectReason.MISSING_TRUSTED_HEADER: 403,
    RejectReason.RATE_LIMITED: 429,
}

_MESSAGES: Dict[RejectReason, str] = {
    RejectReason.CORS_ORIGIN_DENIED: "Origin not allowed by CORS policy",
    RejectReason.SUSPICIOUS_USER_AGENT: "Access denied: suspicious user agent",
    RejectReason.INVALID_ORIGIN_OR_REFERER: "Access denied: invalid origin or referer",
    RejectReason.MISSING_TRUSTED_HEADER: "Access denied: missing or invalid client header",
    RejectReason.RATE_LIMITED: "Too many requests, please try again later",
}


class GateDecision(BaseModel):
    """Result of evaluating one request.

    Attributes:
        admitted: True when the request may reach the protected handler.
        reason: Rejection reason, None when admitted.
        window: Rate window snapshot, set only when the rate-limit step ran.
        limit: Configured requests per window, set with ``window``.
        window_seconds: Configured window lifetime, set with ``window``.
    """

    admitted: bool
    reason: Optional[RejectReason] = None
    window: Optional[RateWindow] = None
    limit: Optional[int] = None
    window_seconds: Optional[float] = None

    @classmethod
    def admit(
        cls, window: RateWindow, limit: int, window_seconds: float
    ) -> "GateDecision":
        return cls(
            admitted=True, window=window, limit=limit, window_seconds=window_seconds
        )

    @classmethod
    def reject(
        cls,
        reason: RejectReason,
        window: Optional[RateWindow] = None,
        limit: Optional[int] = None,
        window_seconds: Optional[float] = None,
    ) -> "GateDecision":
        return cls(
            admitted=False,
            reason=reason,
            window=window,
            limit=limit,
            window_seconds=window_seconds,
        )

    @property
    def status_code(self) -> int:
        return 200 if self.reason is None else self.reason.status_code

    @property
    def remaining(self) -> Optional[int]:
        if self.window is None or self.limit is None:
            return None
        return max(0, self.limit - self.window.count)

    def seconds_until_reset(self, now: float) -> Optional[int]:
        """Whole seconds until the counted window resets, never below 1."""
        if self.window is None or self.window_seconds is None:
            return None
        left = self.window.expires_at(self.window_seconds) - now
        return max(1, math.ceil(left))

    def to_body(self) -> Dict[str, str]:
        """JSON body sent to the client on rejection."""
        if self.reason is None:
            return {}
        return {"error": self.reason.message, "code": self.reason.value}
