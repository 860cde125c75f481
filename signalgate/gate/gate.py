"""
Request admission gate for the signal proxy.

Runs five checks in a fixed, short-circuiting order; the first failure
wins:

1. CORS origin: a present ``Origin`` must be allowed.
2. User agent: known scripted clients are refused.
3. Origin/referer corroboration: exact allowed origin, or a referer
   starting with one.
4. Trusted header: exact match against the shared secret.
5. Rate limit: fixed-window counter per client key.

Only step 5 mutates state, so requests refused earlier never consume
rate-limit budget.
"""

import logging
import re
from typing import FrozenSet, List, Optional

from signalgate.config import GateSettings
from signalgate.gate.decision import GateDecision, RejectReason
from signalgate.gate.descriptor import RequestDescriptor
from signalgate.gate.store import RateWindowStore

logger = logging.getLogger(__name__)


class AdmissionGate:
    """Ordered admit/reject pipeline in front of a protected route.

    Args:
        settings: Gate configuration.  Validated on construction.
        store: Rate window store.  A new one is created from ``settings``
            when omitted.

    Raises:
        ConfigurationError: If ``settings`` is invalid.
    """

    def __init__(
        self,
        settings: GateSettings,
        store: Optional[RateWindowStore] = None,
    ) -> None:
        settings.validate()
        self._allowed_origins: FrozenSet[str] = frozenset(settings.allowed_origins)
        # Ordered for deterministic referer prefix checks.
        self._origin_prefixes: List[str] = sorted(self._allowed_origins)
        self._blocked_agents: List[re.Pattern[str]] = [
            re.compile(p, re.IGNORECASE) for p in settings.blocked_agent_patterns
        ]
        self._secret = settings.trusted_header_secret
        self._max_requests = settings.max_requests_per_window
        if store is None:
            store = RateWindowStore(
                window_seconds=settings.window_seconds,
                sweep_after_windows=settings.sweep_after_windows,
                sweep_interval=settings.sweep_interval,
                max_tracked_clients=settings.max_tracked_clients,
            )
        self._store = store
        self._window_seconds = self._store.window_seconds
        logger.info(
            "AdmissionGate initialised",
            extra={
                "allowed_origins": self._origin_prefixes,
                "blocked_patterns": len(self._blocked_agents),
                "max_requests": self._max_requests,
                "window_seconds": self._window_seconds,
            },
        )

    @property
    def store(self) -> RateWindowStore:
        return self._store

    @property
    def allowed_origins(self) -> FrozenSet[str]:
        return self._allowed_origins

    def evaluate(self, request: RequestDescriptor) -> GateDecision:
        """Decide whether *request* may reach the protected handler.

        Args:
            request: Validated request metadata.

        Returns:
            ``GateDecision`` with ``admitted`` set, or the rejection reason.
        """
        if request.origin is not None and request.origin not in self._allowed_origins:
            return self._reject(RejectReason.CORS_ORIGIN_DENIED, request)

        if self.is_blocked_agent(request.user_agent):
            return self._reject(RejectReason.SUSPICIOUS_USER_AGENT, request)

        if not self._origin_corroborated(request):
            return self._reject(RejectReason.INVALID_ORIGIN_OR_REFERER, request)

        if request.trusted_header != self._secret:
            return self._reject(RejectReason.MISSING_TRUSTED_HEADER, request)

        window = self._store.hit(request.client_key, request.now)
        if window.count > self._max_requests:
            logger.warning(
                "Rate limit exceeded",
                extra={
                    "client_key": request.client_key,
                    "count": window.count,
                    "limit": self._max_requests,
                },
            )
            return GateDecision.reject(
                RejectReason.RATE_LIMITED,
                window=window,
                limit=self._max_requests,
                window_seconds=self._window_seconds,
            )
        return GateDecision.admit(window, self._max_requests, self._window_seconds)

    def is_blocked_agent(self, user_agent: Optional[str]) -> bool:
        """True if *user_agent* matches any blocked pattern."""
        if not user_agent:
            return False
        return any(p.search(user_agent) for p in self._blocked_agents)

    def _origin_corroborated(self, request: RequestDescriptor) -> bool:
        if request.origin is not None and request.origin in self._allowed_origins:
            return True
        if request.referer:
            return any(request.referer.startswith(o) for o in self._origin_prefixes)
        return False

    def _reject(
        self, reason: RejectReason, request: RequestDescriptor
    ) -> GateDecision:
        logger.info(
            "Request rejected by admission gate",
            extra={
                "reason": reason.value,
                "client_key": request.client_key,
                "origin": request.origin,
            },
        )
        return GateDecision.reject(reason)
