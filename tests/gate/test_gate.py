"""Tests for AdmissionGate -- ordered admit/reject pipeline."""

import threading
from typing import List

import pytest

from signalgate.config import GateSettings
from signalgate.exceptions import ConfigurationError
from signalgate.gate import (
    AdmissionGate,
    GateDecision,
    RateWindowStore,
    RejectReason,
    RequestDescriptor,
)

ORIGIN = "https://app.example.com"
SECRET = "s3cret-Token"
BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/120.0"


def _settings(**overrides) -> GateSettings:
    values = dict(
        allowed_origins=[ORIGIN, "https://admin.example.com"],
        trusted_header_secret=SECRET,
        window_seconds=60,
        max_requests_per_window=30,
    )
    values.update(overrides)
    return GateSettings(**values)


def _request(**overrides) -> RequestDescriptor:
    values = dict(
        origin=ORIGIN,
        referer=None,
        user_agent=BROWSER_UA,
        trusted_header=SECRET,
        client_key="203.0.113.7",
        now=1000.0,
    )
    values.update(overrides)
    return RequestDescriptor(**values)


@pytest.fixture
def store() -> RateWindowStore:
    return RateWindowStore(window_seconds=60)


@pytest.fixture
def gate(store: RateWindowStore) -> AdmissionGate:
    return AdmissionGate(_settings(), store=store)


# ── Construction ───────────────────────────────────────


class TestConstruction:
    def test_empty_secret_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            AdmissionGate(_settings(trusted_header_secret=""))

    def test_zero_limit_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            AdmissionGate(_settings(max_requests_per_window=0))

    def test_bad_pattern_rejected(self) -> None:
        with pytest.raises(ConfigurationError):
            AdmissionGate(_settings(blocked_agent_patterns=["(unclosed"]))

    def test_builds_own_store_when_none_given(self) -> None:
        gate = AdmissionGate(_settings(window_seconds=30))
        assert gate.store.window_seconds == 30

    def test_uses_injected_empty_store(self) -> None:
        store = RateWindowStore(window_seconds=60)
        assert len(store) == 0
        gate = AdmissionGate(_settings(), store=store)
        assert gate.store is store
        gate.evaluate(_request())
        assert store.get("203.0.113.7").count == 1

    def test_injected_store_state_is_honoured(self) -> None:
        store = RateWindowStore(window_seconds=60)
        for _ in range(30):
            store.hit("203.0.113.7", 990.0)
        gate = AdmissionGate(_settings(), store=store)

        decision = gate.evaluate(_request(now=1000.0))
        assert decision.reason is RejectReason.RATE_LIMITED
        assert decision.window.count == 31
        assert decision.window.window_start == 990.0

        fresh = gate.evaluate(_request(client_key="198.51.100.1"))
        assert fresh.admitted
        assert len(store) == 2


# ── Step 1: CORS origin ────────────────────────────────


class TestCorsOrigin:
    def test_unknown_origin_denied(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(origin="https://evil.example.net"))
        assert decision.reason is RejectReason.CORS_ORIGIN_DENIED
        assert decision.status_code == 403

    def test_unknown_origin_wins_over_everything_else(
        self, gate: AdmissionGate
    ) -> None:
        decision = gate.evaluate(
            _request(
                origin="https://evil.example.net",
                user_agent="curl/8.4.0",
                trusted_header=None,
                referer=ORIGIN + "/page",
            )
        )
        assert decision.reason is RejectReason.CORS_ORIGIN_DENIED

    def test_origin_match_is_exact(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(origin=ORIGIN + ".evil.net"))
        assert decision.reason is RejectReason.CORS_ORIGIN_DENIED

    def test_origin_match_is_case_sensitive(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(origin="https://APP.example.com"))
        assert decision.reason is RejectReason.CORS_ORIGIN_DENIED

    def test_denied_origin_never_touches_store(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        gate.evaluate(_request())
        before = store.get("203.0.113.7")
        for _ in range(50):
            gate.evaluate(_request(origin="https://evil.example.net"))
        after = store.get("203.0.113.7")
        assert before is not None and after is not None
        assert before.count == after.count == 1

    def test_denied_origin_creates_no_window(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        gate.evaluate(_request(origin="https://evil.example.net", client_key="x"))
        assert store.get("x") is None
        assert len(store) == 0


# ── Step 2: user agent ─────────────────────────────────


class TestUserAgent:
    @pytest.mark.parametrize(
        "agent",
        [
            "curl/8.4.0",
            "Wget/1.21.4",
            "python-requests/2.31.0",
            "PostmanRuntime/7.36.0",
            "HTTPie/3.2.2",
            "Go-http-client/2.0",
        ],
    )
    def test_blocked_agents(self, gate: AdmissionGate, agent: str) -> None:
        decision = gate.evaluate(_request(user_agent=agent))
        assert decision.reason is RejectReason.SUSPICIOUS_USER_AGENT
        assert decision.status_code == 403

    def test_match_is_case_insensitive(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(user_agent="CURL/7.0"))
        assert decision.reason is RejectReason.SUSPICIOUS_USER_AGENT

    def test_blocked_even_when_everything_else_valid(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        decision = gate.evaluate(_request(user_agent="python-requests/2.31"))
        assert decision.reason is RejectReason.SUSPICIOUS_USER_AGENT
        assert len(store) == 0

    def test_blocked_agent_checked_before_referer(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(
            _request(origin=None, referer=None, user_agent="wget")
        )
        assert decision.reason is RejectReason.SUSPICIOUS_USER_AGENT

    def test_missing_agent_is_not_blocked(self, gate: AdmissionGate) -> None:
        assert gate.evaluate(_request(user_agent=None)).admitted

    def test_custom_patterns(self) -> None:
        gate = AdmissionGate(_settings(blocked_agent_patterns=[r"^MyBot/\d"]))
        assert gate.is_blocked_agent("MyBot/2.0")
        assert not gate.is_blocked_agent("curl/8.0")


# ── Step 3: origin / referer corroboration ─────────────


class TestOriginOrReferer:
    def test_no_origin_no_referer_rejected(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(origin=None, referer=None))
        assert decision.reason is RejectReason.INVALID_ORIGIN_OR_REFERER
        assert decision.status_code == 403

    def test_referer_prefix_accepted(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(
            _request(origin=None, referer=ORIGIN + "/dashboard?tab=1")
        )
        assert decision.admitted

    def test_referer_from_other_site_rejected(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(
            _request(origin=None, referer="https://other.example.org/")
        )
        assert decision.reason is RejectReason.INVALID_ORIGIN_OR_REFERER

    def test_blank_origin_denied_even_with_valid_referer(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        decision = gate.evaluate(_request(origin="", referer=ORIGIN + "/x"))
        assert decision.reason is RejectReason.CORS_ORIGIN_DENIED
        assert len(store) == 0


# ── Step 4: trusted header ─────────────────────────────


class TestTrustedHeader:
    def test_missing_header_rejected(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(trusted_header=None))
        assert decision.reason is RejectReason.MISSING_TRUSTED_HEADER
        assert decision.status_code == 403

    def test_wrong_value_rejected(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(trusted_header="nope"))
        assert decision.reason is RejectReason.MISSING_TRUSTED_HEADER

    def test_comparison_is_case_sensitive(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(trusted_header=SECRET.lower()))
        assert decision.reason is RejectReason.MISSING_TRUSTED_HEADER

    def test_value_is_not_trimmed(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(trusted_header=f" {SECRET} "))
        assert decision.reason is RejectReason.MISSING_TRUSTED_HEADER

    def test_failed_header_does_not_count(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        for _ in range(40):
            gate.evaluate(_request(trusted_header="wrong"))
        assert store.get("203.0.113.7") is None


# ── Step 5: rate limiting ──────────────────────────────


class TestRateLimit:
    def test_exactly_max_admitted_then_429(self, gate: AdmissionGate) -> None:
        decisions = [gate.evaluate(_request(now=0.0)) for _ in range(30)]
        assert all(d.admitted for d in decisions)

        over = gate.evaluate(_request(now=0.0))
        assert over.reason is RejectReason.RATE_LIMITED
        assert over.status_code == 429

    def test_worked_example(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        for _ in range(30):
            assert gate.evaluate(_request(now=0.0)).admitted
        assert store.get("203.0.113.7").count == 30

        assert gate.evaluate(_request(now=10.0)).reason is RejectReason.RATE_LIMITED

        late = gate.evaluate(_request(now=61.0))
        assert late.admitted
        assert store.get("203.0.113.7").count == 1

    def test_rejected_request_still_counts(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        for _ in range(33):
            gate.evaluate(_request(now=5.0))
        assert store.get("203.0.113.7").count == 33

    def test_reset_exactly_at_window_end(self, gate: AdmissionGate) -> None:
        for _ in range(31):
            gate.evaluate(_request(now=100.0))
        assert gate.evaluate(_request(now=160.0)).admitted

    def test_still_limited_just_before_window_end(self, gate: AdmissionGate) -> None:
        for _ in range(30):
            gate.evaluate(_request(now=100.0))
        assert not gate.evaluate(_request(now=159.999)).admitted

    def test_clients_are_isolated(self, gate: AdmissionGate) -> None:
        for _ in range(31):
            gate.evaluate(_request(client_key="a", now=0.0))
        assert gate.evaluate(_request(client_key="b", now=0.0)).admitted

    def test_boundary_burst_allowed(self, gate: AdmissionGate) -> None:
        for _ in range(30):
            assert gate.evaluate(_request(now=59.0)).admitted
        # New window opens at the first request after expiry.
        for _ in range(30):
            assert gate.evaluate(_request(now=119.5)).admitted

    def test_decision_carries_window_metadata(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(now=10.0))
        assert decision.limit == 30
        assert decision.remaining == 29
        assert decision.seconds_until_reset(10.0) == 60
        assert decision.seconds_until_reset(69.5) == 1

    def test_limited_client_stays_limited_under_store_pressure(self) -> None:
        store = RateWindowStore(window_seconds=60, max_tracked_clients=2)
        gate = AdmissionGate(_settings(max_requests_per_window=3), store=store)
        for _ in range(4):
            decision = gate.evaluate(_request(client_key="attacker", now=0.0))
        assert decision.reason is RejectReason.RATE_LIMITED

        gate.evaluate(_request(client_key="b", now=1.0))
        gate.evaluate(_request(client_key="c", now=2.0))

        decision = gate.evaluate(_request(client_key="attacker", now=3.0))
        assert decision.reason is RejectReason.RATE_LIMITED
        assert decision.window.window_start == 0.0

    def test_concurrent_requests_never_exceed_limit(
        self, gate: AdmissionGate, store: RateWindowStore
    ) -> None:
        results: List[GateDecision] = []
        lock = threading.Lock()

        def worker() -> None:
            for _ in range(20):
                decision = gate.evaluate(_request(now=1.0))
                with lock:
                    results.append(decision)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        admitted = sum(1 for d in results if d.admitted)
        assert admitted == 30
        assert store.get("203.0.113.7").count == 160


# ── Decision body ──────────────────────────────────────


class TestDecisionBody:
    def test_reject_body(self, gate: AdmissionGate) -> None:
        decision = gate.evaluate(_request(trusted_header=None))
        body = decision.to_body()
        assert body["code"] == "missing_trusted_header"
        assert isinstance(body["error"], str) and body["error"]

    def test_admit_body_is_empty(self, gate: AdmissionGate) -> None:
        assert gate.evaluate(_request()).to_body() == {}

    def test_every_reason_has_status_and_message(self) -> None:
        for reason in RejectReason:
            assert reason.status_code in (403, 429)
            assert reason.message
