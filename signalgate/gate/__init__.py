"""Request admission gate (origin, user agent, shared secret, rate limit)."""

from signalgate.gate.decision import GateDecision, RejectReason
from signalgate.gate.descriptor import RequestDescriptor, derive_client_key
from signalgate.gate.gate import AdmissionGate
from signalgate.gate.store import RateWindow, RateWindowStore

__all__ = [
    "AdmissionGate",
    "GateDecision",
    "RateWindow",
    "RateWindowStore",
    "RejectReason",
    "RequestDescriptor",
    "derive_client_key",
]
