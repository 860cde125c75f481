"""Upstream signal API passthrough."""

from signalgate.signals.client import SignalClient, SignalQuery, SignalResponse

__all__ = ["SignalClient", "SignalQuery", "SignalResponse"]
