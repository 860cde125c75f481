"""SignalGate: key/login service with an admission-gated signal proxy."""

__version__ = "1.0.0"
