"""JSON file persistence for keys, users and login attempts."""

from signalgate.data.store import JsonDataStore, LoginAttempt, User

__all__ = ["JsonDataStore", "LoginAttempt", "User"]
