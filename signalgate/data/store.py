"""
Flat JSON file storage for license keys, users and login attempts.

Keys and users are read into memory once and swapped atomically on
:meth:`JsonDataStore.reload`.  Login attempts are appended to their own
file, rewritten through a temporary file so a crash never leaves a
half-written document behind.
"""

import hmac
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import BaseModel, Field, ValidationError

from signalgate.exceptions import DataStoreError

logger = logging.getLogger(__name__)


class User(BaseModel):
    """A user record as stored in the users file."""

    username: str
    password: str


class LoginAttempt(BaseModel):
    """One recorded login attempt.

    Attributes:
        username: Username the caller submitted.
        client_key: Caller identity (usually the client IP).
        success: Whether the credentials matched.
        timestamp: UTC time of the attempt.
    """

    username: str
    client_key: str
    success: bool
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    """Parse *path* as a JSON object.  Returns None if the file is missing."""
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as exc:
        raise DataStoreError(f"Could not read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise DataStoreError(f"Expected a JSON object in {path}")
    return data


def _write_json(path: Path, data: Dict[str, Any]) -> None:
    """Write *data* to *path* via a temp file and ``os.replace``."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2, default=str)
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as exc:
        raise DataStoreError(f"Could not write {path}: {exc}") from exc


class JsonDataStore:
    """File-backed key, user and login-attempt storage.

    Args:
        keys_file: JSON file shaped ``{"validKeys": [...]}``.
        users_file: JSON file shaped ``{"users": [{"username", "password"}]}``.
        login_attempts_file: JSON file shaped ``{"attempts": [...]}``.
        max_login_attempts: Newest attempts kept in the attempts file.
    """

    def __init__(
        self,
        keys_file: Path,
        users_file: Path,
        login_attempts_file: Path,
        max_login_attempts: int = 5000,
    ) -> None:
        self._keys_file = Path(keys_file)
        self._users_file = Path(users_file)
        self._attempts_file = Path(login_attempts_file)
        self._max_attempts = max(1, max_login_attempts)
        self._lock = threading.Lock()
        self._attempts_lock = threading.Lock()
        self._keys: FrozenSet[str] = frozenset()
        self._users: Dict[str, User] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Read keys and users from disk, replacing the in-memory copy.

        Raises:
            DataStoreError: If a file exists but is unreadable or malformed.
                The previously loaded data stays in place.
        """
        keys = self._load_keys()
        users = self._load_users()
        with self._lock:
            self._keys = keys
            self._users = users
        logger.info(
            "Data loaded",
            extra={"keys": len(keys), "users": len(users)},
        )

    reload = load

    def _load_keys(self) -> FrozenSet[str]:
        data = _read_json(self._keys_file)
        if data is None:
            logger.warning("Keys file not found: %s", self._keys_file)
            return frozenset()
        raw = data.get("validKeys", [])
        if not isinstance(raw, list):
            raise DataStoreError(f"'validKeys' must be a list in {self._keys_file}")
        return frozenset(str(k).strip() for k in raw if str(k).strip())

    def _load_users(self) -> Dict[str, User]:
        data = _read_json(self._users_file)
        if data is None:
            logger.warning("Users file not found: %s", self._users_file)
            return {}
        raw = data.get("users", [])
        if not isinstance(raw, list):
            raise DataStoreError(f"'users' must be a list in {self._users_file}")
        try:
            users = [User.model_validate(u) for u in raw]
        except ValidationError as exc:
            raise DataStoreError(f"Malformed user record in {self._users_file}: {exc}") from exc
        return {u.username: u for u in users}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def key_count(self) -> int:
        return len(self._keys)

    @property
    def user_count(self) -> int:
        return len(self._users)

    def is_valid_key(self, key: str) -> bool:
        """True if *key*, with surrounding whitespace removed, is a valid key."""
        return key.strip() in self._keys

    def find_user(self, username: str, password: str) -> Optional[User]:
        """Return the user whose credentials match exactly, or None."""
        user = self._users.get(username)
        if user is None:
            return None
        if not hmac.compare_digest(user.password.encode(), password.encode()):
            return None
        return user

    # ------------------------------------------------------------------
    # Login attempts
    # ------------------------------------------------------------------

    def record_login_attempt(self, attempt: LoginAttempt) -> None:
        """Append *attempt* to the attempts file, keeping the newest entries.

        Raises:
            DataStoreError: If the attempts file cannot be read or written.
        """
        with self._attempts_lock:
            data = _read_json(self._attempts_file) or {}
            attempts = data.get("attempts", [])
            if not isinstance(attempts, list):
                attempts = []
            attempts.append(attempt.model_dump(mode="json"))
            _write_json(
                self._attempts_file,
                {"attempts": attempts[-self._max_attempts:]},
            )
        logger.debug(
            "Login attempt recorded",
            extra={"username": attempt.username, "success": attempt.success},
        )

    def login_attempts(self) -> List[LoginAttempt]:
        """Return all recorded attempts, oldest first."""
        with self._attempts_lock:
            data = _read_json(self._attempts_file) or {}
        return [LoginAttempt.model_validate(a) for a in data.get("attempts", [])]
