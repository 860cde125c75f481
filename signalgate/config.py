"""
Central configuration loader for SignalGate.

Reads ``config/config.yaml`` and ``.env``, merges environment-variable
overrides (``SIGNALGATE_`` prefix), and exposes a typed :class:`Settings`
singleton via :func:`get_settings`.
"""

import json
import logging
import os
import re
import threading
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from signalgate.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Resolve project root (directory containing ``config/``)
# ---------------------------------------------------------------------------

_THIS_DIR = Path(__file__).resolve().parent          # signalgate/
_PROJECT_ROOT = _THIS_DIR.parent                     # repo root


def _project_path(*parts: str) -> Path:
    """Build an absolute path relative to the project root."""
    return _PROJECT_ROOT.joinpath(*parts)


DEFAULT_BLOCKED_AGENT_PATTERNS = [
    r"curl",
    r"wget",
    r"python-requests",
    r"python-urllib",
    r"python-httpx",
    r"aiohttp",
    r"httpie",
    r"postman",
    r"insomnia",
    r"go-http-client",
    r"okhttp",
    r"libwww-perl",
    r"scrapy",
    r"java/",
    r"headlesschrome",
    r"phantomjs",
]


# ---------------------------------------------------------------------------
# Nested settings dataclasses
# ---------------------------------------------------------------------------


@dataclass
class ApiSettings:
    host: str = "0.0.0.0"
    port: int = 3000
    title: str = "SignalGate"
    version: str = "1.0.0"


@dataclass
class GateSettings:
    allowed_origins: List[str] = field(
        default_factory=lambda: ["http://localhost:3000"]
    )
    trusted_header_name: str = "X-Client-Token"
    trusted_header_secret: str = ""
    blocked_agent_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_BLOCKED_AGENT_PATTERNS)
    )
    window_seconds: float = 60.0
    max_requests_per_window: int = 30
    trust_forwarded_for: bool = False
    protected_paths: List[str] = field(default_factory=lambda: ["/api/signals"])
    sweep_after_windows: int = 5
    sweep_interval: int = 1000
    max_tracked_clients: int = 10000

    def validate(self) -> None:
        """Raise :class:`ConfigurationError` if the gate cannot run safely."""
        if not self.trusted_header_secret:
            raise ConfigurationError("gate.trusted_header_secret must be set")
        if not self.trusted_header_name:
            raise ConfigurationError("gate.trusted_header_name must be set")
        if self.window_seconds <= 0:
            raise ConfigurationError(
                f"gate.window_seconds must be positive, got {self.window_seconds}"
            )
        if self.max_requests_per_window < 1:
            raise ConfigurationError(
                "gate.max_requests_per_window must be at least 1, "
                f"got {self.max_requests_per_window}"
            )
        if self.sweep_after_windows < 1:
            raise ConfigurationError("gate.sweep_after_windows must be at least 1")
        for pattern in self.blocked_agent_patterns:
            try:
                re.compile(pattern)
            except re.error as exc:
                raise ConfigurationError(
                    f"Invalid blocked agent pattern {pattern!r}: {exc}"
                ) from exc


@dataclass
class DataSettings:
    keys_file: str = "data/keys.json"
    users_file: str = "data/users.json"
    login_attempts_file: str = "data/login_attempts.json"
    max_login_attempts: int = 5000


@dataclass
class SignalSettings:
    upstream_url: str = "https://quotexapi.itssrishu07.workers.dev/"
    timeout_seconds: float = 15.0


@dataclass
class LoggingSettings:
    level: str = "INFO"
    format: str = "text"


@dataclass
class Settings:
    """Top-level settings container."""
    api: ApiSettings = field(default_factory=ApiSettings)
    gate: GateSettings = field(default_factory=GateSettings)
    data: DataSettings = field(default_factory=DataSettings)
    signals: SignalSettings = field(default_factory=SignalSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def as_dict(self, mask_secrets: bool = True) -> Dict[str, Any]:
        """Plain-dict view of the settings, with the gate secret masked."""
        data = asdict(self)
        if mask_secrets and data["gate"]["trusted_header_secret"]:
            data["gate"]["trusted_header_secret"] = "***"
        return data


# ---------------------------------------------------------------------------
# YAML loader
# ---------------------------------------------------------------------------

def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read and parse a YAML file.  Returns ``{}`` if the file is missing."""
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with open(path, "r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    return data if isinstance(data, dict) else {}


def _apply_dict(target: object, data: Dict[str, Any]) -> None:
    """Apply *data* values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if key not in {f.name for f in fields(target)}:
            logger.warning("Unknown config key ignored: %s", key)
            continue
        setattr(target, key, value)


def _parse_list(value: str) -> List[str]:
    """Parse a list from a JSON array or a comma-separated string."""
    v = value.strip()
    if not v:
        return []
    if v.startswith("["):
        try:
            items = json.loads(v)
            return [str(x).strip() for x in items if str(x).strip()]
        except json.JSONDecodeError:
            pass
    return [x.strip() for x in v.split(",") if x.strip()]


def _normalise_origins(origins: List[str]) -> List[str]:
    return [o.strip().rstrip("/") for o in origins if o and o.strip()]


# ---------------------------------------------------------------------------
# Env-var overrides  (SIGNALGATE_SECTION_KEY  e.g. SIGNALGATE_API_PORT)
# ---------------------------------------------------------------------------

_SECTIONS = ["api", "gate", "data", "signals", "logging"]

_TYPE_MAP = {
    int: int,
    float: float,
    bool: lambda v: v.lower() in ("1", "true", "yes"),
    str: str,
    list: _parse_list,
}


def _apply_env_overrides(settings: Settings) -> None:
    """Override fields via ``SIGNALGATE_<SECTION>_<KEY>`` env vars."""
    for section_name in _SECTIONS:
        section = getattr(settings, section_name, None)
        if section is None:
            continue
        prefix = f"SIGNALGATE_{section_name.upper()}_"
        for key in list(vars(section)):
            env_key = prefix + key.upper()
            env_val = os.environ.get(env_key)
            if env_val is None:
                continue
            current = getattr(section, key)
            cast = _TYPE_MAP.get(type(current), str)
            try:
                setattr(section, key, cast(env_val))
                # Secrets must not reach the logs.
                logger.debug("Env override applied: %s", env_key)
            except (ValueError, TypeError):
                logger.warning("Invalid env override %s=%s", env_key, env_val)


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Optional[Settings] = None
_lock = threading.Lock()


def load_settings(
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
) -> Settings:
    """Build a fresh :class:`Settings` from ``.env``, YAML and env overrides.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).

    Returns:
        A new ``Settings`` instance (not cached).
    """
    dotenv_path = env_path or _project_path(".env")
    load_dotenv(dotenv_path, override=True)

    config_path = yaml_path or _project_path("config", "config.yaml")
    raw = _load_yaml(config_path)

    settings = Settings()
    for section_name in _SECTIONS:
        section_data = raw.get(section_name)
        if isinstance(section_data, dict):
            _apply_dict(getattr(settings, section_name), section_data)

    _apply_env_overrides(settings)

    settings.gate.allowed_origins = _normalise_origins(settings.gate.allowed_origins)
    logger.info("Settings loaded from %s", config_path)
    return settings


def get_settings(
    *,
    yaml_path: Optional[Path] = None,
    env_path: Optional[Path] = None,
    _force_reload: bool = False,
) -> Settings:
    """Return the application-wide :class:`Settings` singleton.

    On first call (or when ``_force_reload=True``) the function:

    1. Calls ``load_dotenv()`` to populate env vars from ``.env``.
    2. Reads ``config/config.yaml``.
    3. Applies ``SIGNALGATE_*`` environment-variable overrides.

    Args:
        yaml_path: Override the YAML config file path (testing).
        env_path: Override the ``.env`` file path (testing).
        _force_reload: Re-read everything even if already loaded.

    Returns:
        The global ``Settings`` instance.
    """
    global _settings

    if _settings is not None and not _force_reload:
        return _settings

    with _lock:
        # Double-check after acquiring lock
        if _settings is not None and not _force_reload:
            return _settings
        _settings = load_settings(yaml_path=yaml_path, env_path=env_path)
        return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for testing)."""
    global _settings
    with _lock:
        _settings = None
