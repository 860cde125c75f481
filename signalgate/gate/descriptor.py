"""
Typed request descriptor consumed by the admission gate.

The HTTP layer extracts header values and the client key from the
incoming request and validates them here before they reach the gate.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RequestDescriptor(BaseModel):
    """Observable metadata of one inbound request.

    Attributes:
        origin: ``Origin`` header verbatim, None only when absent.
        referer: ``Referer`` header, None when absent.
        user_agent: ``User-Agent`` header, None when absent.
        trusted_header: Value of the configured shared-secret header,
            kept verbatim (no trimming).
        client_key: Rate-limit bucketing identity.
        now: Monotonic timestamp of the request in seconds.
    """

    model_config = ConfigDict(frozen=True)

    origin: Optional[str] = None
    referer: Optional[str] = None
    user_agent: Optional[str] = None
    trusted_header: Optional[str] = None
    client_key: str = Field(..., min_length=1)
    now: float = Field(..., ge=0.0)

    # A present but empty Origin stays a value so it can be denied.
    @field_validator("referer", "user_agent", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if isinstance(value, str) and not value.strip():
            return None
        return value


def derive_client_key(
    client_host: Optional[str],
    forwarded_for: Optional[str] = None,
    trust_forwarded_for: bool = False,
) -> str:
    """Return the rate-limit key for a request.

    Args:
        client_host: Peer address as seen by the server.
        forwarded_for: Raw ``X-Forwarded-For`` header value.
        trust_forwarded_for: Use the first forwarded entry when present.

    Returns:
        The client key, ``"unknown"`` when nothing identifies the caller.
    """
    if trust_forwarded_for and forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first
    return client_host or "unknown"
