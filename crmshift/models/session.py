"""Tenant and token session models."""

from dataclasses import dataclass
from typing import Any, Dict, Optional
from enum import Enum


class TokenState(str, Enum):
    """Lifecycle state of a session's access token."""
    NO_TOKEN = "no_token"
    CACHED_VALID = "cached_valid"
    CACHED_EXPIRING_SOON = "cached_expiring_soon"
    REFRESHING = "refreshing"
    INVALIDATED = "invalidated"


SOURCE_INSTANCE = "a"
TARGET_INSTANCE = "b"


@dataclass(frozen=True)
class Tenant:
    """One authenticated connection: a user's source or target instance."""
    user_id: str
    instance: str = SOURCE_INSTANCE

    @property
    def session_key(self) -> str:
        return session_key_for(self.user_id, self.instance)

    @classmethod
    def source(cls, user_id: str) -> "Tenant":
        return cls(user_id=user_id, instance=SOURCE_INSTANCE)

    @classmethod
    def target(cls, user_id: str) -> "Tenant":
        return cls(user_id=user_id, instance=TARGET_INSTANCE)

    @classmethod
    def from_session_key(cls, session_key: str) -> Optional["Tenant"]:
        return split_session_key(session_key)


@dataclass
class TenantSession:
    """Tokens held for one session key."""
    session_key: str
    access_token: Optional[str] = None
    access_token_expires_at: Optional[float] = None  # epoch seconds
    refresh_token: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_key": self.session_key,
            "access_token": mask(self.access_token),
            "access_token_expires_at": self.access_token_expires_at,
            "refresh_token": mask(self.refresh_token),
        }


def session_key_for(user_id: str, instance: str) -> str:
    """Compose the dual-instance session key."""
    return f"{user_id}_{instance}"


def split_session_key(session_key: str) -> Optional[Tenant]:
    """Reverse of session_key_for; None when the key has no instance suffix."""
    user_id, sep, instance = session_key.rpartition("_")
    if not sep or not user_id or not instance:
        return None
    return Tenant(user_id=user_id, instance=instance)


def profile_field(kind: str, instance: str) -> str:
    """
    Name of a per-instance column in the tenant profile.

    Args:
        kind: One of access_token, refresh_token, access_token_expires_at, portal_id
        instance: Instance suffix ("a" or "b")
    """
    return f"hubspot_{kind}_{instance}"


def mask(value: Optional[str]) -> Optional[str]:
    """Mask a secret for logging."""
    if not value:
        return value
    text = str(value)
    if len(text) <= 8:
        return f"{text[:2]}****"
    return f"{text[:4]}****{text[-4:]}"
