from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gatehouse.auth.util import utcnow


@dataclass(frozen=True)
class Identity:
    """
    User account as seen by the session core.

    Only `id` is immutable; the other fields are edited by account-settings flows
    elsewhere and merely read here.
    """

    id: str
    email: str
    username: Optional[str] = None
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    google_id: Optional[str] = None
    show_adult_content: bool = False
    two_factor_enabled: bool = False
    timezone: str = "UTC"
    password_hash: Optional[str] = field(default=None, repr=False)

    @classmethod
    def new(cls, email: str, **kwargs: Any) -> Identity:
        """Create a new identity with a generated ID."""
        return cls(id=str(uuid.uuid4()), email=email.lower().strip(), **kwargs)

    def with_updates(self, **changes: Any) -> Identity:
        return replace(self, **changes)

    def to_public_dict(self) -> Dict[str, Any]:
        """Client-facing view (never includes the password hash)."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "name": self.name,
            "avatarUrl": self.avatar_url,
            "showAdultContent": self.show_adult_content,
            "twoFactorEnabled": self.two_factor_enabled,
            "timezone": self.timezone,
        }


@dataclass
class Session:
    """
    One authenticated browser/client context.

    `token_hash` is derived from the raw token handed to the client; the raw token itself
    is never stored.
    """

    token_hash: str
    user_id: str
    issued_at: datetime
    expires_at: datetime
    last_seen_at: Optional[datetime] = None

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) < self.expires_at

    def to_public_dict(self, *, current: bool = False) -> Dict[str, Any]:
        """Client-facing view for the session list (never includes the token hash)."""
        return {
            "issuedAt": self.issued_at.isoformat(),
            "expiresAt": self.expires_at.isoformat(),
            "lastSeenAt": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "current": current,
        }


@dataclass(frozen=True)
class OAuthState:
    """Decoded OAuth state cookie."""

    state: str
    context: str = "login"  # login|register
    next_path: Optional[str] = None


class ProviderProfile(BaseModel):
    """
    User info returned by the external provider, validated before use.

    `sub` and `email` are required; anything else is optional and extra keys are ignored.
    """

    model_config = ConfigDict(extra="ignore")

    sub: str = Field(min_length=1)
    email: str = Field(min_length=3)
    email_verified: Optional[bool] = None
    name: Optional[str] = None
    picture: Optional[str] = None

    @field_validator("sub", "email", mode="before")
    @classmethod
    def _strip_required(cls, v: Any) -> Any:
        return v.strip() if isinstance(v, str) else v

    @field_validator("email")
    @classmethod
    def _email_shape(cls, v: str) -> str:
        if "@" not in v:
            raise ValueError("invalid email")
        return v.lower()

    @field_validator("name", mode="before")
    @classmethod
    def _name_clamp(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        txt = str(v).strip()
        return txt[:100] or None


class LoginRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str = Field(min_length=1)
    password: str = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def _email_normalize(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Enter a valid email address")
        return v
