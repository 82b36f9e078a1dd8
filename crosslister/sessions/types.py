from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass(frozen=True)
class AuthMaterial:
    """Cookie jar and/or bearer+csrf pair proving a logged-in state."""
    cookies: list[dict[str, Any]] = field(default_factory=list)
    tokens: dict[str, str] = field(default_factory=dict)

    def cookie(self, name: str) -> str | None:
        for c in self.cookies:
            if c.get("name") == name:
                return c.get("value")
        return None

    def to_dict(self) -> dict[str, Any]:
        return {"cookies": [dict(c) for c in self.cookies], "tokens": dict(self.tokens)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthMaterial":
        return cls(cookies=list(data.get("cookies") or []), tokens=dict(data.get("tokens") or {}))

    def __repr__(self) -> str:
        return f"AuthMaterial(cookies={len(self.cookies)}, tokens={sorted(self.tokens)})"


@dataclass(frozen=True)
class Identity:
    """What credential introspection could recover from auth material."""
    platform_user_id: str | None = None
    tokens: dict[str, str] = field(default_factory=dict)
    expires_at: datetime | None = None


@dataclass(frozen=True)
class Session:
    user_id: str
    platform: str
    auth: AuthMaterial
    platform_user_id: str | None = None
    last_validated_at: datetime | None = None
