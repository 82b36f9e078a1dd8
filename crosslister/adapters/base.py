from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from crosslister.adapters.capabilities import AdapterCapabilities
from crosslister.automation.context import ExecutionContext
from crosslister.core.vault import Credentials
from crosslister.schemas.listing import NormalizedListing
from crosslister.sessions.types import AuthMaterial, Identity, Session


@dataclass(frozen=True)
class CreateResult:
    platform_listing_id: str | None
    platform_url: str | None
    detail: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class PlatformAdapter(Protocol):
    """
    Uniform contract every marketplace implements.

    Failures are raised as CrosslistError subclasses (AuthenticationFailure,
    VerificationRequired, ElementNotFound, UploadFailure, ValidationRejected,
    NetworkError); adapters never touch job or listing records.
    """

    platform: str

    def capabilities(self) -> AdapterCapabilities:
        ...

    def introspect(self, material: AuthMaterial) -> Identity:
        """
        Recover platform user id / API tokens from auth material. Must not raise.
        """
        ...

    async def login(self, ctx: ExecutionContext, credentials: Credentials) -> AuthMaterial:
        """
        Fresh credential login. Raises VerificationRequired on a step-up challenge.
        """
        ...

    async def check_login(self, session: Session, ctx: ExecutionContext) -> bool:
        ...

    async def create_listing(self, session: Session, listing: NormalizedListing, ctx: ExecutionContext) -> CreateResult:
        ...

    async def delete_listing(self, session: Session, platform_listing_id: str, ctx: ExecutionContext) -> None:
        ...
