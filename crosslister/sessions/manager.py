from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.adapters.base import PlatformAdapter
from crosslister.automation.context import ExecutionContext
from crosslister.core.crypto import decrypt_json, encrypt_json
from crosslister.core.errors import AuthenticationFailure, CrosslistError, DecryptionError, VerificationRequired
from crosslister.core.vault import decrypt_credentials, default_key
from crosslister.models.platform_session import PlatformSession
from crosslister.services.audit import audit
from crosslister.services.upsert import upsert
from crosslister.sessions.types import AuthMaterial, Session

log = logging.getLogger(__name__)


def _known_expiry_passed(adapter: PlatformAdapter, session: Session) -> bool:
    expires_at = adapter.introspect(session.auth).expires_at
    return expires_at is not None and expires_at <= datetime.now(timezone.utc)


class SessionManager:
    """
    Resolves per-(user, platform) auth for a job.

    Cached sessions are revalidated lazily right before use. Refreshes are
    whole-value writes (last valid write wins), so two jobs racing on the same
    key can never merge cookie jars.
    """

    def __init__(self, *, vault_key: bytes | None = None):
        self._vault_key = vault_key

    def _key(self) -> bytes:
        return self._vault_key if self._vault_key is not None else default_key()

    async def load(self, db: AsyncSession, user_id: str, platform: str) -> Session | None:
        row = (await db.execute(
            select(PlatformSession)
            .where(PlatformSession.user_id == user_id, PlatformSession.platform == platform)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        if not row:
            return None

        try:
            material = AuthMaterial.from_dict(decrypt_json(row.auth_ciphertext))
        except DecryptionError:
            # key rotated or row corrupted: treat as no session, a fresh login replaces it
            log.warning("session: stored auth for user=%s platform=%s unreadable, discarding", user_id, platform)
            await self.invalidate(db, user_id, platform, reason="undecryptable")
            return None

        return Session(
            user_id=user_id,
            platform=platform,
            auth=material,
            platform_user_id=row.platform_user_id,
            last_validated_at=row.last_validated_at,
        )

    async def save(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        platform: str,
        material: AuthMaterial,
        platform_user_id: str | None,
    ) -> Session:
        now = datetime.now(timezone.utc)
        await upsert(
            db,
            PlatformSession,
            values={
                "user_id": user_id,
                "platform": platform,
                "auth_ciphertext": encrypt_json(material.to_dict()),
                "platform_user_id": platform_user_id,
                "last_validated_at": now,
                "updated_at": now,
            },
            conflict_columns=("user_id", "platform"),
            update_columns=("auth_ciphertext", "platform_user_id", "last_validated_at", "updated_at"),
        )
        return Session(
            user_id=user_id,
            platform=platform,
            auth=material,
            platform_user_id=platform_user_id,
            last_validated_at=now,
        )

    async def invalidate(
        self,
        db: AsyncSession,
        user_id: str,
        platform: str,
        *,
        reason: str,
        actor: str | None = None,
    ) -> bool:
        result = await db.execute(
            delete(PlatformSession).where(PlatformSession.user_id == user_id, PlatformSession.platform == platform)
        )
        removed = bool(result.rowcount)
        if removed:
            log.info("session: invalidated user=%s platform=%s reason=%s", user_id, platform, reason)
            await audit(
                db,
                action="session.invalidated",
                user_id=user_id,
                platform=platform,
                actor=actor,
                target_type="platform_session",
                detail={"reason": reason},
            )
        return removed

    async def login(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        platform: str,
        encrypted_credentials: str | None,
        adapter: PlatformAdapter,
        ctx: ExecutionContext,
        actor: str | None = None,
    ) -> Session:
        if not encrypted_credentials:
            raise AuthenticationFailure(f"No stored credentials for {platform}; reconnect the account")

        credentials = decrypt_credentials(encrypted_credentials, self._key())

        outcome, error_code = "failed", None
        try:
            material = await adapter.login(ctx, credentials)
            outcome = "succeeded"
        except VerificationRequired as e:
            outcome, error_code = "verification_required", e.code
            raise
        except CrosslistError as e:
            error_code = e.code
            raise
        finally:
            await audit(
                db,
                action="session.login",
                user_id=user_id,
                platform=platform,
                actor=actor,
                target_type="platform_session",
                detail={"outcome": outcome, "error_code": error_code},
            )

        identity = adapter.introspect(material)
        if identity.tokens:
            material = replace(material, tokens={**material.tokens, **identity.tokens})

        log.info("session: fresh login user=%s platform=%s", user_id, platform)
        return await self.save(
            db,
            user_id=user_id,
            platform=platform,
            material=material,
            platform_user_id=identity.platform_user_id,
        )

    async def resolve(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        platform: str,
        encrypted_credentials: str | None,
        adapter: PlatformAdapter,
        ctx: ExecutionContext,
        actor: str | None = None,
    ) -> Session:
        cached = await self.load(db, user_id, platform)
        if cached is not None and _known_expiry_passed(adapter, cached):
            log.info("session: cached session expired user=%s platform=%s", user_id, platform)
            await self.invalidate(db, user_id, platform, reason="expired", actor=actor)
            cached = None

        if cached is not None:
            await ctx.apply_auth(cached.auth.cookies)
            if await adapter.check_login(cached, ctx):
                now = datetime.now(timezone.utc)
                await db.execute(
                    update(PlatformSession)
                    .where(PlatformSession.user_id == user_id, PlatformSession.platform == platform)
                    .values(last_validated_at=now)
                )
                return replace(cached, last_validated_at=now)

            log.info("session: cached session rejected user=%s platform=%s", user_id, platform)
            await self.invalidate(db, user_id, platform, reason="validation_failed", actor=actor)
            await ctx.apply_auth([])

        return await self.login(
            db,
            user_id=user_id,
            platform=platform,
            encrypted_credentials=encrypted_credentials,
            adapter=adapter,
            ctx=ctx,
            actor=actor,
        )

    async def refresh(
        self,
        db: AsyncSession,
        *,
        user_id: str,
        platform: str,
        encrypted_credentials: str | None,
        adapter: PlatformAdapter,
        ctx: ExecutionContext,
        actor: str | None = None,
    ) -> Session:
        """Drop whatever is cached and log in again (after a 401/403-equivalent)."""
        await self.invalidate(db, user_id, platform, reason="rejected_by_platform", actor=actor)
        await ctx.apply_auth([])
        return await self.login(
            db,
            user_id=user_id,
            platform=platform,
            encrypted_credentials=encrypted_credentials,
            adapter=adapter,
            ctx=ctx,
            actor=actor,
        )
