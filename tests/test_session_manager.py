from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from crosslister.automation.context import ExecutionContext
from crosslister.automation.timing import ExecutionMode
from crosslister.core.errors import AuthenticationFailure, DecryptionError, VerificationRequired
from crosslister.core.vault import Credentials, encrypt_credentials
from crosslister.models.audit_log import AuditLog
from crosslister.models.platform_session import PlatformSession
from crosslister.sessions.manager import SessionManager
from crosslister.sessions.types import AuthMaterial, Identity

KEY = bytes.fromhex("7f" * 32)
BLOB = encrypt_credentials(Credentials("seller@example.com", "pw"), KEY)


class ScriptedAdapter:
    platform = "fakemarket"

    def __init__(self, *, valid=True, login_error=None):
        self.valid = valid
        self.login_error = login_error
        self.logins: list[Credentials] = []
        self.checked = 0
        self.expires_at = None

    def introspect(self, material):
        return Identity(platform_user_id="fm-42", tokens={"bearer": "b-1"}, expires_at=self.expires_at)

    async def login(self, ctx, credentials):
        self.logins.append(credentials)
        if self.login_error:
            raise self.login_error
        return AuthMaterial(cookies=[{"name": "sid", "value": f"sid-{len(self.logins)}"}])

    async def check_login(self, session, ctx):
        self.checked += 1
        return self.valid


def _ctx():
    return ExecutionContext(mode=ExecutionMode.BACKGROUND, http=None)


async def _resolve(db, adapter, ctx=None, blob=BLOB):
    return await SessionManager(vault_key=KEY).resolve(
        db,
        user_id="u1",
        platform="fakemarket",
        encrypted_credentials=blob,
        adapter=adapter,
        ctx=ctx or _ctx(),
    )


@pytest.mark.asyncio
async def test_first_resolve_logs_in_and_persists_encrypted(db_session):
    adapter = ScriptedAdapter()
    session = await _resolve(db_session, adapter)
    await db_session.commit()

    assert adapter.logins == [Credentials("seller@example.com", "pw")]
    assert session.platform_user_id == "fm-42"
    assert session.auth.tokens == {"bearer": "b-1"}

    row = (await db_session.execute(select(PlatformSession))).scalar_one()
    assert "sid-1" not in row.auth_ciphertext
    assert row.platform_user_id == "fm-42"
    assert row.last_validated_at is not None


@pytest.mark.asyncio
async def test_valid_cached_session_is_reused_without_login(db_session):
    adapter = ScriptedAdapter()
    await _resolve(db_session, adapter)
    await db_session.commit()

    ctx = _ctx()
    session = await _resolve(db_session, adapter, ctx)
    assert len(adapter.logins) == 1
    assert adapter.checked == 1
    assert session.auth.cookie("sid") == "sid-1"
    assert await ctx.export_cookies() == [{"name": "sid", "value": "sid-1"}]


@pytest.mark.asyncio
async def test_rejected_cached_session_is_replaced(db_session):
    adapter = ScriptedAdapter()
    await _resolve(db_session, adapter)
    await db_session.commit()

    adapter.valid = False
    session = await _resolve(db_session, adapter)
    await db_session.commit()

    assert len(adapter.logins) == 2
    assert session.auth.cookie("sid") == "sid-2"
    rows = (await db_session.execute(select(PlatformSession))).scalars().all()
    assert len(rows) == 1

    actions = (await db_session.execute(select(AuditLog.action))).scalars().all()
    assert "session.invalidated" in actions
    assert actions.count("session.login") == 2


@pytest.mark.asyncio
async def test_refresh_always_logs_in_again(db_session):
    adapter = ScriptedAdapter()
    manager = SessionManager(vault_key=KEY)
    await _resolve(db_session, adapter)

    session = await manager.refresh(
        db_session, user_id="u1", platform="fakemarket", encrypted_credentials=BLOB, adapter=adapter, ctx=_ctx(),
    )
    assert len(adapter.logins) == 2
    assert session.auth.cookie("sid") == "sid-2"


@pytest.mark.asyncio
async def test_missing_credentials_is_authentication_failure(db_session):
    with pytest.raises(AuthenticationFailure):
        await _resolve(db_session, ScriptedAdapter(), blob=None)


@pytest.mark.asyncio
async def test_corrupt_credentials_surface_decryption_error(db_session):
    adapter = ScriptedAdapter()
    with pytest.raises(DecryptionError):
        await _resolve(db_session, adapter, blob="00:11:22")
    assert adapter.logins == []


@pytest.mark.asyncio
async def test_verification_challenge_is_audited_and_raised(db_session):
    adapter = ScriptedAdapter(login_error=VerificationRequired("verify device"))
    with pytest.raises(VerificationRequired):
        await _resolve(db_session, adapter)

    entry = (await db_session.execute(select(AuditLog).where(AuditLog.action == "session.login"))).scalar_one()
    assert entry.detail["outcome"] == "verification_required"
    assert (await db_session.execute(select(PlatformSession))).scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_unreadable_stored_session_is_discarded(db_session):
    manager = SessionManager(vault_key=KEY)
    await manager.save(db_session, user_id="u1", platform="fakemarket", material=AuthMaterial(), platform_user_id=None)
    row = (await db_session.execute(select(PlatformSession))).scalar_one()
    row.auth_ciphertext = "garbage"
    await db_session.flush()

    assert await manager.load(db_session, "u1", "fakemarket") is None
    assert (await db_session.execute(select(PlatformSession))).scalar_one_or_none() is None


@pytest.mark.asyncio
async def test_session_past_its_token_expiry_is_not_checked(db_session):
    adapter = ScriptedAdapter()
    await _resolve(db_session, adapter)
    await db_session.commit()

    adapter.expires_at = datetime.now(timezone.utc) - timedelta(minutes=1)
    session = await _resolve(db_session, adapter)
    await db_session.commit()

    assert adapter.checked == 0
    assert len(adapter.logins) == 2
    assert session.auth.cookie("sid") == "sid-2"
    entry = (await db_session.execute(select(AuditLog).where(AuditLog.action == "session.invalidated"))).scalar_one()
    assert entry.detail == {"reason": "expired"}
