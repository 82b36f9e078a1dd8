from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession

from crosslister.models.audit_log import AuditLog
from crosslister.services.redaction import redact_payload

async def audit(
    db: AsyncSession,
    *,
    action: str,
    user_id: str | None = None,
    platform: str | None = None,
    actor: str | None = None,
    target_type: str | None = None,
    target_id: str | None = None,
    detail: dict | None = None,
) -> None:
    db.add(AuditLog(
        user_id=user_id,
        platform=platform,
        actor=actor,
        action=action,
        target_type=target_type,
        target_id=target_id,
        detail=redact_payload(detail or {}),
    ))
