from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from crosslister.core.ids import gen_id
from crosslister.models.base import Base, JSONType, TimestampMixin


JOB_STATUSES = ("queued", "processing", "completed", "failed", "pending_verification")
OPERATIONS = ("create", "delete")


class Job(TimestampMixin, Base):
    __tablename__ = "crosslisting_jobs"
    __table_args__ = (
        # at most one processing job per (listing, platform, operation)
        Index(
            "uq_jobs_processing_target",
            "listing_id", "platform", "operation",
            unique=True,
            postgresql_where=text("status = 'processing'"),
            sqlite_where=text("status = 'processing'"),
        ),
        Index("ix_jobs_status_due", "status", "next_attempt_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("job"))
    user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    listing_id: Mapped[str] = mapped_column(String(120), nullable=False)
    platform: Mapped[str] = mapped_column(String(40), nullable=False)
    operation: Mapped[str] = mapped_column(String(20), nullable=False, default="create")

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # normalized listing data
    encrypted_credentials: Mapped[str | None] = mapped_column(Text, nullable=True)  # nonce:tag:ciphertext, never decrypted here

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="queued")
    error_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    warnings: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # claim lease
    worker_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    lease_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    lease_expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    platform_listing_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    platform_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class JobAttempt(Base):
    __tablename__ = "job_attempts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("att"))
    job_id: Mapped[str] = mapped_column(String, ForeignKey("crosslisting_jobs.id"), nullable=False, index=True)
    attempt: Mapped[int] = mapped_column(Integer, nullable=False)
    worker_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    outcome: Mapped[str] = mapped_column(String(30), nullable=False)  # completed/retry_scheduled/failed/parked/lease_expired
    error_code: Mapped[str | None] = mapped_column(String(80), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    detail: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)  # redacted

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
