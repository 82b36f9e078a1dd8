from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from crosslister.schemas.listing import NormalizedListing

JobStatus = Literal["queued", "processing", "completed", "failed", "pending_verification"]
Operation = Literal["create", "delete"]


class CamelModel(BaseModel):
    # wire format of the host application is camelCase
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobIn(CamelModel):
    job_id: str | None = Field(default=None, max_length=120)
    user_id: str = Field(min_length=1, max_length=120)
    listing_id: str = Field(min_length=1, max_length=120)
    platform: str = Field(min_length=1, max_length=40)
    operation: Operation = "create"
    normalized_listing_data: NormalizedListing | None = None
    encrypted_credentials: str | None = None
    # delete: the marketplace id to remove; looked up from platform_listings when omitted
    platform_listing_id: str | None = Field(default=None, max_length=200)


class JobOut(CamelModel):
    id: str
    user_id: str
    listing_id: str
    platform: str
    operation: str
    status: str
    attempts: int
    error_code: str | None
    error_message: str | None
    warnings: list[str]
    platform_listing_id: str | None
    platform_url: str | None
    next_attempt_at: datetime | None
    created_at: datetime | None
    started_at: datetime | None
    completed_at: datetime | None


class JobResult(CamelModel):
    success: bool
    listing_id: str
    platform: str
    platform_listing_id: str | None = None
    platform_url: str | None = None
    error: str | None = None


class JobAttemptOut(CamelModel):
    id: str
    job_id: str
    attempt: int
    worker_id: str | None
    outcome: str
    error_code: str | None
    error_message: str | None
    detail: dict
    created_at: datetime | None


class StatusUpdate(CamelModel):
    """Payload pushed to the host application on every status change."""
    job_id: str
    status: JobStatus
    platform_listing_id: str | None = None
    platform_url: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
