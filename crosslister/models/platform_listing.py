from datetime import datetime

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from crosslister.core.ids import gen_id
from crosslister.models.base import Base, TimestampMixin


class PlatformListing(TimestampMixin, Base):
    __tablename__ = "platform_listings"
    __table_args__ = (
        UniqueConstraint("listing_id", "platform", name="uq_platform_listing_target"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("pl"))
    listing_id: Mapped[str] = mapped_column(String(120), nullable=False)
    user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    platform: Mapped[str] = mapped_column(String(40), nullable=False)

    platform_listing_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    platform_url: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active")  # active/deleted
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
