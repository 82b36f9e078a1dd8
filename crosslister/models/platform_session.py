from datetime import datetime

from sqlalchemy import String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import DateTime

from crosslister.core.ids import gen_id
from crosslister.models.base import Base, TimestampMixin


class PlatformSession(TimestampMixin, Base):
    __tablename__ = "platform_sessions"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_platform_session_user"),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: gen_id("ses"))
    user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    platform: Mapped[str] = mapped_column(String(40), nullable=False)

    # Fernet token of {"cookies": [...], "tokens": {...}}
    auth_ciphertext: Mapped[str] = mapped_column(Text, nullable=False)
    platform_user_id: Mapped[str | None] = mapped_column(String(200), nullable=True)

    last_validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
