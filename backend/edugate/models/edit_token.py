import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from edugate.database import Base


class SchoolProfileEditToken(Base):
    """Single-use approval token for a sensitive school profile change.

    Pending while `used_at` is null and `expires_at` is in the future.
    """

    __tablename__ = "school_profile_edit_tokens"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    token: Mapped[str] = mapped_column(String(80), unique=True, nullable=False, index=True)
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    admin_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("school_admins.id", ondelete="CASCADE"), nullable=False
    )
    changes: Mapped[dict] = mapped_column(JSON, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64))
    user_agent: Mapped[str | None] = mapped_column(String(500))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    used_at: Mapped[datetime | None] = mapped_column(DateTime)
