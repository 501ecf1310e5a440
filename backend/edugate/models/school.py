import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edugate.database import Base


class School(Base):
    """The tenant. Every scoped row carries this id."""

    __tablename__ = "schools"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    subdomain: Mapped[str] = mapped_column(
        String(63), unique=True, nullable=False, index=True
    )
    email: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(30))
    address: Mapped[str | None] = mapped_column(String(500))

    # School levels: changing these goes through the edit-token flow
    has_primary: Mapped[bool] = mapped_column(Boolean, default=False)
    has_secondary: Mapped[bool] = mapped_column(Boolean, default=False)
    has_tertiary: Mapped[bool] = mapped_column(Boolean, default=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    admins = relationship("SchoolAdmin", back_populates="school")
