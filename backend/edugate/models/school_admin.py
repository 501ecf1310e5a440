import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from edugate.auth.permissions import is_principal_role
from edugate.database import Base


class SchoolAdmin(Base):
    """An administrator acting inside exactly one school.

    `role` is free text ("Principal", "Bursar", "Vice Principal", ...).
    Principals hold no grants; everyone else is authorised by their
    `staff_permissions` rows, which are always queried fresh.
    """

    __tablename__ = "school_admins"
    __table_args__ = (
        UniqueConstraint("user_id", "school_id", name="uq_school_admins_user_school"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    school_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("schools.id", ondelete="CASCADE"), nullable=False, index=True
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(100), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    school = relationship("School", back_populates="admins")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_principal(self) -> bool:
        return is_principal_role(self.role)
