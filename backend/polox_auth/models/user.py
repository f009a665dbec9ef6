"""CRM user model for authentication."""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import JSON, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from polox_auth.models.base import BaseModel, UTCDateTime

if TYPE_CHECKING:
    from polox_auth.models.company import Company


class User(BaseModel):
    """A user belonging to one company.

    ``role`` is stored as text and parsed into the closed role set when the
    user is loaded for a request; ``permissions`` is an open list of action
    strings that narrows what the role allows.
    """

    __tablename__ = "users"

    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(32), default="user", nullable=False)
    permissions: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)

    # Tracking
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # Login lockout
    failed_login_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    locked_until: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    company: Mapped["Company"] = relationship(lazy="raise")

    def __repr__(self) -> str:
        return f"<User {self.email}>"
