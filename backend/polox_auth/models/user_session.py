"""Login sessions bound to the jti of the tokens issued for them."""

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from polox_auth.models.base import BaseModel, UTCDateTime

SESSION_ACTIVE = "active"
SESSION_EXPIRED = "expired"


class UserSession(BaseModel):
    """Server-side record of one login.

    Rows are never deleted by the request path; logout and expiry only move
    ``status`` to ``expired``.
    """

    __tablename__ = "user_sessions"
    __table_args__ = (Index("ix_user_sessions_user_status", "user_id", "status"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    company_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"), nullable=False, index=True
    )
    token_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    refresh_token_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    status: Mapped[str] = mapped_column(String(20), default=SESSION_ACTIVE, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    last_activity_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<UserSession {self.id} user={self.user_id} status={self.status}>"
