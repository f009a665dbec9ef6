"""Revoked tokens, persisted so revocation survives process restarts."""

from datetime import datetime

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from polox_auth.core.database import Base
from polox_auth.models.base import UTCDateTime, utc_now


class TokenBlacklist(Base):
    """A revoked token identified by the SHA-256 hex digest of its raw text.

    Entries are created on logout, password change and forced revocation,
    and cleaned up after expiry.
    """

    __tablename__ = "token_blacklist"

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utc_now, nullable=False)
