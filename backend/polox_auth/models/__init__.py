# Polo X Auth Models
from polox_auth.models.base import BaseModel, UTCDateTime
from polox_auth.models.company import Company
from polox_auth.models.token_blacklist import TokenBlacklist
from polox_auth.models.user import User
from polox_auth.models.user_session import SESSION_ACTIVE, SESSION_EXPIRED, UserSession

__all__ = [
    "BaseModel",
    "Company",
    "SESSION_ACTIVE",
    "SESSION_EXPIRED",
    "TokenBlacklist",
    "User",
    "UserSession",
    "UTCDateTime",
]
