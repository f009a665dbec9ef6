# Polo X Auth Services
from polox_auth.services.errors import AuthCoreError
from polox_auth.services.identity import Identity, RequestInfo, Role

__all__ = [
    "AuthCoreError",
    "Identity",
    "RequestInfo",
    "Role",
]
