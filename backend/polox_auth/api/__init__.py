# Polo X API
from polox_auth.api.router import api_router

__all__ = ["api_router"]
