# Polo X Auth Core Module
from .config import AuthConfigurationError, Settings, get_settings
from .database import Base, build_engine, build_session_maker, check_db_connection, get_db
from .logging import get_logger, setup_logging

__all__ = [
    "AuthConfigurationError",
    "Settings",
    "get_settings",
    "setup_logging",
    "get_logger",
    "Base",
    "build_engine",
    "build_session_maker",
    "get_db",
    "check_db_connection",
]
