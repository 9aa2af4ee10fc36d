"""
Core module - Configuration, database, security, and utilities.
"""

from idv.core.config import get_settings, settings
from idv.core.database import Base, close_db, get_db, init_db, ping_db
from idv.core.redis import close_redis, get_redis, init_redis
from idv.core.security import decode_token

__all__ = [
    # Config
    "settings",
    "get_settings",
    # Database
    "Base",
    "get_db",
    "init_db",
    "ping_db",
    "close_db",
    # Redis
    "get_redis",
    "init_redis",
    "close_redis",
    # Security
    "decode_token",
]
