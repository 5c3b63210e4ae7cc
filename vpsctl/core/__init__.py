# VPS Control Core Module
from .config import Settings, get_settings, settings
from .database import Base, LedgerBase, check_db_connection, get_db
from .errors import APIError, ErrorCatalog, ErrorCode, load_error_catalog
from .logging import get_logger, setup_logging

__all__ = [
    "settings",
    "get_settings",
    "Settings",
    "setup_logging",
    "get_logger",
    "Base",
    "LedgerBase",
    "get_db",
    "check_db_connection",
    "APIError",
    "ErrorCatalog",
    "ErrorCode",
    "load_error_catalog",
]
