"""Database module for NetPulse."""

from .connection import DatabaseConnection, get_db, reset_db
from .repository import TestResultRepository

__all__ = [
    "DatabaseConnection",
    "get_db",
    "reset_db",
    "TestResultRepository",
]
