"""SQLite persistence layer."""

from .connection import Database
from .schema import initialize_schema

__all__ = ["Database", "initialize_schema"]
