"""Storage module for the local cache."""

from .database import Database, Table

__all__ = ["Database", "Table"]
