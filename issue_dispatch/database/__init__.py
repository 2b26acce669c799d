"""Database connection and management utilities."""

from .connection import (
    DatabaseManager,
    init_database,
)

__all__ = [
    'DatabaseManager',
    'init_database',
]
