"""
Lokale Caches fuer Kontakte.
"""

from .base import BookCache, MemoryBookCache
from .connection import DatabaseConnection
from .postgres import PostgresBookCache

__all__ = [
    'BookCache',
    'MemoryBookCache',
    'DatabaseConnection',
    'PostgresBookCache',
]
