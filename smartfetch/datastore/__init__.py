"""
Storage backends behind a uniform get/set/delete/clear/has contract.
"""

from smartfetch.datastore.base import StorageAdapter, StorageError
from smartfetch.datastore.engine import Database
from smartfetch.datastore.file import FileStorage
from smartfetch.datastore.memory import MemoryStorage
from smartfetch.datastore.sql import SQLStorage

__all__ = [
    "StorageAdapter",
    "StorageError",
    "Database",
    "FileStorage",
    "MemoryStorage",
    "SQLStorage",
]
