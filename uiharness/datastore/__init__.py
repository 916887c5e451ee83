"""
Data store reset and seeding.

The reset service puts the store back to its baseline fixture before every
session; the seeder lets test code add and query rows during the session.
"""

from .models import ResetToken
from .reset import DataStoreResetService, load_fixture
from .store import DataSeeder, DataStore, SQLiteStore

__all__ = [
    "ResetToken",
    "DataStoreResetService",
    "load_fixture",
    "DataSeeder",
    "DataStore",
    "SQLiteStore",
]
