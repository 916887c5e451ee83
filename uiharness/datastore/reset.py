"""
Data store reset service.

Brings the persistent store to a known baseline before every test session so
no test observes data written by an earlier one.
"""

import asyncio
import sqlite3
import time
from pathlib import Path
from typing import Optional

import yaml

from ..core.exceptions import ResetError
from ..core.logging_config import get_logger, log_performance
from .models import Fixture, ResetToken
from .store import DataStore


def load_fixture(path: Optional[Path]) -> Fixture:
    """
    Load a baseline fixture file.

    The file is YAML (or JSON) holding a mapping of table name to a list of
    row mappings. A missing path yields an empty fixture.
    """
    if path is None:
        return {}

    path = Path(path)
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        raise ResetError(f"Could not load fixture {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ResetError(f"Fixture {path} must map table names to row lists")

    for table, rows in data.items():
        if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
            raise ResetError(
                f"Fixture {path}: rows for table {table!r} must be a list of mappings",
                table=str(table),
            )
    return data


class DataStoreResetService:
    """Resets a :class:`DataStore` to baseline and issues reset tokens."""

    def __init__(self, store: DataStore, fixture_path: Optional[Path] = None):
        self.store = store
        self.fixture_path = fixture_path
        self.logger = get_logger("ui_harness.datastore")

    async def reset(self, session_name: str) -> ResetToken:
        """
        Clear and reseed the store in a single transaction.

        Args:
            session_name: Name of the session the baseline is prepared for

        Returns:
            A valid reset token for the session

        Raises:
            ResetError: if the store is unreachable or the reset fails; the
                store is left in its previous state
        """
        logger = self.logger.bind(test_name=session_name)
        start_time = time.monotonic()

        fixture = load_fixture(self.fixture_path)
        fixture_rows = sum(len(rows) for rows in fixture.values())

        try:
            await asyncio.to_thread(self.store.reset, fixture)
        except (sqlite3.Error, OSError, ValueError) as e:
            raise ResetError(
                f"Could not reset {self.store.describe()}: {e}",
                store=self.store.describe(),
            ) from e

        token = ResetToken(
            session_name=session_name,
            store=self.store.describe(),
            fixture_rows=fixture_rows,
        )
        log_performance(
            logger,
            "datastore_reset",
            time.monotonic() - start_time,
            store=token.store,
            fixture_rows=fixture_rows,
        )
        return token
