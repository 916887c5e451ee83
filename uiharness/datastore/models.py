"""
Data models for data store reset.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


# table name -> rows to insert after the store is cleared
Fixture = Dict[str, List[Dict[str, Any]]]


@dataclass
class ResetToken:
    """Marks that the store was brought to baseline for a session."""

    session_name: str
    store: str
    issued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    fixture_rows: int = 0
    valid: bool = True
    invalidated_at: Optional[datetime] = None

    def invalidate(self) -> None:
        """Called when test code starts writing; the store is no longer at baseline."""
        if self.valid:
            self.valid = False
            self.invalidated_at = datetime.now(timezone.utc)
