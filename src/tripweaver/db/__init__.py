"""Database package for tripweaver."""

from tripweaver.db.base import Base
from tripweaver.db.manager import DatabaseManager
from tripweaver.db.models import GenerationRecord, UsageCounter

__all__ = [
    "Base",
    "DatabaseManager",
    "GenerationRecord",
    "UsageCounter",
]
