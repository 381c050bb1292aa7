"""
Database layer for the migration audit tables.

Holds the SQLAlchemy base, async engine/session factories and the ORM models
for the feature flag config row and the dual-write diff log.
"""

from hearth_migration.database.base import Base

__all__ = ["Base"]
