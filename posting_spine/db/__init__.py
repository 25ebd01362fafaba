"""Persistence plumbing: declarative base, column types, database handle."""

from posting_spine.db.base import Base, TenantScopedBase, UUIDString
from posting_spine.db.types import FixedScaleAmount

__all__ = ["Base", "TenantScopedBase", "UUIDString", "FixedScaleAmount"]
