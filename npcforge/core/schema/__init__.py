"""Schema definitions for persisted data."""

from .snapshot_schema import (
    REQUIRED_TOP_LEVEL_FIELDS,
    PackModel,
    SnapshotModel,
    missing_top_level_fields,
)

__all__ = [
    "REQUIRED_TOP_LEVEL_FIELDS",
    "PackModel",
    "SnapshotModel",
    "missing_top_level_fields",
]
