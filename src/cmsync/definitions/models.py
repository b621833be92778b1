"""Declarative collection definition models."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class RecurInterval(str, Enum):
    """Unit of a collection's periodic refresh schedule."""

    MINUTES = "Minutes"
    HOURS = "Hours"
    DAYS = "Days"


class RefreshType(str, Enum):
    """Membership evaluation mode of a collection."""

    NONE = "None"
    MANUAL = "Manual"
    PERIODIC = "Periodic"
    CONTINUOUS = "Continuous"
    BOTH = "Both"

    @property
    def code(self) -> int:
        """Return the integer the site stores in `SMS_Collection.RefreshType`."""
        return REFRESH_TYPE_CODES[self]


REFRESH_TYPE_CODES: dict[RefreshType, int] = {
    RefreshType.NONE: 0,
    RefreshType.MANUAL: 1,
    RefreshType.PERIODIC: 2,
    RefreshType.CONTINUOUS: 4,
    RefreshType.BOTH: 6,
}


class CollectionSpec(BaseModel):
    """A single collection as declared in the definition document.

    Attributes:
        name: Collection name; the unique key matched against the site.
        folder_path: Console folder path, backslash separated. Empty means root.
        limiting: Name of the limiting collection.
        description: Optional collection comment.
        queries: WQL membership query expressions.
        includes: Names of collections whose members are included.
        excludes: Names of collections whose members are excluded.
        recur_count: Optional refresh interval count.
        recur_interval: Optional refresh interval unit.
        refresh_type: Optional membership refresh type.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    folder_path: str = ""
    limiting: str
    description: Optional[str] = None
    queries: Tuple[str, ...] = Field(default_factory=tuple)
    includes: Tuple[str, ...] = Field(default_factory=tuple)
    excludes: Tuple[str, ...] = Field(default_factory=tuple)
    recur_count: Optional[int] = Field(default=None, ge=1)
    recur_interval: Optional[RecurInterval] = None
    refresh_type: Optional[RefreshType] = None


__all__ = [
    "CollectionSpec",
    "RecurInterval",
    "RefreshType",
    "REFRESH_TYPE_CODES",
]
