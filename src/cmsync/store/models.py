"""Models describing live collection state on the site."""

from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from cmsync.definitions.models import RecurInterval


class RuleKind(str, Enum):
    """Membership rule kinds managed declaratively."""

    QUERY = "query"
    INCLUDE = "include"
    EXCLUDE = "exclude"


class MembershipRule(BaseModel):
    """A live membership rule.

    Attributes:
        name: Rule name as stored on the site.
        value: Query expression, or the referenced collection name for include/exclude rules.
    """

    name: str
    value: str


class DirectMember(BaseModel):
    """A resource added to a collection by a direct membership rule."""

    resource_id: int
    name: str = ""


class RefreshSchedule(BaseModel):
    """Recurring refresh schedule; each unit carries its own count."""

    minutes: int = 0
    hours: int = 0
    days: int = 0

    @classmethod
    def every(cls, count: int, interval: RecurInterval) -> "RefreshSchedule":
        """Return a schedule that recurs every `count` units of `interval`."""
        return cls(**{_FIELD_BY_INTERVAL[interval]: count})

    def count_for(self, interval: RecurInterval) -> int:
        """Return the count stored for `interval`."""
        return getattr(self, _FIELD_BY_INTERVAL[interval])

    def describe(self) -> str:
        parts = [
            f"{value} {field}" for field, value in self.model_dump().items() if value
        ]
        return ", ".join(parts) or "none"


_FIELD_BY_INTERVAL: Dict[RecurInterval, str] = {
    RecurInterval.MINUTES: "minutes",
    RecurInterval.HOURS: "hours",
    RecurInterval.DAYS: "days",
}


class LiveCollection(BaseModel):
    """A device collection as currently defined on the site.

    Attributes:
        collection_id: Site-assigned identifier.
        name: Collection name.
        limiting_collection: Name of the limiting collection.
        comment: Collection description.
        refresh_type: Integer refresh type code.
        schedule: Periodic refresh schedule, if one is set.
        query_rules: Query membership rules.
        include_rules: Include-collection rules keyed to the included collection name.
        exclude_rules: Exclude-collection rules keyed to the excluded collection name.
        direct_members: Resources added through direct membership rules.
    """

    collection_id: str
    name: str
    limiting_collection: Optional[str] = None
    comment: str = ""
    refresh_type: int = 2
    schedule: Optional[RefreshSchedule] = None
    query_rules: List[MembershipRule] = Field(default_factory=list)
    include_rules: List[MembershipRule] = Field(default_factory=list)
    exclude_rules: List[MembershipRule] = Field(default_factory=list)
    direct_members: List[DirectMember] = Field(default_factory=list)

    def rules(self, kind: RuleKind) -> List[MembershipRule]:
        """Return the live rules of the given kind."""
        return {
            RuleKind.QUERY: self.query_rules,
            RuleKind.INCLUDE: self.include_rules,
            RuleKind.EXCLUDE: self.exclude_rules,
        }[kind]


class NewCollection(BaseModel):
    """Attributes used to create a collection."""

    name: str
    limiting_collection: str
    comment: str = ""
    refresh_type: int
    schedule: RefreshSchedule


class CollectionUpdate(BaseModel):
    """A partial attribute update; unset fields are left untouched."""

    limiting_collection: Optional[str] = None
    comment: Optional[str] = None
    refresh_type: Optional[int] = None
    schedule: Optional[RefreshSchedule] = None

    def changed_fields(self) -> List[str]:
        return [field for field, value in self if value is not None]


__all__ = [
    "CollectionUpdate",
    "DirectMember",
    "LiveCollection",
    "MembershipRule",
    "NewCollection",
    "RefreshSchedule",
    "RuleKind",
]
