"""Result models produced by the reconcile engine."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Category of a failed action."""

    LOOKUP = "lookup"
    CREATION = "creation"
    RULE_APPLICATION = "rule_application"
    CORRECTION = "correction"


class ActionStatus(str, Enum):
    APPLIED = "applied"
    PLANNED = "planned"
    FAILED = "failed"


class ItemStatus(str, Enum):
    """Outcome of processing one collection definition."""

    CREATED = "created"
    RECONCILED = "reconciled"
    IN_SYNC = "in_sync"
    SKIPPED = "skipped"
    FAILED = "failed"
    PARTIAL = "partial"


class ActionResult(BaseModel):
    """A single call issued (or planned) against the store.

    Attributes:
        action: Operation name, e.g. `create_collection` or `remove_query_rule`.
        target: Value the operation acted on (rule payload, folder, attribute value).
        status: Whether the call was applied, only planned, or failed.
        error_kind: Failure category when `status` is `failed`.
        message: Human-readable detail.
    """

    action: str
    target: str = ""
    status: ActionStatus
    error_kind: Optional[ErrorKind] = None
    message: str = ""


class ItemReport(BaseModel):
    """Outcome of `ensure_collection` for one definition."""

    name: str
    status: ItemStatus = ItemStatus.IN_SYNC
    actions: List[ActionResult] = Field(default_factory=list)

    @property
    def failures(self) -> List[ActionResult]:
        return [action for action in self.actions if action.status is ActionStatus.FAILED]

    @property
    def changes(self) -> List[ActionResult]:
        return [action for action in self.actions if action.status is not ActionStatus.FAILED]


class RunReport(BaseModel):
    """Aggregated results of a run over a definition document."""

    maintain: bool = False
    dry_run: bool = False
    items: List[ItemReport] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    def counts(self) -> Dict[str, int]:
        """Return item totals per status plus action and error totals."""
        totals = {status.value: 0 for status in ItemStatus}
        for item in self.items:
            totals[item.status.value] += 1
        totals["actions"] = sum(len(item.changes) for item in self.items)
        totals["errors"] = sum(len(item.failures) for item in self.items)
        return totals


__all__ = [
    "ActionResult",
    "ActionStatus",
    "ErrorKind",
    "ItemReport",
    "ItemStatus",
    "RunReport",
]
