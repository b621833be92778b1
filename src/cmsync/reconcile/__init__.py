"""Diff-and-patch reconciliation of declared collections."""

from .diff import RuleDiff, compare_rules
from .engine import ReconcileEngine
from .models import (
    ActionResult,
    ActionStatus,
    ErrorKind,
    ItemReport,
    ItemStatus,
    RunReport,
)

__all__ = [
    "ActionResult",
    "ActionStatus",
    "ErrorKind",
    "ItemReport",
    "ItemStatus",
    "ReconcileEngine",
    "RuleDiff",
    "RunReport",
    "compare_rules",
]
