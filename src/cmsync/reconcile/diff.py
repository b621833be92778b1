"""Value-keyed comparison of declared and live membership rules."""

from __future__ import annotations

from typing import Iterable, List

from pydantic import BaseModel, Field

from cmsync.store.models import MembershipRule


class RuleDiff(BaseModel):
    """Rules to add and remove so the live set matches the declared one.

    Attributes:
        to_add: Declared values with no live rule carrying the same value.
        to_remove: Live rules whose value is not declared.
        unchanged: Declared values already present live.
    """

    to_add: List[str] = Field(default_factory=list)
    to_remove: List[MembershipRule] = Field(default_factory=list)
    unchanged: List[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove


def compare_rules(declared: Iterable[str], live: Iterable[MembershipRule]) -> RuleDiff:
    """Diff declared rule values against live rules.

    Rules match on value only (query text or referenced collection name); rule
    names are ignored. Values compare as literal strings with no case or
    whitespace normalisation. Duplicate declared values are added once.

    Args:
        declared: Declared values in document order.
        live: Rules currently on the collection.

    Returns:
        RuleDiff: Values to add, rules to remove, and values left alone.
    """
    declared_values = list(dict.fromkeys(declared))
    live_rules = list(live)
    live_values = {rule.value for rule in live_rules}
    declared_set = set(declared_values)

    return RuleDiff(
        to_add=[value for value in declared_values if value not in live_values],
        to_remove=[rule for rule in live_rules if rule.value not in declared_set],
        unchanged=[value for value in declared_values if value in live_values],
    )


__all__ = ["RuleDiff", "compare_rules"]
