"""Interface implemented by collection store backends."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import (
    CollectionUpdate,
    DirectMember,
    LiveCollection,
    MembershipRule,
    NewCollection,
    RuleKind,
)


class CollectionStore(Protocol):
    """Read and mutate device collections on a site.

    Every method raises `StoreError` (or a subclass) on failure. Implementations
    return fresh state from `get_collection`; callers never receive cached objects.
    """

    def ping(self) -> None:
        """Verify the site is reachable; raise `SiteConnectionError` otherwise."""

    def get_collection(self, name: str) -> Optional[LiveCollection]:
        """Return the collection named `name`, or None when it does not exist."""

    def create_collection(self, request: NewCollection) -> LiveCollection:
        """Create a collection and return its live representation."""

    def move_to_folder(self, collection: LiveCollection, folder_path: str) -> None:
        """Move a collection from the root into a backslash-separated folder path."""

    def update_collection(self, collection: LiveCollection, update: CollectionUpdate) -> None:
        """Apply the set fields of `update` to the collection."""

    def add_rule(self, collection: LiveCollection, kind: RuleKind, name: str, value: str) -> None:
        """Add a membership rule of `kind` named `name` with payload `value`."""

    def remove_rule(
        self, collection: LiveCollection, kind: RuleKind, rule: MembershipRule
    ) -> None:
        """Remove an existing membership rule."""

    def remove_direct_member(self, collection: LiveCollection, member: DirectMember) -> None:
        """Remove a direct membership rule."""


__all__ = ["CollectionStore"]
