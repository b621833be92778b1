"""Dictionary-backed collection store."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from .errors import CollectionNotFoundError, StoreError
from .models import (
    CollectionUpdate,
    DirectMember,
    LiveCollection,
    MembershipRule,
    NewCollection,
    RuleKind,
)


class InMemoryCollectionStore:
    """Keep collections in memory and record every mutating call.

    `calls` lists `(operation, collection name)` pairs in the order they were
    issued, which makes the store useful for offline planning and tests.
    """

    def __init__(
        self,
        collections: Iterable[LiveCollection] = (),
        *,
        folders: Optional[Dict[str, str]] = None,
        id_prefix: str = "MEM",
    ) -> None:
        self._collections: Dict[str, LiveCollection] = {}
        self._folders: Dict[str, str] = dict(folders or {})
        self._id_prefix = id_prefix
        self._next_id = 1
        self.calls: List[Tuple[str, str]] = []
        for collection in collections:
            self.add_collection(collection)

    # Seeding ----------------------------------------------------------

    def add_collection(self, collection: LiveCollection) -> LiveCollection:
        """Register an existing collection without recording a call."""
        if collection.name in self._collections:
            raise StoreError(f"Collection '{collection.name}' already exists")
        stored = collection.model_copy(deep=True)
        self._collections[stored.name] = stored
        self._next_id += 1
        return stored.model_copy(deep=True)

    def add_direct_member(self, name: str, member: DirectMember) -> None:
        """Attach a direct member to a stored collection without recording a call."""
        self._stored(name).direct_members.append(member.model_copy())

    def folder_of(self, name: str) -> str:
        """Return the folder path of a collection; root is an empty string."""
        self._stored(name)
        return self._folders.get(name, "")

    @property
    def collections(self) -> List[LiveCollection]:
        return [collection.model_copy(deep=True) for collection in self._collections.values()]

    @property
    def folders(self) -> Dict[str, str]:
        return dict(self._folders)

    # CollectionStore --------------------------------------------------

    def ping(self) -> None:
        return None

    def get_collection(self, name: str) -> Optional[LiveCollection]:
        stored = self._collections.get(name)
        return stored.model_copy(deep=True) if stored is not None else None

    def create_collection(self, request: NewCollection) -> LiveCollection:
        if request.name in self._collections:
            raise StoreError(f"Collection '{request.name}' already exists")
        self._require(request.limiting_collection)
        self.calls.append(("create_collection", request.name))
        collection = LiveCollection(
            collection_id=self._allocate_id(),
            name=request.name,
            limiting_collection=request.limiting_collection,
            comment=request.comment,
            refresh_type=request.refresh_type,
            schedule=request.schedule.model_copy(),
        )
        self._collections[collection.name] = collection
        return collection.model_copy(deep=True)

    def move_to_folder(self, collection: LiveCollection, folder_path: str) -> None:
        self._stored(collection.name)
        self.calls.append(("move_to_folder", collection.name))
        self._folders[collection.name] = folder_path

    def update_collection(self, collection: LiveCollection, update: CollectionUpdate) -> None:
        stored = self._stored(collection.name)
        if update.limiting_collection is not None:
            self._require(update.limiting_collection)
        self.calls.append(("update_collection", collection.name))
        if update.limiting_collection is not None:
            stored.limiting_collection = update.limiting_collection
        if update.comment is not None:
            stored.comment = update.comment
        if update.refresh_type is not None:
            stored.refresh_type = update.refresh_type
        if update.schedule is not None:
            stored.schedule = update.schedule.model_copy()

    def add_rule(self, collection: LiveCollection, kind: RuleKind, name: str, value: str) -> None:
        stored = self._stored(collection.name)
        if kind is not RuleKind.QUERY:
            self._require(value)
        self.calls.append((f"add_{kind.value}_rule", collection.name))
        stored.rules(kind).append(MembershipRule(name=name, value=value))

    def remove_rule(
        self, collection: LiveCollection, kind: RuleKind, rule: MembershipRule
    ) -> None:
        stored = self._stored(collection.name)
        rules = stored.rules(kind)
        if rule not in rules:
            raise StoreError(
                f"{kind.value.capitalize()} rule '{rule.name}' not found on '{collection.name}'"
            )
        self.calls.append((f"remove_{kind.value}_rule", collection.name))
        rules.remove(rule)

    def remove_direct_member(self, collection: LiveCollection, member: DirectMember) -> None:
        stored = self._stored(collection.name)
        remaining = [
            entry for entry in stored.direct_members if entry.resource_id != member.resource_id
        ]
        if len(remaining) == len(stored.direct_members):
            raise StoreError(
                f"Resource {member.resource_id} is not a direct member of '{collection.name}'"
            )
        self.calls.append(("remove_direct_member", collection.name))
        stored.direct_members = remaining

    # Internal helpers -------------------------------------------------

    def _stored(self, name: str) -> LiveCollection:
        stored = self._collections.get(name)
        if stored is None:
            raise CollectionNotFoundError(name)
        return stored

    def _require(self, name: str) -> None:
        if name not in self._collections:
            raise CollectionNotFoundError(name)

    def _allocate_id(self) -> str:
        while True:
            candidate = f"{self._id_prefix}{self._next_id:05X}"
            self._next_id += 1
            if all(entry.collection_id != candidate for entry in self._collections.values()):
                return candidate


__all__ = ["InMemoryCollectionStore"]
