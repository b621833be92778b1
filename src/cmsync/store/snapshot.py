"""JSON snapshot persistence for the in-memory store."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import SiteConnectionError, StoreError
from .memory import InMemoryCollectionStore
from .models import LiveCollection


class StoreSnapshot(BaseModel):
    """Serialized site state.

    Attributes:
        site_code: Site code the snapshot was captured from.
        collections: Collections present on the site.
        folders: Folder path per collection name; collections at the root are omitted.
        updated_at: Time the snapshot was last written.
    """

    site_code: Optional[str] = None
    collections: List[LiveCollection] = Field(default_factory=list)
    folders: Dict[str, str] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SnapshotCollectionStore(InMemoryCollectionStore):
    """In-memory store loaded from, and saved back to, a JSON snapshot file."""

    def __init__(self, path: Path, *, site_code: Optional[str] = None) -> None:
        """Initialize the store from the snapshot at `path`.

        Args:
            path: Snapshot file location.
            site_code: Expected site code; checked by `ping` when the snapshot records one.
        """
        self._path = path
        self._site_code = site_code
        snapshot = self._read(path)
        self._snapshot_site = snapshot.site_code
        super().__init__(snapshot.collections, folders=snapshot.folders)

    @property
    def path(self) -> Path:
        return self._path

    def ping(self) -> None:
        if (
            self._site_code
            and self._snapshot_site
            and self._site_code.upper() != self._snapshot_site.upper()
        ):
            raise SiteConnectionError(
                f"Snapshot {self._path} belongs to site {self._snapshot_site}, "
                f"not {self._site_code}"
            )

    def save(self) -> None:
        """Write the current state back to the snapshot file."""
        snapshot = StoreSnapshot(
            site_code=self._snapshot_site or self._site_code,
            collections=self.collections,
            folders=self.folders,
        )
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            json.dumps(snapshot.model_dump(mode="json"), indent=2), encoding="utf-8"
        )

    @staticmethod
    def _read(path: Path) -> StoreSnapshot:
        if not path.exists():
            raise SiteConnectionError(f"No site snapshot found at {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid snapshot data in {path}: {exc}") from exc
        try:
            return StoreSnapshot.model_validate(data)
        except ValidationError as exc:
            raise StoreError(f"Invalid snapshot data in {path}: {exc}") from exc


__all__ = ["SnapshotCollectionStore", "StoreSnapshot"]
