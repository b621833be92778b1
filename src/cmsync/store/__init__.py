"""Collection store backends for cmsync."""

from __future__ import annotations

from pathlib import Path

from cmsync.config.models import SiteSettings

from .adminservice import AdminServiceStore
from .base import CollectionStore
from .errors import CollectionNotFoundError, SiteConnectionError, StoreError
from .memory import InMemoryCollectionStore
from .models import (
    CollectionUpdate,
    DirectMember,
    LiveCollection,
    MembershipRule,
    NewCollection,
    RefreshSchedule,
    RuleKind,
)
from .snapshot import SnapshotCollectionStore, StoreSnapshot


def open_store(site: SiteSettings) -> CollectionStore:
    """Build the store backend selected by the site settings.

    Args:
        site: Resolved site connection settings.

    Returns:
        CollectionStore: Backend ready for `ping`.

    Raises:
        SiteConnectionError: If required connection settings are missing.
    """
    if site.provider == "snapshot":
        if not site.snapshot_path:
            raise SiteConnectionError("The snapshot provider requires site.snapshot_path.")
        return SnapshotCollectionStore(
            Path(site.snapshot_path).expanduser(), site_code=site.site_code
        )

    if not site.server or not site.site_code:
        raise SiteConnectionError("Both a site server and a site code are required.")
    return AdminServiceStore(
        site.server,
        site.site_code,
        username=site.username,
        password=site.password,
        verify_tls=site.verify_tls,
        timeout=site.timeout_seconds,
    )


__all__ = [
    "AdminServiceStore",
    "CollectionNotFoundError",
    "CollectionStore",
    "CollectionUpdate",
    "DirectMember",
    "InMemoryCollectionStore",
    "LiveCollection",
    "MembershipRule",
    "NewCollection",
    "RefreshSchedule",
    "RuleKind",
    "SiteConnectionError",
    "SnapshotCollectionStore",
    "StoreError",
    "StoreSnapshot",
    "open_store",
]
