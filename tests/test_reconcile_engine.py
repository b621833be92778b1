"""Tests for the collection reconcile engine."""

from __future__ import annotations

from typing import Optional

from cmsync.config.models import CollectionDefaults
from cmsync.definitions import CollectionSpec, RecurInterval, RefreshType
from cmsync.reconcile import ActionStatus, ErrorKind, ItemStatus, ReconcileEngine
from cmsync.store import (
    CollectionUpdate,
    DirectMember,
    InMemoryCollectionStore,
    LiveCollection,
    MembershipRule,
    RefreshSchedule,
    RuleKind,
    StoreError,
)

LAPTOP_QUERY = "SELECT * FROM SMS_R_System WHERE Model LIKE '%Laptop%'"
OLD_QUERY = "SELECT * FROM SMS_R_System WHERE OS='Win7'"


def _store(*collections: LiveCollection) -> InMemoryCollectionStore:
    base = [
        LiveCollection(collection_id="SMS00001", name="All Systems"),
        LiveCollection(collection_id="PS100001", name="All Workstations"),
        LiveCollection(collection_id="PS100002", name="All Desktops"),
        LiveCollection(collection_id="PS100003", name="Servers"),
    ]
    return InMemoryCollectionStore([*base, *collections])


def _laptops(**overrides: object) -> CollectionSpec:
    values: dict[str, object] = {
        "name": "All Laptops",
        "limiting": "All Systems",
        "queries": (LAPTOP_QUERY,),
        "recur_count": 1,
        "recur_interval": RecurInterval.DAYS,
    }
    values.update(overrides)
    return CollectionSpec(**values)


def _drifted_laptops(**overrides: object) -> LiveCollection:
    values: dict[str, object] = {
        "collection_id": "PS100010",
        "name": "All Laptops",
        "limiting_collection": "All Workstations",
        "comment": "old comment",
        "refresh_type": 1,
        "schedule": RefreshSchedule(hours=4),
        "query_rules": [
            MembershipRule(name="Query 1", value=LAPTOP_QUERY),
            MembershipRule(name="Query 2", value=OLD_QUERY),
        ],
        "include_rules": [MembershipRule(name="Servers", value="Servers")],
        "direct_members": [DirectMember(resource_id=16777220, name="PC01")],
    }
    values.update(overrides)
    return LiveCollection(**values)


def _in_sync_laptops() -> LiveCollection:
    return LiveCollection(
        collection_id="PS100010",
        name="All Laptops",
        limiting_collection="All Systems",
        comment="",
        refresh_type=2,
        schedule=RefreshSchedule(days=1),
        query_rules=[MembershipRule(name="Laptops", value=LAPTOP_QUERY)],
    )


def test_missing_collection_is_created_with_schedule_and_query() -> None:
    store = _store()
    engine = ReconcileEngine(store, CollectionDefaults())

    report = engine.ensure_collection(_laptops())

    assert report.status is ItemStatus.CREATED
    assert store.calls == [
        ("create_collection", "All Laptops"),
        ("add_query_rule", "All Laptops"),
    ]
    created = store.get_collection("All Laptops")
    assert created is not None
    assert created.limiting_collection == "All Systems"
    assert created.schedule == RefreshSchedule(days=1)
    assert created.refresh_type == RefreshType.PERIODIC.code
    assert [rule.value for rule in created.query_rules] == [LAPTOP_QUERY]
    assert created.include_rules == []
    assert created.exclude_rules == []


def test_missing_collection_is_created_even_in_maintenance_mode() -> None:
    store = _store()
    engine = ReconcileEngine(store, maintain=True)

    report = engine.ensure_collection(_laptops())

    assert report.status is ItemStatus.CREATED
    assert store.calls[0] == ("create_collection", "All Laptops")
    assert not any(call[0] == "update_collection" for call in store.calls)


def test_creation_uses_defaults_and_moves_to_folder() -> None:
    store = _store()
    defaults = CollectionDefaults(
        description="Managed by cmsync",
        recur_count=12,
        recur_interval=RecurInterval.HOURS,
        refresh_type=RefreshType.BOTH,
    )
    spec = CollectionSpec(
        name="Finance",
        limiting="All Workstations",
        folder_path="Departments\\Finance",
        includes=("All Desktops",),
        excludes=("Servers",),
    )

    report = ReconcileEngine(store, defaults).ensure_collection(spec)

    assert report.status is ItemStatus.CREATED
    assert [call[0] for call in store.calls] == [
        "create_collection",
        "move_to_folder",
        "add_include_rule",
        "add_exclude_rule",
    ]
    created = store.get_collection("Finance")
    assert created is not None
    assert created.comment == "Managed by cmsync"
    assert created.refresh_type == 6
    assert created.schedule == RefreshSchedule(hours=12)
    assert created.include_rules == [MembershipRule(name="All Desktops", value="All Desktops")]
    assert store.folder_of("Finance") == "Departments\\Finance"


def test_unresolved_limiting_collection_creates_nothing() -> None:
    store = _store()

    report = ReconcileEngine(store).ensure_collection(_laptops(limiting="No Such Collection"))

    assert report.status is ItemStatus.FAILED
    assert store.calls == []
    assert store.get_collection("All Laptops") is None
    assert report.failures[0].error_kind is ErrorKind.CREATION


def test_rule_failures_are_reported_independently() -> None:
    store = _store()
    spec = _laptops(includes=("Ghost Collection", "All Desktops"))

    report = ReconcileEngine(store).ensure_collection(spec)

    assert report.status is ItemStatus.PARTIAL
    failures = report.failures
    assert len(failures) == 1
    assert failures[0].error_kind is ErrorKind.RULE_APPLICATION
    assert failures[0].target == "Ghost Collection"
    created = store.get_collection("All Laptops")
    assert created is not None
    assert [rule.value for rule in created.include_rules] == ["All Desktops"]


def test_existing_collection_without_maintenance_is_skipped() -> None:
    store = _store(_drifted_laptops())

    report = ReconcileEngine(store, maintain=False).ensure_collection(_laptops())

    assert report.status is ItemStatus.SKIPPED
    assert report.actions == []
    assert store.calls == []


def test_maintenance_corrects_every_kind_of_drift() -> None:
    store = _store(_drifted_laptops())
    spec = _laptops(description="Portable devices", includes=("All Desktops",))

    report = ReconcileEngine(store, maintain=True).ensure_collection(spec)

    assert report.status is ItemStatus.RECONCILED
    assert [action.action for action in report.actions] == [
        "update_limiting_collection",
        "update_description",
        "update_refresh_type",
        "update_refresh_schedule",
        "remove_direct_member",
        "remove_query_rule",
        "remove_include_rule",
        "add_include_rule",
    ]
    live = store.get_collection("All Laptops")
    assert live is not None
    assert live.limiting_collection == "All Systems"
    assert live.comment == "Portable devices"
    assert live.refresh_type == 2
    assert live.schedule == RefreshSchedule(days=1)
    assert live.direct_members == []
    assert live.query_rules == [MembershipRule(name="Query 1", value=LAPTOP_QUERY)]
    assert [rule.value for rule in live.include_rules] == ["All Desktops"]


def test_second_reconcile_issues_no_calls() -> None:
    store = _store(_drifted_laptops())
    spec = _laptops(description="Portable devices", excludes=("Servers",))
    engine = ReconcileEngine(store, maintain=True)

    engine.ensure_collection(spec)
    calls_after_first = len(store.calls)
    second = engine.ensure_collection(spec)

    assert second.status is ItemStatus.IN_SYNC
    assert second.actions == []
    assert len(store.calls) == calls_after_first


def test_direct_members_are_removed_regardless_of_spec() -> None:
    live = _in_sync_laptops()
    live.direct_members = [
        DirectMember(resource_id=16777220, name="PC01"),
        DirectMember(resource_id=16777221, name="PC02"),
    ]
    store = _store(live)

    report = ReconcileEngine(store, maintain=True).ensure_collection(_laptops())

    assert [call[0] for call in store.calls] == ["remove_direct_member", "remove_direct_member"]
    assert report.status is ItemStatus.RECONCILED
    refreshed = store.get_collection("All Laptops")
    assert refreshed is not None
    assert refreshed.direct_members == []


def test_schedule_compares_only_the_declared_unit() -> None:
    live = _in_sync_laptops()
    live.schedule = RefreshSchedule(days=1, hours=6)
    store = _store(live)

    report = ReconcileEngine(store, maintain=True).ensure_collection(_laptops())

    assert report.status is ItemStatus.IN_SYNC
    assert store.calls == []


def test_missing_schedule_is_treated_as_drift() -> None:
    live = _in_sync_laptops()
    live.schedule = None
    store = _store(live)

    report = ReconcileEngine(store, maintain=True).ensure_collection(_laptops())

    assert [action.action for action in report.actions] == ["update_refresh_schedule"]


class _RefreshTypeDenied(InMemoryCollectionStore):
    def update_collection(self, collection: LiveCollection, update: CollectionUpdate) -> None:
        if update.refresh_type is not None:
            raise StoreError("access denied")
        super().update_collection(collection, update)


def test_failed_correction_does_not_stop_later_steps() -> None:
    store = _RefreshTypeDenied(
        [
            LiveCollection(collection_id="SMS00001", name="All Systems"),
            LiveCollection(collection_id="PS100001", name="All Workstations"),
            LiveCollection(collection_id="PS100003", name="Servers"),
            _drifted_laptops(),
        ]
    )

    report = ReconcileEngine(store, maintain=True).ensure_collection(_laptops())

    assert report.status is ItemStatus.PARTIAL
    assert [(action.action, action.error_kind) for action in report.failures] == [
        ("update_refresh_type", ErrorKind.CORRECTION)
    ]
    applied = [action.action for action in report.actions if action.status is ActionStatus.APPLIED]
    assert "update_refresh_schedule" in applied
    assert "remove_direct_member" in applied
    assert "remove_query_rule" in applied
    assert "remove_include_rule" in applied


def test_new_query_rules_avoid_names_in_use() -> None:
    live = _in_sync_laptops()
    live.query_rules = [MembershipRule(name="Query 1", value=LAPTOP_QUERY)]
    store = _store(live)
    spec = _laptops(queries=(LAPTOP_QUERY, OLD_QUERY))

    ReconcileEngine(store, maintain=True).ensure_collection(spec)

    refreshed = store.get_collection("All Laptops")
    assert refreshed is not None
    assert refreshed.query_rules == [
        MembershipRule(name="Query 1", value=LAPTOP_QUERY),
        MembershipRule(name="Query 2", value=OLD_QUERY),
    ]


def test_dry_run_plans_without_mutating() -> None:
    store = _store(_drifted_laptops())
    engine = ReconcileEngine(store, maintain=True, dry_run=True)

    reconciled = engine.ensure_collection(_laptops())
    created = engine.ensure_collection(_laptops(name="All Tablets", folder_path="Devices"))

    assert store.calls == []
    assert store.get_collection("All Tablets") is None
    assert reconciled.actions
    assert all(action.status is ActionStatus.PLANNED for action in reconciled.actions)
    assert created.status is ItemStatus.CREATED
    assert [action.action for action in created.actions] == [
        "create_collection",
        "move_to_folder",
        "add_query_rule",
    ]


def test_dry_run_resolves_limiting_collection_planned_earlier() -> None:
    specs = [
        CollectionSpec(name="Finance", limiting="All Systems"),
        CollectionSpec(name="Finance Laptops", limiting="Finance", queries=(LAPTOP_QUERY,)),
    ]

    planned = ReconcileEngine(_store(), dry_run=True).run(specs)
    applied = ReconcileEngine(_store()).run(specs)

    assert [item.status for item in planned.items] == [ItemStatus.CREATED, ItemStatus.CREATED]
    assert [item.status for item in applied.items] == [ItemStatus.CREATED, ItemStatus.CREATED]
    assert planned.items[1].failures == []


class _RuleRemovalDenied(InMemoryCollectionStore):
    def remove_rule(
        self, collection: LiveCollection, kind: RuleKind, rule: MembershipRule
    ) -> None:
        raise StoreError("access denied")


def test_failed_rule_removal_keeps_its_name_reserved() -> None:
    live = _in_sync_laptops()
    live.query_rules = [MembershipRule(name="Query 1", value=OLD_QUERY)]
    store = _RuleRemovalDenied(
        [LiveCollection(collection_id="SMS00001", name="All Systems"), live]
    )

    report = ReconcileEngine(store, maintain=True).ensure_collection(_laptops())

    assert report.status is ItemStatus.PARTIAL
    assert [action.error_kind for action in report.failures] == [ErrorKind.RULE_APPLICATION]
    refreshed = store.get_collection("All Laptops")
    assert refreshed is not None
    assert refreshed.query_rules == [
        MembershipRule(name="Query 1", value=OLD_QUERY),
        MembershipRule(name="Query 2", value=LAPTOP_QUERY),
    ]


class _BrokenLookup(InMemoryCollectionStore):
    def get_collection(self, name: str) -> Optional[LiveCollection]:
        raise StoreError("provider unavailable")


def test_lookup_failure_fails_the_item() -> None:
    report = ReconcileEngine(_BrokenLookup()).ensure_collection(_laptops())

    assert report.status is ItemStatus.FAILED
    assert report.failures[0].error_kind is ErrorKind.LOOKUP


def test_run_aggregates_item_reports() -> None:
    store = _store(_in_sync_laptops())
    specs = [
        _laptops(),
        _laptops(name="All Tablets"),
        _laptops(name="Orphans", limiting="Missing"),
    ]

    report = ReconcileEngine(store, maintain=True).run(specs)

    counts = report.counts()
    assert counts["in_sync"] == 1
    assert counts["created"] == 1
    assert counts["failed"] == 1
    assert counts["actions"] == 2
    assert counts["errors"] == 1
    assert report.finished_at is not None


def test_declared_empty_description_overrides_default() -> None:
    live = _in_sync_laptops()
    live.comment = "Managed by cmsync"
    store = _store(live)
    defaults = CollectionDefaults(description="Managed by cmsync")

    report = ReconcileEngine(store, defaults, maintain=True).ensure_collection(
        _laptops(description="")
    )

    assert [action.action for action in report.actions] == ["update_description"]
    refreshed = store.get_collection("All Laptops")
    assert refreshed is not None
    assert refreshed.comment == ""
