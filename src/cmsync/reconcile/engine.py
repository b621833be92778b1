"""Create declared collections and correct drift on existing ones."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Iterator, Optional

from cmsync.config.models import CollectionDefaults
from cmsync.definitions.models import CollectionSpec, RecurInterval, RefreshType
from cmsync.store.base import CollectionStore
from cmsync.store.models import (
    CollectionUpdate,
    LiveCollection,
    NewCollection,
    RefreshSchedule,
    RuleKind,
)

from .diff import compare_rules
from .models import (
    ActionResult,
    ActionStatus,
    ErrorKind,
    ItemReport,
    ItemStatus,
    RunReport,
)

LOGGER = logging.getLogger(__name__)

_RULE_SOURCES = (
    (RuleKind.QUERY, "queries"),
    (RuleKind.INCLUDE, "includes"),
    (RuleKind.EXCLUDE, "excludes"),
)


class ReconcileEngine:
    """Make site collections match their declarations, one collection at a time.

    Absent collections are created. Existing collections are left alone unless
    `maintain` is set, in which case each attribute and rule set is compared and
    corrected independently. Every store call is recorded as an `ActionResult`;
    a failed call never stops the calls that follow it.
    """

    def __init__(
        self,
        store: CollectionStore,
        defaults: CollectionDefaults | None = None,
        *,
        maintain: bool = False,
        dry_run: bool = False,
    ) -> None:
        self.store = store
        self.defaults = defaults or CollectionDefaults()
        self.maintain = maintain
        self.dry_run = dry_run
        # Collections a dry run would have created; later definitions may be limited to them.
        self._planned: set[str] = set()

    def run(self, specs: Iterable[CollectionSpec]) -> RunReport:
        """Process every definition in order and aggregate the reports."""
        report = RunReport(maintain=self.maintain, dry_run=self.dry_run)
        for spec in specs:
            report.items.append(self.ensure_collection(spec))
        report.finished_at = datetime.now(timezone.utc)
        return report

    def ensure_collection(self, spec: CollectionSpec) -> ItemReport:
        """Create, skip, or reconcile the collection declared by `spec`."""
        report = ItemReport(name=spec.name)
        try:
            live = self.store.get_collection(spec.name)
        except Exception as exc:
            LOGGER.error("Lookup of collection '%s' failed: %s", spec.name, exc)
            report.actions.append(
                ActionResult(
                    action="get_collection",
                    target=spec.name,
                    status=ActionStatus.FAILED,
                    error_kind=ErrorKind.LOOKUP,
                    message=str(exc),
                )
            )
            report.status = ItemStatus.FAILED
            return report

        if live is None:
            self._create(spec, report)
            return report

        if not self.maintain:
            LOGGER.info("Collection '%s' already exists; skipping", spec.name)
            report.status = ItemStatus.SKIPPED
            return report

        return self.reconcile(spec, live, report)

    def reconcile(
        self,
        spec: CollectionSpec,
        live: LiveCollection,
        report: Optional[ItemReport] = None,
    ) -> ItemReport:
        """Correct every difference between `spec` and `live`.

        Checks run in a fixed order: limiting collection, description, refresh
        type, refresh schedule, direct members, then query, include and exclude
        rules. There is no rollback; a partially corrected collection is left as
        is for the next run.
        """
        report = report or ItemReport(name=spec.name)
        self._correct_limiting(spec, live, report)
        self._correct_description(spec, live, report)
        self._correct_refresh_type(spec, live, report)
        self._correct_schedule(spec, live, report)
        self._purge_direct_members(live, report)
        for kind, field in _RULE_SOURCES:
            self._sync_rules(live, kind, getattr(spec, field), report)

        if report.failures:
            report.status = ItemStatus.PARTIAL
        elif report.actions:
            report.status = ItemStatus.RECONCILED
        else:
            LOGGER.info("Collection '%s' is in sync", spec.name)
            report.status = ItemStatus.IN_SYNC
        return report

    # Creation ---------------------------------------------------------

    def _create(self, spec: CollectionSpec, report: ItemReport) -> None:
        if not self._limiting_exists(spec, report):
            report.status = ItemStatus.FAILED
            return

        request = NewCollection(
            name=spec.name,
            limiting_collection=spec.limiting,
            comment=self._description(spec),
            refresh_type=self._refresh_type(spec).code,
            schedule=self._schedule(spec),
        )
        created: dict[str, LiveCollection] = {}

        def _create_call() -> None:
            created["collection"] = self.store.create_collection(request)

        applied = self._apply(
            report,
            action="create_collection",
            target=f"limiting={spec.limiting}, schedule={request.schedule.describe()}",
            error_kind=ErrorKind.CREATION,
            call=_create_call,
            message=f"Created collection '{spec.name}'",
        )
        if not applied:
            report.status = ItemStatus.FAILED
            return
        if self.dry_run:
            self._planned.add(spec.name)

        collection = created.get("collection") or LiveCollection(
            collection_id="",
            name=request.name,
            limiting_collection=request.limiting_collection,
            comment=request.comment,
            refresh_type=request.refresh_type,
            schedule=request.schedule,
        )

        if spec.folder_path:
            self._apply(
                report,
                action="move_to_folder",
                target=spec.folder_path,
                error_kind=ErrorKind.CORRECTION,
                call=lambda: self.store.move_to_folder(collection, spec.folder_path),
                message=f"Moved collection '{spec.name}' to folder '{spec.folder_path}'",
            )

        for kind, field in _RULE_SOURCES:
            diff = compare_rules(getattr(spec, field), [])
            self._add_rules(collection, kind, diff.to_add, report)

        report.status = ItemStatus.PARTIAL if report.failures else ItemStatus.CREATED

    def _limiting_exists(self, spec: CollectionSpec, report: ItemReport) -> bool:
        if spec.limiting in self._planned:
            return True
        try:
            limiting = self.store.get_collection(spec.limiting)
        except Exception as exc:
            reason = f"lookup of limiting collection '{spec.limiting}' failed: {exc}"
        else:
            if limiting is not None:
                return True
            reason = f"limiting collection '{spec.limiting}' does not exist"

        LOGGER.error("Cannot create collection '%s': %s", spec.name, reason)
        report.actions.append(
            ActionResult(
                action="create_collection",
                target=spec.limiting,
                status=ActionStatus.FAILED,
                error_kind=ErrorKind.CREATION,
                message=reason,
            )
        )
        return False

    # Attribute corrections -------------------------------------------

    def _correct_limiting(
        self, spec: CollectionSpec, live: LiveCollection, report: ItemReport
    ) -> None:
        if live.limiting_collection == spec.limiting:
            return
        LOGGER.warning(
            "Collection '%s' is limited to '%s', expected '%s'",
            spec.name,
            live.limiting_collection,
            spec.limiting,
        )
        self._update(
            live,
            CollectionUpdate(limiting_collection=spec.limiting),
            report,
            action="update_limiting_collection",
            target=spec.limiting,
        )

    def _correct_description(
        self, spec: CollectionSpec, live: LiveCollection, report: ItemReport
    ) -> None:
        expected = self._description(spec)
        if live.comment == expected:
            return
        LOGGER.warning(
            "Collection '%s' description is '%s', expected '%s'", spec.name, live.comment, expected
        )
        self._update(
            live,
            CollectionUpdate(comment=expected),
            report,
            action="update_description",
            target=expected,
        )

    def _correct_refresh_type(
        self, spec: CollectionSpec, live: LiveCollection, report: ItemReport
    ) -> None:
        expected = self._refresh_type(spec)
        if live.refresh_type == expected.code:
            return
        LOGGER.warning(
            "Collection '%s' refresh type is %s, expected %s (%s)",
            spec.name,
            live.refresh_type,
            expected.code,
            expected.value,
        )
        self._update(
            live,
            CollectionUpdate(refresh_type=expected.code),
            report,
            action="update_refresh_type",
            target=expected.value,
        )

    def _correct_schedule(
        self, spec: CollectionSpec, live: LiveCollection, report: ItemReport
    ) -> None:
        count, interval = self._recurrence(spec)
        # Only the count for the declared unit is compared.
        if live.schedule is not None and live.schedule.count_for(interval) == count:
            return
        current = live.schedule.describe() if live.schedule is not None else "none"
        LOGGER.warning(
            "Collection '%s' refreshes every %s, expected every %d %s",
            spec.name,
            current,
            count,
            interval.value.lower(),
        )
        schedule = RefreshSchedule.every(count, interval)
        self._update(
            live,
            CollectionUpdate(schedule=schedule),
            report,
            action="update_refresh_schedule",
            target=schedule.describe(),
        )

    def _update(
        self,
        live: LiveCollection,
        update: CollectionUpdate,
        report: ItemReport,
        *,
        action: str,
        target: str,
    ) -> None:
        self._apply(
            report,
            action=action,
            target=target,
            error_kind=ErrorKind.CORRECTION,
            call=lambda: self.store.update_collection(live, update),
            message=f"Updated {', '.join(update.changed_fields())} on '{live.name}'",
        )

    # Membership -------------------------------------------------------

    def _purge_direct_members(self, live: LiveCollection, report: ItemReport) -> None:
        for member in live.direct_members:
            LOGGER.warning(
                "Collection '%s' has direct member %s (%s)",
                live.name,
                member.resource_id,
                member.name or "unnamed",
            )
            self._apply(
                report,
                action="remove_direct_member",
                target=str(member.resource_id),
                error_kind=ErrorKind.CORRECTION,
                call=lambda member=member: self.store.remove_direct_member(live, member),
                message=f"Removed direct member {member.resource_id} from '{live.name}'",
            )

    def _sync_rules(
        self,
        live: LiveCollection,
        kind: RuleKind,
        declared: Iterable[str],
        report: ItemReport,
    ) -> None:
        diff = compare_rules(declared, live.rules(kind))
        removed: set[str] = set()
        for rule in diff.to_remove:
            LOGGER.warning(
                "Collection '%s' has undeclared %s rule '%s'", live.name, kind.value, rule.name
            )
            applied = self._apply(
                report,
                action=f"remove_{kind.value}_rule",
                target=rule.value,
                error_kind=ErrorKind.RULE_APPLICATION,
                call=lambda rule=rule: self.store.remove_rule(live, kind, rule),
                message=f"Removed {kind.value} rule '{rule.name}' from '{live.name}'",
            )
            # A rule that is still on the site keeps its name reserved.
            if applied and not self.dry_run:
                removed.add(rule.name)
        taken = {rule.name for rule in live.rules(kind) if rule.name not in removed}
        self._add_rules(live, kind, diff.to_add, report, taken=taken)

    def _add_rules(
        self,
        collection: LiveCollection,
        kind: RuleKind,
        values: Iterable[str],
        report: ItemReport,
        *,
        taken: Optional[set[str]] = None,
    ) -> None:
        names = _rule_names(kind, taken or set())
        for value in values:
            name = value if kind is not RuleKind.QUERY else next(names)
            self._apply(
                report,
                action=f"add_{kind.value}_rule",
                target=value,
                error_kind=ErrorKind.RULE_APPLICATION,
                call=lambda name=name, value=value: self.store.add_rule(
                    collection, kind, name, value
                ),
                message=f"Added {kind.value} rule '{name}' to '{collection.name}'",
            )

    # Helpers ----------------------------------------------------------

    def _apply(
        self,
        report: ItemReport,
        *,
        action: str,
        target: str,
        error_kind: ErrorKind,
        call: Callable[[], None],
        message: str,
    ) -> bool:
        if self.dry_run:
            LOGGER.info("[dry-run] %s", message)
            report.actions.append(
                ActionResult(
                    action=action, target=target, status=ActionStatus.PLANNED, message=message
                )
            )
            return True
        try:
            call()
        except Exception as exc:
            LOGGER.error("%s on '%s' failed: %s", action, report.name, exc)
            report.actions.append(
                ActionResult(
                    action=action,
                    target=target,
                    status=ActionStatus.FAILED,
                    error_kind=error_kind,
                    message=str(exc),
                )
            )
            return False
        LOGGER.info(message)
        report.actions.append(
            ActionResult(action=action, target=target, status=ActionStatus.APPLIED, message=message)
        )
        return True

    def _description(self, spec: CollectionSpec) -> str:
        return spec.description if spec.description is not None else self.defaults.description

    def _refresh_type(self, spec: CollectionSpec) -> RefreshType:
        if spec.refresh_type is not None:
            return spec.refresh_type
        return self.defaults.refresh_type

    def _recurrence(self, spec: CollectionSpec) -> tuple[int, RecurInterval]:
        return (
            spec.recur_count or self.defaults.recur_count,
            spec.recur_interval or self.defaults.recur_interval,
        )

    def _schedule(self, spec: CollectionSpec) -> RefreshSchedule:
        count, interval = self._recurrence(spec)
        return RefreshSchedule.every(count, interval)


def _rule_names(kind: RuleKind, taken: set[str]) -> Iterator[str]:
    """Yield `Query 1`, `Query 2`, ... skipping names already in use."""
    index = 0
    while True:
        index += 1
        candidate = f"{kind.value.capitalize()} {index}"
        if candidate not in taken:
            yield candidate


__all__ = ["ReconcileEngine"]
