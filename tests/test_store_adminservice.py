"""Tests for the AdminService store using a mocked HTTP transport."""

from __future__ import annotations

import json
from typing import Any, Callable
from urllib.parse import unquote

import httpx
import pytest

from cmsync.store import (
    AdminServiceStore,
    CollectionNotFoundError,
    DirectMember,
    LiveCollection,
    MembershipRule,
    NewCollection,
    RefreshSchedule,
    RuleKind,
    SiteConnectionError,
    StoreError,
)

COLLECTIONS = {
    "SMS00001": "All Systems",
    "PS100002": "All Desktops",
    "PS100003": "Servers",
    "PS100010": "All Laptops",
}

LAPTOPS_DETAIL = {
    "CollectionID": "PS100010",
    "Name": "All Laptops",
    "Comment": "Portable devices",
    "LimitToCollectionName": "All Systems",
    "RefreshType": 2,
    "RefreshSchedule": [
        {"@odata.type": "#AdminService.SMS_ST_RecurInterval", "DaysSpan": 1, "HoursSpan": 0}
    ],
    "CollectionRules": [
        {
            "@odata.type": "#AdminService.SMS_CollectionRuleQuery",
            "RuleName": "Laptops",
            "QueryExpression": "SELECT * FROM SMS_R_System",
        },
        {
            "@odata.type": "#AdminService.SMS_CollectionRuleIncludeCollection",
            "RuleName": "Desktops",
            "IncludeCollectionID": "PS100002",
        },
        {
            "@odata.type": "#AdminService.SMS_CollectionRuleExcludeCollection",
            "RuleName": "Servers",
            "ExcludeCollectionID": "PS100003",
        },
        {
            "@odata.type": "#AdminService.SMS_CollectionRuleDirect",
            "RuleName": "PC01",
            "ResourceID": 16777220,
        },
    ],
}


class _Site:
    """Minimal AdminService double recording every request."""

    def __init__(self) -> None:
        self.requests: list[tuple[str, str, Any]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = unquote(request.url.path).removeprefix("/AdminService/wmi/")
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, body))
        filter_ = request.url.params.get("$filter", "")

        if path == "SMS_Site":
            return httpx.Response(200, json={"value": [{"SiteCode": "PS1"}]})
        if path == "SMS_Collection" and request.method == "GET":
            return httpx.Response(200, json={"value": self._match(filter_)})
        if path == "SMS_Collection('PS100010')" and request.method == "GET":
            return httpx.Response(200, json={"value": [LAPTOPS_DETAIL]})
        if path == "SMS_Collection" and request.method == "POST":
            return httpx.Response(201, json={"CollectionID": "PS100020", **body})
        if path.endswith("Rule") or path.endswith("MoveMembers"):
            return httpx.Response(200, json={"ReturnValue": 0})
        if path == "SMS_ObjectContainerNode":
            node_id = 17 if "Name eq 'Hardware'" in filter_ else 16
            return httpx.Response(200, json={"value": [{"ContainerNodeID": node_id}]})
        if request.method == "PATCH":
            return httpx.Response(204)
        return httpx.Response(404)

    @staticmethod
    def _match(filter_: str) -> list[dict[str, str]]:
        for collection_id, name in COLLECTIONS.items():
            quoted_name = name.replace("'", "''")
            if filter_ in (f"Name eq '{quoted_name}'", f"CollectionID eq '{collection_id}'"):
                return [{"CollectionID": collection_id, "Name": name}]
        return []


def _store(handler: Callable[[httpx.Request], httpx.Response]) -> AdminServiceStore:
    return AdminServiceStore("cm01", "PS1", transport=httpx.MockTransport(handler))


def test_ping_checks_site_code() -> None:
    site = _Site()
    _store(site).ping()
    assert site.requests[0][1] == "SMS_Site"

    def _empty(_: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"value": []})

    with pytest.raises(SiteConnectionError, match="PS1"):
        _store(_empty).ping()


@pytest.mark.parametrize("status", [401, 403, 500])
def test_ping_http_failures_are_connection_errors(status: int) -> None:
    def _fail(_: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"error": {"message": "nope"}})

    with pytest.raises(SiteConnectionError):
        _store(_fail).ping()


def test_transport_failure_is_connection_error() -> None:
    def _unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(SiteConnectionError, match="Cannot reach"):
        _store(_unreachable).get_collection("All Laptops")


def test_get_collection_maps_rules_and_schedule() -> None:
    store = _store(_Site())

    live = store.get_collection("All Laptops")

    assert live is not None
    assert live.collection_id == "PS100010"
    assert live.limiting_collection == "All Systems"
    assert live.comment == "Portable devices"
    assert live.schedule == RefreshSchedule(days=1)
    assert live.query_rules == [MembershipRule(name="Laptops", value="SELECT * FROM SMS_R_System")]
    assert live.include_rules == [MembershipRule(name="Desktops", value="All Desktops")]
    assert live.exclude_rules == [MembershipRule(name="Servers", value="Servers")]
    assert live.direct_members == [DirectMember(resource_id=16777220, name="PC01")]
    assert store.get_collection("Missing") is None


def test_create_collection_posts_resolved_limiting_id() -> None:
    site = _Site()
    store = _store(site)

    created = store.create_collection(
        NewCollection(
            name="All Tablets",
            limiting_collection="All Systems",
            comment="",
            refresh_type=2,
            schedule=RefreshSchedule(hours=4),
        )
    )

    assert created.collection_id == "PS100020"
    method, path, body = site.requests[-1]
    assert (method, path) == ("POST", "SMS_Collection")
    assert body["LimitToCollectionID"] == "SMS00001"
    assert body["CollectionType"] == 2
    assert body["RefreshSchedule"][0]["HoursSpan"] == 4


def test_add_and_remove_rules_use_membership_methods() -> None:
    site = _Site()
    store = _store(site)
    laptops = LiveCollection(collection_id="PS100010", name="All Laptops")

    store.add_rule(laptops, RuleKind.INCLUDE, "All Desktops", "All Desktops")
    method, path, body = site.requests[-1]
    assert path == "SMS_Collection('PS100010')/AdminService.AddMembershipRule"
    assert body["collectionRule"]["IncludeCollectionID"] == "PS100002"

    store.remove_rule(laptops, RuleKind.QUERY, MembershipRule(name="Query 1", value="SELECT 1"))
    method, path, body = site.requests[-1]
    assert path.endswith("DeleteMembershipRule")
    assert body["collectionRule"]["QueryExpression"] == "SELECT 1"

    store.remove_direct_member(laptops, DirectMember(resource_id=7, name="PC07"))
    assert site.requests[-1][2]["collectionRule"]["ResourceID"] == 7

    with pytest.raises(CollectionNotFoundError):
        store.add_rule(laptops, RuleKind.EXCLUDE, "Ghost", "Ghost")


def test_move_to_folder_walks_container_nodes() -> None:
    site = _Site()
    store = _store(site)

    store.move_to_folder(
        LiveCollection(collection_id="PS100010", name="All Laptops"), "Operational\\Hardware"
    )

    method, path, body = site.requests[-1]
    assert path == "SMS_ObjectContainerItem.MoveMembers"
    assert body["TargetContainerNodeID"] == 17
    assert body["InstanceKeys"] == ["PS100010"]


def test_server_errors_raise_store_error() -> None:
    def _boom(_: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "WMI failure"}})

    with pytest.raises(StoreError, match="WMI failure"):
        _store(_boom).get_collection("All Laptops")
