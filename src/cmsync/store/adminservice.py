"""ConfigMgr AdminService backend for the collection store."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from .errors import CollectionNotFoundError, SiteConnectionError, StoreError
from .models import (
    CollectionUpdate,
    DirectMember,
    LiveCollection,
    MembershipRule,
    NewCollection,
    RefreshSchedule,
    RuleKind,
)

LOGGER = logging.getLogger(__name__)

DEVICE_COLLECTION_TYPE = 2
DEVICE_COLLECTION_OBJECT_TYPE = 5000
_ODATA = "#AdminService."
_QUERY_RULE = "SMS_CollectionRuleQuery"
_INCLUDE_RULE = "SMS_CollectionRuleIncludeCollection"
_EXCLUDE_RULE = "SMS_CollectionRuleExcludeCollection"
_DIRECT_RULE = "SMS_CollectionRuleDirect"
_RECUR_INTERVAL = "SMS_ST_RecurInterval"


class AdminServiceStore:
    """Talk to the SMS Provider's AdminService WMI route over HTTPS."""

    def __init__(
        self,
        server: str,
        site_code: str,
        *,
        username: Optional[str] = None,
        password: Optional[str] = None,
        verify_tls: bool = True,
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.server = server
        self.site_code = site_code
        self.base_url = f"https://{server}/AdminService/wmi/"
        self._auth = httpx.BasicAuth(username, password or "") if username else None
        self._verify_tls = verify_tls
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                auth=self._auth,
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                timeout=httpx.Timeout(self._timeout),
                verify=self._verify_tls,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "AdminServiceStore":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # CollectionStore --------------------------------------------------

    def ping(self) -> None:
        try:
            data = self._request(
                "GET", "SMS_Site", params={"$filter": f"SiteCode eq {_quote(self.site_code)}"}
            )
        except SiteConnectionError:
            raise
        except StoreError as exc:
            raise SiteConnectionError(f"Cannot connect to {self.server}: {exc}") from exc
        if not data.get("value"):
            raise SiteConnectionError(
                f"Site {self.site_code} is not served by the provider on {self.server}"
            )
        LOGGER.debug("Connected to site %s on %s", self.site_code, self.server)

    def get_collection(self, name: str) -> Optional[LiveCollection]:
        summary = self._find_collection(name)
        if summary is None:
            return None
        collection_id = summary["CollectionID"]
        # Lazy properties (rules, schedule) are only returned when addressing a single instance.
        detail = self._single(self._request("GET", f"SMS_Collection('{collection_id}')"))
        return self._to_live(detail)

    def create_collection(self, request: NewCollection) -> LiveCollection:
        limiting_id = self._collection_id(request.limiting_collection)
        payload = {
            "Name": request.name,
            "Comment": request.comment,
            "CollectionType": DEVICE_COLLECTION_TYPE,
            "LimitToCollectionID": limiting_id,
            "RefreshType": request.refresh_type,
            "RefreshSchedule": [_schedule_payload(request.schedule)],
        }
        created = self._single(self._request("POST", "SMS_Collection", json=payload))
        collection_id = created.get("CollectionID")
        if not collection_id:
            raise StoreError(f"Site did not return an identifier for '{request.name}'")
        return LiveCollection(
            collection_id=collection_id,
            name=request.name,
            limiting_collection=request.limiting_collection,
            comment=request.comment,
            refresh_type=request.refresh_type,
            schedule=request.schedule,
        )

    def move_to_folder(self, collection: LiveCollection, folder_path: str) -> None:
        node_id = 0
        for segment in [part for part in folder_path.split("\\") if part]:
            node_id = self._container_node(segment, parent=node_id, folder_path=folder_path)
        payload = {
            "InstanceKeys": [collection.collection_id],
            "ContainerNodeID": 0,
            "TargetContainerNodeID": node_id,
            "ObjectType": DEVICE_COLLECTION_OBJECT_TYPE,
        }
        self._invoke("POST", "SMS_ObjectContainerItem.MoveMembers", payload)

    def update_collection(self, collection: LiveCollection, update: CollectionUpdate) -> None:
        payload: dict[str, Any] = {}
        if update.limiting_collection is not None:
            payload["LimitToCollectionID"] = self._collection_id(update.limiting_collection)
        if update.comment is not None:
            payload["Comment"] = update.comment
        if update.refresh_type is not None:
            payload["RefreshType"] = update.refresh_type
        if update.schedule is not None:
            payload["RefreshSchedule"] = [_schedule_payload(update.schedule)]
        if not payload:
            return
        self._request("PATCH", f"SMS_Collection('{collection.collection_id}')", json=payload)

    def add_rule(self, collection: LiveCollection, kind: RuleKind, name: str, value: str) -> None:
        self._membership_call(
            collection, "AddMembershipRule", self._rule_payload(kind, name, value)
        )

    def remove_rule(
        self, collection: LiveCollection, kind: RuleKind, rule: MembershipRule
    ) -> None:
        self._membership_call(
            collection, "DeleteMembershipRule", self._rule_payload(kind, rule.name, rule.value)
        )

    def remove_direct_member(self, collection: LiveCollection, member: DirectMember) -> None:
        payload = {
            "@odata.type": _ODATA + _DIRECT_RULE,
            "RuleName": member.name,
            "ResourceClassName": "SMS_R_System",
            "ResourceID": member.resource_id,
        }
        self._membership_call(collection, "DeleteMembershipRule", payload)

    # Internal helpers -------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        try:
            response = self.client.request(method, path, params=params, json=json)
        except httpx.TransportError as exc:
            raise SiteConnectionError(f"Cannot reach AdminService on {self.server}: {exc}") from exc
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        if response.status_code in (401, 403):
            raise SiteConnectionError(
                f"AdminService on {self.server} rejected the credentials ({response.status_code})"
            )
        if response.status_code == 404:
            raise StoreError(f"Resource not found: {response.request.url.path}")
        if response.status_code >= 400:
            raise StoreError(_error_message(response))
        if not response.content:
            return {}
        try:
            return response.json()  # type: ignore[no-any-return]
        except json.JSONDecodeError as exc:
            raise StoreError("Invalid response format from AdminService") from exc

    def _invoke(self, method: str, path: str, payload: dict[str, Any]) -> None:
        data = self._request(method, path, json=payload)
        return_value = data.get("ReturnValue", 0)
        if return_value not in (0, None):
            raise StoreError(f"{path} returned {return_value}")

    def _membership_call(
        self, collection: LiveCollection, method: str, rule: dict[str, Any]
    ) -> None:
        self._invoke(
            "POST",
            f"SMS_Collection('{collection.collection_id}')/AdminService.{method}",
            {"collectionRule": rule},
        )

    def _rule_payload(self, kind: RuleKind, name: str, value: str) -> dict[str, Any]:
        if kind is RuleKind.QUERY:
            return {"@odata.type": _ODATA + _QUERY_RULE, "RuleName": name, "QueryExpression": value}
        referenced_id = self._collection_id(value)
        if kind is RuleKind.INCLUDE:
            return {
                "@odata.type": _ODATA + _INCLUDE_RULE,
                "RuleName": name,
                "IncludeCollectionID": referenced_id,
            }
        return {
            "@odata.type": _ODATA + _EXCLUDE_RULE,
            "RuleName": name,
            "ExcludeCollectionID": referenced_id,
        }

    def _find_collection(self, name: str) -> Optional[dict[str, Any]]:
        data = self._request(
            "GET",
            "SMS_Collection",
            params={
                "$filter": f"Name eq {_quote(name)}",
                "$select": "CollectionID,Name",
            },
        )
        matches = data.get("value", [])
        if len(matches) > 1:
            raise StoreError(f"Collection name '{name}' matches {len(matches)} collections")
        return matches[0] if matches else None

    def _collection_id(self, name: str) -> str:
        summary = self._find_collection(name)
        if summary is None:
            raise CollectionNotFoundError(name)
        return summary["CollectionID"]

    def _collection_name(self, collection_id: str) -> str:
        data = self._request(
            "GET",
            "SMS_Collection",
            params={
                "$filter": f"CollectionID eq {_quote(collection_id)}",
                "$select": "CollectionID,Name",
            },
        )
        matches = data.get("value", [])
        # Rules pointing at deleted collections keep their identifier as the value.
        return matches[0]["Name"] if matches else collection_id

    def _container_node(self, name: str, *, parent: int, folder_path: str) -> int:
        data = self._request(
            "GET",
            "SMS_ObjectContainerNode",
            params={
                "$filter": (
                    f"Name eq {_quote(name)} and ObjectType eq {DEVICE_COLLECTION_OBJECT_TYPE} "
                    f"and ParentContainerNodeID eq {parent}"
                )
            },
        )
        matches = data.get("value", [])
        if not matches:
            raise StoreError(f"Folder '{folder_path}' does not exist (missing '{name}')")
        return int(matches[0]["ContainerNodeID"])

    def _single(self, data: dict[str, Any]) -> dict[str, Any]:
        values = data.get("value")
        if isinstance(values, list):
            if not values:
                raise StoreError("AdminService returned no instance")
            return values[0]
        return data

    def _to_live(self, data: dict[str, Any]) -> LiveCollection:
        collection = LiveCollection(
            collection_id=data["CollectionID"],
            name=data["Name"],
            limiting_collection=data.get("LimitToCollectionName"),
            comment=data.get("Comment") or "",
            refresh_type=int(data.get("RefreshType") or 0),
            schedule=_parse_schedule(data.get("RefreshSchedule")),
        )
        for rule in data.get("CollectionRules") or []:
            rule_type = str(rule.get("@odata.type", "")).rsplit(".", 1)[-1]
            rule_name = rule.get("RuleName", "")
            if rule_type == _QUERY_RULE:
                collection.query_rules.append(
                    MembershipRule(name=rule_name, value=rule.get("QueryExpression", ""))
                )
            elif rule_type == _INCLUDE_RULE:
                referenced = self._collection_name(rule["IncludeCollectionID"])
                collection.include_rules.append(MembershipRule(name=rule_name, value=referenced))
            elif rule_type == _EXCLUDE_RULE:
                referenced = self._collection_name(rule["ExcludeCollectionID"])
                collection.exclude_rules.append(MembershipRule(name=rule_name, value=referenced))
            elif rule_type == _DIRECT_RULE:
                collection.direct_members.append(
                    DirectMember(resource_id=int(rule["ResourceID"]), name=rule_name)
                )
            else:
                LOGGER.debug("Ignoring unsupported rule type %s on %s", rule_type, collection.name)
        return collection


def _quote(value: str) -> str:
    """Return an OData string literal."""
    return "'" + value.replace("'", "''") + "'"


def _schedule_payload(schedule: RefreshSchedule) -> dict[str, Any]:
    return {
        "@odata.type": _ODATA + _RECUR_INTERVAL,
        "DaysSpan": schedule.days,
        "HoursSpan": schedule.hours,
        "MinuteSpan": schedule.minutes,
        "StartTime": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }


def _parse_schedule(raw: Any) -> Optional[RefreshSchedule]:
    if not raw:
        return None
    for entry in raw if isinstance(raw, list) else [raw]:
        if str(entry.get("@odata.type", "")).endswith(_RECUR_INTERVAL):
            return RefreshSchedule(
                minutes=int(entry.get("MinuteSpan") or 0),
                hours=int(entry.get("HoursSpan") or 0),
                days=int(entry.get("DaysSpan") or 0),
            )
    return RefreshSchedule()


def _error_message(response: httpx.Response) -> str:
    try:
        error = response.json().get("error", {})
    except (json.JSONDecodeError, AttributeError):
        return f"AdminService error: {response.status_code}"
    if isinstance(error, dict) and error.get("message"):
        return f"AdminService error {response.status_code}: {error['message']}"
    return f"AdminService error: {response.status_code}"


__all__ = ["AdminServiceStore"]
