"""Load collection definitions from the XML definition document."""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Type, TypeVar

from pydantic import ValidationError

from .errors import DefinitionError
from .models import CollectionSpec, RecurInterval, RefreshType

LOGGER = logging.getLogger(__name__)

_REQUIRED_FIELDS = ("name", "folderpath", "limiting")
_E = TypeVar("_E", bound=Enum)


def load_definitions(path: Path) -> list[CollectionSpec]:
    """Parse the definition document at `path`.

    Args:
        path: XML file containing `collection` elements.

    Returns:
        list[CollectionSpec]: Collections in document order.

    Raises:
        DefinitionError: If the file is unreadable, malformed, or declares invalid values.
    """
    try:
        text = path.read_text(encoding="utf-8-sig")
    except OSError as exc:
        raise DefinitionError(f"Cannot read definition file {path}: {exc}") from exc
    return parse_definitions(text, source=str(path))


def parse_definitions(text: str, *, source: str = "<string>") -> list[CollectionSpec]:
    """Parse definition XML from a string.

    Args:
        text: XML document text.
        source: Label used in error messages.

    Returns:
        list[CollectionSpec]: Collections in document order.

    Raises:
        DefinitionError: If the document is malformed or declares invalid values.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise DefinitionError(f"{source}: malformed XML ({exc})") from exc

    elements = [root] if root.tag == "collection" else root.findall(".//collection")
    specs: list[CollectionSpec] = []
    seen: set[str] = set()
    for position, element in enumerate(elements, start=1):
        spec = _parse_collection(element, position=position, source=source)
        if spec.name in seen:
            raise DefinitionError(f"{source}: collection '{spec.name}' is declared more than once")
        seen.add(spec.name)
        specs.append(spec)

    LOGGER.debug("Loaded %d collection definition(s) from %s", len(specs), source)
    return specs


def _parse_collection(element: ET.Element, *, position: int, source: str) -> CollectionSpec:
    label = f"{source}: collection #{position}"
    for field in _REQUIRED_FIELDS:
        if element.find(field) is None:
            raise DefinitionError(f"{label} is missing required element <{field}>")

    name = _text(element, "name")
    if not name:
        raise DefinitionError(f"{label} has an empty <name>")
    label = f"{source}: collection '{name}'"

    limiting = _text(element, "limiting")
    if not limiting:
        raise DefinitionError(f"{label} has an empty <limiting>")

    recur_count: Optional[int] = None
    raw_count = _text(element, "recurcount")
    if raw_count:
        try:
            recur_count = int(raw_count)
        except ValueError as exc:
            raise DefinitionError(f"{label}: recurcount '{raw_count}' is not an integer") from exc
        if recur_count < 1:
            raise DefinitionError(f"{label}: recurcount must be positive, got {recur_count}")

    try:
        return CollectionSpec(
            name=name,
            folder_path=_text(element, "folderpath") or "",
            limiting=limiting,
            description=_text(element, "description"),
            queries=tuple(_texts(element.findall("query"))),
            includes=tuple(_texts(element.findall("include"))),
            excludes=tuple(_texts(element.findall("exclude"))),
            recur_count=recur_count,
            recur_interval=_enum_value(
                RecurInterval, _text(element, "recurinterval"), "recurinterval", label
            ),
            refresh_type=_enum_value(
                RefreshType, _text(element, "refreshtype"), "refreshtype", label
            ),
        )
    except ValidationError as exc:
        raise DefinitionError(f"{label}: {exc}") from exc


def _text(element: ET.Element, tag: str) -> Optional[str]:
    """Return the stripped text of `tag`; `None` only when the element is absent."""
    child = element.find(tag)
    if child is None:
        return None
    return (child.text or "").strip()


def _texts(children: Iterable[ET.Element]) -> list[str]:
    values = []
    for child in children:
        if child.text and child.text.strip():
            values.append(child.text.strip())
    return values


def _enum_value(enum_type: Type[_E], raw: Optional[str], field: str, label: str) -> Optional[_E]:
    """Match `raw` case-insensitively against the names of `enum_type`.

    Unknown values are rejected rather than replaced by a default.
    """
    if not raw:
        return None
    for member in enum_type:
        if member.value.lower() == raw.lower():
            return member
    allowed = ", ".join(member.value for member in enum_type)
    raise DefinitionError(f"{label}: unrecognized {field} '{raw}' (expected one of {allowed})")


__all__ = ["load_definitions", "parse_definitions"]
