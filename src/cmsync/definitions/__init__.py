"""Declarative collection definitions and their XML loader."""

from .errors import DefinitionError
from .loader import load_definitions, parse_definitions
from .models import REFRESH_TYPE_CODES, CollectionSpec, RecurInterval, RefreshType

__all__ = [
    "CollectionSpec",
    "DefinitionError",
    "RecurInterval",
    "RefreshType",
    "REFRESH_TYPE_CODES",
    "load_definitions",
    "parse_definitions",
]
