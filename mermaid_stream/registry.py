"""Diagram type catalog.

Loaded once per process from ``diagram_types.yml`` and shared read-only by
every request.
"""

from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional, Union

import yaml

from .errors import UnknownDiagramTypeError
from .models import DiagramTypeDefinition

DEFAULT_REGISTRY_PATH = Path(__file__).parent / "diagram_types.yml"


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f)
    return loaded if isinstance(loaded, dict) else {}


class DiagramTypeRegistry:
    """Immutable mapping of type id to definition, with alias lookup."""

    def __init__(self, definitions: Mapping[str, DiagramTypeDefinition]):
        self._definitions = MappingProxyType(dict(definitions))
        lookup: dict[str, str] = {}
        for type_id, definition in self._definitions.items():
            lookup[type_id.lower()] = type_id
            for alias in definition.aliases:
                lookup.setdefault(alias.lower(), type_id)
        self._lookup = MappingProxyType(lookup)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DiagramTypeRegistry":
        raw_types = data.get("types") or {}
        if not isinstance(raw_types, dict) or not raw_types:
            raise ValueError("registry file defines no diagram types")
        definitions = {
            type_id: DiagramTypeDefinition(id=type_id, **(fields or {}))
            for type_id, fields in raw_types.items()
        }
        return cls(definitions)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "DiagramTypeRegistry":
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(path)
        return cls.from_dict(_load_yaml(path))

    @property
    def definitions(self) -> Mapping[str, DiagramTypeDefinition]:
        return self._definitions

    def ids(self) -> list[str]:
        return list(self._definitions)

    def find(self, type_id: Optional[str]) -> Optional[DiagramTypeDefinition]:
        """Look up a type by id or alias; case and surrounding space are ignored."""
        if not type_id:
            return None
        canonical = self._lookup.get(type_id.strip().lower())
        return self._definitions[canonical] if canonical else None

    def resolve(self, type_id: Optional[str]) -> DiagramTypeDefinition:
        definition = self.find(type_id)
        if definition is None:
            raise UnknownDiagramTypeError(str(type_id))
        return definition

    def __contains__(self, type_id: object) -> bool:
        return isinstance(type_id, str) and self.find(type_id) is not None

    def __iter__(self) -> Iterator[DiagramTypeDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)


@lru_cache(maxsize=1)
def get_default_registry() -> DiagramTypeRegistry:
    """Process-wide registry built from the packaged catalog."""
    return DiagramTypeRegistry.load(DEFAULT_REGISTRY_PATH)
