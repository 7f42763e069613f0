from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, Generic, Iterable, List, NamedTuple, Optional, TypeVar

__all__ = [
    "CatalogueKey",
    "IndexedCollection",
    "DataRepository",
    "get_repository",
]


RESOURCE_FILES = {
    "races": "races.json",
    "classes": "classes.json",
    "backgrounds": "backgrounds.json",
}

T = TypeVar("T")


class CatalogueKey(NamedTuple):
    """Composite lookup key: case-folded name plus upper-cased source book."""

    name: str
    source: str

    @classmethod
    def of(cls, name: str, source: Optional[str]) -> "CatalogueKey":
        return cls(name.strip().lower(), (source or "").strip().upper())


@dataclass(slots=True)
class IndexedCollection(Generic[T]):
    """Catalogue entries along with (name, source) and name-only indexes."""

    entries: List[T]
    by_key: Dict[CatalogueKey, T]
    by_name: Dict[str, List[T]]

    @classmethod
    def from_entries(
        cls, entries: Iterable[T], key: Callable[[T], CatalogueKey]
    ) -> "IndexedCollection[T]":
        entries_list = list(entries)
        by_key: Dict[CatalogueKey, T] = {}
        by_name: Dict[str, List[T]] = {}
        for entry in entries_list:
            entry_key = key(entry)
            by_key.setdefault(entry_key, entry)
            by_name.setdefault(entry_key.name, []).append(entry)
        return cls(entries=entries_list, by_key=by_key, by_name=by_name)

    def get(self, name: str, source: Optional[str] = None) -> Optional[T]:
        """Fetch an entry by (name, source), or the first by name when source is omitted."""

        if not name:
            return None
        if source:
            return self.by_key.get(CatalogueKey.of(name, source))
        matches = self.by_name.get(name.strip().lower())
        return matches[0] if matches else None

    def __len__(self) -> int:
        return len(self.entries)


class DataRepository:
    """Loads and caches the rule-book JSON files of the data directory."""

    def __init__(self, base_path: Optional[Path] = None) -> None:
        self.base_path = (base_path or _default_dataset_path()).resolve()
        if not self.base_path.exists():
            raise FileNotFoundError(f"Rules dataset not found at {self.base_path}")
        self._cache: Dict[str, dict] = {}

    def resource_path(self, resource: str) -> Path:
        try:
            filename = RESOURCE_FILES[resource]
        except KeyError as exc:
            raise KeyError(f"Unknown rules resource: {resource}") from exc
        return self.base_path / filename

    def load(self, resource: str) -> dict:
        if resource not in self._cache:
            path = self.resource_path(resource)
            if not path.exists():
                self._cache[resource] = {}
            else:
                with path.open("r", encoding="utf-8") as handle:
                    self._cache[resource] = json.load(handle)
        return self._cache[resource]

    # Convenience accessors -------------------------------------------------
    def races(self) -> dict:
        return self.load("races")

    def classes(self) -> dict:
        return self.load("classes")

    def backgrounds(self) -> dict:
        return self.load("backgrounds")


@lru_cache(maxsize=4)
def get_repository(base_path: Optional[Path] = None) -> DataRepository:
    return DataRepository(base_path=base_path)


def _default_dataset_path() -> Path:
    current = Path(__file__).resolve()
    project_root = current.parents[3]
    return project_root / "data"
