from .catalogue import (
    BackgroundDef,
    ClassDef,
    RaceDef,
    RulesCatalogue,
    SubclassDef,
    SubraceDef,
    strip_tags,
)
from .loader import CatalogueKey, DataRepository, IndexedCollection, get_repository

__all__ = [
    "BackgroundDef",
    "CatalogueKey",
    "ClassDef",
    "DataRepository",
    "IndexedCollection",
    "RaceDef",
    "RulesCatalogue",
    "SubclassDef",
    "SubraceDef",
    "get_repository",
    "strip_tags",
]
