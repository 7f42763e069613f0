from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional

from ..constants import DEFAULT_SOURCES
from .loader import CatalogueKey, DataRepository, IndexedCollection

__all__ = [
    "RaceDef",
    "SubraceDef",
    "ClassDef",
    "SubclassDef",
    "BackgroundDef",
    "RulesCatalogue",
    "strip_tags",
]

_TAG_PATTERN = re.compile(r"\{@\w+ ([^}]*)\}")


def strip_tags(text: str) -> str:
    """Reduce ``{@item shield|phb|shields}`` style tags to their display text."""

    def _display(match: re.Match) -> str:
        parts = match.group(1).split("|")
        if len(parts) >= 3 and parts[2]:
            return parts[2]
        return parts[0]

    return _TAG_PATTERN.sub(_display, text)


def _bool_maps(values: Iterable) -> List[dict]:
    """Normalize a plain list of names into the boolean-map entry form."""

    maps: List[dict] = []
    names: Dict[str, bool] = {}
    for value in values or []:
        if isinstance(value, str):
            names[strip_tags(value)] = True
        elif isinstance(value, dict):
            maps.append(value)
    if names:
        maps.insert(0, names)
    return maps


@dataclass(slots=True)
class ProficiencyBlock:
    """Raw proficiency arrays shared by every catalogue record."""

    skills: List[dict] = field(default_factory=list)
    tools: List[dict] = field(default_factory=list)
    languages: List[dict] = field(default_factory=list)
    weapons: List[dict] = field(default_factory=list)
    armor: List[dict] = field(default_factory=list)

    @classmethod
    def from_entry(cls, entry: dict) -> "ProficiencyBlock":
        return cls(
            skills=list(entry.get("skillProficiencies") or []),
            tools=list(entry.get("toolProficiencies") or []),
            languages=list(entry.get("languageProficiencies") or []),
            weapons=_bool_maps(entry.get("weaponProficiencies") or []),
            armor=_bool_maps(entry.get("armorProficiencies") or []),
        )

    def category(self, name: str) -> List[dict]:
        return getattr(self, name)


@dataclass(slots=True)
class SubraceDef:
    name: str
    source: str
    race_name: str
    race_source: str
    ability: List[dict]
    proficiencies: ProficiencyBlock
    entries: List[object]
    feats: List[dict]
    # Race fields this subrace replaces instead of adding to, e.g. "ability".
    overwrite: FrozenSet[str] = frozenset()

    def replaces(self, key: str) -> bool:
        return key in self.overwrite


@dataclass(slots=True)
class RaceDef:
    name: str
    source: str
    ability: List[dict]
    proficiencies: ProficiencyBlock
    entries: List[object]
    feats: List[dict]
    lineage: bool = False
    speed: int = 30

    @property
    def key(self) -> CatalogueKey:
        return CatalogueKey.of(self.name, self.source)


@dataclass(slots=True)
class SubclassDef:
    name: str
    short_name: str
    source: str
    class_name: str
    class_source: str
    proficiencies: ProficiencyBlock
    caster_progression: Optional[str] = None
    spellcasting_ability: Optional[str] = None

    def matches(self, name: str) -> bool:
        wanted = name.strip().lower()
        return wanted in {self.name.lower(), self.short_name.lower()}


@dataclass(slots=True)
class ClassDef:
    name: str
    source: str
    hit_die: int
    saving_throws: List[str]
    proficiencies: ProficiencyBlock
    class_features: List[object]
    caster_progression: Optional[str] = None
    spellcasting_ability: Optional[str] = None
    cantrip_progression: List[int] = field(default_factory=list)
    prepared_spells: bool = False
    multiclass_requirements: Dict[str, object] = field(default_factory=dict)
    multiclass_proficiencies: ProficiencyBlock = field(default_factory=ProficiencyBlock)

    @property
    def key(self) -> CatalogueKey:
        return CatalogueKey.of(self.name, self.source)


@dataclass(slots=True)
class BackgroundDef:
    name: str
    source: str
    proficiencies: ProficiencyBlock
    entries: List[object]
    variants: List["BackgroundDef"] = field(default_factory=list)

    @property
    def key(self) -> CatalogueKey:
        return CatalogueKey.of(self.name, self.source)


class RulesCatalogue:
    """Read-only lookup across race, class and background definitions.

    Lookups are keyed by :class:`CatalogueKey` and only return records whose
    source book is in ``allowed_sources``. The catalogue is handed to the
    engine explicitly so tests can build one from fixture payloads.
    """

    def __init__(
        self,
        races: Iterable[RaceDef] = (),
        subraces: Iterable[SubraceDef] = (),
        classes: Iterable[ClassDef] = (),
        subclasses: Iterable[SubclassDef] = (),
        backgrounds: Iterable[BackgroundDef] = (),
        allowed_sources: Optional[Iterable[str]] = None,
    ) -> None:
        self.allowed_sources: FrozenSet[str] = frozenset(
            source.upper() for source in (allowed_sources or DEFAULT_SOURCES)
        )
        self.races: IndexedCollection[RaceDef] = IndexedCollection.from_entries(
            races, key=lambda race: race.key
        )
        self.classes: IndexedCollection[ClassDef] = IndexedCollection.from_entries(
            classes, key=lambda cls: cls.key
        )
        self.backgrounds: IndexedCollection[BackgroundDef] = IndexedCollection.from_entries(
            backgrounds, key=lambda background: background.key
        )
        self._subraces: Dict[CatalogueKey, List[SubraceDef]] = {}
        for subrace in subraces:
            parent = CatalogueKey.of(subrace.race_name, subrace.race_source)
            self._subraces.setdefault(parent, []).append(subrace)
        self._subclasses: Dict[CatalogueKey, List[SubclassDef]] = {}
        for subclass in subclasses:
            parent = CatalogueKey.of(subclass.class_name, subclass.class_source)
            self._subclasses.setdefault(parent, []).append(subclass)

    # ------------------------------------------------------------------
    @classmethod
    def from_payload(
        cls,
        races: Optional[dict] = None,
        classes: Optional[dict] = None,
        backgrounds: Optional[dict] = None,
        allowed_sources: Optional[Iterable[str]] = None,
    ) -> "RulesCatalogue":
        races = races or {}
        classes = classes or {}
        backgrounds = backgrounds or {}
        return cls(
            races=[_build_race(entry) for entry in races.get("race", [])],
            subraces=[_build_subrace(entry) for entry in races.get("subrace", [])],
            classes=[_build_class(entry) for entry in classes.get("class", [])],
            subclasses=[_build_subclass(entry) for entry in classes.get("subclass", [])],
            backgrounds=[_build_background(entry) for entry in backgrounds.get("background", [])],
            allowed_sources=allowed_sources,
        )

    @classmethod
    def from_repository(
        cls, repository: DataRepository, allowed_sources: Optional[Iterable[str]] = None
    ) -> "RulesCatalogue":
        return cls.from_payload(
            races=repository.races(),
            classes=repository.classes(),
            backgrounds=repository.backgrounds(),
            allowed_sources=allowed_sources,
        )

    # ------------------------------------------------------------------
    def is_source_allowed(self, source: Optional[str]) -> bool:
        return bool(source) and source.upper() in self.allowed_sources

    def get_race(self, name: str, source: str) -> Optional[RaceDef]:
        if not self.is_source_allowed(source):
            return None
        return self.races.get(name, source)

    def get_subraces(self, race_name: str, source: str) -> List[SubraceDef]:
        subraces = self._subraces.get(CatalogueKey.of(race_name, source), [])
        return [subrace for subrace in subraces if self.is_source_allowed(subrace.source)]

    def get_subrace(self, race_name: str, source: str, subrace_name: str) -> Optional[SubraceDef]:
        wanted = subrace_name.strip().lower()
        for subrace in self.get_subraces(race_name, source):
            if subrace.name.lower() == wanted:
                return subrace
        return None

    def get_class(self, name: str, source: Optional[str] = None) -> Optional[ClassDef]:
        if source:
            if not self.is_source_allowed(source):
                return None
            return self.classes.get(name, source)
        for candidate in self.classes.by_name.get(name.strip().lower(), []):
            if self.is_source_allowed(candidate.source):
                return candidate
        return None

    def get_subclasses(self, class_name: str, source: str) -> List[SubclassDef]:
        subclasses = self._subclasses.get(CatalogueKey.of(class_name, source), [])
        return [subclass for subclass in subclasses if self.is_source_allowed(subclass.source)]

    def get_subclass(self, class_name: str, source: str, subclass_name: str) -> Optional[SubclassDef]:
        for subclass in self.get_subclasses(class_name, source):
            if subclass.matches(subclass_name):
                return subclass
        return None

    def get_background(self, name: str, source: str) -> Optional[BackgroundDef]:
        if not self.is_source_allowed(source):
            return None
        return self.backgrounds.get(name, source)

    def get_variants(self, name: str, source: str) -> List[BackgroundDef]:
        background = self.get_background(name, source)
        if not background:
            return []
        return [variant for variant in background.variants if self.is_source_allowed(variant.source)]

    def get_variant(self, name: str, source: str, variant_name: str) -> Optional[BackgroundDef]:
        wanted = variant_name.strip().lower()
        for variant in self.get_variants(name, source):
            if variant.name.lower() == wanted:
                return variant
        return None

    def class_names(self) -> List[str]:
        names = {cls.name for cls in self.classes.entries if self.is_source_allowed(cls.source)}
        return sorted(names)


# ----------------------------------------------------------------------
def _build_race(entry: dict) -> RaceDef:
    speed = entry.get("speed", 30)
    if isinstance(speed, dict):
        speed = speed.get("walk", 30)
    return RaceDef(
        name=entry["name"],
        source=entry.get("source") or "PHB",
        ability=list(entry.get("ability") or []),
        proficiencies=ProficiencyBlock.from_entry(entry),
        entries=list(entry.get("entries") or []),
        feats=list(entry.get("feats") or []),
        lineage=bool(entry.get("lineage")),
        speed=int(speed or 30),
    )


def _build_subrace(entry: dict) -> SubraceDef:
    return SubraceDef(
        name=entry.get("name") or "",
        source=entry.get("source") or entry.get("raceSource") or "PHB",
        race_name=entry["raceName"],
        race_source=entry.get("raceSource") or "PHB",
        ability=list(entry.get("ability") or []),
        proficiencies=ProficiencyBlock.from_entry(entry),
        entries=list(entry.get("entries") or []),
        feats=list(entry.get("feats") or []),
        overwrite=frozenset(key for key, value in (entry.get("overwrite") or {}).items() if value),
    )


def _build_class(entry: dict) -> ClassDef:
    starting = entry.get("startingProficiencies") or {}
    proficiencies = ProficiencyBlock(
        skills=list(starting.get("skills") or []),
        tools=list(starting.get("toolProficiencies") or []),
        languages=list(starting.get("languageProficiencies") or []),
        weapons=_bool_maps(starting.get("weapons") or []),
        armor=_bool_maps(starting.get("armor") or []),
    )
    multiclassing = entry.get("multiclassing") or {}
    gained = multiclassing.get("proficienciesGained") or {}
    multiclass_proficiencies = ProficiencyBlock(
        skills=list(gained.get("skills") or []),
        tools=list(gained.get("toolProficiencies") or []),
        languages=list(gained.get("languageProficiencies") or []),
        weapons=_bool_maps(gained.get("weapons") or []),
        armor=_bool_maps(gained.get("armor") or []),
    )
    hit_die = entry.get("hd") or {}
    return ClassDef(
        name=entry["name"],
        source=entry.get("source") or "PHB",
        hit_die=int(hit_die.get("faces") or 8) if isinstance(hit_die, dict) else int(hit_die or 8),
        saving_throws=[ability.lower() for ability in entry.get("proficiency") or []],
        proficiencies=proficiencies,
        class_features=list(entry.get("classFeatures") or []),
        caster_progression=entry.get("casterProgression"),
        spellcasting_ability=entry.get("spellcastingAbility"),
        cantrip_progression=list(entry.get("cantripProgression") or []),
        prepared_spells=bool(entry.get("preparedSpells")),
        multiclass_requirements=dict(multiclassing.get("requirements") or {}),
        multiclass_proficiencies=multiclass_proficiencies,
    )


def _build_subclass(entry: dict) -> SubclassDef:
    return SubclassDef(
        name=entry["name"],
        short_name=entry.get("shortName") or entry["name"],
        source=entry.get("source") or "PHB",
        class_name=entry["className"],
        class_source=entry.get("classSource") or "PHB",
        proficiencies=ProficiencyBlock.from_entry(entry),
        caster_progression=entry.get("casterProgression"),
        spellcasting_ability=entry.get("spellcastingAbility"),
    )


def _build_background(entry: dict) -> BackgroundDef:
    source = entry.get("source") or "PHB"
    base = ProficiencyBlock.from_entry(entry)
    variants: List[BackgroundDef] = []
    for raw in entry.get("variants") or []:
        overrides = ProficiencyBlock.from_entry(raw)
        variants.append(
            BackgroundDef(
                name=raw["name"],
                source=raw.get("source") or source,
                # Variant arrays replace the parent's arrays they name.
                proficiencies=ProficiencyBlock(
                    skills=overrides.skills if "skillProficiencies" in raw else base.skills,
                    tools=overrides.tools if "toolProficiencies" in raw else base.tools,
                    languages=overrides.languages if "languageProficiencies" in raw else base.languages,
                    weapons=overrides.weapons if "weaponProficiencies" in raw else base.weapons,
                    armor=overrides.armor if "armorProficiencies" in raw else base.armor,
                ),
                entries=list(raw.get("entries") or []),
            )
        )
    return BackgroundDef(
        name=entry["name"],
        source=source,
        proficiencies=base,
        entries=list(entry.get("entries") or []),
        variants=variants,
    )
