from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Set

from .constants import (
    ABILITY_SCORES,
    METHOD_CUSTOM,
    OPTIONAL_CATEGORIES,
    OPTIONAL_SOURCES,
    PROFICIENCY_CATEGORIES,
)


@dataclass(slots=True)
class SourceRef:
    """A catalogue selection: name, rule-book source and optional variant."""

    name: str
    source: str = "PHB"
    variant: Optional[str] = None

    def same_selection(self, other: Optional["SourceRef"]) -> bool:
        if other is None:
            return False
        return (
            self.name.lower() == other.name.lower()
            and self.source.upper() == other.source.upper()
            and (self.variant or "").lower() == (other.variant or "").lower()
        )


@dataclass(slots=True)
class OptionalSlot:
    allowed: int = 0
    options: List[str] = field(default_factory=list)
    selected: List[str] = field(default_factory=list)

    def reset(self) -> None:
        self.allowed = 0
        self.options = []
        self.selected = []


@dataclass(slots=True)
class OptionalProficiency:
    """Per-source choice slots of one category plus the combined view."""

    allowed: int = 0
    options: List[str] = field(default_factory=list)
    selected: List[str] = field(default_factory=list)
    race: OptionalSlot = field(default_factory=OptionalSlot)
    class_: OptionalSlot = field(default_factory=OptionalSlot)
    background: OptionalSlot = field(default_factory=OptionalSlot)

    def slot(self, source_key: str) -> OptionalSlot:
        if source_key not in OPTIONAL_SOURCES:
            raise ValueError(f"Unknown optional proficiency source: {source_key}")
        return getattr(self, "class_" if source_key == "class" else source_key)

    def slots(self) -> List[OptionalSlot]:
        return [self.slot(key) for key in OPTIONAL_SOURCES]


@dataclass(slots=True)
class AbilityBonus:
    ability: str
    amount: int
    source: str


@dataclass(slots=True)
class PendingAbilityChoice:
    amount: int
    options: List[str]
    source: str
    count: int = 1
    weights: Optional[Dict[str, int]] = None


@dataclass(slots=True)
class Trait:
    name: str
    source: str
    description: Optional[object] = None


@dataclass(slots=True)
class FeatRef:
    name: str
    source: str


@dataclass(slots=True)
class ClassEntry:
    name: str
    source: str = "PHB"
    level: int = 1
    hit_die: int = 8
    # Rolled hit points keyed by class level; missing levels use the average.
    hit_points: Dict[int, int] = field(default_factory=dict)


@dataclass(slots=True)
class LevelUpRecord:
    from_level: int
    to_level: int
    applied_feats: List[str] = field(default_factory=list)
    applied_features: List[str] = field(default_factory=list)
    changed_abilities: Dict[str, int] = field(default_factory=dict)
    timestamp: str = ""


@dataclass(slots=True)
class Progression:
    classes: List[ClassEntry] = field(default_factory=list)
    experience_points: int = 0
    level_ups: List[LevelUpRecord] = field(default_factory=list)


@dataclass(slots=True)
class SpellSlot:
    max: int
    current: int
    pact: bool = False


@dataclass(slots=True)
class ClassSpellcasting:
    level: int
    ability: Optional[str] = None
    caster_progression: Optional[str] = None
    cantrips_known: int = 0
    spells_known: List[str] = field(default_factory=list)
    spells_prepared: List[str] = field(default_factory=list)
    spell_slots: Dict[int, SpellSlot] = field(default_factory=dict)


@dataclass(slots=True)
class Spellcasting:
    classes: Dict[str, ClassSpellcasting] = field(default_factory=dict)
    combined_slots: Dict[int, SpellSlot] = field(default_factory=dict)


@dataclass(slots=True)
class DerivedStats:
    proficiency_bonus: int = 2
    max_hit_points: int = 0
    asi_levels: List[int] = field(default_factory=list)
    spell_slots: Dict[int, int] = field(default_factory=dict)
    saving_throws: Dict[str, int] = field(default_factory=dict)
    skill_bonuses: Dict[str, int] = field(default_factory=dict)


def _empty_proficiencies() -> Dict[str, List[str]]:
    return {category: [] for category in PROFICIENCY_CATEGORIES}


def _empty_sources() -> Dict[str, Dict[str, Set[str]]]:
    return {category: {} for category in PROFICIENCY_CATEGORIES}


def _empty_optional() -> Dict[str, OptionalProficiency]:
    return {category: OptionalProficiency() for category in OPTIONAL_CATEGORIES}


@dataclass(slots=True)
class Character:
    """Mutable character record the engine reconciles in place."""

    name: str = "New Adventurer"
    level: int = 1
    ability_scores: Dict[str, int] = field(
        default_factory=lambda: {key: 10 for key in ABILITY_SCORES}
    )
    ability_method: str = METHOD_CUSTOM
    standard_array: Dict[str, int] = field(default_factory=dict)
    race: Optional[SourceRef] = None
    class_: Optional[SourceRef] = None
    background: Optional[SourceRef] = None

    proficiencies: Dict[str, List[str]] = field(default_factory=_empty_proficiencies)
    proficiency_sources: Dict[str, Dict[str, Set[str]]] = field(default_factory=_empty_sources)
    optional_proficiencies: Dict[str, OptionalProficiency] = field(default_factory=_empty_optional)

    ability_bonuses: List[AbilityBonus] = field(default_factory=list)
    pending_ability_choices: List[PendingAbilityChoice] = field(default_factory=list)
    traits: Dict[str, Trait] = field(default_factory=dict)
    feats: List[FeatRef] = field(default_factory=list)
    feat_allowances: Dict[str, int] = field(default_factory=dict)

    progression: Progression = field(default_factory=Progression)
    spellcasting: Spellcasting = field(default_factory=Spellcasting)
    derived: DerivedStats = field(default_factory=DerivedStats)

    # ------------------------------------------------------------------
    def bonus_for(self, ability: str) -> int:
        return sum(bonus.amount for bonus in self.ability_bonuses if bonus.ability == ability)

    def total_ability_score(self, ability: str) -> int:
        if ability not in ABILITY_SCORES:
            raise ValueError(f"Unknown ability: {ability}")
        return self.ability_scores.get(ability, 10) + self.bonus_for(ability)

    def ability_modifier(self, ability: str) -> int:
        return (self.total_ability_score(ability) - 10) // 2

    def set_ability_score(self, ability: str, value: int) -> None:
        if ability not in ABILITY_SCORES:
            raise ValueError(f"Unknown ability: {ability}")
        self.ability_scores[ability] = max(1, min(30, int(value)))

    def class_entry(self, class_name: str) -> Optional[ClassEntry]:
        wanted = class_name.lower()
        for entry in self.progression.classes:
            if entry.name.lower() == wanted:
                return entry
        return None

    def primary_class(self) -> Optional[ClassEntry]:
        return self.progression.classes[0] if self.progression.classes else None

    def total_level(self) -> int:
        classes = self.progression.classes
        if len(classes) > 1:
            return sum(entry.level for entry in classes)
        if classes:
            return classes[0].level
        return self.level

    # ------------------------------------------------------------------
    def to_dict(self) -> dict:
        data = asdict(self)
        # Source tag sets are not JSON friendly.
        data["proficiency_sources"] = {
            category: {name: sorted(tags) for name, tags in entries.items()}
            for category, entries in self.proficiency_sources.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "Character":
        """Build a record from its stored shape, backfilling missing blocks."""

        character = cls(
            name=data.get("name") or "New Adventurer",
            level=int(data.get("level") or 1),
        )
        for ability, score in (data.get("ability_scores") or {}).items():
            character.set_ability_score(ability, score)
        character.ability_method = data.get("ability_method") or METHOD_CUSTOM
        character.standard_array = {
            ability: int(value) for ability, value in (data.get("standard_array") or {}).items()
        }
        character.race = _ref_from_dict(data.get("race"))
        character.class_ = _ref_from_dict(data.get("class_") or data.get("class"))
        character.background = _ref_from_dict(data.get("background"))

        for category, names in (data.get("proficiencies") or {}).items():
            if category in character.proficiencies:
                character.proficiencies[category] = list(names or [])
        for category, entries in (data.get("proficiency_sources") or {}).items():
            if category in character.proficiency_sources:
                character.proficiency_sources[category] = {
                    name: set(tags) for name, tags in (entries or {}).items()
                }
        for category, block in (data.get("optional_proficiencies") or {}).items():
            if category not in character.optional_proficiencies or not isinstance(block, dict):
                continue
            target = character.optional_proficiencies[category]
            _fill_slot(target, block)
            for source_key in OPTIONAL_SOURCES:
                raw = block.get("class_" if source_key == "class" else source_key) or block.get(source_key)
                if isinstance(raw, dict):
                    _fill_slot(target.slot(source_key), raw)

        character.ability_bonuses = [AbilityBonus(**entry) for entry in data.get("ability_bonuses") or []]
        character.pending_ability_choices = [
            PendingAbilityChoice(**entry) for entry in data.get("pending_ability_choices") or []
        ]
        character.traits = {
            name: Trait(**entry) for name, entry in (data.get("traits") or {}).items()
        }
        character.feats = [FeatRef(**entry) for entry in data.get("feats") or []]
        character.feat_allowances = dict(data.get("feat_allowances") or {})

        progression = data.get("progression") or {}
        character.progression = Progression(
            classes=[_class_entry_from_dict(entry) for entry in progression.get("classes") or []],
            experience_points=int(progression.get("experience_points") or 0),
            level_ups=[LevelUpRecord(**entry) for entry in progression.get("level_ups") or []],
        )
        spellcasting = data.get("spellcasting") or {}
        character.spellcasting = Spellcasting(
            classes={
                name: _spellcasting_from_dict(entry)
                for name, entry in (spellcasting.get("classes") or {}).items()
            },
            combined_slots=_slots_from_dict(spellcasting.get("combined_slots")),
        )
        return character


def _ref_from_dict(raw) -> Optional[SourceRef]:
    if not raw or not isinstance(raw, dict) or not raw.get("name"):
        return None
    return SourceRef(name=raw["name"], source=raw.get("source") or "PHB", variant=raw.get("variant"))


def _fill_slot(target, raw: dict) -> None:
    target.allowed = int(raw.get("allowed") or 0)
    target.options = list(raw.get("options") or [])
    target.selected = list(raw.get("selected") or [])


def _slots_from_dict(raw) -> Dict[int, SpellSlot]:
    slots: Dict[int, SpellSlot] = {}
    for level, slot in (raw or {}).items():
        if isinstance(slot, SpellSlot):
            slots[int(level)] = slot
        elif isinstance(slot, dict):
            slots[int(level)] = SpellSlot(**slot)
    return slots


def _class_entry_from_dict(raw: dict) -> ClassEntry:
    return ClassEntry(
        name=raw["name"],
        source=raw.get("source") or "PHB",
        level=int(raw.get("level") or 1),
        hit_die=int(raw.get("hit_die") or 8),
        hit_points={int(level): int(hp) for level, hp in (raw.get("hit_points") or {}).items()},
    )


def _spellcasting_from_dict(raw: dict) -> ClassSpellcasting:
    return ClassSpellcasting(
        level=int(raw.get("level") or 0),
        ability=raw.get("ability"),
        caster_progression=raw.get("caster_progression"),
        cantrips_known=int(raw.get("cantrips_known") or 0),
        spells_known=list(raw.get("spells_known") or []),
        spells_prepared=list(raw.get("spells_prepared") or []),
        spell_slots=_slots_from_dict(raw.get("spell_slots")),
    )
