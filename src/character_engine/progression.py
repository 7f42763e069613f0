from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from . import rules
from .constants import (
    ABILITY_SCORES,
    ASI_FEATURE_NAME,
    CASTER_PACT,
    DEFAULT_ASI_LEVELS,
    MAX_LEVEL,
    MIN_LEVEL,
    SKILL_TO_ABILITY,
    SOURCE_MULTICLASS,
)
from .data.catalogue import ClassDef, RulesCatalogue
from .logging_utils import get_logger
from .models import Character, ClassEntry, ClassSpellcasting, LevelUpRecord, SpellSlot
from .proficiencies import remove_by_source
from .results import Outcome, Reason

logger = get_logger(__name__)


@dataclass(slots=True)
class MulticlassOption:
    name: str
    meets_requirements: bool
    requirement_text: str = ""


def parse_feature(feature: object) -> Tuple[str, Optional[int]]:
    """Split a class feature reference into its name and level.

    Features come either as pipe strings (``"Extra Attack|Fighter||5"``), as
    ``{"classFeature": "..."}`` wrappers around such a string, or as plain
    ``{"name": ..., "level": ...}`` records.
    """

    if isinstance(feature, dict):
        if "classFeature" in feature:
            return parse_feature(feature["classFeature"])
        level = feature.get("level")
        return str(feature.get("name") or ""), int(level) if level is not None else None
    if not isinstance(feature, str):
        return "", None
    parts = feature.split("|")
    level: Optional[int] = None
    for part in reversed(parts):
        if part.strip().isdigit():
            level = int(part)
            break
    return parts[0], level


def _slot_map(counts: Dict[int, int], previous: Dict[int, SpellSlot], pact: bool = False) -> Dict[int, SpellSlot]:
    slots: Dict[int, SpellSlot] = {}
    for slot_level, count in counts.items():
        old = previous.get(slot_level)
        current = min(old.current, count) if old else count
        slots[slot_level] = SpellSlot(max=count, current=current, pact=pact)
    return slots


class ProgressionLedger:
    """Per-class level ledger with hit points, ASI levels and spell slots."""

    def __init__(self, catalogue: RulesCatalogue) -> None:
        self.catalogue = catalogue

    # ------------------------------------------------------------------
    # Catalogue helpers
    def _class_def(self, class_name: str, source: Optional[str] = None) -> Optional[ClassDef]:
        return self.catalogue.get_class(class_name, source) or self.catalogue.get_class(class_name)

    def caster_progression(self, character: Character, entry: ClassEntry) -> Optional[str]:
        class_def = self._class_def(entry.name, entry.source)
        progression = class_def.caster_progression if class_def else None
        primary = character.primary_class()
        if progression or primary is not entry or not character.class_ or not character.class_.variant:
            return progression
        subclass = self.catalogue.get_subclass(entry.name, entry.source, character.class_.variant)
        return subclass.caster_progression if subclass else None

    def _spellcasting_ability(self, character: Character, entry: ClassEntry) -> Optional[str]:
        class_def = self._class_def(entry.name, entry.source)
        if class_def and class_def.spellcasting_ability:
            return class_def.spellcasting_ability
        if character.class_ and character.class_.variant and character.primary_class() is entry:
            subclass = self.catalogue.get_subclass(entry.name, entry.source, character.class_.variant)
            if subclass:
                return subclass.spellcasting_ability
        return None

    def class_features_at(self, class_name: str, level: int) -> List[str]:
        class_def = self._class_def(class_name)
        if not class_def:
            return []
        names = []
        for feature in class_def.class_features:
            name, feature_level = parse_feature(feature)
            if name and feature_level == level:
                names.append(name)
        return names

    # ------------------------------------------------------------------
    # Levels
    def increase_level(self, character: Character, class_name: Optional[str] = None) -> Outcome:
        from_level = character.total_level()
        if from_level >= MAX_LEVEL:
            return Outcome.refused(Reason.BOUND_VIOLATION, f"Level cannot exceed {MAX_LEVEL}")
        classes = character.progression.classes

        if not classes and not class_name:
            character.level = from_level + 1
            self.record_level_up(character, from_level, character.level)
            return Outcome.ok(f"Level {character.level}")

        if class_name:
            entry = character.class_entry(class_name)
            if entry is None:
                if not self._class_def(class_name):
                    return Outcome.refused(Reason.CATALOGUE_MISS, f"Unknown class: {class_name}")
                # A classless character starts the named class at its current level.
                entry = self.add_class_level(character, class_name, 1 if classes else from_level)
                if classes[0] is entry and len(classes) == 1:
                    entry.level += 1
            else:
                entry.level += 1
        elif len(classes) == 1:
            entry = classes[0]
            entry.level += 1
        else:
            return Outcome.refused(Reason.CLASS_REQUIRED, "Choose which class gains the level")

        character.level = character.total_level()
        self.record_level_up(
            character,
            from_level,
            character.level,
            applied_features=self.class_features_at(entry.name, entry.level),
        )
        self.update_spell_slots(character)
        logger.debug("%s advanced to %s %d", character.name, entry.name, entry.level)
        return Outcome.ok(f"{entry.name} {entry.level}")

    def decrease_level(self, character: Character, class_name: Optional[str] = None) -> Outcome:
        from_level = character.total_level()
        if from_level <= MIN_LEVEL:
            return Outcome.refused(Reason.BOUND_VIOLATION, f"Level cannot drop below {MIN_LEVEL}")
        classes = character.progression.classes

        if not classes:
            character.level = from_level - 1
            return Outcome.ok(f"Level {character.level}")

        if class_name:
            entry = character.class_entry(class_name)
            if entry is None:
                return Outcome.refused(Reason.NOT_FOUND, f"{class_name} is not one of the character's classes")
        elif len(classes) == 1:
            entry = classes[0]
        else:
            return Outcome.refused(Reason.CLASS_REQUIRED, "Choose which class loses the level")

        if entry.level <= MIN_LEVEL:
            if entry is character.primary_class():
                return Outcome.refused(Reason.BOUND_VIOLATION, f"{entry.name} cannot drop below level 1")
            return self.remove_class_level(character, entry.name)

        entry.hit_points.pop(entry.level, None)
        entry.level -= 1
        character.level = character.total_level()
        self.update_spell_slots(character)
        return Outcome.ok(f"{entry.name} {entry.level}")

    def add_class_level(
        self,
        character: Character,
        class_name: str,
        level: int = 1,
        source: str = "PHB",
        primary: bool = False,
    ) -> ClassEntry:
        """Create or update the ledger entry of ``class_name``."""

        level = rules.clamp_level(level)
        entry = character.class_entry(class_name)
        if entry is not None:
            entry.level = level
            if source and not entry.source:
                entry.source = source
            self.update_spell_slots(character)
            return entry

        class_def = self._class_def(class_name, source)
        entry = ClassEntry(
            name=class_def.name if class_def else class_name,
            source=class_def.source if class_def else source,
            level=level,
            hit_die=class_def.hit_die if class_def else 8,
        )
        if primary:
            character.progression.classes.insert(0, entry)
        else:
            character.progression.classes.append(entry)
        self.update_spell_slots(character)
        return entry

    def remove_class_level(self, character: Character, class_name: str) -> Outcome:
        entry = character.class_entry(class_name)
        if entry is None:
            return Outcome.refused(Reason.NOT_FOUND, f"{class_name} is not one of the character's classes")
        character.progression.classes.remove(entry)
        character.spellcasting.classes.pop(entry.name, None)
        remove_by_source(character, SOURCE_MULTICLASS.format(name=entry.name))
        if character.progression.classes:
            character.level = character.total_level()
        self.update_spell_slots(character)
        return Outcome.ok(f"Removed {entry.name}", reason=Reason.CLEARED)

    def record_level_up(
        self,
        character: Character,
        from_level: int,
        to_level: int,
        applied_feats: Optional[Iterable[str]] = None,
        applied_features: Optional[Iterable[str]] = None,
        changed_abilities: Optional[Dict[str, int]] = None,
    ) -> LevelUpRecord:
        record = LevelUpRecord(
            from_level=from_level,
            to_level=to_level,
            applied_feats=list(applied_feats or []),
            applied_features=list(applied_features or []),
            changed_abilities=dict(changed_abilities or {}),
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        character.progression.level_ups.append(record)
        return record

    # ------------------------------------------------------------------
    # Ability score improvements
    def asi_levels_for_class(self, class_name: str, source: Optional[str] = None) -> List[int]:
        class_def = self._class_def(class_name, source)
        if not class_def:
            return list(DEFAULT_ASI_LEVELS)
        levels = set()
        for feature in class_def.class_features:
            name, level = parse_feature(feature)
            if name.strip() == ASI_FEATURE_NAME and level is not None:
                levels.add(level)
        return sorted(levels) if levels else list(DEFAULT_ASI_LEVELS)

    def asi_levels(self, character: Character) -> List[int]:
        levels = set()
        for entry in character.progression.classes:
            levels.update(self.asi_levels_for_class(entry.name, entry.source))
        return sorted(levels)

    # ------------------------------------------------------------------
    # Hit points
    def set_hit_point_roll(self, character: Character, class_name: str, class_level: int, value: int) -> Outcome:
        entry = character.class_entry(class_name)
        if entry is None:
            return Outcome.refused(Reason.NOT_FOUND, f"{class_name} is not one of the character's classes")
        if class_level < 2 or class_level > entry.level:
            return Outcome.refused(Reason.BOUND_VIOLATION, f"No rolled hit points at {entry.name} level {class_level}")
        if value < 1 or value > entry.hit_die:
            return Outcome.refused(Reason.BOUND_VIOLATION, f"A d{entry.hit_die} cannot roll {value}")
        entry.hit_points[class_level] = value
        return Outcome.ok(f"{entry.name} level {class_level}: {value}")

    def max_hit_points(self, character: Character) -> int:
        con_mod = character.ability_modifier("con")
        classes = character.progression.classes
        if not classes:
            return max(1, 8 + con_mod)
        total = 0
        for entry in classes:
            total += entry.hit_die
            for class_level in range(2, entry.level + 1):
                total += entry.hit_points.get(class_level) or rules.average_hit_die(entry.hit_die)
        total_level = character.total_level()
        total += max(total_level, con_mod * total_level)
        return max(1, total)

    # ------------------------------------------------------------------
    # Spell slots
    def spell_slots_for_class(
        self, class_name: str, level: int, progression: Optional[str] = None
    ) -> Dict[int, int]:
        if progression is None:
            class_def = self._class_def(class_name)
            progression = class_def.caster_progression if class_def else None
        if not progression:
            return {}
        return rules.slots_for_progression(progression, level)

    def combined_spell_slots(self, character: Character) -> Dict[int, int]:
        classes = character.progression.classes
        if len(classes) <= 1:
            return {}
        caster_level = 0
        for entry in classes:
            progression = self.caster_progression(character, entry)
            if progression == CASTER_PACT:
                continue
            caster_level += rules.caster_level(progression, entry.level)
        return rules.standard_slots(caster_level)

    def update_spell_slots(self, character: Character) -> None:
        """Recompute every class block and the combined table, keeping usage."""

        spellcasting = character.spellcasting
        present = set()
        for entry in character.progression.classes:
            progression = self.caster_progression(character, entry)
            if not progression:
                spellcasting.classes.pop(entry.name, None)
                continue
            present.add(entry.name)
            block = spellcasting.classes.get(entry.name)
            if block is None:
                block = ClassSpellcasting(level=entry.level)
                spellcasting.classes[entry.name] = block
            block.level = entry.level
            block.ability = self._spellcasting_ability(character, entry)
            block.caster_progression = progression
            block.cantrips_known = self._cantrips_known(entry)
            counts = self.spell_slots_for_class(entry.name, entry.level, progression)
            block.spell_slots = _slot_map(counts, block.spell_slots, pact=progression == CASTER_PACT)
        for name in list(spellcasting.classes):
            if name not in present:
                del spellcasting.classes[name]
        spellcasting.combined_slots = _slot_map(
            self.combined_spell_slots(character), spellcasting.combined_slots
        )

    def _cantrips_known(self, entry: ClassEntry) -> int:
        class_def = self._class_def(entry.name, entry.source)
        if not class_def or not class_def.cantrip_progression:
            return 0
        index = min(entry.level, len(class_def.cantrip_progression)) - 1
        return int(class_def.cantrip_progression[index])

    def active_slots(self, character: Character, class_name: Optional[str] = None) -> Dict[int, SpellSlot]:
        spellcasting = character.spellcasting
        if class_name:
            block = spellcasting.classes.get(class_name)
            return block.spell_slots if block else {}
        if spellcasting.combined_slots:
            return spellcasting.combined_slots
        primary = character.primary_class()
        block = spellcasting.classes.get(primary.name) if primary else None
        return block.spell_slots if block else {}

    def use_spell_slot(self, character: Character, slot_level: int, class_name: Optional[str] = None) -> Outcome:
        slot = self.active_slots(character, class_name).get(slot_level)
        if slot is None:
            return Outcome.refused(Reason.NOT_FOUND, f"No level {slot_level} spell slots")
        if slot.current <= 0:
            return Outcome.refused(Reason.CAP_REACHED, f"No level {slot_level} spell slots remain")
        slot.current -= 1
        return Outcome.ok(f"{slot.current}/{slot.max} level {slot_level} slots remain")

    def restore_spell_slots(self, character: Character, pact_only: bool = False) -> None:
        spellcasting = character.spellcasting
        tables = [block.spell_slots for block in spellcasting.classes.values()]
        tables.append(spellcasting.combined_slots)
        for table in tables:
            for slot in table.values():
                if slot.pact or not pact_only:
                    slot.current = slot.max

    # ------------------------------------------------------------------
    # Multiclassing
    def meets_multiclass_requirements(self, character: Character, class_name: str) -> bool:
        class_def = self._class_def(class_name)
        requirements = class_def.multiclass_requirements if class_def else {}
        if not requirements:
            return True
        if isinstance(requirements.get("or"), list):
            for group in requirements["or"]:
                for ability, minimum in group.items():
                    if ability in ABILITY_SCORES and character.total_ability_score(ability) >= minimum:
                        return True
            return False
        for ability, minimum in requirements.items():
            if ability in ABILITY_SCORES and character.total_ability_score(ability) < minimum:
                return False
        return True

    def requirement_text(self, class_name: str) -> str:
        class_def = self._class_def(class_name)
        requirements = class_def.multiclass_requirements if class_def else {}
        if isinstance(requirements.get("or"), list):
            alternatives = [
                f"{ability.upper()} {minimum}" for group in requirements["or"] for ability, minimum in group.items()
            ]
            return " or ".join(alternatives)
        return ", ".join(f"{ability.upper()} {minimum}" for ability, minimum in requirements.items())

    def multiclass_options(self, character: Character, ignore_requirements: bool = False) -> List[MulticlassOption]:
        existing = {entry.name.lower() for entry in character.progression.classes}
        options = []
        for name in self.catalogue.class_names():
            if name.lower() in existing:
                continue
            meets = ignore_requirements or self.meets_multiclass_requirements(character, name)
            options.append(MulticlassOption(name, meets, self.requirement_text(name)))
        return options

    # ------------------------------------------------------------------
    @staticmethod
    def proficiency_bonus(level: int) -> int:
        return rules.proficiency_bonus(level)

    def refresh_derived(self, character: Character) -> None:
        derived = character.derived
        prof = rules.proficiency_bonus(character.total_level())
        derived.proficiency_bonus = prof
        derived.max_hit_points = self.max_hit_points(character)
        derived.asi_levels = self.asi_levels(character)
        slots = self.active_slots(character)
        derived.spell_slots = {level: slot.max for level, slot in sorted(slots.items())}
        saves = set(character.proficiencies.get("saving_throws") or [])
        derived.saving_throws = rules.saving_throw_bonuses(character, saves, prof)
        skills = {name.lower() for name in character.proficiencies.get("skills") or []}
        derived.skill_bonuses = rules.skill_bonuses(
            character, {skill for skill in skills if skill in SKILL_TO_ABILITY}, prof
        )
