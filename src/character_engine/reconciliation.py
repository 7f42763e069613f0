"""Apply race, class and background selections to a character.

Each ``apply_*`` call withdraws everything the previous selection of that
source granted, derives the new selection's grants from the catalogue and
restores the player's earlier picks that are still valid. A pass always runs
to completion; lookups that miss leave the source empty and report a
``CATALOGUE_MISS`` outcome instead of raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from . import abilities
from . import proficiencies as profs
from .constants import (
    ARTISAN_TOOLS,
    EXOTIC_LANGUAGES,
    GAMING_SETS,
    MAX_LEVEL,
    MUSICAL_INSTRUMENT,
    OPTIONAL_CATEGORIES,
    SKILL_NAMES,
    SOURCE_BACKGROUND,
    SOURCE_CLASS,
    SOURCE_KEY_TAGS,
    SOURCE_MULTICLASS,
    SOURCE_RACE,
    SOURCE_SUBCLASS,
    SOURCE_SUBRACE,
    STANDARD_LANGUAGES,
    STANDARD_TOOLS,
)
from .data.catalogue import ProficiencyBlock, RulesCatalogue, strip_tags
from .data.loader import CatalogueKey
from .logging_utils import get_logger
from .models import Character, SourceRef, Trait
from .progression import ProgressionLedger
from .results import Outcome, Reason

logger = get_logger(__name__)

# Keys that open a choice of ``count`` names from a standard list.
ANY_OPTIONS: Dict[str, Dict[str, List[str]]] = {
    "skills": {"any": SKILL_NAMES},
    "tools": {
        "any": STANDARD_TOOLS,
        "anyartisanstool": ARTISAN_TOOLS,
        "anymusicalinstrument": [MUSICAL_INSTRUMENT],
        "anygamingset": GAMING_SETS,
    },
    "languages": {
        "any": STANDARD_LANGUAGES,
        "anystandard": STANDARD_LANGUAGES,
        "anyexotic": EXOTIC_LANGUAGES,
    },
}

HUMAN_VARIANT = (CatalogueKey("human", "PHB"), "variant")

OVERWRITE_KEYS = {
    "skills": "skillProficiencies",
    "tools": "toolProficiencies",
    "languages": "languageProficiencies",
    "weapons": "weaponProficiencies",
    "armor": "armorProficiencies",
}

_CANONICAL = {
    "skills": {name.lower(): name for name in SKILL_NAMES},
    "languages": {name.lower(): name for name in STANDARD_LANGUAGES + EXOTIC_LANGUAGES},
    "tools": {name.lower(): name for name in STANDARD_TOOLS + GAMING_SETS},
}


def canonical_name(category: str, raw: str) -> str:
    """Display spelling of a catalogue key such as ``"thieves' tools"``."""

    name = strip_tags(raw).split("|")[0].strip()
    known = _CANONICAL.get(category, {}).get(name.lower())
    if known:
        return known
    if category in ("skills", "languages"):
        return name.title()
    if category == "tools":
        return name[:1].upper() + name[1:]
    return name


@dataclass(slots=True)
class GrantPlan:
    """Fixed names and one choice descriptor parsed from a proficiency array."""

    fixed: List[str] = field(default_factory=list)
    allowed: int = 0
    options: List[str] = field(default_factory=list)

    def merge(self, other: "GrantPlan") -> "GrantPlan":
        return GrantPlan(
            fixed=self.fixed + other.fixed,
            allowed=self.allowed + other.allowed,
            options=profs.unique(self.options + other.options),
        )


def parse_proficiency_entries(
    category: str, entries: Iterable[object], own_language: Optional[str] = None
) -> GrantPlan:
    """Read one 5etools proficiency array.

    Separate entries are alternatives: the choice count is the largest single
    entry's count and the options are the union of all entries.
    """

    plan = GrantPlan()
    any_lists = ANY_OPTIONS.get(category, {})
    for entry in entries or []:
        if not isinstance(entry, dict):
            continue
        entry_allowed = 0
        for key, value in entry.items():
            lowered = key.lower()
            if lowered == "choose":
                if not isinstance(value, dict) or not value.get("from"):
                    continue
                entry_allowed += int(value.get("count") or 1)
                plan.options.extend(canonical_name(category, name) for name in value["from"])
            elif lowered in any_lists:
                if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                    continue
                entry_allowed += value
                plan.options.extend(any_lists[lowered])
            elif lowered == "other" and category == "languages":
                if value is True and own_language and own_language.lower() != "common":
                    plan.fixed.append(own_language)
            elif value is True:
                plan.fixed.append(canonical_name(category, key))
        plan.allowed = max(plan.allowed, entry_allowed)
    plan.options = profs.unique(plan.options)
    return plan


def plan_block(block: ProficiencyBlock, own_language: Optional[str] = None) -> Dict[str, GrantPlan]:
    return {
        "skills": parse_proficiency_entries("skills", block.skills),
        "tools": parse_proficiency_entries("tools", block.tools),
        "languages": parse_proficiency_entries("languages", block.languages, own_language),
        "weapons": parse_proficiency_entries("weapons", block.weapons),
        "armor": parse_proficiency_entries("armor", block.armor),
    }


class SourceReconciler:
    """Withdraw-then-reapply passes for the three character sources."""

    def __init__(self, catalogue: RulesCatalogue, ledger: Optional[ProgressionLedger] = None) -> None:
        self.catalogue = catalogue
        self.ledger = ledger or ProgressionLedger(catalogue)

    # ------------------------------------------------------------------
    def apply_race(self, character: Character, race_ref: Optional[SourceRef]) -> Outcome:
        previous = self._capture(character, "race")
        self._withdraw(character, "race")
        character.race = race_ref
        if race_ref is None:
            profs.recombine_all(character)
            return Outcome.ok("Race cleared", reason=Reason.CLEARED)

        race = self.catalogue.get_race(race_ref.name, race_ref.source)
        if race is None:
            return self._miss(character, "race", race_ref)

        warnings: List[str] = []
        subrace = None
        if race_ref.variant:
            subrace = self.catalogue.get_subrace(race.name, race.source, race_ref.variant)
            if subrace is None:
                warnings.append(self._warn(f"Subrace {race_ref.variant} of {race.name} not found"))

        race_plans = plan_block(race.proficiencies, own_language=race.name)
        subrace_plans = plan_block(subrace.proficiencies, own_language=race.name) if subrace else {}
        for category, key in OVERWRITE_KEYS.items():
            if subrace and subrace.replaces(key):
                race_plans[category] = GrantPlan()
        self._grant_fixed(character, race_plans, SOURCE_RACE)
        self._grant_fixed(character, subrace_plans, SOURCE_SUBRACE)
        choices = {
            category: race_plans[category].merge(subrace_plans[category]) if subrace else race_plans[category]
            for category in OPTIONAL_CATEGORIES
        }

        self._feat_allowance(character, race.feats, SOURCE_RACE)
        if subrace:
            self._feat_allowance(character, subrace.feats, SOURCE_SUBRACE)
        if subrace and (race.key, subrace.name.lower()) == HUMAN_VARIANT:
            # One skill of any kind and one feat, whatever the record says.
            choices["skills"] = GrantPlan(allowed=1, options=list(SKILL_NAMES))
            character.feat_allowances[SOURCE_SUBRACE] = 1

        self._configure(character, "race", choices, previous)

        resolution = abilities.resolve_race_abilities(race, subrace)
        abilities.apply_resolution(character, resolution)
        self._add_traits(character, race.entries, SOURCE_RACE)
        if subrace:
            self._add_traits(character, subrace.entries, SOURCE_SUBRACE)

        profs.recombine_all(character)
        logger.debug("Applied race %s (%s)", race.name, subrace.name if subrace else "no subrace")
        return self._applied(f"Race set to {race.name}", warnings)

    def apply_class(self, character: Character, class_ref: Optional[SourceRef]) -> Outcome:
        previous = self._capture(character, "class")
        self._withdraw(character, "class")
        character.class_ = class_ref
        if class_ref is None:
            self._drop_classes(character)
            profs.recombine_all(character)
            return Outcome.ok("Class cleared", reason=Reason.CLEARED)

        class_def = self.catalogue.get_class(class_ref.name, class_ref.source)
        if class_def is None:
            return self._miss(character, "class", class_ref)

        warnings: List[str] = []
        subclass = None
        if class_ref.variant:
            subclass = self.catalogue.get_subclass(class_def.name, class_def.source, class_ref.variant)
            if subclass is None:
                warnings.append(self._warn(f"Subclass {class_ref.variant} of {class_def.name} not found"))

        class_plans = plan_block(class_def.proficiencies)
        subclass_plans = plan_block(subclass.proficiencies) if subclass else {}
        self._grant_fixed(character, class_plans, SOURCE_CLASS)
        self._grant_fixed(character, subclass_plans, SOURCE_SUBCLASS)
        for ability in class_def.saving_throws:
            profs.grant_fixed(character, "saving_throws", ability, SOURCE_CLASS)
        choices = {
            category: class_plans[category].merge(subclass_plans[category]) if subclass else class_plans[category]
            for category in OPTIONAL_CATEGORIES
        }
        self._configure(character, "class", choices, previous)

        self._sync_primary_class(character, class_def.name, class_def.source)
        profs.recombine_all(character)
        logger.debug("Applied class %s", class_def.name)
        return self._applied(f"Class set to {class_def.name}", warnings)

    def apply_background(self, character: Character, background_ref: Optional[SourceRef]) -> Outcome:
        previous = self._capture(character, "background")
        self._withdraw(character, "background")
        character.background = background_ref
        if background_ref is None:
            profs.recombine_all(character)
            return Outcome.ok("Background cleared", reason=Reason.CLEARED)

        background = self.catalogue.get_background(background_ref.name, background_ref.source)
        if background is None:
            return self._miss(character, "background", background_ref)

        warnings: List[str] = []
        record = background
        if background_ref.variant:
            variant = self.catalogue.get_variant(background.name, background.source, background_ref.variant)
            if variant is None:
                warnings.append(
                    self._warn(f"Variant {background_ref.variant} of {background.name} not found")
                )
            else:
                record = variant

        plans = plan_block(record.proficiencies)
        self._grant_fixed(character, plans, SOURCE_BACKGROUND)
        self._configure(character, "background", {category: plans[category] for category in OPTIONAL_CATEGORIES}, previous)
        self._add_traits(character, record.entries, SOURCE_BACKGROUND)

        profs.recombine_all(character)
        logger.debug("Applied background %s", record.name)
        return self._applied(f"Background set to {record.name}", warnings)

    # ------------------------------------------------------------------
    def add_multiclass(self, character: Character, class_ref: SourceRef) -> Outcome:
        if character.class_ is None or not character.progression.classes:
            return Outcome.refused(Reason.CLASS_REQUIRED, "Choose a primary class before multiclassing")
        class_def = self.catalogue.get_class(class_ref.name, class_ref.source)
        if class_def is None:
            message = self._warn(f"Class {class_ref.name} ({class_ref.source}) not found")
            return Outcome(applied=False, reason=Reason.CATALOGUE_MISS, message=message, warnings=[message])
        if character.class_entry(class_def.name) is not None:
            return Outcome.refused(Reason.NO_CHANGE, f"{class_def.name} is already one of the character's classes")
        if character.total_level() >= MAX_LEVEL:
            return Outcome.refused(Reason.BOUND_VIOLATION, "No levels remain for another class")
        if not self.ledger.meets_multiclass_requirements(character, class_def.name):
            text = self.ledger.requirement_text(class_def.name)
            return Outcome.refused(Reason.REQUIREMENTS_NOT_MET, f"{class_def.name} requires {text}")

        tag = SOURCE_MULTICLASS.format(name=class_def.name)
        plans = plan_block(class_def.multiclass_proficiencies)
        self._grant_fixed(character, plans, tag)
        from_level = character.total_level()
        self.ledger.add_class_level(character, class_def.name, 1, class_def.source)
        character.level = character.total_level()
        self.ledger.record_level_up(
            character,
            from_level,
            character.level,
            applied_features=self.ledger.class_features_at(class_def.name, 1),
        )
        profs.recombine_all(character)
        return Outcome.ok(f"Multiclassed into {class_def.name}")

    def remove_multiclass(self, character: Character, class_name: str) -> Outcome:
        primary = character.primary_class()
        if primary is not None and primary.name.lower() == class_name.strip().lower():
            return Outcome.refused(Reason.NO_CHANGE, f"{primary.name} is the primary class")
        outcome = self.ledger.remove_class_level(character, class_name)
        if outcome:
            profs.recombine_all(character)
        return outcome

    # ------------------------------------------------------------------
    def _capture(self, character: Character, source_key: str) -> Dict[str, List[str]]:
        captured = {}
        for category in OPTIONAL_CATEGORIES:
            block = character.optional_proficiencies.get(category)
            captured[category] = list(block.slot(source_key).selected) if block else []
        return captured

    def _withdraw(self, character: Character, source_key: str) -> None:
        tags = SOURCE_KEY_TAGS[source_key]
        for category in OPTIONAL_CATEGORIES:
            profs.clear_optional(character, category, source_key)
        for tag in tags:
            profs.remove_by_source(character, tag)
            character.feat_allowances.pop(tag, None)
        abilities.remove_ability_grants(character, tags)
        for name in [name for name, trait in character.traits.items() if trait.source in tags]:
            del character.traits[name]

    def _grant_fixed(self, character: Character, plans: Dict[str, GrantPlan], tag: str) -> None:
        for category, plan in plans.items():
            for name in plan.fixed:
                profs.grant_fixed(character, category, name, tag)

    def _configure(
        self,
        character: Character,
        source_key: str,
        choices: Dict[str, GrantPlan],
        previous: Dict[str, List[str]],
    ) -> None:
        for category in OPTIONAL_CATEGORIES:
            plan = choices[category]
            profs.configure_optional(character, category, source_key, plan.allowed, plan.options)
            if category == "tools" and plan.allowed and plan.options == [MUSICAL_INSTRUMENT]:
                self._fill_instruments(character, source_key, plan.allowed)
            else:
                profs.restore_optional(character, category, source_key, previous.get(category, []))

    def _fill_instruments(self, character: Character, source_key: str, allowed: int) -> None:
        # Only one value can be picked, so every slot is spent on it.
        slot = character.optional_proficiencies["tools"].slot(source_key)
        slot.selected = [MUSICAL_INSTRUMENT] * allowed
        profs.grant_fixed(character, "tools", MUSICAL_INSTRUMENT, profs.choice_tag(source_key))

    def _feat_allowance(self, character: Character, feats: Sequence[object], tag: str) -> None:
        count = 0
        for entry in feats or []:
            if isinstance(entry, dict):
                value = entry.get("any")
                if isinstance(value, int) and not isinstance(value, bool):
                    count = max(count, value)
        if count:
            character.feat_allowances[tag] = count

    def _add_traits(self, character: Character, entries: Sequence[object], tag: str) -> None:
        for entry in entries or []:
            if isinstance(entry, dict) and entry.get("name"):
                name = strip_tags(str(entry["name"]))
                character.traits[name] = Trait(name=name, source=tag, description=entry.get("entries"))

    def _sync_primary_class(self, character: Character, name: str, source: str) -> None:
        """Keep the first ledger entry on the selected class, at the character's level."""

        primary = character.primary_class()
        if primary is not None and primary.name.lower() == name.lower():
            primary.source = source
            self.ledger.update_spell_slots(character)
            return
        target_level = character.level
        if primary is not None:
            self.ledger.remove_class_level(character, primary.name)
            logger.debug("Primary class changed from %s to %s", primary.name, name)
        existing = character.class_entry(name)
        if existing is not None:
            # A secondary class promoted to primary keeps only its class grants.
            self.ledger.remove_class_level(character, existing.name)
        secondary_levels = sum(entry.level for entry in character.progression.classes)
        level = max(1, target_level - secondary_levels)
        self.ledger.add_class_level(character, name, level, source, primary=True)
        character.level = character.total_level()

    def _miss(self, character: Character, source_key: str, ref: SourceRef) -> Outcome:
        message = self._warn(f"{source_key.capitalize()} {ref.name} ({ref.source}) not found in allowed sources")
        if source_key == "class":
            self._drop_classes(character)
        profs.recombine_all(character)
        return Outcome(applied=False, reason=Reason.CATALOGUE_MISS, message=message, warnings=[message])

    def _drop_classes(self, character: Character) -> None:
        """Remove every ledger entry, withdrawing the grants each multiclass earned."""

        for entry in list(character.progression.classes):
            self.ledger.remove_class_level(character, entry.name)

    @staticmethod
    def _warn(message: str) -> str:
        logger.warning(message)
        return message

    @staticmethod
    def _applied(message: str, warnings: List[str]) -> Outcome:
        outcome = Outcome.ok(message)
        outcome.warnings.extend(warnings)
        return outcome
