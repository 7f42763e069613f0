"""Proficiency aggregation across race, class and background.

Every proficiency name held by a character carries the set of source tags
that granted it. Player picks live in per-source ``OptionalSlot`` triples and
are granted under a ``<Source> Choice`` tag so they can be withdrawn without
touching fixed grants of the same name.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Tuple

from .constants import (
    CHOICE_SUFFIX,
    DEFAULT_LANGUAGE,
    OPTIONAL_CATEGORIES,
    OPTIONAL_SOURCES,
    PROFICIENCY_CATEGORIES,
    SOURCE_DEFAULT,
    SOURCE_KEY_TAGS,
)
from .logging_utils import get_logger
from .models import Character, OptionalProficiency
from .results import Outcome, Reason

logger = get_logger(__name__)


def _normalize(name: str) -> str:
    return name.strip().lower()


def _check_category(category: str) -> None:
    if category not in PROFICIENCY_CATEGORIES:
        raise ValueError(f"Unknown proficiency category: {category}")


def _optional_block(character: Character, category: str) -> OptionalProficiency:
    if category not in OPTIONAL_CATEGORIES:
        raise ValueError(f"Category has no optional proficiencies: {category}")
    block = character.optional_proficiencies.get(category)
    if block is None:
        block = OptionalProficiency()
        character.optional_proficiencies[category] = block
    return block


def _find(names: Iterable[str], name: str) -> Optional[str]:
    target = _normalize(name)
    for existing in names:
        if _normalize(existing) == target:
            return existing
    return None


def unique(names: Iterable[str]) -> List[str]:
    """Case-insensitive de-duplication that keeps first-seen order and spelling."""
    seen: Set[str] = set()
    result: List[str] = []
    for name in names:
        key = _normalize(name)
        if key and key not in seen:
            seen.add(key)
            result.append(name)
    return result


def choice_tag(source_key: str) -> str:
    return f"{source_key.capitalize()}{CHOICE_SUFFIX}"


def is_choice_tag(tag: str) -> bool:
    return tag.endswith(CHOICE_SUFFIX)


def source_key_for_tag(tag: str) -> Optional[str]:
    base = tag[: -len(CHOICE_SUFFIX)] if is_choice_tag(tag) else tag
    for source_key, tags in SOURCE_KEY_TAGS.items():
        if base in tags:
            return source_key
    return None


# ----------------------------------------------------------------------
# Fixed grants
def grant_fixed(character: Character, category: str, name: str, source: str) -> bool:
    """Add ``name`` under ``source``; returns True when the name was new."""

    _check_category(category)
    if not name or not source:
        return False
    names = character.proficiencies.setdefault(category, [])
    tags_by_name = character.proficiency_sources.setdefault(category, {})
    existing = _find(names, name)
    if existing is None:
        names.append(name)
    track = existing or name
    tags_by_name.setdefault(track, set()).add(source)

    if category == "skills" and not is_choice_tag(source):
        _refund_optional_skill(character, track, source)
    return existing is None


def remove_by_source(character: Character, source: str) -> Dict[str, List[str]]:
    """Drop ``source`` from every name; names with no tags left are removed."""

    removed: Dict[str, List[str]] = {}
    for category, tags_by_name in character.proficiency_sources.items():
        removed[category] = []
        for name in list(tags_by_name):
            tags = tags_by_name[name]
            if source not in tags:
                continue
            tags.discard(source)
            removed[category].append(name)
            if not tags:
                del tags_by_name[name]
                _drop_name(character, category, name)
    return removed


def remove_grant(character: Character, category: str, name: str, source: str) -> None:
    tags_by_name = character.proficiency_sources.get(category) or {}
    track = _find(tags_by_name, name)
    if track is None:
        return
    tags = tags_by_name[track]
    tags.discard(source)
    if not tags:
        del tags_by_name[track]
        _drop_name(character, category, track)


def _drop_name(character: Character, category: str, name: str) -> None:
    names = character.proficiencies.get(category) or []
    existing = _find(names, name)
    if existing is not None:
        names.remove(existing)


def sources_for(character: Character, category: str, name: str) -> Set[str]:
    tags_by_name = character.proficiency_sources.get(category) or {}
    track = _find(tags_by_name, name)
    return set(tags_by_name[track]) if track is not None else set()


def held_from_fixed(character: Character, category: str, name: str) -> bool:
    return any(not is_choice_tag(tag) for tag in sources_for(character, category, name))


def has_proficiency(character: Character, category: str, name: str) -> bool:
    _check_category(category)
    return _find(character.proficiencies.get(category) or [], name) is not None


def proficiencies_with_sources(character: Character, category: str) -> List[Tuple[str, Set[str]]]:
    _check_category(category)
    return [
        (name, sources_for(character, category, name))
        for name in character.proficiencies.get(category) or []
    ]


def _refund_optional_skill(character: Character, skill: str, source: str) -> None:
    granting_key = source_key_for_tag(source)
    block = character.optional_proficiencies.get("skills")
    if block is None:
        return
    refunded = False
    for source_key in OPTIONAL_SOURCES:
        if source_key == granting_key:
            continue
        slot = block.slot(source_key)
        match = _find(slot.selected, skill)
        if match is None:
            continue
        slot.selected.remove(match)
        remove_grant(character, "skills", match, choice_tag(source_key))
        if _find(block.selected, match) is not None:
            block.selected.remove(_find(block.selected, match))
        refunded = True
    if refunded:
        logger.info("Refunded %s choice now granted by %s", skill, source)
        recombine(character, "skills")


# ----------------------------------------------------------------------
# Optional slots
def configure_optional(
    character: Character, category: str, source_key: str, allowed: int, options: Iterable[str]
) -> None:
    slot = _optional_block(character, category).slot(source_key)
    slot.allowed = max(0, int(allowed))
    slot.options = unique(options)


def clear_optional(character: Character, category: str, source_key: str) -> List[str]:
    """Reset one source's triple and withdraw the grants its picks made."""

    block = _optional_block(character, category)
    slot = block.slot(source_key)
    cleared = list(slot.selected)
    tag = choice_tag(source_key)
    for name in cleared:
        remove_grant(character, category, name, tag)
        existing = _find(block.selected, name)
        if existing is not None:
            block.selected.remove(existing)
    slot.reset()
    recombine(character, category)
    return cleared


def restore_optional(
    character: Character, category: str, source_key: str, previous: Iterable[str]
) -> List[str]:
    """Re-select still-valid earlier picks after a source was reconfigured."""

    slot = _optional_block(character, category).slot(source_key)
    restored: List[str] = []
    for name in previous:
        option = _find(slot.options, name)
        if option is None or _find(restored, option) is not None:
            continue
        if held_from_fixed(character, category, option):
            continue
        restored.append(option)
    restored = restored[: slot.allowed]
    slot.selected = restored
    tag = choice_tag(source_key)
    for name in restored:
        grant_fixed(character, category, name, tag)
    return restored


def recombine(character: Character, category: str) -> OptionalProficiency:
    """Merge the per-source triples into the combined view of ``category``."""

    block = _optional_block(character, category)
    slots = block.slots()
    block.allowed = sum(slot.allowed for slot in slots)
    block.options = unique(option for slot in slots for option in slot.options)
    selected = unique(name for slot in slots for name in slot.selected)
    if not selected and block.selected:
        # Stored picks from a reload stay only while the sources still offer them.
        selected = [name for name in block.selected if _find(block.options, name) is not None]
    block.selected = selected[: block.allowed]
    return block


def recombine_all(character: Character) -> None:
    for category in OPTIONAL_CATEGORIES:
        recombine(character, category)


def select_optional(character: Character, category: str, source_key: str, name: str) -> Outcome:
    slot = _optional_block(character, category).slot(source_key)
    if _find(slot.selected, name) is not None:
        return _refuse(Reason.ALREADY_SELECTED, f"{name} is already selected")
    if len(slot.selected) >= slot.allowed:
        return _refuse(Reason.CAP_REACHED, f"No {source_key} {category} choices remain")
    option = _find(slot.options, name)
    if option is None:
        return _refuse(Reason.NOT_OFFERED, f"{name} is not offered by {source_key}")
    if held_from_fixed(character, category, option):
        return _refuse(Reason.ALREADY_PROFICIENT, f"{option} is already granted")
    slot.selected.append(option)
    grant_fixed(character, category, option, choice_tag(source_key))
    recombine(character, category)
    return Outcome.ok(f"Selected {option}")


def deselect_optional(character: Character, category: str, source_key: str, name: str) -> Outcome:
    block = _optional_block(character, category)
    slot = block.slot(source_key)
    existing = _find(slot.selected, name)
    if existing is None:
        return Outcome.refused(Reason.NOT_FOUND, f"{name} is not selected")
    slot.selected.remove(existing)
    remove_grant(character, category, existing, choice_tag(source_key))
    combined = _find(block.selected, existing)
    if combined is not None:
        block.selected.remove(combined)
    recombine(character, category)
    return Outcome.ok(f"Deselected {existing}", reason=Reason.CLEARED)


def available_optional(character: Character, category: str, source_key: str) -> List[str]:
    slot = _optional_block(character, category).slot(source_key)
    return [
        option
        for option in slot.options
        if _find(slot.selected, option) is None and not held_from_fixed(character, category, option)
    ]


def _refuse(reason: Reason, message: str) -> Outcome:
    logger.info("Selection refused: %s", message)
    return Outcome.refused(reason, message)


# ----------------------------------------------------------------------
def ensure_structures(character: Character) -> None:
    """Backfill missing categories and the default language."""

    for category in PROFICIENCY_CATEGORIES:
        character.proficiencies.setdefault(category, [])
        tags_by_name = character.proficiency_sources.setdefault(category, {})
        for name in character.proficiencies[category]:
            if _find(tags_by_name, name) is None:
                tags_by_name[name] = {SOURCE_DEFAULT}
    for category in OPTIONAL_CATEGORIES:
        character.optional_proficiencies.setdefault(category, OptionalProficiency())
    if not character.proficiencies["languages"]:
        grant_fixed(character, "languages", DEFAULT_LANGUAGE, SOURCE_DEFAULT)
