"""Racial ability score improvements and base score generation.

Race and subrace records carry an ``ability`` array in which every entry is
either a fixed map (``{"str": 2, "con": 1}``) or a choice descriptor
(``{"choose": {"from": [...], "count": 2, "amount": 1}}``). This module turns
those arrays into fixed bonuses and pending picks, renders the familiar
summary strings and validates a player's picks against the entries.

Base scores come from point buy (27 points over scores 8-15) or from the
standard array, whose six values each go to one ability.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

from .constants import (
    ABILITY_ABBREVIATIONS,
    ABILITY_METHODS,
    ABILITY_NAMES,
    ABILITY_SCORES,
    CHOICE_SUFFIX,
    METHOD_POINT_BUY,
    METHOD_STANDARD_ARRAY,
    POINT_BUY_BUDGET,
    POINT_BUY_COSTS,
    SOURCE_RACE,
    SOURCE_SUBRACE,
    STANDARD_ARRAY,
)
from .data.catalogue import RaceDef, SubraceDef
from .data.loader import CatalogueKey
from .models import AbilityBonus, Character, PendingAbilityChoice
from .results import Outcome, Reason
from .rules import ability_modifier

__all__ = [
    "HARD_CODED_RACE_BONUSES",
    "FixedAbility",
    "AbilityChoice",
    "AbilityResolution",
    "AbilitySummary",
    "AbilityValidation",
    "resolve_race_abilities",
    "summarize_abilities",
    "expand_pending_choices",
    "validate_ability_selections",
    "apply_resolution",
    "remove_ability_grants",
    "resolve_pending_choice",
    "ability_total",
    "ability_modifier",
    "point_buy_cost",
    "point_buy_total",
    "remaining_points",
    "validate_point_buy",
    "set_point_buy_score",
    "validate_standard_array",
    "unassigned_standard_values",
    "assign_standard_array",
    "unassign_standard_array",
    "set_ability_method",
]

# Races whose fixed bonus lives on the race itself rather than in its entries.
HARD_CODED_RACE_BONUSES: Dict[CatalogueKey, Dict[str, int]] = {
    CatalogueKey("half-elf", "PHB"): {"cha": 2},
}

LINEAGE_CHOICE = {"choose": {"from": list(ABILITY_SCORES), "count": 1, "amount": 2}}

# Score an ability falls back to when its standard-array value is released.
UNASSIGNED_SCORE = 10

_NUMBER_WORDS = {
    1: "one",
    2: "two",
    3: "three",
    4: "four",
    5: "five",
    6: "six",
}


@dataclass(slots=True)
class FixedAbility:
    ability: str
    value: int
    source: str


@dataclass(slots=True)
class AbilityChoice:
    count: int
    amount: int
    options: List[str]
    source: str
    weights: Optional[Dict[str, int]] = None


@dataclass(slots=True)
class AbilitySummary:
    text: str = ""
    short: str = ""


@dataclass(slots=True)
class AbilityResolution:
    fixed: List[FixedAbility] = field(default_factory=list)
    choices: List[AbilityChoice] = field(default_factory=list)
    summary: AbilitySummary = field(default_factory=AbilitySummary)


@dataclass(slots=True)
class AbilityValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    final: Dict[str, int] = field(default_factory=dict)


def number_to_words(value: int) -> str:
    return _NUMBER_WORDS.get(value, str(value))


# ----------------------------------------------------------------------
def resolve_race_abilities(
    race: Optional[RaceDef], subrace: Optional[SubraceDef] = None, only_short: bool = False
) -> AbilityResolution:
    """Collect fixed bonuses and choices from a race and its subrace."""

    resolution = AbilityResolution()
    if race is None:
        return resolution

    hard_coded = HARD_CODED_RACE_BONUSES.get(race.key, {})
    for ability, value in hard_coded.items():
        resolution.fixed.append(FixedAbility(ability, value, SOURCE_RACE))

    race_entries = list(race.ability)
    subrace_entries = list(subrace.ability) if subrace else []
    if subrace and subrace.replaces("ability"):
        race_entries = []
    if race.lineage and not race_entries and not subrace_entries:
        race_entries = [LINEAGE_CHOICE]

    _collect(race_entries, SOURCE_RACE, resolution, skip=hard_coded)
    _collect(subrace_entries, SOURCE_SUBRACE, resolution)
    resolution.summary = _render(resolution, only_short=only_short)
    return resolution


def summarize_abilities(
    entries: Iterable[dict], only_short: bool = False, lineage: bool = False
) -> AbilitySummary:
    """Render the long and short descriptions of a raw ``ability`` array."""

    entries = list(entries or [])
    if lineage and not entries:
        entries = [LINEAGE_CHOICE]
    resolution = AbilityResolution()
    _collect(entries, SOURCE_RACE, resolution)
    return _render(resolution, only_short=only_short)


def expand_pending_choices(choices: Iterable[AbilityChoice]) -> List[PendingAbilityChoice]:
    """Explode multi-pick choices into one pending entry per pick."""

    pending: List[PendingAbilityChoice] = []
    for choice in choices:
        if choice.weights:
            # A weighted choice is one indivisible pick.
            pending.append(
                PendingAbilityChoice(
                    amount=max(choice.weights.values()),
                    options=list(choice.options),
                    source=choice.source,
                    weights=dict(choice.weights),
                )
            )
            continue
        for _ in range(choice.count):
            pending.append(
                PendingAbilityChoice(amount=choice.amount, options=list(choice.options), source=choice.source)
            )
    return pending


def validate_ability_selections(
    entries: Iterable[dict], selections: Sequence[Sequence[str]]
) -> AbilityValidation:
    """Check one list of picked abilities per choice entry, in entry order."""

    resolution = AbilityResolution()
    _collect(list(entries or []), SOURCE_RACE, resolution)
    final: Dict[str, int] = {}
    for fixed in resolution.fixed:
        final[fixed.ability] = final.get(fixed.ability, 0) + fixed.value

    errors: List[str] = []
    for index, choice in enumerate(resolution.choices):
        picked = [ability.lower() for ability in (selections[index] if index < len(selections) else [])]
        expected = 1 if choice.weights else choice.count
        if len(picked) != expected:
            noun = "ability" if expected == 1 else "abilities"
            errors.append(f"Must select exactly {expected} {noun} for choice {index + 1}")
            continue
        invalid = [ability for ability in picked if ability not in choice.options]
        if invalid:
            errors.append(f"Invalid ability selection: {', '.join(invalid)}")
            continue
        if len(set(picked)) != len(picked):
            errors.append(f"Cannot select the same ability twice in choice {index + 1}")
            continue
        for ability in picked:
            amount = choice.weights.get(ability, 0) if choice.weights else choice.amount
            final[ability] = final.get(ability, 0) + amount

    return AbilityValidation(valid=not errors, errors=errors, final=final)


# ----------------------------------------------------------------------
def apply_resolution(character: Character, resolution: AbilityResolution) -> None:
    for fixed in resolution.fixed:
        character.ability_bonuses.append(AbilityBonus(fixed.ability, fixed.value, fixed.source))
    character.pending_ability_choices.extend(expand_pending_choices(resolution.choices))


def remove_ability_grants(character: Character, tags: Iterable[str]) -> int:
    """Drop bonuses and pending picks tagged with any of ``tags`` or their choice tags."""

    doomed = set(tags)
    doomed |= {f"{tag}{CHOICE_SUFFIX}" for tag in list(doomed)}
    before = len(character.ability_bonuses) + len(character.pending_ability_choices)
    character.ability_bonuses[:] = [bonus for bonus in character.ability_bonuses if bonus.source not in doomed]
    character.pending_ability_choices[:] = [
        choice for choice in character.pending_ability_choices if choice.source not in doomed
    ]
    return before - len(character.ability_bonuses) - len(character.pending_ability_choices)


def resolve_pending_choice(character: Character, index: int, ability: str) -> Outcome:
    """Spend one pending pick on ``ability``."""

    if index < 0 or index >= len(character.pending_ability_choices):
        return Outcome.refused(Reason.NOT_FOUND, f"No pending ability choice at position {index}")
    ability = ability.lower()
    choice = character.pending_ability_choices[index]
    if ability not in choice.options:
        return Outcome.refused(Reason.NOT_OFFERED, f"{ABILITY_NAMES.get(ability, ability)} is not offered")
    tag = f"{choice.source}{CHOICE_SUFFIX}"
    if any(bonus.ability == ability and bonus.source == tag for bonus in character.ability_bonuses):
        return Outcome.refused(Reason.ALREADY_SELECTED, f"{ABILITY_NAMES[ability]} was already chosen")
    amount = choice.weights.get(ability, choice.amount) if choice.weights else choice.amount
    del character.pending_ability_choices[index]
    character.ability_bonuses.append(AbilityBonus(ability, amount, tag))
    return Outcome.ok(f"{ABILITY_NAMES[ability]} +{amount}")


def ability_total(character: Character, ability: str) -> int:
    return character.total_ability_score(ability)


# ----------------------------------------------------------------------
# Base scores: point buy and the standard array
def point_buy_cost(score: int) -> Optional[int]:
    """Cost of one score under point buy, or None outside 8-15."""
    return POINT_BUY_COSTS.get(score)


def point_buy_total(scores: Dict[str, int]) -> int:
    return sum(POINT_BUY_COSTS.get(score, 0) for score in scores.values())


def remaining_points(scores: Dict[str, int], budget: int = POINT_BUY_BUDGET) -> int:
    return budget - point_buy_total(scores)


def validate_point_buy(scores: Dict[str, int], budget: int = POINT_BUY_BUDGET) -> AbilityValidation:
    errors: List[str] = []
    for ability in ABILITY_SCORES:
        score = scores.get(ability)
        if score is None:
            errors.append(f"Missing score for {ABILITY_NAMES[ability]}")
        elif score not in POINT_BUY_COSTS:
            errors.append(f"{ABILITY_NAMES[ability]} {score} is outside the point buy range")
    spent = point_buy_total(scores)
    if spent > budget:
        errors.append(f"Point buy spends {spent} of {budget} points")
    return AbilityValidation(valid=not errors, errors=errors, final=dict(scores))


def set_point_buy_score(character: Character, ability: str, value: int) -> Outcome:
    ability = ability.lower()
    if ability not in ABILITY_SCORES:
        return Outcome.refused(Reason.NOT_FOUND, f"Unknown ability: {ability}")
    if value not in POINT_BUY_COSTS:
        low, high = min(POINT_BUY_COSTS), max(POINT_BUY_COSTS)
        return Outcome.refused(Reason.BOUND_VIOLATION, f"Point buy scores run from {low} to {high}")
    if character.ability_scores.get(ability) == value:
        return Outcome.refused(Reason.NO_CHANGE, f"{ABILITY_NAMES[ability]} is already {value}")
    trial = dict(character.ability_scores, **{ability: value})
    if point_buy_total(trial) > POINT_BUY_BUDGET:
        return Outcome.refused(
            Reason.CAP_REACHED, f"Not enough points: {remaining_points(character.ability_scores)} left"
        )
    character.set_ability_score(ability, value)
    return Outcome.ok(f"{ABILITY_NAMES[ability]} set to {value}")


def validate_standard_array(assignments: Dict[str, int]) -> AbilityValidation:
    errors: List[str] = []
    seen: List[int] = []
    for value in assignments.values():
        if value is None:
            continue
        if value in seen:
            errors.append(f"Value {value} assigned to multiple abilities")
        seen.append(value)
        if value not in STANDARD_ARRAY:
            errors.append(f"Value {value} is not in the standard array")
    return AbilityValidation(valid=not errors, errors=errors, final=dict(assignments))


def unassigned_standard_values(character: Character) -> List[int]:
    used = list(character.standard_array.values())
    remaining = []
    for value in STANDARD_ARRAY:
        if value in used:
            used.remove(value)
        else:
            remaining.append(value)
    return remaining


def assign_standard_array(character: Character, ability: str, value: int) -> Outcome:
    """Give ``ability`` one standard-array value not held by another ability."""

    ability = ability.lower()
    if ability not in ABILITY_SCORES:
        return Outcome.refused(Reason.NOT_FOUND, f"Unknown ability: {ability}")
    if value not in STANDARD_ARRAY:
        return Outcome.refused(Reason.NOT_OFFERED, f"Value {value} is not in the standard array")
    current = character.standard_array.get(ability)
    if current == value:
        return Outcome.refused(Reason.NO_CHANGE, f"{ABILITY_NAMES[ability]} already has {value}")
    holder = next((name for name, held in character.standard_array.items() if held == value), None)
    if holder is not None:
        return Outcome.refused(
            Reason.ALREADY_SELECTED, f"Value {value} is already assigned to {ABILITY_NAMES[holder]}"
        )
    character.standard_array[ability] = value
    character.set_ability_score(ability, value)
    return Outcome.ok(f"{ABILITY_NAMES[ability]} set to {value}")


def unassign_standard_array(character: Character, ability: str) -> Outcome:
    ability = ability.lower()
    value = character.standard_array.pop(ability, None)
    if value is None:
        return Outcome.refused(Reason.NOT_FOUND, f"{ABILITY_NAMES.get(ability, ability)} has no standard array value")
    character.set_ability_score(ability, UNASSIGNED_SCORE)
    return Outcome.ok(f"{ABILITY_NAMES[ability]} released {value}", reason=Reason.CLEARED)


def set_ability_method(character: Character, method: str) -> Outcome:
    """Switch how base scores are generated, resetting them to fit the new method."""

    if method not in ABILITY_METHODS:
        return Outcome.refused(Reason.NOT_OFFERED, f"Unknown ability score method: {method}")
    character.ability_method = method
    character.standard_array = {}
    if method == METHOD_STANDARD_ARRAY:
        for ability, value in zip(ABILITY_SCORES, STANDARD_ARRAY):
            character.standard_array[ability] = value
            character.set_ability_score(ability, value)
    elif method == METHOD_POINT_BUY:
        for ability in ABILITY_SCORES:
            if character.ability_scores.get(ability) not in POINT_BUY_COSTS:
                character.set_ability_score(ability, min(POINT_BUY_COSTS))
    return Outcome.ok(f"Ability scores use {method.replace('_', ' ')}")


# ----------------------------------------------------------------------
def _collect(
    entries: Iterable[object],
    source: str,
    resolution: AbilityResolution,
    skip: Optional[Dict[str, int]] = None,
) -> None:
    skip = skip or {}
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        for ability in ABILITY_SCORES:
            value = entry.get(ability)
            if not value or isinstance(value, (dict, list, str)):
                continue
            if skip.get(ability) == int(value):
                continue
            resolution.fixed.append(FixedAbility(ability, int(value), source))
        choose = entry.get("choose")
        if isinstance(choose, dict):
            choice = _choice_from(choose, source)
            if choice is not None:
                resolution.choices.append(choice)


def _choice_from(choose: dict, source: str) -> Optional[AbilityChoice]:
    weighted = choose.get("weighted")
    if weighted:
        weights = weighted.get("weights") if isinstance(weighted, dict) else None
        if not isinstance(weights, dict) or not weights:
            return None
        weights = {key.lower(): int(value) for key, value in weights.items() if key.lower() in ABILITY_SCORES}
        if not weights:
            return None
        options = [key.lower() for key in (choose.get("from") or weights.keys())]
        return AbilityChoice(
            count=1, amount=max(weights.values()), options=options, source=source, weights=weights
        )
    options = [key.lower() for key in (choose.get("from") or ABILITY_SCORES) if key.lower() in ABILITY_SCORES]
    if not options:
        return None
    return AbilityChoice(
        count=int(choose.get("count") or 1),
        amount=int(choose.get("amount") or 1),
        options=options,
        source=source,
    )


def _render(resolution: AbilityResolution, only_short: bool = False) -> AbilitySummary:
    long_parts: List[str] = []
    short_parts: List[str] = []

    if resolution.fixed:
        long_parts.append(
            " and ".join(
                f"your {ABILITY_NAMES[fixed.ability]} score increases by {fixed.value}"
                for fixed in resolution.fixed
            )
        )
        short_parts.extend(f"{ABILITY_ABBREVIATIONS[fixed.ability]} +{fixed.value}" for fixed in resolution.fixed)

    for choice in resolution.choices:
        text, short = _render_choice(choice)
        long_parts.append(text)
        short_parts.append(short)

    text = ""
    if long_parts and not only_short:
        sentence = ", ".join(long_parts)
        text = f"{sentence[0].upper()}{sentence[1:]}."
    return AbilitySummary(text=text, short=", ".join(short_parts))


def _render_choice(choice: AbilityChoice):
    if choice.weights:
        long_form = " or ".join(f"{ABILITY_NAMES[key]} by {value}" for key, value in choice.weights.items())
        short_form = " or ".join(f"{ABILITY_ABBREVIATIONS[key]} +{value}" for key, value in choice.weights.items())
        return f"increase {long_form}", short_form

    every_ability = len(choice.options) == len(ABILITY_SCORES)
    count_word = number_to_words(choice.count)
    if choice.count == 1:
        if every_ability:
            return (
                f"increase one ability score of your choice by {choice.amount}",
                f"choose one +{choice.amount}",
            )
        names = " or ".join(ABILITY_NAMES[key] for key in choice.options)
        abbreviations = " or ".join(ABILITY_ABBREVIATIONS[key] for key in choice.options)
        return f"increase your {names} score by {choice.amount}", f"{abbreviations} +{choice.amount}"

    if every_ability:
        return (
            f"increase {count_word} ability scores of your choice by {choice.amount}",
            f"choose {count_word} +{choice.amount}",
        )
    names = ", ".join(ABILITY_NAMES[key] for key in choice.options)
    abbreviations = ", ".join(ABILITY_ABBREVIATIONS[key] for key in choice.options)
    return (
        f"increase {count_word} of the following abilities by {choice.amount}: {names}",
        f"choose {count_word} from {abbreviations} +{choice.amount}",
    )
