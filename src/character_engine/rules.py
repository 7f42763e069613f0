from __future__ import annotations

from typing import Dict, List, Optional, Set

from .constants import (
    ABILITY_SCORES,
    CASTER_FULL,
    CASTER_HALF,
    CASTER_PACT,
    CASTER_THIRD,
    MAX_LEVEL,
    MIN_LEVEL,
    SKILL_TO_ABILITY,
)
from .models import Character

# Spell slots per slot level (index 0 is 1st level) by caster level.
STANDARD_SPELL_SLOTS: Dict[int, List[int]] = {
    1: [2],
    2: [3],
    3: [4, 2],
    4: [4, 3],
    5: [4, 3, 2],
    6: [4, 3, 3],
    7: [4, 3, 3, 1],
    8: [4, 3, 3, 2],
    9: [4, 3, 3, 3, 1],
    10: [4, 3, 3, 3, 2],
    11: [4, 3, 3, 3, 2, 1],
    12: [4, 3, 3, 3, 2, 1],
    13: [4, 3, 3, 3, 2, 1, 1],
    14: [4, 3, 3, 3, 2, 1, 1],
    15: [4, 3, 3, 3, 2, 1, 1, 1],
    16: [4, 3, 3, 3, 2, 1, 1, 1],
    17: [4, 3, 3, 3, 2, 1, 1, 1, 1],
    18: [4, 3, 3, 3, 3, 1, 1, 1, 1],
    19: [4, 3, 3, 3, 3, 2, 1, 1, 1],
    20: [4, 3, 3, 3, 3, 2, 2, 1, 1],
}

PACT_SLOT_COUNTS = [1, 2, 2, 2, 2, 2, 2, 2, 2, 2, 3, 3, 3, 3, 3, 3, 4, 4, 4, 4]
PACT_SLOT_LEVELS = [1, 1, 2, 2, 3, 3, 4, 4, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5, 5]


def clamp_level(level: int) -> int:
    return max(MIN_LEVEL, min(int(level), MAX_LEVEL))


def proficiency_bonus(level: int) -> int:
    level = clamp_level(level)
    return 2 + (level - 1) // 4


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


def average_hit_die(hit_die: int) -> int:
    """Fixed hit points for a level past the first: half the die, rounded up."""
    return -(-hit_die // 2)


def caster_level(progression: Optional[str], class_level: int) -> int:
    """Contribution of one class to the standard slot table."""
    if progression == CASTER_FULL:
        return class_level
    if progression == CASTER_HALF:
        return class_level // 2
    if progression == CASTER_THIRD:
        return class_level // 3
    return 0


def standard_slots(level: int) -> Dict[int, int]:
    if level < MIN_LEVEL:
        return {}
    row = STANDARD_SPELL_SLOTS[min(level, MAX_LEVEL)]
    return {slot_level: count for slot_level, count in enumerate(row, start=1)}


def pact_slots(level: int) -> Dict[int, int]:
    if level < MIN_LEVEL:
        return {}
    index = min(level, MAX_LEVEL) - 1
    return {PACT_SLOT_LEVELS[index]: PACT_SLOT_COUNTS[index]}


def slots_for_progression(progression: Optional[str], class_level: int) -> Dict[int, int]:
    if progression == CASTER_PACT:
        return pact_slots(class_level)
    return standard_slots(caster_level(progression, class_level))


def saving_throw_bonuses(character: Character, proficient: Set[str], prof_bonus: int) -> Dict[str, int]:
    bonuses: Dict[str, int] = {}
    for ability in ABILITY_SCORES:
        mod = character.ability_modifier(ability)
        if ability in proficient:
            mod += prof_bonus
        bonuses[ability] = mod
    return bonuses


def skill_bonuses(character: Character, proficient_skills: Set[str], prof_bonus: int) -> Dict[str, int]:
    bonuses: Dict[str, int] = {}
    for skill, ability in SKILL_TO_ABILITY.items():
        total = character.ability_modifier(ability)
        if skill in proficient_skills:
            total += prof_bonus
        bonuses[skill] = total
    return bonuses
