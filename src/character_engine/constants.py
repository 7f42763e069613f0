ABILITY_SCORES = ["str", "dex", "con", "int", "wis", "cha"]
ABILITY_NAMES = {
    "str": "Strength",
    "dex": "Dexterity",
    "con": "Constitution",
    "int": "Intelligence",
    "wis": "Wisdom",
    "cha": "Charisma",
}
ABILITY_ABBREVIATIONS = {key: key.capitalize() for key in ABILITY_SCORES}

# Base score generation.
METHOD_CUSTOM = "custom"
METHOD_POINT_BUY = "point_buy"
METHOD_STANDARD_ARRAY = "standard_array"
ABILITY_METHODS = (METHOD_CUSTOM, METHOD_POINT_BUY, METHOD_STANDARD_ARRAY)

POINT_BUY_COSTS = {8: 0, 9: 1, 10: 2, 11: 3, 12: 4, 13: 5, 14: 7, 15: 9}
POINT_BUY_BUDGET = 27
STANDARD_ARRAY = [15, 14, 13, 12, 10, 8]

SKILL_TO_ABILITY = {
    "acrobatics": "dex",
    "animal handling": "wis",
    "arcana": "int",
    "athletics": "str",
    "deception": "cha",
    "history": "int",
    "insight": "wis",
    "intimidation": "cha",
    "investigation": "int",
    "medicine": "wis",
    "nature": "int",
    "perception": "wis",
    "performance": "cha",
    "persuasion": "cha",
    "religion": "int",
    "sleight of hand": "dex",
    "stealth": "dex",
    "survival": "wis",
}

SKILL_NAMES = [
    "Acrobatics",
    "Animal Handling",
    "Arcana",
    "Athletics",
    "Deception",
    "History",
    "Insight",
    "Intimidation",
    "Investigation",
    "Medicine",
    "Nature",
    "Perception",
    "Performance",
    "Persuasion",
    "Religion",
    "Sleight of Hand",
    "Stealth",
    "Survival",
]

STANDARD_LANGUAGES = [
    "Common",
    "Dwarvish",
    "Elvish",
    "Giant",
    "Gnomish",
    "Goblin",
    "Halfling",
    "Orc",
]

EXOTIC_LANGUAGES = [
    "Abyssal",
    "Celestial",
    "Draconic",
    "Deep Speech",
    "Infernal",
    "Primordial",
    "Sylvan",
    "Undercommon",
]

ARTISAN_TOOLS = [
    "Alchemist's supplies",
    "Brewer's supplies",
    "Calligrapher's supplies",
    "Carpenter's tools",
    "Cartographer's tools",
    "Cobbler's tools",
    "Cook's utensils",
    "Glassblower's tools",
    "Jeweler's tools",
    "Leatherworker's tools",
    "Mason's tools",
    "Painter's supplies",
    "Potter's tools",
    "Smith's tools",
    "Tinker's tools",
    "Weaver's tools",
    "Woodcarver's tools",
]

MUSICAL_INSTRUMENT = "Musical instrument"
GAMING_SET = "Gaming set"

GAMING_SETS = [
    "Dice set",
    "Dragonchess set",
    "Playing card set",
    "Three-Dragon Ante set",
]

STANDARD_TOOLS = ARTISAN_TOOLS + [
    "Disguise kit",
    "Forgery kit",
    "Herbalism kit",
    "Navigator's tools",
    "Poisoner's kit",
    "Thieves' tools",
    MUSICAL_INSTRUMENT,
    GAMING_SET,
]

# Proficiency categories held on the character.
PROFICIENCY_CATEGORIES = ("armor", "weapons", "tools", "skills", "languages", "saving_throws")
OPTIONAL_CATEGORIES = ("skills", "tools", "languages")
OPTIONAL_SOURCES = ("race", "class", "background")

# Source tags
SOURCE_RACE = "Race"
SOURCE_SUBRACE = "Subrace"
SOURCE_CLASS = "Class"
SOURCE_SUBCLASS = "Subclass"
SOURCE_BACKGROUND = "Background"
SOURCE_MANUAL = "Manual"
SOURCE_DEFAULT = "Default"
SOURCE_MULTICLASS = "Multiclass ({name})"
CHOICE_SUFFIX = " Choice"

SOURCE_KEY_TAGS = {
    "race": (SOURCE_RACE, SOURCE_SUBRACE),
    "class": (SOURCE_CLASS, SOURCE_SUBCLASS),
    "background": (SOURCE_BACKGROUND,),
}

DEFAULT_LANGUAGE = "Common"
DEFAULT_SOURCES = ("PHB",)

MIN_LEVEL = 1
MAX_LEVEL = 20
DEFAULT_ASI_LEVELS = (4, 8, 12, 16, 19)
ASI_FEATURE_NAME = "Ability Score Improvement"

CASTER_FULL = "full"
CASTER_HALF = "1/2"
CASTER_THIRD = "1/3"
CASTER_PACT = "pact"
