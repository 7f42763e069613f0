from character_engine import proficiencies as profs
from character_engine.models import Character, SourceRef
from character_engine.reconciliation import canonical_name, parse_proficiency_entries
from character_engine.results import Reason


def _skills(character):
    return character.optional_proficiencies["skills"]


def _snapshot(character):
    # Regranting a source appends its names again, so list order may shift.
    data = character.to_dict()
    data["proficiencies"] = {category: sorted(names) for category, names in data["proficiencies"].items()}
    return data


def test_canonical_names():
    assert canonical_name("skills", "animal handling") == "Animal Handling"
    assert canonical_name("tools", "thieves' tools") == "Thieves' tools"
    assert canonical_name("tools", "vehicles (land)") == "Vehicles (land)"
    assert canonical_name("weapons", "longsword|phb") == "longsword"
    assert canonical_name("armor", "{@item shield|phb|shields}") == "shields"


def test_parse_entries_alternatives_take_largest_count():
    plan = parse_proficiency_entries(
        "skills",
        [
            {"choose": {"from": ["arcana", "history"], "count": 1}},
            {"any": 2},
        ],
    )
    assert plan.allowed == 2
    assert plan.options[:2] == ["Arcana", "History"]
    assert "Stealth" in plan.options


def test_parse_entries_fixed_and_any():
    plan = parse_proficiency_entries("languages", [{"common": True, "elvish": True, "anyStandard": 1}])
    assert plan.fixed == ["Common", "Elvish"]
    assert plan.allowed == 1
    assert "Dwarvish" in plan.options


def test_parse_entries_other_language_is_race_language():
    plan = parse_proficiency_entries("languages", [{"common": True, "other": True}], own_language="Dwarvish")
    assert plan.fixed == ["Common", "Dwarvish"]


def test_apply_race_grants_fixed_and_choices(reconciler, character):
    outcome = reconciler.apply_race(character, SourceRef("Elf", "PHB", "High"))

    assert outcome
    assert "Perception" in character.proficiencies["skills"]
    assert set(character.proficiencies["languages"]) >= {"Common", "Elvish"}
    assert "longsword" in character.proficiencies["weapons"]
    languages = character.optional_proficiencies["languages"]
    assert languages.race.allowed == 1
    assert "Keen Senses" in character.traits
    assert character.traits["Elf Weapon Training"].source == "Subrace"
    assert character.total_ability_score("dex") == 12
    assert character.total_ability_score("int") == 11


def test_reapplying_same_race_is_idempotent(reconciler, character):
    ref = SourceRef("Half-Elf", "PHB")
    reconciler.apply_race(character, ref)
    profs.select_optional(character, "skills", "race", "Stealth")
    profs.select_optional(character, "skills", "race", "Insight")
    before = character.to_dict()

    reconciler.apply_race(character, ref)

    assert character.to_dict() == before
    assert _skills(character).race.selected == ["Stealth", "Insight"]


def test_switching_race_withdraws_previous_grants(reconciler, character):
    reconciler.apply_race(character, SourceRef("Dwarf", "PHB", "Hill"))
    assert "battleaxe" in character.proficiencies["weapons"]

    reconciler.apply_race(character, SourceRef("Human", "PHB"))

    assert "battleaxe" not in character.proficiencies["weapons"]
    assert "Dwarvish" not in character.proficiencies["languages"]
    assert "Dwarven Resilience" not in character.traits
    assert all(bonus.source.startswith("Race") for bonus in character.ability_bonuses)
    assert character.total_ability_score("con") == 11
    assert character.proficiencies["languages"] == ["Common"]


def test_clearing_race(reconciler, character):
    reconciler.apply_race(character, SourceRef("Elf", "PHB"))
    outcome = reconciler.apply_race(character, None)

    assert outcome.reason is Reason.CLEARED
    assert character.race is None
    assert character.proficiencies["skills"] == []
    assert character.proficiencies["languages"] == ["Common"]
    assert character.ability_bonuses == []


def test_selection_preserved_across_background_change(reconciler, character):
    reconciler.apply_background(character, SourceRef("Temple Healer", "PHB"))
    profs.select_optional(character, "skills", "background", "Insight")
    profs.select_optional(character, "skills", "background", "Religion")

    reconciler.apply_background(character, SourceRef("Hedge Scholar", "PHB"))

    assert _skills(character).background.selected == ["Insight"]
    assert _skills(character).background.options == ["Insight", "Arcana"]
    assert not profs.has_proficiency(character, "skills", "Religion")
    assert profs.sources_for(character, "skills", "Insight") == {"Background Choice"}


def test_selected_never_exceeds_allowed(reconciler, character):
    reconciler.apply_class(character, SourceRef("Rogue", "PHB"))
    for skill in ["Stealth", "Acrobatics", "Deception", "Insight", "Perception"]:
        profs.select_optional(character, "skills", "class", skill)
    assert len(_skills(character).class_.selected) == 4

    reconciler.apply_class(character, SourceRef("Fighter", "PHB"))

    assert _skills(character).class_.allowed == 2
    assert _skills(character).class_.selected == ["Acrobatics", "Insight"]
    for block in character.optional_proficiencies.values():
        for slot in block.slots():
            assert len(slot.selected) <= slot.allowed


def test_fixed_background_skill_is_not_offered_twice(reconciler, character):
    reconciler.apply_class(character, SourceRef("Fighter", "PHB"))
    profs.select_optional(character, "skills", "class", "Athletics")

    reconciler.apply_background(character, SourceRef("Soldier", "PHB"))

    assert _skills(character).class_.selected == []
    assert profs.sources_for(character, "skills", "Athletics") == {"Background"}
    assert "Athletics" not in profs.available_optional(character, "skills", "class")
    refused = profs.select_optional(character, "skills", "class", "Intimidation")
    assert refused.reason is Reason.ALREADY_PROFICIENT


def test_human_variant_fighter_soldier(reconciler, character):
    reconciler.apply_race(character, SourceRef("Human", "PHB", "Variant"))
    reconciler.apply_class(character, SourceRef("Fighter", "PHB"))
    reconciler.apply_background(character, SourceRef("Soldier", "PHB"))

    skills = _skills(character)
    assert skills.race.allowed == 1
    assert skills.class_.allowed == 2
    assert skills.background.allowed == 0
    assert skills.allowed == 3
    assert profs.sources_for(character, "skills", "Athletics") == {"Background"}
    assert profs.sources_for(character, "skills", "Intimidation") == {"Background"}
    assert character.feat_allowances == {"Subrace": 1}
    assert len(character.pending_ability_choices) == 2
    assert character.ability_bonuses == []

    assert set(character.proficiencies["saving_throws"]) == {"str", "con"}
    assert "heavy" in character.proficiencies["armor"]
    assert "Vehicles (land)" in character.proficiencies["tools"]
    assert character.optional_proficiencies["tools"].background.allowed == 1
    assert character.progression.classes[0].name == "Fighter"


def test_instrument_choice_fills_itself(reconciler, character):
    reconciler.apply_class(character, SourceRef("Bard", "PHB"))

    tools = character.optional_proficiencies["tools"].class_
    assert tools.allowed == 3
    assert tools.selected == ["Musical instrument"] * 3
    assert "Musical instrument" in character.proficiencies["tools"]


def test_catalogue_miss_records_selection(reconciler, character):
    outcome = reconciler.apply_background(character, SourceRef("Haunted One", "CoS"))

    assert not outcome
    assert outcome.reason is Reason.CATALOGUE_MISS
    assert outcome.warnings
    assert character.background.name == "Haunted One"
    assert _skills(character).background.allowed == 0


def test_source_outside_allowed_books_is_a_miss(reconciler, character):
    outcome = reconciler.apply_background(character, SourceRef("Far Traveler", "SCAG"))
    assert outcome.reason is Reason.CATALOGUE_MISS
    assert not profs.has_proficiency(character, "skills", "Insight")


def test_unknown_subrace_warns_but_applies(reconciler, character):
    outcome = reconciler.apply_race(character, SourceRef("Elf", "PHB", "Drow"))
    assert outcome
    assert outcome.warnings == ["Subrace Drow of Elf not found"]
    assert character.total_ability_score("dex") == 12


def test_background_variant_replaces_tools(reconciler, character):
    reconciler.apply_background(character, SourceRef("Criminal", "PHB"))
    assert character.optional_proficiencies["tools"].background.allowed == 1

    reconciler.apply_background(character, SourceRef("Criminal", "PHB", "Spy"))

    assert character.optional_proficiencies["tools"].background.allowed == 0
    assert set(character.proficiencies["tools"]) == {"Thieves' tools", "Disguise kit"}
    assert "Deception" in character.proficiencies["skills"]


def test_subclass_caster_progression(reconciler, character):
    reconciler.apply_class(character, SourceRef("Fighter", "PHB", "Eldritch Knight"))
    character.progression.classes[0].level = 3
    reconciler.ledger.update_spell_slots(character)

    block = character.spellcasting.classes["Fighter"]
    assert block.ability == "int"
    assert {level: slot.max for level, slot in block.spell_slots.items()} == {1: 2}


def test_changing_class_moves_primary_entry(reconciler, character):
    reconciler.apply_class(character, SourceRef("Fighter", "PHB"))
    reconciler.ledger.increase_level(character)

    reconciler.apply_class(character, SourceRef("Wizard", "PHB"))

    classes = character.progression.classes
    assert [(entry.name, entry.level) for entry in classes] == [("Wizard", 2)]
    assert set(character.proficiencies["saving_throws"]) == {"int", "wis"}
    assert "heavy" not in character.proficiencies["armor"]


def test_multiclass_requires_primary_class(reconciler, character):
    outcome = reconciler.add_multiclass(character, SourceRef("Wizard", "PHB"))
    assert outcome.reason is Reason.CLASS_REQUIRED


def test_multiclass_requirements_and_grants(reconciler, character):
    reconciler.apply_class(character, SourceRef("Wizard", "PHB"))

    refused = reconciler.add_multiclass(character, SourceRef("Paladin", "PHB"))
    assert refused.reason is Reason.REQUIREMENTS_NOT_MET
    assert refused.message == "Paladin requires STR 13, CHA 13"

    character.set_ability_score("str", 13)
    character.set_ability_score("cha", 13)
    outcome = reconciler.add_multiclass(character, SourceRef("Paladin", "PHB"))

    assert outcome
    assert [entry.name for entry in character.progression.classes] == ["Wizard", "Paladin"]
    assert character.level == 2
    assert profs.sources_for(character, "armor", "medium") == {"Multiclass (Paladin)"}
    assert "wis" in character.proficiencies["saving_throws"]
    assert "cha" not in character.proficiencies["saving_throws"]

    assert reconciler.add_multiclass(character, SourceRef("Paladin", "PHB")).reason is Reason.NO_CHANGE

    removed = reconciler.remove_multiclass(character, "Paladin")
    assert removed
    assert "medium" not in character.proficiencies["armor"]
    assert character.level == 1


def test_primary_class_cannot_be_removed_as_multiclass(reconciler, character):
    reconciler.apply_class(character, SourceRef("Fighter", "PHB"))
    assert reconciler.remove_multiclass(character, "fighter").reason is Reason.NO_CHANGE


def test_reapplying_class_and_background_is_idempotent(reconciler, character):
    bard = SourceRef("Bard", "PHB")
    entertainer = SourceRef("Entertainer", "PHB")
    reconciler.apply_class(character, bard)
    reconciler.apply_background(character, entertainer)
    profs.select_optional(character, "skills", "class", "Arcana")
    profs.select_optional(character, "skills", "class", "History")
    before = _snapshot(character)

    reconciler.apply_class(character, bard)
    reconciler.apply_background(character, entertainer)

    assert _snapshot(character) == before
    assert character.optional_proficiencies["tools"].background.selected == ["Musical instrument"]
    assert profs.sources_for(character, "tools", "Musical instrument") == {"Class Choice", "Background Choice"}


def test_clearing_class_withdraws_multiclass_grants(reconciler, character):
    reconciler.apply_class(character, SourceRef("Wizard", "PHB"))
    character.set_ability_score("dex", 13)
    assert reconciler.add_multiclass(character, SourceRef("Fighter", "PHB"))

    outcome = reconciler.apply_class(character, None)

    assert outcome.reason is Reason.CLEARED
    assert character.progression.classes == []
    assert character.spellcasting.classes == {}
    assert not character.proficiencies.get("armor")

    reconciler.apply_class(character, SourceRef("Wizard", "PHB"))

    assert [entry.name for entry in character.progression.classes] == ["Wizard"]
    for category in character.proficiency_sources.values():
        for tags in category.values():
            assert "Multiclass (Fighter)" not in tags


def test_class_miss_drops_secondary_entries(reconciler, character):
    reconciler.apply_class(character, SourceRef("Wizard", "PHB"))
    character.set_ability_score("cha", 13)
    reconciler.add_multiclass(character, SourceRef("Warlock", "PHB"))

    outcome = reconciler.apply_class(character, SourceRef("Artificer", "TCE"))

    assert outcome.reason is Reason.CATALOGUE_MISS
    assert character.progression.classes == []
    assert not profs.has_proficiency(character, "armor", "light")


def test_reloaded_combined_picks_respect_cap(reconciler):
    stored = {"skills": {"allowed": 2, "options": ["Insight", "Stealth"], "selected": ["Stealth", "Insight"]}}

    soldier = Character.from_dict({"optional_proficiencies": stored})
    profs.ensure_structures(soldier)
    reconciler.apply_background(soldier, SourceRef("Soldier", "PHB"))

    assert _skills(soldier).allowed == 0
    assert _skills(soldier).selected == []

    healer = Character.from_dict({"optional_proficiencies": stored})
    profs.ensure_structures(healer)
    reconciler.apply_background(healer, SourceRef("Temple Healer", "PHB"))

    assert _skills(healer).allowed == 2
    assert _skills(healer).selected == ["Insight"]
