import pytest

from character_engine import proficiencies as profs
from character_engine.models import Character
from character_engine.results import Reason


def test_ensure_structures_backfills_defaults():
    pc = Character()
    pc.proficiencies = {"skills": ["Stealth"]}
    pc.proficiency_sources = {}
    pc.optional_proficiencies = {}

    profs.ensure_structures(pc)

    assert set(pc.proficiencies) == {"armor", "weapons", "tools", "skills", "languages", "saving_throws"}
    assert pc.proficiency_sources["skills"]["Stealth"] == {"Default"}
    assert pc.proficiencies["languages"] == ["Common"]
    assert set(pc.optional_proficiencies) == {"skills", "tools", "languages"}


def test_grant_fixed_tracks_every_source(character):
    assert profs.grant_fixed(character, "skills", "Perception", "Race")
    assert not profs.grant_fixed(character, "skills", "perception", "Background")

    assert character.proficiencies["skills"] == ["Perception"]
    assert profs.sources_for(character, "skills", "PERCEPTION") == {"Race", "Background"}
    assert profs.has_proficiency(character, "skills", "perception")


def test_grant_fixed_rejects_unknown_category(character):
    with pytest.raises(ValueError):
        profs.grant_fixed(character, "feats", "Alert", "Race")


def test_remove_by_source_keeps_names_with_other_sources(character):
    profs.grant_fixed(character, "skills", "Perception", "Race")
    profs.grant_fixed(character, "skills", "Perception", "Background")
    profs.grant_fixed(character, "skills", "Stealth", "Race")

    removed = profs.remove_by_source(character, "Race")

    assert sorted(removed["skills"]) == ["Perception", "Stealth"]
    assert character.proficiencies["skills"] == ["Perception"]
    assert profs.proficiencies_with_sources(character, "skills") == [("Perception", {"Background"})]


def test_unique_is_case_insensitive():
    assert profs.unique(["Insight", "insight", "Arcana", ""]) == ["Insight", "Arcana"]


def test_choice_tags_map_back_to_sources():
    assert profs.choice_tag("background") == "Background Choice"
    assert profs.source_key_for_tag("Subrace") == "race"
    assert profs.source_key_for_tag("Class Choice") == "class"
    assert profs.source_key_for_tag("Default") is None


def _configure_background(character):
    profs.configure_optional(character, "skills", "background", 2, ["Insight", "Religion", "Medicine"])
    profs.recombine(character, "skills")


def test_select_optional_grants_under_choice_tag(character):
    _configure_background(character)

    outcome = profs.select_optional(character, "skills", "background", "insight")

    assert outcome
    block = character.optional_proficiencies["skills"]
    assert block.background.selected == ["Insight"]
    assert block.selected == ["Insight"]
    assert profs.sources_for(character, "skills", "Insight") == {"Background Choice"}


def test_select_optional_refusals_in_order(character):
    _configure_background(character)
    profs.select_optional(character, "skills", "background", "Insight")

    assert profs.select_optional(character, "skills", "background", "Insight").reason is Reason.ALREADY_SELECTED
    assert profs.select_optional(character, "skills", "background", "Stealth").reason is Reason.NOT_OFFERED

    profs.grant_fixed(character, "skills", "Medicine", "Race")
    assert profs.select_optional(character, "skills", "background", "Medicine").reason is Reason.ALREADY_PROFICIENT

    profs.select_optional(character, "skills", "background", "Religion")
    assert profs.select_optional(character, "skills", "background", "Medicine").reason is Reason.CAP_REACHED
    assert len(character.optional_proficiencies["skills"].background.selected) == 2


def test_deselect_optional(character):
    _configure_background(character)
    profs.select_optional(character, "skills", "background", "Religion")

    outcome = profs.deselect_optional(character, "skills", "background", "religion")

    assert outcome.reason is Reason.CLEARED
    assert not profs.has_proficiency(character, "skills", "Religion")
    assert character.optional_proficiencies["skills"].selected == []
    assert profs.deselect_optional(character, "skills", "background", "Religion").reason is Reason.NOT_FOUND


def test_available_optional_hides_held_and_selected(character):
    _configure_background(character)
    profs.grant_fixed(character, "skills", "Medicine", "Class")
    profs.select_optional(character, "skills", "background", "Insight")

    assert profs.available_optional(character, "skills", "background") == ["Religion"]


def test_fixed_grant_refunds_other_sources_pick(character):
    profs.configure_optional(character, "skills", "class", 2, ["Insight", "Athletics"])
    profs.select_optional(character, "skills", "class", "Insight")

    profs.grant_fixed(character, "skills", "Insight", "Background")

    block = character.optional_proficiencies["skills"]
    assert block.class_.selected == []
    assert block.selected == []
    assert profs.sources_for(character, "skills", "Insight") == {"Background"}


def test_recombine_sums_slots(character):
    profs.configure_optional(character, "skills", "race", 1, ["Stealth"])
    profs.configure_optional(character, "skills", "class", 2, ["Insight", "Stealth"])
    profs.configure_optional(character, "skills", "background", 0, [])

    block = profs.recombine(character, "skills")

    assert block.allowed == 3
    assert block.options == ["Stealth", "Insight"]


def test_clear_optional_withdraws_picks(character):
    _configure_background(character)
    profs.select_optional(character, "skills", "background", "Insight")

    cleared = profs.clear_optional(character, "skills", "background")

    assert cleared == ["Insight"]
    block = character.optional_proficiencies["skills"]
    assert block.background.allowed == 0
    assert block.allowed == 0
    assert not profs.has_proficiency(character, "skills", "Insight")


def test_restore_optional_keeps_valid_picks(character):
    profs.configure_optional(character, "skills", "background", 1, ["Insight", "Arcana"])
    profs.grant_fixed(character, "skills", "Arcana", "Race")

    restored = profs.restore_optional(character, "skills", "background", ["Religion", "Arcana", "Insight"])

    assert restored == ["Insight"]
    assert profs.sources_for(character, "skills", "Insight") == {"Background Choice"}


def test_optional_helpers_reject_fixed_only_categories(character):
    with pytest.raises(ValueError):
        profs.configure_optional(character, "armor", "class", 1, ["Shields"])
