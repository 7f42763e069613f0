import pytest

from character_engine.data import CatalogueKey, DataRepository, RulesCatalogue, strip_tags


def test_strip_tags():
    assert strip_tags("{@item shield|phb|shields}") == "shields"
    assert strip_tags("Proficiency in {@skill Perception}") == "Proficiency in Perception"
    assert strip_tags("{@item dagger|phb}") == "dagger"


def test_catalogue_key_normalizes():
    assert CatalogueKey.of(" Half-Elf ", "phb") == CatalogueKey("half-elf", "PHB")


def test_repository_missing_directory(tmp_path):
    with pytest.raises(FileNotFoundError):
        DataRepository(tmp_path / "nowhere")


def test_repository_missing_file_loads_empty(tmp_path):
    repository = DataRepository(tmp_path)
    assert repository.races() == {}
    with pytest.raises(KeyError):
        repository.resource_path("spells")


def test_lookups_are_case_insensitive(catalogue):
    assert catalogue.get_race("half-elf", "phb").name == "Half-Elf"
    assert catalogue.get_class("FIGHTER").hit_die == 10
    assert catalogue.get_background("soldier", "PHB").name == "Soldier"


def test_lookups_respect_allowed_sources(repository):
    phb_only = RulesCatalogue.from_repository(repository, allowed_sources=["PHB"])
    assert phb_only.get_race("Custom Lineage", "TCE") is None
    assert phb_only.get_race("Elf", "PHB") is not None


def test_class_record_fields(catalogue):
    fighter = catalogue.get_class("Fighter", "PHB")
    assert fighter.saving_throws == ["str", "con"]
    assert fighter.multiclass_requirements == {"or": [{"str": 13, "dex": 13}]}
    assert fighter.proficiencies.armor == [{"light": True, "medium": True, "heavy": True, "shields": True}]

    wizard = catalogue.get_class("Wizard")
    assert wizard.caster_progression == "full"
    assert wizard.spellcasting_ability == "int"
    assert wizard.cantrip_progression[0] == 3


def test_subraces_and_subclasses(catalogue):
    assert [sub.name for sub in catalogue.get_subraces("Elf", "PHB")] == ["High", "Wood"]
    variant = catalogue.get_subrace("Human", "PHB", "variant")
    assert variant.replaces("ability")
    assert not variant.replaces("skillProficiencies")

    knight = catalogue.get_subclass("Fighter", "PHB", "eldritch knight")
    assert knight.caster_progression == "1/3"
    assert catalogue.get_subclass("Wizard", "PHB", "Evocation").name == "School of Evocation"


def test_background_variants_inherit_unnamed_arrays(catalogue):
    spy = catalogue.get_variant("Criminal", "PHB", "spy")
    criminal = catalogue.get_background("Criminal", "PHB")
    assert spy.proficiencies.skills == criminal.proficiencies.skills
    assert spy.proficiencies.tools == [{"thieves' tools": True, "disguise kit": True}]


def test_race_record_fields(catalogue):
    dwarf = catalogue.get_race("Dwarf", "PHB")
    assert dwarf.speed == 25
    assert catalogue.get_race("Custom Lineage", "TCE").lineage


def test_class_names_sorted(catalogue):
    assert catalogue.class_names() == ["Bard", "Fighter", "Paladin", "Rogue", "Sorcerer", "Warlock", "Wizard"]
