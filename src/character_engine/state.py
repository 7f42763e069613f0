from __future__ import annotations

from contextlib import contextmanager
from typing import Callable, Iterable, List, Optional, Tuple

from PySide6 import QtCore

from . import abilities
from . import proficiencies as profs
from .config import EngineSettings, load_settings
from .data import RulesCatalogue, get_repository
from .logging_utils import get_logger, set_engine_level
from .models import Character, FeatRef, SourceRef
from .progression import ProgressionLedger
from .reconciliation import SourceReconciler
from .results import Outcome, Reason

logger = get_logger(__name__)


def load_catalogue(settings: Optional[EngineSettings] = None) -> RulesCatalogue:
    settings = settings or load_settings()
    set_engine_level(settings.log_level)
    repository = get_repository(settings.data_dir)
    return RulesCatalogue.from_repository(repository, allowed_sources=settings.allowed_sources)


class CharacterViewModel(QtCore.QObject):
    characterUpdated = QtCore.Signal(object)
    messageEmitted = QtCore.Signal(str)

    def __init__(
        self,
        catalogue: Optional[RulesCatalogue] = None,
        character: Optional[Character] = None,
        parent: Optional[QtCore.QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.catalogue = catalogue or load_catalogue()
        self.ledger = ProgressionLedger(self.catalogue)
        self.reconciler = SourceReconciler(self.catalogue, self.ledger)
        self.character = character or Character()
        self._signal_suppression = 0
        self._queued_messages: List[str] = []
        self._prepare(self.character)
        self._refresh()

    # ------------------------------------------------------------------
    # Option lists used by the UI
    def race_options(self) -> List[Tuple[str, str]]:
        races = [race for race in self.catalogue.races.entries if self.catalogue.is_source_allowed(race.source)]
        return sorted(((race.name, race.source) for race in races), key=lambda item: item[0])

    def subrace_options(self) -> List[str]:
        race = self.character.race
        if not race:
            return []
        return sorted(sub.name for sub in self.catalogue.get_subraces(race.name, race.source) if sub.name)

    def class_options(self) -> List[str]:
        return self.catalogue.class_names()

    def subclass_options(self) -> List[str]:
        class_ref = self.character.class_
        if not class_ref:
            return []
        return sorted(sub.name for sub in self.catalogue.get_subclasses(class_ref.name, class_ref.source))

    def background_options(self) -> List[Tuple[str, str]]:
        backgrounds = [
            bg for bg in self.catalogue.backgrounds.entries if self.catalogue.is_source_allowed(bg.source)
        ]
        return sorted(((bg.name, bg.source) for bg in backgrounds), key=lambda item: item[0])

    def background_variant_options(self) -> List[str]:
        background = self.character.background
        if not background:
            return []
        return sorted(variant.name for variant in self.catalogue.get_variants(background.name, background.source))

    def available_optional(self, category: str, source_key: str) -> List[str]:
        return profs.available_optional(self.character, category, source_key)

    def ability_summary(self) -> abilities.AbilitySummary:
        race_ref = self.character.race
        race = self.catalogue.get_race(race_ref.name, race_ref.source) if race_ref else None
        subrace = None
        if race and race_ref.variant:
            subrace = self.catalogue.get_subrace(race.name, race.source, race_ref.variant)
        return abilities.resolve_race_abilities(race, subrace).summary

    # ------------------------------------------------------------------
    # Source selections
    def set_race(self, name: Optional[str], source: str = "PHB") -> Outcome:
        ref = SourceRef(name, source) if name else None
        return self._run(self.reconciler.apply_race, ref)

    def set_subrace(self, subrace: Optional[str]) -> Outcome:
        race = self.character.race
        if race is None:
            return self._refuse(Outcome.refused(Reason.NOT_FOUND, "Choose a race first"))
        return self._run(self.reconciler.apply_race, SourceRef(race.name, race.source, subrace or None))

    def set_class(self, name: Optional[str], source: str = "PHB") -> Outcome:
        ref = None
        if name:
            current = self.character.class_
            # Keep the subclass only when the class itself is unchanged.
            keep = current.variant if current and current.name.lower() == name.lower() else None
            ref = SourceRef(name, source, keep)
        return self._run(self.reconciler.apply_class, ref)

    def set_subclass(self, subclass: Optional[str]) -> Outcome:
        class_ref = self.character.class_
        if class_ref is None:
            return self._refuse(Outcome.refused(Reason.CLASS_REQUIRED, "Choose a class first"))
        return self._run(self.reconciler.apply_class, SourceRef(class_ref.name, class_ref.source, subclass or None))

    def set_background(self, name: Optional[str], source: str = "PHB") -> Outcome:
        ref = SourceRef(name, source) if name else None
        return self._run(self.reconciler.apply_background, ref)

    def set_background_variant(self, variant: Optional[str]) -> Outcome:
        background = self.character.background
        if background is None:
            return self._refuse(Outcome.refused(Reason.NOT_FOUND, "Choose a background first"))
        return self._run(
            self.reconciler.apply_background, SourceRef(background.name, background.source, variant or None)
        )

    # ------------------------------------------------------------------
    # Levels
    def increase_level(self, class_name: Optional[str] = None) -> Outcome:
        return self._run(self.ledger.increase_level, class_name)

    def decrease_level(self, class_name: Optional[str] = None) -> Outcome:
        return self._run(self.ledger.decrease_level, class_name)

    def add_multiclass(self, name: str, source: str = "PHB") -> Outcome:
        return self._run(self.reconciler.add_multiclass, SourceRef(name, source))

    def remove_multiclass(self, name: str) -> Outcome:
        return self._run(self.reconciler.remove_multiclass, name)

    def set_hit_point_roll(self, class_name: str, class_level: int, value: int) -> Outcome:
        return self._run(self.ledger.set_hit_point_roll, class_name, class_level, value)

    # ------------------------------------------------------------------
    # Player picks
    def select_optional(self, category: str, source_key: str, name: str) -> Outcome:
        return self._run(profs.select_optional, category, source_key, name)

    def deselect_optional(self, category: str, source_key: str, name: str) -> Outcome:
        return self._run(profs.deselect_optional, category, source_key, name)

    def choose_ability(self, index: int, ability: str) -> Outcome:
        return self._run(abilities.resolve_pending_choice, index, ability)

    def set_ability_score(self, ability: str, value: int) -> None:
        self.character.set_ability_score(ability, value)
        self.character.standard_array.pop(ability, None)
        self._refresh()

    def set_ability_method(self, method: str) -> Outcome:
        return self._run(abilities.set_ability_method, method)

    def set_point_buy_score(self, ability: str, value: int) -> Outcome:
        return self._run(abilities.set_point_buy_score, ability, value)

    def remaining_points(self) -> int:
        return abilities.remaining_points(self.character.ability_scores)

    def standard_array_values(self) -> List[int]:
        """Standard array values not yet given to an ability."""
        return abilities.unassigned_standard_values(self.character)

    def assign_standard_array(self, ability: str, value: int) -> Outcome:
        return self._run(abilities.assign_standard_array, ability, value)

    def unassign_standard_array(self, ability: str) -> Outcome:
        return self._run(abilities.unassign_standard_array, ability)

    def feat_slots(self) -> int:
        """Feats granted outright plus one per ASI level already reached."""
        level = self.character.total_level()
        reached = [asi for asi in self.character.derived.asi_levels if asi <= level]
        return sum(self.character.feat_allowances.values()) + len(reached)

    def set_feats(self, feats: Iterable[Tuple[str, str]]) -> Outcome:
        chosen = [FeatRef(name, source) for name, source in feats]
        if len(chosen) > self.feat_slots():
            return self._refuse(Outcome.refused(Reason.CAP_REACHED, f"Only {self.feat_slots()} feats are allowed"))
        self.character.feats = chosen
        self._refresh()
        return Outcome.ok(f"{len(chosen)} feats selected")

    # ------------------------------------------------------------------
    # Persistence hand-off
    def load(self, data: dict) -> None:
        character = Character.from_dict(data)
        self._prepare(character)
        self.character = character
        self._refresh()

    def to_dict(self) -> dict:
        return self.character.to_dict()

    @contextmanager
    def batch(self):
        """Run several operations and publish the character once at the end."""
        with self._suspend_signals():
            yield self
        self._refresh()
        if self._signal_suppression == 0:
            queued, self._queued_messages = self._queued_messages, []
            for message in queued:
                self.messageEmitted.emit(message)

    # ------------------------------------------------------------------
    def _prepare(self, character: Character) -> None:
        profs.ensure_structures(character)
        profs.recombine_all(character)
        self.ledger.update_spell_slots(character)

    def _run(self, operation: Callable[..., Outcome], *args) -> Outcome:
        with self._suspend_signals():
            outcome = operation(self.character, *args)
        for warning in outcome.warnings:
            self._emit_message(warning)
        if not outcome and outcome.reason is not Reason.CATALOGUE_MISS:
            return self._refuse(outcome)
        self._refresh()
        return outcome

    def _refuse(self, outcome: Outcome) -> Outcome:
        logger.info("Refused: %s", outcome.message)
        self._emit_message(outcome.message)
        return outcome

    def _refresh(self) -> None:
        self.ledger.refresh_derived(self.character)
        if self._signal_suppression == 0:
            self.characterUpdated.emit(self.character)

    def _emit_message(self, message: str) -> None:
        if not message:
            return
        if self._signal_suppression:
            self._queued_messages.append(message)
        else:
            self.messageEmitted.emit(message)

    @contextmanager
    def _suspend_signals(self):
        self._signal_suppression += 1
        try:
            yield
        finally:
            self._signal_suppression = max(0, self._signal_suppression - 1)
