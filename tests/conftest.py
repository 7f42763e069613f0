import pathlib

import pytest

from character_engine import proficiencies as profs
from character_engine.data import DataRepository, RulesCatalogue
from character_engine.models import Character
from character_engine.progression import ProgressionLedger
from character_engine.reconciliation import SourceReconciler

ROOT = pathlib.Path(__file__).resolve().parents[1]
DATA_DIR = ROOT / "data"

# Backgrounds that only exist to exercise choice carry-over.
EXTRA_BACKGROUNDS = [
    {
        "name": "Temple Healer",
        "source": "PHB",
        "skillProficiencies": [{"choose": {"from": ["insight", "religion", "medicine"], "count": 2}}],
        "entries": [],
    },
    {
        "name": "Hedge Scholar",
        "source": "PHB",
        "skillProficiencies": [{"choose": {"from": ["insight", "arcana"], "count": 2}}],
        "entries": [],
    },
    {
        "name": "Far Traveler",
        "source": "SCAG",
        "skillProficiencies": [{"insight": True, "perception": True}],
        "entries": [],
    },
]


@pytest.fixture(scope="session")
def repository():
    return DataRepository(DATA_DIR)


@pytest.fixture
def catalogue(repository):
    backgrounds = dict(repository.backgrounds())
    backgrounds["background"] = list(backgrounds.get("background", [])) + EXTRA_BACKGROUNDS
    return RulesCatalogue.from_payload(
        races=repository.races(),
        classes=repository.classes(),
        backgrounds=backgrounds,
        allowed_sources=["PHB", "TCE"],
    )


@pytest.fixture
def ledger(catalogue):
    return ProgressionLedger(catalogue)


@pytest.fixture
def reconciler(catalogue, ledger):
    return SourceReconciler(catalogue, ledger)


@pytest.fixture
def character():
    pc = Character(name="Tester")
    profs.ensure_structures(pc)
    return pc


@pytest.fixture(scope="session")
def qt_app():
    from PySide6 import QtCore

    return QtCore.QCoreApplication.instance() or QtCore.QCoreApplication([])
