"""Model package exports."""

from molquery.model.builder import build_model
from molquery.model.model import Model
from molquery.model.state import AtomRecord, ModelState, ResidueRecord
from molquery.model.structure import MoleculeModel
from molquery.model.tables import AtomTable, ChainTable, EntityTable, EntityType, ResidueTable

__all__ = [
    "AtomRecord",
    "AtomTable",
    "ChainTable",
    "EntityTable",
    "EntityType",
    "Model",
    "ModelState",
    "MoleculeModel",
    "ResidueRecord",
    "ResidueTable",
    "build_model",
]
