import pytest

from molquery.model import AtomRecord, EntityType, ResidueRecord, build_model
from molquery.model.structure import MoleculeModel

# Atom layout of the test model (index: name):
#   ALA 1 /A  0 N   1 CA  2 C   3 O   4 CB
#   GLY 2 /A  5 N   6 CA  7 C   8 O
#   SER 3 /A  9 N  10 CA 11 C  12 O  13 CB  14 OG
#   HEM 100/B 15 FE 16 NA
#   HOH 200/C 17 O
#   HOH 201/C 18 O
_ATOMS = [
    ("ALA", 1, "N", "N", (0.0, 0.0, 0.0)),
    ("ALA", 1, "CA", "C", (1.0, 0.0, 0.0)),
    ("ALA", 1, "C", "C", (1.5, 1.0, 0.0)),
    ("ALA", 1, "O", "O", (1.5, 2.0, 0.0)),
    ("ALA", 1, "CB", "C", (1.0, -1.0, 0.0)),
    ("GLY", 2, "N", "N", (4.0, 0.0, 0.0)),
    ("GLY", 2, "CA", "C", (5.0, 0.0, 0.0)),
    ("GLY", 2, "C", "C", (5.5, 1.0, 0.0)),
    ("GLY", 2, "O", "O", (5.5, 2.0, 0.0)),
    ("SER", 3, "N", "N", (8.0, 0.0, 0.0)),
    ("SER", 3, "CA", "C", (9.0, 0.0, 0.0)),
    ("SER", 3, "C", "C", (9.5, 1.0, 0.0)),
    ("SER", 3, "O", "O", (9.5, 2.0, 0.0)),
    ("SER", 3, "CB", "C", (9.0, -1.0, 0.0)),
    ("SER", 3, "OG", "O", (9.0, -2.0, 0.0)),
    ("HEM", 100, "FE", "Fe", (12.0, 0.0, 0.0)),
    ("HEM", 100, "NA", "N", (13.0, 0.0, 0.0)),
    ("HOH", 200, "O", "O", (20.0, 0.0, 0.0)),
    ("HOH", 201, "O", "O", (30.0, 0.0, 0.0)),
]


def _residue(name: str, seq: int) -> ResidueRecord:
    if name == "HEM":
        return ResidueRecord(
            name, seq, asym_id="B", entity_id="2", entity_type=EntityType.NON_POLYMER, is_het=True
        )
    if name == "HOH":
        return ResidueRecord(
            name, seq, asym_id="C", entity_id="3", entity_type=EntityType.WATER, is_het=True
        )
    return ResidueRecord(name, seq, asym_id="A", entity_id="1", entity_type=EntityType.POLYMER)


def make_records():
    return [
        AtomRecord(id=i + 1, name=atom, element=element, residue=_residue(res, seq), coords=xyz)
        for i, (res, seq, atom, element, xyz) in enumerate(_ATOMS)
    ]


@pytest.fixture
def model() -> MoleculeModel:
    return build_model(make_records(), model_id="1", id="test")
