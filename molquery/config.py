"""Application-wide constants."""

from __future__ import annotations

from typing import FrozenSet

APP_NAME = "molquery"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Spatial index
DEFAULT_LEAF_SIZE = 32
DEFAULT_BUFFER_CAPACITY = 16

# CLI
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_OUTPUT_FORMAT = "indices"
OUTPUT_FORMATS = ("indices", "json", "pdb")

WATER_RESIDUE_NAMES: FrozenSet[str] = frozenset(
    {"HOH", "WAT", "H2O", "DOD", "TIP3", "TIP4", "TIP5", "SPC", "SPCE", "OPC", "SOL"}
)

# Protein and nucleic acid backbone atoms.
BACKBONE_ATOM_NAMES: FrozenSet[str] = frozenset(
    {
        "N",
        "CA",
        "C",
        "O",
        "OXT",
        "P",
        "OP1",
        "OP2",
        "O1P",
        "O2P",
        "O5'",
        "C5'",
        "C4'",
        "O4'",
        "C3'",
        "O3'",
        "C2'",
        "O2'",
        "C1'",
    }
)

# Atoms a cartoon trace runs through: protein CA, nucleic P and C4'.
TRACE_ATOM_NAMES = ("CA", "P", "C4'")
