"""Dataclasses for model input records and application state."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional, Tuple

from molquery.model.tables import EntityType

if TYPE_CHECKING:
    from molquery.model.structure import MoleculeModel


@dataclass(frozen=True)
class ResidueRecord:
    """Identity of the residue an atom belongs to.

    Attributes
    ----------
    name
        Residue name.
    seq_number
        Residue sequence number.
    asym_id
        Chain (asym) identifier.
    entity_id
        Entity identifier.
    entity_type
        Entity kind.
    ins_code
        Insertion code, empty when absent.
    is_het
        Whether the residue is a HET group.
    auth_name
        Author residue name, defaults to ``name``.
    auth_seq_number
        Author sequence number, defaults to ``seq_number``.
    auth_asym_id
        Author chain identifier, defaults to ``asym_id``.
    """

    name: str
    seq_number: int
    asym_id: str = "A"
    entity_id: str = "1"
    entity_type: EntityType = EntityType.POLYMER
    ins_code: str = ""
    is_het: bool = False
    auth_name: Optional[str] = None
    auth_seq_number: Optional[int] = None
    auth_asym_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, int, str, str]:
        return (self.entity_id, self.asym_id, self.seq_number, self.ins_code, self.name)


@dataclass(frozen=True)
class AtomRecord:
    """One input atom for :func:`molquery.model.builder.build_model`.

    Attributes
    ----------
    id
        Atom id (serial).
    name
        Atom name.
    element
        Element symbol.
    residue
        Residue identity.
    coords
        Cartesian coordinates.
    auth_name
        Author atom name, defaults to ``name``.
    """

    id: int
    name: str
    element: str
    residue: ResidueRecord
    coords: Tuple[float, float, float]
    auth_name: Optional[str] = None


@dataclass
class ModelState:
    """Mutable state shared across calls of :class:`molquery.model.Model`.

    Attributes
    ----------
    model
        Loaded molecular model.
    topology_path
        Topology file the model was loaded from.
    coordinates_path
        Optional coordinate file.
    load_timings
        Timing breakdown for the last load.
    loaded
        Whether a model is currently loaded.
    """

    model: Optional["MoleculeModel"] = None
    topology_path: Optional[str] = None
    coordinates_path: Optional[str] = None
    load_timings: Optional[Dict[str, float]] = None
    loaded: bool = False
