"""Model loading utilities."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
import time
from typing import Dict, List, Optional, Set, Tuple

import MDAnalysis as mda
from MDAnalysis.exceptions import NoDataError, SelectionError

from molquery.config import WATER_RESIDUE_NAMES
from molquery.errors import ModelError
from molquery.model.builder import build_model
from molquery.model.state import AtomRecord, ResidueRecord
from molquery.model.structure import MoleculeModel
from molquery.model.tables import EntityType

logger = logging.getLogger(__name__)

_TWO_LETTER_ELEMENTS = {
    "CL",
    "BR",
    "NA",
    "MG",
    "ZN",
    "FE",
    "CA",
    "LI",
    "SI",
    "AL",
    "CU",
    "MN",
    "CO",
    "NI",
    "CD",
    "HG",
    "PB",
    "AG",
    "AU",
}


@dataclass(frozen=True)
class ModelLoadResult:
    """Result of loading a model from files.

    Attributes
    ----------
    model
        Loaded molecular model.
    natoms
        Atom count.
    nresidues
        Residue count.
    warnings
        List of topology warnings.
    timings
        Timing breakdown for the load pipeline.
    """

    model: MoleculeModel
    natoms: int
    nresidues: int
    warnings: List[str]
    timings: Dict[str, float]


def _guess_element(atom_name: str, polymer: bool = False) -> Optional[str]:
    name = (atom_name or "").strip()
    i = 0
    while i < len(name) and name[i].isdigit():
        i += 1
    name = name[i:]
    if not name:
        return None
    if polymer:
        # CA, CD, NE ... in polymers are carbon and nitrogen, not metals
        return name[0].upper()
    upper = name[:2].upper()
    if upper in _TWO_LETTER_ELEMENTS and (len(name) == 2 or not name[1].isupper()):
        return upper[0] + upper[1].lower()
    return name[0].upper()


def _safe_attr(atoms, attr: str) -> Optional[List[object]]:
    try:
        values = getattr(atoms, attr)
    except (AttributeError, NoDataError):
        return None
    return list(values)


def _polymer_residues(universe: mda.Universe) -> Set[int]:
    try:
        group = universe.select_atoms("protein or nucleic")
    except (NoDataError, SelectionError, ValueError):
        return set()
    return {int(ix) for ix in group.resindices}


def _entity_type(resindex: int, resname: str, polymer: Set[int]) -> EntityType:
    if resindex in polymer:
        return EntityType.POLYMER
    if resname.upper() in WATER_RESIDUE_NAMES:
        return EntityType.WATER
    return EntityType.NON_POLYMER


def _chain_label(chains: Optional[List[object]], segids: Optional[List[object]], idx: int) -> str:
    for values in (chains, segids):
        if values is not None:
            label = str(values[idx]).strip()
            if label:
                return label
    return "A"


def model_from_universe(
    universe: mda.Universe, model_id: str = "1", id: str = "model"
) -> Tuple[MoleculeModel, List[str]]:
    """Convert an MDAnalysis universe into a :class:`MoleculeModel`.

    Consecutive residues of the same kind (polymer, non-polymer, water) form
    one entity; residues outside polymers are flagged as HET.

    Parameters
    ----------
    universe
        Universe with topology and coordinates.
    model_id
        Model identifier.
    id
        Molecule identifier.

    Returns
    -------
    tuple
        The model and a list of topology warnings.

    Raises
    ------
    ModelError
        If the universe carries no coordinates.
    """

    atoms = universe.atoms
    natoms = len(atoms)
    try:
        positions = atoms.positions
    except (AttributeError, NoDataError) as exc:
        raise ModelError("no_coordinates", "Universe has no coordinates", str(exc)) from exc

    names = _safe_attr(atoms, "names") or [""] * natoms
    resids = _safe_attr(atoms, "resids") or [1] * natoms
    resnames = _safe_attr(atoms, "resnames") or ["UNK"] * natoms
    resindices = _safe_attr(atoms, "resindices") or [0] * natoms
    ids = _safe_attr(atoms, "ids")
    icodes = _safe_attr(atoms, "icodes")
    segids = _safe_attr(atoms, "segids")
    chains = _safe_attr(atoms, "chainIDs")
    elements = _safe_attr(atoms, "elements")
    polymer = _polymer_residues(universe)

    warnings: List[str] = []
    if elements is None:
        warnings.append("Element symbols guessed from atom names")
    if chains is None and segids is None:
        warnings.append("No chain identifiers in topology")
    if not polymer:
        warnings.append("No polymer residues detected")
    if warnings:
        logger.debug("Topology warnings: %s", warnings)

    element_cache: Dict[Tuple[str, bool], str] = {}
    records: List[AtomRecord] = []
    residue: Optional[ResidueRecord] = None
    residue_key: Optional[Tuple[int, str]] = None
    entity_counter = 0
    entity_key: Optional[Tuple[EntityType, str]] = None
    for idx in range(natoms):
        resindex = int(resindices[idx])
        chain = _chain_label(chains, segids, idx)
        if residue_key != (resindex, chain):
            resname = str(resnames[idx]).strip()
            kind = _entity_type(resindex, resname, polymer)
            if kind == EntityType.POLYMER:
                key = (kind, chain)
            else:
                key = (kind, "")
            if key != entity_key:
                entity_counter += 1
                entity_key = key
            residue = ResidueRecord(
                name=resname,
                seq_number=int(resids[idx]),
                asym_id=chain,
                entity_id=str(entity_counter),
                entity_type=kind,
                ins_code=str(icodes[idx]).strip() if icodes is not None else "",
                is_het=kind != EntityType.POLYMER,
            )
            residue_key = (resindex, chain)

        name = str(names[idx]).strip()
        element = str(elements[idx]).strip().title() if elements is not None else ""
        if not element:
            cache_key = (name, residue.entity_type == EntityType.POLYMER)
            if cache_key not in element_cache:
                element_cache[cache_key] = _guess_element(*cache_key) or "X"
            element = element_cache[cache_key]
        records.append(
            AtomRecord(
                id=int(ids[idx]) if ids is not None else idx + 1,
                name=name,
                element=element,
                residue=residue,
                coords=(
                    float(positions[idx][0]),
                    float(positions[idx][1]),
                    float(positions[idx][2]),
                ),
            )
        )
    return build_model(records, model_id=model_id, id=id), warnings


def load_model(
    topology_path: str, coordinates_path: Optional[str] = None, model_id: str = "1"
) -> ModelLoadResult:
    """Load a topology (and optional coordinates) into a model.

    Parameters
    ----------
    topology_path
        Path to any topology format MDAnalysis reads (PDB, GRO, PSF, ...).
    coordinates_path
        Optional coordinate file for topologies without positions.
    model_id
        Model identifier.

    Returns
    -------
    ModelLoadResult
        Loaded model and load metadata.

    Raises
    ------
    ModelError
        If files are missing or loading fails.
    """

    if not topology_path:
        raise ModelError("invalid_input", "A topology path is required")
    if not os.path.exists(topology_path):
        raise ModelError("file_not_found", "Topology file not found", topology_path)
    if coordinates_path and not os.path.exists(coordinates_path):
        raise ModelError("file_not_found", "Coordinate file not found", coordinates_path)

    total_start = time.perf_counter()
    logger.debug("Loading MDAnalysis Universe from %s", topology_path)
    paths = [topology_path] + ([coordinates_path] if coordinates_path else [])
    try:
        universe = mda.Universe(*paths)
    except Exception as exc:
        logger.exception("MDAnalysis load failed")
        raise ModelError("load_failed", "Failed to load MDAnalysis Universe", str(exc)) from exc
    universe_time = time.perf_counter() - total_start

    build_start = time.perf_counter()
    model, warnings = model_from_universe(
        universe, model_id=model_id, id=os.path.splitext(os.path.basename(topology_path))[0]
    )
    build_time = time.perf_counter() - build_start
    total_time = time.perf_counter() - total_start
    logger.debug(
        "Model loaded: atoms=%d residues=%d", model.atoms.count, model.residues.count
    )
    return ModelLoadResult(
        model=model,
        natoms=model.atoms.count,
        nresidues=model.residues.count,
        warnings=warnings,
        timings={"universe": universe_time, "model_build": build_time, "total": total_time},
    )
