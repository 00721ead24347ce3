"""Model layer for molquery."""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING, Dict, Optional, Sequence

import numpy as np

from molquery.errors import ModelError, QueryError
from molquery.model.state import ModelState
from molquery.model.structure import MoleculeModel
from molquery.services.loader import load_model
from molquery.services.pdb_writer import write_pdb

if TYPE_CHECKING:
    from molquery.query.builder import Source

logger = logging.getLogger(__name__)


class Model:
    """Core application model and state store.

    Attributes
    ----------
    _state
        Mutable model state.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = ModelState()

    def load_system(
        self, topology_path: str, coordinates_path: Optional[str] = None
    ) -> Dict[str, object]:
        """Load a structure from files and make it the current model.

        Parameters
        ----------
        topology_path
            Path to the topology (or full structure) file.
        coordinates_path
            Optional path to a coordinate file.

        Returns
        -------
        dict
            Payload containing load metadata.

        Raises
        ------
        ModelError
            If loading fails or files are missing.
        """

        result = load_model(topology_path, coordinates_path)
        with self._lock:
            self._state.model = result.model
            self._state.topology_path = topology_path
            self._state.coordinates_path = coordinates_path
            self._state.load_timings = result.timings
            self._state.loaded = True
        return {
            "ok": True,
            "natoms": result.natoms,
            "nresidues": result.nresidues,
            "nchains": result.model.chains.count,
            "nentities": result.model.entities.count,
            "warnings": result.warnings,
        }

    def load_model(self, model: MoleculeModel) -> Dict[str, object]:
        """Make an already built model the current model."""
        with self._lock:
            self._state.model = model
            self._state.topology_path = None
            self._state.coordinates_path = None
            self._state.load_timings = None
            self._state.loaded = True
        return {"ok": True, "natoms": model.atoms.count, "nresidues": model.residues.count}

    def _current(self) -> MoleculeModel:
        with self._lock:
            if not self._state.loaded or self._state.model is None:
                raise ModelError("not_loaded", "No model loaded")
            return self._state.model

    def select(self, query: Source) -> Dict[str, object]:
        """Evaluate a query against the current model.

        Parameters
        ----------
        query
            Query text, builder or compiled query.

        Returns
        -------
        dict
            Payload with the union of selected atom indices and the
            per-fragment atom indices.

        Raises
        ------
        ModelError
            If no model is loaded.
        QueryError
            If the query is invalid.
        """

        model = self._current()
        started_at = time.perf_counter()
        seq = model.query(query)
        atom_indices = seq.union_atom_indices()
        logger.debug(
            "Query selected %d atoms in %d fragments (%.3fs)",
            atom_indices.size,
            seq.length,
            time.perf_counter() - started_at,
        )
        return {
            "ok": True,
            "atom_indices": atom_indices.tolist(),
            "count": int(atom_indices.size),
            "fragment_count": seq.length,
            "fragments": [
                {"id": fragment.id, "atom_indices": fragment.atom_indices.tolist()}
                for fragment in seq
            ],
        }

    def get_atom_info(self, index: int) -> Dict[str, object]:
        """Return identity and coordinates of one atom.

        Raises
        ------
        ModelError
            If no model is loaded or the index is out of range.
        """

        model = self._current()
        atoms = model.atoms
        if isinstance(index, bool) or not isinstance(index, (int, np.integer)):
            raise ModelError("invalid_index", "Atom index must be an integer", index)
        if not 0 <= index < atoms.count:
            raise ModelError("invalid_index", "Atom index out of range", index)
        residues = model.residues
        r = int(atoms.residue_index[index])
        logger.debug("Atom info requested index=%s", index)
        return {
            "ok": True,
            "atom": {
                "index": int(index),
                "id": int(atoms.id[index]),
                "name": str(atoms.name[index]),
                "element": str(atoms.element_symbol[index]),
                "coords": [float(atoms.x[index]), float(atoms.y[index]), float(atoms.z[index])],
                "residue": {
                    "index": r,
                    "name": str(residues.name[r]),
                    "seq_number": int(residues.seq_number[r]),
                    "ins_code": str(residues.ins_code[r]),
                    "asym_id": str(residues.asym_id[r]),
                    "entity_id": str(residues.entity_id[r]),
                    "is_het": bool(residues.is_het[r]),
                },
            },
        }

    def neighbors(self, point: Sequence[float], radius: float) -> Dict[str, object]:
        """Return atoms within ``radius`` of ``point``, nearest first.

        Raises
        ------
        ModelError
            If no model is loaded or the point is malformed.
        QueryError
            If the radius is invalid.
        """

        model = self._current()
        try:
            x, y, z = (float(v) for v in point)
        except (TypeError, ValueError) as exc:
            raise ModelError("invalid_point", "Point must hold three numbers", repr(point)) from exc
        if isinstance(radius, bool) or not isinstance(radius, (int, float)):
            raise QueryError("invalid_radius", "Radius must be a number", repr(radius))
        tree = model.query_context.tree
        ctx = tree.create_context_radius(radius, include_priorities=True)
        ctx.nearest(x, y, z, radius)
        order = ctx.buffer.sorted_indices()
        indices = tree.data[order]
        distances = np.sqrt(ctx.buffer.priorities[: ctx.buffer.count])
        distances.sort()
        return {
            "ok": True,
            "atom_indices": indices.tolist(),
            "distances": distances.tolist(),
        }

    def get_selection_pdb(self, query: Source) -> Dict[str, object]:
        """Return PDB text for the atoms selected by ``query``."""
        model = self._current()
        atom_indices = model.query(query).union_atom_indices()
        return {"ok": True, "pdb": write_pdb(model, atom_indices), "count": int(atom_indices.size)}

    def compile(self, query: Source) -> Dict[str, object]:
        """Validate a query without evaluating it."""
        from molquery.query.builder import to_query

        try:
            to_query(query)
        except QueryError as exc:
            return exc.to_result()
        return {"ok": True}
