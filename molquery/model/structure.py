"""The molecular model queried by :mod:`molquery.query`."""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Optional

from molquery.model.tables import AtomTable, ChainTable, EntityTable, ResidueTable

if TYPE_CHECKING:
    from molquery.query.context import Context
    from molquery.query.fragment import FragmentSeq
    from molquery.query.builder import Source


class MoleculeModel:
    """A read-only model snapshot: atom, residue, chain and entity tables.

    Attributes
    ----------
    id
        Molecule identifier.
    model_id
        Model identifier within the molecule.
    atoms
        Per-atom table.
    residues
        Per-residue table.
    chains
        Per-chain table.
    entities
        Per-entity table.
    """

    def __init__(
        self,
        id: str,
        model_id: str,
        atoms: AtomTable,
        residues: ResidueTable,
        chains: ChainTable,
        entities: EntityTable,
    ) -> None:
        self.id = id
        self.model_id = model_id
        self.atoms = atoms
        self.residues = residues
        self.chains = chains
        self.entities = entities
        self._query_context: Optional["Context"] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return (
            f"MoleculeModel(id={self.id!r}, model_id={self.model_id!r}, "
            f"atoms={self.atoms.count}, residues={self.residues.count})"
        )

    @property
    def query_context(self) -> "Context":
        """Return the memoized context covering every atom of the model."""
        context = self._query_context
        if context is None:
            from molquery.query.context import Context

            with self._lock:
                if self._query_context is None:
                    self._query_context = Context.of_structure(self)
                context = self._query_context
        return context

    def query(self, source: "Source") -> "FragmentSeq":
        """Evaluate a query against the whole model.

        Parameters
        ----------
        source
            Query function, builder or query text.

        Returns
        -------
        FragmentSeq
            Query result.
        """

        from molquery.query.builder import to_query

        return to_query(source)(self.query_context)
