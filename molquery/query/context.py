"""Query context: the model, the mask of active atoms and a lazy kd-tree."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Optional, Sequence

import numpy as np

from molquery import config
from molquery.errors import QueryError
from molquery.geometry.subdivision_tree import SubdivisionTree3D

if TYPE_CHECKING:
    from molquery.model.structure import MoleculeModel
    from molquery.query.fragment import FragmentSeq

logger = logging.getLogger(__name__)


class Mask:
    """Represents the active atoms of a context.

    Attributes
    ----------
    size
        Number of active atoms.
    """

    def __init__(self, atom_count: int, flags: Optional[np.ndarray] = None) -> None:
        self._atom_count = int(atom_count)
        if flags is None:
            self._flags = None
            self.size = self._atom_count
        else:
            self._flags = np.asarray(flags, dtype=bool)
            self._flags.flags.writeable = False
            self.size = int(np.count_nonzero(self._flags))

    @property
    def is_complete(self) -> bool:
        return self.size == self._atom_count

    def has(self, index: int) -> bool:
        if not 0 <= index < self._atom_count:
            return False
        return self._flags is None or bool(self._flags[index])

    def has_range(self, start: int, end: int) -> bool:
        """Return ``True`` when any atom of ``[start, end)`` is active."""
        start = max(int(start), 0)
        end = min(int(end), self._atom_count)
        if start >= end:
            return False
        return self._flags is None or bool(self._flags[start:end].any())

    def has_all(self, indices: np.ndarray) -> bool:
        """Return ``True`` when every index in ``indices`` is active."""
        if not len(indices):
            return True
        if indices.min() < 0 or indices.max() >= self._atom_count:
            return False
        return self._flags is None or bool(self._flags[indices].all())

    def as_array(self) -> np.ndarray:
        """Return a read-only boolean membership array over all atoms."""
        if self._flags is None:
            flags = np.ones(self._atom_count, dtype=bool)
            flags.flags.writeable = False
            return flags
        return self._flags

    def indices(self) -> np.ndarray:
        """Return the sorted active atom indices."""
        if self._flags is None:
            return np.arange(self._atom_count, dtype=np.int64)
        return np.flatnonzero(self._flags).astype(np.int64)

    @classmethod
    def of_structure(cls, structure: "MoleculeModel") -> "Mask":
        return cls(structure.atoms.count)

    @classmethod
    def of_indices(cls, structure: "MoleculeModel", atom_indices: Sequence[int]) -> "Mask":
        count = structure.atoms.count
        indices = np.asarray(atom_indices, dtype=np.int64).reshape(-1)
        if indices.size and (indices.min() < 0 or indices.max() >= count):
            raise QueryError(
                "invalid_index",
                "Atom index outside of the model",
                {"atom_count": count, "min": int(indices.min()), "max": int(indices.max())},
            )
        flags = np.zeros(count, dtype=bool)
        flags[indices] = True
        return cls(count, flags)

    @classmethod
    def of_fragments(cls, seq: "FragmentSeq") -> "Mask":
        count = seq.context.structure.atoms.count
        flags = np.zeros(count, dtype=bool)
        for fragment in seq.fragments:
            flags[fragment.atom_indices] = True
        return cls(count, flags)


class Context:
    """The context of a query.

    Stores the mask of active atoms, a kd-tree over the active atoms (built
    on first use) and the model itself. Apart from the tree memo a context
    never changes after construction.

    Attributes
    ----------
    structure
        The model this context is based on.
    mask
        Active atoms.
    atom_count
        Number of active atoms.
    is_complete
        Whether every atom of the model is active.
    """

    def __init__(self, structure: "MoleculeModel", mask: Mask) -> None:
        self.structure = structure
        self.mask = mask
        self.atom_count = mask.size
        self.is_complete = mask.is_complete
        self._tree: Optional[SubdivisionTree3D] = None
        self._atom_indices: Optional[np.ndarray] = None
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"Context(structure={self.structure.id!r}, atom_count={self.atom_count})"

    def has_atom(self, index: int) -> bool:
        """Check if an atom is included in the context."""
        return self.mask.has(index)

    def has_range(self, start: int, end: int) -> bool:
        """Check if any atom of ``[start, end)`` is included in the context."""
        return self.mask.has_range(start, end)

    @property
    def atom_indices(self) -> np.ndarray:
        """Sorted indices of the active atoms."""
        if self._atom_indices is None:
            indices = self.mask.indices()
            indices.flags.writeable = False
            self._atom_indices = indices
        return self._atom_indices

    @property
    def tree(self) -> SubdivisionTree3D:
        """Return the kd-tree over the active atoms, building it once.

        Tree ``data`` holds atom indices. Construction is guarded by a lock
        so concurrent first use from several threads builds a single tree.
        """

        tree = self._tree
        if tree is None:
            with self._lock:
                if self._tree is None:
                    self._tree = self._make_tree()
                tree = self._tree
        return tree

    def _make_tree(self) -> SubdivisionTree3D:
        data = self.atom_indices
        positions = self.structure.atoms.positions[data]
        logger.debug("Building kd-tree for %d active atoms", len(data))
        return SubdivisionTree3D(data, positions, leaf_size=config.DEFAULT_LEAF_SIZE)

    @classmethod
    def of_structure(cls, structure: "MoleculeModel") -> "Context":
        """Create a context covering every atom of ``structure``."""
        return cls(structure, Mask.of_structure(structure))

    @classmethod
    def of_fragments(cls, seq: "FragmentSeq") -> "Context":
        """Create a context covering the atoms of all fragments in ``seq``."""
        return cls(seq.context.structure, Mask.of_fragments(seq))

    @classmethod
    def of_atom_indices(cls, structure: "MoleculeModel", atom_indices: Sequence[int]) -> "Context":
        """Create a context covering exactly ``atom_indices``.

        Raises
        ------
        QueryError
            If an index lies outside of the model.
        """
        return cls(structure, Mask.of_indices(structure, atom_indices))
