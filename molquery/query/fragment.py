"""Fragments and fragment sequences, the values queries operate on."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Iterable, Iterator, List, Optional, Sequence

import numpy as np

from molquery.errors import QueryError
from molquery.query.context import Context

if TYPE_CHECKING:
    from molquery.query.builder import Source

# Tag of fragments that have no generating atom.
NO_TAG = -1
# Tag of the fragment produced by a complement.
COMPLEMENT_TAG = -2


def _frozen(indices: np.ndarray) -> np.ndarray:
    indices.flags.writeable = False
    return indices


class Fragment:
    """The basic element of the query language.

    A fragment is an immutable, strictly increasing set of atom indices that
    all belong to the mask of ``context``. Derived identity (hash,
    fingerprints, residue/chain/entity indices) is computed on first access.
    These caches are filled without a lock, so concurrent first reads may
    compute the same value twice.

    Attributes
    ----------
    tag
        Provenance marker, usually the index of the first atom of the generator.
    atom_indices
        Sorted, duplicate-free atom indices (read-only numpy array).
    context
        The context the fragment belongs to.
    """

    __slots__ = (
        "tag",
        "atom_indices",
        "context",
        "_hash_code",
        "_fingerprint",
        "_auth_fingerprint",
        "_residue_indices",
        "_chain_indices",
        "_entity_indices",
    )

    def __init__(self, context: Context, tag: int, atom_indices: Sequence[int]) -> None:
        """Create a fragment.

        Parameters
        ----------
        context
            Owning context.
        tag
            Provenance marker.
        atom_indices
            Strictly increasing atom indices inside the context's mask.

        Raises
        ------
        QueryError
            If the indices are not strictly increasing or fall outside the mask.
        """

        indices = np.array(atom_indices, dtype=np.int64).reshape(-1)
        if indices.size > 1 and np.any(indices[1:] <= indices[:-1]):
            raise QueryError(
                "invalid_fragment",
                "Fragment atom indices must be sorted and unique",
                {"tag": tag},
            )
        if not context.mask.has_all(indices):
            raise QueryError(
                "invalid_fragment",
                "Fragment atom indices must belong to the context",
                {"tag": tag},
            )
        self.tag = int(tag)
        self.atom_indices = _frozen(indices)
        self.context = context
        self._hash_code: Optional[int] = None
        self._fingerprint: Optional[str] = None
        self._auth_fingerprint: Optional[str] = None
        self._residue_indices: Optional[np.ndarray] = None
        self._chain_indices: Optional[np.ndarray] = None
        self._entity_indices: Optional[np.ndarray] = None

    def __repr__(self) -> str:
        return f"Fragment(tag={self.tag}, atom_count={self.atom_count})"

    def __len__(self) -> int:
        return len(self.atom_indices)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Fragment):
            return NotImplemented
        return Fragment.are_equal(self, other)

    def __hash__(self) -> int:
        return self.hash_code

    @property
    def hash_code(self) -> int:
        """Structural hash of the atom indices."""
        if self._hash_code is None:
            self._hash_code = hash(self.atom_indices.tobytes())
        return self._hash_code

    @property
    def id(self) -> str:
        """Id composed of ``<molecule id>_<tag>``."""
        return f"{self.context.structure.id}_{self.tag}"

    @property
    def atom_count(self) -> int:
        return len(self.atom_indices)

    @property
    def is_het(self) -> bool:
        """Whether the residue of the tag atom is a HET group."""
        structure = self.context.structure
        if not 0 <= self.tag < structure.atoms.count:
            return False
        residue = structure.atoms.residue_index[self.tag]
        return bool(structure.residues.is_het[residue])

    @property
    def fingerprint(self) -> str:
        """Sorted, comma-joined residue identifiers (``name seq asym``)."""
        if self._fingerprint is None:
            residues = self.context.structure.residues
            self._fingerprint = _fingerprint(
                self.residue_indices, residues.name, residues.seq_number, residues.asym_id, residues.ins_code
            )
        return self._fingerprint

    @property
    def auth_fingerprint(self) -> str:
        """Like :attr:`fingerprint` but using author names and numbering."""
        if self._auth_fingerprint is None:
            residues = self.context.structure.residues
            self._auth_fingerprint = _fingerprint(
                self.residue_indices,
                residues.auth_name,
                residues.auth_seq_number,
                residues.auth_asym_id,
                residues.ins_code,
            )
        return self._auth_fingerprint

    def _compute_indices(self) -> None:
        atoms = self.context.structure.atoms
        self._residue_indices = _frozen(np.unique(atoms.residue_index[self.atom_indices]))
        self._chain_indices = _frozen(np.unique(atoms.chain_index[self.atom_indices]))
        self._entity_indices = _frozen(np.unique(atoms.entity_index[self.atom_indices]))

    @property
    def residue_indices(self) -> np.ndarray:
        """A sorted array of residue indices."""
        if self._residue_indices is None:
            self._compute_indices()
        return self._residue_indices

    @property
    def chain_indices(self) -> np.ndarray:
        """A sorted array of chain indices."""
        if self._chain_indices is None:
            self._compute_indices()
        return self._chain_indices

    @property
    def entity_indices(self) -> np.ndarray:
        """A sorted array of entity indices."""
        if self._entity_indices is None:
            self._compute_indices()
        return self._entity_indices

    def find(self, what: "Source") -> "FragmentSeq":
        """Execute a query scoped to the atoms of this fragment.

        Parameters
        ----------
        what
            Query function, builder or query text.

        Returns
        -------
        FragmentSeq
            Result in a new context containing only this fragment's atoms.
        """

        from molquery.query.builder import to_query

        ctx = Context.of_atom_indices(self.context.structure, self.atom_indices)
        return to_query(what)(ctx)

    @staticmethod
    def are_equal(a: "Fragment", b: "Fragment") -> bool:
        """Return ``True`` when both fragments hold the same atoms.

        The hash only serves as a fast reject; atom indices are always compared.
        """

        if a is b:
            return True
        if a.atom_count != b.atom_count or a.hash_code != b.hash_code:
            return False
        return bool(np.array_equal(a.atom_indices, b.atom_indices))

    @classmethod
    def of_set(cls, context: Context, atom_indices: Iterable[int]) -> "Fragment":
        """Create a fragment from an unordered integer set.

        The tag is the smallest index.
        """
        indices = np.unique(np.fromiter(atom_indices, dtype=np.int64))
        tag = int(indices[0]) if indices.size else NO_TAG
        return cls(context, tag, indices)

    @classmethod
    def of_array(cls, context: Context, tag: int, atom_indices: Sequence[int]) -> "Fragment":
        """Create a fragment from a sorted integer array."""
        return cls(context, tag, atom_indices)

    @classmethod
    def of_index(cls, context: Context, index: int) -> "Fragment":
        """Create a fragment holding a single atom."""
        return cls(context, index, [index])

    @classmethod
    def of_index_range(cls, context: Context, start: int, end: int) -> "Fragment":
        """Create a fragment from the active atoms of ``[start, end)``.

        Raises
        ------
        QueryError
            If no atom of the range is active.
        """

        indices = np.arange(start, end, dtype=np.int64)
        if not context.is_complete:
            indices = indices[context.mask.as_array()[indices]]
        if not indices.size:
            raise QueryError(
                "invalid_fragment",
                "Atom range has no atoms in the context",
                {"start": start, "end": end},
            )
        return cls(context, int(indices[0]), indices)


def _fingerprint(
    residue_indices: np.ndarray,
    names: np.ndarray,
    seq_numbers: np.ndarray,
    asym_ids: np.ndarray,
    ins_codes: np.ndarray,
) -> str:
    ids = sorted(
        f"{names[r]} {seq_numbers[r]}{ins_codes[r]} {asym_ids[r]}" for r in residue_indices
    )
    return ",".join(ids)


class FragmentSeq:
    """An ordered sequence of fragments produced by one query evaluation.

    Attributes
    ----------
    context
        Context the query ran in.
    fragments
        Fragments in generation order.
    """

    def __init__(self, context: Context, fragments: Sequence[Fragment]) -> None:
        self.context = context
        self.fragments = tuple(fragments)

    def __repr__(self) -> str:
        return f"FragmentSeq(length={len(self.fragments)})"

    def __len__(self) -> int:
        return len(self.fragments)

    def __iter__(self) -> Iterator[Fragment]:
        return iter(self.fragments)

    def __getitem__(self, index: int) -> Fragment:
        return self.fragments[index]

    @property
    def length(self) -> int:
        return len(self.fragments)

    @classmethod
    def empty(cls, context: Context) -> "FragmentSeq":
        return cls(context, ())

    def union_atom_indices(self) -> np.ndarray:
        """Merge atom indices from all fragments.

        Returns
        -------
        numpy.ndarray
            Sorted, duplicate-free atom indices.
        """

        if not self.fragments:
            return _frozen(np.empty(0, dtype=np.int64))
        if len(self.fragments) == 1:
            return self.fragments[0].atom_indices
        merged = np.unique(np.concatenate([f.atom_indices for f in self.fragments]))
        return _frozen(merged)

    def union_fragment(self) -> Fragment:
        """Merge atom indices from all fragments into a single fragment.

        An empty sequence yields an empty fragment tagged ``NO_TAG``.
        """

        indices = self.union_atom_indices()
        tag = int(indices[0]) if indices.size else NO_TAG
        return Fragment(self.context, tag, indices)


class FragmentSeqBuilder:
    """A builder that includes all fragments, in insertion order."""

    def __init__(self, context: Context) -> None:
        self._context = context
        self._fragments: List[Fragment] = []

    def add(self, fragment: Fragment) -> "FragmentSeqBuilder":
        self._fragments.append(fragment)
        return self

    def get_seq(self) -> FragmentSeq:
        return FragmentSeq(self._context, self._fragments)


class HashFragmentSeqBuilder:
    """A builder that includes only unique fragments, in insertion order."""

    def __init__(self, context: Context) -> None:
        self._context = context
        self._fragments: List[Fragment] = []
        self._by_hash: Dict[int, List[Fragment]] = {}

    def add(self, fragment: Fragment) -> "HashFragmentSeqBuilder":
        bucket = self._by_hash.setdefault(fragment.hash_code, [])
        for existing in bucket:
            if Fragment.are_equal(existing, fragment):
                return self
        bucket.append(fragment)
        self._fragments.append(fragment)
        return self

    def get_seq(self) -> FragmentSeq:
        return FragmentSeq(self._context, self._fragments)
