"""Query expressions.

A query expression is an immutable tree of :class:`Builder` nodes. Nodes
only describe *what* to select; :meth:`Builder.compile` turns the tree into
a plain function ``Context -> FragmentSeq`` without touching any data.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from molquery import config
from molquery.errors import QueryError
from molquery.query.context import Context
from molquery.query.fragment import Fragment, FragmentSeq
from molquery.query.schema import AsymIdSchema, EntityIdSchema, ResidueIdSchema

logger = logging.getLogger(__name__)

Query = Callable[[Context], FragmentSeq]
Source = Union[Query, str, "Builder"]
Selector = Callable[[Fragment], FragmentSeq]
FragmentPredicate = Callable[[Fragment], bool]
SchemaLike = Union[EntityIdSchema, Mapping[str, object]]
PointLike = Union[Sequence[float], Mapping[str, float]]


class Builder:
    """Base class of query expression nodes, providing the chaining API."""

    def compile(self) -> Query:
        """Compile the expression into a ``Context -> FragmentSeq`` function."""
        from molquery.query.compiler import compile_node

        query = compile_node(self)
        logger.debug("Compiled query %s", type(self).__name__)
        return query

    def to_query(self) -> Query:
        return self.compile()

    def to_text(self) -> str:
        """Render the expression in the textual query grammar.

        Raises
        ------
        QueryError
            If the expression holds Python callables with no textual form.
        """
        from molquery.query.parser import format_builder

        return format_builder(self)

    def complement(self) -> "Builder":
        return Complement(self)

    def ambient_residues(self, radius: float) -> "Builder":
        return AmbientResidues(self, radius)

    def whole_residues(self) -> "Builder":
        return WholeResidues(self)

    def union(self) -> "Builder":
        """Merge all fragments into one; an empty result stays empty (no fragment)."""
        return Union_(self)

    def inside(self, where: Source) -> "Builder":
        return Inside(self, where)

    def intersect_with(self, where: Source) -> "Builder":
        return IntersectWith(self, where)

    def flatten(self, selector: Union[Selector, "Builder", str]) -> "Builder":
        return Flatten(self, _as_selector(selector))

    def filter(self, predicate: FragmentPredicate) -> "Builder":
        return Filter(self, predicate)

    def modify(self, name: str, *args: object) -> "Builder":
        """Apply a modifier registered with :func:`register_modifier`."""
        factory = _MODIFIERS.get(name)
        if factory is None:
            raise QueryError("unknown_modifier", f"No modifier named '{name}'", name)
        result = factory(self, *args)
        if isinstance(result, Builder):
            return result
        return QueryFunction(to_query(result))


# Leaf nodes


@dataclass(frozen=True)
class Everything(Builder):
    pass


@dataclass(frozen=True)
class AtomsByProperty(Builder):
    column: str
    values: Tuple[object, ...]


@dataclass(frozen=True)
class AtomsFromIndices(Builder):
    indices: Tuple[int, ...]


@dataclass(frozen=True)
class RowsFromIndices(Builder):
    table: str
    indices: Tuple[int, ...]


@dataclass(frozen=True)
class RowsBySchema(Builder):
    table: str
    schemas: Tuple[EntityIdSchema, ...]
    negate: bool = False


@dataclass(frozen=True)
class SequenceRange(Builder):
    entity_id: object
    asym_id: str
    start: ResidueIdSchema
    end: ResidueIdSchema


@dataclass(frozen=True)
class HetGroups(Builder):
    pass


@dataclass(frozen=True)
class NonHetPolymer(Builder):
    pass


@dataclass(frozen=True)
class PolymerNames(Builder):
    names: Tuple[str, ...]
    negate: bool = False


@dataclass(frozen=True)
class AtomsInBox(Builder):
    min: Tuple[float, float, float]
    max: Tuple[float, float, float]


@dataclass(frozen=True)
class PredicateQuery(Builder):
    """Atoms satisfying an algebraic predicate, as a single fragment.

    ``label`` is the textual form, empty when the predicate has none.
    """

    predicate: Callable[[Context, np.ndarray], np.ndarray]
    label: str = ""


@dataclass(frozen=True)
class QueryFunction(Builder):
    query: Query


# Combinators


@dataclass(frozen=True)
class Or(Builder):
    elements: Tuple[Source, ...]


@dataclass(frozen=True)
class Complement(Builder):
    what: Source


@dataclass(frozen=True)
class AmbientResidues(Builder):
    what: Source
    radius: float

    def __post_init__(self) -> None:
        radius = self.radius
        if (
            isinstance(radius, bool)
            or not isinstance(radius, (int, float))
            or not math.isfinite(radius)
            or radius < 0
        ):
            raise QueryError("invalid_radius", "Radius must be a finite non-negative number", radius)


@dataclass(frozen=True)
class WholeResidues(Builder):
    what: Source


@dataclass(frozen=True)
class Union_(Builder):
    what: Source


@dataclass(frozen=True)
class Inside(Builder):
    what: Source
    where: Source


@dataclass(frozen=True)
class IntersectWith(Builder):
    what: Source
    where: Source


@dataclass(frozen=True)
class Flatten(Builder):
    what: Source
    selector: Selector


@dataclass(frozen=True)
class Filter(Builder):
    what: Source
    predicate: FragmentPredicate


class FindSelector:
    """Flatten selector running a query inside each fragment."""

    def __init__(self, source: Source) -> None:
        self.source = source
        self._query = to_query(source)

    def __call__(self, fragment: Fragment) -> FragmentSeq:
        return fragment.find(self._query)

    def __repr__(self) -> str:
        return f"FindSelector({self.source!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FindSelector):
            return NotImplemented
        return self.source == other.source

    def __hash__(self) -> int:
        return hash(self.source)


def _as_selector(selector: Union[Selector, Builder, str]) -> Selector:
    if isinstance(selector, (Builder, str)):
        return FindSelector(selector)
    if not callable(selector):
        raise QueryError("invalid_selector", "Flatten selector must be callable", selector)
    return selector


# Conversion


def to_query(source: Source) -> Query:
    """Turn any query source into a compiled query function.

    Parameters
    ----------
    source
        A :class:`Builder`, query text or an already compiled function.

    Returns
    -------
    Callable
        ``Context -> FragmentSeq`` function.

    Raises
    ------
    QueryError
        If ``source`` is none of the accepted kinds. Text that does not parse
        raises :class:`~molquery.errors.QueryParseError`.
    """

    if isinstance(source, Builder):
        return source.compile()
    if isinstance(source, str):
        return parse(source)
    if callable(source):
        return source
    raise QueryError("invalid_source", f"Cannot build a query from {type(source).__name__}", repr(source))


def build(compile: Callable[[], Query]) -> Builder:
    """Wrap a function producing a compiled query into a builder."""
    return QueryFunction(compile())


def parse(text: str) -> Query:
    """Parse query text and compile it."""
    from molquery.query.parser import parse_builder

    return parse_builder(text).compile()


# Modifier registry

_MODIFIERS: Dict[str, Callable[..., Source]] = {}


def register_modifier(name: str, factory: Callable[..., Source]) -> None:
    """Register a named modifier usable via :meth:`Builder.modify` and in query text.

    Parameters
    ----------
    name
        Identifier for the modifier.
    factory
        Called as ``factory(builder, *args)``; returns a query source.

    Raises
    ------
    QueryError
        If the name is not an identifier, shadows a built-in operation, is
        already registered, or ``factory`` is not callable.
    """

    from molquery.query.parser import BUILTIN_NAMES

    if not isinstance(name, str) or not name.isidentifier() or name.startswith("_"):
        raise QueryError("invalid_modifier", "Modifier name must be a public identifier", name)
    if hasattr(Builder, name) or name in BUILTIN_NAMES:
        raise QueryError("invalid_modifier", f"Modifier '{name}' shadows a built-in operation", name)
    if name in _MODIFIERS:
        raise QueryError("duplicate_modifier", f"Modifier '{name}' is already registered", name)
    if not callable(factory):
        raise QueryError("invalid_modifier", "Modifier factory must be callable", name)
    _MODIFIERS[name] = factory
    logger.debug("Registered query modifier %s", name)


def unregister_modifier(name: str) -> None:
    _MODIFIERS.pop(name, None)


def registered_modifiers() -> Tuple[str, ...]:
    return tuple(sorted(_MODIFIERS))


def lookup_modifier(name: str) -> Optional[Callable[..., Source]]:
    return _MODIFIERS.get(name)


# Constructors


def _schemas(cls: type, ids: Sequence[SchemaLike]) -> Tuple[EntityIdSchema, ...]:
    return tuple(cls.coerce(item) for item in ids)


def _int_tuple(values: Sequence[int], what: str) -> Tuple[int, ...]:
    result = []
    for value in values:
        if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
            raise QueryError("invalid_index", f"{what} must be integers", value)
        result.append(int(value))
    return tuple(result)


def _str_tuple(values: Sequence[str], what: str) -> Tuple[str, ...]:
    for value in values:
        if not isinstance(value, str):
            raise QueryError("invalid_argument", f"{what} must be strings", value)
    return tuple(values)


def atoms_by_element(*elements: str) -> Builder:
    """Atoms whose element symbol matches (case-insensitive), one fragment per atom."""
    return AtomsByProperty("element_symbol", tuple(e.upper() for e in _str_tuple(elements, "Elements")))


def atoms_by_name(*names: str) -> Builder:
    """Atoms by name, one fragment per atom."""
    return AtomsByProperty("name", _str_tuple(names, "Atom names"))


def atoms_by_id(*ids: int) -> Builder:
    """Atoms by id (serial), one fragment per atom."""
    return AtomsByProperty("id", _int_tuple(ids, "Atom ids"))


def residues(*ids: SchemaLike) -> Builder:
    """Residues matching any of the schemas, one fragment per residue."""
    return RowsBySchema("residues", _schemas(ResidueIdSchema, ids))


def chains(*ids: SchemaLike) -> Builder:
    """Chains matching any of the schemas, one fragment per chain."""
    return RowsBySchema("chains", _schemas(AsymIdSchema, ids))


def entities(*ids: SchemaLike) -> Builder:
    """Entities matching any of the schemas, one fragment per entity."""
    return RowsBySchema("entities", _schemas(EntityIdSchema, ids))


def not_entities(*ids: SchemaLike) -> Builder:
    """Entities matching none of the schemas, one fragment per entity."""
    return RowsBySchema("entities", _schemas(EntityIdSchema, ids), negate=True)


def everything() -> Builder:
    return Everything()


def entities_from_indices(indices: Sequence[int]) -> Builder:
    return RowsFromIndices("entities", _int_tuple(indices, "Entity indices"))


def chains_from_indices(indices: Sequence[int]) -> Builder:
    return RowsFromIndices("chains", _int_tuple(indices, "Chain indices"))


def residues_from_indices(indices: Sequence[int]) -> Builder:
    return RowsFromIndices("residues", _int_tuple(indices, "Residue indices"))


def atoms_from_indices(indices: Sequence[int]) -> Builder:
    """All listed active atoms as a single fragment."""
    return AtomsFromIndices(_int_tuple(indices, "Atom indices"))


def sequence(
    entity_id: object, asym_id: str, start_id: SchemaLike, end_id: SchemaLike
) -> Builder:
    """Residues of a chain between two residue ids (inclusive).

    Parameters
    ----------
    entity_id
        Entity id of the chain, or ``None`` for any entity.
    asym_id
        Asym id of the chain.
    start_id, end_id
        Residue ids carrying ``seq_number`` (or ``auth_seq_number``) and
        optionally ``ins_code``.
    """

    start = ResidueIdSchema.coerce(start_id)
    end = ResidueIdSchema.coerce(end_id)
    for bound in (start, end):
        if bound.seq_number is None and bound.auth_seq_number is None:
            raise QueryError(
                "invalid_schema", "Sequence bounds need a sequence number", bound.present()
            )
    if (start.seq_number is None) != (end.seq_number is None):
        raise QueryError(
            "invalid_schema", "Sequence bounds must use the same numbering", [start, end]
        )
    if entity_id is not None and not isinstance(entity_id, str):
        raise QueryError("invalid_schema", "Entity id must be a string", entity_id)
    if not isinstance(asym_id, str):
        raise QueryError("invalid_schema", "Asym id must be a string", asym_id)
    return SequenceRange(entity_id, asym_id, start, end)


def het_groups() -> Builder:
    """Non-water HET residues, one fragment per residue."""
    return HetGroups()


def non_het_polymer() -> Builder:
    """Non-HET residues of polymer entities, as a single fragment."""
    return NonHetPolymer()


def polymer_names(names: Sequence[str], complement: bool = False) -> Builder:
    """Polymer residues holding an atom named in ``names``, as a single fragment.

    With ``complement`` the polymer residues holding none of the names are
    selected instead. Residue membership is decided on the whole model; only
    active atoms end up in the fragment.
    """
    if isinstance(names, str):
        raise QueryError("invalid_argument", "Atom names must be a list of strings", names)
    if not isinstance(complement, bool):
        raise QueryError("invalid_argument", "Complement flag must be a boolean", complement)
    return PolymerNames(_str_tuple(names, "Atom names"), complement)


def cartoons() -> Builder:
    """Polymer residues a cartoon can trace (holding a CA, P or C4' atom)."""
    return polymer_names(config.TRACE_ATOM_NAMES)


def backbone() -> Builder:
    from molquery.query import algebraic

    return algebraic.query(algebraic.backbone, label="backbone()")


def sidechain() -> Builder:
    from molquery.query import algebraic

    return algebraic.query(algebraic.sidechain, label="sidechain()")


def _point(value: PointLike) -> Tuple[float, float, float]:
    if isinstance(value, Mapping):
        try:
            value = (value["x"], value["y"], value["z"])
        except KeyError as exc:
            raise QueryError("invalid_point", "Point needs x, y and z", dict(value)) from exc
    try:
        point = tuple(float(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise QueryError("invalid_point", "Point must hold three numbers", repr(value)) from exc
    if len(point) != 3:
        raise QueryError("invalid_point", "Point must hold three numbers", point)
    return point


def atoms_in_box(min_corner: PointLike, max_corner: PointLike) -> Builder:
    """Active atoms inside the closed box, as a single fragment."""
    return AtomsInBox(_point(min_corner), _point(max_corner))


def or_(*elements: Source) -> Builder:
    """Concatenate the results of several queries, keeping duplicates."""
    return Or(tuple(elements))


def complement(what: Source) -> Builder:
    return Complement(what)


def ambient_residues(what: Source, radius: float) -> Builder:
    return AmbientResidues(what, radius)


def whole_residues(what: Source) -> Builder:
    return WholeResidues(what)


def union(what: Source) -> Builder:
    """One fragment covering all atoms of ``what``, or none when ``what`` is empty."""
    return Union_(what)


def inside(what: Source, where: Source) -> Builder:
    return Inside(what, where)


def intersect_with(what: Source, where: Source) -> Builder:
    return IntersectWith(what, where)


def flatten(what: Source, selector: Union[Selector, Builder, str]) -> Builder:
    return Flatten(what, _as_selector(selector))


def filter_(what: Source, predicate: FragmentPredicate) -> Builder:
    return Filter(what, predicate)


# Shortcuts


def residues_by_name(*names: str) -> Builder:
    return residues(*({"name": name} for name in _str_tuple(names, "Residue names")))


def residues_by_id(*ids: int) -> Builder:
    """Residues by author sequence number."""
    return residues(*({"auth_seq_number": i} for i in _int_tuple(ids, "Residue ids")))


def chains_by_id(*ids: str) -> Builder:
    """Chains by author asym id."""
    return chains(*({"auth_asym_id": i} for i in _str_tuple(ids, "Chain ids")))
