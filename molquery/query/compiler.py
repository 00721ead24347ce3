"""Compile query expressions into functions over a context.

Every node kind of :mod:`molquery.query.builder` has exactly one compile
function registered in a dispatch table. Compile functions only capture
parameters; all data access happens when the returned function is called.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Tuple, Type

import numpy as np

from molquery.errors import QueryError
from molquery.model.tables import EntityType
from molquery.query import builder as b
from molquery.query.context import Context, Mask
from molquery.query.fragment import (
    COMPLEMENT_TAG,
    Fragment,
    FragmentSeq,
    FragmentSeqBuilder,
    HashFragmentSeqBuilder,
)

logger = logging.getLogger(__name__)

_COMPILERS: Dict[Type[b.Builder], Callable[[b.Builder], b.Query]] = {}


def _compiles(node_type: Type[b.Builder]):
    def register(fn: Callable[[b.Builder], b.Query]) -> Callable[[b.Builder], b.Query]:
        if node_type in _COMPILERS:
            raise QueryError("duplicate_compiler", f"{node_type.__name__} already has a compiler")
        _COMPILERS[node_type] = fn
        return fn

    return register


def compile_node(node: b.Builder) -> b.Query:
    """Compile a single expression node (recursively compiling its inputs).

    Raises
    ------
    QueryError
        If the node kind has no compiler.
    """

    compiler = _COMPILERS.get(type(node))
    if compiler is None:
        raise QueryError("unknown_query", f"No compiler for {type(node).__name__}")
    return compiler(node)


# Helpers


def _single(ctx: Context, indices: np.ndarray, tag: Optional[int] = None) -> FragmentSeq:
    if not indices.size:
        return FragmentSeq.empty(ctx)
    if tag is None:
        tag = int(indices[0])
    return FragmentSeq(ctx, [Fragment.of_array(ctx, tag, indices)])


def _active(ctx: Context, indices: np.ndarray) -> np.ndarray:
    if ctx.is_complete:
        return indices
    return indices[ctx.mask.as_array()[indices]]


def _range_atoms(ctx: Context, start: int, end: int) -> np.ndarray:
    if not ctx.has_range(start, end):
        return np.empty(0, dtype=np.int64)
    return _active(ctx, np.arange(start, end, dtype=np.int64))


def _rows_atoms(ctx: Context, table: object, rows: np.ndarray) -> np.ndarray:
    # rows must be ascending so the concatenated ranges stay sorted
    if not rows.size:
        return np.empty(0, dtype=np.int64)
    starts = table.atom_start_index[rows]
    ends = table.atom_end_index[rows]
    parts = [np.arange(s, e, dtype=np.int64) for s, e in zip(starts, ends)]
    return _active(ctx, np.concatenate(parts))


def _add_rows(ctx: Context, table: object, rows: np.ndarray) -> FragmentSeq:
    result = FragmentSeqBuilder(ctx)
    for row in rows:
        atoms = _range_atoms(ctx, int(table.atom_start_index[row]), int(table.atom_end_index[row]))
        if atoms.size:
            result.add(Fragment(ctx, int(atoms[0]), atoms))
    return result.get_seq()


def _table(ctx: Context, name: str):
    return getattr(ctx.structure, name)


# Leaves


@_compiles(b.Everything)
def _compile_everything(node: b.Everything) -> b.Query:
    return lambda ctx: _single(ctx, ctx.atom_indices)


@_compiles(b.AtomsByProperty)
def _compile_atoms(node: b.AtomsByProperty) -> b.Query:
    column, values = node.column, list(node.values)

    def query(ctx: Context) -> FragmentSeq:
        data = getattr(ctx.structure.atoms, column)
        if column == "element_symbol":
            data = np.char.upper(data)
        match = np.isin(data, values)
        if not ctx.is_complete:
            match &= ctx.mask.as_array()
        result = FragmentSeqBuilder(ctx)
        for i in np.flatnonzero(match):
            result.add(Fragment.of_index(ctx, int(i)))
        return result.get_seq()

    return query


@_compiles(b.AtomsFromIndices)
def _compile_atom_indices(node: b.AtomsFromIndices) -> b.Query:
    requested = np.unique(np.asarray(node.indices, dtype=np.int64))

    def query(ctx: Context) -> FragmentSeq:
        count = ctx.structure.atoms.count
        if requested.size and (requested[0] < 0 or requested[-1] >= count):
            raise QueryError(
                "invalid_index",
                "Atom index outside of the model",
                {"atom_count": count, "min": int(requested[0]), "max": int(requested[-1])},
            )
        return _single(ctx, _active(ctx, requested))

    return query


@_compiles(b.RowsFromIndices)
def _compile_rows_from_indices(node: b.RowsFromIndices) -> b.Query:
    table_name = node.table
    rows = np.unique(np.asarray(node.indices, dtype=np.int64))

    def query(ctx: Context) -> FragmentSeq:
        table = _table(ctx, table_name)
        if rows.size and (rows[0] < 0 or rows[-1] >= table.count):
            raise QueryError(
                "invalid_index",
                f"Row index outside of the {table_name} table",
                {"count": table.count, "min": int(rows[0]), "max": int(rows[-1])},
            )
        return _add_rows(ctx, table, rows)

    return query


def _schema_column(ctx: Context, table_name: str, field: str) -> np.ndarray:
    structure = ctx.structure
    table = _table(ctx, table_name)
    if field == "type" and table_name != "entities":
        return structure.entities.type[table.entity_index]
    return getattr(table, field)


@_compiles(b.RowsBySchema)
def _compile_rows_by_schema(node: b.RowsBySchema) -> b.Query:
    table_name, negate = node.table, node.negate
    schemas = [schema.present() for schema in node.schemas]

    def query(ctx: Context) -> FragmentSeq:
        table = _table(ctx, table_name)
        matched = np.zeros(table.count, dtype=bool)
        columns: Dict[str, np.ndarray] = {}
        for fields in schemas:
            row_match = np.ones(table.count, dtype=bool)
            for field, expected in fields.items():
                if field not in columns:
                    columns[field] = _schema_column(ctx, table_name, field)
                row_match &= columns[field] == expected
            matched |= row_match
        if negate:
            matched = ~matched
        return _add_rows(ctx, table, np.flatnonzero(matched))

    return query


SequenceBound = Tuple[int, Optional[str]]


def _bound(schema: b.ResidueIdSchema, use_auth: bool) -> SequenceBound:
    number = schema.auth_seq_number if use_auth else schema.seq_number
    return int(number), schema.ins_code


def _in_sequence(number: int, ins_code: str, start: SequenceBound, end: SequenceBound) -> bool:
    # a bound without an insertion code covers every insertion of its number
    start_number, start_ins = start
    end_number, end_ins = end
    if start_ins is None:
        if number < start_number:
            return False
    elif (number, ins_code) < (start_number, start_ins):
        return False
    if end_ins is None:
        return number <= end_number
    return (number, ins_code) <= (end_number, end_ins)


@_compiles(b.SequenceRange)
def _compile_sequence(node: b.SequenceRange) -> b.Query:
    entity_id, asym_id = node.entity_id, node.asym_id
    use_auth = node.start.seq_number is None
    start = _bound(node.start, use_auth)
    end = _bound(node.end, use_auth)

    def query(ctx: Context) -> FragmentSeq:
        chain_table = ctx.structure.chains
        residue_table = ctx.structure.residues
        numbers = residue_table.auth_seq_number if use_auth else residue_table.seq_number
        result = FragmentSeqBuilder(ctx)
        chain_match = chain_table.asym_id == asym_id
        if entity_id is not None:
            chain_match &= chain_table.entity_id == entity_id
        for chain in np.flatnonzero(chain_match):
            rows = [
                r
                for r in range(chain_table.residue_start_index[chain], chain_table.residue_end_index[chain])
                if _in_sequence(int(numbers[r]), str(residue_table.ins_code[r]), start, end)
            ]
            atoms = _rows_atoms(ctx, residue_table, np.asarray(rows, dtype=np.int64))
            if atoms.size:
                result.add(Fragment(ctx, int(atoms[0]), atoms))
        return result.get_seq()

    return query


@_compiles(b.HetGroups)
def _compile_het_groups(node: b.HetGroups) -> b.Query:
    def query(ctx: Context) -> FragmentSeq:
        structure = ctx.structure
        residues = structure.residues
        water = structure.entities.entity_type[residues.entity_index] == int(EntityType.WATER)
        rows = np.flatnonzero((residues.is_het != 0) & ~water)
        return _add_rows(ctx, residues, rows)

    return query


@_compiles(b.NonHetPolymer)
def _compile_non_het_polymer(node: b.NonHetPolymer) -> b.Query:
    def query(ctx: Context) -> FragmentSeq:
        structure = ctx.structure
        residues = structure.residues
        polymer = structure.entities.entity_type[residues.entity_index] == int(EntityType.POLYMER)
        rows = np.flatnonzero((residues.is_het == 0) & polymer)
        return _single(ctx, _rows_atoms(ctx, residues, rows))

    return query


@_compiles(b.PolymerNames)
def _compile_polymer_names(node: b.PolymerNames) -> b.Query:
    names, negate = list(node.names), node.negate

    def query(ctx: Context) -> FragmentSeq:
        structure = ctx.structure
        residues = structure.residues
        atoms = structure.atoms
        named = np.zeros(residues.count, dtype=bool)
        named[atoms.residue_index[np.isin(atoms.name, names)]] = True
        polymer = structure.entities.entity_type[residues.entity_index] == int(EntityType.POLYMER)
        rows = np.flatnonzero(polymer & (~named if negate else named))
        return _single(ctx, _rows_atoms(ctx, residues, rows))

    return query


@_compiles(b.AtomsInBox)
def _compile_atoms_in_box(node: b.AtomsInBox) -> b.Query:
    low = np.asarray(node.min, dtype=np.float64)
    high = np.asarray(node.max, dtype=np.float64)

    def query(ctx: Context) -> FragmentSeq:
        indices = ctx.atom_indices
        positions = ctx.structure.atoms.positions[indices]
        inside = np.all((positions >= low) & (positions <= high), axis=1)
        return _single(ctx, indices[inside])

    return query


@_compiles(b.PredicateQuery)
def _compile_predicate(node: b.PredicateQuery) -> b.Query:
    predicate = node.predicate

    def query(ctx: Context) -> FragmentSeq:
        indices = ctx.atom_indices
        match = np.broadcast_to(np.asarray(predicate(ctx, indices), dtype=bool), indices.shape)
        return _single(ctx, indices[match])

    return query


@_compiles(b.QueryFunction)
def _compile_function(node: b.QueryFunction) -> b.Query:
    return node.query


# Combinators


@_compiles(b.Or)
def _compile_or(node: b.Or) -> b.Query:
    queries = [b.to_query(element) for element in node.elements]

    def query(ctx: Context) -> FragmentSeq:
        result = FragmentSeqBuilder(ctx)
        for q in queries:
            for fragment in q(ctx).fragments:
                result.add(fragment)
        return result.get_seq()

    return query


@_compiles(b.Complement)
def _compile_complement(node: b.Complement) -> b.Query:
    what = b.to_query(node.what)

    def query(ctx: Context) -> FragmentSeq:
        excluded = Mask.of_fragments(what(ctx)).as_array()
        indices = ctx.atom_indices
        return _single(ctx, indices[~excluded[indices]], tag=COMPLEMENT_TAG)

    return query


@_compiles(b.Union_)
def _compile_union(node: b.Union_) -> b.Query:
    what = b.to_query(node.what)

    def query(ctx: Context) -> FragmentSeq:
        return _single(ctx, what(ctx).union_atom_indices())

    return query


@_compiles(b.IntersectWith)
def _compile_intersect_with(node: b.IntersectWith) -> b.Query:
    what = b.to_query(node.what)
    where = b.to_query(node.where)

    def query(ctx: Context) -> FragmentSeq:
        source = what(ctx)
        if not source.fragments:
            return source
        allowed = Mask.of_fragments(where(ctx)).as_array()
        result = HashFragmentSeqBuilder(ctx)
        for fragment in source.fragments:
            kept = fragment.atom_indices[allowed[fragment.atom_indices]]
            if kept.size:
                result.add(Fragment(ctx, int(kept[0]), kept))
        return result.get_seq()

    return query


@_compiles(b.Inside)
def _compile_inside(node: b.Inside) -> b.Query:
    what = b.to_query(node.what)
    where = b.to_query(node.where)

    def query(ctx: Context) -> FragmentSeq:
        container = where(ctx)
        if not container.fragments:
            return FragmentSeq.empty(ctx)
        allowed = Mask.of_fragments(container).as_array()
        result = FragmentSeqBuilder(ctx)
        for fragment in what(ctx).fragments:
            if allowed[fragment.atom_indices].all():
                result.add(fragment)
        return result.get_seq()

    return query


def _whole_residue_atoms(ctx: Context, residue_rows: np.ndarray) -> np.ndarray:
    return _rows_atoms(ctx, ctx.structure.residues, np.unique(residue_rows))


@_compiles(b.AmbientResidues)
def _compile_ambient_residues(node: b.AmbientResidues) -> b.Query:
    what = b.to_query(node.what)
    radius = float(node.radius)

    def query(ctx: Context) -> FragmentSeq:
        source = what(ctx)
        result = FragmentSeqBuilder(ctx)
        if not source.fragments:
            return result.get_seq()
        lookup = ctx.tree.create_context_radius(radius)
        residue_index = ctx.structure.atoms.residue_index
        positions = ctx.structure.atoms.positions
        for fragment in source.fragments:
            rows = [residue_index[fragment.atom_indices]]
            for i in fragment.atom_indices:
                x, y, z = positions[i]
                lookup.nearest(x, y, z, radius)
                rows.append(residue_index[lookup.hit_data()])
            atoms = _whole_residue_atoms(ctx, np.concatenate(rows))
            if atoms.size:
                result.add(Fragment(ctx, int(atoms[0]), atoms))
        logger.debug(
            "Ambient residues (r=%.2f) for %d fragments", radius, len(source.fragments)
        )
        return result.get_seq()

    return query


@_compiles(b.WholeResidues)
def _compile_whole_residues(node: b.WholeResidues) -> b.Query:
    what = b.to_query(node.what)

    def query(ctx: Context) -> FragmentSeq:
        residue_index = ctx.structure.atoms.residue_index
        result = HashFragmentSeqBuilder(ctx)
        for fragment in what(ctx).fragments:
            atoms = _whole_residue_atoms(ctx, residue_index[fragment.atom_indices])
            if atoms.size:
                result.add(Fragment(ctx, int(atoms[0]), atoms))
        return result.get_seq()

    return query


@_compiles(b.Flatten)
def _compile_flatten(node: b.Flatten) -> b.Query:
    what = b.to_query(node.what)
    selector = node.selector

    def query(ctx: Context) -> FragmentSeq:
        result = FragmentSeqBuilder(ctx)
        for fragment in what(ctx).fragments:
            for inner in selector(fragment).fragments:
                if inner.context is not ctx:
                    inner = Fragment(ctx, inner.tag, inner.atom_indices)
                result.add(inner)
        return result.get_seq()

    return query


@_compiles(b.Filter)
def _compile_filter(node: b.Filter) -> b.Query:
    what = b.to_query(node.what)
    predicate = node.predicate

    def query(ctx: Context) -> FragmentSeq:
        result = FragmentSeqBuilder(ctx)
        for fragment in what(ctx).fragments:
            if predicate(fragment):
                result.add(fragment)
        return result.get_seq()

    return query
