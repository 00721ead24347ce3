"""Algebraic atom predicates.

Selectors and predicates are vectorised: they take a context and an array
of atom indices and return one value (selectors) or one boolean
(predicates) per index.
"""

from __future__ import annotations

import operator
from typing import Callable

import numpy as np

from molquery import config
from molquery.model.tables import EntityType
from molquery.query.builder import Builder, PredicateQuery
from molquery.query.context import Context

Predicate = Callable[[Context, np.ndarray], np.ndarray]
Selector = Callable[[Context, np.ndarray], np.ndarray]


def not_(a: Predicate) -> Predicate:
    return lambda ctx, i: ~a(ctx, i)


def and_(a: Predicate, b: Predicate) -> Predicate:
    return lambda ctx, i: a(ctx, i) & b(ctx, i)


def or_(a: Predicate, b: Predicate) -> Predicate:
    return lambda ctx, i: a(ctx, i) | b(ctx, i)


def _compare(op: Callable[[object, object], object]) -> Callable[[Selector, Selector], Predicate]:
    def make(a: Selector, b: Selector) -> Predicate:
        return lambda ctx, i: np.asarray(op(a(ctx, i), b(ctx, i)), dtype=bool)

    return make


equal = _compare(operator.eq)
not_equal = _compare(operator.ne)
greater = _compare(operator.gt)
lesser = _compare(operator.lt)
greater_equal = _compare(operator.ge)
lesser_equal = _compare(operator.le)


def in_range(s: Selector, a: float, b: float) -> Predicate:
    """Values of ``s`` within the closed interval ``[a, b]``."""
    return lambda ctx, i: (s(ctx, i) >= a) & (s(ctx, i) <= b)


# Selectors


def value(v: object) -> Selector:
    return lambda ctx, i: v


def residue_seq_number(ctx: Context, i: np.ndarray) -> np.ndarray:
    structure = ctx.structure
    return structure.residues.seq_number[structure.atoms.residue_index[i]]


def residue_name(ctx: Context, i: np.ndarray) -> np.ndarray:
    structure = ctx.structure
    return structure.residues.name[structure.atoms.residue_index[i]]


def element_symbol(ctx: Context, i: np.ndarray) -> np.ndarray:
    return np.char.upper(ctx.structure.atoms.element_symbol[i])


def atom_name(ctx: Context, i: np.ndarray) -> np.ndarray:
    return ctx.structure.atoms.name[i]


def entity_type(ctx: Context, i: np.ndarray) -> np.ndarray:
    structure = ctx.structure
    return structure.entities.entity_type[structure.atoms.entity_index[i]]


# Predicates


def _is_polymer(ctx: Context, i: np.ndarray) -> np.ndarray:
    return entity_type(ctx, i) == int(EntityType.POLYMER)


def _is_backbone_name(ctx: Context, i: np.ndarray) -> np.ndarray:
    return np.isin(atom_name(ctx, i), sorted(config.BACKBONE_ATOM_NAMES))


backbone: Predicate = and_(_is_polymer, _is_backbone_name)
sidechain: Predicate = and_(_is_polymer, not_(_is_backbone_name))


def query(p: Predicate, label: str = "") -> Builder:
    """Select the active atoms satisfying ``p`` as a single fragment."""
    return PredicateQuery(p, label)
