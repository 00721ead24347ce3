"""Textual query grammar.

A query is a call chain mirroring the builder API, for example::

    atoms_by_element("FE").ambient_residues(5).whole_residues()
    residues({name: "HIS", asym_id: "A"}).inside(chains_by_id("A"))
    or(het_groups(), atomsByName('CA')).union()

Names may be written in ``snake_case`` or ``camelCase``. Arguments are
numbers, single- or double-quoted strings, ``null``, ``true``, ``false``,
identity schemas ``{field: value, ...}``, lists ``[...]`` or nested queries.

Parsing resolves every name and argument into a :class:`Builder`; no model
data is touched, so all errors surface before evaluation.
"""

from __future__ import annotations

import inspect
import json
import logging
import re
from functools import partial
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from lark import Lark, Token, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

from molquery.errors import QueryError, QueryParseError
from molquery.query import builder as b
from molquery.query.schema import EntityIdSchema, snake_case

logger = logging.getLogger(__name__)

GRAMMAR = r"""
start: chain

chain: call ("." call)*

call: NAME "(" ")"
    | NAME "(" value ("," value)* ")"

?value: chain
      | SIGNED_NUMBER                  -> number
      | ESCAPED_STRING                 -> dq_string
      | SINGLE_QUOTED_STRING           -> sq_string
      | "null"                         -> null
      | "true"                         -> true
      | "false"                        -> false
      | "{" "}"                        -> empty_schema
      | "{" pair ("," pair)* "}"       -> schema
      | "[" "]"                        -> empty_array
      | "[" value ("," value)* "]"     -> array

pair: (NAME | ESCAPED_STRING) ":" value

NAME: /[A-Za-z_][A-Za-z0-9_]*/
SINGLE_QUOTED_STRING: /'[^'\n]*'/

%import common.ESCAPED_STRING
%import common.SIGNED_NUMBER
%import common.WS
%ignore WS
"""

_INT_RE = re.compile(r"[+-]?\d+")

_parser = Lark(GRAMMAR, parser="lalr", propagate_positions=True)


class _Call:
    """One ``name(args)`` element of a chain, with its source position."""

    def __init__(self, name: Token, args: Tuple[object, ...]) -> None:
        self.name = str(name)
        self.args = args
        self.position = name.start_pos
        self.line = name.line
        self.column = name.column


class _Chain:
    def __init__(self, calls: Tuple[_Call, ...]) -> None:
        self.calls = calls


class _Schema:
    def __init__(self, pairs: Tuple[Tuple[str, object, Token], ...]) -> None:
        self.pairs = pairs


@v_args(inline=True)
class _AstBuilder(Transformer):
    """Turns the parse tree into plain chain/call/value objects."""

    def start(self, chain):
        return chain

    def chain(self, *calls):
        return _Chain(calls)

    def call(self, name, *args):
        return _Call(name, args)

    def number(self, token):
        text = str(token)
        if _INT_RE.fullmatch(text):
            return int(text)
        return float(text)

    def dq_string(self, token):
        return json.loads(str(token))

    def sq_string(self, token):
        return str(token)[1:-1]

    def null(self):
        return None

    def true(self):
        return True

    def false(self):
        return False

    def empty_schema(self):
        return _Schema(())

    def schema(self, *pairs):
        return _Schema(pairs)

    def pair(self, key, value):
        name = json.loads(str(key)) if key.type == "ESCAPED_STRING" else str(key)
        return (name, value, key)

    def empty_array(self):
        return []

    def array(self, *items):
        return list(items)


CONSTRUCTORS: Dict[str, Callable[..., b.Builder]] = {
    "atoms_by_element": b.atoms_by_element,
    "atoms_by_name": b.atoms_by_name,
    "atoms_by_id": b.atoms_by_id,
    "residues": b.residues,
    "chains": b.chains,
    "entities": b.entities,
    "not_entities": b.not_entities,
    "everything": b.everything,
    "entities_from_indices": b.entities_from_indices,
    "chains_from_indices": b.chains_from_indices,
    "residues_from_indices": b.residues_from_indices,
    "atoms_from_indices": b.atoms_from_indices,
    "sequence": b.sequence,
    "het_groups": b.het_groups,
    "non_het_polymer": b.non_het_polymer,
    "polymer_names": b.polymer_names,
    "cartoons": b.cartoons,
    "backbone": b.backbone,
    "sidechain": b.sidechain,
    "atoms_in_box": b.atoms_in_box,
    "or": b.or_,
    "complement": b.complement,
    "ambient_residues": b.ambient_residues,
    "whole_residues": b.whole_residues,
    "union": b.union,
    "inside": b.inside,
    "intersect_with": b.intersect_with,
    "flatten": b.flatten,
    "residues_by_name": b.residues_by_name,
    "residues_by_id": b.residues_by_id,
    "chains_by_id": b.chains_by_id,
}

MODIFIERS = frozenset(
    {
        "complement",
        "ambient_residues",
        "whole_residues",
        "union",
        "inside",
        "intersect_with",
        "flatten",
    }
)

BUILTIN_NAMES = frozenset(CONSTRUCTORS) | MODIFIERS


def _error(code: str, message: str, text: str, position: int, line: int, column: int) -> QueryParseError:
    start = max(position, 0)
    return QueryParseError(
        code,
        f"{message} at line {line}, column {column}",
        {"position": position, "line": line, "column": column, "text": text[start : start + 20]},
    )


def _call_error(call: _Call, code: str, message: str, text: str) -> QueryParseError:
    return _error(code, message, text, call.position, call.line, call.column)


class _Resolver:
    """Resolves parsed chains into builder expressions."""

    def __init__(self, text: str) -> None:
        self.text = text

    def value(self, value: object, call: _Call) -> object:
        if isinstance(value, _Chain):
            return self.chain(value)
        if isinstance(value, list):
            return [self.value(item, call) for item in value]
        if isinstance(value, _Schema):
            result: Dict[str, object] = {}
            for name, item, key in value.pairs:
                if name in result:
                    raise _error(
                        "invalid_schema",
                        f"Duplicate schema field '{name}'",
                        self.text,
                        key.start_pos,
                        key.line,
                        key.column,
                    )
                result[name] = self.value(item, call)
            return result
        return value

    def apply(
        self,
        fn: Callable[..., object],
        args: List[object],
        call: _Call,
        signature_of: Optional[Callable[..., object]] = None,
        bound: Tuple[object, ...] = (),
    ) -> object:
        try:
            inspect.signature(signature_of or fn).bind(*bound, *args)
        except TypeError as exc:
            raise _call_error(
                call, "invalid_arguments", f"Invalid arguments for '{call.name}': {exc}", self.text
            ) from exc
        try:
            return fn(*args)
        except QueryParseError:
            raise
        except QueryError as exc:
            raise _call_error(
                call, exc.code, f"Invalid arguments for '{call.name}': {exc.message}", self.text
            ) from exc

    def chain(self, chain: _Chain) -> b.Builder:
        first = chain.calls[0]
        name = snake_case(first.name)
        constructor = CONSTRUCTORS.get(name)
        if constructor is None:
            raise _call_error(first, "unknown_function", f"Unknown query '{first.name}'", self.text)
        current = self.apply(constructor, [self.value(a, first) for a in first.args], first)
        for call in chain.calls[1:]:
            name = snake_case(call.name)
            args = [self.value(a, call) for a in call.args]
            factory = b.lookup_modifier(name)
            if name in MODIFIERS:
                current = self.apply(getattr(current, name), args, call)
            elif factory is not None:
                current = self.apply(
                    partial(current.modify, name), args, call, signature_of=factory, bound=(current,)
                )
            else:
                raise _call_error(call, "unknown_modifier", f"Unknown modifier '{call.name}'", self.text)
        return current


def parse_builder(text: str) -> b.Builder:
    """Parse query text into a builder expression.

    Parameters
    ----------
    text
        Query text.

    Returns
    -------
    Builder
        Uncompiled expression.

    Raises
    ------
    QueryParseError
        On syntax errors, unknown names or invalid arguments. ``details``
        carries the position, line, column and offending text.
    """

    if not isinstance(text, str):
        raise QueryError("invalid_source", "Query text must be a string", repr(text))
    try:
        tree = _parser.parse(text)
        chain = _AstBuilder().transform(tree)
    except UnexpectedInput as exc:
        position = getattr(exc, "pos_in_stream", None)
        if position is None or position < 0:
            position = len(text)
        line = getattr(exc, "line", -1)
        column = getattr(exc, "column", -1)
        raise _error("parse_error", "Unexpected input", text, position, line, column) from exc
    except VisitError as exc:
        raise QueryParseError("parse_error", f"Invalid literal: {exc.orig_exc}", {"text": text}) from exc
    builder = _Resolver(text).chain(chain)
    logger.debug("Parsed query text: %s", text)
    return builder


# Formatting


def _format_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, b.Builder):
        return format_builder(value)
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return repr(value)
    if isinstance(value, EntityIdSchema):
        value = value.present()
    if isinstance(value, Mapping):
        return "{" + ", ".join(f"{k}: {_format_value(v)}" for k, v in value.items()) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_format_value(v) for v in value) + "]"
    raise QueryError("not_textual", f"{type(value).__name__} has no textual form", repr(value))


def _format_source(source: b.Source) -> str:
    if isinstance(source, str):
        return source.strip()
    if isinstance(source, b.Builder):
        return format_builder(source)
    raise QueryError("not_textual", "Compiled queries have no textual form", repr(source))


def _call(name: str, *args: object) -> str:
    return f"{name}({', '.join(_format_value(a) for a in args)})"


_ATOM_COLUMNS = {"element_symbol": "atoms_by_element", "name": "atoms_by_name", "id": "atoms_by_id"}


def format_builder(node: b.Builder) -> str:
    """Render a builder expression as query text.

    Raises
    ------
    QueryError
        If the expression holds Python callables (filters, custom selectors,
        compiled queries or unlabelled predicates).
    """

    if isinstance(node, b.Everything):
        return "everything()"
    if isinstance(node, b.AtomsByProperty):
        return _call(_ATOM_COLUMNS[node.column], *node.values)
    if isinstance(node, b.AtomsFromIndices):
        return _call("atoms_from_indices", list(node.indices))
    if isinstance(node, b.RowsFromIndices):
        return _call(f"{node.table}_from_indices", list(node.indices))
    if isinstance(node, b.RowsBySchema):
        name = "not_entities" if node.negate else node.table
        return _call(name, *node.schemas)
    if isinstance(node, b.SequenceRange):
        return _call("sequence", node.entity_id, node.asym_id, node.start, node.end)
    if isinstance(node, b.HetGroups):
        return "het_groups()"
    if isinstance(node, b.NonHetPolymer):
        return "non_het_polymer()"
    if isinstance(node, b.PolymerNames):
        return _call("polymer_names", list(node.names), node.negate)
    if isinstance(node, b.AtomsInBox):
        return _call("atoms_in_box", list(node.min), list(node.max))
    if isinstance(node, b.PredicateQuery) and node.label:
        return node.label
    if isinstance(node, b.Or):
        return f"or({', '.join(_format_source(e) for e in node.elements)})"
    if isinstance(node, b.Complement):
        return f"{_format_source(node.what)}.complement()"
    if isinstance(node, b.AmbientResidues):
        return f"{_format_source(node.what)}.ambient_residues({node.radius!r})"
    if isinstance(node, b.WholeResidues):
        return f"{_format_source(node.what)}.whole_residues()"
    if isinstance(node, b.Union_):
        return f"{_format_source(node.what)}.union()"
    if isinstance(node, b.Inside):
        return f"{_format_source(node.what)}.inside({_format_source(node.where)})"
    if isinstance(node, b.IntersectWith):
        return f"{_format_source(node.what)}.intersect_with({_format_source(node.where)})"
    if isinstance(node, b.Flatten) and isinstance(node.selector, b.FindSelector):
        return f"{_format_source(node.what)}.flatten({_format_source(node.selector.source)})"
    raise QueryError("not_textual", f"{type(node).__name__} has no textual form", repr(node))
