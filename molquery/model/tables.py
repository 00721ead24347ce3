"""Column tables describing a molecular model.

Every table stores one numpy array per column; row ``i`` of a table is the
``i``-th element of each column. All ranges are half-open ``[start, end)``
over the flat atom, residue and chain arrays.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import IntEnum
from functools import cached_property

import numpy as np

from molquery.errors import ModelError


class EntityType(IntEnum):
    """Kind of an entity."""

    POLYMER = 0
    NON_POLYMER = 1
    WATER = 2
    UNKNOWN = 3

    @property
    def label(self) -> str:
        return _ENTITY_TYPE_LABELS[self]

    @classmethod
    def from_label(cls, label: str) -> "EntityType":
        value = (label or "").strip().lower().replace("_", "-")
        for entity_type, entity_label in _ENTITY_TYPE_LABELS.items():
            if entity_label == value:
                return entity_type
        return cls.UNKNOWN


_ENTITY_TYPE_LABELS = {
    EntityType.POLYMER: "polymer",
    EntityType.NON_POLYMER: "non-polymer",
    EntityType.WATER: "water",
    EntityType.UNKNOWN: "unknown",
}

_INT_COLUMNS = {
    "id",
    "seq_number",
    "auth_seq_number",
    "is_het",
    "entity_type",
    "residue_index",
    "chain_index",
    "entity_index",
    "atom_start_index",
    "atom_end_index",
    "residue_start_index",
    "residue_end_index",
    "chain_start_index",
    "chain_end_index",
}
_FLOAT_COLUMNS = {"x", "y", "z"}


def _as_column(name: str, values: object) -> np.ndarray:
    if name in _INT_COLUMNS:
        column = np.array(values, dtype=np.int64)
    elif name in _FLOAT_COLUMNS:
        column = np.array(values, dtype=np.float64)
    else:
        column = np.asarray([str(v) for v in values], dtype=str)
        if column.size == 0:
            column = np.empty(0, dtype="<U1")
    column = column.reshape(-1)
    column.flags.writeable = False
    return column


class _Table:
    """Shared column normalisation and validation."""

    def __post_init__(self) -> None:
        count = None
        for item in fields(self):
            column = _as_column(item.name, getattr(self, item.name))
            object.__setattr__(self, item.name, column)
            if count is None:
                count = len(column)
            elif len(column) != count:
                raise ModelError(
                    "invalid_table",
                    f"{type(self).__name__} column '{item.name}' has {len(column)} rows, expected {count}",
                    {"table": type(self).__name__, "column": item.name},
                )
        self._check_ranges()

    def _check_ranges(self) -> None:
        for prefix in ("atom", "residue", "chain"):
            start = getattr(self, f"{prefix}_start_index", None)
            end = getattr(self, f"{prefix}_end_index", None)
            if start is None or end is None:
                continue
            if np.any(end < start) or np.any(start < 0):
                raise ModelError(
                    "invalid_table",
                    f"{type(self).__name__} has malformed {prefix} ranges",
                    {"table": type(self).__name__},
                )

    @property
    def count(self) -> int:
        return len(getattr(self, fields(self)[0].name))

    def __len__(self) -> int:
        return self.count


@dataclass(frozen=True, eq=False)
class AtomTable(_Table):
    """Per-atom columns."""

    id: np.ndarray
    name: np.ndarray
    auth_name: np.ndarray
    element_symbol: np.ndarray
    x: np.ndarray
    y: np.ndarray
    z: np.ndarray
    residue_index: np.ndarray
    chain_index: np.ndarray
    entity_index: np.ndarray

    @cached_property
    def positions(self) -> np.ndarray:
        """Return an ``(count, 3)`` array of coordinates."""
        positions = np.column_stack((self.x, self.y, self.z))
        positions.flags.writeable = False
        return positions


@dataclass(frozen=True, eq=False)
class ResidueTable(_Table):
    """Per-residue columns."""

    name: np.ndarray
    seq_number: np.ndarray
    asym_id: np.ndarray
    auth_name: np.ndarray
    auth_seq_number: np.ndarray
    auth_asym_id: np.ndarray
    ins_code: np.ndarray
    entity_id: np.ndarray
    is_het: np.ndarray
    atom_start_index: np.ndarray
    atom_end_index: np.ndarray
    chain_index: np.ndarray
    entity_index: np.ndarray


@dataclass(frozen=True, eq=False)
class ChainTable(_Table):
    """Per-chain columns."""

    asym_id: np.ndarray
    auth_asym_id: np.ndarray
    entity_id: np.ndarray
    atom_start_index: np.ndarray
    atom_end_index: np.ndarray
    residue_start_index: np.ndarray
    residue_end_index: np.ndarray
    entity_index: np.ndarray


@dataclass(frozen=True, eq=False)
class EntityTable(_Table):
    """Per-entity columns."""

    entity_id: np.ndarray
    entity_type: np.ndarray
    type: np.ndarray
    atom_start_index: np.ndarray
    atom_end_index: np.ndarray
    residue_start_index: np.ndarray
    residue_end_index: np.ndarray
    chain_start_index: np.ndarray
    chain_end_index: np.ndarray
