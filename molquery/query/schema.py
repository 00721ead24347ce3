"""Identity schemas: exact-match records with optional fields.

An omitted (``None``) field matches anything; every present field must
equal the corresponding column of a row for the row to match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, fields
from typing import Dict, Mapping, Optional, Type, TypeVar, Union

from molquery.errors import QueryError
from molquery.model.tables import EntityType

_CAMEL = re.compile(r"(?<!^)(?=[A-Z])")

_INT_FIELDS = {"seq_number", "auth_seq_number"}

S = TypeVar("S", bound="EntityIdSchema")


def snake_case(name: str) -> str:
    """Convert ``camelCase`` names to ``snake_case``."""
    return _CAMEL.sub("_", name).lower()


@dataclass(frozen=True)
class EntityIdSchema:
    """Identifies entities by id and type label."""

    entity_id: Optional[str] = None
    type: Optional[str] = None

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if item.name in _INT_FIELDS:
                if isinstance(value, bool) or not isinstance(value, int):
                    raise QueryError(
                        "invalid_schema",
                        f"Schema field '{item.name}' must be an integer",
                        {"field": item.name, "value": value},
                    )
            elif item.name == "type" and isinstance(value, EntityType):
                object.__setattr__(self, "type", value.label)
            elif not isinstance(value, str):
                raise QueryError(
                    "invalid_schema",
                    f"Schema field '{item.name}' must be a string",
                    {"field": item.name, "value": value},
                )

    def present(self) -> Dict[str, object]:
        """Return the fields that take part in matching."""
        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }

    @classmethod
    def coerce(cls: Type[S], value: Union["EntityIdSchema", Mapping[str, object]]) -> S:
        """Build a schema of this class from a mapping or another schema.

        Keys may be given in ``snake_case`` or ``camelCase``.

        Raises
        ------
        QueryError
            On unknown fields, fields not valid for this schema, the same
            field given twice with different values, or wrongly typed values.
        """

        if isinstance(value, EntityIdSchema):
            value = value.present()
        if not isinstance(value, Mapping):
            raise QueryError(
                "invalid_schema", f"Expected an identity schema, got {type(value).__name__}", value
            )
        allowed = {item.name for item in fields(cls)}
        kwargs: Dict[str, object] = {}
        for key, item in value.items():
            name = snake_case(str(key))
            if name not in allowed:
                raise QueryError(
                    "invalid_schema",
                    f"Unknown field '{key}' for {cls.__name__}",
                    {"field": key, "allowed": sorted(allowed)},
                )
            if name in kwargs and kwargs[name] != item:
                raise QueryError(
                    "invalid_schema",
                    f"Conflicting values for field '{name}'",
                    {"field": name, "values": [kwargs[name], item]},
                )
            kwargs[name] = item
        return cls(**kwargs)


@dataclass(frozen=True)
class AsymIdSchema(EntityIdSchema):
    """Identifies chains."""

    asym_id: Optional[str] = None
    auth_asym_id: Optional[str] = None


@dataclass(frozen=True)
class ResidueIdSchema(AsymIdSchema):
    """Identifies residues."""

    name: Optional[str] = None
    seq_number: Optional[int] = None
    auth_name: Optional[str] = None
    auth_seq_number: Optional[int] = None
    ins_code: Optional[str] = None
