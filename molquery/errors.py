"""Error types and error payload helpers."""

from __future__ import annotations

from typing import Dict, Optional


class MolQueryError(Exception):
    """Base exception type for molquery.

    Attributes
    ----------
    code
        Stable error identifier.
    message
        Human-readable error message.
    details
        Optional detail payload for debugging.
    """

    def __init__(self, code: str, message: str, details: Optional[object] = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details

    def to_result(self) -> Dict[str, object]:
        """Return a JSON-ready error payload.

        Returns
        -------
        dict
            JSON-ready error payload.
        """
        return error_result(self.code, self.message, self.details)


class ModelError(MolQueryError):
    """Errors raised by the model layer (tables, loading, state store).

    Attributes
    ----------
    code
        Stable error identifier.
    message
        Human-readable error message.
    details
        Optional detail payload for debugging.
    """


class QueryError(MolQueryError):
    """Contract violations raised while building or evaluating queries.

    Attributes
    ----------
    code
        Stable error identifier.
    message
        Human-readable error message.
    details
        Optional detail payload for debugging.
    """


class QueryParseError(QueryError):
    """Errors raised when parsing the textual query grammar.

    ``details`` carries ``position``, ``line``, ``column`` and the offending
    ``text`` so callers can point at the problem.
    """

    @property
    def position(self) -> Optional[int]:
        if isinstance(self.details, dict):
            return self.details.get("position")
        return None


class PdbWriterError(MolQueryError):
    """Errors raised when formatting PDB output.

    Attributes
    ----------
    code
        Stable error identifier.
    message
        Human-readable error message.
    details
        Optional detail payload for debugging.
    """


def error_result(code: str, message: str, details: Optional[object] = None) -> Dict[str, object]:
    """Build an error payload.

    Parameters
    ----------
    code
        Stable error identifier.
    message
        Human-readable summary.
    details
        Optional detail payload for logging or debugging.

    Returns
    -------
    dict
        JSON-ready error payload.
    """

    return {"ok": False, "error": {"code": code, "message": message, "details": details}}
