from __future__ import annotations
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MISSING_FIELD = "missing-field"
    MALFORMED_INTEGER = "malformed-integer"
    MISSING_LITERAL = "missing-literal"
    DANGLING_EXTENSION_KEY = "dangling-extension-key"
    INVALID_TOKEN = "invalid-token"


class ParseError(ValueError):
    """Raised when a candidate line does not match the grammar.

    `kind` tells the failure apart for diagnostics, `field` names the grammar
    field being read and `token` holds the offending raw token, if any.
    """

    def __init__(self, kind: ErrorKind, field: Optional[str] = None,
                 token: Optional[bytes] = None, message: Optional[str] = None):
        self.kind = kind
        self.field = field
        self.token = token
        super().__init__(message or _default_message(kind, field, token))


def _default_message(kind: ErrorKind, field: Optional[str], token: Optional[bytes]) -> str:
    if kind is ErrorKind.MISSING_FIELD:
        return f"expected {field}, reached end of input"
    if kind is ErrorKind.MALFORMED_INTEGER:
        return f"invalid {field}: {token!r} is not an unsigned base-10 integer of the right size"
    if kind is ErrorKind.MISSING_LITERAL:
        return f"expected literal {field!r}, got {token!r}"
    if kind is ErrorKind.DANGLING_EXTENSION_KEY:
        return f"extension key {token!r} has no value"
    return f"invalid {field}: {token!r}"


__all__ = ["ErrorKind", "ParseError"]
