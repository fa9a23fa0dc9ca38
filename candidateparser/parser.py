"""Parser for ICE `candidate` attribute lines (RFC 5245 section 15.1).

    candidate-attribute = "candidate" ":" foundation SP component-id SP
                          transport SP priority SP
                          connection-address SP port
                          SP cand-type
                          [SP rel-addr]
                          [SP rel-port]
                          *(SP extension-att-name SP extension-att-value)

The grammar is positional: six mandatory fields, the literal `typ` and the
candidate type, then optional `raddr` / `rport` pairs matched by exact
keyword, then any number of extension pairs kept as raw bytes in input order.

The parser does no I/O and keeps no state between calls.
"""
from __future__ import annotations
from typing import List, Optional, Sequence, Tuple, Union

from .candidates import (
    IceCandidate, Extension, decode_text, encode_text, U16_MAX, U32_MAX, U64_MAX,
)
from .errors import ErrorKind, ParseError

ATTRIBUTE_PREFIX = b"a="
CANDIDATE_LABEL = b"candidate:"
TYP = b"typ"
RADDR = b"raddr"
RPORT = b"rport"

class _Tokens:
    """Left-to-right cursor over the whitespace separated tokens."""

    def __init__(self, tokens: Sequence[bytes]):
        self._tokens = tokens
        self._pos = 0

    def peek(self) -> Optional[bytes]:
        if self._pos < len(self._tokens):
            return self._tokens[self._pos]
        return None

    def take(self, field: str) -> bytes:
        tok = self.peek()
        if tok is None:
            raise ParseError(ErrorKind.MISSING_FIELD, field)
        self._pos += 1
        return tok

    def rest(self) -> Sequence[bytes]:
        out = self._tokens[self._pos:]
        self._pos = len(self._tokens)
        return out


def tokenize(sdp: Union[str, bytes]) -> List[bytes]:
    """Split on ASCII whitespace and strip an optional `a=` / `candidate:` label."""
    if isinstance(sdp, str):
        try:
            raw = encode_text(sdp)
        except UnicodeEncodeError as e:
            # lone surrogates outside the surrogateescape range have no byte form
            raise ParseError(ErrorKind.INVALID_TOKEN, "candidate-attribute", None,
                             f"input cannot be encoded: {e.reason}") from e
    else:
        raw = bytes(sdp)
    tokens = raw.split()
    if tokens:
        first = tokens[0]
        if first.startswith(ATTRIBUTE_PREFIX + CANDIDATE_LABEL):
            first = first[len(ATTRIBUTE_PREFIX):]
        if first.startswith(CANDIDATE_LABEL):
            first = first[len(CANDIDATE_LABEL):]
        if first:
            tokens[0] = first
        else:
            del tokens[0]
    return tokens


def _text(tok: bytes, field: str) -> str:
    # NUL cannot survive a null-terminated string at the C boundary
    if b"\x00" in tok:
        raise ParseError(ErrorKind.INVALID_TOKEN, field, tok,
                         f"invalid {field}: {tok!r} contains a NUL byte")
    return decode_text(tok)


def _uint(tok: bytes, field: str, maximum: int) -> int:
    # bytes.isdigit() is ASCII-only, so signs, underscores and unicode digits fail here
    if not tok.isdigit():
        raise ParseError(ErrorKind.MALFORMED_INTEGER, field, tok)
    value = int(tok)
    if value > maximum:
        raise ParseError(ErrorKind.MALFORMED_INTEGER, field, tok,
                         f"invalid {field}: {tok!r} does not fit in {maximum.bit_length()} bits")
    return value


def _extensions(tokens: Sequence[bytes]) -> Tuple[Extension, ...]:
    if len(tokens) % 2:
        raise ParseError(ErrorKind.DANGLING_EXTENSION_KEY, "extension-att-value", tokens[-1])
    return tuple(Extension(tokens[i], tokens[i + 1]) for i in range(0, len(tokens), 2))


def parse(sdp: Union[str, bytes]) -> IceCandidate:
    """Parse one candidate attribute into an `IceCandidate`.

    Accepts `str` or `bytes`, with or without the `candidate:` label.
    Raises `ParseError` on any deviation from the grammar; there is no
    partial result.
    """
    toks = _Tokens(tokenize(sdp))

    foundation = _text(toks.take("foundation"), "foundation")
    component_id = _uint(toks.take("component-id"), "component-id", U32_MAX)
    transport = _text(toks.take("transport"), "transport")
    priority = _uint(toks.take("priority"), "priority", U64_MAX)
    connection_address = _text(toks.take("connection-address"), "connection-address")
    port = _uint(toks.take("port"), "port", U16_MAX)

    literal = toks.take("typ")
    if literal != TYP:
        raise ParseError(ErrorKind.MISSING_LITERAL, "typ", literal)
    candidate_type = _text(toks.take("cand-type"), "cand-type")

    rel_address = None
    rel_port = None
    if toks.peek() == RADDR:
        toks.take("raddr")
        rel_address = _text(toks.take("rel-address"), "rel-address")
    if toks.peek() == RPORT:
        toks.take("rport")
        rel_port = _uint(toks.take("rel-port"), "rel-port", U16_MAX)

    return IceCandidate(
        foundation=foundation,
        component_id=component_id,
        transport=transport,
        priority=priority,
        connection_address=connection_address,
        port=port,
        candidate_type=candidate_type,
        rel_address=rel_address,
        rel_port=rel_port,
        extensions=_extensions(toks.rest()),
    )


__all__ = ["parse", "tokenize"]
