"""C-compatible representation of a parsed candidate.

`marshal` copies an `IceCandidate` into memory obtained from the C runtime
allocator, laid out as `IceCandidateFFI`. Nothing on the Python side keeps a
reference to that memory afterwards: the returned handle is owned by the
caller, and `release` is the only way to give it back. Call `release` exactly
once for every non-NULL handle. Releasing twice, or touching a handle after
releasing it, is undefined behaviour, exactly as it would be in C.

C declarations of the layout:

    typedef struct {
      const uint8_t *key;
      size_t key_len;
      const uint8_t *val;
      size_t val_len;
    } KeyValuePair;

    typedef struct {
      const KeyValuePair *values;
      size_t len;
    } KeyValueMap;

    typedef struct {
      const char *foundation;
      uint32_t component_id;
      const char *transport;
      uint64_t priority;
      const char *connection_address;
      uint16_t port;
      const char *candidate_type;
      const char *rel_addr;      /* NULL when absent */
      uint16_t rel_port;         /* 0 when absent, see has_rel_port */
      KeyValueMap extensions;    /* values is NULL when len == 0 */
      bool has_rel_port;
    } IceCandidateFFI;
"""
from __future__ import annotations
import ctypes
import ctypes.util
import logging
import os
from functools import lru_cache
from typing import List, NamedTuple, Optional, Protocol, Union

from .candidates import IceCandidate, Extension, decode_text, encode_text
from .errors import ParseError
from .parser import parse

logger = logging.getLogger("candidateparser.ffi")


class KeyValuePair(ctypes.Structure):
    _fields_ = [
        ("key", ctypes.POINTER(ctypes.c_uint8)),
        ("key_len", ctypes.c_size_t),
        ("val", ctypes.POINTER(ctypes.c_uint8)),
        ("val_len", ctypes.c_size_t),
    ]


class KeyValueMap(ctypes.Structure):
    _fields_ = [
        ("values", ctypes.POINTER(KeyValuePair)),
        ("len", ctypes.c_size_t),
    ]


class IceCandidateFFI(ctypes.Structure):
    # field order is ABI; only ever append
    _fields_ = [
        ("foundation", ctypes.POINTER(ctypes.c_char)),
        ("component_id", ctypes.c_uint32),
        ("transport", ctypes.POINTER(ctypes.c_char)),
        ("priority", ctypes.c_uint64),
        ("connection_address", ctypes.POINTER(ctypes.c_char)),
        ("port", ctypes.c_uint16),
        ("candidate_type", ctypes.POINTER(ctypes.c_char)),
        ("rel_addr", ctypes.POINTER(ctypes.c_char)),
        ("rel_port", ctypes.c_uint16),
        ("extensions", KeyValueMap),
        ("has_rel_port", ctypes.c_bool),
    ]


CandidateHandle = ctypes.POINTER(IceCandidateFFI)
HandleLike = Union[CandidateHandle, int, None]

_STRING_FIELDS = (
    "foundation",
    "transport",
    "connection_address",
    "candidate_type",
    "rel_addr",
)


class Allocator(Protocol):
    def malloc(self, size: int) -> int: ...
    def free(self, address: int) -> None: ...


class LibcAllocator:
    """malloc/free from the C runtime, so a C caller could free with the same allocator."""

    def __init__(self, libc: Optional[ctypes.CDLL] = None):
        self._libc = libc or _load_libc()
        self._libc.malloc.argtypes = [ctypes.c_size_t]
        self._libc.malloc.restype = ctypes.c_void_p
        self._libc.free.argtypes = [ctypes.c_void_p]
        self._libc.free.restype = None

    def malloc(self, size: int) -> int:
        return self._libc.malloc(size) or 0

    def free(self, address: int) -> None:
        self._libc.free(address)


def _load_libc() -> ctypes.CDLL:
    if os.name == "nt":
        return ctypes.cdll.msvcrt
    # find_library may come back empty in minimal images; dlopen(NULL) still exposes libc
    return ctypes.CDLL(ctypes.util.find_library("c"))


@lru_cache(maxsize=None)
def default_allocator() -> LibcAllocator:
    return LibcAllocator()


class _Arena:
    """Allocations for one handle under construction, unwound if building fails."""

    def __init__(self, allocator: Allocator):
        self.allocator = allocator
        self.addresses: List[int] = []

    def alloc(self, size: int) -> int:
        address = self.allocator.malloc(size)
        if not address:
            raise MemoryError(f"allocator returned NULL for {size} bytes")
        self.addresses.append(address)
        return address

    def copy(self, data: bytes) -> int:
        # one spare byte: NUL terminator for strings, harmless for pointer+length buffers
        address = self.alloc(len(data) + 1)
        ctypes.memmove(address, data, len(data))
        ctypes.memset(address + len(data), 0, 1)
        return address

    def unwind(self) -> None:
        for address in reversed(self.addresses):
            self.allocator.free(address)
        self.addresses = []


def _address(ptr) -> int:
    return ctypes.cast(ptr, ctypes.c_void_p).value or 0


def _as_handle(handle: HandleLike) -> CandidateHandle:
    if handle is None:
        return CandidateHandle()
    if isinstance(handle, int):
        return ctypes.cast(handle, CandidateHandle)
    return handle


def _text_ptr(arena: _Arena, text: str):
    return ctypes.cast(arena.copy(encode_text(text)), ctypes.POINTER(ctypes.c_char))


def _bytes_ptr(arena: _Arena, data: bytes):
    return ctypes.cast(arena.copy(data), ctypes.POINTER(ctypes.c_uint8))


def marshal(candidate: IceCandidate, allocator: Optional[Allocator] = None) -> CandidateHandle:
    """Copy `candidate` into a freshly allocated `IceCandidateFFI` and return a pointer to it.

    The caller owns the result and must pass it to `release` exactly once.
    Raises MemoryError if the allocator fails; nothing is leaked in that case.
    """
    allocator = allocator or default_allocator()
    arena = _Arena(allocator)
    try:
        address = arena.alloc(ctypes.sizeof(IceCandidateFFI))
        ctypes.memset(address, 0, ctypes.sizeof(IceCandidateFFI))
        ffi = IceCandidateFFI.from_address(address)

        ffi.foundation = _text_ptr(arena, candidate.foundation)
        ffi.component_id = candidate.component_id
        ffi.transport = _text_ptr(arena, candidate.transport)
        ffi.priority = candidate.priority
        ffi.connection_address = _text_ptr(arena, candidate.connection_address)
        ffi.port = candidate.port
        ffi.candidate_type = _text_ptr(arena, candidate.candidate_type)
        if candidate.rel_address is not None:
            ffi.rel_addr = _text_ptr(arena, candidate.rel_address)
        if candidate.rel_port is not None:
            ffi.rel_port = candidate.rel_port
            ffi.has_rel_port = True

        count = len(candidate.extensions)
        if count:
            pairs_address = arena.alloc(ctypes.sizeof(KeyValuePair) * count)
            pairs = (KeyValuePair * count).from_address(pairs_address)
            for pair, (key, value) in zip(pairs, candidate.extensions):
                pair.key = _bytes_ptr(arena, key)
                pair.key_len = len(key)
                pair.val = _bytes_ptr(arena, value)
                pair.val_len = len(value)
            ffi.extensions.values = ctypes.cast(pairs_address, ctypes.POINTER(KeyValuePair))
            ffi.extensions.len = count
    except BaseException:
        arena.unwind()
        raise

    logger.debug("Marshalled candidate %s into handle 0x%x (%d allocations)",
                 candidate.foundation, address, len(arena.addresses))
    return ctypes.cast(address, CandidateHandle)


def release(handle: HandleLike, allocator: Optional[Allocator] = None) -> None:
    """Free a handle returned by `marshal` and everything it points to. NULL is a no-op."""
    handle = _as_handle(handle)
    if not handle:
        return
    allocator = allocator or default_allocator()
    ffi = handle.contents

    for name in _STRING_FIELDS:
        ptr = getattr(ffi, name)
        if ptr:
            allocator.free(_address(ptr))

    exts = ffi.extensions
    if exts.values:
        for i in range(exts.len):
            pair = exts.values[i]
            if pair.key:
                allocator.free(_address(pair.key))
            if pair.val:
                allocator.free(_address(pair.val))
        allocator.free(_address(exts.values))

    address = _address(handle)
    allocator.free(address)
    logger.debug("Released handle 0x%x", address)


def unmarshal(handle: HandleLike) -> IceCandidate:
    """Read a live handle back into an `IceCandidate`. Does not release it."""
    handle = _as_handle(handle)
    if not handle:
        raise ValueError("cannot read a NULL candidate handle")
    ffi = handle.contents

    extensions = []
    for i in range(ffi.extensions.len):
        pair = ffi.extensions.values[i]
        extensions.append(Extension(
            ctypes.string_at(pair.key, pair.key_len),
            ctypes.string_at(pair.val, pair.val_len),
        ))

    return IceCandidate(
        foundation=decode_text(ctypes.string_at(ffi.foundation)),
        component_id=ffi.component_id,
        transport=decode_text(ctypes.string_at(ffi.transport)),
        priority=ffi.priority,
        connection_address=decode_text(ctypes.string_at(ffi.connection_address)),
        port=ffi.port,
        candidate_type=decode_text(ctypes.string_at(ffi.candidate_type)),
        rel_address=decode_text(ctypes.string_at(ffi.rel_addr)) if ffi.rel_addr else None,
        rel_port=ffi.rel_port if ffi.has_rel_port else None,
        extensions=tuple(extensions),
    )


def parse_ice_candidate_sdp(sdp: Union[str, bytes, None],
                            allocator: Optional[Allocator] = None) -> CandidateHandle:
    """Parse and marshal in one step. Any parse failure yields a NULL handle."""
    if sdp is None:
        logger.debug("Returning NULL handle: no input")
        return CandidateHandle()
    try:
        candidate = parse(sdp)
    except ParseError as e:
        logger.debug("Returning NULL handle: %s (%s)", e, e.kind.value)
        return CandidateHandle()
    return marshal(candidate, allocator)


def free_ice_candidate(handle: HandleLike, allocator: Optional[Allocator] = None) -> None:
    release(handle, allocator)


PARSE_FUNC = ctypes.CFUNCTYPE(ctypes.c_void_p, ctypes.c_char_p)
FREE_FUNC = ctypes.CFUNCTYPE(None, ctypes.c_void_p)


class EntryPoints(NamedTuple):
    parse_ice_candidate_sdp: PARSE_FUNC
    free_ice_candidate: FREE_FUNC


def c_entry_points(allocator: Optional[Allocator] = None) -> EntryPoints:
    """C function pointers for a host embedding the interpreter.

        const IceCandidateFFI *parse_ice_candidate_sdp(const char *sdp);
        void free_ice_candidate(const IceCandidateFFI *candidate);

    The returned objects must stay referenced for as long as C code may call them.
    """
    def _parse(sdp):
        handle = parse_ice_candidate_sdp(sdp, allocator)
        return _address(handle) if handle else None

    def _free(address):
        release(address, allocator)

    return EntryPoints(PARSE_FUNC(_parse), FREE_FUNC(_free))


__all__ = [
    "IceCandidateFFI", "KeyValuePair", "KeyValueMap", "CandidateHandle",
    "Allocator", "LibcAllocator", "default_allocator",
    "marshal", "release", "unmarshal",
    "parse_ice_candidate_sdp", "free_ice_candidate", "c_entry_points",
]
