"""Boundary marshaller and release protocol."""

from __future__ import annotations

import ctypes
from concurrent.futures import ThreadPoolExecutor

import pytest

from candidateparser import IceCandidate, parse
from candidateparser.ffi import (
    IceCandidateFFI,
    KeyValuePair,
    c_entry_points,
    free_ice_candidate,
    marshal,
    parse_ice_candidate_sdp,
    release,
    unmarshal,
)

LINES = [
    "candidate:842163049 1 udp 1686052607 1.2.3.4 46154 typ srflx raddr 10.0.0.17 rport 1337 "
    "generation 0 ufrag EEtu network-id 3 network-cost 10",
    "candidate:1 1 udp 100 1.1.1.1 1000 typ host",
    "candidate:2 2 tcp 0 ::1 0 typ relay rport 0",
    "candidate:3 1 UDP 18446744073709551615 host.example 65535 typ prflx raddr 10.0.0.1",
]


def test_struct_layout_order() -> None:
    names = [name for name, _ in IceCandidateFFI._fields_]
    assert names == [
        "foundation", "component_id", "transport", "priority", "connection_address",
        "port", "candidate_type", "rel_addr", "rel_port", "extensions", "has_rel_port",
    ]
    assert [name for name, _ in KeyValuePair._fields_] == ["key", "key_len", "val", "val_len"]


def test_fields_read_off_the_struct(allocator, canonical: str) -> None:
    handle = marshal(parse(canonical), allocator)
    try:
        ffi = handle.contents
        assert ctypes.string_at(ffi.foundation) == b"842163049"
        assert ffi.component_id == 1
        assert ctypes.string_at(ffi.transport) == b"udp"
        assert ffi.priority == 1686052607
        assert ctypes.string_at(ffi.connection_address) == b"1.2.3.4"
        assert ffi.port == 46154
        assert ctypes.string_at(ffi.candidate_type) == b"srflx"
        assert ctypes.string_at(ffi.rel_addr) == b"10.0.0.17"
        assert ffi.rel_port == 1337
        assert ffi.has_rel_port
        assert ffi.extensions.len == 4
        pair = ffi.extensions.values[2]
        assert ctypes.string_at(pair.key, pair.key_len) == b"network-id"
        assert ctypes.string_at(pair.val, pair.val_len) == b"3"
    finally:
        release(handle, allocator)


def test_absent_optionals_use_sentinels(allocator, minimal: str) -> None:
    handle = marshal(parse(minimal), allocator)
    try:
        ffi = handle.contents
        assert not ffi.rel_addr
        assert ffi.rel_port == 0
        assert not ffi.has_rel_port
        assert ffi.extensions.len == 0
        assert not ffi.extensions.values
    finally:
        release(handle, allocator)


def test_rel_port_zero_is_distinguishable(allocator) -> None:
    handle = marshal(parse(LINES[2]), allocator)
    try:
        assert handle.contents.rel_port == 0
        assert handle.contents.has_rel_port
        assert unmarshal(handle).rel_port == 0
    finally:
        release(handle, allocator)


@pytest.mark.parametrize("line", LINES)
def test_boundary_reproduces_record(allocator, line: str) -> None:
    record = parse(line)
    handle = marshal(record, allocator)
    try:
        assert unmarshal(handle) == record
    finally:
        release(handle, allocator)


def test_extension_bytes_with_nul_survive(allocator) -> None:
    record = parse(b"candidate:1 1 udp 100 1.1.1.1 1000 typ host k\x00ey va\x00l\xff")
    handle = marshal(record, allocator)
    try:
        pair = handle.contents.extensions.values[0]
        assert pair.key_len == 4
        assert ctypes.string_at(pair.key, pair.key_len) == b"k\x00ey"
        assert ctypes.string_at(pair.val, pair.val_len) == b"va\x00l\xff"
        assert unmarshal(handle) == record
    finally:
        release(handle, allocator)


def test_non_utf8_text_survives(allocator) -> None:
    record = parse(b"candidate:f\xe9 1 udp 100 1.1.1.1 1000 typ host")
    handle = marshal(record, allocator)
    try:
        assert ctypes.string_at(handle.contents.foundation) == b"f\xe9"
        assert unmarshal(handle) == record
    finally:
        release(handle, allocator)


@pytest.mark.parametrize("line", LINES)
def test_release_frees_every_allocation(allocator, line: str) -> None:
    handle = marshal(parse(line), allocator)
    assert allocator.live
    release(handle, allocator)
    assert allocator.live == {}
    assert allocator.frees == allocator.mallocs


def test_allocation_count_for_canonical(allocator, canonical: str) -> None:
    """struct + 5 strings + pairs array + 4 keys + 4 values"""
    handle = marshal(parse(canonical), allocator)
    assert allocator.mallocs == 15
    release(handle, allocator)
    assert allocator.frees == 15


@pytest.mark.parametrize("fail_after", range(0, 15))
def test_allocation_failure_unwinds(make_allocator, canonical: str, fail_after: int) -> None:
    alloc = make_allocator(fail_after=fail_after)
    with pytest.raises(MemoryError):
        marshal(parse(canonical), alloc)
    assert alloc.live == {}


def test_release_null_is_noop(allocator) -> None:
    release(None, allocator)
    release(ctypes.POINTER(IceCandidateFFI)(), allocator)
    release(0, allocator)
    assert allocator.frees == 0


def test_release_accepts_raw_address(allocator, minimal: str) -> None:
    handle = marshal(parse(minimal), allocator)
    address = ctypes.cast(handle, ctypes.c_void_p).value
    release(address, allocator)
    assert allocator.live == {}


def test_unmarshal_null_raises() -> None:
    with pytest.raises(ValueError):
        unmarshal(None)


def test_parse_entry_point_returns_null_on_failure(allocator) -> None:
    handle = parse_ice_candidate_sdp("candidate:1 1 udp abc 1.1.1.1 1000 typ host", allocator)
    assert not handle
    assert allocator.mallocs == 0
    assert not parse_ice_candidate_sdp(None, allocator)


def test_parse_entry_point_null_for_unencodable_text(allocator) -> None:
    assert not parse_ice_candidate_sdp("candidate:\ud800 1 udp 1 1.1.1.1 1 typ host", allocator)
    assert allocator.mallocs == 0


def test_hand_built_record_at_limits_crosses_intact(allocator) -> None:
    record = IceCandidate("f", 2**32 - 1, "udp", 2**64 - 1, "1.1.1.1", 65535, "host",
                          rel_address="10.0.0.1", rel_port=65535)
    handle = marshal(record, allocator)
    try:
        ffi = handle.contents
        assert (ffi.component_id, ffi.priority, ffi.port, ffi.rel_port) == (
            2**32 - 1, 2**64 - 1, 65535, 65535)
        assert unmarshal(handle) == record
    finally:
        release(handle, allocator)
    assert allocator.live == {}


def test_out_of_range_record_never_reaches_the_boundary(allocator) -> None:
    with pytest.raises(ValueError):
        marshal(IceCandidate("f", 2**32 + 1, "udp", 2**64 + 7, "1.1.1.1", 70000, "host",
                             rel_port=65536), allocator)
    with pytest.raises(ValueError):
        marshal(IceCandidate("fo\x00und", 1, "udp", 1, "1.1.1.1", 1, "host"), allocator)
    assert allocator.mallocs == 0


def test_parse_entry_point_round_trip(allocator, canonical: str) -> None:
    handle = parse_ice_candidate_sdp(canonical.encode("ascii"), allocator)
    assert handle
    try:
        assert unmarshal(handle) == parse(canonical)
    finally:
        free_ice_candidate(handle, allocator)
    assert allocator.live == {}


def test_default_allocator_round_trip(canonical: str) -> None:
    handle = parse_ice_candidate_sdp(canonical)
    try:
        assert unmarshal(handle).rel_port == 1337
    finally:
        release(handle)


def test_c_function_pointers(allocator, canonical: str) -> None:
    entry = c_entry_points(allocator)
    address = entry.parse_ice_candidate_sdp(canonical.encode("ascii"))
    assert address
    assert unmarshal(address) == parse(canonical)
    entry.free_ice_candidate(address)
    assert allocator.live == {}

    assert entry.parse_ice_candidate_sdp(b"candidate:1 1 udp") is None


def test_concurrent_parse_and_release(allocator, canonical: str) -> None:
    def work(_):
        handle = parse_ice_candidate_sdp(canonical, allocator)
        try:
            return unmarshal(handle)
        finally:
            release(handle, allocator)

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(work, range(64)))
    assert all(r == results[0] for r in results)
    assert allocator.live == {}
