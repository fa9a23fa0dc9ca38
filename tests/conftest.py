from __future__ import annotations

import threading
from typing import Dict, Iterator, Optional

import pytest

from candidateparser.ffi import LibcAllocator

CANONICAL = (
    "candidate:842163049 1 udp 1686052607 1.2.3.4 46154 typ srflx "
    "raddr 10.0.0.17 rport 1337 generation 0 ufrag EEtu network-id 3 network-cost 10"
)
MINIMAL = "candidate:1 1 udp 100 1.1.1.1 1000 typ host"


class CountingAllocator:
    """Real malloc/free that remembers every live block, for leak accounting."""

    def __init__(self, fail_after: Optional[int] = None):
        self._inner = LibcAllocator()
        self.live: Dict[int, int] = {}
        self.mallocs = 0
        self.frees = 0
        self.fail_after = fail_after
        self._lock = threading.Lock()

    def malloc(self, size: int) -> int:
        with self._lock:
            if self.fail_after is not None and self.mallocs >= self.fail_after:
                return 0
            address = self._inner.malloc(size)
            self.mallocs += 1
            self.live[address] = size
            return address

    def free(self, address: int) -> None:
        with self._lock:
            assert address in self.live, f"free of unknown block 0x{address:x}"
            del self.live[address]
            self.frees += 1
            self._inner.free(address)


@pytest.fixture
def allocator() -> Iterator[CountingAllocator]:
    alloc = CountingAllocator()
    yield alloc
    # anything still live at teardown is a test leak; give it back to libc
    for address in list(alloc.live):
        alloc.free(address)


@pytest.fixture
def make_allocator():
    made = []

    def _make(fail_after: Optional[int] = None) -> CountingAllocator:
        alloc = CountingAllocator(fail_after)
        made.append(alloc)
        return alloc

    yield _make
    for alloc in made:
        for address in list(alloc.live):
            alloc.free(address)


@pytest.fixture
def canonical() -> str:
    return CANONICAL


@pytest.fixture
def minimal() -> str:
    return MINIMAL
