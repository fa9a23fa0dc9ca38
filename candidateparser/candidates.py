from __future__ import annotations
from dataclasses import dataclass, field
import ipaddress
from typing import Optional, Tuple, List, Dict, Any, NamedTuple, Union

from .util import display_bytes

TEXT_ENCODING = "utf-8"
TEXT_ERRORS = "surrogateescape"

TRANSPORT_UDP = "udp"

CANDIDATE_TYPE_HOST = "host"
CANDIDATE_TYPE_SRFLX = "srflx"
CANDIDATE_TYPE_PRFLX = "prflx"
CANDIDATE_TYPE_RELAY = "relay"
KNOWN_CANDIDATE_TYPES = (
    CANDIDATE_TYPE_HOST,
    CANDIDATE_TYPE_SRFLX,
    CANDIDATE_TYPE_PRFLX,
    CANDIDATE_TYPE_RELAY,
)

COMPONENT_RTP = 1
COMPONENT_RTCP = 2

U16_MAX = 0xFFFF
U32_MAX = 0xFFFFFFFF
U64_MAX = 0xFFFFFFFFFFFFFFFF

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


def decode_text(raw: bytes) -> str:
    return raw.decode(TEXT_ENCODING, TEXT_ERRORS)


def encode_text(text: str) -> bytes:
    return text.encode(TEXT_ENCODING, TEXT_ERRORS)


def _check_uint(name: str, value: int, maximum: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an int, got {type(value).__name__}")
    if not 0 <= value <= maximum:
        raise ValueError(f"{name}={value} is outside 0..{maximum}")


def _check_text(name: str, value: str) -> None:
    if not isinstance(value, str):
        raise ValueError(f"{name} must be a str, got {type(value).__name__}")
    if "\x00" in value:
        raise ValueError(f"{name}={value!r} contains a NUL character")
    try:
        encode_text(value)
    except UnicodeEncodeError as e:
        raise ValueError(f"{name}={value!r} cannot be encoded: {e.reason}") from e


class Extension(NamedTuple):
    key: bytes
    value: bytes


@dataclass(frozen=True)
class IceCandidate:
    foundation: str
    component_id: int          # 1 = RTP, 2 = RTCP
    transport: str             # case preserved, see is_udp
    priority: int
    connection_address: str    # IP literal or FQDN, not validated
    port: int
    candidate_type: str        # "host" | "srflx" | "prflx" | "relay" | token
    rel_address: Optional[str] = None
    rel_port: Optional[int] = None
    extensions: Tuple[Extension, ...] = field(default_factory=tuple)

    def __post_init__(self):
        # same limits the parser enforces, so a hand-built record cannot wrap
        # or truncate when it is marshalled
        _check_uint("component_id", self.component_id, U32_MAX)
        _check_uint("priority", self.priority, U64_MAX)
        _check_uint("port", self.port, U16_MAX)
        if self.rel_port is not None:
            _check_uint("rel_port", self.rel_port, U16_MAX)
        for name in ("foundation", "transport", "connection_address", "candidate_type"):
            _check_text(name, getattr(self, name))
        if self.rel_address is not None:
            _check_text("rel_address", self.rel_address)

        exts = tuple(Extension(bytes(k), bytes(v)) for k, v in self.extensions)
        object.__setattr__(self, "extensions", exts)

    @property
    def is_udp(self) -> bool:
        return self.transport.lower() == TRANSPORT_UDP

    @property
    def is_rtp(self) -> bool:
        return self.component_id == COMPONENT_RTP

    @property
    def is_rtcp(self) -> bool:
        return self.component_id == COMPONENT_RTCP

    def ip_address(self) -> Optional[IPAddress]:
        """The connection address as an `ipaddress` object, or None for FQDNs and junk."""
        try:
            return ipaddress.ip_address(self.connection_address)
        except ValueError:
            return None

    def get_extension(self, key: bytes) -> Optional[bytes]:
        for ext in self.extensions:
            if ext.key == key:
                return ext.value
        return None

    def get_extensions(self, key: bytes) -> List[bytes]:
        return [ext.value for ext in self.extensions if ext.key == key]

    def to_sdp_bytes(self) -> bytes:
        """
        Serialises back to a `candidate:` attribute value. Parsing the result
        yields a record equal to this one; whitespace is normalised to single spaces.
        """
        parts = [
            b"candidate:" + encode_text(self.foundation),
            str(self.component_id).encode("ascii"),
            encode_text(self.transport),
            str(self.priority).encode("ascii"),
            encode_text(self.connection_address),
            str(self.port).encode("ascii"),
            b"typ",
            encode_text(self.candidate_type),
        ]
        if self.rel_address is not None:
            parts += [b"raddr", encode_text(self.rel_address)]
        if self.rel_port is not None:
            parts += [b"rport", str(self.rel_port).encode("ascii")]
        for key, value in self.extensions:
            parts += [key, value]
        return b" ".join(parts)

    def to_sdp(self) -> str:
        return decode_text(self.to_sdp_bytes())

    def __str__(self) -> str:
        return self.to_sdp()

    def to_public(self, replacement: str = "?") -> Dict[str, Any]:
        return {
            "foundation": self.foundation,
            "component_id": self.component_id,
            "transport": self.transport,
            "priority": self.priority,
            "connection_address": self.connection_address,
            "port": self.port,
            "candidate_type": self.candidate_type,
            "rel_address": self.rel_address,
            "rel_port": self.rel_port,
            "extensions": [
                [display_bytes(k, replacement), display_bytes(v, replacement)]
                for k, v in self.extensions
            ],
        }


__all__ = [
    "IceCandidate", "Extension",
    "TRANSPORT_UDP", "KNOWN_CANDIDATE_TYPES",
    "CANDIDATE_TYPE_HOST", "CANDIDATE_TYPE_SRFLX", "CANDIDATE_TYPE_PRFLX", "CANDIDATE_TYPE_RELAY",
    "COMPONENT_RTP", "COMPONENT_RTCP",
]
