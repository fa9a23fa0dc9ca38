from typing import Optional

PRINTABLE_MIN = 0x20
PRINTABLE_MAX = 0x7E


def display_bytes(data: bytes, replacement: str = "?") -> str:
    """Render raw bytes for humans: printable ASCII as is, anything else as `replacement`."""
    return "".join(
        chr(b) if PRINTABLE_MIN <= b <= PRINTABLE_MAX else replacement
        for b in data
    )


def display_optional(value: Optional[object], missing: str = "-") -> str:
    if value is None:
        return missing
    return value if isinstance(value, str) else str(value)
