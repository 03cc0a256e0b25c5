"""Type-length-value records used by the handshake and data messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum

MAX_CHILDREN = 10
VN3 = 0xFD
MAX_LENGTH = 0xFFFF
PROTOCOL_VERSION = 0x01


class TlvType(IntEnum):
    """Known record types."""

    CLIENT_HELLO = 0x80
    VERSION_TAG = 0x81
    NONCE = 0x82
    PUBLIC_KEY = 0x83

    SERVER_HELLO = 0x90
    HANDSHAKE_SIGNATURE = 0x91

    CERTIFICATE = 0xA0
    DNS_NAME = 0xA1
    SIGNATURE = 0xA2
    LIFETIME = 0xA3

    DATA = 0xC0
    IV = 0xC1
    MAC = 0xC2
    CIPHERTEXT = 0xC3


CONTAINER_TYPES = frozenset(
    {TlvType.CLIENT_HELLO, TlvType.SERVER_HELLO, TlvType.CERTIFICATE, TlvType.DATA}
)


class MalformedTlvError(ValueError):
    """Raised when bytes do not form a well-formed record."""


def _coerce_type(value: int) -> int:
    try:
        return TlvType(value)
    except ValueError:
        return value


def _encode_header(tlv_type: int, length: int) -> bytes:
    if length > MAX_LENGTH:
        raise ValueError(f"record length {length} exceeds {MAX_LENGTH}")
    if length <= VN3 - 1:
        return bytes((tlv_type, length))
    return bytes((tlv_type, VN3)) + length.to_bytes(2, "big")


@dataclass
class Tlv:
    """A record holding either a raw value or up to ten child records."""

    type: int
    value: bytes | None = None
    children: list[Tlv] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.type = _coerce_type(int(self.type))
        if self.value is not None:
            self.value = bytes(self.value)

    @property
    def length(self) -> int:
        """Length of the encoded body, as written in the header."""
        if self.value is not None:
            return len(self.value)
        return sum(
            1 + (3 if child.length > VN3 - 1 else 1) + child.length
            for child in self.children
        )

    def add(self, child: Tlv) -> None:
        """Append a child record."""
        if len(self.children) >= MAX_CHILDREN:
            raise ValueError(f"a record holds at most {MAX_CHILDREN} children")
        self.children.append(child)

    def serialize(self) -> bytes:
        """Encode the record and its children."""
        header = _encode_header(self.type, self.length)
        if self.value is not None:
            return header + self.value
        return header + b"".join(child.serialize() for child in self.children)

    def find(self, tlv_type: int) -> Tlv | None:
        """Return this record, a direct child, or a descendant of the given type."""
        if self.type == tlv_type:
            return self
        for child in self.children:
            if child.type == tlv_type:
                return child
        for child in self.children:
            found = child.find(tlv_type)
            if found is not None:
                return found
        return None


def _parse(data: bytes, start: int, end: int) -> tuple[Tlv, int]:
    if start >= end:
        raise MalformedTlvError("missing type byte")
    tlv_type = data[start]
    pos = start + 1
    if pos >= end:
        raise MalformedTlvError("missing length byte")
    if data[pos] == VN3:
        pos += 1
        if pos + 2 > end:
            raise MalformedTlvError("truncated extended length")
        length = int.from_bytes(data[pos:pos + 2], "big")
        pos += 2
    else:
        length = data[pos]
        pos += 1
    body_end = pos + length
    if body_end > end:
        raise MalformedTlvError("value exceeds available data")

    node = Tlv(tlv_type)
    if tlv_type in CONTAINER_TYPES:
        cursor = pos
        while cursor < body_end:
            if len(node.children) >= MAX_CHILDREN:
                raise MalformedTlvError(f"more than {MAX_CHILDREN} children")
            child, cursor = _parse(data, cursor, body_end)
            node.children.append(child)
    else:
        node.value = bytes(data[pos:body_end])
    return node, body_end


def parse_tlv(data: bytes) -> Tlv:
    """Decode one record from the start of data; trailing bytes are ignored."""
    buffer = bytes(data)
    node, _ = _parse(buffer, 0, len(buffer))
    return node


def format_tlv_bytes(data: bytes) -> str:
    """Describe the records in data as a flat listing of types, lengths and values."""
    buffer = bytes(data)
    total = len(buffer)
    lines: list[str] = []
    pos = 0
    while pos < total:
        tlv_type = buffer[pos]
        lines.append(f"Type: 0x{tlv_type:02x}")
        pos += 1
        if pos >= total:
            lines.append("MALFORMED")
            break
        if buffer[pos] == VN3:
            pos += 1
            if pos + 1 >= total:
                lines.append("MALFORMED")
                break
            length = int.from_bytes(buffer[pos:pos + 2], "big")
            pos += 2
        else:
            length = buffer[pos]
            pos += 1
            if pos + length > total:
                lines.append("MALFORMED")
                break
        lines.append(f"Length: {length}")
        if tlv_type in CONTAINER_TYPES:
            continue
        shown = min(total - pos, length)
        lines.append("".join(f"{byte:02x} " for byte in buffer[pos:pos + shown]))
        pos += shown
    return "".join(line + "\n" for line in lines)