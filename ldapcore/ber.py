"""Basic Encoding Rules (BER) packets as used on the LDAP wire."""

from __future__ import annotations

import io
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, BinaryIO, Iterator


class ClassType(IntEnum):
    """The class bits of a BER identifier octet."""

    UNIVERSAL = 0x00
    APPLICATION = 0x40
    CONTEXT = 0x80
    PRIVATE = 0xC0


class TagType(IntEnum):
    """The primitive/constructed bit of a BER identifier octet."""

    PRIMITIVE = 0x00
    CONSTRUCTED = 0x20


class Tag(IntEnum):
    """Universal tag numbers."""

    EOC = 0
    BOOLEAN = 1
    INTEGER = 2
    BIT_STRING = 3
    OCTET_STRING = 4
    NULL = 5
    OBJECT_IDENTIFIER = 6
    OBJECT_DESCRIPTOR = 7
    EXTERNAL = 8
    REAL = 9
    ENUMERATED = 10
    EMBEDDED_PDV = 11
    UTF8_STRING = 12
    RELATIVE_OID = 13
    SEQUENCE = 16
    SET = 17
    NUMERIC_STRING = 18
    PRINTABLE_STRING = 19
    T61_STRING = 20
    VIDEOTEX_STRING = 21
    IA5_STRING = 22
    UTC_TIME = 23
    GENERALIZED_TIME = 24
    GRAPHIC_STRING = 25
    VISIBLE_STRING = 26
    GENERAL_STRING = 27
    UNIVERSAL_STRING = 28
    CHARACTER_STRING = 29
    BMP_STRING = 30


_STRING_TAGS = frozenset(
    {
        Tag.OCTET_STRING,
        Tag.OBJECT_DESCRIPTOR,
        Tag.UTF8_STRING,
        Tag.NUMERIC_STRING,
        Tag.PRINTABLE_STRING,
        Tag.T61_STRING,
        Tag.VIDEOTEX_STRING,
        Tag.IA5_STRING,
        Tag.UTC_TIME,
        Tag.GENERALIZED_TIME,
        Tag.GRAPHIC_STRING,
        Tag.VISIBLE_STRING,
        Tag.GENERAL_STRING,
        Tag.UNIVERSAL_STRING,
        Tag.CHARACTER_STRING,
        Tag.BMP_STRING,
    }
)


@dataclass
class Packet:
    """A BER element: identifier, decoded value, raw content and children."""

    class_type: int = ClassType.UNIVERSAL
    tag_type: int = TagType.PRIMITIVE
    tag: int = Tag.EOC
    value: Any = None
    description: str = ""
    data: bytes = b""
    children: list[Packet] = field(default_factory=list)

    def append_child(self, child: Packet) -> None:
        """Add a child element and its encoding to this packet's content."""
        self.children.append(child)
        self.data += child.to_bytes()

    def to_bytes(self) -> bytes:
        """Return the complete BER encoding of this packet."""
        if self.children:
            content = b"".join(child.to_bytes() for child in self.children)
        else:
            content = bytes(self.data)
        return (
            _encode_identifier(self.class_type, self.tag_type, self.tag)
            + _encode_length(len(content))
            + content
        )

    def __str__(self) -> str:
        return "\n".join(self._lines(0))

    def _lines(self, depth: int) -> Iterator[str]:
        indent = " " * depth
        class_name = _enum_name(ClassType, self.class_type)
        type_name = _enum_name(TagType, self.tag_type)
        if self.class_type == ClassType.UNIVERSAL:
            tag_name = _enum_name(Tag, self.tag)
        else:
            tag_name = str(self.tag)
        yield (
            f"{indent}{class_name}({int(self.class_type):#04x}) "
            f"{type_name}({int(self.tag_type):#04x}) {tag_name}: "
            f"{self.value!r} (len={len(self.data)}) '{self.description}'"
        )
        for child in self.children:
            if child is None:
                yield f"{indent} <nil>"
            else:
                yield from child._lines(depth + 1)


def _enum_name(enum_type: type[IntEnum], value: int) -> str:
    try:
        return enum_type(value).name.replace("_", " ").title()
    except ValueError:
        return f"Unknown({value})"


def _encode_identifier(class_type: int, tag_type: int, tag: int) -> bytes:
    if tag < 0:
        raise ValueError(f"invalid negative tag {tag}")
    first = int(class_type) | int(tag_type)
    if tag < 0x1F:
        return bytes([first | tag])
    groups = []
    remaining = int(tag)
    while True:
        groups.append(remaining & 0x7F)
        remaining >>= 7
        if not remaining:
            break
    groups.reverse()
    return bytes([first | 0x1F, *(g | 0x80 for g in groups[:-1]), groups[-1]])


def _encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    body = length.to_bytes((length.bit_length() + 7) // 8, "big")
    return bytes([0x80 | len(body)]) + body


def _encode_integer(value: int) -> bytes:
    magnitude = value if value >= 0 else ~value
    return value.to_bytes(magnitude.bit_length() // 8 + 1, "big", signed=True)


def _encode_value(value: Any) -> bytes:
    if isinstance(value, bool):
        return b"\xff" if value else b"\x00"
    if isinstance(value, int):
        return _encode_integer(value)
    if isinstance(value, str):
        return value.encode("utf-8", "surrogateescape")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    return b""


def _decode_oid(content: bytes) -> str:
    arcs = []
    current = 0
    for octet in content:
        current = (current << 7) | (octet & 0x7F)
        if not octet & 0x80:
            arcs.append(current)
            current = 0
    if not arcs:
        return ""
    first = arcs[0]
    if first < 40:
        head = [0, first]
    elif first < 80:
        head = [1, first - 40]
    else:
        head = [2, first - 80]
    return ".".join(str(arc) for arc in head + arcs[1:])


def _decode_value(tag: int, content: bytes) -> Any:
    if tag == Tag.BOOLEAN:
        if len(content) != 1:
            raise ValueError("boolean content must be exactly one octet")
        return content[0] != 0
    if tag in (Tag.INTEGER, Tag.ENUMERATED):
        return int.from_bytes(content, "big", signed=True)
    if tag in _STRING_TAGS:
        return content.decode("utf-8", "surrogateescape")
    if tag == Tag.OBJECT_IDENTIFIER:
        return _decode_oid(content)
    return None


def encode(class_type: int, tag_type: int, tag: int, value: Any, description: str) -> Packet:
    """Create a packet; primitive packets get ``value`` encoded as their content."""
    packet = Packet(class_type, tag_type, tag, value, description)
    if tag_type == TagType.PRIMITIVE and value is not None:
        packet.data = _encode_value(value)
    return packet


def new_string(class_type: int, tag_type: int, tag: int, value: str | bytes, description: str) -> Packet:
    """Create a string packet whose content is the string's UTF-8 bytes."""
    packet = Packet(class_type, tag_type, tag, value, description)
    packet.data = _encode_value(value)
    return packet


def new_integer(class_type: int, tag_type: int, tag: int, value: int, description: str) -> Packet:
    """Create an integer packet with minimal two's-complement content."""
    packet = Packet(class_type, tag_type, tag, int(value), description)
    packet.data = _encode_integer(int(value))
    return packet


def new_boolean(class_type: int, tag_type: int, tag: int, value: bool, description: str) -> Packet:
    """Create a boolean packet."""
    packet = Packet(class_type, tag_type, tag, bool(value), description)
    packet.data = b"\xff" if value else b"\x00"
    return packet


def new_sequence(description: str) -> Packet:
    """Create an empty universal SEQUENCE."""
    return encode(ClassType.UNIVERSAL, TagType.CONSTRUCTED, Tag.SEQUENCE, None, description)


def _read_exact(stream: BinaryIO, count: int) -> bytes:
    chunks = []
    remaining = count
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            raise EOFError("unexpected end of BER data")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def _read_byte(stream: BinaryIO) -> int:
    return _read_exact(stream, 1)[0]


def _read_length(stream: BinaryIO) -> int | None:
    octet = _read_byte(stream)
    if octet < 0x80:
        return octet
    if octet == 0x80:
        return None
    if octet == 0xFF:
        raise ValueError("reserved BER length octet")
    return int.from_bytes(_read_exact(stream, octet & 0x7F), "big")


def _is_end_of_contents(packet: Packet) -> bool:
    return (
        packet.class_type == ClassType.UNIVERSAL
        and packet.tag_type == TagType.PRIMITIVE
        and packet.tag == Tag.EOC
        and not packet.data
    )


def _read_packet(stream: BinaryIO, first: int) -> Packet:
    class_type = ClassType(first & 0xC0)
    tag_type = TagType(first & 0x20)
    tag = first & 0x1F
    if tag == 0x1F:
        tag = 0
        while True:
            octet = _read_byte(stream)
            tag = (tag << 7) | (octet & 0x7F)
            if not octet & 0x80:
                break
    length = _read_length(stream)
    packet = Packet(class_type, tag_type, tag)

    if length is None:
        if tag_type == TagType.PRIMITIVE:
            raise ValueError("indefinite length used with a primitive type")
        while True:
            child = _read_packet(stream, _read_byte(stream))
            if _is_end_of_contents(child):
                return packet
            packet.append_child(child)

    content = _read_exact(stream, length)
    if tag_type == TagType.CONSTRUCTED:
        inner = io.BytesIO(content)
        while inner.tell() < length:
            try:
                child = _read_packet(inner, _read_byte(inner))
            except EOFError as exc:
                raise ValueError("child element exceeds its parent's length") from exc
            packet.append_child(child)
    else:
        packet.data = content
        if class_type == ClassType.UNIVERSAL:
            packet.value = _decode_value(tag, content)
    return packet


def read_packet(stream: BinaryIO) -> Packet:
    """Read one packet from a binary stream.

    Raises EOFError when the stream ends before a whole packet was read,
    and ValueError when the data is malformed.
    """
    first = stream.read(1)
    if not first:
        raise EOFError("end of BER data")
    return _read_packet(stream, first[0])


def decode_packet(data: bytes) -> Packet:
    """Decode the first packet in ``data``; raise ValueError if it is incomplete or malformed."""
    try:
        return read_packet(io.BytesIO(bytes(data)))
    except EOFError as exc:
        raise ValueError(str(exc)) from exc