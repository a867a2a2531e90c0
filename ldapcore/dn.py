"""Distinguished names: parsing, normalised string forms and comparison."""

from __future__ import annotations

from dataclasses import dataclass, field

from .ber import decode_packet

_BACKSLASH = ord("\\")
_EQUALS = ord("=")
_HASH = ord("#")
_SPACE = ord(" ")
_PLUS = ord("+")
_COMMA = ord(",")
_SEMICOLON = ord(";")

# Characters that may follow a backslash literally instead of as a hex pair.
_ESCAPABLE = frozenset(b' "#+,;<=>\\')
# Characters that must always be backslash-escaped in a value.
_MUST_ESCAPE = frozenset(b'"+,;<>\\')
_HEX_DIGITS = frozenset(b"0123456789abcdefABCDEF")


class DNParseError(ValueError):
    """Raised when a string is not a valid distinguished name."""


def _invalid_byte(octet: int) -> ValueError:
    char = chr(octet)
    if char in "'\\":
        quoted = f"'\\{char}'"
    elif 0x20 <= octet < 0x7F:
        quoted = f"'{char}'"
    else:
        quoted = f"'\\x{octet:02x}'"
    return ValueError(f"invalid byte: U+{octet:04X} {quoted}")


def _decode_hex(data: bytes) -> bytes:
    """Decode hex digits, reporting the first bad byte or an odd length."""
    usable = len(data) - len(data) % 2
    for octet in data[:usable]:
        if octet not in _HEX_DIGITS:
            raise _invalid_byte(octet)
    if len(data) % 2:
        if data[-1] not in _HEX_DIGITS:
            raise _invalid_byte(data[-1])
        raise ValueError("odd length hex string")
    return bytes.fromhex(data.decode("ascii"))


@dataclass
class AttributeTypeAndValue:
    """One ``type=value`` pair of a relative distinguished name."""

    type: str
    value: str

    def __str__(self) -> str:
        return self.type.lower() + "=" + self._encode_value()

    def _encode_value(self) -> str:
        raw = self.value.encode("utf-8", "surrogateescape")
        out = bytearray()
        last = len(raw) - 1
        for position, char in enumerate(raw):
            if (position == 0 and char == _SPACE) or char == _HASH:
                out += b"\\" + bytes([char])
            elif position == last and char == _SPACE:
                out += b"\\" + bytes([char])
            elif char in _MUST_ESCAPE:
                out += b"\\" + bytes([char])
            elif char < 0x20 or char > 0x7E:
                out += f"\\{char:02x}".encode("ascii")
            else:
                out.append(char)
        return out.decode("ascii")

    def equal(self, other: AttributeTypeAndValue) -> bool:
        """Same type ignoring case, and exactly the same value."""
        return self.type.casefold() == other.type.casefold() and self.value == other.value

    def equal_fold(self, other: AttributeTypeAndValue) -> bool:
        """Same type and value, both ignoring case."""
        return (
            self.type.casefold() == other.type.casefold()
            and self.value.casefold() == other.value.casefold()
        )


@dataclass
class RelativeDN:
    """A relative distinguished name: one or more attribute pairs joined by ``+``."""

    attributes: list[AttributeTypeAndValue] = field(default_factory=list)

    def __str__(self) -> str:
        return "+".join(sorted(str(attribute) for attribute in self.attributes))

    def _has_all(self, attributes: list[AttributeTypeAndValue], fold: bool) -> bool:
        def same(mine: AttributeTypeAndValue, theirs: AttributeTypeAndValue) -> bool:
            return mine.equal_fold(theirs) if fold else mine.equal(theirs)

        return all(
            any(same(mine, theirs) for mine in self.attributes) for theirs in attributes
        )

    def equal(self, other: RelativeDN) -> bool:
        """Equal regardless of attribute order; attribute types compare without case."""
        if len(self.attributes) != len(other.attributes):
            return False
        return self._has_all(other.attributes, False) and other._has_all(self.attributes, False)

    def equal_fold(self, other: RelativeDN) -> bool:
        """Like :meth:`equal`, but values also compare without case."""
        if len(self.attributes) != len(other.attributes):
            return False
        return self._has_all(other.attributes, True) and other._has_all(self.attributes, True)


@dataclass
class DN:
    """A distinguished name: a sequence of relative distinguished names."""

    rdns: list[RelativeDN] = field(default_factory=list)

    def __str__(self) -> str:
        return ",".join(str(rdn) for rdn in self.rdns)

    def equal(self, other: DN) -> bool:
        """Same number of RDNs, equal position by position."""
        return len(self.rdns) == len(other.rdns) and all(
            mine.equal(theirs) for mine, theirs in zip(self.rdns, other.rdns)
        )

    def equal_fold(self, other: DN) -> bool:
        """Like :meth:`equal`, with values compared without case."""
        return len(self.rdns) == len(other.rdns) and all(
            mine.equal_fold(theirs) for mine, theirs in zip(self.rdns, other.rdns)
        )

    def ancestor_of(self, other: DN) -> bool:
        """True if ``other`` is this DN with at least one more RDN in front."""
        if len(self.rdns) >= len(other.rdns):
            return False
        tail = other.rdns[len(other.rdns) - len(self.rdns):]
        return all(mine.equal(theirs) for mine, theirs in zip(self.rdns, tail))

    def ancestor_of_fold(self, other: DN) -> bool:
        """Like :meth:`ancestor_of`, with values compared without case."""
        if len(self.rdns) >= len(other.rdns):
            return False
        tail = other.rdns[len(other.rdns) - len(self.rdns):]
        return all(mine.equal_fold(theirs) for mine, theirs in zip(self.rdns, tail))


def parse_dn(text: str) -> DN:
    """Parse a distinguished name in its string form; raise DNParseError if malformed."""
    raw = text.encode("utf-8", "surrogateescape")
    length = len(raw)
    rdns: list[RelativeDN] = []
    attributes: list[AttributeTypeAndValue] = []
    buffer = bytearray()
    attribute_type = ""
    escaping = False
    trailing_spaces = 0

    def take() -> str:
        nonlocal trailing_spaces
        chunk = bytes(buffer[: len(buffer) - trailing_spaces])
        buffer.clear()
        trailing_spaces = 0
        return chunk.decode("utf-8", "surrogateescape")

    i = 0
    while i < length:
        char = raw[i]
        if escaping:
            trailing_spaces = 0
            escaping = False
            if char in _ESCAPABLE:
                buffer.append(char)
            else:
                if i + 1 == length:
                    raise DNParseError("got corrupted escaped character")
                try:
                    buffer += _decode_hex(raw[i : i + 2])
                except ValueError as exc:
                    raise DNParseError(f"failed to decode escaped character: {exc}") from exc
                i += 1
        elif char == _BACKSLASH:
            trailing_spaces = 0
            escaping = True
        elif char == _EQUALS:
            attribute_type = take()
            if i + 1 < length and raw[i + 1] == _HASH:
                i += 2
                rest = raw[i:]
                stops = [pos for pos in (rest.find(b","), rest.find(b"+")) if pos >= 0]
                index = min(stops) if stops else -1
                data = rest[:index] if index > 0 else rest
                try:
                    encoded = _decode_hex(data)
                except ValueError as exc:
                    raise DNParseError(f"failed to decode BER encoding: {exc}") from exc
                try:
                    packet = decode_packet(encoded)
                except ValueError as exc:
                    raise DNParseError(f"failed to decode BER packet: {exc}") from exc
                buffer += packet.data
                i += len(data) - 1
        elif char in (_COMMA, _PLUS, _SEMICOLON):
            if not attribute_type:
                raise DNParseError("incomplete type, value pair")
            attributes.append(AttributeTypeAndValue(attribute_type, take()))
            attribute_type = ""
            if char != _PLUS:
                rdns.append(RelativeDN(attributes))
                attributes = []
        elif char == _SPACE and not buffer:
            pass
        else:
            trailing_spaces = trailing_spaces + 1 if char == _SPACE else 0
            buffer.append(char)
        i += 1

    if buffer:
        if not attribute_type:
            raise DNParseError("DN ended with incomplete type, value pair")
        attributes.append(AttributeTypeAndValue(attribute_type, take()))
        rdns.append(RelativeDN(attributes))
    return DN(rdns)