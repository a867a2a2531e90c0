"""Search filters: compiling the string form to BER packets and back."""

from __future__ import annotations

from enum import IntEnum

from .ber import ClassType, Packet, Tag, TagType, encode, new_boolean, new_string
from .errors import (
    ERROR_FILTER_COMPILE,
    ERROR_FILTER_DECOMPILE,
    LDAPError,
    new_error,
)


class FilterChoice(IntEnum):
    """Context tags of the Filter CHOICE."""

    AND = 0
    OR = 1
    NOT = 2
    EQUALITY_MATCH = 3
    SUBSTRINGS = 4
    GREATER_OR_EQUAL = 5
    LESS_OR_EQUAL = 6
    PRESENT = 7
    APPROX_MATCH = 8
    EXTENSIBLE_MATCH = 9

    @property
    def description(self) -> str:
        """Human readable name of the choice."""
        return _FILTER_DESCRIPTIONS[self]


class SubstringChoice(IntEnum):
    """Context tags of the parts of a substring filter."""

    INITIAL = 0
    ANY = 1
    FINAL = 2

    @property
    def description(self) -> str:
        """Human readable name of the choice."""
        return _SUBSTRING_DESCRIPTIONS[self]


class MatchingRuleAssertion(IntEnum):
    """Context tags of the fields of a MatchingRuleAssertion."""

    MATCHING_RULE = 1
    TYPE = 2
    MATCH_VALUE = 3
    DN_ATTRIBUTES = 4

    @property
    def description(self) -> str:
        """Human readable name of the field."""
        return _ASSERTION_DESCRIPTIONS[self]


_FILTER_DESCRIPTIONS = {
    FilterChoice.AND: "And",
    FilterChoice.OR: "Or",
    FilterChoice.NOT: "Not",
    FilterChoice.EQUALITY_MATCH: "Equality Match",
    FilterChoice.SUBSTRINGS: "Substrings",
    FilterChoice.GREATER_OR_EQUAL: "Greater Or Equal",
    FilterChoice.LESS_OR_EQUAL: "Less Or Equal",
    FilterChoice.PRESENT: "Present",
    FilterChoice.APPROX_MATCH: "Approx Match",
    FilterChoice.EXTENSIBLE_MATCH: "Extensible Match",
}

_SUBSTRING_DESCRIPTIONS = {
    SubstringChoice.INITIAL: "Substrings Initial",
    SubstringChoice.ANY: "Substrings Any",
    SubstringChoice.FINAL: "Substrings Final",
}

_ASSERTION_DESCRIPTIONS = {
    MatchingRuleAssertion.MATCHING_RULE: "Matching Rule Assertion Matching Rule",
    MatchingRuleAssertion.TYPE: "Matching Rule Assertion Type",
    MatchingRuleAssertion.MATCH_VALUE: "Matching Rule Assertion Match Value",
    MatchingRuleAssertion.DN_ATTRIBUTES: "Matching Rule Assertion DN Attributes",
}

_ANY = b"*"
_HEX_DIGITS = b"0123456789abcdefABCDEF"
_MUST_ESCAPE = frozenset(b"()\\*\x00")

_STATE_ATTR = 0
_STATE_MATCHING_RULE = 1
_STATE_CONDITION = 2


def _compile_error(message: str) -> LDAPError:
    return new_error(ERROR_FILTER_COMPILE, message)


def _decode_rune(data: bytes, pos: int) -> tuple[str | None, int]:
    """Decode one UTF-8 character at ``pos``; None marks invalid data or the end."""
    if pos >= len(data):
        return None, 0
    lead = data[pos]
    if lead < 0x80:
        return chr(lead), 1
    if 0xC2 <= lead <= 0xDF:
        size = 2
    elif 0xE0 <= lead <= 0xEF:
        size = 3
    elif 0xF0 <= lead <= 0xF4:
        size = 4
    else:
        return None, 1
    try:
        char = bytes(data[pos : pos + size]).decode("utf-8")
    except UnicodeDecodeError:
        return None, 1
    if char == "\ufffd":
        return None, size
    return char, size


def _invalid_hex_byte(octet: int) -> ValueError:
    char = chr(octet)
    if char.isprintable():
        return ValueError(f"encoding/hex: invalid byte: U+{octet:04X} '{char}'")
    return ValueError(f"encoding/hex: invalid byte: U+{octet:04X}")


def _decode_hex_pair(pair: bytes) -> int:
    for octet in pair:
        if octet not in _HEX_DIGITS:
            raise _invalid_hex_byte(octet)
    return int(pair.decode("ascii"), 16)


def _to_bytes(data: str | bytes) -> bytes:
    if isinstance(data, str):
        return data.encode("utf-8", "surrogateescape")
    return bytes(data)


def _text(data: bytes) -> str:
    return bytes(data).decode("utf-8", "surrogateescape")


def _escape_value(value: bytes) -> str:
    return "".join(
        f"\\{octet:02x}" if octet > 0x7F or octet in _MUST_ESCAPE else chr(octet)
        for octet in bytes(value)
    )


def decode_escaped_symbols(data: str | bytes) -> bytes:
    """Turn ``\\xx`` hex escapes into the bytes they stand for."""
    raw = _to_bytes(data)
    out = bytearray()
    offset = 0
    pos = 0
    while pos < len(raw):
        char, width = _decode_rune(raw, pos)
        if char is None:
            raise _compile_error(f"ldap: error reading rune at position {offset}")
        start = pos
        pos += width
        if char == "\\":
            pair = raw[pos : pos + 2]
            if not pair:
                raise _compile_error("ldap: invalid characters for escape in filter: EOF")
            if len(pair) == 1:
                raise _compile_error("ldap: missing characters for escape in filter")
            pos += 2
            try:
                out.append(_decode_hex_pair(pair))
            except ValueError as exc:
                raise _compile_error(
                    f"ldap: invalid characters for escape in filter: {exc}"
                ) from exc
        else:
            out += raw[start:pos]
        offset += width
    return bytes(out)


def compile_filter(text: str | bytes) -> Packet:
    """Compile a filter in its string form into a BER packet."""
    raw = _to_bytes(text)
    if not raw or raw[0] != ord("("):
        raise _compile_error("ldap: filter does not start with an '('")
    packet, pos = _compile(raw, 1)
    if pos > len(raw):
        raise _compile_error("ldap: unexpected end of filter")
    if pos < len(raw):
        raise _compile_error(
            "ldap: finished compiling filter with extra at end: " + _text(raw[pos:])
        )
    return packet


def _compile_set(raw: bytes, pos: int, parent: Packet) -> int:
    while pos < len(raw) and raw[pos] == ord("("):
        child, pos = _compile(raw, pos + 1)
        parent.append_child(child)
    if pos == len(raw):
        raise _compile_error("ldap: unexpected end of filter")
    return pos + 1


def _new_filter(choice: FilterChoice) -> Packet:
    return encode(ClassType.CONTEXT, TagType.CONSTRUCTED, choice, None, choice.description)


def _compile(raw: bytes, pos: int) -> tuple[Packet, int]:
    char, width = _decode_rune(raw, pos)
    if char is None:
        raise _compile_error(f"ldap: error reading rune at position {pos}")
    if char == "(":
        packet, new_pos = _compile(raw, pos + width)
        return packet, new_pos + 1
    if char == "&" or char == "|":
        packet = _new_filter(FilterChoice.AND if char == "&" else FilterChoice.OR)
        return packet, _compile_set(raw, pos + width, packet)
    if char == "!":
        packet = _new_filter(FilterChoice.NOT)
        child, new_pos = _compile(raw, pos + width)
        packet.append_child(child)
        return packet, new_pos
    return _compile_item(raw, pos)


def _compile_item(raw: bytes, pos: int) -> tuple[Packet, int]:
    length = len(raw)
    state = _STATE_ATTR
    attribute = bytearray()
    matching_rule = bytearray()
    condition = bytearray()
    dn_attributes = False
    choice: FilterChoice | None = None
    new_pos = pos
    width = 0

    while new_pos < length:
        char, width = _decode_rune(raw, new_pos)
        if char == ")":
            break
        if char is None:
            raise _compile_error(f"ldap: error reading rune at position {new_pos}")
        encoded = raw[new_pos : new_pos + width]

        if state == _STATE_ATTR:
            if char == ":" and raw.startswith(b":dn:=", new_pos):
                choice, dn_attributes, state = FilterChoice.EXTENSIBLE_MATCH, True, _STATE_CONDITION
                new_pos += 5
            elif char == ":" and raw.startswith(b":dn:", new_pos):
                choice, dn_attributes = FilterChoice.EXTENSIBLE_MATCH, True
                state = _STATE_MATCHING_RULE
                new_pos += 4
            elif char == ":" and raw.startswith(b":=", new_pos):
                choice, state = FilterChoice.EXTENSIBLE_MATCH, _STATE_CONDITION
                new_pos += 2
            elif char == ":":
                choice, state = FilterChoice.EXTENSIBLE_MATCH, _STATE_MATCHING_RULE
                new_pos += 1
            elif char == "=":
                choice, state = FilterChoice.EQUALITY_MATCH, _STATE_CONDITION
                new_pos += 1
            elif char == ">" and raw.startswith(b">=", new_pos):
                choice, state = FilterChoice.GREATER_OR_EQUAL, _STATE_CONDITION
                new_pos += 2
            elif char == "<" and raw.startswith(b"<=", new_pos):
                choice, state = FilterChoice.LESS_OR_EQUAL, _STATE_CONDITION
                new_pos += 2
            elif char == "~" and raw.startswith(b"~=", new_pos):
                choice, state = FilterChoice.APPROX_MATCH, _STATE_CONDITION
                new_pos += 2
            else:
                attribute += encoded
                new_pos += width
        elif state == _STATE_MATCHING_RULE:
            if char == ":" and raw.startswith(b":=", new_pos):
                state = _STATE_CONDITION
                new_pos += 2
            else:
                matching_rule += encoded
                new_pos += width
        else:
            condition += encoded
            new_pos += width

    if new_pos == length:
        raise _compile_error("ldap: unexpected end of filter")
    if choice is None:
        raise _compile_error("ldap: error parsing filter")

    attribute_text = _text(attribute)
    condition_bytes = bytes(condition)

    if choice == FilterChoice.EXTENSIBLE_MATCH:
        packet = _new_filter(choice)
        if matching_rule:
            rule = MatchingRuleAssertion.MATCHING_RULE
            packet.append_child(
                new_string(ClassType.CONTEXT, TagType.PRIMITIVE, rule, _text(matching_rule), rule.description)
            )
        if attribute:
            field = MatchingRuleAssertion.TYPE
            packet.append_child(
                new_string(ClassType.CONTEXT, TagType.PRIMITIVE, field, attribute_text, field.description)
            )
        value = decode_escaped_symbols(condition_bytes)
        field = MatchingRuleAssertion.MATCH_VALUE
        packet.append_child(
            new_string(ClassType.CONTEXT, TagType.PRIMITIVE, field, value, field.description)
        )
        if dn_attributes:
            field = MatchingRuleAssertion.DN_ATTRIBUTES
            packet.append_child(
                new_boolean(ClassType.CONTEXT, TagType.PRIMITIVE, field, True, field.description)
            )
    elif choice == FilterChoice.EQUALITY_MATCH and condition_bytes == _ANY:
        present = FilterChoice.PRESENT
        packet = new_string(
            ClassType.CONTEXT, TagType.PRIMITIVE, present, attribute_text, present.description
        )
    elif choice == FilterChoice.EQUALITY_MATCH and _ANY in condition_bytes:
        packet = _new_filter(FilterChoice.SUBSTRINGS)
        packet.append_child(
            new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, attribute_text, "Attribute")
        )
        sequence = encode(ClassType.UNIVERSAL, TagType.CONSTRUCTED, Tag.SEQUENCE, None, "Substrings")
        parts = condition_bytes.split(_ANY)
        last = len(parts) - 1
        for index, part in enumerate(parts):
            if not part:
                continue
            if index == 0:
                tag = SubstringChoice.INITIAL
            elif index == last:
                tag = SubstringChoice.FINAL
            else:
                tag = SubstringChoice.ANY
            value = decode_escaped_symbols(part)
            sequence.append_child(
                new_string(ClassType.CONTEXT, TagType.PRIMITIVE, tag, value, tag.description)
            )
        packet.append_child(sequence)
    else:
        value = decode_escaped_symbols(condition_bytes)
        packet = _new_filter(choice)
        packet.append_child(
            new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, attribute_text, "Attribute")
        )
        packet.append_child(
            new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, value, "Condition")
        )

    return packet, new_pos + width


def decompile_filter(packet: Packet) -> str:
    """Turn a filter packet back into its string form."""
    try:
        return _decompile(packet)
    except LDAPError:
        raise
    except Exception as exc:
        raise new_error(ERROR_FILTER_DECOMPILE, "ldap: error decompiling filter") from exc


def _comparison(packet: Packet, operator: str) -> str:
    return (
        _text(packet.children[0].data)
        + operator
        + _escape_value(packet.children[1].data)
    )


def _decompile(packet: Packet) -> str:
    tag = packet.tag
    if tag == FilterChoice.AND:
        body = "&" + "".join(_decompile(child) for child in packet.children)
    elif tag == FilterChoice.OR:
        body = "|" + "".join(_decompile(child) for child in packet.children)
    elif tag == FilterChoice.NOT:
        body = "!" + _decompile(packet.children[0])
    elif tag == FilterChoice.SUBSTRINGS:
        pieces = [_text(packet.children[0].data), "="]
        for index, child in enumerate(packet.children[1].children):
            if index == 0 and child.tag != SubstringChoice.INITIAL:
                pieces.append("*")
            pieces.append(_escape_value(child.data))
            if child.tag != SubstringChoice.FINAL:
                pieces.append("*")
        body = "".join(pieces)
    elif tag == FilterChoice.EQUALITY_MATCH:
        body = _comparison(packet, "=")
    elif tag == FilterChoice.GREATER_OR_EQUAL:
        body = _comparison(packet, ">=")
    elif tag == FilterChoice.LESS_OR_EQUAL:
        body = _comparison(packet, "<=")
    elif tag == FilterChoice.PRESENT:
        body = _text(packet.data) + "=*"
    elif tag == FilterChoice.APPROX_MATCH:
        body = _comparison(packet, "~=")
    elif tag == FilterChoice.EXTENSIBLE_MATCH:
        attribute = ""
        matching_rule = ""
        value = b""
        dn_attributes = False
        for child in packet.children:
            if child.tag == MatchingRuleAssertion.MATCHING_RULE:
                matching_rule = _text(child.data)
            elif child.tag == MatchingRuleAssertion.TYPE:
                attribute = _text(child.data)
            elif child.tag == MatchingRuleAssertion.MATCH_VALUE:
                value = bytes(child.data)
            elif child.tag == MatchingRuleAssertion.DN_ATTRIBUTES:
                if isinstance(child.value, bool):
                    dn_attributes = child.value
                else:
                    dn_attributes = bool(child.data and child.data[0])
        pieces = [attribute]
        if dn_attributes:
            pieces.append(":dn")
        if matching_rule:
            pieces.append(":" + matching_rule)
        pieces.append(":=")
        pieces.append(_escape_value(value))
        body = "".join(pieces)
    else:
        body = ""
    return "(" + body + ")"