import io

import pytest

from ldapcore.ber import (
    ClassType,
    Packet,
    Tag,
    TagType,
    decode_packet,
    encode,
    new_boolean,
    new_integer,
    new_sequence,
    new_string,
    read_packet,
)

CONTROL_OID = "1.3.6.1.4.1.42.2.27.8.5.1"
CONTROL_BYTES = (
    bytes([0xA0, 0x24, 0x30, 0x22, 0x04, 0x19])
    + CONTROL_OID.encode()
    + bytes([0x04, 0x05, 0x30, 0x03, 0x81, 0x01, 0x00])
)


def test_boolean_true_wire_bytes():
    packet = new_boolean(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.BOOLEAN, True, "flag")
    assert packet.to_bytes() == b"\x01\x01\xff"


def test_empty_sequence_wire_bytes():
    assert new_sequence("empty").to_bytes() == b"\x30\x00"


def test_long_form_length():
    text = "x" * 200
    raw = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, text, "s").to_bytes()
    assert raw[:3] == b"\x04\x81\xc8"
    assert raw[3:] == text.encode()
    assert decode_packet(raw).value == text


@pytest.mark.parametrize(
    "value",
    [0, 1, 127, 128, 255, 256, -1, -128, -129, 2**31 - 1, -(2**31), 2147481180],
)
def test_integer_round_trip(value):
    packet = new_integer(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, value, "n")
    decoded = decode_packet(packet.to_bytes())
    assert decoded.tag == Tag.INTEGER
    assert decoded.value == value
    content = decoded.data
    redundant = len(content) > 1 and (
        (content[0] == 0x00 and content[1] < 0x80) or (content[0] == 0xFF and content[1] >= 0x80)
    )
    assert not redundant


def test_enumerated_decodes_to_int():
    packet = encode(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.ENUMERATED, 14, "code")
    assert decode_packet(packet.to_bytes()).value == 14


@pytest.mark.parametrize("value", ["Lučić", "", "plain text"])
def test_string_round_trip(value):
    packet = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, value, "s")
    decoded = decode_packet(packet.to_bytes())
    assert decoded.value == value
    assert decoded.data == value.encode("utf-8")


def test_raw_bytes_preserved():
    raw = b"\xfc\xfe\xa3"
    packet = new_string(ClassType.CONTEXT, TagType.PRIMITIVE, 3, raw, "v")
    decoded = decode_packet(packet.to_bytes())
    assert decoded.data == raw
    assert decoded.value is None


def test_decode_hex_string_value():
    decoded = decode_packet(bytes.fromhex("04024869"))
    assert decoded.value == "Hi"
    assert decoded.data == b"Hi"


def test_decode_control_packet_structure_and_round_trip():
    outer = decode_packet(CONTROL_BYTES)
    assert outer.class_type == ClassType.CONTEXT
    assert outer.tag_type == TagType.CONSTRUCTED
    assert outer.tag == 0
    seq = outer.children[0]
    assert seq.tag == Tag.SEQUENCE
    assert seq.children[0].value == CONTROL_OID
    inner = decode_packet(seq.children[1].data)
    assert inner.children[0].class_type == ClassType.CONTEXT
    assert inner.children[0].tag == 1
    assert inner.children[0].data == b"\x00"
    assert outer.to_bytes() == CONTROL_BYTES


def test_append_child_tracks_content():
    seq = new_sequence("seq")
    first = new_integer(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, 5, "a")
    second = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "b", "b")
    seq.append_child(first)
    seq.append_child(second)
    assert seq.data == first.to_bytes() + second.to_bytes()
    decoded = decode_packet(seq.to_bytes())
    assert [child.value for child in decoded.children] == [5, "b"]
    assert decoded.data == seq.data


def test_high_tag_number_round_trip():
    packet = encode(ClassType.CONTEXT, TagType.PRIMITIVE, 100, "v", "high")
    decoded = decode_packet(packet.to_bytes())
    assert decoded.tag == 100
    assert decoded.class_type == ClassType.CONTEXT
    assert decoded.data == b"v"


def test_encode_constructed_ignores_value():
    packet = encode(ClassType.CONTEXT, TagType.CONSTRUCTED, 3, "", "auth")
    assert packet.data == b""
    assert packet.value == ""


def test_encode_primitive_string_sets_data():
    packet = encode(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "value", "v")
    assert packet.data == b"value"


def test_boolean_false_round_trip():
    packet = new_boolean(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.BOOLEAN, False, "b")
    assert decode_packet(packet.to_bytes()).value is False


def test_indefinite_length_constructed():
    child = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "abc", "c")
    raw = b"\x30\x80" + child.to_bytes() + b"\x00\x00"
    decoded = decode_packet(raw)
    assert len(decoded.children) == 1
    assert decoded.children[0].value == "abc"


def test_read_packet_sequence_from_stream():
    first = new_integer(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, 1, "a")
    second = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "two", "b")
    stream = io.BytesIO(first.to_bytes() + second.to_bytes())
    assert read_packet(stream).value == 1
    assert read_packet(stream).value == "two"
    with pytest.raises(EOFError):
        read_packet(stream)


def test_read_packet_truncated_stream():
    raw = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "hello", "s").to_bytes()
    with pytest.raises(EOFError):
        read_packet(io.BytesIO(raw[:-2]))


def test_decode_packet_errors():
    raw = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "hello", "s").to_bytes()
    with pytest.raises(ValueError):
        decode_packet(b"")
    with pytest.raises(ValueError):
        decode_packet(raw[:-1])


def test_child_overrunning_parent_is_rejected():
    child = new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, "hello", "s").to_bytes()
    truncated_child = child[:-1]
    raw = bytes([0x30, len(truncated_child)]) + truncated_child
    with pytest.raises(ValueError):
        decode_packet(raw)


def test_str_mentions_description_and_children():
    seq = new_sequence("LDAP Request")
    seq.append_child(new_integer(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, 7, "MessageID"))
    text = str(seq)
    assert "LDAP Request" in text
    assert "MessageID" in text
    assert len(text.splitlines()) == 2


def test_default_packet_encodes_children_none_free():
    packet = Packet()
    assert decode_packet(packet.to_bytes()) == Packet(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.EOC)