import pytest

from ldapcore.ber import (
    ClassType,
    Packet,
    Tag,
    TagType,
    decode_packet,
    encode,
    new_sequence,
    new_string,
)
from ldapcore.errors import (
    ERROR_FILTER_COMPILE,
    ERROR_NETWORK,
    ERROR_UNEXPECTED_RESPONSE,
    LDAP_RESULT_INVALID_CREDENTIALS,
    LDAPError,
    check_result,
    get_ldap_error,
    is_error_any_of,
    is_error_with_code,
    new_error,
)

APPLICATION_BIND_RESPONSE = 1
DIAGNOSTIC_MESSAGE = "Detailed error message"


def _bind_response(result_code, matched_dn, message):
    bind_response = encode(
        ClassType.APPLICATION, TagType.CONSTRUCTED, APPLICATION_BIND_RESPONSE, None, "Bind Response"
    )
    bind_response.append_child(
        encode(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, result_code, "resultCode")
    )
    bind_response.append_child(
        new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, matched_dn, "matchedDN")
    )
    bind_response.append_child(
        new_string(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.OCTET_STRING, message, "diagnosticMessage")
    )
    packet = new_sequence("LDAPMessage")
    packet.append_child(encode(ClassType.UNIVERSAL, TagType.PRIMITIVE, Tag.INTEGER, 0, "messageID"))
    packet.append_child(bind_response)
    return packet


def test_nil_packet():
    err = get_ldap_error(None)
    assert is_error_with_code(err, ERROR_UNEXPECTED_RESPONSE)


def test_nil_response():
    packet = Packet(children=[Packet(), None])
    err = get_ldap_error(packet)
    assert is_error_with_code(err, ERROR_UNEXPECTED_RESPONSE)
    assert err.packet is packet


def test_get_ldap_error():
    packet = _bind_response(LDAP_RESULT_INVALID_CREDENTIALS, "dc=example,dc=org", DIAGNOSTIC_MESSAGE)
    err = get_ldap_error(packet)
    assert isinstance(err, LDAPError)
    assert err.result_code == LDAP_RESULT_INVALID_CREDENTIALS
    assert err.message == DIAGNOSTIC_MESSAGE
    assert err.matched_dn == "dc=example,dc=org"


def test_get_ldap_error_success():
    packet = _bind_response(0, "", "")
    assert get_ldap_error(packet) is None


def test_get_ldap_error_after_wire_round_trip():
    packet = _bind_response(LDAP_RESULT_INVALID_CREDENTIALS, "dc=example,dc=org", DIAGNOSTIC_MESSAGE)
    decoded = decode_packet(packet.to_bytes())
    err = get_ldap_error(decoded)
    assert err.result_code == LDAP_RESULT_INVALID_CREDENTIALS
    assert err.message == DIAGNOSTIC_MESSAGE


def test_invalid_packet_format():
    packet = new_sequence("LDAPMessage")
    err = get_ldap_error(packet)
    assert err.result_code == ERROR_NETWORK
    assert err.message == "Invalid packet format"


def test_check_result_raises():
    packet = _bind_response(LDAP_RESULT_INVALID_CREDENTIALS, "dc=example,dc=org", DIAGNOSTIC_MESSAGE)
    with pytest.raises(LDAPError) as info:
        check_result(packet)
    assert info.value.result_code == LDAP_RESULT_INVALID_CREDENTIALS


def test_check_result_success_returns_none():
    assert check_result(_bind_response(0, "", "")) is None


def test_error_string_format():
    err = new_error(ERROR_FILTER_COMPILE, "ldap: missing characters for escape in filter")
    assert str(err) == (
        'LDAP Result Code 201 "Filter Compile Error": '
        "ldap: missing characters for escape in filter"
    )


def test_new_error_keeps_cause():
    cause = ValueError("boom")
    err = new_error(ERROR_NETWORK, cause)
    assert err.__cause__ is cause
    assert err.message == "boom"
    assert str(err) == 'LDAP Result Code 200 "Network Error": boom'


def test_is_error_any_of():
    err = new_error(ERROR_NETWORK, "x")
    assert is_error_any_of(err, ERROR_FILTER_COMPILE, ERROR_NETWORK)
    assert not is_error_any_of(err, ERROR_FILTER_COMPILE)
    assert not is_error_any_of(None, ERROR_NETWORK)
    assert not is_error_any_of(ValueError("x"), ERROR_NETWORK)


def test_is_error_with_code():
    err = new_error(ERROR_UNEXPECTED_RESPONSE, "x")
    assert is_error_with_code(err, ERROR_UNEXPECTED_RESPONSE)
    assert not is_error_with_code(err, ERROR_NETWORK)