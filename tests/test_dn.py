import pytest

from ldapcore.dn import (
    DN,
    AttributeTypeAndValue,
    DNParseError,
    RelativeDN,
    parse_dn,
)


def _dn(*rdns):
    return DN([RelativeDN([AttributeTypeAndValue(t, v) for t, v in rdn]) for rdn in rdns])


SUCCESS_CASES = {
    "": _dn(),
    "cn=Jim\\2C \\22Hasse Hö\\22 Hansson!,dc=dummy,dc=com": _dn(
        [("cn", 'Jim, "Hasse Hö" Hansson!')], [("dc", "dummy")], [("dc", "com")]
    ),
    "UID=jsmith,DC=example,DC=net": _dn(
        [("UID", "jsmith")], [("DC", "example")], [("DC", "net")]
    ),
    "OU=Sales+CN=J. Smith,DC=example,DC=net": _dn(
        [("OU", "Sales"), ("CN", "J. Smith")], [("DC", "example")], [("DC", "net")]
    ),
    "1.3.6.1.4.1.1466.0=#04024869": _dn([("1.3.6.1.4.1.1466.0", "Hi")]),
    "1.3.6.1.4.1.1466.0=#04024869,DC=net": _dn(
        [("1.3.6.1.4.1.1466.0", "Hi")], [("DC", "net")]
    ),
    "CN=Lu\\C4\\8Di\\C4\\87": _dn([("CN", "Lučić")]),
    "  CN  =  Lu\\C4\\8Di\\C4\\87  ": _dn([("CN", "Lučić")]),
    "   A   =   1   ,   B   =   2   ": _dn([("A", "1")], [("B", "2")]),
    "   A   =   1   +   B   =   2   ": _dn([("A", "1"), ("B", "2")]),
    r"   \ \ A\ \    =   \ \ 1\ \    ,   \ \ B\ \    =   \ \ 2\ \    ": _dn(
        [("  A  ", "  1  ")], [("  B  ", "  2  ")]
    ),
    r"   \ \ A\ \    =   \ \ 1\ \    +   \ \ B\ \    =   \ \ 2\ \    ": _dn(
        [("  A  ", "  1  "), ("  B  ", "  2  ")]
    ),
    "cn=john.doe;dc=example,dc=net": _dn(
        [("cn", "john.doe")], [("dc", "example")], [("dc", "net")]
    ),
    r"cn=john.doe\;weird name,dc=example,dc=net": _dn(
        [("cn", "john.doe;weird name")], [("dc", "example")], [("dc", "net")]
    ),
}


@pytest.mark.parametrize("text, expected", list(SUCCESS_CASES.items()))
def test_successful_parsing(text, expected):
    assert parse_dn(text) == expected


ERROR_CASES = {
    "*": "DN ended with incomplete type, value pair",
    "cn=Jim\\0Test": "failed to decode escaped character: invalid byte: U+0054 'T'",
    "cn=Jim\\0": "got corrupted escaped character",
    "DC=example,=net": "DN ended with incomplete type, value pair",
    "1=#0402486": "failed to decode BER encoding: odd length hex string",
    "test,DC=example,DC=com": "incomplete type, value pair",
    "=test,DC=example,DC=com": "incomplete type, value pair",
}


@pytest.mark.parametrize("text, message", list(ERROR_CASES.items()))
def test_error_parsing(text, message):
    with pytest.raises(DNParseError) as info:
        parse_dn(text)
    assert str(info.value) == message


def test_parse_error_is_value_error():
    with pytest.raises(ValueError):
        parse_dn("cn")


EQUAL_CASES = [
    ("", "", True),
    ("o=A", "o=A", True),
    ("o=A", "o=B", False),
    ("o=A,o=B", "o=A,o=B", True),
    ("o=A,o=B", "o=A,o=C", False),
    ("o=A+o=B", "o=A+o=B", True),
    ("o=A+o=B", "o=A+o=C", False),
    ("o=A", "O=A", True),
    ("o=A,o=B", "o=A,O=B", True),
    ("o=A+o=B", "o=A+O=B", True),
    ("o=a", "O=A", False),
    ("o=a,o=B", "o=A,O=B", False),
    ("o=a+o=B", "o=A+O=B", False),
    ("o=A+o=B", "O=B+o=A", True),
    ("o=A+o=B", "O=B+o=A+O=B", False),
    ("o=A+o=B", "O=B+o=A+O=C", False),
    ("o=A+o=B+o=C", "O=B+o=A", False),
    ("cn=John Doe, ou=People, dc=sun.com", "cn=John Doe, ou=People, dc=sun.com", True),
    ("cn=\\ John\\20Doe, ou=People, dc=sun.com", "cn= \\ John Doe,ou=People,dc=sun.com", True),
    ("cn=John Doe, ou=People, dc=sun.com", "cn=John  Doe, ou=People, dc=sun.com", False),
    ("cn=john;dc=example,dc=com", "cn=john,dc=example,dc=com", True),
]


@pytest.mark.parametrize("left, right, expected", EQUAL_CASES)
def test_dn_equal(left, right, expected):
    a = parse_dn(left)
    b = parse_dn(right)
    assert a.equal(b) is expected
    assert b.equal(a) is expected
    assert (str(a) == str(b)) is a.equal(b)


EQUAL_FOLD_CASES = [
    ("o=A", "o=a", True),
    ("o=A,o=b", "o=a,o=B", True),
    ("o=a+o=B", "o=A+o=b", True),
    ("cn=users,ou=example,dc=com", "cn=Users,ou=example,dc=com", True),
    ("o=A", "O=a", True),
    ("o=A,o=b", "o=a,O=B", True),
    ("o=a+o=B", "o=A+O=b", True),
]


@pytest.mark.parametrize("left, right, expected", EQUAL_FOLD_CASES)
def test_dn_equal_fold(left, right, expected):
    a = parse_dn(left)
    b = parse_dn(right)
    assert a.equal_fold(b) is expected
    assert b.equal_fold(a) is expected


def test_equal_fold_rejects_different_values():
    assert parse_dn("o=A").equal_fold(parse_dn("o=B")) is False


ANCESTOR_CASES = [
    ("", "", False),
    ("o=A", "o=A", False),
    ("o=A,o=B", "o=A,o=B", False),
    ("o=A+o=B", "o=A+o=B", False),
    ("ou=C,ou=B,o=A", "ou=E,ou=D,ou=B,o=A", False),
    ("ou=C,ou=B,o=A", "ou=E,ou=C,ou=B,o=A", True),
]


@pytest.mark.parametrize("left, right, expected", ANCESTOR_CASES)
def test_dn_ancestor(left, right, expected):
    assert parse_dn(left).ancestor_of(parse_dn(right)) is expected


def test_ancestor_of_fold_ignores_value_case():
    parent = parse_dn("ou=b,o=A")
    child = parse_dn("cn=x,OU=B,o=a")
    assert parent.ancestor_of_fold(child) is True
    assert parent.ancestor_of(child) is False
    assert child.ancestor_of_fold(parent) is False


def test_string_escapes_special_characters():
    assert str(AttributeTypeAndValue("CN", "a,b#")) == "cn=a\\,b\\#"
    assert str(AttributeTypeAndValue("cn", " x ")) == "cn=\\ x\\ "
    assert str(AttributeTypeAndValue("cn", "é")) == "cn=\\c3\\a9"


def test_relative_dn_string_is_sorted():
    rdn = RelativeDN([AttributeTypeAndValue("o", "B"), AttributeTypeAndValue("O", "A")])
    assert str(rdn) == "o=A+o=B"


def test_dn_string_joins_rdns():
    assert str(parse_dn("UID=jsmith,DC=example,DC=net")) == "uid=jsmith,dc=example,dc=net"


def test_string_round_trip():
    dn = parse_dn("cn=Jim\\2C \\22Hasse Hö\\22 Hansson!,dc=dummy,dc=com")
    assert parse_dn(str(dn)).equal(dn)