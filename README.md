# ldapcore

Building blocks for speaking LDAP v3 from Python, using only the standard
library.

| Module | What it provides |
| --- | --- |
| `ldapcore.ber` | The BER packet model: `Packet` (with `append_child` and `to_bytes`), the `ClassType`, `TagType` and `Tag` enums, the constructors `encode`, `new_string`, `new_integer`, `new_boolean`, `new_sequence`, and the readers `decode_packet` and `read_packet`. |
| `ldapcore.errors` | LDAP result code constants, `LDAP_RESULT_CODE_MAP`, the `LDAPError` exception, and `get_ldap_error`, `check_result`, `new_error`, `is_error_with_code`, `is_error_any_of`. |
| `ldapcore.dn` | Distinguished names: `parse_dn`, `DN`, `RelativeDN`, `AttributeTypeAndValue` and `DNParseError`. |
| `ldapcore.filter` | Search filters: `compile_filter`, `decompile_filter`, `decode_escaped_symbols`, and the `FilterChoice`, `SubstringChoice` and `MatchingRuleAssertion` enums. |
| `ldapcore.conn` | A connection that hands out message IDs, sends requests and routes each response to the request it belongs to: `dial_url`, `Connection`, `MessageContext`, `PacketResponse`, `Debugger`. |
| `ldapcore.sasl` | DIGEST-MD5 helpers: `parse_params` and `compute_response`. |

## Installation

```
pip install .
```

## Distinguished names

`parse_dn` accepts the string form of a DN, including `\,` and `\xx`
escapes, `;` as an RDN separator, multi-valued RDNs joined with `+` and
`#`-prefixed BER values. It raises `DNParseError` (a `ValueError`) on
malformed input.

```python
from ldapcore.dn import parse_dn

child = parse_dn("ou=sprockets,ou=widgets,o=acme.com")
parent = parse_dn("OU=widgets, o=acme.com")

assert parent.ancestor_of(child)
print(str(child))  # ou=sprockets,ou=widgets,o=acme.com
```

`equal` and `ancestor_of` compare attribute types without regard to case
and values exactly; `equal_fold` and `ancestor_of_fold` also ignore the case
of values. `str()` gives a normalised form: lower-cased types, escaped
values and the attributes of each RDN sorted.

## Search filters

```python
from ldapcore.filter import FilterChoice, compile_filter, decompile_filter

packet = compile_filter("(&(objectClass=person)(cn=Jo*))")
assert packet.tag == FilterChoice.AND
wire = packet.to_bytes()
print(decompile_filter(packet))  # (&(objectClass=person)(cn=Jo*))
```

Equality, substring, presence, `>=`, `<=`, `~=` and extensible-match
(`attr:dn:rule:=value`) items are supported, combined with `&`, `|` and `!`.
Values are written back with non-ASCII bytes and the special characters
`( ) \ *` and NUL hex-escaped. Errors are raised as `LDAPError` with result
code `ERROR_FILTER_COMPILE` or `ERROR_FILTER_DECOMPILE`.

## Result errors

`get_ldap_error` turns an LDAPMessage carrying an LDAPResult into an
`LDAPError`, or returns `None` when the result code is success;
`check_result` raises it instead.

```python
from ldapcore import ber
from ldapcore.errors import LDAP_RESULT_INVALID_CREDENTIALS, LDAPError, check_result

U, P, C = ber.ClassType.UNIVERSAL, ber.TagType.PRIMITIVE, ber.TagType.CONSTRUCTED
response = ber.encode(ber.ClassType.APPLICATION, C, 1, None, "Bind Response")
response.append_child(ber.new_integer(U, P, ber.Tag.ENUMERATED, LDAP_RESULT_INVALID_CREDENTIALS, "resultCode"))
response.append_child(ber.new_string(U, P, ber.Tag.OCTET_STRING, "", "matchedDN"))
response.append_child(ber.new_string(U, P, ber.Tag.OCTET_STRING, "bad credentials", "diagnosticMessage"))
message = ber.new_sequence("LDAPMessage")
message.append_child(ber.new_integer(U, P, ber.Tag.INTEGER, 1, "messageID"))
message.append_child(response)

try:
    check_result(message)
except LDAPError as err:
    print(err)  # LDAP Result Code 49 "Invalid Credentials": bad credentials
```

## Connections

`dial_url(addr, timeout, ssl_context)` connects to an `ldap://`, `ldaps://`
or `ldapi://` URL (default ports 389 and 636, default socket path
`/var/run/slapd/ldapi`), starts a reader thread and returns a `Connection`.
Connection failures are raised as `LDAPError` with code `ERROR_NETWORK`.

```python
from ldapcore import ber
from ldapcore.conn import dial_url

with dial_url("ldap://localhost", None, None) as conn:
    conn.set_timeout(5)  # seconds; 0 disables request timeouts
    request = ber.new_sequence("LDAP Request")
    request.append_child(
        ber.new_integer(ber.ClassType.UNIVERSAL, ber.TagType.PRIMITIVE,
                        ber.Tag.INTEGER, conn.next_message_id(), "MessageID")
    )
    # ... append the protocol operation here ...
    context = conn.send_message(request)
    try:
        response = context.receive()
        if response is not None:
            packet = response.read_packet()
    finally:
        conn.finish_message(context)
```

`MessageContext.receive` returns the next `PacketResponse`, or `None` once
no more responses will arrive. `PacketResponse.read_packet` raises the error
that took the place of a packet, such as a request timeout or a broken
connection. `Connection` also accepts any object with `recv`, `sendall` and
`close`, which is handy for tests. `conn.debug.enable(True)` sends debug
output to the `ldapcore` logger at DEBUG level.

## DIGEST-MD5

```python
from ldapcore.sasl import compute_response, parse_params

params = parse_params('realm="example.com",nonce="abc123",qop="auth"')
password = "password"
reply = compute_response(params, "ldap/ldap.example.com", "user", password, "0123abcd")
```

`parse_params` raises `ValueError` on a malformed challenge. When no client
nonce is given, `compute_response` makes a random one.

## What this package does not do

There are no ready-made LDAP operations: no bind, search, add, modify,
delete or compare calls, no StartTLS command and no request controls.
Requests are built by hand from `ldapcore.ber` packets and sent with
`Connection.send_message`. NTLM authentication is not provided, and there
is no command-line tool.

## Running the tests

```
pip install .[test]
pytest
```