# ldapkit

A small LDAP v3 client library with no third-party dependencies.

## What is in it

- **`ldapkit.ber`** – BER elements. `Packet` holds one element;
  `new_string`, `new_integer`, `new_boolean` and `new_constructed` build them,
  `Packet.to_bytes()` encodes with definite lengths, `decode_packet` and
  `read_packet` decode (raising `BERError` on bad input), and `format_packet`
  renders a packet tree as indented text. `Debug` is an on/off switch that
  logs messages and packet dumps to the `ldapkit` logger at debug level.
- **`ldapkit.dn`** – distinguished names. `parse_dn` handles escapes
  (`\,`, `\2C`, …), multi-valued RDNs joined with `+`, `;` as an RDN
  separator, and `#`-prefixed BER values. `DN`, `RelativeDN` and
  `AttributeTypeAndValue` offer `equal`, `equal_fold`, and on `DN` also
  `ancestor_of` and `ancestor_of_fold`. Bad input raises `DNParseError`.
- **`ldapkit.entry`** – `Entry`, `EntryAttribute`, `SearchResult`,
  `SearchRequest`, the `Scope` and `DerefAliases` enums, `new_entry`,
  `new_entry_attribute` and `unpack_attributes` (which turns PartialAttribute
  packets into `EntryAttribute` objects).
- **`ldapkit.requests`** – `AddRequest`, `DelRequest`, `ModifyRequest`
  (with `add`, `delete`, `replace`, `increment`), `ModifyDNRequest`,
  `CompareRequest` and `UnbindRequest`. Each has `append_to(envelope)`, which
  adds its encoding to an LDAP message packet.
- **`ldapkit.conn`** – `Conn`, a connection over a socket with a reader
  thread, message IDs, per-request timeouts (`set_timeout`, in seconds) and
  StartTLS (`start_tls`). `dial_url` opens `ldap://`, `ldaps://` and
  `ldapi://` addresses (default ports 389 and 636, default socket path
  `/var/run/slapd/ldapi`). `check_result` raises `LDAPResultError` for a
  non-success result code; other failures raise `LDAPError`, whose `code`
  is 200 for network problems.
- **`ldapkit.sasl`** – `SimpleBindRequest`, `DigestMD5BindRequest`,
  `ExternalBindRequest`, plus `parse_params` and `compute_response` for the
  DIGEST-MD5 challenge and answer.
- **`ldapkit.client`** – `Client`, a `Conn` with the operations `add`,
  `delete`, `modify`, `modify_dn`, `compare`, `simple_bind`, `bind`,
  `unauthenticated_bind`, `md5_bind`, `digest_md5_bind`, `external_bind` and
  `unbind`.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Distinguished names

```python
from ldapkit.dn import parse_dn

base = parse_dn("ou=widgets,o=acme.com")
child = parse_dn("ou=sprockets,ou=widgets,o=acme.com")

base.ancestor_of(child)   # True
base.ancestor_of(base)    # False: a DN is not its own ancestor

parse_dn("o=A+o=B").equal(parse_dn("O=B+o=A"))   # True: type case and RDN order are ignored
parse_dn("o=a").equal(parse_dn("o=A"))           # False: value case matters...
parse_dn("o=a").equal_fold(parse_dn("o=A"))      # ...unless you use equal_fold
```

```python
from ldapkit.dn import DNParseError, parse_dn

try:
    parse_dn("test,DC=example,DC=com")
except DNParseError as exc:
    print(exc)   # incomplete type, value pair
```

## Entries

```python
from ldapkit.entry import new_entry

entry = new_entry(
    "uid=jsmith,dc=example,dc=com",
    {"cn": ["John Smith"], "mail": ["jsmith@example.com"]},
)

entry.get_attribute_value("cn")              # "John Smith"
entry.get_equal_fold_attribute_value("CN")   # "John Smith"
entry.get_raw_attribute_value("mail")        # b"jsmith@example.com"
entry.get_attribute_value("missing")         # ""
entry.pretty_print(2)
```

`new_entry` orders attributes by name, so the same mapping always gives the
same entry.

## Talking to a server

`dial_url` returns a plain `Conn`. For the directory operations, create a
`Client` on a connected socket and start it:

```python
import socket

from ldapkit.client import Client
from ldapkit.requests import ModifyRequest

password = "password"

sock = socket.create_connection(("ldap.example.com", 389))
with Client(sock, server_hostname="ldap.example.com") as client:
    client.start()
    client.bind("cn=admin,dc=example,dc=com", password)

    change = ModifyRequest("uid=jsmith,dc=example,dc=com")
    change.replace("mail", ["john.smith@example.com"])
    client.modify(change)

    client.compare("uid=jsmith,dc=example,dc=com", "cn", "John Smith")  # True or False
    client.unbind()
```

`bind`, `simple_bind`, `md5_bind` and `digest_md5_bind` refuse an empty
password on the client side (error code 206); use `unauthenticated_bind` for
an anonymous bind. `simple_bind` returns the response's control packets
undecoded. Leaving the `with` block closes the connection.

## Debugging

```python
import logging

logging.basicConfig(level=logging.DEBUG)
client.debug.enable(True)
```

With debugging on, requests and responses are logged in the indented form
produced by `ldapkit.ber.format_packet`.

## What it does not do

- There is no search operation on `Client`: `SearchRequest` and
  `SearchResult` are data holders only, there is no filter compiler, and no
  paged searching.
- No request or response controls are provided. Requests accept a list of
  objects with an `encode()` method returning a `Packet`; received controls
  are not decoded.
- There are no NTLM binds, no password-modify operation and no command-line
  tool.