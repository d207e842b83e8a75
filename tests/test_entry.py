from ldapkit.ber import (
    CLASS_UNIVERSAL,
    TAG_OCTET_STRING,
    TAG_SEQUENCE,
    TAG_SET,
    decode_packet,
    new_constructed,
    new_string,
)
from ldapkit.entry import (
    DerefAliases,
    Entry,
    EntryAttribute,
    Scope,
    SearchRequest,
    SearchResult,
    new_entry,
    new_entry_attribute,
    unpack_attributes,
)


def _attribute_packet(name, values):
    seq = new_constructed(CLASS_UNIVERSAL, TAG_SEQUENCE, "PartialAttribute")
    seq.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, name, "Type"))
    value_set = new_constructed(CLASS_UNIVERSAL, TAG_SET, "AttributeValue")
    for value in values:
        value_set.append(new_string(CLASS_UNIVERSAL, TAG_OCTET_STRING, value, "Vals"))
    seq.append(value_set)
    return seq


def test_new_entry_is_deterministic():
    attributes = {
        "alpha": ["value"],
        "beta": ["value"],
        "gamma": ["value"],
        "delta": ["value"],
        "epsilon": ["value"],
    }
    expected = new_entry("testDN", attributes)
    for _ in range(100):
        assert new_entry("testDN", attributes) == expected


def test_new_entry_sorts_attribute_names():
    entry = new_entry("testDN", {"gamma": ["g"], "alpha": ["a"], "beta": ["b"]})
    assert [attr.name for attr in entry.attributes] == ["alpha", "beta", "gamma"]
    assert entry.dn == "testDN"


def test_get_attribute_value():
    attributes = {
        "Alpha": ["value"],
        "bEta": ["value"],
        "gaMma": ["value"],
        "delTa": ["value"],
        "epsiLon": ["value"],
    }
    entry = new_entry("testDN", attributes)
    assert entry.get_attribute_value("Alpha") == "value"
    assert entry.get_equal_fold_attribute_value("alpha") == "value"


def test_exact_lookup_is_case_sensitive():
    entry = new_entry("testDN", {"Alpha": ["value"]})
    assert entry.get_attribute_value("alpha") == ""
    assert entry.get_attribute_values("alpha") == []
    assert entry.get_raw_attribute_values("alpha") == []
    assert entry.get_raw_attribute_value("alpha") == b""


def test_raw_values():
    entry = new_entry("testDN", {"cn": ["Lučić", "two"]})
    assert entry.get_raw_attribute_values("cn") == ["Lučić".encode("utf-8"), b"two"]
    assert entry.get_raw_attribute_value("cn") == "Lučić".encode("utf-8")
    assert entry.get_equal_fold_raw_attribute_values("CN") == ["Lučić".encode("utf-8"), b"two"]
    assert entry.get_equal_fold_raw_attribute_value("Cn") == "Lučić".encode("utf-8")


def test_missing_values_default_to_empty():
    entry = Entry("testDN")
    assert entry.get_equal_fold_attribute_values("x") == []
    assert entry.get_equal_fold_attribute_value("x") == ""
    assert entry.get_equal_fold_raw_attribute_value("x") == b""


def test_first_match_wins():
    entry = Entry(
        "testDN",
        [new_entry_attribute("cn", ["first"]), new_entry_attribute("CN", ["second"])],
    )
    assert entry.get_equal_fold_attribute_value("cn") == "first"
    assert entry.get_attribute_value("CN") == "second"


def test_new_entry_attribute_bytes():
    attr = new_entry_attribute("mail", ["a", "b"])
    assert attr == EntryAttribute("mail", ["a", "b"], [b"a", b"b"])


def test_unpack_attributes_round_trip():
    children = [_attribute_packet("cn", ["alice", "bob"]), _attribute_packet("sn", [])]
    decoded = [decode_packet(packet.to_bytes()) for packet in children]
    attributes = unpack_attributes(decoded)
    assert attributes == [
        EntryAttribute("cn", ["alice", "bob"], [b"alice", b"bob"]),
        EntryAttribute("sn", [], []),
    ]


def test_unpack_attributes_empty():
    assert unpack_attributes([]) == []


def test_entry_print(capsys):
    entry = new_entry("cn=x,dc=example,dc=com", {"cn": ["x", "y"], "sn": ["z"]})
    entry.print()
    assert capsys.readouterr().out == "DN: cn=x,dc=example,dc=com\ncn: [x y]\nsn: [z]\n"


def test_entry_pretty_print(capsys):
    entry = new_entry("cn=x", {"cn": ["x"]})
    entry.pretty_print(2)
    assert capsys.readouterr().out == "  DN: cn=x\n    cn: [x]\n"


def test_search_result_print(capsys):
    result = SearchResult(entries=[new_entry("a=1", {}), new_entry("b=2", {"c": ["d"]})])
    result.print()
    assert capsys.readouterr().out == "DN: a=1\nDN: b=2\nc: [d]\n"
    result.pretty_print(1)
    assert capsys.readouterr().out == " DN: a=1\n DN: b=2\n   c: [d]\n"


def test_search_result_defaults_are_independent():
    first = SearchResult()
    second = SearchResult()
    first.referrals.append("ldap://example.com")
    assert second.referrals == []


def test_scope_and_deref_lookup_by_value():
    assert Scope(0) is Scope.BASE_OBJECT
    assert Scope(2) is Scope.WHOLE_SUBTREE
    assert Scope(1).description == "Single Level"
    assert DerefAliases(3) is DerefAliases.ALWAYS
    assert DerefAliases(2).description == "DerefFindingBaseObj"


def test_search_request_fields():
    request = SearchRequest(
        "dc=umich,dc=edu",
        Scope.WHOLE_SUBTREE,
        DerefAliases.ALWAYS,
        0,
        0,
        False,
        "(cn=cis-fac)",
        ["cn", "description"],
    )
    assert request.base_dn == "dc=umich,dc=edu"
    assert request.deref_aliases == DerefAliases.ALWAYS
    assert request.attributes == ["cn", "description"]
    assert request.controls == []