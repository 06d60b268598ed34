"""
Tests for path parsing and resolution.
"""

import pytest

from flowdesigner.document import Index, Key, Predicate, format_path, join, parse, predicate, resolve
from flowdesigner.document.path import loose_equals


class TestParse:
    """Segment classification."""

    def test_plain_keys_and_indices(self):
        """Bare tokens become keys; canonical integers become indices."""
        assert parse("a/0/b/12") == [Key("a"), Index(0), Key("b"), Index(12)]

    def test_leading_zero_is_a_key(self):
        """Only canonical integers are indices."""
        assert parse("a/01") == [Key("a"), Key("01")]

    def test_predicate_segment(self):
        """A JSON object literal is a predicate."""
        segments = parse('functiongroups/{"id":"g1"}/name')
        assert segments == [Key("functiongroups"), Predicate({"id": "g1"}), Key("name")]

    def test_slash_inside_predicate_does_not_split(self):
        """Slashes inside braces and strings belong to the predicate."""
        segments = parse('files/{"path":"a/b/c"}')
        assert segments == [Key("files"), Predicate({"path": "a/b/c"})]

    def test_non_object_json_falls_back_to_key(self):
        """JSON that is not an object is treated as a plain key."""
        assert parse("a/[1]") == [Key("a"), Key("[1]")]
        assert parse('a/"x"') == [Key("a"), Key('"x"')]

    def test_malformed_predicate_falls_back_to_key(self):
        """A brace token that fails to parse stays a key."""
        assert parse("a/{oops}") == [Key("a"), Key("{oops}")]

    def test_empty_tokens_are_dropped(self):
        """Empty, root and doubled slashes collapse."""
        assert parse("") == []
        assert parse("/") == []
        assert parse("a//b/") == [Key("a"), Key("b")]

    def test_parsed_segments_pass_through(self):
        """Already-parsed sequences are accepted."""
        segments = [Key("a"), Index(1)]
        assert parse(segments) == segments
        assert parse(segments) is not segments

    def test_format_round_trip(self):
        """Formatting parsed segments reproduces a canonical address."""
        address = 'functiongroups/{"id":"g1"}/functions/0'
        assert format_path(parse(address)) == address

    def test_predicate_and_join_helpers(self):
        """join() skips empty parts and predicate() renders compact JSON."""
        assert predicate(id="g1") == '{"id":"g1"}'
        assert join("functiongroups", predicate(id="g1"), "", "functions") == 'functiongroups/{"id":"g1"}/functions'


class TestLooseEquals:
    """Predicate field comparison."""

    def test_number_and_numeric_text(self):
        """Numbers equal their textual form."""
        assert loose_equals(1, "1")
        assert loose_equals("10", 10.0)

    def test_bool_and_text(self):
        """Booleans equal 'true'/'false' text."""
        assert loose_equals(True, "true")
        assert not loose_equals(True, "false")

    def test_bool_is_not_a_number(self):
        """True does not equal 1."""
        assert not loose_equals(True, 1)

    def test_containers_compare_structurally(self):
        """Objects compare by value."""
        assert loose_equals({"a": 1}, {"a": 1})
        assert not loose_equals({"a": 1}, "{'a': 1}")


@pytest.fixture
def tree():
    return {
        "items": [
            {"id": "x", "name": "first", "tags": ["a", "b"]},
            {"id": "y", "name": "second"},
            {"id": "x", "name": "duplicate"},
        ],
        "meta": {"count": 3, "0": "zero-key"},
    }


class TestResolve:
    """Walking addresses against a tree."""

    def test_empty_path_is_root(self, tree):
        """The empty address resolves to the whole tree."""
        resolution = resolve(tree, "")
        assert resolution.value is tree
        assert resolution.is_root
        assert resolution.index == -1

    def test_predicate_returns_first_match_with_index(self, tree):
        """First matching element wins; index and containing array are reported."""
        resolution = resolve(tree, 'items/{"id":"x"}')
        assert resolution.value is tree["items"][0]
        assert resolution.is_array_element
        assert resolution.index == 0
        assert resolution.containing_array_path == "items"

    def test_resolution_is_idempotent(self, tree):
        """Repeated resolution of an unmodified tree yields the same node."""
        first = resolve(tree, 'items/{"id":"y"}')
        second = resolve(tree, 'items/{"id":"y"}')
        assert first.value is second.value
        assert first.index == second.index == 1

    def test_predicate_with_loose_match(self, tree):
        """Predicate values compare loosely."""
        resolution = resolve(tree, 'meta/{"count":"3"}')
        assert resolution.value is tree["meta"]

    def test_predicate_against_object_does_not_descend(self, tree):
        """An object predicate asserts the current node."""
        assert resolve(tree, 'meta/{"count":3}/count').value == 3
        assert resolve(tree, 'meta/{"count":4}') is None

    def test_index_against_array(self, tree):
        """Integer segments index arrays."""
        resolution = resolve(tree, "items/1/name")
        assert resolution.value == "second"
        assert not resolution.is_array_element
        assert resolution.index == -1

    def test_index_against_object_is_a_key(self, tree):
        """An integer segment on an object looks up the key text."""
        assert resolve(tree, "meta/0").value == "zero-key"

    def test_non_integer_key_against_array_fails(self, tree):
        """A word cannot index an array."""
        assert resolve(tree, "items/first") is None

    def test_out_of_range_fails(self, tree):
        """Out-of-range indices do not resolve."""
        assert resolve(tree, "items/9") is None

    def test_missing_property_fails(self, tree):
        """Missing properties do not resolve."""
        assert resolve(tree, "meta/missing") is None

    def test_descending_into_scalar_fails(self, tree):
        """Scalars have no children."""
        assert resolve(tree, "meta/count/deeper") is None

    def test_no_match_fails(self, tree):
        """A predicate with no match does not resolve."""
        assert resolve(tree, 'items/{"id":"zzz"}') is None

    def test_predicate_requires_every_field(self, tree):
        """All predicate fields must be present and equal."""
        assert resolve(tree, 'items/{"id":"x","name":"duplicate"}').index == 2
        assert resolve(tree, 'items/{"id":"y","tags":["a"]}') is None

    def test_container_and_key_locate_node(self, tree):
        """container/key point at the node's slot in its parent."""
        resolution = resolve(tree, "meta/count")
        assert resolution.container is tree["meta"]
        assert resolution.key == "count"
