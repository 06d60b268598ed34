"""
Tests for SchemaResolver: path walking, field metadata and validation.
"""

import json

import pytest

from flowdesigner.document import SchemaResolver


@pytest.fixture
def resolver(trancode_schema):
    return SchemaResolver(trancode_schema)


class TestWalk:
    """properties_for / definition_for."""

    def test_root_follows_top_level_ref(self, resolver):
        """The top-level $ref is dereferenced."""
        assert "functiongroups" in resolver.root_node()["properties"]

    def test_empty_path_is_root(self, resolver):
        """An empty path yields the root definition."""
        props = resolver.properties_for("")
        assert set(props.properties) >= {"name", "version", "functiongroups"}
        assert props.is_array is False

    def test_array_property_yields_item_definition(self, resolver):
        """Array properties resolve to their item shape."""
        props = resolver.properties_for("functiongroups")
        assert props.is_array is True
        assert "routerdef" in props.properties

    def test_predicates_and_indices_are_skipped(self, resolver):
        """Document-only segments do not appear in the schema walk."""
        by_predicate = resolver.properties_for('functiongroups/{"id":"g1"}/functions')
        by_index = resolver.properties_for("functiongroups/0/functions/3")
        assert by_predicate.node is by_index.node
        assert "functype" in by_predicate.properties

    def test_ref_property(self, resolver):
        """A $ref property resolves to its definition and is not an array."""
        props = resolver.properties_for("functiongroups/0/routerdef")
        assert props.is_array is False
        assert "defaultfuncgroup" in props.properties

    def test_leaf_property(self, resolver):
        """Scalars resolve to their own node with no properties."""
        props = resolver.properties_for("name")
        assert props.node["type"] == "string"
        assert props.properties == {}

    def test_unknown_property_is_none(self, resolver):
        """Names the schema does not declare resolve to None."""
        assert resolver.properties_for("functiongroups/0/nope") is None
        assert resolver.definition_for("nope") is None

    def test_accepts_json_text(self, trancode_schema):
        """Schemas may be passed as JSON text."""
        resolver = SchemaResolver(json.dumps(trancode_schema))
        assert resolver.definition_for("functiongroups")["required"] == ["id", "name"]

    def test_circular_ref_does_not_loop(self):
        """Cyclic references resolve to nothing instead of recursing forever."""
        resolver = SchemaResolver(
            {
                "$ref": "#/definitions/A",
                "definitions": {"A": {"$ref": "#/definitions/B"}, "B": {"$ref": "#/definitions/A"}},
            }
        )
        assert resolver.root_node() == {}
        assert resolver.properties_for("anything") is None


class TestFieldMetadata:
    """field_rules / field_metadata / is_editable."""

    def test_rules_on_root(self, resolver):
        """Form-gating lists are read from the definition."""
        rules = resolver.field_rules("")
        assert rules.required == ["name", "version"]
        assert rules.hidden == ["uuid"]
        assert rules.unchangeable == ["uuid"]

    def test_localized_field(self, resolver):
        """lng code and default are exposed; the default is the label."""
        meta = resolver.field_metadata("", "name")
        assert meta.required is True
        assert meta.lng_code == "trancode.name"
        assert meta.label == "Name"

    def test_title_label(self, resolver):
        """Without lng, the title is the label."""
        assert resolver.field_metadata("", "description").label == "Description"

    def test_hidden_field_not_editable(self, resolver):
        """Hidden and unchangeable fields are not editable."""
        meta = resolver.field_metadata("", "uuid")
        assert meta.hidden and meta.unchangeable
        assert not resolver.is_editable("", "uuid")
        assert resolver.is_editable("", "description")

    def test_nested_enum(self, resolver):
        """UI keywords such as enum are carried through."""
        meta = resolver.field_metadata('functiongroups/{"id":"g1"}/functions', "functype")
        assert meta.type == "integer"
        assert meta.ui["enum"] == list(range(15))
        assert not resolver.is_editable('functiongroups/{"id":"g1"}/functions', "id")

    def test_unknown_field(self, resolver):
        """Unknown fields have no metadata."""
        assert resolver.field_metadata("", "missing") is None
        assert not resolver.is_editable("", "missing")


class TestValidate:
    """validate()."""

    def test_valid_document(self, resolver):
        """A conforming document yields no issues."""
        assert resolver.validate({"name": "Orders", "version": "1.0", "functiongroups": []}) == []

    def test_missing_required(self, resolver):
        """Missing required fields are reported at the root."""
        issues = resolver.validate({"name": "Orders"})
        assert len(issues) == 1
        assert issues[0].path == ""
        assert "version" in issues[0].message

    def test_nested_issue_path(self, resolver):
        """Nested errors carry slash-joined document paths."""
        document = {
            "name": "Orders",
            "version": "1.0",
            "functiongroups": [
                {"id": "g1", "name": "G1", "functions": [{"id": "f1", "name": "F", "functype": 99}]}
            ],
        }
        issues = resolver.validate(document)
        assert [issue.path for issue in issues] == ["functiongroups/0/functions/0/functype"]
        assert issues[0].value == 99
        assert str(issues[0]).startswith("[functiongroups/0/functions/0/functype]")
