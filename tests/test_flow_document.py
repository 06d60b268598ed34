"""
Tests for flow document helpers: enums, templates, naming and normalization.
"""

import pytest

from flowdesigner.flow import FlowGraphModel, FunctionType, normalize_flow_document, user_sessions
from flowdesigner.flow.document import (
    FUNCTION_TYPE_LABELS,
    function_type,
    is_flat_block_document,
    is_valid_parameter_name,
    new_function,
    next_free_name,
)

from conftest import counter_ids


class TestFunctionType:
    """function_type() accepts codes, labels and names."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (3, FunctionType.DATABASE_QUERY),
            ("3", FunctionType.DATABASE_QUERY),
            ("Database Query", FunctionType.DATABASE_QUERY),
            ("database query", FunctionType.DATABASE_QUERY),
            ("SEND_EMAIL", FunctionType.SEND_EMAIL),
            (FunctionType.THROW_ERROR, FunctionType.THROW_ERROR),
        ],
    )
    def test_accepted(self, value, expected):
        """Each accepted spelling maps to the same member."""
        assert function_type(value) is expected

    @pytest.mark.parametrize("value", [-1, 15, "Cobol", None])
    def test_rejected(self, value):
        """Unknown values raise ValueError."""
        with pytest.raises(ValueError):
            function_type(value)

    def test_labels_cover_all_members(self):
        """Every member has a label."""
        assert len(FUNCTION_TYPE_LABELS) == len(FunctionType)
        assert FunctionType.STORE_PROCEDURE.label == "StoreProcedure"


class TestNaming:
    """Default names and parameter name rules."""

    def test_next_free_name(self):
        """Counters start at 01 and skip taken names."""
        assert next_free_name("G", []) == "G01"
        assert next_free_name("G", ["G01", "G02"]) == "G03"

    def test_next_free_name_exhausted(self):
        """None once the counter limit is reached."""
        assert next_free_name("G", [f"G{i:02d}" for i in range(1, 100)]) is None

    @pytest.mark.parametrize("name,ok", [("Order_No", True), ("a-b", True), ("1st", True), ("a b", False), ("a.b", False), ("", False)])
    def test_parameter_names(self, name, ok):
        """Parameter names are letters, digits, underscore and dash."""
        assert is_valid_parameter_name(name) is ok


class TestTemplates:
    """new_function()."""

    def test_store_procedure(self):
        """StoreProcedure has a name input and two counters."""
        function = new_function("SP", FunctionType.STORE_PROCEDURE, counter_ids())
        assert [p["name"] for p in function["inputs"]] == ["StoreProcedureName"]
        assert [p["name"] for p in function["outputs"]] == ["ColumnCount", "RowCount"]

    def test_templates_are_not_shared(self):
        """Two functions never share parameter objects."""
        first = new_function("A", FunctionType.DATA_UPDATE, counter_ids("a"))
        second = new_function("B", FunctionType.DATA_UPDATE, counter_ids("b"))
        first["outputs"][0]["name"] = "Changed"
        assert second["outputs"][0]["name"] == "RowCount"

    def test_parameter_map_is_empty(self):
        """ParameterMap starts without parameters."""
        function = new_function("P", FunctionType.PARAMETER_MAP, counter_ids())
        assert function["inputs"] == [] and function["outputs"] == []


class TestNormalize:
    """normalize_flow_document()."""

    def test_fills_structure(self):
        """Missing ids, routerdefs and parameter fields are filled in."""
        document = {
            "functiongroups": [
                {"functiongroupname": "Old", "functions": [{"name": "F", "inputs": [{"name": "x"}], "outputs": [{"name": "y", "outputdest": 1, "aliasname": "Total"}]}]}
            ]
        }
        normalize_flow_document(document, counter_ids())
        group = document["functiongroups"][0]
        assert group["id"] == "id_001"
        assert group["name"] == "Old"
        assert group["routerdef"]["nextfuncgroups"] == []
        function = group["functions"][0]
        assert function["inputs"][0]["source"] == 0
        assert function["outputs"][0]["outputdest"] == [1]
        assert function["outputs"][0]["aliasname"] == ["Total"]
        assert document["inputs"] == [] and document["outputs"] == []

    def test_null_routerdef_entries(self):
        """null or mistyped routerdef entries are replaced with empty defaults."""
        document = {
            "functiongroups": [
                {
                    "id": "g",
                    "name": "G",
                    "routerdef": {"variable": None, "values": None, "nextfuncgroups": None, "defaultfuncgroup": 3},
                }
            ]
        }
        normalize_flow_document(document, counter_ids())
        assert document["functiongroups"][0]["routerdef"] == {
            "variable": "",
            "values": [],
            "nextfuncgroups": [],
            "defaultfuncgroup": "",
        }

    def test_null_routerdef_entries_load(self):
        """Such a document loads into a model instead of failing."""
        document = {"functiongroups": [{"id": "g", "name": "G", "routerdef": {"values": None, "nextfuncgroups": ["G"]}}]}
        model = FlowGraphModel.from_document(document)
        assert [n.name for n in model.nodes] == ["Start", "G"]
        assert model.links == []

    def test_missing_groups(self):
        """A document without groups gets an empty list."""
        assert normalize_flow_document({})["functiongroups"] == []

    def test_flat_detection(self, flat_document, flow_document):
        """Only Operations documents without groups are flat."""
        assert is_flat_block_document(flat_document)
        assert not is_flat_block_document(flow_document)


class TestUserSessions:
    """user_sessions()."""

    def test_collects_reads_and_writes(self, flow_document):
        """Inputs with a user-session source and session outputs are listed once."""
        function = flow_document["functiongroups"][0]["functions"][0]
        function["inputs"][0].update({"source": 3, "aliasname": "OrderTotal"})
        function["inputs"].append({"id": "x", "name": "when", "source": 2, "aliasname": "UTCTime"})
        assert user_sessions(flow_document) == ["OrderTotal"]
