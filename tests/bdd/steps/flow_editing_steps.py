"""
BDD step definitions for flow editing scenarios.

Scenarios live in features/flow_editing.feature; the test module imports
these steps so pytest-bdd can find them.

Usage:
    Scenario: Example scenario
        Given the order processing flow
        When I link "start" to "g2"
        Then the first function group is "G2"
"""

from typing import Any, Dict

import pytest
from pytest_bdd import given, parsers, then, when

from flowdesigner.errors import FlowDesignerError
from flowdesigner.flow import EditingLevel, FlowGraphModel


@pytest.fixture
def bdd_context() -> Dict[str, Any]:
    """Per-scenario scratch space shared between steps."""
    return {}


def _model(bdd_context: Dict[str, Any]) -> FlowGraphModel:
    return bdd_context["model"]


def _attempt(bdd_context: Dict[str, Any], edit, *args):
    try:
        bdd_context["result"] = edit(*args)
        bdd_context["error"] = None
    except FlowDesignerError as e:
        bdd_context["error"] = e


# ============================================================================
# Given: Preconditions
# ============================================================================


@given("the order processing flow")
def order_flow(bdd_context: Dict[str, Any], flow_document):
    bdd_context["model"] = FlowGraphModel.from_document(flow_document)


@given(parsers.parse('I am editing group "{group_id}"'))
def editing_group(bdd_context: Dict[str, Any], group_id: str):
    _model(bdd_context).switch_level(EditingLevel.GROUP_DETAIL, group_id)


# ============================================================================
# When: Actions
# ============================================================================


@when(parsers.parse('I link "{source}" to "{target}"'))
def link_groups(bdd_context: Dict[str, Any], source: str, target: str):
    bdd_context["result"] = _model(bdd_context).connect_groups(source, target)


@when(parsers.parse('I try to link group "{source}" to group "{target}"'))
def try_link_groups(bdd_context: Dict[str, Any], source: str, target: str):
    _attempt(bdd_context, _model(bdd_context).connect_groups, source, target)


@when(parsers.parse('I try to link "{source}" port "{source_port}" to "{target}" port "{target_port}"'))
def try_link_functions(bdd_context: Dict[str, Any], source: str, source_port: str, target: str, target_port: str):
    _attempt(bdd_context, _model(bdd_context).connect_functions, source, source_port, target, target_port)


@when(parsers.parse('I rename group "{group_id}" to "{name}"'))
def rename_group(bdd_context: Dict[str, Any], group_id: str, name: str):
    _model(bdd_context).rename_function_group(group_id, name)


@when(parsers.parse('I delete group "{group_id}"'))
def delete_group(bdd_context: Dict[str, Any], group_id: str):
    _model(bdd_context).delete_function_group(group_id)


@when(parsers.parse('I rename function "{function_id}" to "{name}"'))
def rename_function(bdd_context: Dict[str, Any], function_id: str, name: str):
    _model(bdd_context).rename_function(function_id, name)


# ============================================================================
# Then: Assertions
# ============================================================================


@then(parsers.parse('the first function group is "{name}"'))
def first_group_is(bdd_context: Dict[str, Any], name: str):
    assert _model(bdd_context).store.get_data("firstfuncgroup") == name


@then(parsers.parse('the graph has a link "{link_id}"'))
def graph_has_link(bdd_context: Dict[str, Any], link_id: str):
    assert _model(bdd_context).get_link(link_id) is not None, [l.id for l in _model(bdd_context).links]


@then(parsers.parse('the edit is rejected with "{error_name}"'))
def edit_rejected(bdd_context: Dict[str, Any], error_name: str):
    error = bdd_context.get("error")
    assert error is not None, "expected the edit to be rejected"
    assert type(error).__name__ == error_name


@then("the document has no changes")
def no_changes(bdd_context: Dict[str, Any]):
    assert _model(bdd_context).store.get_changes() == {}


@then(parsers.parse('group "{group_id}" routes "{value}" to "{target}"'))
def group_routes(bdd_context: Dict[str, Any], group_id: str, value: str, target: str):
    routerdef = _model(bdd_context).store.get_data(FlowGraphModel.group_path(group_id) + "/routerdef")
    pairs = dict(zip(routerdef["values"], routerdef["nextfuncgroups"]))
    assert pairs.get(value) == target


@then(parsers.parse('group "{group_id}" has no routes'))
def group_has_no_routes(bdd_context: Dict[str, Any], group_id: str):
    routerdef = _model(bdd_context).store.get_data(FlowGraphModel.group_path(group_id) + "/routerdef")
    assert routerdef["values"] == [] and routerdef["nextfuncgroups"] == []


@then(parsers.parse('input "{param_id}" of function "{function_id}" reads "{alias}"'))
def input_reads(bdd_context: Dict[str, Any], param_id: str, function_id: str, alias: str):
    model = _model(bdd_context)
    param = model.store.get_data(model.parameter_path(model.group_id, function_id, "inputs", param_id))
    assert param["aliasname"] == alias
