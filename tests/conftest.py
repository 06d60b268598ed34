"""
Shared fixtures for flow designer tests.
"""

import itertools
import sys
from pathlib import Path

import pytest

# Add repo root to path so the package imports without installation
sys.path.insert(0, str(Path(__file__).parent.parent))

from flowdesigner.flow import EditingLevel, FlowGraphModel


def counter_ids(prefix: str = "id"):
    """Deterministic id factory: id_001, id_002, ..."""
    counter = itertools.count(1)
    return lambda: f"{prefix}_{next(counter):03d}"


def make_output(pid, name, dest=None, alias=None):
    return {
        "id": pid,
        "name": name,
        "datatype": 0,
        "outputdest": dest or [],
        "aliasname": alias or [],
        "list": False,
    }


def make_input(pid, name, source=0, alias=""):
    return {"id": pid, "name": name, "datatype": 0, "source": source, "aliasname": alias, "value": "", "list": False}


@pytest.fixture
def single_group_document():
    """One group, no routing, no functions."""
    return {
        "functiongroups": [
            {
                "id": "g1",
                "name": "G1",
                "routerdef": {"variable": "", "values": [], "nextfuncgroups": [], "defaultfuncgroup": ""},
            }
        ]
    }


@pytest.fixture
def flow_document():
    """Three groups; G1 routes on 'status'; group g1 holds functions A and B (B reads A.out1)."""
    return {
        "name": "Orders",
        "uuid": "flow_uuid",
        "version": "1.0",
        "description": "Order processing",
        "workspace": "",
        "inputs": [],
        "outputs": [],
        "firstfuncgroup": "G1",
        "functiongroups": [
            {
                "id": "g1",
                "name": "G1",
                "functiongroupname": "G1",
                "description": "",
                "routerdef": {
                    "variable": "status",
                    "values": ["ok"],
                    "nextfuncgroups": ["G2"],
                    "defaultfuncgroup": "G3",
                },
                "functions": [
                    {
                        "id": "fa",
                        "name": "A",
                        "functionName": "A",
                        "functype": 0,
                        "content": "",
                        "mapdata": {},
                        "inputs": [make_input("a_in1", "in1")],
                        "outputs": [make_output("a_out1", "out1")],
                    },
                    {
                        "id": "fb",
                        "name": "B",
                        "functionName": "B",
                        "functype": 0,
                        "content": "",
                        "mapdata": {},
                        "inputs": [make_input("b_in1", "in1", source=1, alias="A.out1")],
                        "outputs": [make_output("b_out1", "out1", dest=[1], alias=["OrderTotal"])],
                    },
                ],
            },
            {
                "id": "g2",
                "name": "G2",
                "routerdef": {"variable": "", "values": [], "nextfuncgroups": [], "defaultfuncgroup": ""},
                "functions": [],
            },
            {
                "id": "g3",
                "name": "G3",
                "routerdef": {"variable": "", "values": [], "nextfuncgroups": [], "defaultfuncgroup": ""},
                "functions": [],
            },
        ],
    }


@pytest.fixture
def flat_document():
    return {
        "Operations": [
            {"OprSequenceNo": 10, "WorkCenter": "WC1", "Description": "Cut"},
            {"OprSequenceNo": 20, "WorkCenter": "WC2", "Description": "Weld"},
            {"OprSequenceNo": 30, "WorkCenter": "WC3", "Description": "Paint"},
        ],
        "OperationLinks": [
            {"fromnode": "START", "tonode": 10, "Label": "", "wipcontentclassid": 1, "mergegroup": "", "reasoncode": ""},
            {"fromnode": 10, "tonode": 20, "Label": "Good", "wipcontentclassid": 1, "mergegroup": "", "reasoncode": ""},
        ],
        "MergeGroups": [],
    }


@pytest.fixture
def ids():
    return counter_ids()


@pytest.fixture
def group_model(flow_document, ids):
    return FlowGraphModel.from_document(flow_document, id_factory=ids)


@pytest.fixture
def detail_model(flow_document, ids):
    return FlowGraphModel.from_document(flow_document, level=EditingLevel.GROUP_DETAIL, group="g1", id_factory=ids)


@pytest.fixture
def flat_model(flat_document):
    return FlowGraphModel.from_document(flat_document)


@pytest.fixture
def trancode_schema():
    """Schema in the designer's style: top-level $ref into definitions."""
    return {
        "$schema": "http://json-schema.org/draft-07/schema#",
        "$ref": "#/definitions/TranCode",
        "definitions": {
            "TranCode": {
                "type": "object",
                "required": ["name", "version"],
                "hidden": ["uuid"],
                "unchangeable": ["uuid"],
                "properties": {
                    "name": {"type": "string", "lng": {"code": "trancode.name", "default": "Name"}},
                    "version": {"type": "string"},
                    "uuid": {"type": "string"},
                    "description": {"type": "string", "title": "Description"},
                    "firstfuncgroup": {"type": "string"},
                    "functiongroups": {"type": "array", "items": {"$ref": "#/definitions/FunctionGroup"}},
                },
            },
            "FunctionGroup": {
                "type": "object",
                "required": ["id", "name"],
                "hidden": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "routerdef": {"$ref": "#/definitions/RouterDef"},
                    "functions": {"type": "array", "items": {"$ref": "#/definitions/Function"}},
                },
            },
            "RouterDef": {
                "type": "object",
                "properties": {
                    "variable": {"type": "string"},
                    "values": {"type": "array", "items": {"type": "string"}},
                    "nextfuncgroups": {"type": "array", "items": {"type": "string"}},
                    "defaultfuncgroup": {"type": "string"},
                },
            },
            "Function": {
                "type": "object",
                "required": ["id", "name", "functype"],
                "unchangeable": ["id"],
                "properties": {
                    "id": {"type": "string"},
                    "name": {"type": "string"},
                    "functype": {"type": "integer", "enum": list(range(15))},
                    "content": {"type": "string"},
                },
            },
        },
    }
