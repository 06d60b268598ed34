"""
document.py - Shape of the flow document the graph layer edits.

Defines the integer enumerations stored on the wire, the per-function-type
parameter templates, factories for new groups/functions/parameters, and the
load-time normalization that fills in whatever an older document omits.
"""

from __future__ import annotations

import copy
import logging
import re
import uuid
from enum import IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

IdFactory = Callable[[], str]

PARAMETER_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_NAME_COUNTER = 99


def generate_id() -> str:
    """UUID4 text with underscores, usable inside alias and DOM-style ids."""
    return str(uuid.uuid4()).replace("-", "_")


# =============================================================================
# Enumerations
# =============================================================================


class DataType(IntEnum):
    STRING = 0
    INTEGER = 1
    FLOAT = 2
    BOOL = 3
    DATETIME = 4
    OBJECT = 5


class InputSource(IntEnum):
    CONSTANT = 0
    PRIOR_FUNCTION_OUTPUT = 1
    SYSTEM_SESSION = 2
    USER_SESSION = 3
    EXTERNAL = 4


class OutputDest(IntEnum):
    NONE = 0
    SESSION = 1
    EXTERNAL = 2


class FunctionType(IntEnum):
    PARAMETER_MAP = 0
    CSHARP_SCRIPT = 1
    JAVASCRIPT = 2
    DATABASE_QUERY = 3
    STORE_PROCEDURE = 4
    SUB_TRAN_CODE = 5
    DATA_INSERT = 6
    DATA_UPDATE = 7
    DATA_DELETE = 8
    COLLECTION_INSERT = 9
    COLLECTION_UPDATE = 10
    COLLECTION_DELETE = 11
    THROW_ERROR = 12
    SEND_MESSAGE = 13
    SEND_EMAIL = 14

    @property
    def label(self) -> str:
        return FUNCTION_TYPE_LABELS[self.value]


DATA_TYPE_LABELS = ["String", "Integer", "Float", "Bool", "DateTime", "Object"]
INPUT_SOURCE_LABELS = ["Constant", "Previous function", "system Session", "User Session", "External"]
OUTPUT_DEST_LABELS = ["", "Session", "External"]
FUNCTION_TYPE_LABELS = [
    "ParameterMap",
    "Csharp Script",
    "Javascript",
    "Database Query",
    "StoreProcedure",
    "SubTranCode",
    "DataInsert",
    "DataUpdate",
    "DataDelete",
    "CollectionInsert",
    "CollectionUpdate",
    "CollectionDelete",
    "ThrowError",
    "SendMessage",
    "SendEmail",
]

SYSTEM_SESSIONS = ["UTCTime", "LocalTime", "UserNo", "UserID", "WorkSpace"]


def as_code(value: Any, default: int = 0) -> int:
    """Read an enum code stored as int or numeric text."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def function_type(value: Any) -> FunctionType:
    """Accept a code, a label ("Database Query") or an enum member."""
    if isinstance(value, FunctionType):
        return value
    if isinstance(value, str) and not value.strip().isdigit():
        for code, label in enumerate(FUNCTION_TYPE_LABELS):
            if label.lower() == value.strip().lower():
                return FunctionType(code)
        try:
            return FunctionType[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown function type '{value}'") from None
    code = as_code(value, -1)
    if code < 0 or code >= len(FUNCTION_TYPE_LABELS):
        raise ValueError(f"Unknown function type '{value}'")
    return FunctionType(code)


# =============================================================================
# Function Type Templates
# =============================================================================


def _in(name: str, datatype: int = 0, value: str = "", source: int = 0, default: str = "", description: str = ""):
    return {
        "name": name,
        "datatype": datatype,
        "value": value,
        "source": source,
        "aliasname": "",
        "defaultvalue": default,
        "description": description,
    }


def _out(name: str, datatype: int = 1, default: str = "0"):
    return {"name": name, "datatype": datatype, "defaultvalue": default}


_ROW_COUNT = _out("RowCount")
_COLUMN_COUNT = _out("ColumnCount")

FUNCTION_TEMPLATES: Dict[FunctionType, Dict[str, List[Dict[str, Any]]]] = {
    FunctionType.SUB_TRAN_CODE: {
        "inputs": [
            _in("TranCode", description="The TranCode to be called!"),
            _in("Version", description="The TranCode version to be called!"),
            _in("ExecutionMode", datatype=1),
        ],
    },
    FunctionType.DATA_INSERT: {
        "inputs": [
            _in("TableName", description="The table name to be inserted!"),
            _in("Execution", datatype=3, value="true"),
            _in("CreatedOn", datatype=4, source=2, default="CurrentUTCTime"),
            _in("CreatedBy", source=2, default="CurrentUser"),
        ],
        "outputs": [_out("Identify")],
    },
    FunctionType.DATABASE_QUERY: {
        "outputs": [_COLUMN_COUNT, _ROW_COUNT],
    },
    FunctionType.STORE_PROCEDURE: {
        "inputs": [_in("StoreProcedureName", description="The Store Procedure name to be inserted!")],
        "outputs": [_COLUMN_COUNT, _ROW_COUNT],
    },
    FunctionType.DATA_UPDATE: {
        "inputs": [
            _in("TableName"),
            _in("Execution", datatype=3, value="true", default="true"),
            _in("UpdatedOn", datatype=4, default="CurrentUTCTime"),
            _in("UpdatedBy", default="CurrentUser"),
        ],
        "outputs": [_ROW_COUNT],
    },
    FunctionType.DATA_DELETE: {
        "inputs": [_in("TableName"), _in("Execution", datatype=3, value="true", default="true")],
        "outputs": [_ROW_COUNT],
    },
    FunctionType.SEND_MESSAGE: {
        "inputs": [_in("Topic")],
    },
    FunctionType.SEND_EMAIL: {
        "inputs": [
            _in("SmtpServer"),
            _in("SmtpPort", datatype=1),
            _in("SmtpUser"),
            _in("SmtpPassword"),
            _in("FromEmail"),
            _in("ToEmails"),
            _in("Subject"),
            _in("Body"),
        ],
    },
}


# =============================================================================
# Factories
# =============================================================================


def new_flow_document(id_factory: IdFactory = generate_id) -> Dict[str, Any]:
    return {
        "name": "New Flow",
        "uuid": id_factory(),
        "version": "1.0",
        "description": "New Flow",
        "inputs": [],
        "outputs": [],
        "functiongroups": [],
        "workspace": "",
    }


def new_routerdef() -> Dict[str, Any]:
    return {"variable": "", "values": [], "nextfuncgroups": [], "defaultfuncgroup": ""}


def new_function_group(
    name: str,
    description: str = "",
    id_factory: IdFactory = generate_id,
    x: int = 100,
    y: int = 100,
    width: int = 200,
    height: int = 100,
) -> Dict[str, Any]:
    return {
        "id": id_factory(),
        "name": name,
        "functiongroupname": name,
        "description": description or name,
        "routerdef": new_routerdef(),
        "functions": [],
        "x": x,
        "y": y,
        "width": width,
        "height": height,
    }


def new_input(name: str, id_factory: IdFactory = generate_id, datatype: int = 0, **fields: Any) -> Dict[str, Any]:
    param = _in(name, datatype=datatype)
    param["list"] = False
    param.update(fields)
    param["id"] = id_factory()
    return param


def new_output(name: str, id_factory: IdFactory = generate_id, datatype: int = 0, **fields: Any) -> Dict[str, Any]:
    param = {
        "name": name,
        "datatype": datatype,
        "description": "",
        "outputdest": [],
        "aliasname": [],
        "defaultvalue": "",
        "list": False,
    }
    param.update(fields)
    param["id"] = id_factory()
    return param


def new_flow_parameter(name: str, id_factory: IdFactory = generate_id, datatype: int = 0) -> Dict[str, Any]:
    return {"id": id_factory(), "name": name, "datatype": datatype, "list": False}


def new_function(
    name: str,
    functype: FunctionType,
    id_factory: IdFactory = generate_id,
    x: int = 100,
    y: int = 100,
    width: int = 200,
    height: int = 100,
) -> Dict[str, Any]:
    """A function populated from its type template (fresh parameter ids)."""
    template = FUNCTION_TEMPLATES.get(functype, {})
    inputs = [new_input(t["name"], id_factory, **{k: v for k, v in t.items() if k != "name"})
              for t in copy.deepcopy(template.get("inputs", []))]
    outputs = [new_output(t["name"], id_factory, **{k: v for k, v in t.items() if k != "name"})
               for t in copy.deepcopy(template.get("outputs", []))]
    return {
        "id": id_factory(),
        "name": name,
        "functionName": name,
        "description": name,
        "functype": int(functype),
        "content": "",
        "mapdata": {},
        "inputs": inputs,
        "outputs": outputs,
        "x": x,
        "y": y,
        "width": width,
        "height": height,
    }


def next_free_name(prefix: str, taken: Iterable[str], limit: int = MAX_NAME_COUNTER) -> Optional[str]:
    """First ``prefix`` + two-digit counter (01..limit) not in ``taken``."""
    used = set(taken)
    for counter in range(1, limit + 1):
        candidate = f"{prefix}{counter:02d}"
        if candidate not in used:
            return candidate
    return None


def is_valid_parameter_name(name: str) -> bool:
    return bool(name) and PARAMETER_NAME_RE.match(name) is not None


# =============================================================================
# Normalization
# =============================================================================


def _normalize_parameters(params: Any, id_factory: IdFactory, output: bool) -> List[Dict[str, Any]]:
    if not isinstance(params, list):
        return []
    for param in params:
        if not isinstance(param, dict):
            continue
        if not param.get("id"):
            param["id"] = id_factory()
        param.setdefault("datatype", 0)
        param.setdefault("list", False)
        if output:
            dest = param.get("outputdest", [])
            alias = param.get("aliasname", [])
            # Older documents store a single destination as scalars.
            param["outputdest"] = dest if isinstance(dest, list) else ([] if dest in ("", None) else [dest])
            param["aliasname"] = alias if isinstance(alias, list) else ([] if alias in ("", None) else [alias])
        else:
            param.setdefault("source", 0)
            param.setdefault("aliasname", "")
            param.setdefault("value", "")
    return params


def normalize_flow_document(document: Dict[str, Any], id_factory: IdFactory = generate_id) -> Dict[str, Any]:
    """Fill in the structure the graph layer relies on, in place.

    Used at load time, before the store snapshot is taken, so normalization
    never shows up as a change.
    """
    if not isinstance(document, dict):
        return document
    groups = document.get("functiongroups")
    if not isinstance(groups, list):
        groups = document["functiongroups"] = []
    document["inputs"] = _normalize_parameters(document.get("inputs", []), id_factory, False)
    document["outputs"] = _normalize_parameters(document.get("outputs", []), id_factory, True)
    for group in groups:
        if not isinstance(group, dict):
            continue
        if not group.get("id"):
            group["id"] = id_factory()
        group.setdefault("name", group.get("functiongroupname", ""))
        group.setdefault("functiongroupname", group["name"])
        routerdef = group.get("routerdef")
        if not isinstance(routerdef, dict):
            routerdef = group["routerdef"] = new_routerdef()
        # null or mistyped entries count as missing
        for key, default in new_routerdef().items():
            if not isinstance(routerdef.get(key), type(default)):
                routerdef[key] = default
        values, targets = routerdef["values"], routerdef["nextfuncgroups"]
        if len(values) != len(targets):
            logger.warning(
                "Group '%s' has %d route values but %d targets; truncating",
                group["name"], len(values), len(targets),
            )
            size = min(len(values), len(targets))
            routerdef["values"], routerdef["nextfuncgroups"] = values[:size], targets[:size]
        functions = group.get("functions")
        if not isinstance(functions, list):
            functions = group["functions"] = []
        for function in functions:
            if not isinstance(function, dict):
                continue
            if not function.get("id"):
                function["id"] = id_factory()
            function.setdefault("functionName", function.get("name", ""))
            function["inputs"] = _normalize_parameters(function.get("inputs", []), id_factory, False)
            function["outputs"] = _normalize_parameters(function.get("outputs", []), id_factory, True)
    return document


def is_flat_block_document(document: Any) -> bool:
    """True for the legacy block-sequence flow kind (Operations/OperationLinks)."""
    return isinstance(document, dict) and "Operations" in document and "functiongroups" not in document


def new_flat_block_document() -> Dict[str, Any]:
    return {"Operations": [], "OperationLinks": [], "MergeGroups": []}


def normalize_flat_block_document(document: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("Operations", "OperationLinks", "MergeGroups"):
        if not isinstance(document.get(key), list):
            document[key] = []
    return document
