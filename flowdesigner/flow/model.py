"""
model.py - FlowGraphModel: structural edits over a flow document.

The model shows one of three editing levels:
- group_sequence: function groups, the synthetic Start node and the routing
  links derived from each group's routerdef
- group_detail: the functions of one group, their parameter ports and the
  function links implied by "producer.output" input aliases
- flat_block_sequence: the legacy operation chain with merge points

Every edit follows the same steps: look up the affected ids, build
predicate-addressed paths such as

    functiongroups/{"id":"<gid>"}/functions/{"id":"<fid>"}

issue DocumentStore insert/update/delete calls, then rebuild the whole graph
from the document. Validation happens before the first mutation, so a
rejected edit leaves the document untouched.
"""

from __future__ import annotations

import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..config import DesignerConfig
from ..document import DocumentStore, MutationResult, join, predicate
from ..errors import (
    EditingLevelError,
    EditNotAppliedError,
    EntityNotFoundError,
    InvalidAssignmentError,
    InvalidLinkError,
    InvalidNameError,
    UniquenessViolation,
)
from .builders import (
    FLOW_START_TOKEN,
    build_flat_blocks,
    build_group_detail,
    build_group_sequence,
    operation_node_id,
    split_alias,
)
from .document import (
    DATA_TYPE_LABELS,
    INPUT_SOURCE_LABELS,
    IdFactory,
    InputSource,
    OutputDest,
    as_code,
    function_type,
    generate_id,
    is_flat_block_document,
    is_valid_parameter_name,
    new_flat_block_document,
    new_flow_document,
    new_flow_parameter,
    new_function,
    new_function_group,
    new_input,
    new_output,
    next_free_name,
    normalize_flat_block_document,
    normalize_flow_document,
)
from .entities import (
    DEFAULT,
    FUNCTION_LINK,
    ROUTE,
    SIMPLE_LINK,
    START_NODE_ID,
    GraphPayload,
    Link,
    MergePoint,
    Node,
    default_link_id,
    first_link_id,
    function_link_id,
    route_link_id,
    simple_link_id,
)
from .sessions import is_system_session, user_sessions

logger = logging.getLogger(__name__)

GROUP_NAME_PREFIX = "NewFunctiongroupName"

_GROUP_FIELDS = {"description", "x", "y", "width", "height"}
_FUNCTION_FIELDS = {"description", "content", "mapdata", "functype", "x", "y", "width", "height"}
_INPUT_FIELDS = {"datatype", "description", "value", "defaultvalue", "list", "source", "aliasname"}
_OUTPUT_FIELDS = {"datatype", "description", "defaultvalue", "list", "outputdest", "aliasname"}
_FLOW_PARAMETER_FIELDS = {"datatype", "list", "description", "defaultvalue"}
_OPERATION_FIELDS = {"WorkCenter", "Description", "x", "y", "width", "height"}


class EditingLevel(str, Enum):
    GROUP_SEQUENCE = "group_sequence"
    GROUP_DETAIL = "group_detail"
    FLAT_BLOCK_SEQUENCE = "flat_block_sequence"


@dataclass
class LinkCheck:
    """Verdict of a function-link validation."""

    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


def structural_edit(method):
    """Collect the edit's mutations and rebuild the graph afterwards."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        self.last_mutations = []
        try:
            return method(self, *args, **kwargs)
        finally:
            if self.last_mutations:
                self.rebuild()

    return wrapper


def _direction(direction: str) -> str:
    normalized = str(direction).lower()
    if normalized in ("input", "inputs"):
        return "inputs"
    if normalized in ("output", "outputs"):
        return "outputs"
    raise InvalidAssignmentError(f"direction must be 'inputs' or 'outputs', got '{direction}'")


def _check_fields(kind: str, fields: Dict[str, Any], allowed: Iterable[str]) -> None:
    rejected = sorted(set(fields) - set(allowed))
    if rejected:
        raise InvalidAssignmentError(f"{kind} fields cannot be updated this way: {', '.join(rejected)}")


def _check_datatype(fields: Dict[str, Any]) -> None:
    if "datatype" in fields:
        code = as_code(fields["datatype"], -1)
        if not 0 <= code < len(DATA_TYPE_LABELS):
            raise InvalidAssignmentError(f"unknown datatype '{fields['datatype']}'")
        fields["datatype"] = code


class FlowGraphModel:
    """Graph view over a DocumentStore holding a flow document.

    Usage:
        model = FlowGraphModel.from_document(document)
        gid = model.add_function_group("Validate")
        model.connect_groups(START_NODE_ID, gid)
        model.switch_level(EditingLevel.GROUP_DETAIL, gid)
        fid = model.add_function("ParameterMap")
    """

    def __init__(
        self,
        store: DocumentStore,
        level: EditingLevel = EditingLevel.GROUP_SEQUENCE,
        group: Optional[str] = None,
        config: Optional[DesignerConfig] = None,
        id_factory: Optional[IdFactory] = None,
    ):
        self.store = store
        self.config = config
        self.node_width = config.node_width if config else 200
        self.node_height = config.node_height if config else 100
        self.route_placeholder = config.route_placeholder if config else "new value"
        self.id_factory: IdFactory = id_factory or generate_id
        self.last_mutations: List[MutationResult] = []
        self._payload = GraphPayload(level=EditingLevel(level).value)
        self._nodes: Dict[str, Node] = {}
        self._links: Dict[str, Link] = {}
        self.level = EditingLevel.GROUP_SEQUENCE
        self.group_id: Optional[str] = None
        self.switch_level(level, group)

    @classmethod
    def from_document(
        cls,
        document: Any,
        level: Optional[EditingLevel] = None,
        group: Optional[str] = None,
        config: Optional[DesignerConfig] = None,
        id_factory: Optional[IdFactory] = None,
        allow_changes: Optional[bool] = None,
    ) -> "FlowGraphModel":
        """Normalize ``document`` and wrap it in a fresh store.

        Without an explicit ``level`` the model opens in ``config.default_level``
        (flat documents always open in the flat block sequence).
        """
        factory = id_factory or generate_id
        store = cls._make_store(document, factory, config, allow_changes)
        if level is None:
            level, group = cls._initial_level(store.root, config, group)
        return cls(store, level=level, group=group, config=config, id_factory=factory)

    @staticmethod
    def _initial_level(root: Any, config: Optional[DesignerConfig], group: Optional[str] = None):
        """Pick the opening level and group for a freshly loaded document.

        A group_detail default opens ``group`` when given, otherwise the
        group ``firstfuncgroup`` names, otherwise the first group. A document
        without groups falls back to the group sequence.
        """
        if is_flat_block_document(root):
            return EditingLevel.FLAT_BLOCK_SEQUENCE, None
        wanted = config.default_level if config else EditingLevel.GROUP_SEQUENCE.value
        if wanted != EditingLevel.GROUP_DETAIL.value:
            # flat_block_sequence cannot apply to a group document
            return EditingLevel.GROUP_SEQUENCE, None
        groups = [g for g in (root.get("functiongroups") or []) if isinstance(g, dict)] if isinstance(root, dict) else []
        if group is None:
            first = next((g for g in groups if g.get("name") == root.get("firstfuncgroup")), None)
            chosen = first or (groups[0] if groups else None)
            group = chosen.get("id") if chosen else None
        if group is None:
            return EditingLevel.GROUP_SEQUENCE, None
        return EditingLevel.GROUP_DETAIL, group

    @staticmethod
    def _make_store(document, id_factory, config, allow_changes) -> DocumentStore:
        parsed = DocumentStore(document)
        root = parsed.root
        if is_flat_block_document(root):
            normalize_flat_block_document(root)
        else:
            normalize_flow_document(root, id_factory)
        if allow_changes is None:
            allow_changes = config.allow_changes if config else True
        return DocumentStore(root, allow_changes=allow_changes)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_flat(self) -> bool:
        return is_flat_block_document(self.store.root)

    def switch_level(self, level: EditingLevel, group: Optional[str] = None) -> GraphPayload:
        level = EditingLevel(level)
        if (level == EditingLevel.FLAT_BLOCK_SEQUENCE) != self.is_flat:
            raise EditingLevelError("switch_level", level.value)
        if level == EditingLevel.GROUP_DETAIL:
            if not group or self._find_group(group) is None:
                raise EntityNotFoundError("function group", str(group))
        else:
            group = None
        if level != self.level or group != self.group_id:
            logger.info("Switching editing level to %s%s", level.value, f" ({group})" if group else "")
        self.level = level
        self.group_id = group
        return self.rebuild()

    def rebuild(self) -> GraphPayload:
        """Discard the graph and derive it again from the document."""
        document = self.store.root if isinstance(self.store.root, dict) else {}
        if self.level == EditingLevel.GROUP_DETAIL:
            if self._find_group(self.group_id) is None:
                logger.info("Active group %s is gone; returning to group sequence", self.group_id)
                self.level, self.group_id = EditingLevel.GROUP_SEQUENCE, None
                payload = build_group_sequence(document, self.node_width, self.node_height)
            else:
                payload = build_group_detail(document, self.group_id, self.node_width, self.node_height)
        elif self.level == EditingLevel.FLAT_BLOCK_SEQUENCE:
            payload = build_flat_blocks(document, self.node_width, self.node_height)
        else:
            payload = build_group_sequence(document, self.node_width, self.node_height)
        for warning in payload.warnings:
            logger.warning("%s", warning)
        self._payload = payload
        self._nodes = {node.id: node for node in payload.nodes}
        self._links = {link.id: link for link in payload.links}
        logger.debug("Rebuilt %s graph: %d nodes, %d links", payload.level, len(payload.nodes), len(payload.links))
        return payload

    def reload(self) -> GraphPayload:
        return self.rebuild()

    def load_document(self, document: Any) -> GraphPayload:
        """Replace the whole document (import)."""
        allow = self.store.allow_changes
        self.store = self._make_store(document, self.id_factory, self.config, allow)
        self.level, self.group_id = self._initial_level(self.store.root, self.config)
        logger.info("Loaded flow document '%s'", self.store.get_data("name") or "")
        return self.rebuild()

    def new_flow(self, flat: bool = False) -> GraphPayload:
        document = new_flat_block_document() if flat else new_flow_document(self.id_factory)
        return self.load_document(document)

    def export_json(self, indent: Optional[int] = 2) -> str:
        return self.store.export_json(indent=indent)

    # =========================================================================
    # Read Side
    # =========================================================================

    @property
    def nodes(self) -> List[Node]:
        return list(self._payload.nodes)

    @property
    def links(self) -> List[Link]:
        return list(self._payload.links)

    @property
    def merge_points(self) -> List[MergePoint]:
        return list(self._payload.merge_points)

    def payload(self) -> GraphPayload:
        return self._payload

    def get_node(self, node_id: str) -> Optional[Node]:
        return self._nodes.get(node_id)

    def get_link(self, link_id: str) -> Optional[Link]:
        return self._links.get(link_id)

    def user_sessions(self) -> List[str]:
        return user_sessions(self.store.root)

    # =========================================================================
    # Paths and Lookups
    # =========================================================================

    @staticmethod
    def group_path(group_id: str) -> str:
        return join("functiongroups", predicate(id=group_id))

    @classmethod
    def function_path(cls, group_id: str, function_id: str) -> str:
        return join(cls.group_path(group_id), "functions", predicate(id=function_id))

    @classmethod
    def parameter_path(cls, group_id: str, function_id: str, direction: str, param_id: str) -> str:
        return join(cls.function_path(group_id, function_id), _direction(direction), predicate(id=param_id))

    def _groups(self) -> List[Dict[str, Any]]:
        groups = self.store.get_data("functiongroups") or []
        return [g for g in groups if isinstance(g, dict)]

    def _find_group(self, group_id: Optional[str]) -> Optional[Dict[str, Any]]:
        if not group_id:
            return None
        return self.store.get_data(self.group_path(group_id))

    def _group(self, group_id: str) -> Dict[str, Any]:
        group = self._find_group(group_id)
        if group is None:
            raise EntityNotFoundError("function group", group_id)
        return group

    def _require_level(self, operation: str, *levels: EditingLevel) -> None:
        if self.level not in levels:
            raise EditingLevelError(operation, self.level.value)

    def _active_group(self, operation: str) -> Dict[str, Any]:
        self._require_level(operation, EditingLevel.GROUP_DETAIL)
        return self._group(self.group_id)

    def _functions(self) -> List[Dict[str, Any]]:
        group = self._find_group(self.group_id) or {}
        return [f for f in group.get("functions", []) if isinstance(f, dict)]

    def _find_function(self, function_id: str) -> Optional[Dict[str, Any]]:
        if not self.group_id:
            return None
        return self.store.get_data(self.function_path(self.group_id, function_id))

    def _function(self, function_id: str, operation: str = "function edit") -> Dict[str, Any]:
        self._require_level(operation, EditingLevel.GROUP_DETAIL)
        function = self._find_function(function_id)
        if function is None:
            raise EntityNotFoundError("function", function_id)
        return function

    def _parameter(self, function: Dict[str, Any], direction: str, param_id: str) -> Dict[str, Any]:
        for param in function.get(_direction(direction), []):
            if param.get("id") == param_id:
                return param
        raise EntityNotFoundError("parameter", param_id)

    # =========================================================================
    # Mutation Wrappers
    # =========================================================================

    def _record(self, result: MutationResult) -> MutationResult:
        self.last_mutations.append(result)
        if not result.applied:
            logger.debug("%s %s not applied: %s", result.op, result.path, result.reason)
        return result

    def _insert(self, path: str, value: Any) -> MutationResult:
        return self._record(self.store.insert(path, value))

    def _update(self, path: str, value: Any) -> MutationResult:
        return self._record(self.store.update(path, value))

    def _delete(self, path: str) -> MutationResult:
        return self._record(self.store.delete(path))

    @staticmethod
    def _require_applied(result: MutationResult) -> MutationResult:
        """Edits that hand back a new id must not do so for a write that never happened."""
        if not result.applied:
            raise EditNotAppliedError(result.op, result.path, result.reason or "not applied")
        return result

    # =========================================================================
    # Naming
    # =========================================================================

    @staticmethod
    def _check_entity_name(kind: str, name: Any) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InvalidNameError(kind, str(name), "name must not be empty")
        name = name.strip()
        if "/" in name or '"' in name:
            raise InvalidNameError(kind, name, "'/' and '\"' are not allowed")
        return name

    def _check_function_name(self, name: Any) -> str:
        name = self._check_entity_name("function", name)
        if "." in name:
            raise InvalidNameError("function", name, "'.' separates function and output in aliases")
        return name

    @staticmethod
    def _check_parameter_name(name: Any) -> str:
        if not isinstance(name, str) or not is_valid_parameter_name(name):
            raise InvalidNameError("parameter", str(name))
        return name

    @staticmethod
    def _ensure_unique(kind: str, name: str, siblings: Iterable[Dict[str, Any]], scope: Optional[str] = None,
                       exclude: Optional[str] = None) -> None:
        for sibling in siblings:
            if sibling.get("id") != exclude and sibling.get("name") == name:
                raise UniquenessViolation(kind, name, scope)

    # =========================================================================
    # Function Groups
    # =========================================================================

    @structural_edit
    def add_function_group(self, name: Optional[str] = None, description: str = "",
                           x: Optional[float] = None, y: Optional[float] = None) -> str:
        self._require_level("add_function_group", EditingLevel.GROUP_SEQUENCE)
        groups = self._groups()
        if name is None:
            name = next_free_name(GROUP_NAME_PREFIX, (g.get("name") for g in groups))
            if name is None:
                raise InvalidNameError("function group", GROUP_NAME_PREFIX, "no free default name left")
        name = self._check_entity_name("function group", name)
        self._ensure_unique("function group", name, groups)

        group = new_function_group(
            name,
            description,
            self.id_factory,
            x=100 if x is None else x,
            y=(self.node_height + 20) * (len(groups) + 1) if y is None else y,
            width=self.node_width,
            height=self.node_height,
        )
        self._require_applied(self._insert("functiongroups", group))
        logger.info("Added function group '%s' (%s)", name, group["id"])
        return group["id"]

    @structural_edit
    def rename_function_group(self, group_id: str, new_name: str) -> List[MutationResult]:
        group = self._group(group_id)
        old_name = group.get("name")
        new_name = self._check_entity_name("function group", new_name)
        if new_name == old_name:
            return []
        self._ensure_unique("function group", new_name, self._groups(), exclude=group_id)

        self._update(self.group_path(group_id), {"name": new_name, "functiongroupname": new_name})
        if self.store.get_data("firstfuncgroup") == old_name:
            self._update("firstfuncgroup", new_name)
        for other in self._groups():
            routerdef = other.get("routerdef") or {}
            targets = routerdef.get("nextfuncgroups", [])
            changes: Dict[str, Any] = {}
            if old_name in targets:
                changes["nextfuncgroups"] = [new_name if t == old_name else t for t in targets]
            if routerdef.get("defaultfuncgroup") == old_name:
                changes["defaultfuncgroup"] = new_name
            if changes:
                self._update(join(self.group_path(other["id"]), "routerdef"), changes)
        return list(self.last_mutations)

    @structural_edit
    def update_function_group(self, group_id: str, fields: Dict[str, Any]) -> List[MutationResult]:
        self._group(group_id)
        _check_fields("function group", fields, _GROUP_FIELDS)
        self._update(self.group_path(group_id), dict(fields))
        return list(self.last_mutations)

    @structural_edit
    def set_routing_variable(self, group_id: str, variable: str) -> List[MutationResult]:
        """Set or clear the session variable a group routes on.

        Existing value/target pairs are kept when the variable is cleared.
        """
        self._group(group_id)
        self._update(join(self.group_path(group_id), "routerdef"), {"variable": variable or ""})
        return list(self.last_mutations)

    @structural_edit
    def delete_function_group(self, group_id: str) -> List[MutationResult]:
        group = self._group(group_id)
        name = group.get("name")
        self._delete(self.group_path(group_id))
        if name and self.store.get_data("firstfuncgroup") == name:
            self._update("firstfuncgroup", "")
        for other in self._groups():
            routerdef = other.get("routerdef") or {}
            pairs = list(zip(routerdef.get("values", []), routerdef.get("nextfuncgroups", [])))
            kept = [(v, t) for v, t in pairs if t != name]
            changes: Dict[str, Any] = {}
            if len(kept) != len(pairs):
                changes["values"] = [v for v, _ in kept]
                changes["nextfuncgroups"] = [t for _, t in kept]
            if routerdef.get("defaultfuncgroup") == name:
                changes["defaultfuncgroup"] = ""
            if changes:
                self._update(join(self.group_path(other["id"]), "routerdef"), changes)
        logger.info("Deleted function group '%s' (%s)", name, group_id)
        return list(self.last_mutations)

    # =========================================================================
    # Group Links
    # =========================================================================

    def _link_target(self, source: str, target: str) -> Dict[str, Any]:
        if target == START_NODE_ID:
            raise InvalidLinkError("links cannot target the Start node", source, target)
        if source == target:
            raise InvalidLinkError("a function group cannot link to itself", source, target)
        target_group = self._find_group(target)
        if target_group is None:
            raise InvalidLinkError(f"unknown target group '{target}'", source, target)
        if source != START_NODE_ID and self._find_group(source) is None:
            raise InvalidLinkError(f"unknown source group '{source}'", source, target)
        return target_group

    def _unique_route_value(self, values: List[Any]) -> str:
        if self.route_placeholder not in values:
            return self.route_placeholder
        return next_free_name(self.route_placeholder + " ", (str(v) for v in values)) or self.route_placeholder

    @structural_edit
    def connect_groups(self, source: str, target: str) -> str:
        """Link two groups (or Start to a group); returns the new link id.

        With a routing variable the link becomes a new value/target pair;
        without one it sets (or replaces) the group's default target.
        """
        self._require_level("connect_groups", EditingLevel.GROUP_SEQUENCE)
        target_group = self._link_target(source, target)
        target_name = target_group["name"]

        if source == START_NODE_ID:
            self._require_applied(self._update("firstfuncgroup", target_name))
            return first_link_id(target)

        routerdef = self._group(source).get("routerdef") or {}
        routerdef_path = join(self.group_path(source), "routerdef")
        if routerdef.get("variable"):
            values = list(routerdef.get("values", []))
            targets = list(routerdef.get("nextfuncgroups", []))
            values.append(self._unique_route_value(values))
            targets.append(target_name)
            self._require_applied(self._update(routerdef_path, {"values": values, "nextfuncgroups": targets}))
            return route_link_id(source, len(values) - 1)

        self._require_applied(self._update(routerdef_path, {"defaultfuncgroup": target_name}))
        return default_link_id(source)

    @structural_edit
    def disconnect_groups(self, source: str, target: str, route_index: Optional[int] = None) -> List[MutationResult]:
        target_group = self._find_group(target)
        if target_group is None:
            return []
        target_name = target_group["name"]

        if source == START_NODE_ID:
            if self.store.get_data("firstfuncgroup") == target_name:
                self._update("firstfuncgroup", "")
            return list(self.last_mutations)

        routerdef = self._group(source).get("routerdef") or {}
        values = list(routerdef.get("values", []))
        targets = list(routerdef.get("nextfuncgroups", []))
        changes: Dict[str, Any] = {}
        if route_index is None:
            route_index = targets.index(target_name) if target_name in targets else None
            if routerdef.get("defaultfuncgroup") == target_name:
                changes["defaultfuncgroup"] = ""
        if route_index is not None and 0 <= route_index < len(targets) and targets[route_index] == target_name:
            del values[route_index]
            del targets[route_index]
            changes["values"] = values
            changes["nextfuncgroups"] = targets
        if changes:
            self._update(join(self.group_path(source), "routerdef"), changes)
        return list(self.last_mutations)

    @structural_edit
    def set_route_value(self, source: str, route_index: int, value: Any) -> List[MutationResult]:
        if source == START_NODE_ID:
            raise InvalidLinkError("the Start link has no route value", source)
        group = self._group(source)
        routerdef = group.get("routerdef") or {}
        if not routerdef.get("variable"):
            raise InvalidLinkError(f"group '{group.get('name')}' has no routing variable", source)
        values = list(routerdef.get("values", []))
        if not 0 <= route_index < len(values):
            raise EntityNotFoundError("route", route_link_id(source, route_index))
        for index, existing in enumerate(values):
            if index != route_index and str(existing) == str(value):
                raise UniquenessViolation("route value", str(value), group.get("name"))
        values[route_index] = value
        self._update(join(self.group_path(source), "routerdef"), {"values": values})
        return list(self.last_mutations)

    def delete_link(self, link_id: str) -> List[MutationResult]:
        """Remove whatever document entry produced the given graph link."""
        link = self.get_link(link_id)
        if link is None:
            raise EntityNotFoundError("link", link_id)
        if link.kind == FUNCTION_LINK:
            return self.disconnect_functions(link.source, link.source_port, link.target, link.target_port)
        if link.kind == SIMPLE_LINK:
            return self.disconnect_blocks(link.source, link.target)
        if link.role == ROUTE:
            return self.disconnect_groups(link.source, link.target, route_index=link.route_index)
        if link.role == DEFAULT:
            return self._clear_default(link.source)
        return self.disconnect_groups(link.source, link.target)

    @structural_edit
    def _clear_default(self, group_id: str) -> List[MutationResult]:
        self._update(join(self.group_path(group_id), "routerdef"), {"defaultfuncgroup": ""})
        return list(self.last_mutations)

    @structural_edit
    def move_node(self, node_id: str, x: float, y: float) -> List[MutationResult]:
        """Persist node geometry for the active level."""
        if node_id == START_NODE_ID:
            start = dict(self.store.get_data("startnode") or {})
            start.update({"x": x, "y": y})
            self._update("", {"startnode": start})
        elif self.level == EditingLevel.GROUP_SEQUENCE:
            self._group(node_id)
            self._update(self.group_path(node_id), {"x": x, "y": y})
        elif self.level == EditingLevel.GROUP_DETAIL:
            self._function(node_id)
            self._update(self.function_path(self.group_id, node_id), {"x": x, "y": y})
        else:
            operation = self._operation(node_id)
            self._update(self._operation_path(operation), {"x": x, "y": y})
        return list(self.last_mutations)

    # =========================================================================
    # Functions
    # =========================================================================

    @structural_edit
    def add_function(self, functype: Any = 0, name: Optional[str] = None,
                     x: Optional[float] = None, y: Optional[float] = None) -> str:
        """Add a function to the active group, pre-populated from its type."""
        self._active_group("add_function")
        try:
            ftype = function_type(functype)
        except ValueError as e:
            raise InvalidAssignmentError(str(e)) from None
        functions = self._functions()
        if name is None:
            prefix = ftype.label.replace(" ", "")
            name = next_free_name(prefix, (f.get("name") for f in functions))
            if name is None:
                raise InvalidNameError("function", prefix, "no free default name left")
        name = self._check_function_name(name)
        self._ensure_unique("function", name, functions, scope=self.group_id)

        function = new_function(
            name,
            ftype,
            self.id_factory,
            x=100 if x is None else x,
            y=(self.node_height + 20) * (len(functions) + 1) if y is None else y,
            width=self.node_width,
            height=self.node_height,
        )
        self._require_applied(self._insert(join(self.group_path(self.group_id), "functions"), function))
        logger.info("Added %s function '%s' to group %s", ftype.label, name, self.group_id)
        return function["id"]

    def _inputs_aliasing(self, matches) -> Iterable[tuple]:
        """Yield (function, input) pairs whose prior-output alias satisfies ``matches``."""
        for function in self._functions():
            for param in function.get("inputs", []):
                if as_code(param.get("source")) != InputSource.PRIOR_FUNCTION_OUTPUT:
                    continue
                parts = split_alias(param.get("aliasname"))
                if parts is not None and matches(*parts):
                    yield function, param

    @structural_edit
    def rename_function(self, function_id: str, new_name: str) -> List[MutationResult]:
        """Rename a function and rewrite "old.<output>" aliases in its group."""
        function = self._function(function_id, "rename_function")
        old_name = function.get("name")
        new_name = self._check_function_name(new_name)
        if new_name == old_name:
            return []
        self._ensure_unique("function", new_name, self._functions(), scope=self.group_id, exclude=function_id)

        affected = list(self._inputs_aliasing(lambda producer, _: producer == old_name))
        self._update(self.function_path(self.group_id, function_id), {"name": new_name, "functionName": new_name})
        for consumer, param in affected:
            output = split_alias(param["aliasname"])[1]
            self._update(
                self.parameter_path(self.group_id, consumer["id"], "inputs", param["id"]),
                {"aliasname": f"{new_name}.{output}"},
            )
        return list(self.last_mutations)

    @structural_edit
    def update_function(self, function_id: str, fields: Dict[str, Any]) -> List[MutationResult]:
        self._function(function_id)
        _check_fields("function", fields, _FUNCTION_FIELDS)
        fields = dict(fields)
        if "functype" in fields:
            try:
                fields["functype"] = int(function_type(fields["functype"]))
            except ValueError as e:
                raise InvalidAssignmentError(str(e)) from None
        if "mapdata" in fields and not isinstance(fields["mapdata"], dict):
            raise InvalidAssignmentError("mapdata must be an object")
        self._update(self.function_path(self.group_id, function_id), fields)
        return list(self.last_mutations)

    @structural_edit
    def delete_function(self, function_id: str) -> List[MutationResult]:
        """Delete a function and detach every input that read from it."""
        function = self._function(function_id)
        name = function.get("name")
        affected = [
            (consumer, param)
            for consumer, param in self._inputs_aliasing(lambda producer, _: producer == name)
            if consumer.get("id") != function_id
        ]
        self._delete(self.function_path(self.group_id, function_id))
        for consumer, param in affected:
            self._update(
                self.parameter_path(self.group_id, consumer["id"], "inputs", param["id"]),
                {"source": int(InputSource.CONSTANT), "aliasname": ""},
            )
        return list(self.last_mutations)

    # =========================================================================
    # Parameters
    # =========================================================================

    @structural_edit
    def add_parameter(self, function_id: str, direction: str, name: str, datatype: int = 0) -> str:
        function = self._function(function_id)
        direction = _direction(direction)
        name = self._check_parameter_name(name)
        self._ensure_unique("parameter", name, function.get(direction, []), scope=function.get("name"))
        fields = {"datatype": datatype}
        _check_datatype(fields)
        factory = new_input if direction == "inputs" else new_output
        param = factory(name, self.id_factory, datatype=fields["datatype"])
        self._require_applied(self._insert(join(self.function_path(self.group_id, function_id), direction), param))
        return param["id"]

    @structural_edit
    def rename_parameter(self, function_id: str, direction: str, param_id: str, new_name: str) -> List[MutationResult]:
        """Rename a parameter; output renames rewrite "fn.old" aliases."""
        function = self._function(function_id)
        direction = _direction(direction)
        param = self._parameter(function, direction, param_id)
        old_name = param.get("name")
        new_name = self._check_parameter_name(new_name)
        if new_name == old_name:
            return []
        self._ensure_unique("parameter", new_name, function.get(direction, []),
                            scope=function.get("name"), exclude=param_id)

        affected = []
        if direction == "outputs":
            fn_name = function.get("name")
            affected = list(self._inputs_aliasing(lambda producer, output: producer == fn_name and output == old_name))
        self._update(self.parameter_path(self.group_id, function_id, direction, param_id), {"name": new_name})
        for consumer, consumer_param in affected:
            self._update(
                self.parameter_path(self.group_id, consumer["id"], "inputs", consumer_param["id"]),
                {"aliasname": f"{function.get('name')}.{new_name}"},
            )
        return list(self.last_mutations)

    @structural_edit
    def update_parameter(self, function_id: str, direction: str, param_id: str,
                         fields: Dict[str, Any]) -> List[MutationResult]:
        function = self._function(function_id)
        direction = _direction(direction)
        self._parameter(function, direction, param_id)
        fields = dict(fields)
        _check_fields("parameter", fields, _INPUT_FIELDS if direction == "inputs" else _OUTPUT_FIELDS)
        _check_datatype(fields)
        if "source" in fields:
            code = as_code(fields["source"], -1)
            if not 0 <= code < len(INPUT_SOURCE_LABELS):
                raise InvalidAssignmentError(f"unknown input source '{fields['source']}'")
            fields["source"] = code
        if direction == "outputs" and ("outputdest" in fields or "aliasname" in fields):
            dest = fields.get("outputdest", [])
            alias = fields.get("aliasname", [])
            if not isinstance(dest, list) or not isinstance(alias, list) or len(dest) != len(alias):
                raise InvalidAssignmentError("outputdest and aliasname must be lists of equal length")
        self._update(self.parameter_path(self.group_id, function_id, direction, param_id), fields)
        return list(self.last_mutations)

    @structural_edit
    def delete_parameter(self, function_id: str, direction: str, param_id: str) -> List[MutationResult]:
        function = self._function(function_id)
        direction = _direction(direction)
        param = self._parameter(function, direction, param_id)
        affected = []
        if direction == "outputs":
            fn_name, out_name = function.get("name"), param.get("name")
            affected = list(self._inputs_aliasing(lambda producer, output: producer == fn_name and output == out_name))
        self._delete(self.parameter_path(self.group_id, function_id, direction, param_id))
        for consumer, consumer_param in affected:
            self._update(
                self.parameter_path(self.group_id, consumer["id"], "inputs", consumer_param["id"]),
                {"source": int(InputSource.CONSTANT), "aliasname": ""},
            )
        return list(self.last_mutations)

    # =========================================================================
    # Function Links
    # =========================================================================

    def validate_function_link(self, source_fn: str, source_port: str, target_fn: str, target_port: str) -> LinkCheck:
        """Check an output->input link without touching the document.

        The loop guard only looks one hop back: the link is refused when the
        source function already reads an output of the target function.
        Longer cycles are not detected.
        """
        if self.level != EditingLevel.GROUP_DETAIL:
            return LinkCheck(False, "function links exist only inside a function group")
        if source_fn == target_fn:
            return LinkCheck(False, "a function cannot link to itself")
        source = self._find_function(source_fn)
        target = self._find_function(target_fn)
        if source is None or target is None:
            return LinkCheck(False, "both ends must be functions of the active group")
        if not any(p.get("id") == source_port for p in source.get("outputs", [])):
            return LinkCheck(False, "source port must be an output of the source function")
        if not any(p.get("id") == target_port for p in target.get("inputs", [])):
            return LinkCheck(False, "target port must be an input of the target function")
        target_name = target.get("name")
        for param in source.get("inputs", []):
            if as_code(param.get("source")) != InputSource.PRIOR_FUNCTION_OUTPUT:
                continue
            parts = split_alias(param.get("aliasname"))
            if parts is not None and parts[0] == target_name:
                return LinkCheck(
                    False,
                    f"'{source.get('name')}' already reads '{param.get('aliasname')}'; linking back would loop",
                )
        return LinkCheck(True)

    @structural_edit
    def connect_functions(self, source_fn: str, source_port: str, target_fn: str, target_port: str) -> str:
        check = self.validate_function_link(source_fn, source_port, target_fn, target_port)
        if not check:
            raise InvalidLinkError(check.reason, source_fn, target_fn)
        source = self._function(source_fn)
        output = self._parameter(source, "outputs", source_port)
        self._require_applied(self._update(
            self.parameter_path(self.group_id, target_fn, "inputs", target_port),
            {"source": int(InputSource.PRIOR_FUNCTION_OUTPUT), "aliasname": f"{source.get('name')}.{output.get('name')}"},
        ))
        return function_link_id(source_fn, source_port, target_fn, target_port)

    @structural_edit
    def disconnect_functions(self, source_fn: str, source_port: str, target_fn: str, target_port: str) -> List[MutationResult]:
        self._require_level("disconnect_functions", EditingLevel.GROUP_DETAIL)
        source = self._find_function(source_fn)
        target = self._find_function(target_fn)
        if source is None or target is None:
            return []
        output = next((p for p in source.get("outputs", []) if p.get("id") == source_port), None)
        param = next((p for p in target.get("inputs", []) if p.get("id") == target_port), None)
        if output is None or param is None:
            return []
        expected = f"{source.get('name')}.{output.get('name')}"
        if as_code(param.get("source")) == InputSource.PRIOR_FUNCTION_OUTPUT and param.get("aliasname") == expected:
            self._update(
                self.parameter_path(self.group_id, target_fn, "inputs", target_port),
                {"source": int(InputSource.CONSTANT), "aliasname": ""},
            )
        return list(self.last_mutations)

    # =========================================================================
    # Session Variables
    # =========================================================================

    @structural_edit
    def assign_session_variable(self, function_id: str, direction: str, param_id: str,
                                kind: str, variable: str) -> List[MutationResult]:
        """Bind a parameter to a system or user session variable.

        Inputs read from the session; outputs add a session destination.
        System sessions are read-only, so they cannot receive outputs.
        """
        function = self._function(function_id)
        direction = _direction(direction)
        param = self._parameter(function, direction, param_id)
        kind = str(kind).lower()
        if kind not in ("system", "user"):
            raise InvalidAssignmentError(f"session kind must be 'system' or 'user', got '{kind}'")
        if kind == "system" and not is_system_session(variable):
            raise InvalidAssignmentError(f"'{variable}' is not a system session")
        if kind == "user" and not is_valid_parameter_name(variable or ""):
            raise InvalidNameError("session variable", str(variable))

        path = self.parameter_path(self.group_id, function_id, direction, param_id)
        if direction == "inputs":
            source = InputSource.SYSTEM_SESSION if kind == "system" else InputSource.USER_SESSION
            self._update(path, {"source": int(source), "aliasname": variable})
            return list(self.last_mutations)

        if kind == "system":
            raise InvalidAssignmentError("system sessions cannot be assigned to an output")
        dest = list(param.get("outputdest", []))
        alias = list(param.get("aliasname", []))
        if any(as_code(d) == OutputDest.SESSION and a == variable for d, a in zip(dest, alias)):
            return []
        dest.append(int(OutputDest.SESSION))
        alias.append(variable)
        self._update(path, {"outputdest": dest, "aliasname": alias})
        return list(self.last_mutations)

    @structural_edit
    def clear_session_variable(self, function_id: str, direction: str, param_id: str,
                               variable: Optional[str] = None) -> List[MutationResult]:
        function = self._function(function_id)
        direction = _direction(direction)
        param = self._parameter(function, direction, param_id)
        path = self.parameter_path(self.group_id, function_id, direction, param_id)
        if direction == "inputs":
            if as_code(param.get("source")) in (InputSource.SYSTEM_SESSION, InputSource.USER_SESSION):
                self._update(path, {"source": int(InputSource.CONSTANT), "aliasname": ""})
            return list(self.last_mutations)
        pairs = list(zip(param.get("outputdest", []), param.get("aliasname", [])))
        kept = [(d, a) for d, a in pairs if not (as_code(d) == OutputDest.SESSION and (variable is None or a == variable))]
        if len(kept) != len(pairs):
            self._update(path, {"outputdest": [d for d, _ in kept], "aliasname": [a for _, a in kept]})
        return list(self.last_mutations)

    # =========================================================================
    # Flow (Transaction) Parameters
    # =========================================================================

    def _flow_parameters(self, direction: str) -> List[Dict[str, Any]]:
        return [p for p in self.store.get_data(_direction(direction)) or [] if isinstance(p, dict)]

    def _flow_parameter(self, direction: str, param_id: str) -> Dict[str, Any]:
        for param in self._flow_parameters(direction):
            if param.get("id") == param_id:
                return param
        raise EntityNotFoundError("flow parameter", param_id)

    @structural_edit
    def add_flow_parameter(self, direction: str, name: str, datatype: int = 0) -> str:
        direction = _direction(direction)
        if self.is_flat:
            raise EditingLevelError("add_flow_parameter", self.level.value)
        name = self._check_parameter_name(name)
        self._ensure_unique("flow parameter", name, self._flow_parameters(direction), scope=direction)
        fields = {"datatype": datatype}
        _check_datatype(fields)
        if self.store.get(direction) is None:
            self._require_applied(self._update("", {direction: []}))
        param = new_flow_parameter(name, self.id_factory, fields["datatype"])
        self._require_applied(self._insert(direction, param))
        return param["id"]

    @structural_edit
    def rename_flow_parameter(self, direction: str, param_id: str, new_name: str) -> List[MutationResult]:
        direction = _direction(direction)
        param = self._flow_parameter(direction, param_id)
        new_name = self._check_parameter_name(new_name)
        if new_name == param.get("name"):
            return []
        self._ensure_unique("flow parameter", new_name, self._flow_parameters(direction), scope=direction, exclude=param_id)
        self._update(join(direction, predicate(id=param_id)), {"name": new_name})
        return list(self.last_mutations)

    @structural_edit
    def update_flow_parameter(self, direction: str, param_id: str, fields: Dict[str, Any]) -> List[MutationResult]:
        direction = _direction(direction)
        self._flow_parameter(direction, param_id)
        fields = dict(fields)
        _check_fields("flow parameter", fields, _FLOW_PARAMETER_FIELDS)
        _check_datatype(fields)
        self._update(join(direction, predicate(id=param_id)), fields)
        return list(self.last_mutations)

    @structural_edit
    def delete_flow_parameter(self, direction: str, param_id: str) -> List[MutationResult]:
        direction = _direction(direction)
        self._flow_parameter(direction, param_id)
        self._delete(join(direction, predicate(id=param_id)))
        return list(self.last_mutations)

    # =========================================================================
    # Flat Block Sequence
    # =========================================================================

    def _operations(self) -> List[Dict[str, Any]]:
        return [o for o in self.store.get_data("Operations") or [] if isinstance(o, dict)]

    def _find_operation(self, node_id: Any) -> Optional[Dict[str, Any]]:
        for operation in self._operations():
            if operation_node_id(operation.get("OprSequenceNo")) == str(node_id):
                return operation
        return None

    def _operation(self, node_id: Any) -> Dict[str, Any]:
        operation = self._find_operation(node_id)
        if operation is None:
            raise EntityNotFoundError("operation", str(node_id))
        return operation

    @staticmethod
    def _operation_path(operation: Dict[str, Any]) -> str:
        return join("Operations", predicate(OprSequenceNo=operation.get("OprSequenceNo")))

    def _operation_links(self) -> List[Dict[str, Any]]:
        return [l for l in self.store.get_data("OperationLinks") or [] if isinstance(l, dict)]

    def _find_block_link(self, source: str, target: str) -> Optional[Dict[str, Any]]:
        for entry in self._operation_links():
            if (operation_node_id(entry.get("fromnode")) == str(source)
                    and operation_node_id(entry.get("tonode")) == str(target)):
                return entry
        return None

    @staticmethod
    def _block_link_path(entry: Dict[str, Any]) -> str:
        return join("OperationLinks", predicate(fromnode=entry.get("fromnode"), tonode=entry.get("tonode")))

    @structural_edit
    def add_operation(self, sequence: Optional[int] = None, work_center: str = "", description: str = "",
                      x: Optional[float] = None, y: Optional[float] = None) -> str:
        self._require_level("add_operation", EditingLevel.FLAT_BLOCK_SEQUENCE)
        operations = self._operations()
        numbers = [as_code(o.get("OprSequenceNo"), 0) for o in operations]
        if sequence is None:
            sequence = (max(numbers) if numbers else 0) + 10
        if self._find_operation(sequence) is not None:
            raise UniquenessViolation("operation", str(sequence))
        operation = {
            "OprSequenceNo": sequence,
            "WorkCenter": work_center,
            "Description": description,
            "x": 100 if x is None else x,
            "y": (self.node_height + 20) * (len(operations) + 1) if y is None else y,
            "width": self.node_width,
            "height": self.node_height,
        }
        self._require_applied(self._insert("Operations", operation))
        return operation_node_id(sequence)

    @structural_edit
    def update_operation(self, node_id: str, fields: Dict[str, Any]) -> List[MutationResult]:
        operation = self._operation(node_id)
        _check_fields("operation", fields, _OPERATION_FIELDS)
        self._update(self._operation_path(operation), dict(fields))
        return list(self.last_mutations)

    @structural_edit
    def delete_operation(self, node_id: str) -> List[MutationResult]:
        """Delete an operation together with every link touching it."""
        self._require_level("delete_operation", EditingLevel.FLAT_BLOCK_SEQUENCE)
        operation = self._operation(node_id)
        self._delete(self._operation_path(operation))
        links = self._operation_links()
        kept = [
            entry for entry in links
            if str(node_id) not in (operation_node_id(entry.get("fromnode")), operation_node_id(entry.get("tonode")))
        ]
        if len(kept) != len(links):
            self._update("OperationLinks", kept)
        return list(self.last_mutations)

    @structural_edit
    def connect_blocks(self, source: str, target: str, merge_group: Optional[int] = None) -> str:
        self._require_level("connect_blocks", EditingLevel.FLAT_BLOCK_SEQUENCE)
        if target == START_NODE_ID:
            raise InvalidLinkError("links cannot target the Start node", source, target)
        if str(source) == str(target):
            raise InvalidLinkError("an operation cannot link to itself", source, target)
        target_op = self._find_operation(target)
        source_op = None if source == START_NODE_ID else self._find_operation(source)
        if target_op is None or (source != START_NODE_ID and source_op is None):
            raise InvalidLinkError("both ends must be operations", source, target)
        if self._find_block_link(source, target) is not None:
            raise InvalidLinkError("operations are already linked", source, target)
        entry = {
            "fromnode": FLOW_START_TOKEN if source_op is None else source_op.get("OprSequenceNo"),
            "tonode": target_op.get("OprSequenceNo"),
            "Label": "Good",
            "wipcontentclassid": 1,
            "mergegroup": merge_group or "",
            "reasoncode": "",
        }
        self._require_applied(self._insert("OperationLinks", entry))
        return simple_link_id(operation_node_id(entry["fromnode"]), operation_node_id(entry["tonode"]))

    @structural_edit
    def disconnect_blocks(self, source: str, target: str) -> List[MutationResult]:
        entry = self._find_block_link(source, target)
        if entry is not None:
            self._delete(self._block_link_path(entry))
        return list(self.last_mutations)

    @structural_edit
    def set_link_label(self, source: str, target: str, label: str,
                       wipcontentclassid: Optional[int] = None, reasoncode: Optional[str] = None) -> List[MutationResult]:
        entry = self._find_block_link(source, target)
        if entry is None:
            raise EntityNotFoundError("link", simple_link_id(source, target))
        fields: Dict[str, Any] = {"Label": label}
        if wipcontentclassid is not None:
            fields["wipcontentclassid"] = wipcontentclassid
        if reasoncode is not None:
            fields["reasoncode"] = reasoncode
        self._update(self._block_link_path(entry), fields)
        return list(self.last_mutations)

    @structural_edit
    def add_merge_point(self, source: str, target: str) -> int:
        """Create a merge point and attach the source->target link to it."""
        self._require_level("add_merge_point", EditingLevel.FLAT_BLOCK_SEQUENCE)
        entry = self._find_block_link(source, target)
        if entry is None:
            raise EntityNotFoundError("link", simple_link_id(source, target))
        existing = [as_code(g.get("id") if isinstance(g, dict) else g, 0)
                    for g in self.store.get_data("MergeGroups") or []]
        merge_id = (max(existing) if existing else 0) + 1
        self._require_applied(self._insert("MergeGroups", {"id": merge_id}))
        self._require_applied(self._update(self._block_link_path(entry), {"mergegroup": merge_id}))
        return merge_id
