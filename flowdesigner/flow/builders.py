"""
builders.py - Derive the graph for each editing level from the document.

These are pure functions: they read the document and return a GraphPayload.
FlowGraphModel calls them after every edit instead of patching the previous
graph.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from ..document.path import loose_equals
from .document import InputSource, as_code
from .entities import (
    DEFAULT,
    FIRST,
    FUNC_GROUP,
    FUNCTION,
    FUNCTION_LINK,
    GROUP_LINK,
    OPERATION,
    ROUTE,
    SIMPLE_LINK,
    START,
    START_NODE_ID,
    GraphPayload,
    Link,
    MergePoint,
    Node,
    Port,
    default_link_id,
    first_link_id,
    function_link_id,
    route_link_id,
    simple_link_id,
)

logger = logging.getLogger(__name__)

FLOW_START_TOKEN = "START"


def split_alias(alias: Any) -> Optional[Tuple[str, str]]:
    """Split ``"producer.output"`` into its two names; None if malformed."""
    if not isinstance(alias, str) or "." not in alias:
        return None
    producer, output = alias.split(".", 1)
    if not producer or not output:
        return None
    return producer, output


def route_label(variable: str, value: Any) -> str:
    return f"{variable}={value}"


def default_label(variable: str) -> str:
    return "default" if not variable else f"{variable}=default"


def _geometry(entity: Dict[str, Any], position: int, width: int, height: int) -> Dict[str, Any]:
    y = entity.get("y")
    if y in (None, ""):
        y = (height + 20) * (position + 1)
    x = entity.get("x")
    if x in (None, ""):
        x = 100
    return {
        "x": x,
        "y": y,
        "width": entity.get("width") or width,
        "height": entity.get("height") or height,
    }


def _start_node(document: Dict[str, Any], height: int) -> Node:
    geometry = document.get("startnode") or {}
    return Node(
        id=START_NODE_ID,
        type=START,
        name="Start",
        x=geometry.get("x", 20),
        y=geometry.get("y", 20),
        width=geometry.get("width", 100),
        height=geometry.get("height", height // 2),
    )


# =============================================================================
# Group Sequence
# =============================================================================


def build_group_sequence(document: Dict[str, Any], node_width: int = 200, node_height: int = 100) -> GraphPayload:
    payload = GraphPayload(level="group_sequence")
    payload.nodes.append(_start_node(document, node_height))

    groups = [g for g in document.get("functiongroups", []) if isinstance(g, dict)]
    by_name = {g.get("name"): g for g in groups}

    for position, group in enumerate(groups):
        routerdef = group.get("routerdef") or {}
        payload.nodes.append(
            Node(
                id=group["id"],
                type=FUNC_GROUP,
                name=group.get("name", ""),
                description=group.get("description", ""),
                routing=routerdef.get("variable") or None,
                **_geometry(group, position, node_width, node_height),
            )
        )

    first = document.get("firstfuncgroup")
    if first:
        target = by_name.get(first)
        if target is None:
            payload.warnings.append(f"firstfuncgroup '{first}' does not name a function group")
        else:
            payload.links.append(
                Link(id=first_link_id(target["id"]), kind=GROUP_LINK, source=START_NODE_ID,
                     target=target["id"], role=FIRST)
            )

    for group in groups:
        routerdef = group.get("routerdef") or {}
        variable = routerdef.get("variable") or ""
        values = routerdef.get("values") or []
        targets = routerdef.get("nextfuncgroups") or []
        if len(values) != len(targets):
            logger.warning("Group '%s' routing table is unbalanced", group.get("name"))
        for index, (value, target_name) in enumerate(zip(values, targets)):
            target = by_name.get(target_name)
            if target is None:
                payload.warnings.append(f"route '{value}' of '{group.get('name')}' targets unknown group '{target_name}'")
                continue
            payload.links.append(
                Link(id=route_link_id(group["id"], index), kind=GROUP_LINK, source=group["id"],
                     target=target["id"], label=route_label(variable, value), role=ROUTE, route_index=index)
            )
        default_name = routerdef.get("defaultfuncgroup")
        if default_name:
            target = by_name.get(default_name)
            if target is None:
                payload.warnings.append(f"default of '{group.get('name')}' targets unknown group '{default_name}'")
                continue
            payload.links.append(
                Link(id=default_link_id(group["id"]), kind=GROUP_LINK, source=group["id"],
                     target=target["id"], label=default_label(variable), role=DEFAULT)
            )
    return payload


# =============================================================================
# Group Detail
# =============================================================================


def _ports(function: Dict[str, Any]) -> List[Port]:
    ports = []
    for param in function.get("inputs", []):
        ports.append(Port(id=param["id"], name=param.get("name", ""), direction="input",
                          datatype=as_code(param.get("datatype")), source=as_code(param.get("source")),
                          aliasname=param.get("aliasname", "")))
    for param in function.get("outputs", []):
        ports.append(Port(id=param["id"], name=param.get("name", ""), direction="output",
                          datatype=as_code(param.get("datatype")), aliasname=param.get("aliasname", [])))
    return ports


def function_links(group: Dict[str, Any]) -> List[Link]:
    """Links implied by inputs fed from a prior function's output."""
    functions = [f for f in group.get("functions", []) if isinstance(f, dict)]
    by_name = {f.get("name"): f for f in functions}
    links: List[Link] = []
    for consumer in functions:
        for param in consumer.get("inputs", []):
            if as_code(param.get("source")) != InputSource.PRIOR_FUNCTION_OUTPUT:
                continue
            parts = split_alias(param.get("aliasname"))
            if parts is None:
                continue
            producer = by_name.get(parts[0])
            if producer is None:
                continue
            output = next((o for o in producer.get("outputs", []) if o.get("name") == parts[1]), None)
            if output is None:
                continue
            links.append(
                Link(
                    id=function_link_id(producer["id"], output["id"], consumer["id"], param["id"]),
                    kind=FUNCTION_LINK,
                    source=producer["id"],
                    target=consumer["id"],
                    source_port=output["id"],
                    target_port=param["id"],
                    label=param.get("aliasname", ""),
                )
            )
    return links


def build_group_detail(
    document: Dict[str, Any], group_id: str, node_width: int = 200, node_height: int = 100
) -> GraphPayload:
    payload = GraphPayload(level="group_detail", group=group_id)
    group = next(
        (g for g in document.get("functiongroups", []) if isinstance(g, dict) and loose_equals(g.get("id"), group_id)),
        None,
    )
    if group is None:
        payload.warnings.append(f"function group '{group_id}' not found")
        return payload

    for position, function in enumerate(f for f in group.get("functions", []) if isinstance(f, dict)):
        payload.nodes.append(
            Node(
                id=function["id"],
                type=FUNCTION,
                name=function.get("name", ""),
                description=function.get("description", ""),
                functype=as_code(function.get("functype")),
                ports=_ports(function),
                **_geometry(function, position, node_width, node_height),
            )
        )
    payload.links.extend(function_links(group))
    return payload


# =============================================================================
# Flat Block Sequence
# =============================================================================


def operation_node_id(sequence: Any) -> str:
    return FLOW_START_TOKEN.lower() if sequence == FLOW_START_TOKEN else str(sequence)


def build_flat_blocks(document: Dict[str, Any], node_width: int = 200, node_height: int = 100) -> GraphPayload:
    payload = GraphPayload(level="flat_block_sequence")
    payload.nodes.append(_start_node(document, node_height))

    operations = [o for o in document.get("Operations", []) if isinstance(o, dict)]
    known = {START_NODE_ID}
    for position, operation in enumerate(operations):
        sequence = operation.get("OprSequenceNo")
        node_id = operation_node_id(sequence)
        known.add(node_id)
        title = " - ".join(str(p) for p in (sequence, operation.get("WorkCenter"), operation.get("Description")) if p not in (None, ""))
        payload.nodes.append(
            Node(id=node_id, type=OPERATION, name=title or node_id,
                 description=operation.get("Description", ""),
                 **_geometry(operation, position, node_width, node_height))
        )

    merge_points: Dict[int, MergePoint] = {}
    for group in document.get("MergeGroups", []):
        merge_id = as_code(group.get("id") if isinstance(group, dict) else group, 0)
        if merge_id > 0:
            merge_points[merge_id] = MergePoint(id=merge_id)

    for entry in document.get("OperationLinks", []):
        source = operation_node_id(entry.get("fromnode"))
        target = operation_node_id(entry.get("tonode"))
        if source not in known or target not in known:
            payload.warnings.append(f"link {source}->{target} references an unknown operation")
            continue
        merge_id = as_code(entry.get("mergegroup"), 0) or None
        link = Link(id=simple_link_id(source, target), kind=SIMPLE_LINK, source=source, target=target,
                    label=entry.get("Label", ""), merge_point=merge_id)
        if merge_id is not None and merge_id in merge_points:
            merge_points[merge_id].links.append(link.id)
        payload.links.append(link)

    payload.merge_points = [merge_points[k] for k in sorted(merge_points)]
    return payload
