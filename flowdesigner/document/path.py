"""
path.py - Slash-delimited addresses over JSON trees.

An address is a sequence of segments separated by "/":

    functiongroups/{"id":"g1"}/functions/0/name

Each token is parsed once into one of three segment kinds:
- Key: an object property (or, against an array, a base-10 index)
- Index: a canonical non-negative integer token
- Predicate: a JSON object literal used as a field-equality filter

A token that looks like JSON but is not an object literal is kept as a plain
Key. Resolution never raises: any step that fails yields None.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

_INDEX_RE = re.compile(r"^(0|[1-9][0-9]*)$")


# =============================================================================
# Segment Types
# =============================================================================


@dataclass(frozen=True)
class Key:
    """Object property name (or array index text resolved at walk time)."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Index:
    """Array position. Against an object it falls back to the key str(position)."""

    position: int

    def __str__(self) -> str:
        return str(self.position)


@dataclass(frozen=True)
class Predicate:
    """Field-equality filter selecting the first matching array element."""

    fields: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return json.dumps(self.fields, separators=(",", ":"), ensure_ascii=False)

    def matches(self, candidate: Any) -> bool:
        if not isinstance(candidate, dict):
            return False
        for name, expected in self.fields.items():
            if name not in candidate:
                return False
            if not loose_equals(candidate[name], expected):
                return False
        return True


Segment = Union[Key, Index, Predicate]
PathLike = Union[str, Sequence[Segment]]


@dataclass
class NodeResolution:
    """Result of resolving an address against a tree.

    ``container`` and ``key`` locate the node inside its parent collection
    (both None for the root). ``index`` is -1 unless the node was reached as
    an array element.
    """

    value: Any
    is_array_element: bool = False
    containing_array_path: Optional[str] = None
    index: int = -1
    container: Any = None
    key: Union[str, int, None] = None
    path: List[Segment] = field(default_factory=list)

    @property
    def is_root(self) -> bool:
        return self.container is None

    @property
    def parent_path(self) -> List[Segment]:
        return list(self.path[:-1])


# =============================================================================
# Loose Equality
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text_equals_scalar(text: str, other: Any) -> bool:
    stripped = text.strip()
    if other is None:
        return stripped == "null"
    if isinstance(other, bool):
        return stripped.lower() == ("true" if other else "false")
    if _is_number(other):
        try:
            return float(stripped) == float(other)
        except ValueError:
            return False
    return False


def loose_equals(left: Any, right: Any) -> bool:
    """Compare two JSON values, treating scalars by their textual value.

    ``1 == "1"`` and ``True == "true"`` hold; ``True == 1`` does not.
    Objects and arrays compare structurally.
    """
    if isinstance(left, (dict, list)) or isinstance(right, (dict, list)):
        return left == right
    if isinstance(left, bool) or isinstance(right, bool):
        if isinstance(left, bool) and isinstance(right, bool):
            return left == right
        if isinstance(left, str):
            return _text_equals_scalar(left, right)
        if isinstance(right, str):
            return _text_equals_scalar(right, left)
        return False
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    if isinstance(left, str):
        return _text_equals_scalar(left, right)
    if isinstance(right, str):
        return _text_equals_scalar(right, left)
    return left == right


# =============================================================================
# Parsing
# =============================================================================


def _split(address: str) -> List[str]:
    """Split on '/' outside of braces and JSON string literals."""
    tokens: List[str] = []
    current: List[str] = []
    depth = 0
    in_string = False
    escaped = False
    for ch in address:
        if in_string:
            current.append(ch)
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and depth > 0:
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
        elif ch == "/" and depth == 0:
            tokens.append("".join(current))
            current = []
            continue
        current.append(ch)
    tokens.append("".join(current))
    return [t for t in tokens if t != ""]


def parse_segment(token: str) -> Segment:
    """Classify a single address token."""
    stripped = token.strip()
    if stripped.startswith("{"):
        try:
            parsed = json.loads(stripped)
        except ValueError:
            return Key(token)
        if isinstance(parsed, dict):
            return Predicate(parsed)
        return Key(token)
    if _INDEX_RE.match(token):
        return Index(int(token))
    return Key(token)


def parse(address: PathLike) -> List[Segment]:
    """Parse an address into segments.

    Already-parsed sequences are returned as a fresh list so callers can
    pass either form.
    """
    if address is None:
        return []
    if not isinstance(address, str):
        return list(address)
    return [parse_segment(token) for token in _split(address)]


def format_path(segments: Iterable[Segment]) -> str:
    return "/".join(str(s) for s in segments)


def predicate(**fields: Any) -> str:
    """Render a predicate token, e.g. ``predicate(id="g1")`` -> ``{"id":"g1"}``."""
    return str(Predicate(dict(fields)))


def join(*parts: Union[str, Segment, int]) -> str:
    """Join address parts, skipping empty ones."""
    rendered = []
    for part in parts:
        if part is None:
            continue
        text = str(part).strip("/")
        if text:
            rendered.append(text)
    return "/".join(rendered)


# =============================================================================
# Resolution
# =============================================================================


def _step(current: Any, segment: Segment):
    """Advance one segment. Returns (value, key, via_array) or None."""
    if isinstance(segment, Predicate):
        if isinstance(current, list):
            for i, element in enumerate(current):
                if segment.matches(element):
                    return element, i, True
            return None
        if isinstance(current, dict):
            # Assert the current object without descending.
            return (current, None, False) if segment.matches(current) else None
        return None

    if isinstance(current, list):
        if isinstance(segment, Index):
            position = segment.position
        else:
            try:
                position = int(segment.name)
            except ValueError:
                return None
            if position < 0:
                return None
        if position >= len(current):
            return None
        return current[position], position, True

    if isinstance(current, dict):
        name = str(segment)
        if name not in current:
            return None
        return current[name], name, False

    return None


def resolve(root: Any, address: PathLike) -> Optional[NodeResolution]:
    """Resolve an address against ``root``; None when any step fails."""
    segments = parse(address)
    result = NodeResolution(value=root, path=segments)
    current = root
    for position, segment in enumerate(segments):
        step = _step(current, segment)
        if step is None:
            return None
        value, key, via_array = step
        if key is None:
            # Object predicate: same node, location unchanged.
            continue
        result.container = current
        result.key = key
        if via_array:
            result.is_array_element = True
            result.index = key
            result.containing_array_path = format_path(segments[:position])
        else:
            result.is_array_element = False
            result.index = -1
            result.containing_array_path = None
        current = value
    result.value = current
    return result
