"""
store.py - DocumentStore: the live JSON tree plus its load-time snapshot.

All reads and writes are addressed by path strings (see path.py). Writes are
explicit method calls that return a MutationResult describing what changed;
nothing intercepts assignments behind the caller's back.

Unresolvable paths are not errors: reads return None and writes return a
MutationResult with ``applied=False``.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional, Tuple

from .path import NodeResolution, PathLike, Predicate, Segment, format_path, parse, resolve

logger = logging.getLogger(__name__)


# =============================================================================
# Change Descriptors
# =============================================================================


@dataclass
class MutationResult:
    """Outcome of one insert/update/delete call."""

    op: str
    path: str
    applied: bool
    old_value: Any = None
    new_value: Any = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.applied

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FieldChange:
    """One differing leaf (or whole array) between snapshot and live tree."""

    path: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        return {"path": self.path, "oldValue": self.old_value, "newValue": self.new_value}


def _as_json(value: Any) -> Tuple[bool, Any]:
    """Return (looks_like_json, normalized_value).

    Objects and arrays are JSON already; strings count as JSON when they
    parse. Note that scalar text such as "123" or "true" parses too.
    """
    if isinstance(value, (Mapping, list)):
        return True, value
    if isinstance(value, str):
        try:
            return True, json.loads(value)
        except ValueError:
            return False, value
    return False, value


def _leaf_equal(old: Any, new: Any) -> bool:
    if isinstance(old, bool) != isinstance(new, bool):
        return False
    if isinstance(old, (dict, list)) or isinstance(new, (dict, list)):
        return False
    return old == new


# =============================================================================
# DocumentStore
# =============================================================================


class DocumentStore:
    """Owns one JSON document and the snapshot taken when it was loaded.

    Usage:
        store = DocumentStore({"functiongroups": []})
        store.insert("functiongroups", {"id": "g1", "name": "G1"})
        store.update('functiongroups/{"id":"g1"}/name', "Main")
        store.get_changes()
    """

    def __init__(self, document: Any = None, allow_changes: bool = True):
        if isinstance(document, (bytes, bytearray)):
            document = document.decode("utf-8")
        if isinstance(document, str):
            document = json.loads(document)
        if document is None:
            document = {}
        self.root: Any = document
        self.snapshot: Any = copy.deepcopy(document)
        self.allow_changes = allow_changes
        self.dirty = False

    @classmethod
    def from_json(cls, text: str, allow_changes: bool = True) -> "DocumentStore":
        return cls(json.loads(text), allow_changes=allow_changes)

    def export_json(self, indent: Optional[int] = None) -> str:
        return json.dumps(self.root, indent=indent, ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, path: PathLike) -> Optional[NodeResolution]:
        """Resolve ``path``; the returned value is a live reference into root."""
        return resolve(self.root, path)

    def get_data(self, path: PathLike) -> Any:
        resolution = resolve(self.root, path)
        return None if resolution is None else resolution.value

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def insert(self, path: PathLike, value: Any) -> MutationResult:
        """Append into an array, merge into an object, or replace a scalar.

        A string value that parses as JSON is treated as JSON. Against an
        object, such a value only merges when it parses to an object; text
        like "123" parses to a number and leaves the object untouched.
        """
        path_text = self._text(path)
        refused = self._check_writable("insert", path_text)
        if refused is not None:
            return refused

        resolution = resolve(self.root, path)
        if resolution is None:
            return self._unresolved("insert", path_text)

        looks_like_json, parsed = _as_json(value)
        target = resolution.value

        if isinstance(target, list):
            item = copy.deepcopy(parsed) if looks_like_json else value
            target.append(item)
            return self._applied("insert", path_text, None, item)

        if isinstance(target, dict) and looks_like_json:
            if not isinstance(parsed, Mapping):
                logger.debug("insert %s: JSON value %r is not an object, nothing merged", path_text, value)
                return MutationResult(
                    "insert", path_text, False, reason="value is JSON but not an object"
                )
            old = copy.deepcopy(target)
            target.update(copy.deepcopy(dict(parsed)))
            return self._applied("insert", path_text, old, target)

        replacement = parsed if isinstance(parsed, (Mapping, list)) else value
        return self._replace("insert", path_text, resolution, copy.deepcopy(replacement))

    def update(self, path: PathLike, new_value: Any) -> MutationResult:
        """Merge a mapping into an existing object or assign a value in place.

        A bare scalar addresses a field of the parent path: updating
        ``a/b/name`` with ``"x"`` is the same as merging ``{"name": "x"}``
        into ``a/b``.
        """
        path_text = self._text(path)
        refused = self._check_writable("update", path_text)
        if refused is not None:
            return refused

        segments = parse(path)
        resolution = resolve(self.root, segments)

        if isinstance(new_value, Mapping):
            if resolution is None:
                return self._unresolved("update", path_text)
            if isinstance(resolution.value, dict):
                old = copy.deepcopy(resolution.value)
                resolution.value.update(copy.deepcopy(dict(new_value)))
                return self._applied("update", path_text, old, resolution.value)
            return self._replace("update", path_text, resolution, copy.deepcopy(dict(new_value)))

        if isinstance(new_value, list):
            if resolution is None:
                return self._unresolved("update", path_text)
            return self._replace("update", path_text, resolution, copy.deepcopy(new_value))

        if resolution is not None:
            return self._replace("update", path_text, resolution, new_value)

        return self._set_on_parent(path_text, segments, new_value)

    def delete(self, path: PathLike) -> MutationResult:
        """Remove an array element (by splice) or an object property."""
        path_text = self._text(path)
        refused = self._check_writable("delete", path_text)
        if refused is not None:
            return refused

        resolution = resolve(self.root, path)
        if resolution is None:
            return self._unresolved("delete", path_text)
        if resolution.is_root:
            return MutationResult("delete", path_text, False, reason="cannot delete the document root")

        old = resolution.value
        container = resolution.container
        if resolution.is_array_element:
            del container[resolution.index]
        else:
            del container[resolution.key]
        return self._applied("delete", path_text, old, None)

    # -------------------------------------------------------------------------
    # Diff
    # -------------------------------------------------------------------------

    def get_changes(self) -> Dict[str, FieldChange]:
        """Compare snapshot and root; keys are slash paths of changed leaves."""
        changes: Dict[str, FieldChange] = {}
        self._diff(self.snapshot, self.root, [], changes)
        return changes

    def _diff(self, old: Any, new: Any, prefix: List[str], out: Dict[str, FieldChange]) -> None:
        path = "/".join(prefix)
        if isinstance(old, dict) and isinstance(new, dict):
            keys = list(old.keys()) + [k for k in new.keys() if k not in old]
            for key in keys:
                child = prefix + [str(key)]
                if key not in new:
                    out["/".join(child)] = FieldChange("/".join(child), copy.deepcopy(old[key]), None)
                elif key not in old:
                    out["/".join(child)] = FieldChange("/".join(child), None, copy.deepcopy(new[key]))
                else:
                    self._diff(old[key], new[key], child, out)
            return
        if isinstance(old, list) and isinstance(new, list):
            if len(old) != len(new):
                out[path] = FieldChange(path, copy.deepcopy(old), copy.deepcopy(new))
                return
            for i, (old_item, new_item) in enumerate(zip(old, new)):
                self._diff(old_item, new_item, prefix + [str(i)], out)
            return
        if not _leaf_equal(old, new):
            out[path] = FieldChange(path, copy.deepcopy(old), copy.deepcopy(new))

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def _text(path: PathLike) -> str:
        return path if isinstance(path, str) else format_path(path)

    def _check_writable(self, op: str, path_text: str) -> Optional[MutationResult]:
        if self.allow_changes:
            return None
        logger.debug("%s %s ignored: document is read-only", op, path_text)
        return MutationResult(op, path_text, False, reason="read-only")

    def _unresolved(self, op: str, path_text: str) -> MutationResult:
        logger.debug("%s %s: path did not resolve", op, path_text)
        return MutationResult(op, path_text, False, reason="path not found")

    def _applied(self, op: str, path_text: str, old: Any, new: Any) -> MutationResult:
        self.dirty = True
        return MutationResult(op, path_text, True, old_value=old, new_value=new)

    def _replace(self, op: str, path_text: str, resolution: NodeResolution, value: Any) -> MutationResult:
        old = resolution.value
        if resolution.is_root:
            self.root = value
        elif resolution.is_array_element:
            resolution.container[resolution.index] = value
        else:
            resolution.container[resolution.key] = value
        return self._applied(op, path_text, old, value)

    def _set_on_parent(self, path_text: str, segments: List[Segment], value: Any) -> MutationResult:
        if not segments or isinstance(segments[-1], Predicate):
            return self._unresolved("update", path_text)
        parent = resolve(self.root, segments[:-1])
        if parent is None or not isinstance(parent.value, dict):
            return self._unresolved("update", path_text)
        name = str(segments[-1])
        parent.value[name] = value
        return self._applied("update", path_text, None, value)
