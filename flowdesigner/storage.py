"""
storage.py - Flow documents and schemas on disk.

FlowFileStore is the only component that writes flow files. It provides:
- Listing and loading flows from the flows directory
- Atomic writes with optional backup
- ETag-based concurrency control (SHA256 of the file content)
- Optional schema validation before save
- Import/export of single-file flow documents
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .config import DesignerConfig
from .document import SchemaResolver
from .errors import (
    ConcurrencyError,
    FlowNotFoundError,
    FlowValidationError,
    InvalidNameError,
    SchemaNotFoundError,
)

logger = logging.getLogger(__name__)

FLOW_SUFFIX = ".json"
SCHEMA_SUFFIX = ".schema.json"

_FLOW_ID_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_UNSAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def compute_etag(content: Union[str, bytes]) -> str:
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def serialize_flow(document: Any) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + "\n"


def export_filename(document: Dict[str, Any]) -> str:
    """``<name>_<version>.json`` with unsafe characters replaced."""
    name = str(document.get("name") or "flow")
    version = str(document.get("version") or "1.0")
    stem = _UNSAFE_FILENAME_RE.sub("_", f"{name}_{version}").strip("_") or "flow"
    return stem + FLOW_SUFFIX


@dataclass
class FlowSummary:
    """Summary of a stored flow for list views."""
    id: str
    name: str
    version: str
    description: str
    kind: str  # "trancode" or "process"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class FlowFileStore:
    """Reads and writes flow documents under ``flows_dir``."""

    def __init__(self, flows_dir: Path, schemas_dir: Optional[Path] = None, backup_on_write: bool = True):
        self.flows_dir = Path(flows_dir)
        self.schemas_dir = Path(schemas_dir) if schemas_dir else None
        self.backup_on_write = backup_on_write

    @classmethod
    def from_config(cls, config: DesignerConfig) -> "FlowFileStore":
        return cls(config.flows_dir, config.schemas_dir)

    # =========================================================================
    # Paths
    # =========================================================================

    def flow_path(self, flow_id: str) -> Path:
        if not _FLOW_ID_RE.match(flow_id or ""):
            raise InvalidNameError("flow", str(flow_id), "use letters, digits, '_', '-' and '.'")
        return self.flows_dir / f"{flow_id}{FLOW_SUFFIX}"

    def _file_etag(self, path: Path) -> Optional[str]:
        if not path.exists():
            return None
        return compute_etag(path.read_bytes())

    # =========================================================================
    # Flows
    # =========================================================================

    def list_flows(self) -> List[FlowSummary]:
        if not self.flows_dir.exists():
            return []
        summaries = []
        for path in sorted(self.flows_dir.glob(f"*{FLOW_SUFFIX}")):
            if path.name.endswith(SCHEMA_SUFFIX):
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as e:
                logger.warning("Skipping unreadable flow %s: %s", path, e)
                continue
            if not isinstance(data, dict):
                continue
            summaries.append(
                FlowSummary(
                    id=path.name[: -len(FLOW_SUFFIX)],
                    name=str(data.get("name", "")),
                    version=str(data.get("version", "")),
                    description=str(data.get("description", "")),
                    kind="process" if "Operations" in data and "functiongroups" not in data else "trancode",
                )
            )
        return summaries

    def load_flow(self, flow_id: str) -> Tuple[Any, str]:
        """Load a flow document.

        Returns:
            Tuple of (document, etag).

        Raises:
            FlowNotFoundError: If the file does not exist.
        """
        path = self.flow_path(flow_id)
        if not path.exists():
            raise FlowNotFoundError(flow_id, path)
        content = path.read_bytes()
        return json.loads(content.decode("utf-8")), compute_etag(content)

    def save_flow(
        self,
        flow_id: str,
        document: Any,
        etag: Optional[str] = None,
        schema: Optional[str] = None,
    ) -> str:
        """Save a flow document.

        Args:
            flow_id: Flow identifier (file stem).
            document: The document to save.
            etag: If provided, must match the current file's ETag.
            schema: Optional schema name to validate against first.

        Returns:
            New ETag after save.

        Raises:
            FlowValidationError: If the document fails schema validation.
            ConcurrencyError: If etag doesn't match current file state.
        """
        if schema:
            issues = SchemaResolver(self.load_schema(schema)).validate(document)
            if issues:
                raise FlowValidationError(flow_id, issues)

        path = self.flow_path(flow_id)
        if etag is not None:
            current = self._file_etag(path)
            if current is not None and current != etag.strip('"'):
                raise ConcurrencyError(flow_id, etag, current)

        content = serialize_flow(document)
        self._atomic_write(path, content)
        new_etag = compute_etag(content)
        logger.info("Saved flow: %s (etag: %s)", flow_id, new_etag[:16])
        return new_etag

    def import_flow(self, source: Union[str, Path], flow_id: Optional[str] = None) -> str:
        """Copy a single-file flow document into the store; returns its id."""
        source = Path(source)
        document = json.loads(source.read_text(encoding="utf-8"))
        if flow_id is None:
            flow_id = source.name[: -len(FLOW_SUFFIX)] if source.name.endswith(FLOW_SUFFIX) else source.stem
        self.save_flow(flow_id, document)
        logger.info("Imported %s as flow '%s'", source, flow_id)
        return flow_id

    def export_flow(self, document: Dict[str, Any], directory: Union[str, Path]) -> Path:
        target = Path(directory) / export_filename(document)
        self._atomic_write(target, serialize_flow(document), create_backup=False)
        logger.info("Exported flow to %s", target)
        return target

    # =========================================================================
    # Schemas
    # =========================================================================

    def load_schema(self, name: str) -> Dict[str, Any]:
        if self.schemas_dir is None:
            raise SchemaNotFoundError(name)
        path = self.schemas_dir / f"{name}{SCHEMA_SUFFIX}"
        if not path.exists():
            raise SchemaNotFoundError(name, path)
        return json.loads(path.read_text(encoding="utf-8"))

    # =========================================================================
    # Writing
    # =========================================================================

    def _atomic_write(self, path: Path, content: str, create_backup: Optional[bool] = None) -> None:
        """Swap ``content`` in for ``path``; an interrupted save leaves the old flow on disk."""
        if create_backup is None:
            create_backup = self.backup_on_write
        path.parent.mkdir(parents=True, exist_ok=True)
        if create_backup and path.exists():
            shutil.copy2(path, path.with_name(path.name + ".bak"))

        fd, scratch_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
        scratch = Path(scratch_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(scratch, path)
        finally:
            # only still present when the write or the swap failed
            if scratch.exists():
                scratch.unlink()
        logger.debug("Wrote %s (%d chars, backup=%s)", path, len(content), create_backup)
