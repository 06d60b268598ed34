"""
Flow designer configuration module.

Provides the DesignerConfig dataclass: where flows and schemas live on disk
and the defaults the graph layer uses when it creates nodes and routes.
Values can be overridden from a YAML file:

    flows_dir: flows
    schemas_dir: schemas
    node_width: 240
    route_placeholder: "new value"
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FLOWDESIGNER_CONFIG"
DEFAULT_CONFIG_NAME = "flowdesigner.yaml"

LEVELS = ("group_sequence", "group_detail", "flat_block_sequence")

_PATH_FIELDS = ("root", "flows_dir", "schemas_dir")


@dataclass
class DesignerConfig:
    """
    Configuration for the flow designer.

    Attributes:
        root: Base directory the other paths are resolved against
        flows_dir: Directory holding flow documents (*.json)
        schemas_dir: Directory holding JSON schemas (*.schema.json)
        node_width: Width given to nodes that carry no geometry
        node_height: Height given to nodes that carry no geometry
        route_placeholder: Value of a newly added routing pair
        allow_changes: False opens documents read-only
        default_level: Editing level a new session starts in
    """

    root: Path
    flows_dir: Path
    schemas_dir: Path
    node_width: int = 200
    node_height: int = 100
    route_placeholder: str = "new value"
    allow_changes: bool = True
    default_level: str = "group_sequence"

    @classmethod
    def from_root(cls, root: Union[str, Path], **overrides: Any) -> "DesignerConfig":
        root = Path(root).resolve()
        config = cls(root=root, flows_dir=root / "flows", schemas_dir=root / "schemas")
        return replace(config, **overrides) if overrides else config

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "DesignerConfig":
        """
        Load config from a YAML file.

        Relative directories are resolved against the file's directory.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is not a mapping or has unknown keys
        """
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file must contain a mapping: {path}")

        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys in {path}: {', '.join(unknown)}")

        base = path.resolve().parent
        root = base / data.pop("root", ".")
        overrides: Dict[str, Any] = {}
        for key, value in data.items():
            if key in _PATH_FIELDS:
                value = (base / value).resolve()
            overrides[key] = value
        logger.info("Loaded designer config from %s", path)
        return cls.from_root(root, **overrides)

    def validate(self) -> list[str]:
        """
        Validate settings.

        Returns:
            List of error messages (empty if valid)
        """
        errors = []
        if not self.root.exists():
            errors.append(f"root does not exist: {self.root}")
        if self.node_width <= 0 or self.node_height <= 0:
            errors.append("node_width and node_height must be positive")
        if self.default_level not in LEVELS:
            errors.append(f"default_level must be one of {', '.join(LEVELS)}")
        if not self.route_placeholder:
            errors.append("route_placeholder must not be empty")
        # flows_dir and schemas_dir are created on demand
        return errors

    def ensure_dirs(self) -> None:
        self.flows_dir.mkdir(parents=True, exist_ok=True)
        self.schemas_dir.mkdir(parents=True, exist_ok=True)


def get_default_config(cwd: Optional[Path] = None) -> DesignerConfig:
    """
    Build the config for the current process.

    Uses $FLOWDESIGNER_CONFIG when set, then ./flowdesigner.yaml, then
    plain defaults rooted at the working directory.
    """
    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        return DesignerConfig.from_yaml(env_path)
    cwd = Path(cwd or Path.cwd())
    candidate = cwd / DEFAULT_CONFIG_NAME
    if candidate.exists():
        return DesignerConfig.from_yaml(candidate)
    return DesignerConfig.from_root(cwd)
