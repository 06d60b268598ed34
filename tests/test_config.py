"""
Tests for DesignerConfig loading and validation.
"""

from pathlib import Path

import pytest

from flowdesigner.config import CONFIG_ENV_VAR, DesignerConfig, get_default_config


class TestDesignerConfig:
    """from_root / from_yaml / validate."""

    def test_from_root_defaults(self, tmp_path):
        """Directories hang off the root; geometry has defaults."""
        config = DesignerConfig.from_root(tmp_path)
        assert config.flows_dir == tmp_path.resolve() / "flows"
        assert config.schemas_dir == tmp_path.resolve() / "schemas"
        assert (config.node_width, config.node_height) == (200, 100)
        assert config.validate() == []

    def test_overrides(self, tmp_path):
        """Keyword overrides replace single fields."""
        config = DesignerConfig.from_root(tmp_path, route_placeholder="value?", allow_changes=False)
        assert config.route_placeholder == "value?"
        assert config.allow_changes is False

    def test_from_yaml_relative_paths(self, tmp_path):
        """Relative directories resolve against the config file."""
        path = tmp_path / "flowdesigner.yaml"
        path.write_text("flows_dir: data/flows\nnode_width: 240\n", encoding="utf-8")
        config = DesignerConfig.from_yaml(path)
        assert config.flows_dir == (tmp_path / "data" / "flows").resolve()
        assert config.schemas_dir == tmp_path.resolve() / "schemas"
        assert config.node_width == 240

    def test_from_yaml_unknown_key(self, tmp_path):
        """Typos in config keys are reported."""
        path = tmp_path / "flowdesigner.yaml"
        path.write_text("node_widht: 240\n", encoding="utf-8")
        with pytest.raises(ValueError, match="node_widht"):
            DesignerConfig.from_yaml(path)

    def test_from_yaml_not_a_mapping(self, tmp_path):
        """A list at the top level is rejected."""
        path = tmp_path / "flowdesigner.yaml"
        path.write_text("- a\n- b\n", encoding="utf-8")
        with pytest.raises(ValueError):
            DesignerConfig.from_yaml(path)

    def test_validate_reports_problems(self, tmp_path):
        """Bad values are listed, not raised."""
        config = DesignerConfig.from_root(tmp_path / "missing", node_width=0, default_level="sideways")
        errors = config.validate()
        assert len(errors) == 3

    def test_ensure_dirs(self, tmp_path):
        """ensure_dirs creates both directories."""
        config = DesignerConfig.from_root(tmp_path)
        config.ensure_dirs()
        assert config.flows_dir.is_dir() and config.schemas_dir.is_dir()


class TestDefaultConfig:
    """get_default_config lookup order."""

    def test_plain_defaults(self, tmp_path, monkeypatch):
        """Without files or env, the working directory is the root."""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        assert get_default_config(tmp_path).root == tmp_path.resolve()

    def test_local_file(self, tmp_path, monkeypatch):
        """./flowdesigner.yaml is picked up."""
        monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
        (tmp_path / "flowdesigner.yaml").write_text("node_height: 80\n", encoding="utf-8")
        assert get_default_config(tmp_path).node_height == 80

    def test_env_var_wins(self, tmp_path, monkeypatch):
        """$FLOWDESIGNER_CONFIG overrides the local file."""
        other = tmp_path / "other.yaml"
        other.write_text("node_height: 60\n", encoding="utf-8")
        (tmp_path / "flowdesigner.yaml").write_text("node_height: 80\n", encoding="utf-8")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(other))
        assert get_default_config(Path(tmp_path)).node_height == 60
