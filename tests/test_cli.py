"""
Tests for the flowdesigner command-line interface.
"""

import json

import pytest

from flowdesigner.cli import build_parser, main


@pytest.fixture
def flow_file(tmp_path, flow_document):
    path = tmp_path / "orders.json"
    path.write_text(json.dumps(flow_document), encoding="utf-8")
    return path


@pytest.fixture
def schema_file(tmp_path, trancode_schema):
    path = tmp_path / "trancode.schema.json"
    path.write_text(json.dumps(trancode_schema), encoding="utf-8")
    return path


class TestGraphCommand:
    """flowdesigner graph."""

    def test_dot(self, flow_file, capsys):
        """DOT output contains nodes and labeled edges."""
        assert main(["graph", str(flow_file)]) == 0
        out = capsys.readouterr().out
        assert out.startswith("digraph flow {")
        assert '"g1" -> "g2" [label="status=ok"];' in out

    def test_json_detail_level(self, flow_file, capsys):
        """JSON output for one group's functions."""
        assert main(["graph", str(flow_file), "--level", "group_detail", "--group", "g1", "--format", "json"]) == 0
        payload = json.loads(capsys.readouterr().out)
        assert payload["level"] == "group_detail"
        assert [n["name"] for n in payload["nodes"]] == ["A", "B"]

    def test_table(self, flow_file, capsys):
        """Table output uses node names."""
        main(["graph", str(flow_file), "--format", "table"])
        assert "G1" in capsys.readouterr().out

    def test_unknown_group(self, flow_file, capsys):
        """Errors exit with status 2."""
        assert main(["graph", str(flow_file), "--level", "group_detail", "--group", "nope"]) == 2
        assert "not found" in capsys.readouterr().err


class TestOtherCommands:
    """validate / sessions / parser."""

    def test_validate_ok(self, flow_file, schema_file, capsys):
        """Valid documents exit 0."""
        assert main(["validate", str(flow_file), "--schema", str(schema_file)]) == 0
        assert "valid" in capsys.readouterr().out

    def test_validate_issues(self, tmp_path, schema_file, capsys):
        """Invalid documents exit 1 and list issues."""
        path = tmp_path / "bad.json"
        path.write_text('{"name": "Bad"}', encoding="utf-8")
        assert main(["validate", str(path), "--schema", str(schema_file)]) == 1
        assert "version" in capsys.readouterr().out

    def test_sessions(self, flow_file, capsys):
        """User sessions are listed after the system ones."""
        assert main(["sessions", str(flow_file)]) == 0
        out = capsys.readouterr().out
        assert "UTCTime" in out
        assert "User sessions:   OrderTotal" in out

    def test_missing_file(self, tmp_path, capsys):
        """Missing files exit 2."""
        assert main(["sessions", str(tmp_path / "missing.json")]) == 2

    def test_parser_requires_command(self):
        """A subcommand is mandatory."""
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
