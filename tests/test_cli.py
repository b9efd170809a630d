"""Integration tests for CLI commands."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from flowgraph_cli import __version__, config
from flowgraph_cli.cli import app
from flowgraph_cli.config import load_settings

runner = CliRunner()


@pytest.fixture
def clustering_file(temp_dir: Path) -> Path:
    data = {
        "clusters": [
            {
                "id": "orders",
                "name": "Order Handling",
                "description": "Customers and orders",
                "domain": "commerce",
                "nodes": ["orders.py::checkout", "orders.py::OrderBook::place"],
                "reasoning": "Checkout path",
            }
        ],
        "reasoning": "Single domain",
    }
    path = temp_dir / "clusters.json"
    path.write_text(json.dumps(data))
    return path


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCallgraphCommand:
    def test_dot_to_stdout(self, sample_project_path: Path):
        result = runner.invoke(app, ["callgraph", str(sample_project_path)])

        assert result.exit_code == 0
        assert result.stdout.startswith("digraph CallGraph {")
        assert 'subgraph "cluster_src_calculator_ts"' in result.stdout

    def test_json_high_level(self, sample_project_path: Path):
        result = runner.invoke(app, ["callgraph", str(sample_project_path), "--high-level", "--format", "json"])

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert {n["id"] for n in data["nodes"]} == {
            "orders.py", "src/calculator.ts", "src/flow.ts", "src/utils.ts", "validation.py",
        }
        pairs = {(e["from"], e["to"]) for e in data["edges"]}
        assert ("src/calculator.ts", "src/utils.ts") in pairs
        assert ("orders.py", "validation.py") in pairs

    def test_selective_clusters(self, sample_project_path: Path):
        result = runner.invoke(
            app,
            ["callgraph", str(sample_project_path), "-f", "json", "--clusters", "all:0,-src/calculator.ts:1"],
        )

        assert result.exit_code == 0
        ids = {n["id"] for n in json.loads(result.stdout)["nodes"]}
        assert "src/calculator.ts::main" in ids
        assert "src/calculator.ts::Calculator::add" not in ids
        assert "orders.py::checkout" not in ids

    def test_with_clustering(self, sample_project_path: Path, clustering_file: Path):
        result = runner.invoke(
            app,
            ["callgraph", str(sample_project_path), "-f", "json", "--clustering", str(clustering_file)],
        )

        assert result.exit_code == 0
        nodes = {n["id"]: n for n in json.loads(result.stdout)["nodes"]}
        assert nodes["orders.py::checkout"]["parent"] == "Order_Handling"
        assert nodes["src/calculator.ts::main"]["parent"] == "Uncategorized"

    def test_write_output_file(self, sample_project_path: Path, temp_dir: Path):
        output = temp_dir / "out" / "graph.dot"
        result = runner.invoke(app, ["callgraph", str(sample_project_path), "-o", str(output)])

        assert result.exit_code == 0
        assert output.read_text().startswith("digraph CallGraph {")

    def test_bad_format(self, sample_project_path: Path):
        result = runner.invoke(app, ["callgraph", str(sample_project_path), "--format", "svg"])
        assert result.exit_code != 0

    def test_nonexistent_path(self):
        result = runner.invoke(app, ["callgraph", "/nonexistent/path"])
        assert result.exit_code != 0


class TestFlowCommand:
    def test_dot(self, sample_project_path: Path):
        result = runner.invoke(app, ["flow", str(sample_project_path), "classify"])

        assert result.exit_code == 0
        assert "digraph ControlFlow {" in result.stdout
        assert 'label="classify Control Flow";' in result.stdout

    def test_json_with_file_filter(self, sample_project_path: Path):
        result = runner.invoke(
            app, ["flow", str(sample_project_path), "OrderBook.place", "--file", "orders.py", "-f", "json"],
        )

        assert result.exit_code == 0
        data = json.loads(result.stdout)
        types = {n["type"] for n in data["nodes"]}
        assert {"start", "end", "condition", "throw", "return"} <= types

    def test_missing_function(self, sample_project_path: Path):
        result = runner.invoke(app, ["flow", str(sample_project_path), "does_not_exist"])

        assert result.exit_code == 1
        assert "does_not_exist" in result.output


class TestClustersCommand:
    def test_valid(self, sample_project_path: Path, clustering_file: Path):
        result = runner.invoke(app, ["clusters", str(sample_project_path), str(clustering_file)])

        assert result.exit_code == 0
        assert "Order Handling (orders)" in result.stdout

    def test_unknown_nodes_fail(self, sample_project_path: Path, temp_dir: Path):
        path = temp_dir / "bad.json"
        path.write_text(json.dumps({
            "clusters": [{"id": "x", "name": "X", "description": "d", "domain": "d", "nodes": ["ghost"]}],
            "reasoning": "r",
        }))
        result = runner.invoke(app, ["clusters", str(sample_project_path), str(path)])

        assert result.exit_code == 1
        assert "ghost" in result.output


class TestSettingsCommand:
    def test_project_override(self, temp_dir: Path):
        (temp_dir / ".flowgraph.toml").write_text("[flowgraph]\nstatement_label_limit = 30\n")
        result = runner.invoke(app, ["settings", str(temp_dir)])

        assert result.exit_code == 0
        assert "statement_label_limit" in result.stdout
        assert "30" in result.stdout


class TestSetCommand:
    def test_saves_integer(self):
        result = runner.invoke(app, ["set", "statement_label_limit", "80"])

        assert result.exit_code == 0
        assert config.CONFIG_FILE.exists()
        assert load_settings()["statement_label_limit"] == 80

    def test_saves_list(self):
        result = runner.invoke(app, ["set", "skip_dirs", "generated, fixtures"])

        assert result.exit_code == 0
        assert load_settings()["skip_dirs"] == ["generated", "fixtures"]
        assert load_settings()["statement_label_limit"] == 50

    def test_saved_setting_shown(self):
        runner.invoke(app, ["set", "output_dir", "diagrams"])
        result = runner.invoke(app, ["settings"])
        assert '"diagrams"' in result.stdout

    def test_unknown_key(self):
        result = runner.invoke(app, ["set", "colour", "blue"])
        assert result.exit_code == 1
        assert not config.CONFIG_FILE.exists()

    def test_bad_integer(self):
        result = runner.invoke(app, ["set", "statement_label_limit", "lots"])
        assert result.exit_code == 1
