"""Tests for the nbchat command line."""

import json

import pytest
from typer.testing import CliRunner

from nbchat import __version__
from nbchat.cli.app import app
from nbchat.cli.console import parse_selection
from nbchat.document.base import DocumentUnit, UnitKind
from nbchat.document.notebook import Notebook

runner = CliRunner()


@pytest.fixture
def notebook_path(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path))
    nb = Notebook([
        DocumentUnit(content="Be terse.", role_tag="system"),
        DocumentUnit(content="print('hi')", kind=UnitKind.CODE, language="python"),
    ])
    return nb.save(tmp_path / "chat.ipynb")


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_cells_lists_roles(notebook_path):
    result = runner.invoke(app, ["cells", str(notebook_path)])
    assert result.exit_code == 0
    assert "system" in result.output
    assert "python" in result.output


def test_missing_notebook(tmp_path):
    result = runner.invoke(app, ["cells", str(tmp_path / "nope.ipynb")])
    assert result.exit_code == 1
    assert "Notebook not found" in result.output


class TestSet:
    def test_valid_value_saved(self, notebook_path):
        result = runner.invoke(app, ["set", str(notebook_path), "temperature", "0.4"])
        assert result.exit_code == 0
        assert Notebook.load(notebook_path).metadata == {"temperature": 0.4}

    def test_invalid_value_rejected(self, notebook_path):
        result = runner.invoke(app, ["set", str(notebook_path), "top_p", "7"])
        assert result.exit_code == 1
        assert "Invalid value" in result.output
        assert Notebook.load(notebook_path).metadata == {}

    def test_unset(self, notebook_path):
        runner.invoke(app, ["set", str(notebook_path), "user", "alice"])
        result = runner.invoke(app, ["set", str(notebook_path), "user", "--unset"])
        assert result.exit_code == 0
        assert Notebook.load(notebook_path).metadata == {}


def test_role_tags_cell(notebook_path):
    result = runner.invoke(app, ["role", str(notebook_path), "1", "assistant"])
    assert result.exit_code == 0
    raw = json.loads(notebook_path.read_text())
    assert raw["cells"][1]["metadata"]["tags"] == ["assistant"]


def test_role_rejects_unknown(notebook_path):
    result = runner.invoke(app, ["role", str(notebook_path), "0", "tool"])
    assert result.exit_code == 1


def test_role_out_of_range(notebook_path):
    result = runner.invoke(app, ["role", str(notebook_path), "5", "user"])
    assert result.exit_code == 1
    assert "does not exist" in result.output


def test_model_by_name(notebook_path):
    result = runner.invoke(app, ["model", str(notebook_path), "gpt-4o"])
    assert result.exit_code == 0
    assert Notebook.load(notebook_path).metadata["model"] == "gpt-4o"


def test_config_validate_defaults(notebook_path):
    result = runner.invoke(app, ["config", "validate"])
    assert result.exit_code == 0
    assert "Config is valid" in result.output


def test_tools_list(notebook_path):
    result = runner.invoke(app, ["tools", "list"])
    assert result.exit_code == 0
    assert "find_files" in result.output
    assert "read_file" in result.output


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("", []),
        ("all", [0, 1, 2]),
        ("3,1", [0, 2]),
        ("2 2", [1]),
        ("4", None),
        ("x", None),
    ],
)
def test_parse_selection(raw, expected):
    assert parse_selection(raw, 3) == expected
