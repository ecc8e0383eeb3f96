"""Tests for the in-memory notebook document."""

import copy
import json

from nbchat.document.base import Diagnostic, DocumentUnit, UnitKind, UnitOutput
from nbchat.document.notebook import Notebook

IPYNB = {
    "cells": [
        {"cell_type": "markdown", "metadata": {"tags": ["system"]}, "source": ["Be terse.\n"]},
        {"cell_type": "markdown", "metadata": {}, "source": "What is 2+2?"},
        {
            "cell_type": "code",
            "metadata": {},
            "source": ["x = 2 + 2\n", "x"],
            "execution_count": 1,
            "outputs": [
                {"output_type": "execute_result", "data": {"text/plain": ["4"], "image/png": "iVBOR"}},
                {"output_type": "stream", "name": "stdout", "text": ["hi\n"]},
                {"output_type": "error", "ename": "ValueError", "evalue": "bad"},
            ],
        },
    ],
    "metadata": {
        "kernelspec": {"language": "python", "name": "python3"},
        "nbchat": {"model": "gpt-4", "temperature": 0.2},
    },
    "nbformat": 4,
    "nbformat_minor": 5,
}


class TestMutations:
    async def test_insert_and_append(self):
        nb = Notebook([DocumentUnit(content="q")])
        index = await nb.insert_unit(0, UnitKind.CODE, "python")
        assert index == 1
        await nb.append_text(index, "print(1)")
        await nb.append_text(index, "\n")
        assert nb.units[1].content == "print(1)\n"
        assert nb.units[1].language == "python"

    async def test_insert_at_top(self):
        nb = Notebook([DocumentUnit(content="q")])
        assert await nb.insert_unit(-1, UnitKind.MARKUP) == 0
        assert nb.units[1].content == "q"

    async def test_markup_units_are_markdown(self):
        nb = Notebook()
        index = await nb.insert_unit(-1, UnitKind.MARKUP, "python")
        assert nb.units[index].language == "markdown"

    async def test_empty_unit_skips_leading_blank_text(self):
        nb = Notebook()
        await nb.insert_unit(-1, UnitKind.MARKUP)
        await nb.append_text(0, "\n")
        await nb.append_text(0, "  ")
        assert nb.units[0].content == ""
        await nb.append_text(0, "\nHello")
        assert nb.units[0].content == "Hello"
        await nb.append_text(0, "\n\n")
        assert nb.units[0].content == "Hello\n\n"

    async def test_delete_and_read_copies(self):
        nb = Notebook([DocumentUnit(content=str(i)) for i in range(4)])
        await nb.delete_units(1, 3)
        assert [u.content for u in nb.units] == ["0", "3"]
        (copy,) = await nb.read_units(0, 1)
        copy.content = "changed"
        assert nb.units[0].content == "0"

    async def test_metadata_view(self):
        nb = Notebook()
        await nb.update_metadata("temperature", 0.7)
        view = nb.metadata
        view["temperature"] = 1.0
        assert nb.metadata == {"temperature": 0.7}
        await nb.update_metadata("temperature", None)
        assert nb.metadata == {}

    async def test_unit_metadata(self):
        nb = Notebook([DocumentUnit(content="q")])
        await nb.update_unit_metadata(0, "tool_results", [{"id": "c1"}])
        (unit,) = await nb.read_units(0, 1)
        unit.metadata["tool_results"].append({"id": "c2"})
        assert nb.units[0].metadata == {"tool_results": [{"id": "c1"}]}
        await nb.update_unit_metadata(0, "tool_results", None)
        assert nb.units[0].metadata == {}


class TestIpynb:
    def test_from_ipynb(self):
        nb = Notebook.from_ipynb(copy.deepcopy(IPYNB))
        system, question, code = nb.units
        assert system.role_tag == "system"
        assert system.content == "Be terse.\n"
        assert question.role_tag is None
        assert code.kind == UnitKind.CODE
        assert code.language == "python"
        assert code.content == "x = 2 + 2\nx"
        assert code.outputs == [
            UnitOutput("text/plain", "4"),
            UnitOutput("image/png", "iVBOR"),
            UnitOutput("text/plain", "hi\n"),
            UnitOutput("text/plain", "ValueError: bad"),
        ]
        assert nb.metadata == {"model": "gpt-4", "temperature": 0.2}

    def test_kernel_language_from_language_info(self):
        data = dict(copy.deepcopy(IPYNB), metadata={"language_info": {"name": "julia"}})
        assert Notebook.from_ipynb(data).units[2].language == "julia"

    async def test_save_and_load(self, tmp_path):
        nb = Notebook.from_ipynb(copy.deepcopy(IPYNB))
        await nb.set_role_tag(1, "assistant")
        await nb.update_metadata("max_tokens", 100)
        path = nb.save(tmp_path / "chat.ipynb")

        raw = json.loads(path.read_text())
        assert raw["nbformat"] == 4
        assert raw["cells"][1]["metadata"] == {"tags": ["assistant"]}
        assert "outputs" not in raw["cells"][0]

        loaded = Notebook.load(path)
        assert loaded.uri == str(path)
        assert [u.role_tag for u in loaded.units] == ["system", "assistant", None]
        assert loaded.units[2].outputs[0] == UnitOutput("text/plain", "4")
        assert loaded.metadata["max_tokens"] == 100

    def test_diagnostics_not_persisted(self):
        nb = Notebook([DocumentUnit(content="x", kind=UnitKind.CODE, language="python",
                                    diagnostics=[Diagnostic("E1", "oops")])])
        cell = nb.to_ipynb()["cells"][0]
        assert set(cell) == {"cell_type", "metadata", "source", "execution_count", "outputs"}

    async def test_cell_metadata_round_trip(self, tmp_path):
        data = copy.deepcopy(IPYNB)
        data["cells"][1]["metadata"] = {"collapsed": True}
        nb = Notebook.from_ipynb(data)
        await nb.update_unit_metadata(0, "tool_results", [{"id": "c1", "status": "declined"}])
        path = nb.save(tmp_path / "chat.ipynb")

        raw = json.loads(path.read_text())
        assert raw["cells"][0]["metadata"] == {
            "tool_results": [{"id": "c1", "status": "declined"}],
            "tags": ["system"],
        }
        assert raw["cells"][1]["metadata"] == {"collapsed": True}

        loaded = Notebook.load(path)
        assert loaded.units[0].role_tag == "system"
        assert loaded.units[0].metadata == {"tool_results": [{"id": "c1", "status": "declined"}]}
