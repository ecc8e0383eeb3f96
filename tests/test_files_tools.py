"""Tests for the workspace file tools."""

import pytest

from nbchat.tools.files import MAX_READ_BYTES, FindFilesTool, ReadFileTool


@pytest.fixture
def workspace(tmp_path):
    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "a.py").write_text("print('a')\n")
    (tmp_path / "pkg" / "b.txt").write_text("b\n")
    (tmp_path / "node_modules").mkdir()
    (tmp_path / "node_modules" / "dep.py").write_text("")
    return tmp_path


class TestFindFiles:
    async def test_glob_matches(self, workspace):
        result = await FindFilesTool(workspace).execute(include="**/*.py")
        assert result.success
        assert result.content.splitlines() == [str(workspace.resolve() / "pkg" / "a.py")]
        assert result.metadata["count"] == 1

    async def test_no_matches_message(self, workspace):
        result = await FindFilesTool(workspace).execute(include="**/*.rs")
        assert result.success
        assert result.content == "No results with find_files for your include parameter '**/*.rs'"

    async def test_default_pattern(self, workspace):
        result = await FindFilesTool(workspace).execute()
        assert len(result.content.splitlines()) == 2


class TestReadFile:
    async def test_reads_text(self, workspace):
        tool = ReadFileTool(workspace)
        result = await tool.execute(absolute_file_path=str(workspace / "pkg" / "a.py"))
        assert result.success
        assert result.content == "print('a')\n"

    async def test_relative_path_resolves_in_workspace(self, workspace):
        result = await ReadFileTool(workspace).execute(absolute_file_path="pkg/b.txt")
        assert result.content == "b\n"

    async def test_missing_file(self, workspace):
        result = await ReadFileTool(workspace).execute(absolute_file_path="pkg/none.py")
        assert not result.success
        assert "File not found" in result.error

    async def test_outside_workspace_refused(self, workspace, tmp_path_factory):
        outside = tmp_path_factory.mktemp("outside") / "secret.txt"
        outside.write_text("no")
        with pytest.raises(PermissionError):
            await ReadFileTool(workspace).execute(absolute_file_path=str(outside))

    async def test_large_file_truncated(self, workspace):
        big = workspace / "big.txt"
        big.write_text("x" * (MAX_READ_BYTES + 10))
        result = await ReadFileTool(workspace).execute(absolute_file_path=str(big))
        assert result.content.endswith("\n[truncated]")
        assert len(result.content) == MAX_READ_BYTES + len("\n[truncated]")
