"""Tests for subprocess resource management."""

import asyncio

import pytest
import pytest_asyncio

from datastore_migrator.core.exceptions import CommandError
from datastore_migrator.core.subprocess_manager import (
    SubprocessManager,
    SubprocessResult,
    managed_subprocess,
)


@pytest_asyncio.fixture
async def subprocess_manager():
    """Create a subprocess manager for testing."""
    manager = SubprocessManager()
    yield manager
    await manager.cleanup_all()


class TestSubprocessManager:
    """Test subprocess manager functionality."""

    @pytest.mark.asyncio
    async def test_run_simple_command(self, subprocess_manager):
        result = await subprocess_manager.run_command(["echo", "hello"])
        assert result.success
        assert result.stdout.strip() == "hello"
        assert result.stderr == ""
        assert result.returncode == 0

    @pytest.mark.asyncio
    async def test_run_command_with_error(self, subprocess_manager):
        with pytest.raises(CommandError) as exc_info:
            await subprocess_manager.run_command(["sh", "-c", "echo boom >&2; exit 1"], check=True)
        assert "exit code 1" in str(exc_info.value)
        assert exc_info.value.returncode == 1
        assert exc_info.value.stderr == "boom"

    @pytest.mark.asyncio
    async def test_run_command_no_check(self, subprocess_manager):
        result = await subprocess_manager.run_command(["sh", "-c", "exit 3"], check=False)
        assert not result.success
        assert result.returncode == 3
        assert result.error_message == "Command failed"

    @pytest.mark.asyncio
    async def test_command_timeout(self, subprocess_manager):
        with pytest.raises(asyncio.TimeoutError) as exc_info:
            await subprocess_manager.run_command(["sleep", "10"], timeout=0.1)
        assert "timed out after 0.1 seconds" in str(exc_info.value)
        assert not subprocess_manager._active_processes

    @pytest.mark.asyncio
    async def test_command_with_stdin(self, subprocess_manager):
        result = await subprocess_manager.run_command(["cat"], stdin="test input", timeout=1)
        assert result.stdout == "test input"

    @pytest.mark.asyncio
    async def test_binary_output(self, subprocess_manager):
        result = await subprocess_manager.run_command(
            ["cat"], stdin=b"\x00\xff", text=False, timeout=1
        )
        assert result.stdout == b"\x00\xff"

    @pytest.mark.asyncio
    async def test_env_is_merged(self, subprocess_manager):
        result = await subprocess_manager.run_command(
            ["sh", "-c", 'echo "$MIGRATOR_TEST_VALUE:${PATH:+path}"'],
            env={"MIGRATOR_TEST_VALUE": "secret"},
        )
        assert result.stdout.strip() == "secret:path"

    @pytest.mark.asyncio
    async def test_stdout_path_streams_to_file(self, subprocess_manager, tmp_path):
        out = tmp_path / "out.txt"
        result = await subprocess_manager.run_command(
            ["sh", "-c", "printf 'line1\\nline2\\n'"], stdout_path=out
        )
        assert result.success
        assert result.stdout == ""
        assert out.read_text() == "line1\nline2\n"

    @pytest.mark.asyncio
    async def test_stdin_path_streams_from_file(self, subprocess_manager, tmp_path):
        source = tmp_path / "in.sql"
        source.write_text("SELECT 1;\n")
        result = await subprocess_manager.run_command(["wc", "-l"], stdin_path=source)
        assert result.stdout.strip() == "1"

    @pytest.mark.asyncio
    async def test_missing_executable(self, subprocess_manager):
        with pytest.raises(CommandError, match="Executable not found"):
            await subprocess_manager.run_command(["definitely-not-a-real-binary-xyz"])

    @pytest.mark.asyncio
    async def test_concurrent_commands(self, subprocess_manager):
        results = await asyncio.gather(
            *(subprocess_manager.run_command(["echo", str(i)]) for i in range(5))
        )
        assert sorted(r.stdout.strip() for r in results) == [str(i) for i in range(5)]
        assert not subprocess_manager._active_processes


@pytest.mark.asyncio
async def test_managed_subprocess_cleans_up():
    async with managed_subprocess() as manager:
        result = await manager.run_command(["echo", "managed"])
        assert result.stdout.strip() == "managed"
    assert not manager._active_processes


class TestSubprocessResult:
    def test_error_message_prefers_stderr(self):
        result = SubprocessResult(1, "out", "  err  ", ["x"])
        assert result.error_message == "err"

    def test_error_message_from_bytes(self):
        result = SubprocessResult(1, b"", b"bad bytes\n", ["x"])
        assert result.error_message == "bad bytes"

    def test_check_returncode(self):
        SubprocessResult(0, "", "", ["x"]).check_returncode()
        with pytest.raises(CommandError):
            SubprocessResult(2, "", "nope", ["x"]).check_returncode()
