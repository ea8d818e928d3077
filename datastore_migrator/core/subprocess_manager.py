"""Centralized subprocess management with proper resource handling."""

import asyncio
import os
from contextlib import ExitStack, asynccontextmanager
from pathlib import Path
from typing import IO, Any, Optional

import structlog

from .exceptions import CommandError

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30  # Default timeout in seconds
KILL_TIMEOUT = 5  # Time to wait after SIGTERM before SIGKILL


class SubprocessManager:
    """Manages subprocess execution with proper resource cleanup."""

    def __init__(self):
        self._active_processes: set[asyncio.subprocess.Process] = set()
        self._cleanup_lock = asyncio.Lock()

    async def run_command(
        self,
        cmd: list[str],
        *,
        timeout: Optional[float] = None,
        check: bool = True,
        text: bool = True,
        env: Optional[dict[str, str]] = None,
        stdin: Optional[str | bytes] = None,
        stdin_path: Optional[Path] = None,
        stdout_path: Optional[Path] = None,
    ) -> "SubprocessResult":
        """
        Run a command asynchronously with proper resource management.

        Args:
            cmd: Command and arguments as a list
            timeout: Timeout in seconds (default: DEFAULT_TIMEOUT)
            check: Raise CommandError if the command fails
            text: Return output as text instead of bytes
            env: Extra environment variables merged over os.environ
            stdin: Input to provide to the command
            stdin_path: File streamed to the command's stdin
            stdout_path: File receiving the command's stdout (not captured)

        Returns:
            SubprocessResult with returncode, stdout, and stderr

        Raises:
            CommandError: If check=True and command fails
            asyncio.TimeoutError: If command times out
        """
        if timeout is None:
            timeout = DEFAULT_TIMEOUT
        display = " ".join(cmd)

        logger.debug("Executing command", command=display, timeout=timeout)

        kwargs: dict[str, Any] = {
            "env": {**os.environ, **env} if env else None,
            "stderr": asyncio.subprocess.PIPE,
        }

        process = None
        with ExitStack() as files:
            stdin_bytes: bytes | None = None
            if stdin_path is not None:
                kwargs["stdin"] = files.enter_context(open(stdin_path, "rb"))
            elif stdin is not None:
                kwargs["stdin"] = asyncio.subprocess.PIPE
                stdin_bytes = stdin.encode() if isinstance(stdin, str) else stdin
            else:
                kwargs["stdin"] = asyncio.subprocess.DEVNULL

            out_file: IO[bytes] | None = None
            if stdout_path is not None:
                out_file = files.enter_context(open(stdout_path, "wb"))
                kwargs["stdout"] = out_file
            else:
                kwargs["stdout"] = asyncio.subprocess.PIPE

            try:
                process = await asyncio.create_subprocess_exec(*cmd, **kwargs)

                async with self._cleanup_lock:
                    self._active_processes.add(process)

                try:
                    stdout_bytes, stderr_bytes = await asyncio.wait_for(
                        process.communicate(input=stdin_bytes), timeout=timeout
                    )
                except asyncio.TimeoutError:
                    logger.warning(
                        "Command timed out, terminating process",
                        command=display,
                        timeout=timeout,
                        pid=process.pid,
                    )
                    await _terminate(process)
                    raise asyncio.TimeoutError(
                        f"Command timed out after {timeout} seconds: {display}"
                    )
            except FileNotFoundError as e:
                raise CommandError(f"Executable not found: {cmd[0]}") from e
            finally:
                if process is not None:
                    async with self._cleanup_lock:
                        self._active_processes.discard(process)
                    if process.returncode is None:
                        try:
                            await _terminate(process)
                        except ProcessLookupError:
                            # Process already terminated
                            pass

        stdout: str | bytes
        stderr: str | bytes
        if text:
            stdout = stdout_bytes.decode(errors="replace") if stdout_bytes else ""
            stderr = stderr_bytes.decode(errors="replace") if stderr_bytes else ""
        else:
            stdout = stdout_bytes or b""
            stderr = stderr_bytes or b""

        result = SubprocessResult(
            returncode=process.returncode or 0,
            stdout=stdout,
            stderr=stderr,
            cmd=cmd,
        )

        if check and not result.success:
            result.check_returncode()

        return result

    async def cleanup_all(self):
        """Cleanup all active processes."""
        async with self._cleanup_lock:
            processes = list(self._active_processes)

        if not processes:
            return

        logger.info("Cleaning up active processes", count=len(processes))

        for process in processes:
            if process.returncode is None:
                try:
                    await _terminate(process)
                except ProcessLookupError:
                    pass

        async with self._cleanup_lock:
            self._active_processes.clear()


class SubprocessResult:
    """Result of a subprocess execution."""

    def __init__(
        self,
        returncode: int,
        stdout: str | bytes,
        stderr: str | bytes,
        cmd: list[str],
    ):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.cmd = cmd

    @property
    def success(self) -> bool:
        """Check if the command succeeded."""
        return self.returncode == 0

    @property
    def error_message(self) -> str:
        message = self.stderr.strip() if self.stderr else self.stdout.strip() if self.stdout else ""
        if isinstance(message, bytes):
            message = message.decode(errors="replace")
        return message or "Command failed"

    def check_returncode(self):
        """Raise an exception if the command failed."""
        if self.returncode != 0:
            raise CommandError(
                f"Command failed with exit code {self.returncode}: {self.error_message}",
                returncode=self.returncode,
                stderr=self.error_message,
            )


async def _terminate(process: asyncio.subprocess.Process) -> None:
    """Terminate gracefully, escalating to SIGKILL after KILL_TIMEOUT."""
    process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_TIMEOUT)
    except asyncio.TimeoutError:
        logger.warning("Process did not terminate gracefully, sending SIGKILL", pid=process.pid)
        process.kill()
        await process.wait()


@asynccontextmanager
async def managed_subprocess():
    """Context manager for subprocess management with automatic cleanup."""
    manager = SubprocessManager()
    try:
        yield manager
    finally:
        await manager.cleanup_all()
