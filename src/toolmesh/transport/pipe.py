"""Subprocess transport: newline-delimited JSON over stdin/stdout."""

import asyncio
import contextlib
import os
from typing import Any

from toolmesh.config.models import ServerConfig
from toolmesh.errors import create_error
from toolmesh.logging.logger import ServerLogger

from .base import MAX_FRAME_BYTES, Transport
from .protocol import JSONRPCMessage


class PipeTransport(Transport):
    """Spawn the server as a child process and talk over its stdio.

    stdout carries one frame per line; stderr is drained to the log and
    never parsed.
    """

    message_oriented = True

    # Seconds to wait for a spawned process to die on its own before a
    # spawn is considered successful
    SPAWN_SETTLE = 0.05
    # Seconds between terminate() and kill() on close
    CLOSE_GRACE = 2.0

    def __init__(self, config: ServerConfig, logger: ServerLogger | None = None):
        super().__init__(config, logger)
        self._process: asyncio.subprocess.Process | None = None
        self._stdout_task: asyncio.Task[None] | None = None
        self._stderr_task: asyncio.Task[None] | None = None

    @property
    def is_open(self) -> bool:
        return (
            self._process is not None
            and self._process.returncode is None
            and not self._closing
            and not self._close_notified
        )

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def connect(self) -> None:
        """Spawn the child process.

        Raises:
            ToolmeshError(CONNECT_FAILED): If the command cannot be spawned
                or the process exits immediately
        """
        command = self.config.command
        if not command:
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"No command specified for pipe server '{self.config.name}'",
            )

        env = {**os.environ, **dict(self.config.env)} if self.config.env else None
        self._closing = False
        self._close_notified = False

        try:
            self._process = await asyncio.wait_for(
                asyncio.create_subprocess_exec(
                    command,
                    *self.config.args,
                    stdin=asyncio.subprocess.PIPE,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env,
                    cwd=self.config.cwd,
                    limit=MAX_FRAME_BYTES,
                ),
                timeout=self.config.timeout,
            )
        except (OSError, TimeoutError) as e:
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"Failed to spawn '{self.config.target}': {str(e) or type(e).__name__}",
            ) from e

        self._stderr_task = asyncio.create_task(self._read_stderr())

        try:
            returncode = await asyncio.wait_for(self._process.wait(), timeout=self.SPAWN_SETTLE)
        except TimeoutError:
            pass
        else:
            await self._stop_readers()
            self._process = None
            raise create_error(
                "CONNECT_FAILED",
                server_name=self.config.name,
                detail=f"Process '{self.config.target}' exited with code {returncode}",
            )

        self._stdout_task = asyncio.create_task(self._read_stdout())

    async def send(self, frame: dict[str, Any], timeout: float | None = None) -> None:
        """Write one frame as a line on the child's stdin.

        Raises:
            ToolmeshError(CONNECTION_CLOSED): If the process is gone
            BrokenPipeError, ConnectionResetError: If the pipe breaks mid-write
        """
        if not self.is_open or self._process is None or self._process.stdin is None:
            raise create_error(
                "CONNECTION_CLOSED",
                server_name=self.config.name,
                detail="Process is not running",
            )

        line = JSONRPCMessage.encode(frame) + "\n"
        self._process.stdin.write(line.encode("utf-8"))
        await self._process.stdin.drain()
        return None

    async def close(self) -> None:
        """Terminate the child process, killing it after a grace period."""
        self._closing = True
        process = self._process
        if process is None:
            return

        if process.stdin and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.CLOSE_GRACE)
            except TimeoutError:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        await self._stop_readers()
        self._process = None

    async def _stop_readers(self) -> None:
        for task in (self._stdout_task, self._stderr_task):
            if task and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._stdout_task = None
        self._stderr_task = None

    async def _read_stdout(self) -> None:
        """Deliver each stdout line as a frame until EOF."""
        process = self._process
        assert process is not None and process.stdout is not None
        stdout = process.stdout

        while True:
            try:
                line = await stdout.readline()
            except ValueError as e:
                # Line longer than MAX_FRAME_BYTES; the reader has skipped it
                self._protocol_error(str(e))
                continue

            if not line:
                break
            line = line.strip()
            if line:
                self._deliver(line)

        returncode = await process.wait()
        self._notify_closed(f"process exited with code {returncode}")

    async def _read_stderr(self) -> None:
        """Forward stderr lines to the log."""
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr

        while True:
            try:
                line = await stderr.readline()
            except ValueError:
                continue
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text and self._logger:
                self._logger.stderr(text)
