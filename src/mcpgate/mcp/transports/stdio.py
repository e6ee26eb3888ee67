"""Subprocess transport: newline-delimited JSON-RPC over stdin/stdout."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any

from mcpgate.constants import PROCESS_TERMINATE_TIMEOUT
from mcpgate.exceptions import ConnectError
from mcpgate.mcp.transports.base import Transport
from mcpgate.schemas import ConnectionState

logger = logging.getLogger(__name__)

# Tool results can be large; asyncio's default 64 KiB line limit is too small
STDIO_READ_LIMIT = 16 * 1024 * 1024


class StdioTransport(Transport):
    """
    JSON-RPC over stdin/stdout pipes to a child process.

    One line is one message. The child's stderr is drained into the logger so
    the pipe never fills up and blocks the server.
    """

    def __init__(
        self,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
        cwd: str | None = None,
    ):
        """
        Args:
            command: Executable to launch, e.g. "npx" or "mcp-fs"
            args: Arguments passed after the command
            env: Variables merged over the current environment
            cwd: Optional working directory for the child
        """
        super().__init__()
        self.command = command
        self.args = list(args or [])
        self.env = dict(env or {})
        self.cwd = cwd
        self._process: asyncio.subprocess.Process | None = None
        self._inbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._eof = False
        self._closed = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    async def start(self) -> None:
        """Launch the child process."""
        if self._process is not None:
            raise ConnectError(f"Transport for '{self.command}' already started")

        self._set_state(ConnectionState.CONNECTING)
        logger.info("Starting stdio transport: %s %s", self.command, " ".join(self.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                self.command,
                *self.args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env={**os.environ, **self.env},
                cwd=self.cwd,
                limit=STDIO_READ_LIMIT,
            )
        except OSError as exc:
            self._set_state(ConnectionState.ERROR, str(exc))
            raise ConnectError(f"Failed to start process '{self.command}': {exc}") from exc

        self._reader_task = asyncio.create_task(self._read_stdout())
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._set_state(ConnectionState.CONNECTED)

    async def _read_stdout(self) -> None:
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug("Ignoring non-JSON output from %s: %s", self.command, text[:200])
                    continue
                if isinstance(message, list):
                    for item in message:
                        await self._inbound.put(item)
                else:
                    await self._inbound.put(message)
        except (ValueError, ConnectionError) as exc:
            # ValueError: a single line exceeded STDIO_READ_LIMIT
            logger.warning("Stdout reader for %s stopped: %s", self.command, exc)
        finally:
            self._eof = True
            await self._inbound.put(None)
            if not self._closed:
                returncode = self._process.returncode
                self._set_state(
                    ConnectionState.ERROR,
                    f"Process '{self.command}' ended (exit code {returncode})",
                )

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        while True:
            line = await self._process.stderr.readline()
            if not line:
                return
            logger.debug("[%s stderr] %s", self.command, line.decode("utf-8", "replace").rstrip())

    async def send(self, message: dict[str, Any]) -> None:
        if not self.is_alive() or self._process is None or self._process.stdin is None:
            raise ConnectionError(f"Transport for '{self.command}' is not running")

        data = json.dumps(message, ensure_ascii=False) + "\n"
        try:
            self._process.stdin.write(data.encode("utf-8"))
            await self._process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._set_state(ConnectionState.ERROR, str(exc))
            raise ConnectionError(f"Process '{self.command}' closed its stdin") from exc

    async def receive(self) -> dict[str, Any] | None:
        if self._eof and self._inbound.empty():
            return None
        message = await self._inbound.get()
        if message is None:
            # Keep the sentinel for any later receive() call
            self._inbound.put_nowait(None)
        return message

    def is_alive(self) -> bool:
        return (
            super().is_alive()
            and self._process is not None
            and self._process.returncode is None
        )

    async def close(self) -> None:
        """Terminate the child process and stop the reader tasks."""
        if self._closed:
            return
        self._closed = True

        process = self._process
        if process is not None:
            if process.stdin is not None and not process.stdin.is_closing():
                process.stdin.close()
            if process.returncode is None:
                try:
                    process.terminate()
                    await asyncio.wait_for(process.wait(), timeout=PROCESS_TERMINATE_TIMEOUT)
                except ProcessLookupError:
                    pass
                except asyncio.TimeoutError:
                    logger.warning("Process %s ignored SIGTERM, killing", process.pid)
                    try:
                        process.kill()
                    except ProcessLookupError:
                        pass
                    await process.wait()
            logger.info("Stdio transport stopped: %s (pid %s)", self.command, process.pid)

        for task in (self._reader_task, self._stderr_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        self._set_state(ConnectionState.DISCONNECTED)
