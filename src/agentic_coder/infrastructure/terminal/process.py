"""A shell command running as an asyncio subprocess.

Events (see ``TerminalProcess``):

``line``
    one line of combined stdout/stderr, as it arrives;
``completed``
    the full output, once the process has exited;
``shell_execution_complete``
    :class:`ExitDetails` for the exit, only with shell integration on;
``no_shell_integration``
    emitted once at start when exit codes will not be reported.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from typing import List, Optional

from agentic_coder.domain import ExitDetails
from agentic_coder.infrastructure.events import EventEmitter

logger = logging.getLogger(__name__)

# A process that printed within this window is considered busy producing output.
HOT_WINDOW_S = 2.0

_CORE_DUMP_SIGNALS = frozenset(
    getattr(signal, name) for name in ("SIGSEGV", "SIGABRT", "SIGBUS", "SIGFPE", "SIGILL", "SIGQUIT", "SIGSYS", "SIGTRAP")
    if hasattr(signal, name)
)


def exit_details_for(returncode: Optional[int]) -> ExitDetails:
    if returncode is None:
        return ExitDetails()
    if returncode < 0:
        number = -returncode
        try:
            name = signal.Signals(number).name
        except ValueError:
            name = f"SIG{number}"
        return ExitDetails(signal=number, signal_name=name, core_dump_possible=number in _CORE_DUMP_SIGNALS)
    return ExitDetails(exit_code=returncode)


class ShellProcess(EventEmitter):
    def __init__(
        self,
        command: str,
        cwd: str,
        *,
        shell: Optional[str] = None,
        shell_integration: bool = True,
    ) -> None:
        super().__init__()
        self.command = command
        self.cwd = cwd
        self.shell = shell
        self.shell_integration = shell_integration
        self.returncode: Optional[int] = None
        self.last_output_at = 0.0
        self._lines: List[str] = []
        self._retrieved = 0
        self._continued = asyncio.Event()
        self._finished = asyncio.Event()
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._runner = asyncio.get_running_loop().create_task(self._run())

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _spawn(self) -> asyncio.subprocess.Process:
        kwargs = dict(
            cwd=self.cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=os.environ.copy(),
        )
        if self.shell:
            return await asyncio.create_subprocess_exec(self.shell, "-c", self.command, **kwargs)
        return await asyncio.create_subprocess_shell(self.command, **kwargs)

    async def _run(self) -> None:
        if not self.shell_integration:
            self.emit(
                "no_shell_integration",
                "Shell integration is disabled; the command's exit status will not be reported.",
            )
        try:
            self._proc = await self._spawn()
            logger.debug("Started %r (pid %s) in %s", self.command, self._proc.pid, self.cwd)
            assert self._proc.stdout is not None
            while True:
                raw = await self._proc.stdout.readline()
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
                # keep only what a terminal would show after carriage returns
                line = line.rsplit("\r", 1)[-1]
                self._lines.append(line)
                self.last_output_at = time.monotonic()
                self.emit("line", line)
            self.returncode = await self._proc.wait()
        except OSError as exc:
            logger.warning("Could not run %r: %s", self.command, exc)
            self._lines.append(str(exc))
            self.emit("line", str(exc))
            self.returncode = 127
        except asyncio.CancelledError:
            self._kill()
            raise
        finally:
            self._finished.set()

        self.emit("completed", "\n".join(self._lines))
        if self.shell_integration:
            self.emit("shell_execution_complete", exit_details_for(self.returncode))
        logger.debug("%r exited with %s", self.command, self.returncode)

    def _kill(self) -> None:
        if self._proc is not None and self._proc.returncode is None:
            try:
                self._proc.kill()
            except ProcessLookupError:
                pass

    # ------------------------------------------------------------------
    # TerminalProcess surface
    # ------------------------------------------------------------------

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def continue_(self) -> None:
        """Release ``wait()`` callers; the command keeps running in the background."""
        self._retrieved = len(self._lines)
        self._continued.set()

    async def wait(self) -> None:
        finished = asyncio.ensure_future(self._finished.wait())
        continued = asyncio.ensure_future(self._continued.wait())
        try:
            await asyncio.wait({finished, continued}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (finished, continued):
                if not fut.done():
                    fut.cancel()

    def hot(self) -> bool:
        return not self.finished and time.monotonic() - self.last_output_at < HOT_WINDOW_S

    def get_unretrieved_output(self) -> str:
        """Output produced since the last call (or since ``continue_``)."""
        pending = self._lines[self._retrieved:]
        self._retrieved = len(self._lines)
        return "\n".join(pending)

    async def terminate(self) -> None:
        self._kill()
        if not self._runner.done():
            try:
                await asyncio.wait_for(asyncio.shield(self._runner), timeout=2.0)
            except asyncio.TimeoutError:
                self._runner.cancel()
