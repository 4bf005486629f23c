# Copyright (c) 2025 Efstratios Goudelis
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.


import asyncio
import inspect
import logging
import math
import os
import re
import signal
from typing import Any, Callable, List, Optional, Sequence

import psutil

from common.constants import Timing
from common.timers import Timers

logger = logging.getLogger("process-supervisor")


def aligned_buffer_size(
    rate: float,
    seconds: float = Timing.USB_BUFFER_SECONDS,
    alignment: int = Timing.USB_BUFFER_ALIGNMENT,
) -> int:
    """
    Size of a transfer buffer holding `seconds` worth of data at `rate`,
    rounded up to the transport's alignment.

    Example: 6e6 * 0.008 = 48000 bytes -> 48128 (94 * 512)
    """
    return int(alignment * math.ceil(rate * seconds / float(alignment)))


def reap_processes(name: str) -> int:
    """
    Kill every process whose name matches `name` (killall -KILL equivalent).

    Returns:
        int: Number of processes signalled
    """
    killed = 0
    me = os.getpid()
    for proc in psutil.process_iter(["pid", "name"]):
        try:
            if proc.info["pid"] == me or proc.info["name"] != name:
                continue
            proc.kill()
            killed += 1
            logger.info(f"Reaped stale process {name} (PID: {proc.info['pid']})")
        except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
            logger.warning(f"Could not reap {name}: {e}")
    return killed


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class ProcessSupervisor:
    """
    Owns the lifecycle of one child process: spawn, readiness, exit, kill.

    At most one child is alive at any time. Before every spawn the socket path
    the child will bind (if any) is removed so a new generation never collides
    with a stale socket file.

    Callbacks (plain functions or coroutines):
        on_ready():                     readiness marker seen on stdout
        on_output(line):                every stdout line
        on_stderr(line):                every stderr line
        on_exit(code, sig, deliberate): child gone; deliberate is True when
                                        the exit follows our own kill()
        on_error(exc):                  the child could not be launched
    """

    def __init__(
        self,
        name: str,
        prog: str,
        args: Sequence[str] = (),
        ready_pattern: Optional[str] = None,
        socket_path: Optional[str] = None,
        respawn_delay: Optional[float] = None,
        stdin: bool = False,
        env: Optional[dict] = None,
        on_ready: Optional[Callable[..., Any]] = None,
        on_output: Optional[Callable[..., Any]] = None,
        on_stderr: Optional[Callable[..., Any]] = None,
        on_exit: Optional[Callable[..., Any]] = None,
        on_error: Optional[Callable[..., Any]] = None,
    ):
        self.name = name
        self.prog = prog
        self.args = args
        self.ready_pattern = re.compile(ready_pattern) if ready_pattern else None
        self.socket_path = socket_path
        self.respawn_delay = respawn_delay
        self.stdin = stdin
        self.env = env
        self.on_ready = on_ready
        self.on_output = on_output
        self.on_stderr = on_stderr
        self.on_exit = on_exit
        self.on_error = on_error

        self.process: Optional[asyncio.subprocess.Process] = None
        self.ready = False
        self.killing = False  # we asked for the current child to die
        self.quitting = False
        self.generation = 0
        self.timers = Timers(owner=name)
        self._tasks: List[asyncio.Task] = []
        self._exit_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.returncode is None

    def _build_args(self) -> List[str]:
        return [str(a) for a in self.args]

    def remove_socket(self) -> None:
        if not self.socket_path:
            return
        try:
            os.unlink(self.socket_path)
            logger.debug(f"{self.name}: removed stale socket {self.socket_path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"{self.name}: could not remove socket {self.socket_path}: {e}")

    async def spawn(self) -> bool:
        """
        Launch the child.

        Returns:
            bool: True if a child was started
        """
        if self.quitting:
            return False
        if self.process is not None:
            logger.warning(f"{self.name}: spawn requested while PID {self.pid} is alive, ignoring")
            return False

        self.timers.cancel("respawn")
        self.remove_socket()
        args = self._build_args()
        self.ready = False
        self.killing = False
        self.generation += 1

        logger.info(f"{self.name}: launching {self.prog} {' '.join(args)}")
        try:
            process = await asyncio.create_subprocess_exec(
                self.prog,
                *args,
                stdin=asyncio.subprocess.PIPE if self.stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.env,
            )
        except OSError as e:
            logger.error(f"{self.name}: failed to launch {self.prog}: {e}")
            await _invoke(self.on_error, e)
            await self._after_exit(None, None, deliberate=False)
            return False

        self.process = process
        logger.info(f"{self.name}: started (PID: {process.pid})")
        self._tasks = [
            asyncio.create_task(self._read_stdout(process)),
            asyncio.create_task(self._read_stderr(process)),
        ]
        self._exit_task = asyncio.create_task(self._watch_exit(process))
        return True

    async def _read_stdout(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None
        async for raw in process.stdout:
            line = raw.decode("utf-8", errors="replace").rstrip("\n")
            logger.debug(f"{self.name} stdout: {line}")
            await _invoke(self.on_output, line)
            if not self.ready and process is self.process:
                if self.ready_pattern is None or self.ready_pattern.search(line):
                    self.ready = True
                    logger.info(f"{self.name}: ready")
                    await _invoke(self.on_ready)

    async def _read_stderr(self, process: asyncio.subprocess.Process) -> None:
        assert process.stderr is not None
        async for raw in process.stderr:
            line = raw.decode("utf-8", errors="replace").rstrip()
            logger.info(f"{self.name} stderr: {line}")
            await _invoke(self.on_stderr, line)

    async def _watch_exit(self, process: asyncio.subprocess.Process) -> None:
        returncode = await process.wait()
        # let the readers see EOF so no output is lost
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        code: Optional[int] = returncode
        sig: Optional[int] = None
        if returncode is not None and returncode < 0:
            code, sig = None, -returncode

        deliberate = self.killing
        self.killing = False
        self.process = None
        self.ready = False
        logger.info(f"{self.name}: exited, code: {code} signal: {sig}")
        await self._after_exit(code, sig, deliberate)

    async def _after_exit(self, code: Optional[int], sig: Optional[int], deliberate: bool) -> None:
        try:
            await _invoke(self.on_exit, code, sig, deliberate)
        except Exception as e:
            logger.error(f"{self.name}: exit handler failed: {e}")
            logger.exception(e)
        if self.respawn_delay is not None and not self.quitting:
            logger.info(f"{self.name}: respawning in {self.respawn_delay}s")
            self.timers.schedule("respawn", self.respawn_delay, self.spawn)

    def kill(self, forced: bool = True) -> bool:
        """
        Signal the child (SIGKILL when forced, SIGTERM otherwise).
        The exit is reported through on_exit with deliberate=True.
        """
        if self.process is None or self.process.returncode is not None:
            return False
        self.killing = True
        sig = signal.SIGKILL if forced else signal.SIGTERM
        try:
            self.process.send_signal(sig)
        except ProcessLookupError:
            return False
        logger.info(f"{self.name}: sent {sig.name} to PID {self.process.pid}")
        return True

    def write(self, data: bytes) -> bool:
        """Write to the child's stdin (only when created with stdin=True)."""
        if self.process is None or self.process.stdin is None:
            return False
        try:
            self.process.stdin.write(data)
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"{self.name}: error writing to stdin: {e}")
            return False
        return True

    async def wait_exit(self, timeout: Optional[float] = None) -> None:
        if self._exit_task is not None and not self._exit_task.done():
            await asyncio.wait_for(asyncio.shield(self._exit_task), timeout)

    async def stop(self, timeout: float = 5.0) -> None:
        """Kill the child for good; no respawn follows."""
        self.quitting = True
        self.timers.cancel_all()
        self.kill(forced=True)
        try:
            await self.wait_exit(timeout)
        except asyncio.TimeoutError:
            # still alive, its socket stays until it is really gone
            logger.error(f"{self.name}: PID {self.pid} did not exit within {timeout}s after kill")
            return
        self.remove_socket()
