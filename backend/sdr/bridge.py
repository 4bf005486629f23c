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

"""
Shared GNU Radio bridge process.

One bridge process serves every device driven through GNU Radio. It is
launched as `<prog> -s <socket name>` and listens on one unix socket; the
first connection carries text commands and JSON replies, the second carries
newline delimited detection data for every accepted port. The bridge is
respawned whenever it dies and its channels reconnect after a delay.

Text commands understood by the bridge:

    <par> <port> <value>       set a device parameter
    receive <label>            send <label>'s data on the data channel
    rawStream <label> <rate> <fm> / rawStreamOff <label>
    list                       report every plugin runner's frame counters
"""

import asyncio
import logging
import os
from typing import Any, Callable, Dict, Optional, Sequence, Set, Union

from common.bus import MessageBus
from common.constants import BusTopics, Timing
from sdr.channels import COMMAND, DATA, ChannelManager
from sdr.codec import LineBuffer, encode_text_command
from sdr.correlator import CommandCorrelator
from sdr.health import HealthMonitor
from sdr.process import ProcessSupervisor, reap_processes

logger = logging.getLogger("gnuradio-bridge")

BRIDGE_PROG = "/usr/local/bin/grh"
BRIDGE_SOCKET = "grh"
PLUGIN_RUNNER = "PluginRunner"


class RawStream:
    """
    Raw sample stream for one port, opened on its own bridge connection.

    The bridge switches the connection to raw samples after receiving the
    rawStream command on it.
    """

    def __init__(self, path: str, label: str, rate: int, fm: bool, on_data: Callable[[bytes], Any]):
        self.path = path
        self.label = label
        self.rate = rate
        self.fm = fm
        self.on_data = on_data
        self.writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None

    async def open(self) -> None:
        reader, writer = await asyncio.open_unix_connection(self.path)
        self.writer = writer
        writer.write(encode_text_command("rawStream", self.label, self.rate, 1 if self.fm else 0))
        await writer.drain()
        self._task = asyncio.create_task(self._read(reader))
        logger.info(f"Raw stream for {self.label} at {self.rate} opened")

    async def _read(self, reader: asyncio.StreamReader) -> None:
        while True:
            data = await reader.read(65536)
            if not data:
                break
            self.on_data(data)
        logger.info(f"Raw stream for {self.label} closed by bridge")

    async def close(self) -> None:
        if self.writer is None:
            return
        try:
            self.writer.write(encode_text_command("rawStreamOff", self.label))
            await self.writer.drain()
        except (ConnectionError, OSError) as e:
            logger.warning(f"Error stopping raw stream for {self.label}: {e}")
        if self._task is not None:
            self._task.cancel()
        self.writer.transport.abort()
        self.writer = None


class GnuRadioBridge:
    def __init__(
        self,
        bus: MessageBus,
        prog: str = BRIDGE_PROG,
        sock_name: str = BRIDGE_SOCKET,
        socket_dir: str = "/tmp",
        respawn_delay: float = Timing.RESTART_DELAY,
        reconnect_delay: float = Timing.RECONNECT_DELAY,
        rate_check_interval: float = Timing.RATE_CHECK_INTERVAL,
    ):
        self.bus = bus
        self.prog = prog
        self.sock_path = os.path.join(socket_dir, sock_name)
        self.accepted: Set[str] = set()
        self.quitting = False
        self.data_lines = LineBuffer()

        self.supervisor = ProcessSupervisor(
            name="gnuradio-bridge",
            prog=prog,
            args=["-s", sock_name],
            socket_path=self.sock_path,
            respawn_delay=respawn_delay,
            on_ready=self._started,
            on_output=self._output,
            on_exit=self._died,
        )
        self.channels = ChannelManager("gnuradio-bridge", self.sock_path, reconnect_delay=reconnect_delay)
        self.correlator = CommandCorrelator("gnuradio-bridge", self.channels, on_event=self._got_event)
        self.channels.add_channel(COMMAND, self.correlator.feed, on_connected=self._command_connected)
        self.channels.add_channel(DATA, self._got_data, on_connected=self._data_connected)
        self.monitor = HealthMonitor(
            "gnuradio-bridge",
            poll=self.check_rates,
            on_stall=self._stalled,
            bus=bus,
            interval=rate_check_interval,
            expected_type=PLUGIN_RUNNER,
        )

    @property
    def running(self) -> bool:
        return self.supervisor.running

    async def start(self) -> None:
        reaped = await asyncio.get_running_loop().run_in_executor(
            None, reap_processes, os.path.basename(self.prog)
        )
        if reaped:
            logger.info(f"Killed {reaped} stale bridge process(es)")
        await self.supervisor.spawn()
        self.monitor.start()

    async def _started(self) -> None:
        self.data_lines.reset()
        await self.channels.connect_command()
        await self.channels.connect_data()
        self.bus.publish(BusTopics.BRIDGE_STARTED)

    def _output(self, line: str) -> None:
        self.bus.publish(BusTopics.RAW_OUTPUT, {"text": line, "src": "gnuradio-bridge"})

    def _died(self, code: Optional[int], sig: Optional[int], deliberate: bool) -> None:
        logger.warning(f"GNU Radio bridge died, code: {code} signal: {sig}")
        self.channels.disconnect()
        self.correlator.connection_reset()
        # a new bridge generation knows nothing about earlier ports
        self.accepted.clear()
        self.monitor.watches.clear()
        if not self.quitting:
            self.bus.publish(BusTopics.BRIDGE_DIED, code, sig)

    def _command_connected(self) -> None:
        self.correlator.connection_reset()
        self.correlator.flush()

    def _data_connected(self) -> None:
        self.data_lines.reset()
        for label in sorted(self.accepted):
            self.channels.write(DATA, encode_text_command("receive", label))

    def _got_event(self, event: Optional[str], dev_label: Optional[str], record: Dict[str, Any]) -> None:
        if event:
            self.bus.publish(event, dev_label, record)

    def _got_data(self, data: bytes) -> None:
        for line in self.data_lines.feed(data):
            if line:
                self.bus.publish(BusTopics.BRIDGE_DATA, line)

    def _stalled(self, label: str, reason: str) -> None:
        self.bus.publish(BusTopics.DEVICE_STALLED, label, reason)

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    def submit(
        self,
        cmd: Union[str, Sequence[str]],
        callback: Optional[Callable[..., Any]] = None,
        par: Any = None,
    ) -> None:
        """Send one text command, or a batch of them answered together."""
        if isinstance(cmd, str):
            if cmd != "list":
                logger.info(f"GNU Radio bridge command: {cmd}")
            payload = self._encode(cmd)
        else:
            logger.info(f"GNU Radio bridge commands: {list(cmd)}")
            payload = [self._encode(c) for c in cmd]
        self.correlator.submit(payload, callback, par)

    @staticmethod
    def _encode(cmd: str) -> bytes:
        verb, *args = cmd.split()
        return encode_text_command(verb, *args)

    def accept(self, label: str) -> None:
        """Ask for a port's data on the data channel and start monitoring it."""
        self.accepted.add(label)
        self.monitor.watch(label)
        if self.channels.is_connected(DATA):
            self.channels.write(DATA, encode_text_command("receive", label))
        else:
            logger.info(f"Data channel not connected; {label} will be accepted on connect")

    def forget(self, label: str) -> None:
        self.accepted.discard(label)
        self.monitor.unwatch(label)

    def check_rates(self) -> None:
        if not self.channels.is_connected(COMMAND):
            return
        self.submit("list", self.monitor.check)

    async def open_raw_stream(self, label: str, rate: int, fm: bool, on_data: Callable[[bytes], Any]) -> RawStream:
        stream = RawStream(self.sock_path, label, rate, fm, on_data)
        await stream.open()
        return stream

    async def quit(self) -> None:
        self.quitting = True
        self.monitor.stop()
        self.channels.close()
        self.correlator.clear()
        await self.supervisor.stop()
        logger.info("GNU Radio bridge stopped")
