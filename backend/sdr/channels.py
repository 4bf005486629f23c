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
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from common.constants import Timing
from common.exceptions import ChannelNotConnectedError
from common.timers import Timers

logger = logging.getLogger("channel-manager")

COMMAND = "command"
DATA = "data"


async def _invoke(callback: Optional[Callable[..., Any]], *args: Any) -> None:
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


@dataclass
class ChannelSpec:
    """Callbacks and policy for one kind of connection."""

    on_data: Callable[..., Any]
    on_connected: Optional[Callable[..., Any]] = None
    on_lost: Optional[Callable[..., Any]] = None
    reconnect: bool = True


@dataclass
class Channel:
    kind: str
    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter
    read_task: Optional[asyncio.Task] = None
    bytes_in: int = 0
    bytes_out: int = 0


class ChannelManager:
    """
    Owns the stream connections (command, data) to one driven process.

    Connections are unix domain sockets to the path the process listens on.
    connect() is idempotent. A failed connect, or a connection closed by the
    peer, leads either to a delayed reconnect or to the kind's on_lost
    callback, unless the manager is quitting or suspended. disconnect()
    destroys the socket and clears the handle immediately.
    """

    def __init__(
        self,
        name: str,
        path: str,
        reconnect_delay: float = Timing.RECONNECT_DELAY,
        read_size: int = 65536,
    ):
        self.name = name
        self.path = path
        self.reconnect_delay = reconnect_delay
        self.read_size = read_size
        self.specs: Dict[str, ChannelSpec] = {}
        self.channels: Dict[str, Channel] = {}
        self.quitting = False
        self.suspended = False  # set while the owner tears down its process
        self.timers = Timers(owner=f"{name}-channels")
        self._connecting: set = set()

    def add_channel(
        self,
        kind: str,
        on_data: Callable[..., Any],
        on_connected: Optional[Callable[..., Any]] = None,
        on_lost: Optional[Callable[..., Any]] = None,
        reconnect: bool = True,
    ) -> None:
        self.specs[kind] = ChannelSpec(on_data, on_connected, on_lost, reconnect)

    def is_connected(self, kind: str) -> bool:
        return kind in self.channels

    def get(self, kind: str) -> Optional[Channel]:
        return self.channels.get(kind)

    async def connect(self, kind: str) -> bool:
        """
        Open the connection for `kind` if it is not open already.

        Returns:
            bool: True if the channel is connected when the call returns
        """
        if kind not in self.specs:
            raise KeyError(f"{self.name}: no channel kind '{kind}' registered")
        if self.quitting or self.suspended:
            return False
        if kind in self.channels:
            logger.info(f"{self.name}: {kind} channel already connected")
            return True
        if kind in self._connecting:
            logger.info(f"{self.name}: {kind} channel connect already in progress")
            return False

        self._connecting.add(kind)
        self.timers.cancel(f"reconnect-{kind}")
        try:
            reader, writer = await asyncio.open_unix_connection(self.path)
        except (OSError, ConnectionError) as e:
            logger.warning(f"{self.name}: {kind} channel connect to {self.path} failed: {e}")
            self._connecting.discard(kind)
            await self._lost(kind)
            return False
        self._connecting.discard(kind)

        if self.quitting or self.suspended:
            # torn down while connecting
            writer.transport.abort()
            return False

        channel = Channel(kind=kind, reader=reader, writer=writer)
        self.channels[kind] = channel
        channel.read_task = asyncio.create_task(self._read_loop(channel))
        logger.info(f"{self.name}: {kind} channel connected to {self.path}")
        await _invoke(self.specs[kind].on_connected)
        return kind in self.channels

    async def connect_command(self) -> bool:
        return await self.connect(COMMAND)

    async def connect_data(self) -> bool:
        return await self.connect(DATA)

    async def _read_loop(self, channel: Channel) -> None:
        spec = self.specs[channel.kind]
        reason = "closed by peer"
        try:
            while True:
                data = await channel.reader.read(self.read_size)
                if not data:
                    break
                channel.bytes_in += len(data)
                try:
                    await _invoke(spec.on_data, data)
                except Exception as e:
                    logger.error(f"{self.name}: {channel.kind} data handler failed: {e}")
                    logger.exception(e)
        except (OSError, ConnectionError) as e:
            reason = str(e)
        finally:
            if self.channels.get(channel.kind) is channel:
                del self.channels[channel.kind]
                channel.writer.transport.abort()
                logger.warning(f"{self.name}: {channel.kind} channel lost ({reason})")
                await self._lost(channel.kind)

    async def _lost(self, kind: str) -> None:
        if self.quitting or self.suspended:
            return
        spec = self.specs[kind]
        if spec.reconnect:
            logger.info(f"{self.name}: reconnecting {kind} channel in {self.reconnect_delay}s")
            self.timers.schedule(f"reconnect-{kind}", self.reconnect_delay, self.connect, kind)
        else:
            await _invoke(spec.on_lost, kind)

    def write(self, kind: str, data: bytes) -> None:
        channel = self.channels.get(kind)
        if channel is None:
            raise ChannelNotConnectedError(f"{self.name}: {kind} channel is not connected")
        channel.writer.write(data)
        channel.bytes_out += len(data)

    def disconnect(self, kind: Optional[str] = None) -> None:
        """Destroy one channel (or all when kind is None). Safe to repeat."""
        kinds = list(self.specs) if kind is None else [kind]
        for k in kinds:
            self.timers.cancel(f"reconnect-{k}")
            channel = self.channels.pop(k, None)
            if channel is None:
                continue
            channel.writer.transport.abort()
            if channel.read_task is not None and channel.read_task is not asyncio.current_task():
                channel.read_task.cancel()
            logger.info(f"{self.name}: {k} channel disconnected")

    def close(self) -> None:
        """Permanent teardown; no reconnect follows."""
        self.quitting = True
        self.timers.cancel_all()
        self.disconnect()
