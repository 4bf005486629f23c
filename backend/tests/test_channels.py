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
Tests for sdr/channels.py command and data connections.
"""

import asyncio

import pytest

from common.exceptions import ChannelNotConnectedError
from fakes import wait_until
from sdr.channels import COMMAND, DATA, ChannelManager


class EchoServer:
    """Unix socket server that echoes and remembers its clients."""

    def __init__(self, path):
        self.path = path
        self.server = None
        self.clients = []

    async def start(self):
        self.server = await asyncio.start_unix_server(self.handle, path=self.path)

    async def handle(self, reader, writer):
        self.clients.append(writer)
        while True:
            data = await reader.read(1024)
            if not data:
                break
            writer.write(data)
            await writer.drain()

    def drop_clients(self):
        for writer in self.clients:
            writer.transport.abort()
        self.clients = []

    async def stop(self):
        self.drop_clients()
        self.server.close()
        await self.server.wait_closed()


@pytest.fixture
async def server(tmp_path):
    srv = EchoServer(str(tmp_path / "s.sock"))
    await srv.start()
    yield srv
    await srv.stop()


@pytest.mark.asyncio
class TestChannelManager:
    """Test cases for ChannelManager."""

    async def test_connect_and_echo(self, server):
        """Test connecting, writing and receiving data."""
        received = []
        connected = []
        channels = ChannelManager("test", server.path)
        channels.add_channel(COMMAND, received.append, on_connected=lambda: connected.append(1))

        assert await channels.connect_command()
        assert connected == [1]
        channels.write(COMMAND, b"hello")
        await wait_until(lambda: b"".join(received) == b"hello")
        channels.close()

    async def test_connect_is_idempotent(self, server):
        """Test that a second connect reuses the open channel."""
        channels = ChannelManager("test", server.path)
        channels.add_channel(DATA, lambda data: None)

        assert await channels.connect_data()
        assert await channels.connect_data()
        await wait_until(lambda: len(server.clients) == 1)
        await asyncio.sleep(0.05)
        assert len(server.clients) == 1
        channels.close()

    async def test_unknown_kind(self, server):
        """Test connecting a kind that was never registered."""
        channels = ChannelManager("test", server.path)
        with pytest.raises(KeyError):
            await channels.connect(DATA)

    async def test_write_when_not_connected(self, server):
        """Test that writing to a missing channel raises."""
        channels = ChannelManager("test", server.path)
        channels.add_channel(COMMAND, lambda data: None)
        with pytest.raises(ChannelNotConnectedError):
            channels.write(COMMAND, b"x")

    async def test_lost_without_reconnect(self, server):
        """Test that on_lost is called when the peer closes a no-reconnect channel."""
        lost = []
        channels = ChannelManager("test", server.path)
        channels.add_channel(DATA, lambda data: None, on_lost=lost.append, reconnect=False)
        await channels.connect_data()
        await wait_until(lambda: server.clients)

        server.drop_clients()
        await wait_until(lambda: lost == [DATA])
        assert not channels.is_connected(DATA)

    async def test_reconnect_after_peer_close(self, server):
        """Test that a reconnecting channel comes back after the delay."""
        connects = []
        channels = ChannelManager("test", server.path, reconnect_delay=0.05)
        channels.add_channel(COMMAND, lambda data: None, on_connected=lambda: connects.append(1))
        await channels.connect_command()
        await wait_until(lambda: server.clients)

        server.drop_clients()
        await wait_until(lambda: len(connects) == 2)
        assert channels.is_connected(COMMAND)
        channels.close()

    async def test_failed_connect_retries(self, tmp_path):
        """Test that a connect to a missing socket is retried once it appears."""
        path = str(tmp_path / "late.sock")
        channels = ChannelManager("test", path, reconnect_delay=0.05)
        channels.add_channel(COMMAND, lambda data: None)

        assert not await channels.connect_command()
        srv = EchoServer(path)
        await srv.start()
        try:
            await wait_until(lambda: channels.is_connected(COMMAND))
        finally:
            channels.close()
            await srv.stop()

    async def test_failed_connect_without_reconnect(self, tmp_path):
        """Test that a failed connect on a no-reconnect channel reports it lost."""
        lost = []
        channels = ChannelManager("test", str(tmp_path / "none.sock"))
        channels.add_channel(COMMAND, lambda data: None, on_lost=lost.append, reconnect=False)

        assert not await channels.connect_command()
        assert lost == [COMMAND]

    async def test_disconnect_is_quiet(self, server):
        """Test that our own disconnect does not trigger on_lost or reconnects."""
        lost = []
        channels = ChannelManager("test", server.path, reconnect_delay=0.01)
        channels.add_channel(DATA, lambda data: None, on_lost=lost.append, reconnect=False)
        await channels.connect_data()

        channels.disconnect(DATA)
        channels.disconnect(DATA)
        await asyncio.sleep(0.05)
        assert lost == []
        assert not channels.is_connected(DATA)

    async def test_closed_manager_does_not_connect(self, server):
        """Test that nothing connects after close()."""
        channels = ChannelManager("test", server.path)
        channels.add_channel(COMMAND, lambda data: None)
        channels.close()

        assert not await channels.connect_command()
        assert len(channels.timers) == 0
