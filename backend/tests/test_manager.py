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
Tests for sdr/manager.py session bookkeeping and driver selection.
"""

import asyncio

import pytest

from common.constants import BusTopics
from fakes import FakeBridge, FakeDriver, wait_until
from sdr.drivers.airspy import AirspyDriver
from sdr.drivers.gnuradio import GnuRadioDriver
from sdr.manager import DriverFactory, SessionManager
from sdr.models import Device, Plan
from sdr.session import SessionState


class FakeFactory:
    def __init__(self):
        self.drivers = []

    def __call__(self, device, plan):
        driver = FakeDriver(device, plan, None)
        self.drivers.append(driver)
        return driver


def lookup(device):
    if device.dev_type == "unknown":
        return None
    return Plan(dev_label=device.label, rate=48000, params={"frequency": 150.1})


@pytest.fixture
def factory():
    return FakeFactory()


@pytest.fixture
def manager(bus, factory):
    return SessionManager(bus, lookup, factory, readd_delay=0.05)


def dev(port="3", dev_type="airspy"):
    return Device(usb_path="1:4", port=port, dev_type=dev_type)


@pytest.mark.asyncio
class TestSessionManager:
    """Test cases for SessionManager."""

    async def test_device_added_creates_session(self, bus, manager, factory):
        """Test that a DEVICE_ADDED notification starts a session."""
        bus.publish(BusTopics.DEVICE_ADDED, dev())
        await bus.drain()

        session = manager.get("p3")
        assert session is not None
        assert session.state == SessionState.STREAMING
        assert factory.drivers[0].params == [("frequency", 150.1)]

    async def test_no_plan(self, bus, manager, factory):
        """Test that a device without a plan gets no session."""
        bus.publish(BusTopics.DEVICE_ADDED, dev(dev_type="unknown"))
        await bus.drain()

        assert manager.get("p3") is None
        assert factory.drivers == []

    async def test_added_twice_replaces(self, bus, manager, factory):
        """Test that there is never more than one session per label."""
        await manager.device_added(dev())
        first = manager.get("p3")
        await manager.device_added(dev())

        assert manager.get("p3") is not first
        assert first.state == SessionState.TERMINATED
        assert len(manager.sessions) == 1

    async def test_device_removed(self, bus, manager, factory):
        """Test that DEVICE_REMOVED terminates the session."""
        await manager.device_added(dev())
        session = manager.get("p3")

        bus.publish(BusTopics.DEVICE_REMOVED, dev())
        await wait_until(lambda: session.state == SessionState.TERMINATED)
        assert manager.get("p3") is None
        assert factory.drivers[0].teardowns == 1

    async def test_stall_readds_device(self, bus, manager, factory):
        """Test the remove and re-add cycle after a stall."""
        await manager.device_added(dev())
        old = manager.get("p3")

        bus.publish(BusTopics.DEVICE_STALLED, "p3", "rate out of range")
        await wait_until(lambda: manager.get("p3") is not None and manager.get("p3") is not old)
        await bus.drain()

        assert old.state == SessionState.TERMINATED
        assert manager.get("p3").state == SessionState.STREAMING
        assert len(factory.drivers) == 2

    async def test_removal_cancels_readd(self, bus, manager, factory):
        """Test that a real removal during the re-add delay wins."""
        await manager.device_added(dev())
        manager.restart("p3")
        await wait_until(lambda: manager.timers.pending("readd-p3"))

        manager.device_removed(dev())
        await asyncio.sleep(0.1)
        await bus.drain()

        assert manager.get("p3") is None
        assert len(factory.drivers) == 1

    async def test_real_readd_supersedes_timer(self, bus, manager, factory):
        """Test that a real re-add during the delay cancels the pending one."""
        await manager.device_added(dev())
        manager.restart("p3")
        await wait_until(lambda: manager.timers.pending("readd-p3"))

        await manager.device_added(dev())
        assert not manager.timers.pending("readd-p3")
        await asyncio.sleep(0.1)
        await bus.drain()

        assert len(factory.drivers) == 2

    async def test_stall_for_unknown_label(self, manager):
        """Test that stalls for unknown devices are ignored."""
        manager.device_stalled("p9", "whatever")
        assert manager.sessions == {}

    async def test_consumer_died(self, bus, manager):
        """Test that a dead data consumer restarts its device."""
        await manager.device_added(dev())
        session = manager.get("p3")

        bus.publish(BusTopics.CONSUMER_DIED, "p3")
        await wait_until(lambda: session.state == SessionState.TERMINATED)

    async def test_requests(self, manager, factory):
        """Test requests routed by label."""
        await manager.device_added(dev())

        assert manager.set_param("p3", "lna_gain", 12)
        assert ("lna_gain", 12) in factory.drivers[0].params
        assert manager.start_stop("p3", False)
        assert factory.drivers[0].streaming == [True, False]
        assert not manager.set_param("p9", "lna_gain", 12)
        assert not manager.start_stop("p9", True)
        assert not manager.restart("p9")

    async def test_list_sessions(self, manager):
        """Test the session listing."""
        await manager.device_added(dev("1"))
        await manager.device_added(dev("2"))

        assert sorted(s["label"] for s in manager.list_sessions()) == ["p1", "p2"]

    async def test_shutdown(self, bus, manager, factory):
        """Test that QUIT terminates everything and cancels re-adds."""
        await manager.device_added(dev("1"))
        await manager.device_added(dev("2"))
        manager.restart("p2")
        await wait_until(lambda: manager.timers.pending("readd-p2"))

        bus.publish(BusTopics.QUIT)
        await bus.drain()
        await asyncio.sleep(0.1)

        assert manager.sessions == {}
        assert len(manager.timers) == 0
        assert all(d.teardowns >= 1 for d in factory.drivers)
        assert await manager.device_added(dev("3")) is None


@pytest.mark.asyncio
class TestBridgeDeath:
    """Test cases for the shared bridge dying."""

    async def test_bridge_died_stalls_bridge_sessions(self, bus):
        """Test that only sessions driven through the bridge restart."""
        bridge = FakeBridge()
        factory = DriverFactory(bus, bridge, airspy_prog="/nonexistent/airspy_tcp")
        manager = SessionManager(bus, lookup, factory, readd_delay=10)
        funcube = dev("4", "funcubeProPlus")
        await manager.device_added(funcube)
        session = manager.get("p4")
        assert session.state == SessionState.STREAMING

        bus.publish(BusTopics.BRIDGE_DIED, None, 9)
        await wait_until(lambda: session.state == SessionState.TERMINATED)
        assert manager.timers.pending("readd-p4")
        await manager.shutdown()


class TestDriverFactory:
    """Test cases for driver selection."""

    def test_airspy_gets_direct_driver(self, bus):
        """Test that airspy devices get their own server process."""
        factory = DriverFactory(bus, FakeBridge(), socket_dir="/tmp")
        driver = factory(dev(), lookup(dev()))
        assert isinstance(driver, AirspyDriver)

    def test_other_types_use_bridge(self, bus):
        """Test that other device types go through the bridge."""
        factory = DriverFactory(bus, FakeBridge())
        driver = factory(dev(dev_type="rtlsdr"), lookup(dev()))
        assert isinstance(driver, GnuRadioDriver)

    def test_no_bridge(self, bus):
        """Test that there is no driver for bridge types without a bridge."""
        assert DriverFactory(bus)(dev(dev_type="rtlsdr"), lookup(dev())) is None
