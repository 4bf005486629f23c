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
Tests for sdr/drivers/gnuradio.py.
"""

import pytest

from common.constants import BusTopics
from fakes import FakeBridge
from sdr.drivers.gnuradio import GnuRadioDriver, extract_plugin_params
from sdr.models import Device, Plan
from sdr.session import DeviceSession, SessionState


@pytest.fixture
def device():
    return Device(usb_path="1:5", port="4", dev_type="funcubeProPlus")


@pytest.fixture
def plan():
    return Plan(
        dev_label="p4",
        rate=48000,
        params={"frequency": 166.376, "agc": 0},
        plugin_params={"minsnr": {"value": 6}, "plen": 2.5},
    )


class TestPluginParams:
    def test_unwraps_value_records(self):
        """Test flattening plugin parameter records."""
        assert extract_plugin_params({"a": {"value": 1}, "b": 2, "c": {"x": 3}}) == {"a": 1, "b": 2, "c": {"x": 3}}


class TestGnuRadioDriver:
    """Test cases for GnuRadioDriver."""

    def test_set_param_text_command(self, bus, device, plan):
        """Test that parameters become '<par> <port> <value>' commands."""
        bridge = FakeBridge()
        driver = GnuRadioDriver(device, plan, bus, bridge)

        assert driver.set_param("frequency", 166.376)
        assert driver.set_param("agc", True)
        assert bridge.submitted == ["frequency 4 166.376", "agc 4 1"]

    def test_unknown_parameter(self, bus, device, plan):
        """Test that parameters without a bridge command are rejected."""
        errors = []
        bus.subscribe(BusTopics.SET_PARAM_ERROR, errors.append)
        bridge = FakeBridge()
        driver = GnuRadioDriver(device, plan, bus, bridge)

        assert not driver.set_param("tuner_gain", 20)
        assert bridge.submitted == []
        assert errors[0]["type"] == "gnuradio"
        assert errors[0]["par"] == "tuner_gain"

    def test_start_stop(self, bus, device, plan):
        """Test that streaming toggles also accept and forget the port's data."""
        bridge = FakeBridge()
        driver = GnuRadioDriver(device, plan, bus, bridge)

        driver.start_stop(True)
        driver.start_stop(False)
        assert bridge.submitted == ["streaming 4 1", "streaming 4 0"]
        assert bridge.accepted == ["p4"]
        assert bridge.forgotten == ["p4"]

    def test_device_path(self, bus, device, plan):
        """Test the path handed to data consumers."""
        assert GnuRadioDriver(device, plan, bus, FakeBridge()).device_path() == "gnuradio:/tmp/grh.sock"

    def test_plugin_params(self, bus, device, plan):
        """Test that plugin parameters are flattened at construction."""
        driver = GnuRadioDriver(device, plan, bus, FakeBridge())
        assert driver.plugin_params == {"minsnr": 6, "plen": 2.5}


@pytest.mark.asyncio
class TestGnuRadioSession:
    """Test cases for a session driven through the bridge."""

    async def test_session_streams_at_once(self, bus, device, plan):
        """Test that a bridge device reaches Streaming without a process of its own."""
        bridge = FakeBridge()
        driver = GnuRadioDriver(device, plan, bus, bridge)
        session = DeviceSession(device, plan, driver, bus, lambda d: None)

        await session.start()
        assert session.state == SessionState.STREAMING
        assert bridge.submitted == ["frequency 4 166.376", "agc 4 0", "streaming 4 1"]
        assert bridge.accepted == ["p4"]

    async def test_teardown_stops_streaming(self, bus, device, plan):
        """Test that teardown turns streaming off while the bridge runs."""
        bridge = FakeBridge()
        driver = GnuRadioDriver(device, plan, bus, bridge)
        driver.start_stop(True)

        await driver.teardown()
        await driver.teardown()
        assert bridge.submitted == ["streaming 4 1", "streaming 4 0"]
        assert bridge.forgotten == ["p4"]
        assert driver.listener is None

    async def test_teardown_with_dead_bridge(self, bus, device, plan):
        """Test that nothing is sent to a bridge that is not running."""
        bridge = FakeBridge(running=False)
        driver = GnuRadioDriver(device, plan, bus, bridge)
        driver.start_stop(True)
        bridge.submitted.clear()

        await driver.teardown()
        assert bridge.submitted == []
