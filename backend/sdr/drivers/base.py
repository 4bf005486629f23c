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
Capability set shared by every device driver variant.

A DeviceSession only talks to drivers through DeviceDriver and receives
progress through the DriverListener methods it implements.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from common.bus import MessageBus
from common.constants import BusTopics
from sdr.models import Device, Plan

logger = logging.getLogger("sdr-driver")


class DriverListener(ABC):
    """Lifecycle notifications a driver sends to the session owning it."""

    @abstractmethod
    def process_started(self) -> None: ...

    @abstractmethod
    def process_ready(self) -> None: ...

    @abstractmethod
    def channels_connected(self) -> None: ...

    @abstractmethod
    def process_exited(self, code: Optional[int], sig: Optional[int], deliberate: bool, message: str) -> None: ...


class DeviceDriver(ABC):
    """
    One device variant's way of bringing hardware up and talking to it.

    Parameter values given to set_param() are in natural units; drivers
    convert them at the codec boundary.
    """

    variant = "base"

    def __init__(self, device: Device, plan: Plan, bus: MessageBus):
        self.device = device
        self.plan = plan
        self.bus = bus
        self.listener: Optional[DriverListener] = None

    def attach(self, listener: DriverListener) -> None:
        self.listener = listener

    @abstractmethod
    async def init(self) -> None:
        """Start bringing the device up; progress is reported to the listener."""

    @abstractmethod
    def set_param(self, par: str, val: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        """Queue or send a parameter change. Returns False if it was rejected."""

    @abstractmethod
    def start_stop(self, on: bool) -> None:
        """Start or stop streaming."""

    @abstractmethod
    def device_path(self) -> str:
        """Path downstream consumers use to open this device's data."""

    @abstractmethod
    async def teardown(self) -> None:
        """Release process, channels and timers. No listener calls follow."""

    def param_error(self, par: str, val: Any, err: Exception) -> None:
        logger.warning(f"{self.variant}: rejected parameter {par}={val} for {self.device.label}: {err}")
        self.bus.publish(
            BusTopics.SET_PARAM_ERROR,
            {"type": self.variant, "port": self.device.port, "par": par, "val": val, "err": str(err)},
        )
