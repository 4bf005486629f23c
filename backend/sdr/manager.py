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
import logging
from typing import Any, Callable, Dict, FrozenSet, List, Optional

from common.bus import MessageBus
from common.constants import BusTopics, Timing
from common.exceptions import PlanNotFoundError
from common.timers import Timers
from sdr.bridge import GnuRadioBridge
from sdr.drivers.airspy import AIRSPY_PROG, AirspyDriver
from sdr.drivers.base import DeviceDriver
from sdr.drivers.gnuradio import GnuRadioDriver
from sdr.models import Device, Plan
from sdr.session import DeviceSession

logger = logging.getLogger("session-manager")

PlanLookup = Callable[[Device], Optional[Plan]]


class DriverFactory:
    """
    Picks the driver variant for a device.

    Device types in `direct_types` get their own airspy_tcp process; any
    other type is driven through the shared GNU Radio bridge, if there is one.
    """

    def __init__(
        self,
        bus: MessageBus,
        bridge: Optional[GnuRadioBridge] = None,
        airspy_prog: str = AIRSPY_PROG,
        socket_dir: str = "/tmp",
        direct_types: FrozenSet[str] = frozenset({"airspy"}),
        **airspy_options: Any,
    ):
        self.bus = bus
        self.bridge = bridge
        self.airspy_prog = airspy_prog
        self.socket_dir = socket_dir
        self.direct_types = direct_types
        self.airspy_options = airspy_options

    def __call__(self, device: Device, plan: Plan) -> Optional[DeviceDriver]:
        if device.dev_type in self.direct_types:
            return AirspyDriver(
                device, plan, self.bus, prog=self.airspy_prog, socket_dir=self.socket_dir, **self.airspy_options
            )
        if self.bridge is not None:
            return GnuRadioDriver(device, plan, self.bus, self.bridge)
        return None


class SessionManager:
    """
    Keeps exactly one DeviceSession per device label.

    Sessions are created on DEVICE_ADDED and terminated on DEVICE_REMOVED.
    The re-add timers of restarting sessions live here, so a real removal,
    a real re-add or shutdown cancels them.
    """

    def __init__(
        self,
        bus: MessageBus,
        plan_lookup: PlanLookup,
        driver_factory: Callable[[Device, Plan], Optional[DeviceDriver]],
        readd_delay: float = Timing.READD_DELAY,
    ):
        self.bus = bus
        self.plan_lookup = plan_lookup
        self.driver_factory = driver_factory
        self.readd_delay = readd_delay
        self.sessions: Dict[str, DeviceSession] = {}
        self.timers = Timers(owner="session-manager")
        self._terminating: List[asyncio.Task] = []
        self.quitting = False

        bus.subscribe(BusTopics.DEVICE_ADDED, self.device_added)
        bus.subscribe(BusTopics.DEVICE_REMOVED, self.device_removed)
        bus.subscribe(BusTopics.DEVICE_STALLED, self.device_stalled)
        bus.subscribe(BusTopics.CONSUMER_DIED, self.consumer_died)
        bus.subscribe(BusTopics.BRIDGE_DIED, self.bridge_died)
        bus.subscribe(BusTopics.QUIT, self.shutdown)

    def get(self, label: str) -> Optional[DeviceSession]:
        return self.sessions.get(label)

    def find_plan(self, device: Device) -> Plan:
        plan = self.plan_lookup(device)
        if plan is None:
            raise PlanNotFoundError(f"no acquisition plan for port {device.port} type {device.dev_type}")
        return plan

    async def device_added(self, device: Device) -> Optional[DeviceSession]:
        if self.quitting:
            return None
        label = device.label
        if self.timers.cancel(f"readd-{label}"):
            logger.info(f"{label}: pending re-add superseded")

        old = self.sessions.pop(label, None)
        if old is not None:
            logger.warning(f"{label}: added again while a session exists, replacing it")
            await old.terminate()

        try:
            plan = self.find_plan(device)
        except PlanNotFoundError as e:
            logger.warning(f"{label}: {e}")
            return None

        driver = self.driver_factory(device, plan)
        if driver is None:
            logger.warning(f"{label}: no driver for device type {device.dev_type}")
            return None

        session = DeviceSession(device, plan, driver, self.bus, self.schedule_readd)
        self.sessions[label] = session
        logger.info(f"{label}: new {driver.variant} session for {device.dev_type} at {device.usb_path}")
        await session.start()
        return session

    def device_removed(self, device: Device) -> None:
        label = device.label
        if self.timers.cancel(f"readd-{label}"):
            logger.info(f"{label}: removed, pending re-add canceled")
        session = self.sessions.pop(label, None)
        if session is None:
            return
        task = asyncio.get_running_loop().create_task(session.terminate())
        self._terminating.append(task)
        task.add_done_callback(self._terminating.remove)

    def schedule_readd(self, device: Device) -> None:
        if self.quitting:
            return
        logger.info(f"{device.label}: re-adding in {self.readd_delay}s")
        self.timers.schedule(f"readd-{device.label}", self.readd_delay, self._readd, device)

    def _readd(self, device: Device) -> None:
        self.bus.publish(BusTopics.DEVICE_ADDED, device)

    def device_stalled(self, label: str, reason: str = "") -> None:
        session = self.sessions.get(label)
        if session is None:
            logger.debug(f"stall for unknown device {label}: {reason}")
            return
        session.stalled(reason)

    def consumer_died(self, label: str) -> None:
        self.device_stalled(label, "data consumer died")

    def bridge_died(self, code: Optional[int] = None, sig: Optional[int] = None) -> None:
        for session in list(self.sessions.values()):
            if isinstance(session.driver, GnuRadioDriver):
                session.stalled("GNU Radio bridge died")

    # ------------------------------------------------------------------
    # requests
    # ------------------------------------------------------------------
    def set_param(self, label: str, par: str, val: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        session = self.sessions.get(label)
        if session is None:
            logger.warning(f"set_param for unknown device {label}")
            return False
        return session.set_param(par, val, callback)

    def start_stop(self, label: str, on: bool) -> bool:
        session = self.sessions.get(label)
        return session.start_stop(on) if session is not None else False

    def restart(self, label: str, reason: str = "restart requested") -> bool:
        session = self.sessions.get(label)
        if session is None:
            return False
        session.stalled(reason)
        return True

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [s.describe() for s in self.sessions.values()]

    async def shutdown(self) -> None:
        self.quitting = True
        self.timers.cancel_all()
        sessions = list(self.sessions.values())
        self.sessions.clear()
        await asyncio.gather(*(s.terminate() for s in sessions), *self._terminating, return_exceptions=True)
        logger.info(f"Terminated {len(sessions)} device session(s)")
