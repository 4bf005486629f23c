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
Per-device session state machine.

    Idle -> Spawning -> AwaitingReady -> ConnectingChannels -> Streaming
    any live state -> Stalling -> Restarting
    any live state -> Restarting           (unexpected process exit)
    any state -> Terminated

A restart tears the driver down, announces the device as removed and asks
the owner to announce it as added again after a delay; the re-added device
gets a brand new session, so a session never leaves Restarting except to
Terminated.
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from common.bus import MessageBus
from common.constants import BusTopics
from sdr.drivers.base import DeviceDriver, DriverListener
from sdr.models import Device, Plan

logger = logging.getLogger("device-session")


class SessionState(Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    AWAITING_READY = "awaiting-ready"
    CONNECTING_CHANNELS = "connecting-channels"
    STREAMING = "streaming"
    STALLING = "stalling"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


_LIVE = {
    SessionState.SPAWNING,
    SessionState.AWAITING_READY,
    SessionState.CONNECTING_CHANNELS,
    SessionState.STREAMING,
}

TRANSITIONS = {
    SessionState.IDLE: {SessionState.SPAWNING, SessionState.TERMINATED},
    SessionState.SPAWNING: {
        SessionState.AWAITING_READY,
        SessionState.STALLING,
        SessionState.RESTARTING,
        SessionState.TERMINATED,
    },
    SessionState.AWAITING_READY: {
        SessionState.CONNECTING_CHANNELS,
        SessionState.STALLING,
        SessionState.RESTARTING,
        SessionState.TERMINATED,
    },
    SessionState.CONNECTING_CHANNELS: {
        SessionState.STREAMING,
        SessionState.STALLING,
        SessionState.RESTARTING,
        SessionState.TERMINATED,
    },
    SessionState.STREAMING: {SessionState.STALLING, SessionState.RESTARTING, SessionState.TERMINATED},
    SessionState.STALLING: {SessionState.RESTARTING, SessionState.TERMINATED},
    SessionState.RESTARTING: {SessionState.TERMINATED},
    SessionState.TERMINATED: set(),
}


class DeviceSession(DriverListener):
    def __init__(
        self,
        device: Device,
        plan: Plan,
        driver: DeviceDriver,
        bus: MessageBus,
        schedule_readd: Callable[[Device], Any],
    ):
        self.device = device
        self.plan = plan
        self.driver = driver
        self.bus = bus
        self.schedule_readd = schedule_readd
        self.state = SessionState.IDLE
        self.history: List[SessionState] = [SessionState.IDLE]
        self.initialized = False
        self.restart_reason: Optional[str] = None
        self._restart_task: Optional[asyncio.Task] = None
        driver.attach(self)

    @property
    def label(self) -> str:
        return self.device.label

    @property
    def alive(self) -> bool:
        return self.state in _LIVE

    def _transition(self, new: SessionState, detail: str = "") -> bool:
        if new not in TRANSITIONS[self.state]:
            logger.debug(f"{self.label}: ignoring transition {self.state.value} -> {new.value}")
            return False
        logger.info(f"{self.label}: {self.state.value} -> {new.value}{' (' + detail + ')' if detail else ''}")
        self.state = new
        self.history.append(new)
        self.bus.publish(BusTopics.DEVICE_STATE, self.device.port, new.value, detail)
        return True

    async def start(self) -> None:
        if not self._transition(SessionState.SPAWNING):
            return
        try:
            await self.driver.init()
        except Exception as e:
            logger.error(f"{self.label}: driver init failed: {e}")
            logger.exception(e)
            self.process_exited(None, None, False, f"driver init failed: {e}")

    # ------------------------------------------------------------------
    # driver progress
    # ------------------------------------------------------------------
    def process_started(self) -> None:
        self._transition(SessionState.AWAITING_READY)

    def process_ready(self) -> None:
        self._transition(SessionState.CONNECTING_CHANNELS)

    def channels_connected(self) -> None:
        if not self._transition(SessionState.STREAMING):
            return
        if not self.initialized:
            self.initialized = True
            self.apply_plan()

    def apply_plan(self) -> None:
        """Send the plan's device parameters, then start streaming."""
        for par, val in self.plan.params.items():
            if val is None or par not in self.plan.param_names:
                continue
            self.driver.set_param(par, val)
        self.driver.start_stop(True)

    def process_exited(self, code: Optional[int], sig: Optional[int], deliberate: bool, message: str) -> None:
        if not self.alive:
            return
        if not deliberate:
            logger.error(f"{self.label}: {message}")
            self.bus.publish(BusTopics.DEVICE_STATE, self.device.port, "error", message)
        self._begin_restart(message)

    def stalled(self, reason: str) -> None:
        if not self.alive:
            logger.debug(f"{self.label}: stall ignored in state {self.state.value}: {reason}")
            return
        logger.warning(f"{self.label}: stalled: {reason}")
        self._transition(SessionState.STALLING, reason)
        self._begin_restart(reason)

    def _begin_restart(self, reason: str) -> None:
        if self._restart_task is None:
            self.restart_reason = reason
            self._restart_task = asyncio.create_task(self.restart(reason))

    async def restart(self, reason: str) -> None:
        """Tear down, then re-announce the device as removed and re-added."""
        await self.driver.teardown()
        if self.state == SessionState.TERMINATED:
            return
        self._transition(SessionState.RESTARTING, reason)
        logger.info(f"{self.label}: restarting, faking a remove and re-add")
        device = self.device.clone()
        self.bus.publish(BusTopics.DEVICE_REMOVED, self.device)
        self.schedule_readd(device)

    async def terminate(self) -> None:
        if self.state == SessionState.TERMINATED:
            return
        self._transition(SessionState.TERMINATED)
        await self.driver.teardown()

    # ------------------------------------------------------------------
    # requests
    # ------------------------------------------------------------------
    def set_param(self, par: str, val: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        if not self.alive:
            logger.warning(f"{self.label}: cannot set {par} in state {self.state.value}")
            return False
        return self.driver.set_param(par, val, callback)

    def start_stop(self, on: bool) -> bool:
        if not self.alive:
            logger.warning(f"{self.label}: cannot start/stop in state {self.state.value}")
            return False
        self.driver.start_stop(on)
        return True

    def device_path(self) -> str:
        return self.driver.device_path()

    def describe(self) -> Dict[str, Any]:
        return {
            "port": self.device.port,
            "label": self.label,
            "type": self.device.dev_type,
            "driver": self.driver.variant,
            "state": self.state.value,
            "devicePath": self.device_path(),
            "settings": dict(self.device.settings),
        }
