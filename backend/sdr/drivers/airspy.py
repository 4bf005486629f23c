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
Driver for an Airspy served by a dedicated airspy_tcp process.

airspy_tcp listens on a unix socket; the first connection is the command
channel (binary commands in, JSON settings records out, after a 12 byte
header) and the second carries raw samples. Every command is answered
with the full current settings.
"""

import logging
import os
from typing import Any, Callable, Optional

from common.bus import MessageBus
from common.constants import (
    AIRSPY_COMMANDS,
    AIRSPY_HW_RATE,
    AIRSPY_REPLY_HEADER_SIZE,
    ALLOWED_PLAN_RATES,
    FALLBACK_PLAN_RATE,
    BusTopics,
    Timing,
)
from common.exceptions import UnknownParameterError
from common.timers import Timers
from hardware.usbserial import lookup_serial
from sdr.channels import COMMAND, DATA, ChannelManager
from sdr.codec import UnitConverter, encode_binary_command
from sdr.correlator import CommandCorrelator
from sdr.drivers.base import DeviceDriver
from sdr.health import HealthMonitor
from sdr.models import Command, Device, Plan
from sdr.process import ProcessSupervisor, aligned_buffer_size

logger = logging.getLogger("airspy-driver")

AIRSPY_PROG = "/usr/local/bin/airspy_tcp"
READY_PATTERN = r"Listening"
BYTES_PER_SAMPLE = 2


class AirspyDriver(DeviceDriver):
    variant = "airspy"

    def __init__(
        self,
        device: Device,
        plan: Plan,
        bus: MessageBus,
        prog: str = AIRSPY_PROG,
        socket_dir: str = "/tmp",
        own_data_channel: bool = True,
        reconnect_delay: float = Timing.RECONNECT_DELAY,
        rate_check_interval: float = Timing.RATE_CHECK_INTERVAL,
        bytes_per_sample: int = BYTES_PER_SAMPLE,
    ):
        super().__init__(device, plan, bus)
        self.prog = prog
        self.sock_path = os.path.join(socket_dir, f"airspy-{device.usb_path}.sock")
        self.own_data_channel = own_data_channel
        self.reconnect_delay = reconnect_delay
        self.bytes_per_sample = bytes_per_sample

        if plan.rate in ALLOWED_PLAN_RATES:
            self.rate = plan.rate
        else:
            logger.warning(f"Invalid rate {plan.rate} for {device.label}; using {FALLBACK_PLAN_RATE}")
            self.rate = FALLBACK_PLAN_RATE
        self.hw_rate = AIRSPY_HW_RATE

        self.serial: Optional[str] = None
        self.converter = UnitConverter()
        self.timers = Timers(owner=f"airspy-{device.label}")
        self.tearing_down = False
        self.launch_error: Optional[str] = None
        self.samples = 0
        self._odd_bytes = 0

        self.supervisor = ProcessSupervisor(
            name=f"airspy-{device.label}",
            prog=prog,
            ready_pattern=READY_PATTERN,
            socket_path=self.sock_path,
            on_ready=self._server_ready,
            on_output=self._server_output,
            on_exit=self._server_died,
            on_error=self._launch_failed,
        )
        self.channels = ChannelManager(f"airspy-{device.label}", self.sock_path, reconnect_delay=reconnect_delay)
        self.correlator = CommandCorrelator(
            f"airspy-{device.label}",
            self.channels,
            always_replies=True,
            header_size=AIRSPY_REPLY_HEADER_SIZE,
            on_reply=self._got_settings,
        )
        self.channels.add_channel(
            COMMAND, self.correlator.feed, on_connected=self._command_connected, on_lost=self._channel_lost, reconnect=False
        )
        self.channels.add_channel(
            DATA, self._got_samples, on_connected=self._data_connected, on_lost=self._channel_lost, reconnect=False
        )
        self.monitor = HealthMonitor(
            f"airspy-{device.label}",
            poll=self._poll_samples,
            on_stall=self._stalled,
            bus=bus,
            interval=rate_check_interval,
        )

    def server_args(self) -> list:
        args = ["-p", self.sock_path]
        if self.serial:
            args += ["-S", self.serial]
        else:
            logger.warning(f"No serial number for {self.device.usb_path}; airspy_tcp will pick the first device")
        args += ["-s", str(self.hw_rate), "-B", str(aligned_buffer_size(self.hw_rate))]
        return args

    async def init(self) -> None:
        self.serial = await lookup_serial(self.device.usb_path)
        self.supervisor.args = self.server_args()
        if await self.supervisor.spawn() and self.listener is not None:
            self.listener.process_started()

    # ------------------------------------------------------------------
    # process and channel events
    # ------------------------------------------------------------------
    async def _server_ready(self) -> None:
        if self.tearing_down:
            return
        if self.listener is not None:
            self.listener.process_ready()
        await self.channels.connect_command()

    async def _command_connected(self) -> None:
        self.correlator.connection_reset()
        self.correlator.flush()
        if self.own_data_channel:
            await self.channels.connect_data()
        else:
            self._all_connected()

    def _data_connected(self) -> None:
        self.samples = 0
        self._odd_bytes = 0
        self._all_connected()

    def _all_connected(self) -> None:
        if self.listener is not None and not self.tearing_down:
            self.listener.channels_connected()

    def _channel_lost(self, kind: str) -> None:
        logger.warning(f"airspy {self.device.label}: {kind} channel closed, stall in {self.reconnect_delay}s")
        self.timers.schedule("stall", self.reconnect_delay, self._stalled, self.device.label, f"{kind} channel closed")

    def _server_output(self, line: str) -> None:
        self.bus.publish(BusTopics.RAW_OUTPUT, {"text": line, "src": self.supervisor.name})

    def _launch_failed(self, exc: Exception) -> None:
        self.launch_error = str(exc)

    def _server_died(self, code: Optional[int], sig: Optional[int], deliberate: bool) -> None:
        self.channels.disconnect()
        self.monitor.stop()
        if self.tearing_down or self.listener is None:
            return
        if self.launch_error:
            message = f"failed to launch {self.prog}: {self.launch_error}"
        else:
            message = f"airspy_tcp died, exit code {code}, signal {sig}"
        self.listener.process_exited(code, sig, deliberate, message)

    def _stalled(self, label: str, reason: str) -> None:
        if self.tearing_down:
            return
        self.bus.publish(BusTopics.DEVICE_STALLED, label, reason)

    # ------------------------------------------------------------------
    # replies and samples
    # ------------------------------------------------------------------
    def _got_settings(self, record: Any) -> None:
        if not isinstance(record, dict):
            logger.warning(f"airspy {self.device.label}: unexpected reply {record!r}")
            return
        settings = self.converter.settings_to_natural(record)
        self.device.settings = settings
        self.bus.publish(BusTopics.DEVICE_SETTINGS, self.device.port, dict(settings))

    def _got_samples(self, data: bytes) -> None:
        total = self._odd_bytes + len(data)
        self.samples += total // self.bytes_per_sample
        self._odd_bytes = total % self.bytes_per_sample
        self.bus.publish(BusTopics.DEVICE_SAMPLES, self.device.label, data)

    def _poll_samples(self) -> None:
        if not self.channels.is_connected(DATA):
            return
        report = {self.device.label: {"type": "stream", "rate": self.hw_rate, "totalFrames": self.samples}}
        self.monitor.check(report)

    # ------------------------------------------------------------------
    # capability set
    # ------------------------------------------------------------------
    def set_param(self, par: str, val: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        try:
            native = self.converter.to_native(par, val)
            payload = encode_binary_command(Command(par=par, val=native), AIRSPY_COMMANDS)
        except (UnknownParameterError, ValueError, TypeError) as e:
            self.param_error(par, val, e)
            return False
        logger.info(f"airspy {self.device.label}: setting {par} to {val} ({native})")
        self.correlator.submit(payload, callback, par if callback is not None else None)
        return True

    def start_stop(self, on: bool) -> None:
        self.set_param("streaming", on)
        if not self.own_data_channel:
            return
        if on:
            self.monitor.watch(self.device.label)
            self.monitor.start()
        else:
            self.monitor.unwatch(self.device.label)
            self.monitor.stop()

    def device_path(self) -> str:
        return f"airspy:{self.sock_path}"

    async def teardown(self) -> None:
        self.tearing_down = True
        self.timers.cancel_all()
        self.monitor.stop()
        self.correlator.clear()
        self.channels.close()
        await self.supervisor.stop()
        logger.info(f"airspy {self.device.label}: torn down")
