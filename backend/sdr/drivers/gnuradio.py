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


import logging
from typing import Any, Callable, Dict, Mapping, Optional

from common.bus import MessageBus
from common.constants import AIRSPY_COMMANDS
from common.exceptions import UnknownParameterError
from sdr.bridge import GnuRadioBridge
from sdr.codec import ParamUnit, UnitConverter
from sdr.drivers.base import DeviceDriver
from sdr.models import Device, Plan

logger = logging.getLogger("gnuradio-driver")

# The bridge takes values in natural units; only flags need mapping.
BRIDGE_PARAM_UNITS = {
    par: ParamUnit("bool") if par.endswith("agc") or par in ("bias_tee", "streaming") else ParamUnit()
    for par in AIRSPY_COMMANDS
}


def extract_plugin_params(plugin_params: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Flatten a plan's plugin parameters to {name: value}.

    Values given as {"value": v} or {"name": ..., "value": v} records are
    unwrapped; plain values pass through.
    """
    flat = {}
    for name, value in plugin_params.items():
        if isinstance(value, Mapping) and "value" in value:
            value = value["value"]
        flat[name] = value
    return flat


class GnuRadioDriver(DeviceDriver):
    """
    Device driven by a GNU Radio flowgraph inside the shared bridge.

    There is no per-device process: the bridge queues commands until its
    command channel is up, so the device is usable immediately.
    """

    variant = "gnuradio"

    def __init__(self, device: Device, plan: Plan, bus: MessageBus, bridge: GnuRadioBridge):
        super().__init__(device, plan, bus)
        self.bridge = bridge
        self.converter = UnitConverter(BRIDGE_PARAM_UNITS)
        self.plugin_params = extract_plugin_params(plan.plugin_params)
        self.streaming = False
        self.torn_down = False

    async def init(self) -> None:
        logger.info(f"{self.device.label}: plugin parameters {self.plugin_params}")
        if self.listener is not None:
            self.listener.process_started()
            self.listener.process_ready()
            self.listener.channels_connected()

    def set_param(self, par: str, val: Any, callback: Optional[Callable[..., Any]] = None) -> bool:
        try:
            if par not in AIRSPY_COMMANDS:
                raise UnknownParameterError(f"no bridge command for parameter '{par}'")
            native = self.converter.to_native(par, val) if self.converter.units[par].kind == "bool" else val
        except (UnknownParameterError, ValueError, TypeError) as e:
            self.param_error(par, val, e)
            return False
        self.bridge.submit(f"{par} {self.device.port} {native}", callback, par if callback is not None else None)
        return True

    def start_stop(self, on: bool) -> None:
        self.set_param("streaming", on)
        if on:
            self.bridge.accept(self.device.label)
        else:
            self.bridge.forget(self.device.label)
        self.streaming = on

    def device_path(self) -> str:
        return f"gnuradio:{self.bridge.sock_path}"

    async def teardown(self) -> None:
        if self.torn_down:
            return
        self.torn_down = True
        if self.streaming and self.bridge.running:
            self.set_param("streaming", False)
        self.bridge.forget(self.device.label)
        self.streaming = False
        self.listener = None
        logger.info(f"{self.device.label}: released from GNU Radio bridge")
