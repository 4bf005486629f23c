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
from typing import Any, Dict

from common.bus import MessageBus
from common.constants import BusTopics, SocketEvents
from sdr.models import Device

logger = logging.getLogger("notifications")


def _device_dict(device: Any) -> Dict[str, Any]:
    return device.to_dict() if isinstance(device, Device) else dict(device)


def forward_notifications(bus: MessageBus, sio) -> None:
    """Re-emit the station's bus notifications to every Socket.IO client."""

    async def device_state(port, state, detail=""):
        if state == "error":
            await sio.emit(SocketEvents.DEVICE_ERROR, {"port": port, "message": detail})
        else:
            await sio.emit(SocketEvents.DEVICE_STATE, {"port": port, "state": state, "detail": detail})

    async def device_stalled(label, reason=""):
        await sio.emit(SocketEvents.DEVICE_STALLED, {"label": label, "reason": reason})

    async def device_removed(device):
        await sio.emit(SocketEvents.DEVICE_REMOVED, _device_dict(device))

    async def device_added(device):
        await sio.emit(SocketEvents.DEVICE_ADDED, _device_dict(device))

    async def device_settings(port, settings):
        await sio.emit(SocketEvents.DEVICE_SETTINGS, {"port": port, "settings": settings})

    async def set_param_error(info):
        await sio.emit(SocketEvents.SET_PARAM_ERROR, info)

    async def raw_output(record):
        await sio.emit(SocketEvents.RAW_OUTPUT, record)

    async def got_burst(burst):
        await sio.emit(SocketEvents.GOT_BURST, burst)

    bus.subscribe(BusTopics.DEVICE_STATE, device_state)
    bus.subscribe(BusTopics.DEVICE_STALLED, device_stalled)
    bus.subscribe(BusTopics.DEVICE_REMOVED, device_removed)
    bus.subscribe(BusTopics.DEVICE_ADDED, device_added)
    bus.subscribe(BusTopics.DEVICE_SETTINGS, device_settings)
    bus.subscribe(BusTopics.SET_PARAM_ERROR, set_param_error)
    bus.subscribe(BusTopics.RAW_OUTPUT, raw_output)
    bus.subscribe(BusTopics.BF_OUT, raw_output)
    bus.subscribe(BusTopics.GOT_BURST, got_burst)
    logger.info("Forwarding station notifications to Socket.IO clients")
