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


from typing import Dict, Union

from common.constants import BusTopics
from sdr.models import Device


async def device_control_routing(station, cmd, data, logger, client_id):
    """
    Handle a device_control request from a Socket.IO client.

    Commands:
        list                               all device sessions
        set_param {label, par, val}        change one device parameter
        start / stop {label}               start or stop streaming
        restart {label}                    force a restart of the device
        device_added / device_removed      device registry events (a device dict)
        acquisition {values}               update acquisition settings
    """
    reply: Dict[str, Union[bool, None, dict, list, str]] = {"success": False, "data": None}
    data = data or {}
    manager = station.manager

    logger.info(f"Device control command from {client_id}: {cmd}")

    try:
        if cmd == "list":
            reply = {"success": True, "data": manager.list_sessions()}

        elif cmd == "set_param":
            ok = manager.set_param(data["label"], data["par"], data["val"])
            reply = {"success": ok, "data": None}

        elif cmd in ("start", "stop"):
            ok = manager.start_stop(data["label"], cmd == "start")
            reply = {"success": ok, "data": None}

        elif cmd == "restart":
            ok = manager.restart(data["label"])
            reply = {"success": ok, "data": None}

        elif cmd == "device_added":
            station.bus.publish(BusTopics.DEVICE_ADDED, Device.from_dict(data))
            reply = {"success": True, "data": None}

        elif cmd == "device_removed":
            station.bus.publish(BusTopics.DEVICE_REMOVED, Device.from_dict(data))
            reply = {"success": True, "data": None}

        elif cmd == "acquisition":
            changed = station.acquisition.update(data)
            reply = {"success": True, "data": station.acquisition.snapshot() if changed else None}

        else:
            logger.warning(f"Unknown device control command: {cmd}")
            reply = {"success": False, "error": f"unknown command {cmd}"}

    except KeyError as e:
        logger.error(f"Device control command {cmd} is missing {e}")
        reply = {"success": False, "error": f"missing field {e}"}

    return reply
