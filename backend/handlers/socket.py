# Copyright (c) 2024 Efstratios Goudelis
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


from typing import Dict

from common.logger import logger
from handlers.devices import device_control_routing
from server import shutdown

SESSIONS: Dict[str, Dict] = {}


def register_socketio_handlers(sio):
    """Register Socket.IO event handlers."""

    @sio.on("connect")
    async def connect(sid, environ, auth=None):
        client_ip = environ.get("REMOTE_ADDR")
        logger.info(f"Client {sid} from {client_ip} connected")
        SESSIONS[sid] = environ

    @sio.on("disconnect")
    async def disconnect(sid, *args):
        environ = SESSIONS.pop(sid, {})
        logger.info(f'Client {sid} from {environ.get("REMOTE_ADDR")} disconnected')

    @sio.on("device_control")
    async def handle_device_control_requests(sid, cmd, data=None):
        logger.info(f"Received device control event from: {sid}, with cmd: {cmd}, and data: {data}")
        if shutdown.station is None:
            return {"success": False, "error": "station is not running"}
        reply = await device_control_routing(shutdown.station, cmd, data, logger, sid)
        return reply

    return SESSIONS
