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


import asyncio
import os
from typing import Optional

from common.logger import logger
from server.station import Station

station: Optional[Station] = None


async def cleanup_everything():
    """Stop every device session and child process."""
    global station
    logger.info("Cleaning up all processes...")
    if station is not None:
        try:
            await station.stop()
        except Exception as e:  # pragma: no cover - best effort cleanup
            logger.warning(f"Error stopping station: {e}")
            logger.exception(e)
        station = None
    logger.info("Cleanup complete")


def signal_handler(signum, frame):
    """Handle SIGINT and SIGTERM signals."""
    logger.info(f"\nReceived signal {signum}, initiating shutdown...")
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None
    if loop is not None and loop.is_running():
        task = loop.create_task(cleanup_everything())
        task.add_done_callback(lambda _: os._exit(0))
        return
    asyncio.run(cleanup_everything())
    logger.info("Forcing exit...")
    os._exit(0)
