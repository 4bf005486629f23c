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
from typing import Mapping, Optional, Sequence

from common.acquisition import Acquisition
from common.bus import MessageBus
from common.constants import BusTopics
from processing.burstfinder import BurstFinder, load_burst_codes
from sdr.bridge import GnuRadioBridge
from sdr.manager import DriverFactory, SessionManager

logger = logging.getLogger("station")


class Station:
    """
    Wires the station components together around one message bus.

    Built from the parsed command line arguments; start() and stop() are
    called from the FastAPI lifespan.
    """

    def __init__(self, args, bus: Optional[MessageBus] = None, bursts: Optional[Mapping[str, Sequence[float]]] = None):
        self.args = args
        self.bus = bus or MessageBus()
        self.acquisition = Acquisition(args.acquisition, self.bus)

        self.bridge: Optional[GnuRadioBridge] = None
        if args.enable_bridge:
            self.bridge = GnuRadioBridge(
                self.bus, prog=args.bridge_prog, sock_name=args.bridge_socket, socket_dir=args.socket_dir
            )

        factory = DriverFactory(self.bus, self.bridge, airspy_prog=args.airspy_prog, socket_dir=args.socket_dir)
        self.manager = SessionManager(self.bus, self.acquisition.plan_for, factory)

        self.burstfinder: Optional[BurstFinder] = None
        if args.burstfinder_dir:
            if bursts is None:
                bursts = load_burst_codes(args.burst_codes)
            self.burstfinder = BurstFinder(self.bus, args.burstfinder_dir, bursts)

    async def start(self) -> None:
        logger.info("Starting station components...")
        if self.bridge is not None:
            await self.bridge.start()
        if self.burstfinder is not None:
            await self.burstfinder.start()
        logger.info("Station started")

    async def stop(self) -> None:
        logger.info("Stopping station components...")
        # wait for the QUIT subscribers to finish
        self.bus.publish(BusTopics.QUIT)
        await self.bus.drain()
        if self.bridge is not None:
            await self.bridge.quit()
        logger.info("Station stopped")
