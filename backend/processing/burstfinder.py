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
import os
import sys
from typing import Any, Dict, List, Mapping, Optional, Sequence

import yaml

from common.bus import MessageBus
from common.constants import BusTopics, Timing
from common.timers import Timers
from sdr.process import ProcessSupervisor

BURST_FIELDS = 15
CODES_PATH = "/run/bursts.yaml"


def load_burst_codes(path: str) -> Dict[str, List[float]]:
    """
    Load tag burst intervals from a YAML file mapping tag names to interval
    lists (tenths of ms). A missing or empty path gives no codes.
    """
    logger = logging.getLogger("burstfinder")
    if not path:
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.warning(f"Burst codes file {path} not found")
        return {}
    if not isinstance(data, dict):
        logger.error(f"Burst codes file {path} must map tag names to intervals")
        return {}
    codes = {str(name): [float(v) for v in intervals] for name, intervals in data.items()}
    logger.info(f"Loaded {len(codes)} burst code(s) from {path}")
    return codes


def parse_burst(line: str) -> Optional[Dict[str, Any]]:
    """
    Parse one burstfinder.py output line:

        sensor,ts,id,freq_mean,freq_sd,freq_diff,sig_mean,sig_sd,sig_diff,
        noise_mean,interval_diff_max,snr_min,used_pulses,num_pulses,warning

    Returns:
        dict or None: Burst record, or None if the line has the wrong shape
    """
    fields = line.split(",")
    if len(fields) != BURST_FIELDS:
        return None
    return {
        "text": line,
        "info": fields[0:3],
        "meanFreq": fields[3],
        "sdFreq": fields[4],
        "meanSig": fields[6],
        "sdSig": fields[7],
        "meanNoise": fields[9],
        "minSnr": fields[11],
        "src": "BF",
    }


class BurstFinder:
    """
    Runs burstfinder.py as a child process fed with pulse detection lines.

    Detection lines ("p...") arriving on the bus are written to the child's
    stdin; its burst lines come back on stdout.
    """

    def __init__(
        self,
        bus: MessageBus,
        prog_dir: str,
        bursts: Mapping[str, Sequence[float]],
        codes_path: str = CODES_PATH,
        python: str = sys.executable,
        respawn_delay: float = Timing.RESTART_DELAY,
    ):
        self.logger = logging.getLogger("burstfinder")
        self.bus = bus
        self.bursts = bursts
        self.codes_path = codes_path
        self.respawn_delay = respawn_delay
        self.quitting = False
        self.timers = Timers(owner="burstfinder")
        self.supervisor = ProcessSupervisor(
            name="burstfinder",
            prog=python,
            args=[os.path.join(prog_dir, "burstfinder.py"), "--codes", codes_path],
            stdin=True,
            env={**os.environ, "PYTHONUNBUFFERED": "1"},
            on_output=self._got_output,
            on_stderr=self._got_stderr,
            on_exit=self._died,
        )

        bus.subscribe(BusTopics.BRIDGE_DATA, self.got_input)
        bus.subscribe(BusTopics.QUIT, self.quit)

    def write_codes(self) -> None:
        """Write the burst codes file; intervals are given in tenths of ms."""
        codes = {name: [v / 10.0 for v in intervals] for name, intervals in self.bursts.items()}
        with open(self.codes_path, "w") as f:
            yaml.safe_dump(codes, f, default_flow_style=None)

    def remove_codes(self) -> None:
        try:
            os.unlink(self.codes_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning(f"Could not remove {self.codes_path}: {e}")

    async def start(self) -> bool:
        if self.quitting or self.supervisor.running:
            return False
        if not self.bursts:
            self.logger.warning("No burst codes configured; burstfinder will not match any tag")
        self.write_codes()
        return await self.supervisor.spawn()

    def restart(self) -> None:
        self.logger.info("Restarting burstfinder.py")
        if not self.supervisor.kill(forced=True):
            self.timers.schedule("respawn", 0, self.start)

    def _got_output(self, line: str) -> None:
        if not line[:1].isdigit():
            return
        self.logger.info(f"FROM BF: {line}")
        self.bus.publish(BusTopics.BF_OUT, {"text": "b" + line, "src": "BF"})
        burst = parse_burst(line)
        if burst is None:
            self.logger.warning(f"Invalid burstfinder line: {line}")
            return
        self.bus.publish(BusTopics.GOT_BURST, burst)

    def _got_stderr(self, line: str) -> None:
        # the child has read its codes by the time it talks
        if os.path.exists(self.codes_path):
            self.remove_codes()

    def _died(self, code: Optional[int], sig: Optional[int], deliberate: bool) -> None:
        self.remove_codes()
        if not self.quitting:
            self.logger.warning(f"burstfinder.py died (code {code}, signal {sig}), restarting in {self.respawn_delay}s")
            self.timers.schedule("respawn", self.respawn_delay, self.start)

    def got_input(self, line: Any) -> None:
        if not isinstance(line, str):
            return
        line = line.lstrip()
        if not line.startswith("p"):
            return
        if self.supervisor.write((line + "\n").encode("utf-8")):
            self.logger.debug(f"TO BF: {line}")

    async def quit(self) -> None:
        self.quitting = True
        self.timers.cancel_all()
        await self.supervisor.stop()
        self.remove_codes()
