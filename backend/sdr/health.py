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
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from common.bus import MessageBus
from common.constants import BusTopics, Timing

logger = logging.getLogger("health-monitor")


@dataclass
class StreamWatch:
    """Last frame count and check time for one monitored sub-stream."""

    at: float
    frames: Optional[int] = None  # None until the first report after (re)start
    bad: int = 0


class HealthMonitor:
    """
    Rate based stall detector for the sub-streams of one driven process.

    The owner supplies poll(), called every `interval` seconds, which must
    eventually hand a status report to check(). A report maps a sub-stream
    label to {"type": ..., "rate": nominal, "totalFrames": cumulative}.

    A sub-stream whose observed rate stays outside nominal +/- bounds_pct for
    max_out_of_bounds consecutive checks is reported stalled. A watched
    sub-stream missing from the report, or making no progress at all, is
    reported stalled at once.
    """

    def __init__(
        self,
        name: str,
        poll: Callable[[], Any],
        on_stall: Callable[[str, str], Any],
        bus: Optional[MessageBus] = None,
        interval: float = Timing.RATE_CHECK_INTERVAL,
        max_out_of_bounds: int = Timing.MAX_OUT_OF_BOUNDS,
        bounds_pct: float = Timing.BOUNDS_PCT,
        expected_type: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.poll = poll
        self.on_stall = on_stall
        self.bus = bus
        self.interval = interval
        self.max_out_of_bounds = max_out_of_bounds
        self.bounds_pct = bounds_pct
        self.expected_type = expected_type
        self.clock = clock
        self.watches: Dict[str, StreamWatch] = {}
        self.checks_logged = 0
        self._task: Optional[asyncio.Task] = None

    def watch(self, label: str) -> None:
        """Start monitoring a sub-stream; its first report only sets the baseline."""
        self.watches[label] = StreamWatch(at=self.clock())

    def unwatch(self, label: str) -> None:
        self.watches.pop(label, None)

    def reset(self) -> None:
        """Forget history, e.g. after the process was respawned."""
        for label in self.watches:
            self.watches[label] = StreamWatch(at=self.clock())

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                result = self.poll()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"{self.name}: status poll failed: {e}")
                logger.exception(e)

    def _publish(self, topic: str, *args: Any) -> None:
        if self.bus is not None:
            self.bus.publish(topic, *args)

    def check(self, report: Mapping[str, Any]) -> List[Tuple[str, str]]:
        """
        Judge one status report against the watched sub-streams.

        Returns:
            list: (label, reason) for every stall raised by this report
        """
        now = self.clock()
        min_fct = 1 - self.bounds_pct / 100.0
        max_fct = 1 + self.bounds_pct / 100.0
        stalls = []

        for label, watch in list(self.watches.items()):
            info = report.get(label) if isinstance(report, Mapping) else None

            if info is None:
                # absence only counts once the stream had time to show up
                if (watch.frames or 0) > 0 or now - watch.at > self.interval * 0.9:
                    reason = f"port {label} is not producing data"
                    logger.warning(f"{self.name}: {label} missing from status report")
                    stalls.append((label, reason))
                    self.watches[label] = StreamWatch(at=now)
                continue

            if self.expected_type is not None and info.get("type") != self.expected_type:
                logger.info(f"{self.name}: {label} is not a {self.expected_type}? {info}")
                continue

            total = int(info.get("totalFrames", 0))
            self._publish(BusTopics.FRAMES, label, now, total)

            if watch.frames is None:
                watch.at = now
                watch.frames = total
                continue

            dt = now - watch.at
            if dt < self.interval * 0.9:
                continue  # too soon for a stable rate

            df = total - watch.frames
            rate = df / dt
            nominal = float(info.get("rate", 0))
            self._publish(BusTopics.RATE, label, now, rate)

            if df <= 0:
                reason = f"{label} made no progress in {dt:.1f}s: {total} frames"
                logger.warning(f"{self.name}: {reason}")
                stalls.append((label, reason))
                self.watches[label] = StreamWatch(at=now, frames=total)
                continue

            ok = nominal * min_fct <= rate <= nominal * max_fct
            if not ok or self.checks_logged < Timing.RATE_LOG_LIMIT:
                self.checks_logged += 1
                logger.info(f"{self.name}: rate for {label}: nominal {nominal:.0f}, actual {rate:.0f} frames/sec")

            watch.bad = 0 if ok else watch.bad + 1
            if watch.bad >= self.max_out_of_bounds:
                reason = f"rate for {label} is out of range: nominal {nominal:.0f}, actual {rate:.0f} frames/sec"
                logger.warning(f"{self.name}: {reason}")
                stalls.append((label, reason))
                watch.bad = 0  # don't signal continuously

            watch.at = now
            watch.frames = total

        for label, reason in stalls:
            try:
                self.on_stall(label, reason)
            except Exception as e:
                logger.error(f"{self.name}: stall handler failed for {label}: {e}")
                logger.exception(e)
        return stalls
