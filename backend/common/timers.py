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

"""Named, cancelable timers owned by a single component."""

import asyncio
import inspect
import logging
from typing import Any, Callable, Dict, Union

logger = logging.getLogger("timers")


class Timers:
    """
    Holds at most one pending timer per name.

    Scheduling a name that is already pending replaces (cancels) the old
    timer. Callbacks may be plain functions or coroutine functions; the
    latter run as tasks which are canceled with the timer.
    """

    def __init__(self, owner: str = ""):
        self.owner = owner
        self._handles: Dict[str, Union[asyncio.TimerHandle, asyncio.Task]] = {}

    def schedule(self, name: str, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        self.cancel(name)
        loop = asyncio.get_running_loop()

        if inspect.iscoroutinefunction(callback):

            async def _run():
                await asyncio.sleep(delay)
                self._handles.pop(name, None)
                await callback(*args)

            self._handles[name] = loop.create_task(_run())
        else:

            def _fire():
                self._handles.pop(name, None)
                callback(*args)

            self._handles[name] = loop.call_later(delay, _fire)

    def pending(self, name: str) -> bool:
        return name in self._handles

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        names = list(self._handles)
        for name in names:
            self.cancel(name)
        if names:
            logger.debug(f"{self.owner}: canceled timers {names}")

    def __len__(self) -> int:
        return len(self._handles)
