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
import inspect
import logging
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger("message-bus")


class MessageBus:
    """
    Topic based publish/subscribe bus shared by all station components.

    One instance is built at startup and handed to every component that needs
    to publish or subscribe. Synchronous subscribers run inline, in
    subscription order, before publish() returns. Coroutine subscribers are
    scheduled as tasks on the running loop.
    """

    def __init__(self):
        self.subscribers: Dict[str, List[Callable[..., Any]]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, topic: str, callback: Callable[..., Any]) -> None:
        """Register a callback for a topic."""
        self.subscribers.setdefault(topic, []).append(callback)

    def unsubscribe(self, topic: str, callback: Callable[..., Any]) -> None:
        """Remove a callback; unknown callbacks are ignored."""
        callbacks = self.subscribers.get(topic, [])
        if callback in callbacks:
            callbacks.remove(callback)
        if not callbacks and topic in self.subscribers:
            del self.subscribers[topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self.subscribers.get(topic, []))

    def publish(self, topic: str, *args: Any) -> int:
        """
        Deliver a message to every subscriber of a topic.
        Returns the number of subscribers the message was handed to.
        """
        # copy, subscribers may unsubscribe while handling the message
        callbacks = list(self.subscribers.get(topic, []))
        for callback in callbacks:
            try:
                if inspect.iscoroutinefunction(callback):
                    task = asyncio.get_running_loop().create_task(callback(*args))
                    self._tasks.add(task)
                    task.add_done_callback(self._task_done)
                else:
                    callback(*args)
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed on topic '{topic}': {e}")
                logger.exception(e)
        return len(callbacks)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async subscriber failed: {task.exception()}")

    async def drain(self) -> None:
        """Wait for every coroutine subscriber scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
