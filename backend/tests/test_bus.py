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

"""
Tests for common/bus.py and common/timers.py.
"""

import asyncio

import pytest

from common.bus import MessageBus
from common.timers import Timers


class TestMessageBus:
    """Test cases for the station message bus."""

    def test_sync_subscribers_run_inline_in_order(self):
        """Test that plain callbacks run before publish() returns."""
        bus = MessageBus()
        seen = []
        bus.subscribe("topic", lambda x: seen.append(("a", x)))
        bus.subscribe("topic", lambda x: seen.append(("b", x)))

        assert bus.publish("topic", 1) == 2
        assert seen == [("a", 1), ("b", 1)]

    def test_publish_without_subscribers(self):
        """Test publishing to a topic nobody listens to."""
        assert MessageBus().publish("nobody") == 0

    def test_failing_subscriber_is_isolated(self):
        """Test that one failing subscriber does not stop delivery."""
        bus = MessageBus()
        seen = []

        def broken(x):
            raise RuntimeError("boom")

        bus.subscribe("topic", broken)
        bus.subscribe("topic", seen.append)
        bus.publish("topic", "msg")

        assert seen == ["msg"]

    def test_unsubscribe(self):
        """Test removing a subscriber."""
        bus = MessageBus()
        seen = []
        bus.subscribe("topic", seen.append)
        bus.unsubscribe("topic", seen.append)
        bus.unsubscribe("topic", seen.append)
        bus.publish("topic", 1)

        assert seen == []
        assert bus.subscriber_count("topic") == 0

    @pytest.mark.asyncio
    async def test_coroutine_subscribers_run_as_tasks(self):
        """Test that coroutine subscribers are scheduled and can be drained."""
        bus = MessageBus()
        seen = []

        async def handler(x):
            await asyncio.sleep(0)
            seen.append(x)

        bus.subscribe("topic", handler)
        bus.publish("topic", 7)
        assert seen == []

        await bus.drain()
        assert seen == [7]


@pytest.mark.asyncio
class TestTimers:
    """Test cases for named cancelable timers."""

    async def test_fires_once(self):
        """Test that a scheduled callback runs after the delay."""
        timers = Timers("test")
        fired = []
        timers.schedule("t", 0.01, fired.append, 1)
        assert timers.pending("t")

        await asyncio.sleep(0.05)
        assert fired == [1]
        assert not timers.pending("t")

    async def test_reschedule_replaces(self):
        """Test that scheduling an existing name cancels the old timer."""
        timers = Timers("test")
        fired = []
        timers.schedule("t", 0.01, fired.append, "old")
        timers.schedule("t", 0.02, fired.append, "new")

        await asyncio.sleep(0.06)
        assert fired == ["new"]

    async def test_cancel_all(self):
        """Test canceling plain and coroutine timers."""
        timers = Timers("test")
        fired = []

        async def later():
            fired.append("coro")

        timers.schedule("a", 0.01, fired.append, "a")
        timers.schedule("b", 0.01, later)
        assert len(timers) == 2

        timers.cancel_all()
        await asyncio.sleep(0.05)
        assert fired == []
        assert len(timers) == 0

    async def test_coroutine_callback(self):
        """Test that coroutine callbacks are awaited."""
        timers = Timers("test")
        fired = []

        async def later(x):
            fired.append(x)

        timers.schedule("c", 0.01, later, 3)
        await asyncio.sleep(0.05)
        assert fired == [3]
