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
Command queueing and reply correlation for a command channel.

The command channel is one ordered byte stream shared by every request in
flight, so replies are matched to requests purely by order: each
reply-expecting submission pushes a handler on a FIFO and each inbound reply
completes the oldest handler. Records flagged with an "async" field are
event notifications and never consume a handler.

Batch semantics: a submission of N commands with one callback registers a
single handler expecting N replies; the callback runs once, with the list
of N replies in submission order. A single command's callback receives the
bare reply.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple, Union

from common.exceptions import WrongChannelError
from sdr.channels import COMMAND, ChannelManager
from sdr.codec import JsonLineFramer
from sdr.models import Reply

logger = logging.getLogger("command-correlator")

Payload = Union[bytes, Sequence[bytes]]


@dataclass
class ReplyHandler:
    callback: Optional[Callable[..., Any]]
    par: Any = None
    expected: int = 1
    batch: bool = False
    replies: List[Any] = field(default_factory=list)


class CommandCorrelator:
    """
    Queues commands until the command channel exists and correlates replies.

    Args:
        name: Owner name for log messages
        channels: ChannelManager carrying the command channel
        always_replies: The peer answers every command (airspy_tcp); every
            submission then takes a handler slot, with or without callback.
            Otherwise only submissions with a callback expect a reply.
        header_size: Bytes to skip at the start of each reply stream
        on_event: Called as on_event(event_name, dev_label, record) for
            records carrying the async marker
        on_reply: Called with every non-event reply before its handler
    """

    def __init__(
        self,
        name: str,
        channels: ChannelManager,
        always_replies: bool = False,
        header_size: int = 0,
        on_event: Optional[Callable[..., Any]] = None,
        on_reply: Optional[Callable[..., Any]] = None,
    ):
        self.name = name
        self.channels = channels
        self.always_replies = always_replies
        self.on_event = on_event
        self.on_reply = on_reply
        self.framer = JsonLineFramer(header_size=header_size)
        self.pending: Deque[Tuple[List[bytes], Optional[ReplyHandler]]] = deque()
        self.handlers: Deque[ReplyHandler] = deque()

    def submit(
        self,
        payload: Payload,
        callback: Optional[Callable[..., Any]] = None,
        par: Any = None,
        kind: str = COMMAND,
    ) -> None:
        """
        Send one command (bytes) or a batch (sequence of bytes).

        If the command channel is not connected yet the submission is queued
        and flushed, in order, by flush() once it is.
        """
        if kind != COMMAND:
            raise WrongChannelError(f"{self.name}: commands can only be sent on the command channel, not '{kind}'")
        batch = not isinstance(payload, (bytes, bytearray))
        items = [bytes(p) for p in payload] if batch else [bytes(payload)]
        if not items:
            raise ValueError(f"{self.name}: empty command batch")

        handler = None
        if callback is not None or self.always_replies:
            handler = ReplyHandler(callback=callback, par=par, expected=len(items), batch=batch)

        if self.channels.is_connected(COMMAND) and not self.pending:
            self._send(items, handler)
        else:
            logger.debug(f"{self.name}: queueing {len(items)} command(s) until channel connects")
            self.pending.append((items, handler))

    def _send(self, items: List[bytes], handler: Optional[ReplyHandler]) -> None:
        for item in items:
            self.channels.write(COMMAND, item)
        if handler is not None:
            self.handlers.append(handler)

    def flush(self) -> int:
        """Send queued submissions in submission order. Returns how many were sent."""
        sent = 0
        while self.pending and self.channels.is_connected(COMMAND):
            items, handler = self.pending.popleft()
            logger.info(f"{self.name}: sending queued command(s) {[i[:40] for i in items]}")
            self._send(items, handler)
            sent += 1
        return sent

    def connection_reset(self) -> None:
        """
        Start a new channel lifetime: re-arm the header skip, drop partial
        data, and forget replies that can no longer arrive.
        """
        self.framer.reset()
        if self.handlers:
            logger.warning(f"{self.name}: dropping {len(self.handlers)} reply handler(s) of a closed channel")
            self.handlers.clear()

    def clear(self) -> None:
        self.pending.clear()
        self.connection_reset()

    def feed(self, data: bytes) -> None:
        """Feed raw bytes read from the command channel."""
        for record in self.framer.feed_records(data):
            self.dispatch(record)

    def dispatch(self, record: Any) -> None:
        if isinstance(record, dict) and Reply(record).is_event:
            reply = Reply(record)
            logger.info(f"{self.name} async: {record}")
            if self.on_event is not None:
                self._safe_call(self.on_event, reply.event, reply.dev_label, record)
            return

        if self.on_reply is not None:
            self._safe_call(self.on_reply, record)

        if not self.handlers:
            logger.debug(f"{self.name}: reply with no pending handler: {record}")
            return

        handler = self.handlers[0]
        handler.replies.append(record)
        if len(handler.replies) < handler.expected:
            return
        self.handlers.popleft()
        if handler.callback is None:
            return
        result = handler.replies if handler.batch else handler.replies[0]
        if handler.par is None:
            self._safe_call(handler.callback, result)
        else:
            self._safe_call(handler.callback, result, handler.par)

    def _safe_call(self, callback: Callable[..., Any], *args: Any) -> None:
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"{self.name}: reply callback failed: {e}")
            logger.exception(e)
