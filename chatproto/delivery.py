import asyncio
import logging
import weakref
from typing import Iterable, Optional, Protocol

from . import framing
from .messages import Message

"""
delivery.py — "write this message to connection X", best effort.

The connection layer owns its output channel; we only keep a weak
reference keyed by session id. When a connection goes away without being
unregistered, its entry simply disappears.

Writes never raise past this module. A broken recipient is logged and
counted, and the next recipient still gets its copy.
"""

LOG = logging.getLogger(__name__)

# What a dead or dying transport tends to throw at us.
TRANSPORT_ERRORS = (OSError, ConnectionError, RuntimeError, asyncio.IncompleteReadError)


class OutputChannel(Protocol):
    """Anything that can push a frame's bytes to one peer."""

    async def write(self, data: bytes) -> None:
        ...


class StreamChannel:
    """OutputChannel over an asyncio StreamWriter."""

    def __init__(self, writer: asyncio.StreamWriter) -> None:
        self.writer = writer
        # Several tasks may fan out to the same peer; keep whole frames together.
        self._lock = asyncio.Lock()

    async def write(self, data: bytes) -> None:
        async with self._lock:
            if self.writer.is_closing():
                raise ConnectionResetError("connection is closing")
            self.writer.write(data)
            await self.writer.drain()


class DeliverySink:
    """Weak map session id → OutputChannel, plus the fan-out loop."""

    def __init__(self) -> None:
        self._channels: "weakref.WeakValueDictionary[str, OutputChannel]" = weakref.WeakValueDictionary()

    def register(self, session_id: str, channel: OutputChannel) -> None:
        self._channels[session_id] = channel

    def unregister(self, session_id: str) -> None:
        self._channels.pop(session_id, None)

    def lookup(self, session_id: str) -> Optional[OutputChannel]:
        return self._channels.get(session_id)

    async def reply(self, channel: OutputChannel, msg: Message) -> bool:
        """Write straight to a channel (used before a session exists)."""
        try:
            await channel.write(framing.encode(msg))
        except TRANSPORT_ERRORS as exc:
            LOG.warning("[DELIVERY] write failed: %s", exc)
            return False
        return True

    async def send(self, session_id: str, msg: Message) -> bool:
        """Deliver to one session. False when it has no channel or the write fails."""
        channel = self.lookup(session_id)
        if channel is None:
            LOG.debug("[DELIVERY] no channel for session %s", session_id[:8])
            return False
        return await self.reply(channel, msg)

    async def fan_out(self, session_ids: Iterable[str], msg: Message) -> int:
        """Send the same message to many sessions; returns how many got it."""
        frame = framing.encode(msg)
        delivered = 0
        for sid in session_ids:
            channel = self.lookup(sid)
            if channel is None:
                continue
            try:
                await channel.write(frame)
            except TRANSPORT_ERRORS as exc:
                LOG.warning("[DELIVERY] fan-out to %s failed: %s", sid[:8], exc)
                continue
            delivered += 1
        return delivered

    def __len__(self) -> int:
        return len(self._channels)
