"""Test configuration and fixtures."""
from typing import List, Optional, Tuple

import pytest

from chatproto import framing
from chatproto.config import RouterConfig
from chatproto.messages import Message, MessageKind, new_message
from chatproto.router import ProtocolRouter


class FakeChannel:
    """Records every frame written to it."""

    def __init__(self) -> None:
        self.frames: List[bytes] = []

    async def write(self, data: bytes) -> None:
        self.frames.append(data)

    @property
    def messages(self) -> List[Message]:
        return [framing.decode(f) for f in self.frames]

    @property
    def contents(self) -> List[str]:
        return [msg.content for msg in self.messages]

    def clear(self) -> None:
        self.frames.clear()


class BrokenChannel(FakeChannel):
    """A peer whose socket has gone away."""

    async def write(self, data: bytes) -> None:
        raise ConnectionResetError("peer reset")


def frame(kind: MessageKind, sender: str, content: str) -> bytes:
    return framing.encode(new_message(kind, sender, content))


async def login(router: ProtocolRouter, username: str, channel: Optional[FakeChannel] = None) -> Tuple[str, FakeChannel]:
    """Log `username` in on a fresh channel; returns (session id, channel) with the welcome cleared."""
    channel = channel if channel is not None else FakeChannel()
    sid = await router.handle_message(frame(MessageKind.LOGIN_REQUEST, username, "login"), channel, None)
    assert sid is not None
    channel.clear()
    return sid, channel


async def join(router: ProtocolRouter, sid: str, channel: FakeChannel, room: str) -> None:
    await router.handle_message(frame(MessageKind.JOIN_ROOM_REQUEST, "", room), channel, sid)


@pytest.fixture
def router():
    return ProtocolRouter()


@pytest.fixture
def echo_router():
    return ProtocolRouter(config=RouterConfig(echo_to_sender=True))


@pytest.fixture
def strict_router():
    return ProtocolRouter(config=RouterConfig(report_dropped=True))
