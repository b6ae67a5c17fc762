import enum
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict

from .errors import FrameError

"""
messages.py — the Message record, its kinds, and the JSON body it travels in.

What this module does:
- Names the eight message kinds; the enum *value* is the ordinal sent in
  byte 1 of every frame header, so the order here is part of the wire format.
- Builds fresh outbound messages (server replies, system notices, errors).
- Turns the three logical fields into the compact JSON body and back.

The binary header around the body lives in framing.py.
"""

PROTOCOL_VERSION = 1

SERVER_SENDER = "server"
SYSTEM_SENDER = "system"


class MessageKind(enum.IntEnum):
    LOGIN_REQUEST = 0
    LOGIN_RESPONSE = 1
    JOIN_ROOM_REQUEST = 2
    TEXT_MESSAGE = 3
    PRIVATE_MESSAGE = 4
    USER_LIST_REQUEST = 5
    USER_LIST_RESPONSE = 6
    ERROR_RESPONSE = 7


def now_s() -> int:
    """Current Unix time in whole seconds (what the header carries)."""
    return int(time.time())


@dataclass(frozen=True)
class Message:
    """One protocol message. Immutable; build a new one for every send."""

    kind: MessageKind
    sender: str
    content: str
    timestamp: int = field(default_factory=now_s)
    protocol_version: int = PROTOCOL_VERSION


def new_message(kind: MessageKind, sender: str, content: str) -> Message:
    """Fresh message stamped with the current time and protocol version."""
    return Message(kind=kind, sender=sender, content=content)


# -----------------------
# Server-originated messages
# -----------------------

def login_response(username: str) -> Message:
    return new_message(MessageKind.LOGIN_RESPONSE, SERVER_SENDER, f"Welcome {username}!")


def join_confirmation(room: str) -> Message:
    # joins are confirmed with the request kind; there is no JOIN response kind
    return new_message(MessageKind.JOIN_ROOM_REQUEST, SERVER_SENDER, f"Joined room: {room}")


def error_response(detail: str) -> Message:
    return new_message(MessageKind.ERROR_RESPONSE, SERVER_SENDER, f"ERROR: {detail}")


def system_notice(text: str) -> Message:
    """Room-scoped notification such as '<user> joined the room'."""
    return new_message(MessageKind.TEXT_MESSAGE, SYSTEM_SENDER, f"[SYSTEM] {text}")


def room_text(username: str, content: str) -> Message:
    return new_message(MessageKind.TEXT_MESSAGE, SERVER_SENDER, f"[{username}]: {content}")


def private_text(from_user: str, content: str) -> Message:
    return new_message(MessageKind.PRIVATE_MESSAGE, SERVER_SENDER, f"[PM from {from_user}]: {content}")


def user_list_response(listing: str) -> Message:
    return new_message(MessageKind.USER_LIST_RESPONSE, SERVER_SENDER, f"Active users: {listing}")


# -----------------------
# Body (de)serialization
# -----------------------

def body_bytes(msg: Message) -> bytes:
    """Compact UTF-8 JSON body carrying kind, sender and content."""
    # non-ASCII goes out as raw UTF-8, not \u escapes
    body = {"type": msg.kind.name, "sender": msg.sender, "content": msg.content}
    return json.dumps(body, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def parse_body(raw: bytes) -> Dict[str, str]:
    """
    Decode a JSON body into {"sender": ..., "content": ...}.

    Missing fields, and fields that aren't strings, come back as empty
    strings; callers must cope with that. Unknown keys are ignored. A body
    that is not a JSON object, or a string that can't be re-encoded as UTF-8
    (an escaped lone surrogate such as "\\ud800"), is a FrameError.
    """
    try:
        obj: Any = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FrameError(f"Invalid message body: {exc}") from exc

    if not isinstance(obj, dict):
        raise FrameError("Message body must be a JSON object")

    fields: Dict[str, str] = {}
    for name in ("sender", "content"):
        value = obj.get(name, "")
        if not isinstance(value, str):
            value = ""
        try:
            value.encode("utf-8")
        except UnicodeEncodeError as exc:
            raise FrameError(f"Field '{name}' is not valid UTF-8 text") from exc
        fields[name] = value
    return fields
