import asyncio
import struct

from .errors import FrameError
from .messages import Message, MessageKind, body_bytes, parse_body

"""
framing.py — fixed 10-byte binary header + JSON body.

Frame layout (all integers big-endian):
- byte 0     : protocol version
- byte 1     : message kind ordinal (see MessageKind)
- bytes 2-5  : body length N (32-bit)
- bytes 6-9  : timestamp, seconds since epoch (signed 32-bit)
- bytes 10.. : N bytes of UTF-8 JSON

The length and timestamp are read as signed two's-complement ints, so a
length with the top bit set shows up as negative and is rejected.
"""

HEADER_STRUCT = struct.Struct(">BBii")
HEADER_SIZE = HEADER_STRUCT.size  # 10
MAX_BODY_LENGTH = 10000  # default inbound cap

_INT32_MAX = 2 ** 31 - 1


def _to_int32(value: int) -> int:
    """Wrap an arbitrary int into the signed 32-bit range (two's-complement wrap)."""
    return ((value + 2 ** 31) % 2 ** 32) - 2 ** 31


def encode(msg: Message) -> bytes:
    """Serialize a Message into one complete frame."""
    body = body_bytes(msg)
    if len(body) > _INT32_MAX:
        raise FrameError("Frame body exceeds the 32-bit length field")
    header = HEADER_STRUCT.pack(
        msg.protocol_version & 0xFF,
        int(msg.kind),
        len(body),
        _to_int32(msg.timestamp),
    )
    return header + body


def decode(data: bytes, max_body_length: int = MAX_BODY_LENGTH) -> Message:
    """
    Parse one frame back into a Message.

    Raises:
        FrameError: short header, bad length, truncated body, unknown kind,
            or a body that isn't a JSON object of strings.
    """
    if len(data) < HEADER_SIZE:
        raise FrameError(f"Frame too short: {len(data)} < {HEADER_SIZE} bytes")

    version, kind_ordinal, body_length, timestamp = HEADER_STRUCT.unpack_from(data)

    if body_length < 0 or body_length > max_body_length:
        raise FrameError(f"Invalid body length: {body_length}")
    if HEADER_SIZE + body_length > len(data):
        raise FrameError(
            f"Truncated frame: body declares {body_length} bytes, "
            f"{len(data) - HEADER_SIZE} available"
        )

    try:
        kind = MessageKind(kind_ordinal)
    except ValueError as exc:
        raise FrameError(f"Unknown message kind ordinal: {kind_ordinal}") from exc

    fields = parse_body(data[HEADER_SIZE:HEADER_SIZE + body_length])
    return Message(
        kind=kind,
        sender=fields["sender"],
        content=fields["content"],
        timestamp=timestamp,
        protocol_version=version,
    )


# -------------------------
# asyncio stream helpers
# -------------------------

async def read_frame(reader: asyncio.StreamReader, max_body_length: int = MAX_BODY_LENGTH) -> bytes:
    """
    Read one raw frame (header + body) from a stream.

    A header announcing an out-of-range body is returned on its own, without
    touching the body bytes; decode() then rejects it and the router answers
    with an error while the connection stays up.

    Raises:
        asyncio.IncompleteReadError: peer closed the stream (clean EOF at a
            frame boundary shows up with ``partial == b""``).
    """
    header = await reader.readexactly(HEADER_SIZE)
    _, _, body_length, _ = HEADER_STRUCT.unpack(header)
    if body_length < 0 or body_length > max_body_length:
        return header
    body = await reader.readexactly(body_length)
    return header + body


async def write_frame(writer: asyncio.StreamWriter, msg: Message) -> None:
    """Encode a Message and write it, waiting for the transport to flush."""
    writer.write(encode(msg))
    await writer.drain()
