"""
errors.py — every failure the protocol core can produce.

Each error knows whether the router should answer the offending connection
with an ERROR_RESPONSE frame (``reply = True``) or just log and move on
(``reply = False``). The router boundary is the only place that turns one of
these into bytes on the wire.
"""


class ChatError(Exception):
    """Base class for protocol-level failures."""

    reply: bool = True

    def __init__(self, detail: str = "") -> None:
        super().__init__(detail)
        self.detail = detail


class FrameError(ChatError, ValueError):
    """Malformed or truncated frame."""

    def __init__(self, detail: str = "Invalid message format") -> None:
        super().__init__(detail)


class DuplicateUsernameError(ChatError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Username '{username}' already taken")
        self.username = username


class InvalidUsernameError(ChatError):
    def __init__(self, detail: str = "Username required") -> None:
        super().__init__(detail)


class AlreadyLoggedInError(ChatError):
    def __init__(self, username: str) -> None:
        super().__init__(f"Already logged in as {username}")
        self.username = username


class NotAuthenticatedError(ChatError):
    def __init__(self, detail: str = "Not authenticated. Please login first.", reply: bool = True) -> None:
        super().__init__(detail)
        self.reply = reply


class InvalidSessionError(NotAuthenticatedError):
    def __init__(self, detail: str = "Invalid session", reply: bool = True) -> None:
        super().__init__(detail, reply=reply)


class NotInRoomError(ChatError):
    reply = False

    def __init__(self, username: str) -> None:
        super().__init__(f"{username} is not in a room")
        self.username = username


class InvalidRoomError(ChatError):
    def __init__(self, detail: str = "Room name required") -> None:
        super().__init__(detail)


class RecipientNotFoundError(ChatError):
    reply = False

    def __init__(self, recipient: str) -> None:
        super().__init__(f"Recipient not found: {recipient}")
        self.recipient = recipient


class MalformedPrivateMessageError(ChatError):
    reply = False

    def __init__(self, detail: str = "Private message must look like <recipient>:<message>") -> None:
        super().__init__(detail)


class MessageTooLongError(ChatError):
    def __init__(self, limit: int) -> None:
        super().__init__(f"Message too long (max {limit} characters)")
        self.limit = limit


class UnknownMessageKindError(ChatError):
    def __init__(self, kind_name: str) -> None:
        super().__init__(f"Unknown message type: {kind_name}")
        self.kind_name = kind_name
