import logging
from dataclasses import dataclass
from typing import Optional, assert_never

from . import framing
from . import messages as m
from .config import RouterConfig
from .delivery import DeliverySink, OutputChannel
from .errors import (
    AlreadyLoggedInError,
    ChatError,
    FrameError,
    InvalidRoomError,
    InvalidSessionError,
    InvalidUsernameError,
    MalformedPrivateMessageError,
    MessageTooLongError,
    NotAuthenticatedError,
    NotInRoomError,
    RecipientNotFoundError,
    UnknownMessageKindError,
)
from .messages import Message, MessageKind
from .registry import Room, RoomRegistry, Session, SessionRegistry

"""
router.py — the protocol state machine.

One ProtocolRouter is shared by every connection. The connection layer
calls handle_message() for each inbound frame, passing the connection's
output channel and whatever session id it got back last time, and keeps
the id this call returns. When the connection ends it calls disconnect().

Handlers raise ChatError subclasses; handle_message() is the single place
that decides whether an error becomes an ERROR_RESPONSE on the wire or just
a log line.
"""

LOG = logging.getLogger(__name__)


@dataclass
class RouterStats:
    """Running counters, mostly for logs and tests."""

    frames: int = 0
    invalid_frames: int = 0
    delivered: int = 0
    failed_deliveries: int = 0
    dropped: int = 0


class ProtocolRouter:
    def __init__(
        self,
        sessions: Optional[SessionRegistry] = None,
        rooms: Optional[RoomRegistry] = None,
        sink: Optional[DeliverySink] = None,
        config: Optional[RouterConfig] = None,
    ) -> None:
        self.sessions = sessions if sessions is not None else SessionRegistry()
        self.rooms = rooms if rooms is not None else RoomRegistry()
        self.sink = sink if sink is not None else DeliverySink()
        self.config = config if config is not None else RouterConfig()
        self.stats = RouterStats()

    # -------------------------
    # Connection-facing API
    # -------------------------

    async def handle_message(
        self, data: bytes, channel: OutputChannel, session_id: Optional[str]
    ) -> Optional[str]:
        """
        Process one raw frame from a connection.

        Args:
            data: the complete frame bytes as read off the wire.
            channel: where replies to this connection go.
            session_id: the caller's current session id, or None.

        Returns:
            The session id the connection should hold from now on.
        """
        self.stats.frames += 1
        try:
            msg = framing.decode(data, self.config.max_body_length)
        except FrameError as exc:
            self.stats.invalid_frames += 1
            LOG.warning("[PROTOCOL ERROR] %s", exc.detail)
            await self._reply(channel, m.error_response("Invalid message format"))
            return session_id

        LOG.info("[PROTOCOL] Type: %s, From: %s", msg.kind.name, msg.sender)

        try:
            return await self.dispatch(msg, channel, session_id)
        except ChatError as exc:
            if exc.reply or self.config.report_dropped:
                LOG.warning("[ERROR] %s", exc.detail)
                await self._reply(channel, m.error_response(exc.detail))
            else:
                self.stats.dropped += 1
                LOG.warning("[DROPPED] %s: %s", msg.kind.name, exc.detail)

            # A rejected login leaves the connection unauthenticated.
            if msg.kind is MessageKind.LOGIN_REQUEST and not isinstance(exc, AlreadyLoggedInError):
                return None
            return session_id

    async def dispatch(
        self, msg: Message, channel: OutputChannel, session_id: Optional[str]
    ) -> Optional[str]:
        """Route a decoded message. Raises ChatError on protocol failures."""
        match msg.kind:
            case MessageKind.LOGIN_REQUEST:
                return await self._login(msg, channel, session_id)
            case MessageKind.JOIN_ROOM_REQUEST:
                await self._join_room(msg, channel, session_id)
            case MessageKind.TEXT_MESSAGE:
                await self._broadcast_to_room(msg, session_id)
            case MessageKind.PRIVATE_MESSAGE:
                await self._send_private(msg, session_id)
            case MessageKind.USER_LIST_REQUEST:
                await self._send_user_list(channel)
            case (
                MessageKind.LOGIN_RESPONSE
                | MessageKind.USER_LIST_RESPONSE
                | MessageKind.ERROR_RESPONSE
            ):
                # server-to-client kinds have no meaning inbound
                raise UnknownMessageKindError(msg.kind.name)
            case _:
                assert_never(msg.kind)
        return session_id

    async def disconnect(self, session_id: Optional[str]) -> None:
        """
        Tear down a connection's session: registry entry, delivery channel,
        room membership. Remaining room members hear that the user left.
        Safe to call twice or with None.
        """
        if session_id is None:
            return
        session = self.sessions.remove(session_id)
        self.sink.unregister(session_id)
        if session is None:
            return

        await self._leave_current_room(session)
        LOG.info(
            "[LOGOUT] User: %s | Remaining: %d", session.username, len(self.sessions)
        )

    # -------------------------
    # Handlers
    # -------------------------

    async def _login(
        self, msg: Message, channel: OutputChannel, session_id: Optional[str]
    ) -> str:
        current = self.sessions.get(session_id)
        if current is not None:
            raise AlreadyLoggedInError(current.username)

        username = msg.sender.strip()
        if not username:
            raise InvalidUsernameError()

        session = self.sessions.create(username)
        self.sink.register(session.id, channel)
        try:
            await self._reply(channel, m.login_response(username))
        except BaseException:
            # id never reached the connection; undo the claim
            self.sessions.remove(session.id)
            self.sink.unregister(session.id)
            LOG.warning("[LOGIN] Rolled back session for %s", username)
            raise

        LOG.info(
            "[LOGIN] User: %s | SessionID: %s... | Total: %d",
            username, session.id[:8], len(self.sessions),
        )
        return session.id

    async def _join_room(
        self, msg: Message, channel: OutputChannel, session_id: Optional[str]
    ) -> None:
        session = self._require_session(session_id)
        room_name = msg.content.strip()
        if not room_name:
            raise InvalidRoomError()

        if session.current_room == room_name:
            # already there: confirm, nobody else needs to hear about it
            await self._reply(channel, m.join_confirmation(room_name))
            return

        await self._leave_current_room(session)

        room = self.rooms.get_or_create(room_name)
        self.rooms.add_member(room, session)
        self.sessions.set_room(session.id, room_name)
        LOG.info(
            "[JOIN] User: %s -> Room: %s (%d members)",
            session.username, room_name, len(self.rooms.members(room)),
        )

        await self._reply(channel, m.join_confirmation(room_name))
        await self._notify_room(room, f"{session.username} joined the room", exclude=session.id)

    async def _broadcast_to_room(self, msg: Message, session_id: Optional[str]) -> None:
        sender = self._require_session(session_id, reply=False)
        room = self.rooms.get(sender.current_room)
        if room is None:
            raise NotInRoomError(sender.username)
        if len(msg.content) > self.config.max_content_length:
            raise MessageTooLongError(self.config.max_content_length)

        LOG.info(
            "[BROADCAST] Room: %s | From: %s | Msg: %s",
            room.name, sender.username, msg.content,
        )
        recipients = [
            member.id
            for member in self.rooms.members(room)
            if self.config.echo_to_sender or member.id != sender.id
        ]
        delivered = await self.sink.fan_out(recipients, m.room_text(sender.username, msg.content))
        self._count(delivered, len(recipients))
        LOG.info("[BROADCAST] Delivered to %d of %d members", delivered, len(recipients))

    async def _send_private(self, msg: Message, session_id: Optional[str]) -> None:
        sender = self._require_session(session_id, reply=False)

        recipient_name, sep, text = msg.content.partition(":")
        if not sep:
            raise MalformedPrivateMessageError()
        recipient_name = recipient_name.strip()
        text = text.strip()

        LOG.info("[PM] %s -> %s", sender.username, recipient_name)
        recipient = self.sessions.find_by_username(recipient_name)
        if recipient is None:
            raise RecipientNotFoundError(recipient_name)

        ok = await self.sink.send(recipient.id, m.private_text(sender.username, text))
        self._count(int(ok), 1)
        if ok:
            LOG.info("[PM] Delivered")
        else:
            LOG.warning("[PM ERROR] Delivery to %s failed", recipient_name)

    async def _send_user_list(self, channel: OutputChannel) -> None:
        active = self.sessions.snapshot()
        entries = []
        for session in active:
            if session.current_room is not None:
                entries.append(f"{session.username} (in {session.current_room})")
            else:
                entries.append(session.username)
        listing = ", ".join(entries) if entries else "No users online"

        LOG.info("[USER_LIST] Sent: %d users", len(active))
        await self._reply(channel, m.user_list_response(listing))

    # -------------------------
    # Helpers
    # -------------------------

    def _require_session(self, session_id: Optional[str], reply: bool = True) -> Session:
        if session_id is None:
            raise NotAuthenticatedError(reply=reply)
        session = self.sessions.get(session_id)
        if session is None:
            raise InvalidSessionError(reply=reply)
        return session

    async def _leave_current_room(self, session: Session) -> None:
        room = self.rooms.get(session.current_room)
        self.sessions.set_room(session.id, None)
        if room is None:
            return
        self.rooms.remove_member(room, session)
        LOG.info("[LEAVE] User: %s left room: %s", session.username, room.name)
        await self._notify_room(room, f"{session.username} left the room", exclude=session.id)

    async def _notify_room(self, room: Room, text: str, exclude: str) -> None:
        recipients = [member.id for member in self.rooms.members(room) if member.id != exclude]
        if not recipients:
            return
        delivered = await self.sink.fan_out(recipients, m.system_notice(text))
        self._count(delivered, len(recipients))

    async def _reply(self, channel: OutputChannel, msg: Message) -> None:
        ok = await self.sink.reply(channel, msg)
        self._count(int(ok), 1)

    def _count(self, delivered: int, attempted: int) -> None:
        self.stats.delivered += delivered
        self.stats.failed_deliveries += attempted - delivered
