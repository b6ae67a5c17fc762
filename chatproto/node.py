import asyncio
import logging
import ssl
from typing import AsyncIterator, Optional, Set

from . import framing
from .config import ServerConfig
from .crypto import server_ssl_context
from .delivery import StreamChannel
from .messages import Message, MessageKind, new_message
from .router import ProtocolRouter

"""
node.py — the TCP/TLS plumbing around the protocol router.

- ChatServer: accepts connections and runs one task per connection. Each
  task reads frames in order, hands them to the shared ProtocolRouter, keeps
  the session id the router gives back, and always runs the router's
  disconnect cleanup when the connection ends, however it ends.
- ChatClient: the matching client, used by the interactive/one-shot CLI and
  by the end-to-end tests.

Nothing here knows what a room or a username is; that's all router.py.
"""

LOG = logging.getLogger(__name__)

# Server replies (user lists especially) can outgrow the inbound cap.
CLIENT_MAX_BODY_LENGTH = 1024 * 1024


class ConnectionContext:
    """Reader/writer for one connection plus the session id it currently holds."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer
        self.channel = StreamChannel(writer)
        self.session_id: Optional[str] = None
        self.peer = writer.get_extra_info("peername")


class ChatServer:
    """
    Chat server:
      - One asyncio task per connection, frames handled strictly in order.
      - Optional TLS (pass an ssl.SSLContext, or set certfile/keyfile in config).
      - Optional idle timeout; by default reads block until the peer goes away.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        router: Optional[ProtocolRouter] = None,
        ssl_context: Optional[ssl.SSLContext] = None,
    ) -> None:
        self.config = config if config is not None else ServerConfig()
        self.router = router if router is not None else ProtocolRouter(config=self.config.router_config())
        self.ssl_context = ssl_context
        if self.ssl_context is None and self.config.tls_enabled:
            self.ssl_context = server_ssl_context(self.config.certfile, self.config.keyfile)

        self._server: Optional[asyncio.Server] = None
        self._conn_tasks: Set[asyncio.Task] = set()

    @property
    def port(self) -> int:
        """Actual bound port (useful when the config asked for port 0)."""
        if self._server is None or not self._server.sockets:
            return self.config.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind and start accepting; returns once the socket is listening."""
        self._server = await asyncio.start_server(
            self.handle_conn, self.config.host, self.config.port, ssl=self.ssl_context
        )
        addrs = ", ".join(str(sock.getsockname()) for sock in self._server.sockets or [])
        LOG.info(
            "Chat server listening on %s (TLS: %s)",
            addrs, "enabled" if self.ssl_context else "disabled",
        )

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        try:
            await self._server.serve_forever()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop accepting, then cancel live connections and wait for their cleanup."""
        if self._server is not None:
            self._server.close()
        tasks = [t for t in self._conn_tasks if t is not asyncio.current_task()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._server is not None:
            await self._server.wait_closed()
            self._server = None
            LOG.info("[SHUTDOWN] Server stopped")

    async def handle_conn(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        """Per-connection loop: read frames and pass them to the router."""
        task = asyncio.current_task()
        if task is not None:
            self._conn_tasks.add(task)
        ctx = ConnectionContext(reader, writer)
        LOG.info("[CONNECTION] Client from %s", ctx.peer)
        try:
            while True:
                data = await self._read_next(reader)
                ctx.session_id = await self.router.handle_message(data, ctx.channel, ctx.session_id)
        except asyncio.IncompleteReadError:
            LOG.info("[DISCONNECTION] %s closed connection", ctx.peer)
        except asyncio.TimeoutError:
            LOG.info("[DISCONNECTION] %s idle for %ss", ctx.peer, self.config.idle_timeout)
        except (ConnectionError, ssl.SSLError) as exc:
            LOG.warning("[DISCONNECTION] %s: %s", ctx.peer, exc)
        except Exception:
            # handler bug: log it, clean up this connection only
            LOG.exception("[ERROR] Client handler error for %s", ctx.peer)
        finally:
            await self.router.disconnect(ctx.session_id)
            if task is not None:
                self._conn_tasks.discard(task)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, ssl.SSLError, OSError):
                pass  # peer already gone

    async def _read_next(self, reader: asyncio.StreamReader) -> bytes:
        read = framing.read_frame(reader, self.router.config.max_body_length)
        if self.config.idle_timeout:
            return await asyncio.wait_for(read, self.config.idle_timeout)
        return await read


class ChatClient:
    """
    Client side of the protocol. Typical use:

        client = ChatClient("localhost", 8443)
        await client.connect()
        await client.login("alice")
        reply = await client.receive()
    """

    def __init__(
        self,
        host: str,
        port: int,
        ssl_context: Optional[ssl.SSLContext] = None,
        server_hostname: Optional[str] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.server_hostname = server_hostname
        self.username: Optional[str] = None
        self.reader: Optional[asyncio.StreamReader] = None
        self.writer: Optional[asyncio.StreamWriter] = None

    async def connect(self) -> None:
        kwargs = {}
        if self.ssl_context is not None:
            kwargs["ssl"] = self.ssl_context
            kwargs["server_hostname"] = self.server_hostname or self.host
        self.reader, self.writer = await asyncio.open_connection(self.host, self.port, **kwargs)
        LOG.debug("Connected to %s:%d", self.host, self.port)

    async def send(self, kind: MessageKind, content: str, sender: Optional[str] = None) -> None:
        if self.writer is None:
            raise ConnectionError("not connected")
        msg = new_message(kind, sender if sender is not None else (self.username or ""), content)
        await framing.write_frame(self.writer, msg)

    async def login(self, username: str) -> None:
        self.username = username
        await self.send(MessageKind.LOGIN_REQUEST, "login", sender=username)

    async def join(self, room: str) -> None:
        await self.send(MessageKind.JOIN_ROOM_REQUEST, room)

    async def send_text(self, text: str) -> None:
        await self.send(MessageKind.TEXT_MESSAGE, text)

    async def send_private(self, recipient: str, text: str) -> None:
        await self.send(MessageKind.PRIVATE_MESSAGE, f"{recipient}:{text}")

    async def request_users(self) -> None:
        await self.send(MessageKind.USER_LIST_REQUEST, "list")

    async def receive(self, timeout: Optional[float] = None) -> Message:
        """
        Next message from the server.

        Raises:
            asyncio.IncompleteReadError: server closed the connection.
            asyncio.TimeoutError: nothing arrived within `timeout`.
        """
        if self.reader is None:
            raise ConnectionError("not connected")
        read = framing.read_frame(self.reader, CLIENT_MAX_BODY_LENGTH)
        data = await (asyncio.wait_for(read, timeout) if timeout else read)
        return framing.decode(data, CLIENT_MAX_BODY_LENGTH)

    async def messages(self) -> AsyncIterator[Message]:
        """Yield server messages until the connection closes."""
        while True:
            try:
                yield await self.receive()
            except asyncio.IncompleteReadError:
                return

    async def close(self) -> None:
        if self.writer is None:
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, ssl.SSLError, OSError):
            pass
        self.writer = None
        self.reader = None
