"""
chatproto — room-based chat over a small binary-framed protocol.

Layers:
- messages / framing: the Message record and its 10-byte header + JSON body.
- registry: sessions (unique usernames) and rooms (membership sets).
- delivery: best-effort writes to each session's connection.
- router: the protocol state machine tying the above together.
- node / run_node: asyncio TCP/TLS server, client and command line.

Server settings come from CHATPROTO_* environment variables (see config.py),
overridable on the command line.
"""
__all__ = [
    "config", "crypto", "delivery", "errors", "framing",
    "messages", "node", "registry", "router", "run_node", "util",
]
