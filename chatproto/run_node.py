import argparse
import asyncio
import dataclasses
import sys
from pathlib import Path
from typing import Optional

from . import crypto
from .config import DEFAULT_HOST, DEFAULT_PORT, ServerConfig
from .messages import MessageKind
from .node import ChatClient, ChatServer
from .util import configure_logging

"""
run_node.py — single entry point for the chat server and its clients.

What you can do here:
- server:  run the chat server (plain TCP, or TLS with --cert/--key or --tls)
- client:  interactive terminal client (/login, /join, /msg, /users, /quit)
- cli:     one-shot helper (users, send, pm) handy for scripts and smoke tests
- keygen:  write a self-signed certificate + key for local TLS runs
"""

CLIENT_HELP = """\
=== Chat Client ===
Commands:
  /login <username>        - Login to server
  /join <roomname>         - Join a chat room
  /msg <user> <message>    - Send private message
  /users                   - List active users
  /quit                    - Disconnect
  <text>                   - Send message to room
"""


# -------------------------
# Process runners
# -------------------------

async def run_server(config: ServerConfig) -> None:
    """Serve until cancelled (Ctrl-C)."""
    server = ChatServer(config)
    await server.serve_forever()


def _client_tls(args: argparse.Namespace):
    if not (args.tls or args.cafile or args.insecure):
        return None
    return crypto.client_ssl_context(cafile=args.cafile, insecure=args.insecure)


async def _print_incoming(client: ChatClient) -> None:
    """Show every server message as-is; the server already formats them."""
    async for msg in client.messages():
        print(msg.content, flush=True)
    print("\n[Server closed connection]", flush=True)


async def run_client(client: ChatClient) -> None:
    """
    Interactive loop: stdin lines become protocol requests, a background
    task prints whatever the server sends.
    """
    await client.connect()
    print(f"Connected to {client.host}:{client.port}")
    print(CLIENT_HELP)
    printer = asyncio.create_task(_print_incoming(client))
    logged_in = False

    try:
        while not printer.done():
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            line = line.rstrip("\n")

            if line.startswith("/login "):
                username = line[7:].strip()
                if not username:
                    print("Usage: /login <username>")
                    continue
                await client.login(username)
                logged_in = True
            elif line == "/quit":
                break
            elif not logged_in:
                if line.strip():
                    print("Please login first with /login <username>")
            elif line.startswith("/join "):
                room = line[6:].strip()
                if not room:
                    print("Usage: /join <roomname>")
                    continue
                await client.join(room)
            elif line.startswith("/msg "):
                parts = line[5:].split(" ", 1)
                if len(parts) == 2:
                    await client.send_private(parts[0], parts[1])
                else:
                    print("Usage: /msg <username> <message>")
            elif line == "/users":
                await client.request_users()
            elif line.startswith("/"):
                print("Unknown command. Type /login, /join, /msg, /users, or /quit")
            elif line.strip():
                await client.send_text(line)
    finally:
        printer.cancel()
        await client.close()
        print("Disconnected")


async def run_cli(args: argparse.Namespace, client: ChatClient) -> int:
    """
    One-shot commands:
      - users:  log in, print the user list, leave
      - send:   log in, join --room, post one message
      - pm:     log in, send one private message
    Returns a process exit code.
    """
    await client.connect()
    try:
        await client.login(args.ident)
        reply = await client.receive(timeout=args.timeout)
        if reply.kind is not MessageKind.LOGIN_RESPONSE:
            print(reply.content, file=sys.stderr)
            return 1

        if args.command == "users":
            await client.request_users()
            while True:
                reply = await client.receive(timeout=args.timeout)
                if reply.kind is MessageKind.USER_LIST_RESPONSE:
                    print(reply.content)
                    return 0

        if args.command == "send":
            await client.join(args.room)
            reply = await client.receive(timeout=args.timeout)
            if reply.kind is MessageKind.ERROR_RESPONSE:
                print(reply.content, file=sys.stderr)
                return 1
            await client.send_text(" ".join(args.message))
            return 0

        if args.command == "pm":
            await client.send_private(args.to, " ".join(args.message))
            return 0

        print("cli mode needs a command: users, send or pm", file=sys.stderr)
        return 2
    finally:
        await client.close()


# -------------------------
# Argument parsing
# -------------------------

def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    """
    Parse modes and subcommands.

    Quick examples:
      Keys:     python -m chatproto.run_node --mode keygen --key-dir ./tls
      Server:   python -m chatproto.run_node --mode server --port 8443 --cert tls/server_cert.pem --key tls/server_key.pem
      Client:   python -m chatproto.run_node --mode client --host localhost --port 8443 --cafile tls/server_cert.pem
      CLI:      python -m chatproto.run_node --mode cli --id alice --port 8443 users
                python -m chatproto.run_node --mode cli --id alice --port 8443 send --room general hello all
    """
    p = argparse.ArgumentParser(prog="chatproto")
    p.add_argument("--mode", choices=["server", "client", "cli", "keygen"], required=True)
    p.add_argument("--host")
    p.add_argument("--port", type=int)
    p.add_argument("--id", dest="ident")

    # server TLS material
    p.add_argument("--cert", dest="certfile")
    p.add_argument("--key", dest="keyfile")
    p.add_argument("--key-dir", type=Path, help="where keygen/--tls keep the self-signed pair")
    p.add_argument("--tls", action="store_true",
                   help="server: use (or create) the self-signed pair; client: connect over TLS")

    # client TLS trust
    p.add_argument("--cafile", help="certificate to trust (e.g. the server's self-signed cert)")
    p.add_argument("--insecure", action="store_true", help="skip certificate verification (testing only)")

    # server behaviour
    p.add_argument("--echo", action="store_true", help="echo room messages back to their author")
    p.add_argument("--report-dropped", action="store_true",
                   help="answer requests the server would silently drop with an error")
    p.add_argument("--idle-timeout", type=float)
    p.add_argument("--max-body", type=int)
    p.add_argument("--log-level")
    p.add_argument("--log-file")
    p.add_argument("--timeout", type=float, default=5.0, help="cli: seconds to wait for each reply")

    sub = p.add_subparsers(dest="command")
    sub.required = False

    sub.add_parser("users")

    sp = sub.add_parser("send")
    sp.add_argument("--room", required=True)
    sp.add_argument("message", nargs=argparse.REMAINDER)

    sp = sub.add_parser("pm")
    sp.add_argument("--to", required=True)
    sp.add_argument("message", nargs=argparse.REMAINDER)

    return p.parse_args(argv)


def build_server_config(args: argparse.Namespace, base: Optional[ServerConfig] = None) -> ServerConfig:
    """Environment-derived config with command-line flags layered on top."""
    config = base if base is not None else ServerConfig.from_env()
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port is not None:
        overrides["port"] = args.port
    if args.certfile:
        overrides["certfile"] = args.certfile
    if args.keyfile:
        overrides["keyfile"] = args.keyfile
    if args.tls and not (args.certfile or args.keyfile):
        cert_path, key_path = crypto.write_tls_material(args.key_dir)
        overrides["certfile"] = str(cert_path)
        overrides["keyfile"] = str(key_path)
    if args.echo:
        overrides["echo_to_sender"] = True
    if args.report_dropped:
        overrides["report_dropped"] = True
    if args.idle_timeout is not None:
        overrides["idle_timeout"] = args.idle_timeout
    if args.max_body is not None:
        overrides["max_body_length"] = args.max_body
    if args.log_level:
        overrides["log_level"] = args.log_level.upper()
    if args.log_file:
        overrides["log_file"] = args.log_file
    return dataclasses.replace(config, **overrides)


# -------------------------
# Main entrypoint
# -------------------------

def main(argv: Optional[list] = None) -> None:
    """Dispatch into the chosen mode; keep top-level code very small."""
    args = parse_args(argv)

    if args.mode == "keygen":
        cert_path, key_path = crypto.write_tls_material(args.key_dir, overwrite=True)
        print(f"Certificate: {cert_path}")
        print(f"Private key: {key_path}")
        return

    if args.mode == "server":
        config = build_server_config(args)
        configure_logging(config.log_level, config.log_file)
        try:
            asyncio.run(run_server(config))
        except KeyboardInterrupt:
            print("\nShutdown signal received...")
        return

    configure_logging(args.log_level or "WARNING", args.log_file)
    client = ChatClient(
        args.host or DEFAULT_HOST,
        args.port or DEFAULT_PORT,
        ssl_context=_client_tls(args),
    )

    if args.mode == "client":
        try:
            asyncio.run(run_client(client))
        except KeyboardInterrupt:
            pass
        return

    if args.mode == "cli":
        if not args.ident:
            raise SystemExit("--id is required for cli mode")
        raise SystemExit(asyncio.run(run_cli(args, client)))


if __name__ == "__main__":
    main()
