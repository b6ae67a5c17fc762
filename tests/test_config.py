"""Tests for configuration, argument parsing and logging setup."""
import logging
from logging.handlers import RotatingFileHandler

import pytest

from chatproto.config import DEFAULT_HOST, DEFAULT_PORT, MAX_CONTENT_LENGTH, RouterConfig, ServerConfig
from chatproto.framing import MAX_BODY_LENGTH
from chatproto.run_node import build_server_config, parse_args
from chatproto.util import LOG, configure_logging


def test_defaults_from_empty_environment():
    config = ServerConfig.from_env({})
    assert config == ServerConfig()
    assert config.host == DEFAULT_HOST
    assert config.port == DEFAULT_PORT
    assert config.max_body_length == MAX_BODY_LENGTH == 10_000
    assert config.max_content_length == MAX_CONTENT_LENGTH == 1000
    assert not config.tls_enabled
    assert config.idle_timeout is None


def test_environment_overrides():
    config = ServerConfig.from_env({
        "CHATPROTO_HOST": "0.0.0.0",
        "CHATPROTO_PORT": "9000",
        "CHATPROTO_CERTFILE": "cert.pem",
        "CHATPROTO_KEYFILE": "key.pem",
        "CHATPROTO_MAX_BODY": "2048",
        "CHATPROTO_MAX_CONTENT": "200",
        "CHATPROTO_ECHO_SENDER": "yes",
        "CHATPROTO_REPORT_DROPPED": "1",
        "CHATPROTO_IDLE_TIMEOUT": "30",
        "CHATPROTO_LOG_LEVEL": "debug",
        "CHATPROTO_LOG_FILE": "chat.log",
    })
    assert config.host == "0.0.0.0"
    assert config.port == 9000
    assert config.tls_enabled
    assert config.idle_timeout == 30.0
    assert config.log_level == "DEBUG"
    assert config.log_file == "chat.log"
    assert config.router_config() == RouterConfig(
        max_body_length=2048, max_content_length=200, echo_to_sender=True, report_dropped=True,
    )


@pytest.mark.parametrize("value, expected", [
    ("1", True), ("true", True), ("ON", True), ("0", False), ("no", False), ("", False),
])
def test_boolean_flags(value, expected):
    assert ServerConfig.from_env({"CHATPROTO_ECHO_SENDER": value}).echo_to_sender is expected


def test_tls_needs_both_files():
    assert not ServerConfig.from_env({"CHATPROTO_CERTFILE": "cert.pem"}).tls_enabled


def test_bad_number_raises():
    with pytest.raises(ValueError):
        ServerConfig.from_env({"CHATPROTO_PORT": "eighty"})


def test_cli_flags_override_environment():
    base = ServerConfig(port=7000, log_level="INFO")
    args = parse_args([
        "--mode", "server", "--port", "7001", "--echo", "--report-dropped",
        "--idle-timeout", "12.5", "--max-body", "512", "--log-level", "warning",
    ])
    config = build_server_config(args, base)

    assert config.port == 7001
    assert config.host == DEFAULT_HOST
    assert config.echo_to_sender and config.report_dropped
    assert config.idle_timeout == 12.5
    assert config.max_body_length == 512
    assert config.log_level == "WARNING"


def test_unset_flags_keep_base_values():
    base = ServerConfig(host="10.0.0.1", port=7000, echo_to_sender=True)
    config = build_server_config(parse_args(["--mode", "server"]), base)
    assert config == base


def test_tls_flag_creates_self_signed_pair(tmp_path):
    args = parse_args(["--mode", "server", "--tls", "--key-dir", str(tmp_path)])
    config = build_server_config(args, ServerConfig())

    assert config.tls_enabled
    assert config.certfile == str(tmp_path / "server_cert.pem")
    assert (tmp_path / "server_key.pem").exists()


def test_cli_subcommands():
    args = parse_args(["--mode", "cli", "--id", "alice", "send", "--room", "general", "hello", "all"])
    assert args.command == "send"
    assert args.room == "general"
    assert args.message == ["hello", "all"]

    args = parse_args(["--mode", "cli", "--id", "alice", "pm", "--to", "bob", "hey"])
    assert (args.command, args.to, args.message) == ("pm", "bob", ["hey"])


def test_mode_is_required():
    with pytest.raises(SystemExit):
        parse_args([])


def test_configure_logging_replaces_handlers(tmp_path):
    logfile = tmp_path / "chat.log"
    try:
        configure_logging("debug")
        configure_logging("info", str(logfile))

        assert LOG.level == logging.INFO
        assert len(LOG.handlers) == 2
        assert any(isinstance(h, RotatingFileHandler) for h in LOG.handlers)

        logging.getLogger("chatproto.router").info("hello from the router")
        for handler in LOG.handlers:
            handler.flush()
        assert "hello from the router" in logfile.read_text(encoding="utf-8")
    finally:
        for handler in list(LOG.handlers):
            LOG.removeHandler(handler)
            handler.close()
        LOG.setLevel(logging.NOTSET)
