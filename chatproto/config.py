import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .framing import MAX_BODY_LENGTH

"""
config.py — server settings, from environment variables with CLI overrides.

Environment variables (all optional):
- CHATPROTO_HOST / CHATPROTO_PORT          listening address
- CHATPROTO_CERTFILE / CHATPROTO_KEYFILE   enable TLS when both are set
- CHATPROTO_MAX_BODY                       inbound frame body cap (bytes)
- CHATPROTO_MAX_CONTENT                    room message cap (characters)
- CHATPROTO_ECHO_SENDER                    "1" to echo room messages to their author
- CHATPROTO_REPORT_DROPPED                 "1" to answer silently-dropped requests with errors
- CHATPROTO_IDLE_TIMEOUT                   seconds before a silent connection is closed
- CHATPROTO_LOG_LEVEL / CHATPROTO_LOG_FILE
"""

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8443
MAX_CONTENT_LENGTH = 1000

_TRUE = {"1", "true", "yes", "on"}


def _flag(value: Optional[str]) -> bool:
    return value is not None and value.strip().lower() in _TRUE


@dataclass(frozen=True)
class RouterConfig:
    """The knobs the protocol router cares about."""

    max_body_length: int = MAX_BODY_LENGTH
    max_content_length: int = MAX_CONTENT_LENGTH
    echo_to_sender: bool = False
    report_dropped: bool = False


@dataclass(frozen=True)
class ServerConfig:
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    certfile: Optional[str] = None
    keyfile: Optional[str] = None
    max_body_length: int = MAX_BODY_LENGTH
    max_content_length: int = MAX_CONTENT_LENGTH
    echo_to_sender: bool = False
    report_dropped: bool = False
    idle_timeout: Optional[float] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def tls_enabled(self) -> bool:
        return bool(self.certfile and self.keyfile)

    def router_config(self) -> RouterConfig:
        return RouterConfig(
            max_body_length=self.max_body_length,
            max_content_length=self.max_content_length,
            echo_to_sender=self.echo_to_sender,
            report_dropped=self.report_dropped,
        )

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ServerConfig":
        """
        Build a config from CHATPROTO_* variables.

        Raises:
            ValueError: a numeric variable doesn't parse.
        """
        env = os.environ if environ is None else environ
        idle = env.get("CHATPROTO_IDLE_TIMEOUT")
        return cls(
            host=env.get("CHATPROTO_HOST", DEFAULT_HOST),
            port=int(env.get("CHATPROTO_PORT", DEFAULT_PORT)),
            certfile=env.get("CHATPROTO_CERTFILE") or None,
            keyfile=env.get("CHATPROTO_KEYFILE") or None,
            max_body_length=int(env.get("CHATPROTO_MAX_BODY", MAX_BODY_LENGTH)),
            max_content_length=int(env.get("CHATPROTO_MAX_CONTENT", MAX_CONTENT_LENGTH)),
            echo_to_sender=_flag(env.get("CHATPROTO_ECHO_SENDER")),
            report_dropped=_flag(env.get("CHATPROTO_REPORT_DROPPED")),
            idle_timeout=float(idle) if idle else None,
            log_level=env.get("CHATPROTO_LOG_LEVEL", "INFO").upper(),
            log_file=env.get("CHATPROTO_LOG_FILE") or None,
        )
