# config.py
import argparse
import logging
import math
import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Startup configuration is missing or malformed."""


@dataclass
class Config:
    token: str
    addr: str = ":9000"
    db_path: str = "icecream.db"
    redis_url: str = ""
    signing_secret: str = ""
    lock_timeout: float = 3.0
    log_level: str = "INFO"

    @property
    def host(self):
        return parse_addr(self.addr)[0]

    @property
    def port(self):
        return parse_addr(self.addr)[1]


def parse_addr(addr):
    """Split "host:port" into (host, port); an empty host means all interfaces."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ConfigError(f"invalid listen address {addr!r}, expected host:port")
    try:
        port = int(port)
    except ValueError:
        raise ConfigError(f"invalid port in listen address {addr!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError(f"port out of range in listen address {addr!r}")
    return host.strip("[]") or "0.0.0.0", port


def build_parser():
    parser = argparse.ArgumentParser(
        prog="icecream-bot",
        description="Slash-command webhook tracking who owes the team ice cream.",
    )
    parser.add_argument("--addr", default=os.environ.get("ICECREAM_ADDR", ":9000"),
                        help="address to listen on")
    parser.add_argument("--token", default=os.environ.get("ICECREAM_TOKEN", ""),
                        help="slack verification token")
    parser.add_argument("--db-path", default=os.environ.get("ICECREAM_DB_PATH", "icecream.db"),
                        help="path to database file")
    parser.add_argument("--redis-url", default=os.environ.get("REDIS_URL", ""),
                        help="store records in Redis instead of the database file")
    parser.add_argument("--signing-secret", default=os.environ.get("SLACK_SIGN_SECRET", ""),
                        help="verify X-Slack-Signature with this secret")
    parser.add_argument("--lock-timeout", default=os.environ.get("ICECREAM_LOCK_TIMEOUT", "3"),
                        help="seconds to wait for the database file lock")
    parser.add_argument("--log-level", default=os.environ.get("LOG_LEVEL", "INFO"),
                        help="logging level")
    return parser


def load_config(argv=None):
    """
    Build the Config from .env, the environment and command-line flags.

    Flags win over environment variables.

    Raises:
        ConfigError: if the token is unset or a value can't be parsed
    """
    load_dotenv(find_dotenv(usecwd=True))
    args = build_parser().parse_args(argv)

    if not args.token:
        raise ConfigError("token must be set")

    try:
        lock_timeout = float(args.lock_timeout)
    except ValueError:
        raise ConfigError(f"invalid lock timeout {args.lock_timeout!r}") from None
    if not math.isfinite(lock_timeout) or lock_timeout < 0:
        raise ConfigError(f"lock timeout must be a finite, non-negative number of seconds, got {args.lock_timeout!r}")

    config = Config(
        token=args.token,
        addr=args.addr,
        db_path=args.db_path,
        redis_url=args.redis_url,
        signing_secret=args.signing_secret,
        lock_timeout=lock_timeout,
        log_level=args.log_level.upper(),
    )
    parse_addr(config.addr)
    if not isinstance(logging.getLevelName(config.log_level), int):
        raise ConfigError(f"unknown log level {args.log_level!r}")

    logger.info(
        "Config loaded | TOKEN: %s | SIGNING SECRET: %s | REDIS_URL: %s | DB_PATH: %s",
        "✓" if config.token else "✗",
        "✓" if config.signing_secret else "✗",
        "✓" if config.redis_url else "✗",
        config.db_path,
    )
    return config
