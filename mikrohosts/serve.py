"""The ``serve`` command: options, their validation and the server run loop."""

from __future__ import annotations

import argparse
import ipaddress
import logging
import os
import re
import signal
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import redis

from .cache import Cacher, InMemoryCache, RedisCache
from .config import Config
from .server import Server

CACHING_ENGINE_MEMORY = "memory"
CACHING_ENGINE_REDIS = "redis"

_MAX_PORT = 65535
_DIGITS = re.compile(r"[0-9]+")
_DURATION_COMPONENT = re.compile(r"([0-9]*(?:\.[0-9]*)?)(ns|us|µs|μs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _executable_dir() -> str:
    return os.path.dirname(os.path.abspath(sys.argv[0] if sys.argv and sys.argv[0] else "."))


def parse_duration(text: str) -> float:
    """Parse a duration such as ``30m``, ``1h30m`` or ``1.5s`` into seconds."""
    rest = text
    sign = 1.0
    if rest and rest[0] in "+-":
        sign = -1.0 if rest[0] == "-" else 1.0
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')

    total = 0.0
    position = 0
    while position < len(rest):
        match = _DURATION_COMPONENT.match(rest, position)
        if match is None or not any(ch.isdigit() for ch in match.group(1)):
            raise ValueError(f'time: invalid duration "{text}"')
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        position = match.end()
    return sign * total


def _parse_port(value: str) -> int | None:
    if not _DIGITS.fullmatch(value):
        return None
    port = int(value)
    return port if port <= _MAX_PORT else None


def _is_ip(value: str) -> bool:
    if not value or "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


@dataclass
class ServeFlags:
    """Options of the ``serve`` command."""

    listen: str = "0.0.0.0"
    port: int = 8080
    resources_dir: str = field(default_factory=lambda: os.path.join(_executable_dir(), "web"))
    config: str = field(
        default_factory=lambda: os.path.join(_executable_dir(), "configs", "config.yml")
    )
    caching_engine: str = CACHING_ENGINE_MEMORY
    cache_ttl: str = "30m"
    redis_dsn: str = "redis://127.0.0.1:6379/0"

    def override_using_env(self) -> None:
        """Replace options with values of the environment variables that are set."""
        environ = os.environ
        if "LISTEN_ADDR" in environ:
            self.listen = environ["LISTEN_ADDR"]
        if "LISTEN_PORT" in environ:
            value = environ["LISTEN_PORT"]
            port = _parse_port(value)
            if port is None:
                raise ValueError(f"wrong TCP port environment variable [{value}] value")
            self.port = port
        if "RESOURCES_DIR" in environ:
            self.resources_dir = environ["RESOURCES_DIR"]
        if "CONFIG_PATH" in environ:
            self.config = environ["CONFIG_PATH"]
        if "CACHING_ENGINE" in environ:
            self.caching_engine = environ["CACHING_ENGINE"]
        if "CACHE_TTL" in environ:
            self.cache_ttl = environ["CACHE_TTL"]
        if "REDIS_DSN" in environ:
            self.redis_dsn = environ["REDIS_DSN"]

    def validate(self) -> None:
        """Raise ValueError when an option holds an unusable value."""
        if not _is_ip(self.listen):
            raise ValueError(f"wrong IP address [{self.listen}] for listening")
        if self.resources_dir and not os.path.isdir(self.resources_dir):
            raise ValueError(f"wrong resources directory [{self.resources_dir}] path")
        if not os.path.isfile(self.config):
            raise ValueError(f"config file [{self.config}] was not found")

        if self.caching_engine == CACHING_ENGINE_REDIS:
            try:
                redis.ConnectionPool.from_url(self.redis_dsn)
            except ValueError as exc:
                raise ValueError(f"wrong redis DSN [{self.redis_dsn}]: {exc}") from exc
        elif self.caching_engine != CACHING_ENGINE_MEMORY:
            raise ValueError(f"unsupported caching engine: {self.caching_engine}")

        try:
            parse_duration(self.cache_ttl)
        except ValueError as exc:
            raise ValueError(f"wrong cache lifetime [{self.cache_ttl}] period") from exc


def _port_argument(value: str) -> int:
    if not _DIGITS.fullmatch(value):
        raise argparse.ArgumentTypeError(
            f'invalid argument "{value}" for "-p, --port" flag: invalid syntax'
        )
    if int(value) > _MAX_PORT:
        raise argparse.ArgumentTypeError(
            f'invalid argument "{value}" for "-p, --port" flag: value out of range'
        )
    return int(value)


def add_serve_arguments(parser: argparse.ArgumentParser) -> None:
    """Add the ``serve`` options to an argument parser."""
    defaults = ServeFlags()
    parser.add_argument(
        "-l", "--listen", default=defaults.listen,
        help="IP address to listen on [$LISTEN_ADDR]",
    )
    parser.add_argument(
        "-p", "--port", type=_port_argument, default=defaults.port,
        help="TCP port number [$LISTEN_PORT]",
    )
    parser.add_argument(
        "-r", "--resources-dir", dest="resources_dir", default=defaults.resources_dir,
        help="path to the directory with public assets [$RESOURCES_DIR]",
    )
    parser.add_argument(
        "-c", "--config", default=defaults.config,
        help="config file path [$CONFIG_PATH]",
    )
    parser.add_argument(
        "--caching-engine", dest="caching_engine", default=defaults.caching_engine,
        help=f"caching engine ({CACHING_ENGINE_MEMORY}|{CACHING_ENGINE_REDIS}) [$CACHING_ENGINE]",
    )
    parser.add_argument(
        "--cache-ttl", dest="cache_ttl", default=defaults.cache_ttl,
        help="cache entries lifetime (examples: 50s, 1h30m) [$CACHE_TTL]",
    )
    parser.add_argument(
        "--redis-dsn", dest="redis_dsn", default=defaults.redis_dsn,
        help='redis server DSN (format: "redis://<user>:<password>@<host>:<port>/<db_number>") '
        "[$REDIS_DSN]",
    )


def _create_cacher(flags: ServeFlags, ttl: float) -> tuple[Cacher, Any]:
    if flags.caching_engine == CACHING_ENGINE_MEMORY:
        return InMemoryCache(ttl, 1.0), None
    if flags.caching_engine == CACHING_ENGINE_REDIS:
        client = redis.Redis.from_url(flags.redis_dsn)
        try:
            client.ping()
        except Exception:
            client.close()
            raise
        return RedisCache(client, ttl), client
    raise ValueError("unsupported caching engine")


def _subscribe(handler: Callable[[int, Any], None]) -> dict[int, Any]:
    if threading.current_thread() is not threading.main_thread():
        return {}
    return {sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)}


def _restore(previous: dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler if handler is not None else signal.SIG_DFL)


def run(config: Config, flags: ServeFlags, logger: logging.Logger) -> None:
    """Serve until an interrupt or termination signal arrives; raise when serving fails."""
    ttl = parse_duration(flags.cache_ttl)
    stopping = threading.Event()
    wake = threading.Event()
    received: list[int] = []

    def on_signal(signum: int, _frame: Any) -> None:
        received.append(signum)
        stopping.set()
        wake.set()

    previous = _subscribe(on_signal)
    cacher: Cacher | None = None
    redis_client: Any = None
    try:
        cacher, redis_client = _create_cacher(flags, ttl)
        server = Server(config, cacher, logger, flags.resources_dir, redis_client, stopping)
        server.register()

        errors: list[BaseException] = []

        def serve() -> None:
            try:
                server.start(flags.listen, flags.port)
            except Exception as exc:  # noqa: BLE001 - handed over to the caller
                errors.append(exc)
            finally:
                wake.set()

        fields = {
            "addr": flags.listen,
            "port": flags.port,
            "resources": flags.resources_dir,
            "config_file": flags.config,
            "caching_engine": flags.caching_engine,
            "cache_ttl": ttl,
        }
        if flags.caching_engine == CACHING_ENGINE_REDIS:
            fields["redis_dsn"] = flags.redis_dsn
        logger.info("Server starting", extra=fields)
        if not flags.resources_dir:
            logger.warning("Resources directory was not provided")

        thread = threading.Thread(target=serve, name="http-server", daemon=True)
        thread.start()

        while not wake.wait(0.1):
            pass

        if errors:
            raise errors[0]

        if received:
            logger.warning(
                "Stopping by OS signal..", extra={"signal": signal.Signals(received[0]).name}
            )
        logger.debug("Server stopping")
        stopping.set()
        server.stop()
        thread.join(5)
    finally:
        _restore(previous)
        if isinstance(cacher, InMemoryCache):
            cacher.close()
        if redis_client is not None:
            redis_client.close()