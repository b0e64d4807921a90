"""Command line interface: the root command and its subcommands."""

from __future__ import annotations

import argparse
import os
import platform
import re
import sys
from collections.abc import Sequence

from .checkers import HealthChecker
from .config import from_yaml_file
from .logger import new_logger
from .serve import ServeFlags, add_serve_arguments
from .serve import run as run_server
from .version import version

_DEFAULT_PROG = "mikrohosts"
_DEFAULT_PORT = 8080
_MAX_PORT = 65535
_DIGITS = re.compile(r"[0-9]+")
_RED_BOLD = "\033[1;91m"
_RESET = "\033[0m"


class CommandError(Exception):
    """The command line could not be parsed or a command failed."""


class _Parser(argparse.ArgumentParser):
    """Argument parser that raises instead of exiting and titles its help sections."""

    @staticmethod
    def _capitalize(text: str) -> str:
        return "Usage:" + text[len("usage:"):] if text.startswith("usage:") else text

    def format_help(self) -> str:
        return self._capitalize(super().format_help())

    def format_usage(self) -> str:
        return self._capitalize(super().format_usage())

    def error(self, message: str) -> None:  # type: ignore[override]
        raise CommandError(message)


def _port_type(value: str) -> int:
    if not _DIGITS.fullmatch(value):
        raise argparse.ArgumentTypeError(
            f'invalid argument "{value}" for "-p, --port" flag: invalid syntax'
        )
    if int(value) > _MAX_PORT:
        raise argparse.ArgumentTypeError(
            f'invalid argument "{value}" for "-p, --port" flag: value out of range'
        )
    return int(value)


def healthcheck_port(port: int) -> int:
    """Return the port to check: the ``LISTEN_PORT`` variable wins over ``port`` when set."""
    value = os.environ.get("LISTEN_PORT", "")
    if not value:
        return port
    if not _DIGITS.fullmatch(value) or int(value) > _MAX_PORT:
        raise CommandError(f"wrong TCP port environment variable [{value}] value")
    return int(value)


def _add_root_flags(parser: argparse.ArgumentParser, suppress: bool) -> None:
    group = parser.add_argument_group("Global Flags" if suppress else "Flags")
    default: object = argparse.SUPPRESS if suppress else False
    group.add_argument("-v", "--verbose", action="store_true", default=default,
                       help="verbose output")
    group.add_argument("--debug", action="store_true", default=default, help="debug output")
    group.add_argument("--log-json", dest="log_json", action="store_true", default=default,
                       help="logs in JSON format")


def _run_version(args: argparse.Namespace) -> None:
    sys.stdout.write(f"app version:\t{version()} (Python {platform.python_version()})\n")


def _run_healthcheck(args: argparse.Namespace) -> None:
    HealthChecker().check(healthcheck_port(args.port))


def _run_serve(args: argparse.Namespace) -> None:
    flags = ServeFlags(
        listen=args.listen,
        port=args.port,
        resources_dir=args.resources_dir,
        config=args.config,
        caching_engine=args.caching_engine,
        cache_ttl=args.cache_ttl,
        redis_dsn=args.redis_dsn,
    )
    try:
        flags.override_using_env()
        flags.validate()
    except ValueError as exc:
        raise CommandError(str(exc)) from exc

    config = from_yaml_file(flags.config, True)
    logger = new_logger(args.verbose, args.debug, args.log_json)
    run_server(config, flags, logger)


def build_parser(prog: str = _DEFAULT_PROG) -> argparse.ArgumentParser:
    """Build the root command parser with its ``serve``, ``version`` and ``healthcheck`` commands."""
    parser = _Parser(prog=prog, add_help=False)
    parser.add_argument_group("Flags").add_argument(
        "-h", "--help", action="help", help="help for " + prog
    )
    _add_root_flags(parser, suppress=False)
    parser.set_defaults(command=None, handler=None)

    commands = parser.add_subparsers(title="Available Commands", metavar="<command>")

    serve = commands.add_parser(
        "serve", aliases=["s", "server"], help="Start HTTP server",
        description="Start HTTP server. Environment variables have higher priority then flags",
    )
    add_serve_arguments(serve)
    _add_root_flags(serve, suppress=True)
    serve.set_defaults(command="serve", handler=_run_serve)

    version_cmd = commands.add_parser(
        "version", aliases=["v", "ver"], help="Display application version"
    )
    _add_root_flags(version_cmd, suppress=True)
    version_cmd.set_defaults(command="version", handler=_run_version)

    health = commands.add_parser(
        "healthcheck", aliases=["chk", "health", "check"], help=argparse.SUPPRESS,
        description="Health checker for the HTTP server. Use case - docker healthcheck.",
    )
    health.add_argument("-p", "--port", type=_port_type, default=_DEFAULT_PORT,
                        help="TCP port number [$LISTEN_PORT]")
    _add_root_flags(health, suppress=True)
    health.set_defaults(command="healthcheck", handler=_run_healthcheck)

    parser.command_names = frozenset(commands.choices)  # type: ignore[attr-defined]
    return parser


def _check_command(parser: argparse.ArgumentParser, argv: Sequence[str]) -> None:
    names = getattr(parser, "command_names", frozenset())
    for arg in argv:
        if arg == "--":
            return
        if arg.startswith("-"):
            continue
        if arg not in names:
            raise CommandError(f'unknown command "{arg}" for "{parser.prog}"')
        return


def _print_error(message: str) -> None:
    if sys.stderr.isatty():
        message = f"{_RED_BOLD}{message}{_RESET}"
    sys.stderr.write(message + "\n")


def main(argv: Sequence[str] | None = None) -> int:
    """Run the command line; return the process exit code."""
    arguments = list(sys.argv[1:] if argv is None else argv)
    prog = os.path.basename(sys.argv[0]) if sys.argv and sys.argv[0] else _DEFAULT_PROG
    parser = build_parser(prog)

    try:
        _check_command(parser, arguments)
        args = parser.parse_args(arguments)
        if args.handler is None:
            parser.print_help(sys.stdout)
            return 0
        args.handler(args)
    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 0
    except Exception as exc:  # noqa: BLE001 - every failure is reported and ends with code 1
        _print_error(str(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())