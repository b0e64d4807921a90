"""Liveness, readiness and health checkers."""

from __future__ import annotations

from typing import Any

import httpx
import redis

_DEFAULT_HTTP_TIMEOUT = 3.0


class CheckError(Exception):
    """A check has failed."""


class HealthChecker:
    """Checks a running server through its liveness endpoint."""

    def __init__(self, client: httpx.Client | None = None) -> None:
        self._client = client if client is not None else httpx.Client(timeout=_DEFAULT_HTTP_TIMEOUT)

    def check(self, port: int) -> None:
        """Request ``/live`` on the local port; raise CheckError unless it answers 200."""
        try:
            response = self._client.get(
                f"http://127.0.0.1:{port}/live",
                headers={"User-Agent": "HealthChecker/internal"},
            )
        except httpx.HTTPError as exc:
            raise CheckError(str(exc)) from exc
        if response.status_code != 200:
            raise CheckError(f"wrong status code [{response.status_code}] from live endpoint")


class LiveChecker:
    """Liveness checker; an application that answers is alive."""

    def check(self) -> None:
        """Never fails."""


class ReadyChecker:
    """Readiness checker; pings redis when a client is given."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    def check(self) -> None:
        """Raise CheckError when the redis server does not answer."""
        if self._client is None:
            return
        try:
            self._client.ping()
        except (redis.RedisError, OSError) as exc:
            raise CheckError(str(exc)) from exc