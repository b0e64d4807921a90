"""HTTP handlers for health checks, metrics and the JSON API."""

from __future__ import annotations

import json
from collections.abc import Callable
from typing import Any, Protocol

from werkzeug.wrappers import Request, Response

from .cache import Cacher
from .config import Config
from .metrics import Registry

Handler = Callable[[Request], Response]

_METRICS_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class _Checker(Protocol):
    def check(self) -> None: ...


def health_handler(checker: _Checker) -> Handler:
    """Answer 200 when the check passes, 503 with the error text otherwise."""

    def handle(request: Request) -> Response:
        try:
            checker.check()
        except Exception as exc:  # noqa: BLE001 - any failure means unavailable
            return Response(str(exc), status=503)
        return Response(status=200)

    return handle


def metrics_handler(registry: Registry) -> Handler:
    """Answer with the registry metrics in the Prometheus text format."""

    def handle(request: Request) -> Response:
        return Response(registry.render(), status=200, content_type=_METRICS_CONTENT_TYPE)

    return handle


def _json_response(payload: bytes) -> Response:
    return Response(payload, status=200, content_type="application/json")


def _settings_payload(config: Config, cacher: Cacher) -> dict[str, Any]:
    script = config.router_script
    provided = [
        {
            "uri": source.uri,
            "name": source.name,
            "description": source.description,
            "default": source.enabled_by_default,
            "count": source.records_count,
        }
        for source in config.sources
    ]
    return {
        "sources": {
            "provided": provided or None,
            "max": script.max_sources_count,
            "max_source_size": script.max_source_size_bytes,
        },
        "redirect": {"addr": script.redirect_address},
        "records": {"comment": script.comment},
        "excludes": {"hosts": list(script.exclude_hosts) or None},
        "cache": {"lifetime_sec": int(cacher.ttl)},
    }


def settings_handler(config: Config, cacher: Cacher) -> Handler:
    """Answer with the public application settings as JSON."""
    payload = json.dumps(_settings_payload(config, cacher), separators=(",", ":")).encode("utf-8")

    def handle(request: Request) -> Response:
        return _json_response(payload)

    return handle


def version_handler(version: str) -> Handler:
    """Answer with the application version as JSON."""
    payload = json.dumps({"version": version}, separators=(",", ":")).encode("utf-8")

    def handle(request: Request) -> Response:
        return _json_response(payload)

    return handle