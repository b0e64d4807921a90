"""Request handler wrappers: request logging, no-cache headers and error recovery."""

from __future__ import annotations

import functools
import ipaddress
import json
import logging
import time
import traceback
from collections.abc import Callable

from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Request, Response

Handler = Callable[[Request], Response]

# later headers take priority over earlier ones
_TRUSTED_HEADERS = ("X-Forwarded-For", "X-Real-IP", "CF-Connecting-IP")


def _is_ip(value: str) -> bool:
    if not value or "%" in value:
        return False
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def real_client_address(request: Request) -> str:
    """Return the client address, trusting proxy headers when they hold an IP."""
    ip = ""
    for name in _TRUSTED_HEADERS:
        value = request.headers.get(name, "")
        if value:
            ip = value.split(",", 1)[0].strip()
    if _is_ip(ip):
        return ip
    return (request.remote_addr or "").split(":")[0]


def log_requests(handler: Handler, logger: logging.Logger) -> Handler:
    """Log every processed request with its status code and duration."""

    @functools.wraps(handler)
    def wrapper(request: Request) -> Response:
        started = time.perf_counter()
        response = handler(request)
        duration = time.perf_counter() - started
        logger.info(
            "HTTP request processed",
            extra={
                "remote_addr": real_client_address(request),
                "useragent": request.headers.get("User-Agent", ""),
                "method": request.method,
                "url": request.url,
                "status_code": response.status_code,
                "duration_micro": int(duration * 1_000_000),
            },
        )
        return response

    return wrapper


def no_cache(handler: Handler) -> Handler:
    """Disable response caching unless the handler set the headers itself."""

    @functools.wraps(handler)
    def wrapper(request: Request) -> Response:
        response = handler(request)
        response.headers.setdefault("Cache-Control", "no-cache, no-store, must-revalidate")
        response.headers.setdefault("Pragma", "no-cache")
        response.headers.setdefault("Expires", "0")
        return response

    return wrapper


def recover_errors(handler: Handler, logger: logging.Logger) -> Handler:
    """Log handler failures and answer them with a JSON 500 response."""

    @functools.wraps(handler)
    def wrapper(request: Request) -> Response:
        try:
            return handler(request)
        except Exception as exc:  # noqa: BLE001 - every failure becomes a 500
            logger.error(
                "HTTP handler panic",
                extra={"error": str(exc), "stacktrace": traceback.format_exc()},
            )
            body = json.dumps(
                {"message": f"{HTTP_STATUS_CODES[500]}: {exc}", "code": 500}
            )
            return Response(body + "\n", status=500, content_type="application/json")

    return wrapper