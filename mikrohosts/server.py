"""HTTP server: routes, middlewares and lifecycle."""

from __future__ import annotations

import logging
import mimetypes
import socket
import socketserver
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from werkzeug.wrappers import Request, Response

from .cache import Cacher
from .checkers import LiveChecker, ReadyChecker
from .config import Config
from .fileserver import FileServer, Settings
from .generate import ScriptGenerator
from .handlers import health_handler, metrics_handler, settings_handler, version_handler
from .metrics import Generator, new_registry
from .middleware import log_requests, no_cache, recover_errors
from .version import version

Handler = Callable[[Request], Response]


@dataclass(frozen=True)
class _Route:
    name: str
    path: str
    methods: tuple[str, ...]
    handler: Handler
    prefix: bool = False

    def matches(self, path: str) -> bool:
        return path.startswith(self.path) if self.prefix else path == self.path


class _ThreadingWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = True

    def server_bind(self) -> None:
        # skip the reverse name lookup done by the base class
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = str(host)
        self.server_port = port
        self.setup_environ()


class _ThreadingWSGIServer6(_ThreadingWSGIServer):
    address_family = socket.AF_INET6


class _QuietRequestHandler(WSGIRequestHandler):
    def log_message(self, *args: Any) -> None:
        """Requests are logged by the middleware instead."""


class Server:
    """The application HTTP server, a WSGI application with its own listener."""

    def __init__(
        self,
        config: Config,
        cacher: Cacher,
        logger: logging.Logger | None = None,
        resources_dir: str = "",
        redis_client: Any = None,
        done: threading.Event | None = None,
    ) -> None:
        self._config = config
        self._cacher = cacher
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._resources_dir = resources_dir
        self._redis = redis_client
        self._done = done
        self._routes: list[_Route] = []
        self._app: Handler = log_requests(recover_errors(self._dispatch, self._log), self._log)
        self._lock = threading.Lock()
        self._httpd: _ThreadingWSGIServer | None = None

    def register(self) -> None:
        """Register routes, handlers and custom mime types."""
        registry = new_registry()
        generator_metrics = Generator()
        generator_metrics.register(registry)
        generator = ScriptGenerator(
            self._config, self._cacher, generator_metrics, self._log, done=self._done
        )

        routes = [
            _Route("script_generator", "/script/source", ("GET",), generator),
            _Route(
                "api_get_settings",
                "/api/settings",
                ("GET",),
                no_cache(settings_handler(self._config, self._cacher)),
            ),
            _Route("api_get_version", "/api/version", ("GET",), no_cache(version_handler(version()))),
            _Route("metrics", "/metrics", ("GET",), metrics_handler(registry)),
            _Route("ready", "/ready", ("GET", "HEAD"), health_handler(ReadyChecker(self._redis))),
            _Route("live", "/live", ("GET", "HEAD"), health_handler(LiveChecker())),
        ]

        if self._resources_dir:
            file_server = FileServer(
                Settings(
                    files_root=self._resources_dir,
                    index_file_name="index.html",
                    error_file_name="__error__.html",
                    redirect_index_file_to_root=True,
                )
            )
            routes.append(_Route("static", "/", ("GET", "HEAD"), file_server, prefix=True))

        mimetypes.add_type("text/html", ".vue")
        self._routes = routes

    def route(self, name: str) -> _Route | None:
        """Return the registered route with the given name, or None."""
        return next((route for route in self._routes if route.name == name), None)

    @property
    def routes(self) -> Iterable[_Route]:
        return tuple(self._routes)

    def _dispatch(self, request: Request) -> Response:
        path_matched = False
        for route in self._routes:
            if not route.matches(request.path):
                continue
            path_matched = True
            if request.method in route.methods:
                return route.handler(request)
        if path_matched:
            return Response(status=405)
        return Response("404 page not found\n", status=404, content_type="text/plain; charset=utf-8")

    def __call__(self, environ: dict[str, Any], start_response: Callable[..., Any]) -> Iterable[bytes]:
        response = self._app(Request(environ))
        return response(environ, start_response)

    def start(self, ip: str, port: int) -> None:
        """Listen on the address and serve until stopped; raises OSError when binding fails."""
        host = ip or "0.0.0.0"
        server_class = _ThreadingWSGIServer6 if ":" in host else _ThreadingWSGIServer
        httpd = server_class((host, port), _QuietRequestHandler)
        httpd.set_app(self)
        with self._lock:
            self._httpd = httpd
        try:
            httpd.serve_forever(poll_interval=0.1)
        finally:
            httpd.server_close()

    def stop(self) -> None:
        """Stop serving and release the listening socket."""
        with self._lock:
            httpd, self._httpd = self._httpd, None
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()