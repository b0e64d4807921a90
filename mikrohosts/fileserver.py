"""Static files server with pluggable error pages."""

from __future__ import annotations

import json
import mimetypes
import posixpath
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path

from werkzeug.http import HTTP_STATUS_CODES
from werkzeug.wrappers import Request, Response

DEFAULT_FALLBACK_ERROR_CONTENT = (
    "<html><body><h1>Error {{ code }}</h1><h2>{{ message }}</h2></body></html>"
)
DEFAULT_INDEX_FILE_NAME = "index.html"

_HTML_CONTENT_TYPE = "text/html; charset=utf-8"
_SNIFF_LENGTH = 512


def status_text(code: int) -> str:
    """Return the standard reason phrase for an HTTP status code, or an empty string."""
    return HTTP_STATUS_CODES.get(code, "")


class ErrorPageTemplate(str):
    """Error page text where ``{{ code }}`` and ``{{ message }}`` are replaced."""

    def build(self, code: int) -> str:
        """Return the page for the given HTTP status code."""
        return str(self).replace("{{ code }}", str(code)).replace(
            "{{ message }}", status_text(code)
        )


@dataclass
class Settings:
    """File server options."""

    files_root: str = ""
    index_file_name: str = ""
    error_file_name: str = ""
    redirect_index_file_to_root: bool = False


ErrorHandler = Callable[[Request, "FileServer", int], "Response | None"]


def json_error_handler(request: Request, server: FileServer, code: int) -> Response | None:
    """Answer with a JSON error when the client accepts JSON."""
    if "json" not in request.headers.get("Accept", ""):
        return None
    body = json.dumps({"code": code, "message": status_text(code)}) + "\n"
    return Response(body, status=code, content_type="application/json; charset=utf-8")


def static_html_page_error_handler(
    request: Request, server: FileServer, code: int
) -> Response | None:
    """Answer with the configured error page file, when it can be read."""
    name = server.settings.error_file_name
    if not name:
        return None
    try:
        template = (Path(server.settings.files_root) / name).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    return Response(
        ErrorPageTemplate(template).build(code), status=code, content_type=_HTML_CONTENT_TYPE
    )


def _content_type(path: Path, data: bytes) -> dict[str, str]:
    guessed, _ = mimetypes.guess_type(path.name)
    if guessed:
        return {"mimetype": guessed}
    head = data[:_SNIFF_LENGTH]
    try:
        head.decode("utf-8")
    except UnicodeDecodeError:
        is_text = False
    else:
        is_text = b"\x00" not in head
    if is_text:
        return {"content_type": "text/plain; charset=utf-8"}
    return {"mimetype": "application/octet-stream"}


class FileServer:
    """Serves files from a directory; error pages come from a handler stack."""

    def __init__(self, settings: Settings) -> None:
        root = Path(settings.files_root)
        if not root.exists():
            raise FileNotFoundError(f'directory "{settings.files_root}" does not exists')
        if not root.is_dir():
            raise NotADirectoryError(f'"{settings.files_root}" is not directory')

        if not settings.index_file_name:
            settings = replace(settings, index_file_name=DEFAULT_INDEX_FILE_NAME)

        self.settings = settings
        self.fallback_error_content = DEFAULT_FALLBACK_ERROR_CONTENT
        self.error_handlers: list[ErrorHandler] = [
            json_error_handler,
            static_html_page_error_handler,
        ]

    def handle_error(self, request: Request, code: int) -> Response:
        """Build an error response using the first handler that answers."""
        for handler in self.error_handlers or ():
            response = handler(request, self, code)
            if response is not None:
                return response
        return Response(
            ErrorPageTemplate(self.fallback_error_content).build(code),
            status=code,
            content_type=_HTML_CONTENT_TYPE,
        )

    def __call__(self, request: Request) -> Response:
        """Answer a request with a file, a redirect or an error page."""
        if request.method != "GET":
            return self.handle_error(request, 405)

        index = self.settings.index_file_name
        url_path = request.path

        if self.settings.redirect_index_file_to_root and index:
            if url_path.endswith("/" + index):
                location = url_path[: len(url_path) - len(index)]
                return Response(status=301, headers={"Location": location})

        if not url_path.startswith("/"):
            url_path = "/" + url_path
        if index and url_path.endswith("/"):
            url_path += index

        cleaned = posixpath.normpath("/" + url_path.lstrip("/"))
        file_path = Path(self.settings.files_root) / cleaned.lstrip("/")

        try:
            if not file_path.is_file():
                return self.handle_error(request, 404)
        except OSError:
            return self.handle_error(request, 404)

        try:
            modified = file_path.stat().st_mtime
            data = file_path.read_bytes()
        except OSError:
            return self.handle_error(request, 500)

        response = Response(data, **_content_type(file_path, data))
        response.last_modified = datetime.fromtimestamp(modified, tz=timezone.utc)
        return response.make_conditional(request, accept_ranges=True, complete_length=len(data))