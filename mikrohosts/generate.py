"""Generation of RouterOS static DNS scripts from remote hosts files."""

from __future__ import annotations

import io
import ipaddress
import logging
import re
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, TextIO
from urllib.parse import urlsplit

import httpx
from werkzeug.wrappers import Request, Response

from .cache import Cacher
from .config import Config
from .hostsfile import Record, parse
from .mikrotik import DNSStaticEntry, RenderingOptions, render
from .version import version as app_version

FORMAT_ROUTEROS = "routeros"

_HTTP_TIMEOUT = 10.0
_MAX_REDIRECTS = 1  # a second redirect is refused
_MAX_EXCLUDED_HOSTS = 32
_MAX_UINT32 = 2**32 - 1
_DEFAULT_REDIRECT = "127.0.0.1"
_TRIM_CHARS = " '\"\n\r"

_SCHEME = re.compile(r"([A-Za-z][A-Za-z0-9+.\-]*):")
_UNSIGNED = re.compile(r"[0-9]+")
_SIGNED = re.compile(r"[+-]?[0-9]+")


class ParamsError(ValueError):
    """The request parameters are missing or wrong."""


class _FetchError(Exception):
    """A remote source could not be used."""


class _Metrics(Protocol):
    def increment_cache_hits(self) -> None: ...

    def increment_cache_misses(self) -> None: ...

    def observe_generation_duration(self, seconds: float) -> None: ...


def contains_illegal_symbols(value: str) -> bool:
    """Tell whether the value holds characters that would break a script line."""
    return '"' in value or "\\" in value


def _ip_string(value: str) -> str | None:
    if "%" in value:
        return None
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return None
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return str(ip.ipv4_mapped)
    return str(ip)


def _parse_request_uri(raw: str) -> str | None:
    """Return the canonical form of an absolute URI or absolute path, or None."""
    if not raw or any(ch < " " or ch == "\x7f" for ch in raw):
        return None
    match = _SCHEME.match(raw)
    if match is None:
        return raw if raw.startswith("/") else None
    rest = raw[match.end():]
    if not rest.startswith("/"):
        return None
    if rest.startswith("//"):
        authority = rest[2:].split("?", 1)[0].split("/", 1)[0]
        if " " in authority:
            return None
        try:
            urlsplit("//" + authority).port
        except ValueError:
            return None
    return match.group(1).lower() + ":" + rest


def _values(query: Any, name: str) -> list[str] | None:
    if name not in query:
        return None
    if hasattr(query, "getlist"):
        return list(query.getlist(name))
    value = query[name]
    return [value] if isinstance(value, str) else list(value)


def _split_values(values: Iterable[str]) -> Iterable[str]:
    for value in values:
        yield from value.split(",")


@dataclass
class RequestParams:
    """Parameters of a script generation request."""

    sources: list[str] = field(default_factory=list)
    format: str = FORMAT_ROUTEROS
    version: str = ""
    excluded: list[str] = field(default_factory=list)
    limit: int = 0
    redirect: str = _DEFAULT_REDIRECT

    @classmethod
    def from_query(
        cls, query: Mapping[str, Any], default_redirect: str = _DEFAULT_REDIRECT
    ) -> RequestParams:
        """Read parameters from a query mapping of names to value lists."""
        params = cls(redirect=default_redirect)

        urls = _values(query, "sources_urls")
        if urls is None:
            raise ParamsError("required parameter 'sources_urls' was not found")
        params.sources = sorted(
            {uri for uri in map(_parse_request_uri, _split_values(urls)) if uri is not None}
        )

        formats = _values(query, "format")
        if formats:
            params.format = formats[0]

        versions = _values(query, "version")
        if versions:
            params.version = versions[0]

        hosts = _values(query, "excluded_hosts")
        if hosts is not None:
            params.excluded = sorted(
                {host.strip(_TRIM_CHARS) for host in _split_values(hosts) if host}
            )

        limits = _values(query, "limit")
        if limits:
            text = limits[0]
            if not _UNSIGNED.fullmatch(text) or not 0 < int(text) <= _MAX_UINT32:
                raise ParamsError("wrong 'limit' value")
            params.limit = int(text)

        redirects = _values(query, "redirect_to")
        if redirects:
            redirect = _ip_string(redirects[0])
            if redirect is None:
                raise ParamsError("wrong 'redirect_to' value (invalid IP address)")
            params.redirect = redirect

        return params

    def validate(self, max_sources: int) -> None:
        """Raise ParamsError when the sources or excluded hosts are out of bounds."""
        if not self.sources:
            raise ParamsError("empty sources list")
        if len(self.sources) > max_sources:
            raise ParamsError(f"too many sources (only {max_sources} is allowed)")
        if len(self.excluded) > _MAX_EXCLUDED_HOSTS:
            raise ParamsError("too many excluded hosts (more then 32)")


@dataclass
class _SourceData:
    url: str
    records: list[Record] = field(default_factory=list)
    cache_hit: bool = False
    cache_ttl: float = 0.0
    error: str | None = None


def _fraction(value: int, unit: int, digits: int) -> str:
    whole, rest = divmod(value, unit)
    fraction = f"{rest:0{digits}d}".rstrip("0")
    return f"{whole}.{fraction}" if fraction else str(whole)


def _format_duration(seconds: float) -> str:
    """Format seconds the way durations are conventionally printed (``1m30s``, ``2.5ms``)."""
    nanos = round(seconds * 1_000_000_000)
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{_fraction(nanos, 1_000, 3)}µs"
    if nanos < 1_000_000_000:
        return f"{sign}{_fraction(nanos, 1_000_000, 6)}ms"
    total_seconds, rest = divmod(nanos, 1_000_000_000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    text = f"{hours}h" if hours else ""
    if hours or minutes:
        text += f"{minutes}m"
    text += _fraction(secs * 1_000_000_000 + rest, 1_000_000_000, 9) + "s"
    return sign + text


def _round_seconds(seconds: float) -> int:
    return int(seconds + 0.5) if seconds >= 0 else -int(-seconds + 0.5)


def _comment(out: TextIO, *lines: str) -> None:
    for line in lines:
        out.write(f"## {line}\n")


def _collect_names(
    records: Iterable[Record], names: set[str], excludes: set[str], limit: int
) -> None:
    for record in records:
        if record.host:
            if len(names) >= limit:
                return
            if not contains_illegal_symbols(record.host) and record.host not in excludes:
                names.add(record.host)
        for name in record.additional_hosts:
            if len(names) >= limit:
                return
            if name in excludes:
                continue
            if not contains_illegal_symbols(name):
                names.add(name)


class ScriptGenerator:
    """Builds RouterOS scripts that redirect the hosts of remote hosts files."""

    def __init__(
        self,
        config: Config,
        cacher: Cacher,
        metrics: _Metrics,
        logger: logging.Logger | None = None,
        client: httpx.Client | None = None,
        done: threading.Event | None = None,
    ) -> None:
        script = config.router_script
        if contains_illegal_symbols(script.comment):
            raise ValueError("wrong config: script comment contains illegal symbols")
        if script.max_sources_count <= 0:
            raise ValueError("wrong config: max sources count")

        self._config = config
        self._cacher = cacher
        self._metrics = metrics
        self._log = logger if logger is not None else logging.getLogger(__name__)
        self._client = client if client is not None else httpx.Client(
            timeout=_HTTP_TIMEOUT, follow_redirects=True, max_redirects=_MAX_REDIRECTS
        )
        self._done = done
        self.default_redirect = _ip_string(script.redirect_address) or _DEFAULT_REDIRECT

    def __call__(self, request: Request | None) -> Response:
        """Answer an HTTP request with a generated script."""
        status, body = self.generate(request.args if request is not None else None)
        return Response(body, status=status, content_type="text/plain; charset=utf-8")

    def generate(self, query: Mapping[str, Any] | None) -> tuple[int, str]:
        """Generate a script for the query; return the HTTP status and the body."""
        started = time.perf_counter()
        out = io.StringIO()
        script = self._config.router_script

        if query is None:
            _comment(out, "Empty request or query parameters")
            return 400, out.getvalue()
        try:
            params = RequestParams.from_query(query, self.default_redirect)
        except ParamsError as exc:
            _comment(out, f"Query parameters error: {exc}")
            return 400, out.getvalue()
        try:
            params.validate(script.max_sources_count)
        except ParamsError as exc:
            _comment(out, f"Query parameters validation failed: {exc}")
            return 400, out.getvalue()
        if params.format != FORMAT_ROUTEROS:
            _comment(out, f"Unsupported format [{params.format}] requested")
            return 400, out.getvalue()

        _comment(
            out,
            "Script generated at " + datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            "Generator version: " + app_version(),
            f"Limit: {params.limit}",
            "Cache lifetime: " + _format_duration(_round_seconds(self._cacher.ttl)),
            "Format: " + params.format,
            "Redirect to: " + params.redirect,
            "Sources list:",
        )
        _comment(out, *(f" - <{source}>" for source in params.sources))
        if params.excluded:
            _comment(out, "Excluded hosts:")
            _comment(out, *(f" - {host}" for host in params.excluded))

        with ThreadPoolExecutor(max_workers=len(params.sources)) as pool:
            results = list(pool.map(self._load_source, params.sources))

        # the response has already started, so the status stays as it is
        if self._done is not None and self._done.is_set():
            _comment(out, "Context error: context canceled")
            return 200, out.getvalue()

        excludes = set(params.excluded)
        total_records = sum(len(data.records) for data in results if data.error is None)
        limit = params.limit or total_records
        names: set[str] = set()

        for data in results:
            if data.error is not None:
                _comment(out, f"Source <{data.url}> error: {data.error}")
                continue
            if data.cache_hit:
                self._metrics.increment_cache_hits()
                expires = _format_duration(_round_seconds(data.cache_ttl))
                _comment(out, f"Cache HIT for <{data.url}> (expires after {expires})")
            else:
                self._metrics.increment_cache_misses()
                _comment(out, f"Cache miss for <{data.url}>")
            _collect_names(data.records, names, excludes, limit)

        if not names:
            _comment(out, "Script generation failed (empty hosts list)")
            return 200, out.getvalue()

        entries = [
            DNSStaticEntry(address=params.redirect, comment=script.comment, name=name)
            for name in sorted(names)
        ]
        out.write("\n/ip dns static\n")
        render(entries, out, RenderingOptions(prefix="add"))
        out.write("\n\n")

        _comment(
            out,
            f"Records count: {len(entries)} ({total_records - len(entries)} records ignored)",
        )
        elapsed = time.perf_counter() - started
        _comment(out, f"Generated in {_format_duration(elapsed)}")
        self._metrics.observe_generation_duration(elapsed)
        return 200, out.getvalue()

    def _cached(self, url: str) -> Any:
        try:
            return self._cacher.get(url)
        except Exception:  # noqa: BLE001 - any cache failure means fetching again
            return None

    def _load_source(self, url: str) -> _SourceData:
        hit = self._cached(url)
        if hit is not None:
            try:
                records = parse(hit.data)
            except ValueError as exc:
                return _SourceData(url, cache_hit=True, error=str(exc))
            return _SourceData(url, records, cache_hit=True, cache_ttl=hit.ttl)

        try:
            data = self._fetch(url)
        except (httpx.HTTPError, httpx.InvalidURL, _FetchError) as exc:
            self._log.warning("remote source fetching failed", extra={"error": str(exc), "url": url})
            return _SourceData(url, error=str(exc))

        try:
            self._cacher.put(url, data)
        except Exception as exc:  # noqa: BLE001 - reported per source
            self._log.error("cache writing error", extra={"error": str(exc), "url": url})
            return _SourceData(url, error=str(exc))

        try:
            records = parse(data)
        except ValueError as exc:
            return _SourceData(url, error=str(exc))
        return _SourceData(url, records, cache_ttl=self._cacher.ttl)

    def _fetch(self, url: str) -> bytes:
        with self._client.stream("GET", url) as response:
            code = response.status_code
            if code < 200 or code >= 400:
                raise _FetchError(f"wrong response code: {code}")

            content_type = response.headers.get("Content-Type", "")
            if not content_type.startswith("text/plain"):
                raise _FetchError(
                    f"wrong Content-Type response header [{content_type}] (text/plain* is required)"
                )

            length = response.headers.get("Content-Length", "")
            if length:
                if not _SIGNED.fullmatch(length):
                    raise _FetchError(
                        f'header Content-Length parsing error: parsing "{length}": invalid syntax'
                    )
                maximum = self._config.router_script.max_source_size_bytes
                if int(length) >= maximum:
                    raise _FetchError(
                        f"header Content-Length value [{int(length)}] is too big (max: {maximum})"
                    )

            return response.read()