import re
import threading

import httpx
import pytest
from werkzeug.wrappers import Request

from mikrohosts.cache import InMemoryCache
from mikrohosts.config import Config
from mikrohosts.generate import (
    ParamsError,
    RequestParams,
    ScriptGenerator,
    contains_illegal_symbols,
)


def _hosts(prefix, count, ip="0.0.0.0"):
    return "".join(f"{ip} {prefix}{i}.example.com\n" for i in range(count))


AD_SERVERS = ("# ad servers\n" + _hosts("ad", 2000)).encode()
ADAWAY = ("# adaway\n127.0.0.1 localhost\n" + _hosts("adaway", 500, "127.0.0.1")).encode()

FILES = {
    ("mock", "/ad_servers.txt"): AD_SERVERS,
    ("mock", "/hosts_adaway.txt"): ADAWAY,
}

TEXT_PLAIN = {"Content-Type": "text/plain; charset=utf-8"}


def _mock_handler(request):
    content = FILES.get((request.url.host, request.url.path))
    if content is None:
        return httpx.Response(404, headers=TEXT_PLAIN, content=b"Requested file was not found")
    return httpx.Response(200, headers=TEXT_PLAIN, content=content)


class FakeMetrics:
    def __init__(self):
        self.hits = 0
        self.misses = 0
        self.duration = None

    def increment_cache_hits(self):
        self.hits += 1

    def increment_cache_misses(self):
        self.misses += 1

    def observe_generation_duration(self, seconds):
        self.duration = seconds


def create_config():
    cfg = Config()
    cfg.router_script.max_sources_count = 10
    cfg.router_script.comment = "foo"
    cfg.router_script.max_source_size_bytes = 2097152
    return cfg


@pytest.fixture
def cacher():
    with InMemoryCache(60, 1) as cache:
        yield cache


def make_generator(cacher, metrics, handler=_mock_handler, config=None, done=None):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return ScriptGenerator(config or create_config(), cacher, metrics, client=client, done=done)


def _script_lines(body):
    return [line for line in body.splitlines() if line and not line.startswith("#")]


MAIN_QUERY = (
    "format=routeros"
    "&version=v0.0.666@1a0339c"
    "&redirect_to=127.0.0.5"
    "&limit=1234"
    "&sources_urls="
    "https%3A%2F%2Fmock%2Fad_servers.txt"
    ",http://mock/hosts_adaway.txt"
    ",http://non-existing-file.txt"
    ",http://non-existing-file2.txt"
    "&excluded_hosts="
    "aaa.com"
    ",bbb.org"
    ",localhost"
)


def test_serve_http(cacher):
    metrics = FakeMetrics()
    generator = make_generator(cacher, metrics)
    request = Request.from_values(query_string=MAIN_QUERY)

    response = generator(request)
    body = response.get_data(as_text=True)

    assert response.status_code == 200
    assert re.search(r"Cache.+miss.+http://mock/hosts_adaway\.txt", body)
    assert re.search(r"Cache.+miss.+https://mock/ad_servers\.txt", body)
    assert re.search(r"Source.+non-existing-file\.txt.+404", body)
    assert re.search(r"Source.+non-existing-file2\.txt.+404", body)
    assert re.search(r"Excluded hosts.+aaa\.com.+bbb\.org.+localhost", body, re.DOTALL)
    assert "/ip dns static" in body
    assert body.count('add address=127.0.0.5 comment="foo" disabled=no') == 1234
    assert len(_script_lines(body)) == 1234 + 1
    assert 'name="localhost"' not in body
    assert "## Limit: 1234\n" in body
    assert "## Cache lifetime: 1m0s\n" in body
    assert "## Redirect to: 127.0.0.5\n" in body

    response = generator(request)
    body = response.get_data(as_text=True)

    assert re.search(r"Cache.+HIT.+http://mock/hosts_adaway\.txt", body)
    assert re.search(r"Cache.+HIT.+https://mock/ad_servers\.txt", body)
    assert re.search(r"Source.+non-existing-file\.txt.+404", body)
    assert len(_script_lines(body)) == 1234 + 1

    assert metrics.misses == 2
    assert metrics.hits == 2
    assert metrics.duration is not None and metrics.duration >= 0


EXCLUDING_CONTENT = b"""
4.3.2.1 ___id___.c.mystat-in.net\t\t# comment with double tab
1.1.1.1 a.cn b.cn a.cn # "a.cn" is duplicate

::1  localfoo
2606:4700:4700::1111 cloudflare #[cf]

broken line format

0.0.0.1\texample.com
0.0.0.1 example.com # duplicate
"""


def test_serve_http_hostnames_excluding(cacher):
    metrics = FakeMetrics()
    generator = make_generator(
        cacher,
        metrics,
        handler=lambda request: httpx.Response(200, headers=TEXT_PLAIN, content=EXCLUDING_CONTENT),
    )
    request = Request.from_values(
        query_string="&sources_urls=https%3A%2F%2Fmock%2Fad_servers.txt&excluded_hosts=a.cn"
    )

    body = generator(request).get_data(as_text=True)

    assert 'name="a.cn"' not in body
    assert 'name="___id___.c.mystat-in.net"' in body
    assert 'name="b.cn"' in body
    assert 'name="localfoo"' in body
    assert 'name="cloudflare"' in body
    assert 'name="example.com"' in body
    assert "/ip dns static" in body
    assert body.count('add address=127.0.0.1 comment="foo" disabled=no') == 5
    assert metrics.hits == 0
    assert metrics.misses == 1


def test_serve_http_without_request(cacher):
    metrics = FakeMetrics()
    response = make_generator(cacher, metrics)(None)

    assert response.status_code == 400
    assert response.get_data(as_text=True) == "## Empty request or query parameters\n"
    assert (metrics.hits, metrics.misses) == (0, 0)


def test_serve_http_without_sources_urls(cacher):
    metrics = FakeMetrics()
    response = make_generator(cacher, metrics)(Request.from_values(query_string=""))

    assert response.status_code == 400
    assert re.search(r"## Query parameters error.*sources_urls", response.get_data(as_text=True))
    assert (metrics.hits, metrics.misses) == (0, 0)


def test_serve_http_empty_sources_urls(cacher):
    metrics = FakeMetrics()
    response = make_generator(cacher, metrics)(Request.from_values(query_string="sources_urls="))

    assert response.status_code == 400
    assert re.search(r"## Query parameters.*fail.*empty.*sources", response.get_data(as_text=True))
    assert (metrics.hits, metrics.misses) == (0, 0)


def test_serve_http_wrong_format(cacher):
    metrics = FakeMetrics()
    request = Request.from_values(query_string="sources_urls=http://foo&format=foobar")
    response = make_generator(cacher, metrics)(request)

    assert response.status_code == 400
    assert re.search(r"## Unsupported format.*foobar", response.get_data(as_text=True))
    assert (metrics.hits, metrics.misses) == (0, 0)


def test_generate_too_many_sources(cacher):
    config = create_config()
    config.router_script.max_sources_count = 1
    status, body = make_generator(cacher, FakeMetrics(), config=config).generate(
        {"sources_urls": ["http://a.com,http://b.com"]}
    )

    assert status == 400
    assert "too many sources (only 1 is allowed)" in body


def test_generate_source_too_big(cacher):
    config = create_config()
    config.router_script.max_source_size_bytes = 10
    status, body = make_generator(cacher, FakeMetrics(), config=config).generate(
        {"sources_urls": ["http://mock/hosts_adaway.txt"]}
    )

    assert status == 200
    assert f"Content-Length value [{len(ADAWAY)}] is too big (max: 10)" in body
    assert "## Script generation failed (empty hosts list)\n" in body


def test_generate_wrong_content_type(cacher):
    generator = make_generator(
        cacher,
        FakeMetrics(),
        handler=lambda request: httpx.Response(
            200, headers={"Content-Type": "text/html"}, content=b"1.1.1.1 foo.com"
        ),
    )
    _, body = generator.generate({"sources_urls": ["http://mock/page"]})

    assert "wrong Content-Type response header [text/html] (text/plain* is required)" in body


def test_generate_without_limit_uses_records_count(cacher):
    generator = make_generator(
        cacher,
        FakeMetrics(),
        handler=lambda request: httpx.Response(
            200, headers=TEXT_PLAIN, content=b"1.1.1.1 a.com b.com c.com\n"
        ),
    )
    _, body = generator.generate({"sources_urls": ["http://mock/list.txt"]})

    assert len(_script_lines(body)) == 1 + 1
    assert 'name="a.com"' in body
    assert 'name="b.com"' not in body
    assert "Records count: 1 (0 records ignored)" in body


def test_generate_default_redirect_from_config(cacher):
    config = create_config()
    config.router_script.redirect_address = "0.0.0.0"
    generator = make_generator(cacher, FakeMetrics(), config=config)
    _, body = generator.generate({"sources_urls": ["http://mock/hosts_adaway.txt"]})

    assert "## Redirect to: 0.0.0.0\n" in body
    assert 'add address=0.0.0.0 comment="foo" disabled=no name="localhost"' in body


def test_invalid_redirect_in_config_falls_back(cacher):
    config = create_config()
    config.router_script.redirect_address = "nope"
    generator = make_generator(cacher, FakeMetrics(), config=config)

    assert generator.default_redirect == "127.0.0.1"


def test_generate_with_done_event(cacher):
    done = threading.Event()
    done.set()
    generator = make_generator(cacher, FakeMetrics(), done=done)
    _, body = generator.generate({"sources_urls": ["http://mock/hosts_adaway.txt"]})

    assert body.endswith("## Context error: context canceled\n")
    assert "/ip dns static" not in body


def test_constructor_rejects_illegal_comment(cacher):
    config = create_config()
    config.router_script.comment = 'bad"comment'
    with pytest.raises(ValueError, match="illegal symbols"):
        ScriptGenerator(config, cacher, FakeMetrics())


def test_constructor_rejects_zero_max_sources(cacher):
    config = create_config()
    config.router_script.max_sources_count = 0
    with pytest.raises(ValueError, match="max sources count"):
        ScriptGenerator(config, cacher, FakeMetrics())


@pytest.mark.parametrize(
    ("value", "expected"),
    [('a"b', True), ("a\\b", True), ("abc", False), ("", False)],
)
def test_contains_illegal_symbols(value, expected):
    assert contains_illegal_symbols(value) is expected


def test_params_sources_deduplicated_and_sorted():
    params = RequestParams.from_query(
        {"sources_urls": ["http://b.com,http://a.com", "http://a.com,not a url", "HTTP://x.com/a"]}
    )

    assert params.sources == ["http://a.com", "http://b.com", "http://x.com/a"]
    assert params.format == "routeros"
    assert params.limit == 0


def test_params_missing_sources():
    with pytest.raises(ParamsError, match="sources_urls"):
        RequestParams.from_query({"format": ["routeros"]})


@pytest.mark.parametrize("limit", ["0", "-1", "abc", "4294967296", "+5"])
def test_params_wrong_limit(limit):
    with pytest.raises(ParamsError, match="wrong 'limit' value"):
        RequestParams.from_query({"sources_urls": ["http://a.com"], "limit": [limit]})


def test_params_limit():
    params = RequestParams.from_query({"sources_urls": ["http://a.com"], "limit": ["10"]})
    assert params.limit == 10


def test_params_wrong_redirect():
    with pytest.raises(ParamsError, match="invalid IP address"):
        RequestParams.from_query({"sources_urls": ["http://a.com"], "redirect_to": ["999.1.1.1"]})


def test_params_redirect_mapped_ipv4():
    params = RequestParams.from_query(
        {"sources_urls": ["http://a.com"], "redirect_to": ["::ffff:1.2.3.4"]}
    )
    assert params.redirect == "1.2.3.4"


def test_params_excluded_trimmed():
    params = RequestParams.from_query(
        {"sources_urls": ["http://a.com"], "excluded_hosts": ["'foo', \"bar\",,foo"]}
    )
    assert params.excluded == ["bar", "foo"]


def test_params_default_redirect():
    params = RequestParams.from_query({"sources_urls": "http://a.com"}, "10.0.0.1")
    assert params.redirect == "10.0.0.1"
    assert params.sources == ["http://a.com"]


def test_validate_empty_sources():
    with pytest.raises(ParamsError, match="empty sources list"):
        RequestParams().validate(10)


def test_validate_too_many_sources():
    params = RequestParams(sources=["http://a", "http://b", "http://c"])
    with pytest.raises(ParamsError, match=re.escape("too many sources (only 2 is allowed)")):
        params.validate(2)


def test_validate_too_many_excluded():
    params = RequestParams(sources=["http://a"], excluded=[f"h{i}" for i in range(33)])
    with pytest.raises(ParamsError, match="too many excluded hosts"):
        params.validate(2)