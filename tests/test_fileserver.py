import json

import pytest
from werkzeug.test import EnvironBuilder
from werkzeug.wrappers import Request, Response

from mikrohosts.fileserver import (
    ErrorPageTemplate,
    FileServer,
    Settings,
    json_error_handler,
    static_html_page_error_handler,
)


def make_request(path="/", method="GET", headers=None):
    return Request(EnvironBuilder(path=path, method=method, headers=headers or {}).get_environ())


def test_error_page_template_string():
    assert str(ErrorPageTemplate("foo")) == "foo"


def test_error_page_template_build():
    assert ErrorPageTemplate("foo {{ code }} <> {{ message }}").build(200) == "foo 200 <> OK"


def test_json_error_handler(tmp_path):
    fs = FileServer(Settings(files_root=str(tmp_path)))

    assert json_error_handler(make_request(), fs, 404) is None

    response = json_error_handler(make_request(headers={"Accept": "application/json"}), fs, 404)
    assert response is not None
    assert response.status_code == 404
    assert response.headers["Content-Type"] == "application/json; charset=utf-8"
    assert json.loads(response.get_data(as_text=True)) == {"code": 404, "message": "Not Found"}


def test_static_html_page_error_handler(tmp_path):
    fs = FileServer(Settings(files_root=str(tmp_path)))

    assert static_html_page_error_handler(make_request(), fs, 404) is None

    (tmp_path / "error.html").write_text("template: {{ message }} | {{ code }}")
    fs.settings.error_file_name = "error.html"

    response = static_html_page_error_handler(make_request(), fs, 502)
    assert response is not None
    assert response.status_code == 502
    assert response.headers["Content-Type"] == "text/html; charset=utf-8"
    assert response.get_data(as_text=True) == "template: Bad Gateway | 502"

    response = static_html_page_error_handler(make_request(), fs, 404)
    assert response.get_data(as_text=True) == "template: Not Found | 404"


def test_static_html_page_error_handler_missing_file(tmp_path):
    fs = FileServer(Settings(files_root=str(tmp_path), error_file_name="missing.html"))
    assert static_html_page_error_handler(make_request(), fs, 404) is None


def test_new_file_server_wrong_directory(tmp_path):
    with pytest.raises(FileNotFoundError, match="not exists"):
        FileServer(Settings(files_root=str(tmp_path / "qwertyuiopasdfghjkl")))

    file = tmp_path / "foo"
    file.write_text("")
    with pytest.raises(NotADirectoryError, match="not directory"):
        FileServer(Settings(files_root=str(file)))


def test_default_index_file_name(tmp_path):
    fs = FileServer(Settings(files_root=str(tmp_path)))
    assert fs.settings.index_file_name == "index.html"


def serve(tmp_path, path, settings=None, dirs=(), files=None, headers=None, method="GET", before=None):
    for directory in dirs:
        (tmp_path / directory).mkdir()
    for name, content in (files or {}).items():
        (tmp_path / name).write_bytes(content)
    settings = settings or Settings()
    if not settings.files_root:
        settings.files_root = str(tmp_path)
    fs = FileServer(settings)
    if before is not None:
        before(fs)
    return fs(make_request(path=path, method=method, headers=headers))


def test_request_without_uri(tmp_path):
    response = serve(tmp_path, "")
    assert response.status_code == 404
    assert "Not Found" in response.get_data(as_text=True)


def test_static_file_serving(tmp_path):
    response = serve(tmp_path, "/test", files={"test": b"test content"})
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "test content"


def test_static_html_file_serving(tmp_path):
    response = serve(tmp_path, "/test.html", files={"test.html": b"<p>test html content</p>"})
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "<p>test html content</p>"
    assert response.headers["Content-Type"] == "text/html; charset=utf-8"


def test_directory_above_requested(tmp_path):
    response = serve(tmp_path, "/../../../../etc/passwd")
    assert response.status_code == 404


def test_disabled_redirection(tmp_path):
    response = serve(tmp_path, "/foo/idx.html", settings=Settings(index_file_name="idx.html"))
    assert response.status_code == 404


@pytest.mark.parametrize(
    ("path", "location"),
    [("/idx.html", "/"), ("/foo/idx.html", "/foo/")],
)
def test_redirect_index_to_root(tmp_path, path, location):
    settings = Settings(index_file_name="idx.html", redirect_index_file_to_root=True)
    response = serve(tmp_path, path, settings=settings)
    assert response.status_code == 301
    assert response.headers["Location"] == location


def test_index_file_in_root(tmp_path):
    response = serve(
        tmp_path, "/", settings=Settings(index_file_name="idx.html"), files={"idx.html": b"index content"}
    )
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "index content"


def test_index_file_in_subdirectory(tmp_path):
    response = serve(
        tmp_path,
        "/foo/",
        settings=Settings(index_file_name="idx.html"),
        dirs=["foo"],
        files={"idx.html": b"index in root", "foo/idx.html": b"index in foo"},
    )
    assert response.status_code == 200
    assert response.get_data(as_text=True) == "index in foo"


def test_404_on_directory_request(tmp_path):
    response = serve(
        tmp_path,
        "/foo",
        settings=Settings(index_file_name="indx.html"),
        dirs=["foo"],
        files={"indx.html": b"index in root", "foo/indx.html": b"index in foo"},
    )
    assert response.status_code == 404


def test_custom_error_handler(tmp_path):
    def before(fs):
        fs.error_handlers = [
            lambda request, server, code: Response("foo bar", status=444, content_type="blah blah")
        ]

    response = serve(tmp_path, "/foo", before=before)
    assert response.status_code == 444
    assert response.get_data(as_text=True) == "foo bar"
    assert response.headers["Content-Type"] == "blah blah"


def test_custom_error_handler_fallback(tmp_path):
    def before(fs):
        fs.error_handlers = [lambda request, server, code: None]

    response = serve(tmp_path, "/foo", before=before)
    assert response.status_code == 404
    body = response.get_data(as_text=True)
    for expected in ("<html>", "Error 404", "Not Found", "</html>"):
        assert expected in body


def test_json_error_when_json_requested(tmp_path):
    response = serve(tmp_path, "/foo", headers={"accept": "application/json"})
    assert response.status_code == 404
    assert json.loads(response.get_data(as_text=True)) == {"code": 404, "message": "Not Found"}


def test_method_not_allowed(tmp_path):
    response = serve(tmp_path, "/test", method="POST", files={"test": b"x"})
    assert response.status_code == 405