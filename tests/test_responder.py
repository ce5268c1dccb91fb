"""
Test the static file responder directly, without a server.
"""

import os
import sys
import time
from wsgiref.handlers import format_date_time

import pytest

import asgistatic
from asgistatic import Config, respond, get_file_info
from asgistatic import _responder
from asgistatic._responder import guess_content_type_from_head, iter_file

from common import SITE_DIR, make_request, run_coro, collect_body, LogCapturer


CONFIG = Config(SITE_DIR)


def fetch(config, method, path, headers=None, query_string=""):
    """ Get (status, headers, body-bytes) for a request.
    """

    async def co():
        request = make_request(method, path, headers, query_string)
        status, headers_, body = await respond(config, request)
        return status, headers_, await collect_body(body)

    return run_coro(co())


def test_get_file():
    status, headers, body = fetch(CONFIG, "GET", "/index.html")

    assert status == 200
    assert body == b"hi"
    assert headers["content-type"] == "text/html"
    assert headers["content-length"] == "2"
    assert headers["cache-control"] == "public, must-revalidate, max-age=0"
    assert headers["etag"].startswith('W/"')

    mtime = os.stat(os.path.join(SITE_DIR, "index.html")).st_mtime
    assert headers["last-modified"] == format_date_time(mtime)

    status, headers, body = fetch(CONFIG, "GET", "/style.css")
    assert status == 200
    assert headers["content-type"] == "text/css"
    with open(os.path.join(SITE_DIR, "style.css"), "rb") as f:
        assert body == f.read()


def test_get_index():
    status, headers, body = fetch(CONFIG, "GET", "/")
    assert status == 200
    assert body == b"hi"
    assert headers["content-type"] == "text/html"

    status, headers, body = fetch(CONFIG, "GET", "/sub/")
    assert status == 200
    assert body == b"<html>sub</html>\n"

    # A directory without index
    status, headers, body = fetch(CONFIG, "GET", "/noindex/")
    assert status == 404

    # No index documents at all
    config = Config(SITE_DIR, index=None)
    assert fetch(config, "GET", "/")[0] == 404
    assert fetch(config, "GET", "/index.html")[0] == 200


def test_redirect_directory():
    status, headers, body = fetch(CONFIG, "GET", "/sub")
    assert status == 301
    assert headers["location"] == "/sub/"
    assert b"/sub/" in body

    status, headers, body = fetch(CONFIG, "GET", "/sub", query_string="a=1&b=2")
    assert status == 301
    assert headers["location"] == "/sub/?a=1&b=2"

    status, headers, body = fetch(CONFIG, "GET", "/sub dir")
    assert status == 404

    # Leading slashes are collapsed, so the location never points to another host
    for path in ("//sub", "///sub"):
        status, headers, body = fetch(CONFIG, "GET", path)
        assert status == 301
        assert headers["location"] == "/sub/"
    status, headers, body = fetch(CONFIG, "GET", "/\\sub")
    assert status == 301
    assert headers["location"] == "/%5Csub/"

    # Without redirects, the index is served directly
    config = Config(SITE_DIR, redirect=False)
    status, headers, body = fetch(config, "GET", "/sub")
    assert status == 200
    assert body == b"<html>sub</html>\n"


def test_redirect_stays_on_host(tmp_path):
    (tmp_path / "evil.example").mkdir()
    config = Config(str(tmp_path))

    status, headers, body = fetch(config, "GET", "//evil.example")
    assert status == 301
    assert headers["location"] == "/evil.example/"
    assert not headers["location"].startswith("//")


@pytest.mark.skipif(sys.platform.startswith("win"), reason="invalid file names")
def test_query_chars_in_file_name(tmp_path):
    (tmp_path / "a").write_bytes(b"wrong file")
    (tmp_path / "a?b.txt").write_bytes(b"right file")
    (tmp_path / "x").write_bytes(b"wrong file")
    (tmp_path / "x#y.txt").write_bytes(b"hash file")
    config = Config(str(tmp_path))

    status, headers, body = fetch(config, "GET", "/a?b.txt")
    assert status == 200
    assert body == b"right file"

    status, headers, body = fetch(config, "GET", "/x#y.txt")
    assert status == 200
    assert body == b"hash file"

    # The query string is separate and does not affect the lookup
    status, headers, body = fetch(config, "GET", "/a", query_string="b.txt")
    assert body == b"wrong file"


def test_head():
    status, headers, body = fetch(CONFIG, "HEAD", "/style.css")
    assert status == 200
    assert body == b""
    assert headers["content-length"] == "21"
    assert headers["content-type"] == "text/css"
    assert headers["etag"] == fetch(CONFIG, "GET", "/style.css")[1]["etag"]


def test_method_not_allowed():
    for method in ("POST", "PUT", "DELETE", "PATCH"):
        status, headers, body = fetch(CONFIG, method, "/index.html")
        assert status == 405
        assert headers["allow"] == "GET, HEAD"


def test_not_found():
    for path in ("/nope.html", "/sub/nope.txt", "/index.html/foo", "/nope/"):
        status, headers, body = fetch(CONFIG, "GET", path)
        assert status == 404, path
        assert body == b"File not found"


def test_traversal():
    for path in ("/../etc/passwd", "/sub/../../tests/site/index.html", "/..\\.."):
        status, headers, body = fetch(CONFIG, "GET", path)
        assert status == 403
        assert body == b"Forbidden"
        assert b"root:" not in body


def test_dotfiles():
    assert fetch(CONFIG, "GET", "/.secret")[0] == 404
    assert fetch(CONFIG, "GET", "/.hidden/file.txt")[0] == 404

    config = Config(SITE_DIR, dotfiles=True)
    status, headers, body = fetch(config, "GET", "/.secret")
    assert status == 200
    assert body == b"secret\n"


def test_fallback():
    config = Config(SITE_DIR, fallback="404.html")

    status, headers, body = fetch(config, "GET", "/nope.html")
    assert status == 404
    assert body == b"<html>not here</html>\n"
    assert headers["content-type"] == "text/html"
    assert headers["cache-control"] == "no-cache"
    assert headers["content-length"] == str(len(body))

    status, headers, body = fetch(config, "HEAD", "/nope.html")
    assert status == 404
    assert body == b""

    # Existing files are served normally
    assert fetch(config, "GET", "/index.html")[2] == b"hi"

    # A missing fallback document results in a plain 404
    config = Config(SITE_DIR, fallback="missing.html")
    with LogCapturer() as cap:
        status, headers, body = fetch(config, "GET", "/nope.html")
    assert status == 404
    assert body == b"File not found"
    assert any("missing.html" in msg for msg in cap.messages)


def test_content_type_sniffing():
    assert fetch(CONFIG, "GET", "/page")[1]["content-type"] == "text/html"
    assert fetch(CONFIG, "GET", "/sub/page.txt")[1]["content-type"] == "text/plain"

    assert guess_content_type_from_head(b"<!DOCTYPE html><html>") == "text/html"
    assert guess_content_type_from_head(b"  <html>x</html>") == "text/html"
    assert guess_content_type_from_head(b"hello") == "text/plain"
    assert guess_content_type_from_head("héllo".encode()) == "text/plain"
    assert guess_content_type_from_head(b"") == "text/plain"
    assert guess_content_type_from_head(b"\x00\x01\x02") == "application/octet-stream"
    assert guess_content_type_from_head(b"\xff\xfe" * 20) == "application/octet-stream"


def test_empty_file():
    status, headers, body = fetch(CONFIG, "GET", "/empty.txt")
    assert status == 200
    assert headers["content-length"] == "0"
    assert body == b""


def test_streamed_in_chunks():
    config = Config(SITE_DIR, chunk_size=100)

    async def co():
        request = make_request("GET", "/words.txt")
        status, headers, body = await respond(config, request)
        return [chunk async for chunk in body]

    chunks = run_coro(co())
    assert len(chunks) == 24
    assert all(len(chunk) == 100 for chunk in chunks)
    assert b"".join(chunks) == b"hello world " * 200


def test_iter_file_closes_file():
    async def co():
        f = open(os.path.join(SITE_DIR, "words.txt"), "rb")
        gen = iter_file(f, 10)
        first = await gen.__anext__()
        await gen.aclose()
        return f, first

    f, first = run_coro(co())
    assert first == b"hello worl"
    assert f.closed


def test_conditional_etag():
    status, headers, body = fetch(CONFIG, "GET", "/index.html")
    etag = headers["etag"]

    status, headers, body = fetch(
        CONFIG, "GET", "/index.html", headers={"if-none-match": etag}
    )
    assert status == 304
    assert body == b""
    assert headers["etag"] == etag
    assert "last-modified" in headers
    assert "cache-control" in headers
    assert "content-type" not in headers
    assert "content-length" not in headers

    # Strong variant of the tag, a list of tags, or a wildcard
    for value in (etag[2:], f'"xx", {etag}', "*"):
        status, headers, body = fetch(
            CONFIG, "GET", "/index.html", headers={"if-none-match": value}
        )
        assert status == 304, value

    # HEAD can be conditional too
    status, headers, body = fetch(
        CONFIG, "HEAD", "/index.html", headers={"if-none-match": etag}
    )
    assert status == 304

    # Mismatch
    for value in ('"xxxx"', 'W/"2-0"', fetch(CONFIG, "GET", "/style.css")[1]["etag"]):
        status, headers, body = fetch(
            CONFIG, "GET", "/index.html", headers={"if-none-match": value}
        )
        assert status == 200
        assert body == b"hi"


def test_conditional_modified_since():
    status, headers, body = fetch(CONFIG, "GET", "/index.html")
    last_modified = headers["last-modified"]
    mtime = os.stat(os.path.join(SITE_DIR, "index.html")).st_mtime

    # Same date, or later date
    for value in (last_modified, format_date_time(time.time() + 3600)):
        status, headers, body = fetch(
            CONFIG, "GET", "/index.html", headers={"if-modified-since": value}
        )
        assert status == 304
        assert body == b""

    # Earlier date
    status, headers, body = fetch(
        CONFIG,
        "GET",
        "/index.html",
        headers={"if-modified-since": format_date_time(mtime - 10)},
    )
    assert status == 200
    assert body == b"hi"

    # Invalid dates are ignored
    for value in ("not a date", "", "Mon, 99 Foo 2020"):
        status, headers, body = fetch(
            CONFIG, "GET", "/index.html", headers={"if-modified-since": value}
        )
        assert status == 200

    # If-none-match takes precedence
    status, headers, body = fetch(
        CONFIG,
        "GET",
        "/index.html",
        headers={"if-modified-since": last_modified, "if-none-match": '"other"'},
    )
    assert status == 200


def test_file_info(tmp_path):
    filename = tmp_path / "foo.json"
    filename.write_bytes(b"[1, 2, 3]")
    os.utime(str(filename), (1_500_000_000, 1_500_000_000))

    info = get_file_info(str(filename))
    assert isinstance(info, asgistatic.FileInfo)
    assert info.size == 9
    assert info.mtime == 1_500_000_000
    assert info.content_type == "application/json"
    assert info.last_modified == "Fri, 14 Jul 2017 02:40:00 GMT"
    assert info.etag == f'W/"9-{1_500_000_000_000:x}"'

    # Changes to the file are picked up directly
    filename.write_bytes(b"[1, 2, 3, 4]")
    info2 = get_file_info(str(filename))
    assert info2.size == 12
    assert info2.etag != info.etag

    with pytest.raises(asgistatic.NotFoundError):
        get_file_info(str(tmp_path))
    with pytest.raises(FileNotFoundError):
        get_file_info(str(tmp_path / "nope.txt"))


def test_permission_error(monkeypatch):
    def fake_open(filename, mode="r"):
        raise PermissionError(13, "Permission denied", filename)

    monkeypatch.setattr(_responder, "open", fake_open, raising=False)

    with LogCapturer() as cap:
        status, headers, body = fetch(CONFIG, "GET", "/index.html")

    assert status == 500
    assert body == b"Internal server error"
    assert len(cap.messages) == 1
    assert "/index.html" in cap.messages[0]
    assert "PermissionError" in cap.messages[0]

    # HEAD does not need to open the file
    assert fetch(CONFIG, "HEAD", "/index.html")[0] == 200


def test_stat_error(monkeypatch):
    ori_stat = os.stat
    target = os.path.join(CONFIG.root, "style.css")

    def fake_stat(path, *args, **kwargs):
        if os.fspath(path) == target:
            raise OSError(5, "Input/output error", path)
        return ori_stat(path, *args, **kwargs)

    monkeypatch.setattr(os, "stat", fake_stat)

    with LogCapturer() as cap:
        status, headers, body = fetch(CONFIG, "GET", "/style.css")
        status2, headers2, body2 = fetch(CONFIG, "GET", "/index.html")

    assert status == 500
    assert status2 == 200 and body2 == b"hi"
    assert len(cap.messages) == 1
    assert "Input/output error" in cap.messages[0]
