import pytest

from warc2html.errors import Warc2HtmlError
from warc2html.index import ResourceIndex
from warc2html.resources import PayloadLocator, Resource
from warc2html.sources import PayloadFetcher, iter_input_file
from warc2html.writer import (
    MANIFEST_NAME,
    output_path,
    plan_lines,
    write_one,
    write_site,
)

from tests.helpers import capture, write_warc


def build(tmp_path, responses, forced_extensions, **kwargs):
    filename = write_warc(tmp_path / "in.warc.gz", responses)
    index = ResourceIndex(forced_extensions, **kwargs)
    for record in iter_input_file(filename):
        index.add(record)
    index.resolve_redirects()
    return index


def read_manifest(out):
    return (out / MANIFEST_NAME).read_bytes().decode("utf-8").split("\r\n")


class TestWriteSite:
    def test_pages_link_to_each_other(self, tmp_path, forced_extensions):
        index = build(
            tmp_path,
            [
                {
                    "url": "http://example.org/dir/a.html",
                    "body": b'<a href="http://example.org/b.html">b</a>',
                },
                {
                    "url": "http://example.org/b.html",
                    "body": b'<a href="/dir/a.html">a</a>',
                },
            ],
            forced_extensions,
        )
        out = tmp_path / "out"
        written = write_site(index, PayloadFetcher(), out, workers=2)

        assert written == {"example.org/dir/a.html": 1, "example.org/b.html": 1}
        a = (out / "example.org/dir/a.html").read_text()
        b = (out / "example.org/b.html").read_text()
        assert 'href="../b.html"' in a
        assert 'href="dir/a.html"' in b

    def test_redirect_pages(self, tmp_path, forced_extensions):
        index = build(
            tmp_path,
            [
                {"url": "http://example.org/", "body": b"<p>home</p>"},
                {"url": "http://example.org/old", "status": 301, "location": "/"},
                {
                    "url": "http://example.org/gone",
                    "status": 302,
                    "location": "http://elsewhere.org/x?a=1&b=2",
                },
            ],
            forced_extensions,
        )
        out = tmp_path / "out"
        write_site(index, PayloadFetcher(), out)

        assert (out / "example.org/old.html").read_bytes() == (
            b'<meta http-equiv="refresh" content="0; url=index.html">\n'
        )
        assert (out / "example.org/gone.html").read_bytes() == (
            b'<meta http-equiv="refresh"'
            b' content="0; url=http://elsewhere.org/x?a=1&amp;b=2">\n'
        )

    def test_stylesheet_forced_extension(self, tmp_path, forced_extensions):
        index = build(
            tmp_path,
            [
                {
                    "url": "http://example.org/style.css",
                    "type": "text/css",
                    "body": b"body { background: url('logo') }",
                },
                {"url": "http://example.org/logo", "type": "image/png", "body": b"PNG"},
            ],
            forced_extensions,
        )
        out = tmp_path / "out"
        written = write_site(index, PayloadFetcher(), out)

        assert written["example.org/style.css"] == 0
        assert (out / "example.org/style.css").read_bytes() == (
            b"body { background: url('logo.png') }"
        )
        assert (out / "example.org/logo.png").read_bytes() == b"PNG"

    def test_manifest(self, tmp_path, forced_extensions):
        index = build(
            tmp_path,
            [
                {"url": "http://example.org/b", "body": b"b"},
                {
                    "url": "http://example.org/a.txt",
                    "type": "text/plain",
                    "body": b"a",
                    "date": "2020-02-03T04:05:06Z",
                },
                {"url": "http://example.org/c", "status": 302, "location": "/b"},
            ],
            forced_extensions,
        )
        out = tmp_path / "out"
        write_site(index, PayloadFetcher(), out)

        assert read_manifest(out) == [
            "example.org/a.txt 20200203040506 http://example.org/a.txt text/plain 200 -",
            "example.org/b.html 20210101000000 http://example.org/b text/html 200 -",
            "example.org/c.html 20210101000000 http://example.org/c text/html 302 /b",
            "",
        ]
        assert plan_lines(index) == read_manifest(out)[:-1]

    def test_unavailable_payload_skipped(self, tmp_path, forced_extensions):
        index = ResourceIndex(forced_extensions)
        good_file = write_warc(
            tmp_path / "good.warc.gz",
            [{"url": "http://example.org/ok", "body": b"ok"}],
        )
        for record in iter_input_file(good_file):
            index.add(record)
        index.add(capture("http://example.org/lost", container="missing.warc.gz"))
        index.resolve_redirects()

        out = tmp_path / "out"
        written = write_site(index, PayloadFetcher(), out)

        assert list(written) == ["example.org/ok.html"]
        assert not (out / "example.org/lost.html").exists()
        assert [p.name for p in (out / "example.org").iterdir()] == ["ok.html"]
        assert len(read_manifest(out)) == 2

    def test_superseded_capture_still_written(self, tmp_path, forced_extensions):
        index = build(
            tmp_path,
            [
                {
                    "url": "http://example.org/p",
                    "body": b"new",
                    "date": "2022-01-01T00:00:00Z",
                },
                {
                    "url": "http://example.org/p",
                    "body": b"old",
                    "date": "2020-01-01T00:00:00Z",
                },
                {"url": "http://example.org/", "body": b'<a href="p">p</a>'},
            ],
            forced_extensions,
        )
        out = tmp_path / "out"
        write_site(index, PayloadFetcher(), out)

        assert b"new" in (out / "example.org/p.html").read_bytes()
        assert b"old" in (out / "example.org/p~1.html").read_bytes()
        assert b'href="p.html"' in (out / "example.org/index.html").read_bytes()

    def test_hostless_capture_not_written(self, tmp_path, forced_extensions):
        marker = tmp_path / "escaped.html"
        index = ResourceIndex(forced_extensions)
        index.add(
            capture(
                f"http:///{marker.as_posix().lstrip('/')}",
                status=302,
                location="http://example.org/",
            )
        )
        index.add(capture("http://example.org/r", status=302, location="/"))
        index.resolve_redirects()

        out = tmp_path / "out"
        written = write_site(index, PayloadFetcher(), out)

        assert list(written) == ["example.org/r.html"]
        assert not marker.exists()
        assert sorted(p.name for p in tmp_path.iterdir()) == ["out"]

    def test_requires_frozen_index(self, tmp_path, forced_extensions):
        index = ResourceIndex(forced_extensions)
        index.add(capture("http://example.org/"))
        with pytest.raises(Warc2HtmlError):
            write_site(index, PayloadFetcher(), tmp_path / "out")

    def test_empty_index(self, tmp_path, forced_extensions):
        index = ResourceIndex(forced_extensions)
        index.resolve_redirects()
        out = tmp_path / "out"
        assert write_site(index, PayloadFetcher(), out) == {}
        assert (out / MANIFEST_NAME).read_bytes() == b""


def test_plan_lines_use_locator_free_fields(forced_extensions):
    index = ResourceIndex(forced_extensions)
    index.add(
        capture(
            "http://example.org/x",
            media_type="image/gif",
            container="a.warc.gz",
            offset=99,
        )
    )
    index.resolve_redirects()
    assert plan_lines(index) == [
        "example.org/x.gif 20210101000000 http://example.org/x image/gif 200 -"
    ]
    assert next(iter(index)).locator == PayloadLocator("a.warc.gz", 99, 0)


class TestOutputPath:
    def test_inside_root(self, tmp_path):
        assert output_path(tmp_path, "a/b.html") == tmp_path / "a/b.html"

    @pytest.mark.parametrize("path", ["../x.html", "a/../../x.html", "", "."])
    def test_outside_root(self, tmp_path, path):
        assert output_path(tmp_path / "out", path) is None

    def test_absolute(self, tmp_path):
        assert output_path(tmp_path / "out", str(tmp_path / "x.html")) is None

    @pytest.mark.parametrize("path", ["../escaped.html", "/abs-escaped.html"])
    def test_write_one_refuses(self, tmp_path, forced_extensions, path, caplog):
        index = ResourceIndex(forced_extensions)
        index.resolve_redirects()
        resource = Resource.from_record(
            capture("http://example.org/x", status=302, location="http://x.org/")
        )
        if path.startswith("/"):
            path = str(tmp_path / path.lstrip("/"))
        resource.assign_path(path)
        out = tmp_path / "out"
        out.mkdir()

        assert write_one(resource, index, PayloadFetcher(), out) is None
        assert not (tmp_path / "escaped.html").exists()
        assert not (tmp_path / "abs-escaped.html").exists()
        assert list(out.iterdir()) == []
        assert "outside output root" in caplog.text
