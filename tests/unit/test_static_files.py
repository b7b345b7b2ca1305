"""
Unit tests for the static file server.

Tests for:
- content-type driven header augmentation
- aliases, directory index and SPA fallback
- path traversal rejection
- gzip negotiation (including q-values) and HEAD handling
- production-only HSTS and favicon behaviour
"""

import gzip

import pytest

from defrakit.src.core.static_files import CSP_HEADER, SERVER_INFO, StaticFileServer, accepts_gzip, content_headers


@pytest.fixture
def web_root(tmp_path):
    root = tmp_path / "web"
    root.mkdir()
    (root / "index.html").write_text("<html>entry</html>", encoding="utf-8")
    (root / "defradb.html").write_text("<html>defradb</html>", encoding="utf-8")
    (root / "style.css").write_text("body { color: red; }", encoding="utf-8")
    (root / "app.js").write_text("console.log('hi');" * 20, encoding="utf-8")
    (root / "logo.png").write_bytes(b"\x89PNG\r\n\x1a\n")
    (root / "docs").mkdir()
    (root / "docs" / "index.html").write_text("<html>docs</html>", encoding="utf-8")
    (tmp_path / "secret.txt").write_text("top secret", encoding="utf-8")
    return root


class TestContentHeaders:
    def test_html_gets_csp_and_charset(self):
        content_type, headers = content_headers("text/html")

        assert content_type == "text/html; charset=utf-8"
        assert headers["Content-Security-Policy"] == CSP_HEADER["Content-Security-Policy"]
        assert headers["Vary"] == "Accept-Encoding"
        assert "X-Content-Type-Options" not in headers

    def test_legacy_javascript_type_normalised(self):
        content_type, headers = content_headers("application/javascript")

        assert content_type == "text/javascript; charset=utf-8"
        assert headers["X-Content-Type-Options"] == "nosniff"

    def test_json(self):
        content_type, headers = content_headers("application/json")

        assert content_type == "application/json; charset=utf-8"
        assert headers == {"X-Content-Type-Options": "nosniff", "Vary": "Accept-Encoding"}

    def test_binary_types_untouched(self):
        assert content_headers("image/png") == ("image/png", {})


class TestResolution:
    def test_regular_file(self, web_root):
        response = StaticFileServer(web_root).serve("/style.css")

        assert response.status_code == 200
        assert response.body == b"body { color: red; }"
        assert response.headers["content-type"] == "text/css; charset=utf-8"
        assert response.headers["x-content-type-options"] == "nosniff"
        assert response.headers["server"] == SERVER_INFO
        assert "last-modified" in response.headers

    def test_alias(self, web_root):
        response = StaticFileServer(web_root).serve("/defradb")

        assert response.body == b"<html>defradb</html>"
        assert "content-security-policy" in response.headers

    def test_directory_serves_its_index(self, web_root):
        assert StaticFileServer(web_root).serve("/docs/").body == b"<html>docs</html>"

    def test_unknown_path_falls_back_to_entry_document(self, web_root):
        response = StaticFileServer(web_root).serve("/app/settings/profile")

        assert response.status_code == 200
        assert response.body == b"<html>entry</html>"
        assert response.headers["content-security-policy"] == CSP_HEADER["Content-Security-Policy"]

    def test_missing_entry_document_is_404(self, web_root):
        (web_root / "index.html").unlink()

        assert StaticFileServer(web_root).serve("/nope").status_code == 404

    def test_traversal_rejected(self, web_root):
        server = StaticFileServer(web_root)

        assert server.resolve("/../secret.txt") is None
        assert server.resolve("/%2e%2e/secret.txt") is None
        assert server.serve("/../secret.txt").body == b"<html>entry</html>"

    def test_encoded_nul_byte_falls_back_to_entry_document(self, web_root):
        server = StaticFileServer(web_root)

        assert server.resolve("/a%00b") is None
        assert server.serve("/a%00b").body == b"<html>entry</html>"


class TestEncoding:
    def test_gzip_when_accepted(self, web_root):
        original = (web_root / "app.js").read_bytes()

        response = StaticFileServer(web_root).serve("/app.js", accept_encoding="gzip, deflate, br")

        assert response.headers["content-encoding"] == "gzip"
        assert response.headers["vary"] == "Accept-Encoding"
        assert response.headers["content-type"] == "text/javascript; charset=utf-8"
        assert gzip.decompress(response.body) == original
        assert response.headers["content-length"] == str(len(response.body))

    def test_plain_when_not_accepted(self, web_root):
        response = StaticFileServer(web_root).serve("/app.js")

        assert "content-encoding" not in response.headers
        assert response.body == (web_root / "app.js").read_bytes()

    def test_images_never_compressed(self, web_root):
        response = StaticFileServer(web_root).serve("/logo.png", accept_encoding="gzip")

        assert "content-encoding" not in response.headers
        assert response.headers["content-type"] == "image/png"

    def test_head_has_headers_but_no_body(self, web_root):
        response = StaticFileServer(web_root).serve("/style.css", method="HEAD")

        assert response.body == b""
        assert response.headers["content-length"] == str(len(b"body { color: red; }"))

    def test_gzip_refused_with_zero_quality(self, web_root):
        response = StaticFileServer(web_root).serve("/app.js", accept_encoding="gzip;q=0")

        assert "content-encoding" not in response.headers
        assert response.body == (web_root / "app.js").read_bytes()

    @pytest.mark.parametrize(
        "header, expected",
        [
            ("gzip", True),
            ("br, gzip;q=0.5", True),
            ("*", True),
            ("gzip;q=0, *", False),
            ("GZIP; Q=0.0", False),
            ("deflate, br", False),
            ("", False),
        ],
    )
    def test_accepts_gzip(self, header, expected):
        assert accepts_gzip(header) is expected


class TestProduction:
    def test_hsts_added(self, web_root):
        response = StaticFileServer(web_root, production=True).serve("/style.css")
        assert response.headers["strict-transport-security"] == "max-age=1000000000"

    def test_missing_favicon_is_204(self, web_root):
        response = StaticFileServer(web_root, production=True).serve("/favicon.ico")

        assert response.status_code == 204
        assert response.headers["content-type"] == "image/x-icon"

    def test_cache_headers_only_when_enabled(self, web_root):
        assert "cache-control" not in StaticFileServer(web_root).serve("/style.css").headers
        assert "max-age=" in StaticFileServer(web_root, cache=True).serve("/style.css").headers["cache-control"]
