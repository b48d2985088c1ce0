import base64
import hashlib
import os
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
import requests

from appbuilder.downloader import (
    MAX_REDIRECTS,
    Downloader,
    get_ca_bundle,
    get_max_part_count,
    get_user_agent,
    is_redirect,
)

CONTENT = bytes(range(256)) * 400


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format, *args):
        pass

    def _send_whole(self, accept_ranges):
        self.send_response(200)
        if accept_ranges:
            self.send_header("Accept-Ranges", "bytes")
        self.send_header("Content-Length", str(len(CONTENT)))
        self.end_headers()
        self.wfile.write(CONTENT)

    def _redirect(self, target):
        self.send_response(302)
        self.send_header("Location", target)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        if self.path == "/file":
            range_header = self.headers.get("Range")
            if range_header:
                first, last = range_header.split("=", 1)[1].split("-")
                start, end = int(first), int(last)
                body = CONTENT[start:end + 1]
                self.send_response(206)
                self.send_header("Accept-Ranges", "bytes")
                self.send_header("Content-Range", f"bytes {start}-{end}/{len(CONTENT)}")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)
            else:
                self._send_whole(True)
        elif self.path == "/norange":
            self._send_whole(False)
        elif self.path == "/redirect":
            self._redirect("/file")
        elif self.path == "/loop":
            self._redirect("/loop")
        else:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()


@pytest.fixture
def server(monkeypatch):
    monkeypatch.setenv("NO_PROXY", "127.0.0.1,localhost")
    monkeypatch.setenv("no_proxy", "127.0.0.1,localhost")
    monkeypatch.delenv("DISABLE_MULTIPART_DOWNLOADING", raising=False)
    monkeypatch.delenv("NODE_EXTRA_CA_CERTS", raising=False)
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def _sha512(data):
    return base64.b64encode(hashlib.sha512(data).digest()).decode("ascii")


def test_is_redirect():
    assert is_redirect(301)
    assert is_redirect(302)
    assert not is_redirect(200)
    assert not is_redirect(299)
    assert not is_redirect(400)


def test_max_part_count_bounds():
    count = get_max_part_count()
    assert 1 <= count <= 8
    assert count == min((os.cpu_count() or 1) * 2, 8)


def test_user_agent_from_env(monkeypatch):
    monkeypatch.setenv("DOWNLOADER_USER_AGENT", "custom-agent")
    assert get_user_agent() == "custom-agent"


def test_user_agent_default(monkeypatch):
    monkeypatch.delenv("DOWNLOADER_USER_AGENT", raising=False)
    assert get_user_agent().startswith("Mozilla/5.0")


def test_ca_bundle_unset(monkeypatch):
    monkeypatch.delenv("NODE_EXTRA_CA_CERTS", raising=False)
    assert get_ca_bundle() is None


def test_ca_bundle_missing_file(monkeypatch, tmp_path):
    monkeypatch.setenv("NODE_EXTRA_CA_CERTS", str(tmp_path / "absent.pem"))
    assert get_ca_bundle() is None


def test_ca_bundle_appends_extra(monkeypatch, tmp_path):
    extra = b"-----BEGIN CERTIFICATE-----\nAAAA\n-----END CERTIFICATE-----\n"
    cert_file = tmp_path / "extra.pem"
    cert_file.write_bytes(extra)
    monkeypatch.setenv("NODE_EXTRA_CA_CERTS", str(cert_file))
    bundle = get_ca_bundle()
    try:
        with open(bundle, "rb") as stream:
            data = stream.read()
        assert data.endswith(extra)
        assert len(data) > len(extra)
    finally:
        os.remove(bundle)


def test_follow_redirect(server, tmp_path):
    location = Downloader().follow(server + "/redirect", "agent", str(tmp_path / "out"))
    assert location.url == server + "/file"
    assert location.content_length == len(CONTENT)
    assert location.is_accept_ranges
    assert location.status_code == 200


def test_follow_without_ranges(server, tmp_path):
    location = Downloader().follow(server + "/norange", "agent", str(tmp_path / "out"))
    assert not location.is_accept_ranges


def test_follow_too_many_redirects(server, tmp_path):
    with pytest.raises(requests.TooManyRedirects, match=str(MAX_REDIRECTS)):
        Downloader().follow(server + "/loop", "agent", str(tmp_path / "out"))


def test_follow_error_status(server, tmp_path):
    with pytest.raises(requests.HTTPError, match="cannot resolve"):
        Downloader().follow(server + "/missing", "agent", str(tmp_path / "out"))


def test_download_single_part(server, tmp_path):
    output = tmp_path / "sub" / "file.bin"
    Downloader().download(server + "/redirect", output, _sha512(CONTENT))
    assert output.read_bytes() == CONTENT


def test_download_multipart(server, tmp_path):
    output = tmp_path / "file.bin"
    Downloader(min_part_size=10 * 1024).download(server + "/file", output, _sha512(CONTENT))
    assert output.read_bytes() == CONTENT
    assert sorted(os.listdir(tmp_path)) == ["file.bin"]


def test_download_multipart_without_checksum(server, tmp_path):
    output = tmp_path / "file.bin"
    Downloader(min_part_size=10 * 1024).download(server + "/file", output)
    assert output.read_bytes() == CONTENT


def test_download_server_ignoring_ranges(server, tmp_path):
    output = tmp_path / "file.bin"
    Downloader(min_part_size=10 * 1024).download(server + "/norange", output, _sha512(CONTENT))
    assert output.read_bytes() == CONTENT
    assert sorted(os.listdir(tmp_path)) == ["file.bin"]


def test_download_checksum_mismatch(server, tmp_path):
    with pytest.raises(ValueError, match="sha512 checksum mismatch"):
        Downloader().download(server + "/file", tmp_path / "file.bin", _sha512(b"other"))


def test_download_missing(server, tmp_path):
    with pytest.raises(requests.HTTPError):
        Downloader().download(server + "/missing", tmp_path / "file.bin")