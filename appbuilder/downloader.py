"""Downloading a file over HTTP, split into parallel ranged parts."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from urllib.parse import urljoin

import requests
import requests.adapters
import requests.certs

from .download_parts import ActualLocation, Part
from .system import get_env_or_default

_logger = logging.getLogger(__name__)

MAX_REDIRECTS = 10
MIN_PART_SIZE = 5 * 1024 * 1024
_MAX_PART_COUNT = 8
_POOL_SIZE = 64

_DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_14_5) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/74.0.3729.169 Safari/537.36"
)


def get_user_agent() -> str:
    """The User-Agent sent with every request."""
    return get_env_or_default("DOWNLOADER_USER_AGENT", _DEFAULT_USER_AGENT)


def get_max_part_count() -> int:
    """How many parts are downloaded at once: twice the CPU count, at most 8."""
    return min((os.cpu_count() or 1) * 2, _MAX_PART_COUNT)


def is_redirect(status: int) -> bool:
    """Whether an HTTP status code is a redirect."""
    return 299 < status < 400


def get_ca_bundle() -> str | None:
    """A CA bundle holding the default CAs plus those in ``NODE_EXTRA_CA_CERTS``.

    Returns None when no extra certificates are configured or they cannot be read.
    """
    extra_cert_file = os.environ.get("NODE_EXTRA_CA_CERTS")
    if not extra_cert_file:
        return None

    try:
        with open(extra_cert_file, "rb") as stream:
            extra = stream.read()
    except OSError as error:
        _logger.warning(
            "Failed to append to root certificates",
            extra={"fields": {"extraCert": extra_cert_file, "error": error}},
        )
        return None
    if b"-----BEGIN CERTIFICATE-----" not in extra:
        _logger.warning("No certs appended, using system certs only")
        return None

    with open(requests.certs.where(), "rb") as stream:
        system = stream.read()
    with tempfile.NamedTemporaryFile("wb", suffix=".pem", delete=False) as bundle:
        bundle.write(system)
        if not system.endswith(b"\n"):
            bundle.write(b"\n")
        bundle.write(extra)
    return bundle.name


def _content_length(response: requests.Response) -> int:
    try:
        return int(response.headers.get("Content-Length", -1))
    except (TypeError, ValueError):
        return -1


class Downloader:
    """Resolves redirects, then downloads the final location in parts."""

    def __init__(
        self,
        session: requests.Session | None = None,
        min_part_size: int = MIN_PART_SIZE,
    ) -> None:
        if session is None:
            session = requests.Session()
            adapter = requests.adapters.HTTPAdapter(
                pool_connections=_POOL_SIZE, pool_maxsize=_POOL_SIZE
            )
            session.mount("http://", adapter)
            session.mount("https://", adapter)
        # sizes and ranges refer to the bytes on the wire
        session.headers["Accept-Encoding"] = "identity"
        self.ca_bundle = get_ca_bundle()
        if self.ca_bundle is not None:
            session.verify = self.ca_bundle
        self.session = session
        self.min_part_size = min_part_size

    def download(self, url: str, output: str | os.PathLike[str], sha512: str = "") -> None:
        """Download ``url`` to ``output``; with extra CAs configured, retry once without them."""
        try:
            self.download_no_retry(url, output, sha512)
        except Exception:
            if self.ca_bundle is None:
                raise
            _logger.warning(
                "Failed to download using specified CAs, retrying with default System CAs only"
            )
            original = self.session.verify
            self.session.verify = True
            try:
                self.download_no_retry(url, output, sha512)
            finally:
                self.session.verify = original

    def download_no_retry(self, url: str, output: str | os.PathLike[str], sha512: str = "") -> None:
        """Download ``url`` to ``output`` once."""
        started = time.monotonic()
        location = self.follow(url, get_user_agent(), os.fspath(output))
        self.download_resolved(location, sha512, url)
        _logger.info(
            "downloaded",
            extra={"fields": {"url": url, "duration": f"{time.monotonic() - started:.3f}s"}},
        )

    def download_resolved(self, location: ActualLocation, sha512: str, url_to_log: str) -> None:
        """Download an already resolved location, in parallel parts, and join them."""
        out_dir = os.path.dirname(location.out_file_name)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)

        max_part_count = get_max_part_count()
        location.compute_parts(self.min_part_size, max_part_count)
        _logger.info(
            "downloading",
            extra={
                "fields": {
                    "url": url_to_log,
                    "size": location.content_length,
                    "parts": len(location.parts),
                }
            },
        )

        cancel_event = threading.Event()
        user_agent = get_user_agent()

        def run(index: int, part: Part) -> None:
            try:
                part.download(self.session, location.url, index, user_agent, cancel_event)
            except Exception as error:
                part.is_fail = True
                cancel_event.set()
                _logger.debug(
                    "part download error", extra={"fields": {"id": index, "error": error}}
                )
                raise

        with ThreadPoolExecutor(max_workers=max_part_count) as pool:
            futures = [pool.submit(run, index, part) for index, part in enumerate(location.parts)]
        for future in futures:
            future.result()

        location.delete_unnecessary_parts()
        location.concatenate_parts(sha512)

    def follow(self, initial_url: str, user_agent: str, out_file_name: str) -> ActualLocation:
        """Follow redirects from ``initial_url`` to the location that answers 200."""
        current_url = initial_url
        redirects_followed = 0
        while True:
            if current_url != initial_url:
                _logger.debug(
                    "computing effective URL",
                    extra={"fields": {"initialUrl": initial_url, "currentUrl": current_url}},
                )

            # GET rather than HEAD: Content-Length may be omitted for HEAD
            response = self.session.get(
                current_url,
                headers={"User-Agent": user_agent},
                stream=True,
                allow_redirects=False,
            )
            response.close()

            if is_redirect(response.status_code):
                location_header = response.headers.get("Location")
                if not location_header:
                    raise requests.HTTPError(
                        f"redirect from {current_url} has no Location header", response=response
                    )
                current_url = urljoin(current_url, location_header)
            elif response.status_code != 200:
                raise requests.HTTPError(
                    f"cannot resolve {initial_url}: status code {response.status_code}",
                    response=response,
                )
            else:
                content_length = _content_length(response)
                location = ActualLocation(
                    url=current_url,
                    out_file_name=out_file_name,
                    content_length=content_length,
                    is_accept_ranges=bool(response.headers.get("Accept-Ranges")),
                    status_code=response.status_code,
                )
                _logger.debug(
                    "downloading",
                    extra={
                        "fields": {
                            "url": initial_url,
                            "length": "unknown" if content_length < 0 else str(content_length),
                            "contentType": response.headers.get("Content-Type", ""),
                        }
                    },
                )
                if not location.is_accept_ranges:
                    _logger.warning("server doesn't support ranges")
                return location

            redirects_followed += 1
            if redirects_followed > MAX_REDIRECTS:
                raise requests.TooManyRedirects(
                    f"maximum number of redirects ({MAX_REDIRECTS}) followed"
                )