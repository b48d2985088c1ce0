"""Ranged, resumable download of one file in several parts."""

from __future__ import annotations

import base64
import functools
import hashlib
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from typing import Any, BinaryIO

import requests

from .system import is_env_true

_logger = logging.getLogger(__name__)

MAX_ATTEMPT_NUMBER = 3
RETRY_DELAY = 2.0
_BUFFER_SIZE = 32 * 1024


@dataclass
class Part:
    """A byte range of the remote file, written to its own file.

    ``end`` is exclusive; a non-positive ``end`` means the whole file without a range.
    """

    name: str
    start: int = 0
    end: int = -1
    skip: bool = False
    is_fail: bool = False

    def range_header(self) -> str:
        """The value of the HTTP Range header for this part."""
        return f"bytes={self.start}-{self.end - 1}"

    def download(
        self,
        session: requests.Session,
        url: str,
        index: int,
        user_agent: str,
        cancel_event: threading.Event | None = None,
    ) -> None:
        """Download this part, retrying interrupted transfers from where they stopped."""
        headers = {"User-Agent": user_agent}
        if self.end > 0:
            headers["Range"] = self.range_header()

        response = self._do_request(session, url, headers, index)
        if response is None:
            return

        base_start = self.start
        with open(self.name, "wb") as part_file:
            attempt = 0
            while True:
                if attempt:
                    time.sleep(RETRY_DELAY)
                    _logger.info("retrying", extra={"fields": {"attempt": attempt}})
                    try:
                        response = self._do_request(session, url, headers, index)
                    except requests.RequestException:
                        if attempt == MAX_ATTEMPT_NUMBER:
                            raise
                        attempt += 1
                        continue
                    if response is None:
                        return

                try:
                    self._write(part_file, response, cancel_event)
                    return
                except (requests.RequestException, OSError):
                    if cancel_event is not None and cancel_event.is_set():
                        return
                    if attempt == MAX_ATTEMPT_NUMBER:
                        raise

                if self.end > 0:
                    position = part_file.tell()
                    self.start = base_start + position
                    headers["Range"] = self.range_header()
                else:
                    position = 0
                part_file.seek(position)
                part_file.truncate()
                attempt += 1

    def _do_request(
        self, session: requests.Session, url: str, headers: dict[str, str], index: int
    ) -> Any:
        _logger.debug(
            "download part", extra={"fields": {"range": headers.get("Range", ""), "index": index}}
        )
        response = session.get(url, headers=dict(headers), stream=True, allow_redirects=False)
        if response.status_code == 206:
            return response
        if response.status_code == 200:
            if self.end > 0:
                if index > 0:
                    # the server ignored the range; the first part receives everything
                    self.skip = True
                    response.close()
                    return None
                self.end = _content_length(response)
            return response

        response.close()
        raise requests.HTTPError(
            f"part download request failed with status code {response.status_code}",
            response=response,
        )

    @staticmethod
    def _write(part_file: BinaryIO, response: Any, cancel_event: threading.Event | None) -> None:
        try:
            for block in response.iter_content(chunk_size=_BUFFER_SIZE):
                if cancel_event is not None and cancel_event.is_set():
                    return
                part_file.write(block)
        finally:
            response.close()


def _content_length(response: Any) -> int:
    try:
        return int(response.headers.get("Content-Length", -1))
    except (TypeError, ValueError):
        return -1


@dataclass
class ActualLocation:
    """The final (non-redirect) location of a download and how it is split."""

    url: str
    out_file_name: str
    content_length: int = -1
    is_accept_ranges: bool = False
    status_code: int = 0
    parts: list[Part] = field(default_factory=list)

    def compute_parts(self, min_part_size: int, max_part_count: int) -> None:
        """Split the content into at most ``max_part_count`` parts of at least ``min_part_size``."""
        one_part = False
        if is_env_true("DISABLE_MULTIPART_DOWNLOADING"):
            _logger.debug(
                "DISABLE_MULTIPART_DOWNLOADING is set to true, will be downloaded as one part",
                extra={"fields": {"length": self.content_length}},
            )
            one_part = True
        elif self.content_length < 0:
            _logger.warning(
                "invalid content length, will be downloaded as one part",
                extra={"fields": {"length": self.content_length}},
            )
            one_part = True

        if one_part:
            self.parts = [Part(self.out_file_name, 0, -1)]
            return

        content_length = self.content_length
        if content_length <= min_part_size:
            part_count = 1
        else:
            part_count = max(1, min(content_length // min_part_size, max_part_count))

        part_size = content_length // part_count
        self.parts = []
        start = 0
        for index in range(part_count):
            end = start + part_size
            if end > content_length or index == part_count - 1:
                end = content_length
            name = self.out_file_name if index == 0 else f"{self.out_file_name}.part{index}"
            self.parts.append(Part(name, start, end))
            start = end

    def delete_unnecessary_parts(self) -> None:
        """Forget the parts that turned out not to be needed."""
        self.parts = [part for part in self.parts if not part.skip]

    def concatenate_parts(self, expected_sha512: str = "") -> None:
        """Append the other parts to the first one and verify the checksum if given.

        A mismatch raises :class:`ValueError`.
        """
        if not self.parts:
            raise ValueError("no parts to concatenate")
        has_checksum = bool(expected_sha512)
        if not has_checksum and len(self.parts) == 1:
            return

        if has_checksum:
            mode = "rb" if len(self.parts) == 1 else "a+b"
        else:
            mode = "ab"

        input_hash = hashlib.sha512()
        with open(self.parts[0].name, mode) as total_file:
            if has_checksum:
                total_file.seek(0)
                for block in iter(functools.partial(total_file.read, _BUFFER_SIZE), b""):
                    input_hash.update(block)

            for part in self.parts[1:]:
                with open(part.name, "rb") as part_file:
                    for block in iter(functools.partial(part_file.read, _BUFFER_SIZE), b""):
                        if has_checksum:
                            input_hash.update(block)
                        total_file.write(block)
                try:
                    os.remove(part.name)
                except OSError as error:
                    _logger.error(
                        "cannot delete part file",
                        extra={"fields": {"partFile": part.name, "error": error}},
                    )

        if has_checksum:
            actual = base64.b64encode(input_hash.digest()).decode("ascii")
            if actual != expected_sha512:
                raise ValueError(
                    f"sha512 checksum mismatch, expected {expected_sha512}, got {actual}"
                )