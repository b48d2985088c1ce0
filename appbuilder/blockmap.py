"""Block maps for differential updates, built with content-defined chunking."""

from __future__ import annotations

import base64
import enum
import gzip
import hashlib
import json
import os
import sys
import zlib
from dataclasses import dataclass, field
from typing import Any

from .chunker import POLY64, Chunker, RabinTable

_BLOCK_MAP_VERSION = "2"


class CompressionFormat(enum.IntEnum):
    """How the serialized block map is compressed."""

    GZIP = 0
    DEFLATE = 1


@dataclass(frozen=True)
class ChunkerConfiguration:
    """Window and chunk sizes for the chunker."""

    window: int = 64
    avg: int = 16 * 1024
    min: int = 8 * 1024
    max: int = 32 * 1024


DEFAULT_CHUNKER_CONFIGURATION = ChunkerConfiguration()


@dataclass
class InputFileInfo:
    """Size and SHA-512 of a file, and the size of a block map appended to it."""

    size: int
    sha512: str = ""
    block_map_size: int | None = None
    input_hash: Any = field(default=None, repr=False, compare=False)

    def to_json(self) -> str:
        """Compact JSON with the keys size, sha512 and, if set, blockMapSize."""
        data: dict[str, Any] = {"size": self.size, "sha512": self.sha512}
        if self.block_map_size is not None:
            data["blockMapSize"] = self.block_map_size
        return json.dumps(data, separators=(",", ":"))


def compute_blocks(
    in_file: str | os.PathLike[str],
    configuration: ChunkerConfiguration = DEFAULT_CHUNKER_CONFIGURATION,
) -> tuple[list[str], list[int], InputFileInfo]:
    """Chunk a file and return chunk checksums, chunk sizes and the file info.

    The returned info carries the running SHA-512 of the content as ``input_hash``.
    """
    input_hash = hashlib.sha512()
    checksums: list[str] = []
    sizes: list[int] = []
    with open(in_file, "rb") as stream:
        table = RabinTable(POLY64, configuration.window)
        chunker = Chunker(stream, table, configuration.min, configuration.avg, configuration.max)
        for chunk in chunker:
            checksum = hashlib.blake2b(chunk, digest_size=18).digest()
            input_hash.update(chunk)
            checksums.append(base64.b64encode(checksum).decode("ascii"))
            sizes.append(len(chunk))
        file_size = os.fstat(stream.fileno()).st_size

    total = sum(sizes)
    if total != file_size:
        raise ValueError(f"expected size sum: {file_size}. Actual: {total}")
    return checksums, sizes, InputFileInfo(size=file_size, input_hash=input_hash)


def archive_data(data: bytes, compression_format: CompressionFormat) -> bytes:
    """Compress ``data`` at the best compression level."""
    if compression_format == CompressionFormat.DEFLATE:
        compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
        return compressor.compress(data) + compressor.flush()
    return gzip.compress(data, compresslevel=9, mtime=0)


def _serialize(checksums: list[str], sizes: list[int]) -> bytes:
    block_map = {
        "version": _BLOCK_MAP_VERSION,
        "files": [
            {
                "name": "file",
                "offset": 0,
                "checksums": checksums or None,
                "sizes": sizes or None,
            }
        ],
    }
    return json.dumps(block_map, separators=(",", ":")).encode("utf-8")


def _append_result(data: bytes, in_file: str | os.PathLike[str], compression_format: CompressionFormat, input_hash: Any) -> int:
    archive = archive_data(data, compression_format)
    size_bytes = len(archive).to_bytes(4, "big")
    with open(in_file, "ab") as stream:
        stream.write(archive)
        stream.write(size_bytes)
    input_hash.update(archive)
    input_hash.update(size_bytes)
    return len(archive)


def _write_result(data: bytes, out_file: str | os.PathLike[str], compression_format: CompressionFormat) -> None:
    if os.fspath(out_file) == "-":
        sys.stdout.buffer.write(data)
        sys.stdout.flush()
        return
    with open(out_file, "wb") as stream:
        stream.write(archive_data(data, compression_format))


def build_block_map(
    in_file: str | os.PathLike[str],
    chunker_configuration: ChunkerConfiguration = DEFAULT_CHUNKER_CONFIGURATION,
    compression_format: CompressionFormat = CompressionFormat.GZIP,
    out_file: str | os.PathLike[str] | None = None,
) -> InputFileInfo:
    """Build the block map of ``in_file``.

    Without ``out_file`` the compressed map and its 4-byte big-endian size are appended
    to the input and counted in its size and checksum. ``"-"`` writes the uncompressed
    map to standard output.
    """
    checksums, sizes, info = compute_blocks(in_file, chunker_configuration)
    serialized = _serialize(checksums, sizes)

    if not out_file:
        archive_size = _append_result(serialized, in_file, compression_format, info.input_hash)
        info.size += archive_size + 4
        info.block_map_size = archive_size
    else:
        _write_result(serialized, out_file, compression_format)

    info.sha512 = base64.b64encode(info.input_hash.digest()).decode("ascii")
    return info