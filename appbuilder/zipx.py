"""Extracting zip archives with normalised permissions."""

from __future__ import annotations

import os
import stat
import zipfile
from collections.abc import Iterable
from concurrent.futures import Future, ThreadPoolExecutor

from .fs import set_normal_dir_permissions, write_file_and_restore_normal_permissions

# IO cannot keep up with many parallel writes anyway
CONCURRENCY = 4

_UNIX_SYSTEM = 3
_MSDOS_READ_ONLY = 0x01


def _entry_mode(info: zipfile.ZipInfo) -> int:
    if info.create_system == _UNIX_SYSTEM:
        mode = info.external_attr >> 16
        if mode:
            return mode
    mode = 0o777 if info.is_dir() else 0o666
    if info.external_attr & _MSDOS_READ_ONLY:
        mode &= ~0o222
    return mode


class Extractor:
    """Writes archive entries below one output directory."""

    def __init__(self, output_dir: str | os.PathLike[str], excluded_files: Iterable[str] | None = None) -> None:
        self.output_dir = os.path.normpath(os.fspath(output_dir))
        self.excluded_files = (
            frozenset(os.path.normpath(path) for path in excluded_files)
            if excluded_files is not None
            else None
        )
        self.created_dirs: set[str] = {self.output_dir}
        self._prefix = self.output_dir if self.output_dir.endswith(os.sep) else self.output_dir + os.sep

    def compute_extract_path(self, name: str) -> str:
        """The destination of an entry; entries escaping the output directory are rejected."""
        path = os.path.normpath(os.path.join(self.output_dir, name.lstrip("/\\")))
        if path == self.output_dir or path.startswith(self._prefix):
            return path
        raise ValueError(f"{path}: illegal file path")

    def create_dir_if_needed(self, dir_path: str) -> None:
        """Create a directory unless it is already known to exist."""
        if dir_path in self.created_dirs:
            return
        os.makedirs(dir_path, exist_ok=True)
        self._add_with_parents_to_created(dir_path)

    def _add_with_parents_to_created(self, directory: str) -> None:
        while True:
            self.created_dirs.add(directory)
            parent = os.path.dirname(directory)
            if parent == directory or len(parent) <= len(self.output_dir) or parent in self.created_dirs:
                return
            directory = parent

    def extract_dir(self, info: zipfile.ZipInfo) -> None:
        """Create the directory an entry describes."""
        path = self.compute_extract_path(info.filename)
        os.makedirs(path, exist_ok=True)
        set_normal_dir_permissions(path)
        self._add_with_parents_to_created(path)

    def extract_file(self, archive: zipfile.ZipFile, info: zipfile.ZipInfo, file_path: str) -> None:
        """Write a file or symlink entry to ``file_path``."""
        mode = _entry_mode(info)
        with archive.open(info) as stream:
            if stat.S_ISLNK(mode):
                os.symlink(stream.read().decode("utf-8"), file_path)
                return
            write_file_and_restore_normal_permissions(stream, file_path, mode)


def unzip(
    src: str | os.PathLike[str],
    output_dir: str | os.PathLike[str],
    excluded_files: Iterable[str] | None = None,
) -> None:
    """Extract ``src`` into ``output_dir``, skipping the excluded destination paths.

    A malformed archive raises :class:`zipfile.BadZipFile`.
    """
    if not os.fspath(src):
        raise ValueError("input zip file name is empty")

    with zipfile.ZipFile(src) as archive:
        extractor = Extractor(output_dir, excluded_files)
        last_created_dir: str | None = None
        futures: list[Future[None]] = []
        with ThreadPoolExecutor(max_workers=CONCURRENCY) as pool:
            for info in archive.infolist():
                if info.is_dir():
                    extractor.extract_dir(info)
                    continue

                file_path = extractor.compute_extract_path(info.filename)
                if extractor.excluded_files is not None and file_path in extractor.excluded_files:
                    continue

                file_dir = os.path.dirname(file_path)
                if file_dir != last_created_dir:
                    extractor.create_dir_if_needed(file_dir)
                    last_created_dir = file_dir

                futures.append(pool.submit(extractor.extract_file, archive, info, file_path))

            for future in futures:
                future.result()