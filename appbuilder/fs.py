"""Copying files and directories with normalised permissions."""

from __future__ import annotations

import logging
import os
import shutil
import stat
from dataclasses import dataclass
from typing import BinaryIO

_logger = logging.getLogger(__name__)

_IS_WINDOWS = os.name == "nt"
_BUFFER_SIZE = 64 * 1024


def set_normal_dir_permissions(path: str | os.PathLike[str]) -> None:
    """Set a directory's mode to 0755 regardless of its original mode."""
    if not _IS_WINDOWS:
        os.chmod(path, 0o755)


def set_normal_file_permissions(path: str | os.PathLike[str]) -> None:
    """Set a file's mode to 0644."""
    if not _IS_WINDOWS:
        os.chmod(path, 0o644)


def read_file(file: str | os.PathLike[str], size: int) -> bytes:
    """Read the first ``size`` bytes of a file, zero-padded to ``size``."""
    with open(file, "rb") as stream:
        data = stream.read(size)
    if not data and size > 0:
        raise EOFError(f"{os.fspath(file)} is empty")
    return data.ljust(size, b"\0")


def _create_file(path: str) -> BinaryIO:
    try:
        return open(path, "wb")
    except FileNotFoundError:
        directory = os.path.dirname(path)
        if not directory:
            raise
    os.makedirs(directory, exist_ok=True)
    set_normal_dir_permissions(directory)
    return open(path, "wb")


def _fix_permissions(path: str, file_mode: int) -> None:
    permissions = stat.S_IMODE(file_mode)
    if permissions & stat.S_IXUSR:
        permissions |= stat.S_IXGRP | stat.S_IXOTH
    permissions |= stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH
    permissions &= ~(stat.S_ISUID | stat.S_ISGID)
    os.chmod(path, permissions)


def write_file_and_restore_normal_permissions(
    source: BinaryIO, target: str | os.PathLike[str], file_mode: int
) -> None:
    """Write ``source`` to ``target`` and give it readable, non-setuid permissions."""
    target = os.fspath(target)
    with _create_file(target) as destination:
        shutil.copyfileobj(source, destination, _BUFFER_SIZE)
    _fix_permissions(target, file_mode)


def copy_file_and_restore_normal_permissions(
    source: str | os.PathLike[str], target: str | os.PathLike[str], file_mode: int
) -> None:
    """Copy a regular file, normalising the permissions of the copy."""
    with open(source, "rb") as stream:
        write_file_and_restore_normal_permissions(stream, target, file_mode)


@dataclass
class FileCopier:
    """Copies trees, optionally using hard links until one fails."""

    is_use_hard_links: bool = False

    def copy_dir_or_file(self, source: str | os.PathLike[str], target: str | os.PathLike[str]) -> None:
        """Copy a file, symlink or directory tree, creating parent directories."""
        if _IS_WINDOWS:
            self.is_use_hard_links = False
        source, target = os.fspath(source), os.fspath(target)
        _logger.debug(
            "copy files",
            extra={"fields": {"from": source, "to": target, "isUseHardLinks": self.is_use_hard_links}},
        )
        self._copy(source, target, True)

    def _copy(self, source: str, target: str, is_create_parent_dirs: bool) -> None:
        source_stat = os.lstat(source)
        if stat.S_ISDIR(source_stat.st_mode):
            if is_create_parent_dirs:
                os.makedirs(target, exist_ok=True)
            else:
                try:
                    os.mkdir(target)
                except FileExistsError:
                    pass
            set_normal_dir_permissions(target)
            self._copy_dir(source, target)
            return

        if is_create_parent_dirs:
            parent = os.path.dirname(target)
            if parent:
                os.makedirs(parent, exist_ok=True)

        if stat.S_ISLNK(source_stat.st_mode):
            self._create_symlink(source, target)
        else:
            self.copy_file(source, target, is_create_parent_dirs, source_stat)

    def _copy_dir(self, source: str, target: str) -> None:
        for name in sorted(os.listdir(source)):
            if name == ".DS_Store":
                continue
            self._copy(os.path.join(source, name), os.path.join(target, name), False)

    def copy_file(
        self,
        source: str | os.PathLike[str],
        target: str | os.PathLike[str],
        is_create_parent_dirs: bool,
        source_stat: os.stat_result,
    ) -> None:
        """Hard-link or copy one regular file."""
        if self.is_use_hard_links:
            try:
                os.link(source, target)
                return
            except OSError as error:
                self.is_use_hard_links = False
                _logger.debug(
                    "cannot copy using hard link",
                    extra={"fields": {"error": error, "from": os.fspath(source), "to": os.fspath(target)}},
                )
        copy_file_and_restore_normal_permissions(source, target, source_stat.st_mode)

    @staticmethod
    def _create_symlink(source: str, target: str) -> None:
        link = os.readlink(source)
        if os.path.isabs(link):
            link = os.path.relpath(link, os.path.dirname(source))
        os.symlink(link, target)


def copy_using_hardlink(source: str | os.PathLike[str], target: str | os.PathLike[str]) -> None:
    """Copy using hard links where possible."""
    FileCopier(is_use_hard_links=True).copy_dir_or_file(source, target)


def copy_dir_or_file(source: str | os.PathLike[str], target: str | os.PathLike[str]) -> None:
    """Copy a file or directory tree."""
    FileCopier().copy_dir_or_file(source, target)


def find_parent_with_file(cwd: str | os.PathLike[str], file: str) -> str | None:
    """The nearest of ``cwd`` and its ancestors that contains ``file``."""
    current = os.fspath(cwd)
    while True:
        if os.path.exists(os.path.join(current, file)):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent