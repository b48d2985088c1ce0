"""Downloading, unpacking and caching tool archives."""

from __future__ import annotations

import logging
import os
import sys
import tempfile

from .downloader import Downloader
from .system import OsName, current_os, execute, get_7z_path, run_piped_commands

_logger = logging.getLogger(__name__)


def get_cache_directory(app_name: str, env_name: str, is_avoid_system_on_windows: bool) -> str:
    """The per-user cache directory of ``app_name``; ``env_name`` overrides it."""
    configured = os.environ.get(env_name)
    if configured:
        return configured

    os_name = current_os()
    if os_name is OsName.MAC:
        return os.path.join(os.path.expanduser("~"), "Library", "Caches", app_name)

    if os_name is OsName.WINDOWS:
        local_app_data = os.environ.get("LOCALAPPDATA")
        if local_app_data:
            if (
                is_avoid_system_on_windows
                and "\\windows\\system32\\" in local_app_data.lower()
            ) or os.environ.get("USERNAME", "").lower() == "system":
                return os.path.join(tempfile.gettempdir(), app_name + "-cache")
            return os.path.join(local_app_data, app_name, "Cache")

    xdg_cache = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache:
        return os.path.join(xdg_cache, app_name)
    return os.path.join(os.path.expanduser("~"), ".cache", app_name)


def _builder_cache() -> str:
    return get_cache_directory("electron-builder", "ELECTRON_BUILDER_CACHE", True)


def get_cache_directory_for_artifact(dir_name: str) -> str:
    """The cache directory for an artifact: named after the part before the first hyphen."""
    hyphen = dir_name.find("-")
    return os.path.join(_builder_cache(), dir_name[:hyphen] if hyphen > 0 else dir_name)


def get_cache_directory_for_artifact_custom(dir_name: str) -> str:
    """The cache directory for an artifact, named exactly ``dir_name``."""
    return os.path.join(_builder_cache(), dir_name)


def check_cache(file_path: str, cache_dir: str) -> bool:
    """Whether ``file_path`` is already a cached directory; otherwise make ``cache_dir`` exist."""
    try:
        if os.path.isdir(os.stat(file_path).st_mode and file_path):
            _logger.debug("found existing", extra={"fields": {"path": file_path}})
            return True
    except FileNotFoundError:
        pass
    except OSError as error:
        raise OSError(f"error during cache check for path {file_path}: {error}") from error

    os.makedirs(cache_dir, exist_ok=True)
    return False


def remove_archive_file(archive_name: str, temp_unpack_dir: str) -> None:
    """Delete a downloaded archive, only warning on failure."""
    try:
        os.remove(archive_name)
    except OSError as error:
        _logger.warning(
            "cannot remove downloaded archive (another process downloaded faster?)",
            extra={"fields": {"tempUnpackDir": temp_unpack_dir, "error": error}},
        )


def rename_to_final_file(temp_file: str, file_path: str) -> None:
    """Move an unpacked or downloaded item into place, only warning on failure."""
    try:
        os.rename(temp_file, file_path)
    except OSError as error:
        _logger.warning(
            "cannot move downloaded into final location (another process downloaded faster?)",
            extra={"fields": {"tempFile": temp_file, "path": file_path, "error": error}},
        )


def _unpack_tar_7z(archive_name: str, unpack_dir: str) -> None:
    tar_args = ["tar", "-x"]
    if sys.platform == "darwin":
        # keep symlink modes as they are
        tar_args.append("-p")
    tar_args.extend(["-f", "-"])
    run_piped_commands(
        [get_7z_path(), "e", "-bd", "-t7z", archive_name, "-so"], tar_args, consumer_cwd=unpack_dir
    )


def _unpack_7z(archive_name: str, unpack_dir: str, cache_dir: str) -> None:
    path_7z = get_7z_path()
    args = [path_7z, "x"]
    if not path_7z.endswith("7za"):
        # newer 7-Zip builds refuse links pointing outside the target without it
        args.append("-snld")
    args.extend(["-bd", archive_name, "-o" + unpack_dir])
    execute(args, cwd=cache_dir)


def _artifact_name_from_url(url: str) -> str:
    name = url.rstrip("/").rsplit("/", 1)[-1] or "."
    # a dot may belong to a version number, so only known suffixes are removed
    return name.removesuffix(".7z").removesuffix(".tar")


def download_artifact(dir_name: str, url: str = "", checksum: str = "") -> str:
    """Download and unpack an artifact into the global cache and return its directory.

    Without a URL the well-known artifacts fpm, zstd and winCodeSign are fetched from
    their default locations.
    """
    if not url:
        if dir_name in ("fpm", "zstd", "winCodeSign"):
            from .tools import download_fpm, download_win_code_sign, download_zstd

            if dir_name == "fpm":
                return download_fpm()
            if dir_name == "zstd":
                return download_zstd(current_os())
            return download_win_code_sign()

    if not dir_name:
        dir_name = _artifact_name_from_url(url)

    cache_dir = get_cache_directory_for_artifact(dir_name)
    file_path = os.path.join(cache_dir, dir_name)
    if check_cache(file_path, cache_dir):
        return file_path
    if not url:
        raise ValueError(f"url not specified for artifact {dir_name}")

    # 7z cannot extract from a stream, so the archive goes to a temporary file
    temp_unpack_dir = tempfile.mkdtemp(dir=cache_dir)
    archive_name = temp_unpack_dir + ".7z"

    Downloader().download(url, archive_name, checksum)

    if url.endswith(".tar.7z"):
        _unpack_tar_7z(archive_name, temp_unpack_dir)
    else:
        _unpack_7z(archive_name, temp_unpack_dir, cache_dir)

    remove_archive_file(archive_name, temp_unpack_dir)
    rename_to_final_file(temp_unpack_dir, file_path)
    return file_path