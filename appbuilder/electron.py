"""Downloading, caching and unpacking Electron distributions."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
import shutil
import tempfile
import zipfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from .artifacts import get_cache_directory, rename_to_final_file
from .downloader import Downloader
from .zipx import unzip

_logger = logging.getLogger(__name__)

_RELEASES_URL = "https://github.com/electron/electron/releases/download/"
_NIGHTLIES_URL = "https://github.com/electron/nightlies/releases/download/"


@dataclass
class ElectronDownloadOptions:
    """Which Electron build to fetch and where from."""

    version: str = ""
    cache_dir: str = ""
    mirror: str = ""
    platform: str = ""
    arch: str = ""
    custom_dir: str = ""
    custom_filename: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElectronDownloadOptions:
        """Build options from their JSON form."""
        return cls(
            version=str(data.get("version") or ""),
            cache_dir=str(data.get("cache") or ""),
            mirror=str(data.get("mirror") or ""),
            platform=str(data.get("platform") or ""),
            arch=str(data.get("arch") or ""),
            custom_dir=str(data.get("customDir") or ""),
            custom_filename=str(data.get("customFilename") or ""),
        )


def parse_config(json_config: str) -> list[ElectronDownloadOptions]:
    """Parse a JSON list of download options."""
    return [ElectronDownloadOptions.from_dict(item) for item in json.loads(json_config) or []]


def decode_base64_if_needed(data: str) -> Any:
    """Parse JSON given either as text or as base64-encoded text."""
    text = data.strip()
    if not text.startswith(("[", "{")):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as error:
            raise ValueError(f"cannot decode configuration: {error}") from error
    return json.loads(text)


def normalize_version(version: str) -> str:
    """The version with a leading ``v``."""
    return version if version.startswith("v") else "v" + version


def get_base_url(config: ElectronDownloadOptions) -> str:
    """The mirror to download from."""
    url = (
        config.mirror
        or os.environ.get("NPM_CONFIG_ELECTRON_MIRROR")
        or os.environ.get("npm_config_electron_mirror")
        or os.environ.get("ELECTRON_MIRROR")
        or (_NIGHTLIES_URL if "-nightly." in config.version else _RELEASES_URL)
    )
    # mirrors used to be configured with a trailing "/v"
    if url.endswith("/v"):
        url = url[:-1]
    return url


def get_middle_url(config: ElectronDownloadOptions) -> str:
    """The release directory part of the URL."""
    return (
        os.environ.get("ELECTRON_CUSTOM_DIR")
        or config.custom_dir
        or normalize_version(config.version)
    )


def get_filename(config: ElectronDownloadOptions) -> str:
    """The standard archive name of an Electron build."""
    return f"electron-{normalize_version(config.version)}-{config.platform}-{config.arch}.zip"


def get_url_suffix(config: ElectronDownloadOptions) -> str:
    """The file name part of the URL."""
    return (
        os.environ.get("ELECTRON_CUSTOM_FILENAME")
        or config.custom_filename
        or get_filename(config)
    )


class ElectronDownloader:
    """Fetches one Electron archive into a cache directory."""

    def __init__(self, config: ElectronDownloadOptions, cache_dir: str) -> None:
        self.config = config
        self.cache_dir = cache_dir

    def cached_file(self) -> str:
        """Where the archive is kept in the cache."""
        name = self.config.custom_filename or get_filename(self.config)
        return os.path.join(self.cache_dir, name)

    def download(self) -> str:
        """Return the cached archive, downloading it first if it is missing."""
        if not self.config.version:
            raise ValueError("version not specified")
        if not self.config.platform:
            raise ValueError("platform not specified")
        if not self.config.arch:
            raise ValueError("arch not specified")

        cached_file = self.cached_file()
        if os.path.lexists(cached_file):
            if os.path.isdir(cached_file):
                raise IsADirectoryError("File expected, but got dir")
            return cached_file

        os.makedirs(self.cache_dir, exist_ok=True)
        url = get_base_url(self.config) + get_middle_url(self.config) + "/" + get_url_suffix(self.config)
        self._do_download(url, cached_file)
        return cached_file

    def _do_download(self, url: str, cached_file: str) -> None:
        descriptor, temp_file = tempfile.mkstemp(suffix=".zip", dir=self.cache_dir)
        os.close(descriptor)
        Downloader().download(url, temp_file, "")
        rename_to_final_file(temp_file, cached_file)


def _download_one(config: ElectronDownloadOptions) -> str:
    cache_dir = config.cache_dir or get_cache_directory("electron", "ELECTRON_CACHE", False)
    return ElectronDownloader(config, cache_dir).download()


def download_electron(configs: list[ElectronDownloadOptions]) -> list[str]:
    """Fetch every configured archive in parallel; return the cached files in order."""
    if not configs:
        return []
    with ThreadPoolExecutor(max_workers=len(configs)) as pool:
        return list(pool.map(_download_one, configs))


def _ensure_empty_dir(directory: str) -> None:
    if os.path.isdir(directory) and not os.path.islink(directory):
        for entry in os.scandir(directory):
            if entry.is_dir(follow_symlinks=False):
                shutil.rmtree(entry.path)
            else:
                os.remove(entry.path)
    else:
        os.makedirs(directory, exist_ok=True)


def unpack_electron(
    configs: list[ElectronDownloadOptions],
    output_dir: str,
    dist_mac_os_app_name: str = "Electron.app",
    is_re_download_on_file_read_error: bool = True,
) -> None:
    """Unpack the first configured Electron build into an emptied ``output_dir``.

    A damaged cached archive is deleted and fetched again once.
    """
    if not configs:
        raise ValueError("no electron configuration specified")

    with ThreadPoolExecutor(max_workers=2) as pool:
        emptied = pool.submit(_ensure_empty_dir, output_dir)
        downloaded = pool.submit(download_electron, configs)
    emptied.result()
    zip_file = downloaded.result()[0]

    app_name = dist_mac_os_app_name or "Electron.app"
    excluded = {
        os.path.normpath(os.path.join(output_dir, *parts))
        for parts in (
            (app_name, "Contents", "Resources", "default_app.asar"),
            ("resources", "default_app.asar"),
            (app_name, "Contents", "Resources", "inspector", ".htaccess"),
            ("resources", "inspector", ".htaccess"),
            ("version",),
        )
    }

    try:
        unzip(zip_file, output_dir, excluded)
    except (zipfile.BadZipFile, EOFError) as error:
        if not is_re_download_on_file_read_error:
            raise
        _logger.warning(
            "cannot unpack electron zip file, will be re-downloaded",
            extra={"fields": {"error": error}},
        )
        try:
            os.remove(zip_file)
        except FileNotFoundError:
            pass
        except OSError as remove_error:
            _logger.warning(
                "cannot delete", extra={"fields": {"error": remove_error, "file": zip_file}}
            )
        unpack_electron(configs, output_dir, app_name, False)