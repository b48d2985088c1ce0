"""Locating the Linux packaging tools bundled with the AppImage tool set."""

from __future__ import annotations

import os
import platform
from collections.abc import Callable, Iterable

from .artifacts import download_artifact
from .system import OsName, current_os, is_env_true
from .tools import get_github_base_url

_APP_IMAGE_DIR_NAME = "appimage-12.0.1"
_APP_IMAGE_CHECKSUM = (
    "3el6RUh6XoYJCI/ZOApyb0LLU/gSxDntVZ46R6+JNEANzfSo7/TfrzCRp5KlDo35c24r3ZOP7nnw4RqHwkMRLw=="
)

_MACHINE_TO_SUFFIX = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "i386": "ia32",
    "i686": "ia32",
    "x86": "ia32",
    "386": "ia32",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def get_app_image_tool_dir() -> str:
    """Fetch the AppImage tool set and return its directory."""
    url = f"{get_github_base_url()}{_APP_IMAGE_DIR_NAME}/{_APP_IMAGE_DIR_NAME}.7z"
    return download_artifact("", url, _APP_IMAGE_CHECKSUM)


def arch_suffix(machine: str | None = None) -> str:
    """The architecture suffix used by the tool set's binary directories."""
    name = (platform.machine() if machine is None else machine).lower()
    if name in _MACHINE_TO_SUFFIX:
        return _MACHINE_TO_SUFFIX[name]
    if name.startswith("arm"):
        return "arm32"
    return name


def get_app_image_tool_bin(tool_dir: str) -> str:
    """The directory holding the tool binaries for the current platform."""
    if current_os() is OsName.MAC:
        return os.path.join(tool_dir, "darwin")
    return os.path.join(tool_dir, "linux-" + arch_suffix())


def get_linux_tool(name: str) -> str:
    """Path of a tool from the AppImage tool set, fetching the set if needed."""
    return os.path.join(get_app_image_tool_bin(get_app_image_tool_dir()), name)


def get_mksquashfs() -> str:
    """The mksquashfs executable to use."""
    if is_env_true("USE_SYSTEM_MKSQUASHFS"):
        return "mksquashfs"
    configured = os.environ.get("MKSQUASHFS_PATH")
    if configured:
        return configured
    return get_linux_tool("mksquashfs")


def read_dir_content_to(
    directory: str,
    paths: Iterable[str] = (),
    predicate: Callable[[str], bool] | None = None,
) -> list[str]:
    """``paths`` followed by the entries of ``directory`` accepted by ``predicate``."""
    result = list(paths)
    result.extend(
        os.path.join(directory, name)
        for name in sorted(os.listdir(directory))
        if predicate is None or predicate(name)
    )
    return result