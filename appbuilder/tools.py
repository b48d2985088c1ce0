"""Locations and checksums of the prebuilt tools fetched on demand."""

from __future__ import annotations

import os
import platform
from dataclasses import dataclass, field

from .artifacts import download_artifact
from .system import OsName, current_os

_DEFAULT_GITHUB_BASE_URL = (
    "https://github.com/electron-userland/electron-builder-binaries/releases/download/"
)
_DEFAULT_REPOSITORY = "electron-userland/electron-builder-binaries"

_MIRROR_VARIABLES = (
    "NPM_CONFIG_ELECTRON_BUILDER_BINARIES_MIRROR",
    "npm_config_electron_builder_binaries_mirror",
    "npm_package_config_electron_builder_binaries_mirror",
    "ELECTRON_BUILDER_BINARIES_MIRROR",
)

_MACHINE_TO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "armv8": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "386": "386",
}

_ARCH_TO_TOOL_ARCH = {"arm": "armv7", "arm64": "armv8", "amd64": "x64"}


@dataclass(frozen=True)
class ToolDescriptor:
    """A tool release: its name, version, repository and per-platform checksums."""

    name: str
    version: str
    repository: str = ""
    mac: str = ""
    linux: dict[str, str] = field(default_factory=dict)
    win: dict[str, str] = field(default_factory=dict)


ZSTD = ToolDescriptor(
    name="zstd",
    version="1.5.5",
    mac="hL0EMVepIyplxO4c8ZbESm6eGBs8IRMybyk81b76nLk6wHM4dXN9mi7CPmTAMa6gw06ki6Vr4w6vI69+HvIKGg==",
    linux={
        "x64": "01M9lAhvtX50Lb0CNZ4mY3ajGTVvKwlbDNLjE/e93lg9AfYFDNG5C9twCKbvvrXjatDCT6w3eCCFw0tw5221RA==",
    },
    win={
        "ia32": "jddFtdnYsgXmm9qozFHYqIry8fPlr61ytnKDXV+d7w/HIe4E6kCBZholADqIrGFgcCmblhY4Nh/t8oBTLE7eYQ==",
        "x64": "Cg/7RInWfRhfibx4TJ1SMgw5LMeFQp6lH0GA9CP1/EhlE+RomYc1yKJhwDMnO31s0841feZbqdcHTPhQTQyfDg==",
    },
)


def _go_arch(machine: str) -> str:
    machine = machine.lower()
    if machine in _MACHINE_TO_ARCH:
        return _MACHINE_TO_ARCH[machine]
    if machine.startswith("arm"):
        return "arm"
    return machine


def get_github_base_url() -> str:
    """Base URL of the binaries release downloads; a mirror may be configured."""
    for name in _MIRROR_VARIABLES:
        value = os.environ.get(name)
        if value:
            return value
    return _DEFAULT_GITHUB_BASE_URL


def download_named_artifact(name: str, url: str, checksum: str) -> str:
    """Download and unpack an artifact into the cache under ``name``."""
    return download_artifact(name, url, checksum)


def _download_from_github(name: str, version: str, checksum: str) -> str:
    artifact_id = f"{name}-{version}"
    return download_named_artifact(
        artifact_id, f"{get_github_base_url()}{artifact_id}/{artifact_id}.7z", checksum
    )


def download_fpm() -> str:
    """Fetch fpm for the current platform and return its directory."""
    if current_os() is OsName.LINUX:
        if _go_arch(platform.machine()) == "amd64":
            checksum = "fcKdXPJSso3xFs5JyIJHG1TfHIRTGDP0xhSBGZl7pPZlz4/TJ4rD/q3wtO/uaBBYeX0qFFQAFjgu1uJ6HLHghA=="
            arch_suffix = "-x86_64"
        else:
            checksum = "OnzvBdsHE5djcXcAT87rwbnZwS789ZAd2ehuIO42JWtBAHNzXKxV4o/24XFX5No4DJWGO2YSGQttW+zn7d/4rQ=="
            arch_suffix = "-x86"
        name = "fpm-1.9.3-2.3.1-linux" + arch_suffix
        return download_named_artifact(name, f"{get_github_base_url()}{name}/{name}.7z", checksum)
    return _download_from_github(
        "fpm",
        "1.9.3-20150715-2.2.2-mac",
        "oXfq+0H2SbdrbMik07mYloAZ8uHrmf6IJk+Q3P1kwywuZnKTXSaaeZUJNlWoVpRDWNu537YxxpBQWuTcF+6xfw==",
    )


def download_zstd(os_name: OsName) -> str:
    """Fetch zstd for ``os_name`` and the current architecture."""
    return download_tool(ZSTD, os_name)


def download_win_code_sign() -> str:
    """Fetch the Windows code signing tool set."""
    return _download_from_github(
        "winCodeSign",
        "2.6.0",
        "6LQI2d9BPC3Xs0ZoTQe1o3tPiA28c7+PY69Q9i/pD8lY45psMtHuLwv3vRckiVr3Zx1cbNyLlBR8STwCdcHwtA==",
    )


def tool_artifact(
    descriptor: ToolDescriptor, os_name: OsName, machine: str | None = None
) -> tuple[str, str, str]:
    """The cache name, URL and checksum of a tool for a platform and machine.

    Raises :class:`ValueError` when no checksum is known for the combination.
    """
    arch = _go_arch(platform.machine() if machine is None else machine)
    arch = _ARCH_TO_TOOL_ARCH.get(arch, arch)

    if os_name is OsName.MAC:
        checksum = descriptor.mac
        arch_qualifier = ""
        os_qualifier = "mac"
    else:
        arch_qualifier = "-" + arch
        if os_name is OsName.WINDOWS:
            os_qualifier = "win"
            checksum = descriptor.win.get(arch, "")
        else:
            os_qualifier = "linux"
            checksum = descriptor.linux.get(arch, "")

    if not checksum:
        raise ValueError(f"Checksum not specified for {os_name}:{arch}")

    repository = descriptor.repository or _DEFAULT_REPOSITORY
    tag_prefix = "v" if descriptor.repository else descriptor.name + "-"

    os_and_arch = os_qualifier + arch_qualifier
    # the cache name includes the platform so a cache can be shared between platforms
    dir_name = f"{descriptor.name}-{descriptor.version}-{os_and_arch}"
    url = (
        f"https://github.com/{repository}/releases/download/{tag_prefix}{descriptor.version}/"
        f"{descriptor.name}-v{descriptor.version}-{os_and_arch}.7z"
    )
    return dir_name, url, checksum


def download_tool(descriptor: ToolDescriptor, os_name: OsName) -> str:
    """Fetch a tool for ``os_name`` and the current machine; return its directory."""
    dir_name, url, checksum = tool_artifact(descriptor, os_name)
    return download_named_artifact(dir_name, url, checksum)


def get_zstd() -> str:
    """Path of the zstd executable for the current platform, fetching it if needed."""
    os_name = current_os()
    directory = download_zstd(os_name)
    executable = "zstd.exe" if os_name is OsName.WINDOWS else "zstd"
    return os.path.join(directory, executable)