import os

import pytest

from appbuilder.system import OsName
from appbuilder.tools import (
    ZSTD,
    ToolDescriptor,
    download_fpm,
    download_named_artifact,
    download_win_code_sign,
    download_zstd,
    get_github_base_url,
    tool_artifact,
)

DEFAULT_BASE = "https://github.com/electron-userland/electron-builder-binaries/releases/download/"
MIRROR_VARIABLES = (
    "NPM_CONFIG_ELECTRON_BUILDER_BINARIES_MIRROR",
    "npm_config_electron_builder_binaries_mirror",
    "npm_package_config_electron_builder_binaries_mirror",
    "ELECTRON_BUILDER_BINARIES_MIRROR",
)


@pytest.fixture
def clean_mirror(monkeypatch):
    for name in MIRROR_VARIABLES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def cache(tmp_path, monkeypatch):
    monkeypatch.setenv("ELECTRON_BUILDER_CACHE", str(tmp_path))
    return tmp_path


def test_default_base_url(clean_mirror):
    assert get_github_base_url() == DEFAULT_BASE


def test_mirror_precedence(clean_mirror, monkeypatch):
    monkeypatch.setenv("ELECTRON_BUILDER_BINARIES_MIRROR", "http://localhost/last/")
    assert get_github_base_url() == "http://localhost/last/"
    monkeypatch.setenv("npm_config_electron_builder_binaries_mirror", "http://localhost/second/")
    assert get_github_base_url() == "http://localhost/second/"


def test_mac_artifact():
    dir_name, url, checksum = tool_artifact(ZSTD, OsName.MAC, "x86_64")
    assert dir_name == "zstd-1.5.5-mac"
    assert url == (
        "https://github.com/electron-userland/electron-builder-binaries/releases/download/"
        "zstd-1.5.5/zstd-v1.5.5-mac.7z"
    )
    assert checksum == ZSTD.mac


def test_linux_x64_artifact():
    dir_name, url, checksum = tool_artifact(ZSTD, OsName.LINUX, "x86_64")
    assert dir_name.endswith("-linux-x64")
    assert url.endswith("/zstd-v1.5.5-linux-x64.7z")
    assert checksum == "01M9lAhvtX50Lb0CNZ4mY3ajGTVvKwlbDNLjE/e93lg9AfYFDNG5C9twCKbvvrXjatDCT6w3eCCFw0tw5221RA=="


def test_windows_x64_artifact():
    dir_name, _, checksum = tool_artifact(ZSTD, OsName.WINDOWS, "AMD64")
    assert dir_name.endswith("-win-x64")
    assert checksum == ZSTD.win["x64"]


def test_missing_checksum_raises():
    with pytest.raises(ValueError, match="Checksum not specified"):
        tool_artifact(ZSTD, OsName.LINUX, "aarch64")


def test_custom_repository_uses_v_tag():
    descriptor = ToolDescriptor(name="tool", version="2.0", repository="owner/repo", mac="sum")
    _, url, _ = tool_artifact(descriptor, OsName.MAC, "arm64")
    assert url.startswith("https://github.com/owner/repo/releases/download/v2.0/")


def test_download_zstd_uses_cache(cache):
    expected = cache / "zstd" / "zstd-1.5.5-mac"
    expected.mkdir(parents=True)
    assert download_zstd(OsName.MAC) == str(expected)


def test_download_win_code_sign_uses_cache(cache, clean_mirror):
    expected = cache / "winCodeSign" / "winCodeSign-2.6.0"
    expected.mkdir(parents=True)
    assert download_win_code_sign() == str(expected)


def test_download_named_artifact_uses_cache(cache):
    expected = cache / "thing" / "thing-1.0"
    expected.mkdir(parents=True)
    result = download_named_artifact("thing-1.0", "http://localhost/thing-1.0.7z", "sum")
    assert result == str(expected)


def test_download_fpm_result_is_cached_dir(cache, clean_mirror):
    fpm = cache / "fpm"
    for name in (
        "fpm-1.9.3-2.3.1-linux-x86_64",
        "fpm-1.9.3-2.3.1-linux-x86",
        "fpm-1.9.3-20150715-2.2.2-mac",
    ):
        (fpm / name).mkdir(parents=True)
    result = download_fpm()
    assert os.path.dirname(result) == str(fpm)
    assert os.path.isdir(result)