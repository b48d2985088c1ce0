import os

import pytest

from appbuilder.artifacts import (
    check_cache,
    download_artifact,
    get_cache_directory,
    get_cache_directory_for_artifact,
    get_cache_directory_for_artifact_custom,
    remove_archive_file,
    rename_to_final_file,
)


@pytest.fixture
def cache(monkeypatch, tmp_path):
    root = tmp_path / "cache"
    monkeypatch.setenv("ELECTRON_BUILDER_CACHE", str(root))
    return root


def test_cache_directory_env_override(monkeypatch, tmp_path):
    monkeypatch.setenv("MY_APP_CACHE", str(tmp_path))
    assert get_cache_directory("myapp", "MY_APP_CACHE", True) == str(tmp_path)


def test_cache_directory_default_mentions_app(monkeypatch, tmp_path):
    monkeypatch.delenv("MY_APP_CACHE", raising=False)
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
    assert "myapp" in get_cache_directory("myapp", "MY_APP_CACHE", False)


def test_artifact_directory_uses_prefix_before_hyphen(cache):
    assert get_cache_directory_for_artifact("fpm-1.9.3-2.3.1-linux-x86") == os.path.join(
        str(cache), "fpm"
    )


def test_artifact_directory_without_hyphen(cache):
    assert get_cache_directory_for_artifact("zstd") == os.path.join(str(cache), "zstd")


def test_artifact_directory_leading_hyphen_kept(cache):
    assert get_cache_directory_for_artifact("-odd") == os.path.join(str(cache), "-odd")


def test_custom_artifact_directory(cache):
    assert get_cache_directory_for_artifact_custom("zstd-1.5.5-mac") == os.path.join(
        str(cache), "zstd-1.5.5-mac"
    )


def test_check_cache_found(tmp_path):
    existing = tmp_path / "cache" / "tool"
    existing.mkdir(parents=True)
    assert check_cache(str(existing), str(tmp_path / "cache")) is True


def test_check_cache_missing_creates_cache_dir(tmp_path):
    cache_dir = tmp_path / "new-cache"
    assert check_cache(str(cache_dir / "tool"), str(cache_dir)) is False
    assert cache_dir.is_dir()


def test_check_cache_file_is_not_a_hit(tmp_path):
    file_path = tmp_path / "tool"
    file_path.write_text("x")
    assert check_cache(str(file_path), str(tmp_path)) is False


def test_remove_archive_file(tmp_path):
    archive = tmp_path / "a.7z"
    archive.write_bytes(b"data")
    remove_archive_file(str(archive), str(tmp_path / "a"))
    assert not archive.exists()


def test_remove_missing_archive_is_tolerated(tmp_path):
    remove_archive_file(str(tmp_path / "absent.7z"), str(tmp_path))
    assert list(tmp_path.iterdir()) == []


def test_rename_to_final_file(tmp_path):
    source = tmp_path / "tmp123"
    source.mkdir()
    (source / "bin").write_text("tool")
    target = tmp_path / "final"
    rename_to_final_file(str(source), str(target))
    assert (target / "bin").read_text() == "tool"
    assert not source.exists()


def test_rename_onto_populated_dir_is_tolerated(tmp_path):
    source = tmp_path / "tmp123"
    source.mkdir()
    (source / "a").write_text("new")
    target = tmp_path / "final"
    target.mkdir()
    (target / "b").write_text("old")
    rename_to_final_file(str(source), str(target))
    assert (target / "b").read_text() == "old"
    assert source.exists()


def test_download_artifact_cache_hit(cache):
    cached = cache / "appimage" / "appimage-12.0.1"
    cached.mkdir(parents=True)
    result = download_artifact("appimage-12.0.1", "https://example.com/appimage-12.0.1.7z", "")
    assert result == str(cached)


def test_download_artifact_name_from_url(cache):
    cached = cache / "foo" / "foo-1.2.3"
    cached.mkdir(parents=True)
    result = download_artifact("", "https://example.com/dl/foo-1.2.3.tar.7z", "")
    assert result == str(cached)


def test_download_artifact_without_url_raises(cache):
    with pytest.raises(ValueError, match="url not specified"):
        download_artifact("unknown-1.0", "", "")
    assert (cache / "unknown").is_dir()