import json
import os

import pytest

from appbuilder.cli import generate_ksuid, main

_BASE62 = set("0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz")


@pytest.fixture(autouse=True)
def no_compress_mode(monkeypatch):
    monkeypatch.delenv("SZA_ARCHIVE_TYPE", raising=False)


def test_ksuid_shape():
    value = generate_ksuid()
    assert len(value) == 27
    assert set(value) <= _BASE62


def test_ksuid_unique():
    assert len({generate_ksuid() for _ in range(20)}) == 20


def test_ksuid_command(capsys):
    assert main(["ksuid"]) == 0
    out = capsys.readouterr().out
    assert len(out) == 27
    assert set(out) <= _BASE62


def test_version(capsys):
    with pytest.raises(SystemExit) as info:
        main(["--version"])
    assert info.value.code == 0
    assert "3.5.10" in capsys.readouterr().out


def test_unknown_command():
    with pytest.raises(SystemExit) as info:
        main(["no-such-command"])
    assert info.value.code == 2


def test_copy_file(tmp_path):
    source = tmp_path / "a.txt"
    source.write_text("content")
    target = tmp_path / "nested" / "b.txt"
    assert main(["copy", "-f", str(source), "-t", str(target)]) == 0
    assert target.read_text() == "content"


def test_copy_missing_source_fails(tmp_path):
    assert main(["copy", "-f", str(tmp_path / "missing"), "-t", str(tmp_path / "b")]) == 1


def test_blockmap_appends_to_input(tmp_path, capsys):
    path = tmp_path / "data.bin"
    original = b"hello world. " * 1024
    path.write_bytes(original)
    assert main(["blockmap", "-i", str(path)]) == 0
    info = json.loads(capsys.readouterr().out)
    assert set(info) == {"size", "sha512", "blockMapSize"}
    assert info["size"] == os.path.getsize(path)
    assert info["size"] == len(original) + info["blockMapSize"] + 4


def test_node_dep_tree_flatten(tmp_path, capsys):
    (tmp_path / "package.json").write_text(
        json.dumps({"name": "root", "version": "1.0.0", "dependencies": {"a": "^1.0.0"}})
    )
    dep_dir = tmp_path / "node_modules" / "a"
    dep_dir.mkdir(parents=True)
    (dep_dir / "package.json").write_text(json.dumps({"name": "a", "version": "1.0.0"}))

    assert main(["node-dep-tree", "--flatten", "--dir", str(tmp_path)]) == 0
    result = json.loads(capsys.readouterr().out)
    assert [item["name"] for item in result] == ["a"]
    assert result[0]["version"] == "1.0.0"
    assert result[0]["dir"] == str(dep_dir)


def test_unzip_command(tmp_path):
    import zipfile

    archive = tmp_path / "in.zip"
    with zipfile.ZipFile(archive, "w") as zf:
        zf.writestr("dir/file.txt", "inside")
    out = tmp_path / "out"
    assert main(["unzip", "-i", str(archive), "-o", str(out)]) == 0
    assert (out / "dir" / "file.txt").read_text() == "inside"