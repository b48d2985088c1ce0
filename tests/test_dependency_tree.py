import json
import os
from pathlib import Path

import pytest

from appbuilder.dependency_collector import Collector, read_package_json
from appbuilder.dependency_tree import build_tree, compare_paths, flatten_result, tree_result


def write_package(directory: Path, name, version, dependencies=None, optional=None, extra=None):
    directory.mkdir(parents=True, exist_ok=True)
    data = {"name": name, "version": version}
    if dependencies is not None:
        data["dependencies"] = dependencies
    if optional is not None:
        data["optionalDependencies"] = optional
    if extra:
        data.update(extra)
    (directory / "package.json").write_text(json.dumps(data))


def link(target: Path, link_path: Path):
    link_path.parent.mkdir(parents=True, exist_ok=True)
    os.symlink(target, link_path, target_is_directory=True)


def make_npm_demo(base: Path) -> Path:
    root = base / "npm-demo"
    write_package(root, "npm-demo", "1.0.0", {"react": "^18.2.0", "remote": "npm:@electron/remote@^2.1.2"})
    nm = root / "node_modules"
    write_package(nm / "react", "react", "18.2.0", {"loose-envify": "^1.1.0"})
    write_package(nm / "loose-envify", "loose-envify", "1.4.0", {"js-tokens": "^4.0.0"})
    write_package(nm / "js-tokens", "js-tokens", "4.0.0")
    write_package(nm / "remote", "@electron/remote", "2.1.2")
    return root


def make_pnpm_demo(base: Path) -> Path:
    root = base / "pnpm-demo"
    write_package(root, "pnpm-demo", "1.0.0", {"react": "^18.2.0", "remote": "npm:@electron/remote@^2.1.2"})
    nm = root / "node_modules"
    store = nm / ".pnpm"
    react = store / "react@18.2.0" / "node_modules" / "react"
    write_package(react, "react", "18.2.0", {"loose-envify": "^1.1.0"})
    envify = store / "loose-envify@1.4.0" / "node_modules" / "loose-envify"
    write_package(envify, "loose-envify", "1.4.0", {"js-tokens": "^4.0.0"})
    tokens = store / "js-tokens@4.0.0" / "node_modules" / "js-tokens"
    write_package(tokens, "js-tokens", "4.0.0")
    remote = store / "@electron+remote@2.1.2_electron@31.0.0" / "node_modules" / "@electron" / "remote"
    write_package(remote, "@electron/remote", "2.1.2")
    link(envify, store / "react@18.2.0" / "node_modules" / "loose-envify")
    link(tokens, store / "loose-envify@1.4.0" / "node_modules" / "js-tokens")
    link(react, nm / "react")
    link(remote, nm / "remote")
    return root


@pytest.fixture
def base(tmp_path):
    return tmp_path.resolve()


@pytest.mark.parametrize("maker", [make_npm_demo, make_pnpm_demo])
def test_node_dep_path_flatten_names(base, maker):
    result = build_tree(maker(base), flatten=True)
    assert [item["name"] for item in result] == ["js-tokens", "loose-envify", "react", "remote"]


@pytest.mark.parametrize("maker", [make_npm_demo, make_pnpm_demo])
def test_node_dep_tree_names(base, maker):
    result = build_tree(maker(base))
    names = [dep["name"] for item in result for dep in item["deps"]]
    assert sorted(names) == ["js-tokens", "loose-envify", "react", "remote"]


def test_tree_result_npm_layout(base):
    root = make_npm_demo(base)
    result = build_tree(root)
    assert result == [
        {
            "dir": str(root / "node_modules"),
            "deps": [
                {"name": "js-tokens", "version": "4.0.0"},
                {"name": "loose-envify", "version": "1.4.0"},
                {"name": "react", "version": "18.2.0"},
                {"name": "remote", "version": "2.1.2"},
            ],
        }
    ]


def test_flatten_with_conflict_and_extra_fields(base):
    root = base / "nested"
    write_package(root, "nested", "1.0.0", {"a": "1", "ms": "2.1.1"}, optional={"opt": "1"})
    nm = root / "node_modules"
    write_package(nm / "a", "a", "1.0.0", {"ms": "2.0.0", "prebuild-install": "7"},
                  extra={"binary": {"napi_versions": [3]}})
    write_package(nm / "a" / "node_modules" / "ms", "ms", "2.0.0")
    write_package(nm / "ms", "ms", "2.1.1")
    write_package(nm / "opt", "opt", "1.0.0")
    write_package(nm / "prebuild-install", "prebuild-install", "7.0.0")

    result = build_tree(root, flatten=True)
    assert result == [
        {
            "name": "a",
            "version": "1.0.0",
            "dir": str(nm / "a"),
            "hasPrebuildInstall": True,
            "napiVersions": [3],
            "conflictDependency": [
                {"name": "ms", "version": "2.0.0", "dir": str(nm / "a" / "node_modules" / "ms")}
            ],
        },
        {"name": "ms", "version": "2.1.1", "dir": str(nm / "ms")},
        {"name": "opt", "version": "1.0.0", "dir": str(nm / "opt"), "optional": True},
        {"name": "prebuild-install", "version": "7.0.0", "dir": str(nm / "prebuild-install")},
    ]


def test_tree_result_orders_directories(base):
    root = base / "nested"
    write_package(root, "nested", "1.0.0", {"a": "1", "ms": "2.1.1"})
    nm = root / "node_modules"
    write_package(nm / "a", "a", "1.0.0", {"ms": "2.0.0"})
    write_package(nm / "a" / "node_modules" / "ms", "ms", "2.0.0")
    write_package(nm / "ms", "ms", "2.1.1")

    collector = Collector()
    collector.read_dependency_tree(read_package_json(root))
    result = tree_result(collector)
    assert [item["dir"] for item in result] == [str(nm), str(nm / "a" / "node_modules")]
    assert result[1]["deps"] == [{"name": "ms", "version": "2.0.0"}]


def test_build_tree_excludes(base):
    root = make_npm_demo(base)
    result = build_tree(root, flatten=True, excluded_dependencies=["remote"])
    assert [item["name"] for item in result] == ["js-tokens", "loose-envify", "react"]


def test_flatten_result_empty():
    assert flatten_result({}) == []


def test_build_tree_missing_package_json(base):
    with pytest.raises(FileNotFoundError):
        build_tree(base / "absent")


@pytest.mark.parametrize(
    "a, b, expected",
    [
        (["a"], ["a", "b"], True),
        (["a", "b"], ["a"], False),
        (["b"], ["a", "c"], False),
        (["a", "c"], ["b"], True),
        (["a", "b"], ["a", "b"], False),
        (["a", "b"], ["a", "c"], True),
        ([], ["a"], True),
    ],
)
def test_compare_paths(a, b, expected):
    assert compare_paths(a, b) is expected