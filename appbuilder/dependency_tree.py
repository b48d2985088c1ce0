"""JSON-ready views of a collected dependency tree."""

from __future__ import annotations

import functools
import os
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .dependency_collector import Collector, Dependency, read_package_json


def compare_paths(a: Sequence[str], b: Sequence[str]) -> bool:
    """Whether path components ``a`` sort before ``b``."""
    a_length, b_length = len(a), len(b)
    for i in range(max(a_length, b_length)):
        if i == a_length:
            return True
        if i == b_length:
            return False
        if a[i] > b[i]:
            return False
        if a[i] < b[i]:
            return True
        if a_length < b_length:
            return True
        if a_length > b_length:
            return False
    return False


def _path_order(a: str, b: str) -> int:
    a_parts, b_parts = a.split(os.sep), b.split(os.sep)
    if compare_paths(a_parts, b_parts):
        return -1
    if compare_paths(b_parts, a_parts):
        return 1
    return 0


def _common_fields(entry: dict[str, Any], dependency: Dependency) -> dict[str, Any]:
    if dependency.is_optional:
        entry["optional"] = True
    if dependency.has_prebuild_install:
        entry["hasPrebuildInstall"] = True
    if dependency.napi_versions is not None:
        entry["napiVersions"] = list(dependency.napi_versions)
    return entry


def flatten_result(dependency_map: Mapping[str, Dependency]) -> list[dict[str, Any]]:
    """Hoisted packages sorted by alias, each with the conflicting versions it holds."""
    result = []
    for dependency in sorted(dependency_map.values(), key=lambda item: item.alias):
        entry = _common_fields(
            {"name": dependency.alias, "version": dependency.version, "dir": dependency.dir},
            dependency,
        )
        if dependency.conflict_dependency is not None:
            entry["conflictDependency"] = flatten_result(dependency.conflict_dependency)
        result.append(entry)
    return result


def tree_result(collector: Collector) -> list[dict[str, Any]]:
    """Packages grouped by the node_modules directory they were found in."""
    module_dirs = sorted(
        collector.node_module_dir_to_dependency_map, key=functools.cmp_to_key(_path_order)
    )
    result = []
    for module_dir in module_dirs:
        by_name = collector.node_module_dir_to_dependency_map[module_dir]
        deps = [
            _common_fields({"name": name, "version": by_name[name].version}, by_name[name])
            for name in sorted(by_name)
        ]
        result.append({"dir": module_dir, "deps": deps})
    return result


def build_tree(
    directory: str | os.PathLike[str],
    flatten: bool = False,
    excluded_dependencies: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """Collect the dependencies of the project in ``directory`` and describe them."""
    excluded = frozenset(excluded_dependencies) if excluded_dependencies else None
    collector = Collector(excluded_dependencies=excluded)
    root = read_package_json(directory)
    root.dir = os.fspath(directory)
    collector.read_dependency_tree(root)
    if flatten:
        collector.process_hoist_dependency_map()
        return flatten_result(collector.hoisted_dependency_map)
    return tree_result(collector)