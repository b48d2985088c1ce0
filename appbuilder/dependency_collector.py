"""Collecting the installed dependency tree of a Node.js project."""

from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import dataclass, field

_logger = logging.getLogger(__name__)

_MAX_ROUNDS = 999

_STATE_UNSET = 0
_STATE_OPTIONAL = 1
_STATE_REQUIRED = 2


@dataclass(eq=False)
class Dependency:
    """A package read from its package.json, placed in the dependency tree."""

    name: str = ""
    version: str = ""
    dependencies: dict[str, str] = field(default_factory=dict)
    optional_dependencies: dict[str, str] = field(default_factory=dict)
    napi_versions: list[int] | None = None
    dir: str = ""
    alias: str = ""
    optional_state: int = _STATE_UNSET
    parent: Dependency | None = field(default=None, repr=False)
    conflict_dependency: dict[str, Dependency] | None = field(default=None, repr=False)

    @property
    def is_optional(self) -> bool:
        """Whether the package is reachable only through optional dependencies."""
        return self.optional_state == _STATE_OPTIONAL

    @property
    def has_prebuild_install(self) -> bool:
        """Whether the package depends on prebuild-install."""
        return "prebuild-install" in self.dependencies


def _string_map(value: object, key: str, package_file: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"Error reading package.json: {package_file}: {key} must be an object")
    return {str(name): str(spec) for name, spec in value.items()}


def read_package_json(directory: str | os.PathLike[str]) -> Dependency:
    """Read ``package.json`` from ``directory``.

    A missing file raises :class:`FileNotFoundError`; malformed content raises :class:`ValueError`.
    """
    directory = os.fspath(directory)
    package_file = os.path.join(directory, "package.json")
    with open(package_file, "rb") as stream:
        raw = stream.read()
    try:
        data = json.loads(raw)
    except ValueError as error:
        raise ValueError(f"Error reading package.json: {package_file}: {error}") from error
    if not isinstance(data, dict):
        raise ValueError(f"Error reading package.json: {package_file}: not an object")

    napi_versions: list[int] | None = None
    binary = data.get("binary")
    if binary is not None:
        if not isinstance(binary, dict):
            raise ValueError(f"Error reading package.json: {package_file}: binary must be an object")
        napi_versions = [int(version) for version in binary.get("napi_versions") or []]

    return Dependency(
        name=str(data.get("name") or ""),
        version=str(data.get("version") or ""),
        dependencies=_string_map(data.get("dependencies"), "dependencies", package_file),
        optional_dependencies=_string_map(
            data.get("optionalDependencies"), "optionalDependencies", package_file
        ),
        napi_versions=napi_versions,
        dir=directory,
    )


def is_parent_path(parent_path: str | os.PathLike[str], child_path: str | os.PathLike[str]) -> bool:
    """Whether ``child_path`` lies strictly inside ``parent_path``."""
    try:
        relative = os.path.relpath(
            os.path.normpath(os.fspath(child_path)), os.path.normpath(os.fspath(parent_path))
        )
    except ValueError:
        return False
    return not (relative == "." or relative.startswith(".."))


def get_parent_dir(file: str | os.PathLike[str] | None) -> str | None:
    """The parent directory, or None at a root or for a one-character parent."""
    if not file:
        return None
    file = os.fspath(file)
    parent = os.path.dirname(file)
    if len(parent) > 1 and parent != file:
        return parent
    return None


def find_nearest_node_module_dir(directory: str | os.PathLike[str] | None) -> str | None:
    """The nearest ``node_modules`` directory in ``directory`` or its ancestors."""
    if not directory:
        return None
    current = os.fspath(directory)
    for _ in range(_MAX_ROUNDS + 1):
        candidate = os.path.join(current, "node_modules")
        try:
            candidate_stat = os.stat(candidate)
        except FileNotFoundError:
            pass
        else:
            if stat.S_ISDIR(candidate_stat.st_mode):
                return candidate

        parent = get_parent_dir(current)
        if parent is None:
            return None
        current = parent
    raise RuntimeError(f"infinite loop: {current}")


def _resolve_path(directory: str) -> str:
    if os.path.islink(directory):
        return os.path.realpath(directory)
    return directory


def _correct_optional_state(is_optional: bool, child: Dependency) -> None:
    if is_optional:
        if child.optional_state == _STATE_UNSET:
            child.optional_state = _STATE_OPTIONAL
    else:
        child.optional_state = _STATE_REQUIRED


@dataclass
class Collector:
    """Walks installed packages from a root package and hoists them."""

    excluded_dependencies: frozenset[str] | set[str] | None = None
    root_dependency: Dependency | None = None
    unresolved_dependencies: set[str] = field(default_factory=set)
    all_dependencies: list[Dependency] = field(default_factory=list)
    node_module_dir_to_dependency_map: dict[str, dict[str, Dependency]] = field(default_factory=dict)
    hoisted_dependency_map: dict[str, Dependency] = field(default_factory=dict)
    _all_dependencies_map: dict[tuple[str, str, str], Dependency] = field(
        default_factory=dict, repr=False
    )

    def read_dependency_tree(self, dependency: Dependency) -> None:
        """Read ``dependency`` and, depth first, everything it depends on."""
        if self.root_dependency is None:
            self.root_dependency = dependency
        else:
            key = (dependency.alias, dependency.version, dependency.dir)
            if key in self._all_dependencies_map:
                return
            self._all_dependencies_map[key] = dependency
            self.all_dependencies.append(dependency)

        if not dependency.dependencies and not dependency.optional_dependencies:
            return

        node_module_dir = find_nearest_node_module_dir(dependency.dir)
        if node_module_dir is None:
            self.unresolved_dependencies.update(dependency.dependencies)
            return

        # direct children are resolved before descending into any of them
        queue: list[Dependency] = []
        self._process_dependencies(dependency.dependencies, node_module_dir, False, queue)
        self._process_dependencies(dependency.optional_dependencies, node_module_dir, True, queue)

        for child in queue:
            self.read_dependency_tree(child)
            child.parent = dependency

    def _process_dependencies(
        self,
        names: dict[str, str],
        node_module_dir: str,
        is_optional: bool,
        queue: list[Dependency],
    ) -> None:
        unresolved: list[str] = []
        for name in sorted(names):
            if name.startswith("@types/"):
                continue
            if self.excluded_dependencies is not None and name in self.excluded_dependencies:
                continue
            child = self._resolve_dependency(node_module_dir, name)
            if child is None:
                unresolved.append(name)
            else:
                queue.append(child)
                _correct_optional_state(is_optional, child)

        rounds = 0
        current_dir: str | None = node_module_dir
        while unresolved:
            current_dir = find_nearest_node_module_dir(get_parent_dir(get_parent_dir(current_dir)))
            if current_dir is None:
                if not is_optional:
                    self.unresolved_dependencies.update(unresolved)
                return

            _logger.debug(
                "unresolved deps",
                extra={"fields": {"unresolved": unresolved, "nodeModuleDir": current_dir, "round": rounds}},
            )

            still_unresolved: list[str] = []
            for name in unresolved:
                child = self._resolve_dependency(current_dir, name)
                if child is None:
                    still_unresolved.append(name)
                else:
                    queue.append(child)
                    _correct_optional_state(is_optional, child)

            if not still_unresolved:
                break
            unresolved = still_unresolved

            rounds += 1
            if rounds > _MAX_ROUNDS:
                raise RuntimeError(f"Infinite loop: {current_dir}")

    def _resolve_dependency(self, parent_node_module_dir: str, name: str) -> Dependency | None:
        by_name = self.node_module_dir_to_dependency_map.get(parent_node_module_dir)
        if by_name is not None and name in by_name:
            return by_name[name]

        dependency_dir = os.path.join(parent_node_module_dir, name)
        try:
            dependency_stat = os.stat(dependency_dir)
        except OSError:
            dependency_stat = None
        if dependency_stat is not None and not stat.S_ISDIR(dependency_stat.st_mode):
            return None

        try:
            dependency = read_package_json(dependency_dir)
        except FileNotFoundError:
            return None

        if name == "libui-node":
            # a packaged app never needs to download libui
            dependency.dependencies.pop("libui-download", None)

        if by_name is None:
            by_name = self.node_module_dir_to_dependency_map.setdefault(parent_node_module_dir, {})
        by_name[name] = dependency
        dependency.alias = name
        dependency.dir = _resolve_path(dependency_dir)
        return dependency

    def process_hoist_dependency_map(self) -> None:
        """Place every collected package at the top level or under the package it conflicts in."""
        self.hoisted_dependency_map = {}
        for dependency in self.all_dependencies:
            self._place(dependency)

    def _is_root(self, dependency: Dependency | None) -> bool:
        return dependency is None or dependency is self.root_dependency

    def _place(self, dependency: Dependency) -> None:
        ancestor = dependency.parent
        while not self._is_root(ancestor):
            assert ancestor is not None
            if is_parent_path(ancestor.dir, dependency.dir):
                if ancestor.conflict_dependency is None:
                    ancestor.conflict_dependency = {}
                ancestor.conflict_dependency[dependency.alias] = dependency
                return
            ancestor = ancestor.parent

        hoisted = self.hoisted_dependency_map.get(dependency.alias)
        if hoisted is None:
            self.hoisted_dependency_map[dependency.alias] = dependency
            return
        if hoisted.version == dependency.version:
            return

        # layouts such as pnpm keep conflicting versions outside the parent's directory
        ancestor = dependency.parent
        last = dependency
        while not self._is_root(ancestor):
            assert ancestor is not None
            if self.hoisted_dependency_map.get(ancestor.alias) is not None:
                last = ancestor
                break
            if ancestor.conflict_dependency is not None:
                conflicting = ancestor.conflict_dependency.get(dependency.alias)
                if conflicting is not None:
                    if conflicting.version == dependency.version:
                        return
                    break
            last = ancestor
            ancestor = ancestor.parent

        if last.conflict_dependency is None:
            last.conflict_dependency = {}
        last.conflict_dependency[dependency.alias] = dependency