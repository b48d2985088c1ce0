"""Rebuilding native Node.js modules for a target platform."""

from __future__ import annotations

import dataclasses
import logging
import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, TypeVar

from .dependency_collector import find_nearest_node_module_dir
from .log import is_debug_enabled
from .system import ExecError, OsName, current_os, execute, is_env_true

_logger = logging.getLogger(__name__)

_T = TypeVar("_T")
_HEADER_SIZE = 128


@dataclass
class DepInfo:
    """A dependency that may need a native rebuild."""

    name: str
    version: str = ""
    optional: bool = False
    has_prebuild_install: bool = False
    napi_versions: list[int] = field(default_factory=list)
    parent_dir: str = ""
    dir: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DepInfo:
        return cls(
            name=str(data.get("name") or ""),
            version=str(data.get("version") or ""),
            optional=bool(data.get("optional", False)),
            has_prebuild_install=bool(data.get("hasPrebuildInstall", False)),
            napi_versions=[int(v) for v in data.get("napiVersions") or []],
        )


@dataclass
class DependencyList:
    """Dependencies installed in one node_modules directory."""

    dir: str
    dependencies: list[DepInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DependencyList:
        return cls(
            dir=str(data.get("dir") or ""),
            dependencies=[DepInfo.from_dict(item) for item in data.get("deps") or []],
        )


@dataclass
class RebuildConfiguration:
    """What to rebuild and for which platform and architecture."""

    dependency_tree_info: list[DependencyList] = field(default_factory=list)
    platform: str = ""
    arch: str = ""
    build_from_source: bool = False
    node_exec_path: str = ""
    additional_args: list[str] | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RebuildConfiguration:
        """Build a configuration from its JSON form."""
        additional = data.get("additionalArgs")
        return cls(
            dependency_tree_info=[
                DependencyList.from_dict(item) for item in data.get("dependencies") or []
            ],
            platform=str(data.get("platform") or ""),
            arch=str(data.get("arch") or ""),
            build_from_source=bool(data.get("buildFromSource", False)),
            node_exec_path=str(data.get("nodeExecPath") or ""),
            additional_args=[str(arg) for arg in additional] if additional is not None else None,
        )


def _run_concurrently(items: Sequence[_T], workers: int, task: Callable[[_T], None]) -> None:
    if not items:
        return
    with ThreadPoolExecutor(max_workers=max(1, workers)) as pool:
        futures = [pool.submit(task, item) for item in items]
    for future in futures:
        future.result()


def get_rebuild_concurrency() -> int:
    """How many dependencies are built at once."""
    return 1 if current_os() is OsName.WINDOWS else 2


def check_rebuild_possible(configuration: RebuildConfiguration) -> bool:
    """Whether the target platform can be built from sources on this machine."""
    os_name = current_os()
    platform = configuration.platform
    if os_name is OsName.WINDOWS:
        return platform == "win32"
    if os_name is OsName.MAC:
        return platform == "darwin"
    return platform not in ("win32", "darwin")


def get_node_exec(configuration: RebuildConfiguration) -> str:
    """The node executable to run scripts with."""
    for name in ("npm_node_execpath", "NODE_EXE", "node"):
        value = os.environ.get(name)
        if value:
            return value
    return configuration.node_exec_path


def compute_native_dependencies(configuration: RebuildConfiguration) -> list[DepInfo]:
    """The dependencies that have a ``binding.gyp`` file, in configuration order."""
    result: list[DepInfo] = []
    for dependency_list in configuration.dependency_tree_info:
        for item in dependency_list.dependencies:
            candidate = dataclasses.replace(
                item,
                parent_dir=dependency_list.dir,
                dir=os.path.join(dependency_list.dir, item.name),
            )
            if os.path.isfile(os.path.join(candidate.dir, "binding.gyp")):
                result.append(candidate)
    return result


def create_prebuild_install_command(
    bin_path: str, extra_flag: str, dependency: DepInfo, configuration: RebuildConfiguration
) -> list[str]:
    """The prebuild-install command line; it runs in the dependency's directory."""
    if dependency.napi_versions:
        target = str(dependency.napi_versions[0])
        runtime = "napi"
    else:
        target = os.environ.get("npm_config_target", "")
        runtime = os.environ.get("npm_config_runtime", "")
    return [
        get_node_exec(configuration),
        bin_path,
        "--platform=" + configuration.platform,
        "--arch=" + configuration.arch,
        "--target=" + target,
        "--runtime=" + runtime,
        "--verbose",
        extra_flag,
    ]


def _find_prebuild_install(parent_dir: str) -> str | None:
    current: str | None = parent_dir
    while current:
        candidate = os.path.join(current, "prebuild-install", "bin.js")
        if os.path.exists(candidate):
            return candidate
        current = find_nearest_node_module_dir(os.path.dirname(os.path.dirname(current)))
    return None


def install_using_prebuild(
    dependencies: list[DepInfo], configuration: RebuildConfiguration
) -> list[DepInfo]:
    """Install prebuilt binaries where possible; return what still needs a build."""
    is_rebuild_possible = check_rebuild_possible(configuration)
    if configuration.build_from_source:
        if is_rebuild_possible:
            return list(dependencies)
        _logger.warning(
            "buildFromSource option is ignored",
            extra={
                "fields": {
                    "reason": "platform or arch not compatible",
                    "platform": configuration.platform,
                    "arch": configuration.arch,
                }
            },
        )

    installed: set[int] = set()

    def install(dependency: DepInfo) -> None:
        fields = {
            "name": dependency.name,
            "version": dependency.version,
            "platform": configuration.platform,
            "arch": configuration.arch,
            "napi": dependency.napi_versions,
        }
        _logger.info("install prebuilt binary", extra={"fields": fields})

        bin_path = _find_prebuild_install(dependency.parent_dir)
        if bin_path is None:
            _logger.error("cannot find prebuild-install")
            return

        command = create_prebuild_install_command(bin_path, "--force", dependency, configuration)
        try:
            execute(command, cwd=dependency.dir or None)
        except ExecError as error:
            if is_rebuild_possible:
                _logger.warning(
                    "build native dependency from sources",
                    extra={
                        "fields": {
                            **fields,
                            "reason": "prebuild-install failed with error (run with env DEBUG=electron-builder to get more information)",
                            "error": error.error_output.decode("utf-8", errors="replace"),
                        }
                    },
                )
                return
            if dependency.optional:
                _logger.warning(
                    "cannot install prebuilt binaries for optional native dependency",
                    extra={"fields": {**fields, "error": error}},
                )
                return
            error.message = "cannot build native dependency"
            error.extra_fields["reason"] = (
                "prebuild-install failed with error and build from sources not possible "
                "because platform or arch not compatible"
            )
            raise
        installed.add(id(dependency))

    candidates = [item for item in dependencies if item.has_prebuild_install]
    _run_concurrently(candidates, get_rebuild_concurrency(), install)
    return [item for item in dependencies if id(item) not in installed]


def read_hash_bang(path: str | os.PathLike[str]) -> str:
    """The interpreter named in a file's ``#!`` line, or an empty string."""
    with open(path, "rb") as stream:
        header = stream.read(_HEADER_SIZE)
    if not header:
        raise EOFError(f"{os.fspath(path)} is empty")
    if not header.startswith(b"#!"):
        return ""

    text = header[2:].decode("utf-8", errors="surrogateescape")

    def first_of(characters: str) -> int:
        positions = [text.find(c) for c in characters if c in text]
        return min(positions) if positions else -1

    end = first_of("\r\n\t ")
    if end == -1:
        end = len(text)
    elif text[:end] == "/usr/bin/env":
        end = first_of("\r\n\t")
        if end == -1:
            end = len(text)
    return text[:end]


def is_javascript_file(path: str | os.PathLike[str]) -> bool:
    """Whether a file is a ``.js`` file or a script run by node."""
    path = os.fspath(path)
    try:
        os.stat(path)
    except OSError as error:
        raise OSError(f"Could not get info of {path}: {error}") from error

    if path.lower().endswith(".js"):
        return True

    try:
        interpreter = read_hash_bang(path)
    except (OSError, EOFError) as error:
        raise OSError(f"Could not read hash bang of {path}: {error}") from error
    return interpreter.endswith("node")


def compute_exec_path(configuration: RebuildConfiguration) -> tuple[str, list[str], bool]:
    """The package manager to run, its leading arguments and whether it is yarn."""
    exec_path = os.environ.get("npm_execpath") or os.environ.get("NPM_CLI_JS") or ""

    if is_env_true("FORCE_YARN"):
        is_running_yarn = True
    elif exec_path and os.path.basename(exec_path).startswith("yarn"):
        is_running_yarn = True
    else:
        is_running_yarn = "yarn" in os.environ.get("npm_config_user_agent", "")

    exec_args: list[str] = []
    if not exec_path:
        suffix = ".cmd" if current_os() is OsName.WINDOWS else ""
        exec_path = ("yarn" if is_running_yarn else "npm") + suffix
    elif is_javascript_file(exec_path):
        # scripts are run through the node interpreter
        exec_args.append(exec_path)
        exec_path = get_node_exec(configuration)

    return exec_path, exec_args, is_running_yarn


def _rebuild_using_yarn(
    dependencies: list[DepInfo],
    exec_path: str,
    exec_args: list[str],
    configuration: RebuildConfiguration,
) -> None:
    command = [exec_path, *exec_args, "run", "install", *(configuration.additional_args or [])]

    def build(dependency: DepInfo) -> None:
        fields = {"name": dependency.name, "version": dependency.version}
        _logger.info("rebuilding native dependency", extra={"fields": fields})
        try:
            execute(command, cwd=dependency.dir or None)
        except ExecError as error:
            if not dependency.optional:
                raise
            _logger.warning(
                "cannot build optional native dependency",
                extra={"fields": {**fields, "error": error}},
            )

    _run_concurrently(dependencies, get_rebuild_concurrency(), build)


def rebuild(configuration: RebuildConfiguration) -> None:
    """Install prebuilt binaries or rebuild every native dependency."""
    dependencies = compute_native_dependencies(configuration)
    if not dependencies:
        _logger.debug("no native dependencies")
        return

    _logger.info(
        "rebuilding native dependencies",
        extra={
            "fields": {
                "dependencies": ", ".join(f"{item.name}@{item.version}" for item in dependencies),
                "platform": configuration.platform,
                "arch": configuration.arch,
            }
        },
    )

    dependencies = install_using_prebuild(dependencies, configuration)
    if not dependencies:
        _logger.debug("all native deps were installed using prebuild-install")
        return

    try:
        exec_path, exec_args, is_running_yarn = compute_exec_path(configuration)
    except OSError as error:
        raise RuntimeError(f"Could not compute exec path: {error}") from error

    if is_running_yarn:
        _rebuild_using_yarn(dependencies, exec_path, exec_args, configuration)
        return

    args = [*exec_args, "rebuild"]
    if is_debug_enabled():
        args.append("--verbose")
    args.extend(configuration.additional_args or [])
    args.extend(f"{item.name}@{item.version}" for item in dependencies)
    execute([exec_path, *args])