"""Command line entry point."""

from __future__ import annotations

import argparse
import json
import logging
import os
import subprocess
import sys
import time
from collections.abc import Sequence
from typing import Any

from . import dependency_tree, rebuild, zipx
from .artifacts import download_artifact
from .blockmap import DEFAULT_CHUNKER_CONFIGURATION, CompressionFormat, build_block_map
from .downloader import Downloader
from .electron import (
    ElectronDownloadOptions,
    decode_base64_if_needed,
    download_electron,
    parse_config,
    unpack_electron,
)
from .fs import copy_dir_or_file, copy_using_hardlink
from .linux_tools import get_app_image_tool_dir
from .log import init_logger
from .system import ExecError, OsName, current_os, get_7z_path, get_env_or_default
from .tools import download_fpm, download_zstd

VERSION = "3.5.10"

_logger = logging.getLogger("appbuilder")

_KSUID_EPOCH = 1400000000
_BASE62 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_KSUID_LENGTH = 27


def generate_ksuid() -> str:
    """A new K-Sortable Unique IDentifier as 27 base62 characters."""
    timestamp = int(time.time()) - _KSUID_EPOCH
    raw = timestamp.to_bytes(4, "big") + os.urandom(16)
    value = int.from_bytes(raw, "big")
    digits = []
    while value:
        value, remainder = divmod(value, 62)
        digits.append(_BASE62[remainder])
    return "".join(reversed(digits)).rjust(_KSUID_LENGTH, "0")


def compress(args: Sequence[str]) -> None:
    """Compress standard input to standard output with 7-Zip."""
    command = [
        get_7z_path(),
        "a",
        "-si",
        "-so",
        "-t" + get_env_or_default("SZA_ARCHIVE_TYPE", "xz"),
        "-mx" + get_env_or_default("SZA_COMPRESSION_LEVEL", "9"),
        "dummy",
        *args,
    ]
    try:
        completed = subprocess.run(command, check=False)
    except OSError as error:
        raise ExecError(f"cannot start {command[0]}: {error}", command) from error
    if completed.returncode != 0:
        raise ExecError("cannot execute", command, completed.returncode)


def _write(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _write_json(data: Any) -> None:
    _write(json.dumps(data, separators=(",", ":"), ensure_ascii=False))


def _node_dep_tree(args: argparse.Namespace) -> None:
    _write_json(dependency_tree.build_tree(args.dir, args.flatten, args.exclude_dep or None))


def _rebuild(args: argparse.Namespace) -> None:
    configuration = rebuild.RebuildConfiguration.from_dict(json.load(sys.stdin))
    rebuild.rebuild(configuration)


def _download(args: argparse.Namespace) -> None:
    Downloader().download(args.url, args.output, args.sha512)


def _download_artifact(args: argparse.Namespace) -> None:
    _write(download_artifact(args.name, args.url, args.sha512))


def _download_electron(args: argparse.Namespace) -> None:
    download_electron(parse_config(args.configuration))


def _unpack_electron(args: argparse.Namespace) -> None:
    data = decode_base64_if_needed(args.configuration) or []
    configs = [ElectronDownloadOptions.from_dict(item) for item in data]
    unpack_electron(configs, args.output, args.distMacOsAppName, True)


def _unzip(args: argparse.Namespace) -> None:
    # the output dir is not emptied so that nothing is removed by mistake
    os.makedirs(args.output, exist_ok=True)
    zipx.unzip(args.input, args.output, None)


def _prefetch_tools(args: argparse.Namespace) -> None:
    get_app_image_tool_dir()
    download_fpm()
    download_zstd(OsName(args.osName))


def _copy(args: argparse.Namespace) -> None:
    if args.hard_link:
        copy_using_hardlink(args.source, args.target)
    else:
        copy_dir_or_file(args.source, args.target)


def _blockmap(args: argparse.Namespace) -> None:
    compression = (
        CompressionFormat.DEFLATE if args.compression == "deflate" else CompressionFormat.GZIP
    )
    info = build_block_map(args.input, DEFAULT_CHUNKER_CONFIGURATION, compression, args.output)
    _write(info.to_json())


def _ksuid(args: argparse.Namespace) -> None:
    _write(generate_ksuid())


def build_parser() -> argparse.ArgumentParser:
    """The argument parser with every command."""
    parser = argparse.ArgumentParser(prog="app-builder", description="app-builder")
    parser.add_argument("--version", action="version", version=VERSION)
    commands = parser.add_subparsers(dest="command", required=True)

    command = commands.add_parser("node-dep-tree")
    command.add_argument("--dir", required=True)
    command.add_argument("--flatten", action="store_true")
    command.add_argument("--exclude-dep", action="append", default=[])
    command.set_defaults(handler=_node_dep_tree)

    command = commands.add_parser("rebuild-node-modules")
    command.set_defaults(handler=_rebuild)

    command = commands.add_parser("download", help="Download file.")
    command.add_argument("-u", "--url", required=True)
    command.add_argument("-o", "--output", required=True)
    command.add_argument("--sha512", default="")
    command.set_defaults(handler=_download)

    command = commands.add_parser(
        "download-artifact", help="Download, unpack and cache artifact from GitHub."
    )
    command.add_argument("-n", "--name", required=True)
    command.add_argument("-u", "--url", default="")
    command.add_argument("--sha512", default="")
    command.set_defaults(handler=_download_artifact)

    command = commands.add_parser("download-electron")
    command.add_argument("-c", "--configuration", required=True)
    command.set_defaults(handler=_download_electron)

    command = commands.add_parser("unpack-electron")
    command.add_argument("-c", "--configuration", required=True)
    command.add_argument("--output", required=True)
    command.add_argument("--distMacOsAppName", default="Electron.app")
    command.set_defaults(handler=_unpack_electron)

    command = commands.add_parser("unzip")
    command.add_argument("-i", "--input", required=True)
    command.add_argument("-o", "--output", required=True)
    command.set_defaults(handler=_unzip)

    command = commands.add_parser("prefetch-tools", help="Prefetch all required tools")
    command.add_argument(
        "--osName", default=current_os().value, choices=["darwin", "linux", "win32"]
    )
    command.set_defaults(handler=_prefetch_tools)

    command = commands.add_parser("copy", help="Copy file or dir.")
    command.add_argument("-f", "--from", dest="source", required=True)
    command.add_argument("-t", "--to", dest="target", required=True)
    command.add_argument(
        "--hard-link", action="store_true", help="Whether to use hard-links if possible"
    )
    command.set_defaults(handler=_copy)

    command = commands.add_parser(
        "blockmap",
        help="Generates file block map for differential update using content defined chunking",
    )
    command.add_argument("-i", "--input", required=True)
    command.add_argument("-o", "--output", default="")
    command.add_argument("-c", "--compression", default="gzip", choices=["gzip", "deflate"])
    command.set_defaults(handler=_blockmap)

    command = commands.add_parser("ksuid", help="Generate KSUID")
    command.set_defaults(handler=_ksuid)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run a command; return the process exit code."""
    init_logger()
    arguments = list(sys.argv[1:] if argv is None else argv)
    try:
        if os.environ.get("SZA_ARCHIVE_TYPE"):
            compress(arguments)
            return 0
        args = build_parser().parse_args(arguments)
        args.handler(args)
    except (OSError, ValueError, RuntimeError, ExecError) as error:
        _logger.error(str(error))
        return 1
    except Exception as error:  # report anything unexpected the same way
        _logger.error(f"{type(error).__name__}: {error}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())