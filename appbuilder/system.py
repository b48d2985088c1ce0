"""Environment, platform and child-process helpers."""

from __future__ import annotations

import enum
import os
import shutil
import subprocess
import sys
from collections.abc import Mapping, Sequence

_TRUE_VALUES = frozenset({"true", "1"})


class OsName(str, enum.Enum):
    """Operating system, named as Node.js names platforms."""

    MAC = "darwin"
    LINUX = "linux"
    WINDOWS = "win32"

    def __str__(self) -> str:
        return self.value


class ExecError(Exception):
    """A child process could not be started or exited with a failure."""

    def __init__(
        self,
        message: str,
        command: Sequence[str],
        exit_code: int | None = None,
        output: bytes = b"",
        error_output: bytes = b"",
        extra_fields: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.command = list(command)
        self.exit_code = exit_code
        self.output = output
        self.error_output = error_output
        self.extra_fields = dict(extra_fields or {})

    def __str__(self) -> str:
        parts = [self.message, f"command={' '.join(self.command)}"]
        if self.exit_code is not None:
            parts.append(f"exitCode={self.exit_code}")
        parts.extend(f"{key}={value}" for key, value in self.extra_fields.items())
        text = " ".join(parts)
        if self.error_output:
            text += "\n" + self.error_output.decode("utf-8", errors="replace")
        return text


def is_env_true(name: str) -> bool:
    """Whether the environment variable is set to a true value."""
    return os.environ.get(name, "").strip().lower() in _TRUE_VALUES


def get_env_or_default(name: str, default: str) -> str:
    """The variable's value, or ``default`` when it is unset or empty."""
    value = os.environ.get(name)
    return value if value else default


def current_os() -> OsName:
    """The operating system this process runs on."""
    if sys.platform.startswith("darwin"):
        return OsName.MAC
    if sys.platform.startswith("win") or sys.platform == "cygwin":
        return OsName.WINDOWS
    return OsName.LINUX


def get_7z_path() -> str:
    """Path of the 7-Zip executable to use."""
    configured = os.environ.get("SZA_PATH")
    if configured:
        return configured
    for name in ("7za", "7zz", "7z"):
        found = shutil.which(name)
        if found:
            return found
    return "7za"


def execute(
    args: Sequence[str],
    cwd: str | os.PathLike[str] | None = None,
    env: Mapping[str, str] | None = None,
) -> bytes:
    """Run a command to completion and return its standard output.

    ``env`` holds variables added to the current environment.
    """
    command = [os.fspath(arg) for arg in args]
    full_env = {**os.environ, **env} if env is not None else None
    try:
        completed = subprocess.run(
            command, cwd=cwd, env=full_env, capture_output=True, check=False
        )
    except OSError as error:
        raise ExecError(f"cannot start {command[0]}: {error}", command) from error

    if completed.returncode != 0:
        raise ExecError(
            "cannot execute",
            command,
            completed.returncode,
            completed.stdout,
            completed.stderr,
        )
    return completed.stdout


def run_piped_commands(
    producer: Sequence[str],
    consumer: Sequence[str],
    consumer_cwd: str | os.PathLike[str] | None = None,
) -> None:
    """Run ``producer`` with its standard output fed into ``consumer``."""
    producer_command = [os.fspath(arg) for arg in producer]
    consumer_command = [os.fspath(arg) for arg in consumer]
    try:
        producer_process = subprocess.Popen(producer_command, stdout=subprocess.PIPE)
    except OSError as error:
        raise ExecError(f"cannot start {producer_command[0]}: {error}", producer_command) from error

    with producer_process:
        try:
            consumer_process = subprocess.Popen(
                consumer_command, stdin=producer_process.stdout, cwd=consumer_cwd
            )
        except OSError as error:
            producer_process.kill()
            raise ExecError(
                f"cannot start {consumer_command[0]}: {error}", consumer_command
            ) from error
        # let the producer see a broken pipe if the consumer exits early
        assert producer_process.stdout is not None
        producer_process.stdout.close()
        consumer_code = consumer_process.wait()
        producer_code = producer_process.wait()

    if producer_code != 0:
        raise ExecError("cannot execute", producer_command, producer_code)
    if consumer_code != 0:
        raise ExecError("cannot execute", consumer_command, consumer_code)