"""Helpers for locating the pinned Rust toolchain and its Miri sysroot."""

from __future__ import annotations

import subprocess
import tomllib
from pathlib import Path

TOOLCHAIN_FILE = "rust-toolchain.toml"


class WorkspaceError(Exception):
    """Raised when the toolchain configuration or a toolchain command fails."""


def toolchain(path: str | Path = TOOLCHAIN_FILE) -> str:
    """Return the ``toolchain.channel`` value from the toolchain file at ``path``."""
    with open(path, "rb") as handle:
        try:
            config = tomllib.load(handle)
        except tomllib.TOMLDecodeError as error:
            raise WorkspaceError(f"Invalid toolchain file {path}: {error}") from error

    section = config.get("toolchain")
    if not isinstance(section, dict):
        raise WorkspaceError("Missing toolchain key")
    if "channel" not in section:
        raise WorkspaceError("Missing channel key")
    channel = section["channel"]
    if not isinstance(channel, str):
        raise WorkspaceError("Toolchain channel is not a string")
    return channel


def miri_sysroot(channel: str) -> Path:
    """Ask ``cargo miri`` for the sysroot of the given toolchain channel."""
    completed = subprocess.run(
        ["cargo", f"+{channel}", "miri", "setup", "--print-sysroot"],
        capture_output=True,
    )
    if completed.returncode != 0:
        raise WorkspaceError("Command failed")
    return Path(completed.stdout.decode("utf-8").rstrip())