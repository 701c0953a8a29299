"""Request, response and configuration types of the Aquascope server."""

from __future__ import annotations

import ipaddress
import json
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

DEFAULT_ADDRESS = "127.0.0.1"
DEFAULT_PORT = 8008


@dataclass(frozen=True)
class SingleFileRequest:
    """A request carrying the code of a single `main.rs` and optional configuration."""

    code: str
    config: Any | None = None

    @classmethod
    def from_json(cls, data: Mapping[str, Any] | str | bytes) -> SingleFileRequest:
        """Build a request from a decoded JSON object or its text."""
        if isinstance(data, (str, bytes, bytearray)):
            try:
                data = json.loads(data)
            except ValueError as error:
                raise ValueError(f"Unable to deserialize request: {error}") from error
        if not isinstance(data, Mapping):
            raise ValueError("Unable to deserialize request: expected a JSON object")
        code = data.get("code")
        if not isinstance(code, str):
            raise ValueError("Unable to deserialize request: missing field `code`")
        return cls(code=code, config=data.get("config"))


@dataclass(frozen=True)
class ServerResponse:
    """The outcome of running a command on submitted code."""

    success: bool
    stdout: str
    stderr: str

    def to_json(self) -> dict[str, Any]:
        return {"success": self.success, "stdout": self.stdout, "stderr": self.stderr}


def _parse_port(value: str | None) -> int:
    if value is None:
        return DEFAULT_PORT
    try:
        port = int(value)
    except ValueError:
        return DEFAULT_PORT
    return port if 0 <= port <= 0xFFFF else DEFAULT_PORT


@dataclass(frozen=True)
class Config:
    """Server settings read from the environment."""

    address: str = DEFAULT_ADDRESS
    port: int = DEFAULT_PORT
    no_docker: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        env = os.environ if environ is None else environ
        return cls(
            address=env.get("AQUASCOPE_SERVER_ADDRESS", DEFAULT_ADDRESS),
            port=_parse_port(env.get("AQUASCOPE_SERVER_PORT")),
            no_docker="AQUASCOPE_NO_DOCKER" in env,
        )

    def socket_address(self) -> tuple[str, int]:
        """Return the (host, port) pair to bind; the address must be an IP address."""
        try:
            address = ipaddress.ip_address(self.address)
        except ValueError as error:
            raise ValueError(f"Invalid address: {self.address}") from error
        return str(address), self.port