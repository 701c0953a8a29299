"""Sandboxed workspaces, in Docker or a local temporary directory, that run Aquascope."""

from __future__ import annotations

import asyncio
import io
import logging
import os
import tarfile
import tempfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

from .models import ServerResponse, SingleFileRequest

log = logging.getLogger(__name__)

DEFAULT_IMAGE = "aquascope"
DEFAULT_PROJECT_PATH = "aquascope_tmp_proj"
DOCKER_APP_DIR = "/app"

COMMAND_TIMEOUT = 20.0
# Memory limit in bytes.
DOCKER_MEM_LIMIT = 512_000_000
# Equal to the memory limit, so no swap is allowed.
DOCKER_SWAP_LIMIT = 512_000_000
DOCKER_PID_LIMIT = 32
DOCKER_CPU_PERIOD = 100_000
# Half of one CPU.
DOCKER_CPU_QUOTA = DOCKER_CPU_PERIOD // 2


class ContainerError(Exception):
    """Raised when a container operation fails."""


class CommandTimeoutError(ContainerError):
    """Raised when a command runs longer than the allowed time."""

    def __init__(self, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(f"Command execution took longer than {round(timeout * 1000)} ms")


@dataclass(frozen=True)
class Command:
    """A program invocation: arguments, working directory and extra environment."""

    args: list[str]
    cwd: str | None = None
    env: dict[str, str] = field(default_factory=dict)


async def _run(
    args: list[str],
    *,
    timeout: float,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    stdin: bytes | None = None,
) -> tuple[int, bytes, bytes]:
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=env,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as error:
        raise ContainerError(f"Unable to execute local command {error}") from error
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(stdin), timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise CommandTimeoutError(timeout) from None
    return process.returncode, stdout, stderr


async def _docker(args: list[str], *, timeout: float, stdin: bytes | None = None) -> str:
    code, stdout, stderr = await _run(["docker", *args], timeout=timeout, stdin=stdin)
    if code != 0:
        message = stderr.decode("utf-8", errors="replace").strip()
        raise ContainerError(f"Docker operation failed {message}")
    return stdout.decode("utf-8", errors="replace")


class Container:
    """A Cargo project in which submitted code is analysed.

    With a ``container_id`` commands run inside that Docker container; otherwise
    they run on the local machine inside ``workspace``.
    """

    def __init__(
        self,
        *,
        workspace: str | Path | None = None,
        container_id: str | None = None,
        project_dir: str | None = None,
        command_timeout: float = COMMAND_TIMEOUT,
    ) -> None:
        if (workspace is None) == (container_id is None):
            raise ValueError("exactly one of workspace and container_id is required")
        self.workspace = Path(workspace) if workspace is not None else None
        self.container_id = container_id
        self.project_dir = project_dir
        self.command_timeout = command_timeout
        self._tempdir: tempfile.TemporaryDirectory[str] | None = None
        self._killed = False

    @property
    def uses_docker(self) -> bool:
        return self.container_id is not None

    @classmethod
    async def create(cls, use_docker: bool = True) -> Container:
        """Start a fresh workspace and create the Cargo project in it."""
        if use_docker:
            container = await cls._start_docker(DEFAULT_IMAGE)
        else:
            try:
                tempdir = tempfile.TemporaryDirectory()
            except OSError as error:
                raise ContainerError(
                    f"Unable to create temporary local directory {error}"
                ) from error
            container = cls(workspace=tempdir.name)
            container._tempdir = tempdir

        try:
            await container._cargo_new()
        except ContainerError:
            await container.cleanup()
            raise
        return container

    @classmethod
    async def _start_docker(cls, image: str) -> Container:
        await _docker(["version"], timeout=COMMAND_TIMEOUT)
        mount_path = Path.cwd() / "mount"
        output = await _docker(
            [
                "create",
                "--tty",
                "--cpu-period", str(DOCKER_CPU_PERIOD),
                "--cpu-quota", str(DOCKER_CPU_QUOTA),
                "--memory", str(DOCKER_MEM_LIMIT),
                "--memory-swap", str(DOCKER_SWAP_LIMIT),
                "--pids-limit", str(DOCKER_PID_LIMIT),
                "--volume", f"{mount_path}:/mnt",
                image,
            ],
            timeout=COMMAND_TIMEOUT,
        )
        container_id = output.strip()
        log.info("Created container with id: %s", container_id)
        container = cls(container_id=container_id)
        try:
            await _docker(["start", container_id], timeout=COMMAND_TIMEOUT)
        except ContainerError:
            await container.cleanup()
            raise
        log.info("Container started: %s", container_id)
        return container

    async def __aenter__(self) -> Container:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.cleanup()

    @property
    def cwd(self) -> Path | PurePosixPath:
        """Directory of the Cargo project (or the workspace before it exists)."""
        if self.uses_docker:
            if self.project_dir is None:
                raise ContainerError("The project directory has not been created")
            return PurePosixPath(DOCKER_APP_DIR) / self.project_dir
        assert self.workspace is not None
        if self.project_dir is None:
            return self.workspace
        return self.workspace / self.project_dir

    async def exec_output(
        self,
        args: list[str],
        cwd: str | Path | None = None,
        env: dict[str, str] | None = None,
    ) -> tuple[str, str]:
        """Run ``args`` in the workspace and return its (stdout, stderr)."""
        env = dict(env or {})
        if self.uses_docker:
            command = ["exec"]
            if cwd is not None:
                command += ["--workdir", str(cwd)]
            for key, value in env.items():
                command += ["--env", f"{key}={value}"]
            command += [self.container_id, *args]
            _, stdout, stderr = await _run(
                ["docker", *command], timeout=self.command_timeout
            )
            return (
                stdout.decode("utf-8", errors="replace").rstrip(),
                stderr.decode("utf-8", errors="replace").rstrip(),
            )

        directory = str(cwd) if cwd is not None else str(self.cwd)
        _, stdout, stderr = await _run(
            list(args),
            cwd=directory,
            env={**os.environ, **env},
            timeout=self.command_timeout,
        )
        out = stdout.decode("utf-8", errors="replace")
        err = stderr.decode("utf-8", errors="replace")
        log.info("%s", err)
        return out, err

    async def get_pid(self, process: str) -> int:
        """Return the first process id that ``pidof`` reports for ``process``."""
        response, _ = await self.exec_output(["pidof", process])
        first = response.split(" ")[0].strip()
        try:
            return int(first)
        except ValueError as error:
            raise ContainerError(f"Invalid response in get_pid:\n    {response}") from error

    async def _cargo_new(self) -> None:
        if self.project_dir is not None:
            log.warning("Attempt to create a second project directory ignored")
            return
        stdout, stderr = await self.exec_output(
            ["cargo", "new", "--bin", DEFAULT_PROJECT_PATH, "--quiet"]
        )
        if stderr.strip():
            log.error("%s", stderr)
            raise ContainerError(f"`cargo new` failed {stderr}")
        log.debug("Cargo output %s", stdout)
        self.project_dir = DEFAULT_PROJECT_PATH

    def main_abs_path(self) -> str:
        return str(self.cwd / "src" / "main.rs")

    async def write_source_code(self, code: str) -> None:
        """Replace the project's `src/main.rs` with ``code``."""
        if not self.uses_docker:
            try:
                Path(self.main_abs_path()).write_text(code, encoding="utf-8")
            except OSError as error:
                raise ContainerError(f"Unable to create output directory: {error}") from error
            return

        if self.project_dir is None:
            raise ContainerError("The project directory has not been created")
        data = code.encode("utf-8")
        buffer = io.BytesIO()
        with tarfile.open(fileobj=buffer, mode="w", format=tarfile.GNU_FORMAT) as archive:
            # The archive path is relative to the upload directory.
            info = tarfile.TarInfo(f"{self.project_dir}/src/main.rs")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
        await _docker(
            ["cp", "-", f"{self.container_id}:{DOCKER_APP_DIR}"],
            stdin=buffer.getvalue(),
            timeout=self.command_timeout,
        )

    def _debug_env(self) -> dict[str, str]:
        if self.uses_docker:
            return {}
        return {"RUST_LOG": "debug", "RUST_BACKTRACE": "1"}

    def permissions_command(self) -> Command:
        return Command(
            ["cargo", "--quiet", "aquascope", "permissions"],
            str(self.cwd),
            self._debug_env(),
        )

    def interpreter_command(self, request: SingleFileRequest) -> Command:
        args = ["cargo", "--quiet", "aquascope"]
        if isinstance(request.config, dict) and "shouldFail" in request.config:
            args.append("--should-fail")
        args.append("interpreter")
        return Command(args, str(self.cwd), self._debug_env())

    async def _respond(self, request: SingleFileRequest, command: Command) -> ServerResponse:
        await self.write_source_code(request.code)
        stdout, stderr = await self.exec_output(command.args, command.cwd, command.env)
        # Anything on stdout is taken to be a result worth reporting.
        return ServerResponse(success=bool(stdout.strip()), stdout=stdout, stderr=stderr)

    async def permissions(self, request: SingleFileRequest) -> ServerResponse:
        return await self._respond(request, self.permissions_command())

    async def interpreter(self, request: SingleFileRequest) -> ServerResponse:
        return await self._respond(request, self.interpreter_command(request))

    async def cleanup(self) -> None:
        """Remove the container or the temporary workspace."""
        self._killed = True
        if self.uses_docker:
            log.info("Removing container %s", self.container_id)
            await _docker(["rm", "--force", self.container_id], timeout=self.command_timeout)
        elif self._tempdir is not None:
            self._tempdir.cleanup()
            self._tempdir = None

    def __del__(self) -> None:
        if self.uses_docker and not getattr(self, "_killed", True):
            log.warning(
                "Dropping container %s without calling Container.cleanup.",
                self.container_id,
            )