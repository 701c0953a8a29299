"""Runs Aquascope on the code blocks of a Markdown chapter and renders them as HTML."""

from __future__ import annotations

import html
import json
import os
import subprocess
import tempfile
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any

from . import workspace
from .block import AquascopeBlock
from .cache import CACHE_PATH, Cache
from .permissions import parse_perms

AQUASCOPE_TIMEOUT = 10.0

Runner = Callable[..., subprocess.CompletedProcess]


class AquascopeError(Exception):
    """Raised when Aquascope cannot produce a result for a code block."""


def _json(value: Any) -> str:
    to_json = getattr(value, "to_json", None)
    if callable(to_json):
        value = to_json()
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


class HtmlElementBuilder:
    """Builds an empty HTML element whose data attributes hold JSON values."""

    def __init__(self, tag: str = "div") -> None:
        self.tag = tag
        self._attrs: dict[str, str] = {}

    def attr(self, name: str, value: Any) -> HtmlElementBuilder:
        self._attrs[name] = str(value)
        return self

    def data(self, name: str, value: Any) -> HtmlElementBuilder:
        """Set ``data-<name>`` to the JSON encoding of ``value``."""
        self._attrs[f"data-{name}"] = _json(value)
        return self

    def finish(self) -> str:
        attrs = "".join(
            f' {name}="{html.escape(value, quote=True)}"'
            for name, value in self._attrs.items()
        )
        return f"<{self.tag}{attrs}></{self.tag}>"


def _command_output(args: list[str]) -> str:
    completed = subprocess.run(args, capture_output=True)
    if completed.returncode != 0:
        raise AquascopeError("Command failed")
    return completed.stdout.decode("utf-8").rstrip()


class AquascopePreprocessor:
    """Replaces Aquascope blocks and inline permissions in Markdown with HTML."""

    def __init__(
        self,
        miri_sysroot: Path,
        target_libdir: Path,
        cache: Cache,
        runner: Runner | None = None,
    ) -> None:
        self.miri_sysroot = Path(miri_sysroot)
        self.target_libdir = Path(target_libdir)
        self.cache = cache
        self._runner: Runner = runner or subprocess.run
        self._lock = threading.Lock()

    @classmethod
    def create(
        cls,
        toolchain_file: str | Path = workspace.TOOLCHAIN_FILE,
        cache_path: str | Path = CACHE_PATH,
    ) -> AquascopePreprocessor:
        """Locate the toolchain, its sysroot and library directory, and load the cache."""
        channel = workspace.toolchain(toolchain_file)
        sysroot = workspace.miri_sysroot(channel)
        rustc = _command_output(["rustup", "which", "--toolchain", channel, "rustc"])
        target_libdir = Path(_command_output([rustc, "--print", "target-libdir"]))
        return cls(sysroot, target_libdir, Cache.load(cache_path))

    def _run_operation(self, block: AquascopeBlock, operation: str, project: Path) -> Any:
        keys = {key for key, _ in block.config}
        command = ["cargo", "aquascope"]
        if "shouldFail" in keys:
            command.append("--should-fail")
        command.append(operation)
        if "showFlows" in keys:
            command.append("--show-flows")

        env = {
            **os.environ,
            "SYSROOT": str(self.miri_sysroot),
            "DYLD_LIBRARY_PATH": str(self.target_libdir),
            "LD_LIBRARY_PATH": str(self.target_libdir),
            "RUST_BACKTRACE": "1",
        }

        try:
            output = self._runner(
                command,
                cwd=project,
                env=env,
                capture_output=True,
                timeout=AQUASCOPE_TIMEOUT,
            )
        except subprocess.TimeoutExpired as error:
            raise AquascopeError(f"Aquascope timed out on program:\n{block.code}") from error

        stderr = (output.stderr or b"").decode("utf-8", errors="replace")
        failure = f"Aquascope failed for program:\n{block.code}\nwith error:\n{stderr}"
        if output.returncode != 0:
            raise AquascopeError(failure)

        try:
            response = json.loads((output.stdout or b"").decode("utf-8"))
        except ValueError as error:
            raise AquascopeError(
                f"Aquascope produced invalid output for program:\n{block.code}"
            ) from error

        if isinstance(response, dict):
            is_err = "Err" in response
        elif isinstance(response, list):
            is_err = any(isinstance(item, dict) and "Err" in item for item in response)
        else:
            is_err = False
        if is_err:
            raise AquascopeError(failure)

        if isinstance(response, dict) and response.get("type") == "BuildError":
            raise AquascopeError(f"Aquascope failed for program:\n{block.code}")

        return response

    def run_aquascope(self, block: AquascopeBlock) -> str:
        """Run every operation of ``block`` and return the responses as a JSON object."""
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            created = self._runner(
                ["cargo", "new", "--bin", "example"],
                cwd=root,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
            if created.returncode != 0:
                raise AquascopeError("Cargo failed")

            project = root / "example"
            (project / "src" / "main.rs").write_text(block.code, encoding="utf-8")

            responses = {
                operation: self._run_operation(block, operation, project)
                for operation in block.operations
            }
        return json.dumps(responses, separators=(",", ":"), ensure_ascii=False)

    def process_code(self, block: AquascopeBlock) -> str:
        """Return the HTML embedding for ``block``, using the cache where possible."""
        with self._lock:
            response_str = self.cache.get(block)
        if response_str is None:
            response_str = self.run_aquascope(block)
            with self._lock:
                self.cache.set(block, response_str)
        response = json.loads(response_str.rstrip())

        return (
            HtmlElementBuilder()
            .attr("class", "aquascope-embed")
            .data("code", block.code)
            .data("annotations", block.annotations)
            .data("operations", block.operations)
            .data("responses", response)
            .data("config", dict(block.config))
            .data("no-interact", True)
            .finish()
        )

    def replacements(self, content: str) -> list[tuple[range, str]]:
        """Return the spans of ``content`` to replace and their HTML."""
        blocks = AquascopeBlock.parse_all(content)
        with ThreadPoolExecutor() as pool:
            rendered = list(pool.map(self.process_code, [block for _, block in blocks]))
        result = [(span, html_text) for (span, _), html_text in zip(blocks, rendered)]
        result.extend(parse_perms(content))
        return result

    def save_cache(self) -> None:
        with self._lock:
            self.cache.save()