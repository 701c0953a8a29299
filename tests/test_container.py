import os
import stat
import sys
from pathlib import Path

import pytest

from aquabook.container import CommandTimeoutError, Container, ContainerError
from aquabook.models import SingleFileRequest

FAKE_CARGO = """
import os
import sys

args = sys.argv[1:]
if args[:2] == ["new", "--bin"]:
    if os.environ.get("FAKE_CARGO_FAIL"):
        sys.stderr.write("error: boom\\n")
        sys.exit(1)
    os.makedirs(os.path.join(args[2], "src"))
    sys.exit(0)
if "aquascope" in args:
    if not os.environ.get("FAKE_CARGO_SILENT"):
        print(" ".join(args))
    sys.stderr.write("log " + os.environ.get("RUST_LOG", "") + "\\n")
"""

FAKE_PIDOF = """
import sys

if sys.argv[1] == "bash":
    print("4242 17")
"""


def _install(bin_dir: Path, name: str, body: str) -> None:
    script = bin_dir / name
    script.write_text(f"#!{sys.executable}\n{body}")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


@pytest.fixture
def fake_tools(tmp_path, monkeypatch):
    bin_dir = tmp_path / "bin"
    bin_dir.mkdir()
    _install(bin_dir, "cargo", FAKE_CARGO)
    _install(bin_dir, "pidof", FAKE_PIDOF)
    monkeypatch.setenv("PATH", f"{bin_dir}{os.pathsep}{os.environ.get('PATH', '')}")
    return bin_dir


@pytest.fixture
def local(tmp_path):
    workspace = tmp_path / "work"
    (workspace / "proj" / "src").mkdir(parents=True)
    return Container(workspace=workspace, project_dir="proj")


@pytest.mark.asyncio
async def test_create_local_sets_up_project_and_cleanup_removes_it(fake_tools):
    container = await Container.create(use_docker=False)
    workspace = container.workspace
    assert container.project_dir == "aquascope_tmp_proj"
    assert Path(container.main_abs_path()).parent.is_dir()
    await container.cleanup()
    assert not workspace.exists()


@pytest.mark.asyncio
async def test_create_fails_when_cargo_new_reports_errors(fake_tools, monkeypatch):
    monkeypatch.setenv("FAKE_CARGO_FAIL", "1")
    with pytest.raises(ContainerError, match="`cargo new` failed"):
        await Container.create(use_docker=False)


@pytest.mark.asyncio
async def test_new_project_source_round_trip(local):
    code = "fn main() { return 0; }"
    await local.write_source_code(code)
    main_rs = local.main_abs_path()
    output, _ = await local.exec_output(
        [sys.executable, "-c", "import sys; sys.stdout.write(open(sys.argv[1]).read())", main_rs]
    )
    assert output == code


@pytest.mark.asyncio
async def test_exec_output_runs_in_project_dir(local):
    output, _ = await local.exec_output([sys.executable, "-c", "import os; print(os.getcwd())"])
    assert Path(output.strip()).resolve() == Path(local.cwd).resolve()


@pytest.mark.asyncio
async def test_exec_output_separates_streams_and_passes_env(local):
    stdout, stderr = await local.exec_output(
        [
            sys.executable,
            "-c",
            "import os, sys; print(os.environ['GREETING']); sys.stderr.write('oops')",
        ],
        env={"GREETING": "hey"},
    )
    assert stdout.strip() == "hey"
    assert stderr == "oops"


@pytest.mark.asyncio
async def test_exec_output_times_out(tmp_path):
    container = Container(workspace=tmp_path, command_timeout=0.5)
    with pytest.raises(CommandTimeoutError, match="took longer than 500 ms") as info:
        await container.exec_output([sys.executable, "-c", "import time; time.sleep(10)"])
    assert info.value.timeout == 0.5


@pytest.mark.asyncio
async def test_exec_output_missing_program(local):
    with pytest.raises(ContainerError, match="Unable to execute local command"):
        await local.exec_output(["definitely-not-a-real-program-xyz"])


@pytest.mark.asyncio
async def test_get_pid(local, fake_tools):
    assert await local.get_pid("bash") == 4242


@pytest.mark.asyncio
async def test_get_pid_invalid_response(local, fake_tools):
    with pytest.raises(ContainerError, match="Invalid response in get_pid"):
        await local.get_pid("nothing")


@pytest.mark.asyncio
async def test_write_source_code_without_project_fails(tmp_path):
    container = Container(workspace=tmp_path / "missing")
    with pytest.raises(ContainerError, match="Unable to create output directory"):
        await container.write_source_code("fn main() {}")


def test_permissions_command_local(local):
    command = local.permissions_command()
    assert command.args == ["cargo", "--quiet", "aquascope", "permissions"]
    assert command.cwd == str(local.cwd)
    assert command.env == {"RUST_LOG": "debug", "RUST_BACKTRACE": "1"}


def test_interpreter_command_should_fail(local):
    request = SingleFileRequest(code="fn main() {}", config={"shouldFail": True})
    command = local.interpreter_command(request)
    assert command.args == ["cargo", "--quiet", "aquascope", "--should-fail", "interpreter"]


@pytest.mark.parametrize("config", [None, {}, ["shouldFail"], {"other": 1}])
def test_interpreter_command_without_should_fail(local, config):
    command = local.interpreter_command(SingleFileRequest(code="", config=config))
    assert command.args == ["cargo", "--quiet", "aquascope", "interpreter"]


def test_docker_paths_and_commands():
    container = Container(container_id="abc123", project_dir="aquascope_tmp_proj")
    container._killed = True
    assert container.main_abs_path() == "/app/aquascope_tmp_proj/src/main.rs"
    command = container.permissions_command()
    assert command.cwd == "/app/aquascope_tmp_proj"
    assert command.env == {}


def test_docker_cwd_requires_project():
    container = Container(container_id="abc123")
    container._killed = True
    with pytest.raises(ContainerError):
        container.main_abs_path()


def test_requires_exactly_one_backend(tmp_path):
    with pytest.raises(ValueError):
        Container()
    with pytest.raises(ValueError):
        Container(workspace=tmp_path, container_id="abc123")


@pytest.mark.asyncio
async def test_permissions_reports_success(local, fake_tools):
    response = await local.permissions(SingleFileRequest(code="fn main() {}"))
    assert response.success is True
    assert response.stdout.strip() == "--quiet aquascope permissions"
    assert "log debug" in response.stderr
    assert Path(local.main_abs_path()).read_text() == "fn main() {}"


@pytest.mark.asyncio
async def test_interpreter_passes_should_fail(local, fake_tools):
    request = SingleFileRequest(code="fn main() {}", config={"shouldFail": True})
    response = await local.interpreter(request)
    assert response.success is True
    assert response.stdout.strip() == "--quiet aquascope --should-fail interpreter"


@pytest.mark.asyncio
async def test_interpreter_without_output_is_failure(local, fake_tools, monkeypatch):
    monkeypatch.setenv("FAKE_CARGO_SILENT", "1")
    response = await local.interpreter(SingleFileRequest(code="fn main() {}"))
    assert response.success is False
    assert response.stdout == ""