from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from e2b_code_interpreter import CommandExitException, FileType

from coreason_forge.runtimes.e2b import E2BRuntime


@pytest.fixture
def mock_e2b_sandbox() -> Any:
    with patch("coreason_forge.runtimes.e2b.E2BSandbox") as mock:
        yield mock


@pytest.fixture
def e2b_runtime(mock_e2b_sandbox: Any) -> E2BRuntime:
    runtime = E2BRuntime(api_key="test_key")
    # Manually set sandbox as if started
    runtime.sandbox = mock_e2b_sandbox.create.return_value
    runtime.sandbox.sandbox_id = "e2b_id"
    return runtime


def entry(name: str, path: str, kind: FileType) -> MagicMock:
    item = MagicMock()
    item.name = name
    item.path = path
    item.type = kind
    return item


@pytest.mark.asyncio
async def test_start_success(mock_e2b_sandbox: Any) -> None:
    runtime = E2BRuntime(api_key="key", template="vite-template", lifetime=600)
    await runtime.start()
    mock_e2b_sandbox.create.assert_called_once_with(api_key="key", timeout=600, template="vite-template")
    assert runtime.sandbox is not None


@pytest.mark.asyncio
async def test_start_failure(mock_e2b_sandbox: Any) -> None:
    mock_e2b_sandbox.create.side_effect = Exception("Start failed")
    runtime = E2BRuntime(api_key="key")
    with pytest.raises(Exception, match="Start failed"):
        await runtime.start()
    assert runtime.sandbox is None


@pytest.mark.asyncio
async def test_restart_terminates_previous(e2b_runtime: E2BRuntime, mock_e2b_sandbox: Any) -> None:
    old = e2b_runtime.sandbox
    assert old is not None
    await e2b_runtime.start()
    old.kill.assert_called_once()


def test_host_url(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    e2b_runtime.sandbox.get_host.return_value = "5173-e2b_id.e2b.app"
    assert e2b_runtime.host_url(5173) == "https://5173-e2b_id.e2b.app"
    assert e2b_runtime.sandbox_id == "e2b_id"


def test_not_started() -> None:
    runtime = E2BRuntime(api_key="key")
    with pytest.raises(RuntimeError, match="Sandbox not started"):
        runtime.host_url(5173)


@pytest.mark.asyncio
async def test_file_operations(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    files = e2b_runtime.sandbox.files
    files.read.return_value = "content"

    await e2b_runtime.write_file("/home/user/app/a.js", "x")
    await e2b_runtime.make_directory("/home/user/app/src")
    content = await e2b_runtime.read_file("/home/user/app/a.js")

    files.write.assert_called_once_with("/home/user/app/a.js", "x")
    files.make_dir.assert_called_once_with("/home/user/app/src")
    assert content == "content"


@pytest.mark.asyncio
async def test_list_files_skips_excluded(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    root = "/home/user/app"
    tree = {
        root: [
            entry("package.json", f"{root}/package.json", FileType.FILE),
            entry("node_modules", f"{root}/node_modules", FileType.DIR),
            entry("src", f"{root}/src", FileType.DIR),
        ],
        f"{root}/src": [entry("App.jsx", f"{root}/src/App.jsx", FileType.FILE)],
    }
    e2b_runtime.sandbox.files.list.side_effect = lambda path: tree[path]

    result = await e2b_runtime.list_files(root, {"node_modules"})

    assert result == ["package.json", "src/App.jsx"]


@pytest.mark.asyncio
async def test_run_command_foreground(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    e2b_runtime.sandbox.commands.run.return_value = MagicMock(stdout="ok", stderr="", exit_code=0)

    result = await e2b_runtime.run_command("npm install", cwd="/home/user/app", timeout=120)

    e2b_runtime.sandbox.commands.run.assert_called_once_with("npm install", cwd="/home/user/app", timeout=120)
    assert result.exit_code == 0
    assert result.stdout == "ok"


@pytest.mark.asyncio
async def test_run_command_non_zero_exit(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    error = CommandExitException.__new__(CommandExitException)
    error.stdout, error.stderr, error.exit_code = "", "ERESOLVE", 1  # type: ignore[misc]
    e2b_runtime.sandbox.commands.run.side_effect = error

    result = await e2b_runtime.run_command("npm install")

    assert result.exit_code == 1
    assert result.stderr == "ERESOLVE"


@pytest.mark.asyncio
async def test_run_command_background(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    result = await e2b_runtime.run_command("npm run dev", cwd="/home/user/app", background=True)
    e2b_runtime.sandbox.commands.run.assert_called_once_with("npm run dev", background=True, cwd="/home/user/app")
    assert result.background is True


@pytest.mark.asyncio
async def test_set_timeout_and_terminate(e2b_runtime: E2BRuntime) -> None:
    sandbox = e2b_runtime.sandbox
    assert sandbox is not None
    await e2b_runtime.set_timeout(1200.5)
    sandbox.set_timeout.assert_called_once_with(1200)

    await e2b_runtime.terminate()
    sandbox.kill.assert_called_once()
    assert e2b_runtime.sandbox is None


@pytest.mark.asyncio
async def test_terminate_error_is_logged(e2b_runtime: E2BRuntime) -> None:
    assert e2b_runtime.sandbox is not None
    e2b_runtime.sandbox.kill.side_effect = Exception("already gone")
    await e2b_runtime.terminate()
    assert e2b_runtime.sandbox is None
