from typing import Any, Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from coreason_forge.config import ForgeConfig
from coreason_forge.models import CommandResult
from coreason_forge.runtime import SandboxRuntime


@pytest.fixture
def forge_config() -> ForgeConfig:
    return ForgeConfig(
        runtime="e2b",
        e2b_api_key="test-key",
        install_settle_delay=0,
        startup_settle_delay=0,
        health_probe=False,
        provision_timeout=5,
        run_timeout=5,
        reaper_interval=60,
    )


def make_runtime(files: dict[str, str] | None = None) -> Any:
    """An in-memory SandboxRuntime double backed by a dict of absolute paths."""
    store: dict[str, str] = dict(files or {})
    runtime = MagicMock(spec=SandboxRuntime)
    runtime.store = store
    runtime.sandbox_id = "sbx-1"
    runtime.host_url.return_value = "https://5173-sbx-1.e2b.app"
    runtime.start = AsyncMock()
    runtime.terminate = AsyncMock()
    runtime.set_timeout = AsyncMock()
    runtime.make_directory = AsyncMock()
    runtime.run_command = AsyncMock(return_value=CommandResult(exit_code=0))

    async def write_file(path: str, content: str) -> None:
        store[path] = content

    async def read_file(path: str) -> str:
        if path not in store:
            raise FileNotFoundError(path)
        return store[path]

    async def list_files(path: str, exclude_dirs: set[str]) -> list[str]:
        prefix = path.rstrip("/") + "/"
        return sorted(
            key[len(prefix) :]
            for key in store
            if key.startswith(prefix) and not set(key[len(prefix) :].split("/")[:-1]) & exclude_dirs
        )

    runtime.write_file = AsyncMock(side_effect=write_file)
    runtime.read_file = AsyncMock(side_effect=read_file)
    runtime.list_files = AsyncMock(side_effect=list_files)
    return runtime


@pytest.fixture
def mock_runtime() -> Any:
    return make_runtime()


@pytest.fixture
def mock_factory(mock_runtime: Any) -> Generator[MagicMock, None, None]:
    with patch("coreason_forge.session_manager.SandboxFactory.get_runtime") as mock:
        mock.return_value = mock_runtime
        yield mock


@pytest.fixture
def runtime_factory() -> Any:
    return make_runtime
