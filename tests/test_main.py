from typing import Generator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.types import TextContent

from coreason_forge.config import ForgeConfig
from coreason_forge.main import build_orchestrator, list_files, main, reapply_last_generation, run_turn, session_status
from coreason_forge.models import ChatMessage, PreviewSignal, SessionState, TurnResult, TurnStatus
from coreason_forge.storage import S3ProjectStore


@pytest.fixture
def mock_orchestrator() -> Generator[MagicMock, None, None]:
    with patch("coreason_forge.main.orchestrator", new_callable=MagicMock) as mock:
        mock.run_turn = AsyncMock()
        mock.reapply_last_generation = AsyncMock()
        mock.list_files = AsyncMock()
        yield mock


@pytest.mark.asyncio
async def test_run_turn_renders_result(mock_orchestrator: MagicMock) -> None:
    mock_orchestrator.run_turn.return_value = TurnResult(
        prompt="add a header",
        status=TurnStatus.PARTIAL,
        messages=[
            ChatMessage(role="system", text="Applied 1 file(s): src/App.jsx"),
            ChatMessage(role="system", text="Failed to write a.js: denied", error=True),
        ],
        preview=PreviewSignal(host_url="https://host", cache_token="1"),
    )

    result = await run_turn("add a header", "proj-1")

    mock_orchestrator.run_turn.assert_awaited_once_with("add a header", "proj-1")
    assert all(isinstance(item, TextContent) for item in result)
    assert [item.text for item in result] == [
        "Status: partial",
        "Applied 1 file(s): src/App.jsx",
        "ERROR: Failed to write a.js: denied",
        "Preview: https://host?t=1",
    ]


@pytest.mark.asyncio
async def test_run_turn_error(mock_orchestrator: MagicMock) -> None:
    mock_orchestrator.run_turn.side_effect = ValueError("Prompt is required")
    result = await run_turn("")
    assert result[0].text == "Error running turn: Prompt is required"


@pytest.mark.asyncio
async def test_reapply(mock_orchestrator: MagicMock) -> None:
    mock_orchestrator.reapply_last_generation.return_value = TurnResult(prompt="x", status=TurnStatus.SUCCESS)
    result = await reapply_last_generation()
    assert result[0].text == "Status: success"


@pytest.mark.asyncio
async def test_list_files(mock_orchestrator: MagicMock) -> None:
    mock_orchestrator.list_files.return_value = {"src/b.js": "", "a.js": ""}
    assert await list_files() == ["a.js", "src/b.js"]

    mock_orchestrator.list_files.side_effect = Exception("boom")
    assert await list_files() == ["Error listing files: boom"]


@pytest.mark.asyncio
async def test_session_status(mock_orchestrator: MagicMock) -> None:
    mock_orchestrator.manager.active = None
    assert await session_status() == {"active": False}

    session = MagicMock()
    session.id = "s1"
    session.state = SessionState.RUNNING
    session.base_url = "https://host"
    session.timeout_at = 123.0
    session.known_files = {"a.js"}
    mock_orchestrator.manager.active = session
    assert await session_status() == {
        "active": True,
        "session_id": "s1",
        "state": "running",
        "url": "https://host",
        "timeout_at": 123.0,
        "files": 1,
    }


def test_build_orchestrator_with_bucket() -> None:
    with patch("coreason_forge.storage.boto3"):
        orchestrator = build_orchestrator(ForgeConfig(s3_bucket="projects-bucket"))
    assert isinstance(orchestrator.store, S3ProjectStore)
    assert orchestrator.store.bucket == "projects-bucket"


def test_build_orchestrator_without_bucket() -> None:
    assert build_orchestrator(ForgeConfig(s3_bucket=None)).store is None


def test_main_runs_server() -> None:
    with patch("coreason_forge.main.mcp") as mock_mcp:
        main()
        mock_mcp.run.assert_called_once()
