import pytest
from pydantic import ValidationError

from coreason_forge.models import (
    ApplicationRun,
    FileArtifact,
    PreviewSignal,
    RunStage,
    RunStatus,
    SessionState,
)


def test_file_artifact_from_text() -> None:
    artifact = FileArtifact.from_text("src/App.jsx", "héllo")
    assert artifact.size_bytes == 6
    assert artifact.truncated is False


def test_file_artifact_requires_normalized_path() -> None:
    with pytest.raises(ValidationError):
        FileArtifact.from_text("../App.jsx", "x")
    with pytest.raises(ValidationError):
        FileArtifact.from_text("/src/App.jsx", "x")


def test_file_artifact_is_frozen() -> None:
    artifact = FileArtifact.from_text("a.js", "x")
    with pytest.raises(ValidationError):
        artifact.content = "y"  # type: ignore[misc]


def test_session_state_terminal() -> None:
    assert not SessionState.PROVISIONING.is_terminal
    assert not SessionState.RUNNING.is_terminal
    assert SessionState.EXPIRED.is_terminal
    assert SessionState.REPLACED.is_terminal
    assert SessionState.KILLED.is_terminal


def test_run_status_success() -> None:
    run = ApplicationRun(run_id="r", session_id="s", stage=RunStage.COMPLETE, applied_paths=["a.js"])
    assert run.status == RunStatus.SUCCESS


def test_run_status_partial() -> None:
    run = ApplicationRun(
        run_id="r", session_id="s", stage=RunStage.COMPLETE, applied_paths=["a.js"], failed_paths={"b.js": "denied"}
    )
    assert run.status == RunStatus.PARTIAL

    run = ApplicationRun(
        run_id="r", session_id="s", stage=RunStage.COMPLETE, applied_paths=["a.js"], install_error="exit 1"
    )
    assert run.status == RunStatus.PARTIAL


def test_run_status_failed() -> None:
    assert ApplicationRun(run_id="r", session_id="s", stage=RunStage.FAILED).status == RunStatus.FAILED
    run = ApplicationRun(run_id="r", session_id="s", failed_paths={"a.js": "denied"})
    assert run.status == RunStatus.FAILED


def test_snapshot_is_a_copy() -> None:
    run = ApplicationRun(run_id="r", session_id="s", applied_paths=["a.js"])
    snapshot = run.snapshot()
    run.applied_paths.append("b.js")
    assert snapshot.applied_paths == ["a.js"]


def test_preview_url() -> None:
    signal = PreviewSignal(host_url="https://5173-abc.e2b.app", cache_token="1700000000000")
    assert signal.url == "https://5173-abc.e2b.app?t=1700000000000"
