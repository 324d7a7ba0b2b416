# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

import time
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from coreason_forge.paths import is_normalized


class FileArtifact(BaseModel):
    """A complete file extracted from a generation stream.

    Attributes:
        path: Normalized path relative to the project root.
        content: The full text of the file.
        size_bytes: UTF-8 encoded size of the content.
        truncated: True if the stream ended before the file region was closed.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    content: str
    size_bytes: int
    truncated: bool = False

    @field_validator("path")
    @classmethod
    def _require_normalized(cls, value: str) -> str:
        if not is_normalized(value):
            raise ValueError(f"Artifact path is not normalized: {value!r}")
        return value

    @classmethod
    def from_text(cls, path: str, content: str, truncated: bool = False) -> "FileArtifact":
        return cls(path=path, content=content, size_bytes=len(content.encode("utf-8")), truncated=truncated)


class SessionState(str, Enum):
    PROVISIONING = "provisioning"
    RUNNING = "running"
    EXPIRED = "expired"
    REPLACED = "replaced"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.EXPIRED, SessionState.REPLACED, SessionState.KILLED)


class RunStage(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    INSTALLING = "installing"
    WRITING = "writing"
    RESTARTING = "restarting"
    COMPLETE = "complete"
    FAILED = "failed"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class RunSnapshot(BaseModel):
    """Progress update delivered to the UI collaborator."""

    run_id: str
    session_id: str
    stage: RunStage
    applied_paths: list[str]
    failed_paths: dict[str, str]


class ApplicationRun(BaseModel):
    """One pass of applying a batch of artifacts to one sandbox session.

    Attributes:
        run_id: Unique identifier of the run.
        session_id: Identifier of the target session.
        stage: Current stage of the run state machine.
        applied_paths: Paths written successfully, in write order.
        failed_paths: Mapping of path to failure reason.
        failed_stage: Stage at which the run failed, if it failed.
        failure_reason: Reason attached to the Failed transition.
        install_error: Dependency installation failure, reported but not fatal.
        dependencies_changed: True if the batch contained a dependency manifest.
    """

    run_id: str
    session_id: str
    stage: RunStage = RunStage.IDLE
    applied_paths: list[str] = Field(default_factory=list)
    failed_paths: dict[str, str] = Field(default_factory=dict)
    failed_stage: RunStage | None = None
    failure_reason: str | None = None
    install_error: str | None = None
    dependencies_changed: bool = False
    started_at: float = Field(default_factory=time.time)
    finished_at: float | None = None

    @property
    def status(self) -> RunStatus:
        if self.stage == RunStage.FAILED or (not self.applied_paths and self.failed_paths):
            return RunStatus.FAILED
        if self.failed_paths or self.install_error:
            return RunStatus.PARTIAL
        return RunStatus.SUCCESS

    def snapshot(self) -> RunSnapshot:
        return RunSnapshot(
            run_id=self.run_id,
            session_id=self.session_id,
            stage=self.stage,
            applied_paths=list(self.applied_paths),
            failed_paths=dict(self.failed_paths),
        )


class ConversationTurn(BaseModel):
    """A single entry of the conversation context."""

    role: Literal["user", "assistant", "system"]
    text: str
    applied_paths: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


class ChatMessage(BaseModel):
    """A chat-visible message produced during a turn."""

    role: Literal["user", "assistant", "system"]
    text: str
    error: bool = False


class PreviewSignal(BaseModel):
    """Tells the UI collaborator to refresh its live preview.

    Attributes:
        host_url: Base URL of the running preview.
        cache_token: Cache-busting token, milliseconds since the epoch.
    """

    host_url: str
    cache_token: str

    @property
    def url(self) -> str:
        return f"{self.host_url}?t={self.cache_token}"


class CommandResult(BaseModel):
    """Result of a command run inside the sandbox."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int | None = None
    background: bool = False


class TurnStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    NO_CHANGES = "no_changes"


class TurnResult(BaseModel):
    """Outcome of one user turn.

    Attributes:
        prompt: The user's instruction.
        status: Overall outcome of the turn.
        session_id: Session the turn was applied to, if any.
        artifacts: Artifacts extracted from the generation stream.
        run: The application run, if artifacts were applied.
        messages: Chat-visible messages produced during the turn.
        preview: Preview refresh signal, if anything was applied.
        summary: Explanation returned by the generation service.
        error: Reason the turn failed, if it failed.
    """

    prompt: str
    status: TurnStatus = TurnStatus.NO_CHANGES
    session_id: str | None = None
    artifacts: list[FileArtifact] = Field(default_factory=list)
    run: ApplicationRun | None = None
    messages: list[ChatMessage] = Field(default_factory=list)
    preview: PreviewSignal | None = None
    summary: str = ""
    error: str | None = None
