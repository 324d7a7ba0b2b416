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
from typing import Literal

from loguru import logger

from coreason_forge.config import ForgeConfig
from coreason_forge.context import ConversationContext
from coreason_forge.engine import ApplicationEngine
from coreason_forge.exceptions import (
    IoError,
    ProvisionError,
    SessionExpiredError,
    StageTimeout,
    StaleSessionError,
    TransportError,
)
from coreason_forge.generation import GenerationClient, GenerationContext, GenerationRequest
from coreason_forge.models import (
    ChatMessage,
    FileArtifact,
    PreviewSignal,
    RunSnapshot,
    RunStatus,
    TurnResult,
    TurnStatus,
)
from coreason_forge.parser import ProtocolEventParser
from coreason_forge.protocol import (
    CompleteEvent,
    CompleteRecord,
    ConversationRecord,
    ErrorEvent,
    ErrorRecord,
    FileCloseEvent,
    GenerationRecord,
    NarrationEvent,
    ProtocolEvent,
    StatusEvent,
    StatusRecord,
    StreamRecord,
    ThinkingEvent,
    ThinkingRecord,
)
from coreason_forge.session_manager import SandboxSession, SandboxSessionManager
from coreason_forge.storage import ProjectStore

PACKAGE_COMMANDS = frozenset({"check packages", "npm install"})


class TurnObserver:
    """Receives live updates for a turn.

    The default implementation ignores everything; subclass it to forward
    updates to a UI.
    """

    def on_event(self, event: ProtocolEvent) -> None:
        pass

    def on_progress(self, snapshot: RunSnapshot) -> None:
        pass

    def on_message(self, message: ChatMessage) -> None:
        pass

    def on_preview_ready(self, signal: PreviewSignal) -> None:
        pass


class _StreamOutcome:
    def __init__(self) -> None:
        self.artifacts: list[FileArtifact] = []
        self.raw_text: list[str] = []
        self.narration: list[str] = []
        self.errors: list[str] = []
        self.summary = ""


class GenerationOrchestrator:
    """Drives one user turn from instruction to applied files.

    Ensures a sandbox session exists, streams the generation through the
    protocol parser, hands the collected artifacts to the application
    engine and records the outcome in the conversation context. Failures of
    any kind end up as chat-visible messages on the returned TurnResult.
    """

    def __init__(
        self,
        config: ForgeConfig | None = None,
        manager: SandboxSessionManager | None = None,
        client: GenerationClient | None = None,
        engine: ApplicationEngine | None = None,
        context: ConversationContext | None = None,
        store: ProjectStore | None = None,
        observer: TurnObserver | None = None,
        project_id: str | None = None,
        project_files: dict[str, str] | None = None,
    ):
        """Initializes the GenerationOrchestrator.

        Args:
            config: Configuration object. Defaults are used if not provided.
            manager: Session manager owning the active sandbox.
            client: Generation service client.
            engine: Application engine. Built from ``manager`` if not provided.
            context: Conversation context carried across turns.
            store: Persistence hook invoked after successful runs.
            observer: Receiver of live updates.
            project_id: Identifier passed to ``store``.
            project_files: Saved project files to load into a new sandbox.
        """
        self.config = config or ForgeConfig()
        self.manager = manager or SandboxSessionManager(self.config)
        self.client = client or GenerationClient(self.config)
        self.engine = engine or ApplicationEngine(self.manager, self.config)
        self.context = context or ConversationContext(self.config.max_context_turns)
        self.store = store
        self.observer = observer or TurnObserver()
        self.project_id = project_id
        self.project_files = project_files or {}
        self._loaded_project: str | None = project_id if project_files else None

    # --- public API ------------------------------------------------------------

    async def run_turn(self, prompt: str, project_id: str | None = None) -> TurnResult:
        """Run one user turn end-to-end.

        Args:
            prompt: The user's instruction.
            project_id: Overrides the orchestrator's project id for persistence.

        Returns:
            TurnResult: The outcome; never raises for pipeline failures.

        Raises:
            ValueError: If the prompt is empty.
        """
        prompt = prompt.strip()
        if not prompt:
            raise ValueError("Prompt is required")
        if project_id:
            self.project_id = project_id

        result = TurnResult(prompt=prompt)
        self.context.append("user", prompt)

        if prompt.lower() in PACKAGE_COMMANDS:
            return await self._install_packages(result)

        session = await self._ensure_session(result)
        if session is None:
            return result

        request = GenerationRequest(
            prompt=prompt,
            model=self.config.generation_model,
            context=GenerationContext(
                sandbox_id=session.provider_id,
                file_listing=await self._file_listing(session),
                recent_turns=self.context.recent_turns(),
            ),
            is_edit=self.context.has_applied_code or bool(self.project_files),
        )

        try:
            outcome = await self._consume(request, result)
        except TransportError as e:
            return self._fail(result, f"Generation failed: {e}")

        self.context.last_generation = "".join(outcome.raw_text) or None
        return await self._finish(result, session, outcome)

    async def reapply_last_generation(self) -> TurnResult:
        """Parse and apply the last generation again without calling the model."""
        result = TurnResult(prompt="reapply last generation")
        if not self.context.last_generation:
            return self._fail(result, "There is no previous generation to re-apply.")

        session = await self._ensure_session(result)
        if session is None:
            return result

        self._say(result, "system", "Re-applying last generation...")
        outcome = _StreamOutcome()
        parser = ProtocolEventParser()
        self._dispatch(parser.feed(self.context.last_generation), outcome, result)
        self._dispatch(parser.finish(), outcome, result)
        return await self._finish(result, session, outcome)

    async def list_files(self) -> dict[str, str]:
        """Files of the active session, or an empty mapping without one."""
        session = self.manager.active
        if session is None:
            return {}
        return await session.list_files()

    async def aclose(self) -> None:
        await self.client.aclose()
        await self.manager.shutdown()

    # --- stages ------------------------------------------------------------------

    async def _ensure_session(self, result: TurnResult) -> SandboxSession | None:
        if self.manager.active is None:
            await self._load_project(result)
            self._say(result, "system", "Creating sandbox...")
        try:
            session = await self.manager.ensure_session(self.project_files or None)
        except ProvisionError as e:
            self._fail(result, f"Failed to create sandbox: {e}")
            return None
        result.session_id = session.id
        return session

    async def _load_project(self, result: TurnResult) -> None:
        """Seed a new sandbox with the saved files of the current project."""
        if self.store is None or not self.project_id or self._loaded_project == self.project_id:
            return
        self._loaded_project = self.project_id
        try:
            files = await self.store.load(self.project_id)
        except Exception as e:
            logger.error(f"Failed to load project {self.project_id}: {e}")
            self._say(result, "system", f"Could not load saved project files: {e}", error=True)
            return
        if files:
            self.project_files = files
            logger.info(f"Loaded {len(files)} saved files for project {self.project_id}")
            self._say(result, "system", f"Loaded {len(files)} saved project files.")

    async def _file_listing(self, session: SandboxSession) -> dict[str, str]:
        """Bounded snapshot of the project for the generation context."""
        try:
            files = await session.list_files()
        except (IoError, SessionExpiredError, StaleSessionError) as e:
            logger.warning(f"Could not list files for generation context: {e}")
            return {}

        listing: dict[str, str] = {}
        budget = self.config.max_listing_bytes
        for path in sorted(files):
            if len(listing) >= self.config.max_listing_files:
                break
            size = len(files[path].encode("utf-8"))
            if size > budget:
                continue
            listing[path] = files[path]
            budget -= size
        return listing

    async def _consume(self, request: GenerationRequest, result: TurnResult) -> _StreamOutcome:
        outcome = _StreamOutcome()
        parser = ProtocolEventParser()
        saw_stream = False
        complete: CompleteRecord | None = None

        async for record in self.client.stream(request):
            if isinstance(record, StreamRecord):
                saw_stream = True
                outcome.raw_text.append(record.text)
                self._dispatch(parser.feed(record.text), outcome, result)
            elif isinstance(record, CompleteRecord):
                complete = record
            else:
                self._dispatch(self._record_events(record), outcome, result)

        if not saw_stream and complete is not None and complete.generated_code:
            # Services that do not stream raw text deliver it all at once
            outcome.raw_text.append(complete.generated_code)
            self._dispatch(parser.feed(complete.generated_code), outcome, result)
        self._dispatch(parser.finish(), outcome, result)

        if complete is None:
            logger.info("Generation stream ended without a complete record")
        summary = complete.explanation if complete else ""
        self._dispatch([CompleteEvent(summary=summary)], outcome, result)
        return outcome

    async def _finish(self, result: TurnResult, session: SandboxSession, outcome: _StreamOutcome) -> TurnResult:
        result.artifacts = list(outcome.artifacts)
        narration = "".join(outcome.narration).strip()
        result.summary = outcome.summary or narration
        if narration:
            self._say(result, "assistant", narration)

        if not outcome.artifacts:
            if outcome.errors:
                return self._fail(result, "; ".join(outcome.errors))
            result.status = TurnStatus.NO_CHANGES
            self.context.append("assistant", result.summary or "No file changes were generated.")
            return result

        self._say(result, "system", "Applying generated code...")
        return await self._apply(result, session, outcome.artifacts)

    async def _apply(self, result: TurnResult, session: SandboxSession, artifacts: list[FileArtifact]) -> TurnResult:
        retried = False
        while True:
            try:
                run = await self.engine.apply(session, artifacts, self.observer.on_progress)
                break
            except (SessionExpiredError, StaleSessionError) as e:
                if retried:
                    return self._fail(result, f"Sandbox changed again while applying code: {e}")
                retried = True
                if isinstance(e, SessionExpiredError):
                    self._say(result, "system", "Sandbox session expired. Creating a fresh sandbox and retrying...")
                else:
                    self._say(result, "system", "Sandbox was replaced. Retrying on the current sandbox...")
                replacement = await self._ensure_session(result)
                if replacement is None:
                    return result
                session = replacement

        result.run = run
        result.session_id = session.id

        if run.status == RunStatus.FAILED:
            details = ", ".join(f"{path} ({reason})" for path, reason in run.failed_paths.items())
            reason = run.failure_reason or "No files were applied"
            return self._fail(result, f"Failed to apply code: {reason}" + (f": {details}" if details else ""))

        result.status = TurnStatus.SUCCESS if run.status == RunStatus.SUCCESS else TurnStatus.PARTIAL
        self._say(result, "system", f"Applied {len(run.applied_paths)} file(s): {', '.join(run.applied_paths)}")
        for path, reason in run.failed_paths.items():
            self._say(result, "system", f"Failed to write {path}: {reason}", error=True)
        if run.install_error:
            self._say(result, "system", f"Dependency installation failed: {run.install_error}", error=True)

        self.context.append("assistant", result.summary or "Applied generated code.", run.applied_paths)
        await self._persist(session)

        result.preview = PreviewSignal(host_url=session.base_url, cache_token=str(int(time.time() * 1000)))
        self.observer.on_preview_ready(result.preview)
        return result

    async def _install_packages(self, result: TurnResult) -> TurnResult:
        session = self.manager.active
        if session is None:
            return self._fail(result, "No active sandbox. Send an instruction to create one first.")
        self._say(result, "system", "Checking packages...")
        try:
            async with session.lock:
                await session.install_dependencies()
                await session.restart_process()
        except (IoError, StageTimeout, SessionExpiredError, StaleSessionError) as e:
            return self._fail(result, f"Package installation failed: {e}")
        result.session_id = session.id
        result.status = TurnStatus.SUCCESS
        self._say(result, "system", "Packages installed.")
        self.context.append("system", "Packages installed.")
        return result

    async def _persist(self, session: SandboxSession) -> None:
        if self.store is None or not self.project_id:
            return
        try:
            files = await session.list_files()
            await self.store.save(self.project_id, files)
        except Exception as e:
            logger.error(f"Failed to persist project {self.project_id}: {e}")

    # --- helpers -----------------------------------------------------------------

    @staticmethod
    def _record_events(record: GenerationRecord) -> list[ProtocolEvent]:
        if isinstance(record, StatusRecord):
            return [StatusEvent(message=record.message)]
        if isinstance(record, ThinkingRecord):
            return [ThinkingEvent(delta_text=record.text)]
        if isinstance(record, ConversationRecord):
            return [NarrationEvent(text=record.text)]
        if isinstance(record, ErrorRecord):
            return [ErrorEvent(message=record.text, code="generation")]
        return []

    def _dispatch(self, events: list[ProtocolEvent], outcome: _StreamOutcome, result: TurnResult) -> None:
        for event in events:
            self.observer.on_event(event)
            if isinstance(event, FileCloseEvent):
                outcome.artifacts.append(FileArtifact.from_text(event.path, event.full_text, event.truncated))
            elif isinstance(event, NarrationEvent):
                outcome.narration.append(event.text)
            elif isinstance(event, CompleteEvent):
                outcome.summary = event.summary
            elif isinstance(event, ErrorEvent):
                if event.code == "truncated":
                    self._say(result, "system", f"{event.message}. Partial content will be applied.", error=True)
                else:
                    outcome.errors.append(event.message)
                    self._say(result, "system", f"Generation error: {event.message}", error=True)

    def _say(
        self,
        result: TurnResult,
        role: Literal["user", "assistant", "system"],
        text: str,
        error: bool = False,
    ) -> None:
        message = ChatMessage(role=role, text=text, error=error)
        result.messages.append(message)
        self.observer.on_message(message)

    def _fail(self, result: TurnResult, reason: str) -> TurnResult:
        logger.error(reason)
        result.status = TurnStatus.FAILED
        result.error = reason
        self._say(result, "system", reason, error=True)
        self.context.append("system", f"Error: {reason}")
        return result
