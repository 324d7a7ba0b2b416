# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

import asyncio
import time
from collections import Counter
from collections.abc import Callable, Iterable
from uuid import uuid4

from loguru import logger

from coreason_forge.config import ForgeConfig
from coreason_forge.exceptions import ForgeError, IoError, SessionExpiredError, StageTimeout, StaleSessionError
from coreason_forge.models import ApplicationRun, FileArtifact, RunSnapshot, RunStage
from coreason_forge.paths import parent_directories
from coreason_forge.session_manager import SandboxSession, SandboxSessionManager

ProgressCallback = Callable[[RunSnapshot], None]


def deduplicate(artifacts: Iterable[FileArtifact]) -> list[FileArtifact]:
    """Keep the last artifact per path.

    Paths emitted once keep their emission order. A path that was emitted
    more than once is applied after all of those, ordered by its final
    emission.
    """
    items = list(artifacts)
    counts = Counter(artifact.path for artifact in items)
    last_index = {artifact.path: index for index, artifact in enumerate(items)}

    single = [artifact for artifact in items if counts[artifact.path] == 1]
    superseded = [items[index] for index in sorted(last_index[path] for path in counts if counts[path] > 1)]
    return single + superseded


class ApplicationEngine:
    """Applies batches of file artifacts to a sandbox session.

    A run walks ``Analyzing → Installing → Writing → Restarting → Complete``
    and can drop to ``Failed`` from any stage. Each file write is its own
    unit of failure. Runs against the same session are serialized by the
    session's lock, and every write first checks that the session is still
    the active one.
    """

    def __init__(self, manager: SandboxSessionManager, config: ForgeConfig | None = None):
        self.manager = manager
        self.config = config or manager.config

    async def apply(
        self,
        session: SandboxSession,
        artifacts: list[FileArtifact],
        on_progress: ProgressCallback | None = None,
    ) -> ApplicationRun:
        """Apply a batch of artifacts to ``session``.

        Args:
            session: Target session. Must be the manager's active session.
            artifacts: Artifacts in emission order; duplicates are resolved here.
            on_progress: Called with a snapshot after every stage change and file.

        Returns:
            ApplicationRun: Final state of the run, ``Complete`` or ``Failed``.

        Raises:
            StaleSessionError: If the session was replaced before or during the run.
            SessionExpiredError: If the session expired before or during the run.
        """
        run = ApplicationRun(run_id=str(uuid4()), session_id=session.id)
        async with session.lock:
            logger.info(f"Starting run {run.run_id} with {len(artifacts)} artifacts", session_id=session.id)
            try:
                await asyncio.wait_for(self._execute(run, session, artifacts, on_progress), self.config.run_timeout)
            except asyncio.TimeoutError:
                stage = run.stage.value
                self._fail(run, f"{StageTimeout(stage, self.config.run_timeout)}", on_progress)
            except (StaleSessionError, SessionExpiredError) as e:
                self._fail(run, str(e), on_progress)
                raise
            except ForgeError as e:
                logger.error(f"Run {run.run_id} failed: {e}")
                self._fail(run, str(e), on_progress)
            finally:
                run.finished_at = time.time()

        logger.info(
            f"Run {run.run_id} finished",
            status=run.status.value,
            applied=len(run.applied_paths),
            failed=len(run.failed_paths),
        )
        return run

    async def _execute(
        self,
        run: ApplicationRun,
        session: SandboxSession,
        artifacts: list[FileArtifact],
        on_progress: ProgressCallback | None,
    ) -> None:
        self.manager.require_active(session)

        self._transition(run, RunStage.ANALYZING, on_progress)
        batch = deduplicate(artifacts)
        manifest = next((a for a in batch if a.path == self.config.dependency_manifest), None)
        sources = [a for a in batch if a is not manifest]
        created: set[str] = set()
        run.dependencies_changed = manifest is not None

        if manifest is not None:
            self._transition(run, RunStage.INSTALLING, on_progress)
            if await self._write(run, session, manifest, created, on_progress):
                try:
                    await session.install_dependencies()
                    if self.config.install_settle_delay > 0:
                        await asyncio.sleep(self.config.install_settle_delay)
                except (IoError, StageTimeout) as e:
                    # Reported, never fatal for the writes that follow
                    run.install_error = str(e)
                    logger.warning(f"Dependency install failed in run {run.run_id}: {e}")

        self._transition(run, RunStage.WRITING, on_progress)
        for artifact in sources:
            await self._write(run, session, artifact, created, on_progress)

        if run.applied_paths:
            self._transition(run, RunStage.RESTARTING, on_progress)
            self.manager.require_active(session)
            if run.dependencies_changed:
                try:
                    await session.restart_process()
                except IoError as e:
                    logger.warning(f"Preview restart failed in run {run.run_id}: {e}")
            # Without a restart the dev server reloads on its own; only probe it
            ready = await session.wait_until_ready(None if run.dependencies_changed else 0.0)
            if not ready:
                logger.warning(f"Preview did not report ready after run {run.run_id}")

        if not run.applied_paths and run.failed_paths:
            self._fail(run, "No files were applied", on_progress)
            return
        self._transition(run, RunStage.COMPLETE, on_progress)

    async def _write(
        self,
        run: ApplicationRun,
        session: SandboxSession,
        artifact: FileArtifact,
        created: set[str],
        on_progress: ProgressCallback | None,
    ) -> bool:
        self.manager.require_active(session)
        try:
            for directory in parent_directories(artifact.path):
                if directory in created:
                    continue
                await session.make_directory(directory)
                created.add(directory)
            await session.write_file(artifact.path, artifact.content)
        except IoError as e:
            run.failed_paths[artifact.path] = e.cause
            logger.warning(f"Failed to apply {artifact.path}: {e.cause}", run_id=run.run_id)
            self._emit(run, on_progress)
            return False

        run.applied_paths.append(artifact.path)
        logger.debug(f"Applied {artifact.path} ({artifact.size_bytes} bytes)", run_id=run.run_id)
        self._emit(run, on_progress)
        return True

    def _transition(self, run: ApplicationRun, stage: RunStage, on_progress: ProgressCallback | None) -> None:
        run.stage = stage
        logger.debug(f"Run {run.run_id} -> {stage.value}")
        self._emit(run, on_progress)

    def _fail(self, run: ApplicationRun, reason: str, on_progress: ProgressCallback | None) -> None:
        run.failed_stage = run.stage
        run.failure_reason = reason
        run.stage = RunStage.FAILED
        self._emit(run, on_progress)

    @staticmethod
    def _emit(run: ApplicationRun, on_progress: ProgressCallback | None) -> None:
        if on_progress is None:
            return
        try:
            on_progress(run.snapshot())
        except Exception as e:
            logger.warning(f"Progress callback raised: {e}")
