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
import posixpath
import time
from dataclasses import dataclass, field
from uuid import uuid4

import httpx
from loguru import logger

from coreason_forge.config import ForgeConfig
from coreason_forge.exceptions import (
    ForgeError,
    IoError,
    ProvisionError,
    SessionExpiredError,
    StageTimeout,
    StaleSessionError,
)
from coreason_forge.factory import SandboxFactory
from coreason_forge.models import CommandResult, SessionState
from coreason_forge.paths import normalize_path
from coreason_forge.runtime import SandboxRuntime
from coreason_forge.scaffold import default_project_files


@dataclass(eq=False)
class SandboxSession:
    """One ephemeral execution environment and its filesystem.

    Every operation validates the session first: a terminal session raises
    ``StaleSessionError`` (or ``SessionExpiredError`` once expired), and a
    session past ``timeout_at`` is expired on the spot. Paths are normalized
    relative to ``config.app_root`` before they reach the provider.
    """

    runtime: SandboxRuntime
    config: ForgeConfig
    id: str = field(default_factory=lambda: str(uuid4()))
    base_url: str = ""
    state: SessionState = SessionState.PROVISIONING
    created_at: float = field(default_factory=time.time)
    timeout_at: float = 0.0
    known_files: set[str] = field(default_factory=set)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self) -> None:
        if not self.timeout_at:
            self.timeout_at = self.created_at + self.config.session_timeout

    @property
    def provider_id(self) -> str | None:
        try:
            return self.runtime.sandbox_id
        except RuntimeError:
            return None

    @property
    def is_running(self) -> bool:
        return self.state == SessionState.RUNNING and time.time() < self.timeout_at

    def remote_path(self, relative_path: str) -> str:
        return posixpath.join(self.config.app_root, relative_path)

    async def _ensure_usable(self) -> None:
        if self.state == SessionState.EXPIRED:
            raise SessionExpiredError(self.id)
        if self.state.is_terminal:
            raise StaleSessionError(self.id)
        if time.time() >= self.timeout_at:
            logger.info(f"Session {self.id} passed its timeout. Expiring.")
            await self.expire()
            raise SessionExpiredError(self.id)

    # --- filesystem ----------------------------------------------------------

    async def write_file(self, path: str, content: str) -> str:
        """Write a file below the app root.

        Args:
            path: Project-relative path.
            content: Full file content.

        Returns:
            str: The normalized path that was written.

        Raises:
            IoError: If the path is rejected or the provider fails.
            SessionExpiredError: If the session has expired.
            StaleSessionError: If the session was replaced or killed.
        """
        await self._ensure_usable()
        relative = normalize_path(path)
        try:
            await self.runtime.write_file(self.remote_path(relative), content)
        except Exception as e:
            logger.error(f"Failed to write {relative} in session {self.id}: {e}")
            raise IoError(path, f"{type(e).__name__}: {e}") from e
        self.known_files.add(relative)
        return relative

    async def make_directory(self, path: str) -> str:
        await self._ensure_usable()
        relative = normalize_path(path)
        try:
            await self.runtime.make_directory(self.remote_path(relative))
        except Exception as e:
            logger.error(f"Failed to create directory {relative} in session {self.id}: {e}")
            raise IoError(path, f"{type(e).__name__}: {e}") from e
        return relative

    async def read_file(self, path: str) -> str:
        await self._ensure_usable()
        relative = normalize_path(path)
        try:
            return await self.runtime.read_file(self.remote_path(relative))
        except Exception as e:
            raise IoError(path, f"{type(e).__name__}: {e}") from e

    async def list_files(self) -> dict[str, str]:
        """Return the project's files and contents, keyed by relative path.

        Excluded directories (``node_modules`` and build output) are skipped,
        as are files that cannot be read as text.
        """
        await self._ensure_usable()
        try:
            paths = await self.runtime.list_files(self.config.app_root, self.config.listing_exclude_dirs)
        except Exception as e:
            logger.error(f"Failed to list files in session {self.id}: {e}")
            raise IoError(self.config.app_root, f"{type(e).__name__}: {e}") from e

        files: dict[str, str] = {}
        for relative in paths:
            try:
                files[relative] = await self.runtime.read_file(self.remote_path(relative))
            except Exception as e:
                logger.warning(f"Skipping unreadable file {relative}: {e}")
        self.known_files.update(files)
        return files

    # --- processes -----------------------------------------------------------

    async def install_dependencies(self) -> CommandResult:
        """Run the dependency install command in the app root.

        Raises:
            IoError: If the command cannot be run or exits non-zero.
            StageTimeout: If the install exceeds ``command_timeout``.
        """
        await self._ensure_usable()
        logger.info(f"Installing dependencies in session {self.id}")
        try:
            result = await self.runtime.run_command(
                self.config.install_command,
                cwd=self.config.app_root,
                timeout=self.config.command_timeout,
            )
        except TimeoutError as e:
            raise StageTimeout("installing", self.config.command_timeout) from e
        except Exception as e:
            raise IoError(self.config.dependency_manifest, f"{type(e).__name__}: {e}") from e

        if result.exit_code not in (0, None):
            tail = (result.stderr or result.stdout)[-500:]
            raise IoError(self.config.dependency_manifest, f"install exited with {result.exit_code}: {tail}")
        return result

    async def start_process(self, command: str | None = None) -> None:
        """Start the preview process in the background."""
        await self._ensure_usable()
        command = command or self.config.dev_command
        try:
            await self.runtime.run_command(command, cwd=self.config.app_root, background=True)
        except Exception as e:
            raise IoError(self.config.app_root, f"failed to start '{command}': {e}") from e

    async def restart_process(self) -> None:
        """Stop the running preview process and start it again."""
        await self._ensure_usable()
        try:
            await self.runtime.run_command(
                f"pkill -f '{self.config.dev_process_pattern}' || true",
                cwd=self.config.app_root,
                timeout=self.config.command_timeout,
            )
        except Exception as e:
            logger.warning(f"Failed to stop preview process in session {self.id}: {e}")
        await self.start_process()

    async def wait_until_ready(self, settle_delay: float | None = None) -> bool:
        """Wait for the preview to become usable.

        Sleeps for a fixed settle delay, then optionally probes ``base_url``.

        Returns:
            bool: False if the health probe failed, True otherwise.
        """
        delay = self.config.startup_settle_delay if settle_delay is None else settle_delay
        if delay > 0:
            await asyncio.sleep(delay)
        if not self.config.health_probe or not self.base_url:
            return True
        try:
            async with httpx.AsyncClient(timeout=self.config.health_probe_timeout) as client:
                response = await client.get(self.base_url)
            if response.status_code >= 500:
                logger.warning(f"Preview health probe returned {response.status_code} for {self.base_url}")
                return False
            return True
        except httpx.HTTPError as e:
            logger.warning(f"Preview health probe failed for {self.base_url}: {e}")
            return False

    # --- lifecycle -----------------------------------------------------------

    async def extend(self, seconds: float) -> None:
        """Push ``timeout_at`` forward, and the provider-side lifetime with it."""
        await self._ensure_usable()
        self.timeout_at = time.time() + seconds
        try:
            await self.runtime.set_timeout(seconds)
        except Exception as e:
            logger.warning(f"Provider did not accept timeout extension for session {self.id}: {e}")

    async def _release(self, state: SessionState) -> None:
        if self.state.is_terminal:
            return
        logger.info(f"Releasing session {self.id}", state=state.value)
        self.state = state
        try:
            await self.runtime.terminate()
        except Exception as e:
            logger.error(f"Error terminating session {self.id}: {e}")

    async def expire(self) -> None:
        """Transition to Expired and release the sandbox. No-op if already terminal."""
        await self._release(SessionState.EXPIRED)

    async def kill(self) -> None:
        """Transition to Killed and release the sandbox. No-op if already terminal."""
        await self._release(SessionState.KILLED)


class SandboxSessionManager:
    """Owns the single active sandbox session of the process.

    Creation, replacement and kill are serialized by one slot lock. A
    replacement also takes the outgoing session's lock, so it waits for an
    in-flight application run against that session to finish. A background
    reaper expires the active session once it passes its timeout.
    """

    def __init__(self, config: ForgeConfig | None = None):
        """Initializes the SandboxSessionManager.

        Args:
            config: Optional configuration object. If not provided, defaults are used.
        """
        self.config = config or ForgeConfig()
        self._active: SandboxSession | None = None
        self._slot_lock = asyncio.Lock()
        self._reaper_task: asyncio.Task[None] | None = None

    @property
    def active(self) -> SandboxSession | None:
        """The active session, or None if there is none or it reached a terminal state."""
        if self._active is None or self._active.state.is_terminal:
            return None
        return self._active

    def is_active(self, session: SandboxSession) -> bool:
        return self._active is session and not session.state.is_terminal

    def require_active(self, session: SandboxSession) -> None:
        """Raise if ``session`` is no longer the active session.

        Raises:
            StaleSessionError: If another session replaced it or it was killed.
            SessionExpiredError: If it expired.
        """
        if session.state == SessionState.EXPIRED:
            raise SessionExpiredError(session.id)
        if not self.is_active(session):
            active = self.active
            raise StaleSessionError(session.id, active.id if active else None)

    async def create(self, initial_files: dict[str, str] | None = None, boot: bool = True) -> SandboxSession:
        """Provision a new session, replacing any active one.

        The previous session is torn down before the new one is provisioned,
        so there is never more than one live sandbox.

        Args:
            initial_files: Project files to preload. The default scaffold is used if empty.
            boot: Install dependencies and start the preview process.

        Returns:
            SandboxSession: The new session, in the Running state.

        Raises:
            ProvisionError: If the provider rejects creation or provisioning
                exceeds ``provision_timeout``. No session is active afterwards.
        """
        async with self._slot_lock:
            await self._replace_active()

            try:
                runtime = SandboxFactory.get_runtime(self.config)
            except Exception as e:
                logger.error(f"Failed to initialize sandbox runtime: {e}")
                raise ProvisionError(f"Sandbox provider is unavailable: {e}", cause=e) from e
            session = SandboxSession(runtime=runtime, config=self.config)
            logger.info(
                "Allocating sandbox session",
                session_id=session.id,
                runtime=type(runtime).__name__,
            )

            try:
                await asyncio.wait_for(self._provision(session, initial_files, boot), self.config.provision_timeout)
            except asyncio.TimeoutError as e:
                await self._abandon(session)
                raise ProvisionError(
                    f"Sandbox provisioning exceeded {self.config.provision_timeout} seconds", cause=e
                ) from e
            except ProvisionError:
                await self._abandon(session)
                raise
            except Exception as e:
                await self._abandon(session)
                logger.error(f"Failed to provision sandbox: {e}")
                raise ProvisionError(f"Sandbox provider rejected creation: {e}", cause=e) from e

            session.state = SessionState.RUNNING
            self._active = session
            logger.info(f"Sandbox ready at {session.base_url}", session_id=session.id)

        await self._start_reaper_if_needed()
        return session

    async def _provision(self, session: SandboxSession, initial_files: dict[str, str] | None, boot: bool) -> None:
        await session.runtime.start()
        session.base_url = session.runtime.host_url(self.config.dev_server_port)

        files = initial_files or default_project_files(self.config.dev_server_port)
        if initial_files:
            logger.info(f"Loading {len(files)} project files into sandbox", session_id=session.id)
        else:
            logger.info("No project files provided, writing default scaffold", session_id=session.id)

        for path in sorted(files):
            relative = normalize_path(path)
            parent = posixpath.dirname(relative)
            remote_dir = session.remote_path(parent) if parent else session.config.app_root
            await session.runtime.make_directory(remote_dir)
            await session.runtime.write_file(session.remote_path(relative), files[path])
            session.known_files.add(relative)

        if not boot:
            return

        # Sessions are Provisioning here, so go to the runtime directly.
        result = await session.runtime.run_command(
            self.config.install_command, cwd=self.config.app_root, timeout=self.config.command_timeout
        )
        if result.exit_code not in (0, None):
            logger.warning(f"Initial dependency install exited with {result.exit_code}", session_id=session.id)
        await session.runtime.run_command(self.config.dev_command, cwd=self.config.app_root, background=True)
        await session.wait_until_ready()

    async def _abandon(self, session: SandboxSession) -> None:
        session.state = SessionState.KILLED
        try:
            await session.runtime.terminate()
        except Exception as e:
            logger.warning(f"Error cleaning up failed sandbox {session.id}: {e}")

    async def _replace_active(self) -> None:
        previous = self._active
        self._active = None
        if previous is None or previous.state.is_terminal:
            return
        logger.info(f"Replacing active session {previous.id}")
        async with previous.lock:
            await previous._release(SessionState.REPLACED)

    async def ensure_session(self, initial_files: dict[str, str] | None = None) -> SandboxSession:
        """Return the active session, creating a fresh one if none is usable."""
        session = self.active
        if session is not None:
            if session.is_running:
                return session
            await session.expire()
        return await self.create(initial_files)

    async def kill(self) -> None:
        """Kill the active session, if any."""
        async with self._slot_lock:
            session = self._active
            self._active = None
            if session is not None:
                async with session.lock:
                    await session.kill()

    async def _start_reaper_if_needed(self) -> None:
        """Start the background reaper task if it is not already running."""
        if self._reaper_task is None or self._reaper_task.done():
            self._reaper_task = asyncio.create_task(self._reaper_loop())

    async def _reaper_loop(self) -> None:
        """Background task that expires the active session after its timeout."""
        logger.info("Session reaper started")
        try:
            while True:
                await asyncio.sleep(self.config.reaper_interval)
                session = self._active
                if session is None or session.state.is_terminal:
                    continue
                if time.time() >= session.timeout_at:
                    logger.info(f"Session {session.id} expired. Terminating.")
                    await session.expire()
        except asyncio.CancelledError:
            logger.info("Session reaper cancelled")
        except Exception as e:
            logger.error(f"Session reaper crashed: {e}")

    async def shutdown(self) -> None:
        """Stop the reaper and terminate the active session."""
        if self._reaper_task and not self._reaper_task.done():
            self._reaper_task.cancel()
            try:
                await self._reaper_task
            except asyncio.CancelledError:
                pass
            self._reaper_task = None

        logger.info("Shutting down SandboxSessionManager.")
        try:
            await self.kill()
        except ForgeError as e:
            logger.error(f"Error terminating session during shutdown: {e}")
