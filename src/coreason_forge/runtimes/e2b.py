import asyncio
import os
import posixpath
from typing import Any, Callable, TypeVar

from e2b_code_interpreter import CommandExitException, FileType
from e2b_code_interpreter import Sandbox as E2BSandbox
from loguru import logger

from coreason_forge.models import CommandResult
from coreason_forge.runtime import SandboxRuntime

T = TypeVar("T")


class E2BRuntime(SandboxRuntime):
    """E2B Cloud implementation of the SandboxRuntime.

    Uses E2B cloud-based microVMs. The SDK is synchronous, so every call is
    offloaded to a worker thread.
    """

    def __init__(
        self,
        api_key: str | None = None,
        template: str | None = None,
        lifetime: float = 900.0,
        timeout: float = 300.0,
    ):
        """Initializes the E2BRuntime.

        Args:
            api_key: E2B API Key. Defaults to E2B_API_KEY env var.
            template: E2B template ID to use. Defaults to the code interpreter template.
            lifetime: Sandbox lifetime in seconds before E2B reclaims it.
            timeout: Timeout in seconds for foreground commands.
        """
        self.api_key = api_key or os.getenv("E2B_API_KEY")
        self.template = template
        self.lifetime = lifetime
        self.timeout = timeout
        self.sandbox: E2BSandbox | None = None

    def _require_sandbox(self) -> E2BSandbox:
        if not self.sandbox:
            raise RuntimeError("Sandbox not started")
        return self.sandbox

    async def _call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        return await asyncio.to_thread(func, *args, **kwargs)

    async def start(self) -> None:
        """Boot the environment.

        If a sandbox is already attached to this runtime, it is terminated first.

        Raises:
            Exception: If the sandbox fails to start.
        """
        if self.sandbox:
            logger.warning("E2B sandbox already running. Terminating old session before restart.")
            await self.terminate()

        logger.info(f"Starting E2B sandbox (template: {self.template or 'default'})")
        kwargs: dict[str, Any] = {"api_key": self.api_key, "timeout": int(self.lifetime)}
        if self.template:
            kwargs["template"] = self.template
        try:
            self.sandbox = await self._call(E2BSandbox.create, **kwargs)
            logger.info(f"E2B sandbox started: {self.sandbox.sandbox_id}")
        except Exception as e:
            logger.error(f"Failed to start E2B sandbox: {e}")
            raise

    @property
    def sandbox_id(self) -> str:
        return str(self._require_sandbox().sandbox_id)

    def host_url(self, port: int) -> str:
        host = self._require_sandbox().get_host(port)
        return f"https://{host}"

    async def write_file(self, path: str, content: str) -> None:
        sandbox = self._require_sandbox()
        await self._call(sandbox.files.write, path, content)

    async def make_directory(self, path: str) -> None:
        sandbox = self._require_sandbox()
        # make_dir returns False when the directory already exists
        await self._call(sandbox.files.make_dir, path)

    async def read_file(self, path: str) -> str:
        sandbox = self._require_sandbox()
        content = await self._call(sandbox.files.read, path)
        if content is None:
            raise FileNotFoundError(f"Remote file not found: {path}")
        return str(content)

    async def list_files(self, path: str, exclude_dirs: set[str]) -> list[str]:
        """Recursively list regular files below ``path``.

        Directories named in ``exclude_dirs`` are skipped entirely.
        """
        sandbox = self._require_sandbox()
        files: list[str] = []
        pending = [path]
        while pending:
            directory = pending.pop()
            entries = await self._call(sandbox.files.list, directory)
            for entry in entries:
                full_path = entry.path or posixpath.join(directory, entry.name)
                if entry.type == FileType.DIR:
                    if entry.name not in exclude_dirs:
                        pending.append(full_path)
                elif entry.type == FileType.FILE:
                    files.append(posixpath.relpath(full_path, path))
        return sorted(files)

    async def run_command(
        self, command: str, cwd: str | None = None, background: bool = False, timeout: float | None = None
    ) -> CommandResult:
        sandbox = self._require_sandbox()
        logger.info(f"Running command in E2B sandbox: {command}", background=background)
        if background:
            await self._call(sandbox.commands.run, command, background=True, cwd=cwd)
            return CommandResult(background=True)

        try:
            result = await self._call(
                sandbox.commands.run,
                command,
                cwd=cwd,
                timeout=timeout or self.timeout,
            )
        except CommandExitException as e:
            # Non-zero exit is reported through the result, not raised
            return CommandResult(stdout=e.stdout, stderr=e.stderr, exit_code=e.exit_code)
        return CommandResult(stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code)

    async def set_timeout(self, seconds: float) -> None:
        sandbox = self._require_sandbox()
        await self._call(sandbox.set_timeout, int(seconds))

    async def terminate(self) -> None:
        """Kill and cleanup the sandbox environment.

        Closes the E2B sandbox session.
        """
        if self.sandbox:
            logger.info(f"Terminating E2B sandbox: {self.sandbox.sandbox_id}")
            try:
                await self._call(self.sandbox.kill)
            except Exception as e:
                logger.warning(f"Error terminating E2B sandbox: {e}")
            finally:
                self.sandbox = None
        else:
            logger.warning("Attempted to terminate non-existent E2B sandbox")
