# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

from abc import ABC, abstractmethod

from coreason_forge.models import CommandResult


class SandboxRuntime(ABC):
    """
    Abstract base class for sandbox providers (e.g., E2B, Docker).
    Follows the Strategy Pattern.

    Implementations raise their provider's native errors; the session layer
    maps them into the coreason-forge error taxonomy.
    """

    @abstractmethod
    async def start(self) -> None:
        """Boot the environment.

        Provisions and starts the underlying sandbox (E2B microVM or Docker container).

        Raises:
            Exception: Provider-specific error if the sandbox fails to start.
        """
        pass  # pragma: no cover

    @property
    @abstractmethod
    def sandbox_id(self) -> str:
        """Provider identifier of the running sandbox.

        Raises:
            RuntimeError: If the sandbox is not started.
        """
        pass  # pragma: no cover

    @abstractmethod
    def host_url(self, port: int) -> str:
        """Public base URL for a port exposed by the sandbox.

        Args:
            port: The port the preview server listens on inside the sandbox.

        Returns:
            str: URL reachable from outside the sandbox.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        """Write a text file at an absolute path inside the sandbox.

        Args:
            path: Absolute destination path.
            content: Full file content.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def make_directory(self, path: str) -> None:
        """Create a directory (and parents) at an absolute path. Existing directories are not an error."""
        pass  # pragma: no cover

    @abstractmethod
    async def read_file(self, path: str) -> str:
        """Read a text file at an absolute path inside the sandbox.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def list_files(self, path: str, exclude_dirs: set[str]) -> list[str]:
        """Recursively list regular files below a directory.

        Args:
            path: Absolute directory to walk.
            exclude_dirs: Directory names that are not descended into.

        Returns:
            list[str]: Paths relative to ``path``, using ``/`` separators.
        """
        pass  # pragma: no cover

    @abstractmethod
    async def run_command(
        self, command: str, cwd: str | None = None, background: bool = False, timeout: float | None = None
    ) -> CommandResult:
        """Run a shell command inside the sandbox.

        Args:
            command: The shell command line.
            cwd: Working directory for the command.
            background: Return immediately without waiting for the process.
            timeout: Upper bound for foreground commands, in seconds.

        Returns:
            CommandResult: Captured output, or an empty result for background commands.
        """
        pass  # pragma: no cover

    async def set_timeout(self, seconds: float) -> None:  # noqa: B027
        """Extend the provider-side lifetime of the sandbox, where supported."""

    @abstractmethod
    async def terminate(self) -> None:
        """Kill and cleanup the sandbox environment.

        Stops the sandbox and releases any allocated resources.
        """
        pass  # pragma: no cover
