# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

"""Error taxonomy for the generation and application pipeline."""


class ForgeError(Exception):
    """Base class for all coreason-forge errors."""


class ProvisionError(ForgeError):
    """The sandbox provider could not create a session.

    Raised for quota exhaustion, invalid credentials or a provisioning
    deadline. Never retried automatically.
    """

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class SessionExpiredError(ForgeError):
    """An operation was attempted after the session's wall-clock timeout."""

    def __init__(self, session_id: str):
        super().__init__(f"Sandbox session {session_id} has expired")
        self.session_id = session_id


class StaleSessionError(ForgeError):
    """A run targets a session that is no longer the active one."""

    def __init__(self, session_id: str, active_id: str | None = None):
        super().__init__(f"Sandbox session {session_id} is no longer active (active: {active_id or 'none'})")
        self.session_id = session_id
        self.active_id = active_id


class IoError(ForgeError):
    """A single file operation against the sandbox failed.

    Attributes:
        path: The path as supplied by the caller.
        cause: Short description of the underlying failure.
    """

    def __init__(self, path: str, cause: str):
        super().__init__(f"{path}: {cause}")
        self.path = path
        self.cause = cause


class ParseTruncationError(ForgeError):
    """The generation stream ended while a file region was still open."""

    def __init__(self, path: str, received_bytes: int):
        super().__init__(f"Stream ended before </file> for {path} ({received_bytes} bytes received)")
        self.path = path
        self.received_bytes = received_bytes


class TransportError(ForgeError):
    """Network or protocol failure talking to the generation service."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class StageTimeout(ForgeError, TimeoutError):
    """A pipeline stage exceeded its deadline."""

    def __init__(self, stage: str, seconds: float):
        super().__init__(f"Stage '{stage}' exceeded {seconds} seconds limit.")
        self.stage = stage
        self.seconds = seconds
