# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

"""
coreason-forge
"""

__version__ = "0.1.0"
__author__ = "Gowtham A Rao"
__email__ = "gowtham.rao@coreason.ai"

from .config import ForgeConfig
from .context import ConversationContext
from .engine import ApplicationEngine
from .exceptions import (
    ForgeError,
    IoError,
    ParseTruncationError,
    ProvisionError,
    SessionExpiredError,
    StageTimeout,
    StaleSessionError,
    TransportError,
)
from .models import ApplicationRun, FileArtifact, RunStage, RunStatus, TurnResult, TurnStatus
from .orchestrator import GenerationOrchestrator, TurnObserver
from .parser import ProtocolEventParser
from .session_manager import SandboxSession, SandboxSessionManager

__all__ = [
    "ApplicationEngine",
    "ApplicationRun",
    "ConversationContext",
    "FileArtifact",
    "ForgeConfig",
    "ForgeError",
    "GenerationOrchestrator",
    "IoError",
    "ParseTruncationError",
    "ProtocolEventParser",
    "ProvisionError",
    "RunStage",
    "RunStatus",
    "SandboxSession",
    "SandboxSessionManager",
    "SessionExpiredError",
    "StageTimeout",
    "StaleSessionError",
    "TransportError",
    "TurnObserver",
    "TurnResult",
    "TurnStatus",
]
