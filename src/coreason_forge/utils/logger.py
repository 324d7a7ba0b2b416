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
Logging setup for coreason-forge.

Configures loguru with a human-readable stderr sink and a rotating JSON
file sink under ``logs/``.
"""

import os
import sys
from pathlib import Path

from loguru import logger

LOG_DIR = Path("logs")
LOG_LEVEL = os.getenv("COREASON_FORGE_LOG_LEVEL", "INFO")

logger.remove()

logger.add(
    sys.stderr,
    level=LOG_LEVEL,
    format=(
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level> {extra}"
    ),
)

LOG_DIR.mkdir(parents=True, exist_ok=True)

logger.add(
    LOG_DIR / "app.log",
    level=LOG_LEVEL,
    rotation="10 MB",
    retention="7 days",
    serialize=True,
    enqueue=True,
)

__all__ = ["logger"]
