# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

import posixpath
import re

from coreason_forge.exceptions import IoError

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


def normalize_path(path: str) -> str:
    """Validate and normalize a project-relative path.

    A leading slash anchors the path at the project root rather than the
    filesystem root, so ``/src/App.jsx`` and ``src/App.jsx`` name the same file.

    Args:
        path: The path as emitted by the generator or supplied by a caller.

    Returns:
        str: The normalized POSIX path relative to the project root.

    Raises:
        IoError: If the path is empty, contains a NUL byte, carries a drive
            prefix or escapes the project root.
    """
    if path is None or not path.strip():
        raise IoError(str(path), "empty path")
    if "\x00" in path:
        raise IoError(path, "path contains NUL byte")

    candidate = path.strip().replace("\\", "/")
    if _DRIVE_PREFIX.match(candidate):
        raise IoError(path, "absolute drive paths are not allowed")

    candidate = candidate.lstrip("/")
    if not candidate:
        raise IoError(path, "empty path")

    if ".." in candidate.split("/"):
        raise IoError(path, "path traversal is not allowed")

    normalized = posixpath.normpath(candidate)
    if normalized in (".", "") or normalized.startswith("../"):
        raise IoError(path, "path escapes project root")
    return normalized


def parent_directories(path: str) -> list[str]:
    """Return the ancestor directories implied by a normalized path, outermost first."""
    parts = path.split("/")[:-1]
    return ["/".join(parts[: i + 1]) for i in range(len(parts))]


def is_normalized(path: str) -> bool:
    try:
        return normalize_path(path) == path
    except IoError:
        return False
