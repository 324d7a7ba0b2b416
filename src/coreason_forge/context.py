# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

from collections import deque
from typing import Any, Literal

from coreason_forge.models import ConversationTurn


class ConversationContext:
    """Bounded, ordered record of recent turns.

    Keeps the most recent ``max_turns`` entries. Only the orchestrator
    appends; everything else reads snapshots.
    """

    def __init__(self, max_turns: int = 10):
        if max_turns < 1:
            raise ValueError("max_turns must be at least 1")
        self.max_turns = max_turns
        self._turns: deque[ConversationTurn] = deque(maxlen=max_turns)
        self.last_generation: str | None = None

    def __len__(self) -> int:
        return len(self._turns)

    def append(
        self,
        role: Literal["user", "assistant", "system"],
        text: str,
        applied_paths: list[str] | None = None,
    ) -> ConversationTurn:
        turn = ConversationTurn(role=role, text=text, applied_paths=list(applied_paths or []))
        self._turns.append(turn)
        return turn

    @property
    def turns(self) -> tuple[ConversationTurn, ...]:
        return tuple(self._turns)

    @property
    def applied_paths(self) -> list[str]:
        """Every path applied within the retained turns, oldest first, without duplicates."""
        seen: dict[str, None] = {}
        for turn in self._turns:
            for path in turn.applied_paths:
                seen.pop(path, None)
                seen[path] = None
        return list(seen)

    @property
    def has_applied_code(self) -> bool:
        return any(turn.applied_paths for turn in self._turns)

    def recent_turns(self) -> list[dict[str, Any]]:
        """Serialize the retained turns for a generation request."""
        return [
            {"role": turn.role, "content": turn.text, "appliedFiles": list(turn.applied_paths)}
            for turn in self._turns
        ]
