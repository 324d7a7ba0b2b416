import pytest

from coreason_forge.context import ConversationContext


def test_context_is_bounded() -> None:
    context = ConversationContext(max_turns=3)
    for i in range(5):
        context.append("user", f"turn {i}")
    assert len(context) == 3
    assert [t.text for t in context.turns] == ["turn 2", "turn 3", "turn 4"]


def test_context_rejects_zero_turns() -> None:
    with pytest.raises(ValueError):
        ConversationContext(max_turns=0)


def test_applied_paths_dedup_keeps_latest_position() -> None:
    context = ConversationContext()
    context.append("assistant", "first", ["a.js", "b.js"])
    context.append("assistant", "second", ["a.js"])
    assert context.applied_paths == ["b.js", "a.js"]
    assert context.has_applied_code


def test_has_applied_code_false_without_paths() -> None:
    context = ConversationContext()
    context.append("user", "hello")
    assert not context.has_applied_code


def test_recent_turns_serialization() -> None:
    context = ConversationContext()
    context.append("user", "make a button")
    context.append("assistant", "done", ["src/App.jsx"])
    assert context.recent_turns() == [
        {"role": "user", "content": "make a button", "appliedFiles": []},
        {"role": "assistant", "content": "done", "appliedFiles": ["src/App.jsx"]},
    ]


def test_turns_snapshot_is_immutable() -> None:
    context = ConversationContext()
    context.append("user", "x")
    snapshot = context.turns
    context.append("user", "y")
    assert len(snapshot) == 1
