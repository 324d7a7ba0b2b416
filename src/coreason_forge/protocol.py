# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

"""Protocol events produced by the parser and wire records sent by the generation service."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

# --- Protocol events ---------------------------------------------------------


class StatusEvent(BaseModel):
    kind: Literal["status"] = "status"
    message: str


class ThinkingEvent(BaseModel):
    kind: Literal["thinking"] = "thinking"
    delta_text: str


class NarrationEvent(BaseModel):
    kind: Literal["narration"] = "narration"
    text: str


class FileOpenEvent(BaseModel):
    kind: Literal["file_open"] = "file_open"
    path: str


class FileChunkEvent(BaseModel):
    kind: Literal["file_chunk"] = "file_chunk"
    path: str
    delta_text: str


class FileCloseEvent(BaseModel):
    kind: Literal["file_close"] = "file_close"
    path: str
    full_text: str
    truncated: bool = False


class CompleteEvent(BaseModel):
    kind: Literal["complete"] = "complete"
    summary: str = ""
    generated_code: str | None = None


class ErrorEvent(BaseModel):
    """An anomaly surfaced in-band instead of raised.

    ``code`` is ``truncated`` for a force-closed file region, ``generation``
    for an error reported by the generation service.
    """

    kind: Literal["error"] = "error"
    message: str
    code: Literal["truncated", "generation", "protocol"] = "protocol"
    path: str | None = None


ProtocolEvent = Annotated[
    Union[
        StatusEvent,
        ThinkingEvent,
        NarrationEvent,
        FileOpenEvent,
        FileChunkEvent,
        FileCloseEvent,
        CompleteEvent,
        ErrorEvent,
    ],
    Field(discriminator="kind"),
]

protocol_event_adapter: TypeAdapter[ProtocolEvent] = TypeAdapter(ProtocolEvent)


def coalesce_events(events: list[ProtocolEvent]) -> list[ProtocolEvent]:
    """Merge adjacent delta events so that streams split differently compare equal.

    Adjacent narration, thinking and same-path file chunk events are joined.
    All other events pass through unchanged.
    """
    merged: list[ProtocolEvent] = []
    for event in events:
        previous = merged[-1] if merged else None
        if isinstance(event, NarrationEvent) and isinstance(previous, NarrationEvent):
            merged[-1] = NarrationEvent(text=previous.text + event.text)
        elif isinstance(event, ThinkingEvent) and isinstance(previous, ThinkingEvent):
            merged[-1] = ThinkingEvent(delta_text=previous.delta_text + event.delta_text)
        elif (
            isinstance(event, FileChunkEvent)
            and isinstance(previous, FileChunkEvent)
            and previous.path == event.path
        ):
            merged[-1] = FileChunkEvent(path=event.path, delta_text=previous.delta_text + event.delta_text)
        else:
            merged.append(event)
    return merged


# --- Wire records --------------------------------------------------------------


class _WireRecord(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class StatusRecord(_WireRecord):
    type: Literal["status"]
    message: str = ""


class ThinkingRecord(_WireRecord):
    type: Literal["thinking"]
    text: str = ""


class ConversationRecord(_WireRecord):
    type: Literal["conversation"]
    text: str = ""


class StreamRecord(_WireRecord):
    type: Literal["stream"]
    text: str = ""
    raw: bool = True


class CompleteRecord(_WireRecord):
    type: Literal["complete"]
    generated_code: str | None = Field(default=None, alias="generatedCode")
    explanation: str = ""


class ErrorRecord(_WireRecord):
    type: Literal["error"]
    error: str | None = None
    message: str | None = None

    @property
    def text(self) -> str:
        return self.error or self.message or "Generation service reported an error"


GenerationRecord = Annotated[
    Union[StatusRecord, ThinkingRecord, ConversationRecord, StreamRecord, CompleteRecord, ErrorRecord],
    Field(discriminator="type"),
]

generation_record_adapter: TypeAdapter[GenerationRecord] = TypeAdapter(GenerationRecord)
