# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

import re
from enum import Enum

from loguru import logger

from coreason_forge.exceptions import IoError, ParseTruncationError
from coreason_forge.paths import normalize_path
from coreason_forge.protocol import (
    ErrorEvent,
    FileChunkEvent,
    FileCloseEvent,
    FileOpenEvent,
    NarrationEvent,
    ProtocolEvent,
    StatusEvent,
    ThinkingEvent,
)

MAX_TAG_LENGTH = 1024

_FILE_TAG = "file"
_DIRECTIVE_TAGS = ("status", "thinking")
_KNOWN_TAGS = (_FILE_TAG, *_DIRECTIVE_TAGS)

_TAG_NAME = re.compile(r"<([A-Za-z]*)")
_PATH_ATTR = re.compile(r"""\bpath\s*=\s*(?:"([^"]*)"|'([^']*)')""")


class _State(Enum):
    NARRATION = "narration"
    IN_TAG = "in_tag"
    IN_FILE_BODY = "in_file_body"
    IN_DIRECTIVE = "in_directive"


def _find_closing(text: str, token: str) -> int:
    """Index of the first case-insensitive occurrence of ``token`` in ``text``, or -1."""
    match = re.search(re.escape(token), text, re.IGNORECASE | re.ASCII)
    return match.start() if match else -1


def _partial_suffix(text: str, token: str) -> int:
    """Length of the longest suffix of ``text`` that is a proper prefix of ``token``, ignoring case."""
    for size in range(min(len(text), len(token) - 1), 0, -1):
        if text[-size:].lower() == token[:size]:
            return size
    return 0


def _trim_body(body: str) -> str:
    if body.startswith("\r\n"):
        body = body[2:]
    elif body.startswith("\n"):
        body = body[1:]
    if body.endswith("\r\n"):
        body = body[:-2]
    elif body.endswith("\n"):
        body = body[:-1]
    return body


class ProtocolEventParser:
    """Incremental lexer for the embedded file tag protocol.

    Turns arbitrarily split text chunks into protocol events. Text outside
    tags is narration, ``<file path="...">`` ... ``</file>`` regions become
    file events, ``<status>`` and ``<thinking>`` regions become directive
    events. Anything that does not parse as one of those tags is passed
    through as narration.

    Incomplete tag text is buffered until it is unambiguous, so the
    sequence of ``FileClose`` events does not depend on where chunks are
    split. One parser instance handles exactly one stream.
    """

    def __init__(self, max_tag_length: int = MAX_TAG_LENGTH):
        self.max_tag_length = max_tag_length
        self._state = _State.NARRATION
        self._buffer = ""
        self._path: str | None = None
        self._body: list[str] = []
        self._directive: str | None = None
        self._finished = False

    @property
    def open_path(self) -> str | None:
        """Path of the file region currently being streamed, if any."""
        return self._path if self._state == _State.IN_FILE_BODY else None

    def feed(self, chunk: str) -> list[ProtocolEvent]:
        """Consume the next chunk of stream text.

        Args:
            chunk: Raw text as it arrived from the generation stream.

        Returns:
            list[ProtocolEvent]: Events that became unambiguous with this chunk.
        """
        if self._finished:
            logger.warning("Parser received data after finish(); ignoring chunk")
            return []
        if not chunk:
            return []
        self._buffer += chunk
        events: list[ProtocolEvent] = []
        self._drain(events, final=False)
        return events

    def finish(self) -> list[ProtocolEvent]:
        """Flush buffered content at end of stream.

        An unterminated file region is closed with the content received so far
        and followed by an ``error`` event flagging the truncation.
        """
        if self._finished:
            return []
        events: list[ProtocolEvent] = []
        self._drain(events, final=True)

        if self._state == _State.IN_FILE_BODY and self._path is not None:
            if self._buffer:
                self._emit_chunk(events, self._buffer)
                self._buffer = ""
            body = "".join(self._body)
            events.append(FileCloseEvent(path=self._path, full_text=_trim_body(body), truncated=True))
            truncation = ParseTruncationError(self._path, len(body.encode("utf-8")))
            logger.warning(str(truncation))
            events.append(ErrorEvent(message=str(truncation), code="truncated", path=self._path))
        elif self._state == _State.IN_DIRECTIVE:
            self._close_directive(events, self._buffer)
            self._buffer = ""

        self._state = _State.NARRATION
        self._path = None
        self._body = []
        self._finished = True
        return events

    # --- state machine ---------------------------------------------------------

    def _drain(self, events: list[ProtocolEvent], final: bool) -> None:
        while self._buffer:
            if self._state == _State.NARRATION:
                progressed = self._step_narration(events)
            elif self._state == _State.IN_TAG:
                progressed = self._step_tag(events, final)
            elif self._state == _State.IN_FILE_BODY:
                progressed = self._step_file_body(events)
            else:
                progressed = self._step_directive(events)
            if not progressed:
                break

    def _step_narration(self, events: list[ProtocolEvent]) -> bool:
        index = self._buffer.find("<")
        if index == -1:
            events.append(NarrationEvent(text=self._buffer))
            self._buffer = ""
            return False
        if index > 0:
            events.append(NarrationEvent(text=self._buffer[:index]))
            self._buffer = self._buffer[index:]
        self._state = _State.IN_TAG
        return True

    def _step_tag(self, events: list[ProtocolEvent], final: bool) -> bool:
        buffer = self._buffer
        name_match = _TAG_NAME.match(buffer)
        name = name_match.group(1).lower() if name_match else ""
        name_end = 1 + len(name)

        if name_end == len(buffer):
            # The tag name may still be growing.
            if final or (name and not any(tag.startswith(name) for tag in _KNOWN_TAGS)):
                return self._literal(events)
            return False

        if name not in _KNOWN_TAGS:
            return self._literal(events)
        following = buffer[name_end]
        if not (following.isspace() or following == ">"):
            return self._literal(events)

        limit = min(len(buffer), self.max_tag_length)
        close = buffer.find(">", 1, limit)
        stray = buffer.find("<", 1, close if close != -1 else limit)
        if stray != -1:
            return self._literal(events)
        if close == -1:
            if final or len(buffer) >= self.max_tag_length:
                return self._literal(events)
            return False

        tag_text = buffer[: close + 1]
        if tag_text.endswith("/>"):
            return self._literal(events)
        if name == _FILE_TAG:
            path = self._file_path(tag_text)
            if path is None:
                return self._literal(events)
            self._buffer = buffer[close + 1 :]
            self._path = path
            self._body = []
            self._state = _State.IN_FILE_BODY
            events.append(FileOpenEvent(path=path))
            return True

        self._buffer = buffer[close + 1 :]
        self._directive = name
        self._state = _State.IN_DIRECTIVE
        return True

    def _step_file_body(self, events: list[ProtocolEvent]) -> bool:
        closing = f"</{_FILE_TAG}>"
        index = _find_closing(self._buffer, closing)
        if index != -1:
            if index > 0:
                self._emit_chunk(events, self._buffer[:index])
            self._buffer = self._buffer[index + len(closing) :]
            assert self._path is not None
            events.append(FileCloseEvent(path=self._path, full_text=_trim_body("".join(self._body))))
            self._path = None
            self._body = []
            self._state = _State.NARRATION
            return True

        keep = _partial_suffix(self._buffer, closing)
        ready = self._buffer[: len(self._buffer) - keep]
        if ready:
            self._emit_chunk(events, ready)
            self._buffer = self._buffer[len(ready) :]
        return False

    def _step_directive(self, events: list[ProtocolEvent]) -> bool:
        assert self._directive is not None
        closing = f"</{self._directive}>"
        index = _find_closing(self._buffer, closing)
        terminator = len(closing)
        if self._directive == "status":
            newline = self._buffer.find("\n")
            if newline != -1 and (index == -1 or newline < index):
                index, terminator = newline, 1

        if index != -1:
            self._close_directive(events, self._buffer[:index])
            self._buffer = self._buffer[index + terminator :]
            self._state = _State.NARRATION
            return True

        if self._directive == "thinking":
            keep = _partial_suffix(self._buffer, closing)
            ready = self._buffer[: len(self._buffer) - keep]
            if ready:
                events.append(ThinkingEvent(delta_text=ready))
                self._buffer = self._buffer[len(ready) :]
        return False

    # --- helpers ---------------------------------------------------------------

    def _literal(self, events: list[ProtocolEvent]) -> bool:
        events.append(NarrationEvent(text=self._buffer[0]))
        self._buffer = self._buffer[1:]
        self._state = _State.NARRATION
        return True

    def _emit_chunk(self, events: list[ProtocolEvent], text: str) -> None:
        assert self._path is not None
        self._body.append(text)
        events.append(FileChunkEvent(path=self._path, delta_text=text))

    def _close_directive(self, events: list[ProtocolEvent], text: str) -> None:
        if self._directive == "status":
            message = text.strip()
            if message:
                events.append(StatusEvent(message=message))
        elif text:
            events.append(ThinkingEvent(delta_text=text))
        self._directive = None

    @staticmethod
    def _file_path(tag_text: str) -> str | None:
        match = _PATH_ATTR.search(tag_text)
        if match is None:
            return None
        raw = match.group(1) if match.group(1) is not None else match.group(2)
        try:
            return normalize_path(raw)
        except IoError as e:
            logger.warning(f"Rejected file tag path {raw!r}: {e.cause}")
            return None
