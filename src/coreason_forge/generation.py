# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

from collections.abc import AsyncIterator
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from coreason_forge.config import ForgeConfig
from coreason_forge.exceptions import TransportError
from coreason_forge.protocol import GenerationRecord, generation_record_adapter


class GenerationContext(BaseModel):
    """Context sent with each generation request."""

    model_config = ConfigDict(populate_by_name=True)

    sandbox_id: str | None = Field(default=None, alias="sandboxId")
    file_listing: dict[str, str] = Field(default_factory=dict, alias="fileListing")
    recent_turns: list[dict[str, Any]] = Field(default_factory=list, alias="recentTurns")


class GenerationRequest(BaseModel):
    """Request body for the generation service.

    Attributes:
        prompt: The user's instruction.
        model: Model identifier understood by the generation service.
        context: Session id, bounded file listing and recent turns.
        is_edit: True when the request modifies an existing project.
    """

    model_config = ConfigDict(populate_by_name=True)

    prompt: str
    model: str
    context: GenerationContext = Field(default_factory=GenerationContext)
    is_edit: bool = Field(default=False, alias="isEdit")


def decode_line(line: str) -> GenerationRecord | None:
    """Decode one ``data: <json>`` line into a typed record.

    Blank lines, comments and non-data fields return None. Records that fail
    schema validation, including unknown ``type`` values, are logged and
    dropped.
    """
    line = line.strip()
    if not line.startswith("data:"):
        return None
    payload = line[len("data:") :].strip()
    if not payload or payload == "[DONE]":
        return None
    try:
        return generation_record_adapter.validate_json(payload)
    except ValidationError as e:
        logger.warning(f"Dropping undecodable generation record: {e.errors()[0]['msg']}", payload=payload[:200])
        return None


class GenerationClient:
    """Streams records from the generation service over HTTP.

    Uses a caller-supplied ``httpx.AsyncClient`` for connection pooling, or
    owns one of its own.
    """

    def __init__(self, config: ForgeConfig | None = None, client: httpx.AsyncClient | None = None):
        """Initializes the GenerationClient.

        Args:
            config: Configuration with the service URL and timeout.
            client: Optional httpx.AsyncClient for connection pooling.
        """
        self.config = config or ForgeConfig()
        self._internal_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(self.config.generation_timeout))

    async def __aenter__(self) -> "GenerationClient":
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._internal_client:
            await self._client.aclose()

    async def stream(self, request: GenerationRequest) -> AsyncIterator[GenerationRecord]:
        """Open a generation stream and yield decoded records in arrival order.

        Args:
            request: The generation request.

        Yields:
            GenerationRecord: Each decodable record.

        Raises:
            TransportError: On network failure or a non-success HTTP status.
        """
        body = request.model_dump(by_alias=True)
        logger.info(f"Opening generation stream ({request.model})", is_edit=request.is_edit)
        try:
            async with self._client.stream("POST", self.config.generation_url, json=body) as response:
                if response.status_code >= 400:
                    detail = (await response.aread()).decode("utf-8", errors="replace")[:200]
                    raise TransportError(
                        f"Generation service returned HTTP {response.status_code}: {detail}",
                        status_code=response.status_code,
                    )
                async for line in response.aiter_lines():
                    record = decode_line(line)
                    if record is not None:
                        yield record
        except httpx.HTTPError as e:
            logger.error(f"Generation stream failed: {e}")
            raise TransportError(f"Generation stream failed: {e}") from e
