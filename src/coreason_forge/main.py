# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

from typing import Any

from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent

from coreason_forge.config import ForgeConfig
from coreason_forge.models import TurnResult
from coreason_forge.orchestrator import GenerationOrchestrator
from coreason_forge.storage import S3ProjectStore
from coreason_forge.utils.logger import logger


def build_orchestrator(config: ForgeConfig | None = None) -> GenerationOrchestrator:
    """Wire the orchestrator with the S3 store when a bucket is configured."""
    config = config or ForgeConfig()
    store = None
    if config.s3_bucket:
        store = S3ProjectStore(
            bucket=config.s3_bucket,
            region=config.s3_region,
            access_key=config.s3_access_key,
            secret_key=config.s3_secret_key,
            endpoint_url=config.s3_endpoint_url,
        )
    return GenerationOrchestrator(config=config, store=store)


# Initialize Orchestrator
orchestrator = build_orchestrator()

# Initialize MCP Server
mcp = FastMCP("coreason-forge")


def _render(result: TurnResult) -> list[TextContent]:
    output = [TextContent(type="text", text=f"Status: {result.status.value}")]
    for message in result.messages:
        prefix = "ERROR: " if message.error else ""
        output.append(TextContent(type="text", text=f"{prefix}{message.text}"))
    if result.preview is not None:
        output.append(TextContent(type="text", text=f"Preview: {result.preview.url}"))
    return output


@mcp.tool()  # type: ignore[misc]
async def run_turn(prompt: str, project_id: str | None = None) -> list[TextContent]:
    """
    Generate code for an instruction and apply it to the live sandbox.
    Returns status messages and the preview URL.
    """
    try:
        result = await orchestrator.run_turn(prompt, project_id)
    except Exception as e:
        logger.exception("run_turn failed")
        return [TextContent(type="text", text=f"Error running turn: {e!s}")]
    return _render(result)


@mcp.tool()  # type: ignore[misc]
async def reapply_last_generation() -> list[TextContent]:
    """
    Apply the files of the last generation again.
    """
    try:
        result = await orchestrator.reapply_last_generation()
    except Exception as e:
        return [TextContent(type="text", text=f"Error re-applying generation: {e!s}")]
    return _render(result)


@mcp.tool()  # type: ignore[misc]
async def list_files() -> list[str]:
    """
    List the project files of the active sandbox.
    """
    try:
        return sorted(await orchestrator.list_files())
    except Exception as e:
        return [f"Error listing files: {e!s}"]


@mcp.tool()  # type: ignore[misc]
async def session_status() -> dict[str, Any]:
    """
    Describe the active sandbox session.
    """
    session = orchestrator.manager.active
    if session is None:
        return {"active": False}
    return {
        "active": True,
        "session_id": session.id,
        "state": session.state.value,
        "url": session.base_url,
        "timeout_at": session.timeout_at,
        "files": len(session.known_files),
    }


def main() -> None:
    """Entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":  # pragma: no cover
    main()
