# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ForgeConfig(BaseSettings):
    """
    Configuration for the generation and application pipeline.
    """

    runtime: Literal["docker", "e2b"] = "e2b"

    # E2B Configuration
    e2b_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("COREASON_FORGE_E2B_API_KEY", "E2B_API_KEY"),
    )
    e2b_template: str | None = None

    # Docker Configuration
    docker_image: str = "node:20-slim"
    docker_mem_limit: str = "1g"
    docker_cpu_limit: float = 1.0

    # Sandbox application layout
    app_root: str = "/home/user/app"
    dev_server_port: int = 5173
    dependency_manifest: str = "package.json"
    install_command: str = "npm install"
    dev_command: str = "npm run dev"
    dev_process_pattern: str = "vite"
    listing_exclude_dirs: set[str] = {"node_modules", ".git", "dist", "build", ".next", ".vite"}

    # Lifecycle timings (seconds)
    session_timeout: float = 900.0  # 15 minutes
    provision_timeout: float = 120.0
    install_settle_delay: float = 5.0
    startup_settle_delay: float = 10.0
    reaper_interval: float = 30.0  # Check expiry every 30 seconds
    health_probe: bool = True
    health_probe_timeout: float = 5.0
    run_timeout: float = 300.0
    command_timeout: float = 300.0

    # Generation service
    generation_url: str = "http://localhost:3000/api/generate-ai-code-stream"
    generation_model: str = "openai/gpt-4o"
    generation_timeout: float = 600.0

    # Conversation context
    max_context_turns: int = 10
    max_listing_files: int = 50
    max_listing_bytes: int = 64_000

    # S3 / Object Storage for project snapshots
    s3_bucket: str | None = None
    s3_region: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None
    s3_endpoint_url: str | None = None

    model_config = SettingsConfigDict(
        env_prefix="COREASON_FORGE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )
