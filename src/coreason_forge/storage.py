# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_forge

import json
from typing import Protocol

import anyio
import boto3
from botocore.exceptions import ClientError
from loguru import logger


class ProjectStore(Protocol):
    """Protocol for persisting a project's file listing after a successful run."""

    async def save(self, project_id: str, files: dict[str, str]) -> None:
        """Persist the project's files.

        Args:
            project_id: The project identifier.
            files: Mapping of project-relative path to content.
        """
        ...

    async def load(self, project_id: str) -> dict[str, str]:
        """Fetch the project's saved files, or an empty mapping if none were saved."""
        ...


class S3ProjectStore:
    """S3 implementation of the ProjectStore protocol."""

    def __init__(
        self,
        bucket: str,
        region: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        endpoint_url: str | None = None,
        prefix: str = "projects",
    ):
        """Initializes the S3ProjectStore backend.

        Args:
            bucket: The S3 bucket name.
            region: Optional AWS region name.
            access_key: Optional AWS access key ID.
            secret_key: Optional AWS secret access key.
            endpoint_url: Optional endpoint URL for S3-compatible services (e.g., MinIO).
            prefix: Key prefix under which projects are stored.
        """
        self.bucket = bucket
        self.prefix = prefix
        self.client = boto3.client(
            "s3",
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            endpoint_url=endpoint_url,
        )

    def object_key(self, project_id: str) -> str:
        return f"{self.prefix}/{project_id}/files.json"

    async def save(self, project_id: str, files: dict[str, str]) -> None:
        """Upload the file listing as a JSON document.

        Raises:
            ClientError: If the upload to S3 fails.
        """
        key = self.object_key(project_id)
        body = json.dumps({"projectId": project_id, "files": files}).encode("utf-8")
        logger.info(f"Saving {len(files)} files to s3://{self.bucket}/{key}")

        def _put() -> None:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=body, ContentType="application/json")

        try:
            await anyio.to_thread.run_sync(_put)
        except ClientError as e:
            logger.error(f"Failed to save project to S3: {e}")
            raise

    async def load(self, project_id: str) -> dict[str, str]:
        """Fetch a previously saved file listing. Returns an empty mapping if none exists."""
        key = self.object_key(project_id)

        def _get() -> bytes:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            data: bytes = response["Body"].read()
            return data

        try:
            raw = await anyio.to_thread.run_sync(_get)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return {}
            logger.error(f"Failed to load project from S3: {e}")
            raise
        files = json.loads(raw).get("files", {})
        return {str(path): str(content) for path, content in files.items()}
