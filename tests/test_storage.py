import json
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from coreason_forge.storage import S3ProjectStore


@pytest.fixture
def mock_boto3() -> Any:
    with patch("coreason_forge.storage.boto3") as mock:
        yield mock


def test_s3_store_init(mock_boto3: Any) -> None:
    store = S3ProjectStore(bucket="my-bucket", region="us-east-1")
    mock_boto3.client.assert_called_with(
        "s3",
        region_name="us-east-1",
        aws_access_key_id=None,
        aws_secret_access_key=None,
        endpoint_url=None,
    )
    assert store.bucket == "my-bucket"
    assert store.object_key("p1") == "projects/p1/files.json"


@pytest.mark.asyncio
async def test_save(mock_boto3: Any) -> None:
    store = S3ProjectStore(bucket="my-bucket")
    await store.save("p1", {"src/App.jsx": "app"})

    kwargs = mock_boto3.client.return_value.put_object.call_args.kwargs
    assert kwargs["Bucket"] == "my-bucket"
    assert kwargs["Key"] == "projects/p1/files.json"
    assert json.loads(kwargs["Body"]) == {"projectId": "p1", "files": {"src/App.jsx": "app"}}


@pytest.mark.asyncio
async def test_save_client_error(mock_boto3: Any) -> None:
    store = S3ProjectStore(bucket="my-bucket")
    mock_boto3.client.return_value.put_object.side_effect = ClientError(
        {"Error": {"Code": "403", "Message": "Forbidden"}}, "PutObject"
    )
    with pytest.raises(ClientError):
        await store.save("p1", {})


@pytest.mark.asyncio
async def test_load(mock_boto3: Any) -> None:
    store = S3ProjectStore(bucket="my-bucket")
    body = MagicMock()
    body.read.return_value = json.dumps({"projectId": "p1", "files": {"a.js": "x"}}).encode("utf-8")
    mock_boto3.client.return_value.get_object.return_value = {"Body": body}

    assert await store.load("p1") == {"a.js": "x"}


@pytest.mark.asyncio
async def test_load_missing_project(mock_boto3: Any) -> None:
    store = S3ProjectStore(bucket="my-bucket")
    mock_boto3.client.return_value.get_object.side_effect = ClientError(
        {"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject"
    )
    assert await store.load("p1") == {}
