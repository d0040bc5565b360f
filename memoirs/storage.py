"""
Storage abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config


class StorageClient(Protocol):
    """Defines the operations the API needs from object storage."""

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        ...

    def delete(self, path: str) -> None:
        ...

    def public_url(self, path: str) -> str:
        ...

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        self.stored_objects[path] = (bytes(data), content_type)

    def delete(self, path: str) -> None:
        self.stored_objects.pop(path, None)

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(path)}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{quote(path)}?op=get&expires={expires_in}"


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client (AWS S3, Tencent COS, MinIO, Supabase storage).
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str = ""

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload_bytes(self, path: str, data: bytes, content_type: str) -> None:
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=data,
            ContentType=content_type or "application/octet-stream",
        )

    def delete(self, path: str) -> None:
        self._client.delete_object(Bucket=self.bucket, Key=path)

    def public_url(self, path: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url.rstrip('/')}/{quote(path)}"
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{quote(path)}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{quote(path)}"

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )
