"""
Durable object storage backends: local filesystem and S3-compatible buckets.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from storyloom.common.config import Settings
from storyloom.common.errors import PersistenceError

logger = logging.getLogger(__name__)


class DurableStorage:
    """
    Path-addressed upload returning a stable public URL. No delete contract.
    """

    @property
    def public_base(self) -> str:
        raise NotImplementedError

    async def upload(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        raise NotImplementedError

    def public_url(self, key: str) -> str:
        return f"{self.public_base.rstrip('/')}/{key.lstrip('/')}"


class LocalStorage(DurableStorage):
    def __init__(self, base_dir: str | Path, public_base: str = "/static") -> None:
        self.base_dir = Path(base_dir).expanduser()
        self._public_base = public_base.rstrip("/")
        self.base_dir.mkdir(parents=True, exist_ok=True)

    @property
    def public_base(self) -> str:
        return self._public_base

    async def upload(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        path = (self.base_dir / key).resolve()
        if self.base_dir.resolve() not in path.parents:
            raise PersistenceError(f"Storage key '{key}' escapes the storage directory.")
        try:
            await asyncio.to_thread(self._write, path, data)
        except OSError as exc:
            raise PersistenceError(f"Could not write {path}: {exc}") from exc
        return self.public_url(key)

    @staticmethod
    def _write(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


class S3Storage(DurableStorage):
    def __init__(
        self,
        *,
        bucket: str,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        public_base_url: str | None = None,
        client: Any = None,
    ) -> None:
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            region_name=region,
            config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        )
        if public_base_url:
            self._public_base = public_base_url.rstrip("/")
        else:
            endpoint = self.client.meta.endpoint_url.rstrip("/")
            self._public_base = f"{endpoint}/{self.bucket}"

    @property
    def public_base(self) -> str:
        return self._public_base

    async def upload(self, key: str, data: bytes, *, content_type: str | None = None) -> str:
        extra_args: dict[str, Any] = {}
        if content_type:
            extra_args["ContentType"] = content_type
        try:
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=key, Body=data, **extra_args
            )
        except (BotoCoreError, ClientError) as exc:
            raise PersistenceError(f"Upload of '{key}' to bucket '{self.bucket}' failed: {exc}") from exc
        return self.public_url(key)


def build_storage(settings: Settings) -> DurableStorage:
    if settings.storage_backend == "s3":
        if not settings.s3_bucket:
            raise ValueError("S3 storage requires STORYLOOM_S3_BUCKET.")
        return S3Storage(
            bucket=settings.s3_bucket,
            endpoint_url=settings.s3_endpoint_url,
            access_key=settings.s3_access_key,
            secret_key=settings.s3_secret_key,
            region=settings.s3_region,
            public_base_url=settings.storage_public_base
            if "://" in settings.storage_public_base
            else None,
        )
    return LocalStorage(settings.storage_dir, public_base=settings.storage_public_base)
