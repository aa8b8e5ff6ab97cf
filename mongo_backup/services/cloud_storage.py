"""云存储后端抽象与 S3 实现（兼容 MinIO 等自定义 endpoint）。"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from mongo_backup.config import BackupSettings

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
# 超过该大小走分片上传；S3 要求除最后一片外每片不小于 5 MiB
MULTIPART_PART_SIZE = 8 * 1024 * 1024


@dataclass
class CloudFileInfo:
    """云端文件信息。"""

    key: str
    size: int
    last_modified: datetime


class CloudStorageBackend(ABC):
    """云存储后端抽象基类。"""

    @abstractmethod
    async def upload_file(self, local_path: Path, remote_key: str) -> None:
        """上传本地文件到云端。"""

    @abstractmethod
    async def download_file(self, remote_key: str, local_path: Path) -> None:
        """从云端下载文件到本地。"""

    @abstractmethod
    async def delete_file(self, remote_key: str) -> None:
        """删除云端文件。"""

    @abstractmethod
    async def list_files(self, prefix: str) -> list[CloudFileInfo]:
        """列出指定前缀下的云端文件。"""

    @abstractmethod
    async def close(self) -> None:
        """释放资源。"""


class S3Backend(CloudStorageBackend):
    """S3 后端，基于 aiobotocore，固定使用 path-style 寻址。"""

    def __init__(
        self,
        region: str,
        access_key_id: str,
        secret_access_key: str,
        bucket: str,
        endpoint: str = "",
    ) -> None:
        from aiobotocore.config import AioConfig
        from aiobotocore.session import get_session

        self._bucket = bucket
        self._session = get_session()
        self._client_kwargs: dict[str, Any] = {
            "region_name": region,
            "aws_access_key_id": access_key_id,
            "aws_secret_access_key": secret_access_key,
            "config": AioConfig(s3={"addressing_style": "path"}),
        }
        if endpoint:
            self._client_kwargs["endpoint_url"] = endpoint

        self._client_ctx: Any | None = None
        self._client: Any | None = None

    async def _get_client(self) -> Any:
        if self._client is None:
            self._client_ctx = self._session.create_client("s3", **self._client_kwargs)
            self._client = await self._client_ctx.__aenter__()
        return self._client

    async def upload_file(self, local_path: Path, remote_key: str) -> None:
        """上传本地文件到 S3，大文件分片上传。"""
        client = await self._get_client()
        size = local_path.stat().st_size

        if size <= MULTIPART_PART_SIZE:
            await client.put_object(Bucket=self._bucket, Key=remote_key, Body=local_path.read_bytes())
        else:
            await self._multipart_upload(client, local_path, remote_key)

        logger.info("S3 上传完成: %s -> %s (%d 字节)", local_path.name, remote_key, size)

    async def _multipart_upload(self, client: Any, local_path: Path, remote_key: str) -> None:
        created = await client.create_multipart_upload(Bucket=self._bucket, Key=remote_key)
        upload_id = created["UploadId"]
        parts: list[dict[str, Any]] = []

        try:
            with local_path.open("rb") as handle:
                part_number = 1
                while True:
                    chunk = handle.read(MULTIPART_PART_SIZE)
                    if not chunk:
                        break
                    response = await client.upload_part(
                        Bucket=self._bucket,
                        Key=remote_key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        Body=chunk,
                    )
                    parts.append({"ETag": response["ETag"], "PartNumber": part_number})
                    part_number += 1

            await client.complete_multipart_upload(
                Bucket=self._bucket,
                Key=remote_key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},
            )
        except BaseException:
            await client.abort_multipart_upload(Bucket=self._bucket, Key=remote_key, UploadId=upload_id)
            raise

    async def download_file(self, remote_key: str, local_path: Path) -> None:
        """从 S3 流式下载到本地文件。"""
        client = await self._get_client()
        local_path.parent.mkdir(parents=True, exist_ok=True)

        response = await client.get_object(Bucket=self._bucket, Key=remote_key)
        body = response.get("Body")
        if body is None:
            raise RuntimeError("S3 返回空响应体")

        async with body as stream:
            with local_path.open("wb") as handle:
                while True:
                    chunk = await stream.read(DOWNLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    handle.write(chunk)

        logger.info("S3 下载完成: %s -> %s", remote_key, local_path)

    async def delete_file(self, remote_key: str) -> None:
        """删除 S3 文件。"""
        client = await self._get_client()
        await client.delete_object(Bucket=self._bucket, Key=remote_key)
        logger.info("S3 删除完成: %s", remote_key)

    async def list_files(self, prefix: str) -> list[CloudFileInfo]:
        """分页列出指定前缀的文件。"""
        client = await self._get_client()
        result: list[CloudFileInfo] = []

        paginator = client.get_paginator("list_objects_v2")
        async for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                key = str(obj.get("Key") or "").strip()
                last_modified = obj.get("LastModified")
                if not key or last_modified is None:
                    continue
                result.append(
                    CloudFileInfo(
                        key=key,
                        size=int(obj.get("Size", 0)),
                        last_modified=last_modified,
                    )
                )

        return result

    async def close(self) -> None:
        """关闭 S3 客户端。"""
        if self._client_ctx is None:
            return
        await self._client_ctx.__aexit__(None, None, None)
        self._client_ctx = None
        self._client = None


def create_backend(settings: BackupSettings) -> CloudStorageBackend:
    """根据运行配置创建存储后端实例。"""
    return S3Backend(
        region=settings.s3_region,
        access_key_id=settings.s3_access_key_id,
        secret_access_key=settings.s3_secret_access_key,
        bucket=settings.s3_bucket,
        endpoint=settings.s3_endpoint,
    )
