"""备份与恢复流程编排。"""

from __future__ import annotations

import logging
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from mongo_backup.config import BackupSettings
from mongo_backup.db import BackupScope, close_client, create_client
from mongo_backup.models.reports import BackupResult, RestoreReport
from mongo_backup.models.snapshot import StoredSnapshotDescriptor
from mongo_backup.services.archive_strategy import (
    ArchiveStrategy,
    DriverArchiveStrategy,
    MongoToolsArchiveStrategy,
)
from mongo_backup.services.cloud_storage import CloudStorageBackend, create_backend
from mongo_backup.services.retention_service import RetentionService
from mongo_backup.services.snapshot_repository import SnapshotRepository, backup_filename

logger = logging.getLogger(__name__)

TEMP_DIR_PREFIX = "mongo-backup-"


def create_strategy(settings: BackupSettings, client: Any = None) -> ArchiveStrategy:
    """按配置选择归档策略。"""
    scope = BackupScope.from_uri(settings.mongodb_uri)
    if settings.strategy == "mongodump":
        return MongoToolsArchiveStrategy(settings.mongodb_uri, scope)
    if client is None:
        raise ValueError("driver 策略需要数据库客户端")
    return DriverArchiveStrategy(client, scope, batch_size=settings.batch_size)


def _needs_client(settings: BackupSettings, strategy: ArchiveStrategy | None) -> bool:
    return strategy is None and settings.strategy == "driver"


# ---------- 查询 ----------


async def list_backups(
    settings: BackupSettings,
    *,
    backend: CloudStorageBackend | None = None,
) -> list[StoredSnapshotDescriptor]:
    """列出全部备份，最新在前。"""
    owns_backend = backend is None
    backend = backend or create_backend(settings)
    try:
        return await SnapshotRepository(backend, settings.key_path).list_snapshots()
    finally:
        if owns_backend:
            await backend.close()


# ---------- 执行备份 ----------


async def run_backup(
    settings: BackupSettings,
    *,
    backend: CloudStorageBackend | None = None,
    client: Any = None,
    strategy: ArchiveStrategy | None = None,
    now: datetime | None = None,
) -> BackupResult:
    """生成归档 -> 上传 -> 清理过期备份。

    临时文件无论成功与否都会删除；清理失败只记录日志。
    """
    owns_backend = backend is None
    backend = backend or create_backend(settings)
    owned_client = None
    if client is None and _needs_client(settings, strategy):
        owned_client = client = create_client(settings.mongodb_uri)
    strategy = strategy or create_strategy(settings, client)

    repository = SnapshotRepository(backend, settings.key_path)
    filename = backup_filename(now, timestamped=settings.timestamped_names)
    key = repository.key_for(filename)
    logger.info("开始备份: %s（策略: %s）", filename, strategy.name)

    try:
        with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmpdir:
            archive_path = Path(tmpdir) / filename
            documents = await strategy.dump(archive_path)
            size = archive_path.stat().st_size

            logger.info("归档完成，上传中: %s", key)
            await repository.store(archive_path, key)
        logger.info("临时文件已清理")

        result = BackupResult(key=key, size=size, documents=documents)
        logger.info("备份上传成功: %s (%d 字节)", key, size)

        try:
            result.cleanup = await RetentionService(repository).cleanup(settings.retention_days)
        except Exception as exc:
            logger.error("清理旧备份失败: %s", exc)

        return result
    finally:
        close_client(owned_client)
        if owns_backend:
            await backend.close()


# ---------- 执行恢复 ----------


async def run_restore(
    settings: BackupSettings,
    filename: str | None = None,
    *,
    drop_existing: bool = False,
    backend: CloudStorageBackend | None = None,
    client: Any = None,
    strategy: ArchiveStrategy | None = None,
) -> RestoreReport | None:
    """下载指定（或最新）备份并恢复。

    没有任何备份时在连接数据库之前抛出 NoBackupsFound。
    """
    owns_backend = backend is None
    backend = backend or create_backend(settings)
    owned_client = None

    try:
        repository = SnapshotRepository(backend, settings.key_path)
        if filename:
            key = repository.key_for(filename)
            logger.info("使用指定备份: %s", key)
        else:
            logger.info("查找最新备份...")
            latest = await repository.latest()
            key = latest.key
            logger.info("最新备份: %s (%s)", key, latest.last_modified.isoformat())

        if client is None and _needs_client(settings, strategy):
            owned_client = client = create_client(settings.mongodb_uri)
        strategy = strategy or create_strategy(settings, client)

        with tempfile.TemporaryDirectory(prefix=TEMP_DIR_PREFIX) as tmpdir:
            archive_path = Path(tmpdir) / (key.rsplit("/", 1)[-1] or "backup.gz")
            logger.info("下载备份: %s", key)
            await repository.fetch(key, archive_path)
            report = await strategy.load(archive_path, drop_existing=drop_existing)
        logger.info("临时文件已清理")
        return report
    finally:
        close_client(owned_client)
        if owns_backend:
            await backend.close()
