"""备份对象仓库：命名、列举、存取、删除。"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from mongo_backup.errors import NoBackupsFound
from mongo_backup.models.snapshot import StoredSnapshotDescriptor
from mongo_backup.services.cloud_storage import CloudStorageBackend

logger = logging.getLogger(__name__)

BACKUP_FILENAME_PREFIX = "mongodb-backup-"
BACKUP_FILENAME_SUFFIX = ".gz"


def backup_filename(moment: datetime | None = None, *, timestamped: bool = False) -> str:
    """按日期（可选精确到秒）生成备份文件名。

    仅按日期命名时，同一天的多次备份会覆盖前一次。
    """
    value = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stamp = value.strftime("%Y%m%d-%H%M%S") if timestamped else value.strftime("%Y%m%d")
    return f"{BACKUP_FILENAME_PREFIX}{stamp}{BACKUP_FILENAME_SUFFIX}"


class SnapshotRepository:
    """在存储后端的 key_path 目录下管理备份归档。"""

    def __init__(self, backend: CloudStorageBackend, key_path: str = "") -> None:
        self._backend = backend
        self._key_path = key_path.strip().strip("/")

    @property
    def prefix(self) -> str:
        """列举备份时使用的对象键前缀。"""
        return self.key_for(BACKUP_FILENAME_PREFIX)

    def key_for(self, filename: str) -> str:
        name = filename.strip().lstrip("/")
        return f"{self._key_path}/{name}" if self._key_path else name

    async def list_snapshots(self) -> list[StoredSnapshotDescriptor]:
        """按最后修改时间倒序列出全部备份。"""
        files = await self._backend.list_files(self.prefix)
        descriptors = [
            StoredSnapshotDescriptor(key=item.key, last_modified=item.last_modified, size=item.size)
            for item in files
        ]
        descriptors.sort(key=lambda item: item.last_modified, reverse=True)
        return descriptors

    async def latest(self) -> StoredSnapshotDescriptor:
        """最新备份；仓库为空时抛出 NoBackupsFound。"""
        snapshots = await self.list_snapshots()
        if not snapshots:
            raise NoBackupsFound(f"前缀 {self.prefix} 下没有任何备份")
        return snapshots[0]

    async def store(self, local_path: Path, key: str) -> None:
        await self._backend.upload_file(local_path, key)

    async def fetch(self, key: str, local_path: Path) -> None:
        await self._backend.download_file(key, local_path)

    async def delete(self, key: str) -> None:
        await self._backend.delete_file(key)
