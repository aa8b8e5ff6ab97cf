"""快照生成：遍历库、集合、文档与索引，输出归档记录流。"""

from __future__ import annotations

import logging
from typing import Any, AsyncIterator

from pymongo import ASCENDING

from mongo_backup.config import DEFAULT_BATCH_SIZE
from mongo_backup.db import BackupScope
from mongo_backup.models.snapshot import (
    ArchiveHeader,
    ArchiveRecord,
    ArchiveTrailer,
    CollectionRecord,
    DatabaseRecord,
    DocumentRecord,
    IndexDefinition,
    Snapshot,
    utc_timestamp,
)
from mongo_backup.services.archive_codec import ARCHIVE_VERSION, records_to_snapshot

logger = logging.getLogger(__name__)

SYSTEM_COLLECTION_PREFIX = "system."


class SnapshotProducer:
    """按范围读取数据库内容。

    只读、无副作用；任何读取异常都会直接向上抛出，调用方不会拿到残缺快照。
    """

    def __init__(self, client: Any, scope: BackupScope, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._client = client
        self._scope = scope
        self._batch_size = batch_size
        self.databases = 0
        self.collections = 0
        self.documents = 0

    async def list_databases(self) -> list[str]:
        """范围内、实际存在的非系统库。"""
        names = await self._client.list_database_names()
        selected = sorted(name for name in names if self._scope.includes(name))
        if self._scope.database and self._scope.database not in selected:
            logger.warning("目标库 %s 不存在或属于系统库，快照为空", self._scope.database)
        return selected

    async def list_collections(self, db_name: str) -> list[str]:
        """库内的普通集合（排除视图与 system.*）。

        时序等其他类型的集合无法按普通集合重建，跳过并告警。
        """
        names: list[str] = []
        cursor = await self._client[db_name].list_collections()
        async for info in cursor:
            name = str(info["name"])
            kind = info.get("type", "collection")
            if name.startswith(SYSTEM_COLLECTION_PREFIX) or kind == "view":
                continue
            if kind != "collection":
                logger.warning("跳过 %s 类型的集合 %s.%s，不会写入快照", kind, db_name, name)
                continue
            names.append(name)
        return sorted(names)

    async def read_indexes(self, db_name: str, coll_name: str) -> list[IndexDefinition]:
        collection = self._client[db_name][coll_name]
        indexes: list[IndexDefinition] = []
        async for raw in collection.list_indexes():
            indexes.append(IndexDefinition.from_index_document(raw))
        return indexes

    async def iter_records(self, timestamp: str | None = None) -> AsyncIterator[ArchiveRecord]:
        """流式产出完整记录序列（头部到结束标记）。"""
        self.databases = self.collections = self.documents = 0
        yield ArchiveHeader(timestamp=timestamp or utc_timestamp(), version=ARCHIVE_VERSION)

        for db_name in await self.list_databases():
            logger.info("备份数据库: %s", db_name)
            self.databases += 1
            yield DatabaseRecord(name=db_name)

            for coll_name in await self.list_collections(db_name):
                indexes = await self.read_indexes(db_name, coll_name)
                self.collections += 1
                yield CollectionRecord(name=coll_name, indexes=indexes)

                count = 0
                cursor = self._client[db_name][coll_name].find(
                    {},
                    sort=[("_id", ASCENDING)],
                    batch_size=self._batch_size,
                )
                async for document in cursor:
                    count += 1
                    yield DocumentRecord(document=document)

                self.documents += count
                logger.info("  集合 %s: %d 个文档, %d 个索引", coll_name, count, len(indexes))

        yield ArchiveTrailer(
            databases=self.databases,
            collections=self.collections,
            documents=self.documents,
        )

    async def produce(self, timestamp: str | None = None) -> Snapshot:
        """生成内存快照（适用于小库或测试）。"""
        records = [record async for record in self.iter_records(timestamp)]
        return records_to_snapshot(records)
