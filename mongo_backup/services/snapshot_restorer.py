"""快照恢复：按范围把记录流写回目标库。

冲突策略：
- 重复键（11000）的文档跳过并计数，不中断恢复；
- 同名且键与选项都相同的索引视为已存在，不重复创建；
- 同名但键或选项（如 unique）不同，以及服务端 85/86 冲突只报告，不覆盖；
- 仅有写关注错误的批次按已写入计数并告警；
- 其余建索引失败仅告警；其余写入失败抛出 RestoreWriteFailed。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Iterable

from pymongo.errors import BulkWriteError, OperationFailure

from mongo_backup.config import DEFAULT_BATCH_SIZE
from mongo_backup.db import BackupScope
from mongo_backup.errors import RestoreInterrupted, RestoreWriteFailed
from mongo_backup.models.reports import (
    INDEX_CONFLICT,
    INDEX_CREATED,
    INDEX_EXISTS,
    INDEX_FAILED,
    CollectionRestoreReport,
    RestoreReport,
)
from mongo_backup.models.snapshot import (
    ArchiveHeader,
    ArchiveRecord,
    CollectionRecord,
    DatabaseRecord,
    DocumentRecord,
    IndexDefinition,
    Snapshot,
)
from mongo_backup.services.archive_codec import snapshot_to_records

logger = logging.getLogger(__name__)

DUPLICATE_KEY_CODE = 11000
NAMESPACE_NOT_FOUND_CODE = 26
INDEX_CONFLICT_CODES = {85, 86}
# 比较索引定义时忽略的字段
INDEX_COMPARE_IGNORED = frozenset({"v", "ns", "key", "name", "background"})


@dataclass
class _CollectionState:
    collection: Any
    report: CollectionRestoreReport
    indexes: list[IndexDefinition]
    batch: list[dict[str, Any]] = field(default_factory=list)


def _comparable_options(options: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in options.items() if key not in INDEX_COMPARE_IGNORED}


async def _iterate(records: Iterable[ArchiveRecord] | AsyncIterable[ArchiveRecord]):
    if hasattr(records, "__aiter__"):
        async for record in records:
            yield record
    else:
        for record in records:
            yield record


class SnapshotRestorer:
    """把快照写回 MongoDB。"""

    def __init__(
        self,
        client: Any,
        scope: BackupScope,
        *,
        drop_existing: bool = False,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        self._client = client
        self._scope = scope
        self._drop_existing = drop_existing
        self._batch_size = batch_size
        self._stop_requested = False

    def request_stop(self) -> None:
        """请求停止：进行中的单次写入允许完成，之后不再发起新写入。"""
        if not self._stop_requested:
            logger.warning("收到中断请求，当前写入完成后停止恢复")
        self._stop_requested = True

    def _check_stop(self) -> None:
        if self._stop_requested:
            raise RestoreInterrupted("恢复已被中断")

    async def restore(self, snapshot: Snapshot) -> RestoreReport:
        return await self.restore_records(snapshot_to_records(snapshot))

    async def restore_records(
        self,
        records: Iterable[ArchiveRecord] | AsyncIterable[ArchiveRecord],
    ) -> RestoreReport:
        """消费记录流并写入目标库。"""
        report = RestoreReport()
        db_name: str | None = None
        state: _CollectionState | None = None

        async for record in _iterate(records):
            if isinstance(record, DocumentRecord):
                if state is None:
                    continue
                state.batch.append(record.document)
                if len(state.batch) >= self._batch_size:
                    await self._flush(state)
            elif isinstance(record, CollectionRecord):
                await self._finish(state)
                state = None
                if db_name is not None:
                    state = await self._begin_collection(db_name, record)
                    report.collections.append(state.report)
            elif isinstance(record, DatabaseRecord):
                await self._finish(state)
                state = None
                if self._scope.includes(record.name):
                    db_name = record.name
                    logger.info("恢复数据库: %s", record.name)
                else:
                    db_name = None
                    report.skipped_databases.append(record.name)
                    logger.info("跳过数据库 %s（范围: %s）", record.name, self._scope.describe())
            elif isinstance(record, ArchiveHeader):
                report.timestamp = record.timestamp
                logger.info("备份时间: %s", record.timestamp)

        await self._finish(state)

        logger.info(
            "恢复完成: 插入 %d 个文档, 跳过 %d 个重复, 新建 %d 个索引, %d 个索引已存在, %d 个索引冲突",
            report.inserted,
            report.duplicates,
            report.index_count(INDEX_CREATED),
            report.index_count(INDEX_EXISTS),
            report.index_count(INDEX_CONFLICT),
        )
        return report

    async def _begin_collection(self, db_name: str, record: CollectionRecord) -> _CollectionState:
        logger.info("  恢复集合: %s", record.name)
        database = self._client[db_name]
        report = CollectionRestoreReport(database=db_name, collection=record.name)

        if self._drop_existing:
            self._check_stop()
            try:
                await database.drop_collection(record.name)
            except OperationFailure as exc:
                if exc.code != NAMESPACE_NOT_FOUND_CODE:
                    logger.warning("    删除集合 %s 时出现警告: %s", record.name, exc)
            else:
                report.dropped = True
                logger.info("    已删除原有集合: %s", record.name)

        return _CollectionState(
            collection=database[record.name],
            report=report,
            indexes=list(record.indexes),
        )

    async def _flush(self, state: _CollectionState) -> None:
        """无序批量插入当前缓冲的文档。"""
        if not state.batch:
            return
        self._check_stop()

        documents = state.batch
        state.batch = []
        report = state.report
        report.attempted += len(documents)

        try:
            result = await state.collection.insert_many(documents, ordered=False)
        except BulkWriteError as exc:
            write_errors = exc.details.get("writeErrors", [])
            fatal = [item for item in write_errors if item.get("code") != DUPLICATE_KEY_CODE]
            if fatal:
                raise RestoreWriteFailed(report.database, report.collection, fatal) from exc
            report.inserted += int(exc.details.get("nInserted", 0))
            report.duplicates += len(write_errors)
            concern_errors = exc.details.get("writeConcernErrors", [])
            if concern_errors:
                report.write_concern_errors += len(concern_errors)
                logger.warning(
                    "    %s.%s 写关注未满足 (%d 个): %s",
                    report.database,
                    report.collection,
                    len(concern_errors),
                    concern_errors[0].get("errmsg", concern_errors[0]),
                )
        else:
            report.inserted += len(result.inserted_ids)

    async def _finish(self, state: _CollectionState | None) -> None:
        if state is None:
            return
        await self._flush(state)

        report = state.report
        if report.attempted:
            if report.duplicates:
                logger.info("    插入 %d 个文档（跳过 %d 个重复）", report.inserted, report.duplicates)
            else:
                logger.info("    插入 %d 个文档", report.inserted)

        if not any(not index.is_primary_key for index in state.indexes):
            return

        existing: dict[str, dict[str, Any]] = {}
        async for raw in state.collection.list_indexes():
            existing[str(raw["name"])] = dict(raw)

        for index in state.indexes:
            # _id 索引由集合自动维护
            if index.is_primary_key:
                continue
            self._check_stop()
            report.indexes[index.name] = await self._restore_index(state.collection, index, existing)

    async def _restore_index(
        self,
        collection: Any,
        index: IndexDefinition,
        existing: dict[str, dict[str, Any]],
    ) -> str:
        current = existing.get(index.name)
        if current is not None:
            current_keys = [(str(name), direction) for name, direction in current["key"].items()]
            current_options = _comparable_options(current)
            wanted_options = _comparable_options(index.restorable_options())
            if current_keys == list(index.keys) and current_options == wanted_options:
                logger.info("    索引已存在: %s", index.name)
                return INDEX_EXISTS
            logger.warning(
                "    索引冲突: %s 已存在且定义不同 (现有 %s %s, 备份 %s %s)，保持现状",
                index.name,
                current_keys,
                current_options,
                list(index.keys),
                wanted_options,
            )
            return INDEX_CONFLICT

        try:
            await collection.create_index(index.restorable_keys(), **index.restorable_options())
        except OperationFailure as exc:
            if exc.code in INDEX_CONFLICT_CODES:
                logger.warning("    索引冲突: %s (%s)，保持现状", index.name, exc)
                return INDEX_CONFLICT
            logger.warning("    创建索引 %s 时出现警告: %s", index.name, exc)
            return INDEX_FAILED

        logger.info("    已创建索引: %s", index.name)
        return INDEX_CREATED
