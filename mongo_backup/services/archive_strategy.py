"""归档生成/消费策略：驱动遍历 或 外部 mongodump/mongorestore。"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Iterator

from mongo_backup.config import DEFAULT_BATCH_SIZE
from mongo_backup.db import BackupScope
from mongo_backup.errors import ExternalToolFailed, MalformedArchive
from mongo_backup.models.reports import RestoreReport
from mongo_backup.models.snapshot import ArchiveHeader, ArchiveRecord, ArchiveTrailer
from mongo_backup.services.archive_codec import decode_lines, encode_record, iter_lines
from mongo_backup.services.compression import iter_decompressed_file, write_compressed
from mongo_backup.services.snapshot_producer import SnapshotProducer
from mongo_backup.services.snapshot_restorer import SnapshotRestorer

logger = logging.getLogger(__name__)


class ArchiveStrategy(ABC):
    """把数据库写成压缩归档文件，或把归档文件写回数据库。"""

    name = ""

    @abstractmethod
    async def dump(self, archive_path: Path) -> int:
        """生成归档，返回文档数（未知时为 -1）。"""

    @abstractmethod
    async def load(self, archive_path: Path, *, drop_existing: bool = False) -> RestoreReport | None:
        """恢复归档。"""

    def request_stop(self) -> None:
        """请求停止恢复；默认不支持中途取消。"""
        logger.warning("%s 策略不支持中途停止，等待当前操作结束", self.name)


def read_archive_records(archive_path: Path) -> Iterator[ArchiveRecord]:
    """解压并逐条解码归档文件。"""
    return decode_lines(iter_lines(iter_decompressed_file(archive_path)))


def verify_archive(archive_path: Path) -> tuple[ArchiveHeader, ArchiveTrailer]:
    """完整读一遍归档，确认压缩层与内容都完好。"""
    header: ArchiveHeader | None = None
    trailer: ArchiveTrailer | None = None
    for record in read_archive_records(archive_path):
        if isinstance(record, ArchiveHeader):
            header = record
        elif isinstance(record, ArchiveTrailer):
            trailer = record
    if header is None or trailer is None:
        raise MalformedArchive("归档缺少头部或结束标记")
    return header, trailer


class DriverArchiveStrategy(ArchiveStrategy):
    """通过驱动遍历集合生成归档，保留全部扩展类型与索引定义。"""

    name = "driver"

    def __init__(self, client: Any, scope: BackupScope, *, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._client = client
        self._scope = scope
        self._batch_size = batch_size
        self._restorer: SnapshotRestorer | None = None
        self._stop_requested = False

    async def dump(self, archive_path: Path) -> int:
        producer = SnapshotProducer(self._client, self._scope, batch_size=self._batch_size)

        async def encoded():
            async for record in producer.iter_records():
                yield encode_record(record)

        logger.info("开始生成快照（范围: %s）", self._scope.describe())
        await write_compressed(encoded(), archive_path)
        logger.info(
            "快照完成: %d 个库, %d 个集合, %d 个文档",
            producer.databases,
            producer.collections,
            producer.documents,
        )
        return producer.documents

    async def load(self, archive_path: Path, *, drop_existing: bool = False) -> RestoreReport:
        # 先完整校验一遍，归档损坏时不对目标库做任何修改
        header, trailer = verify_archive(archive_path)
        logger.info(
            "归档校验通过: 备份时间 %s, %d 个库, %d 个集合, %d 个文档",
            header.timestamp,
            trailer.databases,
            trailer.collections,
            trailer.documents,
        )

        restorer = SnapshotRestorer(
            self._client,
            self._scope,
            drop_existing=drop_existing,
            batch_size=self._batch_size,
        )
        self._restorer = restorer
        if self._stop_requested:
            restorer.request_stop()
        return await restorer.restore_records(read_archive_records(archive_path))

    def request_stop(self) -> None:
        self._stop_requested = True
        if self._restorer is not None:
            self._restorer.request_stop()


class MongoToolsArchiveStrategy(ArchiveStrategy):
    """调用 mongodump / mongorestore 子进程，归档为工具自身的 --archive --gzip 格式。"""

    name = "mongodump"

    def __init__(
        self,
        uri: str,
        scope: BackupScope,
        *,
        dump_command: str = "mongodump",
        restore_command: str = "mongorestore",
    ) -> None:
        self._uri = uri
        self._scope = scope
        self._dump_command = dump_command
        self._restore_command = restore_command

    async def _run(self, args: list[str], *, stdin: Any = None, stdout: Any = None) -> None:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=stdin,
            stdout=stdout,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
        if process.returncode != 0:
            raise ExternalToolFailed(args[0], process.returncode, (stderr or b"").decode("utf-8", "replace"))

    async def dump(self, archive_path: Path) -> int:
        logger.info("调用 %s 生成归档", self._dump_command)
        with archive_path.open("wb") as handle:
            await self._run([self._dump_command, "--uri", self._uri, "--archive", "--gzip"], stdout=handle)
        logger.info("%s 完成: %s", self._dump_command, archive_path.name)
        return -1

    async def load(self, archive_path: Path, *, drop_existing: bool = False) -> None:
        args = [self._restore_command, "--uri", self._uri, "--archive", "--gzip"]
        if drop_existing:
            args.append("--drop")
        if self._scope.database:
            args.extend(["--nsInclude", f"{self._scope.database}.*"])

        logger.info("调用 %s 恢复归档", self._restore_command)
        with archive_path.open("rb") as handle:
            await self._run(args, stdin=handle)
        logger.info("%s 完成", self._restore_command)
        return None
