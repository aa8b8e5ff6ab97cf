"""按保留天数清理过期备份。"""

from __future__ import annotations

import logging
from datetime import datetime

from mongo_backup.models.reports import CleanupReport
from mongo_backup.models.snapshot import RetentionPolicy, utc_now
from mongo_backup.services.snapshot_repository import SnapshotRepository

logger = logging.getLogger(__name__)


class RetentionService:
    """删除最后修改时间早于保留期限的备份。"""

    def __init__(self, repository: SnapshotRepository) -> None:
        self._repository = repository

    async def cleanup(self, retention_days: int | None, now: datetime | None = None) -> CleanupReport:
        policy = RetentionPolicy(days=retention_days)
        if not policy.enabled:
            logger.info("未设置有效的保留天数，跳过清理")
            return CleanupReport(enabled=False)

        cutoff = policy.cutoff(now or utc_now())
        logger.info("清理 %d 天前的备份（早于 %s）", policy.days, cutoff.isoformat())

        report = CleanupReport(enabled=True)
        expired = [item for item in await self._repository.list_snapshots() if item.last_modified < cutoff]
        if not expired:
            logger.info("没有需要清理的旧备份")
            return report

        logger.info("发现 %d 个过期备份", len(expired))
        for item in expired:
            try:
                await self._repository.delete(item.key)
            except Exception as exc:
                # 单个删除失败不影响其余备份的清理
                report.failed[item.key] = str(exc)
                logger.warning("删除旧备份失败 %s: %s", item.key, exc)
            else:
                report.deleted.append(item.key)
                logger.info("已删除旧备份: %s", item.key)

        logger.info("清理完成: 删除 %d 个, 失败 %d 个", len(report.deleted), len(report.failed))
        return report
