"""定时备份调度器（基于 APScheduler 的 cron 触发）。"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from mongo_backup.config import BackupSettings

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = "mongodb_backup"

_scheduler: AsyncIOScheduler | None = None


def build_trigger(expression: str) -> CronTrigger:
    """解析 5 段 crontab，或首段为秒的 6 段表达式。"""
    fields = expression.split()
    if len(fields) == 5:
        return CronTrigger.from_crontab(expression)
    if len(fields) == 6:
        second, minute, hour, day, month, day_of_week = fields
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
        )
    raise ValueError(f"无效的 cron 表达式: {expression}")


async def _scheduled_backup(settings: BackupSettings) -> None:
    """单次定时备份；失败只记录日志，等待下一次触发。"""
    from mongo_backup.services import backup_service

    try:
        await backup_service.run_backup(settings)
    except Exception as exc:
        logger.error("定时备份失败: %s", exc, exc_info=True)


def start_scheduler(settings: BackupSettings) -> AsyncIOScheduler:
    """启动定时备份；需在运行中的事件循环内调用。

    max_instances=1 保证上一次备份未结束时跳过本次触发，避免并发写同一批归档。
    """
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        return _scheduler

    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        _scheduled_backup,
        trigger=build_trigger(settings.cron_schedule),
        args=[settings],
        id=BACKUP_JOB_ID,
        name="MongoDB 备份",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info("定时备份已启动: %s", settings.cron_schedule)
    return scheduler


def stop_scheduler() -> None:
    """停止定时备份。"""
    global _scheduler
    if _scheduler is not None and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("定时备份已停止")
    _scheduler = None


def next_run_time():
    """下一次触发时间，未启动时为 None。"""
    if _scheduler is None:
        return None
    job = _scheduler.get_job(BACKUP_JOB_ID)
    return job.next_run_time if job else None
