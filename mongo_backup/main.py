"""备份入口：未配置 CRON_SCHEDULE 时执行一次，否则按计划常驻运行。"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config import LOG_DATEFMT, LOG_FORMAT, BackupSettings, load_settings
from .errors import ConfigurationMissing
from .services.backup_scheduler import build_trigger, next_run_time, start_scheduler, stop_scheduler
from .services.backup_service import run_backup

logger = logging.getLogger(__name__)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MongoDB 全量备份到 S3")
    parser.add_argument("--once", action="store_true", help="忽略 CRON_SCHEDULE，立即执行一次备份")
    return parser.parse_args(argv)


async def serve(settings: BackupSettings) -> None:
    """启动定时备份并等待 SIGINT/SIGTERM。"""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows 事件循环不支持信号处理
            pass

    start_scheduler(settings)
    logger.info("下一次备份时间: %s", next_run_time())
    try:
        await stop_event.wait()
    finally:
        stop_scheduler()


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    args = parse_args(argv)

    try:
        settings = load_settings()
    except (ConfigurationMissing, ValueError) as exc:
        logger.error("配置错误: %s", exc)
        return 1

    if settings.cron_schedule and not args.once:
        try:
            build_trigger(settings.cron_schedule)
        except ValueError as exc:
            logger.error("配置错误: %s", exc)
            return 1
        logger.info("按计划执行备份: %s", settings.cron_schedule)
        asyncio.run(serve(settings))
        return 0

    logger.info("未设置定时计划，执行一次备份...")
    try:
        asyncio.run(run_backup(settings))
    except Exception as exc:
        logger.error("备份失败: %s", exc, exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
