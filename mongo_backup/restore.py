"""从 S3 恢复 MongoDB 备份的命令行工具。"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import time

from .config import LOG_DATEFMT, LOG_FORMAT, BackupSettings, load_settings
from .db import close_client, create_client
from .errors import ConfigurationMissing, NoBackupsFound
from .models.reports import INDEX_CONFLICT, INDEX_CREATED, INDEX_EXISTS
from .services.backup_service import create_strategy, list_backups, run_restore

logger = logging.getLogger(__name__)

EPILOG = """\
示例:
  mongo-s3-restore                                     恢复最新备份
  mongo-s3-restore --latest                            恢复最新备份
  mongo-s3-restore --file mongodb-backup-20241227.gz   恢复指定备份
  mongo-s3-restore --drop                              恢复前删除已有集合
  mongo-s3-restore --list                              列出可用备份

必填环境变量:
  S3_REGION, S3_ACCESS_KEY_ID, S3_SECRET_ACCESS_KEY, S3_BUCKET, MONGODB_URI

可选环境变量:
  S3_ENDPOINT, S3_KEY_PATH, BACKUP_STRATEGY, BACKUP_BATCH_SIZE
"""


class _ArgumentParser(argparse.ArgumentParser):
    """参数错误统一以退出码 1 结束。"""

    def error(self, message: str) -> None:
        self.print_usage(sys.stderr)
        self.exit(1, f"错误: {message}\n")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = _ArgumentParser(
        prog="mongo-s3-restore",
        description="MongoDB S3 恢复工具",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("-f", "--file", metavar="FILENAME", help="恢复指定备份文件（如 mongodb-backup-20241227.gz）")
    parser.add_argument("-l", "--latest", action="store_true", help="恢复最新备份（默认）")
    parser.add_argument("-d", "--drop", action="store_true", help="恢复前删除已有集合")
    parser.add_argument("--list", action="store_true", help="列出全部可用备份")
    parser.add_argument("filename", nargs="?", help="备份文件名，等同于 --file")
    return parser.parse_args(argv)


async def print_backups(settings: BackupSettings) -> int:
    backups = await list_backups(settings)
    print("可用备份:\n")
    if not backups:
        print("没有找到任何备份")
        return 0
    for item in backups:
        print(f"  {item.filename}  ({item.last_modified.isoformat()})")
    return 0


async def restore(settings: BackupSettings, filename: str | None, drop_existing: bool) -> int:
    """执行恢复；SIGINT/SIGTERM 只停止发起新写入。"""
    client = create_client(settings.mongodb_uri) if settings.strategy == "driver" else None
    strategy = create_strategy(settings, client)

    loop = asyncio.get_running_loop()
    installed: list[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, strategy.request_stop)
        except NotImplementedError:
            continue
        installed.append(sig)

    try:
        report = await run_restore(settings, filename, drop_existing=drop_existing, strategy=strategy)
    except NoBackupsFound as exc:
        logger.error("没有找到任何备份: %s", exc)
        return 1
    except Exception as exc:
        logger.error("恢复失败: %s", exc, exc_info=True)
        return 1
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)
        close_client(client)

    if report is not None:
        logger.info(
            "共处理 %d 个集合: 插入 %d, 跳过重复 %d; 索引新建 %d, 已存在 %d, 冲突 %d",
            len(report.collections),
            report.inserted,
            report.duplicates,
            report.index_count(INDEX_CREATED),
            report.index_count(INDEX_EXISTS),
            report.index_count(INDEX_CONFLICT),
        )
    logger.info("恢复成功")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    args = parse_args(argv)

    try:
        settings = load_settings()
    except (ConfigurationMissing, ValueError) as exc:
        logger.error("配置错误: %s", exc)
        return 1

    if args.list:
        try:
            return asyncio.run(print_backups(settings))
        except Exception as exc:
            logger.error("列出备份失败: %s", exc)
            return 1

    filename = args.file or args.filename

    if args.drop:
        logger.warning("已设置 --drop，已有集合将被删除！")
        logger.warning("%d 秒后开始恢复...（Ctrl+C 取消）", settings.drop_warning_seconds)
        try:
            time.sleep(settings.drop_warning_seconds)
        except KeyboardInterrupt:
            logger.info("已取消恢复")
            return 1

    return asyncio.run(restore(settings, filename, args.drop))


if __name__ == "__main__":
    sys.exit(main())
