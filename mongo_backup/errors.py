"""备份/恢复流程的异常分类。"""

from __future__ import annotations


class BackupError(Exception):
    """所有备份/恢复异常的基类。"""


class ConfigurationMissing(BackupError):
    """必填的连接或凭证配置缺失（启动阶段即失败）。"""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"缺少必填环境变量: {', '.join(self.missing)}")


class ArchiveError(BackupError):
    """归档文件无法使用。"""


class ArchiveUnreadable(ArchiveError):
    """压缩层损坏或被截断。"""


class MalformedArchive(ArchiveError):
    """解压成功但内容结构不合法。"""


class NoBackupsFound(BackupError):
    """存储中没有任何可用备份。"""


class RestoreWriteFailed(BackupError):
    """批量写入出现了非重复键错误。"""

    def __init__(self, database: str, collection: str, errors: list[dict]) -> None:
        self.database = database
        self.collection = collection
        self.errors = errors
        first = errors[0] if errors else {}
        super().__init__(
            f"写入 {database}.{collection} 失败: "
            f"code={first.get('code')} {first.get('errmsg', '')}".rstrip()
        )


class RestoreInterrupted(BackupError):
    """操作员中断恢复，已停止发起新的写入。"""


class ExternalToolFailed(BackupError):
    """mongodump / mongorestore 子进程退出码非 0。"""

    def __init__(self, tool: str, returncode: int, stderr: str = "") -> None:
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        message = f"{tool} 退出码 {returncode}"
        if stderr:
            message = f"{message}: {stderr.strip()[-500:]}"
        super().__init__(message)
