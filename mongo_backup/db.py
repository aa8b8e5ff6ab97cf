"""MongoDB 连接管理与库范围解析。"""

from __future__ import annotations

from dataclasses import dataclass

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.uri_parser import parse_uri

# 引擎内部元数据库，任何范围下都不参与备份/恢复
SYSTEM_DATABASES = frozenset({"admin", "local", "config"})


def default_database_from_uri(uri: str) -> str | None:
    """读取连接串中的默认数据库名（已解码百分号转义），没有则返回 None。

    连接串不合法时抛出 pymongo.errors.InvalidURI。
    """
    return parse_uri(uri.strip())["database"] or None


@dataclass(frozen=True)
class BackupScope:
    """库范围：database 为 None 表示全部非系统库。"""

    database: str | None = None

    @classmethod
    def from_uri(cls, uri: str) -> "BackupScope":
        return cls(database=default_database_from_uri(uri))

    @property
    def is_all(self) -> bool:
        return self.database is None

    def includes(self, name: str) -> bool:
        """判断某个库是否落在范围内。"""
        if name in SYSTEM_DATABASES:
            return False
        return self.database is None or name == self.database

    def describe(self) -> str:
        return "全部非系统库" if self.database is None else f"仅 {self.database}"


def create_client(uri: str) -> AsyncIOMotorClient:
    """创建 Motor 客户端；datetime 统一为带时区的 UTC，UUID 按标准子类型 4 编解码。"""
    return AsyncIOMotorClient(uri, tz_aware=True, uuidRepresentation="standard")


def close_client(client: AsyncIOMotorClient | None) -> None:
    """关闭 Mongo 连接。"""
    if client is not None:
        client.close()
