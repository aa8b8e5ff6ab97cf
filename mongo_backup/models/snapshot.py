"""快照数据模型与归档记录。"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Union

PRIMARY_KEY_INDEX_NAME = "_id_"

# 仅属于快照元数据、重建索引时需要剥离的字段
INDEX_METADATA_FIELDS = ("v", "ns")


def utc_now() -> datetime:
    """返回当前 UTC 时间。"""
    return datetime.now(timezone.utc)


def utc_timestamp(moment: datetime | None = None) -> str:
    """ISO-8601 毫秒精度时间戳。"""
    value = moment or utc_now()
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass
class IndexDefinition:
    """索引定义：名称、有序键、其余选项。"""

    name: str
    keys: list[tuple[str, Any]]
    options: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_index_document(cls, raw: Mapping[str, Any]) -> "IndexDefinition":
        """从 list_indexes 返回的文档构建。"""
        data = dict(raw)
        name = str(data.pop("name", ""))
        key = data.pop("key", {}) or {}
        keys = [(str(field_name), direction) for field_name, direction in key.items()]
        return cls(name=name, keys=keys, options=data)

    @property
    def is_primary_key(self) -> bool:
        return self.name == PRIMARY_KEY_INDEX_NAME

    def restorable_options(self) -> dict[str, Any]:
        """剥离版本/命名空间元数据后的建索引选项。"""
        options = {key: value for key, value in self.options.items() if key not in INDEX_METADATA_FIELDS}
        options["name"] = self.name
        return options

    def restorable_keys(self) -> list[tuple[str, Any]]:
        """可直接传给 create_index 的键。

        全文索引在 list_indexes 中表现为 ``_fts``/``_ftsx`` 内部键，
        需按 weights 还原为原始字段。
        """
        field_names = [name for name, _ in self.keys]
        if "_fts" not in field_names:
            return list(self.keys)

        weights = self.options.get("weights") or {}
        restored: list[tuple[str, Any]] = []
        text_added = False
        for name, direction in self.keys:
            if name in {"_fts", "_ftsx"}:
                if not text_added:
                    restored.extend((weight_field, "text") for weight_field in weights)
                    text_added = True
                continue
            restored.append((name, direction))
        return restored


@dataclass
class CollectionSnapshot:
    """单个集合的文档与索引。"""

    documents: list[dict[str, Any]] = field(default_factory=list)
    indexes: list[IndexDefinition] = field(default_factory=list)


@dataclass
class DatabaseSnapshot:
    """单个库：集合名 -> 集合快照。"""

    collections: dict[str, CollectionSnapshot] = field(default_factory=dict)


@dataclass
class Snapshot:
    """一次备份的完整逻辑快照。"""

    timestamp: str = field(default_factory=utc_timestamp)
    databases: dict[str, DatabaseSnapshot] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.databases

    def document_count(self) -> int:
        return sum(
            len(collection.documents)
            for database in self.databases.values()
            for collection in database.collections.values()
        )


# ---------- 归档记录（流式编解码的最小单元） ----------


@dataclass
class ArchiveHeader:
    timestamp: str
    version: int


@dataclass
class DatabaseRecord:
    name: str


@dataclass
class CollectionRecord:
    name: str
    indexes: list[IndexDefinition] = field(default_factory=list)


@dataclass
class DocumentRecord:
    document: dict[str, Any]


@dataclass
class ArchiveTrailer:
    databases: int
    collections: int
    documents: int


ArchiveRecord = Union[ArchiveHeader, DatabaseRecord, CollectionRecord, DocumentRecord, ArchiveTrailer]


@dataclass
class StoredSnapshotDescriptor:
    """存储后端中的一个备份对象。"""

    key: str
    last_modified: datetime
    size: int = 0

    @property
    def filename(self) -> str:
        return self.key.rsplit("/", 1)[-1]


@dataclass(frozen=True)
class RetentionPolicy:
    """保留策略：天数缺失或非正数时不清理。"""

    days: int | None = None

    @property
    def enabled(self) -> bool:
        return self.days is not None and self.days > 0

    def cutoff(self, now: datetime | None = None) -> datetime:
        moment = now or utc_now()
        return moment - timedelta(days=self.days or 0)
