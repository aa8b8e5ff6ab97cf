"""备份、恢复、清理的结果统计。"""

from __future__ import annotations

from dataclasses import dataclass, field

INDEX_CREATED = "created"
INDEX_EXISTS = "exists"
INDEX_CONFLICT = "conflict"
INDEX_FAILED = "failed"


@dataclass
class CollectionRestoreReport:
    """单个集合的恢复结果。"""

    database: str
    collection: str
    dropped: bool = False
    attempted: int = 0
    inserted: int = 0
    duplicates: int = 0
    write_concern_errors: int = 0
    indexes: dict[str, str] = field(default_factory=dict)

    def index_names(self, outcome: str) -> list[str]:
        return [name for name, result in self.indexes.items() if result == outcome]


@dataclass
class RestoreReport:
    """一次恢复的整体结果。"""

    timestamp: str = ""
    collections: list[CollectionRestoreReport] = field(default_factory=list)
    skipped_databases: list[str] = field(default_factory=list)

    @property
    def inserted(self) -> int:
        return sum(item.inserted for item in self.collections)

    @property
    def duplicates(self) -> int:
        return sum(item.duplicates for item in self.collections)

    @property
    def attempted(self) -> int:
        return sum(item.attempted for item in self.collections)

    def index_count(self, outcome: str) -> int:
        return sum(len(item.index_names(outcome)) for item in self.collections)

    def find(self, database: str, collection: str) -> CollectionRestoreReport | None:
        for item in self.collections:
            if item.database == database and item.collection == collection:
                return item
        return None


@dataclass
class CleanupReport:
    """保留策略清理结果。"""

    enabled: bool = False
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


@dataclass
class BackupResult:
    """一次备份上传的结果。"""

    key: str
    size: int
    documents: int
    cleanup: CleanupReport | None = None
