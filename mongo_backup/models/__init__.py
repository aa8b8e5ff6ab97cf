"""数据模型导出。"""

from .reports import (
    INDEX_CONFLICT,
    INDEX_CREATED,
    INDEX_EXISTS,
    INDEX_FAILED,
    BackupResult,
    CleanupReport,
    CollectionRestoreReport,
    RestoreReport,
)
from .snapshot import (
    ArchiveHeader,
    ArchiveRecord,
    ArchiveTrailer,
    CollectionRecord,
    CollectionSnapshot,
    DatabaseRecord,
    DatabaseSnapshot,
    DocumentRecord,
    IndexDefinition,
    RetentionPolicy,
    Snapshot,
    StoredSnapshotDescriptor,
)

__all__ = [
    "INDEX_CONFLICT",
    "INDEX_CREATED",
    "INDEX_EXISTS",
    "INDEX_FAILED",
    "ArchiveHeader",
    "ArchiveRecord",
    "ArchiveTrailer",
    "BackupResult",
    "CleanupReport",
    "CollectionRecord",
    "CollectionRestoreReport",
    "CollectionSnapshot",
    "DatabaseRecord",
    "DatabaseSnapshot",
    "DocumentRecord",
    "IndexDefinition",
    "RestoreReport",
    "RetentionPolicy",
    "Snapshot",
    "StoredSnapshotDescriptor",
]
