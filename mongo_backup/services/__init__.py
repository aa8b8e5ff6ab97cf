"""业务服务层。"""

from mongo_backup.services import (
    archive_codec,
    archive_strategy,
    backup_scheduler,
    backup_service,
    cloud_storage,
    compression,
    retention_service,
    snapshot_producer,
    snapshot_repository,
    snapshot_restorer,
)

__all__ = [
    "archive_codec",
    "archive_strategy",
    "backup_scheduler",
    "backup_service",
    "cloud_storage",
    "compression",
    "retention_service",
    "snapshot_producer",
    "snapshot_repository",
    "snapshot_restorer",
]
