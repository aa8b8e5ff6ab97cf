"""运行配置（通过 .env 与环境变量覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationMissing

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]

SUPPORTED_STRATEGIES = {"driver", "mongodump"}

# 环境变量名 -> 配置字段
REQUIRED_ENV_KEYS: dict[str, str] = {
    "S3_REGION": "s3_region",
    "S3_ACCESS_KEY_ID": "s3_access_key_id",
    "S3_SECRET_ACCESS_KEY": "s3_secret_access_key",
    "S3_BUCKET": "s3_bucket",
    "MONGODB_URI": "mongodb_uri",
}

DEFAULT_BATCH_SIZE = 1000
DEFAULT_DROP_WARNING_SECONDS = 3

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _to_bool(value: Any, default: bool) -> bool:
    """把输入值转换为布尔值。"""
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


def _to_int(value: Any, default: int, *, minimum: int = 0) -> int:
    """把输入值转换为整数并保证下限。"""
    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_string(value: Any, default: str = "") -> str:
    """把输入值转换为去空格字符串。"""
    if value is None:
        return default
    text = str(value).strip()
    return text if text else default


def _to_retention_days(value: Any) -> int | None:
    """保留天数：缺失、非数字或非正数一律视为关闭清理。"""
    text = _to_string(value)
    if not text:
        return None
    try:
        parsed = int(text)
    except ValueError:
        return None
    return parsed if parsed > 0 else None


class BackupSettings(BaseModel):
    """单次运行的配置上下文，传递给各个组件。"""

    mongodb_uri: str = Field(..., min_length=1)
    s3_region: str = Field(..., min_length=1)
    s3_access_key_id: str = Field(..., min_length=1)
    s3_secret_access_key: str = Field(..., min_length=1)
    s3_bucket: str = Field(..., min_length=1)
    s3_endpoint: str = Field(default="")
    s3_key_path: str = Field(default="")
    cron_schedule: str = Field(default="")
    retention_days: int | None = Field(default=None)
    strategy: str = Field(default="driver")
    timestamped_names: bool = Field(default=False)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1)
    drop_warning_seconds: int = Field(default=DEFAULT_DROP_WARNING_SECONDS, ge=0)

    @property
    def key_path(self) -> str:
        """去掉首尾斜杠后的对象键前缀目录。"""
        return self.s3_key_path.strip().strip("/")


def load_settings(environ: Mapping[str, str] | None = None) -> BackupSettings:
    """从环境变量构建配置；必填项缺失时抛出 ConfigurationMissing。"""
    if environ is None:
        load_dotenv(BASE_DIR / ".env")
        environ = os.environ

    values: dict[str, Any] = {}
    missing: list[str] = []
    for env_key, field_name in REQUIRED_ENV_KEYS.items():
        value = _to_string(environ.get(env_key))
        if not value:
            missing.append(env_key)
            continue
        values[field_name] = value

    if missing:
        raise ConfigurationMissing(missing)

    strategy = _to_string(environ.get("BACKUP_STRATEGY"), default="driver").lower()
    if strategy not in SUPPORTED_STRATEGIES:
        raise ValueError(f"不支持的备份策略: {strategy}")

    values.update(
        {
            "s3_endpoint": _to_string(environ.get("S3_ENDPOINT")),
            "s3_key_path": _to_string(environ.get("S3_KEY_PATH")),
            "cron_schedule": _to_string(environ.get("CRON_SCHEDULE")),
            "retention_days": _to_retention_days(environ.get("RETENTION_DAYS")),
            "strategy": strategy,
            "timestamped_names": _to_bool(environ.get("BACKUP_TIMESTAMPED_NAMES"), default=False),
            "batch_size": _to_int(environ.get("BACKUP_BATCH_SIZE"), DEFAULT_BATCH_SIZE, minimum=1),
            "drop_warning_seconds": _to_int(
                environ.get("RESTORE_DROP_WARNING_SECONDS"),
                DEFAULT_DROP_WARNING_SECONDS,
            ),
        }
    )
    return BackupSettings(**values)
