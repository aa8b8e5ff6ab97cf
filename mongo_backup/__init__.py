"""MongoDB 全量快照备份到 S3，以及从快照恢复。"""

__version__ = "1.0.0"
