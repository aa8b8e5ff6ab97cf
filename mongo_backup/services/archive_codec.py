"""归档编解码：按行的 MongoDB Canonical Extended JSON。

每行一条记录，顺序固定::

    header -> (database -> (collection -> document*)*)* -> trailer

记录外壳（kind、名称、计数、索引键）是 Canonical Extended JSON；文档与索引选项
整体编码为 BSON，以 $binary 嵌入该行。字段名与值按 BSON 原样往返，包括 64 位整数、
高精度小数、二进制、UUID，以及以 $ 开头、与类型标签同名的字段（如 "$numberLong"）。
"""

from __future__ import annotations

import logging
from datetime import timezone
from decimal import InvalidOperation
from typing import Any, Iterable, Iterator, Mapping

import bson
from bson import json_util
from bson.binary import UuidRepresentation
from bson.codec_options import CodecOptions
from bson.errors import BSONError, InvalidDocument

from mongo_backup.errors import MalformedArchive
from mongo_backup.models.snapshot import (
    ArchiveHeader,
    ArchiveRecord,
    ArchiveTrailer,
    CollectionRecord,
    CollectionSnapshot,
    DatabaseRecord,
    DatabaseSnapshot,
    DocumentRecord,
    IndexDefinition,
    Snapshot,
)

logger = logging.getLogger(__name__)

ARCHIVE_FORMAT = "mongo-backup-archive"
ARCHIVE_VERSION = 1

JSON_OPTIONS = json_util.CANONICAL_JSON_OPTIONS.with_options(
    tz_aware=True,
    uuid_representation=UuidRepresentation.STANDARD,
)
CODEC_OPTIONS = CodecOptions(
    tz_aware=True,
    tzinfo=timezone.utc,
    uuid_representation=UuidRepresentation.STANDARD,
)

_DECODE_ERRORS = (ValueError, TypeError, KeyError, InvalidOperation, BSONError)


# ---------- 单条记录 ----------


def _pack(document: Mapping[str, Any]) -> bytes:
    try:
        return bson.encode(document, codec_options=CODEC_OPTIONS)
    except InvalidDocument as exc:
        raise TypeError(f"无法编码为 BSON: {exc}") from exc


def _unpack(raw: Any, what: str) -> dict[str, Any]:
    if not isinstance(raw, bytes):
        raise ValueError(f"{what} 不是 BSON 二进制")
    return bson.decode(raw, codec_options=CODEC_OPTIONS)


def _encode_index(index: IndexDefinition) -> dict[str, Any]:
    return {
        "name": index.name,
        "key": [[field_name, direction] for field_name, direction in index.keys],
        "options": _pack(index.options),
    }


def _decode_index(raw: Any) -> IndexDefinition:
    if not isinstance(raw, dict) or not isinstance(raw.get("name"), str):
        raise ValueError("索引定义缺少 name")
    keys = raw.get("key")
    if not isinstance(keys, list) or any(not isinstance(pair, list) or len(pair) != 2 for pair in keys):
        raise ValueError(f"索引 {raw['name']} 的 key 不是 [字段, 方向] 列表")
    options = _unpack(raw.get("options"), f"索引 {raw['name']} 的 options")
    return IndexDefinition(
        name=raw["name"],
        keys=[(str(field_name), direction) for field_name, direction in keys],
        options=options,
    )


def encode_record(record: ArchiveRecord) -> bytes:
    """把一条记录编码为一行（含换行符）。"""
    if isinstance(record, DocumentRecord):
        payload: dict[str, Any] = {"kind": "document", "bson": _pack(record.document)}
    elif isinstance(record, CollectionRecord):
        payload = {
            "kind": "collection",
            "name": record.name,
            "indexes": [_encode_index(index) for index in record.indexes],
        }
    elif isinstance(record, DatabaseRecord):
        payload = {"kind": "database", "name": record.name}
    elif isinstance(record, ArchiveHeader):
        payload = {
            "kind": "header",
            "format": ARCHIVE_FORMAT,
            "version": record.version,
            "timestamp": record.timestamp,
        }
    elif isinstance(record, ArchiveTrailer):
        payload = {
            "kind": "trailer",
            "databases": record.databases,
            "collections": record.collections,
            "documents": record.documents,
        }
    else:
        raise TypeError(f"未知的归档记录类型: {type(record).__name__}")

    return (json_util.dumps(payload, json_options=JSON_OPTIONS, ensure_ascii=False) + "\n").encode("utf-8")


def decode_record(line: bytes | str, line_number: int = 0) -> ArchiveRecord:
    """解析一行记录，结构不合法时抛出 MalformedArchive。"""
    try:
        text = line.decode("utf-8") if isinstance(line, bytes) else line
        payload = json_util.loads(text, json_options=JSON_OPTIONS)
        if not isinstance(payload, dict):
            raise ValueError("记录不是 JSON 对象")

        kind = payload.get("kind")
        if kind == "document":
            return DocumentRecord(document=_unpack(payload.get("bson"), "document"))
        if kind == "collection":
            indexes = payload.get("indexes", [])
            if not isinstance(indexes, list):
                raise ValueError("indexes 不是列表")
            return CollectionRecord(name=str(payload["name"]), indexes=[_decode_index(item) for item in indexes])
        if kind == "database":
            return DatabaseRecord(name=str(payload["name"]))
        if kind == "header":
            if payload.get("format") != ARCHIVE_FORMAT:
                raise ValueError(f"未知的归档格式: {payload.get('format')}")
            if payload.get("version") != ARCHIVE_VERSION:
                raise ValueError(f"不支持的归档版本: {payload.get('version')}")
            return ArchiveHeader(timestamp=str(payload["timestamp"]), version=int(payload["version"]))
        if kind == "trailer":
            return ArchiveTrailer(
                databases=int(payload["databases"]),
                collections=int(payload["collections"]),
                documents=int(payload["documents"]),
            )
        raise ValueError(f"未知的记录类型: {kind}")
    except _DECODE_ERRORS as exc:
        raise MalformedArchive(f"第 {line_number} 行无法解析: {exc}") from exc


# ---------- 记录流 ----------


def iter_lines(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """把任意切分的字节块重新拼成完整行。"""
    pending = b""
    for chunk in chunks:
        if not chunk:
            continue
        pending += chunk
        lines = pending.split(b"\n")
        pending = lines.pop()
        for line in lines:
            yield line
    if pending:
        yield pending


def decode_lines(lines: Iterable[bytes]) -> Iterator[ArchiveRecord]:
    """逐行解码并校验记录顺序与结束标记。"""
    header: ArchiveHeader | None = None
    trailer: ArchiveTrailer | None = None
    has_database = False
    has_collection = False
    databases = collections = documents = 0

    for line_number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        if trailer is not None:
            raise MalformedArchive(f"第 {line_number} 行: 结束标记之后仍有内容")

        record = decode_record(line, line_number)

        if header is None:
            if not isinstance(record, ArchiveHeader):
                raise MalformedArchive("归档缺少头部记录")
            header = record
        elif isinstance(record, ArchiveHeader):
            raise MalformedArchive(f"第 {line_number} 行: 重复的头部记录")
        elif isinstance(record, DatabaseRecord):
            has_database = True
            has_collection = False
            databases += 1
        elif isinstance(record, CollectionRecord):
            if not has_database:
                raise MalformedArchive(f"第 {line_number} 行: 集合 {record.name} 之前没有数据库记录")
            has_collection = True
            collections += 1
        elif isinstance(record, DocumentRecord):
            if not has_collection:
                raise MalformedArchive(f"第 {line_number} 行: 文档之前没有集合记录")
            documents += 1
        elif isinstance(record, ArchiveTrailer):
            actual = (databases, collections, documents)
            expected = (record.databases, record.collections, record.documents)
            if actual != expected:
                raise MalformedArchive(f"结束标记计数不一致: 期望 {expected}，实际 {actual}")
            trailer = record

        yield record

    if header is None:
        raise MalformedArchive("归档为空")
    if trailer is None:
        raise MalformedArchive("缺少结束标记，归档可能被截断")


def snapshot_to_records(snapshot: Snapshot) -> Iterator[ArchiveRecord]:
    """把内存快照展开为有序记录流。"""
    yield ArchiveHeader(timestamp=snapshot.timestamp, version=ARCHIVE_VERSION)
    collections = documents = 0
    for db_name, database in snapshot.databases.items():
        yield DatabaseRecord(name=db_name)
        for coll_name, collection in database.collections.items():
            collections += 1
            yield CollectionRecord(name=coll_name, indexes=list(collection.indexes))
            for document in collection.documents:
                documents += 1
                yield DocumentRecord(document=document)
    yield ArchiveTrailer(databases=len(snapshot.databases), collections=collections, documents=documents)


def records_to_snapshot(records: Iterable[ArchiveRecord]) -> Snapshot:
    """把记录流还原为内存快照。"""
    snapshot = Snapshot(timestamp="")
    current_db: DatabaseSnapshot | None = None
    current_coll: CollectionSnapshot | None = None

    for record in records:
        if isinstance(record, ArchiveHeader):
            snapshot.timestamp = record.timestamp
        elif isinstance(record, DatabaseRecord):
            current_db = snapshot.databases.setdefault(record.name, DatabaseSnapshot())
            current_coll = None
        elif isinstance(record, CollectionRecord):
            if current_db is None:
                raise MalformedArchive(f"集合 {record.name} 之前没有数据库记录")
            current_coll = CollectionSnapshot(indexes=list(record.indexes))
            current_db.collections[record.name] = current_coll
        elif isinstance(record, DocumentRecord):
            if current_coll is None:
                raise MalformedArchive("文档之前没有集合记录")
            current_coll.documents.append(record.document)

    return snapshot


def encode(snapshot: Snapshot) -> bytes:
    """编码整个快照（未压缩）。"""
    return b"".join(encode_record(record) for record in snapshot_to_records(snapshot))


def decode(data: bytes) -> Snapshot:
    """解码整个快照（未压缩）。"""
    return records_to_snapshot(decode_lines(iter_lines([data])))
