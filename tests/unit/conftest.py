"""单元测试用的内存版 Motor 客户端与存储后端。"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from pymongo.errors import BulkWriteError, OperationFailure

from mongo_backup.config import BackupSettings
from mongo_backup.services.cloud_storage import CloudFileInfo, CloudStorageBackend


class FakeCursor:
    def __init__(self, items: list[Any], fail_with: Exception | None = None) -> None:
        self._items = items
        self._fail_with = fail_with

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self._items:
            yield item
        if self._fail_with is not None:
            raise self._fail_with


class FakeCollection:
    def __init__(self, name: str) -> None:
        self.name = name
        self.documents: list[dict[str, Any]] = []
        self.indexes: dict[str, dict[str, Any]] = {}
        self.exists = False
        self.insert_calls = 0
        self.create_index_calls: list[str] = []
        self.fail_index_names: set[str] = set()
        self.fail_read_with: Exception | None = None
        self.write_concern_errors: list[dict[str, Any]] = []
        self.kind = "collection"
        self._ensure_id_index()

    def _ensure_id_index(self) -> None:
        self.indexes.setdefault("_id_", {"v": 2, "key": {"_id": 1}, "name": "_id_"})

    def seed(self, documents: list[dict[str, Any]], indexes: list[dict[str, Any]] | None = None) -> None:
        self.exists = True
        self.documents.extend(copy.deepcopy(documents))
        for index in indexes or []:
            self.indexes[index["name"]] = copy.deepcopy(index)

    def find(self, _query: dict, sort: Any = None, batch_size: int | None = None) -> FakeCursor:
        return FakeCursor(copy.deepcopy(self.documents), fail_with=self.fail_read_with)

    def list_indexes(self) -> FakeCursor:
        return FakeCursor(copy.deepcopy(list(self.indexes.values())))

    async def count_documents(self, _query: dict) -> int:
        return len(self.documents)

    async def insert_many(self, documents: list[dict[str, Any]], ordered: bool = True):
        self.exists = True
        self.insert_calls += 1
        existing_ids = {doc["_id"] for doc in self.documents}
        write_errors: list[dict[str, Any]] = []
        inserted: list[Any] = []
        for position, document in enumerate(documents):
            if document.get("_id") in existing_ids:
                write_errors.append({"index": position, "code": 11000, "errmsg": "E11000 duplicate key error"})
            elif document.get("_reject"):
                write_errors.append({"index": position, "code": 121, "errmsg": "Document failed validation"})
            else:
                self.documents.append(copy.deepcopy(document))
                existing_ids.add(document["_id"])
                inserted.append(document["_id"])
            if write_errors and ordered:
                break

        if write_errors or self.write_concern_errors:
            raise BulkWriteError(
                {
                    "writeErrors": write_errors,
                    "writeConcernErrors": list(self.write_concern_errors),
                    "nInserted": len(inserted),
                }
            )
        return SimpleNamespace(inserted_ids=inserted)

    async def create_index(self, keys: list[tuple[str, Any]], **options: Any) -> str:
        name = options["name"]
        self.create_index_calls.append(name)
        if name in self.fail_index_names:
            raise OperationFailure("cannot create index", code=67)

        key = dict(keys)
        current = self.indexes.get(name)
        if current is not None:
            if current["key"] == key:
                return name
            raise OperationFailure("An existing index has the same name but different key", code=86)
        for other in self.indexes.values():
            if other["key"] == key:
                raise OperationFailure("Index already exists with a different name", code=85)

        self.exists = True
        self.indexes[name] = {"v": 2, "key": key, **options}
        return name


class FakeDatabase:
    def __init__(self, name: str) -> None:
        self.name = name
        self.collections: dict[str, FakeCollection] = {}
        self.dropped: list[str] = []

    def __getitem__(self, name: str) -> FakeCollection:
        if name not in self.collections:
            self.collections[name] = FakeCollection(name)
        return self.collections[name]

    async def list_collections(self) -> FakeCursor:
        return FakeCursor(
            [
                {"name": name, "type": collection.kind}
                for name, collection in self.collections.items()
                if collection.exists
            ]
        )

    async def drop_collection(self, name: str) -> None:
        if name in self.collections and self.collections[name].exists:
            self.dropped.append(name)
        self.collections.pop(name, None)


class FakeMongoClient:
    def __init__(self) -> None:
        self.databases: dict[str, FakeDatabase] = {}
        self.closed = False

    def __getitem__(self, name: str) -> FakeDatabase:
        if name not in self.databases:
            self.databases[name] = FakeDatabase(name)
        return self.databases[name]

    async def list_database_names(self) -> list[str]:
        return [
            name
            for name, database in self.databases.items()
            if any(collection.exists for collection in database.collections.values())
        ]

    def seed(
        self,
        db_name: str,
        coll_name: str,
        documents: list[dict[str, Any]],
        indexes: list[dict[str, Any]] | None = None,
    ) -> FakeCollection:
        collection = self[db_name][coll_name]
        collection.seed(documents, indexes)
        return collection

    def close(self) -> None:
        self.closed = True


class FakeStorageBackend(CloudStorageBackend):
    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, datetime]] = {}
        self.fail_deletes: set[str] = set()
        self.deleted: list[str] = []
        self.closed = False

    def put(self, key: str, data: bytes, last_modified: datetime | None = None) -> None:
        self.objects[key] = (data, last_modified or datetime.now(timezone.utc))

    async def upload_file(self, local_path: Path, remote_key: str) -> None:
        self.put(remote_key, local_path.read_bytes())

    async def download_file(self, remote_key: str, local_path: Path) -> None:
        if remote_key not in self.objects:
            raise FileNotFoundError(remote_key)
        local_path.write_bytes(self.objects[remote_key][0])

    async def delete_file(self, remote_key: str) -> None:
        if remote_key in self.fail_deletes:
            raise RuntimeError("AccessDenied")
        self.objects.pop(remote_key, None)
        self.deleted.append(remote_key)

    async def list_files(self, prefix: str) -> list[CloudFileInfo]:
        return [
            CloudFileInfo(key=key, size=len(data), last_modified=modified)
            for key, (data, modified) in self.objects.items()
            if key.startswith(prefix)
        ]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client() -> FakeMongoClient:
    return FakeMongoClient()


@pytest.fixture
def target_client() -> FakeMongoClient:
    """恢复目标库，与 fake_client 相互独立。"""
    return FakeMongoClient()


@pytest.fixture
def fake_backend() -> FakeStorageBackend:
    return FakeStorageBackend()


@pytest.fixture
def settings() -> BackupSettings:
    return BackupSettings(
        mongodb_uri="mongodb://localhost:27017",
        s3_region="us-east-1",
        s3_access_key_id="ak",
        s3_secret_access_key="sk",
        s3_bucket="backups",
        s3_key_path="prod/mongo",
        retention_days=30,
        batch_size=2,
        drop_warning_seconds=0,
    )
