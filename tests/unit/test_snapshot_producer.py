from __future__ import annotations

import pytest
from bson import Int64
from pymongo.errors import AutoReconnect

from mongo_backup.db import BackupScope
from mongo_backup.models import ArchiveHeader, ArchiveTrailer, CollectionRecord, DatabaseRecord
from mongo_backup.services.snapshot_producer import SnapshotProducer


def _seed_cluster(fake_client) -> None:
    fake_client.seed(
        "shop",
        "orders",
        [{"_id": 1, "total": Int64(10)}, {"_id": 2, "total": Int64(20)}],
        indexes=[{"v": 2, "key": {"total": -1}, "name": "total_-1"}],
    )
    fake_client.seed("shop", "users", [{"_id": "u1", "name": "alice"}])
    fake_client.seed("shop", "system.profile", [{"_id": 1}])
    fake_client.seed("blog", "posts", [{"_id": 1, "title": "hello"}])
    fake_client.seed("admin", "system.users", [{"_id": "root"}])
    fake_client.seed("local", "startup_log", [{"_id": "boot"}])
    fake_client.seed("config", "settings", [{"_id": "chunksize"}])


@pytest.mark.unit
@pytest.mark.asyncio
async def test_all_scope_covers_non_system_databases(fake_client) -> None:
    _seed_cluster(fake_client)

    snapshot = await SnapshotProducer(fake_client, BackupScope()).produce()

    assert set(snapshot.databases) == {"shop", "blog"}
    assert set(snapshot.databases["shop"].collections) == {"orders", "users"}
    assert snapshot.document_count() == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_single_scope_only_reads_named_database(fake_client) -> None:
    _seed_cluster(fake_client)

    snapshot = await SnapshotProducer(fake_client, BackupScope("blog")).produce()

    assert list(snapshot.databases) == ["blog"]
    assert snapshot.databases["blog"].collections["posts"].documents == [{"_id": 1, "title": "hello"}]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_missing_scoped_database_yields_empty_snapshot(fake_client) -> None:
    _seed_cluster(fake_client)

    snapshot = await SnapshotProducer(fake_client, BackupScope("nope")).produce()

    assert snapshot.is_empty


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scope_naming_system_database_is_still_excluded(fake_client) -> None:
    _seed_cluster(fake_client)

    snapshot = await SnapshotProducer(fake_client, BackupScope("admin")).produce()

    assert snapshot.is_empty


@pytest.mark.unit
@pytest.mark.asyncio
async def test_indexes_are_captured_including_primary_key(fake_client) -> None:
    _seed_cluster(fake_client)

    snapshot = await SnapshotProducer(fake_client, BackupScope("shop")).produce()
    indexes = snapshot.databases["shop"].collections["orders"].indexes

    assert [index.name for index in indexes] == ["_id_", "total_-1"]
    assert indexes[1].keys == [("total", -1)]
    assert indexes[1].options == {"v": 2}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_record_stream_order_and_counters(fake_client) -> None:
    _seed_cluster(fake_client)
    producer = SnapshotProducer(fake_client, BackupScope("shop"))

    records = [record async for record in producer.iter_records("2024-12-27T00:00:00.000Z")]

    assert records[0] == ArchiveHeader(timestamp="2024-12-27T00:00:00.000Z", version=1)
    assert records[1] == DatabaseRecord(name="shop")
    assert isinstance(records[2], CollectionRecord) and records[2].name == "orders"
    assert records[-1] == ArchiveTrailer(databases=1, collections=2, documents=3)
    assert (producer.databases, producer.collections, producer.documents) == (1, 2, 3)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_read_failure_propagates(fake_client) -> None:
    """读取中途失败时直接抛出，不返回残缺快照。"""
    collection = fake_client.seed("shop", "orders", [{"_id": 1}])
    collection.fail_read_with = AutoReconnect("connection reset")

    with pytest.raises(AutoReconnect):
        await SnapshotProducer(fake_client, BackupScope()).produce()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_views_and_time_series_collections_are_not_exported(fake_client, caplog) -> None:
    _seed_cluster(fake_client)
    fake_client.seed("shop", "active_users", [{"_id": "u1"}]).kind = "view"
    fake_client.seed("shop", "metrics", [{"_id": 1, "ts": 1}]).kind = "timeseries"

    with caplog.at_level("WARNING", logger="mongo_backup.services.snapshot_producer"):
        collections = await SnapshotProducer(fake_client, BackupScope("shop")).list_collections("shop")

    assert collections == ["orders", "users"]
    warnings = [record.getMessage() for record in caplog.records if record.levelname == "WARNING"]
    assert len(warnings) == 1
    assert "timeseries" in warnings[0]
    assert "shop.metrics" in warnings[0]
