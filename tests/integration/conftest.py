"""集成测试 fixture。"""

from __future__ import annotations

import pytest_asyncio

from mongo_backup.db import close_client, create_client


@pytest_asyncio.fixture
async def motor_client(mongo_cleanup, test_mongo_url: str):
    client = create_client(test_mongo_url)
    try:
        yield client
    finally:
        close_client(client)


@pytest_asyncio.fixture
async def test_db(motor_client, test_mongo_db_name: str):
    return motor_client[test_mongo_db_name]
