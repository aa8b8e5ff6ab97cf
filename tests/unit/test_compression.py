from __future__ import annotations

import gzip
from pathlib import Path

import pytest

from mongo_backup.errors import ArchiveUnreadable
from mongo_backup.services import compression


PAYLOAD = b"".join(b'{"kind": "document", "n": %d}\n' % i for i in range(5000))


@pytest.mark.unit
def test_compress_round_trip() -> None:
    compressed = compression.compress(PAYLOAD)

    assert compressed[:2] == b"\x1f\x8b"
    assert compression.decompress(compressed) == PAYLOAD


@pytest.mark.unit
def test_output_is_standard_gzip() -> None:
    """标准 gzip 工具可以读取压缩结果。"""
    assert gzip.decompress(compression.compress(PAYLOAD)) == PAYLOAD
    assert compression.decompress(gzip.compress(PAYLOAD)) == PAYLOAD


@pytest.mark.unit
def test_decompress_handles_small_input_chunks() -> None:
    compressed = compression.compress(PAYLOAD)
    chunks = [compressed[i : i + 13] for i in range(0, len(compressed), 13)]

    assert b"".join(compression.decompress_chunks(chunks)) == PAYLOAD


@pytest.mark.unit
@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"definitely not gzip",
        compression.compress(PAYLOAD)[:-20],
        compression.compress(PAYLOAD) + b"trailing-garbage",
    ],
    ids=["empty", "not-gzip", "truncated", "trailing-garbage"],
)
def test_decompress_rejects_unreadable_input(data: bytes) -> None:
    with pytest.raises(ArchiveUnreadable):
        compression.decompress(data)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_write_compressed_then_read_back(tmp_path: Path) -> None:
    async def source():
        for start in range(0, len(PAYLOAD), 1000):
            yield PAYLOAD[start : start + 1000]

    target = tmp_path / "archive.gz"

    written = await compression.write_compressed(source(), target)

    assert written == target.stat().st_size
    assert b"".join(compression.iter_decompressed_file(target)) == PAYLOAD
