"""gzip 流式压缩/解压，按固定块处理，不把整个归档读入内存。"""

from __future__ import annotations

import logging
import zlib
from pathlib import Path
from typing import AsyncIterable, Iterable, Iterator

from mongo_backup.errors import ArchiveUnreadable

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
COMPRESS_LEVEL = 6

# wbits=31 表示带 gzip 头尾（RFC 1952）
GZIP_WBITS = 16 + zlib.MAX_WBITS


def _compressor():
    return zlib.compressobj(COMPRESS_LEVEL, zlib.DEFLATED, GZIP_WBITS)


def compress_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """逐块压缩。"""
    compressor = _compressor()
    for chunk in chunks:
        if not chunk:
            continue
        output = compressor.compress(chunk)
        if output:
            yield output
    yield compressor.flush()


def decompress_chunks(chunks: Iterable[bytes]) -> Iterator[bytes]:
    """逐块解压；数据损坏或被截断时抛出 ArchiveUnreadable。"""
    decompressor = zlib.decompressobj(GZIP_WBITS)
    received = False
    try:
        for chunk in chunks:
            if not chunk:
                continue
            received = True
            if decompressor.eof:
                raise ArchiveUnreadable("gzip 流结束后仍有多余数据")
            output = decompressor.decompress(chunk, CHUNK_SIZE)
            if output:
                yield output
            # 限制单次输出大小，剩余数据留在 unconsumed_tail 中
            while decompressor.unconsumed_tail:
                output = decompressor.decompress(decompressor.unconsumed_tail, CHUNK_SIZE)
                if output:
                    yield output
        tail = decompressor.flush()
        if tail:
            yield tail
    except zlib.error as exc:
        raise ArchiveUnreadable(f"gzip 解压失败: {exc}") from exc

    if not received:
        raise ArchiveUnreadable("归档文件为空")
    if not decompressor.eof:
        raise ArchiveUnreadable("gzip 流不完整，归档可能被截断")
    if decompressor.unused_data:
        raise ArchiveUnreadable("gzip 流结束后仍有多余数据")


def compress(data: bytes) -> bytes:
    return b"".join(compress_chunks([data]))


def decompress(data: bytes) -> bytes:
    return b"".join(decompress_chunks([data]))


def read_file_chunks(path: Path, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """按块读取本地文件。"""
    with path.open("rb") as handle:
        while True:
            chunk = handle.read(chunk_size)
            if not chunk:
                break
            yield chunk


def iter_decompressed_file(path: Path) -> Iterator[bytes]:
    """按块解压本地 .gz 文件。"""
    return decompress_chunks(read_file_chunks(path))


async def write_compressed(chunks: AsyncIterable[bytes], path: Path) -> int:
    """把异步字节流压缩写入本地文件，返回压缩后大小。"""
    compressor = _compressor()
    written = 0
    with path.open("wb") as handle:
        async for chunk in chunks:
            if not chunk:
                continue
            output = compressor.compress(chunk)
            if output:
                handle.write(output)
                written += len(output)
        output = compressor.flush()
        handle.write(output)
        written += len(output)

    logger.info("压缩完成: %s (%d 字节)", path.name, written)
    return written
