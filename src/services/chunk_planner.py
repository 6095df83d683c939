"""
Chunk planning for resumable uploads.
Splits a file length into ordered, inclusive byte ranges.
"""
from typing import List
from src.core.exceptions import ValidationException
from src.models.upload_session import ChunkRange


def plan(total_size: int, chunk_size: int) -> List[ChunkRange]:
    """
    Split a file of total_size bytes into chunk_size pieces.

    The same inputs always produce the same ranges, which is what lets a
    session resume after a restart without re-planning.

    Args:
        total_size: File length in bytes
        chunk_size: Maximum bytes per chunk

    Returns:
        Ordered list of ChunkRange; the last one carries the remainder

    Raises:
        ValidationException: If either size is not positive
    """
    if chunk_size <= 0:
        raise ValidationException(f"chunk_size must be positive, got: {chunk_size}")
    if total_size <= 0:
        raise ValidationException(f"total_size must be positive, got: {total_size}")

    count = -(-total_size // chunk_size)
    chunks = []
    for index in range(count):
        byte_start = index * chunk_size
        size = min(chunk_size, total_size - byte_start)
        chunks.append(ChunkRange(
            index=index,
            byte_start=byte_start,
            byte_end=byte_start + size - 1,
            size=size
        ))
    return chunks
