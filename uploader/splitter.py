"""Splitting a payload into fixed-size, sequence-numbered pieces."""

from typing import BinaryIO, Iterator, NamedTuple, Tuple


class ChunkRange(NamedTuple):
    index: int
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start


def count_chunks(size: int, chunk_size: int) -> int:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be greater than 0, got {chunk_size}")
    if size < 0:
        raise ValueError(f"size must be >= 0, got {size}")
    return (size + chunk_size - 1) // chunk_size


class ChunkPlan:
    """
    Byte ranges covering a payload of `size` bytes exactly once, in order.

    Iterating the plan again starts over from index 0, so an interrupted
    upload can walk it a second time and skip what was acknowledged.
    """

    def __init__(self, size: int, chunk_size: int):
        self.total = count_chunks(size, chunk_size)
        self.size = size
        self.chunk_size = chunk_size

    def __len__(self) -> int:
        return self.total

    def __getitem__(self, index: int) -> ChunkRange:
        if not 0 <= index < self.total:
            raise IndexError(f"chunk index {index} out of range for {self.total} chunks")
        start = index * self.chunk_size
        return ChunkRange(index, start, min(start + self.chunk_size, self.size))

    def __iter__(self) -> Iterator[ChunkRange]:
        for index in range(self.total):
            yield self[index]


def split_bytes(data: bytes, chunk_size: int) -> Iterator[Tuple[int, bytes]]:
    for rng in ChunkPlan(len(data), chunk_size):
        yield rng.index, data[rng.start:rng.end]


def read_range(fileobj: BinaryIO, rng: ChunkRange) -> bytes:
    fileobj.seek(rng.start)
    return fileobj.read(rng.length)
