"""Exact per-region statistics over block-grouped tile lengths."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Sequence, Tuple

import numpy as np


BLOCK_SIZE = 256
BLOCK_SHIFT = 8
_INT64_MAX = int(np.iinfo(np.int64).max)


@dataclass(frozen=True)
class Block:
    """A rectangle of at most 256x256 tiles as laid out by the archive.

    ``column``/``row`` address the block (tile x >> 8, tile y >> 8); the
    ``col_*``/``row_*`` bounds are inclusive tile offsets inside the block.
    """

    level: int
    column: int
    row: int
    col_min: int = 0
    col_max: int = BLOCK_SIZE - 1
    row_min: int = 0
    row_max: int = BLOCK_SIZE - 1

    @property
    def width(self) -> int:
        return self.col_max - self.col_min + 1

    @property
    def height(self) -> int:
        return self.row_max - self.row_min + 1


@dataclass(frozen=True)
class Stats:
    tile_count: int = 0
    total: int = 0
    sum_of_squares: int = 0

    def __add__(self, other: "Stats") -> "Stats":
        return Stats(
            self.tile_count + other.tile_count,
            self.total + other.total,
            self.sum_of_squares + other.sum_of_squares,
        )


EMPTY_STATS = Stats()


@dataclass(frozen=True)
class BlockData:
    block: Block
    lengths: np.ndarray

    @classmethod
    def from_lengths(cls, block: Block, lengths: Sequence[int]) -> "BlockData":
        grid = np.asarray(lengths, dtype=np.int64)
        if grid.size != block.width * block.height:
            raise ValueError(
                f"Block {block.column},{block.row} at z{block.level} has {grid.size} lengths, "
                f"expected {block.width * block.height}"
            )
        return cls(block, grid.reshape(block.height, block.width))


def _sum_of_squares(values: np.ndarray) -> int:
    peak = int(values.max())
    if peak * peak * int(values.size) <= _INT64_MAX:
        return int(np.dot(values, values))
    # int64 would wrap; fall back to arbitrary precision
    return sum(v * v for v in values.tolist())


class BlockStatsCollector:
    """Answers exact count/sum/sum-of-squares queries for square tile regions."""

    def __init__(self, blocks: Iterable[BlockData]) -> None:
        self._blocks: Dict[Tuple[int, int], BlockData] = {
            (data.block.column, data.block.row): data for data in blocks
        }

    def __len__(self) -> int:
        return len(self._blocks)

    def _block_range(self, x_min: int, y_min: int, size: int) -> Tuple[int, int, int, int]:
        return (
            x_min >> BLOCK_SHIFT,
            y_min >> BLOCK_SHIFT,
            (x_min + size - 1) >> BLOCK_SHIFT,
            (y_min + size - 1) >> BLOCK_SHIFT,
        )

    def has_blocks(self, x_min: int, y_min: int, size: int) -> bool:
        """Whether any block overlaps the square ``[x_min, x_min+size)^2``."""

        bx_min, by_min, bx_max, by_max = self._block_range(x_min, y_min, size)
        if (bx_max - bx_min + 1) * (by_max - by_min + 1) <= len(self._blocks):
            return any(
                (bx, by) in self._blocks
                for bx in range(bx_min, bx_max + 1)
                for by in range(by_min, by_max + 1)
            )
        return any(
            bx_min <= bx <= bx_max and by_min <= by <= by_max for bx, by in self._blocks
        )

    def collect(self, x_min: int, y_min: int, size: int) -> Stats:
        x_max = x_min + size
        y_max = y_min + size
        bx_min, by_min, bx_max, by_max = self._block_range(x_min, y_min, size)

        tile_count = 0
        total = 0
        sum_of_squares = 0
        for bx in range(bx_min, bx_max + 1):
            for by in range(by_min, by_max + 1):
                data = self._blocks.get((bx, by))
                if data is None:
                    continue
                block = data.block
                origin_x = bx * BLOCK_SIZE
                origin_y = by * BLOCK_SIZE

                tx_min = max(x_min - origin_x, block.col_min)
                tx_max = min(x_max - 1 - origin_x, block.col_max)
                ty_min = max(y_min - origin_y, block.row_min)
                ty_max = min(y_max - 1 - origin_y, block.row_max)
                if tx_min > tx_max or ty_min > ty_max:
                    continue

                window = data.lengths[
                    ty_min - block.row_min : ty_max - block.row_min + 1,
                    tx_min - block.col_min : tx_max - block.col_min + 1,
                ]
                present = window[window > 0]
                if present.size == 0:
                    continue
                tile_count += int(present.size)
                total += int(present.sum())
                sum_of_squares += _sum_of_squares(present)

        return Stats(tile_count, total, sum_of_squares)


def collect_stats(blocks: Iterable[BlockData], x_min: int, y_min: int, size: int) -> Stats:
    return BlockStatsCollector(blocks).collect(x_min, y_min, size)


__all__ = [
    "BLOCK_SIZE",
    "Block",
    "BlockData",
    "BlockStatsCollector",
    "EMPTY_STATS",
    "Stats",
    "collect_stats",
]
