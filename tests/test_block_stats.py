from __future__ import annotations

import numpy as np
import pytest

from src.sizeindex.stats import Block, BlockData, BlockStatsCollector, Stats, collect_stats


def _block(column: int, row: int, col_min: int, col_max: int, row_min: int, row_max: int, lengths) -> BlockData:
    block = Block(level=9, column=column, row=row, col_min=col_min, col_max=col_max, row_min=row_min, row_max=row_max)
    return BlockData.from_lengths(block, lengths)


def test_no_matching_blocks_returns_zero_stats() -> None:
    assert collect_stats([], 0, 0, 16) == Stats(tile_count=0, total=0, sum_of_squares=0)

    far_away = _block(1, 1, 0, 1, 0, 1, [1, 2, 3, 4])
    assert collect_stats([far_away], 0, 0, 16) == Stats(0, 0, 0)


def test_collects_only_intersection_and_skips_empty_tiles() -> None:
    data = _block(
        0,
        0,
        0,
        3,
        0,
        3,
        [
            1, 2, 0, 4,
            5, 0, 7, 8,
            9, 10, 11, 12,
            13, 14, 15, 16,
        ],
    )
    stats = collect_stats([data], 0, 0, 2)
    assert stats == Stats(tile_count=3, total=8, sum_of_squares=1 + 4 + 25)


def test_region_spanning_two_blocks_with_offsets() -> None:
    west = _block(0, 0, 252, 255, 0, 1, [1, 2, 3, 4, 5, 6, 7, 8])
    east = _block(1, 0, 0, 1, 0, 1, [10, 0, 0, 20])
    collector = BlockStatsCollector([west, east])

    stats = collector.collect(254, 0, 4)

    assert stats.tile_count == 6
    assert stats.total == 3 + 4 + 7 + 8 + 10 + 20
    assert stats.sum_of_squares == 9 + 16 + 49 + 64 + 100 + 400


def test_large_values_stay_exact() -> None:
    value = 3_000_000
    data = _block(0, 0, 0, 15, 0, 15, np.full(256, value))
    stats = collect_stats([data], 0, 0, 16)
    assert stats.total == 256 * value
    assert stats.sum_of_squares == 256 * value * value


def test_lengths_beyond_int64_squares_stay_exact() -> None:
    huge = 4_000_000_000
    lengths = np.zeros(256, dtype=np.int64)
    lengths[0] = huge
    lengths[1] = 7
    data = _block(0, 0, 0, 15, 0, 15, lengths)
    stats = collect_stats([data], 0, 0, 16)
    assert stats.tile_count == 2
    assert stats.total == huge + 7
    assert stats.sum_of_squares == 16_000_000_000_000_000_049


def test_full_block_of_large_tiles_stays_exact() -> None:
    value = 12_000_000
    data = _block(0, 0, 0, 255, 0, 255, np.full(256 * 256, value))
    stats = collect_stats([data], 0, 0, 256)
    assert stats.sum_of_squares == 256 * 256 * value * value


def test_has_blocks() -> None:
    collector = BlockStatsCollector([_block(2, 3, 0, 0, 0, 0, [5])])
    assert collector.has_blocks(512, 768, 16)
    assert collector.has_blocks(0, 0, 1024)
    assert not collector.has_blocks(0, 0, 512)
    assert not collector.has_blocks(768, 768, 256)


def test_stats_add() -> None:
    assert Stats(1, 2, 4) + Stats(2, 5, 13) == Stats(3, 7, 17)


def test_length_count_must_match_block_bounds() -> None:
    with pytest.raises(ValueError):
        _block(0, 0, 0, 1, 0, 1, [1, 2, 3])
