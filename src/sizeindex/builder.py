"""Offline construction of size indices from a tile archive."""

from __future__ import annotations

from collections import defaultdict
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Sequence, Tuple
import logging
import math
import os
import tempfile

from .archive import ArchiveReader
from .config import BuildConfig
from .quadtree import Branch, Leaf, QuadNode, SizeIndex, SizeIndexError
from .stats import EMPTY_STATS, Block, BlockData, BlockStatsCollector, Stats
from .utils import format_bytes, round_half_up


LOGGER = logging.getLogger(__name__)


class BlockFetchError(SizeIndexError):
    """Raised when the tile index of a block cannot be fetched."""


class QuadtreeBuilder:
    """Collapses a zoom level's tile lengths into a variance-pruned quadtree."""

    def __init__(self, min_node_size: int = 16, cv_threshold: float = 0.5) -> None:
        self.min_node_size = min_node_size
        self.cv_threshold = cv_threshold

    @classmethod
    def from_config(cls, config: BuildConfig) -> "QuadtreeBuilder":
        return cls(min_node_size=config.min_node_size, cv_threshold=config.cv_threshold)

    def build_level(self, collector: BlockStatsCollector, zoom: int) -> QuadNode:
        node, _ = self.build_node(collector, 0, 0, 1 << zoom)
        return node

    def build_node(
        self,
        collector: BlockStatsCollector,
        x_min: int,
        y_min: int,
        size: int,
    ) -> Tuple[QuadNode, Stats]:
        if not collector.has_blocks(x_min, y_min, size):
            return Leaf(0), EMPTY_STATS

        area = size * size
        if size <= self.min_node_size:
            stats = collector.collect(x_min, y_min, size)
            mean = stats.total / area if stats.tile_count else 0.0
            return Leaf(round_half_up(mean)), stats

        half = size // 2
        children = (
            self.build_node(collector, x_min, y_min, half),
            self.build_node(collector, x_min + half, y_min, half),
            self.build_node(collector, x_min, y_min + half, half),
            self.build_node(collector, x_min + half, y_min + half, half),
        )
        nodes = tuple(node for node, _ in children)
        stats = EMPTY_STATS
        for _, child_stats in children:
            stats = stats + child_stats

        if stats.tile_count == 0:
            return Leaf(0), stats

        mean = stats.total / stats.tile_count
        variance = max(0.0, stats.sum_of_squares / stats.tile_count - mean * mean)
        cv = math.sqrt(variance) / mean if mean > 0 else 0.0
        if cv < self.cv_threshold:
            return Leaf(round_half_up(stats.total / area)), stats

        first = nodes[0]
        if isinstance(first, Leaf) and all(node == first for node in nodes[1:]):
            return first, stats

        return Branch(nodes), stats  # type: ignore[arg-type]


class _Progress:
    def __init__(self, total: int, every: int) -> None:
        self.total = total
        self.every = max(1, every)
        self.completed = 0

    def advance(self) -> None:
        self.completed += 1
        if self.completed % self.every == 0 or self.completed == self.total:
            percent = (self.completed / self.total) * 100 if self.total else 100.0
            LOGGER.info("Fetching tile indices: %d/%d (%.1f%%)", self.completed, self.total, percent)


class SizeIndexBuilder:
    """Fetches block tile indices from an archive and builds every zoom level.

    Fetches run on a bounded thread pool. All blocks of a zoom level must
    arrive before that level's quadtree is built, and the first failed fetch
    aborts the whole build.
    """

    def __init__(self, reader: ArchiveReader, config: BuildConfig | None = None) -> None:
        self.reader = reader
        self.config = config or BuildConfig()
        self.quadtree = QuadtreeBuilder.from_config(self.config)

    def _group_blocks(self, zoom_min: int, zoom_max: int) -> Dict[int, List[Block]]:
        grouped: Dict[int, List[Block]] = defaultdict(list)
        for block in self.reader.get_block_index():
            if zoom_min <= block.level <= zoom_max:
                grouped[block.level].append(block)
        return grouped

    def fetch_blocks(
        self,
        blocks: Sequence[Block],
        on_complete: Callable[[], None] | None = None,
    ) -> List[BlockData]:
        results: List[BlockData] = []
        if not blocks:
            return results

        executor = ThreadPoolExecutor(
            max_workers=self.config.concurrency,
            thread_name_prefix="size-index-fetch",
        )
        future_to_block: Dict[Future, Block] = {
            executor.submit(self.reader.get_tile_index, block): block for block in blocks
        }
        try:
            for future in as_completed(future_to_block):
                block = future_to_block[future]
                try:
                    lengths = future.result()
                except Exception as exc:
                    raise BlockFetchError(
                        f"Failed to fetch tile index for block {block.column},{block.row} "
                        f"at zoom {block.level}: {exc}"
                    ) from exc
                results.append(BlockData.from_lengths(block, lengths))
                if on_complete is not None:
                    on_complete()
        except BaseException:
            executor.shutdown(wait=True, cancel_futures=True)
            raise
        executor.shutdown(wait=True)
        return results

    def build(self) -> SizeIndex:
        header = self.reader.get_header()
        grouped = self._group_blocks(header.zoom_min, header.zoom_max)
        progress = _Progress(sum(len(blocks) for blocks in grouped.values()), self.config.progress_every)

        levels: Dict[int, QuadNode] = {}
        for zoom in range(header.zoom_min, header.zoom_max + 1):
            blocks = grouped.get(zoom, [])
            if not blocks:
                levels[zoom] = Leaf(0)
                continue
            collector = BlockStatsCollector(self.fetch_blocks(blocks, progress.advance))
            levels[zoom] = self.quadtree.build_level(collector, zoom)
            LOGGER.debug("Built zoom %d from %d blocks", zoom, len(blocks))
        return SizeIndex(levels)

    def write(self, output_path: Path) -> Path:
        """Build the index and write it atomically to ``output_path``."""

        index = self.build()
        return write_index(index, output_path)


def write_index(index: SizeIndex, output_path: Path) -> Path:
    payload = index.dumps()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=output_path.parent, prefix=f".{output_path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_name, output_path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    LOGGER.info("Written %s to %s", format_bytes(len(payload)), output_path)
    return output_path


def build_index(reader: ArchiveReader, output_path: Path, config: BuildConfig | None = None) -> Path:
    LOGGER.info("Building %s", output_path)
    return SizeIndexBuilder(reader, config).write(output_path)


__all__ = [
    "BlockFetchError",
    "QuadtreeBuilder",
    "SizeIndexBuilder",
    "build_index",
    "write_index",
]
