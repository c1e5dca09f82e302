"""Tile archive readers that expose per-tile byte lengths grouped into blocks."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, List, Sequence, Tuple
import logging
import math

import numpy as np
import requests
from pmtiles.reader import MmapSource
from pmtiles.tile import Entry, deserialize_directory, deserialize_header, zxy_to_tileid
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .quadtree import SizeIndexError
from .stats import BLOCK_SHIFT, BLOCK_SIZE, Block


LOGGER = logging.getLogger(__name__)

HEADER_LENGTH = 127
TILES_PER_BLOCK = BLOCK_SIZE * BLOCK_SIZE

GetBytes = Callable[[int, int], bytes]


class ArchiveError(SizeIndexError):
    """Raised when an archive cannot be read."""


@dataclass(frozen=True)
class ArchiveHeader:
    zoom_min: int
    zoom_max: int


class ArchiveReader(ABC):
    """Source of per-tile byte lengths for the index builder."""

    @abstractmethod
    def get_header(self) -> ArchiveHeader:
        """Zoom range covered by the archive."""

    @abstractmethod
    def get_block_index(self) -> Iterable[Block]:
        """Every block that holds at least one tile."""

    @abstractmethod
    def get_tile_index(self, block: Block) -> Sequence[int]:
        """Row-major tile lengths over the block's row/column bounds."""


class HttpRangeSource:
    """``get_bytes`` callable backed by HTTP range requests."""

    def __init__(self, url: str, *, timeout: int = 60, session: requests.Session | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": "tile-size-index/1.0"})

    def close(self) -> None:
        self._session.close()

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=30),
        stop=stop_after_attempt(5),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    )
    def __call__(self, offset: int, length: int) -> bytes:
        headers = {"Range": f"bytes={offset}-{offset + length - 1}"}
        response = self._session.get(self.url, headers=headers, timeout=self.timeout)
        response.raise_for_status()
        content = response.content
        if response.status_code == 200 and len(content) != length:
            # Server ignored the range header and sent the whole file.
            content = content[offset : offset + length]
        if len(content) != length:
            raise ArchiveError(
                f"Short read from {self.url}: wanted {length} bytes at {offset}, got {len(content)}"
            )
        return content


def zoom_base(z: int) -> int:
    """First tile id of zoom level ``z``."""

    return ((1 << (2 * z)) - 1) // 3


def zoom_of_tile_id(tile_id: int) -> int:
    z = 0
    while zoom_base(z + 1) <= tile_id:
        z += 1
    return z


def hilbert_positions(zoom: int, positions: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Vectorised Hilbert distance to (x, y) on a 2^zoom grid."""

    t = positions.astype(np.int64)
    x = np.zeros_like(t)
    y = np.zeros_like(t)
    s = 1
    n = 1 << zoom
    while s < n:
        rx = (t >> 1) & 1
        ry = (t ^ rx) & 1
        flip = (ry == 0) & (rx == 1)
        x = np.where(flip, s - 1 - x, x)
        y = np.where(flip, s - 1 - y, y)
        swap = ry == 0
        x, y = np.where(swap, y, x), np.where(swap, x, y)
        x = x + s * rx
        y = y + s * ry
        t = t >> 2
        s <<= 1
    return x, y


class PMTilesArchive(ArchiveReader):
    """Reads tile lengths from PMTiles v3 directories without touching tile data.

    Tiles are grouped into 256x256 blocks aligned to the tile grid. Because
    aligned squares are contiguous runs of the Hilbert curve, every block is
    one tile id range, so a block's lengths come from the directory entries
    of that range alone.
    """

    def __init__(self, get_bytes: GetBytes, *, closer: Callable[[], None] | None = None) -> None:
        self._get_bytes = get_bytes
        self._closer = closer
        self._header = deserialize_header(get_bytes(0, HEADER_LENGTH))
        self._root = deserialize_directory(
            get_bytes(self._header["root_offset"], self._header["root_length"])
        )
        self._leaf_directory = lru_cache(maxsize=256)(self._read_leaf_directory)

    @classmethod
    def open(cls, source: str | Path, *, timeout: int = 60) -> "PMTilesArchive":
        text = str(source)
        if text.startswith(("http://", "https://")):
            http = HttpRangeSource(text, timeout=timeout)
            return cls(http, closer=http.close)
        fh = Path(source).open("rb")
        try:
            return cls(MmapSource(fh), closer=fh.close)
        except BaseException:
            fh.close()
            raise

    def close(self) -> None:
        if self._closer is not None:
            self._closer()
            self._closer = None

    def __enter__(self) -> "PMTilesArchive":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _read_leaf_directory(self, offset: int, length: int) -> List[Entry]:
        base = self._header["leaf_directory_offset"]
        return deserialize_directory(self._get_bytes(base + offset, length))

    def _scan(self, entries: List[Entry], start: int, end: float) -> Iterator[Entry]:
        for i, entry in enumerate(entries):
            if entry.tile_id >= end:
                break
            if entry.run_length > 0:
                if entry.tile_id + entry.run_length > start:
                    yield entry
                continue
            upper = entries[i + 1].tile_id if i + 1 < len(entries) else math.inf
            if upper > start:
                yield from self._scan(self._leaf_directory(entry.offset, entry.length), start, end)

    def get_header(self) -> ArchiveHeader:
        return ArchiveHeader(zoom_min=self._header["min_zoom"], zoom_max=self._header["max_zoom"])

    def _block_for(self, zoom: int, ordinal: int) -> Block:
        if zoom < BLOCK_SHIFT:
            last = (1 << zoom) - 1
            return Block(level=zoom, column=0, row=0, col_max=last, row_max=last)
        block_zoom = zoom - BLOCK_SHIFT
        x, y = hilbert_positions(block_zoom, np.array([ordinal]))
        return Block(level=zoom, column=int(x[0]), row=int(y[0]))

    def get_block_index(self) -> List[Block]:
        seen: Dict[Tuple[int, int], None] = {}
        for entry in self._scan(self._root, 0, math.inf):
            first = entry.tile_id
            last = entry.tile_id + entry.run_length - 1
            zoom = zoom_of_tile_id(first)
            while first <= last:
                base = zoom_base(zoom)
                zoom_end = zoom_base(zoom + 1) - 1
                upto = min(last, zoom_end)
                if zoom < BLOCK_SHIFT:
                    seen.setdefault((zoom, 0), None)
                else:
                    for ordinal in range((first - base) // TILES_PER_BLOCK, (upto - base) // TILES_PER_BLOCK + 1):
                        seen.setdefault((zoom, ordinal), None)
                first = upto + 1
                zoom += 1
        blocks = [self._block_for(zoom, ordinal) for zoom, ordinal in seen]
        LOGGER.info("Archive holds %d blocks", len(blocks))
        return blocks

    def _tile_id_range(self, block: Block) -> Tuple[int, int]:
        zoom = block.level
        if zoom < BLOCK_SHIFT:
            return zoom_base(zoom), zoom_base(zoom + 1)
        block_zoom = zoom - BLOCK_SHIFT
        ordinal = zxy_to_tileid(block_zoom, block.column, block.row) - zoom_base(block_zoom)
        start = zoom_base(zoom) + ordinal * TILES_PER_BLOCK
        return start, start + TILES_PER_BLOCK

    def get_tile_index(self, block: Block) -> np.ndarray:
        start, end = self._tile_id_range(block)
        tile_ids: List[np.ndarray] = []
        lengths: List[np.ndarray] = []
        for entry in self._scan(self._root, start, end):
            lo = max(entry.tile_id, start)
            hi = min(entry.tile_id + entry.run_length, end)
            tile_ids.append(np.arange(lo, hi, dtype=np.int64))
            lengths.append(np.full(hi - lo, entry.length, dtype=np.int64))

        grid = np.zeros((block.height, block.width), dtype=np.int64)
        if tile_ids:
            ids = np.concatenate(tile_ids)
            x, y = hilbert_positions(block.level, ids - zoom_base(block.level))
            rows = y - (block.row << BLOCK_SHIFT) - block.row_min
            cols = x - (block.column << BLOCK_SHIFT) - block.col_min
            grid[rows, cols] = np.concatenate(lengths)
        return grid.reshape(-1)


__all__ = [
    "ArchiveError",
    "ArchiveHeader",
    "ArchiveReader",
    "HttpRangeSource",
    "PMTilesArchive",
    "hilbert_positions",
    "zoom_base",
]
