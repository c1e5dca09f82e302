from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from pmtiles.tile import Compression, TileType, tileid_to_zxy, zxy_to_tileid
from pmtiles.writer import write as pmtiles_write

from src.sizeindex.archive import ArchiveHeader, PMTilesArchive, hilbert_positions, zoom_base
from src.sizeindex.builder import SizeIndexBuilder
from src.sizeindex.quadtree import Leaf
from src.sizeindex.stats import Block


TILES = {
    (0, 0, 0): b"x" * 10,
    (1, 0, 0): b"a" * 5,
    (1, 1, 1): b"b" * 7,
    (9, 300, 10): b"c" * 20,
    (9, 301, 10): b"d" * 30,
    (9, 5, 400): b"e" * 3,
}


def _header(min_zoom: int, max_zoom: int) -> dict:
    return {
        "clustered": False,
        "internal_compression": Compression.GZIP,
        "tile_compression": Compression.NONE,
        "tile_type": TileType.MVT,
        "root_offset": 0,
        "root_length": 0,
        "metadata_offset": 0,
        "metadata_length": 0,
        "leaf_directory_offset": 0,
        "leaf_directory_length": 0,
        "tile_data_offset": 0,
        "tile_data_length": 0,
        "min_zoom": min_zoom,
        "max_zoom": max_zoom,
        "min_lon_e7": -1_800_000_000,
        "min_lat_e7": -850_000_000,
        "max_lon_e7": 1_800_000_000,
        "max_lat_e7": 850_000_000,
        "center_zoom": 0,
        "center_lon_e7": 0,
        "center_lat_e7": 0,
    }


@pytest.fixture()
def archive_path(tmp_path: Path) -> Path:
    path = tmp_path / "sample.pmtiles"
    with pmtiles_write(str(path)) as writer:
        for (z, x, y), payload in sorted(TILES.items(), key=lambda item: zxy_to_tileid(*item[0])):
            writer.write_tile(zxy_to_tileid(z, x, y), payload)
        writer.finalize(_header(0, 9), {"name": "sample"})
    return path


@pytest.mark.parametrize("zoom", [0, 1, 3, 9])
def test_hilbert_positions_match_pmtiles(zoom: int) -> None:
    count = min(1 << (2 * zoom), 4096)
    ids = np.arange(count) * max(1, (1 << (2 * zoom)) // count)
    xs, ys = hilbert_positions(zoom, ids)
    for tile_id, x, y in zip(ids, xs, ys):
        assert tileid_to_zxy(zoom_base(zoom) + int(tile_id)) == (zoom, int(x), int(y))


def test_header(archive_path: Path) -> None:
    with PMTilesArchive.open(archive_path) as archive:
        assert archive.get_header() == ArchiveHeader(zoom_min=0, zoom_max=9)


def test_block_index_groups_tiles(archive_path: Path) -> None:
    with PMTilesArchive.open(archive_path) as archive:
        blocks = set(archive.get_block_index())

    assert blocks == {
        Block(level=0, column=0, row=0, col_max=0, row_max=0),
        Block(level=1, column=0, row=0, col_max=1, row_max=1),
        Block(level=9, column=1, row=0),
        Block(level=9, column=0, row=1),
    }


def test_tile_index_lengths_are_row_major(archive_path: Path) -> None:
    with PMTilesArchive.open(archive_path) as archive:
        low = archive.get_tile_index(Block(level=1, column=0, row=0, col_max=1, row_max=1))
        high = archive.get_tile_index(Block(level=9, column=1, row=0))

    assert list(low) == [5, 0, 0, 7]
    grid = np.asarray(high).reshape(256, 256)
    assert grid[10, 44] == 20
    assert grid[10, 45] == 30
    assert int(np.count_nonzero(grid)) == 2


def test_builds_index_from_pmtiles(archive_path: Path) -> None:
    with PMTilesArchive.open(archive_path) as archive:
        index = SizeIndexBuilder(archive).build()

    assert index.zooms == tuple(range(10))
    assert index.levels[0] == Leaf(10)
    assert index.levels[1] == Leaf(3)
    assert index.levels[4] == Leaf(0)
    # Three tiles in a 512x512 grid average out below half a byte per tile.
    assert index.levels[9] == Leaf(0)
