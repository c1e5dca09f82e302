from __future__ import annotations

from pathlib import Path

import pytest

from src.sizeindex.builder import write_index
from src.sizeindex.estimator import estimate_size
from src.sizeindex.quadtree import Branch, IndexFormatError, Leaf, SizeIndex, count_nodes


def _sample_index() -> SizeIndex:
    return SizeIndex(
        {
            3: Branch((Leaf(5), Branch((Leaf(1), Leaf(2), Leaf(3), Leaf(4))), Leaf(0), Leaf(9))),
            0: Leaf(1000),
            1: Branch((Leaf(500), Leaf(600), Leaf(700), Leaf(800))),
        }
    )


def test_dumps_is_compact_and_sorted_by_zoom() -> None:
    index = SizeIndex({1: Branch((Leaf(500), Leaf(600), Leaf(700), Leaf(800))), 0: Leaf(1000)})
    assert index.dumps() == '{"levels":{"0":1000,"1":[500,600,700,800]}}'
    assert index.zooms == (0, 1)


def test_round_trip_preserves_estimates(tmp_path: Path) -> None:
    index = _sample_index()
    path = write_index(index, tmp_path / "size-index-osm.json")

    reloaded = SizeIndex.read(path)

    assert dict(reloaded.levels) == dict(index.levels)
    queries = [(0, 0, 8, 8), (1, 1, 7, 3), (4, 0, 6, 2), (2, 5, 8, 8), (0, 0, 1, 1)]
    for zoom, root in index:
        size = 1 << zoom
        for query in queries:
            assert estimate_size(reloaded.levels[zoom], 0, 0, size, *query) == estimate_size(
                root, 0, 0, size, *query
            )
    assert list(tmp_path.iterdir()) == [path]


def test_levels_are_read_only() -> None:
    index = _sample_index()
    with pytest.raises(TypeError):
        index.levels[4] = Leaf(1)  # type: ignore[index]


def test_count_nodes() -> None:
    assert count_nodes(Leaf(1)) == 1
    assert count_nodes(_sample_index().levels[3]) == 9


@pytest.mark.parametrize(
    "payload",
    [
        '{"levels": {"1": [1, 2, 3]}}',
        '{"levels": {"1": [1, 2, 3, 4, 5]}}',
        '{"levels": {"0": [1, 2, 3, 4]}}',
        '{"levels": {"1": [[1, 2, 3, 4], 2, 3, 4]}}',
        '{"levels": {"2": -5}}',
        '{"levels": {"2": "100"}}',
        '{"levels": {"2": true}}',
        '{"levels": {"2": 1.5}}',
        '{"levels": {"z": 1}}',
        '{"levels": [1, 2]}',
        '{"zoom": {}}',
        "[]",
        "not json",
        b'{"levels":{"0":\xff}}',
        '{"levels": {"1": 5, "01": 7}}',
    ],
)
def test_structural_errors_are_classified(payload: str | bytes) -> None:
    with pytest.raises(IndexFormatError):
        SizeIndex.loads(payload)


def test_branch_requires_four_children() -> None:
    with pytest.raises(IndexFormatError):
        Branch((Leaf(1), Leaf(2)))  # type: ignore[arg-type]


def test_integral_floats_are_accepted() -> None:
    index = SizeIndex.loads('{"levels": {"0": 12.0}}')
    assert index.levels[0] == Leaf(12)
