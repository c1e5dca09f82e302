"""Approximate download sizes from a size index."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence
import logging

from .cache import IndexCache, SizeIndexLoader, load_size_index
from .config import DatasetConfig
from .quadtree import Leaf, QuadNode, SizeIndex
from .tile_math import BBox, bbox_to_tile_rect, validate_bbox


LOGGER = logging.getLogger(__name__)

BORDER = 3
COVERAGE_GLOBAL = "global"
COVERAGE_BBOX = "bbox"
COVERAGES = (COVERAGE_GLOBAL, COVERAGE_BBOX)


@dataclass(frozen=True)
class SizeEstimate:
    dataset_key: str
    label: str
    bytes: int

    def to_json(self) -> dict:
        return {"datasetKey": self.dataset_key, "label": self.label, "bytes": self.bytes}


@dataclass(frozen=True)
class ZoomEstimate:
    zoom: int
    tiles: int
    bytes: int


def estimate_size(
    node: QuadNode,
    node_x: int,
    node_y: int,
    node_size: int,
    qx_min: int,
    qy_min: int,
    qx_max: int,
    qy_max: int,
) -> int:
    """Bytes for the half-open query ``[qx_min, qx_max) x [qy_min, qy_max)``.

    A leaf spreads its value uniformly over its square, so partially covered
    leaves contribute in proportion to the overlapping tile count.
    """

    if (
        node_x >= qx_max
        or node_x + node_size <= qx_min
        or node_y >= qy_max
        or node_y + node_size <= qy_min
    ):
        return 0

    if isinstance(node, Leaf):
        width = min(node_x + node_size, qx_max) - max(node_x, qx_min)
        height = min(node_y + node_size, qy_max) - max(node_y, qy_min)
        return node.value * width * height

    half = node_size // 2
    nw, ne, sw, se = node.children
    return (
        estimate_size(nw, node_x, node_y, half, qx_min, qy_min, qx_max, qy_max)
        + estimate_size(ne, node_x + half, node_y, half, qx_min, qy_min, qx_max, qy_max)
        + estimate_size(sw, node_x, node_y + half, half, qx_min, qy_min, qx_max, qy_max)
        + estimate_size(se, node_x + half, node_y + half, half, qx_min, qy_min, qx_max, qy_max)
    )


def estimate_level(root: QuadNode, zoom: int, bbox: Optional[BBox] = None, border: int = BORDER) -> int:
    grid_size = 1 << zoom
    if bbox is None:
        return estimate_size(root, 0, 0, grid_size, 0, 0, grid_size, grid_size)
    x_min, y_min, x_max, y_max = bbox_to_tile_rect(bbox, zoom, border)
    return estimate_size(root, 0, 0, grid_size, x_min, y_min, x_max + 1, y_max + 1)


def _in_range(zoom: int, zoom_min: Optional[int], zoom_max: Optional[int]) -> bool:
    return (zoom_min is None or zoom >= zoom_min) and (zoom_max is None or zoom <= zoom_max)


def estimate_index(
    index: SizeIndex,
    bbox: Optional[BBox] = None,
    *,
    border: int = BORDER,
    zoom_min: Optional[int] = None,
    zoom_max: Optional[int] = None,
) -> int:
    return sum(
        estimate_level(root, zoom, bbox, border)
        for zoom, root in index
        if _in_range(zoom, zoom_min, zoom_max)
    )


def estimate_download_sizes(
    datasets: Iterable[DatasetConfig],
    coverage: str,
    base_path: str,
    bbox: Optional[Sequence[float]] = None,
    *,
    cache: IndexCache,
    loader: SizeIndexLoader | None = None,
    border: int = BORDER,
    zoom_min: Optional[int] = None,
    zoom_max: Optional[int] = None,
) -> List[SizeEstimate]:
    """Total estimated bytes per dataset, in the order requested."""

    if coverage not in COVERAGES:
        raise ValueError(f"Unknown coverage '{coverage}', expected one of {COVERAGES}")
    query = None
    if coverage == COVERAGE_BBOX and bbox is not None:
        query = validate_bbox(bbox)

    owned = loader is None
    if owned:
        loader = SizeIndexLoader(base_path)
    results: List[SizeEstimate] = []
    try:
        for dataset in datasets:
            index = load_size_index(dataset.key, base_path, cache, loader)
            total = estimate_index(index, query, border=border, zoom_min=zoom_min, zoom_max=zoom_max)
            LOGGER.debug("Estimated %d bytes for %s", total, dataset.key)
            results.append(SizeEstimate(dataset_key=dataset.key, label=dataset.label, bytes=total))
    finally:
        if owned:
            loader.close()
    return results


def estimate_zoom_breakdown(
    index: SizeIndex,
    bbox: Sequence[float],
    zoom_min: int,
    zoom_max: int,
    border: int = BORDER,
) -> List[ZoomEstimate]:
    query = validate_bbox(bbox)
    rows: List[ZoomEstimate] = []
    for zoom in range(zoom_min, zoom_max + 1):
        root = index.levels.get(zoom)
        if root is None:
            rows.append(ZoomEstimate(zoom, 0, 0))
            continue
        x_min, y_min, x_max, y_max = bbox_to_tile_rect(query, zoom, border)
        tiles = (x_max - x_min + 1) * (y_max - y_min + 1)
        rows.append(ZoomEstimate(zoom, tiles, estimate_level(root, zoom, query, border)))
    return rows


__all__ = [
    "BORDER",
    "COVERAGES",
    "SizeEstimate",
    "ZoomEstimate",
    "estimate_download_sizes",
    "estimate_index",
    "estimate_level",
    "estimate_size",
    "estimate_zoom_breakdown",
]
