"""Web-Mercator slippy tile arithmetic."""

from __future__ import annotations

import math
from typing import Sequence, Tuple

import mercantile


BBox = mercantile.LngLatBbox

# Latitude limit of the square Web-Mercator world.
MAX_LATITUDE = 85.0511287798066


class InvalidBBoxError(ValueError):
    """Raised when a bounding box is malformed or outside WGS84 bounds."""


def lon2tile_x(lon: float, z: int) -> int:
    return math.floor((lon + 180.0) / 360.0 * (1 << z))


def lat2tile_y(lat: float, z: int) -> int:
    """Tile row for ``lat``; higher latitudes map to smaller rows."""

    lat = max(-MAX_LATITUDE, min(MAX_LATITUDE, lat))
    lat_rad = math.radians(lat)
    return math.floor(
        (1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * (1 << z)
    )


def validate_bbox(bbox: Sequence[float]) -> BBox:
    """Return ``bbox`` as a ``LngLatBbox`` (west, south, east, north) or raise."""

    try:
        values = [float(value) for value in bbox]
    except (TypeError, ValueError) as exc:
        raise InvalidBBoxError(f"Bounding box must contain four numbers: {bbox!r}") from exc
    if len(values) != 4:
        raise InvalidBBoxError(f"Bounding box must contain four numbers, got {len(values)}")
    if not all(math.isfinite(value) for value in values):
        raise InvalidBBoxError(f"Bounding box contains non-finite values: {values}")

    west, south, east, north = values
    if not (-180.0 <= west <= 180.0 and -180.0 <= east <= 180.0):
        raise InvalidBBoxError(f"Longitude out of range in {values}")
    if not (-90.0 <= south <= 90.0 and -90.0 <= north <= 90.0):
        raise InvalidBBoxError(f"Latitude out of range in {values}")
    if west > east:
        raise InvalidBBoxError(f"West edge {west} is east of east edge {east}")
    if south > north:
        raise InvalidBBoxError(f"South edge {south} is north of north edge {north}")
    return BBox(west, south, east, north)


def bbox_to_tile_rect(bbox: BBox, zoom: int, border: int = 0) -> Tuple[int, int, int, int]:
    """Inclusive ``(x_min, y_min, x_max, y_max)`` covering ``bbox`` plus ``border`` tiles."""

    last = (1 << zoom) - 1
    x_min = max(0, lon2tile_x(bbox.west, zoom) - border)
    x_max = min(last, lon2tile_x(bbox.east, zoom) + border)
    y_min = max(0, lat2tile_y(bbox.north, zoom) - border)
    y_max = min(last, lat2tile_y(bbox.south, zoom) + border)
    return x_min, y_min, x_max, y_max


__all__ = [
    "BBox",
    "InvalidBBoxError",
    "MAX_LATITUDE",
    "bbox_to_tile_rect",
    "lat2tile_y",
    "lon2tile_x",
    "validate_bbox",
]
