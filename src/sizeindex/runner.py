"""Command line interface for building and querying size indices."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from dotenv import load_dotenv

from ..redis_cache import RedisCache
from .archive import PMTilesArchive
from .builder import build_index
from .cache import IndexCache, SizeIndexLoader
from .config import DATASETS, BuildConfig, EstimatorConfig, RedisConfig, get_dataset
from .estimator import COVERAGES, estimate_download_sizes, estimate_zoom_breakdown
from .quadtree import SizeIndex, SizeIndexError
from .utils import format_bytes


LOGGER = logging.getLogger(__name__)


def run_build(args: argparse.Namespace) -> int:
    config = BuildConfig.from_env()
    if args.output_dir:
        config = replace(config, output_dir=Path(args.output_dir))
    if args.concurrency:
        config = replace(config, concurrency=args.concurrency)
    get_dataset(args.dataset)

    output_path = config.index_path(args.dataset)
    LOGGER.info("Building %s from %s", output_path, args.source)
    with PMTilesArchive.open(args.source) as archive:
        build_index(archive, output_path, config)
    return 0


def run_estimate(args: argparse.Namespace) -> int:
    index = SizeIndex.read(Path(args.index))
    border = EstimatorConfig.from_env().border

    started = time.perf_counter()
    rows = estimate_zoom_breakdown(
        index,
        (args.west, args.south, args.east, args.north),
        args.zoom_min,
        args.zoom_max,
        border=border,
    )
    elapsed_ms = (time.perf_counter() - started) * 1000

    print("Zoom | Tiles       | Est. Size")
    print("-----|-------------|----------")
    for row in rows:
        print(f"{row.zoom:>4} | {row.tiles:>11} | {format_bytes(row.bytes)}")
    print("-----|-------------|----------")
    total_tiles = sum(row.tiles for row in rows)
    total_bytes = sum(row.bytes for row in rows)
    print(f"     | {total_tiles:>11} | {format_bytes(total_bytes)}")
    print(f"Estimation: {elapsed_ms:.3f}ms")
    return 0


def run_sizes(args: argparse.Namespace) -> int:
    config = EstimatorConfig.from_env()
    redis_config = RedisConfig.from_env()
    loader = SizeIndexLoader(
        args.base_path or config.base_path,
        timeout=config.request_timeout,
        redis=RedisCache.from_config(redis_config) if redis_config else None,
    )
    datasets = [get_dataset(key) for key in args.maps]
    try:
        estimates = estimate_download_sizes(
            datasets,
            args.coverage,
            loader.base_path,
            args.bbox,
            cache=IndexCache(),
            loader=loader,
            border=config.border,
            zoom_min=args.zoom_min,
            zoom_max=args.zoom_max,
        )
    finally:
        loader.close()
    for estimate in estimates:
        print(f"{estimate.label}: {format_bytes(estimate.bytes)} ({estimate.bytes} bytes)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Tile download size index")
    subparsers = parser.add_subparsers(dest="command", required=True)

    build = subparsers.add_parser("build", help="Build a size index from a PMTiles archive")
    build.add_argument("--dataset", required=True, choices=sorted(DATASETS))
    build.add_argument("--source", required=True, help="PMTiles file path or URL")
    build.add_argument("--output-dir", help="Directory for size-index-<dataset>.json")
    build.add_argument("--concurrency", type=int, help="Simultaneous block fetches")
    build.set_defaults(func=run_build)

    estimate = subparsers.add_parser("estimate", help="Per-zoom estimate for a bounding box")
    estimate.add_argument("index", help="Path to a size index JSON file")
    for name in ("west", "south", "east", "north"):
        estimate.add_argument(name, type=float)
    estimate.add_argument("zoom_min", type=int)
    estimate.add_argument("zoom_max", type=int)
    estimate.set_defaults(func=run_estimate)

    sizes = subparsers.add_parser("sizes", help="Total estimates for configured datasets")
    sizes.add_argument("--maps", nargs="+", default=sorted(DATASETS), choices=sorted(DATASETS))
    sizes.add_argument("--coverage", choices=COVERAGES, default="global")
    sizes.add_argument("--bbox", nargs=4, type=float, metavar=("WEST", "SOUTH", "EAST", "NORTH"))
    sizes.add_argument("--base-path", help="URL prefix or directory containing data/")
    sizes.add_argument("--zoom-min", type=int)
    sizes.add_argument("--zoom-max", type=int)
    sizes.set_defaults(func=run_sizes)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (SizeIndexError, ValueError) as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
