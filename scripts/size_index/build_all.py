"""Build size indices for every configured dataset.

Usage
-----

    python scripts/size_index/build_all.py [--output-dir static/data]

Environment
-----------

Each dataset reads its archive location from ``SIZE_INDEX_SOURCE_<KEY>``
(for example ``SIZE_INDEX_SOURCE_OSM``); datasets without a source are
skipped. Quadtree parameters come from ``BuildConfig.from_env()``.
"""

from __future__ import annotations

import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

DOTENV_PATH = PROJECT_ROOT / ".env"
if DOTENV_PATH.exists():
    load_dotenv(DOTENV_PATH)

from src.sizeindex.archive import PMTilesArchive  # noqa: E402
from src.sizeindex.builder import build_index  # noqa: E402
from src.sizeindex.config import DATASETS, BuildConfig  # noqa: E402


LOGGER = logging.getLogger("build_size_indices")


def main() -> int:
    parser = argparse.ArgumentParser(description="Build size indices for all datasets")
    parser.add_argument("--output-dir", help="Override SIZE_INDEX_OUTPUT_DIR")
    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="[%(levelname)s] %(message)s")

    config = BuildConfig.from_env()
    if args.output_dir:
        config = replace(config, output_dir=Path(args.output_dir))

    built = 0
    for key in DATASETS:
        source = os.getenv(f"SIZE_INDEX_SOURCE_{key.upper()}")
        if not source:
            LOGGER.warning("No source configured for %s; skipping", key)
            continue
        with PMTilesArchive.open(source) as archive:
            build_index(archive, config.index_path(key), config)
        built += 1

    LOGGER.info("Built %d size indices into %s", built, config.output_dir)
    return 0


if __name__ == "__main__":
    sys.exit(main())
