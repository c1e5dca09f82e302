"""Approximate download size index for planet-scale tile pyramids."""

from .config import BuildConfig, DatasetConfig, EstimatorConfig, RedisConfig, DATASETS
from .quadtree import Branch, Leaf, QuadNode, SizeIndex, SizeIndexError, IndexFormatError
from .estimator import SizeEstimate, estimate_download_sizes, estimate_size
from .cache import IndexCache, IndexLoadError, SizeIndexLoader, load_size_index

__all__ = [
    "BuildConfig",
    "DatasetConfig",
    "EstimatorConfig",
    "RedisConfig",
    "DATASETS",
    "Branch",
    "Leaf",
    "QuadNode",
    "SizeIndex",
    "SizeIndexError",
    "IndexFormatError",
    "SizeEstimate",
    "estimate_download_sizes",
    "estimate_size",
    "IndexCache",
    "IndexLoadError",
    "SizeIndexLoader",
    "load_size_index",
]
