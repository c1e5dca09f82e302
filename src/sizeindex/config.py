"""Configuration objects for building and querying size indices."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping
import os


@dataclass(frozen=True)
class DatasetConfig:
    """A tile dataset that has a size index."""

    key: str
    label: str
    hint: str = ""


DATASETS: Mapping[str, DatasetConfig] = {
    "osm": DatasetConfig(
        key="osm",
        label="OpenStreetMap",
        hint="Vector map data with streets, buildings, and labels",
    ),
    "satellite": DatasetConfig(
        key="satellite",
        label="Satellite Imagery",
        hint="Raster satellite and aerial imagery",
    ),
}


def get_dataset(key: str) -> DatasetConfig:
    dataset = DATASETS.get(key)
    if dataset is None:
        raise ValueError(f"Dataset '{key}' is not configured")
    return dataset


@dataclass(frozen=True)
class BuildConfig:
    """Settings for the offline index builder.

    ``min_node_size`` and ``cv_threshold`` shape the quadtree and are fixed per
    build; estimates are calibrated against the values an index was built with.
    """

    min_node_size: int = 16
    cv_threshold: float = 0.5
    concurrency: int = 4
    progress_every: int = 100
    output_dir: Path = field(default_factory=lambda: Path("static") / "data")

    def __post_init__(self) -> None:
        size = self.min_node_size
        if size < 1 or size & (size - 1):
            raise ValueError(f"min_node_size must be a power of two, got {size}")
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")

    @classmethod
    def from_env(cls) -> "BuildConfig":
        return cls(
            min_node_size=int(os.getenv("SIZE_INDEX_MIN_NODE_SIZE", "16")),
            cv_threshold=float(os.getenv("SIZE_INDEX_CV_THRESHOLD", "0.5")),
            concurrency=int(os.getenv("SIZE_INDEX_CONCURRENCY", "4")),
            output_dir=Path(os.getenv("SIZE_INDEX_OUTPUT_DIR", str(Path("static") / "data"))),
        )

    def index_path(self, dataset_key: str) -> Path:
        return self.output_dir / f"size-index-{dataset_key}.json"


@dataclass(frozen=True)
class EstimatorConfig:
    """Settings used when answering size queries."""

    base_path: str = "static"
    border: int = 3
    request_timeout: int = 30

    @classmethod
    def from_env(cls) -> "EstimatorConfig":
        return cls(
            base_path=os.getenv("SIZE_INDEX_BASE_PATH", "static"),
            border=int(os.getenv("SIZE_INDEX_BORDER", "3")),
            request_timeout=int(os.getenv("SIZE_INDEX_TIMEOUT", "30")),
        )


@dataclass(frozen=True)
class RedisConfig:
    """Optional Redis tier for sharing raw index payloads across processes."""

    url: str
    default_ttl_seconds: int = 86400
    namespace: str = "sizeindex"

    @classmethod
    def from_env(cls) -> "RedisConfig | None":
        url = os.getenv("REDIS_URL") or os.getenv("REDIS_PUBLIC_URL")
        if not url:
            return None
        ttl = int(os.getenv("REDIS_DEFAULT_TTL", "86400"))
        namespace = os.getenv("REDIS_NAMESPACE", "sizeindex")
        return cls(url=url, default_ttl_seconds=ttl, namespace=namespace)


__all__ = [
    "BuildConfig",
    "DatasetConfig",
    "EstimatorConfig",
    "RedisConfig",
    "DATASETS",
    "get_dataset",
]
