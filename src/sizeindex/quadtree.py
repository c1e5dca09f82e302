"""Quadtree nodes and the persisted size index."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Tuple, Union
import json


class SizeIndexError(RuntimeError):
    """Base class for size index failures."""


class IndexFormatError(SizeIndexError):
    """Raised when an index payload does not have the expected structure."""


@dataclass(frozen=True)
class Leaf:
    """Uniform approximate byte cost for every tile of a node's square."""

    value: int


@dataclass(frozen=True)
class Branch:
    """Four quadrants ordered NW, NE, SW, SE."""

    children: Tuple["QuadNode", "QuadNode", "QuadNode", "QuadNode"]

    def __post_init__(self) -> None:
        if len(self.children) != 4:
            raise IndexFormatError(f"Branch needs 4 children, got {len(self.children)}")


QuadNode = Union[Leaf, Branch]


def node_to_json(node: QuadNode) -> Any:
    if isinstance(node, Leaf):
        return node.value
    return [node_to_json(child) for child in node.children]


def node_from_json(payload: Any, path: str = "root", max_depth: int | None = None) -> QuadNode:
    """Decode a leaf-or-list payload; ``max_depth`` bounds branch nesting (the zoom level)."""

    # bool is an int subclass but never a valid leaf
    if isinstance(payload, bool):
        raise IndexFormatError(f"{path}: expected integer or list, got boolean")
    if isinstance(payload, int):
        if payload < 0:
            raise IndexFormatError(f"{path}: negative leaf value {payload}")
        return Leaf(payload)
    if isinstance(payload, float) and payload.is_integer() and payload >= 0:
        return Leaf(int(payload))
    if isinstance(payload, list):
        if len(payload) != 4:
            raise IndexFormatError(f"{path}: branch has {len(payload)} children, expected 4")
        if max_depth is not None and max_depth <= 0:
            raise IndexFormatError(f"{path}: branch nested below single-tile size")
        depth = None if max_depth is None else max_depth - 1
        return Branch(
            tuple(node_from_json(child, f"{path}[{i}]", depth) for i, child in enumerate(payload))  # type: ignore[arg-type]
        )
    raise IndexFormatError(f"{path}: expected integer or list, got {type(payload).__name__}")


def count_nodes(node: QuadNode) -> int:
    if isinstance(node, Leaf):
        return 1
    return 1 + sum(count_nodes(child) for child in node.children)


@dataclass(frozen=True)
class SizeIndex:
    """Read-only mapping from zoom level to the root node of that level."""

    levels: Mapping[int, QuadNode] = field(default_factory=dict)

    def __post_init__(self) -> None:
        frozen = MappingProxyType(dict(sorted(self.levels.items())))
        object.__setattr__(self, "levels", frozen)

    def __iter__(self) -> Iterator[Tuple[int, QuadNode]]:
        return iter(self.levels.items())

    def __len__(self) -> int:
        return len(self.levels)

    @property
    def zooms(self) -> Tuple[int, ...]:
        return tuple(self.levels)

    def to_json(self) -> Dict[str, Any]:
        return {"levels": {str(z): node_to_json(node) for z, node in self.levels.items()}}

    def dumps(self) -> str:
        return json.dumps(self.to_json(), separators=(",", ":"))

    @classmethod
    def from_json(cls, payload: Any) -> "SizeIndex":
        """Validate ``payload`` eagerly and build the index."""

        if not isinstance(payload, dict) or not isinstance(payload.get("levels"), dict):
            raise IndexFormatError("Index must be an object with a 'levels' object")
        levels: Dict[int, QuadNode] = {}
        for key, node in payload["levels"].items():
            try:
                zoom = int(key)
            except (TypeError, ValueError) as exc:
                raise IndexFormatError(f"Invalid zoom level key {key!r}") from exc
            if zoom < 0 or zoom > 30:
                raise IndexFormatError(f"Zoom level {zoom} out of range")
            if zoom in levels:
                raise IndexFormatError(f"Duplicate zoom level {zoom} (key {key!r})")
            levels[zoom] = node_from_json(node, f"levels[{zoom}]", zoom)
        return cls(levels)

    @classmethod
    def loads(cls, text: str | bytes) -> "SizeIndex":
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise IndexFormatError(f"Index is not valid JSON: {exc}") from exc
        return cls.from_json(payload)

    @classmethod
    def read(cls, path: Path) -> "SizeIndex":
        return cls.loads(path.read_bytes())


__all__ = [
    "Branch",
    "IndexFormatError",
    "Leaf",
    "QuadNode",
    "SizeIndex",
    "SizeIndexError",
    "count_nodes",
    "node_from_json",
    "node_to_json",
]
