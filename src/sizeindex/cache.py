"""Loading size indices and memoising them per dataset."""

from __future__ import annotations

from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Dict
import logging
import threading

import redis
import requests
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..redis_cache import RedisCache
from .quadtree import IndexFormatError, SizeIndex, SizeIndexError


LOGGER = logging.getLogger(__name__)


class IndexLoadError(SizeIndexError):
    """Raised when a dataset's index cannot be fetched or read."""

    def __init__(self, dataset_key: str, cause: str) -> None:
        super().__init__(f"Failed to load size index for {dataset_key}: {cause}")
        self.dataset_key = dataset_key
        self.cause = cause


class IndexCache:
    """Get-or-insert memo of loaded indices.

    The first caller for a key runs the loader; concurrent callers for the
    same key wait on its future. Failed loads are not remembered.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[str, Future] = {}

    def __contains__(self, key: str) -> bool:
        with self._lock:
            future = self._entries.get(key)
        return future is not None and future.done() and future.exception() is None

    def get_or_load(self, key: str, loader: Callable[[], SizeIndex]) -> SizeIndex:
        with self._lock:
            future = self._entries.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._entries[key] = future

        if not owner:
            return future.result()

        try:
            index = loader()
        except BaseException as exc:
            with self._lock:
                if self._entries.get(key) is future:
                    del self._entries[key]
            future.set_exception(exc)
            raise
        future.set_result(index)
        return index

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def index_location(base_path: str, dataset_key: str) -> str:
    return f"{base_path.rstrip('/')}/data/size-index-{dataset_key}.json"


class SizeIndexLoader:
    """Fetches raw index payloads from a URL prefix or a local directory."""

    def __init__(
        self,
        base_path: str,
        *,
        timeout: int = 30,
        session: requests.Session | None = None,
        redis: RedisCache | None = None,
    ) -> None:
        self.base_path = base_path
        self.timeout = timeout
        self.redis = redis
        self._session = session

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=10),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
        reraise=True,
    )
    def _fetch_http(self, url: str) -> bytes:
        response = self.session.get(url, timeout=self.timeout)
        if not response.ok:
            raise requests.HTTPError(f"HTTP {response.status_code} for {url}", response=response)
        return response.content

    def fetch(self, dataset_key: str) -> bytes:
        location = index_location(self.base_path, dataset_key)
        LOGGER.debug("Loading size index %s", location)
        if location.startswith(("http://", "https://")):
            return self._fetch_http(location)
        return Path(location).read_bytes()

    def _cached(self, dataset_key: str) -> bytes | None:
        if self.redis is None:
            return None
        try:
            return self.redis.get(dataset_key)
        except redis.RedisError as exc:
            LOGGER.warning("Redis read failed for %s, fetching directly: %s", dataset_key, exc)
            return None

    def _remember(self, dataset_key: str, payload: bytes) -> None:
        if self.redis is None:
            return
        try:
            self.redis.set(payload, dataset_key)
        except redis.RedisError as exc:
            LOGGER.warning("Redis write failed for %s: %s", dataset_key, exc)

    def load(self, dataset_key: str) -> SizeIndex:
        payload = self._cached(dataset_key)
        if payload is None:
            try:
                payload = self.fetch(dataset_key)
            except (requests.RequestException, OSError) as exc:
                raise IndexLoadError(dataset_key, str(exc)) from exc
            index = SizeIndex.loads(payload)
            self._remember(dataset_key, payload)
            return index
        return SizeIndex.loads(payload)


def load_size_index(
    dataset_key: str,
    base_path: str,
    cache: IndexCache,
    loader: SizeIndexLoader | None = None,
) -> SizeIndex:
    loader = loader or SizeIndexLoader(base_path)

    def _load() -> SizeIndex:
        try:
            return loader.load(dataset_key)
        except IndexFormatError as exc:
            raise IndexFormatError(f"Size index for {dataset_key} is malformed: {exc}") from exc

    return cache.get_or_load(dataset_key, _load)


__all__ = [
    "IndexCache",
    "IndexLoadError",
    "SizeIndexLoader",
    "index_location",
    "load_size_index",
]
