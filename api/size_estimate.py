import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

load_dotenv(PROJECT_ROOT / ".env")

from src.redis_cache import RedisCache
from src.sizeindex.cache import IndexCache, IndexLoadError, SizeIndexLoader
from src.sizeindex.config import DATASETS, EstimatorConfig, RedisConfig
from src.sizeindex.estimator import COVERAGES, estimate_download_sizes
from src.sizeindex.quadtree import IndexFormatError
from src.sizeindex.tile_math import InvalidBBoxError
from src.sizeindex.utils import format_bytes


LOGGER = logging.getLogger(__name__)

CONFIG = EstimatorConfig.from_env()
REDIS_CONFIG = RedisConfig.from_env()
INDEX_CACHE = IndexCache()
LOADER = SizeIndexLoader(
    CONFIG.base_path,
    timeout=CONFIG.request_timeout,
    redis=RedisCache.from_config(REDIS_CONFIG) if REDIS_CONFIG else None,
)


def _json(status: int, payload: dict, *, headers: dict | None = None):
    base_headers = {"Content-Type": "application/json"}
    if headers:
        base_headers.update(headers)
    return status, base_headers, json.dumps(payload)


def _parse_bbox(raw: str | None):
    if not raw:
        return None
    parts = raw.split(",")
    if len(parts) != 4:
        raise InvalidBBoxError("bbox must be west,south,east,north")
    try:
        return [float(part) for part in parts]
    except ValueError as exc:
        raise InvalidBBoxError(f"bbox contains a non-numeric value: {raw}") from exc


def handler(request):  # Vercel-style handler
    if request.method != "GET":
        return _json(405, {"error": "Method not allowed"})

    args = request.args or {}
    keys = [key for key in (args.get("maps") or ",".join(DATASETS)).split(",") if key]
    unknown = [key for key in keys if key not in DATASETS]
    if unknown:
        return _json(400, {"error": f"Unknown maps: {', '.join(unknown)}"})

    coverage = args.get("coverage", "global")
    if coverage not in COVERAGES:
        return _json(400, {"error": f"coverage must be one of {', '.join(COVERAGES)}"})

    try:
        bbox = _parse_bbox(args.get("bbox"))
        estimates = estimate_download_sizes(
            [DATASETS[key] for key in keys],
            coverage,
            CONFIG.base_path,
            bbox,
            cache=INDEX_CACHE,
            loader=LOADER,
            border=CONFIG.border,
        )
    except InvalidBBoxError as exc:
        return _json(400, {"error": str(exc)})
    except (IndexLoadError, IndexFormatError) as exc:
        LOGGER.error("Size estimate failed: %s", exc)
        return _json(502, {"error": str(exc)})

    payload = {
        "estimates": [
            {**estimate.to_json(), "formatted": format_bytes(estimate.bytes)}
            for estimate in estimates
        ]
    }
    return _json(200, payload, headers={"Cache-Control": "public, max-age=300"})
