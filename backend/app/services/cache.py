"""
Caching Service.

Redis-backed JSON cache for load detail and match results. The cache is an
optimization only: every error is logged and treated as a miss.
"""

import json
import logging
from typing import Any, Optional

import backend.app.core.redis_client as redis_client_module
from backend.app.core.config import settings

logger = logging.getLogger(__name__)


def load_key(load_id: int) -> str:
    return f"load:{load_id}"


def load_matches_key(load_id: int) -> str:
    return f"matches:load:{load_id}"


def posting_matches_key(posting_id: int) -> str:
    return f"matches:posting:{posting_id}"


def org_loads_key(org_id: int) -> str:
    return f"loads:org:{org_id}"


class CacheService:

    @staticmethod
    async def get(key: str) -> Optional[Any]:
        try:
            raw = await redis_client_module.redis_client.get(key)
        except Exception as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None

        if raw is None:
            return None
        return json.loads(raw)

    @staticmethod
    async def set(key: str, data: Any, ttl_seconds: Optional[int] = None) -> None:
        try:
            await redis_client_module.redis_client.set(
                key,
                json.dumps(data, default=str),
                ex=ttl_seconds or settings.cache_ttl_seconds,
            )
        except Exception as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)

    @staticmethod
    async def delete(*keys: str) -> None:
        for key in keys:
            try:
                await redis_client_module.redis_client.delete(key)
            except Exception as exc:
                logger.warning("Cache delete failed for %s: %s", key, exc)

    @staticmethod
    async def invalidate_load(load_id: int, *org_ids: Optional[int]) -> None:
        """Drop the load's detail and match entries plus its organizations' load lists."""
        keys = [load_key(load_id), load_matches_key(load_id)]
        keys.extend(org_loads_key(org_id) for org_id in org_ids if org_id is not None)
        await CacheService.delete(*keys)

    @staticmethod
    async def invalidate_truck(truck_id: int, *posting_ids: int) -> None:
        """Drop match results computed for the truck's postings."""
        logger.debug("Invalidating cache for truck %s", truck_id)
        await CacheService.delete(*(posting_matches_key(posting_id) for posting_id in posting_ids))

    @staticmethod
    async def clear() -> None:
        try:
            await redis_client_module.redis_client.flushdb()
        except Exception as exc:
            logger.warning("Cache flush failed: %s", exc)
