"""
Redis cache for per-package service entitlements.

Keys are per package (not per client) so a package edit invalidates one key.
Every failure degrades to a cache miss; the database stays authoritative.
"""

import json
import logging
from typing import Optional

import redis

from marketplace.config.settings import ENTITLEMENT_CACHE_TTL_SECONDS, REDIS_URL
from marketplace.entitlements.models import PackageEntitlement

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "entitlements:package:"
DEFAULT_TTL = ENTITLEMENT_CACHE_TTL_SECONDS

_client = None


def _key(package_id: str) -> str:
    return f"{CACHE_KEY_PREFIX}{package_id}"


def _serialize(ent: PackageEntitlement) -> str:
    return json.dumps({
        "package_id": ent.package_id,
        "support_all_services": ent.support_all_services,
        "service_type_ids": sorted(ent.service_type_ids),
    })


def _deserialize(data: str) -> PackageEntitlement:
    o = json.loads(data)
    return PackageEntitlement(
        package_id=o["package_id"],
        support_all_services=bool(o["support_all_services"]),
        service_type_ids=frozenset(o.get("service_type_ids") or []),
    )


def get_redis_client():
    """Lazy Redis client; None when REDIS_URL is unset or unreachable."""
    global _client
    if not REDIS_URL:
        return None
    if _client is None:
        try:
            _client = redis.from_url(REDIS_URL, decode_responses=True)
        except Exception as e:
            logger.warning("Redis unavailable: %s", e)
            return None
    return _client


def get_cached(package_id: str) -> Optional[PackageEntitlement]:
    """Return cached entitlement for package or None on miss/failure."""
    client = get_redis_client()
    if not client:
        return None
    try:
        raw = client.get(_key(package_id))
        if not raw:
            return None
        return _deserialize(raw)
    except Exception as e:
        logger.warning("Entitlements cache get failed: %s", e)
        return None


def set_cached(ent: PackageEntitlement, ttl_seconds: Optional[int] = None) -> None:
    client = get_redis_client()
    if not client:
        return
    ttl = ttl_seconds if ttl_seconds is not None else DEFAULT_TTL
    try:
        client.setex(_key(ent.package_id), ttl, _serialize(ent))
    except Exception as e:
        logger.warning("Entitlements cache set failed: %s", e)


def delete_cached(package_id: str) -> None:
    client = get_redis_client()
    if not client:
        return
    try:
        client.delete(_key(package_id))
    except Exception as e:
        logger.warning("Entitlements cache delete failed: %s", e)
