import uuid

from loguru import logger
from redis.asyncio import Redis

from config.settings import settings

_redis_client: Redis | None = None

LEASE_KEY = "indexer:lease"

# Refresh/release only when the stored token is still ours.
_REFRESH_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('pexpire', KEYS[1], ARGV[2])
end
return 0
"""
_RELEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
    return redis.call('del', KEYS[1])
end
return 0
"""


async def get_redis() -> Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_client


async def close_redis() -> None:
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


class IndexerLease:
    """Cross-process single-instance guard backed by ``SET NX PX``.

    The lease expires on its own if the holder dies without releasing it,
    so a crashed indexer blocks a successor for at most ``ttl_sec``.
    """

    def __init__(self, redis: Redis, *, ttl_sec: int, key: str = LEASE_KEY) -> None:
        self._redis = redis
        self._ttl_ms = ttl_sec * 1000
        self._key = key
        self._token = uuid.uuid4().hex
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    async def acquire(self) -> bool:
        acquired = await self._redis.set(self._key, self._token, nx=True, px=self._ttl_ms)
        self._held = bool(acquired)
        if not self._held:
            holder = await self._redis.get(self._key)
            logger.info(f"[LEASE] Held by another indexer ({holder}), not starting")
        return self._held

    async def refresh(self) -> bool:
        if not self._held:
            return False
        ok = await self._redis.eval(_REFRESH_SCRIPT, 1, self._key, self._token, self._ttl_ms)
        if not ok:
            logger.warning("[LEASE] Lease lost before refresh")
            self._held = False
        return self._held

    async def release(self) -> None:
        if not self._held:
            return
        await self._redis.eval(_RELEASE_SCRIPT, 1, self._key, self._token)
        self._held = False
