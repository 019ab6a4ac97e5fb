"""Redis claim guard for the run ledger.

A run key is claimed with ``SET NX EX`` before the ledger touches the
database, so duplicate webhook deliveries racing across worker processes are
rejected without a round-trip to Postgres.  The key lives for the ledger's
retention window.
"""

import logging

from autoflow.cache.redis_client import RedisClient
from autoflow.exceptions import StoreUnavailable

logger = logging.getLogger(__name__)

_SCOPE = "runs"


class RedisClaimGuard:
    """``claim(run_key, ttl_seconds) -> bool`` backed by SET NX."""

    def __init__(self, redis_client: RedisClient):
        self.redis = redis_client

    async def claim(self, run_key: str, ttl_seconds: int) -> bool:
        try:
            won = await self.redis.set_if_absent(_SCOPE, f"claim:{run_key}", "1", ttl_seconds)
        except Exception as exc:
            raise StoreUnavailable(f"Redis claim failed for {run_key}: {exc}") from exc
        if not won:
            logger.debug("Redis claim lost for %s", run_key)
        return won

    async def release(self, run_key: str) -> None:
        await self.redis.delete(_SCOPE, f"claim:{run_key}")
