"""Tenant-namespaced Redis operations."""

from typing import Optional

import redis.asyncio as redis

from autoflow.config import config


class RedisClient:
    """Tenant-namespaced Redis operations."""

    def __init__(self, url: Optional[str] = None):
        self.pool = redis.ConnectionPool.from_url(url or config.redis_url)
        self.client = redis.Redis(connection_pool=self.pool)

    def _key(self, tenant_id: str, key: str) -> str:
        """Generate namespaced key."""
        return f"autoflow:{tenant_id}:{key}"

    async def get(self, tenant_id: str, key: str) -> Optional[str]:
        result = await self.client.get(self._key(tenant_id, key))
        return result.decode() if result else None

    async def set_if_absent(self, tenant_id: str, key: str, value: str, ttl: int) -> bool:
        """SET NX EX. True if this call created the key."""
        created = await self.client.set(self._key(tenant_id, key), value, nx=True, ex=ttl)
        return bool(created)

    async def delete(self, tenant_id: str, key: str) -> None:
        await self.client.delete(self._key(tenant_id, key))

    async def health(self) -> bool:
        """Check Redis connectivity."""
        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    async def close(self):
        """Close connections."""
        await self.client.aclose()
