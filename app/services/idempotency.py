import redis

from app.core.config import settings


class IdempotencyStore:
    def __init__(self, client: redis.Redis | None = None, prefix: str = "idempotency") -> None:
        self.client = client or redis.Redis.from_url(settings.redis_url, decode_responses=True)
        self.prefix = prefix
        self.default_ttl = settings.webhook_replay_ttl

    def check_and_set(self, key: str, ttl_seconds: int | None = None) -> bool:
        """Atomic operation: setnx + expire in one call. True if the key was not seen before."""
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        created = self.client.set(f"{self.prefix}:{key}", "1", nx=True, ex=ttl)
        return bool(created)

    def release(self, key: str) -> None:
        self.client.delete(f"{self.prefix}:{key}")
