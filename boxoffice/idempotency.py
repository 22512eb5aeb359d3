import json


class IdempotencyCache:
    """Replays the first response stored under a client-supplied Idempotency-Key."""

    def __init__(self, redis, scope: str, ttl_seconds: int = 300):
        self.redis = redis
        self.scope = scope
        self.ttl_seconds = ttl_seconds

    def _key(self, idem_key: str) -> str:
        return f"idem:{self.scope}:{idem_key}"

    async def get(self, idem_key: str | None) -> dict | None:
        if not idem_key:
            return None
        raw = await self.redis.get(self._key(idem_key))
        return json.loads(raw) if raw else None

    async def put(self, idem_key: str | None, response: dict) -> None:
        if not idem_key:
            return
        await self.redis.setex(self._key(idem_key), self.ttl_seconds, json.dumps(response, default=str))
