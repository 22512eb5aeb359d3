import time
from dataclasses import dataclass


@dataclass(frozen=True)
class BucketDecision:
    allowed: bool
    remaining: float


def _field(data: dict, name: str):
    # works whether the client decodes responses or not
    return data.get(name.encode()) if name.encode() in data else data.get(name)


class TokenBucket:
    """Per-client token bucket kept in a Redis hash (``rl:<scope>:<client>``)."""

    def __init__(self, redis, scope: str, capacity: int, refill_per_sec: float, ttl_seconds: int = 3600):
        self.redis = redis
        self.scope = scope
        self.capacity = capacity
        self.refill_per_sec = refill_per_sec
        self.ttl_seconds = ttl_seconds

    async def take(self, client: str, now: float | None = None) -> BucketDecision:
        now = time.time() if now is None else now
        bucket_key = f"rl:{self.scope}:{client}"

        data = await self.redis.hgetall(bucket_key)
        tokens_raw = _field(data, "tokens")
        last_raw = _field(data, "last")
        tokens = float(tokens_raw) if tokens_raw is not None else float(self.capacity)
        last = float(last_raw) if last_raw is not None else now

        tokens = min(self.capacity, tokens + max(0.0, now - last) * self.refill_per_sec)
        allowed = tokens >= 1.0
        if allowed:
            tokens -= 1.0

        await self.redis.hset(bucket_key, mapping={"tokens": tokens, "last": now})
        await self.redis.expire(bucket_key, self.ttl_seconds)
        return BucketDecision(allowed=allowed, remaining=tokens)
