"""Redis token bucket used to throttle checkout attempts per customer."""

from time import time

from magsub.common.errors import RateLimited


class TokenBucket:
    """Capacity = refill rate = `limit_per_minute`."""

    def __init__(self, rdb, limit_per_minute: int, prefix: str = "tokenbucket") -> None:
        self.rdb = rdb
        self.limit_per_minute = limit_per_minute
        self.prefix = prefix

    def consume(self, subject: str, now: float | None = None) -> float:
        """Take one token for `subject`, raising `RateLimited` when empty.

        Returns the tokens left after this call.
        """

        key = f"{self.prefix}:{subject}"
        now = time() if now is None else now
        capacity = float(self.limit_per_minute)
        refill_per_sec = capacity / 60.0

        values = self.rdb.hmget(key, "tokens", "updated_at")
        tokens = float(values[0]) if values[0] is not None else capacity
        updated_at = float(values[1]) if values[1] is not None else now
        elapsed = max(0.0, now - updated_at)
        tokens = min(capacity, tokens + elapsed * refill_per_sec)

        if tokens < 1.0:
            self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
            self.rdb.expire(key, 120)
            raise RateLimited("rate limit exceeded")
        tokens -= 1.0
        self.rdb.hset(key, mapping={"tokens": tokens, "updated_at": now})
        self.rdb.expire(key, 120)
        return tokens
