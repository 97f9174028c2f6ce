import asyncio


class RateLimiter:
    """Minimum-interval limiter for async HTTP clients.

    ``backoff`` pushes the next permitted request out after the upstream
    answers 429, so every caller sharing the limiter waits, not only the
    one that was throttled.
    """

    def __init__(self, max_rps: float) -> None:
        self._min_interval = 1.0 / max_rps
        self._next_allowed = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            loop = asyncio.get_running_loop()
            wait = self._next_allowed - loop.time()
            if wait > 0:
                await asyncio.sleep(wait)
            self._next_allowed = loop.time() + self._min_interval

    def backoff(self, delay: float) -> None:
        now = asyncio.get_running_loop().time()
        self._next_allowed = max(self._next_allowed, now + delay)
