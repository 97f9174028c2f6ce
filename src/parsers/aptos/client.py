"""Aptos fullnode REST client: read-only ledger access for the indexer."""

import asyncio
from typing import Any

import httpx
from loguru import logger
from pydantic import ValidationError

from src.parsers.aptos.exceptions import AptosApiError, AptosRateLimitError
from src.parsers.aptos.models import AptosLedgerInfo, AptosTransaction
from src.parsers.rate_limiter import RateLimiter

MAX_RETRIES = 2
RETRY_DELAYS = [1.0, 3.0]
MAX_PAGE_SIZE = 100  # fullnode rejects larger pages


class AptosClient:
    """Async HTTP client for the Aptos fullnode API (v1)."""

    def __init__(
        self,
        node_url: str,
        *,
        api_key: str = "",
        max_rps: float = 8.0,
        timeout: float = 15.0,
    ) -> None:
        self._node_url = node_url.rstrip("/")
        self._rate_limiter = RateLimiter(max_rps)
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(timeout=timeout, headers=headers)

    async def close(self) -> None:
        await self._client.aclose()

    async def get_ledger_info(self) -> AptosLedgerInfo:
        data = await self._get("/")
        try:
            return AptosLedgerInfo.model_validate(data)
        except ValidationError as e:
            raise AptosApiError(f"malformed ledger info: {e}") from e

    async def get_head_version(self) -> int:
        info = await self.get_ledger_info()
        return info.ledger_version

    async def get_transactions(
        self, start: int, limit: int = MAX_PAGE_SIZE
    ) -> list[AptosTransaction]:
        """Fetch a contiguous window of committed transactions from ``start``."""
        params = {"start": start, "limit": min(limit, MAX_PAGE_SIZE)}
        data = await self._get("/transactions", params=params)
        if not isinstance(data, list):
            raise AptosApiError("transactions response is not a list")

        txs: list[AptosTransaction] = []
        for raw in data:
            try:
                txs.append(AptosTransaction.model_validate(raw))
            except ValidationError as e:
                # Without a version the window has a hole we cannot step over.
                raise AptosApiError(f"malformed transaction near {start}: {e}") from e
        return txs

    async def get_transaction_by_hash(self, tx_hash: str) -> AptosTransaction | None:
        """Return the committed transaction, or None if the node does not know it."""
        data = await self._get(f"/transactions/by_hash/{tx_hash}", allow_missing=True)
        if data is None:
            return None
        try:
            return AptosTransaction.model_validate(data)
        except ValidationError as e:
            # Pending transactions have no version yet.
            logger.debug(f"[APTOS] by_hash {tx_hash[:12]} not committed: {e.error_count()} errors")
            return None

    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        url = f"{self._node_url}{path}"
        last_error: Exception | None = None

        for attempt in range(MAX_RETRIES + 1):
            delay = RETRY_DELAYS[min(attempt, len(RETRY_DELAYS) - 1)]
            try:
                await self._rate_limiter.acquire()
                resp = await self._client.get(url, params=params)
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(delay)
                continue

            if resp.status_code == 429:
                last_error = AptosRateLimitError(f"429 on {path}")
                self._rate_limiter.backoff(delay)
                continue
            if resp.status_code == 404 and allow_missing:
                return None
            if resp.status_code >= 500:
                last_error = AptosApiError(f"HTTP {resp.status_code} on {path}")
                if attempt < MAX_RETRIES:
                    await asyncio.sleep(delay)
                continue
            if resp.status_code != 200:
                raise AptosApiError(f"HTTP {resp.status_code} on {path}: {resp.text[:200]}")

            return resp.json()

        logger.warning(f"[APTOS] {path} failed after {MAX_RETRIES + 1} attempts: {last_error}")
        if isinstance(last_error, AptosRateLimitError):
            raise last_error
        raise AptosApiError(f"{path} failed: {last_error}") from last_error
