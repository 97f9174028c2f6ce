"""Routes a relevant transaction's events to their handlers.

One database transaction per ledger transaction: either every effect of the
ledger transaction commits, or none does and the cycle retries it.
"""

from dataclasses import dataclass

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.indexer.classifier import BONDING_CURVE_MODULE, TransactionClassifier, normalize_address
from src.indexer.events import (
    PROCESSING_ORDER,
    AssetCreated,
    Burned,
    EventDecodeError,
    LaunchpadEvent,
    Minted,
    Purchased,
    Sold,
    UnknownEvent,
    decode_event,
)
from src.indexer.handlers import EventHandlers, parse_legacy_purchase
from src.indexer.metrics import IndexerMetrics
from src.parsers.aptos.models import AptosTransaction

LEGACY_BUY_FUNCTION = "buy_tokens"


@dataclass
class DispatchResult:
    applied: int = 0  # handlers that changed state
    skipped: int = 0  # duplicates and no-op events
    malformed: int = 0


class EventDispatcher:
    def __init__(
        self,
        classifier: TransactionClassifier,
        handlers: EventHandlers,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        metrics: IndexerMetrics | None = None,
    ) -> None:
        self._classifier = classifier
        self._handlers = handlers
        self._session_factory = session_factory
        self._metrics = metrics or IndexerMetrics()
        self._legacy_buy = normalize_address(
            classifier.module_function(BONDING_CURVE_MODULE, LEGACY_BUY_FUNCTION)
        )

    def decode_all(self, tx: AptosTransaction) -> tuple[list[LaunchpadEvent], int]:
        """Decode attached events in processing order; malformed ones are dropped."""
        decoded: list[LaunchpadEvent] = []
        malformed = 0
        for index, raw in enumerate(tx.events):
            try:
                decoded.append(decode_event(raw, self._classifier.program_address))
            except EventDecodeError as e:
                malformed += 1
                logger.warning(f"[DISPATCH] Skipping event #{index} of {tx.hash[:12]}: {e}")
        decoded.sort(key=lambda ev: PROCESSING_ORDER[ev.kind])
        return decoded, malformed

    def is_legacy_purchase(self, tx: AptosTransaction) -> bool:
        function = tx.entry_function
        return bool(function) and normalize_address(function) == self._legacy_buy

    async def dispatch(self, tx: AptosTransaction) -> DispatchResult:
        """Apply every effect of ``tx`` in a single database transaction.

        Persistence errors propagate after rollback; the caller must not
        advance its cursor past ``tx``.
        """
        result = DispatchResult()
        if not tx.success:
            logger.debug(f"[DISPATCH] {tx.hash[:12]} aborted on chain, nothing to index")
            return result

        events, result.malformed = self.decode_all(tx)

        try:
            async with self._session_factory() as session:
                async with session.begin():
                    for event in events:
                        if await self._handle(session, tx, event):
                            result.applied += 1
                        else:
                            result.skipped += 1
                    if self.is_legacy_purchase(tx):
                        await self._handle_legacy(session, tx, result)
        except Exception:
            self._handlers.discard_notifications()
            raise

        self._metrics.record_dispatch(result.applied, result.skipped, result.malformed)
        graduated = await self._handlers.flush_notifications()
        self._metrics.record_graduations(graduated)
        return result

    async def _handle(
        self, session: AsyncSession, tx: AptosTransaction, event: LaunchpadEvent
    ) -> bool:
        match event:
            case AssetCreated():
                return await self._handlers.on_asset_created(session, tx, event)
            case Purchased():
                return await self._handlers.on_purchased(session, tx, event)
            case Sold():
                return await self._handlers.on_sold(session, tx, event)
            case Minted():
                return await self._handlers.on_minted(session, tx, event)
            case Burned():
                return await self._handlers.on_burned(session, tx, event)
            case UnknownEvent():
                return False

    async def _handle_legacy(
        self, session: AsyncSession, tx: AptosTransaction, result: DispatchResult
    ) -> None:
        try:
            purchase = parse_legacy_purchase(tx)
        except EventDecodeError as e:
            result.malformed += 1
            logger.warning(f"[DISPATCH] Skipping legacy buy {tx.hash[:12]}: {e}")
            return
        if await self._handlers.on_legacy_purchase(session, tx, purchase):
            result.applied += 1
        else:
            result.skipped += 1
