"""Indexer service: poll loop and time-boxed batch runner.

One sequential worker: fetch a window after the cursor, classify each
transaction, dispatch the relevant ones, advance the cursor past every
examined transaction. The cursor only moves after a transaction's effects
have committed, so a crash re-delivers at most the transaction in flight,
which the trade-hash check turns into a no-op.
"""

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import Settings
from src.db.redis import IndexerLease
from src.indexer import persistence
from src.indexer.classifier import TransactionClassifier
from src.indexer.cursor import Cursor, from_explicit_version, resolve_start_version
from src.indexer.dispatcher import EventDispatcher
from src.indexer.handlers import EventHandlers, GraduationCallback, HandlerContext
from src.indexer.metrics import IndexerMetrics, MetricsSnapshot
from src.parsers.aptos.client import MAX_PAGE_SIZE, AptosClient
from src.parsers.aptos.exceptions import AptosError

STATS_EVERY_CYCLES = 150
SCAN_PAGE_SIZE = 100
SCAN_PAGE_PAUSE_SEC = 0.1


class ConfigurationError(Exception):
    """Required setting missing; the indexer refuses to start."""


class IndexerState(Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


class RunMode(Enum):
    CONTINUOUS = "continuous"
    BATCH = "batch"


@dataclass(frozen=True)
class IndexerConfig:
    program_address: str
    node_url: str
    poll_interval_sec: float = 2.0
    batch_size: int = 100
    batch_interval_sec: float = 5.0
    batch_safety_margin_sec: float = 5.0
    head_safety_margin: int = 100
    resume_window_sec: int = 3600
    graduation_threshold_octas: int = 2_150_000_000_000
    legacy_fee_bps: int = 100

    @classmethod
    def from_settings(cls, s: Settings) -> "IndexerConfig":
        return cls(
            program_address=s.bullpump_contract_address,
            node_url=s.aptos_node_url,
            poll_interval_sec=s.indexer_poll_interval_sec,
            batch_size=s.indexer_batch_size,
            batch_interval_sec=s.indexer_batch_interval_sec,
            batch_safety_margin_sec=s.indexer_batch_safety_margin_sec,
            head_safety_margin=s.indexer_head_safety_margin,
            resume_window_sec=s.indexer_resume_window_sec,
            graduation_threshold_octas=s.graduation_threshold_octas,
            legacy_fee_bps=s.legacy_fee_bps,
        )

    def validate(self) -> None:
        if not self.program_address.strip():
            raise ConfigurationError("BULLPUMP_CONTRACT_ADDRESS is required")
        if not self.node_url.strip():
            raise ConfigurationError("APTOS_NODE_URL is required")
        if not 0 < self.batch_size <= MAX_PAGE_SIZE:
            raise ConfigurationError(f"batch size must be in 1..{MAX_PAGE_SIZE}")
        if self.poll_interval_sec <= 0:
            raise ConfigurationError("poll interval must be positive")


@dataclass(frozen=True)
class IndexerStatus:
    state: IndexerState
    mode: RunMode | None
    cursor: int | None
    has_recent_activity: bool
    metrics: MetricsSnapshot

    @property
    def is_running(self) -> bool:
        return self.state is not IndexerState.STOPPED


class IndexerService:
    def __init__(
        self,
        config: IndexerConfig,
        client: AptosClient,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lease: IndexerLease | None = None,
        metrics: IndexerMetrics | None = None,
    ) -> None:
        config.validate()
        self._config = config
        self._client = client
        self._session_factory = session_factory
        self._lease = lease
        self._metrics = metrics or IndexerMetrics()

        self._classifier = TransactionClassifier(config.program_address)
        self._handler_ctx = HandlerContext(
            graduation_threshold=Decimal(config.graduation_threshold_octas),
            legacy_fee_bps=config.legacy_fee_bps,
        )
        self._dispatcher = EventDispatcher(
            self._classifier,
            EventHandlers(self._handler_ctx),
            session_factory,
            metrics=self._metrics,
        )
        self.cursor = Cursor()

        self._state = IndexerState.STOPPED
        self._mode: RunMode | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._owner: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()

        logger.info(
            f"[INDEXER] Configured: node={config.node_url} program={config.program_address} "
            f"poll={config.poll_interval_sec}s window={config.batch_size} txs"
        )

    @classmethod
    def from_settings(
        cls,
        s: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        lease: IndexerLease | None = None,
    ) -> "IndexerService":
        config = IndexerConfig.from_settings(s)
        config.validate()
        client = AptosClient(s.aptos_node_url, api_key=s.aptos_api_key, max_rps=s.aptos_max_rps)
        if not s.aptos_api_key:
            logger.warning("[INDEXER] APTOS_API_KEY not set, node rate limits may apply")
        return cls(config, client, session_factory, lease=lease)

    @property
    def is_running(self) -> bool:
        return self._state is not IndexerState.STOPPED

    @property
    def state(self) -> IndexerState:
        return self._state

    @property
    def metrics(self) -> IndexerMetrics:
        return self._metrics

    @property
    def client(self) -> AptosClient:
        return self._client

    def subscribe_graduation(self, callback: GraduationCallback) -> None:
        self._handler_ctx.subscribe_graduation(callback)

    async def start(
        self, from_version: int | None = None, max_duration_ms: int | None = None
    ) -> None:
        """Begin indexing.

        Continuous mode schedules the poll loop and returns after the first
        cycle. With ``max_duration_ms`` the call runs batches until shortly
        before the deadline and returns with the service stopped. Calling
        start while a run is active or still stopping is a no-op.
        """
        if self._state is not IndexerState.STOPPED:
            logger.info(f"[INDEXER] Already {self._state.value}, start ignored")
            return
        explicit = from_explicit_version(from_version)
        self._state = IndexerState.STARTING
        self._mode = RunMode.BATCH if max_duration_ms else RunMode.CONTINUOUS
        self._stop_event = asyncio.Event()
        self._stopped = asyncio.Event()
        self._owner = asyncio.current_task()

        try:
            if self._lease is not None and not await self._lease.acquire():
                await self._finish()
                return
            await self._init_cursor(explicit)
        except BaseException:
            await self._finish()
            raise

        if self._state is not IndexerState.STARTING:
            await self._finish()  # stopped while starting
            return
        self._state = IndexerState.RUNNING
        if self._mode is RunMode.BATCH:
            logger.info(f"[INDEXER] Batch mode for {max_duration_ms}ms from cursor {self.cursor.version}")
            try:
                await self._run_batches(max_duration_ms / 1000)
            finally:
                await self._finish()
            return

        logger.info(f"[INDEXER] Polling every {self._config.poll_interval_sec}s from cursor {self.cursor.version}")
        first_cycle = asyncio.Event()
        self._task = asyncio.create_task(self._poll_loop(first_cycle), name="indexer-poll")
        self._owner = self._task
        await first_cycle.wait()

    async def stop(self) -> None:
        """Prevent further cycles and wait until the active run has exited.

        The in-flight cycle is allowed to finish. Called from inside the run
        itself (e.g. by a graduation subscriber) it only signals.
        """
        if self._state is IndexerState.STOPPED:
            return
        if self._state is not IndexerState.STOPPING:
            logger.info("[INDEXER] Stopping...")
            self._state = IndexerState.STOPPING
        self._stop_event.set()
        if self._owner is asyncio.current_task():
            return
        await self._stopped.wait()

    async def wait_stopped(self) -> None:
        """Block until the current run has fully exited."""
        await self._stopped.wait()

    async def close(self) -> None:
        await self.stop()
        await self._client.close()

    async def run_cycle(self) -> int:
        """One fetch → classify → dispatch → advance pass. Returns transactions examined."""
        if not self.cursor.resolved:
            version = await resolve_start_version(
                explicit=None,
                session_factory=self._session_factory,
                client=self._client,
                resume_window_sec=self._config.resume_window_sec,
                head_safety_margin=self._config.head_safety_margin,
            )
            if version is None:
                raise AptosError("start version unresolved, ledger head unavailable")
            self.cursor.advance(version)

        if self._lease is not None and not await self._lease.refresh():
            logger.error("[INDEXER] Lease lost, stopping to avoid a second writer")
            if self._state is not IndexerState.STOPPED:
                self._state = IndexerState.STOPPING
            self._stop_event.set()
            return 0

        started = time.monotonic()
        txs = await self._client.get_transactions(self.cursor.next_version, self._config.batch_size)
        relevant = 0
        for tx in txs:
            if tx.version < self.cursor.next_version:
                continue
            if self._classifier.is_relevant(tx):
                relevant += 1
                logger.debug(f"[INDEXER] Program tx {tx.hash[:12]} ({tx.entry_function or 'events'})")
                await self._dispatcher.dispatch(tx)
            self.cursor.advance(tx.version)

        latency_ms = (time.monotonic() - started) * 1000
        self._metrics.record_cycle(latency_ms, scanned=len(txs), relevant=relevant)
        if relevant:
            logger.info(
                f"[INDEXER] {relevant} program tx in {len(txs)} scanned (v{self.cursor.version})"
            )
        elif txs:
            logger.debug(f"[INDEXER] Scanned {len(txs)} tx (v{self.cursor.version})")
        return len(txs)

    async def status(self) -> IndexerStatus:
        has_recent = False
        try:
            async with self._session_factory() as session:
                has_recent = await persistence.count_recent_trades(session, seconds=60) > 0
        except (SQLAlchemyError, OSError) as e:
            logger.debug(f"[INDEXER] Recent activity check failed: {e}")
        return IndexerStatus(
            state=self._state,
            mode=self._mode,
            cursor=self.cursor.version,
            has_recent_activity=has_recent,
            metrics=self._metrics.snapshot(),
        )

    async def scan_range(self, start_version: int, end_version: int) -> int:
        """Walk ``[start, end)`` and dispatch program transactions.

        Operator utility for patching a known gap; a page that fails to fetch
        is skipped, so this is not a correctness-guaranteed backfill. The
        live cursor is not touched.
        """
        logger.info(f"[SCAN] Scanning versions {start_version}..{end_version}")
        current = start_version
        found = 0
        while current < end_version:
            limit = min(SCAN_PAGE_SIZE, end_version - current)
            try:
                txs = await self._client.get_transactions(current, limit)
            except AptosError as e:
                logger.error(f"[SCAN] Page at {current} failed, skipping {limit} versions: {e}")
                current += limit
                continue
            if not txs:
                break

            page_found = 0
            for tx in txs:
                if tx.version >= end_version:
                    break
                if self._classifier.is_relevant(tx):
                    await self._dispatcher.dispatch(tx)
                    page_found += 1
                current = tx.version + 1
            if page_found:
                logger.info(f"[SCAN] {page_found} program tx up to v{current - 1}")
            found += page_found
            await asyncio.sleep(SCAN_PAGE_PAUSE_SEC)

        logger.info(f"[SCAN] Done, {found} program transactions in range")
        return found

    async def _init_cursor(self, explicit: int | None) -> None:
        if explicit is not None:
            self.cursor.reset(explicit)
            return
        if self.cursor.resolved:
            logger.info(f"[CURSOR] Resuming in-process cursor at {self.cursor.version}")
            return
        try:
            version = await resolve_start_version(
                explicit=None,
                session_factory=self._session_factory,
                client=self._client,
                resume_window_sec=self._config.resume_window_sec,
                head_safety_margin=self._config.head_safety_margin,
            )
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"[CURSOR] Start version lookup failed, retrying on first cycle: {e}")
            return
        if version is not None:
            self.cursor.advance(version)

    async def _safe_cycle(self) -> None:
        try:
            await self.run_cycle()
        except Exception as e:
            self._metrics.record_failure()
            logger.error(f"[INDEXER] Cycle failed at cursor {self.cursor.version}: {e!r}")
        cycles = self._metrics.snapshot().cycles
        if cycles and cycles % STATS_EVERY_CYCLES == 0:
            logger.info(f"[INDEXER] Stats: {self._metrics.format_summary()}")

    async def _poll_loop(self, first_cycle: asyncio.Event) -> None:
        try:
            try:
                await self._safe_cycle()
            finally:
                first_cycle.set()
            while self._state is IndexerState.RUNNING:
                if await self._wait_for_stop(self._config.poll_interval_sec):
                    break
                await self._safe_cycle()
        finally:
            await self._finish()

    async def _run_batches(self, max_duration_sec: float) -> None:
        deadline = time.monotonic() + max_duration_sec - self._config.batch_safety_margin_sec
        while self._state is IndexerState.RUNNING and time.monotonic() < deadline:
            await self._safe_cycle()
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            if await self._wait_for_stop(min(self._config.batch_interval_sec, remaining)):
                break
        logger.info(f"[INDEXER] Batch run complete at cursor {self.cursor.version}")

    async def _wait_for_stop(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if stop was requested meanwhile."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _finish(self) -> None:
        """Release the lease and mark the run over; called once by the run's owner."""
        if self._lease is not None:
            await self._lease.release()
        self._state = IndexerState.STOPPED
        self._task = None
        self._owner = None
        self._stopped.set()
