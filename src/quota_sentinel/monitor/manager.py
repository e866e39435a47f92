"""Refresh orchestration: fetch, record, predict, notify."""

from __future__ import annotations

import asyncio
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Iterable, Protocol, runtime_checkable

import httpx
from pydantic import BaseModel, ConfigDict

from quota_sentinel.adapters import (
    AdapterFactory,
    AdapterRegistry,
    PlatformTypeRegistry,
    UsageAdapter,
    default_platform_types,
)
from quota_sentinel.core import ConfigSource, FetchResult, PredictionResult
from quota_sentinel.history import (
    DepletionPredictor,
    HistoryStore,
    JsonFileKeyValueStore,
    KeyValueStore,
    utc_now,
)
from quota_sentinel.monitor.scheduler import RefreshScheduler

logger = logging.getLogger(__name__)


class RefreshReport(BaseModel):
    """Outcome of one refresh cycle across all active accounts."""

    model_config = ConfigDict(frozen=True)

    started_at: datetime
    finished_at: datetime
    results: dict[str, FetchResult] = {}
    predictions: dict[str, PredictionResult] = {}

    @property
    def succeeded(self) -> list[str]:
        return [account_id for account_id, r in self.results.items() if r.ok]

    @property
    def failed(self) -> list[str]:
        return [account_id for account_id, r in self.results.items() if not r.ok]


@runtime_checkable
class UsageListener(Protocol):
    """Presentation hook. Any subset of the methods may be implemented."""

    def on_fetch_result(self, account_id: str, result: FetchResult) -> Any: ...

    def on_prediction(self, account_id: str, prediction: PredictionResult) -> Any: ...

    def on_refresh_complete(self, report: RefreshReport) -> Any: ...


class UsageMonitor:
    """Owns the refresh cycle for every configured account.

    Each cycle fetches all active adapters concurrently (bounded by
    ``monitor.max_concurrent``), appends the primary snapshot of each
    successful fetch to history, recomputes its prediction, and notifies
    listeners. Cycles never overlap. When the configuration revision changes
    the adapter registry is rebuilt and the scheduler re-armed.
    """

    def __init__(
        self,
        config_source: ConfigSource,
        registry: AdapterRegistry,
        factory: AdapterFactory,
        history: HistoryStore,
        predictor: DepletionPredictor,
        scheduler: RefreshScheduler,
        listeners: Iterable[UsageListener] = (),
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config_source = config_source
        self._registry = registry
        self._factory = factory
        self._history = history
        self._predictor = predictor
        self._scheduler = scheduler
        self._listeners: list[UsageListener] = list(listeners)
        self._client = client
        self._revision: int | None = None
        self._refresh_lock = asyncio.Lock()

    @property
    def registry(self) -> AdapterRegistry:
        return self._registry

    @property
    def history(self) -> HistoryStore:
        return self._history

    @property
    def predictor(self) -> DepletionPredictor:
        return self._predictor

    @property
    def scheduler(self) -> RefreshScheduler:
        return self._scheduler

    @property
    def config_source(self) -> ConfigSource:
        return self._config_source

    def add_listener(self, listener: UsageListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: UsageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # --- Accounts ---

    def reload_accounts(self) -> int:
        """Rebuild the registry from the configured accounts."""
        self._config_source.current()
        self._revision = self._config_source.revision
        self._registry.clear()
        for adapter in self._factory.create_adapters_from_config():
            self._registry.register(adapter)
        logger.info("Loaded %d account(s)", len(self._registry))
        return len(self._registry)

    def _sync_config(self) -> None:
        self._config_source.current()
        if self._config_source.revision != self._revision:
            logger.info("Configuration changed, reloading accounts")
            self.reload_accounts()
            self._scheduler.restart()

    # --- Refresh ---

    async def refresh_all(self) -> RefreshReport:
        async with self._refresh_lock:
            self._sync_config()
            started_at = utc_now()
            adapters = self._registry.get_active()
            semaphore = asyncio.Semaphore(self._config_source.current().monitor.max_concurrent)

            async def _fetch_with_semaphore(adapter: UsageAdapter) -> FetchResult:
                async with semaphore:
                    return await adapter.fetch_usage()

            raw_results = await asyncio.gather(
                *(_fetch_with_semaphore(a) for a in adapters),
                return_exceptions=True,
            )

            results: dict[str, FetchResult] = {}
            predictions: dict[str, PredictionResult] = {}
            for adapter, raw in zip(adapters, raw_results):
                if isinstance(raw, Exception):
                    logger.warning("Fetch failed for %s: %s", adapter.account_id, raw)
                    raw = FetchResult(configured=True, error=str(raw) or type(raw).__name__)
                elif isinstance(raw, BaseException):
                    raise raw
                prediction = await self._record(adapter.account_id, raw)
                results[adapter.account_id] = raw
                if prediction is not None:
                    predictions[adapter.account_id] = prediction

            report = RefreshReport(
                started_at=started_at,
                finished_at=utc_now(),
                results=results,
                predictions=predictions,
            )
            logger.info(
                "Refresh complete: %d ok, %d failed",
                len(report.succeeded), len(report.failed),
            )
            await self._notify("on_refresh_complete", report)
            return report

    async def refresh_account(self, account_id: str) -> FetchResult | None:
        """Fetch a single account now. ``None`` if it is not registered."""
        async with self._refresh_lock:
            self._sync_config()
            adapter = self._registry.get(account_id)
            if adapter is None:
                logger.warning("Unknown account: %s", account_id)
                return None
            result = await adapter.fetch_usage()
            await self._record(account_id, result)
            return result

    def predict(self, account_id: str) -> PredictionResult:
        return self._predictor.predict(self._history.get_history(account_id))

    async def _record(self, account_id: str, result: FetchResult) -> PredictionResult | None:
        await self._notify("on_fetch_result", account_id, result)
        primary = result.usage.primary if result.ok and result.usage else None
        if primary is None:
            return None
        # The store writes through to disk; keep that off the event loop.
        await asyncio.to_thread(
            self._history.add_data_point, account_id, primary.remaining, primary.total
        )
        prediction = self.predict(account_id)
        await self._notify("on_prediction", account_id, prediction)
        return prediction

    async def _notify(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners):
            handler = getattr(listener, event, None)
            if handler is None:
                continue
            try:
                outcome = handler(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Listener %r failed handling %s", listener, event)

    # --- Lifecycle ---

    async def start(self) -> RefreshReport:
        """Load accounts, run an initial refresh, then arm the scheduler."""
        self.reload_accounts()
        report = await self.refresh_all()
        self._scheduler.start(self.refresh_all)
        return report

    async def shutdown(self) -> None:
        await self._scheduler.close()
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("Monitor stopped")


def build_monitor(
    config_path: str | None = None,
    *,
    config_source: ConfigSource | None = None,
    backend: KeyValueStore | None = None,
    platform_types: PlatformTypeRegistry | None = None,
    listeners: Iterable[UsageListener] = (),
    clock: Callable[[], datetime] = utc_now,
    client: httpx.AsyncClient | None = None,
) -> UsageMonitor:
    """Wire the default object graph from a configuration file.

    A shared ``httpx.AsyncClient`` is created (and later closed by
    ``shutdown``) unless one is supplied.
    """
    source = config_source or ConfigSource(config_path)
    config = source.current()

    owned_client = None
    if client is None:
        client = owned_client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.monitor.request_timeout)
        )

    factory = AdapterFactory(
        platform_types or default_platform_types(),
        source,
        timeout=config.monitor.request_timeout,
        client=client,
    )
    history = HistoryStore(
        backend or JsonFileKeyValueStore(config.storage.resolved_history_path),
        retention_days=lambda: source.current().prediction.max_history_days,
        clock=clock,
    )
    predictor = DepletionPredictor.from_config(config.prediction, clock=clock)
    scheduler = RefreshScheduler(lambda: source.current().refresh_interval)
    return UsageMonitor(
        source,
        AdapterRegistry(),
        factory,
        history,
        predictor,
        scheduler,
        listeners,
        client=owned_client,
    )
