"""Tests for quota_sentinel.monitor.manager (UsageMonitor)."""

from __future__ import annotations

import asyncio
import threading
from datetime import timedelta

import pytest

from quota_sentinel.adapters import (
    AdapterFactory,
    AdapterRegistry,
    PlatformType,
    PlatformTypeRegistry,
)
from quota_sentinel.core import (
    AccountRecord,
    ConfigSource,
    FetchResult,
    PredictionResult,
    QuotaSentinelConfig,
)
from quota_sentinel.history import (
    HISTORY_KEY,
    DepletionPredictor,
    HistoryStore,
    MemoryKeyValueStore,
)
from quota_sentinel.monitor import (
    RefreshReport,
    RefreshScheduler,
    UsageListener,
    UsageMonitor,
    build_monitor,
)


def _record(account_id: str, enabled: bool = True, **config) -> AccountRecord:
    return AccountRecord(
        id=account_id,
        platform_type="fake",
        display_name=account_id.upper(),
        enabled=enabled,
        config=config,
    )


class CollectingListener:
    def __init__(self) -> None:
        self.results: list[tuple[str, FetchResult]] = []
        self.predictions: list[tuple[str, PredictionResult]] = []
        self.reports: list[RefreshReport] = []

    def on_fetch_result(self, account_id, result):
        self.results.append((account_id, result))

    def on_prediction(self, account_id, prediction):
        self.predictions.append((account_id, prediction))

    async def on_refresh_complete(self, report):
        self.reports.append(report)


class ThreadRecordingStore(MemoryKeyValueStore):
    """Remembers which thread each write ran on."""

    def __init__(self) -> None:
        super().__init__()
        self.writer_threads: list[int] = []

    def set(self, key, value):
        self.writer_threads.append(threading.get_ident())
        super().set(key, value)


class ExplodingListener:
    def on_fetch_result(self, account_id, result):
        raise RuntimeError("listener bug")


@pytest.fixture
def platform_types(make_adapter) -> PlatformTypeRegistry:
    types = PlatformTypeRegistry()
    types.register(
        PlatformType(
            id="fake",
            display_name="Fake",
            constructor=lambda record, **options: make_adapter(
                record.id, record.display_name, enabled=record.enabled, **record.config
            ),
        )
    )
    return types


@pytest.fixture
def make_monitor(platform_types, clock):
    def _make(
        *records: AccountRecord, listeners=(), backend=None, **config
    ) -> UsageMonitor:
        config.setdefault("refresh_interval", 0)
        source = ConfigSource.from_config(
            QuotaSentinelConfig(accounts=list(records), **config)
        )
        return UsageMonitor(
            source,
            AdapterRegistry(),
            AdapterFactory(platform_types, source),
            HistoryStore(
                backend if backend is not None else MemoryKeyValueStore(),
                retention_days=lambda: source.current().prediction.max_history_days,
                clock=clock,
            ),
            DepletionPredictor(clock=clock),
            RefreshScheduler(lambda: source.current().refresh_interval),
            listeners,
        )

    return _make


class TestReloadAccounts:
    def test_builds_registry(self, make_monitor):
        monitor = make_monitor(_record("a"), _record("b", enabled=False))
        assert monitor.reload_accounts() == 2
        assert [a.account_id for a in monitor.registry.get_all()] == ["a", "b"]
        assert [a.account_id for a in monitor.registry.get_active()] == ["a"]

    def test_reload_replaces_previous_adapters(self, make_monitor):
        monitor = make_monitor(_record("a"))
        monitor.reload_accounts()
        monitor.config_source.replace(QuotaSentinelConfig(accounts=[_record("z")]))
        monitor.reload_accounts()
        assert [a.account_id for a in monitor.registry.get_all()] == ["z"]


class TestRefreshAll:
    async def test_records_history_for_successes(self, make_monitor):
        monitor = make_monitor(_record("a", remaining=70.0), _record("b", error="HTTP 500"))
        report = await monitor.refresh_all()

        assert report.succeeded == ["a"]
        assert report.failed == ["b"]
        assert [p.remaining for p in monitor.history.get_history("a")] == [70.0]
        assert monitor.history.get_history("b") == []
        assert set(report.predictions) == {"a"}
        assert report.predictions["a"].available is False

    async def test_inactive_accounts_not_fetched(self, make_monitor):
        monitor = make_monitor(_record("on"), _record("off", enabled=False))
        monitor.reload_accounts()
        off = monitor.registry.get("off")
        report = await monitor.refresh_all()
        assert list(report.results) == ["on"]
        assert off.calls == 0

    async def test_unconfigured_accounts_not_fetched(self, make_monitor):
        monitor = make_monitor(_record("a", configured=False))
        report = await monitor.refresh_all()
        assert report.results == {}

    async def test_raising_adapter_isolated(self, make_monitor):
        monitor = make_monitor(_record("good"), _record("bad"))
        monitor.reload_accounts()
        monitor.registry.get("bad").raises = RuntimeError("socket closed")

        report = await monitor.refresh_all()
        assert report.results["good"].ok
        assert report.results["bad"].error == "socket closed"
        assert report.results["bad"].configured is True

    async def test_fetches_run_concurrently(self, make_monitor):
        records = [_record(f"a{i}", delay=0.1) for i in range(4)]
        monitor = make_monitor(*records, monitor={"max_concurrent": 4})
        loop = asyncio.get_running_loop()
        started = loop.time()
        await monitor.refresh_all()
        assert loop.time() - started < 0.35

    async def test_concurrency_bounded(self, make_monitor, make_adapter):
        monitor = make_monitor(monitor={"max_concurrent": 2})
        running = {"now": 0, "max": 0}

        class Tracking(type(make_adapter("x"))):
            async def fetch_usage(self):
                running["now"] += 1
                running["max"] = max(running["max"], running["now"])
                await asyncio.sleep(0.02)
                running["now"] -= 1
                return await super().fetch_usage()

        monitor.reload_accounts()
        for i in range(5):
            monitor.registry.register(Tracking(f"t{i}"))
        await monitor.refresh_all()
        assert running["max"] == 2

    async def test_prediction_after_enough_history(self, make_monitor, clock):
        monitor = make_monitor(_record("a", remaining=100.0))
        await monitor.refresh_all()
        clock.advance(timedelta(days=1))
        monitor.registry.get("a").remaining = 80.0
        report = await monitor.refresh_all()

        prediction = report.predictions["a"]
        assert prediction.available is True
        assert prediction.daily_usage_rate == pytest.approx(20.0)
        assert prediction.days_until_depletion == pytest.approx(4.0)
        assert monitor.predict("a") == prediction

    async def test_listeners_notified(self, make_monitor):
        listener = CollectingListener()
        monitor = make_monitor(_record("a"), _record("b", error="nope"), listeners=[listener])
        report = await monitor.refresh_all()

        assert sorted(a for a, _ in listener.results) == ["a", "b"]
        assert [a for a, _ in listener.predictions] == ["a"]
        assert listener.reports == [report]
        assert isinstance(listener, UsageListener)

    async def test_listener_errors_logged_not_raised(self, make_monitor, caplog):
        collecting = CollectingListener()
        monitor = make_monitor(_record("a"), listeners=[ExplodingListener(), collecting])
        report = await monitor.refresh_all()
        assert report.succeeded == ["a"]
        assert len(collecting.reports) == 1
        assert "failed handling on_fetch_result" in caplog.text

    async def test_remove_listener(self, make_monitor):
        listener = CollectingListener()
        monitor = make_monitor(_record("a"), listeners=[listener])
        monitor.remove_listener(listener)
        await monitor.refresh_all()
        assert listener.reports == []

    async def test_config_change_reloads_accounts(self, make_monitor):
        monitor = make_monitor(_record("a"))
        await monitor.refresh_all()
        monitor.config_source.replace(
            QuotaSentinelConfig(accounts=[_record("a"), _record("b")], refresh_interval=0)
        )
        report = await monitor.refresh_all()
        assert sorted(report.results) == ["a", "b"]

    async def test_cycles_do_not_overlap(self, make_monitor):
        monitor = make_monitor(_record("a", delay=0.05))
        monitor.reload_accounts()
        adapter = monitor.registry.get("a")
        in_flight = {"now": 0, "max": 0}
        original = adapter.fetch_usage

        async def _tracked():
            in_flight["now"] += 1
            in_flight["max"] = max(in_flight["max"], in_flight["now"])
            try:
                return await original()
            finally:
                in_flight["now"] -= 1

        adapter.fetch_usage = _tracked
        await asyncio.gather(monitor.refresh_all(), monitor.refresh_all())
        assert in_flight["max"] == 1
        assert adapter.calls == 2


class TestRefreshAccount:
    async def test_single_account(self, make_monitor):
        monitor = make_monitor(_record("a", remaining=33.0), _record("b"))
        result = await monitor.refresh_account("a")
        assert result.ok
        assert [p.remaining for p in monitor.history.get_history("a")] == [33.0]
        assert monitor.history.get_history("b") == []

    async def test_unknown_account(self, make_monitor):
        monitor = make_monitor(_record("a"))
        assert await monitor.refresh_account("zzz") is None


class TestHistoryWrites:
    async def test_history_written_off_event_loop_thread(self, make_monitor):
        backend = ThreadRecordingStore()
        monitor = make_monitor(_record("a", remaining=10.0), _record("b"), backend=backend)
        await monitor.refresh_all()
        await monitor.refresh_account("a")

        loop_thread = threading.get_ident()
        assert len(backend.writer_threads) == 3
        assert loop_thread not in backend.writer_threads
        assert [p.remaining for p in monitor.history.get_history("a")] == [10.0, 10.0]
        assert backend.get(HISTORY_KEY)["b"][0]["remaining"] == 80.0


class TestLifecycle:
    async def test_start_runs_initial_refresh(self, make_monitor):
        monitor = make_monitor(_record("a"), refresh_interval=3600)
        report = await monitor.start()
        try:
            assert report.succeeded == ["a"]
            assert monitor.scheduler.is_running
        finally:
            await monitor.shutdown()
        assert not monitor.scheduler.is_running

    async def test_config_change_rearms_scheduler(self, make_monitor):
        monitor = make_monitor(_record("a"), refresh_interval=0)
        await monitor.start()
        monitor.config_source.replace(
            QuotaSentinelConfig(accounts=[_record("a")], refresh_interval=3600)
        )
        assert await monitor.scheduler.trigger() is True
        assert monitor.scheduler.is_running
        assert len(monitor.history.get_history("a")) == 2
        await monitor.shutdown()


class TestBuildMonitor:
    async def test_wires_default_graph(self, write_config, tmp_path):
        path = write_config(
            {
                "refresh_interval": 120,
                "prediction": {"method": "least_squares", "max_history_days": 2},
                "accounts": [
                    {
                        "id": "deepseek-1",
                        "platform_type": "deepseek",
                        "display_name": "DS",
                        "config": {"api_key": "k"},
                    }
                ],
            }
        )
        backend = MemoryKeyValueStore()
        monitor = build_monitor(str(path), backend=backend)
        try:
            assert monitor.reload_accounts() == 1
            assert monitor.predictor.method == "least_squares"
            assert monitor.scheduler.current_interval() == 120
            assert monitor.history.retention() == timedelta(days=2)
            monitor.history.add_data_point("deepseek-1", 1, 2)
            assert "deepseek-1" in backend.get(HISTORY_KEY)
        finally:
            await monitor.shutdown()

    async def test_history_file_from_config(self, write_config, tmp_path):
        path = write_config()
        monitor = build_monitor(str(path))
        try:
            monitor.history.add_data_point("x", 1, 1)
        finally:
            await monitor.shutdown()
        assert (tmp_path / "history.json").exists()
