"""
Tests for ResultVerifier severity, persistence and alert delivery.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from conftest import RecordingAlertSink
from hearth_migration.database.models import DualWriteDiff
from hearth_migration.migration.result_verifier import (
    AlertEvent,
    AlertSink,
    DiffStore,
    InMemoryDiffStore,
    LoggingAlertSink,
    Outcome,
    ResultVerifier,
    Severity,
    SlackWebhookAlertSink,
    SqlDiffStore,
    classify_severity,
)


def pair(verifier, a, b, **kwargs):
    return verifier.build_record(api_endpoint="/api/budget", operation="create", result_a=a, result_b=b, **kwargs)


class ExplodingSink(AlertSink):
    async def send(self, alert):
        raise RuntimeError("sink down")


class ExplodingStore(DiffStore):
    async def save(self, record):
        raise ConnectionError("db down")


class SlowStore(InMemoryDiffStore):
    def __init__(self):
        super().__init__()
        self.release = asyncio.Event()

    async def save(self, record):
        await self.release.wait()
        await super().save(record)


class TestSeverity:
    def test_equal_results_are_info(self, verifier):
        record = pair(verifier, {"id": 1, "amount": 5}, {"id": 2, "amount": 5})

        assert record.severity is Severity.INFO
        assert record.diff == []

    def test_field_difference_is_warning(self, verifier):
        record = pair(verifier, {"amount": 5}, {"amount": 6})

        assert record.severity is Severity.WARNING
        assert record.diff == [{"op": "replace", "path": "/amount", "value": 6}]

    def test_failed_side_is_error(self, verifier):
        record = pair(verifier, {"amount": 5}, ConnectionError("timeout"))

        assert record.severity is Severity.ERROR
        assert record.result_b is None
        assert record.diff == []

    def test_one_side_missing_is_error(self, verifier):
        record = pair(verifier, None, {"amount": 5})

        assert record.severity is Severity.ERROR

    def test_both_missing_is_info(self, verifier):
        assert pair(verifier, None, None).severity is Severity.INFO

    def test_classify_both_failed(self):
        assert classify_severity(Outcome(error=ValueError()), Outcome(error=ValueError()), []) is Severity.ERROR


class TestBuildRecord:
    def test_shadow_pair_maps_by_primary(self, verifier):
        record = verifier.build_record(
            api_endpoint="/api/budget",
            operation="get",
            primary_result={"source": "b"},
            shadow_result=Outcome(value={"source": "a"}),
            supabase_primary=True,
        )

        assert record.result_a == {"source": "a"}
        assert record.result_b == {"source": "b"}

    def test_requires_a_result_pair(self, verifier):
        with pytest.raises(ValueError):
            verifier.build_record(api_endpoint="/api/budget", operation="get")

    def test_extra_ignored_fields(self, verifier):
        record = pair(verifier, {"version": 1}, {"version": 2}, ignored_fields={"version"})

        assert record.severity is Severity.INFO

    def test_payload_and_timestamp(self, verifier):
        stamp = datetime(2026, 10, 19, tzinfo=timezone.utc)
        record = pair(verifier, {}, {}, payload={"amount": 1}, request_id="r-1", timestamp=stamp)

        assert record.payload == {"amount": 1}
        assert record.request_id == "r-1"
        assert record.timestamp == stamp


class TestAlerting:
    def _warning_with_ops(self, verifier, count):
        a = {f"f{i}": 0 for i in range(count)}
        b = {f"f{i}": 1 for i in range(count)}
        return pair(verifier, a, b)

    def test_threshold_is_exclusive(self, verifier):
        assert verifier.should_alert(self._warning_with_ops(verifier, 5)) is False
        assert verifier.should_alert(self._warning_with_ops(verifier, 6)) is True

    def test_error_always_alerts(self, verifier):
        assert verifier.should_alert(pair(verifier, {}, RuntimeError("x"))) is True

    def test_info_never_alerts(self, verifier):
        assert verifier.should_alert(pair(verifier, {}, {})) is False

    @pytest.mark.asyncio
    async def test_record_diff_persists_and_alerts(self, verifier, diff_store, alert_sink):
        verifier.record_diff(
            api_endpoint="/api/budget", operation="create", result_a={"amount": 1}, result_b=ValueError("x")
        )
        await verifier.drain()

        assert len(diff_store.records) == 1
        assert len(alert_sink.alerts) == 1
        alert = alert_sink.alerts[0]
        assert alert.severity is Severity.ERROR
        assert alert.message == "Result missing from store B for create"
        assert alert.operation == "create"

    @pytest.mark.asyncio
    async def test_small_warning_is_stored_without_alert(self, verifier, diff_store, alert_sink):
        verifier.record_diff(api_endpoint="/api/budget", operation="update", result_a={"a": 1}, result_b={"a": 2})
        await verifier.drain()

        assert diff_store.records[0].severity is Severity.WARNING
        assert alert_sink.alerts == []

    @pytest.mark.asyncio
    async def test_record_diff_does_not_wait_for_persistence(self, alert_sink):
        store = SlowStore()
        verifier = ResultVerifier(store, [alert_sink])

        verifier.record_diff(api_endpoint="/api/budget", operation="create", result_a={}, result_b={})
        await asyncio.sleep(0)

        assert store.records == []
        assert verifier.runner.pending == 1

        store.release.set()
        await verifier.drain()

        assert len(store.records) == 1

    @pytest.mark.asyncio
    async def test_persistence_failure_is_absorbed_and_still_alerts(self, alert_sink):
        verifier = ResultVerifier(ExplodingStore(), [alert_sink])

        verifier.record_diff(api_endpoint="/api/budget", operation="create", result_a=None, result_b={"a": 1})
        await verifier.drain()

        assert [a.severity for a in alert_sink.alerts] == [Severity.ERROR]

    @pytest.mark.asyncio
    async def test_failing_sink_does_not_block_others(self, diff_store):
        recorder = RecordingAlertSink()
        verifier = ResultVerifier(diff_store, [ExplodingSink(), recorder])

        await verifier.record_alert(AlertEvent(severity=Severity.ERROR, message="drift"))

        assert len(recorder.alerts) == 1

    @pytest.mark.asyncio
    async def test_dispatch_alert_runs_in_background(self, verifier, alert_sink):
        verifier.dispatch_alert(AlertEvent(severity=Severity.WARNING, message="secondary failed"))

        assert alert_sink.alerts == []
        await verifier.drain()
        assert alert_sink.alerts[0].message == "secondary failed"

    @pytest.mark.asyncio
    async def test_record_diff_after_shutdown_is_dropped(self, verifier, diff_store, alert_sink):
        await verifier.runner.shutdown()

        verifier.record_diff(api_endpoint="/api/budget", operation="create", result_a={}, result_b=None)
        verifier.dispatch_alert(AlertEvent(severity=Severity.ERROR, message="late"))
        await verifier.drain()

        assert diff_store.records == []
        assert alert_sink.alerts == []

    @pytest.mark.asyncio
    async def test_logging_sink(self, caplog):
        await LoggingAlertSink().send(AlertEvent(severity=Severity.ERROR, message="stores diverged"))

        assert "stores diverged" in caplog.text


class TestSlackWebhookAlertSink:
    @pytest.mark.asyncio
    async def test_posts_formatted_text(self):
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = SlackWebhookAlertSink("https://hooks.example.com/T000", client=client)
            await sink.send(
                AlertEvent(
                    severity=Severity.ERROR,
                    message="Stores diverged",
                    diff_op_count=7,
                    api_endpoint="/api/budget",
                    operation="update",
                )
            )

        assert len(requests) == 1
        text = json.loads(requests[0].content)["text"]
        assert text.startswith("[dual-write][error] Stores diverged")
        assert "/api/budget / update" in text
        assert "diff operations: 7" in text

    @pytest.mark.asyncio
    async def test_below_min_severity_is_skipped(self):
        handler = MagicMock(return_value=httpx.Response(200))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            sink = SlackWebhookAlertSink("https://hooks.example.com/T000", client=client)
            await sink.send(AlertEvent(severity=Severity.INFO, message="fine"))

        handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        async with httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500))) as client:
            sink = SlackWebhookAlertSink("https://hooks.example.com/T000", client=client)
            with pytest.raises(httpx.HTTPStatusError):
                await sink.send(AlertEvent(severity=Severity.ERROR, message="x"))

    def test_requires_url(self):
        with pytest.raises(ValueError):
            SlackWebhookAlertSink("")


class TestSqlDiffStore:
    @pytest.mark.asyncio
    async def test_save_adds_row_and_commits(self, verifier):
        session = MagicMock()
        session.commit = AsyncMock()
        session.rollback = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session
        record = pair(verifier, {"a": 1}, {"a": 2}, request_id="r-1")

        await SqlDiffStore(factory).save(record)

        row = session.add.call_args.args[0]
        assert isinstance(row, DualWriteDiff)
        assert row.severity == "warning"
        assert row.request_id == "r-1"
        assert row.diff == record.diff
        assert row.created_at == record.timestamp
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_save_rolls_back_on_failure(self, verifier):
        session = MagicMock()
        session.commit = AsyncMock(side_effect=RuntimeError("constraint"))
        session.rollback = AsyncMock()
        factory = MagicMock()
        factory.return_value.__aenter__.return_value = session

        with pytest.raises(RuntimeError):
            await SqlDiffStore(factory).save(pair(verifier, {}, {}))

        session.rollback.assert_awaited_once()
