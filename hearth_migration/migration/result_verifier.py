"""
Comparison of store A / store B results during the migration window.

Every dual-write or shadow-read call hands its two outcomes to the
verifier, which diffs them off the request path, appends a DiffRecord to
the audit log and raises alerts when the stores have drifted apart.
"""

from __future__ import annotations

import dataclasses
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.config import get_config
from hearth_migration.database.async_session import async_db_session
from hearth_migration.database.models import DualWriteDiff
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.background import BackgroundTaskRunner
from hearth_migration.migration.diffing import PatchOp, compute_diff, to_jsonable

logger = get_logger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class Outcome:
    """Settled result of one store call: a value or the exception it raised."""

    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def of(cls, result: Any) -> "Outcome":
        """Wrap a value from `asyncio.gather(..., return_exceptions=True)`."""
        if isinstance(result, Outcome):
            return result
        if isinstance(result, BaseException):
            return cls(error=result)
        return cls(value=result)


class DiffRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_endpoint: str
    operation: str
    payload: Any = None
    request_id: Optional[str] = None
    result_a: Any = None
    result_b: Any = None
    diff: List[PatchOp] = Field(default_factory=list)
    severity: Severity
    timestamp: datetime


class AlertEvent(BaseModel):
    severity: Severity
    message: str
    error: Optional[str] = None
    diff_op_count: int = 0
    api_endpoint: Optional[str] = None
    operation: Optional[str] = None


# ---------------------------------------------------------
#  Diff persistence
# ---------------------------------------------------------


class DiffStore(ABC):
    """Append-only sink for DiffRecords."""

    @abstractmethod
    async def save(self, record: DiffRecord) -> None:
        """Persist one record."""


class InMemoryDiffStore(DiffStore):
    def __init__(self) -> None:
        self.records: List[DiffRecord] = []

    async def save(self, record: DiffRecord) -> None:
        self.records.append(record)


class SqlDiffStore(DiffStore):
    """Writes to the `dual_write_diffs` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def save(self, record: DiffRecord) -> None:
        async with async_db_session(self._session_factory) as session:
            session.add(
                DualWriteDiff(
                    api_endpoint=record.api_endpoint,
                    operation=record.operation,
                    payload=record.payload,
                    request_id=record.request_id,
                    result_a=record.result_a,
                    result_b=record.result_b,
                    diff=record.diff,
                    severity=record.severity.value,
                    created_at=record.timestamp,
                )
            )


# ---------------------------------------------------------
#  Alert sinks
# ---------------------------------------------------------


class AlertSink(ABC):
    @abstractmethod
    async def send(self, alert: AlertEvent) -> None:
        """Deliver one alert."""


class LoggingAlertSink(AlertSink):
    _LEVELS = {
        Severity.INFO: "info",
        Severity.WARNING: "warning",
        Severity.ERROR: "error",
    }

    async def send(self, alert: AlertEvent) -> None:
        log = getattr(logger, self._LEVELS[alert.severity])
        log(
            "[MIGRATION][ALERT][%s] %s (endpoint=%s op=%s diff_ops=%d error=%s)",
            alert.severity.value.upper(),
            alert.message,
            alert.api_endpoint,
            alert.operation,
            alert.diff_op_count,
            alert.error,
        )


class SlackWebhookAlertSink(AlertSink):
    """Posts alerts to a Slack-compatible incoming webhook."""

    def __init__(
        self,
        webhook_url: str,
        *,
        min_severity: Severity = Severity.WARNING,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        if not webhook_url:
            raise ValueError("Slack webhook URL missing")
        self.webhook_url = webhook_url
        self.min_severity = min_severity
        self._client = client
        self._timeout = timeout

    def _should_send(self, alert: AlertEvent) -> bool:
        order = [Severity.INFO, Severity.WARNING, Severity.ERROR]
        return order.index(alert.severity) >= order.index(self.min_severity)

    @staticmethod
    def format_message(alert: AlertEvent) -> str:
        lines = [f"[dual-write][{alert.severity.value}] {alert.message}"]
        if alert.api_endpoint or alert.operation:
            lines.append(f"endpoint: {alert.api_endpoint} / {alert.operation}")
        if alert.diff_op_count:
            lines.append(f"diff operations: {alert.diff_op_count}")
        if alert.error:
            lines.append(f"error: {alert.error}")
        return "\n".join(lines)

    async def send(self, alert: AlertEvent) -> None:
        if not self._should_send(alert):
            return
        body = {"text": self.format_message(alert)}
        if self._client is not None:
            r = await self._client.post(self.webhook_url, json=body)
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                r = await client.post(self.webhook_url, json=body)
        r.raise_for_status()


def default_alert_sinks() -> List[AlertSink]:
    sinks: List[AlertSink] = [LoggingAlertSink()]
    webhook_url = get_config().dual_write.alert_webhook_url.strip()
    if webhook_url:
        sinks.append(SlackWebhookAlertSink(webhook_url))
    return sinks


# ---------------------------------------------------------
#  Verifier
# ---------------------------------------------------------

_UNSET: Any = object()


def classify_severity(outcome_a: Outcome, outcome_b: Outcome, diff: Sequence[PatchOp]) -> Severity:
    """
    info: both sides present and equivalent
    warning: both present, structurally different
    error: a side failed, or only one side returned anything
    """
    if not outcome_a.ok or not outcome_b.ok:
        return Severity.ERROR
    if (outcome_a.value is None) != (outcome_b.value is None):
        return Severity.ERROR
    return Severity.WARNING if diff else Severity.INFO


class ResultVerifier:
    def __init__(
        self,
        store: DiffStore,
        sinks: Optional[Sequence[AlertSink]] = None,
        *,
        runner: Optional[BackgroundTaskRunner] = None,
        alert_diff_op_threshold: Optional[int] = None,
        ignored_fields: Optional[Iterable[str]] = None,
    ):
        cfg = get_config().dual_write
        self.store = store
        self.sinks: List[AlertSink] = list(sinks) if sinks is not None else default_alert_sinks()
        self.runner = runner or BackgroundTaskRunner("verifier")
        self.alert_diff_op_threshold = (
            cfg.alert_diff_op_threshold if alert_diff_op_threshold is None else alert_diff_op_threshold
        )
        self.ignored_fields = frozenset(ignored_fields) if ignored_fields is not None else cfg.ignored_fields

    def build_record(
        self,
        *,
        api_endpoint: str,
        operation: str,
        payload: Any = None,
        result_a: Any = _UNSET,
        result_b: Any = _UNSET,
        primary_result: Any = _UNSET,
        shadow_result: Any = _UNSET,
        supabase_primary: bool = False,
        request_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        ignored_fields: Optional[Iterable[str]] = None,
    ) -> DiffRecord:
        """
        Normalize a result pair and compute its DiffRecord.

        Accepts a dual-write pair (`result_a` / `result_b`, each a value, an
        exception or an Outcome) or a shadow-read pair (`primary_result` /
        `shadow_result`, mapped onto A/B by `supabase_primary`).
        """
        if result_a is _UNSET and result_b is _UNSET:
            if primary_result is _UNSET and shadow_result is _UNSET:
                raise ValueError("record_diff needs result_a/result_b or primary_result/shadow_result")
            primary = Outcome.of(None if primary_result is _UNSET else primary_result)
            shadow = Outcome.of(None if shadow_result is _UNSET else shadow_result)
            outcome_a, outcome_b = (shadow, primary) if supabase_primary else (primary, shadow)
        else:
            outcome_a = Outcome.of(None if result_a is _UNSET else result_a)
            outcome_b = Outcome.of(None if result_b is _UNSET else result_b)

        # Rejected outcomes compare as absent values
        value_a = to_jsonable(outcome_a.value) if outcome_a.ok else None
        value_b = to_jsonable(outcome_b.value) if outcome_b.ok else None

        ignore = self.ignored_fields | frozenset(ignored_fields or ())
        diff: List[PatchOp] = []
        if value_a is not None and value_b is not None:
            diff = compute_diff(value_a, value_b, ignore)

        return DiffRecord(
            api_endpoint=api_endpoint,
            operation=operation,
            payload=to_jsonable(payload),
            request_id=request_id,
            result_a=value_a,
            result_b=value_b,
            diff=diff,
            severity=classify_severity(outcome_a, outcome_b, diff),
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    def record_diff(self, **kwargs: Any) -> None:
        """
        Diff, persist and alert in the background; returns immediately.

        Takes the same keyword arguments as `build_record`. After the runner
        is shut down the comparison is dropped with a warning.
        """
        self.runner.try_spawn(self._process(kwargs), label=f"diff:{kwargs.get('operation', '?')}")

    async def _process(self, kwargs: dict) -> None:
        try:
            record = self.build_record(**kwargs)
        except Exception as e:  # noqa: BLE001
            logger.error("[MIGRATION][VERIFY] Diff computation failed for %s: %r", kwargs.get("operation"), e)
            return

        if record.severity is not Severity.INFO:
            logger.warning(
                "[MIGRATION][VERIFY] %s %s: %s (%d diff ops)",
                record.api_endpoint,
                record.operation,
                record.severity.value,
                len(record.diff),
            )

        try:
            await self.store.save(record)
        except Exception as e:  # noqa: BLE001
            logger.error("[MIGRATION][VERIFY] Failed to persist diff record: %r", e)

        if self.should_alert(record):
            await self.record_alert(
                AlertEvent(
                    severity=record.severity,
                    message=self._alert_message(record),
                    diff_op_count=len(record.diff),
                    api_endpoint=record.api_endpoint,
                    operation=record.operation,
                )
            )

    def should_alert(self, record: DiffRecord) -> bool:
        if record.severity is Severity.ERROR:
            return True
        return record.severity is Severity.WARNING and len(record.diff) > self.alert_diff_op_threshold

    @staticmethod
    def _alert_message(record: DiffRecord) -> str:
        if record.severity is Severity.ERROR:
            if record.result_a is None and record.result_b is None:
                missing = "both stores"
            else:
                missing = "store A" if record.result_a is None else "store B"
            return f"Result missing from {missing} for {record.operation}"
        return f"Stores diverged on {record.operation} ({len(record.diff)} differences)"

    async def record_alert(self, alert: AlertEvent) -> None:
        """Deliver to every sink; one failing sink does not stop the others."""
        for sink in self.sinks:
            try:
                await sink.send(alert)
            except Exception as e:  # noqa: BLE001
                logger.error("[MIGRATION][VERIFY] Alert sink %s failed: %r", type(sink).__name__, e)

    def dispatch_alert(self, alert: AlertEvent) -> None:
        """Fire-and-forget variant of `record_alert`."""
        self.runner.try_spawn(self.record_alert(alert), label=f"alert:{alert.severity.value}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        await self.runner.drain(timeout=timeout)


__all__ = [
    "Severity",
    "Outcome",
    "DiffRecord",
    "AlertEvent",
    "DiffStore",
    "InMemoryDiffStore",
    "SqlDiffStore",
    "AlertSink",
    "LoggingAlertSink",
    "SlackWebhookAlertSink",
    "default_alert_sinks",
    "classify_severity",
    "ResultVerifier",
]
