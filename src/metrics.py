"""
一个简单的运行时指标收集类，统计调度轮次、各通道投递结果、自动顺延次数等信息，
通过事件总线订阅调度事件, 由 Admin API 的 /api/v1/metrics 输出快照。
"""

from __future__ import annotations

import time
from collections import Counter
from dataclasses import dataclass, field

from events import bus, E


@dataclass
class RuntimeMetrics:
    dispatch_run_count: int = 0
    dispatch_total_latency_ms: float = 0.0
    occurrences_processed: int = 0
    auto_snoozed_count: int = 0
    deferred_count: int = 0
    pruned_endpoint_count: int = 0
    sent_by_channel: Counter = field(default_factory=Counter)
    failed_by_channel: Counter = field(default_factory=Counter)
    skipped_by_channel: Counter = field(default_factory=Counter)
    last_dispatch_at: float | None = None
    _run_started_at: float | None = None

    def record_dispatch_started(self) -> None:
        self._run_started_at = time.time()

    def record_dispatch_completed(self, processed: int) -> None:
        now = time.time()
        self.dispatch_run_count += 1
        self.occurrences_processed += max(0, processed)
        if self._run_started_at is not None:
            self.dispatch_total_latency_ms += max(0.0, (now - self._run_started_at) * 1000)
            self._run_started_at = None
        self.last_dispatch_at = now

    def record_sent(self, channel: str) -> None:
        self.sent_by_channel[channel] += 1

    def record_failed(self, channel: str) -> None:
        self.failed_by_channel[channel] += 1

    def record_skipped(self, channel: str) -> None:
        self.skipped_by_channel[channel] += 1

    def record_auto_snoozed(self) -> None:
        self.auto_snoozed_count += 1

    def record_deferred(self) -> None:
        self.deferred_count += 1

    def record_pruned(self, count: int) -> None:
        self.pruned_endpoint_count += max(0, count)

    def snapshot(self) -> dict:
        avg_latency_ms = 0.0
        if self.dispatch_run_count > 0:
            avg_latency_ms = self.dispatch_total_latency_ms / self.dispatch_run_count

        return {
            "dispatch_run_count": self.dispatch_run_count,
            "dispatch_avg_latency_ms": round(avg_latency_ms, 2),
            "occurrences_processed": self.occurrences_processed,
            "auto_snoozed_count": self.auto_snoozed_count,
            "deferred_count": self.deferred_count,
            "pruned_endpoint_count": self.pruned_endpoint_count,
            "sent_by_channel": dict(self.sent_by_channel),
            "failed_by_channel": dict(self.failed_by_channel),
            "skipped_by_channel": dict(self.skipped_by_channel),
            "last_dispatch_at_epoch": self.last_dispatch_at,
            "last_dispatch_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_dispatch_at))
                if self.last_dispatch_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


@bus.on(E.DISPATCH_STARTED)
def _on_dispatch_started(**_: object) -> None:
    runtime_metrics.record_dispatch_started()


@bus.on(E.DISPATCH_COMPLETED)
def _on_dispatch_completed(processed: int = 0, **_: object) -> None:
    runtime_metrics.record_dispatch_completed(processed)


@bus.on(E.NOTIFICATION_SENT)
def _on_sent(channel: str, **_: object) -> None:
    runtime_metrics.record_sent(channel)


@bus.on(E.NOTIFICATION_FAILED)
def _on_failed(channel: str, **_: object) -> None:
    runtime_metrics.record_failed(channel)


@bus.on(E.NOTIFICATION_SKIPPED)
def _on_skipped(channel: str, **_: object) -> None:
    runtime_metrics.record_skipped(channel)


@bus.on(E.OCCURRENCE_AUTO_SNOOZED)
def _on_auto_snoozed(**_: object) -> None:
    runtime_metrics.record_auto_snoozed()


@bus.on(E.OCCURRENCE_DEFERRED)
def _on_deferred(**_: object) -> None:
    runtime_metrics.record_deferred()


@bus.on(E.ENDPOINTS_PRUNED)
def _on_pruned(count: int = 0, **_: object) -> None:
    runtime_metrics.record_pruned(count)


__all__ = ["RuntimeMetrics", "runtime_metrics"]
