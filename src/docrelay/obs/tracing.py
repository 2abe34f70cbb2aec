"""Per-turn tracing and cost accounting for relayed chat turns."""

from __future__ import annotations

import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    resumed_from: str | None
    session_id: str | None
    outcome: str
    text_chars: int
    tool_calls: list[str]
    cost_usd: float
    num_turns: int
    latency_ms: float


@dataclass(slots=True)
class TurnStats:
    """Mutable accumulator filled while a turn streams."""

    outcome: str = "abandoned"
    text_chars: int = 0
    tool_calls: list[str] = field(default_factory=list)
    session_id: str | None = None
    cost_usd: float = 0.0
    num_turns: int = 0


class TraceStore:
    """In-memory turn trace storage, bounded to the most recent records."""

    def __init__(self, *, max_records: int = 1000) -> None:
        self._records: dict[str, TurnRecord] = {}
        self._max_records = max_records
        self._lock = threading.Lock()

    def create_record(
        self,
        *,
        resumed_from: str | None,
        stats: TurnStats,
        latency_ms: float,
    ) -> TurnRecord:
        record = TurnRecord(
            trace_id=str(uuid.uuid4()),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            resumed_from=resumed_from,
            session_id=stats.session_id,
            outcome=stats.outcome,
            text_chars=stats.text_chars,
            tool_calls=list(stats.tool_calls),
            cost_usd=stats.cost_usd,
            num_turns=stats.num_turns,
            latency_ms=latency_ms,
        )
        with self._lock:
            self._records[record.trace_id] = record
            while len(self._records) > self._max_records:
                del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TurnRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnRecord]:
        with self._lock:
            return list(self._records.values())[-limit:]

    def __len__(self) -> int:
        return len(self._records)

    def summary(self) -> dict[str, float | int]:
        """Aggregate turn metrics for the metrics endpoint."""
        with self._lock:
            records = list(self._records.values())
        total = len(records)
        if total == 0:
            return {
                "total_turns": 0,
                "completed_turns": 0,
                "failed_turns": 0,
                "abandoned_turns": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "total_cost_usd": 0.0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))

        return {
            "total_turns": total,
            "completed_turns": sum(1 for record in records if record.outcome == "done"),
            "failed_turns": sum(1 for record in records if record.outcome == "error"),
            "abandoned_turns": sum(1 for record in records if record.outcome == "abandoned"),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "total_cost_usd": sum(record.cost_usd for record in records),
        }


class Timer:
    """Simple context timer used by the relay."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
