"""Fire-and-forget resolution telemetry."""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from loguru import logger

from grounded_resolver.resolution.context import scrub_pii


@dataclass(slots=True)
class TelemetryRecord:
    """One row per resolution, flattened for storage."""

    site_id: str
    query: str
    query_norm: str
    decision: str
    query_redacted: bool = False
    extracted_terms: list[str] = field(default_factory=list)
    relevant_terms: list[str] = field(default_factory=list)
    category_hint: str | None = None
    category_source: str = "page"
    ambiguous: bool = False
    ambiguous_score: float = 0.0
    ambiguity_tokens: list[str] = field(default_factory=list)
    candidates: list[dict[str, Any]] = field(default_factory=list)
    multi_context_used: bool = False
    multi_context_products: list[str] = field(default_factory=list)
    multi_context_tokens: int | None = None
    postfilter_type: str | None = None
    postfilter_survivors: int | None = None
    page_context_used: bool = False
    latency_ms: float = 0.0
    search_latency_ms: float = 0.0
    boosts_applied: dict[str, Any] = field(
        default_factory=lambda: {"terms": [], "category_boost": 0.0}
    )
    max_total_boost_applied: float = 0.0
    multilingual_fallback: bool = False
    score_source: str = "fts"
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_row(self) -> dict[str, Any]:
        return asdict(self)


class TelemetryWriter(Protocol):
    def insert(self, row: dict[str, Any]) -> None:
        """Persist one telemetry row."""


class InMemoryTelemetryWriter:
    """Thread-safe writer that keeps rows in memory (tests, local runs, /telemetry)."""

    def __init__(self, max_rows: int = 1000) -> None:
        self.max_rows = max_rows
        self._rows: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def insert(self, row: dict[str, Any]) -> None:
        with self._lock:
            self._rows.append(row)
            if len(self._rows) > self.max_rows:
                del self._rows[: len(self._rows) - self.max_rows]

    def list_recent(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._rows[-limit:])

    def summary(self) -> dict[str, float | int]:
        """Aggregate decision counts and latency for a quick health view."""
        with self._lock:
            rows = list(self._rows)
        total = len(rows)
        if total == 0:
            return {
                "total_resolutions": 0,
                "single": 0,
                "multi": 0,
                "refusal": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
            }

        latencies = sorted(float(row.get("latency_ms") or 0.0) for row in rows)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        decisions = [row.get("decision") for row in rows]
        return {
            "total_resolutions": total,
            "single": decisions.count("single"),
            "multi": decisions.count("multi"),
            "refusal": decisions.count("refusal"),
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
        }


class TelemetrySink:
    """Submits telemetry to a single background worker.

    The query is PII-scrubbed again right before writing. Writer failures are
    logged at debug level (warning in development) and never reach the caller.
    """

    def __init__(self, writer: TelemetryWriter, *, development: bool = False) -> None:
        self._writer = writer
        self._development = development
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="telemetry")

    def log_non_blocking(self, record: TelemetryRecord) -> Future[None] | None:
        try:
            return self._executor.submit(self._write, record)
        except Exception as exc:
            self._report(exc)
            return None

    def flush(self, timeout: float | None = 5.0) -> None:
        """Wait until everything submitted so far has been written."""
        try:
            self._executor.submit(lambda: None).result(timeout=timeout)
        except Exception as exc:
            self._report(exc)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _write(self, record: TelemetryRecord) -> None:
        try:
            scrubbed, redacted = scrub_pii(record.query)
            scrubbed_norm, _ = scrub_pii(record.query_norm)
            row = record.to_row()
            row["query"] = scrubbed
            row["query_norm"] = scrubbed_norm
            row["query_redacted"] = redacted or record.query_redacted
            self._writer.insert(row)
        except Exception as exc:
            self._report(exc)

    def _report(self, exc: Exception) -> None:
        if self._development:
            logger.warning(f"[Telemetry] write failed (non-blocking): {exc}")
        else:
            logger.debug(f"[Telemetry] write failed (non-blocking): {exc}")


class TelemetryTimer:
    """Wall-clock timer for total and search latency in milliseconds."""

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._search_start: float | None = None

    def start_search(self) -> None:
        self._search_start = time.perf_counter()

    def end_search(self) -> float:
        if self._search_start is None:
            return 0.0
        return (time.perf_counter() - self._search_start) * 1000.0

    def total_latency_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
