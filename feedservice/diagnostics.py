"""Run diagnostics collector.

One `Diagnostics` instance is created per run and handed to every stage
(queue, feeds, converter, product map). Stages record soft failures here
instead of raising them, so a run can finish with a complete account of
what was dropped and why.
"""

import logging
import threading
import tracemalloc
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from feedservice.errors import RunError, SourceError, StructuralError
from feedservice.logging_config import get_logger, log_pipeline_event

__all__ = ["PipelineEntry", "Diagnostics"]

logger = get_logger("diagnostics")

_MEGABYTE = 1024 * 1024


@dataclass
class PipelineEntry:
    """One recorded error."""

    stage: str
    error: Exception
    critical: bool = False

    @property
    def kind(self) -> str:
        if isinstance(self.error, RunError):
            return "run"
        if isinstance(self.error, SourceError):
            return "source"
        if isinstance(self.error, StructuralError):
            return "structural"
        return "record"

    def __str__(self) -> str:
        flag = "critical" if self.critical else "non-critical"
        # A run error renders the diagnostics report itself
        message = self.error.message if isinstance(self.error, RunError) else self.error
        return f"[{flag}/{self.kind}] {self.stage} - {message}"


class Diagnostics:
    """Thread-safe collector of run errors, counters and peak memory."""

    def __init__(self, production: bool = False):
        self.production = production
        self.entries: List[PipelineEntry] = []
        self.attempted = 0
        self.dropped = 0
        self.structural = 0
        self.sources_failed = 0
        self.peak_memory_mb = 0.0
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record(self, error: Exception, stage: str, critical: bool = False) -> PipelineEntry:
        """Add an error to the log and update the counters for its kind."""
        entry = PipelineEntry(stage=stage, error=error, critical=critical)
        with self._lock:
            self.entries.append(entry)
            if entry.kind == "source":
                self.sources_failed += 1
            elif entry.kind != "run":
                self.dropped += 1
                if entry.kind == "structural":
                    self.structural += 1

        level = logging.ERROR if critical else logging.DEBUG
        if entry.kind in ("source", "structural"):
            level = max(level, logging.WARNING)
        log_pipeline_event(
            f"{entry.kind}_error",
            {"message": str(entry), "stage": stage, "critical": critical},
            level=level,
            logger_name="diagnostics",
        )
        return entry

    def reset(self) -> None:
        """Start counting afresh, e.g. before a retried fetch pass. Peak memory is kept."""
        with self._lock:
            self.entries.clear()
            self.attempted = 0
            self.dropped = 0
            self.structural = 0
            self.sources_failed = 0

    def count_attempted(self, n: int = 1) -> None:
        with self._lock:
            self.attempted += n

    def sample_memory(self, stage: str) -> float:
        """Record traced memory for a stage and keep the peak (in MB)."""
        if not tracemalloc.is_tracing():
            return self.peak_memory_mb
        current, peak = tracemalloc.get_traced_memory()
        with self._lock:
            self.peak_memory_mb = max(self.peak_memory_mb, peak / _MEGABYTE)
        logger.debug(f"{stage}: {current / _MEGABYTE:.1f} MB allocated, peak {self.peak_memory_mb:.1f} MB")
        return self.peak_memory_mb

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def critical(self) -> bool:
        return any(e.critical for e in self.entries)

    def non_critical(self) -> List[PipelineEntry]:
        return [e for e in self.entries if not e.critical]

    def by_kind(self, kind: str) -> List[PipelineEntry]:
        return [e for e in self.entries if e.kind == kind]

    def last_errors(self, n: int = 5) -> List[PipelineEntry]:
        with self._lock:
            return list(self.entries[-n:])

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "attempted": self.attempted,
                "dropped": self.dropped,
                "structural": self.structural,
                "sources_failed": self.sources_failed,
                "errors": len(self.entries),
                "critical": any(e.critical for e in self.entries),
                "peak_memory_mb": round(self.peak_memory_mb, 1),
            }

    def report(self, last: Optional[int] = 5) -> str:
        """Human readable summary plus the most recent errors."""
        s = self.summary()
        lines = [
            f"Records attempted: {s['attempted']}, dropped: {s['dropped']} "
            f"(structural: {s['structural']}), failed sources: {s['sources_failed']}, "
            f"peak memory: {s['peak_memory_mb']} MB"
        ]
        entries = self.entries if last is None else self.last_errors(last)
        for entry in entries:
            lines.append(f"  {entry}")
        return "\n".join(lines)

    def __len__(self) -> int:
        return len(self.entries)

    def __str__(self) -> str:
        return self.report(last=None)
