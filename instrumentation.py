#!/usr/bin/env python3
"""
Instrumentation Layer for Stock Check
======================================
Timed event trace for one run. Two event kinds are recorded:

    CALC  synthetic universe build, scoring, ranking, trailing returns
    NET   one Alpha Vantage request (source, symbol, HTTP status, redacted URL)

Events live in memory and are written to ``events.csv`` / ``events.md`` in
the run directory at the end of the run. Recording is thread-safe because
the two LIVE requests run on separate workers.

Usage:
    from instrumentation import EventLog, trace_event

    log = EventLog()
    with trace_event(log, "CALC", "Build synthetic universe"):
        universe = build_universe(seed, size)

    log.flush_all(ctx.run_dir)
"""

import csv
import inspect
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

COLUMNS = ["#", "Time", "Type", "Operation", "Source", "Symbol", "Status",
           "Duration", "Details", "Caller"]


class Event:
    """Single traced operation."""
    __slots__ = ("seq", "wall_time", "event_type", "operation", "source",
                 "symbol", "status", "duration_ms", "details", "caller")

    def __init__(self, seq, wall_time, event_type, operation, source="",
                 symbol="", status="OK", duration_ms=0.0, details="",
                 caller=""):
        self.seq = seq
        self.wall_time = wall_time
        self.event_type = event_type
        self.operation = operation
        self.source = source
        self.symbol = symbol
        self.status = status
        self.duration_ms = duration_ms
        self.details = details
        self.caller = caller

    @property
    def failed(self) -> bool:
        return self.status != "OK"

    def to_row(self) -> dict:
        return dict(zip(COLUMNS, (
            self.seq, self.wall_time, self.event_type, self.operation,
            self.source, self.symbol, self.status,
            f"{self.duration_ms:.0f} ms", self.details, self.caller,
        )))


class EventLog:
    """Thread-safe in-memory trace of one run."""

    def __init__(self):
        self.events: list[Event] = []
        self._lock = threading.Lock()

    def record(self, event_type: str, operation: str, duration_ms: float,
               status: str = "OK", details: str = "", source: str = "",
               symbol: str = "", caller: Optional[str] = None) -> Event:
        caller = caller or _get_caller(skip=2)
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S.%f")[:-3]
        with self._lock:
            evt = Event(len(self.events) + 1, stamp, event_type, operation,
                        source=source, symbol=symbol, status=status,
                        duration_ms=round(duration_ms, 1), details=details,
                        caller=caller)
            self.events.append(evt)
        return evt

    def failures(self) -> list[Event]:
        return [e for e in self.events if e.failed]

    def summary(self) -> dict:
        """Counts and total milliseconds per event type, plus failures."""
        by_type: dict[str, dict] = {}
        for e in self.events:
            slot = by_type.setdefault(e.event_type, {"count": 0, "total_ms": 0.0})
            slot["count"] += 1
            slot["total_ms"] = round(slot["total_ms"] + e.duration_ms, 1)
        return {
            "total_events": len(self.events),
            "by_type": by_type,
            "failures": [f"{e.operation}: {e.details}" for e in self.failures()],
        }

    # ---- output ----

    def flush_csv(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", newline="", encoding="utf-8") as f:
            w = csv.DictWriter(f, fieldnames=COLUMNS)
            w.writeheader()
            w.writerows(e.to_row() for e in self.events)
        return str(path)

    def flush_md(self, path: str | Path) -> str:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        summary = self.summary()
        lines = [
            "# Stock Check Run Trace",
            "",
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
            "",
            "## Timing by type",
            "",
            "| Type | Events | Total |",
            "| --- | --- | --- |",
        ]
        for etype, slot in sorted(summary["by_type"].items()):
            lines.append(f"| {etype} | {slot['count']} | {slot['total_ms']:.0f} ms |")
        lines += ["", f"Failures: {len(summary['failures'])}"]
        lines += [f"- {msg}" for msg in summary["failures"]]
        lines += ["", "## Events", "",
                  "| " + " | ".join(COLUMNS) + " |",
                  "| " + " | ".join("---" for _ in COLUMNS) + " |"]
        for e in self.events:
            cells = (str(v).replace("|", "\\|") for v in e.to_row().values())
            lines.append("| " + " | ".join(cells) + " |")
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return str(path)

    def flush_all(self, run_dir: str | Path) -> list[str]:
        d = Path(run_dir)
        return [self.flush_csv(d / "events.csv"), self.flush_md(d / "events.md")]


def _get_caller(skip: int = 2) -> str:
    """file:function:line of the frame ``skip`` levels up."""
    try:
        frame = inspect.stack()[skip]
    except IndexError:
        return "unknown"
    return f"{Path(frame.filename).name}:{frame.function}:{frame.lineno}"


@contextmanager
def trace_event(log: Optional[EventLog], event_type: str, operation: str,
                details: str = "", caller: Optional[str] = None):
    """Time the enclosed block and record it; a None log records nothing."""
    if log is None:
        yield
        return
    # trace_event -> contextmanager.__enter__ -> caller
    caller = caller or _get_caller(skip=3)
    t0 = time.monotonic()
    status = "OK"
    try:
        yield
    except Exception as exc:
        status = "FAIL"
        err = f"{type(exc).__name__}: {exc}"
        details = f"{details}; {err}" if details else err
        raise
    finally:
        log.record(event_type, operation, (time.monotonic() - t0) * 1000,
                   status=status, details=details, caller=caller)


def trace_net_call(log: Optional[EventLog], operation: str, source: str,
                   symbol: str, url: str = "", status_code: int = 0,
                   duration_ms: float = 0.0, status: str = "OK") -> Optional[Event]:
    """Record one provider request. ``url`` must already be redacted."""
    if log is None:
        return None
    details = "; ".join(p for p in (
        f"http={status_code}" if status_code else "",
        f"url={url}" if url else "",
    ) if p)
    return log.record("NET", operation, duration_ms, status=status,
                      details=details, source=source, symbol=symbol,
                      caller=_get_caller(skip=2))
