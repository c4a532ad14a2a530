"""Tests for the run event trace: timing, failure capture, summary and
the csv / markdown outputs.
"""

import csv
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from instrumentation import COLUMNS, EventLog, trace_event, trace_net_call


# =====================================================================
# TRACING
# =====================================================================

class TestTraceEvent:
    def test_records_ok(self):
        log = EventLog()
        with trace_event(log, "CALC", "Rank and decide", details="k=10"):
            pass
        (evt,) = log.events
        assert evt.seq == 1
        assert evt.status == "OK"
        assert evt.details == "k=10"
        assert "test_instrumentation.py" in evt.caller

    def test_failure_recorded_and_reraised(self):
        log = EventLog()
        with pytest.raises(ZeroDivisionError):
            with trace_event(log, "CALC", "Trailing returns", details="points=5"):
                1 / 0
        (evt,) = log.events
        assert evt.failed
        assert evt.details.startswith("points=5; ZeroDivisionError")

    def test_none_log_is_noop(self):
        with trace_event(None, "CALC", "anything"):
            pass
        assert trace_net_call(None, "op", source="X", symbol="INTC") is None

    def test_net_call_fields(self):
        log = EventLog()
        evt = trace_net_call(log, "fetchDailyHistory", source="ALPHA_VANTAGE",
                             symbol="INTC", url="https://x/?apikey=REDACTED",
                             status_code=200, duration_ms=12.34)
        assert evt.event_type == "NET"
        assert evt.symbol == "INTC"
        assert evt.duration_ms == 12.3
        assert evt.details == "http=200; url=https://x/?apikey=REDACTED"


# =====================================================================
# SUMMARY AND OUTPUT
# =====================================================================

@pytest.fixture
def mixed_log():
    log = EventLog()
    log.record("CALC", "Build synthetic universe", 40.0)
    log.record("CALC", "Rank and decide", 2.5)
    log.record("NET", "fetchCurrentPrice", 100.0, status="FAIL",
               details="http=503", source="ALPHA_VANTAGE", symbol="INTC")
    return log


class TestSummary:
    def test_counts_and_totals(self, mixed_log):
        s = mixed_log.summary()
        assert s["total_events"] == 3
        assert s["by_type"]["CALC"] == {"count": 2, "total_ms": 42.5}
        assert s["by_type"]["NET"]["count"] == 1
        assert s["failures"] == ["fetchCurrentPrice: http=503"]

    def test_empty(self):
        assert EventLog().summary() == {"total_events": 0, "by_type": {},
                                        "failures": []}


class TestFlush:
    def test_csv(self, mixed_log, tmp_path):
        csv_path, md_path = mixed_log.flush_all(tmp_path / "run")
        with open(csv_path, newline="", encoding="utf-8") as f:
            rows = list(csv.DictReader(f))
        assert list(rows[0].keys()) == COLUMNS
        assert rows[2]["Symbol"] == "INTC"
        assert rows[2]["Duration"] == "100 ms"
        assert Path(md_path).name == "events.md"

    def test_markdown(self, mixed_log, tmp_path):
        text = Path(mixed_log.flush_md(tmp_path / "events.md")).read_text(
            encoding="utf-8")
        assert "| CALC | 2 | 42 ms |" in text
        assert "Failures: 1" in text
        assert "- fetchCurrentPrice: http=503" in text
