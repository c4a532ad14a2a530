"""Integration tests: full runs through the state machine, run artifacts,
report export and the CLI entry point.
"""

import json
import sys
from datetime import date
from pathlib import Path

import pandas as pd
import pytest
import yaml
from openpyxl import load_workbook

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from conftest import make_response, make_series_payload, make_session
from factors import weights_by_group
from report_writer import CANONICAL_COLUMNS, format_money, format_pct
from run_context import RunContext
from run_stock_check import execute_run, export_reports, main
from schemas import RANK_PLACEHOLDER, DataMode, RunConfig, RunParams, RunStatus

RUN_DATE = date(2024, 6, 28)


@pytest.fixture
def ctx(tmp_path):
    c = RunContext(run_id="testrun", runs_dir=tmp_path, console=False)
    yield c
    c.close()


@pytest.fixture
def synthetic_outcome():
    params = RunParams(mode="SYNTHETIC", seed=12345, universe_size=1000)
    return execute_run(params, RunConfig(), run_date=RUN_DATE)


# =====================================================================
# SYNTHETIC RUNS
# =====================================================================

class TestSyntheticRun:
    def test_success(self, synthetic_outcome, golden):
        assert synthetic_outcome.status == RunStatus.SUCCESS
        assert synthetic_outcome.error is None
        res = synthetic_outcome.result
        assert res.data_mode == DataMode.SYNTHETIC
        assert [r.identifier for r in res.results[:10]] == golden["top_identifiers"]
        assert res.decision == golden["decision"]

    def test_bad_params_are_coerced_not_rejected(self):
        params = RunParams(seed="not-a-number", universe_size="tiny")
        outcome = execute_run(params, RunConfig(), run_date=RUN_DATE)
        assert outcome.status == RunStatus.SUCCESS
        assert len(outcome.result.results) == 11

    def test_mock_alias(self):
        outcome = execute_run(RunParams(mode="mock", universe_size=1000),
                              run_date=RUN_DATE)
        assert outcome.result.data_mode == DataMode.SYNTHETIC


# =====================================================================
# LIVE RUNS
# =====================================================================

class TestLiveRun:
    def test_success(self, api_key, live_session, rising_closes):
        outcome = execute_run(RunParams(mode="LIVE"), RunConfig(),
                              run_date=RUN_DATE, session=live_session)
        assert outcome.status == RunStatus.SUCCESS
        res = outcome.result
        assert res.data_mode == DataMode.LIVE
        assert res.decision == "NO TRADE"
        assert res.sector_warning is False
        assert res.metrics.avg_top_growth_pct == 0.0
        assert len(res.results) == 1

        row = res.results[0]
        assert row.identifier == "INTC"
        assert row.rank == RANK_PLACEHOLDER
        assert row.predicted_growth_pct == 0.0
        assert row.predicted_price == row.current_price
        assert row.current_price == pytest.approx(rising_closes[-1])
        assert row.price_as_of == "2024-06-28"
        start = rising_closes[-1 - 252]
        assert row.return_12 == pytest.approx((rising_closes[-1] - start) / start * 100,
                                              rel=1e-6)

    def test_missing_api_key(self, no_api_key, live_session):
        outcome = execute_run(RunParams(mode="LIVE"), run_date=RUN_DATE,
                              session=live_session)
        assert outcome.status == RunStatus.ERROR
        assert outcome.result is None
        assert "ALPHA_VANTAGE_API_KEY" in outcome.error
        live_session.get.assert_not_called()

    def test_provider_throttle_note(self, api_key):
        note = {"Information": "API rate limit reached."}
        session = make_session(compact=make_response(note),
                               full=make_response(note))
        outcome = execute_run(RunParams(mode="LIVE"), run_date=RUN_DATE,
                              session=session)
        assert outcome.status == RunStatus.ERROR
        assert "API rate limit reached." in outcome.error

    def test_insufficient_history(self, api_key):
        payload = make_series_payload([20.0 + i * 0.1 for i in range(100)])
        session = make_session(compact=make_response(payload),
                               full=make_response(payload))
        outcome = execute_run(RunParams(mode="LIVE"), run_date=RUN_DATE,
                              session=session)
        assert outcome.status == RunStatus.ERROR
        assert "at least 127" in outcome.error
        assert "received 100" in outcome.error
        assert outcome.result is None

    def test_events_recorded(self, api_key, live_session):
        from instrumentation import EventLog
        log = EventLog()
        execute_run(RunParams(mode="LIVE"), run_date=RUN_DATE,
                    session=live_session, event_log=log)
        types = [e.event_type for e in log.events]
        assert types.count("NET") == 2
        assert "CALC" in types


# =====================================================================
# RUN CONTEXT AND EXPORT
# =====================================================================

class TestRunContext:
    def test_run_dir_and_log(self, ctx, tmp_path):
        assert ctx.run_dir == tmp_path / "testrun"
        ctx.log.info("hello", extra={"phase": "test", "symbol": "INTC"})
        for h in ctx._handlers:
            h.flush()
        lines = (ctx.run_dir / "run.log").read_text(encoding="utf-8").splitlines()
        entries = [json.loads(line) for line in lines]
        hello = next(e for e in entries if e["msg"] == "hello")
        assert hello["phase"] == "test"
        assert hello["symbol"] == "INTC"
        assert hello["level"] == "INFO"

    def test_module_loggers_captured(self, ctx):
        params = RunParams(seed=1, universe_size=1000)
        execute_run(params, run_date=RUN_DATE, event_log=ctx.events, log=ctx.log)
        for h in ctx._handlers:
            h.flush()
        text = (ctx.run_dir / "run.log").read_text(encoding="utf-8")
        assert "stock_check.factor_engine" in text
        assert "stock_check.decision_engine" in text

    def test_artifacts(self, ctx, synthetic_outcome):
        ctx.save_config(RunConfig())
        ctx.save_result(synthetic_outcome.result)
        ctx.flush_events()
        ctx.save_metadata({"status": "success"})
        for name in ("config.yaml", "result.json", "events.csv", "events.md",
                     "meta.json"):
            assert (ctx.run_dir / name).exists(), name
        meta = json.loads((ctx.run_dir / "meta.json").read_text())
        assert meta["run_id"] == "testrun"
        assert "pandas" in meta["packages"]
        saved = json.loads((ctx.run_dir / "result.json").read_text(encoding="utf-8"))
        assert saved["model_version"] == "Stock Check v1.2"
        assert saved["results"][-1]["rank"] == RANK_PLACEHOLDER
        snap = yaml.safe_load((ctx.run_dir / "config.yaml").read_text())
        assert snap["live"]["history_limit"] == 320

    def test_exception_logged_with_traceback(self, ctx):
        try:
            raise ValueError("boom")
        except ValueError:
            ctx.log.exception("failed")
        for h in ctx._handlers:
            h.flush()
        lines = (ctx.run_dir / "run.log").read_text(encoding="utf-8").splitlines()
        entry = next(json.loads(l) for l in lines if '"failed"' in l)
        assert entry["level"] == "ERROR"
        assert "ValueError: boom" in entry["exc"]

    def test_close_restores_propagation(self, tmp_path):
        import logging
        c = RunContext(runs_dir=tmp_path, console=False)
        assert logging.getLogger("stock_check").propagate is False
        c.close()
        assert logging.getLogger("stock_check").propagate is True
        assert not c._handlers


class TestExport:
    def test_all_outputs_written(self, ctx, synthetic_outcome):
        paths = export_reports(synthetic_outcome.result, RunConfig(), ctx)
        assert len(paths) == 3
        for p in paths:
            assert Path(p).exists()

    def test_csv_columns_and_formatting(self, ctx, synthetic_outcome):
        export_reports(synthetic_outcome.result, RunConfig(), ctx)
        df = pd.read_csv(ctx.run_dir / "stock_check_results.csv", dtype=str)
        assert list(df.columns) == CANONICAL_COLUMNS
        assert len(df) == 11
        assert df["Current Price"].str.startswith("$").all()
        assert df["Predicted 1-Day % Growth"].str.endswith("%").all()
        assert df.iloc[-1]["Ticker"] == "INTC"
        assert df.iloc[-1]["Rank"] == RANK_PLACEHOLDER

    def test_excel_sheets(self, ctx, synthetic_outcome):
        export_reports(synthetic_outcome.result, RunConfig(), ctx)
        wb = load_workbook(ctx.run_dir / "stock_check_results.xlsx")
        assert wb.sheetnames == ["Results", "FactorModel"]
        fm = wb["FactorModel"]
        assert fm.cell(row=1, column=2).value == "Factor"
        assert fm.cell(row=2, column=1).value == 1
        assert fm.cell(row=44, column=1).value == 43
        assert fm.cell(row=45, column=5).value == pytest.approx(100.0, abs=0.1)
        assert fm.cell(row=47, column=4).value == "Group"
        groups = {fm.cell(row=r, column=4).value: fm.cell(row=r, column=5).value
                  for r in range(48, 56)}
        assert groups == weights_by_group()
        res = wb["Results"]
        values = [c.value for row in res.iter_rows() for c in row]
        assert "Predicted 1-Day % Growth" in values
        assert "INTC" in values


class TestFormatting:
    @pytest.mark.parametrize("value,expected", [
        (0.5, "+0.50%"),
        (-1.2, "-1.20%"),
        (0.0, "0.00%"),
        (-0.001, "0.00%"),
        (12.345678, "+12.35%"),
    ])
    def test_format_pct(self, value, expected):
        assert format_pct(value) == expected

    def test_format_money(self):
        assert format_money(12.3456) == "$12.35"
        assert format_money(5) == "$5.00"


# =====================================================================
# CLI
# =====================================================================

class TestMain:
    @pytest.fixture
    def cfg_path(self, tmp_path, raw_cfg):
        raw_cfg["output"]["runs_dir"] = str(tmp_path / "runs")
        p = tmp_path / "config.yaml"
        p.write_text(yaml.safe_dump(raw_cfg))
        return p

    def test_synthetic_exit_zero(self, cfg_path, tmp_path, capsys):
        code = main(["--config", str(cfg_path), "--universe-size", "1000",
                     "--seed", "12345"])
        assert code == 0
        out = capsys.readouterr().out
        assert "DECISION:" in out
        run_dirs = list((tmp_path / "runs").iterdir())
        assert len(run_dirs) == 1
        assert (run_dirs[0] / "stock_check_results.xlsx").exists()
        meta = json.loads((run_dirs[0] / "meta.json").read_text())
        assert meta["status"] == "success"
        assert meta["model_version"] == "Stock Check v1.2"
        assert meta["trace"]["by_type"]["CALC"]["count"] == 3
        assert meta["trace"]["failures"] == []
        assert "-synthetic-" in run_dirs[0].name

    def test_no_export(self, cfg_path, tmp_path):
        assert main(["--config", str(cfg_path), "--no-export",
                     "--universe-size", "1000"]) == 0
        run_dir = next((tmp_path / "runs").iterdir())
        assert not (run_dir / "stock_check_results.csv").exists()
        assert (run_dir / "meta.json").exists()

    def test_live_without_key_exit_one(self, cfg_path, no_api_key, capsys):
        assert main(["--config", str(cfg_path), "--mode", "live"]) == 1
        out = capsys.readouterr().out
        assert "ALPHA_VANTAGE_API_KEY" in out
        assert "NOTE: LIVE mode needs ALPHA_VANTAGE_API_KEY" in out

    def test_invalid_mode_exit_one(self, cfg_path, tmp_path, capsys):
        assert main(["--config", str(cfg_path), "--mode", "bogus"]) == 1
        out = capsys.readouterr().out
        assert "Invalid run parameters" in out
        assert not (tmp_path / "runs").exists()

    def test_bad_config_exit_one(self, tmp_path):
        p = tmp_path / "config.yaml"
        p.write_text("live:\n  history_limit: 3\n")
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(p)])
        assert exc_info.value.code == 1
