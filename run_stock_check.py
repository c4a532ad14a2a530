#!/usr/bin/env python3
"""
Stock Check v1.2 — Master Entry Point
======================================
Single-command run:
    python run_stock_check.py                      # mode/seed/size from config.yaml
    python run_stock_check.py --mode synthetic --seed 12345 --universe-size 2000
    python run_stock_check.py --mode live          # needs ALPHA_VANTAGE_API_KEY
    python run_stock_check.py --no-export          # skip Excel/CSV/JSON files

Run lifecycle: idle -> running -> success | error. An error discards any
partial result and carries a human-readable message; the process exits 1.
"""

import argparse
import sys
import time
from datetime import date
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from decision_engine import build_run_result
from factor_engine import (REQUIRED_IDENTIFIER, REQUIRED_NAME, REQUIRED_SECTOR,
                           build_required_instrument, build_universe,
                           coerce_seed, coerce_universe_size)
from factors import MODEL_VERSION
from instrumentation import EventLog, trace_event
from market_data import (LiveDataError, compute_trailing_returns,
                         fetch_live_snapshot, has_api_key)
from report_writer import (format_money, format_pct, write_results_csv,
                           write_results_excel)
from run_context import RunContext
from schemas import DataMode, RunConfig, RunOutcome, RunParams, RunResult, RunStatus

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------
ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(description=MODEL_VERSION)
    p.add_argument("--mode", type=str, default=None,
                   help="SYNTHETIC (alias MOCK) or LIVE; default from config.yaml")
    p.add_argument("--seed", type=str, default=None,
                   help="Synthetic seed (coerced to unsigned 32-bit)")
    p.add_argument("--universe-size", type=str, default=None,
                   help="Synthetic universe size (floored at 1000)")
    p.add_argument("--config", type=str, default=str(CONFIG_PATH),
                   help="Path to config.yaml")
    p.add_argument("--no-export", action="store_true",
                   help="Skip writing JSON/CSV/Excel outputs")
    return p.parse_args(argv)


# ---------------------------------------------------------------------------
# Config loader with error handling
# ---------------------------------------------------------------------------
def load_config(path: str | Path = CONFIG_PATH) -> RunConfig:
    """Load and validate config.yaml.

    Raises FileNotFoundError, yaml.YAMLError or pydantic.ValidationError.
    """
    with open(path) as f:
        raw = yaml.safe_load(f)
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"{Path(path).name} is malformed (expected a mapping)")
    return RunConfig.model_validate(raw)


def load_config_safe(path: str | Path = CONFIG_PATH) -> RunConfig:
    """Load config.yaml with clear error on failure."""
    path = Path(path)
    if not path.exists():
        print(f"\n  ERROR: config not found at {path}")
        sys.exit(1)
    try:
        return load_config(path)
    except (yaml.YAMLError, ValueError, ValidationError) as e:
        print(f"\n  ERROR: Failed to parse {path.name}: {e}")
        sys.exit(1)


def resolve_params(args, cfg: RunConfig) -> RunParams:
    """CLI flags override the config.yaml run defaults."""
    return RunParams(
        mode=args.mode if args.mode is not None else cfg.run.mode,
        seed=args.seed if args.seed is not None else cfg.run.seed,
        universe_size=(args.universe_size if args.universe_size is not None
                       else cfg.run.universe_size),
    )


# ---------------------------------------------------------------------------
# Run modes
# ---------------------------------------------------------------------------
def run_synthetic(params: RunParams, run_date: date,
                  event_log: Optional[EventLog] = None) -> RunResult:
    """Seeded universe -> Top 10 -> decision, plus the required instrument."""
    seed = coerce_seed(params.seed)
    size = coerce_universe_size(params.universe_size)
    with trace_event(event_log, "CALC", "Build synthetic universe",
                     details=f"seed={seed}; size={size}"):
        universe = build_universe(seed, size)
    with trace_event(event_log, "CALC", "Score required instrument",
                     details=REQUIRED_IDENTIFIER):
        required = build_required_instrument(seed)
    with trace_event(event_log, "CALC", "Rank and decide"):
        return build_run_result(universe, required, DataMode.SYNTHETIC, run_date)


def run_live(cfg: RunConfig, run_date: date, session=None,
             event_log: Optional[EventLog] = None) -> RunResult:
    """Real price and trailing returns for the required instrument only.

    There is no ranking competition in LIVE mode: the result holds one row,
    growth is 0 and the decision is always NO TRADE.
    """
    quote, history = fetch_live_snapshot(REQUIRED_IDENTIFIER, cfg.live,
                                         session=session, event_log=event_log)
    with trace_event(event_log, "CALC", "Trailing returns",
                     details=f"points={len(history)}"):
        returns = compute_trailing_returns(history, cfg.live.trailing_windows)
    required = {
        "identifier": REQUIRED_IDENTIFIER,
        "name": REQUIRED_NAME,
        "sector": REQUIRED_SECTOR,
        "current_price": quote.price,
        "predicted_price": quote.price,
        "predicted_growth_pct": 0.0,
        "price_as_of": quote.as_of_date,
        **returns,
    }
    return build_run_result(None, required, DataMode.LIVE, run_date)


def execute_run(params: RunParams, cfg: Optional[RunConfig] = None,
                run_date: Optional[date] = None, session=None,
                event_log: Optional[EventLog] = None, log=None) -> RunOutcome:
    """Drive one run through idle -> running -> success | error."""
    cfg = cfg or RunConfig()
    run_date = run_date or date.today()
    outcome = RunOutcome()
    outcome.status = RunStatus.RUNNING
    if log is not None:
        log.info(f"Run {outcome.status.value} ({params.mode.value})",
                 extra={"status": outcome.status.value,
                        "mode": params.mode.value})
    try:
        if params.mode == DataMode.LIVE:
            result = run_live(cfg, run_date, session=session,
                              event_log=event_log)
        else:
            result = run_synthetic(params, run_date, event_log=event_log)
    except LiveDataError as e:
        outcome = RunOutcome(status=RunStatus.ERROR, error=e.message)
        if log is not None:
            log.error(f"Run failed: {e.message}",
                      extra={"status": outcome.status.value, **_log_meta(e)})
        return outcome

    outcome = RunOutcome(status=RunStatus.SUCCESS, result=result)
    if log is not None:
        log.info(f"Run {outcome.status.value}: {result.decision}",
                 extra={"status": outcome.status.value,
                        "count": len(result.results)})
    return outcome


def _log_meta(e: LiveDataError) -> dict:
    meta = {}
    if "operation" in e.meta:
        meta["op"] = e.meta["operation"]
    if "symbol" in e.meta:
        meta["symbol"] = e.meta["symbol"]
    return meta


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------
def export_reports(result: RunResult, cfg: RunConfig, ctx: RunContext) -> list[str]:
    """Write result JSON, CSV and Excel into the run directory."""
    out = cfg.output
    return [
        str(ctx.save_result(result, out.json_file)),
        write_results_csv(result, ctx.run_dir / out.csv_file),
        write_results_excel(result, ctx.run_dir / out.excel_file),
    ]


# ---------------------------------------------------------------------------
# Summary printer
# ---------------------------------------------------------------------------
def print_summary(outcome: RunOutcome, params: RunParams):
    print()
    print("============================================")
    print(f"  {MODEL_VERSION.upper()} — RUN SUMMARY")
    print("============================================")
    print(f"Status:                   {outcome.status.value}")
    if outcome.status == RunStatus.ERROR:
        print(f"Error:                    {outcome.error}")
        print("============================================")
        return

    result = outcome.result
    print(f"Data mode:                {result.data_mode.value}")
    if result.data_mode == DataMode.SYNTHETIC:
        print(f"Seed / universe size:     {coerce_seed(params.seed)} / "
              f"{coerce_universe_size(params.universe_size)}")
    print(f"Current date:             {result.run_date.isoformat()}")
    print(f"Prediction date:          {result.horizon_date.isoformat()}")
    print("--------------------------------------------")
    print(f"DECISION:                 {result.decision}")
    m = result.metrics
    print(f"  Avg Top 10 growth:      {format_pct(m.avg_top_growth_pct)}  (>= +0.50%)")
    print(f"  Dispersion (Top 10):    {format_pct(m.dispersion_pct)}  (>= 0.60%)")
    print(f"  Max sector count:       {m.max_sector_count}  (warning at 7)")
    if result.sector_warning:
        print("  ** Sector concentration warning: 7+ of Top 10 share a sector **")
    print("--------------------------------------------")
    print(f"{'Rank':>4s}  {'Ticker':<6s} {'Sector':<24s} {'Price':>10s} "
          f"{'Pred':>10s} {'1-Day':>8s} {'3M':>8s} {'6M':>8s} {'12M':>8s}")
    for r in result.results:
        print(f"{str(r.rank):>4s}  {r.identifier:<6s} {r.sector:<24s} "
              f"{format_money(r.current_price):>10s} "
              f"{format_money(r.predicted_price):>10s} "
              f"{format_pct(r.predicted_growth_pct):>8s} "
              f"{format_pct(r.return_3):>8s} {format_pct(r.return_6):>8s} "
              f"{format_pct(r.return_12):>8s}")
    print("============================================")


# ---------------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------------
def main(argv=None) -> int:
    t0 = time.time()
    args = parse_args(argv)

    # ---- 1. Config ----
    cfg = load_config_safe(args.config)
    try:
        params = resolve_params(args, cfg)
    except ValidationError as e:
        print(f"\n  ERROR: Invalid run parameters: {e}")
        return 1
    if params.mode == DataMode.LIVE and not has_api_key(cfg.live):
        print(f"\n  NOTE: LIVE mode needs {cfg.live.api_key_env} set in the "
              "environment; this run will stop before any request.")

    # ---- 2. Run context (reproducibility) ----
    ctx = RunContext(runs_dir=ROOT / cfg.output.runs_dir, mode=params.mode.value)
    try:
        ctx.save_config(cfg)

        # ---- 3. Run ----
        outcome = execute_run(params, cfg, event_log=ctx.events, log=ctx.log)
        print_summary(outcome, params)

        # ---- 4. Export ----
        written = []
        if outcome.status == RunStatus.SUCCESS and not args.no_export:
            try:
                written = export_reports(outcome.result, cfg, ctx)
            except PermissionError as e:
                print(f"\n  ERROR: {e}")
                outcome = RunOutcome(status=RunStatus.ERROR, error=str(e))

        # ---- 5. Run artifacts ----
        ctx.flush_events()
        ctx.save_metadata({
            "cli_flags": {
                "mode": args.mode,
                "seed": args.seed,
                "universe_size": args.universe_size,
                "no_export": args.no_export,
            },
            "mode": params.mode.value,
            "status": outcome.status.value,
            "error": outcome.error,
            "decision": outcome.result.decision if outcome.result else None,
            "outputs": written,
            "total_time_seconds": round(time.time() - t0, 1),
        })
        print(f"\n  Run artifacts saved to: {ctx.run_dir}")
    finally:
        ctx.close()

    return 0 if outcome.status == RunStatus.SUCCESS else 1


if __name__ == "__main__":
    sys.exit(main())
