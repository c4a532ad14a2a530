#!/usr/bin/env python3
"""
Stock Check — Phase 2: Ranking & Trade Decision
================================================
Ranks a scored universe by predicted 1-day growth, takes the Top 10,
appends the required instrument (unranked), and applies the trade rule:

    TRADE  iff  avg(Top 10 growth) >= 0.50%  AND  dispersion >= 0.60%

Dispersion is max - min of Top 10 predicted growth. A sector
concentration warning is raised when 7+ of the Top 10 share a sector;
it is informational and never changes ranks or the decision.
"""

import logging
from datetime import date, timedelta

import pandas as pd

from factor_engine import UNIVERSE_COLUMNS
from factors import MODEL_VERSION
from schemas import (RANK_PLACEHOLDER, DataMode, InstrumentRecord, RunMetrics,
                     RunResult)

logger = logging.getLogger("stock_check.decision_engine")

TOP_K = 10
MIN_AVG_GROWTH_PCT = 0.50
MIN_DISPERSION_PCT = 0.60
SECTOR_WARNING_COUNT = 7


# =========================================================================
# A. Ranking
# =========================================================================
def rank_universe(universe: pd.DataFrame, top_k: int = TOP_K) -> pd.DataFrame:
    """Return the Top-K rows, sorted by predicted growth, with ranks 1..K.

    The sort is stable: instruments with equal growth keep their draw order.
    """
    ranked = universe.sort_values("predicted_growth_pct", ascending=False,
                                  kind="stable")
    top = ranked.head(top_k).reset_index(drop=True)
    top.insert(0, "rank", range(1, len(top) + 1))
    return top


# =========================================================================
# B. Metrics and decision rule
# =========================================================================
def compute_run_metrics(top: pd.DataFrame) -> RunMetrics:
    """Average, dispersion and max sector count over the Top-K set only."""
    if top.empty:
        return RunMetrics(avg_top_growth_pct=0.0, dispersion_pct=0.0,
                          max_sector_count=0)
    growth = top["predicted_growth_pct"]
    return RunMetrics(
        avg_top_growth_pct=float(growth.mean()),
        dispersion_pct=float(growth.max() - growth.min()),
        max_sector_count=int(top["sector"].value_counts().max()),
    )


def decide_trade(metrics: RunMetrics) -> str:
    """Both thresholds must hold at once."""
    if (metrics.avg_top_growth_pct >= MIN_AVG_GROWTH_PCT
            and metrics.dispersion_pct >= MIN_DISPERSION_PCT):
        return "TRADE"
    return "NO TRADE"


def sector_concentration_warning(metrics: RunMetrics) -> bool:
    return metrics.max_sector_count >= SECTOR_WARNING_COUNT


# =========================================================================
# C. Result assembly
# =========================================================================
def build_run_result(universe: pd.DataFrame, required: dict,
                     data_mode: DataMode, run_date: date,
                     top_k: int = TOP_K) -> RunResult:
    """Rank, decide and package one run.

    ``required`` is the required instrument's record; it is appended after
    the Top-K with a placeholder rank and takes no part in the metrics.
    LIVE runs pass an empty universe, which yields zeroed metrics and
    therefore NO TRADE.
    """
    if universe is None:
        universe = pd.DataFrame(columns=UNIVERSE_COLUMNS)
    top = rank_universe(universe, top_k)
    metrics = compute_run_metrics(top)
    decision = decide_trade(metrics)
    warning = sector_concentration_warning(metrics)

    rows = [InstrumentRecord(**rec) for rec in top.to_dict("records")]
    rows.append(InstrumentRecord(**{**required, "rank": RANK_PLACEHOLDER}))

    logger.info(
        "Decision %s (avg=%.4f%%, dispersion=%.4f%%, max_sector=%d)",
        decision, metrics.avg_top_growth_pct, metrics.dispersion_pct,
        metrics.max_sector_count, extra={"phase": "decision", "count": len(top)},
    )
    if warning:
        logger.warning("Sector concentration: %d of Top %d share one sector",
                       metrics.max_sector_count, len(top))

    return RunResult(
        model_version=MODEL_VERSION,
        data_mode=data_mode,
        run_date=run_date,
        horizon_date=run_date + timedelta(days=1),
        decision=decision,
        sector_warning=warning,
        metrics=metrics,
        results=rows,
    )
