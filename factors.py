#!/usr/bin/env python3
"""
Stock Check — Locked 43-Factor Model
=====================================
Factor definitions and weights for the predicted 1-day growth model.
The table is frozen: weights total 100% and are never changed at runtime.
Only the weights feed the scoring engine; names, definitions and groups are
reference data for reports.
"""

from schemas import Factor

MODEL_VERSION = "Stock Check v1.2"


def _f(fid, name, definition, weight_pct, group):
    return Factor(id=fid, name=name, definition=definition,
                  weight_pct=weight_pct, group=group)


_MOM = "Momentum & Price Structure"
_EPS = "Earnings & Revenue Acceleration"
_OPT = "Options & Flow Signals"
_VOL = "Volatility Structure"
_RS = "Relative Strength & Sector Rotation"
_LIQ = "Liquidity & Institutional Behavior"
_RISK = "Risk Compression & Acceleration"
_MACRO = "Macro Overlay Inputs"

FACTORS: tuple[Factor, ...] = (
    # I. Momentum & Price Structure (18%)
    _f(1, "5-Day Momentum", "% change over 5 trading days", 2.0, _MOM),
    _f(2, "10-Day Momentum", "% change over 10 days", 2.0, _MOM),
    _f(3, "20-Day Momentum", "% change over 20 days", 2.0, _MOM),
    _f(4, "50-Day Trend Position", "% above/below 50DMA", 2.5, _MOM),
    _f(5, "200-Day Trend Position", "% above/below 200DMA", 2.5, _MOM),
    _f(6, "RSI Compression", "RSI normalized 0-100", 2.0, _MOM),
    _f(7, "MACD Slope", "Rate of change of MACD", 2.0, _MOM),
    _f(8, "Breakout Velocity", "Distance from 30-day high", 3.0, _MOM),

    # II. Earnings & Revenue Acceleration (16%)
    _f(9, "EPS YoY Growth", "Year-over-year EPS growth", 3.0, _EPS),
    _f(10, "EPS QoQ Acceleration", "Sequential EPS acceleration", 3.0, _EPS),
    _f(11, "Revenue YoY Growth", "Revenue growth YoY", 3.0, _EPS),
    _f(12, "Revenue QoQ Acceleration", "Sequential revenue change", 3.0, _EPS),
    _f(13, "Earnings Surprise", "% beat vs estimates", 2.0, _EPS),
    _f(14, "Forward Guidance Revision", "Net analyst revisions", 2.0, _EPS),

    # III. Options & Flow Signals (14%)
    _f(15, "Call/Put Volume Ratio", "Bullish flow bias", 3.0, _OPT),
    _f(16, "Unusual Options Activity", "Z-score abnormal flow", 3.0, _OPT),
    _f(17, "Open Interest Expansion", "OI growth %", 2.0, _OPT),
    _f(18, "Dark Pool Flow Bias", "Institutional net prints", 3.0, _OPT),
    _f(19, "Block Trade Accumulation", "Large trade clustering", 3.0, _OPT),

    # IV. Volatility Structure (10%)
    _f(20, "Implied Volatility Rank", "IV percentile", 2.5, _VOL),
    _f(21, "IV Skew", "Call vs put skew", 2.0, _VOL),
    _f(22, "Volatility Compression", "Bollinger width", 2.5, _VOL),
    _f(23, "ATR Expansion", "ATR vs baseline", 3.0, _VOL),

    # V. Relative Strength & Sector Rotation (12%)
    _f(24, "Relative Strength vs SPY", "20-day relative return", 3.0, _RS),
    _f(25, "Relative Strength vs Sector ETF", "Relative sector performance", 3.0, _RS),
    _f(26, "Sector Momentum Rank", "Sector percentile", 3.0, _RS),
    _f(27, "Cross-Sector Capital Rotation", "ETF flow signals", 3.0, _RS),

    # VI. Liquidity & Institutional Behavior (10%)
    _f(28, "Volume Surge Ratio", "Volume vs 30-day avg", 3.0, _LIQ),
    _f(29, "Institutional Ownership Change", "QoQ change", 2.5, _LIQ),
    _f(30, "Insider Buying Activity", "Net insider accumulation", 2.5, _LIQ),
    _f(31, "Short Interest Compression", "Days-to-cover trend", 2.0, _LIQ),

    # VII. Risk Compression & Acceleration (10%)
    _f(32, "Beta Adjustment", "Risk-normalized return", 2.0, _RISK),
    _f(33, "Downside Deviation", "30-day downside risk", 2.0, _RISK),
    _f(34, "Price Gap Frequency", "Positive gaps", 2.0, _RISK),
    _f(35, "Accumulation/Distribution", "Money flow trend", 2.0, _RISK),
    _f(36, "Acceleration Curve Fit", "2nd derivative momentum", 2.0, _RISK),

    # VIII. Macro Overlay Inputs (10%)
    _f(37, "Market Breadth", "Adv/Decline ratio", 2.0, _MACRO),
    _f(38, "VIX Direction", "5-day VIX trend", 2.0, _MACRO),
    _f(39, "Treasury Yield Trend", "10Y trend", 2.0, _MACRO),
    _f(40, "Dollar Index Trend", "DXY trend", 1.5, _MACRO),
    _f(41, "Fed Liquidity Proxy", "Balance sheet change", 1.5, _MACRO),
    _f(42, "Economic Surprise Index", "Macro surprise", 0.5, _MACRO),
    _f(43, "Risk-On / Risk-Off Composite", "Cross-asset signal", 0.5, _MACRO),
)

# Weights as fractions of 1, in factor id order (consumed by the scorer).
FACTOR_WEIGHTS: tuple[float, ...] = tuple(f.weight_pct / 100 for f in FACTORS)


def weights_total() -> float:
    """Total factor weight in percent, rounded to one decimal place."""
    return round(sum(f.weight_pct for f in FACTORS), 1)


def weights_by_group() -> dict:
    """Total weight per factor group, in table order."""
    totals: dict[str, float] = {}
    for f in FACTORS:
        totals[f.group] = round(totals.get(f.group, 0.0) + f.weight_pct, 1)
    return totals
