#!/usr/bin/env python3
"""
Stock Check — Phase 1: Factor Engine
=====================================
Deterministic synthetic universe for the locked 43-factor model.

For every instrument the engine draws a sector and a log-uniform price,
scores all 43 factors into a predicted 1-day growth percentage, and
simulates 3/6/12-month returns. Everything is driven by one seeded
Mulberry32 stream, so a (seed, universe_size) pair always reproduces the
same universe, bit for bit.

Draw order per instrument (part of the reproducibility contract):
    sector -> price -> 43 x 4 factor draws -> short, medium, long horizon
"""

import logging
import math

import pandas as pd

from factors import FACTOR_WEIGHTS

logger = logging.getLogger("stock_check.factor_engine")

# =========================================================================
# A. Constants
# =========================================================================
SECTORS = (
    "Technology",
    "Healthcare",
    "Financials",
    "Consumer Discretionary",
    "Industrials",
    "Energy",
    "Communication Services",
    "Utilities",
    "Real Estate",
    "Materials",
    "Consumer Staples",
)

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
TICKER_OFFSET = 11

MIN_UNIVERSE_SIZE = 1000
# Three mixed-radix letters give 26**3 distinct identifiers.
MAX_UNIVERSE_SIZE = 26 ** 3

PRICE_BOUNDS = (2.5, 1000.0)
PRICE_DRAW_RANGE = (5.0, 450.0)
GROWTH_BOUNDS = (-1.5, 2.0)
RETURN_BOUNDS = (-85.0, 220.0)

# (output column, baseline volatility in %), drawn in this order.
HORIZONS = (
    ("return_3", 12.0),
    ("return_6", 18.0),
    ("return_12", 28.0),
)
FAT_TAIL_PROB = 0.08
FAT_TAIL_MULTIPLIER = 2.8

# Required instrument: appended to every run, never ranked.
REQUIRED_IDENTIFIER = "INTC"
REQUIRED_NAME = "Intel Corporation"
REQUIRED_SECTOR = "Technology"
REQUIRED_PRICE_DRAW_RANGE = (15.0, 120.0)
REQUIRED_SEED_XOR = 0x9E3779B9

UNIVERSE_COLUMNS = [
    "identifier", "name", "sector", "current_price", "predicted_price",
    "predicted_growth_pct", "return_3", "return_6", "return_12",
]

_MASK32 = 0xFFFFFFFF


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


# =========================================================================
# B. Seeded random source (Mulberry32)
# =========================================================================
def _imul(a: int, b: int) -> int:
    return (a * b) & _MASK32


class SeededRandom:
    """Deterministic stream of floats in [0, 1) from a 32-bit seed.

    Iterating yields the same values for the same seed, forever. The stream
    is restartable by building a new instance; there is no shared state.
    """

    def __init__(self, seed: int):
        self.seed = int(seed) & _MASK32
        self._state = self.seed

    def __iter__(self):
        return self

    def __next__(self) -> float:
        self._state = (self._state + 0x6D2B79F5) & _MASK32
        t = self._state
        x = _imul(t ^ (t >> 15), 1 | t)
        x ^= (x + _imul(x ^ (x >> 7), 61 | x)) & _MASK32
        return ((x ^ (x >> 14)) & _MASK32) / 4294967296

    def uniform(self, lo: float, hi: float) -> float:
        """Uniform draw over [lo, hi)."""
        return lo + (hi - lo) * next(self)

    def pick(self, choices):
        """Uniform pick from a finite sequence."""
        return choices[int(next(self) * len(choices))]


# =========================================================================
# C. Parameter coercion (never rejects, only clamps)
# =========================================================================
def coerce_seed(value) -> int:
    """Coerce any seed value to an unsigned 32-bit integer.

    Fractions truncate toward zero, negatives wrap modulo 2**32, and
    anything non-numeric (None, "abc", NaN, inf) becomes 0.
    """
    if isinstance(value, int):
        return value & _MASK32
    try:
        x = float(value)
    except (TypeError, ValueError):
        return 0
    if not math.isfinite(x):
        return 0
    return int(x) & _MASK32


def coerce_universe_size(value) -> int:
    """Floor to an integer and clamp to [MIN_UNIVERSE_SIZE, MAX_UNIVERSE_SIZE]."""
    try:
        x = float(value)
    except (TypeError, ValueError):
        x = float("nan")
    if math.isnan(x):
        size = MIN_UNIVERSE_SIZE
    elif math.isinf(x):
        size = MAX_UNIVERSE_SIZE if x > 0 else MIN_UNIVERSE_SIZE
    else:
        size = int(clamp(math.floor(x), MIN_UNIVERSE_SIZE, MAX_UNIVERSE_SIZE))
    if x > MAX_UNIVERSE_SIZE:
        logger.info("Universe size %r capped at %d (unique identifier limit)",
                    value, size, extra={"count": size})
    elif size != value:
        logger.debug("Universe size %r coerced to %d", value, size,
                     extra={"count": size})
    return size


# =========================================================================
# D. Instrument generator
# =========================================================================
def make_identifier(draw_index: int) -> str:
    """Pseudo ticker for a draw index: 3 letters, plus a 4th on every 7th code."""
    n = draw_index + TICKER_OFFSET
    letters = [
        _ALPHABET[n % 26],
        _ALPHABET[(n // 26) % 26],
        _ALPHABET[(n // 676) % 26],
    ]
    if n % 7 == 0:
        letters.append(_ALPHABET[(n // 7) % 26])
    return "".join(letters)


def draw_price(rng: SeededRandom, lo: float = PRICE_DRAW_RANGE[0],
               hi: float = PRICE_DRAW_RANGE[1]) -> float:
    """Log-uniform price over [lo, hi], clamped to PRICE_BOUNDS."""
    return clamp(math.exp(rng.uniform(math.log(lo), math.log(hi))), *PRICE_BOUNDS)


# =========================================================================
# E. Factor scoring
# =========================================================================
def logistic(z: float) -> float:
    return 1 / (1 + math.exp(-z))


def compute_predicted_growth_pct(rng: SeededRandom) -> float:
    """Score the 43 factors and map the weighted total to a daily growth %.

    Each raw factor value is (u1 + u2 + u3 + u4 - 2) * 1.25, a bell-shaped
    draw centred on 0, squashed to (0, 1) and weighted by its share of 100%.
    The weighted total is in (0, 1) and maps onto [-1.5%, +2.0%].
    """
    total = 0.0
    for weight in FACTOR_WEIGHTS:
        raw = (next(rng) + next(rng) + next(rng) + next(rng) - 2) * 1.25
        total += logistic(raw) * weight
    return clamp(total * 3.5 - 1.5, *GROWTH_BOUNDS)


# =========================================================================
# F. Horizon return simulator
# =========================================================================
def draw_return_pct(rng: SeededRandom, volatility: float) -> float:
    """One horizon return: fat-tail mixture over a triangular-ish core."""
    tail = FAT_TAIL_MULTIPLIER if next(rng) < FAT_TAIL_PROB else 1.0
    r = (rng.uniform(-1, 1) + rng.uniform(-1, 1) + rng.uniform(-1, 1)) / 3
    return clamp(r * volatility * tail, *RETURN_BOUNDS)


def draw_horizon_returns(rng: SeededRandom) -> dict:
    return {col: draw_return_pct(rng, vol) for col, vol in HORIZONS}


def _score_instrument(rng: SeededRandom, current_price: float) -> dict:
    growth = compute_predicted_growth_pct(rng)
    rec = {
        "current_price": current_price,
        "predicted_price": current_price * (1 + growth / 100),
        "predicted_growth_pct": growth,
    }
    rec.update(draw_horizon_returns(rng))
    return rec


def generate_instrument(rng: SeededRandom, draw_index: int) -> dict:
    """Build one synthetic instrument record from the shared stream."""
    identifier = make_identifier(draw_index)
    sector = rng.pick(SECTORS)
    current_price = draw_price(rng)
    rec = {
        "identifier": identifier,
        "name": f"Mock Company {identifier}",
        "sector": sector,
    }
    rec.update(_score_instrument(rng, current_price))
    return rec


# =========================================================================
# G. Universe builder
# =========================================================================
def build_universe(seed, universe_size) -> pd.DataFrame:
    """Generate the full synthetic universe in draw order."""
    rng = SeededRandom(coerce_seed(seed))
    n = coerce_universe_size(universe_size)
    records = [generate_instrument(rng, i) for i in range(n)]
    logger.info("Generated synthetic universe of %d instruments (seed=%d)",
                n, rng.seed, extra={"count": n, "seed": rng.seed})
    return pd.DataFrame.from_records(records, columns=UNIVERSE_COLUMNS)


def build_required_instrument(seed) -> dict:
    """Synthetic record for the required instrument.

    Uses its own stream (seed XOR a fixed constant) so its values do not
    depend on universe size or on the draws consumed by the universe.
    """
    rng = SeededRandom(coerce_seed(seed) ^ REQUIRED_SEED_XOR)
    current_price = draw_price(rng, *REQUIRED_PRICE_DRAW_RANGE)
    rec = {
        "identifier": REQUIRED_IDENTIFIER,
        "name": REQUIRED_NAME,
        "sector": REQUIRED_SECTOR,
    }
    rec.update(_score_instrument(rng, current_price))
    return rec
