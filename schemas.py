#!/usr/bin/env python3
"""
Typed schemas for Stock Check.

Provides Pydantic models for data validation at pipeline boundaries:
the locked factor table, run parameters, instrument rows, run results,
live market-data values and the validated config.yaml contents.
"""

from datetime import date
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import (BaseModel, ConfigDict, Field, field_validator,
                      model_validator)

RANK_PLACEHOLDER = "—"

Decision = Literal["TRADE", "NO TRADE"]


class DataMode(str, Enum):
    SYNTHETIC = "SYNTHETIC"
    LIVE = "LIVE"


class RunStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class Factor(BaseModel):
    """One row of the locked factor table."""
    model_config = ConfigDict(frozen=True)

    id: int = Field(ge=1, le=43)
    name: str
    definition: str
    weight_pct: float = Field(gt=0)
    group: str


class RunParams(BaseModel):
    """Caller-supplied run parameters.

    seed and universe_size are kept loose on purpose: synthetic mode coerces
    whatever it is handed (see factor_engine.coerce_seed / coerce_universe_size)
    instead of rejecting it.
    """
    mode: DataMode = DataMode.SYNTHETIC
    seed: Union[int, float, str, None] = 12345
    universe_size: Union[int, float, str, None] = 2000

    @field_validator("mode", mode="before")
    @classmethod
    def normalize_mode(cls, v):
        if isinstance(v, str):
            v = v.strip().upper()
            if v == "MOCK":
                return DataMode.SYNTHETIC
        return v


# =========================================================================
# Run output
# =========================================================================

class InstrumentRecord(BaseModel):
    """One results row (ranked instrument or the appended required one)."""
    rank: Union[int, str, None] = None
    identifier: str
    name: str
    sector: str
    current_price: float = Field(gt=0)
    predicted_price: float = Field(gt=0)
    predicted_growth_pct: float = Field(ge=-1.5, le=2.0)
    return_3: float
    return_6: float
    return_12: float
    price_as_of: Optional[str] = None  # LIVE only

    @field_validator("rank")
    @classmethod
    def rank_is_positive_or_placeholder(cls, v):
        if isinstance(v, int) and v < 1:
            raise ValueError(f"Rank must be >= 1, got {v}")
        if isinstance(v, str) and v != RANK_PLACEHOLDER:
            raise ValueError(f"Non-numeric rank must be {RANK_PLACEHOLDER!r}, got {v!r}")
        return v


class RunMetrics(BaseModel):
    avg_top_growth_pct: float
    dispersion_pct: float = Field(ge=0)
    max_sector_count: int = Field(ge=0)


class RunResult(BaseModel):
    model_config = ConfigDict(protected_namespaces=())

    model_version: str
    data_mode: DataMode
    run_date: date
    horizon_date: date
    decision: Decision
    sector_warning: bool
    metrics: RunMetrics
    results: list[InstrumentRecord]

    @model_validator(mode="after")
    def horizon_is_next_day(self) -> "RunResult":
        if (self.horizon_date - self.run_date).days != 1:
            raise ValueError("horizon_date must be run_date + 1 day")
        return self


class RunOutcome(BaseModel):
    """Terminal state of one run: success carries a result, error a message."""
    status: RunStatus = RunStatus.IDLE
    result: Optional[RunResult] = None
    error: Optional[str] = None


# =========================================================================
# Live market data
# =========================================================================

class PriceQuote(BaseModel):
    model_config = ConfigDict(frozen=True)

    price: float = Field(gt=0)
    as_of_date: str
    source: str


class HistoryPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    date: str
    close: float = Field(gt=0)


# =========================================================================
# RunConfig — top-level config schema
# =========================================================================

class RunConfig(BaseModel):
    """Schema for validated config.yaml contents."""

    class RunDefaults(BaseModel):
        mode: DataMode = DataMode.SYNTHETIC
        seed: int = 12345
        universe_size: int = Field(2000, ge=1)

        @field_validator("mode", mode="before")
        @classmethod
        def normalize_mode(cls, v):
            return v.strip().upper() if isinstance(v, str) else v

    class LiveConfig(BaseModel):
        provider: str = "ALPHA_VANTAGE"
        base_url: str = "https://www.alphavantage.co/query"
        api_key_env: str = "ALPHA_VANTAGE_API_KEY"
        history_limit: int = Field(320, ge=2)
        request_timeout_s: float = Field(30.0, gt=0)
        trailing_windows: dict[str, int] = {
            "return_3": 63, "return_6": 126, "return_12": 252,
        }

        @field_validator("trailing_windows")
        @classmethod
        def windows_cover_all_horizons(cls, v: dict) -> dict:
            missing = {"return_3", "return_6", "return_12"} - set(v)
            if missing:
                raise ValueError(f"trailing_windows missing {sorted(missing)}")
            for key, offset in v.items():
                if offset < 1:
                    raise ValueError(f"Trailing window {key} must be >= 1, got {offset}")
            return v

        @model_validator(mode="after")
        def history_covers_longest_window(self) -> "RunConfig.LiveConfig":
            longest = max(self.trailing_windows.values())
            if self.history_limit < longest + 1:
                raise ValueError(
                    f"history_limit {self.history_limit} cannot cover the "
                    f"{longest}-day trailing window (needs >= {longest + 1})"
                )
            return self

    class OutputConfig(BaseModel):
        runs_dir: str = "runs"
        excel_file: str = "stock_check_results.xlsx"
        csv_file: str = "stock_check_results.csv"
        json_file: str = "result.json"

    run: RunDefaults = RunDefaults()
    live: LiveConfig = LiveConfig()
    output: OutputConfig = OutputConfig()
