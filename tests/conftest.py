"""Shared fixtures for Stock Check tests."""

import json
import sys
from pathlib import Path
from unittest.mock import MagicMock

import pandas as pd
import pytest
import yaml


def pytest_addoption(parser):
    parser.addoption("--regen", action="store_true", default=False,
                     help="Regenerate golden file")

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

FIXTURES = Path(__file__).resolve().parent / "fixtures"

API_KEY_ENV = "ALPHA_VANTAGE_API_KEY"


@pytest.fixture
def raw_cfg():
    """Load the production config.yaml as a plain dict."""
    with open(ROOT / "config.yaml") as f:
        return yaml.safe_load(f)


@pytest.fixture
def cfg(raw_cfg):
    """The production config.yaml, validated."""
    from schemas import RunConfig
    return RunConfig.model_validate(raw_cfg)


@pytest.fixture
def golden():
    with open(FIXTURES / "golden_seed12345_n1000.json", encoding="utf-8") as f:
        return json.load(f)


# ---------------------------------------------------------------------------
# Alpha Vantage stubs
# ---------------------------------------------------------------------------
def make_series_payload(closes, end="2024-06-28", adjusted=True):
    """TIME_SERIES_DAILY_ADJUSTED-shaped payload, closes given oldest first."""
    dates = pd.bdate_range(end=end, periods=len(closes))
    series = {}
    for d, close in zip(dates, closes):
        row = {
            "1. open": f"{close:.4f}",
            "2. high": f"{close:.4f}",
            "3. low": f"{close:.4f}",
            "4. close": f"{close:.4f}",
            "6. volume": "1000000",
        }
        if adjusted:
            row["5. adjusted close"] = f"{close:.4f}"
        series[d.strftime("%Y-%m-%d")] = row
    return {
        "Meta Data": {"2. Symbol": "INTC"},
        "Time Series (Daily)": series,
    }


def make_response(payload=None, status_code=200, json_error=None):
    resp = MagicMock()
    resp.status_code = status_code
    resp.ok = 200 <= status_code < 400
    if json_error is not None:
        resp.json.side_effect = json_error
    else:
        resp.json.return_value = payload
    return resp


def make_session(compact=None, full=None):
    """Session stub routing on outputsize; each arg is a response or exception."""
    session = MagicMock()

    def _get(url, timeout=None):
        target = compact if "outputsize=compact" in url else full
        if isinstance(target, Exception):
            raise target
        return target

    session.get.side_effect = _get
    return session


@pytest.fixture
def api_key(monkeypatch):
    monkeypatch.setenv(API_KEY_ENV, "test-key-123")
    return "test-key-123"


@pytest.fixture
def no_api_key(monkeypatch):
    monkeypatch.delenv(API_KEY_ENV, raising=False)


@pytest.fixture
def rising_closes():
    """320 closes rising linearly from 20.00 in 0.05 steps."""
    return [20.0 + 0.05 * i for i in range(320)]


@pytest.fixture
def live_session(rising_closes):
    payload = make_series_payload(rising_closes)
    return make_session(compact=make_response(payload),
                        full=make_response(payload))
