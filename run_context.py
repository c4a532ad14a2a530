#!/usr/bin/env python3
"""
Run Context for Stock Check
============================
One directory per run under ``runs/``, named ``<utc stamp>-<mode>-<hex>``
so listings sort chronologically and show the data mode at a glance.

Artifacts written into the run directory:
    run.log       JSON lines from every ``stock_check.*`` logger
    config.yaml   validated config snapshot
    result.json   the RunResult (success only)
    events.csv    CALC / NET trace (see instrumentation.py)
    events.md
    meta.json     timings, CLI flags, outcome, trace summary, package versions

Usage:
    with RunContext(mode="LIVE") as ctx:
        ctx.save_config(cfg)
        outcome = execute_run(params, cfg, event_log=ctx.events, log=ctx.log)
        ctx.flush_events()
        ctx.save_metadata({"status": outcome.status.value})
"""

import importlib.metadata
import json
import logging
import platform
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path

import yaml

from factors import MODEL_VERSION
from instrumentation import EventLog
from schemas import RunConfig, RunResult

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"

LOGGER_ROOT = "stock_check"

# LogRecord attributes copied into run.log when a caller passes them via extra=
_EXTRA_KEYS = ("source", "op", "symbol", "url", "run_id", "phase", "step",
               "count", "mode", "seed", "status")

_TRACKED_PACKAGES = ("numpy", "pandas", "pydantic", "pyyaml", "requests",
                     "openpyxl")


def make_run_id(mode: str | None = None) -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    parts = [stamp, mode.lower()] if mode else [stamp]
    return "-".join(parts + [uuid.uuid4().hex[:6]])


class _JSONFormatter(logging.Formatter):
    """One JSON object per line; timestamps come from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "ts": created.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "func": record.funcName,
            "msg": record.getMessage(),
        }
        entry.update({k: getattr(record, k) for k in _EXTRA_KEYS
                      if getattr(record, k, None) is not None})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RunContext:
    """Run directory, ``stock_check`` log capture, event trace and artifacts."""

    def __init__(self, run_id: str | None = None,
                 runs_dir: str | Path | None = None, console: bool = True,
                 mode: str | None = None):
        self.run_id = run_id or make_run_id(mode)
        self.mode = mode
        self.started = datetime.now(timezone.utc)
        self.run_dir = Path(runs_dir or RUNS_DIR) / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.events = EventLog()

        self._root = logging.getLogger(LOGGER_ROOT)
        self._root.setLevel(logging.DEBUG)
        self._root.propagate = False
        self._handlers: list[logging.Handler] = []
        self._attach(logging.FileHandler(self.run_dir / "run.log", encoding="utf-8"),
                     _JSONFormatter())
        if console:
            self._attach(logging.StreamHandler(sys.stdout),
                         logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                                           datefmt="%H:%M:%S"),
                         level=logging.INFO)

        self.log = logging.getLogger(f"{LOGGER_ROOT}.run")
        self.log.info("Run %s started in %s", self.run_id, self.run_dir,
                      extra={"run_id": self.run_id, "mode": mode, "phase": "init"})

    def _attach(self, handler: logging.Handler, formatter: logging.Formatter,
                level: int = logging.DEBUG) -> None:
        handler.setFormatter(formatter)
        handler.setLevel(level)
        self._root.addHandler(handler)
        self._handlers.append(handler)

    def _write(self, name: str, text: str) -> Path:
        path = self.run_dir / name
        path.write_text(text, encoding="utf-8")
        return path

    # ---- artifacts ----

    def save_config(self, cfg: RunConfig) -> Path:
        path = self._write("config.yaml", yaml.safe_dump(
            cfg.model_dump(mode="json"), default_flow_style=False, sort_keys=False))
        self.log.debug("Config snapshot written", extra={"phase": "init"})
        return path

    def save_result(self, result: RunResult, name: str = "result.json") -> Path:
        path = self._write(name, result.model_dump_json(indent=2))
        self.log.info("Result saved: %s (%d rows, %s)", name, len(result.results),
                      result.decision,
                      extra={"phase": "artifact", "step": name,
                             "count": len(result.results)})
        return path

    def flush_events(self) -> list[str]:
        return self.events.flush_all(self.run_dir)

    def save_metadata(self, extra: dict | None = None) -> Path:
        """Write meta.json. Call last so the trace summary is complete."""
        finished = datetime.now(timezone.utc)
        meta = {
            "run_id": self.run_id,
            "model_version": MODEL_VERSION,
            "mode": self.mode,
            "started_utc": self.started.isoformat(),
            "finished_utc": finished.isoformat(),
            "elapsed_seconds": round((finished - self.started).total_seconds(), 2),
            "trace": self.events.summary(),
            "python_version": platform.python_version(),
            "platform": platform.platform(),
            "packages": _get_package_versions(),
        }
        meta.update(extra or {})
        path = self._write("meta.json", json.dumps(meta, indent=2, default=str))
        self.log.info("Run metadata saved", extra={"run_id": self.run_id,
                                                  "phase": "artifact"})
        return path

    # ---- lifecycle ----

    def close(self) -> None:
        """Detach this run's handlers and hand the logger tree back."""
        while self._handlers:
            h = self._handlers.pop()
            self._root.removeHandler(h)
            h.close()
        self._root.propagate = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


def _get_package_versions() -> dict:
    versions = {}
    for pkg in _TRACKED_PACKAGES:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
