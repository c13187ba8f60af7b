#!/usr/bin/env python3
"""
Run Context: one directory per scoring run.

A run directory holds everything needed to reproduce and audit a run:

    runs/{run_id}/
        run.log          JSON lines, one object per log record
        config.yaml      the validated ScoringConfig actually used
        snapshots.json   merged per-entity snapshots
        scores.parquet   flat per-entity summary
        universe.json    scored / failed tickers
        meta.json        timings, versions, config hash, run counts

Usage:
    with RunContext(run_id="nightly") as ctx:
        ctx.save_config(cfg)
        ctx.save_snapshots(snapshots)
        ctx.save_scores(df)
        ctx.save_universe(scored, failed)
        ctx.save_metadata(as_of=as_of, config_hash=ctx.config_hash(cfg))

Scoring modules log through ``pitscore.<module>`` loggers and never add
handlers; the context attaches the run's file and console handlers to the
``pitscore`` logger and removes them again on close.
"""

import hashlib
import importlib.metadata
import json
import logging
import platform
import subprocess
import sys
import uuid
from datetime import date, datetime, timezone
from pathlib import Path

import pandas as pd
import yaml

from schemas import ScoringConfig

ROOT = Path(__file__).resolve().parent
RUNS_DIR = ROOT / "runs"
LOGGER_NAME = "pitscore"

# Structured fields callers may pass through ``extra=``
LOG_FIELDS = ("run_id", "ticker", "metric", "value", "phase", "step",
              "count", "elapsed_ms")
TRACKED_PACKAGES = ("numpy", "pandas", "scipy", "pydantic", "pyyaml", "pyarrow")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record, carrying the structured extras."""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry = {
            "ts": ts.isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "func": f"{record.module}.{record.funcName}",
            "msg": record.getMessage(),
        }
        entry.update({key: getattr(record, key) for key in LOG_FIELDS
                      if getattr(record, key, None) is not None})
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class RunContext:
    """Artifacts and logging for a single scoring run."""

    def __init__(self, run_id: str | None = None, runs_dir: Path | None = None,
                 console_level: int = logging.INFO):
        self.run_id = run_id or uuid.uuid4().hex[:12]
        self.started = datetime.now(timezone.utc)
        self.run_dir = Path(runs_dir or RUNS_DIR) / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)

        self._handlers = self._attach_handlers(console_level)
        self.log = logging.getLogger(f"{LOGGER_NAME}.run.{self.run_id}")
        self.log.info(f"Run {self.run_id} started in {self.run_dir}",
                      extra={"run_id": self.run_id, "phase": "init"})

    def _attach_handlers(self, console_level: int) -> list:
        base = logging.getLogger(LOGGER_NAME)
        base.setLevel(logging.DEBUG)
        base.propagate = False
        # A previous run in the same process may not have closed cleanly
        for h in list(base.handlers):
            base.removeHandler(h)
            h.close()

        to_file = logging.FileHandler(str(self.run_dir / "run.log"), encoding="utf-8")
        to_file.setFormatter(JsonLineFormatter())

        to_console = logging.StreamHandler(sys.stdout)
        to_console.setLevel(console_level)
        to_console.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%H:%M:%S"))

        for h in (to_file, to_console):
            base.addHandler(h)
        return [to_file, to_console]

    def close(self):
        base = logging.getLogger(LOGGER_NAME)
        for h in self._handlers:
            base.removeHandler(h)
            h.close()
        self._handlers = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.log.error(f"Run {self.run_id} aborted: {exc}",
                           extra={"run_id": self.run_id, "phase": "abort"},
                           exc_info=(exc_type, exc, tb))
        self.close()
        return False

    # -----------------------------------------------------------------
    # Artifacts
    # -----------------------------------------------------------------

    def _write_json(self, filename: str, data) -> Path:
        path = self.run_dir / filename
        with open(path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        return path

    def save_config(self, cfg: ScoringConfig) -> Path:
        """Write the validated config, defaults filled in, as YAML."""
        path = self.run_dir / "config.yaml"
        with open(path, "w") as f:
            yaml.safe_dump(cfg.model_dump(mode="json"), f,
                           default_flow_style=False, sort_keys=False)
        self.log.info("Config snapshot saved", extra={"phase": "init"})
        return path

    @staticmethod
    def config_hash(cfg: ScoringConfig) -> str:
        """Short hash of the scoring sections; runner settings don't count."""
        scoring = cfg.model_dump(mode="json", exclude={"runner"})
        raw = json.dumps(scoring, sort_keys=True)
        return hashlib.sha256(raw.encode()).hexdigest()[:12]

    def save_snapshots(self, snapshots: list) -> Path:
        path = self._write_json("snapshots.json", snapshots)
        self.log.info(f"Saved {len(snapshots)} snapshots",
                      extra={"phase": "artifact", "step": "snapshots",
                             "count": len(snapshots)})
        return path

    def save_scores(self, df: pd.DataFrame, name: str = "scores") -> Path:
        """Per-entity summary table as Parquet."""
        path = self.run_dir / f"{name}.parquet"
        df.to_parquet(str(path), index=False)
        self.log.info(f"Saved {name}.parquet ({len(df)} rows)",
                      extra={"phase": "artifact", "step": name, "count": len(df)})
        return path

    def save_universe(self, scored: list, failed: list) -> Path:
        return self._write_json("universe.json", {
            "scored": sorted(scored),
            "failed": sorted(failed),
            "scored_count": len(scored),
            "failed_count": len(failed),
        })

    def save_metadata(self, as_of: date | None = None, **fields) -> Path:
        """Write meta.json; call once the run's artifacts are on disk."""
        finished = datetime.now(timezone.utc)
        meta = {
            "run_id": self.run_id,
            "as_of": as_of.isoformat() if as_of else None,
            "started": self.started.isoformat(),
            "finished": finished.isoformat(),
            "elapsed_seconds": round((finished - self.started).total_seconds(), 1),
            "git_sha": _git_sha(),
            "python_version": sys.version,
            "platform": platform.platform(),
            "packages": _package_versions(),
        }
        meta.update(fields)
        path = self._write_json("meta.json", meta)
        self.log.info("Run metadata saved", extra={"run_id": self.run_id,
                                                   "phase": "finish"})
        return path


def _git_sha() -> str:
    """HEAD of the checkout the code runs from, or 'unknown'."""
    try:
        out = subprocess.run(["git", "rev-parse", "HEAD"], capture_output=True,
                             text=True, timeout=5, cwd=str(ROOT))
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return "unknown"
    return out.stdout.strip() if out.returncode == 0 else "unknown"


def _package_versions() -> dict:
    versions = {}
    for pkg in TRACKED_PACKAGES:
        try:
            versions[pkg] = importlib.metadata.version(pkg)
        except importlib.metadata.PackageNotFoundError:
            versions[pkg] = "unknown"
    return versions
