#!/usr/bin/env python3
"""
Point-in-Time Scoring Runner
============================
Scores every entity in an input bundle as of one evaluation date and
writes the results into a run directory.

Usage:
    python run_scoring.py --input bundle.json --as-of 2024-06-30
    python run_scoring.py --input bundle.json --tickers AAPL,MSFT
    python run_scoring.py --input bundle.json --config alt.yaml --run-id test1

Bundle layout (JSON):
    {
      "as_of": "2024-06-30",                      # optional; --as-of wins
      "benchmarks":  {sector: {metric: {p10..p90, sample_size, confidence}}},
      "peer_groups": {industry: {fiscal_year: [FiscalYearMetrics, ...]}},
      "entities":    [{ticker, sector, industry, ipo_date, periods,
                       window_returns, relative_return_timeline, ifs_years}]
    }

Outputs (runs/{run_id}/):
    snapshots.json   one merged snapshot per scored entity
    scores.parquet   flat per-entity summary
    universe.json    scored / failed tickers
    config.yaml      validated config snapshot
    meta.json        timings, versions, counts
    run.log          JSON-lines log

Entities are scored in chunks on a thread pool; an exception for one
entity is logged with its ticker and recorded as failed, and the rest of
the run proceeds.
"""

import argparse
import json
import logging
import sys
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from fgos_engine import (compute_confidence_layer, compute_fgos,
                         derive_confidence_inputs)
from ifs_engine import compute_ifs, fiscal_year_metrics
from metric_deriver import derive_metrics, latest_period
from relative_return import compute_relative_return
from run_context import RunContext
from schemas import (CONFIG_PATH, EntityInput, ScoringBundle, ScoringConfig,
                     dedupe_periods, load_config, parse_benchmark_set)
from temporal_resolver import resolve_as_of, to_date

SUMMARY_COLUMNS = [
    "ticker", "sector", "industry", "as_of",
    "fgos_score", "fgos_category", "fgos_status", "fgos_confidence",
    "relative_return_score", "relative_return_band", "relative_return_confidence",
    "ifs_position", "ifs_percentile", "ifs_confidence",
]


# =========================================================================
# A. One entity
# =========================================================================

def build_snapshot(entity: EntityInput, as_of, benchmarks_by_sector: dict,
                   peer_groups_by_industry: dict, cfg: ScoringConfig = None) -> dict:
    """Merge FGOS, relative return and IFS for one entity at ``as_of``.

    ``benchmarks_by_sector`` maps sector -> {metric: BenchmarkStats};
    ``peer_groups_by_industry`` maps industry -> {fiscal_year: [peers]}.
    Each component fails soft: an unresolvable one is null in the snapshot.
    """
    cfg = cfg or ScoringConfig()
    as_of_d = to_date(as_of)
    history = dedupe_periods(entity.periods)

    period = latest_period(history, as_of_d)
    metrics = derive_metrics(period, history, as_of_d, entity.window_returns, cfg)

    conf_inputs = derive_confidence_inputs(history, as_of_d, metrics,
                                           entity.ipo_date, cfg)
    confidence = compute_confidence_layer(**conf_inputs)

    sector = (entity.sector or "").strip()
    fgos = compute_fgos(entity.ticker, sector, metrics,
                        benchmarks_by_sector.get(sector) if sector else None,
                        cfg, confidence)

    rr = compute_relative_return(entity.relative_return_timeline, cfg)

    industry = (entity.industry or "").strip()
    if entity.ifs_years:
        company_years = resolve_as_of(entity.ifs_years, as_of_d)
    else:
        company_years = fiscal_year_metrics(history, as_of_d, entity.ticker, cfg)
    ifs = compute_ifs(company_years,
                      peer_groups_by_industry.get(industry) if industry else None,
                      cfg, industry=industry)

    return {
        "ticker": entity.ticker,
        "as_of": as_of_d.isoformat(),
        "sector": entity.sector,
        "industry": entity.industry,
        "period_end_date": period.date.isoformat() if period is not None else None,
        "metrics": metrics,
        "fgos_score": fgos.fgos_score if fgos else None,
        "fgos_category": fgos.fgos_category if fgos else None,
        "fgos_status": fgos.fgos_status if fgos else None,
        "fgos_confidence": fgos.fgos_confidence if fgos else None,
        "fgos_breakdown": fgos.fgos_breakdown.model_dump() if fgos else None,
        "confidence_layer": confidence.model_dump(),
        "relative_return": rr.model_dump(),
        "ifs": ifs.ifs.model_dump() if ifs else None,
        "ifs_memory": ifs.ifs_memory.model_dump() if ifs else None,
    }


def summary_row(snap: dict) -> dict:
    rr = snap.get("relative_return") or {}
    ifs = snap.get("ifs") or {}
    current = ifs.get("current_fy") or {}
    return {
        "ticker": snap["ticker"],
        "sector": snap.get("sector"),
        "industry": snap.get("industry"),
        "as_of": snap.get("as_of"),
        "fgos_score": snap.get("fgos_score"),
        "fgos_category": snap.get("fgos_category"),
        "fgos_status": snap.get("fgos_status"),
        "fgos_confidence": snap.get("fgos_confidence"),
        "relative_return_score": rr.get("score"),
        "relative_return_band": rr.get("band"),
        "relative_return_confidence": rr.get("confidence"),
        "ifs_position": current.get("position"),
        "ifs_percentile": current.get("percentile"),
        "ifs_confidence": ifs.get("confidence"),
    }


# =========================================================================
# B. Universe
# =========================================================================

def _chunks(items: list, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


def score_universe(bundle: ScoringBundle, as_of, cfg: ScoringConfig,
                   ctx: RunContext | None = None, tickers=None):
    """Score every entity; returns (snapshots sorted by ticker, failed tickers)."""
    log = ctx.log if ctx else logging.getLogger("pitscore.run_scoring")

    benchmarks = {sector: parse_benchmark_set(stats, cfg.benchmark.min_sample_size)
                  for sector, stats in bundle.benchmarks.items()}
    peer_groups = bundle.peer_groups

    entities = bundle.entities
    if tickers:
        wanted = {t.strip().upper() for t in tickers if t.strip()}
        entities = [e for e in entities if e.ticker.upper() in wanted]

    snapshots, failed = [], []
    n_chunks = (len(entities) + cfg.runner.chunk_size - 1) // cfg.runner.chunk_size
    for i, chunk in enumerate(_chunks(entities, cfg.runner.chunk_size), start=1):
        t0 = time.time()
        with ThreadPoolExecutor(max_workers=cfg.runner.max_workers) as pool:
            futs = {pool.submit(build_snapshot, e, as_of, benchmarks,
                                peer_groups, cfg): e.ticker for e in chunk}
            for fut in as_completed(futs):
                ticker = futs[fut]
                try:
                    snapshots.append(fut.result())
                except Exception as e:
                    failed.append(ticker)
                    log.error(f"{ticker}: scoring failed ({type(e).__name__}: {e})",
                              extra={"ticker": ticker, "phase": "score"},
                              exc_info=True)
        log.info(f"Chunk {i}/{n_chunks}: {len(chunk)} entities",
                 extra={"phase": "score", "step": f"chunk_{i}", "count": len(chunk),
                        "elapsed_ms": int((time.time() - t0) * 1000)})

    snapshots.sort(key=lambda s: s["ticker"])
    return snapshots, sorted(failed)


# ---------------------------------------------------------------------------
# CLI argument parsing
# ---------------------------------------------------------------------------
def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Point-in-time FGOS / relative return / IFS scoring")
    p.add_argument("--input", type=Path, required=True,
                   help="JSON bundle of entities, benchmarks and peer groups")
    p.add_argument("--as-of", type=str, default=None,
                   help="Evaluation date (YYYY-MM-DD); defaults to the bundle's as_of")
    p.add_argument("--config", type=Path, default=CONFIG_PATH,
                   help="Path to config.yaml")
    p.add_argument("--tickers", type=str, default="",
                   help="Comma-separated tickers to score (e.g. AAPL,MSFT)")
    p.add_argument("--run-id", type=str, default=None,
                   help="Run identifier (default: random)")
    p.add_argument("--runs-dir", type=Path, default=None,
                   help="Directory that holds run folders (default: ./runs)")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        cfg = load_config(args.config) if args.config.exists() else ScoringConfig()
    except ValidationError as e:
        print(f"\n  ERROR: Invalid config {args.config}:\n{e}")
        return 1

    try:
        with open(args.input) as f:
            bundle = ScoringBundle.model_validate(json.load(f))
    except FileNotFoundError:
        print(f"\n  ERROR: input bundle not found at {args.input}")
        return 1
    except (json.JSONDecodeError, ValidationError) as e:
        print(f"\n  ERROR: Failed to parse input bundle: {e}")
        return 1

    as_of = to_date(args.as_of) if args.as_of else bundle.as_of
    if as_of is None:
        print("\n  ERROR: no evaluation date (pass --as-of or set as_of in the bundle)")
        return 1

    t0 = time.time()
    with RunContext(args.run_id, runs_dir=args.runs_dir) as ctx:
        ctx.save_config(cfg)
        tickers = [t for t in args.tickers.split(",") if t.strip()] or None
        ctx.log.info(f"Scoring {len(bundle.entities)} entities as of {as_of}",
                     extra={"phase": "init", "count": len(bundle.entities)})

        snapshots, failed = score_universe(bundle, as_of, cfg, ctx, tickers)

        ctx.save_snapshots(snapshots)
        if cfg.runner.write_parquet:
            df = pd.DataFrame([summary_row(s) for s in snapshots], columns=SUMMARY_COLUMNS)
            ctx.save_scores(df)
        ctx.save_universe([s["ticker"] for s in snapshots], failed)
        ctx.save_metadata(
            as_of=as_of,
            config_hash=ctx.config_hash(cfg),
            cli_flags={
                "input": str(args.input),
                "config": str(args.config),
                "tickers": args.tickers or None,
            },
            scored_count=len(snapshots),
            failed_count=len(failed),
            total_time_seconds=round(time.time() - t0, 1),
        )
        print(f"\n  Scored {len(snapshots)} entities ({len(failed)} failed)")
        print(f"  Run artifacts saved to: {ctx.run_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
