#!/usr/bin/env python3
"""
FGOS Composite Score
====================
Rolls benchmark-scored metrics up into dimension scores and one composite
quality score per entity.

    metric value --(benchmark_scorer)--> metric score 0-100
    dimension    = mean of its scored metrics (None if none scored)
    fgos_score   = mean of scored dimensions, rounded to 2dp

Dimensions and their metrics come from ``cfg.fgos.dimensions``.  A sector
with no benchmark set, or no sector at all, makes the whole result None;
a sector with benchmarks but nothing scorable yields a ``pending`` result
with the breakdown still attached.

The confidence layer grades how much the score can be trusted from data
depth (history, time since IPO, revenue volatility, missing core
metrics).  FGOS confidence is that percent, capped when low-confidence
benchmarks fed the score.
"""

import logging

import numpy as np

from benchmark_scorer import score_metric
from metric_deriver import fy_history
from schemas import (ConfidenceResult, DimensionScore, FgosBreakdown,
                     FgosResult, LowConfidenceImpact, MetricScore,
                     ScoringConfig, finite_or_none)
from temporal_resolver import to_date

log = logging.getLogger("pitscore.fgos_engine")


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


# =========================================================================
# A. Dimension scoring
# =========================================================================

def score_dimension(name: str, metrics: dict, benchmarks: dict,
                    cfg: ScoringConfig = None) -> DimensionScore:
    """Mean of the effective scores of one dimension's metrics."""
    cfg = cfg or ScoringConfig()
    scored: list[MetricScore] = []
    missing: list[str] = []

    for metric in cfg.fgos.dimensions.get(name, []):
        value = finite_or_none(metrics.get(metric))
        stats = benchmarks.get(metric)
        if value is not None and stats is None:
            missing.append(metric)
            log.debug("No %s benchmark for %s", name, metric,
                      extra={"metric": metric, "value": value})
            if cfg.benchmark.substitute_missing:
                default = cfg.benchmark.missing_default
                scored.append(MetricScore(metric=metric, value=value,
                                          effective=default, raw=default,
                                          weight=0.0))
            continue
        ms = score_metric(metric, value, stats, cfg)
        if ms is not None:
            scored.append(ms)

    if not scored:
        return DimensionScore(name=name, missing_benchmarks=missing)

    # Kept unrounded; FGOS rounds once, after averaging dimensions
    score = _clamp(float(np.mean([m.effective for m in scored])))

    impact = None
    low = [m for m in scored if m.is_low_confidence]
    if low:
        impact = LowConfidenceImpact(
            raw_percentile=round(float(np.mean([m.raw for m in scored])), 2),
            effective_percentile=round(score, 2),
            sample_size=min(m.sample_size for m in low),
            weight=min(m.weight for m in low),
        )

    return DimensionScore(name=name, score=score, metrics=scored,
                          missing_benchmarks=missing, impact=impact)


def fgos_category(score, cfg: ScoringConfig = None) -> str:
    cfg = cfg or ScoringConfig()
    if score is None:
        return "Pending"
    if score >= cfg.fgos.high_threshold:
        return "High"
    if score < cfg.fgos.low_threshold:
        return "Low"
    return "Medium"


# =========================================================================
# B. Confidence layer
# =========================================================================

def _history_factor(years: float) -> float:
    if years >= 10:
        return 1.00
    if years >= 7:
        return 0.90
    if years >= 5:
        return 0.75
    if years >= 3:
        return 0.55
    return 0.30


def _ipo_factor(years: float) -> float:
    if years >= 5:
        return 1.00
    if years >= 3:
        return 0.85
    if years >= 1:
        return 0.60
    return 0.40


_VOLATILITY_FACTOR = {"LOW": 1.00, "MEDIUM": 0.85, "HIGH": 0.65}


def compute_confidence_layer(history_years, years_since_ipo,
                             earnings_volatility="MEDIUM",
                             missing_core_metrics: int = 0) -> ConfidenceResult:
    """Data-depth confidence: product of four factors, as a percent.

    Unknown volatility counts as MEDIUM.  Status precedence: Incomplete
    (>= 2 core metrics missing), Mature (>= 80% with >= 7 years of
    history), Developing (>= 50%), else Early-stage.
    """
    history_years = finite_or_none(history_years) or 0.0
    years_since_ipo = finite_or_none(years_since_ipo) or 0.0
    missing = max(0, int(missing_core_metrics or 0))

    factors = {
        "history_factor": _history_factor(history_years),
        "ipo_factor": _ipo_factor(years_since_ipo),
        "volatility_factor": _VOLATILITY_FACTOR.get(
            str(earnings_volatility or "MEDIUM").upper(), 0.85),
        "completeness_factor": 1.00 if missing == 0 else 0.85 if missing == 1 else 0.65,
    }
    percent = int(round(float(np.prod(list(factors.values()))) * 100))

    if percent >= 80:
        label = "High"
    elif percent >= 50:
        label = "Medium"
    else:
        label = "Low"

    if missing >= 2:
        status = "Incomplete"
    elif percent >= 80 and history_years >= 7:
        status = "Mature"
    elif percent >= 50:
        status = "Developing"
    else:
        status = "Early-stage"

    return ConfidenceResult(confidence_percent=percent, confidence_label=label,
                            maturity_status=status, details=factors)


def earnings_volatility_class(history, as_of, cfg: ScoringConfig = None) -> str:
    """LOW / MEDIUM / HIGH from the population std-dev of YoY revenue growth."""
    cfg = cfg or ScoringConfig()
    fy = fy_history(history, as_of)
    growth = []
    for prev, curr in zip(fy, fy[1:]):
        a, b = finite_or_none(prev.get("revenue")), finite_or_none(curr.get("revenue"))
        if a and b:
            growth.append((b - a) / abs(a))
    if len(growth) < 2:
        return "MEDIUM"
    std = float(np.std(growth))
    if std < cfg.fgos.low_volatility_below:
        return "LOW"
    if std > cfg.fgos.high_volatility_above:
        return "HIGH"
    return "MEDIUM"


def derive_confidence_inputs(history, as_of, metrics: dict, ipo_date=None,
                             cfg: ScoringConfig = None) -> dict:
    """Confidence-layer inputs observable at ``as_of``.

    Years since IPO are measured to ``as_of`` (not today); an unknown IPO
    date counts as a seasoned listing (10 years).
    """
    cfg = cfg or ScoringConfig()
    as_of_d = to_date(as_of)
    ipo = to_date(ipo_date)
    years_since_ipo = 10.0
    if ipo is not None and as_of_d is not None:
        years_since_ipo = max(0.0, (as_of_d - ipo).days / 365.25)
    return {
        "history_years": len(fy_history(history, as_of)),
        "years_since_ipo": years_since_ipo,
        "earnings_volatility": earnings_volatility_class(history, as_of, cfg),
        "missing_core_metrics": sum(
            1 for m in cfg.fgos.core_metrics
            if finite_or_none(metrics.get(m)) is None),
    }


def cap_confidence(percent: int, low_conf_dimensions: int,
                   cfg: ScoringConfig = None) -> int:
    cfg = cfg or ScoringConfig()
    if low_conf_dimensions > 1:
        return min(percent, cfg.fgos.multi_low_conf_cap)
    if low_conf_dimensions == 1:
        return min(percent, cfg.fgos.single_low_conf_cap)
    return percent


# =========================================================================
# C. Composite
# =========================================================================

def compute_fgos(ticker: str, sector, metrics: dict, benchmarks,
                 cfg: ScoringConfig = None, confidence: ConfidenceResult = None):
    """Score one entity; None when its sector can't be benchmarked.

    ``benchmarks`` is the sector's {metric: BenchmarkStats} mapping.
    """
    cfg = cfg or ScoringConfig()
    if sector is None or not str(sector).strip():
        log.debug("%s: no sector, FGOS unresolvable", ticker, extra={"ticker": ticker})
        return None
    if not benchmarks:
        log.debug("%s: no benchmark set for sector %s", ticker, sector,
                  extra={"ticker": ticker})
        return None

    metrics = metrics or {}
    dims = {name: score_dimension(name, metrics, benchmarks, cfg)
            for name in cfg.fgos.dimensions}

    available = [d.score for d in dims.values() if d.score is not None]
    impacts = {name: d.impact for name, d in dims.items() if d.impact is not None}
    low_conf = bool(impacts) or any(d.missing_benchmarks for d in dims.values())

    breakdown = FgosBreakdown(
        **{name: (round(d.score, 2) if d.score is not None else None)
           for name, d in dims.items()},
        benchmark_low_confidence=low_conf,
        impacts=impacts,
    )

    if not available:
        log.debug("%s: no scorable dimension, FGOS pending", ticker,
                  extra={"ticker": ticker})
        return FgosResult(ticker=ticker, sector=str(sector),
                          fgos_breakdown=breakdown, dimensions=dims)

    score = round(_clamp(float(np.mean(available))), 2)
    fgos_confidence = None
    if confidence is not None:
        fgos_confidence = cap_confidence(confidence.confidence_percent,
                                         len(impacts), cfg)

    return FgosResult(
        ticker=ticker,
        sector=str(sector),
        fgos_score=score,
        fgos_category=fgos_category(score, cfg),
        fgos_status="computed",
        fgos_confidence=fgos_confidence,
        fgos_breakdown=breakdown,
        dimensions=dims,
    )
