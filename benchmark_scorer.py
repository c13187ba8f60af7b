#!/usr/bin/env python3
"""
Benchmark Percentile Scorer
===========================
Scores one metric value against its sector's percentile breakpoints.

1. Raw percentile by linear interpolation across
   (p10,10), (p25,25), (p50,50), (p75,75), (p90,90).  Outside p10..p90 the
   score plateaus at 10 / 90; with ``benchmark.tail_extrapolation: true``
   the nearest segment's slope is extended instead, clamped to [0,100].
2. Lower-is-better metrics are inverted (100 - raw).
3. Low-confidence distributions are dampened toward the neutral fallback:
       weight = min(1, sample_size / sample_threshold)
       final  = raw * weight + fallback * (1 - weight)
4. No stats, or a missing / non-finite value: None.

Pure and deterministic; monotone in the value for fixed breakpoints.
"""

import logging

from schemas import LowConfidenceStats, MetricScore, ScoringConfig, finite_or_none

log = logging.getLogger("pitscore.benchmark_scorer")

PERCENTILE_LEVELS = (10.0, 25.0, 50.0, 75.0, 90.0)


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def _segments(stats):
    """Adjacent breakpoint pairs with non-zero width."""
    pts = list(zip(stats.breakpoints(), PERCENTILE_LEVELS))
    return [(a, b) for a, b in zip(pts, pts[1:]) if b[0] > a[0]]


def raw_percentile(value, stats, tail_extrapolation: bool = False):
    """Position of ``value`` in the distribution, 0-100, or None."""
    v = finite_or_none(value)
    if v is None or stats is None:
        return None

    segs = _segments(stats)
    if not segs:
        # Every breakpoint equal: only "at, below or above" is knowable
        if v == stats.p50:
            return 50.0
        return 0.0 if v < stats.p50 else 100.0

    (lo_x, lo_p), (lo_x2, lo_p2) = segs[0]
    (hi_x, hi_p), (hi_x2, hi_p2) = segs[-1]

    if v < lo_x:
        if not tail_extrapolation:
            return lo_p
        slope = (lo_p2 - lo_p) / (lo_x2 - lo_x)
        return _clamp(lo_p - (lo_x - v) * slope)

    if v > hi_x2:
        if not tail_extrapolation:
            return hi_p2
        slope = (hi_p2 - hi_p) / (hi_x2 - hi_x)
        return _clamp(hi_p2 + (v - hi_x2) * slope)

    for (xa, pa), (xb, pb) in segs:
        if v <= xb:
            return _clamp(pa + (v - xa) / (xb - xa) * (pb - pa))
    return hi_p2


def score_metric(metric: str, value, stats, cfg: ScoringConfig = None,
                 lower_is_better=None):
    """Score one metric against its benchmark; None when unscorable.

    ``lower_is_better`` defaults to membership in ``fgos.lower_is_better``.
    """
    cfg = cfg or ScoringConfig()
    bcfg = cfg.benchmark
    v = finite_or_none(value)
    if v is None or stats is None:
        return None

    if lower_is_better is None:
        lower_is_better = metric in cfg.fgos.lower_is_better

    raw = raw_percentile(v, stats, bcfg.tail_extrapolation)
    if lower_is_better:
        raw = 100.0 - raw

    is_low = isinstance(stats, LowConfidenceStats)
    weight = 1.0
    effective = raw
    if is_low:
        weight = min(1.0, stats.sample_size / bcfg.sample_threshold)
        effective = raw * weight + bcfg.fallback_score * (1.0 - weight)
        log.debug("Dampened %s: raw=%.2f weight=%.2f -> %.2f",
                  metric, raw, weight, effective,
                  extra={"metric": metric, "value": v})

    return MetricScore(
        metric=metric,
        value=v,
        effective=_clamp(effective),
        raw=_clamp(raw),
        weight=weight,
        sample_size=stats.sample_size,
        is_low_confidence=is_low,
    )


def score_metric_value(metric: str, value, stats, cfg: ScoringConfig = None,
                       lower_is_better=None):
    """Effective score only (float or None)."""
    scored = score_metric(metric, value, stats, cfg, lower_is_better)
    return None if scored is None else scored.effective
