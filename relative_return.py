#!/usr/bin/env python3
"""
Relative Return Engine
======================
Scores realised performance against a benchmark over the 1Y / 3Y / 5Y
horizons.  All inputs are percent; alphas are percentage points.

    window score   = 50 + clamp(alpha, +/-alpha_cap) / alpha_cap * 50
    consistency    = 75..100 all windows beat, 0..25 all lag, 50 mixed/single
    drawdown       = worst excess drawdown, capped, scaled to 0..max penalty
    score          = clamp(0.7 * mean(window scores) + 0.3 * consistency)
                     - drawdown penalty, clamped to 0..100
    confidence     = base + span * coverage * signal factor

A window is usable only when both the asset and benchmark returns are
present.  With no usable window the whole result is null.
"""

import logging

import numpy as np

from schemas import (HORIZONS, RelativeReturnComponents, RelativeReturnResult,
                     RelativeReturnTimeline, ScoringConfig, WindowAlpha)

log = logging.getLogger("pitscore.relative_return")


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def _as_timeline(timeline):
    if timeline is None or isinstance(timeline, RelativeReturnTimeline):
        return timeline
    return RelativeReturnTimeline.model_validate(timeline)


def window_alpha_scores(timeline, cfg: ScoringConfig = None):
    """Per-horizon alpha and score.

    Returns ``(window_alpha, alphas, scores, used)`` where the last three
    lists are aligned with ``used`` in horizon order.
    """
    cfg = cfg or ScoringConfig()
    cap = cfg.relative_return.alpha_cap
    timeline = _as_timeline(timeline)

    window_alpha = {h: WindowAlpha() for h in HORIZONS}
    alphas, scores, used = [], [], []
    if timeline is None:
        return window_alpha, alphas, scores, used

    for h, data in timeline.items():
        if data is None:
            continue
        asset, bench = data.asset_return, data.benchmark_return
        if asset is None or bench is None:
            window_alpha[h] = WindowAlpha(asset_return=asset, benchmark_return=bench)
            continue
        alpha = asset - bench
        score = _clamp(50.0 + max(-cap, min(cap, alpha)) / cap * 50.0)
        window_alpha[h] = WindowAlpha(asset_return=asset, benchmark_return=bench,
                                      alpha=alpha, score=score)
        alphas.append(alpha)
        scores.append(score)
        used.append(h)
    return window_alpha, alphas, scores, used


def consistency_score(alphas: list, cfg: ScoringConfig = None):
    """How consistently the asset beat (or lagged) across horizons.

    Alphas within +/- sign_epsilon count as neither beating nor lagging.
    """
    cfg = cfg or ScoringConfig()
    rr = cfg.relative_return
    n = len(alphas)
    if n == 0:
        return None
    if n == 1:
        return 50.0

    pos = sum(1 for a in alphas if a > rr.sign_epsilon)
    neg = sum(1 for a in alphas if a < -rr.sign_epsilon)
    avg = float(np.mean(alphas))

    if pos > 0 and neg == 0:
        boost = max(0.0, min(25.0, avg / rr.consistency_reference * 25.0))
        return _clamp(75.0 + boost)
    if neg > 0 and pos == 0:
        penalty = max(0.0, min(25.0, abs(avg) / rr.consistency_reference * 25.0))
        return _clamp(25.0 - penalty)
    return 50.0


def drawdown_penalty(timeline, cfg: ScoringConfig = None):
    """Penalty for drawdowns deeper than the benchmark's.

    None without a timeline; 0 when no horizon carries both drawdowns.
    """
    cfg = cfg or ScoringConfig()
    rr = cfg.relative_return
    timeline = _as_timeline(timeline)
    if timeline is None:
        return None

    penalty = 0.0
    for _, data in timeline.items():
        if data is None:
            continue
        a_dd, b_dd = data.asset_max_drawdown, data.benchmark_max_drawdown
        if a_dd is None or b_dd is None:
            continue
        diff = a_dd - b_dd
        if diff <= 0:
            continue
        window_penalty = min(rr.drawdown_cap, diff) / rr.drawdown_cap * rr.max_drawdown_penalty
        penalty = max(penalty, window_penalty)
    return _clamp(penalty)


def relative_return_confidence(windows_used: list, consistency,
                               cfg: ScoringConfig = None):
    cfg = cfg or ScoringConfig()
    rr = cfg.relative_return
    n = len(windows_used)
    if n == 0:
        return None
    coverage = n / len(HORIZONS)
    if consistency is None:
        factor = 0.5
    elif consistency >= 60 or consistency <= 40:
        factor = 1.0
    else:
        factor = 0.7
    return _clamp(rr.confidence_base + rr.confidence_span * coverage * factor)


def band_from_score(score, cfg: ScoringConfig = None):
    cfg = cfg or ScoringConfig()
    rr = cfg.relative_return
    if score is None:
        return None
    if score >= rr.outperformer_threshold:
        return "outperformer"
    if score <= rr.underperformer_threshold:
        return "underperformer"
    return "neutral"


def compute_relative_return(timeline, cfg: ScoringConfig = None) -> RelativeReturnResult:
    """Full relative-return result for one entity's timeline (or None)."""
    cfg = cfg or ScoringConfig()
    rr = cfg.relative_return
    timeline = _as_timeline(timeline)
    window_alpha, alphas, scores, used = window_alpha_scores(timeline, cfg)

    if not used:
        return RelativeReturnResult(
            components=RelativeReturnComponents(window_alpha=window_alpha),
            windows_used=[],
        )

    consistency = consistency_score(alphas, cfg)
    penalty = drawdown_penalty(timeline, cfg)

    alpha_component = _clamp(float(np.mean(scores)))
    blended = rr.alpha_weight * alpha_component + rr.consistency_weight * (
        consistency if consistency is not None else 50.0)
    score = _clamp(_clamp(blended) - (penalty or 0.0))

    log.debug("relative return: windows=%s alpha=%.2f consistency=%s penalty=%s",
              used, alpha_component, consistency, penalty)

    return RelativeReturnResult(
        score=score,
        band=band_from_score(score, cfg),
        confidence=relative_return_confidence(used, consistency, cfg),
        components=RelativeReturnComponents(window_alpha=window_alpha,
                                            consistency_score=consistency,
                                            drawdown_penalty=penalty),
        windows_used=used,
    )
