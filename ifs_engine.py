#!/usr/bin/env python3
"""
Industry Structural Position (IFS)
==================================
Ranks a company against its industry peers for each fiscal year and
classifies it as leader / follower / laggard.

Per fiscal year:
  * each structural metric is turned into a weak percentile rank among
    the peers reporting it that year (the company itself excluded);
  * ROIC and operating margin are mandatory; revenue CAGR, leverage
    (inverted: lower debt ranks higher) and FCF margin join when both the
    company and >= min_peer_group peers report them, and the weights
    renormalise over what is present;
  * the blended percentile is classified against the leader / laggard
    thresholds.

Years are processed independently; a year without the mandatory metrics
or a large enough peer group is omitted rather than failing the run.
The memory block summarises the last ``memory_window`` classified years.
"""

import logging
import math

from scipy import stats as sp_stats

from metric_deriver import derive_growth, derive_period_ratios, fy_history
from schemas import (CurrentStreak, FiscalPosition, FiscalYearMetrics,
                     IfsMemory, IfsOutput, IfsResult, PositionDistribution,
                     ScoringConfig, finite_or_none)

log = logging.getLogger("pitscore.ifs_engine")

MANDATORY_METRICS = ("roic", "operating_margin")
INVERTED_METRICS = ("debt_to_equity",)


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def peer_percentile(value, peers, cfg: ScoringConfig = None):
    """Share of peers at or below ``value``, 0-100.

    None when the value is missing or fewer than ``min_peer_group``
    finite peer values exist.
    """
    cfg = cfg or ScoringConfig()
    v = finite_or_none(value)
    if v is None:
        return None
    dist = [p for p in (finite_or_none(x) for x in peers or []) if p is not None]
    if len(dist) < cfg.ifs.min_peer_group:
        return None
    return float(sp_stats.percentileofscore(dist, v, kind="weak"))


def structural_percentile(company: FiscalYearMetrics, peers, cfg: ScoringConfig = None):
    """Weighted blend of per-metric peer percentiles, or None."""
    cfg = cfg or ScoringConfig()
    weights = cfg.ifs.metric_weights.model_dump()

    peers = [p for p in peers or []
             if company.ticker is None or p.ticker != company.ticker]

    numerator = 0.0
    denominator = 0.0
    for metric, weight in weights.items():
        if weight <= 0:
            continue
        pct = peer_percentile(getattr(company, metric),
                              [getattr(p, metric) for p in peers], cfg)
        if pct is None:
            if metric in MANDATORY_METRICS:
                return None
            continue
        if metric in INVERTED_METRICS:
            pct = 100.0 - pct
        numerator += pct * weight
        denominator += weight

    if denominator == 0:
        return None
    return numerator / denominator


def classify_position(percentile: float, cfg: ScoringConfig = None) -> str:
    cfg = cfg or ScoringConfig()
    if percentile >= cfg.ifs.leader_threshold:
        return "leader"
    if percentile < cfg.ifs.laggard_threshold:
        return "laggard"
    return "follower"


def _normalise_peer_groups(peer_groups) -> dict:
    out = {}
    for year, rows in (peer_groups or {}).items():
        out[int(year)] = [r if isinstance(r, FiscalYearMetrics)
                          else FiscalYearMetrics.model_validate(r)
                          for r in rows or []]
    return out


def classify_fiscal_years(company_years, peer_groups, cfg: ScoringConfig = None) -> list:
    """FiscalPosition per classifiable year, ascending by fiscal year.

    A duplicate fiscal year keeps the last entry given.
    """
    cfg = cfg or ScoringConfig()
    groups = _normalise_peer_groups(peer_groups)

    by_year = {}
    for row in company_years or []:
        fy = row if isinstance(row, FiscalYearMetrics) else FiscalYearMetrics.model_validate(row)
        by_year[fy.fiscal_year] = fy

    positions = []
    for year in sorted(by_year):
        fy = by_year[year]
        pct = structural_percentile(fy, groups.get(year, []), cfg)
        if pct is None:
            log.debug("FY%s omitted: missing mandatory metrics or peer group < %d",
                      year, cfg.ifs.min_peer_group, extra={"ticker": fy.ticker})
            continue
        positions.append(FiscalPosition(
            fiscal_year=year,
            percentile=_round_half_up(pct),
            position=classify_position(pct, cfg),
        ))
    return positions


def compute_ifs_memory(positions, cfg: ScoringConfig = None) -> IfsMemory:
    """Distribution and current streak over the most recent window."""
    cfg = cfg or ScoringConfig()
    window = cfg.ifs.memory_window
    recent = sorted(positions or [], key=lambda p: p.fiscal_year, reverse=True)[:window]

    counts = {"leader": 0, "follower": 0, "laggard": 0}
    for p in recent:
        counts[p.position] += 1

    streak = CurrentStreak()
    if recent:
        current = recent[0].position
        years = 0
        for p in recent:
            if p.position != current:
                break
            years += 1
        streak = CurrentStreak(position=current, years=years)

    return IfsMemory(
        window_years=window,
        observed_years=len(recent),
        distribution=PositionDistribution(**counts),
        current_streak=streak,
        timeline=[p.position for p in recent],
    )


def ifs_confidence(observed_years: int, cfg: ScoringConfig = None):
    """(confidence, label) from the number of classified years in the window.

    One year scores 50 and a full window 100, linearly in between.
    """
    cfg = cfg or ScoringConfig()
    window = cfg.ifs.memory_window
    n = max(0, min(int(observed_years), window))
    if n == 0:
        return 0.0, "low"
    if window == 1:
        confidence = 100.0
    else:
        confidence = 50.0 + 50.0 * (n - 1) / (window - 1)
    if confidence >= 80:
        label = "high"
    elif confidence >= 60:
        label = "medium"
    else:
        label = "low"
    return round(confidence, 2), label


def compute_ifs(company_years, peer_groups, cfg: ScoringConfig = None,
                industry=None):
    """IFS block plus memory for one company, or None.

    None when the industry is given but blank, when there are no peer
    groups at all, or when no fiscal year can be classified.
    """
    cfg = cfg or ScoringConfig()
    if industry is not None and not str(industry).strip():
        log.debug("IFS unresolvable: blank industry")
        return None
    if peer_groups is None:
        log.debug("IFS unresolvable: no peer groups")
        return None

    positions = classify_fiscal_years(company_years, peer_groups, cfg)
    if not positions:
        return None

    memory = compute_ifs_memory(positions, cfg)
    confidence, label = ifs_confidence(memory.observed_years, cfg)

    return IfsOutput(
        ifs=IfsResult(
            fiscal_positions=positions,
            fiscal_years=[p.fiscal_year for p in positions],
            current_fy=positions[-1],
            confidence=confidence,
            confidence_label=label,
        ),
        ifs_memory=memory,
    )


def fiscal_year_metrics(history, as_of, ticker=None, cfg: ScoringConfig = None) -> list:
    """Per-year structural metrics built from statement history.

    Each year's revenue CAGR is derived as of that year's own period end,
    and only FY periods observable at ``as_of`` are used.
    """
    cfg = cfg or ScoringConfig()
    rows = []
    for period in fy_history(history, as_of):
        ratios = derive_period_ratios(period)
        rows.append(FiscalYearMetrics(
            fiscal_year=period.date.year,
            period_end_date=period.date,
            ticker=ticker,
            roic=ratios["roic"],
            operating_margin=ratios["operating_margin"],
            revenue_cagr=derive_growth(history, period.date, cfg)["revenue_cagr"],
            debt_to_equity=ratios["debt_to_equity"],
            fcf_margin=ratios["fcf_margin"],
        ))
    return rows
