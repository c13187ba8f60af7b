#!/usr/bin/env python3
"""
Metric Deriver
==============
Turns raw statement periods into the ratios and growth rates the scorers
consume.

Every history-based metric routes its input through
``temporal_resolver.resolve_as_of`` before computing anything, so a metric
evaluated at date D never reads a period that ends after D.  The one
deliberate exception is ``compute_cagr``: it trusts the points it is handed
and is the building block that the resolver-guarded helpers call.

All helpers are total: missing, zero-denominator or non-finite inputs give
None, never NaN or an exception.  Ratios are decimals (0.05 == 5%); window
returns for the sentiment metrics are percent.
"""

import logging
import math

import numpy as np

from schemas import ScoringConfig, finite_or_none
from temporal_resolver import resolve_as_of, sort_by_date, to_date

log = logging.getLogger("pitscore.metric_deriver")

SHORT_WINDOWS = ("1M", "3M", "6M")
LONG_WINDOWS = ("3Y", "5Y")
ANCHOR_WINDOWS = ("1Y", "3Y", "5Y")


def safe_div(n, d):
    """n / d, or None when either side is missing/non-finite or d == 0."""
    n = finite_or_none(n)
    d = finite_or_none(d)
    if n is None or d is None or d == 0:
        return None
    return finite_or_none(n / d)


def _mean(values):
    vals = [v for v in values if v is not None]
    return float(np.mean(vals)) if vals else None


# =========================================================================
# A. Growth (CAGR)
# =========================================================================

def compute_cagr(points, cfg: ScoringConfig = None):
    """Compound annual growth between the earliest and latest observation.

    ``points`` is an iterable of ``(date, value)`` pairs or of dicts with
    ``date``/``value`` keys.  The span is counted in whole years (days /
    365.25, rounded), so 52/53-week fiscal years and leap days don't
    shorten it.  Returns None with fewer than ``cagr_min_points`` usable points, a span
    under ``cagr_min_years``, or a zero / sign-changing endpoint.

    Does not filter by date: callers that need point-in-time safety pass
    already-resolved history (see ``derive_growth``).
    """
    cfg = cfg or ScoringConfig()
    g = cfg.growth

    rows = []
    for p in points or []:
        if isinstance(p, dict):
            d, v = p.get("date"), p.get("value")
        else:
            d, v = p
        d, v = to_date(d), finite_or_none(v)
        if d is None or v is None:
            continue
        rows.append({"date": d, "value": v})

    rows = sort_by_date(rows)
    if len(rows) < g.cagr_min_points:
        return None

    start, end = rows[0], rows[-1]
    years = int(round((end["date"] - start["date"]).days / 365.25))
    if years < g.cagr_min_years:
        return None
    if start["value"] == 0 or end["value"] == 0:
        return None
    if (start["value"] > 0) != (end["value"] > 0):
        return None

    cagr = math.pow(end["value"] / start["value"], 1.0 / years) - 1.0
    return finite_or_none(cagr)


def free_cash_flow(period):
    """Reported FCF, else operating cash flow - |capex|."""
    fcf = finite_or_none(period.get("free_cash_flow"))
    if fcf is not None:
        return fcf
    ocf = finite_or_none(period.get("operating_cash_flow"))
    capex = finite_or_none(period.get("capital_expenditure"))
    if ocf is None or capex is None:
        return None
    return ocf - abs(capex)


def fy_history(history, as_of):
    fy = [p for p in history or [] if getattr(p, "period_type", "FY") == "FY"]
    return resolve_as_of(fy, as_of)


def derive_growth(history, as_of, cfg: ScoringConfig = None) -> dict:
    """Revenue, earnings, FCF and equity CAGR observable at ``as_of``."""
    cfg = cfg or ScoringConfig()
    eligible = fy_history(history, as_of)
    log.debug("derive_growth: %d of %d FY periods eligible at %s",
              len(eligible), len(history or []), as_of)

    def series(fn):
        return [(p.date, fn(p)) for p in eligible]

    return {
        "revenue_cagr": compute_cagr(series(lambda p: p.get("revenue")), cfg),
        "earnings_cagr": compute_cagr(series(lambda p: p.get("net_income")), cfg),
        "fcf_cagr": compute_cagr(series(free_cash_flow), cfg),
        "equity_cagr": compute_cagr(series(lambda p: p.get("total_equity")), cfg),
    }


# =========================================================================
# B. Single-period ratios
# =========================================================================

_RATIO_KEYS = (
    "operating_margin", "net_margin", "gross_margin", "ebitda_margin",
    "fcf_margin", "roic", "roe", "debt_to_equity", "interest_coverage",
    "current_ratio", "asset_turnover", "book_value_per_share",
    "data_completeness",
)


def _invested_capital(period):
    equity = finite_or_none(period.get("total_equity"))
    debt = finite_or_none(period.get("total_debt"))
    if equity is None and debt is None:
        return None
    return (equity or 0.0) + (debt or 0.0)


def derive_period_ratios(period) -> dict:
    """Profitability, leverage and efficiency ratios of one period."""
    if period is None:
        return {k: None for k in _RATIO_KEYS}

    revenue = period.get("revenue")
    net_income = period.get("net_income")
    operating_income = period.get("operating_income")
    equity = period.get("total_equity")
    fcf = free_cash_flow(period)

    roic = finite_or_none(period.get("roic"))
    if roic is None:
        roic = safe_div(net_income, _invested_capital(period))

    # 20 points per core statement line present
    completeness = sum(
        20 for key in ("revenue", "net_income", "total_equity",
                       "operating_cash_flow", "total_debt")
        if finite_or_none(period.get(key)) is not None
    )

    return {
        "operating_margin": safe_div(operating_income, revenue),
        "net_margin": safe_div(net_income, revenue),
        "gross_margin": safe_div(period.get("gross_profit"), revenue),
        "ebitda_margin": safe_div(period.get("ebitda"), revenue),
        "fcf_margin": safe_div(fcf, revenue),
        "roic": roic,
        "roe": safe_div(net_income, equity),
        "debt_to_equity": safe_div(period.get("total_debt"), equity),
        "interest_coverage": safe_div(operating_income, period.get("interest_expense")),
        "current_ratio": safe_div(period.get("total_current_assets"),
                                  period.get("total_current_liabilities")),
        "asset_turnover": safe_div(revenue, period.get("total_assets")),
        "book_value_per_share": safe_div(equity, period.get("shares_outstanding")),
        "data_completeness": float(completeness),
    }


# =========================================================================
# C. Multi-year moat metrics
# =========================================================================

def derive_moat_metrics(history, as_of, cfg: ScoringConfig = None) -> dict:
    """Return-on-capital durability over the trailing FY window.

    roic_avg_5y / gross_margin_avg_5y are means over the last
    ``moat_window_years`` eligible FY periods; roic_volatility is the
    population standard deviation of ROIC over the same window.  Each
    needs ``moat_min_years`` observations.
    """
    cfg = cfg or ScoringConfig()
    g = cfg.growth
    window = fy_history(history, as_of)[-g.moat_window_years:]
    ratios = [derive_period_ratios(p) for p in window]

    roics = [r["roic"] for r in ratios if r["roic"] is not None]
    gms = [r["gross_margin"] for r in ratios if r["gross_margin"] is not None]

    out = {"roic_avg_5y": None, "roic_volatility": None,
           "gross_margin_avg_5y": None}
    if len(roics) >= g.moat_min_years:
        out["roic_avg_5y"] = float(np.mean(roics))
        out["roic_volatility"] = float(np.std(roics))
    if len(gms) >= g.moat_min_years:
        out["gross_margin_avg_5y"] = float(np.mean(gms))
    return out


# =========================================================================
# D. Sentiment (price behaviour)
# =========================================================================

def derive_sentiment_metrics(window_returns, cfg: ScoringConfig = None) -> dict:
    """Relative momentum and short-term dispersion from window returns.

    ``window_returns`` maps window labels (1M, 3M, 6M, 1Y, 3Y, 5Y) to total
    returns in percent.  Momentum is the short-window average minus the
    long-window average, clamped to +/- ``momentum_clamp``; dispersion is
    the population std-dev of the short-window returns.
    """
    cfg = cfg or ScoringConfig()
    out = {"relative_momentum": None, "return_dispersion": None}
    returns = {k: finite_or_none(v) for k, v in (window_returns or {}).items()}
    if all(returns.get(k) is None for k in ANCHOR_WINDOWS):
        return out

    short = [returns[k] for k in SHORT_WINDOWS if returns.get(k) is not None]
    long_avg = _mean(returns.get(k) for k in LONG_WINDOWS)

    if short and long_avg is not None:
        clamp = cfg.growth.momentum_clamp
        momentum = float(np.mean(short)) - long_avg
        out["relative_momentum"] = max(-clamp, min(clamp, momentum))
    if len(short) >= 2:
        out["return_dispersion"] = float(np.std(short))
    return out


# =========================================================================
# E. Everything FGOS reads, in one dict
# =========================================================================

def derive_metrics(period, history, as_of, window_returns=None,
                   cfg: ScoringConfig = None) -> dict:
    """Flat metric dict for one entity at ``as_of``.

    ``period`` is the current period being scored (FY or TTM); it is
    ignored if it ends after ``as_of``.
    """
    cfg = cfg or ScoringConfig()
    if period is not None and not resolve_as_of([period], as_of):
        log.debug("Current period %s ends after %s; ignoring it",
                  period.date, as_of)
        period = None

    metrics = derive_period_ratios(period)
    metrics.update(derive_growth(history, as_of, cfg))
    metrics.update(derive_moat_metrics(history, as_of, cfg))
    metrics.update(derive_sentiment_metrics(window_returns, cfg))

    as_of_d = to_date(as_of)
    metrics["data_freshness_days"] = (
        float((as_of_d - period.date).days)
        if period is not None and as_of_d is not None else None
    )
    return metrics


def latest_period(history, as_of, period_types=("TTM", "FY")):
    """Most recent eligible period, preferring the order in ``period_types``."""
    for ptype in period_types:
        eligible = resolve_as_of(
            [p for p in history or [] if p.period_type == ptype], as_of)
        if eligible:
            return eligible[-1]
    return None

