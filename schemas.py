#!/usr/bin/env python3
"""
Typed schemas for the point-in-time scoring engine.

Provides Pydantic models for data validation at the engine boundaries.
These schemas are documentation-as-code: they define what the scorers
expect and produce, making assumptions explicit and testable.

Unit convention
---------------
* Ratio fields (margins, ROIC, ROE, yields, payout ratios, CAGR) are
  DECIMALS: 0.05 means 5%.  Benchmark breakpoints for those metrics use
  the same convention.
* Returns and drawdowns (relative-return timeline, sentiment window
  returns) are PERCENT: 5.0 means 5%.  Drawdowns are positive numbers
  (35.0 for a -35% peak-to-trough).

No heuristic rescaling is attempted anywhere; a value in the wrong unit
is a data defect upstream.
"""

import datetime as dt
import math
from pathlib import Path
from typing import Annotated, Literal, Optional, Union

import yaml
from pydantic import (BaseModel, ConfigDict, Field, TypeAdapter,
                      field_validator, model_validator)

ROOT = Path(__file__).resolve().parent
CONFIG_PATH = ROOT / "config.yaml"

PeriodType = Literal["FY", "Q1", "Q2", "Q3", "Q4", "TTM"]
Horizon = Literal["1Y", "3Y", "5Y"]
Position = Literal["leader", "follower", "laggard"]
Band = Literal["outperformer", "neutral", "underperformer"]

HORIZONS: tuple[str, ...] = ("1Y", "3Y", "5Y")
POSITIONS: tuple[str, ...] = ("leader", "follower", "laggard")
DIMENSIONS: tuple[str, ...] = ("profitability", "growth", "solvency",
                               "efficiency", "moat", "sentiment")


def finite_or_none(v) -> Optional[float]:
    """Coerce a raw value to a finite float, or None.

    NaN, +/-inf, booleans, and anything float() rejects are treated as
    absent rather than raising.
    """
    if v is None or isinstance(v, bool):
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


# =========================================================================
# Financial statements
# =========================================================================

class FinancialPeriod(BaseModel):
    """One reported period for one entity.

    ``metrics`` maps statement field names (revenue, net_income,
    operating_income, free_cash_flow, total_assets, total_equity,
    total_debt, ...) to a finite float or None.
    """
    model_config = ConfigDict(frozen=True)

    period_type: PeriodType = "FY"
    period_end_date: dt.date
    metrics: dict[str, Optional[float]] = {}

    @field_validator("metrics", mode="before")
    @classmethod
    def non_finite_to_none(cls, v):
        if v is None:
            return {}
        return {str(k): finite_or_none(x) for k, x in dict(v).items()}

    @property
    def date(self) -> dt.date:
        return self.period_end_date

    def get(self, name: str) -> Optional[float]:
        return self.metrics.get(name)


def dedupe_periods(periods: list) -> list:
    """Collapse periods sharing (period_type, period_end_date).

    A later entry for the same key is a correction and replaces the
    earlier one; periods with different keys are never dropped.
    Output is ascending by period_end_date.
    """
    by_key: dict = {}
    for p in periods:
        by_key[(p.period_type, p.period_end_date)] = p
    return sorted(by_key.values(), key=lambda p: p.period_end_date)


# =========================================================================
# Benchmark statistics (tagged by confidence)
# =========================================================================

class _BenchmarkBreakpoints(BaseModel):
    """Percentile breakpoints of one metric across one sector's peers."""
    model_config = ConfigDict(frozen=True)

    p10: float
    p25: float
    p50: float
    p75: float
    p90: float
    sample_size: int = Field(0, ge=0)

    @model_validator(mode="after")
    def breakpoints_ordered(self) -> "_BenchmarkBreakpoints":
        pts = self.breakpoints()
        if not all(math.isfinite(x) for x in pts):
            raise ValueError("Benchmark breakpoints must be finite")
        if any(b < a for a, b in zip(pts, pts[1:])):
            raise ValueError(
                f"Benchmark breakpoints must be non-decreasing (got {pts})"
            )
        return self

    def breakpoints(self) -> list[float]:
        return [self.p10, self.p25, self.p50, self.p75, self.p90]


class LowConfidenceStats(_BenchmarkBreakpoints):
    """Distribution backed by a thin peer sample; scores get dampened."""
    confidence: Literal["low"]


class StandardStats(_BenchmarkBreakpoints):
    """Distribution trusted as-is."""
    confidence: Literal["medium", "high"]


BenchmarkStats = Annotated[Union[LowConfidenceStats, StandardStats],
                           Field(discriminator="confidence")]

_BENCHMARK_ADAPTER = TypeAdapter(BenchmarkStats)


def parse_benchmark_stats(data) -> Union[LowConfidenceStats, StandardStats]:
    if isinstance(data, (LowConfidenceStats, StandardStats)):
        return data
    return _BENCHMARK_ADAPTER.validate_python(data)


def parse_benchmark_set(data: Optional[dict], min_sample_size: int = 0) -> dict:
    """Build a {metric: BenchmarkStats} mapping for one sector.

    Entries backed by fewer than ``min_sample_size`` peers are dropped, so
    the metric reads as "no stats" downstream.
    """
    out = {}
    for metric, raw in (data or {}).items():
        if raw is None:
            continue
        stats = parse_benchmark_stats(raw)
        if stats.sample_size < min_sample_size:
            continue
        out[metric] = stats
    return out


# =========================================================================
# Relative-return timeline
# =========================================================================

class RelativeReturnWindowData(BaseModel):
    """Asset vs benchmark over one horizon, all in percent."""
    model_config = ConfigDict(frozen=True)

    asset_return: Optional[float] = None
    benchmark_return: Optional[float] = None
    asset_max_drawdown: Optional[float] = None
    benchmark_max_drawdown: Optional[float] = None

    @field_validator("*", mode="before")
    @classmethod
    def non_finite_to_none(cls, v):
        return finite_or_none(v)


_HORIZON_FIELDS = {"1Y": "y1", "3Y": "y3", "5Y": "y5"}


class RelativeReturnTimeline(BaseModel):
    """Horizon -> window data.  Every horizon key must be present.

    A missing horizon is an explicit null, never an omitted key, so an
    absent window can't be confused with a zero-return one.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    y1: Optional[RelativeReturnWindowData] = Field(..., alias="1Y")
    y3: Optional[RelativeReturnWindowData] = Field(..., alias="3Y")
    y5: Optional[RelativeReturnWindowData] = Field(..., alias="5Y")

    def window(self, horizon: str) -> Optional[RelativeReturnWindowData]:
        return getattr(self, _HORIZON_FIELDS[horizon])

    def items(self):
        for h in HORIZONS:
            yield h, self.window(h)


# =========================================================================
# Industry structural position
# =========================================================================

class FiscalYearMetrics(BaseModel):
    """Structural metrics of one company for one fiscal year (decimals).

    ``period_end_date`` is when the year's figures exist; rows without
    one are taken to close on Dec 31 of ``fiscal_year``.
    """
    model_config = ConfigDict(frozen=True)

    fiscal_year: int
    period_end_date: Optional[dt.date] = None
    ticker: Optional[str] = None
    roic: Optional[float] = None
    operating_margin: Optional[float] = None
    revenue_cagr: Optional[float] = None
    debt_to_equity: Optional[float] = None
    fcf_margin: Optional[float] = None

    @field_validator("roic", "operating_margin", "revenue_cagr",
                     "debt_to_equity", "fcf_margin", mode="before")
    @classmethod
    def non_finite_to_none(cls, v):
        return finite_or_none(v)

    @model_validator(mode="before")
    @classmethod
    def default_period_end(cls, data):
        if isinstance(data, dict) and data.get("period_end_date") is None \
                and data.get("fiscal_year") is not None:
            data = {**data, "period_end_date": dt.date(int(data["fiscal_year"]), 12, 31)}
        return data


class FiscalPosition(BaseModel):
    fiscal_year: int
    percentile: float = Field(ge=0, le=100)
    position: Position


class PositionDistribution(BaseModel):
    leader: int = Field(0, ge=0)
    follower: int = Field(0, ge=0)
    laggard: int = Field(0, ge=0)

    def total(self) -> int:
        return self.leader + self.follower + self.laggard


class CurrentStreak(BaseModel):
    position: Optional[Position] = None
    years: int = Field(0, ge=0)


class IfsMemory(BaseModel):
    window_years: int = 5
    observed_years: int = Field(0, ge=0)
    distribution: PositionDistribution = PositionDistribution()
    current_streak: CurrentStreak = CurrentStreak()
    timeline: list[Position] = []   # newest first

    @model_validator(mode="after")
    def distribution_matches_observed(self) -> "IfsMemory":
        if self.distribution.total() != self.observed_years:
            raise ValueError(
                f"IFS distribution sums to {self.distribution.total()}, "
                f"expected observed_years={self.observed_years}"
            )
        if self.observed_years > self.window_years:
            raise ValueError("observed_years cannot exceed window_years")
        return self


class IfsResult(BaseModel):
    fiscal_positions: list[FiscalPosition]
    fiscal_years: list[int] = []
    current_fy: FiscalPosition
    mode: str = "fy_industry_structural"
    confidence: float = Field(ge=0, le=100)
    confidence_label: Literal["low", "medium", "high"]


class IfsOutput(BaseModel):
    ifs: IfsResult
    ifs_memory: IfsMemory


# =========================================================================
# FGOS results
# =========================================================================

class MetricScore(BaseModel):
    """One metric scored against its sector benchmark."""
    metric: str
    value: float
    effective: float = Field(ge=0, le=100)
    raw: float = Field(ge=0, le=100)
    weight: float = Field(1.0, ge=0, le=1)
    sample_size: int = 0
    is_low_confidence: bool = False


class LowConfidenceImpact(BaseModel):
    raw_percentile: float
    effective_percentile: float
    sample_size: int
    weight: float
    benchmark_low_confidence: bool = True


class DimensionScore(BaseModel):
    name: str
    score: Optional[float] = Field(None, ge=0, le=100)
    metrics: list[MetricScore] = []
    missing_benchmarks: list[str] = []
    impact: Optional[LowConfidenceImpact] = None


class FgosBreakdown(BaseModel):
    profitability: Optional[float] = Field(None, ge=0, le=100)
    growth: Optional[float] = Field(None, ge=0, le=100)
    solvency: Optional[float] = Field(None, ge=0, le=100)
    efficiency: Optional[float] = Field(None, ge=0, le=100)
    moat: Optional[float] = Field(None, ge=0, le=100)
    sentiment: Optional[float] = Field(None, ge=0, le=100)
    benchmark_low_confidence: bool = False
    impacts: dict[str, LowConfidenceImpact] = {}


class ConfidenceResult(BaseModel):
    confidence_percent: int = Field(ge=0, le=100)
    confidence_label: Literal["High", "Medium", "Low"]
    maturity_status: Literal["Mature", "Developing", "Early-stage", "Incomplete"]
    details: dict[str, float] = {}


class FgosResult(BaseModel):
    ticker: str
    sector: str
    fgos_score: Optional[float] = Field(None, ge=0, le=100)
    fgos_category: Literal["High", "Medium", "Low", "Pending"] = "Pending"
    fgos_status: Literal["computed", "pending"] = "pending"
    fgos_confidence: Optional[int] = Field(None, ge=0, le=100)
    fgos_breakdown: FgosBreakdown = FgosBreakdown()
    dimensions: dict[str, DimensionScore] = {}


# =========================================================================
# Relative-return results
# =========================================================================

class WindowAlpha(BaseModel):
    asset_return: Optional[float] = None
    benchmark_return: Optional[float] = None
    alpha: Optional[float] = None
    score: Optional[float] = Field(None, ge=0, le=100)


class RelativeReturnComponents(BaseModel):
    window_alpha: dict[str, WindowAlpha]
    consistency_score: Optional[float] = Field(None, ge=0, le=100)
    drawdown_penalty: Optional[float] = Field(None, ge=0, le=100)


class RelativeReturnResult(BaseModel):
    score: Optional[float] = Field(None, ge=0, le=100)
    band: Optional[Band] = None
    confidence: Optional[float] = Field(None, ge=0, le=100)
    components: RelativeReturnComponents
    windows_used: list[str] = []

    @model_validator(mode="after")
    def score_and_confidence_null_together(self) -> "RelativeReturnResult":
        if (self.score is None) != (self.confidence is None):
            raise ValueError("score and confidence must be null together")
        return self


# =========================================================================
# Batch input documents
# =========================================================================

class EntityInput(BaseModel):
    """Everything known about one entity, unfiltered by date."""
    ticker: str
    sector: Optional[str] = None
    industry: Optional[str] = None
    ipo_date: Optional[dt.date] = None
    periods: list[FinancialPeriod] = []
    window_returns: dict[str, Optional[float]] = {}
    relative_return_timeline: Optional[RelativeReturnTimeline] = None
    ifs_years: list[FiscalYearMetrics] = []

    @field_validator("window_returns", mode="before")
    @classmethod
    def non_finite_to_none(cls, v):
        if v is None:
            return {}
        return {str(k): finite_or_none(x) for k, x in dict(v).items()}


class ScoringBundle(BaseModel):
    """Input file for ``run_scoring.py``.

    ``benchmarks`` is sector -> metric -> stats document; it is parsed into
    BenchmarkStats by the runner so the configured minimum sample size
    applies.  ``peer_groups`` is industry -> fiscal year -> peer rows.
    """
    as_of: Optional[dt.date] = None
    benchmarks: dict[str, dict[str, dict]] = {}
    peer_groups: dict[str, dict[int, list[FiscalYearMetrics]]] = {}
    entities: list[EntityInput] = []

    @field_validator("entities")
    @classmethod
    def unique_tickers(cls, v: list) -> list:
        seen = set()
        for e in v:
            if e.ticker in seen:
                raise ValueError(f"Duplicate ticker in bundle: {e.ticker}")
            seen.add(e.ticker)
        return v


# =========================================================================
# Metric Weight Sub-Models (typed per-category validation)
# =========================================================================

class _MetricWeightBase(BaseModel):
    """Base for metric weight models. Validates all weights >= 0 and sum ~100."""

    @model_validator(mode="after")
    def weights_sum_to_100(self) -> "_MetricWeightBase":
        weights = [v for v in self.__dict__.values() if isinstance(v, (int, float))]
        if any(w < 0 for w in weights):
            raise ValueError("Weight must be >= 0")
        total = sum(weights)
        if abs(total - 100) > 0.5:
            raise ValueError(
                f"Metric weights must sum to 100 (got {total})"
            )
        return self


class IfsMetricWeights(_MetricWeightBase):
    roic: float = 30              # mandatory
    operating_margin: float = 25  # mandatory
    revenue_cagr: float = 20
    debt_to_equity: float = 15    # inverted: lower leverage ranks higher
    fcf_margin: float = 10


# =========================================================================
# ScoringConfig: top-level config schema
# =========================================================================

_DEFAULT_DIMENSIONS = {
    "profitability": ["roic", "operating_margin", "net_margin"],
    "growth": ["revenue_cagr", "earnings_cagr", "fcf_cagr"],
    "solvency": ["debt_to_equity", "interest_coverage", "current_ratio"],
    "efficiency": ["roic", "fcf_margin", "asset_turnover"],
    "moat": ["roic_avg_5y", "roic_volatility", "gross_margin_avg_5y"],
    "sentiment": ["relative_momentum", "return_dispersion"],
}


class ScoringConfig(BaseModel):
    """Schema for validated config.yaml contents.

    Every scorer takes one of these (default: ``ScoringConfig()``), so
    alternative thresholds can be tested without touching globals.
    """

    class BenchmarkConfig(BaseModel):
        sample_threshold: int = Field(20, gt=0)
        fallback_score: float = Field(50, ge=0, le=100)
        missing_default: float = Field(50, ge=0, le=100)
        tail_extrapolation: bool = False
        substitute_missing: bool = False
        min_sample_size: int = Field(3, ge=0)

    class GrowthConfig(BaseModel):
        cagr_min_points: int = Field(3, ge=2)
        cagr_min_years: float = Field(2.0, gt=0)
        moat_window_years: int = Field(5, ge=1)
        moat_min_years: int = Field(3, ge=1)
        momentum_clamp: float = Field(50, gt=0)

    class FgosConfig(BaseModel):
        dimensions: dict[str, list[str]] = _DEFAULT_DIMENSIONS
        lower_is_better: list[str] = ["debt_to_equity", "roic_volatility",
                                      "return_dispersion"]
        high_threshold: float = Field(70, ge=0, le=100)
        low_threshold: float = Field(40, ge=0, le=100)
        single_low_conf_cap: int = Field(79, ge=0, le=100)
        multi_low_conf_cap: int = Field(59, ge=0, le=100)
        core_metrics: list[str] = ["roic", "operating_margin", "revenue_cagr",
                                  "debt_to_equity", "fcf_margin"]
        low_volatility_below: float = Field(0.15, ge=0)
        high_volatility_above: float = Field(0.40, ge=0)

        @field_validator("dimensions")
        @classmethod
        def known_dimensions(cls, v: dict) -> dict:
            unknown = set(v) - set(DIMENSIONS)
            if unknown:
                raise ValueError(f"Unknown FGOS dimensions: {sorted(unknown)}")
            for name, metrics in v.items():
                if not metrics:
                    raise ValueError(f"Dimension '{name}' has no metrics")
                if len(metrics) > 4:
                    raise ValueError(f"Dimension '{name}' has more than 4 metrics")
            return v

        @model_validator(mode="after")
        def thresholds_ordered(self) -> "ScoringConfig.FgosConfig":
            if self.low_threshold >= self.high_threshold:
                raise ValueError("FGOS low_threshold must be below high_threshold")
            return self

    class RelativeReturnConfig(BaseModel):
        alpha_cap: float = Field(20, gt=0)
        consistency_reference: float = Field(10, gt=0)
        sign_epsilon: float = Field(0.01, ge=0)
        drawdown_cap: float = Field(20, gt=0)
        max_drawdown_penalty: float = Field(20, ge=0, le=100)
        alpha_weight: float = Field(0.7, ge=0, le=1)
        consistency_weight: float = Field(0.3, ge=0, le=1)
        outperformer_threshold: float = Field(60, ge=0, le=100)
        underperformer_threshold: float = Field(40, ge=0, le=100)
        confidence_base: float = Field(30, ge=0, le=100)
        confidence_span: float = Field(40, ge=0, le=100)

        @model_validator(mode="after")
        def weights_sum_to_one(self) -> "ScoringConfig.RelativeReturnConfig":
            if abs(self.alpha_weight + self.consistency_weight - 1.0) > 1e-6:
                raise ValueError("alpha_weight + consistency_weight must equal 1")
            if self.underperformer_threshold >= self.outperformer_threshold:
                raise ValueError("underperformer_threshold must be below outperformer_threshold")
            return self

    class IfsConfig(BaseModel):
        leader_threshold: float = Field(67, ge=0, le=100)
        laggard_threshold: float = Field(33, ge=0, le=100)
        min_peer_group: int = Field(3, ge=1)
        memory_window: int = Field(5, ge=1)
        metric_weights: IfsMetricWeights = IfsMetricWeights()

        @model_validator(mode="after")
        def thresholds_ordered(self) -> "ScoringConfig.IfsConfig":
            if self.laggard_threshold >= self.leader_threshold:
                raise ValueError("IFS laggard_threshold must be below leader_threshold")
            return self

    class RunnerConfig(BaseModel):
        chunk_size: int = Field(25, ge=10, le=40)
        max_workers: int = Field(4, ge=1, le=32)
        write_parquet: bool = True

    benchmark: BenchmarkConfig = BenchmarkConfig()
    growth: GrowthConfig = GrowthConfig()
    fgos: FgosConfig = FgosConfig()
    relative_return: RelativeReturnConfig = RelativeReturnConfig()
    ifs: IfsConfig = IfsConfig()
    runner: RunnerConfig = RunnerConfig()


def load_config(path: Path = CONFIG_PATH) -> ScoringConfig:
    """Load and validate a YAML configuration file."""
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return ScoringConfig(**raw)
