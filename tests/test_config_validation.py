"""Tests for config and input document validation via Pydantic schemas.

Verifies that:
- Valid production config passes validation
- Missing keys fall back to defaults
- IFS metric weights must be non-negative and sum to 100
- Threshold pairs must be ordered
- Input documents clean non-finite numbers and reject malformed rows
"""

import sys
from datetime import date
from pathlib import Path

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))
from schemas import (EntityInput, FinancialPeriod, FiscalYearMetrics,
                     ScoringBundle, ScoringConfig, dedupe_periods, load_config)


ROOT = Path(__file__).resolve().parent.parent


class TestScoringConfigValidation:
    def test_production_config_passes(self):
        """The actual config.yaml should pass validation."""
        with open(ROOT / "config.yaml") as f:
            raw = yaml.safe_load(f)
        cfg = ScoringConfig(**raw)
        assert cfg.benchmark.sample_threshold == 20
        assert cfg.ifs.metric_weights.roic == 30

    def test_empty_config_uses_defaults(self):
        """An empty config should use all defaults and pass."""
        cfg = ScoringConfig()
        assert cfg.benchmark.fallback_score == 50
        assert cfg.benchmark.tail_extrapolation is False
        assert cfg.growth.cagr_min_points == 3
        assert cfg.fgos.high_threshold == 70
        assert cfg.fgos.low_threshold == 40
        assert cfg.relative_return.alpha_weight == 0.7
        assert cfg.ifs.leader_threshold == 67
        assert cfg.ifs.laggard_threshold == 33
        assert cfg.runner.chunk_size == 25

    def test_production_matches_defaults(self, cfg):
        """config.yaml documents the defaults rather than overriding them."""
        assert cfg == ScoringConfig()

    def test_load_config_from_path(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("ifs:\n  leader_threshold: 80\nrunner:\n  max_workers: 2\n")
        cfg = load_config(path)
        assert cfg.ifs.leader_threshold == 80
        assert cfg.runner.max_workers == 2
        assert cfg.ifs.laggard_threshold == 33

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ScoringConfig()


class TestIfsWeights:
    def test_negative_weight_rejected(self):
        with pytest.raises(Exception, match="Weight must be >= 0"):
            ScoringConfig(ifs={"metric_weights": {
                "roic": 60, "operating_margin": 25, "revenue_cagr": 20,
                "debt_to_equity": -15, "fcf_margin": 10}})

    def test_weights_not_summing_to_100(self):
        with pytest.raises(Exception, match="Metric weights must sum to 100"):
            ScoringConfig(ifs={"metric_weights": {
                "roic": 50, "operating_margin": 50, "revenue_cagr": 20,
                "debt_to_equity": 15, "fcf_margin": 10}})

    def test_weights_within_tolerance(self):
        """Weights summing to 100.3 (within 0.5 tolerance) should pass."""
        cfg = ScoringConfig(ifs={"metric_weights": {
            "roic": 30.3, "operating_margin": 25, "revenue_cagr": 20,
            "debt_to_equity": 15, "fcf_margin": 10}})
        assert cfg.ifs.metric_weights.roic == 30.3


class TestThresholds:
    def test_fgos_thresholds_ordered(self):
        with pytest.raises(Exception, match="low_threshold must be below"):
            ScoringConfig(fgos={"high_threshold": 40, "low_threshold": 70})

    def test_ifs_thresholds_ordered(self):
        with pytest.raises(Exception, match="laggard_threshold must be below"):
            ScoringConfig(ifs={"leader_threshold": 30, "laggard_threshold": 30})

    def test_band_thresholds_ordered(self):
        with pytest.raises(Exception, match="underperformer_threshold must be below"):
            ScoringConfig(relative_return={"outperformer_threshold": 40,
                                           "underperformer_threshold": 60})

    def test_composite_weights_sum_to_one(self):
        with pytest.raises(Exception, match="must equal 1"):
            ScoringConfig(relative_return={"alpha_weight": 0.8})

    def test_percent_out_of_range(self):
        with pytest.raises(Exception):
            ScoringConfig(benchmark={"fallback_score": 120})


class TestDimensionConfig:
    def test_unknown_dimension_rejected(self):
        with pytest.raises(Exception, match="Unknown FGOS dimensions"):
            ScoringConfig(fgos={"dimensions": {"valuation": ["pe_ratio"]}})

    def test_empty_dimension_rejected(self):
        with pytest.raises(Exception, match="has no metrics"):
            ScoringConfig(fgos={"dimensions": {"growth": []}})

    def test_too_many_metrics_rejected(self):
        with pytest.raises(Exception, match="more than 4 metrics"):
            ScoringConfig(fgos={"dimensions": {"growth": ["a", "b", "c", "d", "e"]}})

    def test_subset_of_dimensions_allowed(self):
        cfg = ScoringConfig(fgos={"dimensions": {"profitability": ["roic"]}})
        assert list(cfg.fgos.dimensions) == ["profitability"]


class TestRunnerConfig:
    @pytest.mark.parametrize("size", [5, 41])
    def test_chunk_size_bounds(self, size):
        with pytest.raises(Exception):
            ScoringConfig(runner={"chunk_size": size})

    def test_zero_workers_rejected(self):
        with pytest.raises(Exception):
            ScoringConfig(runner={"max_workers": 0})


class TestInputDocuments:
    def test_non_finite_metrics_become_none(self):
        p = FinancialPeriod(period_end_date="2023-12-31",
                            metrics={"revenue": float("nan"), "net_income": "12.5",
                                     "total_debt": float("-inf"), "flag": True})
        assert p.get("revenue") is None
        assert p.get("net_income") == 12.5
        assert p.get("total_debt") is None
        assert p.get("flag") is None
        assert p.date == date(2023, 12, 31)

    def test_unknown_period_type_rejected(self):
        with pytest.raises(Exception):
            FinancialPeriod(period_type="H1", period_end_date="2023-06-30")

    def test_dedupe_keeps_later_correction(self):
        a = FinancialPeriod(period_end_date="2023-12-31", metrics={"revenue": 100.0})
        b = FinancialPeriod(period_end_date="2023-12-31", metrics={"revenue": 105.0})
        ttm = FinancialPeriod(period_type="TTM", period_end_date="2023-12-31",
                              metrics={"revenue": 101.0})
        older = FinancialPeriod(period_end_date="2022-12-31", metrics={"revenue": 90.0})
        out = dedupe_periods([a, ttm, older, b])
        assert len(out) == 3
        assert out[0] is older
        fy = [p for p in out if p.period_type == "FY" and p.date.year == 2023]
        assert fy[0].get("revenue") == 105.0

    def test_entity_window_returns_cleaned(self):
        e = EntityInput(ticker="AAA", window_returns={"1Y": float("nan"), "3Y": 12})
        assert e.window_returns == {"1Y": None, "3Y": 12.0}

    def test_timeline_missing_horizon_rejected(self):
        with pytest.raises(Exception):
            EntityInput(ticker="AAA", relative_return_timeline={"1Y": None, "3Y": None})

    def test_duplicate_ticker_rejected(self):
        with pytest.raises(Exception, match="Duplicate ticker"):
            ScoringBundle(entities=[{"ticker": "AAA"}, {"ticker": "AAA"}])

    def test_bundle_peer_group_years_coerced(self):
        b = ScoringBundle(peer_groups={"Software": {"2023": [
            {"fiscal_year": 2023, "ticker": "P1", "roic": 0.1, "operating_margin": 0.2}]}})
        assert 2023 in b.peer_groups["Software"]

    def test_fiscal_year_end_defaults_to_december(self):
        row = FiscalYearMetrics(fiscal_year=2022, roic=0.1)
        assert row.period_end_date == date(2022, 12, 31)
        early = FiscalYearMetrics(fiscal_year=2022, period_end_date="2022-03-31")
        assert early.period_end_date == date(2022, 3, 31)
