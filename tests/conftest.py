"""Shared fixtures for pitscore tests."""

import sys
from datetime import date
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from schemas import (FinancialPeriod, FiscalYearMetrics, StandardStats,  # noqa: E402
                     load_config)


def make_fy(year: int, i: int) -> FinancialPeriod:
    """FY period for a company growing revenue 10% a year from 100."""
    rev = 100.0 * 1.1 ** i
    return FinancialPeriod(
        period_type="FY",
        period_end_date=date(year, 12, 31),
        metrics={
            "revenue": rev,
            "gross_profit": 0.40 * rev,
            "operating_income": 0.15 * rev,
            "net_income": 0.10 * rev,
            "ebitda": 0.20 * rev,
            "operating_cash_flow": 0.12 * rev,
            "capital_expenditure": -0.04 * rev,
            "free_cash_flow": 0.08 * rev,
            "interest_expense": 2.0,
            "total_assets": 150.0,
            "total_equity": 50.0 + 5 * i,
            "total_debt": 25.0,
            "total_current_assets": 60.0,
            "total_current_liabilities": 40.0,
            "shares_outstanding": 10.0,
        },
    )


def std_stats(p10, p25, p50, p75, p90, n=50):
    return StandardStats(p10=p10, p25=p25, p50=p50, p75=p75, p90=p90,
                         sample_size=n, confidence="high")


@pytest.fixture
def cfg():
    """Load the production config.yaml."""
    return load_config(ROOT / "config.yaml")


@pytest.fixture
def sample_history():
    """Six FY periods, 2019-2024, each ending Dec 31."""
    return [make_fy(2019 + i, i) for i in range(6)]


@pytest.fixture
def ratio_stats():
    """Generic decimal-ratio distribution: 2% / 5% / 10% / 15% / 20%."""
    return std_stats(0.02, 0.05, 0.10, 0.15, 0.20)


@pytest.fixture
def tech_benchmarks():
    """A full sector benchmark set covering every FGOS metric."""
    return {
        "roic": std_stats(0.02, 0.05, 0.10, 0.15, 0.20),
        "operating_margin": std_stats(0.02, 0.05, 0.10, 0.15, 0.20),
        "net_margin": std_stats(0.00, 0.03, 0.06, 0.10, 0.15),
        "revenue_cagr": std_stats(0.00, 0.02, 0.05, 0.10, 0.15),
        "earnings_cagr": std_stats(0.00, 0.02, 0.05, 0.10, 0.15),
        "fcf_cagr": std_stats(0.00, 0.02, 0.05, 0.10, 0.15),
        "debt_to_equity": std_stats(0.1, 0.3, 0.6, 1.0, 2.0),
        "interest_coverage": std_stats(1.0, 3.0, 6.0, 10.0, 20.0),
        "current_ratio": std_stats(0.8, 1.0, 1.5, 2.0, 3.0),
        "fcf_margin": std_stats(0.00, 0.03, 0.06, 0.10, 0.15),
        "asset_turnover": std_stats(0.3, 0.5, 0.8, 1.1, 1.5),
        "roic_avg_5y": std_stats(0.02, 0.05, 0.10, 0.15, 0.20),
        "roic_volatility": std_stats(0.005, 0.01, 0.02, 0.04, 0.08),
        "gross_margin_avg_5y": std_stats(0.15, 0.25, 0.35, 0.45, 0.60),
        "relative_momentum": std_stats(-20.0, -10.0, 0.0, 10.0, 20.0),
        "return_dispersion": std_stats(1.0, 2.0, 4.0, 8.0, 12.0),
    }


@pytest.fixture
def sample_timeline():
    return {
        "1Y": {"asset_return": 15.0, "benchmark_return": 10.0,
               "asset_max_drawdown": 12.0, "benchmark_max_drawdown": 10.0},
        "3Y": {"asset_return": 40.0, "benchmark_return": 30.0},
        "5Y": None,
    }


def peer(year, ticker, roic, om, cagr=None, de=None, fcf=None):
    return FiscalYearMetrics(fiscal_year=year, ticker=ticker, roic=roic,
                             operating_margin=om, revenue_cagr=cagr,
                             debt_to_equity=de, fcf_margin=fcf)


@pytest.fixture
def peer_groups():
    """Four peers per fiscal year 2020-2024, identical each year."""
    groups = {}
    for year in range(2020, 2025):
        groups[year] = [
            peer(year, "P1", 0.05, 0.05, 0.01, 0.2, 0.02),
            peer(year, "P2", 0.10, 0.10, 0.03, 0.4, 0.04),
            peer(year, "P3", 0.15, 0.15, 0.05, 0.6, 0.06),
            peer(year, "P4", 0.20, 0.20, 0.07, 0.8, 0.08),
        ]
    return groups
