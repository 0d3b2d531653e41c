# tests/services/test_icp_scorer.py
"""
Tests for ICP fit scoring

Coverage:
- Weighted dimension scores
- Missing entity data is skipped, never penalized
- Neutral score when nothing is scoreable
- Hard exclusions veto to zero
- Country alias normalization

Run with: pytest backend/tests/services/test_icp_scorer.py -v
"""

import pytest

from leadintel.schemas.icp import IcpFilters
from leadintel.services.icp_scorer import (
    NEUTRAL_SCORE,
    NO_DATA_REASON,
    normalize_country,
    score_company_fit,
)


@pytest.fixture
def software_company():
    return {
        "name": "Acme Analytics",
        "domain": "acme.io",
        "industry": "Computer Software",
        "employee_count": 220,
        "country": "USA",
        "annual_revenue": 30_000_000,
        "tech_stack": ["Salesforce", "Snowflake"],
        "latest_funding_stage": "Series B",
        "founded_year": 2015,
    }


# ============================================================================
# TEST: DIMENSIONS
# ============================================================================

class TestDimensionScoring:

    def test_full_match(self, software_company):
        fit = score_company_fit(software_company, {
            "industries": ["software"],
            "employee_count_min": 50,
            "employee_count_max": 500,
            "countries": ["United States"],
        })

        assert fit.score == 1.0
        assert fit.breakdown == {"industry": 1.0, "employee_count": 1.0, "geography": 1.0}
        assert not fit.excluded

    def test_weighted_partial_match(self, software_company):
        # industry (weight 3) matches, employee_count (weight 2) does not
        fit = score_company_fit(software_company, {
            "industries": ["software"],
            "employee_count_min": 1000,
        })

        assert fit.score == 0.6
        assert fit.breakdown["employee_count"] == 0.0

    def test_revenue_out_of_range_is_soft(self, software_company):
        fit = score_company_fit(software_company, {"revenue_min": 100_000_000})
        assert fit.score == 0.3

    def test_tech_stack_overlap(self, software_company):
        fit = score_company_fit(software_company, {"tech_stack": ["salesforce", "hubspot"]})
        assert fit.score == 0.5

    def test_funding_and_founded_year(self, software_company):
        fit = score_company_fit(software_company, {
            "funding_stages": ["Series A", "Series B"],
            "founded_after": 2010,
            "founded_before": 2012,
        })

        # funding (weight 1) matches, founded_year (weight 1) does not
        assert fit.score == 0.5

    def test_accepts_filter_model(self, software_company):
        fit = score_company_fit(software_company, IcpFilters(industries=["software"]))
        assert fit.score == 1.0

    def test_reasons_describe_matches(self, software_company):
        fit = score_company_fit(software_company, {"industries": ["software"]})
        assert any(r.startswith("industry:") for r in fit.reasons)


# ============================================================================
# TEST: MISSING DATA
# ============================================================================

class TestMissingData:

    def test_missing_dimension_is_skipped(self):
        company = {"name": "Sparse", "industry": "Software"}

        fit = score_company_fit(company, {
            "industries": ["software"],
            "employee_count_min": 50,
            "countries": ["Germany"],
        })

        assert fit.score == 1.0
        assert set(fit.breakdown) == {"industry"}

    def test_zero_employee_count_means_unknown(self):
        fit = score_company_fit({"industry": "Software", "employee_count": 0}, {
            "industries": ["software"],
            "employee_count_min": 50,
        })
        assert fit.score == 1.0

    def test_nothing_scoreable_is_neutral(self):
        fit = score_company_fit({"name": "Ghost"}, {"industries": ["software"], "countries": ["US"]})

        assert fit.score == NEUTRAL_SCORE
        assert fit.reasons == [NO_DATA_REASON]

    def test_no_filters_is_neutral(self, software_company):
        assert score_company_fit(software_company, {}).score == NEUTRAL_SCORE


# ============================================================================
# TEST: EXCLUSIONS
# ============================================================================

class TestExclusions:

    def test_excluded_industry_vetoes(self, software_company):
        software_company["industry"] = "Online Gambling Software"

        fit = score_company_fit(software_company, {
            "industries": ["software"],
            "exclude_industries": ["gambling"],
        })

        assert fit.score == 0.0
        assert fit.excluded
        assert "gambling" in fit.reasons[0]

    def test_excluded_keyword_in_description(self, software_company):
        software_company["description"] = "A staffing agency for engineers"
        fit = score_company_fit(software_company, {"exclude_keywords": ["Staffing"]})
        assert fit.excluded

    def test_excluded_domain_covers_subdomains(self, software_company):
        software_company["domain"] = "eu.acme.io"
        assert score_company_fit(software_company, {"exclude_domains": ["acme.io"]}).excluded
        software_company["domain"] = "notacme.io"
        assert not score_company_fit(software_company, {"exclude_domains": ["acme.io"]}).excluded


# ============================================================================
# TEST: COUNTRIES
# ============================================================================

class TestCountryAliases:

    @pytest.mark.parametrize("raw, canonical", [
        ("USA", "united states"),
        ("u.s.", "united states"),
        ("UK", "united kingdom"),
        ("Deutschland", "germany"),
        ("Portugal", "portugal"),
    ])
    def test_normalize_country(self, raw, canonical):
        assert normalize_country(raw) == canonical

    def test_alias_matches_canonical_filter(self):
        fit = score_company_fit({"country": "England"}, {"countries": ["United Kingdom"]})
        assert fit.score == 1.0

    def test_country_match_is_exact(self):
        fit = score_company_fit({"country": "South Africa"}, {"countries": ["Africa"]})
        assert fit.score == 0.0
