"""
Tests for risk scoring
"""

from decimal import Decimal

import pytest

from securebank.risk import RiskFactors, RiskLevel, assess, score


def factors(amount="100", international=False, hour=12, first_time=False):
    return RiskFactors(Decimal(amount), international, hour, first_time)


class TestRiskScoring:
    """Test additive, capped scoring"""

    def test_quiet_transaction_scores_zero(self):
        result = assess(factors())
        assert result.score == 0
        assert result.risk_level == RiskLevel.LOW
        assert result.reasons == []

    @pytest.mark.parametrize("amount,expected", [
        ("10000", 0),
        ("10000.01", 15),
        ("50000", 15),
        ("50000.01", 30),
    ])
    def test_amount_bands(self, amount, expected):
        assert score(factors(amount=amount)) == expected

    def test_international(self):
        assert score(factors(international=True)) == 20

    @pytest.mark.parametrize("hour,expected", [(5, 10), (6, 0), (21, 0), (22, 10), (0, 10)])
    def test_business_hours(self, hour, expected):
        assert score(factors(hour=hour)) == expected

    def test_first_time_recipient(self):
        assert score(factors(first_time=True)) == 25

    def test_all_factors(self):
        """Every factor at once: 30 + 20 + 10 + 25"""
        result = assess(factors(amount="75000", international=True, hour=23, first_time=True))
        assert result.score == 85
        assert result.risk_level == RiskLevel.HIGH
        assert result.reasons == ["large_amount", "international",
                                  "outside_business_hours", "first_time_recipient"]

    def test_levels(self):
        assert assess(factors(international=True, first_time=True)).risk_level == RiskLevel.MEDIUM
        assert assess(factors(international=True)).risk_level == RiskLevel.LOW

    def test_score_is_bounded(self):
        for amount in ("1", "20000", "999999"):
            for hour in range(24):
                value = score(factors(amount=amount, international=True, hour=hour,
                                      first_time=True))
                assert 0 <= value <= 100
