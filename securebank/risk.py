"""
Risk scoring

Pure, bounded scoring of a money movement. The score is recorded on the
transaction for review; it never blocks processing.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import List

MAX_SCORE = 100

LARGE_AMOUNT = Decimal('50000')
ELEVATED_AMOUNT = Decimal('10000')

BUSINESS_HOURS_START = 6
BUSINESS_HOURS_END = 22


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class RiskFactors:
    """Inputs to the score; ``hour`` is the local hour (0-23) of the request"""
    settlement_amount: Decimal
    is_international: bool
    hour: int
    first_time_recipient: bool


@dataclass
class RiskAssessment:
    score: int
    risk_level: RiskLevel
    reasons: List[str] = field(default_factory=list)


def assess(factors: RiskFactors) -> RiskAssessment:
    """Score a transaction and explain which factors contributed"""
    score = 0
    reasons = []

    if factors.settlement_amount > LARGE_AMOUNT:
        score += 30
        reasons.append("large_amount")
    elif factors.settlement_amount > ELEVATED_AMOUNT:
        score += 15
        reasons.append("elevated_amount")

    if factors.is_international:
        score += 20
        reasons.append("international")

    if not BUSINESS_HOURS_START <= factors.hour < BUSINESS_HOURS_END:
        score += 10
        reasons.append("outside_business_hours")

    if factors.first_time_recipient:
        score += 25
        reasons.append("first_time_recipient")

    score = min(score, MAX_SCORE)
    if score >= 60:
        level = RiskLevel.HIGH
    elif score >= 30:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return RiskAssessment(score=score, risk_level=level, reasons=reasons)


def score(factors: RiskFactors) -> int:
    """Risk score in [0, 100]"""
    return assess(factors).score
