#!/usr/bin/env python3
"""Deterministic risk scoring and the ordered SKIP/EXECUTE rules.

These rules are the safety floor for every decision. The AI strategy reuses
`score_risks` to fill in ratings it omits and `evaluate` as its fallback.
"""
from typing import NamedTuple, Optional, Tuple

from analysis.models import ProfitSummary, RiskAssessment, RiskContext, RiskRatings
from constants import (
    DECISION_EXECUTE,
    DECISION_SKIP,
    MARGIN_ACCEPTABLE,
    MARGIN_SAFE,
    MARGIN_THIN,
    RISK_HIGH,
    RISK_LOW,
    RISK_MEDIUM,
)

SOURCE_RULES = 'rules'

STATE_PENDING = 'PENDING'
STATE_AI_ATTEMPTED = 'AI_ATTEMPTED'
STATE_AI_SUCCEEDED = 'AI_SUCCEEDED'
STATE_AI_FAILED = 'AI_FAILED'
STATE_FALLBACK_APPLIED = 'FALLBACK_APPLIED'
STATE_DECIDED = 'DECIDED'


class RiskPolicy(NamedTuple):
    """Thresholds for scoring and decision rules, in USD, ratios and native units."""
    gas_high_ratio: float = 0.5
    gas_medium_ratio: float = 0.3
    slippage_high_usd: float = 1.0
    slippage_medium_ratio: float = 0.25
    mev_high_amount: float = 0.1
    mev_medium_slippage_usd: float = 2.0
    mev_medium_net_profit_usd: float = 10.0
    timing_high_ratio: float = 0.5
    timing_medium_ratio: float = 0.3
    min_net_profit_usd: float = 2.0
    safe_net_profit_usd: float = 10.0
    max_spread_pct: float = 5.0
    low_liquidity_max_amount: float = 0.05
    safe_confidence: float = 0.90
    default_confidence: float = 0.75


DEFAULT_RISK_POLICY = RiskPolicy()


def _level(ratio: float, high: float, medium: float) -> str:
    if ratio > high:
        return RISK_HIGH
    if ratio > medium:
        return RISK_MEDIUM
    return RISK_LOW


def profit_margin_bucket(net_profit_usd: float, policy: RiskPolicy = DEFAULT_RISK_POLICY) -> str:
    if net_profit_usd > policy.safe_net_profit_usd:
        return MARGIN_SAFE
    if net_profit_usd >= policy.min_net_profit_usd:
        return MARGIN_ACCEPTABLE
    return MARGIN_THIN


def score_risks(
    summary: ProfitSummary,
    context: RiskContext,
    policy: RiskPolicy = DEFAULT_RISK_POLICY,
) -> RiskRatings:
    breakdown = summary.breakdown
    gross = summary.gross_profit_usd
    net = summary.net_profit_usd
    gas_usd = breakdown.gas.usd
    slippage_usd = breakdown.slippage.usd
    low_liquidity = context.liquidity_depth == 'low'

    # A non-positive denominator counts as the worst case.
    gas_to_gross = gas_usd / gross if gross > 0 else 1.0
    slippage_to_gross = slippage_usd / gross if gross > 0 else 1.0
    gas_to_net = gas_usd / net if net > 0 else 1.0

    gas_risk = _level(gas_to_gross, policy.gas_high_ratio, policy.gas_medium_ratio)

    if low_liquidity and slippage_usd > policy.slippage_high_usd:
        slippage_risk = RISK_HIGH
    elif slippage_to_gross > policy.slippage_medium_ratio:
        slippage_risk = RISK_MEDIUM
    else:
        slippage_risk = RISK_LOW

    if context.amount_native > policy.mev_high_amount and low_liquidity:
        mev_risk = RISK_HIGH
    elif slippage_usd > policy.mev_medium_slippage_usd and net < policy.mev_medium_net_profit_usd:
        mev_risk = RISK_MEDIUM
    else:
        mev_risk = RISK_LOW

    timing_risk = _level(gas_to_net, policy.timing_high_ratio, policy.timing_medium_ratio)

    return RiskRatings(
        gas_risk=gas_risk,
        slippage_risk=slippage_risk,
        mev_risk=mev_risk,
        timing_risk=timing_risk,
        profit_margin=profit_margin_bucket(net, policy),
    )


def profit_floor_violation(summary: ProfitSummary) -> Optional[str]:
    """Reason string when rule 1 applies, else None."""
    if summary.net_profit_usd <= 0:
        return "Net profit is negative or zero after all costs"
    return None


class RuleBasedRiskStrategy:
    """Always-available classifier; the system of record for decisions."""

    name = SOURCE_RULES

    def __init__(self, policy: RiskPolicy = DEFAULT_RISK_POLICY):
        self.policy = policy

    async def assess(self, summary: ProfitSummary, context: RiskContext) -> RiskAssessment:
        return self.evaluate(summary, context, states=(STATE_PENDING,))

    def score(self, summary: ProfitSummary, context: RiskContext) -> RiskRatings:
        return score_risks(summary, context, self.policy)

    def decide(self, summary: ProfitSummary, context: RiskContext, ratings: RiskRatings) -> Tuple[str, str, float]:
        """Ordered rules; the first match wins."""
        policy = self.policy
        net = summary.net_profit_usd
        gross = summary.gross_profit_usd

        floor = profit_floor_violation(summary)
        if floor:
            return DECISION_SKIP, floor, 0.95

        if ratings.gas_risk == RISK_HIGH:
            gas_ratio = summary.breakdown.gas.usd / gross if gross > 0 else 1.0
            return DECISION_SKIP, f"Gas cost is {gas_ratio * 100:.0f}% of gross profit - too risky", 0.90

        if ratings.profit_margin == MARGIN_THIN and RISK_HIGH in (ratings.slippage_risk, ratings.mev_risk):
            return DECISION_SKIP, "Profit margin too thin relative to execution risks", 0.85

        # Strict: exactly the minimum passes.
        if net < policy.min_net_profit_usd:
            return (
                DECISION_SKIP,
                f"Net profit of ${net:.2f} below ${policy.min_net_profit_usd:g} safety threshold",
                0.80,
            )

        if summary.spread_pct > policy.max_spread_pct:
            return (
                DECISION_SKIP,
                f"Spread >{policy.max_spread_pct:g}% appears anomalous - possible bad data or flash crash",
                0.75,
            )

        if context.liquidity_depth == 'low' and context.amount_native > policy.low_liquidity_max_amount:
            return DECISION_SKIP, "Trade size too large for low liquidity pool - high MEV risk", 0.80

        confidence = policy.safe_confidence if ratings.profit_margin == MARGIN_SAFE else policy.default_confidence
        return (
            DECISION_EXECUTE,
            f"Net profit ${net:.2f} with {ratings.profit_margin} margin and manageable risks",
            confidence,
        )

    def evaluate(
        self,
        summary: ProfitSummary,
        context: RiskContext,
        states: Tuple[str, ...] = (),
        fallback_reason: Optional[str] = None,
    ) -> RiskAssessment:
        ratings = self.score(summary, context)
        decision, reason, confidence = self.decide(summary, context, ratings)
        return RiskAssessment(
            ratings=ratings,
            decision=decision,
            reason=reason,
            confidence=confidence,
            source=SOURCE_RULES,
            fallback_reason=fallback_reason,
            states=states + (STATE_DECIDED,),
        )
