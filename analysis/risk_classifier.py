#!/usr/bin/env python3
"""AI-assisted EXECUTE/SKIP classification with a mandatory rule-based fallback.

The reasoning service is treated as an untrusted, optional advisor: its reply
must match a strict schema, it gets one attempt bounded by a timeout, and the
deterministic profit floor is re-applied to whatever it decides.
"""
import asyncio
import json
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional

from analysis.errors import MalformedReasoningResponse, ReasoningServiceFailure
from analysis.models import ProfitSummary, RiskAssessment, RiskContext, RiskRatings
from analysis.risk_rules import (
    DEFAULT_RISK_POLICY,
    RiskPolicy,
    RuleBasedRiskStrategy,
    STATE_AI_ATTEMPTED,
    STATE_AI_FAILED,
    STATE_AI_SUCCEEDED,
    STATE_DECIDED,
    STATE_FALLBACK_APPLIED,
    STATE_PENDING,
    profit_floor_violation,
)
from constants import AI_DEFAULT_TIMEOUT, DECISION_SKIP, DECISIONS, PROFIT_MARGINS, RISK_LEVELS

logger = logging.getLogger(__name__)

SOURCE_AI = 'ai'
DEFAULT_AI_CONFIDENCE = 0.5
DEFAULT_AI_REASON = "No reason provided"

SYSTEM_PROMPT = """You are a DeFi arbitrage execution risk engine.

Your ONLY job is to decide whether a cross-chain arbitrage trade should execute after considering execution risks.

You are NOT a price predictor, a trading signal generator or a market analyst.
You ARE a risk filter and an execution safety validator.

Analyze each trade for:
1. Gas risk: will gas spikes eliminate profit?
2. Slippage risk: is liquidity sufficient for the trade size?
3. MEV risk: is the trade attractive to sandwich bots?
4. Timing risk: can the bridge fill window erode the margin?
5. Profit margin: is there buffer against execution variance?

Return ONLY valid JSON. No markdown. No explanations outside JSON."""

# JSON key -> RiskRatings attribute
_RISK_FIELDS = {
    'gasRisk': 'gas_risk',
    'slippageRisk': 'slippage_risk',
    'mevRisk': 'mev_risk',
    'timingRisk': 'timing_risk',
}


@dataclass(frozen=True)
class AIDecision:
    """Validated reasoning-service reply. Ratings the model left out are absent."""
    decision: str
    reason: str
    confidence: float
    ratings: Dict[str, str] = field(default_factory=dict)


def _ratio_pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 100.0


def build_decision_prompt(
    summary: ProfitSummary,
    context: RiskContext,
    policy: RiskPolicy = DEFAULT_RISK_POLICY,
) -> str:
    breakdown = summary.breakdown
    gross = summary.gross_profit_usd
    net = summary.net_profit_usd
    gas_usd = breakdown.gas.usd
    slippage_usd = breakdown.slippage.usd

    return f"""Analyze this opportunity and decide: EXECUTE or SKIP

TRADE PARAMETERS:
- Trade Size: {context.amount_native:.4f} ETH (${summary.trade_value_usd:,.2f})
- Buy Price: ${summary.request.buy_price:.2f} | Sell Price: ${summary.request.sell_price:.2f}
- Price Spread: {summary.spread_pct:.3f}%
- Liquidity Depth: {context.liquidity_depth}
- Destination Chain: {context.chain} (block time {context.block_time_seconds}s)

COST BREAKDOWN:
- Gas Cost: ${gas_usd:.2f} ({_ratio_pct(gas_usd, gross):.1f}% of gross profit)
- Slippage: ${slippage_usd:.2f} ({_ratio_pct(slippage_usd, gross):.1f}% of gross profit)
- Swap Fees: ${breakdown.swap_fee.usd:.2f} (fee tier {breakdown.swap_fee.fee_tier})
- MEV Protection: ${breakdown.mev.usd:.2f} (exposure {breakdown.mev.exposure_level})
- Bridging: ${breakdown.bridging.usd:.2f} via {breakdown.bridging.protocol}, est. fill {breakdown.bridging.estimated_time_seconds:.0f}s
- Total Costs: ${summary.total_costs_usd:.2f}

PROFIT:
- Gross Profit: ${gross:.2f}
- Net Profit: ${net:.2f}
- Profit Margin: {summary.profit_margin_pct:.3f}%

RISK EVALUATION:
1. Gas Risk: HIGH if gas > {policy.gas_high_ratio:.0%} of gross profit, MEDIUM if > {policy.gas_medium_ratio:.0%}, else LOW.
2. Slippage Risk: HIGH if liquidity is "low" AND slippage > ${policy.slippage_high_usd:g}, MEDIUM if slippage > {policy.slippage_medium_ratio:.0%} of gross profit, else LOW.
3. MEV Risk: HIGH if trade size > {policy.mev_high_amount:g} ETH AND liquidity is "low", MEDIUM if slippage > ${policy.mev_medium_slippage_usd:g} AND net profit < ${policy.mev_medium_net_profit_usd:g}, else LOW.
4. Timing Risk: HIGH if gas > {policy.timing_high_ratio:.0%} of net profit, MEDIUM if > {policy.timing_medium_ratio:.0%}, else LOW.
5. Profit Margin: "thin" below ${policy.min_net_profit_usd:g}, "acceptable" up to ${policy.safe_net_profit_usd:g}, "safe" above.

DECISION RULES:
- SKIP if net profit <= 0
- SKIP if gas risk is HIGH
- SKIP if profit margin is "thin" AND (slippage risk HIGH OR mev risk HIGH)
- SKIP if net profit < ${policy.min_net_profit_usd:g}
- SKIP if spread > {policy.max_spread_pct:g}% (anomalous)
- SKIP if liquidity is "low" AND trade size > {policy.low_liquidity_max_amount:g} ETH
- EXECUTE if net profit > 0 AND risks are manageable

Respond with ONLY this JSON structure (no markdown, no code blocks):
{{
  "decision": "EXECUTE" or "SKIP",
  "reason": "one clear sentence explaining why",
  "confidence": 0.0 to 1.0,
  "riskAnalysis": {{
    "gasRisk": "low" or "medium" or "high",
    "slippageRisk": "low" or "medium" or "high",
    "mevRisk": "low" or "medium" or "high",
    "timingRisk": "low" or "medium" or "high",
    "profitMargin": "thin" or "acceptable" or "safe"
  }}
}}"""


def _extract_json_object(text: str) -> str:
    start = text.find('{')
    end = text.rfind('}')
    if start == -1 or end <= start:
        raise MalformedReasoningResponse("no JSON object in reasoning response")
    return text[start:end + 1]


def parse_ai_decision(text: str) -> AIDecision:
    """Validates a raw model reply. Any deviation raises MalformedReasoningResponse."""
    if not isinstance(text, str) or not text.strip():
        raise MalformedReasoningResponse("empty reasoning response")

    try:
        payload = json.loads(_extract_json_object(text))
    except json.JSONDecodeError as e:
        raise MalformedReasoningResponse("reasoning response is not valid JSON", cause=e) from e
    if not isinstance(payload, dict):
        raise MalformedReasoningResponse("reasoning response is not a JSON object")

    decision = payload.get('decision')
    if not isinstance(decision, str) or decision.strip().upper() not in DECISIONS:
        raise MalformedReasoningResponse(f"invalid decision: {decision!r}")
    decision = decision.strip().upper()

    confidence = payload.get('confidence')
    if confidence is None:
        confidence = DEFAULT_AI_CONFIDENCE
    elif isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
        raise MalformedReasoningResponse(f"invalid confidence: {confidence!r}")
    elif not math.isfinite(confidence) or not 0 <= confidence <= 1:
        raise MalformedReasoningResponse(f"confidence out of range: {confidence!r}")

    reason = payload.get('reason')
    if reason is None:
        reason = DEFAULT_AI_REASON
    elif not isinstance(reason, str):
        raise MalformedReasoningResponse(f"invalid reason: {reason!r}")
    reason = reason.strip() or DEFAULT_AI_REASON

    risk_analysis = payload.get('riskAnalysis')
    if risk_analysis is None:
        risk_analysis = {}
    elif not isinstance(risk_analysis, dict):
        raise MalformedReasoningResponse("riskAnalysis must be an object")

    ratings: Dict[str, str] = {}
    for key, attr in _RISK_FIELDS.items():
        value = risk_analysis.get(key)
        if value is None:
            continue
        if not isinstance(value, str) or value.strip().upper() not in RISK_LEVELS:
            raise MalformedReasoningResponse(f"invalid {key}: {value!r}")
        ratings[attr] = value.strip().upper()

    margin = risk_analysis.get('profitMargin')
    if margin is not None:
        if not isinstance(margin, str) or margin.strip().lower() not in PROFIT_MARGINS:
            raise MalformedReasoningResponse(f"invalid profitMargin: {margin!r}")
        ratings['profit_margin'] = margin.strip().lower()

    return AIDecision(decision=decision, reason=reason, confidence=float(confidence), ratings=ratings)


class AIRiskStrategy:
    """Asks the reasoning service once; anything short of a valid reply falls back to the rules."""

    name = SOURCE_AI

    def __init__(
        self,
        client,
        fallback: RuleBasedRiskStrategy,
        timeout: float = AI_DEFAULT_TIMEOUT,
        enforce_profit_floor: bool = True,
    ):
        self.client = client
        self.fallback = fallback
        self.timeout = timeout
        self.enforce_profit_floor = enforce_profit_floor

    async def assess(self, summary: ProfitSummary, context: RiskContext) -> RiskAssessment:
        states: List[str] = [STATE_PENDING, STATE_AI_ATTEMPTED]
        try:
            ai_decision = await self._ask(summary, context)
        except (ReasoningServiceFailure, asyncio.TimeoutError) as e:
            reason = self._describe_failure(e)
            logger.warning("AI risk analysis failed, using rule-based decision: %s", reason)
            states += [STATE_AI_FAILED, STATE_FALLBACK_APPLIED]
            return self.fallback.evaluate(summary, context, states=tuple(states), fallback_reason=reason)
        except Exception as e:
            reason = f"unexpected error: {e.__class__.__name__}: {e}"
            logger.exception("AI risk analysis crashed, using rule-based decision")
            states += [STATE_AI_FAILED, STATE_FALLBACK_APPLIED]
            return self.fallback.evaluate(summary, context, states=tuple(states), fallback_reason=reason)

        states.append(STATE_AI_SUCCEEDED)
        scored = self.fallback.score(summary, context)
        ratings = replace(scored, **ai_decision.ratings)
        assessment = RiskAssessment(
            ratings=ratings,
            decision=ai_decision.decision,
            reason=ai_decision.reason,
            confidence=ai_decision.confidence,
            source=SOURCE_AI,
        )

        floor = profit_floor_violation(summary)
        if self.enforce_profit_floor and floor and assessment.decision != DECISION_SKIP:
            logger.warning(
                "AI returned %s for net profit $%.4f; profit floor overrides it",
                assessment.decision, summary.net_profit_usd,
            )
            states.append(STATE_FALLBACK_APPLIED)
            return self.fallback.evaluate(
                summary, context, states=tuple(states), fallback_reason="AI decision overridden by profit floor",
            )

        logger.info("AI decision %s (confidence %.2f): %s", assessment.decision, assessment.confidence, assessment.reason)
        return replace(assessment, states=tuple(states) + (STATE_DECIDED,))

    async def _ask(self, summary: ProfitSummary, context: RiskContext) -> AIDecision:
        prompt = build_decision_prompt(summary, context, self.fallback.policy)
        text = await asyncio.wait_for(self.client.complete(prompt, system_prompt=SYSTEM_PROMPT), self.timeout)
        return parse_ai_decision(text)

    def _describe_failure(self, error: BaseException) -> str:
        if isinstance(error, asyncio.TimeoutError):
            return f"reasoning service timed out after {self.timeout:g}s"
        return str(error) or error.__class__.__name__


def risk_policy_from_config(config) -> RiskPolicy:
    return DEFAULT_RISK_POLICY._replace(
        min_net_profit_usd=config.min_net_profit,
        safe_net_profit_usd=config.safe_net_profit,
        max_spread_pct=config.max_spread,
        low_liquidity_max_amount=config.low_liquidity_max_amount,
    )


def build_risk_strategy(config, client=None):
    """Picks the classifier once, at startup. AI needs the switch on and a configured client."""
    fallback = RuleBasedRiskStrategy(risk_policy_from_config(config))
    if not config.ai_analysis_enabled:
        logger.info("AI risk analysis disabled; using rule-based decisions")
        return fallback
    if client is None or not getattr(client, 'configured', False):
        logger.info("No reasoning-service credentials; using rule-based decisions")
        return fallback
    return AIRiskStrategy(client, fallback, timeout=config.ai_timeout)
