#!/usr/bin/env python3
import logging

from analysis.models import EstimationResult, ProfitSummary, RiskContext, TradeRequest
from analysis.profit_aggregator import ProfitAggregator
from constants import CHAIN_CONFIG, DESTINATION_CHAIN

logger = logging.getLogger(__name__)


class DecisionOrchestrator:
    """Runs estimate -> context -> classify for one request.

    An aggregator failure propagates untouched: a partial summary is never
    classified. Classifier failures are absorbed inside the strategy.
    """

    def __init__(self, aggregator: ProfitAggregator, risk_strategy, chain: str = DESTINATION_CHAIN):
        self.aggregator = aggregator
        self.risk_strategy = risk_strategy
        self.chain = chain

    async def decide(self, request: TradeRequest) -> EstimationResult:
        summary = await self.aggregator.estimate(request)
        context = self.build_context(summary)
        assessment = await self.risk_strategy.assess(summary, context)
        logger.info(
            "Decision %s via %s (confidence %.2f): %s",
            assessment.decision, assessment.source, assessment.confidence, assessment.reason,
        )
        return EstimationResult(summary=summary, assessment=assessment)

    def build_context(self, summary: ProfitSummary) -> RiskContext:
        request = summary.request
        # An explicit depth in the request wins over the pool classification.
        depth = request.liquidity_depth or summary.breakdown.slippage.liquidity_depth
        return RiskContext(
            liquidity_depth=depth,
            amount_native=request.amount_native,
            chain=self.chain,
            block_time_seconds=float(CHAIN_CONFIG[self.chain]['blockTimeSeconds']),
        )
