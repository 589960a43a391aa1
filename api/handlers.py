# api/handlers.py
"""HTTP surface: `POST /estimate` and `GET /health`."""
import json
import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from analysis.errors import EstimationError, InvalidInput
from analysis.models import EstimationResult, ProfitSummary, TradeRequest
from constants import DESTINATION_CHAIN, ORIGIN_CHAIN, WEI_PER_GWEI

logger = logging.getLogger(__name__)


def _error(status: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status, content={"success": False, "error": message})


def _gas_breakdown(summary: ProfitSummary) -> Dict[str, Any]:
    gas = summary.breakdown.gas
    return {
        "legs": [
            {
                "chain": leg.chain,
                "gasUnits": leg.gas_units,
                "gasPriceWei": str(leg.gas_price_wei),
                "gasPriceGwei": leg.gas_price_wei / WEI_PER_GWEI,
                "costWei": str(leg.cost_wei),
                "costEth": leg.cost_native,
                "costUsd": leg.cost_usd,
            }
            for leg in gas.legs
        ],
        "totalGasCostWei": str(gas.cost_wei),
        "totalGasCostEth": gas.native,
        "totalGasCostUsd": gas.usd,
    }


def _slippage_breakdown(summary: ProfitSummary) -> Dict[str, Any]:
    slippage = summary.breakdown.slippage
    return {
        "bridge": {"percent": slippage.bridge_pct, "eth": slippage.bridge_native, "usd": slippage.bridge_usd},
        "amm": {
            "percent": slippage.amm_pct,
            "eth": slippage.amm_native,
            "usd": slippage.amm_usd,
            "spotPrice": slippage.spot_price,
            "executionPrice": slippage.execution_price,
        },
        "total": {"percent": slippage.total_pct, "eth": slippage.native, "usd": slippage.usd},
    }


def _bridging_breakdown(summary: ProfitSummary) -> Dict[str, Any]:
    bridging = summary.breakdown.bridging

    def component(c):
        return {"percent": c.pct, "eth": c.native, "usd": c.usd}

    return {
        "protocol": bridging.protocol,
        "bridge": f"{ORIGIN_CHAIN} -> {DESTINATION_CHAIN}",
        "lpFee": component(bridging.lp_fee),
        "relayerGasFee": component(bridging.relayer_gas_fee),
        "relayerCapitalFee": component(bridging.relayer_capital_fee),
        "totalFeePercent": bridging.total_pct,
        "totalFeesEth": bridging.native,
        "totalFeesUsd": bridging.usd,
        "estimatedTimeSeconds": bridging.estimated_time_seconds,
    }


def _mev_breakdown(summary: ProfitSummary) -> Dict[str, Any]:
    mev = summary.breakdown.mev
    return {
        "priorityFeeGwei": mev.priority_fee_gwei,
        "gasUnits": mev.gas_units,
        "priorityFeeEth": mev.priority_fee_native,
        "builderTipEth": mev.builder_tip_native,
        "totalMevCostEth": mev.native,
        "totalMevCostUsd": mev.usd,
        "exposureLevel": mev.exposure_level,
    }


def build_simulation_payload(result: EstimationResult) -> Dict[str, Any]:
    """Flattens a summary and its assessment into the wire shape clients expect."""
    summary = result.summary
    assessment = result.assessment
    request = summary.request
    breakdown = summary.breakdown
    ratings = assessment.ratings
    amount = request.amount_native

    return {
        "amountInEth": amount,
        "buyPrice": request.buy_price,
        "sellPrice": request.sell_price,
        "feeTier": request.fee_tier,
        "spreadPercent": summary.spread_pct,
        "actionableSpread": summary.actionable_spread,
        "ethPriceUsd": summary.native_price_usd,

        "gasCostUsd": breakdown.gas.usd,
        "slippageUsd": breakdown.slippage.usd,
        "swapFeesUsd": breakdown.swap_fee.usd,
        "mevCostUsd": breakdown.mev.usd,
        "feesUsd": breakdown.fees_usd,
        "bridgingFeesUsd": breakdown.bridging.usd,
        "totalCostsUsd": summary.total_costs_usd,

        "grossProfitUsd": summary.gross_profit_usd,
        "netProfitUsd": summary.net_profit_usd,
        "profitMarginPct": summary.profit_margin_pct,
        "roiPct": summary.roi_pct,

        "shouldExecute": summary.should_execute,
        "recommendation": summary.recommendation,

        "decision": assessment.decision,
        "reason": assessment.reason,
        "confidence": assessment.confidence,
        "decisionSource": assessment.source,
        "fallbackReason": assessment.fallback_reason,
        "riskAnalysis": {
            "gasRisk": ratings.gas_risk,
            "slippageRisk": ratings.slippage_risk,
            "mevRisk": ratings.mev_risk,
            "timingRisk": ratings.timing_risk,
            "profitMargin": ratings.profit_margin,
        },

        "slippageBreakdown": _slippage_breakdown(summary),
        "gasBreakdown": _gas_breakdown(summary),
        "bridgingBreakdown": _bridging_breakdown(summary),
        "mevBreakdown": _mev_breakdown(summary),

        "liquidityDepth": (request.liquidity_depth or breakdown.slippage.liquidity_depth).upper(),
        "tradeSizeUsd": summary.trade_value_usd,

        "breakdown": {
            "step1": f"Buy on Base at ${request.buy_price:.2f} per ETH",
            "step2": f"Bridge {request.amount} ETH from Base to Arbitrum (fees: ${breakdown.bridging.usd:.2f})",
            "step3": f"Sell on Arbitrum at ${request.sell_price:.2f} per ETH",
            "step4": f"Net profit after all costs: ${summary.net_profit_usd:.2f}",
        },
    }


def create_app(orchestrator=None, *, ai_enabled: bool = False, live_data: bool = False, lifespan=None) -> FastAPI:
    """Builds the app. The orchestrator can be given here or set on `app.state` by `lifespan`."""
    app = FastAPI(title="Cross-Chain Arbitrage Estimator", version="1.0.0", lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.state.ai_enabled = ai_enabled
    app.state.live_data = live_data

    @app.get("/health")
    async def health(request: Request):
        state = request.app.state
        return {"status": "ok", "aiEnabled": state.ai_enabled, "liveData": state.live_data}

    @app.post("/estimate")
    async def estimate(request: Request):
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return _error(400, "Invalid JSON body")
        if not isinstance(body, dict):
            return _error(400, "Invalid JSON body: expected an object")

        try:
            trade = TradeRequest.from_inputs(
                body.get("amount"),
                body.get("buyPrice"),
                body.get("sellPrice"),
                fee_tier=body.get("feeTier"),
                liquidity_depth=body.get("liquidityDepth"),
            )
        except InvalidInput as e:
            return _error(400, e.message)

        decider = request.app.state.orchestrator
        try:
            result = await decider.decide(trade)
        except InvalidInput as e:
            return _error(400, e.message)
        except EstimationError as e:
            logger.warning("Estimate failed: %s", e)
            return _error(500, str(e))
        except Exception:
            logger.exception("Simulation API error")
            return _error(500, "Failed to run simulation")

        return {"success": True, "simulation": build_simulation_payload(result)}

    return app