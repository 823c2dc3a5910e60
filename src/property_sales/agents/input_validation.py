"""Input validation agent - checks listing completeness and pricing."""

import logging

from opentelemetry import trace

from property_sales.agents.base import AgentContext, ToolLog, agent_output, broker_reply
from property_sales.capabilities.analysis import (
    MarketData,
    PropertyAnalysis,
    analyze_property,
    fetch_market_data,
)
from property_sales.routing import Directive, InputDecision, Node, Redirect, Update
from property_sales.state import (
    InputValidationResult,
    PropertySnapshot,
    WorkflowStage,
    WorkflowState,
)


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

_TREND_NOTES = {
    "hot": "High demand area!",
    "cooling": "Great opportunity!",
    "stable": "Stable market.",
}


def enhance_description(prop: PropertySnapshot, market: MarketData) -> str:
    details = (
        f"This {prop.property_type} features {prop.bedrooms or 'N/A'} bedrooms and "
        f"{prop.bathrooms or 'N/A'} bathrooms across {prop.square_feet or 'N/A'} sq ft. "
        f"Located in {prop.address.city}, {prop.address.state}. {_TREND_NOTES[market.trend]}"
    )
    return f"{prop.description}\n\n{details}" if prop.description else details


def _review_context(analysis: PropertyAnalysis, threshold: int) -> str:
    suggestions = ", ".join(analysis.suggestions) or "none"
    return (
        f"Property validation completed with quality score {analysis.quality_score}/100 "
        f"(threshold: {threshold}). Suggestions: {suggestions}"
    )


async def input_validation_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    """Score the listing, compare its price to the market and gate marketing."""
    with tracer.start_as_current_span("agent.input_validation") as span:
        settings = ctx.settings
        prop = state.property
        span.set_attribute("property.id", prop.id)
        tools = ToolLog()

        analysis = analyze_property(prop)
        tools.record("analyze_property", completeness=analysis.completeness_score)

        market = fetch_market_data(
            prop.address,
            prop.property_type,
            square_feet=prop.square_feet,
            price_range=(prop.price * 0.8, prop.price * 1.2),
            default_price=settings.default_market_price,
        )
        tools.record("fetch_market_data", average_price=market.average_price, trend=market.trend)

        suggested_price: float | None = None
        deviation = abs(prop.price - market.average_price) / market.average_price
        if deviation > settings.price_deviation_tolerance:
            suggested_price = float(round(market.average_price))
            logger.info(
                "Price adjustment recommended for %s: %.0f -> %.0f (%.1f%% off market)",
                prop.id,
                prop.price,
                suggested_price,
                deviation * 100,
            )

        validation_passed = analysis.completeness_score >= settings.completeness_threshold
        quality_passed = analysis.quality_score >= settings.quality_threshold and validation_passed

        ready = quality_passed
        human_override = False
        reply = broker_reply(state)
        if reply:
            interpretation = await ctx.interpreter.interpret(
                "input_validation",
                reply,
                list(InputDecision),
                _review_context(analysis, settings.quality_threshold),
                fallback=InputDecision.STAY,
            )
            human_override = interpretation.decision == InputDecision.PROCEED
            ready = human_override or quality_passed

        span.set_attribute("quality_score", analysis.quality_score)
        span.set_attribute("ready_for_marketing", ready)
        logger.info(
            "Input validation for %s: quality %d, completeness %d, ready %s",
            prop.id,
            analysis.quality_score,
            analysis.completeness_score,
            ready,
        )

        result = InputValidationResult(
            completeness_score=analysis.completeness_score,
            quality_score=analysis.quality_score,
            validation_passed=validation_passed,
            quality_check_passed=quality_passed,
            missing_fields=analysis.missing_fields,
            suggestions=analysis.suggestions,
            market_average_price=market.average_price,
            suggested_price=suggested_price,
            human_override=human_override,
        )
        enhanced = prop.model_copy(
            update={
                "ai_enhanced_description": enhance_description(prop, market),
                "ai_suggested_price": suggested_price,
            }
        )

        if ready:
            return Update(
                {
                    "stage": WorkflowStage.MARKETING,
                    "property": enhanced,
                    "agent_outputs": agent_output(
                        Node.INPUT_VALIDATION,
                        result,
                        "Proceed to Marketing Agent",
                        ctx,
                        tools=tools,
                    ),
                }
            )

        missing = (
            ", ".join(analysis.missing_fields + analysis.suggestions) or "quality below threshold"
        )
        return Redirect(
            {
                "stage": WorkflowStage.INPUT_VALIDATION,
                "property": enhanced,
                "agent_outputs": agent_output(
                    Node.INPUT_VALIDATION,
                    result,
                    f"Fix missing fields and re-validate: {missing}",
                    ctx,
                    tools=tools,
                ),
            },
            goto=Node.HUMAN,
        )
