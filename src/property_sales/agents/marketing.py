"""Marketing agent - produces listing copy, social posts and an email campaign."""

import logging

from opentelemetry import trace

from property_sales.agents.base import AgentContext, ToolLog, agent_output
from property_sales.capabilities.content import (
    PLATFORM_RULES,
    email_campaign,
    listing_description,
    select_primary_voice,
    seo_keywords,
    voice_for_platform,
)
from property_sales.routing import Directive, Node, Update
from property_sales.state import MarketingContent, MarketingResult, WorkflowStage, WorkflowState


logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def marketing_agent(state: WorkflowState, ctx: AgentContext) -> Directive:
    with tracer.start_as_current_span("agent.marketing") as span:
        prop = state.property
        description = prop.ai_enhanced_description or prop.description
        primary = select_primary_voice(prop)
        span.set_attribute("marketing.primary_voice", primary)
        tools = ToolLog()

        posts = []
        fallbacks = 0
        for platform in PLATFORM_RULES:
            voice = voice_for_platform(primary, platform)
            post, from_template = await ctx.copywriter.write_post(
                prop, platform, voice, description
            )
            posts.append(post)
            fallbacks += int(from_template)
            tools.record("write_post", platform=platform, voice=voice, template=from_template)

        campaign = email_campaign(prop, description)
        keywords = seo_keywords(prop)
        content = MarketingContent(
            social_posts=posts,
            listing_description=listing_description(prop, description),
            seo_keywords=keywords,
            email_campaign=campaign,
        )

        span.set_attribute("marketing.posts", len(posts))
        span.set_attribute("marketing.template_fallbacks", fallbacks)
        logger.info(
            "Marketing content for %s: voice %s, %d posts (%d from templates)",
            prop.id,
            primary,
            len(posts),
            fallbacks,
        )

        result = MarketingResult(
            primary_voice=primary,
            platforms=[p.platform for p in posts],
            seo_keywords=keywords,
            email_subject=campaign.subject,
            fallback_posts=fallbacks,
        )
        return Update(
            {
                "stage": WorkflowStage.LEAD_MANAGEMENT,
                "marketing_content": content,
                "agent_outputs": agent_output(
                    Node.MARKETING,
                    result,
                    "Content ready for distribution. Proceed to Lead Management.",
                    ctx,
                    tools=tools,
                ),
            }
        )
