"""Marketing copy: content voices, platform rules and the copywriter capability."""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Literal

from property_sales.llm import Task
from property_sales.prompts import format_prompt
from property_sales.state import EmailCampaign, PropertySnapshot, SocialPlatform, SocialPost


if TYPE_CHECKING:
    from property_sales.llm import LLMClient


logger = logging.getLogger(__name__)

ContentVoice = Literal["storytelling", "casual", "professional", "community", "behind_scenes"]


@dataclass(frozen=True)
class VoiceTemplate:
    voice: ContentVoice
    description: str
    tone: str
    emoji_usage: Literal["none", "minimal", "moderate"]
    hashtag_count: int
    guidance: str


@dataclass(frozen=True)
class PlatformRules:
    max_length: int
    preferred_voices: tuple[ContentVoice, ...]


CONTENT_VOICES: dict[ContentVoice, VoiceTemplate] = {
    "storytelling": VoiceTemplate(
        voice="storytelling",
        description="Narrative-driven, emotional connection, property history",
        tone="Warm, personal, evocative",
        emoji_usage="minimal",
        hashtag_count=3,
        guidance=(
            "Tell the story of the home and paint a picture of life in it. "
            "Natural, conversational language; no all-caps; end with a simple call to action."
        ),
    ),
    "casual": VoiceTemplate(
        voice="casual",
        description="Friendly, conversational, like talking to a friend",
        tone="Relaxed, approachable, genuine",
        emoji_usage="moderate",
        hashtag_count=4,
        guidance=(
            "Write like texting a friend about a place you just toured. "
            "Be real, not salesy; natural enthusiasm, not forced hype."
        ),
    ),
    "professional": VoiceTemplate(
        voice="professional",
        description="Polished, informative, expertise-focused",
        tone="Authoritative, trustworthy, sophisticated",
        emoji_usage="minimal",
        hashtag_count=5,
        guidance=(
            "Lead with a market or investment angle, use specific data points "
            "and close with a professional call to action."
        ),
    ),
    "community": VoiceTemplate(
        voice="community",
        description="Neighborhood-focused, local guide, lifestyle content",
        tone="Knowledgeable, helpful, community-connected",
        emoji_usage="minimal",
        hashtag_count=4,
        guidance=(
            "Act as a local guide: highlight the neighborhood and lifestyle "
            "so buyers can picture living there."
        ),
    ),
    "behind_scenes": VoiceTemplate(
        voice="behind_scenes",
        description="Authentic agent life, day-in-the-life, relatable",
        tone="Real, unfiltered, human",
        emoji_usage="moderate",
        hashtag_count=3,
        guidance="Share an honest moment from the agent's day and connect it to this home.",
    ),
}

PLATFORM_RULES: dict[SocialPlatform, PlatformRules] = {
    "facebook": PlatformRules(500, ("storytelling", "community", "casual")),
    "instagram": PlatformRules(300, ("casual", "behind_scenes", "storytelling")),
    "linkedin": PlatformRules(600, ("professional",)),
    "twitter": PlatformRules(280, ("casual",)),
}

_HASHTAG = re.compile(r"#\w+")


def select_primary_voice(prop: PropertySnapshot) -> ContentVoice:
    return "professional" if prop.price > 1_000_000 else "community"


def voice_for_platform(primary: ContentVoice, platform: SocialPlatform) -> ContentVoice:
    """Keep the primary voice when the platform favours it, else its first preference."""
    preferred = PLATFORM_RULES[platform].preferred_voices
    return primary if primary in preferred else preferred[0]


def _fmt(value: object) -> str:
    return str(value) if value is not None else "N/A"


def property_summary(prop: PropertySnapshot) -> str:
    return (
        f"{_fmt(prop.bedrooms)} bed / {_fmt(prop.bathrooms)} bath {prop.property_type} "
        f"in {prop.address.city}, {prop.address.state}, "
        f"{_fmt(prop.square_feet)} sq ft, ${prop.price:,.0f}"
    )


def template_post(
    prop: PropertySnapshot, platform: SocialPlatform, voice: ContentVoice
) -> SocialPost:
    """Deterministic post used when generation is unavailable."""
    template = CONTENT_VOICES[voice]
    city_tag = "#" + re.sub(r"\W", "", prop.address.city)
    hashtags = [city_tag, "#RealEstate", "#HomeForSale", "#NewListing", "#JustListed"]
    hashtags = hashtags[: template.hashtag_count]
    body = f"{prop.title}: {property_summary(prop)}. Message me to schedule a private tour."
    content = f"{body} {' '.join(hashtags)}"[: PLATFORM_RULES[platform].max_length]
    return SocialPost(
        platform=platform,
        content=content,
        hashtags=hashtags,
        image_url=prop.images[0] if prop.images else None,
    )


def listing_description(prop: PropertySnapshot, description: str | None) -> str:
    a = prop.address
    return (
        f"{prop.title} - {a.city}, {a.state}\n\n"
        f"Premium {prop.property_type} featuring {_fmt(prop.bedrooms)} bedrooms and "
        f"{_fmt(prop.bathrooms)} bathrooms across {_fmt(prop.square_feet)} square feet.\n\n"
        f"{description or 'Beautiful property available for viewing.'}\n\n"
        "Property Details:\n"
        f"- Type: {prop.property_type}\n"
        f"- Bedrooms: {_fmt(prop.bedrooms)}\n"
        f"- Bathrooms: {_fmt(prop.bathrooms)}\n"
        f"- Square Footage: {_fmt(prop.square_feet)}\n"
        f"- Price: ${prop.price:,.0f}\n"
        f"- Location: {a.one_line()}\n\n"
        "Schedule a showing today."
    )


def seo_keywords(prop: PropertySnapshot) -> list[str]:
    a = prop.address
    return [
        f"{prop.property_type} {a.city}",
        f"{_fmt(prop.bedrooms)} bedroom home {a.state}",
        f"{a.city} real estate",
        f"homes for sale {a.zip_code}",
        f"{a.city} {prop.property_type}",
    ]


def email_campaign(prop: PropertySnapshot, description: str | None) -> EmailCampaign:
    a = prop.address
    return EmailCampaign(
        subject=(
            f"{a.city} Property: {_fmt(prop.bedrooms)} bed, "
            f"{_fmt(prop.bathrooms)} bath {prop.property_type}"
        ),
        body=(
            f"{description or 'Beautiful property available for viewing.'}\n\n"
            f"This {prop.property_type} is located in {a.city}, {a.state} and offers "
            f"{_fmt(prop.bedrooms)} bedrooms, {_fmt(prop.bathrooms)} bathrooms, and "
            f"{_fmt(prop.square_feet)} square feet of living space.\n\n"
            f"Priced at ${prop.price:,.0f}.\n\n"
            "I'd love to show you this property. Reply to this email or call me "
            "to schedule a private tour."
        ),
        target_audience=(
            f"Buyers interested in {prop.property_type} in {a.city}, budget "
            f"${round(prop.price * 0.9):,} - ${round(prop.price * 1.1):,}"
        ),
    )


class Copywriter(ABC):
    @abstractmethod
    async def write_post(
        self,
        prop: PropertySnapshot,
        platform: SocialPlatform,
        voice: ContentVoice,
        description: str | None,
    ) -> tuple[SocialPost, bool]:
        """Return the post and whether it came from the template fallback."""


class TemplateCopywriter(Copywriter):
    async def write_post(
        self,
        prop: PropertySnapshot,
        platform: SocialPlatform,
        voice: ContentVoice,
        description: str | None,
    ) -> tuple[SocialPost, bool]:
        return template_post(prop, platform, voice), True


class LLMCopywriter(Copywriter):
    """Generates posts with the capable model, falling back to templates."""

    def __init__(self, llm: "LLMClient") -> None:
        self._llm = llm

    async def write_post(
        self,
        prop: PropertySnapshot,
        platform: SocialPlatform,
        voice: ContentVoice,
        description: str | None,
    ) -> tuple[SocialPost, bool]:
        template = CONTENT_VOICES[voice]
        rules = PLATFORM_RULES[platform]
        user_prompt = format_prompt(
            "social_post",
            "user",
            platform=platform,
            voice=voice,
            tone=template.tone,
            guidance=template.guidance,
            emoji_usage=template.emoji_usage,
            hashtag_count=template.hashtag_count,
            max_length=rules.max_length,
            title=prop.title,
            summary=property_summary(prop),
            description=description or "Beautiful property available for viewing",
        )
        try:
            content = await self._llm.generate(
                Task.SOCIAL_POST,
                format_prompt("social_post", "system"),
                user_prompt,
                property_id=prop.id,
                stage="marketing",
            )
        except Exception as e:
            logger.warning("Post generation failed for %s, using template: %s", platform, e)
            return template_post(prop, platform, voice), True

        content = content.strip()
        if not content:
            return template_post(prop, platform, voice), True

        post = SocialPost(
            platform=platform,
            content=content[: rules.max_length],
            hashtags=_HASHTAG.findall(content),
            image_url=prop.images[0] if prop.images else None,
        )
        return post, False
