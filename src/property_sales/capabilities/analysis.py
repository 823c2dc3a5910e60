"""Deterministic decision functions for listing, market, lead and offer analysis.

These are pure functions over structured input. Agents call them directly;
nothing here performs I/O.
"""

from typing import Literal

from pydantic import BaseModel, Field

from property_sales.state import Address, PropertySnapshot


MarketTrend = Literal["hot", "stable", "cooling"]
LeadTier = Literal["hot", "qualified", "needs_nurturing", "cold"]
OfferRecommendation = Literal["accept", "counter_offer", "reject"]


class PropertyAnalysis(BaseModel):
    completeness_score: int = Field(ge=0, le=100)
    quality_score: int = Field(ge=0, le=100)
    missing_fields: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    ready_to_publish: bool


class Comparable(BaseModel):
    address: str
    price: float
    square_feet: int
    days_on_market: int


class MarketData(BaseModel):
    location: str
    property_type: str
    comparables: list[Comparable]
    average_price: float
    price_per_sqft: float
    average_days_on_market: int
    trend: MarketTrend


class LeadQualification(BaseModel):
    score: int = Field(ge=0, le=100)
    tier: LeadTier
    factors: list[str] = Field(default_factory=list)
    recommendation: str
    next_steps: list[str] = Field(default_factory=list)


class OfferAnalysis(BaseModel):
    percentage: float
    recommendation: OfferRecommendation
    suggested_counter: float | None = None
    factors: list[str] = Field(default_factory=list)
    reasoning: str
    strength: Literal["strong", "moderate", "weak"]
    risk_level: Literal["high", "medium", "low"]


def analyze_property(prop: PropertySnapshot) -> PropertyAnalysis:
    """Score a listing's completeness and presentation quality."""
    completeness = 0
    missing: list[str] = []
    suggestions: list[str] = []

    if prop.title and len(prop.title) > 10:
        completeness += 15
    else:
        missing.append("title")

    if prop.description and len(prop.description) > 50:
        completeness += 20
    else:
        missing.append("description")
        suggestions.append("Add a detailed description (at least 100 words)")

    if prop.price > 0:
        completeness += 15
    else:
        missing.append("price")

    if len(prop.images) >= 5:
        completeness += 25
    else:
        suggestions.append(f"Add more images (current: {len(prop.images)}, recommended: 10+)")

    if prop.videos:
        completeness += 15
    else:
        suggestions.append("Add a video tour to increase engagement")

    # Address and property type are always present on a snapshot
    completeness += 10

    quality = completeness
    if prop.square_feet:
        quality += 5
    if prop.bedrooms and prop.bathrooms:
        quality += 5

    completeness = min(completeness, 100)
    return PropertyAnalysis(
        completeness_score=completeness,
        quality_score=min(quality, 100),
        missing_fields=missing,
        suggestions=suggestions,
        ready_to_publish=completeness >= 85,
    )


def fetch_market_data(
    address: Address,
    property_type: str,
    *,
    square_feet: int | None = None,
    price_range: tuple[float, float] | None = None,
    default_price: float = 350_000.0,
) -> MarketData:
    """Comparable sales around the requested price band."""
    base_price = (price_range[0] + price_range[1]) / 2 if price_range else default_price
    location = f"{address.city}, {address.state}"
    sqft = square_feet or 2000

    comparables = [
        Comparable(address=location, price=base_price * 0.95, square_feet=sqft, days_on_market=28),
        Comparable(
            address=location,
            price=base_price * 1.05,
            square_feet=round(sqft * 1.1),
            days_on_market=35,
        ),
        Comparable(address=location, price=base_price, square_feet=sqft, days_on_market=21),
    ]

    average_price = sum(c.price for c in comparables) / len(comparables)
    average_days = sum(c.days_on_market for c in comparables) / len(comparables)

    trend: MarketTrend = "stable"
    if average_days < 30:
        trend = "hot"
    elif average_days > 60:
        trend = "cooling"

    return MarketData(
        location=location,
        property_type=property_type,
        comparables=comparables,
        average_price=round(average_price),
        price_per_sqft=round(base_price / square_feet) if square_feet else 175,
        average_days_on_market=round(average_days),
        trend=trend,
    )


def qualify_lead(
    *,
    property_price: float,
    email: str | None = None,
    phone: str | None = None,
    message: str | None = None,
    budget: float | None = None,
    timeline: str | None = None,
    pre_approved: bool = False,
) -> LeadQualification:
    """Score a buyer inquiry against the listing price."""
    score = 30
    factors: list[str] = []

    if phone:
        score += 15
        factors.append("Has phone number")
    if email:
        score += 5
        factors.append("Has email")

    if budget:
        if budget >= property_price:
            score += 30
            factors.append("Budget exceeds asking price")
        elif budget >= property_price * 0.9:
            score += 25
            factors.append("Budget within 10% of asking price")
        elif budget >= property_price * 0.75:
            score += 15
            factors.append("Budget within 25% of asking price")
        else:
            factors.append("Budget significantly below asking price")

    if pre_approved:
        score += 20
        factors.append("Has mortgage pre-approval")

    if timeline:
        lowered = timeline.lower()
        if "immediate" in lowered or "asap" in lowered:
            score += 15
            factors.append("Immediate timeline")
        elif "month" in lowered or "weeks" in lowered:
            score += 10
            factors.append("Near-term timeline")
        else:
            score += 5
            factors.append("Flexible timeline")

    if message:
        if len(message) > 100:
            score += 15
            factors.append("Detailed inquiry")
        elif len(message) > 50:
            score += 10
            factors.append("Good engagement")
        else:
            score += 5
            factors.append("Basic inquiry")

    score = min(score, 100)
    tier: LeadTier
    if score >= 85:
        tier = "hot"
        recommendation = "HIGH PRIORITY: Schedule visit immediately. This lead is highly qualified."
    elif score >= 70:
        tier = "qualified"
        recommendation = "Schedule visit within 24 hours. Strong potential buyer."
    elif score >= 50:
        tier = "needs_nurturing"
        recommendation = "Send detailed property information and follow up in 2-3 days."
    else:
        tier = "cold"
        recommendation = "Add to nurture campaign. Low priority for immediate follow-up."

    if tier in ("hot", "qualified"):
        next_steps = ["Call lead immediately", "Schedule property visit", "Send property details"]
    else:
        next_steps = ["Send automated follow-up", "Add to nurture sequence", "Monitor engagement"]

    return LeadQualification(
        score=score,
        tier=tier,
        factors=factors,
        recommendation=recommendation,
        next_steps=next_steps,
    )


def analyze_offer(
    *,
    offer_amount: float,
    asking_price: float,
    conditions: list[str],
    earnest_money: float | None = None,
    market_trend: MarketTrend | None = None,
    days_on_market: int | None = None,
) -> OfferAnalysis:
    """Recommend accept, counter or reject for a purchase offer."""
    percentage = offer_amount / asking_price * 100
    factors: list[str] = []
    recommendation: OfferRecommendation

    if percentage >= 98:
        recommendation = "accept"
        factors.append("Offer is at or above asking price")
    elif percentage >= 95:
        recommendation = "accept"
        factors.append("Offer is within 5% of asking price")
    elif percentage >= 90:
        recommendation = "counter_offer"
        factors.append("Offer is within 10% of asking price")
    elif percentage >= 85:
        recommendation = "counter_offer"
        factors.append("Offer is 10-15% below asking price")
    else:
        recommendation = "reject"
        factors.append("Offer is significantly below asking price")

    if market_trend == "hot" and percentage < 95:
        recommendation = "reject"
        factors.append("Hot market - can get better offers")
    elif market_trend == "cooling" and percentage >= 90:
        if recommendation == "counter_offer":
            recommendation = "accept"
        factors.append("Cooling market - good offer to consider")

    if days_on_market is not None and days_on_market > 60 and percentage >= 90:
        recommendation = "accept"
        factors.append("Property has been on market long - strong offer")

    lowered = [c.lower() for c in conditions]
    if any("inspection" in c for c in lowered):
        factors.append("Inspection contingency included")
    if any("financing" in c for c in lowered):
        factors.append("Financing contingency included")
    if len(conditions) > 3:
        factors.append("Multiple contingencies - may slow closing")

    if earnest_money and earnest_money >= asking_price * 0.02:
        factors.append("Strong earnest money deposit - serious buyer")

    suggested_counter = None
    if recommendation == "counter_offer":
        suggested_counter = round(asking_price * (0.97 if percentage >= 90 else 0.94), 2)

    summary = ". ".join(factors)
    if recommendation == "accept":
        reasoning = f"Offer at {percentage:.1f}% of asking price is strong. {summary}."
    elif recommendation == "counter_offer":
        reasoning = (
            f"Offer at {percentage:.1f}% is reasonable but leaves room for negotiation. "
            f"Suggest counter-offer at ${suggested_counter:,.0f}. {summary}."
        )
    else:
        reasoning = (
            f"Offer at {percentage:.1f}% is too low. {summary}. Wait for better offers or reject."
        )

    if percentage >= 95:
        strength = "strong"
    elif percentage >= 90:
        strength = "moderate"
    else:
        strength = "weak"

    if len(conditions) > 3:
        risk = "high"
    elif len(conditions) > 1:
        risk = "medium"
    else:
        risk = "low"

    return OfferAnalysis(
        percentage=round(percentage, 2),
        recommendation=recommendation,
        suggested_counter=suggested_counter,
        factors=factors,
        reasoning=reasoning,
        strength=strength,
        risk_level=risk,
    )
