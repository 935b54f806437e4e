# ============================================================================
# AUDIENCE CATALOG
# ============================================================================
# STATUS: Service - static sub-task catalog
# PURPOSE: Predefined audience segments evaluated by the batch step
# EXPORTS: AudienceDefinition, TimeWindow, AUDIENCE_CATALOG, get_audience,
#          validate_audience_ids, collect_categories
# DEPENDENCIES: pydantic
# ============================================================================

"""
Audience Catalog.

Each audience maps a marketing segment to a set of POI categories, with
optional filters on the visit hour, dwell time and visit frequency. A
pipeline run evaluates an ordered list of audience ids against ONE shared
spatial join: the union of every audience's categories.
"""

from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, model_validator

from exceptions import ValidationError


class TimeWindow(BaseModel):
    """Visit-hour window. hour_from > hour_to wraps past midnight (18 -> 6)."""
    hour_from: int = Field(..., ge=0, le=23)
    hour_to: int = Field(..., ge=0, le=24)

    def contains(self, hour: int) -> bool:
        if self.hour_from <= self.hour_to:
            return self.hour_from <= hour < self.hour_to
        return hour >= self.hour_from or hour < self.hour_to


class AudienceDefinition(BaseModel):
    id: str = Field(..., pattern=r"^[a-z0-9_]+$")
    name: str
    description: str = ""
    group: str
    categories: List[str] = Field(..., min_length=1)
    time_window: Optional[TimeWindow] = None
    min_dwell_minutes: Optional[float] = Field(default=None, ge=0)
    max_dwell_minutes: Optional[float] = Field(default=None, ge=0)
    min_frequency: int = Field(default=1, ge=1, description="Qualifying visits required per device")

    @model_validator(mode="after")
    def _check_dwell_bounds(self):
        if (self.min_dwell_minutes is not None and self.max_dwell_minutes is not None
                and self.min_dwell_minutes > self.max_dwell_minutes):
            raise ValueError(f"{self.id}: min_dwell_minutes exceeds max_dwell_minutes")
        return self


AUDIENCE_GROUP_LABELS: Dict[str, str] = {
    "entertainment": "Entertainment",
    "fitness": "Health & Fitness",
    "education": "Education",
    "food": "Food & Beverage",
    "transport": "Transport",
    "automotive": "Automotive",
    "retail": "Retail & Luxury",
    "wellness": "Wellness",
    "families": "Families & Pets",
    "culture": "Culture & Tourism",
    "corporate": "Corporate",
}


AUDIENCE_CATALOG: List[AudienceDefinition] = [
    # Entertainment
    AudienceDefinition(
        id="moviegoers", name="Moviegoers", group="entertainment",
        description="Cinema, drive-in and film festival visitors",
        categories=["cinema", "drive_in_theater", "outdoor_movies", "film_festival"],
    ),
    AudienceDefinition(
        id="sports_event_attendees", name="Sports Event Attendees", group="entertainment",
        description="Stadium, arena and sports venue visitors",
        categories=["stadium_arena", "sports_and_recreation_venue"],
    ),
    AudienceDefinition(
        id="nightlife", name="Nightlife", group="entertainment",
        description="Bars, clubs, pubs, karaoke, comedy clubs, casinos",
        categories=["bar", "pub", "dance_club", "comedy_club", "karaoke", "casino"],
        time_window=TimeWindow(hour_from=18, hour_to=6),
    ),
    AudienceDefinition(
        id="live_music_fans", name="Live Music Fans", group="entertainment",
        description="Music venues and theatre attendees",
        categories=["music_venue", "theatre"],
    ),
    # Health & Fitness
    AudienceDefinition(
        id="gym_visitors", name="Gym & Fitness", group="fitness",
        description="Gym, yoga, pilates, martial arts and climbing visitors",
        categories=["gym", "yoga_studio", "pilates_studio", "martial_arts_club", "rock_climbing_gym"],
        min_dwell_minutes=15,
    ),
    AudienceDefinition(
        id="golfers", name="Golfers", group="fitness",
        categories=["golf_course"], min_dwell_minutes=30,
    ),
    AudienceDefinition(
        id="swimmers", name="Swimmers", group="fitness",
        categories=["swimming_pool"], min_dwell_minutes=15,
    ),
    # Education
    AudienceDefinition(
        id="students", name="Students", group="education",
        description="School, university and college visitors",
        categories=["school", "university", "college"], min_dwell_minutes=30,
    ),
    # Food & Beverage
    AudienceDefinition(
        id="fast_food_visitors", name="Fast Food Visitors", group="food",
        categories=["fast_food_restaurant"],
    ),
    AudienceDefinition(
        id="fine_diners", name="Fine Diners", group="food",
        description="Fine dining, wine bars, cocktail bars",
        categories=["fine_dining", "wine_bar", "cocktail_bar", "champagne_bar"],
        min_dwell_minutes=45,
    ),
    AudienceDefinition(
        id="coffee_lovers", name="Coffee Lovers", group="food",
        description="Coffee shop and cafe regulars",
        categories=["coffee_shop", "cafe"], min_frequency=3,
    ),
    # Transport
    AudienceDefinition(
        id="metro_users", name="Metro / Subway Users", group="transport",
        categories=["subway_station", "metro_station"],
    ),
    AudienceDefinition(
        id="train_commuters", name="Train Commuters", group="transport",
        categories=["train_station"],
    ),
    AudienceDefinition(
        id="air_travelers", name="Air Travelers", group="transport",
        categories=["airport"], min_dwell_minutes=30,
    ),
    # Automotive
    AudienceDefinition(
        id="car_shoppers", name="Car Shoppers", group="automotive",
        categories=["car_dealer", "used_car_dealer"],
    ),
    AudienceDefinition(
        id="ev_adopters", name="EV Adopters", group="automotive",
        categories=["ev_charging_station"],
    ),
    # Retail & Luxury
    AudienceDefinition(
        id="luxury_shoppers", name="Luxury Shoppers", group="retail",
        categories=["jewelry_store", "watch_store", "designer_clothing", "antique_store"],
    ),
    AudienceDefinition(
        id="supermarket_shoppers", name="Supermarket Shoppers", group="retail",
        categories=["supermarket", "convenience_store"],
    ),
    # Wellness
    AudienceDefinition(
        id="spa_wellness", name="Spa & Wellness", group="wellness",
        categories=["spa", "massage", "medical_spa", "day_spa", "health_spa"],
    ),
    # Families & Pets
    AudienceDefinition(
        id="pet_owners", name="Pet Owners", group="families",
        categories=["pet_store", "pet_grooming", "pet_boarding", "dog_park"],
    ),
    AudienceDefinition(
        id="family_entertainment", name="Family Entertainment", group="families",
        categories=["zoo", "aquarium", "amusement_park", "botanical_garden"],
    ),
    # Culture & Tourism
    AudienceDefinition(
        id="museum_goers", name="Museum & Culture", group="culture",
        categories=["museum", "landmark_and_historical_building", "castle", "monument"],
    ),
    # Corporate
    AudienceDefinition(
        id="coworkers", name="Coworking Users", group="corporate",
        categories=["coworking_space"], min_dwell_minutes=60,
    ),
]

_BY_ID: Dict[str, AudienceDefinition] = {a.id: a for a in AUDIENCE_CATALOG}


def get_audience(audience_id: str) -> Optional[AudienceDefinition]:
    return _BY_ID.get(audience_id)


def validate_audience_ids(audience_ids: Iterable[str]) -> List[str]:
    """
    Check a requested audience list.

    Returns:
        The ids in request order with duplicates removed

    Raises:
        ValidationError: Empty list or unknown ids
    """
    ordered: List[str] = []
    for audience_id in audience_ids:
        if audience_id not in ordered:
            ordered.append(audience_id)
    if not ordered:
        raise ValidationError("audience_ids must contain at least one audience")

    unknown = [a for a in ordered if a not in _BY_ID]
    if unknown:
        raise ValidationError(f"Unknown audience ids: {', '.join(unknown)}")
    return ordered


def collect_categories(audience_ids: Iterable[str]) -> List[str]:
    """Union of POI categories of the given audiences, in first-seen order."""
    categories: List[str] = []
    for audience_id in audience_ids:
        for category in _BY_ID[audience_id].categories:
            if category not in categories:
                categories.append(category)
    return categories


def catalog_response() -> Dict[str, object]:
    """Catalog payload for the HTTP surface."""
    return {
        "groups": AUDIENCE_GROUP_LABELS,
        "audiences": [a.model_dump(mode="json") for a in AUDIENCE_CATALOG],
        "count": len(AUDIENCE_CATALOG),
    }
