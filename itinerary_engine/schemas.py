from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

GENERAL_SOURCE = "general"
DINING_SOURCE = "dining"

# ------- Search collaborator models -------
class Coordinate(BaseModel):
    lat: float
    lng: float

class RawPlace(BaseModel):
    model_config = ConfigDict(extra="ignore")

    place_id: str
    name: str
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    types: List[str] = Field(default_factory=list)
    address: Optional[str] = None
    location: Optional[Coordinate] = None
    open_now: Optional[bool] = None
    photo_ref: Optional[str] = None
    description: Optional[str] = None
    editorial_summary: Optional[str] = None

class SearchFilters(BaseModel):
    min_rating: Optional[float] = None
    min_reviews: Optional[int] = None

    def allowed(self, place: RawPlace) -> bool:
        # Unknown rating/review counts pass; only known low values are rejected.
        if self.min_rating and place.rating is not None and place.rating < self.min_rating:
            return False
        if (
            self.min_reviews
            and place.user_ratings_total is not None
            and place.user_ratings_total < self.min_reviews
        ):
            return False
        return True

# ------- Planning models -------
class PoiCategory(str, Enum):
    FOOD = "food"
    CULTURE = "culture"
    SHOPPING = "shopping"
    NIGHTLIFE = "nightlife"
    NATURE = "nature"
    BEACH = "beach"
    SPA = "spa"
    ENTERTAINMENT = "entertainment"
    ATTRACTION = "attraction"

class CandidatePOI(BaseModel):
    model_config = ConfigDict(frozen=True)

    place_id: str
    name: str
    types: List[str] = Field(default_factory=list)
    category: PoiCategory = PoiCategory.ATTRACTION
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    review_count: Optional[int] = Field(default=None, ge=0)
    source: str = GENERAL_SOURCE
    reason: str = ""
    estimated_duration: float = Field(default=2.0, gt=0)
    location: Optional[Coordinate] = None
    opening_hours: Optional[Dict[str, Any]] = None
    description: Optional[str] = None

    @property
    def is_preference(self) -> bool:
        return self.source not in (GENERAL_SOURCE, DINING_SOURCE)

    @property
    def is_dining(self) -> bool:
        return self.category == PoiCategory.FOOD

class PreferenceSet(tuple):
    """Ordered, case-insensitively distinct preference strings."""

    def __new__(cls, values: Iterable[str] | None = None) -> "PreferenceSet":
        seen = set()
        out: List[str] = []
        if isinstance(values, str):
            values = [values]
        for item in values or ():
            if item is None:
                continue
            cleaned = " ".join(str(item).split())
            if not cleaned or cleaned.lower() in seen:
                continue
            seen.add(cleaned.lower())
            out.append(cleaned)
        return super().__new__(cls, out)

    def __contains__(self, item: object) -> bool:
        return isinstance(item, str) and item.lower() in {p.lower() for p in self}

    def __repr__(self) -> str:
        return f"PreferenceSet({list(self)!r})"

class DayAllocation(BaseModel):
    day: int
    title: str
    pois: List[CandidatePOI] = Field(default_factory=list)
    preferences_covered: List[str] = Field(default_factory=list)

class DayPlan(BaseModel):
    day: int = Field(..., ge=1)
    title: str
    description: str = ""
    morning: List[CandidatePOI] = Field(default_factory=list)
    afternoon: List[CandidatePOI] = Field(default_factory=list)
    evening: List[CandidatePOI] = Field(default_factory=list)
    feasibility_score: float = Field(default=0.8, ge=0.0, le=1.0)
    travel_buffer: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_duration(self) -> float:
        return round(sum(p.estimated_duration for p in self.all_pois()), 2)

    def all_pois(self) -> List[CandidatePOI]:
        return [*self.morning, *self.afternoon, *self.evening]

    def place_ids(self) -> List[str]:
        return [p.place_id for p in self.all_pois()]

    def is_empty(self) -> bool:
        return not (self.morning or self.afternoon or self.evening)

# ------- Session personalization -------
class SessionPreferences(BaseModel):
    free_text_tags: List[str] = Field(default_factory=list)
    cuisine_preferences: List[str] = Field(default_factory=list)
    activity_preferences: List[str] = Field(default_factory=list)
    avoidances: List[str] = Field(default_factory=list)
    travel_style: List[str] = Field(default_factory=list)
    budget_level: Optional[str] = None
    custom_weights: Dict[str, float] = Field(default_factory=dict)

# ------- Output models -------
class ItineraryResult(BaseModel):
    destination: str
    days: List[DayPlan] = Field(default_factory=list)
    strategy: Literal["assisted", "allocated", "fallback"] = "allocated"
    coverage: Dict[str, int] = Field(default_factory=dict)
    coverage_gaps: List[str] = Field(default_factory=list)
    notes: List[str] = Field(default_factory=list)

class TravelPackage(BaseModel):
    name: str
    type: Literal["classic", "foodie", "budget"]
    budget: str
    description: str
    route: str
    accommodation: str
    dining_count: int = 0
    attraction_count: int = 0
    highlights: List[str] = Field(default_factory=list)
    itinerary: List[DayPlan] = Field(default_factory=list)
