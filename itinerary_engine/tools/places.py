import math
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx

from itinerary_engine.config import get_logger
from itinerary_engine.errors import PlaceSearchError
from itinerary_engine.schemas import Coordinate, RawPlace, SearchFilters

logger = get_logger(__name__)

FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.rating",
        "places.userRatingCount",
        "places.priceLevel",
        "places.types",
        "places.location",
        "places.currentOpeningHours",
        "places.photos",
        "places.editorialSummary",
    ]
)


class PlaceSearcher(Protocol):
    async def search(self, query: str, filters: Optional[SearchFilters] = None) -> List[RawPlace]:
        ...


class GooglePlacesSearcher:
    """
    Text search against the Google Places API (v1 ``places:searchText``).
    Any transport or provider failure is raised as ``PlaceSearchError``.
    """
    SEARCH_ENDPOINT = "https://places.googleapis.com/v1/places:searchText"
    PAGE_SIZE = 20

    def __init__(self, *, api_key: Optional[str] = None, timeout: float = 10.0, language: str = "en"):
        self.api_key = api_key
        self.timeout = timeout
        self.language = language

    async def search(self, query: str, filters: Optional[SearchFilters] = None) -> List[RawPlace]:
        """Run a text search and return quality-filtered places, best first.

        Results are ranked by ``rating * log10(reviews + 1)`` after the
        optional ``SearchFilters`` have been applied.
        """
        if not self.api_key:
            raise PlaceSearchError(query, "GOOGLE_PLACES_API_KEY not configured")

        payload = {"textQuery": query, "pageSize": self.PAGE_SIZE, "languageCode": self.language}
        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": self.api_key,
            "X-Goog-FieldMask": FIELD_MASK,
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.SEARCH_ENDPOINT, json=payload, headers=headers)
                response.raise_for_status()
                data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        except (httpx.HTTPError, ValueError) as exc:
            raise PlaceSearchError(query, f"Google Places request failed: {exc}") from exc

        places = [self._parse_place(item) for item in data.get("places", []) or []]
        places = [p for p in places if p is not None]
        filtered = self._apply_filters(places, filters)
        logger.debug("Query '%s' returned %d place(s), %d after filters", query, len(places), len(filtered))
        return filtered

    @staticmethod
    def _parse_place(item: Dict[str, Any]) -> Optional[RawPlace]:
        place_id = item.get("id")
        display = item.get("displayName")
        name = display.get("text") if isinstance(display, dict) else display
        if not place_id or not name:
            return None
        location = item.get("location") or {}
        coordinate = None
        if "latitude" in location and "longitude" in location:
            coordinate = Coordinate(lat=location["latitude"], lng=location["longitude"])
        photos = item.get("photos") or []
        editorial = item.get("editorialSummary") or {}
        place = RawPlace(
            place_id=place_id,
            name=name,
            rating=item.get("rating"),
            user_ratings_total=item.get("userRatingCount"),
            price_level=_price_level(item.get("priceLevel")),
            types=list(item.get("types") or []),
            address=item.get("formattedAddress"),
            location=coordinate,
            open_now=(item.get("currentOpeningHours") or {}).get("openNow"),
            photo_ref=photos[0].get("name") if photos and isinstance(photos[0], dict) else None,
            editorial_summary=editorial.get("text") if isinstance(editorial, dict) else None,
        )
        return place.model_copy(update={"description": describe_place(place)})

    @staticmethod
    def _apply_filters(places: Iterable[RawPlace], filters: Optional[SearchFilters]) -> List[RawPlace]:
        kept = [p for p in places if filters is None or filters.allowed(p)]
        kept.sort(key=popularity_score, reverse=True)
        return kept


def popularity_score(place: RawPlace) -> float:
    return (place.rating or 0.0) * math.log10((place.user_ratings_total or 1) + 1)


_PRICE_LEVELS = {
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


def _price_level(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    return _PRICE_LEVELS.get(str(value))


def describe_place(place: RawPlace) -> str:
    """Short human-readable blurb derived from types and ratings."""
    types = place.types
    rating = place.rating or 0.0
    if "restaurant" in types:
        if rating >= 4.5:
            return f"Highly acclaimed dining spot with {place.user_ratings_total or 'many'} reviews"
        if "japanese_restaurant" in types:
            return "Authentic Japanese cuisine experience"
        if "italian_restaurant" in types:
            return "Traditional Italian flavors in a welcoming atmosphere"
        return "Popular local restaurant"
    if "tourist_attraction" in types or "point_of_interest" in types:
        if rating >= 4.5:
            return f"Must-visit attraction rated {place.rating}/5 by travelers"
        return "Notable landmark worth exploring"
    if "museum" in types:
        return "Cultural institution showcasing local heritage"
    if "park" in types:
        return "Scenic green space perfect for relaxation"
    if "shopping_mall" in types or "store" in types:
        return "Shopping destination for local and international brands"
    if "cafe" in types:
        return "Cozy spot for coffee and light refreshments"
    if "bar" in types or "night_club" in types:
        return "Vibrant nightlife venue"
    if place.editorial_summary:
        return place.editorial_summary
    return f"Popular venue with {place.rating or 'good'} rating"
