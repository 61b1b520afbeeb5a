"""Exception types raised inside the itinerary engine."""
from __future__ import annotations


class ItineraryEngineError(Exception):
    """Base class for engine errors."""


class InvalidPlanRequest(ItineraryEngineError, ValueError):
    """Raised when the caller supplies an unusable destination or day count."""


class PlaceSearchError(ItineraryEngineError):
    """Raised by a place-search collaborator when a query cannot be served."""

    def __init__(self, query: str, message: str):
        super().__init__(f"{message} (query={query!r})")
        self.query = query


class PlanningAssistError(ItineraryEngineError):
    """Raised by the planning assistant when it cannot produce a usable plan."""
