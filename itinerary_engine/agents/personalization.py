"""Session-scoped re-ranking of scheduled days.

Preference signals gathered during a session live only in ``SessionStore``
(an in-memory map with a sliding inactivity TTL). They are applied as a
bounded multiplicative weight over an already-built schedule: POIs are
re-sorted and trimmed inside their bucket, never moved to another day.
"""
from __future__ import annotations

import asyncio
import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Set, Union

from itinerary_engine.agents.duration_estimator import categorize_types, estimate_duration
from itinerary_engine.agents.pool_builder import PREFERENCE_FILTERS
from itinerary_engine.agents.scheduler import DINNER_OVERFLOW_CAP, FULL_DAY_HOURS, SLOTS, travel_buffer
from itinerary_engine.agents.tag_processor import infer_signals, process_session_tags, search_query_for
from itinerary_engine.config import get_logger
from itinerary_engine.schemas import CandidatePOI, DayPlan, PoiCategory, RawPlace, SessionPreferences
from itinerary_engine.tools.places import PlaceSearcher
from itinerary_engine.tools.safety import filter_places

logger = get_logger(__name__)

MIN_WEIGHT = 0.7
MAX_WEIGHT = 1.3
FREE_TEXT_BOOST = 0.2
CUISINE_BOOST = 1.1
ACTIVITY_BOOST = 1.1
AVOIDANCE_PENALTY = 0.7
STRONG_MATCH_WEIGHT = 1.2
MAX_ACTIVITIES_PER_DAY = 5
MUST_SEE_TYPES = ("tourist_attraction", "point_of_interest")

Scorable = Union[CandidatePOI, RawPlace]


def _clamp(value: float, low: float = MIN_WEIGHT, high: float = MAX_WEIGHT) -> float:
    return min(high, max(low, value))


def _review_count(poi: Scorable) -> int:
    if isinstance(poi, CandidatePOI):
        return poi.review_count or 0
    return poi.user_ratings_total or 0


def _is_dining(poi: Scorable) -> bool:
    if isinstance(poi, CandidatePOI) and poi.category == PoiCategory.FOOD:
        return True
    return "restaurant" in poi.types


def _mentions(poi: Scorable, term: str) -> bool:
    term = term.lower()
    return term in poi.name.lower() or any(term in t for t in poi.types)


def _search_text(poi: Scorable) -> str:
    return f"{poi.name} {' '.join(poi.types)} {poi.description or ''}".lower()


def personalization_weight(poi: Scorable, prefs: Optional[SessionPreferences]) -> float:
    """Multiplicative session weight for one POI, always within [0.7, 1.3]."""
    if prefs is None:
        return 1.0
    weight = 1.0

    if prefs.free_text_tags:
        text = _search_text(poi)
        matched = [tag for tag in prefs.free_text_tags if tag.lower() in text]
        if matched:
            weight *= 1.0 + FREE_TEXT_BOOST * min(1.0, len(matched) / len(prefs.free_text_tags))

    if prefs.cuisine_preferences and _is_dining(poi):
        if any(_mentions(poi, cuisine) for cuisine in prefs.cuisine_preferences):
            weight *= CUISINE_BOOST

    if any(_mentions(poi, activity) for activity in prefs.activity_preferences):
        weight *= ACTIVITY_BOOST

    if any(_mentions(poi, avoid) for avoid in prefs.avoidances):
        weight *= AVOIDANCE_PENALTY

    for poi_type in poi.types:
        custom = prefs.custom_weights.get(poi_type)
        if custom:
            weight *= _clamp(custom)

    return _clamp(weight)


def base_score(poi: Scorable) -> float:
    """Session-independent quality: rating, review volume and must-see status."""
    score = 0.6 + ((poi.rating or 0.0) / 5) * 0.4
    reviews = min(1.0, math.log10(_review_count(poi) + 1) / 4)
    score *= 0.7 + reviews * 0.3
    if any(t in poi.types for t in MUST_SEE_TYPES):
        score *= 1.3
    return score


def personalized_score(poi: Scorable, prefs: Optional[SessionPreferences]) -> float:
    return base_score(poi) * personalization_weight(poi, prefs)


def _candidate_from_place(place: RawPlace, tag: str) -> CandidatePOI:
    rating = f"rated {place.rating}★" if place.rating else "popular choice"
    return CandidatePOI(
        place_id=place.place_id,
        name=place.name,
        types=list(place.types),
        category=categorize_types(place.types),
        rating=place.rating,
        review_count=place.user_ratings_total,
        source=tag,
        reason=f'Matches your interest in "{tag}" - {rating}',
        estimated_duration=estimate_duration(place),
        location=place.location,
        opening_hours={"open_now": place.open_now} if place.open_now is not None else None,
        description=place.description or place.editorial_summary,
    )


def _unmatched_tags(pois: Sequence[CandidatePOI], tags: Sequence[str]) -> List[str]:
    texts = [_search_text(p) for p in pois]
    return [tag for tag in tags if not any(tag.lower() in text for text in texts)]


async def _find_replacement(
    tags: Sequence[str],
    destination: str,
    prefs: SessionPreferences,
    searcher: PlaceSearcher,
    taken: Set[str],
    budget: float,
    timeout: float,
) -> Optional[CandidatePOI]:
    for tag in tags:
        query = f"{search_query_for(tag) or tag} in {destination}"
        try:
            hits = await asyncio.wait_for(searcher.search(query, PREFERENCE_FILTERS), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Session preference search timed out for '%s'", query)
            continue
        except Exception:
            logger.warning("Session preference search failed for '%s'", query, exc_info=True)
            continue
        for place in filter_places(hits):
            if place.place_id in taken:
                continue
            if personalization_weight(place, prefs) < STRONG_MATCH_WEIGHT:
                continue
            candidate = _candidate_from_place(place, tag)
            if candidate.estimated_duration >= FULL_DAY_HOURS or candidate.estimated_duration > budget:
                continue
            return candidate
    return None


async def personalize_day(
    day: DayPlan,
    prefs: Optional[SessionPreferences],
    destination: str,
    searcher: Optional[PlaceSearcher] = None,
    *,
    taken: Optional[Set[str]] = None,
    timeout: float = 10.0,
) -> DayPlan:
    """Re-rank one day with the session profile and keep its best five POIs.

    ``taken`` holds every place id already scheduled in the run; a swapped-in
    POI is added to it so later days cannot reuse it. The returned day keeps
    each surviving POI in its original bucket.
    """
    if prefs is None or day.is_empty():
        return day
    taken = taken if taken is not None else set(day.place_ids())

    scores: Dict[str, float] = {p.place_id: personalized_score(p, prefs) for p in day.all_pois()}
    ranked = sorted(day.all_pois(), key=lambda p: scores[p.place_id], reverse=True)
    kept_ids = {p.place_id for p in ranked[:MAX_ACTIVITIES_PER_DAY]}
    buckets: Dict[str, List[CandidatePOI]] = {
        slot: sorted(
            (p for p in getattr(day, slot) if p.place_id in kept_ids),
            key=lambda p: scores[p.place_id],
            reverse=True,
        )
        for slot in SLOTS
    }
    if len(ranked) > MAX_ACTIVITIES_PER_DAY:
        logger.info("Day %d trimmed from %d to %d activities", day.day, len(ranked), MAX_ACTIVITIES_PER_DAY)

    if prefs.free_text_tags and searcher is not None:
        kept = ranked[:MAX_ACTIVITIES_PER_DAY]
        weakest = kept[-1]
        slot = next(s for s in SLOTS if weakest in buckets[s])
        remaining = sum(p.estimated_duration for p in kept) - weakest.estimated_duration
        tags = _unmatched_tags(kept, prefs.free_text_tags)
        replacement = await _find_replacement(
            tags,
            destination,
            prefs,
            searcher,
            taken,
            DINNER_OVERFLOW_CAP - remaining,
            timeout,
        )
        if replacement is not None:
            bucket = buckets[slot]
            bucket[bucket.index(weakest)] = replacement
            taken.add(replacement.place_id)
            logger.info("Day %d: swapped %s for session-preferred %s", day.day, weakest.name, replacement.name)

    ordered = [*buckets["morning"], *buckets["afternoon"], *buckets["evening"]]
    return day.model_copy(update={**buckets, "travel_buffer": travel_buffer(ordered)})


async def personalize_itinerary(
    days: Sequence[DayPlan],
    prefs: Optional[SessionPreferences],
    destination: str,
    searcher: Optional[PlaceSearcher] = None,
    *,
    timeout: float = 10.0,
) -> List[DayPlan]:
    """Apply ``personalize_day`` to each day in order with one shared id set."""
    if prefs is None:
        return list(days)
    taken: Set[str] = {pid for day in days for pid in day.place_ids()}
    result: List[DayPlan] = []
    for day in days:
        result.append(await personalize_day(day, prefs, destination, searcher, taken=taken, timeout=timeout))
    return result


# ---------- ephemeral session store ----------
def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionRecord:
    session_id: str
    created_at: datetime
    last_activity_at: datetime
    expires_at: datetime
    conversation_id: Optional[str] = None
    preferences: SessionPreferences = field(default_factory=SessionPreferences)


class SessionStore:
    """
    Per-process map of session id to preference signals with a sliding
    inactivity TTL. Nothing here is ever written to durable storage.
    """

    def __init__(self, ttl_hours: float = 4.0, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(hours=ttl_hours)
        self._clock = clock
        self._sessions: Dict[str, SessionRecord] = {}

    def create(self, conversation_id: Optional[str] = None) -> str:
        now = self._clock()
        session_id = str(uuid.uuid4())
        self._sessions[session_id] = SessionRecord(
            session_id=session_id,
            created_at=now,
            last_activity_at=now,
            expires_at=now + self.ttl,
            conversation_id=conversation_id,
        )
        logger.info("Created session %s", session_id)
        return session_id

    def get(self, session_id: str) -> Optional[SessionRecord]:
        record = self._sessions.get(session_id)
        if record is None:
            return None
        now = self._clock()
        if record.expires_at < now:
            del self._sessions[session_id]
            logger.info("Session %s expired", session_id)
            return None
        record.last_activity_at = now
        record.expires_at = now + self.ttl
        return record

    def get_or_create(self, session_id: Optional[str] = None, conversation_id: Optional[str] = None) -> str:
        if session_id:
            record = self.get(session_id)
            if record is not None:
                if conversation_id and not record.conversation_id:
                    self.link(session_id, conversation_id)
                return session_id
        return self.create(conversation_id)

    def preferences(self, session_id: str) -> Optional[SessionPreferences]:
        record = self.get(session_id)
        return record.preferences if record else None

    def update_preferences(
        self,
        session_id: str,
        updates: Union[SessionPreferences, Mapping[str, Any]],
    ) -> bool:
        """Merge ``updates`` into the session profile.

        List fields are extended without duplicates, mapping fields are
        updated key by key and scalar fields are replaced only when given.
        Custom weights are clamped to [0.7, 1.3].
        """
        record = self.get(session_id)
        if record is None:
            return False
        if isinstance(updates, SessionPreferences):
            updates = updates.model_dump(exclude_unset=True)
        else:
            updates = SessionPreferences.model_validate(dict(updates)).model_dump(include=set(updates))

        current = record.preferences.model_dump()
        for key, value in updates.items():
            if value is None:
                continue
            existing = current.get(key)
            if isinstance(existing, list):
                existing.extend(v for v in value if v not in existing)
            elif isinstance(existing, dict):
                existing.update(value)
            else:
                current[key] = value
        current["custom_weights"] = {k: _clamp(float(v)) for k, v in current["custom_weights"].items()}
        record.preferences = SessionPreferences.model_validate(current)
        logger.info("Updated preferences for session %s: %s", session_id, ", ".join(sorted(updates)) or "nothing")
        return True

    def add_free_text_tag(self, session_id: str, tag: str) -> bool:
        """Record a free-text interest and merge the signals it implies.

        Tags the processor rejects (unsafe, empty or out of length bounds) are
        not stored.
        """
        record = self.get(session_id)
        if record is None:
            return False
        processed = process_session_tags(tag)
        if not processed:
            return False
        tag = tag.strip()
        tags = record.preferences.free_text_tags
        if tag not in tags:
            tags.append(tag)
            logger.info("Added free-text tag '%s' to session %s", tag, session_id)
        signals = infer_signals(processed)
        if signals:
            self.update_preferences(session_id, signals)
        return True

    def weight_for(self, session_id: str, poi: Scorable) -> float:
        return personalization_weight(poi, self.preferences(session_id))

    def link(self, session_id: str, conversation_id: str) -> bool:
        record = self.get(session_id)
        if record is None:
            return False
        record.conversation_id = conversation_id
        return True

    def destroy(self, session_id: str) -> bool:
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.info("Destroyed session %s", session_id)
        return removed

    def cleanup_expired(self) -> int:
        now = self._clock()
        expired = [sid for sid, record in self._sessions.items() if record.expires_at < now]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("Cleaned up %d expired session(s)", len(expired))
        return len(expired)

    def active_count(self) -> int:
        self.cleanup_expired()
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return isinstance(session_id, str) and session_id in self._sessions
