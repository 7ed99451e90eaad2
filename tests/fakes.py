"""
In-process stand-ins for the language model and the place provider.
"""

import json
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Union

from tripcraft.core.exceptions import UpstreamProviderError
from tripcraft.core.llm_service import BaseLLMService, LLMConfig, LLMResponse
from tripcraft.models.schemas import (
    GeoPoint,
    PlaceDetails,
    PlacePhoto,
    PlaceSummary,
    RouteResult,
)
from tripcraft.tools.base_tool import ToolMetadata
from tripcraft.tools.place_provider import PlaceProvider

# Prompt markers, checked in order, that tell which pipeline step is calling
PROMPT_ROUTES = [
    ("intake", "You are a travel planning assistant"),
    ("duration", "Estimate how long visitors typically spend"),
    ("schedule", "You are a travel planner. Create a"),
    ("summary", "one-sentence summary for Day"),
    ("copy", "Create engaging micro-copy"),
    ("edit", "You are a trip editing assistant"),
]

Reply = Union[str, dict, list, Callable[[List[Dict[str, str]]], Any]]


class FakeLLM(BaseLLMService):
    """
    Answers each pipeline step with a canned reply.

    A reply may be a raw string, a JSON-serialisable value, a callable taking
    the messages, or an exception instance to raise.
    """

    def __init__(self, replies: Optional[Dict[str, Reply]] = None):
        super().__init__(LLMConfig(provider="fake", model="fake-model"))
        self.replies: Dict[str, Reply] = dict(replies or {})
        self.calls: Counter = Counter()
        self.prompts: Dict[str, List[str]] = {}

    @staticmethod
    def route(messages: List[Dict[str, str]]) -> str:
        text = "\n".join(message["content"] for message in messages)
        for name, marker in PROMPT_ROUTES:
            if marker in text:
                return name
        raise AssertionError(f"Unrecognised prompt: {text[:200]}")

    async def chat_completion(self, messages: List[Dict[str, str]], **kwargs) -> LLMResponse:
        name = self.route(messages)
        self.calls[name] += 1
        self.prompts.setdefault(name, []).append("\n".join(m["content"] for m in messages))

        if name not in self.replies:
            raise AssertionError(f"No fake reply configured for '{name}'")
        reply = self.replies[name]
        if callable(reply):
            reply = reply(messages)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply)
        return LLMResponse(content=content, model=self.model)


def place(
    place_id: str,
    name: str,
    lat: Optional[float] = 38.7,
    lng: Optional[float] = -9.1,
    rating: Optional[float] = 4.5,
    price_level: Optional[int] = None,
    types: Optional[List[str]] = None,
) -> PlaceDetails:
    return PlaceDetails(
        place_id=place_id,
        name=name,
        rating=rating,
        user_ratings_total=100,
        price_level=price_level,
        address=f"{name}, Lisbon",
        geo=GeoPoint(lat=lat, lng=lng) if lat is not None and lng is not None else None,
        types=types or ["tourist_attraction"],
        photos=[PlacePhoto(url=f"https://example.test/{place_id}.jpg")],
    )


class FakePlaceProvider(PlaceProvider):
    """
    Serves places registered per query substring and fixed route durations.

    Route durations are looked up by (origin, destination) coordinates and
    default to `default_route_seconds`.
    """

    def __init__(
        self,
        searches: Optional[Dict[str, List[PlaceDetails]]] = None,
        default_route_seconds: int = 600,
    ):
        super().__init__(
            ToolMetadata(name="fake_places", description="Canned places", category="places")
        )
        self.searches = searches or {}
        self.details: Dict[str, PlaceDetails] = {
            p.place_id: p for places in self.searches.values() for p in places
        }
        self.default_route_seconds = default_route_seconds
        self.route_seconds: Dict[tuple, int] = {}
        self.failing_details: set = set()
        self.failing_routes = False
        self.calls: Counter = Counter()

    def add_place(self, details: PlaceDetails) -> None:
        self.details[details.place_id] = details

    async def text_search(self, query: str, limit: int = 20) -> List[PlaceSummary]:
        self.calls["text_search"] += 1
        for fragment, places in self.searches.items():
            if fragment in query:
                return [PlaceSummary.model_validate(p.model_dump()) for p in places][:limit]
        return []

    async def get_details(self, place_id: str, fields=None) -> PlaceDetails:
        self.calls["get_details"] += 1
        if place_id in self.failing_details or place_id not in self.details:
            raise UpstreamProviderError("fake_places", f"details unavailable for {place_id}")
        return self.details[place_id]

    async def get_route(self, origin: GeoPoint, destination: GeoPoint, mode="driving", include_path=True):
        self.calls["get_route"] += 1
        if self.failing_routes:
            raise UpstreamProviderError("fake_places", "routing unavailable", transient=True)
        seconds = self.route_seconds.get(
            ((origin.lat, origin.lng), (destination.lat, destination.lng)),
            self.default_route_seconds,
        )
        path = f"path:{origin.lat},{origin.lng}->{destination.lat},{destination.lng}" if include_path else None
        return RouteResult(duration_seconds=seconds, path=path)
