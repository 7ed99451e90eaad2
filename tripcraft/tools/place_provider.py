"""
Place & Route Provider - Google Maps web services integration

Text search, place details and driving routes for the itinerary pipeline.
Durations come from the Distance Matrix API and route paths (encoded
polylines) from the Directions API.
"""

from abc import abstractmethod
from typing import Any, Dict, List, Optional
import aiohttp

from tripcraft.core.config import settings
from tripcraft.core.exceptions import ConfigurationError, UpstreamProviderError
from tripcraft.core.logging_config import get_logger
from tripcraft.core.retry import call_with_retry, maps_retry_policy
from tripcraft.models.schemas import (
    GeoPoint,
    PlaceDetails,
    PlacePhoto,
    PlaceSummary,
    RouteResult,
)
from tripcraft.tools.base_tool import BaseTool, ToolMetadata, tool_registry

logger = get_logger(__name__)

DEFAULT_DETAIL_FIELDS = [
    "place_id",
    "name",
    "formatted_address",
    "geometry",
    "rating",
    "user_ratings_total",
    "price_level",
    "formatted_phone_number",
    "website",
    "photos",
    "types",
]

# API statuses worth another attempt
_TRANSIENT_API_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class PlaceProvider(BaseTool):
    """Geocoded place search, place details and route durations"""

    @abstractmethod
    async def text_search(self, query: str, limit: int = 20) -> List[PlaceSummary]:
        """Ranked places for a free-text query"""
        pass

    @abstractmethod
    async def get_details(
        self, place_id: str, fields: Optional[List[str]] = None
    ) -> PlaceDetails:
        """Full record for one place"""
        pass

    @abstractmethod
    async def get_route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: str = "driving",
        include_path: bool = True,
    ) -> RouteResult:
        """Travel duration between two points, plus the encoded path when requested"""
        pass


class GooglePlacesProvider(PlaceProvider):
    """Google Maps (Places, Distance Matrix, Directions) based provider"""

    def __init__(self, api_key: Optional[str] = None):
        metadata = ToolMetadata(
            name="google_places",
            description="Place search, place details and driving routes via Google Maps web services",
            category="places",
            tags=["places", "routes", "google_maps"],
            requires_auth=True,
            timeout=settings.PROVIDER_TIMEOUT_SECONDS,
        )
        super().__init__(metadata)

        # API key will be checked when the provider is actually used
        self.api_key = api_key

        self.base_url = "https://maps.googleapis.com/maps/api"
        self.text_search_url = f"{self.base_url}/place/textsearch/json"
        self.place_details_url = f"{self.base_url}/place/details/json"
        self.place_photo_url = f"{self.base_url}/place/photo"
        self.distance_matrix_url = f"{self.base_url}/distancematrix/json"
        self.directions_url = f"{self.base_url}/directions/json"

    def _ensure_api_key(self) -> str:
        if not self.api_key:
            self.api_key = settings.GOOGLE_MAPS_API_KEY
            if not self.api_key:
                raise ConfigurationError("GOOGLE_MAPS_API_KEY is required for place lookups")
        return self.api_key

    async def text_search(self, query: str, limit: int = 20) -> List[PlaceSummary]:
        data = await self.run("text_search", self._get_json, self.text_search_url, {"query": query})
        places = [self._parse_place(result) for result in data.get("results", [])]
        logger.info(f"Text search '{query}' returned {len(places)} places")
        return places[:limit]

    async def get_details(
        self, place_id: str, fields: Optional[List[str]] = None
    ) -> PlaceDetails:
        params = {
            "place_id": place_id,
            "fields": ",".join(fields or DEFAULT_DETAIL_FIELDS),
        }
        data = await self.run("get_details", self._get_json, self.place_details_url, params)
        result = data.get("result")
        if not result:
            raise UpstreamProviderError(self.metadata.name, f"no details for place {place_id}")
        result.setdefault("place_id", place_id)
        return self._parse_place(result)

    async def get_route(
        self,
        origin: GeoPoint,
        destination: GeoPoint,
        mode: str = "driving",
        include_path: bool = True,
    ) -> RouteResult:
        params = {
            "origins": self._format_point(origin),
            "destinations": self._format_point(destination),
            "mode": mode,
        }
        data = await self.run("distance_matrix", self._get_json, self.distance_matrix_url, params)
        try:
            element = data["rows"][0]["elements"][0]
        except (KeyError, IndexError):
            raise UpstreamProviderError(self.metadata.name, "distance matrix returned no elements")
        if element.get("status") != "OK" or "duration" not in element:
            raise UpstreamProviderError(
                self.metadata.name, f"no {mode} route: {element.get('status', 'unknown')}"
            )
        duration_seconds = int(element["duration"]["value"])

        path = None
        if include_path:
            params = {
                "origin": self._format_point(origin),
                "destination": self._format_point(destination),
                "mode": mode,
            }
            directions = await self.run("directions", self._get_json, self.directions_url, params)
            routes = directions.get("routes") or []
            if routes:
                path = routes[0].get("overview_polyline", {}).get("points")

        return RouteResult(duration_seconds=duration_seconds, path=path)

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        params = {**params, "key": self._ensure_api_key()}
        try:
            return await call_with_retry(
                self._request,
                url,
                params,
                policy=maps_retry_policy(),
                operation=f"{self.metadata.name} {url.rsplit('/', 2)[-2]}",
            )
        except aiohttp.ClientError as e:
            raise UpstreamProviderError(self.metadata.name, f"request failed: {e}", transient=True) from e

    async def _request(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        async with aiohttp.ClientSession() as session:
            async with session.get(url, params=params) as response:
                if response.status != 200:
                    error_text = await response.text()
                    raise UpstreamProviderError(
                        self.metadata.name,
                        f"HTTP {response.status} - {error_text[:200]}",
                        transient=response.status == 429 or response.status >= 500,
                    )
                data = await response.json()

        status = data.get("status", "OK")
        if status in ("OK", "ZERO_RESULTS"):
            return data
        raise UpstreamProviderError(
            self.metadata.name,
            f"API status {status}: {data.get('error_message', '')}".strip(),
            transient=status in _TRANSIENT_API_STATUSES,
        )

    def _parse_place(self, result: Dict[str, Any]) -> PlaceDetails:
        """Parse a Places API result into a PlaceDetails record"""
        location = result.get("geometry", {}).get("location")
        geo = GeoPoint(lat=location["lat"], lng=location["lng"]) if location else None

        photos = [
            PlacePhoto(
                url=(
                    f"{self.place_photo_url}?maxwidth=800"
                    f"&photo_reference={photo['photo_reference']}&key={self.api_key}"
                ),
                attributions=(photo.get("html_attributions") or ["Google"])[0],
            )
            for photo in result.get("photos", [])[:3]
            if photo.get("photo_reference")
        ]

        return PlaceDetails(
            place_id=result["place_id"],
            name=result.get("name", ""),
            rating=result.get("rating"),
            user_ratings_total=result.get("user_ratings_total"),
            price_level=result.get("price_level"),
            address=result.get("formatted_address"),
            geo=geo,
            types=result.get("types", []),
            phone=result.get("formatted_phone_number"),
            website=result.get("website"),
            photos=photos,
        )

    @staticmethod
    def _format_point(point: GeoPoint) -> str:
        return f"{point.lat},{point.lng}"


# Global provider instance
place_provider: Optional[PlaceProvider] = None


def get_place_provider() -> PlaceProvider:
    """Get the place provider, registering it with the tool registry on first use"""
    global place_provider
    if place_provider is None:
        place_provider = GooglePlacesProvider()
        tool_registry.register(place_provider)
    return place_provider


def set_place_provider(provider: Optional[PlaceProvider]) -> None:
    global place_provider
    place_provider = provider
    if provider is not None:
        tool_registry.register(provider)
