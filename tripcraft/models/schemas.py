from pydantic import BaseModel, ConfigDict, Field, AfterValidator, field_validator, model_validator
from typing import Annotated, Dict, List, Optional
from datetime import date, datetime
from enum import Enum


class TripStatus(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"


class BudgetBand(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    LUXURY = "luxury"


class Pace(str, Enum):
    RELAXED = "relaxed"
    MODERATE = "moderate"
    ACTIVE = "active"


class Slot(str, Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"


class ItemKind(str, Enum):
    ACTIVITY = "activity"
    MEAL = "meal"


class DurationSource(str, Enum):
    """Where a timeline item's duration range came from"""
    GPT_ESTIMATE = "gpt_estimate"
    CACHE = "cache"
    DEFAULT = "default"


class EstimateSource(str, Enum):
    """Where a duration estimate came from"""
    CACHE = "cache"
    MODEL = "model"
    DEFAULT = "default"


class EditAction(str, Enum):
    SWAP = "swap"
    REMOVE = "remove"
    ADD = "add"
    EXTEND_DURATION = "extend_duration"
    MOVE = "move"


def _check_duration_range(value: List[int]) -> List[int]:
    # Order is kept as given, never sorted
    if len(value) != 2:
        raise ValueError("duration range must have exactly two values [min, max]")
    if any(v < 0 for v in value):
        raise ValueError("duration range values must be non-negative")
    return value


DurationRange = Annotated[List[int], AfterValidator(_check_duration_range)]

DEFAULT_DURATION_RANGE = [120, 180]


# ===== Place data =====

class GeoPoint(BaseModel):
    lat: float
    lng: float


class PlacePhoto(BaseModel):
    url: str
    attributions: Optional[str] = None


class PlaceData(BaseModel):
    """
    Enrichment attached to a timeline item or alternative.

    Every field is optional. `merged_with` only fills fields that are still
    empty, so enrichment never discards what an earlier step stored.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = 1
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    address: Optional[str] = None
    geo: Optional[GeoPoint] = None
    description: Optional[str] = None
    micro_copy: Optional[str] = None
    tip: Optional[str] = None
    photos: List[PlacePhoto] = Field(default_factory=list)
    website: Optional[str] = None
    phone: Optional[str] = None

    @property
    def has_copy(self) -> bool:
        return bool(self.description) and bool(self.micro_copy)

    def merged_with(self, **updates) -> "PlaceData":
        merged = self.model_dump()
        for field_name, value in updates.items():
            if field_name not in PlaceData.model_fields or field_name == "schema_version":
                continue
            if value in (None, "", []):
                continue
            if merged.get(field_name) in (None, "", []):
                merged[field_name] = value
        return PlaceData.model_validate(merged)


# ===== Place provider records =====

class PlaceSummary(BaseModel):
    """One text-search hit"""

    place_id: str
    name: str
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    address: Optional[str] = None
    geo: Optional[GeoPoint] = None
    types: List[str] = Field(default_factory=list)


class PlaceDetails(PlaceSummary):
    phone: Optional[str] = None
    website: Optional[str] = None
    photos: List[PlacePhoto] = Field(default_factory=list)

    def to_place_data(self) -> PlaceData:
        return PlaceData(
            rating=self.rating,
            user_ratings_total=self.user_ratings_total,
            address=self.address,
            geo=self.geo,
            photos=self.photos,
            website=self.website,
            phone=self.phone,
        )


class RouteResult(BaseModel):
    duration_seconds: int
    path: Optional[str] = None


# ===== Trip intent =====

class Destination(BaseModel):
    city: str
    country: Optional[str] = None
    tzid: Optional[str] = None


class TripIntentData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    destinations: List[Destination] = Field(..., min_length=1)
    start_date: date
    end_date: date
    travelers: int = Field(1, ge=1)
    budget_band: BudgetBand = BudgetBand.MEDIUM
    interests: List[str] = Field(default_factory=list)
    dietary_restrictions: List[str] = Field(default_factory=list)
    accessibility_needs: List[str] = Field(default_factory=list)
    pace: Pace = Pace.MODERATE

    @field_validator("interests", "dietary_restrictions", "accessibility_needs", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []

    @field_validator("budget_band", mode="before")
    @classmethod
    def _default_budget(cls, value):
        return value or BudgetBand.MEDIUM

    @field_validator("pace", mode="before")
    @classmethod
    def _default_pace(cls, value):
        return value or Pace.MODERATE

    @model_validator(mode="after")
    def _check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def trip_length_days(self) -> int:
        return (self.end_date - self.start_date).days + 1

    @property
    def main_destination(self) -> Destination:
        return self.destinations[0]


# ===== Persisted views =====

class AlternativeView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    place_id: str
    place_name: str
    order_index: int
    place_data: PlaceData = Field(default_factory=PlaceData)


class TimelineItemView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    slot: str
    kind: str
    meal_type: Optional[str] = None
    place_id: Optional[str] = None
    place_name: Optional[str] = None
    estimated_duration_min: Optional[DurationRange] = None
    duration_source: Optional[str] = None
    place_data: PlaceData = Field(default_factory=PlaceData)
    order_index: int
    alternatives: List[AlternativeView] = Field(default_factory=list)

    def upper_bound_minutes(self, default: int = 120) -> int:
        if self.estimated_duration_min:
            return self.estimated_duration_min[1] or default
        return default


class TransferView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_place_id: str
    to_place_id: str
    mode: str = "driving"
    eta_min: Optional[int] = None
    polyline: Optional[str] = None


class TripDayView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    day_number: int
    date: date
    city: str
    tzid: str = "UTC"
    summary: Optional[str] = None
    items: List[TimelineItemView] = Field(default_factory=list)
    transfers: List[TransferView] = Field(default_factory=list)


class HotelView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    place_id: str
    name: str
    address: Optional[str] = None
    geo: Optional[GeoPoint] = None
    rating: Optional[float] = None
    user_ratings_total: Optional[int] = None
    price_level: Optional[int] = None
    photos: List[PlacePhoto] = Field(default_factory=list)
    is_selected: bool = False
    score: Optional[float] = None
    reason: Optional[str] = None
    distance_to_day_centroid: Dict[str, int] = Field(default_factory=dict)

    @field_validator("photos", "distance_to_day_centroid", mode="before")
    @classmethod
    def _none_to_empty(cls, value, info):
        if value is None:
            return [] if info.field_name == "photos" else {}
        return value

    @field_validator("is_selected", mode="before")
    @classmethod
    def _none_to_false(cls, value):
        return bool(value)


class Notice(BaseModel):
    code: str
    day_number: Optional[int] = None
    message: str


class TripView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    status: TripStatus
    visibility: str = "private"
    locale: Optional[str] = "en-US"
    intent: Optional[TripIntentData] = None
    days: List[TripDayView] = Field(default_factory=list)
    hotels: List[HotelView] = Field(default_factory=list)
    notices: List[Notice] = Field(default_factory=list)
    hints: List[Notice] = Field(default_factory=list)
    sources: Dict[str, int] = Field(default_factory=dict)
    debug: Dict[str, int] = Field(default_factory=dict)
    generated_at: Optional[datetime] = None

    @field_validator("notices", "hints", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []

    @field_validator("sources", "debug", mode="before")
    @classmethod
    def _none_to_dict(cls, value):
        return value or {}


# ===== Model output shapes =====

class ScheduleItem(BaseModel):
    """One entry of the model-produced timeline"""

    model_config = ConfigDict(extra="ignore")

    slot: Slot
    kind: ItemKind
    place_name: str
    place_id: Optional[str] = None
    estimated_duration_min: Optional[DurationRange] = None
    meal_type: Optional[str] = None

    @field_validator("slot", "kind", mode="before")
    @classmethod
    def _lowercase(cls, value):
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _meal_needs_type(self):
        if self.kind == ItemKind.MEAL and not self.meal_type:
            self.meal_type = "meal"
        return self


class ScheduleDay(BaseModel):
    model_config = ConfigDict(extra="ignore")

    day_number: int = Field(..., ge=1)
    summary: Optional[str] = None
    timeline: List[ScheduleItem] = Field(default_factory=list)


class EditIntent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    action: str
    target_day: Optional[int] = None
    target_slot: Optional[str] = None
    item_to_change: Optional[str] = None
    new_item: Optional[str] = None
    search_query: Optional[str] = None
    reasoning: Optional[str] = None

    @field_validator("action", mode="before")
    @classmethod
    def _normalize_action(cls, value):
        value = (value or "").strip().lower()
        if value == "move_to_different_time":
            return EditAction.MOVE.value
        return value

    @field_validator("target_day", mode="before")
    @classmethod
    def _all_days(cls, value):
        if value in ("", "all", "all days", 0):
            return None
        return value


# ===== Operation requests and results =====

class DurationEstimateRequest(BaseModel):
    place_id: str
    place_name: str
    place_type: str = "tourist_attraction"
    pace: Pace = Pace.MODERATE
    interests: List[str] = Field(default_factory=list)
    target_date: date
    reference_url: Optional[str] = None


class DurationEstimate(BaseModel):
    duration_min: DurationRange
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    assumptions: List[str] = Field(default_factory=list)
    risks: List[str] = Field(default_factory=list)
    evidence_snippets: List[str] = Field(default_factory=list)
    reasoning: Optional[str] = None
    source: EstimateSource = EstimateSource.MODEL

    @field_validator("assumptions", "risks", "evidence_snippets", mode="before")
    @classmethod
    def _none_to_list(cls, value):
        return value or []


class ValidationReport(BaseModel):
    valid: bool
    notices: List[Notice] = Field(default_factory=list)
    hints: List[Notice] = Field(default_factory=list)
    summary: str


class EditResult(BaseModel):
    success: bool
    message: str
    action: Optional[str] = None
    matched_count: int = 0


class ConversationMessage(BaseModel):
    role: str
    content: str


class IntakeResult(BaseModel):
    message: str
    trip_id: Optional[str] = None
    ready_to_create: bool = False


class GenerationResult(BaseModel):
    trip_id: str
    status: TripStatus
    day_count: int
    hotel_count: int = 0
    notices: List[Notice] = Field(default_factory=list)
    sources: Dict[str, int] = Field(default_factory=dict)
    debug: Dict[str, int] = Field(default_factory=dict)


class PresentationResult(BaseModel):
    days_summarized: int = 0
    items_enriched: int = 0
    items_skipped: int = 0
    fallbacks_used: int = 0


class RunStats(BaseModel):
    """Per-run call and cache counters persisted as trip telemetry"""

    maps_calls: int = 0
    gpt_calls: int = 0
    matrix_calls: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def sources(self) -> Dict[str, int]:
        return {
            "maps_calls": self.maps_calls,
            "gpt_calls": self.gpt_calls,
            "matrix_calls": self.matrix_calls,
        }

    def debug(self, version: int = 1) -> Dict[str, int]:
        return {
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "version": version,
        }
