"""
Relational model of a trip aggregate and the three cache tables.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from tripcraft.core.database import Base
from tripcraft.core.datetime_utils import utc_now
from tripcraft.models.schemas import PlaceData


def generate_id() -> str:
    return str(uuid.uuid4())


class PlaceDataType(TypeDecorator):
    """Stores PlaceData as JSON and always loads it back as a PlaceData instance"""

    impl = JSON
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return PlaceData().model_dump(mode="json", exclude_none=True)
        if isinstance(value, dict):
            value = PlaceData.model_validate(value)
        return value.model_dump(mode="json", exclude_none=True)

    def process_result_value(self, value, dialect):
        if not value:
            return PlaceData()
        return PlaceData.model_validate(value)


class Trip(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=generate_id)
    user_id = Column(String(64), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    status = Column(String(20), nullable=False, default="draft")  # draft, active
    visibility = Column(String(20), default="private")
    locale = Column(String(10), default="en-US")
    run_id = Column(String(36), default=generate_id)
    run_token = Column(String(36), nullable=True)  # held while a generation runs

    notices = Column(JSON, default=list)
    hints = Column(JSON, default=list)
    sources = Column(JSON, default=dict)  # maps_calls, gpt_calls, matrix_calls
    debug = Column(JSON, default=dict)  # cache_hits, cache_misses, version

    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
    generated_at = Column(DateTime, nullable=True)

    # Relationships
    intent = relationship(
        "TripIntent", back_populates="trip", uselist=False, cascade="all, delete-orphan"
    )
    days = relationship(
        "TripDay",
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="TripDay.day_number",
    )
    hotels = relationship(
        "TripHotel",
        back_populates="trip",
        cascade="all, delete-orphan",
        order_by="TripHotel.order_index",
    )


class TripIntent(Base):
    __tablename__ = "trip_intents"

    id = Column(String(36), primary_key=True, default=generate_id)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, unique=True)

    destinations = Column(JSON, nullable=False)  # [{city, country, tzid}]
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    travelers = Column(Integer, default=1)
    budget_band = Column(String(20), default="medium")
    interests = Column(JSON, default=list)
    dietary_restrictions = Column(JSON, default=list)
    accessibility_needs = Column(JSON, default=list)
    pace = Column(String(20), default="moderate")

    created_at = Column(DateTime, default=utc_now)

    trip = relationship("Trip", back_populates="intent")


class TripDay(Base):
    __tablename__ = "trip_days"
    __table_args__ = (UniqueConstraint("trip_id", "day_number", name="uq_trip_day_number"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    day_number = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    city = Column(String(100), nullable=False)
    tzid = Column(String(64), default="UTC")
    summary = Column(Text, nullable=True)

    trip = relationship("Trip", back_populates="days")
    items = relationship(
        "TimelineItem",
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="TimelineItem.order_index",
    )
    transfers = relationship(
        "Transfer",
        back_populates="day",
        cascade="all, delete-orphan",
        order_by="Transfer.order_index",
    )


class TimelineItem(Base):
    __tablename__ = "trip_timeline_items"
    __table_args__ = (UniqueConstraint("day_id", "order_index", name="uq_day_order_index"),)

    id = Column(String(36), primary_key=True, default=generate_id)
    day_id = Column(String(36), ForeignKey("trip_days.id"), nullable=False, index=True)
    slot = Column(String(20), nullable=False)  # morning, afternoon, evening, night
    kind = Column(String(20), nullable=False)  # activity, meal
    meal_type = Column(String(20), nullable=True)
    place_id = Column(String(255), nullable=True)
    place_name = Column(String(255), nullable=True)
    estimated_duration_min = Column(JSON, nullable=True)  # [min, max], order preserved
    duration_source = Column(String(20), nullable=True)  # gpt_estimate, cache, default
    place_data = Column(PlaceDataType, default=PlaceData)
    order_index = Column(Integer, nullable=False)

    confidence = Column(Float, nullable=True)
    assumptions = Column(JSON, default=list)
    risks = Column(JSON, default=list)

    created_at = Column(DateTime, default=utc_now)

    day = relationship("TripDay", back_populates="items")
    alternatives = relationship(
        "Alternative",
        back_populates="item",
        cascade="all, delete-orphan",
        order_by="Alternative.order_index",
    )


class Alternative(Base):
    __tablename__ = "trip_alternatives"

    id = Column(String(36), primary_key=True, default=generate_id)
    timeline_item_id = Column(
        String(36), ForeignKey("trip_timeline_items.id"), nullable=False, index=True
    )
    place_id = Column(String(255), nullable=False)
    place_name = Column(String(255), nullable=False)
    order_index = Column(Integer, nullable=False)
    place_data = Column(PlaceDataType, default=PlaceData)  # rating, user_ratings_total, address

    item = relationship("TimelineItem", back_populates="alternatives")


class Transfer(Base):
    __tablename__ = "trip_transfers"
    __table_args__ = (
        UniqueConstraint("day_id", "from_place_id", "to_place_id", name="uq_day_transfer_pair"),
    )

    id = Column(String(36), primary_key=True, default=generate_id)
    day_id = Column(String(36), ForeignKey("trip_days.id"), nullable=False, index=True)
    from_place_id = Column(String(255), nullable=False)
    to_place_id = Column(String(255), nullable=False)
    mode = Column(String(20), default="driving")
    eta_min = Column(Integer, nullable=True)
    polyline = Column(Text, nullable=True)
    order_index = Column(Integer, default=0)

    day = relationship("TripDay", back_populates="transfers")


class TripHotel(Base):
    __tablename__ = "trip_hotels"

    id = Column(String(36), primary_key=True, default=generate_id)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False, index=True)
    place_id = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    address = Column(Text, nullable=True)
    geo = Column(JSON, nullable=True)  # {lat, lng}
    rating = Column(Float, nullable=True)
    user_ratings_total = Column(Integer, nullable=True)
    price_level = Column(Integer, nullable=True)
    phone = Column(String(50), nullable=True)
    website = Column(Text, nullable=True)
    photos = Column(JSON, default=list)
    order_index = Column(Integer, default=0)  # candidate order, breaks score ties

    is_selected = Column(Boolean, default=False)
    score = Column(Float, nullable=True)
    reason = Column(Text, nullable=True)
    distance_to_day_centroid = Column(JSON, default=dict)  # {"day1": minutes}

    created_at = Column(DateTime, default=utc_now)

    trip = relationship("Trip", back_populates="hotels")


# ===== Cache tables =====

class CachePlaceDetails(Base):
    __tablename__ = "cache_place_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    place_id = Column(String(255), nullable=False, unique=True)
    data = Column(JSON, nullable=False)
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class CacheRoute(Base):
    __tablename__ = "cache_routes"
    __table_args__ = (
        UniqueConstraint(
            "origin_place_id", "destination_place_id", "mode", "time_bucket",
            name="uq_cache_route_key",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    origin_place_id = Column(String(255), nullable=False)
    destination_place_id = Column(String(255), nullable=False)
    mode = Column(String(20), nullable=False)
    time_bucket = Column(String(10), nullable=False)
    data = Column(JSON, nullable=False)  # {eta_min, polyline}
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)


class CacheDurationEstimate(Base):
    __tablename__ = "cache_duration_estimates"
    __table_args__ = (
        UniqueConstraint("place_id", "profile_key", "season", name="uq_cache_duration_key"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    place_id = Column(String(255), nullable=False)
    profile_key = Column(String(255), nullable=False)
    season = Column(String(10), nullable=False)
    data = Column(JSON, nullable=False)  # DurationEstimate without source
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now, onupdate=utc_now)
