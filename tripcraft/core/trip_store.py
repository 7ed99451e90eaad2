"""
Trip Store - Loads and persists the trip aggregate

This module handles:
- Trip and intent creation
- Loading a fully expanded trip (days, items, alternatives, transfers, hotels)
- The draft -> active transition, guarded by a run token so that only one
  generation run can hold a trip at a time
"""

import uuid
from typing import Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from tripcraft.core.datetime_utils import utc_now
from tripcraft.core.exceptions import (
    GenerationInProgressError,
    InvalidTripStateError,
    NotFoundError,
)
from tripcraft.core.logging_config import get_logger
from tripcraft.models.db_models import TimelineItem, Trip, TripDay, TripIntent
from tripcraft.models.schemas import Notice, TripIntentData, TripStatus, TripView

logger = get_logger(__name__)


def trip_view_options():
    """Eager-load options for the whole trip aggregate"""
    return (
        selectinload(Trip.intent),
        selectinload(Trip.days)
        .selectinload(TripDay.items)
        .selectinload(TimelineItem.alternatives),
        selectinload(Trip.days).selectinload(TripDay.transfers),
        selectinload(Trip.hotels),
    )


class TripStore:
    """Persistence for trips and the generation state machine"""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def create_trip(
        self,
        user_id: str,
        intent: TripIntentData,
        title: Optional[str] = None,
        locale: str = "en-US",
    ) -> str:
        """Create a draft trip together with its intent"""
        city = intent.main_destination.city
        async with self.session_factory() as session:
            trip = Trip(
                user_id=user_id,
                title=title or f"Trip to {city}",
                status=TripStatus.DRAFT.value,
                locale=locale,
                run_id=str(uuid.uuid4()),
            )
            intent_fields = intent.model_dump(mode="json")
            intent_fields.update(start_date=intent.start_date, end_date=intent.end_date)
            trip.intent = TripIntent(**intent_fields)
            session.add(trip)
            await session.commit()
            logger.info(f"Created draft trip {trip.id} ({trip.title}) for user {user_id}")
            return trip.id

    async def get_trip(self, session: AsyncSession, trip_id: str, full: bool = False) -> Trip:
        query = select(Trip).where(Trip.id == trip_id)
        if full:
            query = query.options(*trip_view_options())
        else:
            query = query.options(selectinload(Trip.intent))
        result = await session.execute(query)
        trip = result.scalar_one_or_none()
        if trip is None:
            raise NotFoundError("Trip", trip_id)
        return trip

    async def load_trip_view(self, trip_id: str) -> TripView:
        """The fully expanded trip, days by day_number and items by order_index"""
        async with self.session_factory() as session:
            trip = await self.get_trip(session, trip_id, full=True)
            return TripView.model_validate(trip)

    async def get_intent(self, trip_id: str) -> TripIntentData:
        async with self.session_factory() as session:
            trip = await self.get_trip(session, trip_id)
            if trip.intent is None:
                raise NotFoundError("TripIntent", trip_id)
            return TripIntentData.model_validate(trip.intent)

    async def claim_generation(self, trip_id: str) -> str:
        """
        Atomically take the generation claim on a draft trip.

        Returns the run token. Raises GenerationInProgressError when another
        run holds the trip and InvalidTripStateError when it is already active.
        """
        token = str(uuid.uuid4())
        async with self.session_factory() as session:
            result = await session.execute(
                update(Trip)
                .where(
                    Trip.id == trip_id,
                    Trip.status == TripStatus.DRAFT.value,
                    Trip.run_token.is_(None),
                )
                .values(run_token=token, run_id=str(uuid.uuid4()), updated_at=utc_now())
            )
            await session.commit()

            if result.rowcount == 1:
                logger.info(f"Claimed trip {trip_id} for generation")
                return token

            trip = await self.get_trip(session, trip_id)
            if trip.status != TripStatus.DRAFT.value:
                raise InvalidTripStateError(
                    f"Trip {trip_id} is {trip.status}; only draft trips can be generated"
                )
            raise GenerationInProgressError(f"Trip {trip_id} is already being generated")

    async def release_generation(self, trip_id: str, token: str) -> None:
        """Drop the claim after a failed run; the trip stays draft"""
        async with self.session_factory() as session:
            await session.execute(
                update(Trip)
                .where(Trip.id == trip_id, Trip.run_token == token)
                .values(run_token=None, updated_at=utc_now())
            )
            await session.commit()
        logger.info(f"Released generation claim on trip {trip_id}")

    async def complete_generation(
        self,
        trip_id: str,
        token: str,
        sources: Dict[str, int],
        debug: Dict[str, int],
    ) -> None:
        """draft -> active, storing run telemetry"""
        now = utc_now()
        async with self.session_factory() as session:
            result = await session.execute(
                update(Trip)
                .where(Trip.id == trip_id, Trip.run_token == token)
                .values(
                    status=TripStatus.ACTIVE.value,
                    run_token=None,
                    sources=sources,
                    debug=debug,
                    generated_at=now,
                    updated_at=now,
                )
            )
            await session.commit()
        if result.rowcount != 1:
            raise InvalidTripStateError(f"Generation claim on trip {trip_id} was lost")
        logger.info(f"Trip {trip_id} is now active")

    async def store_report(
        self, trip_id: str, notices: List[Notice], hints: List[Notice]
    ) -> None:
        async with self.session_factory() as session:
            trip = await self.get_trip(session, trip_id)
            trip.notices = [notice.model_dump() for notice in notices]
            trip.hints = [hint.model_dump() for hint in hints]
            await session.commit()
