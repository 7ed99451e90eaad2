"""
Cache layer with TTL and versioning for place details, routes and duration estimates.

Entries are upserted on their logical key. An entry whose expires_at is at or
before the current time is a miss: it is never served and never counted as a
hit, and the next write under the same key supersedes it.
"""

import math
from collections import defaultdict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.config import settings
from tripcraft.core.datetime_utils import utc_now
from tripcraft.core.logging_config import get_logger
from tripcraft.models.db_models import CacheDurationEstimate, CachePlaceDetails, CacheRoute
from tripcraft.models.schemas import GeoPoint, PlaceDetails, RunStats

logger = get_logger(__name__)


class CacheKind(str, Enum):
    PLACE_DETAILS = "place_details"
    ROUTE = "route"
    DURATION = "duration"


class PlaceDetailsKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    place_id: str


class RouteKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin_place_id: str
    destination_place_id: str
    mode: str = "driving"
    time_bucket: str


class DurationKey(BaseModel):
    model_config = ConfigDict(frozen=True)

    place_id: str
    profile_key: str
    season: str


CacheKey = Union[PlaceDetailsKey, RouteKey, DurationKey]

_TABLES = {
    CacheKind.PLACE_DETAILS: (CachePlaceDetails, PlaceDetailsKey),
    CacheKind.ROUTE: (CacheRoute, RouteKey),
    CacheKind.DURATION: (CacheDurationEstimate, DurationKey),
}


class CacheEntry(BaseModel):
    kind: CacheKind
    data: Dict[str, Any]
    version: int
    expires_at: datetime


class CacheLayer:
    """Key-value store over the three cache tables"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._hits: Dict[str, int] = defaultdict(int)
        self._misses: Dict[str, int] = defaultdict(int)
        self._conflicts = 0

    def _resolve(self, kind: CacheKind, key: CacheKey):
        model, key_type = _TABLES[CacheKind(kind)]
        if not isinstance(key, key_type):
            raise TypeError(f"{kind.value} cache expects {key_type.__name__}, got {type(key).__name__}")
        return model, key.model_dump()

    async def get(
        self, kind: CacheKind, key: CacheKey, stats: Optional[RunStats] = None
    ) -> Optional[CacheEntry]:
        """Return the live entry for `key`, or None on a miss"""
        model, key_fields = self._resolve(kind, key)

        async with self.session_factory() as session:
            result = await session.execute(select(model).filter_by(**key_fields))
            row = result.scalar_one_or_none()

        if row is None or row.expires_at <= self.clock():
            self._misses[kind.value] += 1
            if stats is not None:
                stats.cache_misses += 1
            return None

        self._hits[kind.value] += 1
        if stats is not None:
            stats.cache_hits += 1
        logger.debug(f"Cache hit {kind.value}: {key_fields}")
        return CacheEntry(kind=kind, data=row.data, version=row.version, expires_at=row.expires_at)

    async def put(
        self, kind: CacheKind, key: CacheKey, value: Dict[str, Any], ttl: timedelta
    ) -> None:
        """Upsert on the logical key; concurrent writers resolve last-write-wins"""
        model, key_fields = self._resolve(kind, key)
        now = self.clock()
        expires_at = now + ttl

        async with self.session_factory() as session:
            result = await session.execute(
                select(model.version).filter_by(**key_fields)
            )
            current_version = result.scalar_one_or_none()

            if current_version is None:
                session.add(
                    model(**key_fields, data=value, version=1, expires_at=expires_at,
                          created_at=now, updated_at=now)
                )
                try:
                    await session.commit()
                    return
                except IntegrityError:
                    # Another writer inserted the same key first
                    await session.rollback()
                    self._record_conflict(kind, key_fields)
                    result = await session.execute(
                        select(model.version).filter_by(**key_fields)
                    )
                    current_version = result.scalar_one()

            key_clauses = [getattr(model, name) == val for name, val in key_fields.items()]
            result = await session.execute(
                update(model)
                .where(*key_clauses, model.version == current_version)
                .values(data=value, version=current_version + 1,
                        expires_at=expires_at, updated_at=now)
            )
            if result.rowcount == 0:
                self._record_conflict(kind, key_fields)
                await session.execute(
                    update(model)
                    .where(*key_clauses)
                    .values(data=value, version=model.version + 1,
                            expires_at=expires_at, updated_at=now)
                )
            await session.commit()

    def _record_conflict(self, kind: CacheKind, key_fields: Dict[str, Any]):
        self._conflicts += 1
        logger.info(f"Concurrent cache write on {kind.value} {key_fields}, last write wins")

    def stats(self) -> Dict[str, Any]:
        return {
            "hits": {kind.value: self._hits[kind.value] for kind in CacheKind},
            "misses": {kind.value: self._misses[kind.value] for kind in CacheKind},
            "conflicts": self._conflicts,
        }

    # ===== Read-through helpers =====

    async def get_place_details(
        self,
        provider,
        place_id: str,
        fields: Optional[List[str]] = None,
        ttl: Optional[timedelta] = None,
        stats: Optional[RunStats] = None,
    ) -> PlaceDetails:
        """Place details from cache, falling back to the provider"""
        key = PlaceDetailsKey(place_id=place_id)
        entry = await self.get(CacheKind.PLACE_DETAILS, key, stats=stats)
        if entry is not None:
            return PlaceDetails.model_validate(entry.data)

        if stats is not None:
            stats.maps_calls += 1
        details = await provider.get_details(place_id, fields)
        await self.put(
            CacheKind.PLACE_DETAILS,
            key,
            details.model_dump(mode="json"),
            ttl or timedelta(days=settings.PLACE_CACHE_TTL_DAYS),
        )
        return details

    async def get_route(
        self,
        provider,
        key: RouteKey,
        origin: GeoPoint,
        destination: GeoPoint,
        include_path: bool = True,
        ttl: Optional[timedelta] = None,
        stats: Optional[RunStats] = None,
    ) -> Dict[str, Any]:
        """
        Route from cache, falling back to the provider.

        Returns {"duration_seconds", "eta_min", "polyline"} where eta_min is
        the duration rounded up to whole minutes.
        """
        entry = await self.get(CacheKind.ROUTE, key, stats=stats)
        if entry is not None:
            return entry.data

        if stats is not None:
            stats.matrix_calls += 1
            if include_path:
                stats.maps_calls += 1
        route = await provider.get_route(origin, destination, key.mode, include_path=include_path)
        data = {
            "duration_seconds": route.duration_seconds,
            "eta_min": math.ceil(route.duration_seconds / 60),
            "polyline": route.path,
        }
        await self.put(
            CacheKind.ROUTE,
            key,
            data,
            ttl or timedelta(days=settings.ROUTE_CACHE_TTL_DAYS),
        )
        return data
