"""
Validator - Deterministic rule checks over a generated itinerary

`validate_itinerary` is pure: it reads a fully populated trip and returns a
report. Notices are problems worth showing to the traveler; hints are softer
observations. Neither is an error.
"""

from typing import Dict, List, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from tripcraft.core.config import settings
from tripcraft.core.logging_config import get_logger
from tripcraft.core.trip_store import TripStore
from tripcraft.models.schemas import (
    ItemKind,
    Notice,
    TimelineItemView,
    TripDayView,
    TripView,
    ValidationReport,
)

logger = get_logger(__name__)

MAX_ITEM_MINUTES = 480
MAX_DAY_MINUTES = 960
MAX_TRANSFER_MINUTES = 60
MIN_MEALS_PER_DAY = 2
# Counted for items that carry no duration range
FALLBACK_ITEM_MINUTES = 120

MESSAGES: Dict[str, Dict[str, str]] = {
    "pt-BR": {
        "day_prefix": "Dia {day_number}: ",
        "item_too_long": "{name}: duração muito longa ({hours}h)",
        "missing_transfer": "Falta tempo de deslocamento entre {origin} e {destination}",
        "long_transfer": "Deslocamento longo ({eta_min}min) entre {origin} e {destination}",
        "day_too_long": "Dia muito longo ({hours}h total) - considere reduzir atividades",
        "few_meals": "poucas refeições planejadas ({count})",
        "missing_place_id": "{name} sem place_id",
        "no_hotel_selected": "Nenhum hotel selecionado",
        "summary_ok": "Itinerário validado com sucesso",
        "summary_notices": "{count} avisos encontrados",
    },
    "en-US": {
        "day_prefix": "Day {day_number}: ",
        "item_too_long": "{name}: duration too long ({hours}h)",
        "missing_transfer": "Missing travel time between {origin} and {destination}",
        "long_transfer": "Long transfer ({eta_min}min) between {origin} and {destination}",
        "day_too_long": "Day too long ({hours}h total) - consider removing activities",
        "few_meals": "few meals planned ({count})",
        "missing_place_id": "{name} has no place_id",
        "no_hotel_selected": "No hotel selected",
        "summary_ok": "Itinerary validated successfully",
        "summary_notices": "{count} notices found",
    },
}

DEFAULT_LOCALE = "pt-BR"


def _catalogue(locale: Optional[str]) -> Dict[str, str]:
    return MESSAGES.get(locale or "", MESSAGES[DEFAULT_LOCALE])


def _hours(minutes: int) -> int:
    return int(minutes / 60 + 0.5)


def _item_label(item: TimelineItemView) -> str:
    return item.place_name or item.kind


def validate_day(day: TripDayView, locale: Optional[str] = None) -> List[Notice]:
    """All notices for one day, in rule order"""
    messages = _catalogue(locale)
    items = sorted(day.items, key=lambda item: item.order_index)
    transfers = {(t.from_place_id, t.to_place_id): t for t in day.transfers}
    notices: List[Notice] = []

    def add(code: str, **values):
        message = messages["day_prefix"].format(day_number=day.day_number) + messages[code].format(**values)
        notices.append(Notice(code=code, day_number=day.day_number, message=message))

    running_minutes = 0
    for index, item in enumerate(items):
        minutes = item.upper_bound_minutes(FALLBACK_ITEM_MINUTES)
        if minutes > MAX_ITEM_MINUTES:
            add("item_too_long", name=_item_label(item), hours=_hours(minutes))

        if index + 1 < len(items):
            next_item = items[index + 1]
            transfer = transfers.get((item.place_id, next_item.place_id))
            if transfer is None:
                add("missing_transfer", origin=item.place_name, destination=next_item.place_name)
            elif transfer.eta_min is not None and transfer.eta_min > MAX_TRANSFER_MINUTES:
                add(
                    "long_transfer",
                    eta_min=transfer.eta_min,
                    origin=item.place_name,
                    destination=next_item.place_name,
                )

        # Transfer time is not part of the running total
        running_minutes += minutes

    if running_minutes > MAX_DAY_MINUTES:
        add("day_too_long", hours=_hours(running_minutes))

    meal_count = sum(1 for item in items if item.kind == ItemKind.MEAL.value)
    if meal_count < MIN_MEALS_PER_DAY:
        add("few_meals", count=meal_count)

    for item in items:
        if item.kind == ItemKind.ACTIVITY.value and not item.place_id:
            add("missing_place_id", name=item.place_name)

    return notices


def validate_itinerary(trip: TripView, locale: Optional[str] = None) -> ValidationReport:
    """
    Check every day of a trip and the hotel selection.

    Messages use `locale` when given, then the trip's own locale, then
    VALIDATION_LOCALE.
    """
    locale = locale or trip.locale or settings.VALIDATION_LOCALE
    messages = _catalogue(locale)

    notices: List[Notice] = []
    for day in sorted(trip.days, key=lambda d: d.day_number):
        notices.extend(validate_day(day, locale))

    hints: List[Notice] = []
    if not any(hotel.is_selected for hotel in trip.hotels):
        hints.append(Notice(code="no_hotel_selected", message=messages["no_hotel_selected"]))

    summary = (
        messages["summary_ok"]
        if not notices
        else messages["summary_notices"].format(count=len(notices))
    )
    return ValidationReport(valid=not notices, notices=notices, hints=hints, summary=summary)


class Validator:
    """Validates a stored trip and records the report on it"""

    def __init__(self, session_factory: async_sessionmaker, locale: Optional[str] = None):
        self.store = TripStore(session_factory)
        self.locale = locale

    async def validate_trip(self, trip_id: str) -> ValidationReport:
        trip = await self.store.load_trip_view(trip_id)
        report = validate_itinerary(trip, self.locale)
        await self.store.store_report(trip_id, report.notices, report.hints)
        logger.info(
            f"Validation complete for trip {trip_id}: "
            f"{len(report.notices)} notices, {len(report.hints)} hints"
        )
        return report
