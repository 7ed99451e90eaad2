"""
API Layer Schemas - Request and response bodies for the HTTP surface

Results of pipeline operations are returned as the service models from
tripcraft.models.schemas; this module only adds what the HTTP contract needs
on top of them.
"""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, Field

from tripcraft.models.schemas import (
    BudgetBand,
    ConversationMessage,
    HotelView,
    Pace,
    TransferView,
)


class IntakeRequest(BaseModel):
    """One conversational turn plus everything said before it"""
    messages: List[ConversationMessage] = Field(..., min_length=1)
    user_id: str


class EditRequest(BaseModel):
    edit_request: str = Field(..., min_length=1)


class RankHotelsRequest(BaseModel):
    budget_band: Optional[BudgetBand] = None


class DurationEstimateBody(BaseModel):
    place_id: str
    place_name: str
    place_type: str = "tourist_attraction"
    pace: Pace = Pace.MODERATE
    interests: List[str] = []
    date: date
    website_url: Optional[str] = None


class LogisticsResponse(BaseModel):
    day_id: str
    day_number: int
    transfers: List[TransferView]


class RankHotelsResponse(BaseModel):
    trip_id: str
    hotels: List[HotelView]
    selected: Optional[HotelView] = None
