"""
Intake Endpoints - Conversational front door

Each call carries the whole conversation so far. The response is either a
continuation message or, once enough is known, the id of a new draft trip.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from tripcraft.api.deps import get_intake
from tripcraft.api.errors import to_http_exception
from tripcraft.api.schemas import IntakeRequest
from tripcraft.core.exceptions import TripCraftError
from tripcraft.core.logging_config import get_logger
from tripcraft.models.schemas import IntakeResult
from tripcraft.services.intake import IntakeClassifier

logger = get_logger(__name__)

router = APIRouter()


@router.post("/intake", response_model=IntakeResult)
async def intake_turn(
    request: IntakeRequest, intake: IntakeClassifier = Depends(get_intake)
):
    """Handle one conversational turn"""
    try:
        result = await intake.handle_turn(request.messages, request.user_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TripCraftError as e:
        raise to_http_exception(e)

    if result.trip_id:
        logger.info(f"Intake created trip {result.trip_id} for user {request.user_id}")
    return result
