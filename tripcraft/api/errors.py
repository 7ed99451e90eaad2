"""
Maps pipeline errors onto HTTP responses.
"""

from fastapi import HTTPException, status

from tripcraft.core.exceptions import (
    ConfigurationError,
    InvalidTripStateError,
    ItineraryParseError,
    NotFoundError,
    TripCraftError,
)
from tripcraft.core.logging_config import get_logger

logger = get_logger(__name__)

_STATUS_CODES = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    # Covers GenerationInProgressError too
    (InvalidTripStateError, status.HTTP_409_CONFLICT),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (ItineraryParseError, status.HTTP_502_BAD_GATEWAY),
)


def to_http_exception(error: TripCraftError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if status_code >= 500:
        logger.error(f"{type(error).__name__}: {error}")
    else:
        logger.info(f"{type(error).__name__}: {error}")
    return HTTPException(status_code=status_code, detail=str(error))
