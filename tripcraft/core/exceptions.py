"""
Error taxonomy for the itinerary pipeline.

Configuration errors are fatal and never retried. Upstream provider errors
are recoverable where a component declares a fallback. Parse errors on model
output are fatal only for schedule generation.
"""


class TripCraftError(Exception):
    """Base class for pipeline errors"""

    pass


class ConfigurationError(TripCraftError):
    """Raised when provider credentials or settings are missing"""

    pass


class UpstreamProviderError(TripCraftError):
    """Raised when a place, route or model call fails or returns malformed data"""

    def __init__(self, provider: str, message: str, transient: bool = False):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.transient = transient


class LLMStructuredOutputError(TripCraftError):
    """Exception raised when structured output cannot be parsed"""

    def __init__(self, message: str, raw_content: str = ""):
        super().__init__(message)
        self.raw_content = raw_content


class ItineraryParseError(TripCraftError):
    """The day-by-day schedule returned by the model could not be used"""

    pass


class NotFoundError(TripCraftError):
    """Trip, day or item missing at lookup"""

    def __init__(self, entity: str, identifier):
        super().__init__(f"{entity} not found: {identifier}")
        self.entity = entity
        self.identifier = identifier


class InvalidTripStateError(TripCraftError):
    """The trip is not in a state that allows the requested transition"""

    pass


class GenerationInProgressError(InvalidTripStateError):
    """Another generation run already holds the trip"""

    pass
