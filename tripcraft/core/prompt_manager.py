"""
Prompt Manager - Centralized prompt template management system
"""

from typing import Dict, List, Any
from enum import Enum
from tripcraft.core.logging_config import get_logger

logger = get_logger(__name__)


class PromptType(Enum):
    """Prompt type enumeration"""

    TRIP_INTAKE = "trip_intake"
    DURATION_ESTIMATE = "duration_estimate"
    ITINERARY_SCHEDULE = "itinerary_schedule"
    DAY_SUMMARY = "day_summary"
    ITEM_COPY = "item_copy"
    EDIT_INTENT = "edit_intent"


class _SafeDict(dict):
    """Leaves unknown placeholders readable instead of failing the render"""

    def __missing__(self, key):
        logger.warning(f"Missing template variable '{key}'")
        return "unknown"


class PromptManager:
    """Centralized prompt template manager"""

    def __init__(self):
        self.templates = self._initialize_templates()
        self.schemas = self._initialize_schemas()

    def _initialize_templates(self) -> Dict[str, str]:
        return {
            PromptType.TRIP_INTAKE.value: self._get_trip_intake_template(),
            PromptType.DURATION_ESTIMATE.value: self._get_duration_estimate_template(),
            PromptType.ITINERARY_SCHEDULE.value: self._get_itinerary_schedule_template(),
            PromptType.DAY_SUMMARY.value: self._get_day_summary_template(),
            PromptType.ITEM_COPY.value: self._get_item_copy_template(),
            PromptType.EDIT_INTENT.value: self._get_edit_intent_template(),
        }

    def _initialize_schemas(self) -> Dict[str, Dict[str, Any]]:
        """Initialize JSON schemas for structured outputs"""
        string_list = {"type": "array", "items": {"type": "string"}}
        return {
            PromptType.TRIP_INTAKE.value: {
                "type": "object",
                "properties": {
                    "message": {"type": "string"},
                    "ready_to_create": {"type": "boolean"},
                    "extracted_data": {
                        "type": "object",
                        "properties": {
                            "destinations": {
                                "type": "array",
                                "items": {
                                    "type": "object",
                                    "properties": {
                                        "city": {"type": "string"},
                                        "country": {"type": "string"},
                                    },
                                },
                            },
                            "start_date": {"type": "string"},
                            "end_date": {"type": "string"},
                            "travelers": {"type": "integer", "minimum": 1},
                            "budget_band": {
                                "type": "string",
                                "enum": ["low", "medium", "high", "luxury"],
                            },
                            "interests": string_list,
                            "dietary_restrictions": string_list,
                            "accessibility_needs": string_list,
                            "pace": {
                                "type": "string",
                                "enum": ["relaxed", "moderate", "active"],
                            },
                        },
                    },
                },
                "required": ["message", "ready_to_create"],
            },
            PromptType.DURATION_ESTIMATE.value: {
                "type": "object",
                "properties": {
                    "duration_min": {
                        "type": "array",
                        "items": {"type": "integer"},
                        "minItems": 2,
                        "maxItems": 2,
                    },
                    "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                    "assumptions": string_list,
                    "risks": string_list,
                    "evidence_snippets": string_list,
                    "reasoning": {"type": "string"},
                },
                "required": ["duration_min", "confidence"],
            },
            PromptType.ITINERARY_SCHEDULE.value: {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "day_number": {"type": "integer", "minimum": 1},
                        "date": {"type": "string"},
                        "summary": {"type": "string"},
                        "timeline": {
                            "type": "array",
                            "items": {
                                "type": "object",
                                "properties": {
                                    "slot": {
                                        "type": "string",
                                        "enum": ["morning", "afternoon", "evening", "night"],
                                    },
                                    "kind": {"type": "string", "enum": ["activity", "meal"]},
                                    "meal_type": {"type": "string"},
                                    "place_name": {"type": "string"},
                                    "place_id": {"type": "string"},
                                    "estimated_duration_min": {
                                        "type": "array",
                                        "items": {"type": "integer"},
                                    },
                                },
                                "required": ["slot", "kind", "place_name"],
                            },
                        },
                    },
                    "required": ["day_number", "timeline"],
                },
            },
            PromptType.ITEM_COPY.value: {
                "type": "object",
                "properties": {
                    "description": {"type": "string"},
                    "micro_copy": {"type": "string"},
                    "tip": {"type": "string"},
                },
                "required": ["description", "micro_copy"],
            },
            PromptType.EDIT_INTENT.value: {
                "type": "object",
                "properties": {
                    "action": {"type": "string"},
                    "target_day": {"type": "integer"},
                    "target_slot": {"type": "string"},
                    "item_to_change": {"type": "string"},
                    "new_item": {"type": "string"},
                    "search_query": {"type": "string"},
                    "reasoning": {"type": "string"},
                },
                "required": ["action"],
            },
        }

    def get_prompt(self, prompt_type: PromptType, **kwargs) -> str:
        """
        Render a prompt template.

        Lists are joined with ", ", None renders as "unknown".
        """
        template = self.templates.get(prompt_type.value)
        if not template:
            raise KeyError(f"No prompt template registered for {prompt_type.value}")

        safe_kwargs = _SafeDict()
        for key, value in kwargs.items():
            if value is None:
                safe_kwargs[key] = "unknown"
            elif isinstance(value, (list, tuple)):
                safe_kwargs[key] = ", ".join(str(item) for item in value)
            else:
                safe_kwargs[key] = str(value)

        return template.format_map(safe_kwargs)

    def get_schema(self, prompt_type: PromptType) -> Dict[str, Any]:
        """Get corresponding JSON schema"""
        return self.schemas.get(prompt_type.value, {})

    def get_available_prompts(self) -> List[str]:
        return list(self.templates.keys())

    def _get_trip_intake_template(self) -> str:
        return """
        You are a travel planning assistant. Through natural conversation, gather the
        information needed to plan a trip and extract it as structured data.

        Required before a trip can be created:
        - Destination (city and country)
        - Travel dates (start and end, YYYY-MM-DD)
        - Number of travelers
        - Budget level (low/medium/high/luxury)

        Optional but helpful:
        - Interests (beaches, museums, food, adventure, ...)
        - Dietary restrictions
        - Accessibility needs
        - Pace (relaxed/moderate/active)

        Previous conversation:
        {conversation}

        Set "ready_to_create" to true only when the required information is known.
        "message" is your conversational reply to the traveler.
        """

    def _get_duration_estimate_template(self) -> str:
        return """
        You are a duration estimation expert for tourist activities.

        Estimate how long visitors typically spend at {place_name} ({place_type}), given:
        - Traveler pace: {pace} (relaxed = +30%, moderate = baseline, active = -20%)
        - Season: {season} (affects crowds and weather)
        - Traveler interests: {interests}
        {reference_line}

        Consider queue and entry time, the core experience, optional extensions
        (gift shop, cafe, extra exhibits) and typical visitor patterns.

        "duration_min" is [min_minutes, max_minutes]; "confidence" is between 0 and 1.
        List key assumptions, potential delays as risks, and supporting facts as
        evidence_snippets. Keep "reasoning" brief.
        """

    def _get_itinerary_schedule_template(self) -> str:
        return """
        You are a travel planner. Create a {num_days}-day itinerary for {city},
        starting on {start_date}.

        Trip details:
        - Travelers: {travelers}
        - Budget: {budget_band}
        - Interests: {interests}
        - Pace: {pace}

        Available activities (place_id: name, estimated minutes):
        {activities}

        Available restaurants (place_id: name):
        {restaurants}

        Choose places ONLY from the lists above and copy their place_id exactly.
        Build a balanced schedule for each day:
        - Morning activity (09:00-12:00)
        - Lunch (12:00-14:00)
        - Afternoon activity (14:00-17:00)
        - Dinner (19:00-21:00)
        - Optional evening activity

        Return one entry per day with day_number starting at 1, a short summary and
        an ordered timeline. Meals need a meal_type (breakfast, lunch or dinner).
        estimated_duration_min is [min, max] minutes.
        """

    def _get_day_summary_template(self) -> str:
        return """
        Create a brief, engaging one-sentence summary for Day {day_number} in {city}.
        Activities: {places}
        Keep it under 100 characters, exciting and travel-focused. Reply with the sentence only.
        """

    def _get_item_copy_template(self) -> str:
        return """
        Create engaging micro-copy for this {kind}:
        Name: {place_name}
        Type: {kind_label}
        Time: {slot}
        Context: Day {day_number} in {city}, {country}
        Traveler interests: {interests}

        "description": 2-3 engaging sentences (max 200 characters)
        "micro_copy": short punchy tagline (max 60 characters)
        "tip": quick insider tip (max 100 characters, optional)
        """

    def _get_edit_intent_template(self) -> str:
        return """
        You are a trip editing assistant. Parse the traveler's edit request and identify
        what to change, on which day (null for all days), and what to change it to.

        Edit types: swap, remove, add, extend_duration, move

        Current trip:
        {trip_outline}

        Request: "{edit_request}"

        Fields:
        - action: one of the edit types
        - target_day: day number, or null for all days
        - target_slot: morning, afternoon, evening or night
        - item_to_change: name of the current item
        - new_item: replacement, or null
        - search_query: what to search for when swapping in a new place
        - reasoning: brief explanation
        """


# Global prompt manager instance
prompt_manager = PromptManager()


def get_prompt_manager() -> PromptManager:
    return prompt_manager
