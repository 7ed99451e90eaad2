"""
LLM Service Module - Chat and structured completion

OpenAI, Claude and DeepSeek sit behind one `chat_completion` interface.
Pipeline steps that need data rather than prose use `structured_completion`,
which extracts JSON from the reply and checks it against a small JSON-schema
subset (type, required, enum, minimum/maximum, minItems/maxItems).
"""

import json
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import anthropic
import openai
from pydantic import BaseModel

from tripcraft.core.config import settings
from tripcraft.core.exceptions import (
    ConfigurationError,
    LLMStructuredOutputError,
    UpstreamProviderError,
)
from tripcraft.core.logging_config import get_logger
from tripcraft.core.retry import call_with_retry, llm_retry_policy

logger = get_logger(__name__)

Messages = List[Dict[str, str]]

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

_JSON_TYPES: Dict[str, Tuple[type, ...]] = {
    "string": (str,),
    "number": (int, float),
    "integer": (int,),
    "boolean": (bool,),
    "array": (list,),
    "object": (dict,),
}


class LLMResponse(BaseModel):
    """One completion, normalised across providers"""

    content: str
    model: str
    usage: Optional[Dict[str, int]] = None
    finish_reason: Optional[str] = None
    provider: Optional[str] = None


class LLMConfig(BaseModel):
    provider: str = "openai"  # openai, claude, deepseek
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: float = 0.7


def parse_json_payload(content: str) -> Any:
    """
    JSON value from a model reply.

    Markdown fences are ignored. When the reply has prose around the JSON,
    the widest bracketed span that parses is used, trying whichever bracket
    opens first.
    """
    text = _FENCE.sub("", content or "").strip()
    try:
        return json.loads(text)
    except json.JSONDecodeError as first_error:
        spans = sorted(
            (text.find(opener), text.rfind(closer))
            for opener, closer in (("[", "]"), ("{", "}"))
            if opener in text
        )
        for start, end in spans:
            if end <= start:
                continue
            try:
                return json.loads(text[start : end + 1])
            except json.JSONDecodeError:
                continue
        raise first_error


def check_schema(data: Any, schema: Dict[str, Any]) -> Any:
    """
    Check `data` against the supported schema subset and return it.

    A top-level array schema also accepts a single-key object wrapping the
    array, e.g. {"days": [...]}. Raises ValueError on the first problem.
    """
    if schema.get("type") == "array" and isinstance(data, dict) and len(data) == 1:
        (wrapped,) = data.values()
        if isinstance(wrapped, list):
            data = wrapped
    _check_value(data, schema, "response")
    return data


def _check_value(value: Any, schema: Dict[str, Any], path: str, top: bool = True) -> None:
    """Type, enum and bounds for any value; fields only at the top level"""
    expected = schema.get("type")
    if expected in _JSON_TYPES:
        is_bool = isinstance(value, bool)
        if not isinstance(value, _JSON_TYPES[expected]) or (
            is_bool and expected in ("number", "integer")
        ):
            raise ValueError(f"{path} must be of type {expected}")

    if "enum" in schema and value not in schema["enum"]:
        raise ValueError(f"{path} must be one of {schema['enum']}")

    if expected in ("number", "integer"):
        if "minimum" in schema and value < schema["minimum"]:
            raise ValueError(f"{path} must be >= {schema['minimum']}")
        if "maximum" in schema and value > schema["maximum"]:
            raise ValueError(f"{path} must be <= {schema['maximum']}")

    if expected == "array":
        if len(value) < schema.get("minItems", 0):
            raise ValueError(f"{path} needs at least {schema['minItems']} items")
        if "maxItems" in schema and len(value) > schema["maxItems"]:
            raise ValueError(f"{path} allows at most {schema['maxItems']} items")
        item_schema = schema.get("items", {})
        if top and item_schema.get("type") == "object":
            for index, item in enumerate(value):
                _check_value(item, item_schema, f"{path}[{index}]")

    # Nested structures are left to the caller's pydantic models
    if expected == "object" and top:
        for field in schema.get("required", []):
            if field not in value:
                raise ValueError(f"Missing required field: {field}")
        for field, field_schema in schema.get("properties", {}).items():
            if value.get(field) is not None:
                _check_value(value[field], field_schema, field, top=False)


def _with_instruction(messages: Messages, instruction: str) -> Messages:
    """Copy of `messages` with `instruction` appended to the trailing user turn"""
    updated = [dict(message) for message in messages]
    if updated and updated[-1].get("role") == "user":
        updated[-1]["content"] = f"{updated[-1]['content']}\n\n{instruction}"
    else:
        updated.append({"role": "user", "content": instruction})
    return updated


class BaseLLMService(ABC):
    """Provider-independent completion interface"""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.model = config.model

    @abstractmethod
    async def chat_completion(self, messages: Messages, **kwargs) -> LLMResponse:
        pass

    async def structured_completion(
        self,
        messages: Messages,
        response_schema: Dict[str, Any],
        attempts: int = 1,
        **kwargs,
    ) -> Any:
        """
        JSON reply checked against `response_schema`.

        Each failed attempt after the first tells the model what was wrong.
        Raises LLMStructuredOutputError when no attempt is usable; callers
        decide whether that is fatal or has a fallback.
        """
        shape = "array" if response_schema.get("type") == "array" else "object"
        prompt = _with_instruction(
            messages,
            f"Respond with a single JSON {shape} matching this schema, "
            f"without markdown fences or commentary:\n{json.dumps(response_schema)}",
        )
        kwargs.setdefault("temperature", 0.2)

        content = ""
        problem = ""
        for attempt in range(1, max(attempts, 1) + 1):
            content = (await self.chat_completion(prompt, **kwargs)).content
            try:
                return check_schema(parse_json_payload(content), response_schema)
            except ValueError as e:  # JSONDecodeError is a ValueError
                problem = str(e)
                logger.warning(f"Structured reply {attempt}/{attempts} unusable: {problem}")
                prompt = _with_instruction(
                    prompt, f"Your previous reply was invalid ({problem}). Return corrected JSON only."
                )

        raise LLMStructuredOutputError(
            f"Model output did not match the expected JSON shape: {problem}",
            raw_content=content,
        )


def _transient(*error_types: type) -> Callable[[BaseException], bool]:
    return lambda exc: isinstance(exc, error_types)


class OpenAIService(BaseLLMService):
    """OpenAI chat completions; subclasses point the client at compatible APIs"""

    provider_name = "openai"
    base_url: Optional[str] = None
    is_transient = staticmethod(
        _transient(openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError)
    )

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        if not config.api_key:
            raise ConfigurationError(f"An API key is required for {self.provider_name}")
        self.client = openai.AsyncOpenAI(api_key=config.api_key, base_url=self.base_url)
        logger.info(f"{self.provider_name} client ready (model {self.model})")

    async def chat_completion(self, messages: Messages, **kwargs) -> LLMResponse:
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": self.config.temperature,
        }
        if self.config.max_tokens:
            params["max_tokens"] = self.config.max_tokens
        params.update(kwargs)

        try:
            response = await call_with_retry(
                self.client.chat.completions.create,
                policy=llm_retry_policy(),
                retry_on=self.is_transient,
                operation=f"{self.provider_name} chat completion",
                **params,
            )
        except openai.AuthenticationError as e:
            raise ConfigurationError(f"{self.provider_name} rejected the API key: {e}") from e
        except openai.OpenAIError as e:
            logger.error(f"{self.provider_name} completion failed: {e}")
            raise UpstreamProviderError(self.provider_name, str(e)) from e

        choice = response.choices[0]
        usage = response.usage
        logger.debug(
            f"{self.provider_name} completion used {usage.total_tokens if usage else '?'} tokens"
        )
        return LLMResponse(
            content=choice.message.content or "",
            model=response.model,
            usage={
                "prompt_tokens": usage.prompt_tokens,
                "completion_tokens": usage.completion_tokens,
                "total_tokens": usage.total_tokens,
            }
            if usage
            else None,
            finish_reason=choice.finish_reason,
            provider=self.provider_name,
        )


class DeepSeekService(OpenAIService):
    provider_name = "deepseek"
    base_url = "https://api.deepseek.com"


class ClaudeService(BaseLLMService):
    """Anthropic messages API; system turns become the `system` parameter"""

    is_transient = staticmethod(
        _transient(anthropic.RateLimitError, anthropic.APITimeoutError, anthropic.APIConnectionError)
    )

    def __init__(self, config: LLMConfig):
        super().__init__(config)
        if not config.api_key:
            raise ConfigurationError("An API key is required for claude")
        self.client = anthropic.AsyncAnthropic(api_key=config.api_key)
        logger.info(f"claude client ready (model {self.model})")

    async def chat_completion(self, messages: Messages, **kwargs) -> LLMResponse:
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        params: Dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": m.get("role", "user"), "content": m.get("content", "")}
                for m in messages
                if m.get("role") != "system"
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens or settings.LLM_MAX_TOKENS,
        }
        if system:
            params["system"] = system
        params.update(kwargs)

        try:
            response = await call_with_retry(
                self.client.messages.create,
                policy=llm_retry_policy(),
                retry_on=self.is_transient,
                operation="claude chat completion",
                **params,
            )
        except anthropic.AuthenticationError as e:
            raise ConfigurationError(f"claude rejected the API key: {e}") from e
        except anthropic.AnthropicError as e:
            logger.error(f"claude completion failed: {e}")
            raise UpstreamProviderError("claude", str(e)) from e

        usage = response.usage
        return LLMResponse(
            content="".join(block.text for block in response.content if block.type == "text"),
            model=response.model,
            usage={
                "prompt_tokens": usage.input_tokens,
                "completion_tokens": usage.output_tokens,
                "total_tokens": usage.input_tokens + usage.output_tokens,
            }
            if usage
            else None,
            finish_reason=response.stop_reason,
            provider="claude",
        )


class LLMServiceFactory:
    """Builds the configured provider's service"""

    SERVICES = {
        "openai": (OpenAIService, "gpt-4o-mini", "OPENAI_API_KEY"),
        "claude": (ClaudeService, "claude-3-5-sonnet-latest", "ANTHROPIC_API_KEY"),
        "deepseek": (DeepSeekService, "deepseek-chat", "DEEPSEEK_API_KEY"),
    }

    @classmethod
    def create_service(cls, config: Optional[LLMConfig] = None) -> BaseLLMService:
        config = config or cls.get_default_config()
        entry = cls.SERVICES.get(config.provider.lower())
        if entry is None:
            raise ConfigurationError(
                f"Unknown LLM provider {config.provider!r}; expected one of {sorted(cls.SERVICES)}"
            )
        return entry[0](config)

    @classmethod
    def get_default_config(cls) -> LLMConfig:
        """Config from settings; LLM_API_KEY wins over the provider's own key"""
        provider = settings.LLM_PROVIDER.lower()
        _, default_model, key_setting = cls.SERVICES.get(provider, cls.SERVICES["openai"])
        return LLMConfig(
            provider=provider,
            model=settings.LLM_MODEL or default_model,
            api_key=settings.LLM_API_KEY or getattr(settings, key_setting),
            max_tokens=settings.LLM_MAX_TOKENS,
            temperature=settings.LLM_TEMPERATURE,
        )


# Global LLM Service Instance
llm_service: Optional[BaseLLMService] = None


def get_llm_service(config: Optional[LLMConfig] = None) -> BaseLLMService:
    global llm_service
    if llm_service is None:
        llm_service = LLMServiceFactory.create_service(config)
        logger.info(f"Using {llm_service.config.provider} model {llm_service.model}")
    return llm_service


def set_llm_service(service: Optional[BaseLLMService]) -> None:
    """Install a ready-made service instance (or clear it with None)"""
    global llm_service
    llm_service = service
