"""
Model invocation backends.

Each backend turns a PromptPayload into raw response text and classifies
failures into the pipeline's error kinds:

- GeminiStructuredBackend: Gemini with ``response_schema`` (JSON guaranteed)
- GeminiTextBackend: Gemini returning free text (extraction required)
- ApiFreeLLMBackend: the ApiFreeLLM chat endpoint over HTTP

``supports_structured_output`` tells the orchestrator whether the response
can be parsed directly or must go through payload extraction.
"""

import json
import logging
import math
import re
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from app.config import Settings
from app.services.errors import (
    ModelInvocationError,
    ModelTimeoutError,
    RateLimitedError,
)
from app.services.prompt_builder import PromptPayload
from app.utils.retry import extract_status_code

logger = logging.getLogger(__name__)

# Used when the provider signals a rate limit without a delay
DEFAULT_RETRY_AFTER_SECONDS = 60

_DELAY_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*s")


def parse_retry_after(value: Any, default: int = DEFAULT_RETRY_AFTER_SECONDS) -> int:
    """
    Normalise a retry delay into whole seconds.

    Accepts integers, numeric strings and duration strings such as ``"12s"``
    or ``"12.5s"`` (rounded up).
    """
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return max(0, math.ceil(value))

    text = str(value).strip()
    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None and math.isfinite(seconds):
        return max(0, math.ceil(seconds))
    match = _DELAY_PATTERN.search(text)
    if match:
        return max(0, math.ceil(float(match.group(1))))
    return default


def _find_retry_delay(details: Any) -> Optional[str]:
    """Search a google.rpc error payload for RetryInfo.retryDelay."""
    if isinstance(details, dict):
        if "retryDelay" in details:
            return str(details["retryDelay"])
        for value in details.values():
            found = _find_retry_delay(value)
            if found is not None:
                return found
    elif isinstance(details, list):
        for item in details:
            found = _find_retry_delay(item)
            if found is not None:
                return found
    return None


class ModelBackend(ABC):
    """Boundary to an external text-generation model."""

    name: str = "backend"
    supports_structured_output: bool = False

    @abstractmethod
    async def generate(self, payload: PromptPayload) -> str:
        """
        Send one request and return the raw response text.

        Raises:
            RateLimitedError: Provider asked to retry later
            ModelTimeoutError: Provider did not answer in time
            ModelInvocationError: Any other transport or provider failure
        """


class GeminiBackend(ModelBackend):
    """Shared Gemini invocation; subclasses choose the response style."""

    def __init__(self, client: genai.Client, model: str, temperature: float = 0.7):
        self.client = client
        self.model = model
        self.temperature = temperature

    def build_config(self, payload: PromptPayload) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=payload.system_instruction,
            temperature=self.temperature,
        )

    async def generate(self, payload: PromptPayload) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=payload.user_prompt,
                config=self.build_config(payload),
            )
        except genai_errors.APIError as e:
            raise self._classify(e) from e
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(f"Tempo esgotado aguardando o Gemini: {e}") from e
        except httpx.HTTPError as e:
            raise ModelInvocationError(f"Erro de rede ao chamar o Gemini: {e}") from e
        except Exception as e:
            raise ModelInvocationError(f"Erro da API Gemini: {e}") from e

        text = response.text
        if text is None:
            raise ModelInvocationError("Gemini API returned empty response")
        return text

    @staticmethod
    def _classify(error: genai_errors.APIError) -> Exception:
        status_code = extract_status_code(error)
        if status_code == 429 or getattr(error, "status", None) == "RESOURCE_EXHAUSTED":
            delay = _find_retry_delay(getattr(error, "details", None))
            return RateLimitedError(parse_retry_after(delay))
        if status_code in (408, 504):
            return ModelTimeoutError(f"Tempo esgotado no Gemini: {error}", status_code=status_code)
        return ModelInvocationError(f"Erro da API Gemini: {error}", status_code=status_code)


class GeminiStructuredBackend(GeminiBackend):
    name = "gemini_structured"
    supports_structured_output = True

    def build_config(self, payload: PromptPayload) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=payload.system_instruction,
            temperature=self.temperature,
            response_mime_type="application/json",
            response_schema=payload.response_schema,
        )


class GeminiTextBackend(GeminiBackend):
    name = "gemini_text"
    supports_structured_output = False


class ApiFreeLLMBackend(ModelBackend):
    """
    ApiFreeLLM chat endpoint.

    Request: ``{"message": <prompt>}``. Response:
    ``{"status": "success", "response": "..."}`` or
    ``{"status": "rate_limited", "retry_after": 12}`` or
    ``{"status": "error", "error": "..."}``.
    """

    name = "apifreellm"
    supports_structured_output = False

    def __init__(self, url: str, timeout_seconds: float, http_client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self.timeout_seconds = timeout_seconds
        self._http_client = http_client

    async def generate(self, payload: PromptPayload) -> str:
        body = {"message": payload.full_prompt}
        try:
            if self._http_client is not None:
                response = await self._http_client.post(self.url, json=body, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.url, json=body)
        except httpx.TimeoutException as e:
            raise ModelTimeoutError(f"Tempo esgotado aguardando a IA: {e}") from e
        except httpx.HTTPError as e:
            raise ModelInvocationError(f"Erro de rede: {e}") from e
        except Exception as e:
            raise ModelInvocationError(f"Erro ao chamar a IA: {e}") from e

        return self._read_response(response)

    @staticmethod
    def _read_response(response: httpx.Response) -> str:
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            data = None

        if response.status_code == 429 or (isinstance(data, dict) and data.get("status") == "rate_limited"):
            retry_after = None
            if isinstance(data, dict):
                retry_after = data.get("retry_after")
            if retry_after is None:
                retry_after = response.headers.get("Retry-After")
            raise RateLimitedError(parse_retry_after(retry_after))

        if response.status_code >= 400:
            raise ModelInvocationError(
                f"Erro de rede: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )

        if not isinstance(data, dict):
            raise ModelInvocationError("Erro da API: resposta não é um objeto JSON.")

        if data.get("status") != "success":
            raise ModelInvocationError(
                f"Erro da API: {data.get('error') or 'Ocorreu um erro desconhecido.'}"
            )

        text = data.get("response")
        if not isinstance(text, str):
            raise ModelInvocationError("Erro da API: resposta sem texto.")
        return text


def create_model_backend(settings: Settings) -> ModelBackend:
    """Build the backend selected by ``MODEL_BACKEND``."""
    if settings.model_backend == "apifreellm":
        return ApiFreeLLMBackend(settings.apifreellm_url, settings.model_timeout_seconds)

    from app.services.gemini_client import get_gemini_client

    client = get_gemini_client()
    if settings.model_backend == "gemini_text":
        return GeminiTextBackend(client, settings.model_name)
    return GeminiStructuredBackend(client, settings.model_name)
