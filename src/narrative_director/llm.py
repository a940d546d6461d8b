"""Generation service abstraction.

Supports multiple backends:
- Ollama (local)
- Hugging Face Inference API (cloud, OpenAI-compatible router)

Everything above this module talks to the ``GenerationService`` protocol,
so tests and alternative backends can stand in for ``LLMClient``.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

import httpx

from .config import Settings, get_settings
from .exceptions import GenerationServiceError, GenerationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class GenerationRequest:
    """One call to the generation service."""

    system: str
    prompt: str
    output_schema: dict[str, Any] = field(default_factory=dict)
    temperature: float = 0.8
    max_tokens: int = 1500
    purpose: str = "generate"  # generate, revise, variation, judge, summarize

    def render(self) -> str:
        """Flatten the request into a single prompt for completion-style backends."""
        parts = [self.system.strip(), self.prompt.strip()]
        if self.output_schema:
            parts.append(
                "Respond with a single JSON object matching this schema:\n"
                + json.dumps(self.output_schema, indent=2)
            )
        return "\n\n".join(p for p in parts if p)


class GenerationService(Protocol):
    """Anything that turns a GenerationRequest into raw text."""

    async def complete(self, request: GenerationRequest) -> str: ...


class LLMClient:
    """Unified async LLM client supporting multiple providers.

    Usage:
        client = LLMClient()  # Uses config defaults
        text = await client.complete(GenerationRequest(system=..., prompt=...))

        # Or specify provider
        client = LLMClient(provider="huggingface")
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize LLM client.

        Args:
            provider: "ollama" or "huggingface" (default from config)
            model: Model name (default from config)
            settings: Settings override (default: cached settings)
        """
        self.settings = settings or get_settings()
        self.provider = provider or self.settings.llm_provider
        self.timeout = self.settings.generation_timeout

        if model:
            self.model = model
        elif self.provider == "huggingface":
            self.model = self.settings.hf_model
        else:
            self.model = self.settings.ollama_model

    async def complete(self, request: GenerationRequest) -> str:
        """Generate text for a request.

        Raises:
            GenerationTimeoutError: The backend did not answer in time.
            GenerationServiceError: Transport failure or non-success status.
        """
        logger.debug(
            "%s call via %s (temperature=%.2f)", request.purpose, self.provider, request.temperature
        )
        if self.provider == "huggingface":
            if not self.settings.hf_api_key:
                raise GenerationServiceError("HF API key not set (ND_HF_API_KEY)")
            return await self._complete_hf(request)
        return await self._complete_ollama(request)

    async def _complete_ollama(self, request: GenerationRequest) -> str:
        """Generate using Ollama."""
        payload = {
            "model": self.model,
            "prompt": request.render(),
            "stream": False,
            "options": {
                "temperature": request.temperature,
                "num_predict": request.max_tokens,
            },
        }
        if request.output_schema:
            payload["format"] = "json"
        response = await self._post(f"{self.settings.ollama_base_url}/api/generate", payload)
        return response.json().get("response", "").strip()

    async def _complete_hf(self, request: GenerationRequest) -> str:
        """Generate using the Hugging Face chat completions router."""
        headers = {
            "Authorization": f"Bearer {self.settings.hf_api_key}",
            "Content-Type": "application/json",
        }
        user_prompt = request.prompt
        if request.output_schema:
            user_prompt += "\n\nRespond with a single JSON object matching this schema:\n" + json.dumps(
                request.output_schema
            )
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        response = await self._post(self.settings.hf_api_url, payload, headers=headers)
        result = response.json()

        # OpenAI-compatible response format
        if isinstance(result, dict) and result.get("choices"):
            return result["choices"][0].get("message", {}).get("content", "").strip()
        # Legacy format
        if isinstance(result, list) and result:
            return result[0].get("generated_text", "").strip()
        if isinstance(result, dict) and "generated_text" in result:
            return result["generated_text"].strip()
        raise GenerationServiceError("Unrecognized response shape from HF API")

    async def _post(self, url: str, payload: dict, headers: Optional[dict] = None) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(f"{self.provider} timed out after {self.timeout}s") from e
        except httpx.RequestError as e:
            raise GenerationServiceError(f"{self.provider} request failed: {e}") from e

        if response.status_code == 503:
            # HF returns 503 while a cold model loads; the caller falls back
            raise GenerationServiceError(f"{self.provider} model loading (503)")
        if response.status_code != 200:
            raise GenerationServiceError(
                f"{self.provider} error {response.status_code}: {response.text[:200]}"
            )
        return response

    async def is_available(self) -> bool:
        """Check if the LLM backend is reachable."""
        if self.provider == "huggingface":
            return bool(self.settings.hf_api_key)
        try:
            async with httpx.AsyncClient(timeout=5.0) as client:
                response = await client.get(f"{self.settings.ollama_base_url}/api/tags")
            return response.status_code == 200
        except httpx.RequestError:
            return False


def extract_json(response: str) -> list | dict | None:
    """Extract JSON from an LLM response.

    Handles markdown code blocks and stray text around the payload.

    Args:
        response: Raw LLM response

    Returns:
        Parsed JSON or None
    """
    if not response:
        return None

    # Try to extract from code block
    if "```" in response:
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", response)
        if match:
            response = match.group(1)

    # Try direct parse
    try:
        return json.loads(response)
    except json.JSONDecodeError:
        pass

    # Objects first: generated content is always an object at the top level
    obj_match = re.search(r"\{[\s\S]*\}", response)
    if obj_match:
        try:
            return json.loads(obj_match.group(0))
        except json.JSONDecodeError:
            pass

    array_match = re.search(r"\[[\s\S]*\]", response)
    if array_match:
        try:
            return json.loads(array_match.group(0))
        except json.JSONDecodeError:
            pass

    return None


class OfflineService:
    """Service that always fails, so every caller takes its templated path."""

    async def complete(self, request: GenerationRequest) -> str:
        raise GenerationServiceError(f"offline: no model for {request.purpose}")
