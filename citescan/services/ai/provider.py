"""
OpenAI-compatible analysis provider.

Most hosted models (OpenAI, OpenRouter, LiteLLM proxies, local gateways)
speak the OpenAI chat completions format, so one adapter covers them.
"""

import json
from typing import Any

import openai
import structlog
from openai import AsyncOpenAI

from citescan.core.config import settings
from citescan.core.exceptions import (
    CollaboratorError,
    CollaboratorTimeoutError,
    MalformedResponseError,
    RateLimitedError,
)
from citescan.services.ai.interface import AnalysisService

logger = structlog.get_logger()


class OpenAIAnalysisService(AnalysisService):
    """Analysis collaborator backed by an OpenAI-compatible endpoint."""

    # Maximum tokens to output (prevents runaway generation)
    MAX_OUTPUT_TOKENS = 4096

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        client: AsyncOpenAI | None = None,
    ):
        self._api_url = api_url or settings.ai_api_url
        self._api_key = api_key or settings.ai_api_key or "not-required"
        self._model = model or settings.ai_model
        self._timeout = timeout or settings.ai_timeout
        self._client = client

    @property
    def provider_name(self) -> str:
        return "openai-compatible"

    @property
    def model_name(self) -> str:
        return self._model

    def _get_client(self) -> AsyncOpenAI:
        """Get or create OpenAI client."""
        if self._client is None:
            self._client = AsyncOpenAI(
                base_url=self._api_url,
                api_key=self._api_key,
                timeout=self._timeout,
                max_retries=0,  # Retries belong to the job's retry policy
            )
        return self._client

    async def analyze(self, prompt: str, content: str) -> dict[str, Any]:
        logger.info(
            "ai_analyze_start",
            provider=self.provider_name,
            model=self.model_name,
            content_len=len(content),
        )

        full_prompt = f"{prompt}\n\n---\n\nContent:\n\n{content}"

        try:
            response = await self._get_client().chat.completions.create(
                model=self._model,
                messages=[{"role": "user", "content": full_prompt}],
                response_format={"type": "json_object"},
                max_tokens=self.MAX_OUTPUT_TOKENS,
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(f"Analysis provider rate limited: {e}") from e
        except openai.APITimeoutError as e:
            raise CollaboratorTimeoutError("Analysis provider timed out") from e
        except openai.APIConnectionError as e:
            raise CollaboratorError(f"Analysis provider unreachable: {e}") from e
        except openai.APIStatusError as e:
            raise CollaboratorError(
                f"Analysis provider returned {e.status_code}",
                details={"status_code": e.status_code},
            ) from e

        if not response.choices:
            raise MalformedResponseError("Analysis provider returned no choices")

        response_content = response.choices[0].message.content or ""
        try:
            result = json.loads(response_content)
        except json.JSONDecodeError as e:
            raise MalformedResponseError(
                "Analysis provider returned invalid JSON",
                details={"raw_response": response_content[:500]},
            ) from e
        if not isinstance(result, dict):
            raise MalformedResponseError("Analysis provider returned a non-object JSON value")

        logger.info(
            "ai_analyze_success",
            provider=self.provider_name,
            model=self.model_name,
            total_tokens=response.usage.total_tokens if response.usage else None,
        )
        return result
