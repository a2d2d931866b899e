"""OpenAI client used by the AI writing tools and BYOK key checks."""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from config import settings
from services.providers.types import GenerationResult, ProviderAuthError, ProviderError

logger = logging.getLogger(__name__)

PROVIDER_NAME = "generation"
OPENAI_MODELS_URL = "https://api.openai.com/v1/models"


def get_openai_client(api_key: str) -> AsyncOpenAI:
    return AsyncOpenAI(api_key=api_key, timeout=float(settings.PROVIDER_TIMEOUT_SECONDS), max_retries=0)


async def generate_text(
    api_key: str,
    messages: List[Dict[str, str]],
    *,
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: int = 2000,
) -> GenerationResult:
    """Run one chat completion with the supplied key."""
    if not api_key:
        raise ProviderError(PROVIDER_NAME, "AI service is not configured.")
    model_name = model or settings.OPENAI_MODEL
    client = get_openai_client(api_key)
    try:
        response = await client.chat.completions.create(
            model=model_name,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
    except openai.AuthenticationError as exc:
        raise ProviderAuthError(PROVIDER_NAME, "OpenAI rejected the API key.", status_code=401) from exc
    except openai.APIStatusError as exc:
        logger.warning("OpenAI API error status=%s: %s", exc.status_code, exc)
        raise ProviderError(PROVIDER_NAME, "AI service unavailable", status_code=exc.status_code) from exc
    except openai.APIError as exc:
        logger.warning("OpenAI API error: %s", exc)
        raise ProviderError(PROVIDER_NAME, "AI service unavailable") from exc
    finally:
        await client.close()

    if not response.choices:
        raise ProviderError(PROVIDER_NAME, "AI service returned no completion")
    content = response.choices[0].message.content or ""
    usage = response.usage.model_dump() if response.usage is not None else {}
    return GenerationResult(content=content.strip(), model=model_name, usage=usage)


async def validate_generation_key(api_key: str) -> bool:
    """List models with the key; anything but HTTP 200 is treated as invalid."""
    try:
        async with httpx.AsyncClient(timeout=httpx.Timeout(float(settings.PROVIDER_TIMEOUT_SECONDS))) as http:
            response = await http.get(OPENAI_MODELS_URL, headers={"Authorization": f"Bearer {api_key}"})
    except httpx.HTTPError as exc:
        logger.warning("OpenAI key validation failed: %s", exc)
        return False
    return response.status_code == 200
