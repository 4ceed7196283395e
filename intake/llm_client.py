"""Thin wrapper around the OpenAI SDK for structured extraction calls.

Only transport lives here: availability checks, request assembly, error
wrapping and JSON decoding of the reply. What to ask and how to read the
answer belongs to the callers.
"""

import json
from dataclasses import dataclass

from config.settings import (
    LLM_ENABLED,
    LLM_MAX_TOKENS,
    LLM_MODEL,
    LLM_TEMPERATURE,
    OPENAI_API_KEY,
)

JSON_OBJECT_FORMAT = {"type": "json_object"}


class LLMUnavailableError(Exception):
    """Raised when the LLM is disabled, unconfigured or the SDK is missing."""


class LLMClientError(Exception):
    """Raised when the LLM API call fails or returns an unusable reply."""


@dataclass
class LLMResponse:
    """Structured response from an LLM call."""

    content: str
    model: str
    usage: dict
    stop_reason: str


def is_available() -> bool:
    """Check that LLM calls are enabled and an API key is configured."""
    return bool(LLM_ENABLED and OPENAI_API_KEY)


def chat(
    system_prompt: str,
    messages: list[dict],
    model: str | None = None,
    max_tokens: int | None = None,
    temperature: float | None = None,
    response_format: dict | None = None,
) -> LLMResponse:
    """Send a conversation to the OpenAI API and return the reply.

    Args:
        system_prompt: The system instruction, sent as the first message.
        messages: Message dicts with 'role' and 'content' keys.
        model: Model to use (defaults to LLM_MODEL).
        max_tokens: Max tokens in the reply (defaults to LLM_MAX_TOKENS).
        temperature: Sampling temperature (defaults to LLM_TEMPERATURE).
        response_format: Optional OpenAI response format, e.g.
            ``JSON_OBJECT_FORMAT``.

    Returns:
        LLMResponse with the assistant's reply.

    Raises:
        LLMUnavailableError: If calls are disabled or no API key is set.
        LLMClientError: If the API call fails or the reply is empty.
    """
    if not LLM_ENABLED:
        raise LLMUnavailableError("LLM calls are disabled (LLM_ENABLED=false)")
    if not OPENAI_API_KEY:
        raise LLMUnavailableError("OPENAI_API_KEY is not configured")

    try:
        import openai
    except ImportError as e:
        raise LLMUnavailableError(
            "openai package is not installed. Run: pip install openai"
        ) from e

    create_kwargs = {
        "model": model or LLM_MODEL,
        "max_tokens": max_tokens or LLM_MAX_TOKENS,
        "temperature": temperature if temperature is not None else LLM_TEMPERATURE,
        "messages": [{"role": "system", "content": system_prompt}, *messages],
    }
    if response_format is not None:
        create_kwargs["response_format"] = response_format

    try:
        client = openai.OpenAI(api_key=OPENAI_API_KEY)
        response = client.chat.completions.create(**create_kwargs)
    except openai.APIError as e:
        raise LLMClientError(f"OpenAI API error: {e}") from e
    except Exception as e:
        raise LLMClientError(f"LLM call failed: {e}") from e

    choice = response.choices[0]
    if not choice.message.content:
        raise LLMClientError("LLM returned an empty reply")
    return LLMResponse(
        content=choice.message.content,
        model=response.model,
        usage={
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
        },
        stop_reason=choice.finish_reason,
    )


def chat_json(system_prompt: str, user_text: str, **kwargs) -> dict:
    """Ask for a JSON object reply and return it decoded.

    Raises:
        LLMUnavailableError: As for ``chat``.
        LLMClientError: If the call fails or the reply is not a JSON object.
    """
    response = chat(
        system_prompt,
        [{"role": "user", "content": user_text}],
        response_format=JSON_OBJECT_FORMAT,
        **kwargs,
    )
    text = response.content.strip()
    # Some models wrap JSON in a markdown fence even in JSON mode.
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[len("json"):]
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise LLMClientError(f"LLM reply is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise LLMClientError("LLM reply is not a JSON object")
    return data
