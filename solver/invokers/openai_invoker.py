"""OpenAI-compatible invoker using the openai SDK with native async."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from solver.errors import check_cancelled
from solver.invokers.base import InvokerError, InvokerResponse, ModelInvoker, image_data_url
from solver.models import Prompt
from solver.tokens import extract_total_tokens

logger = logging.getLogger(__name__)


def build_messages(prompt: Prompt) -> list[dict]:
    """One user message: the text part followed by any image_url parts."""
    if not prompt.images:
        return [{"role": "user", "content": prompt.text}]
    parts: list[dict] = [{"type": "text", "text": prompt.text}]
    for image in prompt.images:
        parts.append({"type": "image_url", "image_url": {"url": image_data_url(image)}})
    return [{"role": "user", "content": parts}]


class OpenAIInvoker(ModelInvoker):
    """Chat completions via the openai SDK (any OpenAI-compatible base URL)."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = config.resolve_api_key()
        if not api_key:
            raise InvokerError(config.name, f"Missing API key: {config.api_key_env}")
        client_kwargs: dict[str, Any] = {"api_key": api_key, "base_url": config.base_url or None}
        if config.timeout_sec:
            client_kwargs["timeout"] = float(config.timeout_sec)
        self._client = AsyncOpenAI(**client_kwargs)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _request_kwargs(self, prompt: Prompt) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self._config.model,
            "messages": build_messages(prompt),
            "temperature": self._config.temperature,
        }
        if self._config.max_tokens:
            kwargs["max_tokens"] = self._config.max_tokens
        return kwargs

    async def invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> InvokerResponse:
        check_cancelled(signal)
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(**self._request_kwargs(prompt))
        except Exception as exc:
            raise InvokerError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise InvokerError(self._config.name, "Response has no choices")

        token_count = extract_total_tokens(response)
        logger.info(
            "OpenAI %s (%s): %.2fs, %s tokens, finish=%s",
            self._config.name,
            self._config.model,
            latency,
            token_count,
            choice.finish_reason,
        )

        return InvokerResponse(
            content=choice.message.content or "",
            usage=response.usage,
            finish_reason=choice.finish_reason,
            tokens_used=token_count,
        )

    async def stream_invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> AsyncIterator[Any]:
        check_cancelled(signal)
        try:
            stream = await self._client.chat.completions.create(
                **self._request_kwargs(prompt),
                stream=True,
                stream_options={"include_usage": True},
            )
        except Exception as exc:
            raise InvokerError(self._config.name, f"Stream request failed: {exc}") from exc

        try:
            async with stream:
                async for chunk in stream:
                    yield chunk
        except Exception as exc:
            raise InvokerError(self._config.name, f"Stream interrupted: {exc}") from exc
