"""Anthropic Claude invoker using the anthropic SDK with native async."""

import asyncio
import base64
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from solver.errors import check_cancelled
from solver.invokers.base import InvokerError, InvokerResponse, ModelInvoker
from solver.models import Prompt
from solver.tokens import extract_total_tokens

logger = logging.getLogger(__name__)

_DEFAULT_MAX_TOKENS = 4096  # the messages API requires an explicit limit


def build_messages(prompt: Prompt) -> list[dict]:
    """Images first, then the instruction text, as recommended for vision input."""
    content: list[dict] = []
    for image in prompt.images:
        content.append({
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": image.mime_type,
                "data": base64.b64encode(image.data).decode("ascii"),
            },
        })
    content.append({"type": "text", "text": prompt.text})
    return [{"role": "user", "content": content}]


class AnthropicInvoker(ModelInvoker):
    """Anthropic Claude invoker via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = config.resolve_api_key()
        if not api_key:
            raise InvokerError(config.name, f"Missing API key: {config.api_key_env}")
        client_kwargs: dict[str, Any] = {"api_key": api_key}
        if config.base_url:
            client_kwargs["base_url"] = config.base_url
        if config.timeout_sec:
            client_kwargs["timeout"] = float(config.timeout_sec)
        self._client = anthropic_sdk.AsyncAnthropic(**client_kwargs)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    def _request_kwargs(self, prompt: Prompt) -> dict[str, Any]:
        return {
            "model": self._config.model,
            "max_tokens": self._config.max_tokens or _DEFAULT_MAX_TOKENS,
            "temperature": self._config.temperature,
            "messages": build_messages(prompt),
        }

    async def invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> InvokerResponse:
        check_cancelled(signal)
        start = time.monotonic()
        try:
            response = await self._client.messages.create(**self._request_kwargs(prompt))
        except Exception as exc:
            raise InvokerError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        text_blocks = [b.text for b in response.content if b.type == "text"]
        content = "\n".join(text_blocks)
        token_count = extract_total_tokens(response)
        finish_reason = "length" if response.stop_reason == "max_tokens" else response.stop_reason

        logger.info(
            "Anthropic %s (%s): %.2fs, %s tokens, finish=%s",
            self._config.name,
            self._config.model,
            latency,
            token_count,
            finish_reason,
        )

        return InvokerResponse(
            content=content,
            usage=response.usage,
            finish_reason=finish_reason,
            tokens_used=token_count,
        )

    async def stream_invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> AsyncIterator[Any]:
        check_cancelled(signal)
        try:
            stream = await self._client.messages.create(**self._request_kwargs(prompt), stream=True)
        except Exception as exc:
            raise InvokerError(self._config.name, f"Stream request failed: {exc}") from exc

        try:
            async with stream:
                async for event in stream:
                    yield event
        except Exception as exc:
            raise InvokerError(self._config.name, f"Stream interrupted: {exc}") from exc
