"""LangChain ChatOpenAI invoker; streams through astream_events."""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from config.config_loader import ModelConfig
from solver.errors import check_cancelled
from solver.invokers.base import InvokerError, InvokerResponse, ModelInvoker, content_to_text, image_data_url
from solver.models import Prompt
from solver.tokens import extract_total_tokens, get_field

logger = logging.getLogger(__name__)


def build_messages(prompt: Prompt) -> list[HumanMessage]:
    if not prompt.images:
        return [HumanMessage(content=prompt.text)]
    content: list[dict] = [{"type": "text", "text": prompt.text}]
    for image in prompt.images:
        content.append({"type": "image_url", "image_url": {"url": image_data_url(image)}})
    return [HumanMessage(content=content)]


class LangChainInvoker(ModelInvoker):
    """ChatOpenAI model built per call from a resolved ModelConfig."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = config.resolve_api_key()
        if not api_key:
            raise InvokerError(config.name, f"Missing API key: {config.api_key_env}")
        llm_kwargs: dict[str, Any] = {
            "model": config.model,
            "api_key": api_key,
            "temperature": config.temperature,
            "stream_usage": True,
        }
        if config.base_url:
            llm_kwargs["base_url"] = config.base_url
        if config.max_tokens:
            llm_kwargs["max_tokens"] = config.max_tokens
        if config.timeout_sec:
            llm_kwargs["timeout"] = float(config.timeout_sec)
        self._llm = ChatOpenAI(**llm_kwargs)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> InvokerResponse:
        check_cancelled(signal)
        start = time.monotonic()
        try:
            message = await self._llm.ainvoke(build_messages(prompt))
        except Exception as exc:
            raise InvokerError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start
        token_count = extract_total_tokens(message)
        finish_reason = get_field(message.response_metadata, "finish_reason")

        logger.info(
            "LangChain %s (%s): %.2fs, %s tokens, finish=%s",
            self._config.name,
            self._config.model,
            latency,
            token_count,
            finish_reason,
        )

        return InvokerResponse(
            content=content_to_text(message.content),
            usage=message.usage_metadata,
            finish_reason=finish_reason,
            tokens_used=token_count,
        )

    async def stream_invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> AsyncIterator[Any]:
        check_cancelled(signal)
        try:
            events = self._llm.astream_events(build_messages(prompt), version="v2")
            async with aclosing(events):
                async for event in events:
                    yield event
        except Exception as exc:
            raise InvokerError(self._config.name, f"Stream failed: {exc}") from exc
