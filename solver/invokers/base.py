"""Abstract base for all chat-completion invokers."""

import asyncio
import base64
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from solver.models import ImageInput, Prompt


class InvokerError(Exception):
    """Raised when a model call fails (network, auth, rate limit, bad payload)."""

    def __init__(self, invoker_name: str, message: str) -> None:
        self.invoker_name = invoker_name
        super().__init__(f"[{invoker_name}] {message}")


@dataclass
class InvokerResponse:
    content: str
    usage: Any = None            # raw provider usage object, when reported
    finish_reason: str | None = None
    tokens_used: int | None = None


def image_data_url(image: ImageInput) -> str:
    return f"data:{image.mime_type};base64,{base64.b64encode(image.data).decode('ascii')}"


def content_to_text(content: Any) -> str:
    """Flatten a message content value (str, part dict/object, or list of parts)."""
    if not content:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, (list, tuple)):
        return "".join(content_to_text(item) for item in content)
    if isinstance(content, dict):
        text = content.get("text")
        return text if isinstance(text, str) else ""
    text = getattr(content, "text", None)
    return text if isinstance(text, str) else ""


class ModelInvoker(ABC):
    """One chat-completion capability, built from a resolved ModelConfig.

    Invokers are stateless per call and never retry.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the role or config name (e.g. 'proposer')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> InvokerResponse:
        """Run one blocking completion.

        Raises:
            InvokerError: On API failure or invalid response.
            SolveCancelled: If the signal is already set.
        """
        ...

    @abstractmethod
    def stream_invoke(self, prompt: Prompt, signal: asyncio.Event | None = None) -> AsyncIterator[Any]:
        """Return an async iterator of provider-shaped stream events."""
        ...
