"""ModelConfig -> ModelInvoker factory, called per request."""

import logging

from config.config_loader import ModelConfig
from solver.invokers.anthropic_invoker import AnthropicInvoker
from solver.invokers.base import InvokerError, ModelInvoker
from solver.invokers.langchain_invoker import LangChainInvoker
from solver.invokers.openai_invoker import OpenAIInvoker

logger = logging.getLogger(__name__)

INVOKER_CLASSES: dict[str, type[ModelInvoker]] = {
    "openai": OpenAIInvoker,
    "anthropic": AnthropicInvoker,
    "langchain": LangChainInvoker,
}


def build_invoker(config: ModelConfig) -> ModelInvoker:
    """Build a fresh invoker for one resolved config.

    Raises:
        InvokerError: If the sdk is unknown or the API key is missing.
    """
    invoker_cls = INVOKER_CLASSES.get(config.sdk)
    if invoker_cls is None:
        raise InvokerError(config.name, f"Unknown sdk '{config.sdk}'")
    logger.debug("Building %s invoker for %s (%s)", config.sdk, config.name, config.model)
    return invoker_cls(config)
