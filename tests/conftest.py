"""Shared pytest fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, PromptsConfig, SubjectConfig
from solver.invokers.base import InvokerResponse, ModelInvoker
from solver.models import ImageInput, Prompt


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="single",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        temperature=0.7,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        image_solve="Solve the pictured question.\n题目：\n解答：{extra_block}",
        text_solve="Solve the question.{extra_block}\n\n【题目文本】\n{question}",
        refine="Q: {question}\nPrevious: {proposer_answer}\nReview: {reviewer_verdict}\nImprove.",
        review_image="Review this answer: {proposer_answer}",
        review_text="Question: {question}\nReview this answer: {proposer_answer}",
        followup_initial="Q: {base_question}\nA: {base_answer}\n{history_block}Follow-up: {prompt}",
        followup_refine=(
            "Q: {base_question}\nA: {base_answer}\n{history_block}Follow-up: {prompt}\n"
            "Previous: {proposer_answer}\nReview: {reviewer_verdict}"
        ),
        followup_review=(
            "Q: {base_question}\nA: {base_answer}\n{history_block}Follow-up: {prompt}\n"
            "Check this reply: {proposer_answer}"
        ),
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        mode="single",
        max_iterations=3,
        output_dir=tmp_path / "output",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    def model(role: str, name: str) -> ModelConfig:
        return ModelConfig(
            name=role,
            sdk="openai",
            model=name,
            api_key_env="TEST_API_KEY",
            base_url="https://api.example.com/v1",
        )

    return AppConfig(
        defaults=sample_defaults_config,
        models={
            "single": model("single", "gpt-4o"),
            "proposer": model("proposer", "gpt-4o-mini"),
            "reviewer": model("reviewer", "gpt-4o"),
        },
        prompts=sample_prompts_config,
        subjects={
            "science": SubjectConfig(mode="debate", models={"proposer": {"model": "o3-mini"}}),
            "humanities": SubjectConfig(mode="single"),
        },
        available_roles={"single", "proposer", "reviewer"},
    )


@pytest.fixture
def sample_image() -> ImageInput:
    return ImageInput(data=b"\x89PNG fake", mime_type="image/png")


def make_response(content: str, tokens: int | None = 10, finish_reason: str | None = "stop") -> InvokerResponse:
    return InvokerResponse(content=content, finish_reason=finish_reason, tokens_used=tokens)


async def event_stream(*events):
    for event in events:
        yield event


class MockInvoker(ModelInvoker):
    """Test double ModelInvoker.

    invoke is an AsyncMock; stream_events (when set) is replayed by
    stream_invoke, and every streamed call is counted.
    """

    def __init__(
        self,
        invoker_name: str = "mock",
        response_content: str = "题目：1+1\n\n解答：2",
        stream_events: list | None = None,
    ) -> None:
        self._name = invoker_name
        self.stream_events = list(stream_events or [])
        self.stream_calls = 0
        self.prompts: list[Prompt] = []
        # Shadow the class method with an AsyncMock at the instance level.
        self.invoke = AsyncMock(return_value=make_response(response_content))  # type: ignore[assignment]

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def invoke(self, prompt, signal=None) -> InvokerResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return make_response("")

    def stream_invoke(self, prompt, signal=None):
        self.stream_calls += 1
        self.prompts.append(prompt)
        return event_stream(*self.stream_events)


@pytest.fixture
def mock_invoker() -> MockInvoker:
    return MockInvoker()


@pytest.fixture
def proposer_and_reviewer() -> tuple[MockInvoker, MockInvoker]:
    return MockInvoker("proposer", "题目：2+2\n\n解答：4"), MockInvoker("reviewer", "Needs more detail.")
