"""Pure dataclasses for the exam solver pipeline. No logic, no deps."""

from dataclasses import dataclass, field
from typing import Any

UNRECOGNIZED_QUESTION = "未识别到题目"
IMAGE_QUESTION = "识别并解答图片中的题目"


@dataclass(frozen=True)
class ImageInput:
    data: bytes
    mime_type: str  # "image/png", "image/jpeg", ...


@dataclass(frozen=True)
class Prompt:
    text: str
    images: tuple[ImageInput, ...] = ()


@dataclass
class SolveResult:
    question: str
    answer: str
    tokens_used: int | None = None


@dataclass
class DebateRound:
    number: int            # 1-based
    proposer_answer: str
    reviewer_verdict: str
    approved: bool


@dataclass
class DebateState:
    question: str
    images: list[ImageInput] | None = None
    extra_prompt: str | None = None
    proposer_answer: str = ""
    reviewer_verdict: str = ""
    iteration: int = 0     # 0-based, counts completed review rounds
    max_iterations: int = 3
    consensus_reached: bool = False
    final_answer: str = ""  # set only on consensus
    tokens_used: int = 0
    rounds: list[DebateRound] = field(default_factory=list)


@dataclass
class DebateResult:
    question: str
    answer: str
    iterations: int
    consensus: bool
    tokens_used: int
    rounds: list[DebateRound] = field(default_factory=list)


@dataclass
class ChatTurn:
    role: str              # "user" or "assistant"
    content: str


@dataclass
class FollowUpContext:
    base_question: str
    base_answer: str
    prompt: str
    history: list[ChatTurn] = field(default_factory=list)


@dataclass
class FollowUpResult:
    answer: str
    iterations: int
    consensus: bool
    tokens_used: int
    rounds: list[DebateRound] = field(default_factory=list)


@dataclass
class ConsumedStream:
    content: str
    finish_reason: str | None = None
    tokens_used: int | None = None
    delta_count: int = 0
    observed_event_names: set[str] = field(default_factory=set)


@dataclass
class StreamEvent:
    """One progress notification toward the caller.

    type is one of: start, delta, complete, error, status, model1, model2.
    """
    type: str
    value: str | None = None
    result: Any = None
    message: str | None = None
    content: str | None = None
    iteration: int | None = None


@dataclass
class HealthStatus:
    """Outcome of pinging one role's model before a run."""
    role: str
    model: str
    ok: bool
    error: str = ""
    latency_sec: float = 0.0
