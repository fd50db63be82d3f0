"""Data models for the outline agent run."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from .outline import OutlineDocument, OutlineEvaluation


class ToolName(str, Enum):
    GENERATE = "generate"
    EVALUATE = "evaluate"
    FINISH = "finish"


@dataclass(frozen=True)
class HistoryEntry:
    iteration: int
    timestamp: str
    tool: ToolName
    reason: str
    summary: str
    score: Optional[float] = None


@dataclass(frozen=True)
class PlannerDecision:
    tool: ToolName
    reason: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GeneratedOutline:
    outline: OutlineDocument
    summary: str


@dataclass(frozen=True)
class OutlineCritique:
    evaluation: OutlineEvaluation
    summary: str


ToolResult = Union[GeneratedOutline, OutlineCritique]


@dataclass(frozen=True)
class AgentState:
    goal: str
    target_chapters: int
    target_word_count: int
    target_score: float
    max_retries: int
    iteration: int = 0
    outline_version: int = 0
    history: tuple[HistoryEntry, ...] = ()
    latest_outline: Optional[OutlineDocument] = None
    latest_evaluation: Optional[OutlineEvaluation] = None
    best_outline: Optional[OutlineDocument] = None
    best_evaluation: Optional[OutlineEvaluation] = None
    last_error: Optional[str] = None
    done: bool = False
    done_reason: str = ""

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class AgentRunResult:
    outline: OutlineDocument
    evaluation: OutlineEvaluation
    attempts: int
    iterations: int
    history: tuple[HistoryEntry, ...]
    done_reason: str
