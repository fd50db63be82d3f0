"""Agent state transitions.

Every function takes an AgentState and returns a new one; history entries
are only ever appended.
"""

from dataclasses import replace
from datetime import datetime

from ..models.agent_state import (
    AgentState,
    GeneratedOutline,
    HistoryEntry,
    OutlineCritique,
    PlannerDecision,
    ToolName,
    ToolResult,
)


def _timestamp() -> str:
    return datetime.now().isoformat()


def create_initial_state(
    goal: str,
    target_chapters: int,
    target_word_count: int,
    target_score: float,
    max_retries: int,
) -> AgentState:
    return AgentState(
        goal=goal,
        target_chapters=target_chapters,
        target_word_count=target_word_count,
        target_score=target_score,
        max_retries=max_retries,
    )


def _append(state: AgentState, entry: HistoryEntry) -> tuple[HistoryEntry, ...]:
    return state.history + (entry,)


def apply_tool_result(state: AgentState, decision: PlannerDecision, result: ToolResult) -> AgentState:
    """Fold one tool result into the state and advance the iteration counter.

    A new outline invalidates the latest evaluation. An evaluation replaces
    the best outline/evaluation pair only when it scores strictly higher.
    """
    iteration = state.iteration + 1

    if isinstance(result, GeneratedOutline):
        return replace(
            state,
            iteration=iteration,
            outline_version=state.outline_version + 1,
            latest_outline=result.outline,
            latest_evaluation=None,
            last_error=None,
            history=_append(state, HistoryEntry(
                iteration=iteration,
                timestamp=_timestamp(),
                tool=decision.tool,
                reason=decision.reason,
                summary=result.summary,
            )),
        )

    if isinstance(result, OutlineCritique):
        evaluation = result.evaluation
        next_state = replace(
            state,
            iteration=iteration,
            latest_evaluation=evaluation,
            last_error=None,
            history=_append(state, HistoryEntry(
                iteration=iteration,
                timestamp=_timestamp(),
                tool=decision.tool,
                reason=decision.reason,
                summary=result.summary,
                score=evaluation.score,
            )),
        )
        best = state.best_evaluation
        if state.latest_outline is not None and (best is None or evaluation.score > best.score):
            next_state = replace(
                next_state,
                best_outline=state.latest_outline,
                best_evaluation=evaluation,
            )
        return next_state

    raise TypeError(f"Unsupported tool result: {type(result).__name__}")


def apply_tool_failure(state: AgentState, decision: PlannerDecision, error: Exception) -> AgentState:
    """Record a failed tool run so the planner sees it on the next iteration."""
    iteration = state.iteration + 1
    message = f"{decision.tool.value} failed: {error}"
    return replace(
        state,
        iteration=iteration,
        last_error=message,
        history=_append(state, HistoryEntry(
            iteration=iteration,
            timestamp=_timestamp(),
            tool=decision.tool,
            reason=decision.reason,
            summary=message,
        )),
    )


def mark_done(state: AgentState, reason: str) -> AgentState:
    """Finish the run. Calling it again on a finished state changes nothing."""
    if state.done:
        return state

    latest = state.latest_evaluation or state.best_evaluation
    return replace(
        state,
        done=True,
        done_reason=reason,
        history=_append(state, HistoryEntry(
            iteration=state.iteration + 1,
            timestamp=_timestamp(),
            tool=ToolName.FINISH,
            reason=reason,
            summary=reason,
            score=latest.score if latest else None,
        )),
    )
