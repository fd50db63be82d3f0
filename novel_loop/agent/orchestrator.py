"""The outline agent loop: plan, run a tool, fold the result, repeat."""

from dataclasses import replace
from typing import Optional

from loguru import logger

from ..config import AgentConfig
from ..exceptions import AgentPipelineError, GenerationError
from ..llm.generator import TextGenerator
from ..models.agent_state import AgentRunResult, AgentState, ToolName
from ..utils.progress import ProgressCallback, _noop_progress
from .memory import apply_tool_failure, apply_tool_result, create_initial_state, mark_done
from .planner import LLMPlanner, Planner, RuleBasedPlanner
from .tools import ToolRegistry, create_outline_tool_registry


def compute_hard_iteration_limit(max_retries: int) -> int:
    """Two steps (generate, evaluate) per attempt plus two steps of slack."""
    return (max_retries + 1) * 2 + 2


def run_agent_loop(
    state: AgentState,
    planner: Planner,
    registry: ToolRegistry,
    progress: ProgressCallback = _noop_progress,
) -> AgentState:
    """Drive ``state`` to ``done`` within the hard iteration limit.

    A GenerationError inside a tool is recorded in the history and in
    ``last_error``; the loop carries on and the iteration still counts.
    A planner decision naming an unknown tool raises ToolConfigurationError.
    """
    max_attempts = state.max_attempts
    hard_limit = compute_hard_iteration_limit(state.max_retries)

    while not state.done and state.iteration < hard_limit:
        decision = planner.decide(state)
        decision = replace(decision, tool=ToolRegistry.resolve(decision.tool))
        logger.debug(f"Iteration {state.iteration + 1}: planner chose {decision.tool.value} ({decision.reason})")

        if decision.tool == ToolName.FINISH:
            state = mark_done(state, decision.reason)
            break

        if decision.tool == ToolName.GENERATE:
            progress("attempt_started", {
                "attempt": state.outline_version + 1,
                "max_attempts": max_attempts,
                "reason": decision.reason,
                "message": f"attempt {state.outline_version + 1}/{max_attempts}",
            })

        tool = registry.get(decision.tool)
        try:
            result = tool(state, decision.input)
        except GenerationError as e:
            logger.warning(f"Tool {decision.tool.value} failed: {e}")
            state = apply_tool_failure(state, decision, e)
            continue
        state = apply_tool_result(state, decision, result)

        latest = state.latest_evaluation
        if latest is not None and latest.passed:
            state = mark_done(state, f"target score reached ({latest.score} / {state.target_score})")
            break
        if latest is not None and state.outline_version >= max_attempts:
            best = state.best_evaluation.score if state.best_evaluation else latest.score
            state = mark_done(
                state,
                f"max attempts reached ({max_attempts}), reporting best score {best} / {state.target_score}",
            )
            break

    if not state.done:
        state = mark_done(state, f"safety ceiling reached ({hard_limit} iterations)")
    return state


def run_outline_agent(
    generator: TextGenerator,
    bible: str,
    target_chapters: int,
    target_word_count: int,
    max_retries: Optional[int] = None,
    target_score: Optional[float] = None,
    goal: Optional[str] = None,
    use_llm_planner: Optional[bool] = None,
    config: Optional[AgentConfig] = None,
    progress: ProgressCallback = _noop_progress,
    registry: Optional[ToolRegistry] = None,
    planner: Optional[Planner] = None,
) -> AgentRunResult:
    """Generate and evaluate outlines until one meets ``target_score`` or the budget runs out.

    Explicit arguments override ``config``. The result carries the best
    evaluated outline (or the latest one if none was better) and the reason
    the loop stopped.

    Raises:
        AgentPipelineError: if the run ended without an outline or without
            an evaluation.
    """
    config = config or AgentConfig()
    max_retries = config.max_retries if max_retries is None else max_retries
    target_score = config.target_score if target_score is None else target_score
    use_llm_planner = config.use_llm_planner if use_llm_planner is None else use_llm_planner

    state = create_initial_state(
        goal=goal or config.goal,
        target_chapters=target_chapters,
        target_word_count=target_word_count,
        target_score=target_score,
        max_retries=max_retries,
    )
    if registry is None:
        registry = create_outline_tool_registry(
            generator, bible, target_chapters, target_word_count, target_score,
            temperature=config.generation_temperature, progress=progress,
        )
    if planner is None:
        planner = LLMPlanner(generator, config.planner_temperature) if use_llm_planner else RuleBasedPlanner()

    logger.info(
        f"Outline agent started: {target_chapters} chapters, target score {target_score}, "
        f"up to {state.max_attempts} attempt(s)"
    )
    state = run_agent_loop(state, planner, registry, progress)
    logger.info(f"Outline agent finished after {state.iteration} iteration(s): {state.done_reason}")

    outline = state.best_outline or state.latest_outline
    evaluation = state.best_evaluation or state.latest_evaluation
    if outline is None:
        raise AgentPipelineError(f"Agent stopped without producing an outline ({state.done_reason})")
    if evaluation is None:
        raise AgentPipelineError(f"Agent stopped without evaluating an outline ({state.done_reason})")

    return AgentRunResult(
        outline=outline,
        evaluation=evaluation,
        attempts=state.outline_version,
        iterations=state.iteration,
        history=state.history,
        done_reason=state.done_reason,
    )
