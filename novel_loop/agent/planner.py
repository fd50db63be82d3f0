"""Planners choose the agent's next tool.

The rule-based planner is deterministic: generate, evaluate, then either
finish or generate again with the evaluation's issues as revision notes.
The model-backed planner asks the generator instead, repairs decisions that
break the loop's preconditions, and falls back to the rule-based decision
whenever the model's answer cannot be used.
"""

from typing import Any, Literal, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, Field, field_validator

from ..exceptions import GenerationError
from ..llm.generator import TextGenerator
from ..models.agent_state import AgentState, PlannerDecision, ToolName
from ..utils.structured import parse_structured

_TOOL_ALIASES = {
    "generate_outline": "generate",
    "critic_outline": "evaluate",
    "critique": "evaluate",
    "stop": "finish",
}


class Planner(Protocol):
    def decide(self, state: AgentState) -> PlannerDecision:
        ...


def build_fallback_decision(state: AgentState) -> PlannerDecision:
    evaluation = state.latest_evaluation

    if state.latest_outline is None:
        return PlannerDecision(ToolName.GENERATE, "No candidate outline yet; generate the first version")

    if evaluation is None:
        return PlannerDecision(ToolName.EVALUATE, "A candidate outline exists; evaluate it first")

    if evaluation.passed:
        return PlannerDecision(
            ToolName.FINISH, f"Score {evaluation.score} meets the target threshold"
        )

    if state.outline_version >= state.max_attempts:
        return PlannerDecision(
            ToolName.FINISH, f"Reached the maximum of {state.max_attempts} attempts; stop retrying"
        )

    notes = "; ".join(evaluation.issues[:8])
    return PlannerDecision(
        ToolName.GENERATE,
        f"Score {evaluation.score} is below the target {state.target_score}; revise and retry",
        {"revisionNotes": notes} if notes else {},
    )


def normalize_decision(state: AgentState, decision: PlannerDecision) -> PlannerDecision:
    """Rewrite decisions whose preconditions do not hold."""
    if decision.tool == ToolName.GENERATE and state.outline_version >= state.max_attempts:
        return PlannerDecision(
            ToolName.FINISH, f"Reached the maximum of {state.max_attempts} attempts; stop retrying"
        )
    if decision.tool == ToolName.EVALUATE and state.latest_outline is None:
        return PlannerDecision(ToolName.GENERATE, "No candidate outline to evaluate; generate one first")
    if decision.tool == ToolName.FINISH and state.latest_outline is None:
        return PlannerDecision(ToolName.GENERATE, "Nothing to report yet; generate an outline before finishing")
    return decision


class RuleBasedPlanner:
    def decide(self, state: AgentState) -> PlannerDecision:
        return build_fallback_decision(state)


PLANNER_SYSTEM = """You are the planner of a novel-outline agent. You make exactly one decision:
1. generate: generate or rewrite the outline
2. evaluate: evaluate the current outline's quality
3. finish: stop the loop

Output strict JSON only, nothing else:
{
  "tool": "generate|evaluate|finish",
  "reason": "short reason",
  "input": {"revisionNotes": "optional, what the rewrite should focus on"}
}"""


class PlannerDecisionModel(BaseModel):
    tool: Literal["generate", "evaluate", "finish"]
    reason: str = Field(min_length=1)
    input: Optional[dict[str, Any]] = None

    @field_validator("tool", mode="before")
    @classmethod
    def _alias_tool(cls, value):
        if isinstance(value, str):
            value = value.strip().lower()
            return _TOOL_ALIASES.get(value, value)
        return value


def build_planner_prompt(state: AgentState) -> str:
    evaluation = state.latest_evaluation
    issues = "; ".join(evaluation.issues[:6]) if evaluation else ""
    history = "\n".join(f"- [{h.tool.value}] {h.summary}" for h in state.history[-5:]) or "- none"
    return (
        f"## Goal\n{state.goal}\n\n"
        f"## State\n"
        f"- Iteration: {state.iteration}\n"
        f"- Outline versions generated: {state.outline_version}/{state.max_attempts}\n"
        f"- Target score: {state.target_score}\n"
        f"- Has candidate outline: {'yes' if state.latest_outline else 'no'}\n"
        f"- Latest score: {evaluation.score if evaluation else 'none'}\n"
        f"- Latest passed: {evaluation.passed if evaluation else False}\n"
        f"- Latest issues: {issues or 'none'}\n"
        f"- Last tool error: {state.last_error or 'none'}\n\n"
        f"## Recent History\n{history}\n\n"
        f"## Constraints\n"
        f"- Without a candidate outline, only generate is allowed\n"
        f"- With an unevaluated outline, only evaluate is allowed\n"
        f"- Once the score meets the target or attempts run out, prefer finish\n"
        f"- If the score is below target and attempts remain, choose generate and put the rewrite focus in input.revisionNotes"
    )


class LLMPlanner:
    def __init__(self, generator: TextGenerator, temperature: float = 0.2):
        self.generator = generator
        self.temperature = temperature

    def decide(self, state: AgentState) -> PlannerDecision:
        fallback = build_fallback_decision(state)
        try:
            raw = self.generator.generate(PLANNER_SYSTEM, build_planner_prompt(state), temperature=self.temperature)
        except GenerationError as e:
            logger.warning(f"Planner call failed, using rule-based decision: {e}")
            return fallback

        result = parse_structured(raw, PlannerDecisionModel)
        if not result.ok:
            logger.warning(f"Planner response unusable, using rule-based decision: {result.error}")
            return fallback

        parsed = result.value
        decision = PlannerDecision(ToolName(parsed.tool), parsed.reason, dict(parsed.input or {}))
        return normalize_decision(state, decision)


def plan_next_action(
    state: AgentState,
    generator: Optional[TextGenerator] = None,
    use_llm_planner: bool = True,
    temperature: float = 0.2,
) -> PlannerDecision:
    if not use_llm_planner or generator is None:
        return build_fallback_decision(state)
    return LLMPlanner(generator, temperature).decide(state)
