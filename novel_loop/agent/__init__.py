from .memory import apply_tool_failure, apply_tool_result, create_initial_state, mark_done
from .planner import (
    LLMPlanner,
    Planner,
    RuleBasedPlanner,
    build_fallback_decision,
    normalize_decision,
    plan_next_action,
)
from .tools import (
    ToolRegistry,
    create_outline_tool_registry,
    evaluate_outline_quality,
    generate_master_outline,
    generate_volume_chapters,
    make_evaluate_tool,
    make_generate_tool,
)
from .orchestrator import compute_hard_iteration_limit, run_agent_loop, run_outline_agent

__all__ = [
    "create_initial_state",
    "apply_tool_result",
    "apply_tool_failure",
    "mark_done",
    "Planner",
    "RuleBasedPlanner",
    "LLMPlanner",
    "build_fallback_decision",
    "normalize_decision",
    "plan_next_action",
    "ToolRegistry",
    "create_outline_tool_registry",
    "evaluate_outline_quality",
    "generate_master_outline",
    "generate_volume_chapters",
    "make_evaluate_tool",
    "make_generate_tool",
    "compute_hard_iteration_limit",
    "run_agent_loop",
    "run_outline_agent",
]
