from .outline import (
    OutlineChapter,
    OutlineVolume,
    OutlineDocument,
    OutlineMetrics,
    OutlineEvaluation,
)
from .agent_state import (
    ToolName,
    HistoryEntry,
    PlannerDecision,
    GeneratedOutline,
    OutlineCritique,
    ToolResult,
    AgentState,
    AgentRunResult,
)
from .qc import (
    Severity,
    IssueCategory,
    QCIssue,
    CheckerResult,
    QCResult,
    RepairResult,
)
from .timeline import (
    EventType,
    EventStatus,
    TimelineEvent,
    ProposedEvent,
    EventAnalysis,
    TimelineState,
    DuplicationReport,
)
from .chapter import (
    CharacterSnapshot,
    PacingTarget,
    ChapterGoal,
    ChapterContext,
)

__all__ = [
    "OutlineChapter",
    "OutlineVolume",
    "OutlineDocument",
    "OutlineMetrics",
    "OutlineEvaluation",
    "ToolName",
    "HistoryEntry",
    "PlannerDecision",
    "GeneratedOutline",
    "OutlineCritique",
    "ToolResult",
    "AgentState",
    "AgentRunResult",
    "Severity",
    "IssueCategory",
    "QCIssue",
    "CheckerResult",
    "QCResult",
    "RepairResult",
    "EventType",
    "EventStatus",
    "TimelineEvent",
    "ProposedEvent",
    "EventAnalysis",
    "TimelineState",
    "DuplicationReport",
    "CharacterSnapshot",
    "PacingTarget",
    "ChapterGoal",
    "ChapterContext",
]
