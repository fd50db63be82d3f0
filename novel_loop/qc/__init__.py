from .ending import quick_ending_heuristic, check_premature_ending
from .structure import check_structural_integrity
from .checkers import (
    Checker,
    EndingChecker,
    StructureChecker,
    DuplicationChecker,
    CharacterChecker,
    PacingChecker,
    GoalChecker,
)
from .aggregator import (
    default_checkers,
    aggregate_score,
    run_multi_dimensional_qc,
    run_quick_qc,
    generate_suggestions,
    format_qc_result,
)
from .repair import (
    ChapterDraft,
    build_repair_instruction,
    repair_chapter,
    batch_repair_chapters,
    get_repair_stats,
)

__all__ = [
    "quick_ending_heuristic",
    "check_premature_ending",
    "check_structural_integrity",
    "Checker",
    "EndingChecker",
    "StructureChecker",
    "DuplicationChecker",
    "CharacterChecker",
    "PacingChecker",
    "GoalChecker",
    "default_checkers",
    "aggregate_score",
    "run_multi_dimensional_qc",
    "run_quick_qc",
    "generate_suggestions",
    "format_qc_result",
    "ChapterDraft",
    "build_repair_instruction",
    "repair_chapter",
    "batch_repair_chapters",
    "get_repair_stats",
]
