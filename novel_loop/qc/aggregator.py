"""Run the checkers over a chapter and combine them into one QCResult."""

from datetime import datetime
from typing import Optional, Sequence

from loguru import logger

from ..config import QCConfig
from ..llm.generator import TextGenerator
from ..models.chapter import ChapterContext
from ..models.qc import CheckerResult, QCIssue, QCResult, Severity
from ..utils.progress import ProgressCallback, _noop_progress
from .checkers import (
    Checker,
    CharacterChecker,
    DuplicationChecker,
    EndingChecker,
    GoalChecker,
    PacingChecker,
    StructureChecker,
)

DIMENSIONS = ("ending", "character", "pacing", "goal", "structure", "duplication")


def default_checkers(config: QCConfig, generator: Optional[TextGenerator] = None) -> list[Checker]:
    """Rule-based checkers always; model-backed ones only with a generator."""
    checkers: list[Checker] = [EndingChecker(), StructureChecker(config), DuplicationChecker()]
    if generator is not None:
        checkers += [
            CharacterChecker(generator, config),
            PacingChecker(generator, config),
            GoalChecker(generator, config),
        ]
    return checkers


def aggregate_score(
    dimension_scores: dict[str, int], issues: Sequence[QCIssue], config: QCConfig
) -> int:
    """Weighted mean of the dimension scores, capped when anything is critical.

    Dimensions without a weight are ignored. Adding a critical issue never
    raises the score.
    """
    total_weight = sum(config.weights.get(d, 0.0) for d in dimension_scores)
    if total_weight <= 0:
        score = 100
    else:
        score = round(
            sum(s * config.weights.get(d, 0.0) for d, s in dimension_scores.items()) / total_weight
        )
    if any(i.severity == Severity.CRITICAL for i in issues):
        score = min(score, config.critical_score_cap)
    return max(0, min(100, score))


def run_multi_dimensional_qc(
    context: ChapterContext,
    generator: Optional[TextGenerator] = None,
    config: Optional[QCConfig] = None,
    checkers: Optional[Sequence[Checker]] = None,
    progress: ProgressCallback = _noop_progress,
) -> QCResult:
    """Score a chapter along every applicable dimension.

    A checker that raises is logged and scored ``checker_fallback_score``
    with no issues, so one failing dimension never blocks the others.
    """
    config = config or QCConfig()
    checkers = list(checkers) if checkers is not None else default_checkers(config, generator)

    dimension_scores = {d: 100 for d in DIMENSIONS}
    issues: list[QCIssue] = []

    for checker in checkers:
        try:
            result: Optional[CheckerResult] = checker.check(context)
        except Exception as e:
            logger.warning(
                f"Chapter {context.chapter_index}: {checker.name} check failed, "
                f"scoring {config.checker_fallback_score}: {e}"
            )
            result = CheckerResult(score=config.checker_fallback_score)

        if result is None:
            logger.debug(f"Chapter {context.chapter_index}: {checker.name} check skipped")
            continue
        dimension_scores[checker.name] = result.score
        issues.extend(result.issues)
        progress("checker_completed", {
            "checker": checker.name,
            "score": result.score,
            "issues": len(result.issues),
            "message": f"{checker.name} {result.score}/100",
        })

    qc = QCResult(
        score=aggregate_score(dimension_scores, issues, config),
        issues=tuple(issues),
        dimension_scores=dimension_scores,
        timestamp=datetime.now().isoformat(),
    )
    logger.info(
        f"Chapter {context.chapter_index} QC: score {qc.score}, "
        f"{len(qc.critical_issues)} critical / {len(qc.major_issues)} major / {len(qc.minor_issues)} minor"
    )
    return qc


def run_quick_qc(
    chapter_text: str,
    chapter_index: int,
    total_chapters: int,
    config: Optional[QCConfig] = None,
) -> QCResult:
    """Rule-based QC only: premature ending and structure, no model calls."""
    config = config or QCConfig()
    context = ChapterContext(
        chapter_text=chapter_text, chapter_index=chapter_index, total_chapters=total_chapters
    )
    ending = EndingChecker().check(context)
    structure = StructureChecker(config).check(context)
    issues = ending.issues + structure.issues

    score = round((ending.score + structure.score) / 2)
    if any(i.severity == Severity.CRITICAL for i in issues):
        score = min(score, config.critical_score_cap)

    dimension_scores = {d: 100 for d in DIMENSIONS}
    dimension_scores.update(ending=ending.score, structure=structure.score)
    return QCResult(
        score=score,
        issues=issues,
        dimension_scores=dimension_scores,
        timestamp=datetime.now().isoformat(),
    )


def generate_suggestions(issues: Sequence[QCIssue]) -> list[str]:
    """Numbered fix list: critical issues, then major ones."""
    lines = []
    for heading, severity in (
        ("[Must fix] These problems have to be repaired:", Severity.CRITICAL),
        ("[Should fix] These problems are worth repairing:", Severity.MAJOR),
    ):
        group = [i for i in issues if i.severity == severity]
        if not group:
            continue
        lines.append(heading)
        for n, issue in enumerate(group, 1):
            lines.append(f"  {n}. {issue.description}")
            if issue.suggestion:
                lines.append(f"     Suggestion: {issue.suggestion}")
    return lines


def format_qc_result(result: QCResult) -> str:
    lines = [
        f"QC result: {'PASSED' if result.passed else 'FAILED'}",
        f"Overall score: {result.score}/100",
        "",
        "Dimension scores:",
    ]
    for dimension in DIMENSIONS:
        if dimension in result.dimension_scores:
            lines.append(f"  - {dimension}: {result.dimension_scores[dimension]}/100")

    if result.issues:
        lines += ["", f"Issues ({len(result.issues)}):"]
        for issue in result.issues:
            lines.append(f"  [{issue.severity.value}] [{issue.category.value}] {issue.description}")

    suggestions = generate_suggestions(result.issues)
    if suggestions:
        lines += ["", *suggestions]
    return "\n".join(lines)
