"""Bounded automatic repair of chapters that failed QC."""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from loguru import logger

from ..config import QCConfig
from ..exceptions import GenerationError, NovelLoopError
from ..llm.generator import TextGenerator
from ..models.qc import QCIssue, QCResult, RepairResult
from ..utils.progress import ProgressCallback, _noop_progress
from .aggregator import run_quick_qc

RecheckFn = Callable[[str, int, int, QCConfig], QCResult]

REPAIR_SYSTEM = """You are a professional fiction repair editor.
Fix the chapter according to the QC feedback while keeping its original style and voice.
Output only the repaired chapter text, with no explanation or markup.
Do not change the chapter's main plot or structure; fix only the problems listed."""


@dataclass(frozen=True)
class ChapterDraft:
    index: int
    text: str
    qc_result: QCResult


def build_repair_instruction(
    critical_issues: Sequence[QCIssue],
    major_issues: Sequence[QCIssue],
    chapter_index: int,
    total_chapters: int,
    major_issue_cap: int = 5,
) -> str:
    """Critical issues in full, then the first ``major_issue_cap`` major ones, then editing rules."""
    lines = [
        f"[Repair request: chapter {chapter_index}/{total_chapters}]",
        "Fix the chapter to resolve the following problems.",
        "",
    ]

    if critical_issues:
        lines.append("[Critical: must fix]")
        for n, issue in enumerate(critical_issues, 1):
            lines.append(f"{n}. {issue.description}")
            if issue.suggestion:
                lines.append(f"   Suggestion: {issue.suggestion}")
            if issue.location:
                lines.append(f'   Location: "{issue.location}"')
        lines.append("")

    if major_issues:
        lines.append("[Major: fix where possible]")
        for n, issue in enumerate(major_issues[:major_issue_cap], 1):
            lines.append(f"{n}. {issue.description}")
            if issue.suggestion:
                lines.append(f"   Suggestion: {issue.suggestion}")
            if issue.location:
                lines.append(f'   Location: "{issue.location}"')
        lines.append("")

    lines += [
        "[Repair principles]",
        "1. Keep the existing plot direction and character setup",
        "2. Keep the existing writing style and voice",
        "3. Change only the passages that have problems",
        "4. Make sure the repaired text reads naturally",
    ]
    if chapter_index < total_chapters:
        lines += [
            "5. This is not the final chapter: no ending, epilogue or farewell-to-readers language",
            "6. The chapter must still close on its suspense hook",
        ]
    return "\n".join(lines)


def repair_chapter(
    generator: TextGenerator,
    chapter_text: str,
    qc_result: QCResult,
    chapter_index: int,
    total_chapters: int,
    max_attempts: Optional[int] = None,
    config: Optional[QCConfig] = None,
    recheck: Optional[RecheckFn] = None,
    progress: ProgressCallback = _noop_progress,
) -> RepairResult:
    """Rewrite a chapter until QC passes or the attempt budget runs out.

    Only a chapter with a critical issue is rewritten, and each rewrite also
    lists the major issues. Rewrites are checked again with ``recheck``
    (rule-based quick QC by default). A GenerationError ends the loop and is
    recorded in the log; it does not propagate.
    """
    config = config or QCConfig()
    max_attempts = config.max_repair_attempts if max_attempts is None else max_attempts
    recheck = recheck or run_quick_qc

    current = chapter_text
    attempts = 0
    last_qc = qc_result
    log = [f"Repairing chapter {chapter_index}, initial score {qc_result.score}"]
    progress("repair_started", {"chapter": chapter_index, "score": qc_result.score,
                                "message": f"chapter {chapter_index}"})
    if qc_result.passed:
        log.append("No critical issues; major and minor issues alone are not repaired")

    while attempts < max_attempts and not last_qc.passed:
        critical = last_qc.critical_issues
        major = last_qc.major_issues
        attempts += 1
        log.append(f"Attempt {attempts}/{max_attempts}: {len(critical)} critical, {len(major)} major")
        progress("repair_attempt", {
            "chapter": chapter_index,
            "attempt": attempts,
            "critical": len(critical),
            "major": len(major),
            "message": f"chapter {chapter_index} attempt {attempts}/{max_attempts}",
        })

        instruction = build_repair_instruction(
            critical, major, chapter_index, total_chapters, config.major_issue_cap
        )
        prompt = f"{instruction}\n\n[Original chapter]\n{current}\n\nOutput the full repaired chapter:"
        logger.debug(f"Chapter {chapter_index} repair prompt:\n{instruction}")
        try:
            current = generator.generate(REPAIR_SYSTEM, prompt, temperature=config.repair_temperature)
        except GenerationError as e:
            logger.warning(f"Chapter {chapter_index}: repair generation failed: {e}")
            log.append(f"Repair generation failed: {e}")
            break

        log.append("Rewrite received, re-running QC")
        last_qc = recheck(current, chapter_index, total_chapters, config)
        log.append(f"Score after repair: {last_qc.score}")
        progress("repair_scored", {
            "chapter": chapter_index,
            "attempt": attempts,
            "score": last_qc.score,
            "message": f"chapter {chapter_index} scored {last_qc.score}",
        })

        if last_qc.passed:
            log.append("Repair succeeded: no blocking issues remain")
        else:
            log.append(f"{len(last_qc.critical_issues)} critical issue(s) remain")

    success = last_qc.passed or last_qc.score >= config.acceptance_floor
    log.append(f"Repair {'succeeded' if success else 'incomplete'}, final score {last_qc.score}")
    logger.info(f"Chapter {chapter_index}: {log[-1]} after {attempts} attempt(s)")

    return RepairResult(
        chapter_text=current,
        attempts=attempts,
        final_qc=last_qc,
        success=success,
        repair_log=tuple(log),
        initial_score=qc_result.score,
    )


def batch_repair_chapters(
    generator: TextGenerator,
    chapters: Sequence[ChapterDraft],
    total_chapters: int,
    config: Optional[QCConfig] = None,
    max_workers: int = 1,
    progress: ProgressCallback = _noop_progress,
) -> list[RepairResult]:
    """Repair each failing chapter independently; passing chapters go through untouched.

    Results keep the input order. With ``max_workers`` above one chapters are
    repaired on a thread pool, which is safe because no state is shared
    between chapters.
    """
    config = config or QCConfig()

    def _one(draft: ChapterDraft) -> RepairResult:
        if draft.qc_result.passed:
            result = RepairResult(
                chapter_text=draft.text,
                attempts=0,
                final_qc=draft.qc_result,
                success=True,
                repair_log=("Chapter already passed QC, no repair needed",),
                initial_score=draft.qc_result.score,
            )
        else:
            try:
                result = repair_chapter(
                    generator, draft.text, draft.qc_result, draft.index, total_chapters,
                    config=config, progress=progress,
                )
            except NovelLoopError as e:
                logger.error(f"Chapter {draft.index}: repair aborted: {e}")
                result = RepairResult(
                    chapter_text=draft.text,
                    attempts=0,
                    final_qc=draft.qc_result,
                    success=False,
                    repair_log=(f"Repair aborted: {e}",),
                    initial_score=draft.qc_result.score,
                )
        progress("chapter_repaired", {
            "chapter": draft.index,
            "success": result.success,
            "message": f"chapter {draft.index} {'ok' if result.success else 'failed'}",
        })
        return result

    if max_workers > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as executor:
            return list(executor.map(_one, chapters))
    return [_one(draft) for draft in chapters]


def get_repair_stats(results: Sequence[RepairResult]) -> dict:
    successful = sum(1 for r in results if r.success)
    improvements = [
        r.final_qc.score - r.initial_score for r in results if r.initial_score is not None
    ]
    return {
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "total_attempts": sum(r.attempts for r in results),
        "average_score_improvement": (
            round(sum(improvements) / len(improvements), 1) if improvements else 0.0
        ),
    }
