"""The agent's tools: outline generation and outline evaluation.

Tools are looked up by ToolName in a ToolRegistry. A tool takes the current
AgentState plus the planner's input and returns a ToolResult; it never
changes the state itself.
"""

import math
from typing import Any, Callable, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..exceptions import ToolConfigurationError
from ..llm.generator import TextGenerator
from ..models.agent_state import AgentState, GeneratedOutline, OutlineCritique, ToolName, ToolResult
from ..models.outline import (
    OutlineDocument,
    OutlineEvaluation,
    OutlineMetrics,
    is_placeholder_title,
    normalize_milestones,
    normalize_volume,
)
from ..utils.progress import ProgressCallback, _noop_progress
from ..utils.structured import parse_json_response, parse_structured

ToolHandler = Callable[[AgentState, dict], ToolResult]

CHAPTERS_PER_VOLUME = 80


class ToolRegistry:
    """Closed lookup table from tool name to handler."""

    def __init__(self):
        self._tools: dict[ToolName, ToolHandler] = {}

    def register(self, name: ToolName, handler: ToolHandler) -> None:
        name = self.resolve(name)
        if name in self._tools:
            raise ToolConfigurationError(f"Tool already registered: {name.value}")
        self._tools[name] = handler

    def get(self, name) -> ToolHandler:
        resolved = self.resolve(name)
        if resolved not in self._tools:
            raise ToolConfigurationError(f"Unknown tool: {resolved.value}")
        return self._tools[resolved]

    def names(self) -> list[ToolName]:
        return list(self._tools)

    @staticmethod
    def resolve(name) -> ToolName:
        """Coerce a tool identifier to ToolName; unknown identifiers are a configuration error."""
        try:
            return ToolName(name)
        except ValueError:
            raise ToolConfigurationError(f"Unknown tool: {name!r}") from None


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _clamp_score(value: float) -> float:
    return max(0.0, min(10.0, round(value, 1)))


def _format_indices(indices: list[int], limit: int = 12) -> str:
    if len(indices) <= limit:
        return ", ".join(str(i) for i in indices)
    return f"{', '.join(str(i) for i in indices[:limit])} ... ({len(indices)} total)"


def evaluate_outline_quality(
    outline: OutlineDocument, target_chapters: int, target_score: float
) -> OutlineEvaluation:
    """Score an outline 0-10 on coverage, titles, goals, volume structure and milestones."""
    issues = []
    seen: set[int] = set()
    duplicates: set[int] = set()
    total = 0
    placeholder_titles = 0
    weak_goals = 0
    invalid_ranges = 0
    disconnected = 0
    previous_end: Optional[int] = None

    for volume in outline.volumes:
        if volume.end_chapter < volume.start_chapter:
            invalid_ranges += 1
        if previous_end is not None and volume.start_chapter != previous_end + 1:
            disconnected += 1
        previous_end = volume.end_chapter

        for chapter in volume.chapters:
            total += 1
            if chapter.index in seen:
                duplicates.add(chapter.index)
            else:
                seen.add(chapter.index)
            if is_placeholder_title(chapter.title):
                placeholder_titles += 1
            if len(chapter.goal.strip()) < 4:
                weak_goals += 1

    missing = [i for i in range(1, target_chapters + 1) if i not in seen]

    if missing:
        issues.append(f"Missing chapter indices: {_format_indices(missing)}")
    if duplicates:
        issues.append(f"Duplicate chapter indices: {_format_indices(sorted(duplicates), 8)}")
    if total != target_chapters:
        issues.append(f"Chapter count mismatch: {total} of {target_chapters}")
    if placeholder_titles:
        issues.append(f"Placeholder titles: {placeholder_titles} chapter(s) still have placeholder titles")
    if weak_goals:
        issues.append(f"Weak chapter goals: {weak_goals} chapter(s) have a missing or too-short goal")
    if invalid_ranges:
        issues.append(f"Invalid volume ranges: {invalid_ranges} volume(s) end before they start")
    if disconnected:
        issues.append(f"Disconnected volumes: {disconnected} gap(s) or overlap(s) in volume numbering")

    counted = max(1, total)
    expected = max(1, target_chapters)
    metrics = OutlineMetrics(
        coverage=_clamp_score(
            10
            - len(missing) / expected * 8
            - abs(total - target_chapters) / expected * 3
            - len(duplicates) * 0.2
        ),
        title_quality=_clamp_score(10 - placeholder_titles / counted * 10),
        goal_quality=_clamp_score(10 - weak_goals / counted * 10),
        structure=_clamp_score(10 - invalid_ranges * 2 - disconnected * 1.5),
        milestone_quality=_clamp_score(
            min(10, 6 + min(4, len(outline.milestones))) if outline.milestones else 4
        ),
    )
    score = _clamp_score(
        metrics.coverage * 0.4
        + metrics.title_quality * 0.2
        + metrics.goal_quality * 0.25
        + metrics.structure * 0.1
        + metrics.milestone_quality * 0.05
    )

    passed = (
        score >= target_score
        and not missing
        and not duplicates
        and placeholder_titles <= math.ceil(target_chapters * 0.03)
        and weak_goals <= math.ceil(target_chapters * 0.05)
        and invalid_ranges == 0
    )
    return OutlineEvaluation(score=score, passed=passed, issues=tuple(issues), metrics=metrics)


def make_evaluate_tool(
    target_chapters: int,
    target_score: float,
    progress: ProgressCallback = _noop_progress,
) -> ToolHandler:
    def evaluate(state: AgentState, tool_input: dict) -> OutlineCritique:
        if state.latest_outline is None:
            raise ToolConfigurationError("No outline available to evaluate")

        evaluation = evaluate_outline_quality(state.latest_outline, target_chapters, target_score)
        progress("critic", {
            "attempt": state.outline_version,
            "score": evaluation.score,
            "passed": evaluation.passed,
            "issues": list(evaluation.issues),
            "message": f"score {evaluation.score}/10",
        })
        verdict = "passed" if evaluation.passed else "not passed"
        return OutlineCritique(
            evaluation=evaluation,
            summary=f"outline scored {evaluation.score}/10 ({verdict})",
        )

    return evaluate


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------

MASTER_SYSTEM = """You are an expert planner of long-form serialized fiction outlines.

Principles:
1. Escalating conflict: each volume's core conflict is bigger and more urgent than the last
2. Payoff rhythm: a major payoff every 3-5 chapters, small ones in between
3. Character arcs: the protagonist grows inwardly in every volume, not only in power
4. Suspense: every volume ends on a strong open question that pulls into the next
5. Three acts per volume: setup (25%), development (50%), climax (25%)
6. No filler volumes: each has a clear core conflict and climax

Output strict JSON only:
{
  "mainGoal": "the book's ultimate goal (one sentence)",
  "milestones": ["milestone", "..."],
  "volumes": [
    {"title": "Volume 1: ...", "startChapter": 1, "endChapter": 80, "goal": "...", "conflict": "...", "climax": "...", "volumeEndState": "..."}
  ]
}"""

VOLUME_SYSTEM = """You are an expert planner of chapter outlines for serialized fiction. Outline every chapter of one volume.

Principles:
1. Every chapter has a clear payoff (a win, a gain, a crisis defused, a truth revealed)
2. Every chapter ends on a hook
3. Pacing waves: after a climax chapter allow 1-2 quieter chapters, still with small suspense
4. Conflicts escalate gradually
5. No filler chapters: each advances the plot

Output a strict JSON array only. Each chapter:
{"index": chapter number, "title": "title without the number", "goal": "what the chapter accomplishes", "hook": "closing hook"}"""


class MasterOutlineModel(BaseModel):
    main_goal: str = Field(default="", alias="mainGoal")
    milestones: list[Any] = Field(default_factory=list)
    volumes: list[dict[str, Any]] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


def skeleton_volumes(target_chapters: int) -> list[dict]:
    count = max(1, math.ceil(target_chapters / CHAPTERS_PER_VOLUME))
    return [
        {
            "title": f"Volume {i + 1}",
            "startChapter": i * CHAPTERS_PER_VOLUME + 1,
            "endChapter": min(target_chapters, (i + 1) * CHAPTERS_PER_VOLUME),
        }
        for i in range(count)
    ]


def generate_master_outline(
    generator: TextGenerator,
    bible: str,
    target_chapters: int,
    target_word_count: int,
    revision_notes: Optional[str] = None,
    temperature: float = 0.7,
) -> MasterOutlineModel:
    """Volumes, main goal and milestones for the whole book.

    An unusable response falls back to evenly sized untitled volumes so the
    per-volume step can still run.
    """
    volume_count = math.ceil(target_chapters / CHAPTERS_PER_VOLUME)
    prompt = (
        f"## Story Bible\n{bible}\n\n"
        f"## Target Scale\n"
        f"- Total chapters: {target_chapters}\n"
        f"- Total words: {target_word_count}\n"
        f"- Expected volumes: {volume_count}\n"
    )
    if revision_notes:
        prompt += f"\n## Revision Notes From The Last Evaluation\n{revision_notes}\n"
    prompt += "\nGenerate the master outline:"

    raw = generator.generate(MASTER_SYSTEM, prompt, temperature=temperature)
    result = parse_structured(raw, MasterOutlineModel)
    if not result.ok or not result.value.volumes:
        logger.warning(
            f"Master outline unusable, falling back to {volume_count} even volume(s): "
            f"{result.error or 'no volumes'}"
        )
        main_goal = result.value.main_goal if result.ok else ""
        milestones = result.value.milestones if result.ok else []
        return MasterOutlineModel(main_goal=main_goal, milestones=milestones,
                                  volumes=skeleton_volumes(target_chapters))
    return result.value


def generate_volume_chapters(
    generator: TextGenerator,
    bible: str,
    master: MasterOutlineModel,
    volume: dict,
    previous_volume_summary: Optional[str] = None,
    revision_notes: Optional[str] = None,
    temperature: float = 0.7,
) -> list[dict]:
    """Chapter entries for one volume; an unusable response yields none."""
    start = volume.get("startChapter", volume.get("start_chapter", 1))
    end = volume.get("endChapter", volume.get("end_chapter", start))
    try:
        chapter_count = int(end) - int(start) + 1
    except (TypeError, ValueError):
        chapter_count = 0

    prompt = (
        f"## Story Bible\n{bible[:2000]}\n\n"
        f"## Main Goal\n{master.main_goal}\n\n"
        f"## This Volume\n"
        f"- {volume.get('title', '')}\n"
        f"- Chapters {start} to {end} ({chapter_count} chapters)\n"
        f"- Goal: {volume.get('goal', '')}\n"
        f"- Conflict: {volume.get('conflict', '')}\n"
        f"- Climax: {volume.get('climax', '')}\n\n"
    )
    if previous_volume_summary:
        prompt += f"## End Of The Previous Volume\n{previous_volume_summary}\n\n"
    else:
        prompt += "## This is the first volume\n\n"
    if revision_notes:
        prompt += f"## Revision Notes\n{revision_notes}\n\n"
    prompt += f"Generate the outline of all {chapter_count} chapters of this volume (JSON array):"

    raw = generator.generate(VOLUME_SYSTEM, prompt, temperature=temperature)
    try:
        data = parse_json_response(raw)
    except ValueError as e:
        logger.warning(f"Volume '{volume.get('title', '')}' chapters unusable, leaving it empty: {e}")
        return []
    if isinstance(data, dict):
        data = data.get("chapters", [])
    return [ch for ch in data if isinstance(ch, dict)] if isinstance(data, list) else []


def _previous_end_state(volume: dict) -> str:
    end_state = volume.get("volumeEndState") or volume.get("volume_end_state") or volume.get("end_state")
    if end_state:
        return str(end_state)
    return f"{volume.get('climax', '')} (protagonist has achieved: {volume.get('goal', '')})"


def make_generate_tool(
    generator: TextGenerator,
    bible: str,
    target_chapters: int,
    target_word_count: int,
    temperature: float = 0.7,
    progress: ProgressCallback = _noop_progress,
) -> ToolHandler:
    def generate(state: AgentState, tool_input: dict) -> GeneratedOutline:
        attempt = state.outline_version + 1
        notes = tool_input.get("revisionNotes")
        revision_notes = notes.strip() if isinstance(notes, str) and notes.strip() else None

        master = generate_master_outline(
            generator, bible, target_chapters, target_word_count, revision_notes, temperature
        )
        total_volumes = len(master.volumes)
        progress("master_outline", {
            "attempt": attempt,
            "total_volumes": total_volumes,
            "main_goal": master.main_goal,
            "message": f"attempt {attempt}: {total_volumes} volume(s) planned",
        })

        volumes = []
        for i, raw_volume in enumerate(master.volumes):
            title = raw_volume.get("title", f"Volume {i + 1}")
            progress("volume_started", {
                "attempt": attempt,
                "volume_index": i + 1,
                "total_volumes": total_volumes,
                "volume_title": title,
                "message": f"volume {i + 1}/{total_volumes}",
            })
            previous = _previous_end_state(master.volumes[i - 1]) if i > 0 else None
            chapters = generate_volume_chapters(
                generator, bible, master, raw_volume, previous, revision_notes, temperature
            )
            volume = normalize_volume(raw_volume, i, chapters)
            volumes.append(volume)
            progress("volume_completed", {
                "attempt": attempt,
                "volume_index": i + 1,
                "total_volumes": total_volumes,
                "volume_title": volume.title,
                "chapter_count": len(volume.chapters),
                "message": f"volume {i + 1}/{total_volumes}: {len(volume.chapters)} chapter(s)",
            })

        outline = OutlineDocument(
            total_chapters=target_chapters,
            target_word_count=target_word_count,
            main_goal=master.main_goal,
            milestones=normalize_milestones(master.milestones),
            volumes=tuple(volumes),
        )
        return GeneratedOutline(
            outline=outline,
            summary=f"generated outline version {attempt} with {len(volumes)} volumes",
        )

    return generate


def create_outline_tool_registry(
    generator: TextGenerator,
    bible: str,
    target_chapters: int,
    target_word_count: int,
    target_score: float,
    temperature: float = 0.7,
    progress: ProgressCallback = _noop_progress,
) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(
        ToolName.GENERATE,
        make_generate_tool(generator, bible, target_chapters, target_word_count, temperature, progress),
    )
    registry.register(ToolName.EVALUATE, make_evaluate_tool(target_chapters, target_score, progress))
    return registry
