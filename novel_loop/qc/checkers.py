"""The independent QC checkers.

Each checker scores one dimension of a chapter on 0-100. ``check`` returns
None when the chapter context lacks the checker's input (no character
snapshots, no pacing target, ...), in which case the dimension counts as
clean. Model-backed checkers fall back to a permissive score when the
response is malformed; a GenerationError propagates to the aggregator.
"""

from typing import Literal, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from ..config import QCConfig
from ..llm.generator import TextGenerator
from ..models.chapter import ChapterContext
from ..models.qc import CheckerResult, IssueCategory, QCIssue, Severity
from ..timeline.ledger import check_event_duplication
from ..utils.structured import parse_structured
from ..utils.text import detect_language, text_length
from .ending import check_premature_ending
from .structure import check_structural_integrity


class Checker(Protocol):
    name: str

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        ...


class EndingChecker:
    name = "ending"

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        return check_premature_ending(context.chapter_text, context.chapter_index, context.total_chapters)


class StructureChecker:
    name = "structure"

    def __init__(self, config: QCConfig):
        self.config = config

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        return check_structural_integrity(context.chapter_text, self.config)


class DuplicationChecker:
    """Flags chapters that replay an event the ledger already marks completed."""

    name = "duplication"

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        if context.timeline is None or not context.timeline.completed_events():
            return None
        report = check_event_duplication(context.chapter_text, context.timeline, context.character_names)
        issues = tuple(
            QCIssue(
                category=IssueCategory.DUPLICATION,
                severity=Severity.MAJOR,
                description=warning,
                suggestion="Advance the plot instead of replaying an event that already happened",
            )
            for warning in report.warnings
        )
        return CheckerResult(score=max(0, 100 - 30 * len(issues)), issues=issues)


# ---------------------------------------------------------------------------
# Character consistency
# ---------------------------------------------------------------------------

CHARACTER_SYSTEM_EN = """You are a professional fiction editor who checks character consistency.

Dimensions:
1. personality: does the behaviour fit the established personality?
2. ability: does the character use abilities they should not have, or fail to use ones they have?
3. state: do location, mood and physical condition contradict the context?
4. speech: is the character's voice stable?
5. relationship: do interactions fit the established relationships?

Severity:
- critical: flagrantly breaks the setting; readers will notice
- major: clearly off; hurts the reading experience
- minor: slightly off but acceptable

Output JSON only:
{"score": 0-100, "issues": [{"characterId": "...", "characterName": "...", "type": "personality|ability|state|speech|relationship", "severity": "critical|major|minor", "description": "...", "evidence": "short quote"}]}"""

CHARACTER_SYSTEM_ZH = """你是一个专业的网文编辑，专注于检测人物一致性问题。

检测维度：性格(personality)、能力(ability)、状态(state)、语言(speech)、关系(relationship)。

严重程度：
- critical: 严重违背设定，读者会明显察觉
- major: 明显不协调，影响阅读体验
- minor: 轻微违和，可以接受但不完美

只输出 JSON：
{"score": 0-100, "issues": [{"characterId": "角色ID", "characterName": "角色名", "type": "personality|ability|state|speech|relationship", "severity": "critical|major|minor", "description": "问题描述", "evidence": "原文依据"}]}"""

CHARACTER_SUGGESTIONS = {
    "personality": "Adjust the character's behaviour to fit the established personality",
    "ability": "Check the character's abilities against the setting",
    "state": "Keep the character's physical and emotional state continuous",
    "speech": "Keep the character's way of speaking consistent",
    "relationship": "Make the interaction match the established relationship",
}


class CharacterIssueModel(BaseModel):
    character_id: str = Field(default="", alias="characterId")
    character_name: str = Field(default="", alias="characterName")
    type: Literal["personality", "ability", "state", "speech", "relationship"] = "personality"
    severity: Literal["critical", "major", "minor"]
    description: str
    evidence: str = ""

    model_config = {"populate_by_name": True}


class CharacterCheckModel(BaseModel):
    score: float = Field(ge=0, le=100)
    issues: list[CharacterIssueModel] = Field(default_factory=list)


class CharacterChecker:
    name = "character"

    def __init__(self, generator: TextGenerator, config: QCConfig):
        self.generator = generator
        self.config = config

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        if not context.characters:
            return None

        states = "\n\n".join(
            f"[{s.name}] (ID: {s.character_id})\n"
            f"- Location: {s.location}\n"
            f"- Condition: {s.condition}\n"
            f"- Mood: {s.mood}\n"
            f"- Motivation: {s.motivation}\n"
            f"- Abilities: {', '.join(s.abilities) or 'none'}\n"
            f"- Recent changes: {'; '.join(s.recent_changes[-2:]) or 'none'}"
            for s in context.characters[:8]
        )
        prompt = (
            f"## Character Snapshots\n{states}\n\n"
            f"## Chapter To Check\n{context.chapter_text[:5000]}\n\n"
            f"Check the chapter for character consistency problems."
        )
        system = CHARACTER_SYSTEM_ZH if detect_language(context.chapter_text) == "zh" else CHARACTER_SYSTEM_EN
        raw = self.generator.generate(system, prompt, temperature=self.config.checker_temperature)

        result = parse_structured(raw, CharacterCheckModel)
        if not result.ok:
            fallback = self.config.checker_fallback_score
            logger.warning(f"Character check response unusable, scoring {fallback}: {result.error}")
            return CheckerResult(score=fallback)

        return CheckerResult(
            score=round(result.value.score),
            issues=tuple(
                QCIssue(
                    category=IssueCategory.CHARACTER,
                    severity=Severity(i.severity),
                    description=f"[{i.character_name}] {i.description}" if i.character_name else i.description,
                    location=i.evidence or None,
                    suggestion=CHARACTER_SUGGESTIONS[i.type],
                )
                for i in result.value.issues
            ),
        )


# ---------------------------------------------------------------------------
# Pacing alignment
# ---------------------------------------------------------------------------

PACING_SYSTEM = """You are a fiction pacing analyst. Measure how a chapter actually reads and compare it with its pacing target.

Output JSON only:
{
  "actualPacing": {"tensionLevel": 1-10, "dialogueRatio": 0-1, "sceneCount": 1+, "informationDensity": 1-10, "emotionalTone": "..."},
  "alignment": {"tensionMatch": true/false, "emotionalToneMatch": true/false},
  "score": 0-100,
  "issues": ["other pacing problems"]
}"""


class ActualPacingModel(BaseModel):
    tension_level: float = Field(alias="tensionLevel", ge=1, le=10)
    dialogue_ratio: float = Field(default=0.0, alias="dialogueRatio", ge=0, le=1)
    scene_count: int = Field(default=1, alias="sceneCount", ge=1)
    information_density: float = Field(default=5, alias="informationDensity", ge=1, le=10)
    emotional_tone: str = Field(default="", alias="emotionalTone")

    model_config = {"populate_by_name": True}


class PacingAlignmentModel(BaseModel):
    tension_match: bool = Field(default=True, alias="tensionMatch")
    emotional_tone_match: bool = Field(default=True, alias="emotionalToneMatch")

    model_config = {"populate_by_name": True}


class PacingCheckModel(BaseModel):
    actual_pacing: ActualPacingModel = Field(alias="actualPacing")
    alignment: PacingAlignmentModel = Field(default_factory=PacingAlignmentModel)
    score: float = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


def rule_based_pacing_check(chapter_text: str, length_range: tuple[int, int]) -> CheckerResult:
    """Length-only pacing estimate used when the model's answer is unusable."""
    length = text_length(chapter_text)
    low, high = length_range
    if length < low:
        return CheckerResult(score=70, issues=(QCIssue(
            category=IssueCategory.PACING,
            severity=Severity.MINOR,
            description=f"Chapter is on the short side ({length})",
            suggestion="Expand the chapter",
        ),))
    if length > high:
        return CheckerResult(score=75, issues=(QCIssue(
            category=IssueCategory.PACING,
            severity=Severity.MINOR,
            description=f"Chapter is on the long side ({length})",
            suggestion="Trim redundant description",
        ),))
    return CheckerResult(score=80)


class PacingChecker:
    name = "pacing"

    def __init__(self, generator: TextGenerator, config: QCConfig):
        self.generator = generator
        self.config = config

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        target = context.pacing
        if target is None:
            return None

        length = text_length(context.chapter_text)
        low, high = target.length_range
        prompt = (
            f"## Pacing Target\n"
            f"- Tension: {target.tension}/10\n"
            f"- Pacing type: {target.pacing_type or 'unspecified'}\n"
            f"- Emotional tone: {target.emotional_tone or 'unspecified'}\n"
            f"- Length range: {low}-{high}\n"
            f"- Scene purposes: {', '.join(target.scene_purposes) or 'unspecified'}\n\n"
            f"## Chapter ({length} long)\n{context.chapter_text[:5000]}\n\n"
            f"Analyze the chapter's pacing."
        )
        raw = self.generator.generate(PACING_SYSTEM, prompt, temperature=self.config.checker_temperature)

        result = parse_structured(raw, PacingCheckModel)
        if not result.ok:
            logger.warning(f"Pacing check response unusable, falling back to length rules: {result.error}")
            return rule_based_pacing_check(context.chapter_text, target.length_range)

        parsed = result.value
        actual = parsed.actual_pacing
        issues = []

        delta = abs(actual.tension_level - target.tension)
        if delta > 2:
            too_tense = actual.tension_level > target.tension
            issues.append(QCIssue(
                category=IssueCategory.PACING,
                severity=Severity.MAJOR if delta > 3 else Severity.MINOR,
                description=f"Tension is off target: wanted {target.tension}, got {actual.tension_level:g}",
                suggestion=(
                    "Too tense; add quieter description or dialogue"
                    if too_tense else "Too flat; add conflict or tension"
                ),
            ))

        if not parsed.alignment.emotional_tone_match:
            issues.append(QCIssue(
                category=IssueCategory.PACING,
                severity=Severity.MINOR,
                description=f'Emotional tone mismatch: wanted "{target.emotional_tone}", got "{actual.emotional_tone}"',
                suggestion="Adjust the description to match the target tone",
            ))

        if not low <= length <= high:
            issues.append(QCIssue(
                category=IssueCategory.PACING,
                severity=Severity.MAJOR if length < low * 0.7 else Severity.MINOR,
                description=f"Length {length} is outside the target range {low}-{high}",
                suggestion="Expand the chapter" if length < low else "Trim redundant description",
            ))

        issues.extend(
            QCIssue(category=IssueCategory.PACING, severity=Severity.MINOR, description=text)
            for text in parsed.issues
        )
        return CheckerResult(score=round(parsed.score), issues=tuple(issues))


# ---------------------------------------------------------------------------
# Goal achievement
# ---------------------------------------------------------------------------

GOAL_SYSTEM = """You are a fiction editor checking whether a chapter delivers what its outline promised.

Output JSON only:
{
  "primaryGoalAchieved": true/false,
  "secondaryGoalAchieved": true/false,
  "successCriteriaResults": [{"criterion": "...", "achieved": true/false, "evidence": "..."}],
  "scenesCompleted": ["..."],
  "scenesMissing": ["..."],
  "hookEffectiveness": 1-10,
  "hookAnalysis": "...",
  "foreshadowingExecuted": ["..."],
  "foreshadowingMissed": ["..."],
  "score": 0-100,
  "issues": ["other problems"]
}"""


class CriterionResultModel(BaseModel):
    criterion: str
    achieved: bool
    evidence: Optional[str] = None


class GoalCheckModel(BaseModel):
    primary_goal_achieved: bool = Field(alias="primaryGoalAchieved")
    secondary_goal_achieved: Optional[bool] = Field(default=None, alias="secondaryGoalAchieved")
    success_criteria_results: list[CriterionResultModel] = Field(default_factory=list, alias="successCriteriaResults")
    scenes_completed: list[str] = Field(default_factory=list, alias="scenesCompleted")
    scenes_missing: list[str] = Field(default_factory=list, alias="scenesMissing")
    hook_effectiveness: float = Field(default=5, alias="hookEffectiveness", ge=1, le=10)
    hook_analysis: str = Field(default="", alias="hookAnalysis")
    foreshadowing_executed: list[str] = Field(default_factory=list, alias="foreshadowingExecuted")
    foreshadowing_missed: list[str] = Field(default_factory=list, alias="foreshadowingMissed")
    score: float = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class GoalChecker:
    name = "goal"

    def __init__(self, generator: TextGenerator, config: QCConfig):
        self.generator = generator
        self.config = config

    def check(self, context: ChapterContext) -> Optional[CheckerResult]:
        goal = context.goal
        if goal is None:
            return None

        def bullets(items):
            return "\n".join(f"- {x}" for x in items) or "- (none)"

        prompt = (
            f"## Chapter {context.chapter_index} Outline: {goal.title}\n"
            f"Primary goal: {goal.primary}\n"
            f"Secondary goal: {goal.secondary or '(none)'}\n\n"
            f"Success criteria:\n{bullets(goal.success_criteria)}\n\n"
            f"Planned scenes:\n{bullets(goal.scenes)}\n\n"
            f"Planned hook: {goal.hook or '(none)'}\n\n"
            f"Foreshadowing to execute:\n{bullets(goal.foreshadowing)}\n\n"
            f"## Chapter Text\n{context.chapter_text[:6000]}\n\n"
            f"Check whether the chapter achieves its outline."
        )
        raw = self.generator.generate(GOAL_SYSTEM, prompt, temperature=self.config.checker_temperature)

        result = parse_structured(raw, GoalCheckModel)
        if not result.ok:
            fallback = self.config.checker_fallback_score
            logger.warning(f"Goal check response unusable, scoring {fallback}: {result.error}")
            return CheckerResult(score=fallback)

        parsed = result.value
        issues = []

        if not parsed.primary_goal_achieved:
            issues.append(QCIssue(
                category=IssueCategory.PLOT,
                severity=Severity.CRITICAL,
                description=f"Primary goal not achieved: {goal.primary}",
                suggestion="Make sure the chapter accomplishes its primary goal",
            ))

        for c in parsed.success_criteria_results:
            if not c.achieved:
                issues.append(QCIssue(
                    category=IssueCategory.PLOT,
                    severity=Severity.MAJOR,
                    description=f"Success criterion not met: {c.criterion}",
                    suggestion="Add the content this criterion calls for",
                ))

        if parsed.scenes_missing:
            issues.append(QCIssue(
                category=IssueCategory.STRUCTURE,
                severity=Severity.MAJOR if len(parsed.scenes_missing) > 1 else Severity.MINOR,
                description=f"Missing scenes: {', '.join(parsed.scenes_missing)}",
                suggestion="Add the missing scenes",
            ))

        if parsed.hook_effectiveness < 5:
            issues.append(QCIssue(
                category=IssueCategory.STRUCTURE,
                severity=Severity.MAJOR if parsed.hook_effectiveness < 3 else Severity.MINOR,
                description=f"Weak ending hook ({parsed.hook_effectiveness:g}/10): {parsed.hook_analysis}",
                suggestion="Sharpen the closing suspense so readers want the next chapter",
            ))

        if parsed.foreshadowing_missed:
            issues.append(QCIssue(
                category=IssueCategory.PLOT,
                severity=Severity.MINOR,
                description=f"Foreshadowing not executed: {', '.join(parsed.foreshadowing_missed)}",
                suggestion="Plant or pay off the foreshadowing the outline asks for",
            ))

        issues.extend(
            QCIssue(category=IssueCategory.STRUCTURE, severity=Severity.MINOR, description=text)
            for text in parsed.issues
        )
        return CheckerResult(score=round(parsed.score), issues=tuple(issues))
