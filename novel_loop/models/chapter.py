"""Inputs the QC checkers judge a chapter against."""

from dataclasses import dataclass, field
from typing import Optional

from .timeline import TimelineState


@dataclass
class CharacterSnapshot:
    character_id: str = ""
    name: str = ""
    location: str = ""
    condition: str = ""
    mood: str = ""
    motivation: str = ""
    abilities: list[str] = field(default_factory=list)
    recent_changes: list[str] = field(default_factory=list)


@dataclass
class PacingTarget:
    tension: int = 5  # 1-10
    pacing_type: str = ""
    emotional_tone: str = ""
    length_range: tuple[int, int] = (1500, 5000)
    scene_purposes: list[str] = field(default_factory=list)


@dataclass
class ChapterGoal:
    title: str = ""
    primary: str = ""
    secondary: str = ""
    success_criteria: list[str] = field(default_factory=list)
    scenes: list[str] = field(default_factory=list)
    hook: str = ""
    foreshadowing: list[str] = field(default_factory=list)


@dataclass
class ChapterContext:
    """Everything known about one chapter at QC time.

    Optional fields switch the matching checker on; a checker whose input is
    missing is skipped.
    """
    chapter_text: str
    chapter_index: int
    total_chapters: int
    characters: list[CharacterSnapshot] = field(default_factory=list)
    pacing: Optional[PacingTarget] = None
    goal: Optional[ChapterGoal] = None
    timeline: Optional[TimelineState] = None
    character_names: dict[str, str] = field(default_factory=dict)

    @property
    def is_final_chapter(self) -> bool:
        return self.chapter_index >= self.total_chapters
